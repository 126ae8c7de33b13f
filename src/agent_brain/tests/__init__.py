"""
Testing suite for the agent brain.

This package contains tests for all components:
- Unit tests for individual modules
- Integration tests for the complete decision pipeline
- Backend doubles for testing without a trained model
"""
