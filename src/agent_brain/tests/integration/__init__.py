"""Integration tests for the decision pipeline."""
