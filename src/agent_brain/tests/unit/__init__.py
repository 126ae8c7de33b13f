"""Unit tests for individual brain components."""
