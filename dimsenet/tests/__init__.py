"""Unit tests for dimsenet."""
