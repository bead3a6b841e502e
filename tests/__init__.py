"""Unit tests for the clinic scheduler."""
