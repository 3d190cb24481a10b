"""Tests for the auth gateway."""
