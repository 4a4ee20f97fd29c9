"""Test passing session engine."""
