"""Test passing session engine and its thin HTTP surface."""
