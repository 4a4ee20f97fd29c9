"""Path utilities for test definitions."""
from pathlib import Path

from testix import config


def test_dir(test_id: str) -> Path:
    """Get directory for test."""
    return config.DATA_DIR / test_id


def payload_path(test_id: str) -> Path:
    """Get path to test definition JSON."""
    return test_dir(test_id) / "test.json"
