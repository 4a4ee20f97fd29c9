"""Utility modules."""
from testix.utils.json_utils import (
    json_dump,
    json_load,
    read_json_file,
    write_json_file,
)
from testix.utils.paths import payload_path, test_dir
from testix.utils.validation import validate_id, validate_test_exists

__all__ = [
    "json_dump",
    "json_load",
    "read_json_file",
    "write_json_file",
    "payload_path",
    "test_dir",
    "validate_id",
    "validate_test_exists",
]
