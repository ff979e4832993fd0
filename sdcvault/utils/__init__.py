"""
Utils module - Utility functions and helpers.
"""

from sdcvault.utils.paths import (
    is_path_within_directory,
    original_format_of,
    sanitize_filename,
    sdc_filename,
)
from sdcvault.utils.validators import (
    ValidationError,
    validate_path_safe,
    validate_string_safe,
    validate_tags,
)

__all__ = [
    "ValidationError",
    "is_path_within_directory",
    "original_format_of",
    "sanitize_filename",
    "sdc_filename",
    "validate_path_safe",
    "validate_string_safe",
    "validate_tags",
]
