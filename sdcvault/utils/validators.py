"""
Validation Utilities
====================

Input validation functions with security focus.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional


class ValidationError(ValueError):
    """Raised when validation fails."""
    pass


def validate_path_safe(
    path: str | Path,
    base_directory: Optional[Path] = None,
    must_exist: bool = False,
    allow_symlinks: bool = False,
) -> Path:
    """
    Validate a path is safe and optionally within a base directory.

    Args:
        path: The path to validate
        base_directory: If provided, path must be within this directory
        must_exist: If True, path must exist
        allow_symlinks: If False, symlinks are rejected

    Returns:
        Validated, resolved Path object

    Raises:
        ValidationError: If validation fails
    """
    raw = Path(path)
    if ".." in raw.parts:
        raise ValidationError("Path traversal detected")

    if not allow_symlinks and raw.is_symlink():
        raise ValidationError("Symlinks are not allowed")

    try:
        validated_path = raw.resolve()
    except (ValueError, RuntimeError) as e:
        raise ValidationError(f"Invalid path: {e}") from e

    if base_directory is not None:
        resolved_base = base_directory.resolve()
        if not validated_path.is_relative_to(resolved_base):
            raise ValidationError(f"Path must be within {resolved_base}")

    if must_exist and not validated_path.exists():
        raise ValidationError(f"Path does not exist: {validated_path}")

    return validated_path


def validate_string_safe(
    value: str,
    min_length: int = 0,
    max_length: int = 1000,
    allow_empty: bool = False,
    field_name: str = "value",
) -> str:
    """
    Validate a string value for safety.

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")

    if not allow_empty and not value:
        raise ValidationError(f"{field_name} cannot be empty")

    if len(value) < min_length:
        raise ValidationError(f"{field_name} must be at least {min_length} characters")

    if len(value) > max_length:
        raise ValidationError(f"{field_name} must be at most {max_length} characters")

    # Null bytes are never legitimate in metadata
    if "\x00" in value:
        raise ValidationError(f"{field_name} contains invalid characters")

    return value


def validate_tags(tags: Iterable[str], max_tags: int = 50, max_length: int = 64) -> list[str]:
    """Validate and de-duplicate tags, keeping their first-seen order."""
    if isinstance(tags, str):
        raise ValidationError("tags must be a list of strings")
    result: list[str] = []
    for tag in tags:
        tag = validate_string_safe(tag, max_length=max_length, field_name="tag").strip()
        if tag and tag not in result:
            result.append(tag)
    if len(result) > max_tags:
        raise ValidationError(f"At most {max_tags} tags are allowed")
    return result
