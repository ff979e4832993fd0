"""
Path Utilities
==============

Filename handling for envelopes and the documents they wrap.
"""

from __future__ import annotations

import re
from pathlib import Path, PurePath
from typing import Final

# Characters not allowed in filenames across all platforms
_UNSAFE_CHARS: Final[re.Pattern[str]] = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

SDC_SUFFIX: Final[str] = ".sdc"
UNKNOWN_FORMAT: Final[str] = "unknown"


def sanitize_filename(filename: str, replacement: str = "_") -> str:
    """
    Sanitize a filename by removing potentially dangerous characters.

    Args:
        filename: The filename to sanitize
        replacement: Character to replace unsafe chars with

    Returns:
        Sanitized filename safe for all platforms
    """
    if not filename:
        raise ValueError("Filename cannot be empty")

    sanitized = _UNSAFE_CHARS.sub(replacement, filename)

    # Remove leading/trailing dots and spaces
    sanitized = sanitized.strip(". ")

    if not sanitized:
        raise ValueError("Filename becomes empty after sanitization")

    # Leave room for the .sdc suffix
    max_length = 200
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length]

    return sanitized


def _basename(filename: str) -> str:
    # Uploaded names may carry either separator
    return PurePath(filename.replace("\\", "/")).name


def original_format_of(filename: str) -> str:
    """Lower-case extension without the dot, or ``unknown``."""
    suffix = PurePath(_basename(filename)).suffix
    return suffix[1:].lower() if len(suffix) > 1 else UNKNOWN_FORMAT


def sdc_filename(filename: str) -> str:
    """``report.pdf`` -> ``report.sdc``."""
    base = _basename(filename)
    stem = PurePath(base).stem if PurePath(base).suffix else base
    try:
        stem = sanitize_filename(stem)
    except ValueError:
        stem = "document"
    return f"{stem}{SDC_SUFFIX}"


def is_path_within_directory(path: Path, directory: Path) -> bool:
    """
    Check if a path is safely within a directory (prevents path traversal).
    """
    try:
        return path.resolve().is_relative_to(directory.resolve())
    except (ValueError, RuntimeError):
        return False
