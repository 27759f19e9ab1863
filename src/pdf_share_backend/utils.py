"""
Utility functions for file system operations, identifiers and timestamps.

This module provides helper functions for:
- Sanitizing user-provided file names for storage and display
- Ensuring directory creation with proper error handling
- Generating document ids and share tokens
- Serializing timezone-aware timestamps
"""

from __future__ import annotations

import re
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from uuid import uuid4

# Pattern to match characters that are not safe for file names
# Allows: alphanumeric characters, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9_-]+")


def sanitize_filename(filename: str, fallback: str = "document") -> str:
    """
    Generate a safe ``.pdf`` file name from user input.

    Args:
        filename: The original file name (may include a directory part)
        fallback: Stem to use if sanitization leaves nothing

    Returns:
        A file name made of safe characters that always ends in ``.pdf``

    Example:
        >>> sanitize_filename("My Report (final).PDF")
        "My-Report-final.pdf"
        >>> sanitize_filename("../../etc/passwd")
        "passwd.pdf"
    """
    stem = Path(filename.replace("\\", "/")).stem
    cleaned = SANITIZE_PATTERN.sub("-", stem.strip()).strip("-_")
    return f"{cleaned or fallback}.pdf"


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_document_id() -> str:
    return uuid4().hex


def new_share_token() -> str:
    return secrets.token_urlsafe(32)


def serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime to ISO format, treating naive values as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def deserialize_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)
