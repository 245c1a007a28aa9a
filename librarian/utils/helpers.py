"""
Helper utilities for Sample Librarian.

Common functions used across domains.
"""

import hashlib
import unicodedata
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

HASH_CHUNK_SIZE = 1024 * 1024

# Characters replaced with a hyphen in sanitized names
_HYPHENATED = {'/', '\\', ':', '<', '>', '|'}

# Characters removed entirely
_DROPPED = {'*', '?', '\0'}


def sanitize_name(name: str) -> str:
    """
    Make a pack or file name safe to use as a single path component.

    Path separators and ``: < > |`` become hyphens, ``*``, ``?`` and NUL are
    removed, double quotes become apostrophes and any other control
    character becomes an underscore. Surrounding whitespace is trimmed.
    Names that would resolve to the current or parent directory are
    replaced with an underscore.

    Args:
        name: Raw name from upstream metadata

    Returns:
        Sanitized name (idempotent)
    """
    chars = []
    for char in name:
        if char in _DROPPED:
            continue
        if char in _HYPHENATED:
            chars.append('-')
        elif char == '"':
            chars.append("'")
        elif unicodedata.category(char) == 'Cc':
            chars.append('_')
        else:
            chars.append(char)

    sanitized = ''.join(chars).strip()

    if sanitized in ('', '.', '..'):
        return '_'

    return sanitized


def hash_file(path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Generate SHA256 hex digest of a file's byte content."""
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(chunk_size), b''):
            digest.update(chunk)
    return digest.hexdigest()


def now_iso() -> str:
    """Get current timestamp as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def normalise_path(path: Path) -> Path:
    """Return a resolved version of ``path`` without forcing existence."""

    try:
        return path.expanduser().resolve()
    except FileNotFoundError:
        return path.expanduser().absolute()


def format_bytes(bytes_count: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"


def get_file_extension(path: Path) -> str:
    """Get lowercase file extension without dot."""
    return path.suffix.lstrip('.').lower()


def is_hidden(path: Path) -> bool:
    """Check if path is hidden (starts with dot)."""
    return path.name.startswith('.')


def should_exclude_path(path: Path, exclude_patterns: Optional[List[str]] = None) -> bool:
    """
    Check if path should be excluded based on patterns.

    Args:
        path: Path to check
        exclude_patterns: List of glob patterns to exclude

    Returns:
        True if should exclude, False otherwise
    """
    if exclude_patterns is None:
        exclude_patterns = [
            '*.part',
            '*.crdownload',
            '*.tmp',
            '*.swp',
            '.DS_Store',
        ]

    if is_hidden(path):
        return True

    for pattern in exclude_patterns:
        if path.match(pattern):
            return True

    return False


def unique_path(path: Path) -> Path:
    """
    Return ``path`` if it is free, otherwise the first ``stem (n)suffix`` sibling that is.

    Args:
        path: Desired path

    Returns:
        A path that does not exist yet
    """
    if not path.exists():
        return path

    counter = 1
    while True:
        candidate = path.with_name(f"{path.stem} ({counter}){path.suffix}")
        if not candidate.exists():
            return candidate
        counter += 1
