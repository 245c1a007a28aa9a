"""Removal of source files once their outcome is final."""

from pathlib import Path

from loguru import logger

from librarian.models.schemas import SampleUnit


def remove_quietly(path: Path, label: str) -> bool:
    """
    Delete ``path``, logging instead of raising on failure.

    Args:
        path: File to delete
        label: Short description for log lines

    Returns:
        True if the file is gone afterwards
    """
    try:
        path.unlink()
    except FileNotFoundError:
        logger.debug(f"{label} already removed: {path}")
        return True
    except OSError as e:
        logger.warning(f"Failed to remove {label} {path}: {e}")
        return False

    logger.debug(f"Removed {label}: {path}")
    return True


def cleanup_committed(unit: SampleUnit) -> bool:
    """Remove the metadata file of a committed unit; the binary already moved."""
    return remove_quietly(unit.metadata_path, "metadata file")


def cleanup_duplicate(unit: SampleUnit) -> bool:
    """Remove both files of a unit whose content is already cataloged."""
    binary_removed = remove_quietly(unit.binary_path, "duplicate binary")
    metadata_removed = remove_quietly(unit.metadata_path, "duplicate metadata file")
    return binary_removed and metadata_removed
