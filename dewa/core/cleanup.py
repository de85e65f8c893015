"""
Cleanup: delete yt-dlp fragment and partial files after a download.
Best-effort: a file that cannot be removed is logged and skipped.
"""

import logging
import re
from pathlib import Path

from dewa.core.models import CleanupResult
from dewa.core.paths import format_file_size

logger = logging.getLogger(__name__)

_TEMP_PATTERNS = [
    re.compile(r'\.part$'),
    re.compile(r'\.part-Frag'),
    re.compile(r'\.ytdl$'),
    re.compile(r'\.temp$'),
    re.compile(r'\.tmp$'),
]


def is_fragment_of(filename: str, output_path: Path) -> bool:
    """True if filename is a yt-dlp leftover for the given output file."""
    name = output_path.name
    stem = output_path.stem
    if filename == name:
        return False
    return (
        filename.startswith(f"{name}.part-Frag")
        or filename == f"{name}.ytdl"
        or filename == f"{name}.part"
        or filename.startswith(f"{stem}.f")
        or (stem in filename and ".part-" in filename)
    )


def _remove_files(files: list[Path]) -> CleanupResult:
    result = CleanupResult()
    for path in files:
        try:
            size = path.stat().st_size
            path.unlink()
        except OSError as e:
            logger.warning("Failed to delete %s: %s", path, e)
            continue
        result.files_removed += 1
        result.bytes_freed += size
        logger.debug("Deleted: %s", path)
    return result


def cleanup_fragments(output_path: Path | str) -> CleanupResult:
    """
    Remove fragment/partial files belonging to output_path from its directory.
    Returns the number of files removed and bytes freed.
    """
    output_path = Path(output_path)
    directory = output_path.parent

    try:
        candidates = [p for p in directory.iterdir()
                      if p.is_file() and is_fragment_of(p.name, output_path)]
    except OSError as e:
        logger.warning("Fragment cleanup failed for %s: %s", directory, e)
        return CleanupResult()

    result = _remove_files(candidates)
    if result.files_removed:
        logger.info("Cleaned up %d fragment files (%s freed)",
                    result.files_removed, format_file_size(result.bytes_freed))
    return result


def cleanup_temporary_files(directory: Path | str) -> CleanupResult:
    """Remove every yt-dlp temporary file directly under directory."""
    directory = Path(directory)
    if not directory.is_dir():
        return CleanupResult()

    try:
        candidates = [p for p in directory.iterdir()
                      if p.is_file() and any(pat.search(p.name) for pat in _TEMP_PATTERNS)]
    except OSError as e:
        logger.error("Error cleaning temporary files in %s: %s", directory, e)
        return CleanupResult()

    result = _remove_files(candidates)
    if result.files_removed:
        logger.info("Cleaned %d temporary files (%s freed)",
                    result.files_removed, format_file_size(result.bytes_freed))
    return result
