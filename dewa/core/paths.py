"""
Output path derivation: filename sanitization, per-platform naming,
directory creation and collision-free filenames.
"""

import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path

from dewa.core.constants import (
    UNSAFE_FILENAME_CHARS, MAX_TITLE_LEN, MAX_OUTPUT_NAME_BYTES,
    VIDEO_EXTENSION, MAX_UNIQUE_ATTEMPTS,
)
from dewa.core.error_codes import DirectoryCreateError
from dewa.core.models import PlatformProfile, VideoMetadata

logger = logging.getLogger(__name__)

_VIDEO_SUFFIXES = {'.mp4', '.mkv', '.webm'}


# ── Filename / path safety ────────────────────────────────────────────

def sanitize_filename(text: str | None) -> str:
    """Make a title or uploader safe for use inside a filename."""
    if not text or not isinstance(text, str):
        return "Unknown"
    safe = re.sub(UNSAFE_FILENAME_CHARS, '-', text)
    safe = re.sub(r'\s+', ' ', safe).strip()
    safe = re.sub(r'-+', '-', safe)
    safe = safe.strip('-').strip()
    safe = safe[:MAX_TITLE_LEN]
    return safe or "Unknown"


def _truncate_utf8(text: str, max_bytes: int) -> str:
    """Cut text to at most max_bytes of UTF-8 without splitting a character."""
    if max_bytes <= 0:
        return ""
    encoded = text.encode('utf-8')
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode('utf-8', errors='ignore')


def build_filename(metadata: VideoMetadata, profile: PlatformProfile) -> str:
    """
    Build the output filename for a video on a platform.
    The result never exceeds MAX_OUTPUT_NAME_BYTES of UTF-8, so yt-dlp's
    .part-FragN temporaries still fit the 255-byte name limit; on overflow the
    uploader segment is dropped and the title truncated, keeping the prefix.
    """
    title = sanitize_filename(metadata.title)
    uploader = sanitize_filename(metadata.uploader)
    prefix = profile.prefix

    filename = profile.filename_pattern.format(
        prefix=prefix, title=title, uploader=uploader,
    ) + VIDEO_EXTENSION

    if len(filename.encode('utf-8')) > MAX_OUTPUT_NAME_BYTES:
        budget = (MAX_OUTPUT_NAME_BYTES
                  - len(prefix.encode('utf-8'))
                  - len(VIDEO_EXTENSION.encode('utf-8')))
        truncated = _truncate_utf8(title, budget).rstrip(' -') or "Unknown"
        filename = f"{prefix}{truncated}{VIDEO_EXTENSION}"

    return filename


def ensure_directory(directory: Path) -> Path:
    """Create a directory (and parents) if missing."""
    try:
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
            logger.info("Created directory: %s", directory)
    except OSError as e:
        logger.error("Failed to create directory %s: %s", directory, e)
        raise DirectoryCreateError(f"Failed to create directory {directory}: {e}") from e
    if not directory.is_dir():
        raise DirectoryCreateError(f"Not a directory: {directory}")
    return directory


def build_output_path(metadata: VideoMetadata, profile: PlatformProfile,
                      base_dir: Path | str,
                      override_dir: Path | str | None = None,
                      override_filename: str | None = None) -> Path:
    """
    Derive <dir>/<filename> for a download and make sure <dir> exists.
    Raises DirectoryCreateError when the directory cannot be created.
    """
    if override_dir:
        directory = Path(override_dir).expanduser()
    else:
        directory = Path(base_dir).expanduser() / profile.directory
    ensure_directory(directory)

    if override_filename:
        # Only the final component is honoured
        filename = Path(override_filename).name or build_filename(metadata, profile)
    else:
        filename = build_filename(metadata, profile)

    return directory / filename


def generate_unique_filename(path: Path | str) -> Path:
    """
    Return path, or "<stem> (n)<suffix>" for the first free n.
    After MAX_UNIQUE_ATTEMPTS a millisecond timestamp suffix is used instead.
    """
    path = Path(path)
    if not path.exists():
        return path

    stem, suffix = path.stem, path.suffix
    for counter in range(1, MAX_UNIQUE_ATTEMPTS + 1):
        candidate = path.with_name(f"{stem} ({counter}){suffix}")
        if not candidate.exists():
            return candidate

    return path.with_name(f"{stem}_{int(time.time() * 1000)}{suffix}")


# ── File inspection ───────────────────────────────────────────────────

def is_file_complete(path: Path) -> bool:
    """True if the file exists, is non-empty and has no .part sibling."""
    try:
        if not path.is_file() or path.stat().st_size == 0:
            return False
        return not path.with_name(path.name + ".part").exists()
    except OSError as e:
        logger.warning("Error checking file completeness %s: %s", path, e)
        return False


def get_file_size(path: Path) -> int | None:
    try:
        return path.stat().st_size if path.is_file() else None
    except OSError:
        return None


def format_file_size(num_bytes: int | None) -> str:
    if not num_bytes:
        return "0 B"
    size = float(num_bytes)
    for unit in ('B', 'KB', 'MB', 'GB'):
        if size < 1024:
            return f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} TB"


def get_file_info(path: Path) -> dict | None:
    try:
        if not path.is_file():
            return None
        stat = path.stat()
    except OSError as e:
        logger.warning("Error getting file info %s: %s", path, e)
        return None
    return {
        'path': str(path),
        'name': path.name,
        'size': stat.st_size,
        'size_formatted': format_file_size(stat.st_size),
        'modified': datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
        'is_complete': is_file_complete(path),
    }


def get_directory_stats(directory: Path) -> dict | None:
    """Count files, videos and total bytes directly under a directory."""
    if not directory.is_dir():
        return None

    total_size = 0
    file_count = 0
    video_count = 0
    for entry in directory.iterdir():
        try:
            if not entry.is_file():
                continue
            total_size += entry.stat().st_size
        except OSError:
            continue
        file_count += 1
        if entry.suffix.lower() in _VIDEO_SUFFIXES:
            video_count += 1

    return {
        'directory': str(directory),
        'total_size': total_size,
        'total_size_formatted': format_file_size(total_size),
        'file_count': file_count,
        'video_count': video_count,
        'temp_file_count': file_count - video_count,
    }
