"""
Video metadata fetching via yt-dlp --print.
Failures never propagate: the caller always gets a VideoMetadata.
"""

import logging
import subprocess

from dewa.core.security_utils import run_subprocess_capture
from dewa.core.constants import (
    DEFAULT_YT_DLP_PATH, METADATA_TIMEOUT_SEC, METADATA_PRINT_FIELDS,
    DEFAULT_TITLE, DEFAULT_UPLOADER, DEFAULT_DURATION,
)
from dewa.core.models import VideoMetadata

logger = logging.getLogger(__name__)

# yt-dlp prints "NA" for fields the extractor does not provide
_MISSING_VALUES = {"", "NA", "None"}


def build_metadata_args(url: str, tool_path: str = DEFAULT_YT_DLP_PATH) -> list[str]:
    args = [tool_path]
    for field_name in METADATA_PRINT_FIELDS:
        args.extend(["--print", field_name])
    args.extend(["--no-playlist", "--no-warnings"])
    args.append(url)
    return args


def parse_metadata_output(stdout: str, url: str) -> VideoMetadata:
    """
    Map yt-dlp --print output to VideoMetadata by line position.
    Missing lines fall back to per-field defaults.
    """
    lines = [line.strip() for line in (stdout or "").splitlines()]

    def _field(index: int, default):
        if index < len(lines) and lines[index] not in _MISSING_VALUES:
            return lines[index]
        return default

    return VideoMetadata(
        title=_field(0, DEFAULT_TITLE),
        uploader=_field(1, DEFAULT_UPLOADER),
        duration=_field(2, DEFAULT_DURATION),
        view_count=_field(3, None),
        upload_date=_field(4, None),
        url=url,
    )


def fetch_video_info(url: str, tool_path: str = DEFAULT_YT_DLP_PATH,
                     timeout: float = METADATA_TIMEOUT_SEC) -> VideoMetadata:
    """
    Fetch title/uploader/duration/view count/upload date without downloading.
    Spawn errors, non-zero exits and timeouts yield the default record.
    """
    logger.info("Extracting video information: %s", url)
    args = build_metadata_args(url, tool_path)

    try:
        result = run_subprocess_capture(args, timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning("Metadata fetch timed out after %ss, using defaults", timeout)
        return VideoMetadata.defaults(url)
    except OSError as e:
        logger.warning("Metadata fetch could not start yt-dlp (%s), using defaults", e)
        return VideoMetadata.defaults(url)

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        logger.warning("Metadata fetch failed (rc=%s), using defaults: %s",
                       result.returncode, stderr[:300])
        return VideoMetadata.defaults(url)

    info = parse_metadata_output(result.stdout, url)
    logger.info("Video info extracted: title=%r uploader=%r duration=%s",
                info.title, info.uploader, info.duration)
    return info
