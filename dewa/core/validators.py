"""
Input validation for download requests, run before the orchestrator.
"""

import csv
import re
from urllib.parse import urlparse

from dewa.core.constants import QUALITY_CHOICES
from dewa.core.error_codes import ValidationError

_DIRECT_URL_PATTERNS = [
    re.compile(r'^https?://(www\.)?(youtube\.com|youtu\.be)', re.IGNORECASE),
    re.compile(r'^https?://(www\.)?bilibili\.com', re.IGNORECASE),
    re.compile(r'^https?://(www\.)?magentamusik\.de', re.IGNORECASE),
    re.compile(r'^https?://(www\.)?vimeo\.com', re.IGNORECASE),
    re.compile(r'^https?://(www\.)?twitch\.tv', re.IGNORECASE),
    # direct video file links
    re.compile(r'^https?://.*\.(mp4|mkv|webm|avi|mov)$', re.IGNORECASE),
]

_DANGEROUS_PATH_PATTERNS = [
    re.compile(r'\.\.'),                              # traversal
    re.compile(r'[<>:"|?*]'),                         # Windows reserved characters
    re.compile(r'^/dev/|^/proc/|^/sys/'),             # Linux system directories
    re.compile(r'^(CON|PRN|AUX|NUL)$', re.IGNORECASE),  # Windows reserved names
]

_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def is_direct_url(text: str) -> bool:
    """True if text is a URL on a known platform or a direct video link."""
    if not text or not isinstance(text, str):
        return False
    text = text.strip()
    return any(p.search(text) for p in _DIRECT_URL_PATTERNS)


def is_valid_quality(quality: str) -> bool:
    return quality in QUALITY_CHOICES


def is_valid_path(path: str) -> bool:
    if not path or not isinstance(path, str):
        return False
    return not any(p.search(path) for p in _DANGEROUS_PATH_PATTERNS)


def is_valid_filename(filename: str) -> bool:
    if not filename or not isinstance(filename, str):
        return False
    if len(filename.encode('utf-8')) > 255 or filename in ('.', '..'):
        return False
    return not _INVALID_FILENAME_CHARS.search(filename)


def validate_download_request(url: str, quality: str = 'best',
                              custom_directory: str | None = None,
                              custom_filename: str | None = None) -> str:
    """
    Check a download request before it reaches the orchestrator.
    Returns the stripped URL; raises ValidationError on bad input.
    """
    url = (url or "").strip()
    if not is_valid_url(url):
        raise ValidationError(f"Not a valid http(s) URL: {url!r}")
    if not is_valid_quality(quality):
        raise ValidationError(
            f"Invalid quality {quality!r}; expected one of {', '.join(QUALITY_CHOICES)}"
        )
    if custom_directory is not None and not is_valid_path(custom_directory):
        raise ValidationError(f"Unsafe custom directory: {custom_directory!r}")
    if custom_filename is not None and not is_valid_filename(custom_filename):
        raise ValidationError(f"Invalid custom filename: {custom_filename!r}")
    return url


def parse_input_lines(text: str) -> list[str]:
    """
    Parse pasted text into a list of URLs.
    - Trims whitespace
    - Ignores empty lines and '#' comments
    - Silently skips anything that is not an http(s) URL
    """
    urls = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        if is_valid_url(line):
            urls.append(line)
    return urls


def parse_csv_file(filepath: str) -> list[str]:
    """
    Parse a CSV file for URLs.
    - If header includes 'url' (case-insensitive), use that column
    - Else use first column
    """
    urls = []
    with open(filepath, 'r', encoding='utf-8', errors='replace', newline='') as f:
        rows = list(csv.reader(f))

    if not rows:
        return urls

    header = rows[0]
    url_col_idx = 0
    for i, col in enumerate(header):
        if col.strip().lower() in ('url', 'video_url'):
            url_col_idx = i
            rows = rows[1:]
            break
    else:
        # No recognized header: keep the first row only if it is data
        if not (header and is_valid_url(header[0].strip())):
            rows = rows[1:]

    for row in rows:
        if url_col_idx < len(row):
            cell = row[url_col_idx].strip()
            if is_valid_url(cell):
                urls.append(cell)

    return urls


def parse_input_file(filepath: str) -> list[str]:
    """Parse a .txt or .csv file for URLs."""
    ext = filepath.lower().rsplit('.', 1)[-1] if '.' in filepath else ''
    if ext == 'csv':
        return parse_csv_file(filepath)
    with open(filepath, 'r', encoding='utf-8', errors='replace') as f:
        return parse_input_lines(f.read())
