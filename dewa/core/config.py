"""
Application configuration manager.
Stores settings in a JSON file under the app support directory;
environment variables override the file.
"""

import json
import logging
import os
import shutil
from pathlib import Path

from dewa.core.constants import (
    CONFIG_PATH, DEFAULT_DOWNLOAD_ROOT, DEFAULT_HISTORY_PATH,
    DEFAULT_YT_DLP_PATH, DEFAULT_MAX_RETRIES, DEFAULT_FRAGMENT_RETRIES,
    DEFAULT_CONCURRENT_FRAGMENTS, DEFAULT_THROTTLED_RATE, DEFAULT_QUALITY,
    DEFAULT_RETENTION_DAYS, DEFAULT_MAX_PARALLEL_DOWNLOADS,
    METADATA_TIMEOUT_SEC, QUALITY_CHOICES,
)

# Validation bounds
_MAX_RETRIES_MIN = 1
_MAX_RETRIES_MAX = 100
_FRAGMENTS_MIN = 1
_FRAGMENTS_MAX = 32
_PARALLEL_MIN = 1
_PARALLEL_MAX = 16
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'download_path': str(DEFAULT_DOWNLOAD_ROOT),
    'yt_dlp_path': DEFAULT_YT_DLP_PATH,
    'max_retries': DEFAULT_MAX_RETRIES,
    'fragment_retries': DEFAULT_FRAGMENT_RETRIES,
    'concurrent_fragments': DEFAULT_CONCURRENT_FRAGMENTS,
    'throttled_rate': DEFAULT_THROTTLED_RATE,
    'default_quality': DEFAULT_QUALITY,
    'auto_cleanup': True,
    'history_file': str(DEFAULT_HISTORY_PATH),
    'history_retention_days': DEFAULT_RETENTION_DAYS,
    'metadata_timeout_sec': METADATA_TIMEOUT_SEC,
    'max_parallel_downloads': DEFAULT_MAX_PARALLEL_DOWNLOADS,
    'log_level': 'INFO',
}

# Environment variable -> config key
_ENV_OVERRIDES = {
    'DOWNLOAD_PATH': 'download_path',
    'YT_DLP_PATH': 'yt_dlp_path',
    'MAX_RETRIES': 'max_retries',
    'FRAGMENT_RETRIES': 'fragment_retries',
    'CONCURRENT_FRAGMENTS': 'concurrent_fragments',
    'THROTTLED_RATE': 'throttled_rate',
    'DEFAULT_QUALITY': 'default_quality',
    'AUTO_CLEANUP': 'auto_cleanup',
    'DOWNLOAD_HISTORY_FILE': 'history_file',
    'DOWNLOAD_HISTORY_RETENTION_DAYS': 'history_retention_days',
    'MAX_PARALLEL_DOWNLOADS': 'max_parallel_downloads',
    'LOG_LEVEL': 'log_level',
}


def _parse_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _clamp_int(value, low: int, high: int, default: int, key: str) -> int:
    try:
        value = int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s %r, using default", key, value)
        return default
    return max(low, min(high, value))


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None,
                 environ: dict | None = None):
        self.path = config_path or CONFIG_PATH
        self._environ = os.environ if environ is None else environ
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk and environment, merging with defaults."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    self._data[key] = self._validate(key, value)
            except Exception as e:
                logger.warning("Failed to load config: %s", e)

        for env_name, key in _ENV_OVERRIDES.items():
            raw = self._environ.get(env_name)
            if raw is not None and raw != "":
                self._data[key] = self._validate(key, raw)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key == 'max_retries':
            return _clamp_int(value, _MAX_RETRIES_MIN, _MAX_RETRIES_MAX,
                              DEFAULT_MAX_RETRIES, key)

        if key == 'fragment_retries':
            return _clamp_int(value, _MAX_RETRIES_MIN, _MAX_RETRIES_MAX,
                              DEFAULT_FRAGMENT_RETRIES, key)

        if key == 'concurrent_fragments':
            return _clamp_int(value, _FRAGMENTS_MIN, _FRAGMENTS_MAX,
                              DEFAULT_CONCURRENT_FRAGMENTS, key)

        if key == 'max_parallel_downloads':
            return _clamp_int(value, _PARALLEL_MIN, _PARALLEL_MAX,
                              DEFAULT_MAX_PARALLEL_DOWNLOADS, key)

        if key == 'history_retention_days':
            return _clamp_int(value, 1, 3650, DEFAULT_RETENTION_DAYS, key)

        if key == 'metadata_timeout_sec':
            try:
                return max(1.0, float(value))
            except (TypeError, ValueError):
                logger.warning("Invalid metadata_timeout_sec %r, using default", value)
                return METADATA_TIMEOUT_SEC

        if key == 'default_quality':
            if value not in QUALITY_CHOICES:
                logger.warning("Invalid default_quality %r, using %s", value, DEFAULT_QUALITY)
                return DEFAULT_QUALITY

        if key == 'auto_cleanup':
            return _parse_bool(value)

        if key == 'log_level':
            level = str(value).upper()
            if level == 'WARN':
                level = 'WARNING'
            return level if level in _LOG_LEVELS else 'INFO'

        return value

    def as_dict(self) -> dict:
        return dict(self._data)

    def summary(self) -> dict:
        """Short config summary for startup logging."""
        return {
            'download_path': self.download_path,
            'yt_dlp_path': self.yt_dlp_path,
            'default_quality': self.default_quality,
            'auto_cleanup': self.auto_cleanup,
            'max_retries': self.max_retries,
        }

    def check(self) -> list[str]:
        """Return a list of configuration problems (empty when usable)."""
        problems = []

        tool = self.yt_dlp_path
        if not tool:
            problems.append("yt-dlp path is required")
        elif not (Path(tool).exists() or shutil.which(tool)):
            problems.append(f"yt-dlp not found at: {tool}")

        root = Path(self.download_path)
        try:
            root.mkdir(parents=True, exist_ok=True)
            marker = root / ".write-test"
            marker.write_text("test")
            marker.unlink()
        except OSError:
            problems.append(f"Download path is not writable: {root}")

        return problems

    # ── Typed accessors ───────────────────────────────────────────────

    @property
    def download_path(self) -> str:
        return self._data.get('download_path', str(DEFAULT_DOWNLOAD_ROOT))

    @download_path.setter
    def download_path(self, value: str):
        self._data['download_path'] = value
        self.save()

    @property
    def yt_dlp_path(self) -> str:
        return self._data.get('yt_dlp_path', DEFAULT_YT_DLP_PATH)

    @yt_dlp_path.setter
    def yt_dlp_path(self, value: str):
        self._data['yt_dlp_path'] = value
        self.save()

    @property
    def max_retries(self) -> int:
        return self._data.get('max_retries', DEFAULT_MAX_RETRIES)

    @property
    def fragment_retries(self) -> int:
        return self._data.get('fragment_retries', DEFAULT_FRAGMENT_RETRIES)

    @property
    def concurrent_fragments(self) -> int:
        return self._data.get('concurrent_fragments', DEFAULT_CONCURRENT_FRAGMENTS)

    @property
    def throttled_rate(self) -> str:
        return str(self._data.get('throttled_rate', DEFAULT_THROTTLED_RATE))

    @property
    def default_quality(self) -> str:
        return self._data.get('default_quality', DEFAULT_QUALITY)

    @property
    def auto_cleanup(self) -> bool:
        return self._data.get('auto_cleanup', True)

    @property
    def history_file(self) -> Path:
        return Path(self._data.get('history_file', str(DEFAULT_HISTORY_PATH)))

    @property
    def history_retention_days(self) -> int:
        return self._data.get('history_retention_days', DEFAULT_RETENTION_DAYS)

    @property
    def metadata_timeout_sec(self) -> float:
        return self._data.get('metadata_timeout_sec', METADATA_TIMEOUT_SEC)

    @property
    def max_parallel_downloads(self) -> int:
        return self._data.get('max_parallel_downloads', DEFAULT_MAX_PARALLEL_DOWNLOADS)

    @property
    def log_level(self) -> str:
        return self._data.get('log_level', 'INFO')
