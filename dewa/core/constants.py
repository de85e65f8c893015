"""
Shared constants for DEWA (Download Everything With AI).
Single source of truth, imported by every other module.
"""

import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "dewa"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

DEFAULT_DOWNLOAD_ROOT = HOME / "Downloads" / "DEWA"
APP_SUPPORT_DIR = HOME / ".dewa"
LOG_DIR = APP_SUPPORT_DIR / "logs"
CONFIG_PATH = APP_SUPPORT_DIR / "config.json"
DEFAULT_HISTORY_PATH = APP_SUPPORT_DIR / "downloads.json"

# ── Job status values ─────────────────────────────────────────────────
class JobStatus:
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    # Result-only status, never stored in the ledger
    ALREADY_EXISTS = "already_exists"

TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}

# ── Orchestrator stages (ordered) ─────────────────────────────────────
class JobStage:
    RESOLVING = "RESOLVING"
    FETCHING_METADATA = "FETCHING_METADATA"
    BUILDING_PATH = "BUILDING_PATH"
    RECORDING = "RECORDING"
    DOWNLOADING = "DOWNLOADING"
    COMPLETED = "COMPLETED"

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    VALIDATION = "ERR_VALIDATION"
    DIRECTORY_CREATE = "ERR_DIRECTORY_CREATE"
    PROCESS_SPAWN = "ERR_PROCESS_SPAWN"
    PROCESS_EXIT = "ERR_PROCESS_EXIT"
    DOWNLOAD_CANCELLED = "ERR_DOWNLOAD_CANCELLED"
    NOT_FOUND = "ERR_NOT_FOUND"
    STORAGE = "ERR_STORAGE"
    TOOL_INSTALL = "ERR_TOOL_INSTALL"
    ALREADY_RUNNING = "ERR_ALREADY_RUNNING"

    # Catch-all for anything unexpected after recording
    DOWNLOAD_FAILED = "ERR_DOWNLOAD_FAILED"

# ── yt-dlp download defaults ──────────────────────────────────────────
DEFAULT_YT_DLP_PATH = "yt-dlp"
DEFAULT_MAX_RETRIES = 10
DEFAULT_FRAGMENT_RETRIES = 10
DEFAULT_CONCURRENT_FRAGMENTS = 4
DEFAULT_THROTTLED_RATE = "100K"
DEFAULT_QUALITY = "best"
DEFAULT_RETENTION_DAYS = 30
DEFAULT_MAX_PARALLEL_DOWNLOADS = 2

METADATA_TIMEOUT_SEC = 30
# Grace period between SIGTERM and SIGKILL on cancellation
TERMINATE_GRACE_SEC = 5

QUALITY_CHOICES = ("best", "1080p", "720p", "480p", "360p", "worst")

# Fields printed by yt-dlp in metadata mode, in this exact order
METADATA_PRINT_FIELDS = (
    "title",
    "uploader",
    "duration_string",
    "view_count",
    "upload_date",
)

DEFAULT_TITLE = "Unknown Title"
DEFAULT_UPLOADER = "Unknown Uploader"
DEFAULT_DURATION = "Unknown Duration"

# ── Filenames ─────────────────────────────────────────────────────────
# Characters forbidden in file names (Windows reserved set)
UNSAFE_FILENAME_CHARS = r'[<>:"/\\|?*]'
MAX_TITLE_LEN = 200
MAX_FILENAME_BYTES = 255
# Room for the ".part-FragNNNN" siblings yt-dlp writes beside the output
FRAGMENT_SUFFIX_RESERVE = len(".part-Frag9999")
MAX_OUTPUT_NAME_BYTES = MAX_FILENAME_BYTES - FRAGMENT_SUFFIX_RESERVE
VIDEO_EXTENSION = ".mp4"
MAX_UNIQUE_ATTEMPTS = 1000

# ── yt-dlp installation ───────────────────────────────────────────────
YT_DLP_RELEASE_URL = "https://github.com/yt-dlp/yt-dlp/releases/latest/download/yt-dlp"
YT_DLP_COMMON_PATHS = [
    "/usr/local/bin/yt-dlp",
    "/usr/bin/yt-dlp",
    "/opt/homebrew/bin/yt-dlp",
    "/home/linuxbrew/.linuxbrew/bin/yt-dlp",
    str(HOME / ".local" / "bin" / "yt-dlp"),
]
DEFAULT_INSTALL_DIR = HOME / ".local" / "bin"
