"""
Data models (plain dataclasses) for DEWA.
"""

from dataclasses import dataclass, field, asdict, fields
from typing import Any, Optional

from dewa.core.constants import (
    JobStatus, DEFAULT_TITLE, DEFAULT_UPLOADER, DEFAULT_DURATION,
)


@dataclass(frozen=True)
class PlatformProfile:
    name: str
    display_name: str
    directory: str
    prefix: str = ""
    domains: tuple[str, ...] = ()
    # Formatted with prefix/title/uploader; extension is appended separately
    filename_pattern: str = "{prefix}{title} - {uploader}"


@dataclass(frozen=True)
class ResolvedPlatform:
    """A profile together with the host it was resolved from."""
    profile: PlatformProfile
    domain: str
    url: str

    @property
    def name(self) -> str:
        return self.profile.name


@dataclass
class VideoMetadata:
    title: str = DEFAULT_TITLE
    uploader: str = DEFAULT_UPLOADER
    duration: str = DEFAULT_DURATION
    view_count: Optional[str] = None
    upload_date: Optional[str] = None
    url: str = ""

    @classmethod
    def defaults(cls, url: str) -> "VideoMetadata":
        return cls(url=url)

    @classmethod
    def from_dict(cls, data: dict | None, url: str = "") -> "VideoMetadata":
        data = data or {}
        return cls(
            title=data.get("title") or DEFAULT_TITLE,
            uploader=data.get("uploader") or DEFAULT_UPLOADER,
            duration=data.get("duration") or DEFAULT_DURATION,
            view_count=data.get("view_count"),
            upload_date=data.get("upload_date"),
            url=data.get("url") or url,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class JobRecord:
    id: str                          # dl_<epoch-ms>_<suffix>
    url: str
    title: Optional[str] = None
    platform: Optional[str] = None
    output_path: Optional[str] = None
    status: str = JobStatus.PENDING
    progress: Optional[float] = None
    started_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None
    failed_at: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    file_size: Optional[int] = None
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "JobRecord":
        """Build a record from a stored dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ProcessOutcome:
    """Terminal outcome of one supervised yt-dlp run."""
    success: bool
    error: Optional[str] = None
    error_code: Optional[str] = None
    exit_code: Optional[int] = None
    cancelled: bool = False


@dataclass
class CleanupResult:
    files_removed: int = 0
    bytes_freed: int = 0


@dataclass
class DownloadResult:
    """Tagged success/failure returned by the orchestrator."""
    success: bool
    status: str
    data: dict[str, Any] = field(default_factory=dict)
    error: Optional[dict[str, Any]] = None
    job_id: Optional[str] = None

    @classmethod
    def failure(cls, code: str, message: str, url: str,
                job_id: str | None = None) -> "DownloadResult":
        return cls(
            success=False,
            status=JobStatus.FAILED,
            error={"code": code, "message": message, "url": url},
            job_id=job_id,
        )

    def to_dict(self) -> dict:
        return asdict(self)
