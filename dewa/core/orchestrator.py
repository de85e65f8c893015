"""
Download orchestrator.
Sequences one job: resolve platform → fetch metadata → build path →
skip if already on disk → record → download → record outcome.
"""

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from dewa.core.config import AppConfig
from dewa.core.constants import JobStatus, JobStage, ErrorCode
from dewa.core.error_codes import JobError, error_for_code
from dewa.core.ledger import JobLedger
from dewa.core.models import DownloadResult, JobRecord, VideoMetadata
from dewa.core.paths import build_output_path, get_file_size, format_file_size
from dewa.core.platforms import resolve, quality_selector
from dewa.core.supervisor import ProcessSupervisor
from dewa.core.video_info import fetch_video_info

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Interrupted: no live download process for this job"
INTERRUPTED_BY_USER = "Download interrupted"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DownloadOrchestrator:
    """
    Runs download jobs and owns every JobRecord status transition.
    Safe to call from several threads at once; the ledger serializes writes.
    """

    def __init__(self, ledger: JobLedger, config: AppConfig,
                 supervisor_factory: Callable[[], ProcessSupervisor] | None = None,
                 metadata_fetcher: Callable[[str], VideoMetadata] | None = None):
        self.ledger = ledger
        self.config = config
        self._supervisor_factory = supervisor_factory or (
            lambda: ProcessSupervisor.from_config(self.config)
        )
        self._metadata_fetcher = metadata_fetcher or self._fetch_metadata

        self._lock = threading.Lock()
        self._supervisors: dict[str, ProcessSupervisor] = {}
        self._active_paths: set[Path] = set()

        # Callbacks
        self.on_job_updated: Optional[Callable[[JobRecord], None]] = None

    # ── Queries ───────────────────────────────────────────────────────

    def list_jobs(self, **filters) -> list[JobRecord]:
        return self.ledger.list(**filters)

    def get_active_jobs(self) -> list[JobRecord]:
        return self.ledger.list_active()

    # ── Job control ───────────────────────────────────────────────────

    def cancel(self, job_id: str) -> bool:
        """Cancel a running job. Returns False if it has no live process."""
        with self._lock:
            supervisor = self._supervisors.get(job_id)
        if supervisor is None:
            return False
        logger.info("Cancelling job %s", job_id)
        supervisor.cancel()
        return True

    def recover_interrupted_jobs(self) -> int:
        """
        Mark in_progress records that have no live process in this
        orchestrator as failed. Returns the number of records fixed.
        """
        with self._lock:
            live = set(self._supervisors)

        count = 0
        for record in self.ledger.list_active():
            if record.id in live:
                continue
            self._record_failure(record.id, ErrorCode.DOWNLOAD_FAILED, INTERRUPTED_MESSAGE)
            count += 1

        if count:
            logger.warning("Marked %d interrupted downloads as failed", count)
        return count

    def prune_history(self, days: int | None = None) -> int:
        return self.ledger.prune_older_than(days or self.config.history_retention_days)

    # ── Submission ────────────────────────────────────────────────────

    def submit_download(self, url: str, quality: str | None = None,
                        custom_directory: str | None = None,
                        custom_filename: str | None = None,
                        metadata: dict | None = None,
                        cancel_event: threading.Event | None = None) -> DownloadResult:
        """
        Download one URL. Returns a DownloadResult for every error; only
        KeyboardInterrupt and SystemExit propagate, after the job is recorded.
        An existing output file short-circuits with status already_exists
        and creates no job record.
        """
        quality = quality or self.config.default_quality
        started_at = _now()
        logger.info("Starting video download: url=%s quality=%s", url, quality)

        # ── Pre-recording stages: failures leave no ledger entry ──
        try:
            stage = JobStage.RESOLVING
            platform = resolve(url)
            logger.info("Platform detected: %s (%s)", platform.name, platform.domain)

            stage = JobStage.FETCHING_METADATA
            info = self._resolve_metadata(url, metadata)

            stage = JobStage.BUILDING_PATH
            output_path = build_output_path(
                info, platform.profile, self.config.download_path,
                custom_directory, custom_filename,
            )
            logger.info("Output path determined: %s", output_path)
        except JobError as e:
            logger.error("Download failed during %s: %s", stage, e.message)
            return DownloadResult.failure(e.code, e.message, url)
        except Exception as e:
            logger.error("Unexpected error during %s: %s", stage, e, exc_info=True)
            return DownloadResult.failure(ErrorCode.DOWNLOAD_FAILED, str(e), url)

        # ── Duplicate checks (disk, then in-flight) under one lock ──
        with self._lock:
            if output_path.exists():
                logger.info("File already exists, skipping download: %s", output_path)
                return DownloadResult(
                    success=True,
                    status=JobStatus.ALREADY_EXISTS,
                    data=self._result_data(info, platform.name, output_path,
                                           started_at, JobStatus.ALREADY_EXISTS),
                )
            if output_path in self._active_paths:
                message = f"A download to {output_path} is already running"
                logger.warning(message)
                return DownloadResult.failure(ErrorCode.ALREADY_RUNNING, message, url)
            self._active_paths.add(output_path)

        try:
            return self._record_and_download(url, quality, platform.name, info,
                                             output_path, started_at, cancel_event)
        finally:
            with self._lock:
                self._active_paths.discard(output_path)

    def _record_and_download(self, url: str, quality: str, platform_name: str,
                             info: VideoMetadata, output_path: Path,
                             started_at: str,
                             cancel_event: threading.Event | None) -> DownloadResult:
        stage = JobStage.RECORDING
        try:
            job_id = self.ledger.create({
                'url': url,
                'title': info.title,
                'platform': platform_name,
                'output_path': str(output_path),
                'status': JobStatus.IN_PROGRESS,
                'progress': 0.0,
                'started_at': started_at,
                'metadata': info.to_dict(),
            })
        except JobError as e:
            logger.error("Download failed during %s: %s", stage, e.message)
            return DownloadResult.failure(e.code, e.message, url)
        self._notify_job_updated(job_id)

        # From here every failure, interrupts included, ends in a failed record
        stage = JobStage.DOWNLOADING
        supervisor = None
        try:
            supervisor = self._supervisor_factory()
            with self._lock:
                self._supervisors[job_id] = supervisor

            selector = quality_selector(platform_name, quality)
            outcome = supervisor.run(
                url, output_path, selector,
                on_progress=lambda pct: self._update_progress(job_id, pct),
                cancel_event=cancel_event,
            )
            if not outcome.success:
                raise error_for_code(outcome.error_code, outcome.error or "Download failed")

            stage = JobStage.COMPLETED
            file_size = get_file_size(output_path)
            self.ledger.update(job_id, JobStatus.COMPLETED,
                               completed_at=_now(),
                               file_size=file_size,
                               output_path=str(output_path),
                               progress=100.0)
            self._notify_job_updated(job_id)

            return DownloadResult(
                success=True,
                status=JobStatus.COMPLETED,
                data=self._result_data(info, platform_name, output_path,
                                       started_at, JobStatus.COMPLETED),
                job_id=job_id,
            )
        except JobError as e:
            logger.error("Download failed during %s: url=%s error=%s", stage, url, e.message)
            return self._fail_job(job_id, url, e.code, e.message)
        except Exception as e:
            logger.error("Unexpected error during %s for job %s: %s",
                         stage, job_id, e, exc_info=True)
            return self._fail_job(job_id, url, ErrorCode.DOWNLOAD_FAILED, str(e))
        except BaseException:
            # Ctrl-C or SystemExit: the child is stopped and the job recorded first
            logger.warning("Download interrupted during %s: job %s", stage, job_id)
            if supervisor is not None:
                supervisor.cancel()
            self._record_failure(job_id, ErrorCode.DOWNLOAD_CANCELLED, INTERRUPTED_BY_USER)
            raise
        finally:
            with self._lock:
                self._supervisors.pop(job_id, None)

    # ── Helpers ───────────────────────────────────────────────────────

    def _fetch_metadata(self, url: str) -> VideoMetadata:
        return fetch_video_info(url, self.config.yt_dlp_path,
                                timeout=self.config.metadata_timeout_sec)

    def _resolve_metadata(self, url: str, metadata: dict | None) -> VideoMetadata:
        """Use caller metadata when it has title and uploader, else fetch."""
        if metadata and metadata.get('title') and metadata.get('uploader'):
            return VideoMetadata.from_dict(metadata, url)
        info = self._metadata_fetcher(url)
        logger.info("Video info obtained: %r", info.title)
        return info

    def _update_progress(self, job_id: str, percent: float):
        # Errors propagate to the supervisor, which logs and ignores them
        self.ledger.update(job_id, JobStatus.IN_PROGRESS, progress=percent)
        self._notify_job_updated(job_id)

    def _record_failure(self, job_id: str, code: str, message: str):
        try:
            self.ledger.update(job_id, JobStatus.FAILED,
                               failed_at=_now(),
                               error_code=code,
                               error_message=message[:2000])
        except JobError as e:
            logger.error("Failed to record failure for job %s: %s", job_id, e.message)
            return
        self._notify_job_updated(job_id)

    def _fail_job(self, job_id: str, url: str, code: str, message: str) -> DownloadResult:
        self._record_failure(job_id, code, message)
        return DownloadResult.failure(code, message, url, job_id)

    def _notify_job_updated(self, job_id: str):
        """Notify listeners of a job update."""
        if not self.on_job_updated:
            return
        record = self.ledger.get(job_id)
        if record is None:
            return
        try:
            self.on_job_updated(record)
        except Exception as e:
            logger.warning("on_job_updated callback failed for %s: %s", job_id, e)

    @staticmethod
    def _result_data(info: VideoMetadata, platform_name: str, output_path: Path,
                     started_at: str, status: str) -> dict:
        file_size = get_file_size(output_path)
        return {
            'title': info.title,
            'file_path': str(output_path),
            'platform': platform_name,
            'file_size': file_size,
            'file_size_formatted': format_file_size(file_size),
            'download_time': started_at,
            'metadata': info.to_dict(),
            'status': status,
        }
