"""
Video download via yt-dlp, supervised as a child process.

stdout is read line by line on the calling thread and turned into progress
callbacks; stderr is drained on a daemon thread for diagnostics only. The
exit code alone decides success. There is deliberately no download timeout:
yt-dlp's own retry flags bound the run so interrupted downloads can resume.
"""

import logging
import re
import subprocess
import threading
from pathlib import Path
from typing import Callable, Optional

from dewa.core.constants import (
    ErrorCode, DEFAULT_YT_DLP_PATH, DEFAULT_MAX_RETRIES,
    DEFAULT_FRAGMENT_RETRIES, DEFAULT_CONCURRENT_FRAGMENTS,
    DEFAULT_THROTTLED_RATE, TERMINATE_GRACE_SEC,
)
from dewa.core.cleanup import cleanup_fragments
from dewa.core.models import ProcessOutcome, CleanupResult
from dewa.core.security_utils import spawn_process

logger = logging.getLogger(__name__)

PROGRESS_RE = re.compile(r'\[download\]\s+(\d+(?:\.\d+)?)%')

ProgressCallback = Callable[[float], None]


class ProgressTracker:
    """Extracts download percentages and suppresses repeated values."""

    def __init__(self):
        self._last: Optional[str] = None

    def feed(self, line: str) -> Optional[float]:
        """Return the percentage in line if it differs from the last one seen."""
        match = PROGRESS_RE.search(line)
        if not match:
            return None
        raw = match.group(1)
        if raw == self._last:
            return None
        self._last = raw
        return float(raw)


class ProcessSupervisor:
    """
    Owns one yt-dlp download process: spawn, progress, exit code,
    fragment cleanup and cancellation. Use one instance per job.
    """

    def __init__(self, tool_path: str = DEFAULT_YT_DLP_PATH,
                 max_retries: int = DEFAULT_MAX_RETRIES,
                 fragment_retries: int = DEFAULT_FRAGMENT_RETRIES,
                 concurrent_fragments: int = DEFAULT_CONCURRENT_FRAGMENTS,
                 throttled_rate: str = DEFAULT_THROTTLED_RATE,
                 cleaner: Callable[[Path], CleanupResult] = cleanup_fragments,
                 auto_cleanup: bool = True):
        self.tool_path = tool_path
        self.max_retries = max_retries
        self.fragment_retries = fragment_retries
        self.concurrent_fragments = concurrent_fragments
        self.throttled_rate = throttled_rate
        self.cleaner = cleaner
        self.auto_cleanup = auto_cleanup

        self._lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None
        self._cancelled = threading.Event()

    @classmethod
    def from_config(cls, config, **overrides) -> "ProcessSupervisor":
        kwargs = dict(
            tool_path=config.yt_dlp_path,
            max_retries=config.max_retries,
            fragment_retries=config.fragment_retries,
            concurrent_fragments=config.concurrent_fragments,
            throttled_rate=config.throttled_rate,
            auto_cleanup=config.auto_cleanup,
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    # ── Command line ──────────────────────────────────────────────────

    def build_args(self, url: str, output_path: Path, format_selector: str) -> list[str]:
        return [
            self.tool_path,
            "--continue",
            "--keep-fragments",
            "--no-warnings",
            "--newline",
            "--concurrent-fragments", str(self.concurrent_fragments),
            "--retries", str(self.max_retries),
            "--fragment-retries", str(self.fragment_retries),
            "--throttled-rate", str(self.throttled_rate),
            "--format", format_selector,
            "--output", str(output_path),
            url,
        ]

    # ── Cancellation ──────────────────────────────────────────────────

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self):
        """Kill the running child (if any) and mark this run cancelled."""
        self._cancelled.set()
        with self._lock:
            proc = self._process
        if proc is not None:
            self._terminate(proc)

    @staticmethod
    def _terminate(proc: subprocess.Popen):
        """SIGTERM the child, then kill it if it outlives the grace period."""
        if proc.poll() is not None:
            return
        logger.info("Terminating yt-dlp (pid %s)", proc.pid)
        proc.terminate()
        try:
            proc.wait(timeout=TERMINATE_GRACE_SEC)
        except subprocess.TimeoutExpired:
            logger.warning("yt-dlp ignored SIGTERM, killing pid %s", proc.pid)
            proc.kill()

    def _watch_cancel(self, cancel_event: threading.Event, proc: subprocess.Popen):
        while proc.poll() is None:
            if cancel_event.wait(0.25):
                self.cancel()
                return

    # ── Stream handling ───────────────────────────────────────────────

    @staticmethod
    def _drain_stderr(stream):
        try:
            for line in stream:
                line = line.rstrip()
                if line:
                    logger.warning("yt-dlp stderr: %s", line)
        except (OSError, ValueError):
            # stream closed underneath us after kill
            pass

    @staticmethod
    def _emit_progress(on_progress: Optional[ProgressCallback], percent: float):
        logger.info("Download progress: %.1f%%", percent)
        if on_progress is None:
            return
        try:
            on_progress(percent)
        except Exception as e:
            logger.warning("Failed to update progress: %s", e)

    def _run_cleaner(self, output_path: Path):
        try:
            self.cleaner(output_path)
        except Exception as e:
            logger.warning("Fragment cleanup failed for %s: %s", output_path, e)

    # ── Run ───────────────────────────────────────────────────────────

    def _cancelled_outcome(self, exit_code: int | None = None) -> ProcessOutcome:
        return ProcessOutcome(
            success=False,
            error="Download cancelled",
            error_code=ErrorCode.DOWNLOAD_CANCELLED,
            exit_code=exit_code,
            cancelled=True,
        )

    def run(self, url: str, output_path: Path | str, format_selector: str,
            on_progress: Optional[ProgressCallback] = None,
            cancel_event: Optional[threading.Event] = None) -> ProcessOutcome:
        """
        Download url to output_path and block until yt-dlp exits.
        Never raises for process failures; the outcome says what happened.
        """
        output_path = Path(output_path)
        args = self.build_args(url, output_path, format_selector)

        if self.cancelled or (cancel_event is not None and cancel_event.is_set()):
            return self._cancelled_outcome()

        logger.info("Executing yt-dlp: %s", ' '.join(args))
        try:
            proc = spawn_process(args)
        except OSError as e:
            logger.error("Process error: %s", e)
            return ProcessOutcome(
                success=False,
                error=f"Process error: {e}",
                error_code=ErrorCode.PROCESS_SPAWN,
            )

        with self._lock:
            self._process = proc
            cancelled_early = self._cancelled.is_set()
        if cancelled_early:
            # cancel() ran before the process was published
            self._terminate(proc)
            proc.stdout.close()
            proc.stderr.close()
            with self._lock:
                self._process = None
            logger.info("Download cancelled: %s", url)
            return self._cancelled_outcome(proc.returncode)

        stderr_thread = threading.Thread(
            target=self._drain_stderr, args=(proc.stderr,), daemon=True,
        )
        stderr_thread.start()
        if cancel_event is not None:
            threading.Thread(
                target=self._watch_cancel, args=(cancel_event, proc), daemon=True,
            ).start()

        tracker = ProgressTracker()
        try:
            for line in proc.stdout:
                percent = tracker.feed(line)
                if percent is not None:
                    self._emit_progress(on_progress, percent)
            exit_code = proc.wait()
        except BaseException:
            # Ctrl-C in the reading thread must not orphan the child
            self._terminate(proc)
            raise
        finally:
            proc.stdout.close()
            stderr_thread.join(timeout=5)
            with self._lock:
                self._process = None

        if exit_code == 0:
            logger.info("Download completed successfully: %s", output_path)
            if self.auto_cleanup:
                self._run_cleaner(output_path)
            return ProcessOutcome(success=True, exit_code=0)

        if self.cancelled:
            logger.info("Download cancelled: %s", url)
            return self._cancelled_outcome(exit_code)

        logger.error("Download failed with exit code: %s", exit_code)
        return ProcessOutcome(
            success=False,
            error=f"Download process failed with exit code: {exit_code}",
            error_code=ErrorCode.PROCESS_EXIT,
            exit_code=exit_code,
        )
