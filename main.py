#!/usr/bin/env python3
"""
DEWA (Download Everything With AI) v1.0.0: command-line entry point.
"""

import sys
import os
import json
import logging
import argparse
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from datetime import datetime

# ── Ensure common tool paths are in PATH ─────────────────────────────
# Non-login shells and service managers often miss Homebrew and
# ~/.local/bin, where yt-dlp is usually installed.
EXTRA_TOOL_PATHS = [
    "/opt/homebrew/bin",          # Apple Silicon default
    "/usr/local/bin",             # Intel Mac / manual installs
    "/home/linuxbrew/.linuxbrew/bin",
    os.path.expanduser("~/.local/bin"),
]

current_path = os.environ.get("PATH", "")
for p in EXTRA_TOOL_PATHS:
    if os.path.isdir(p) and p not in current_path.split(os.pathsep):
        current_path = p + os.pathsep + current_path
os.environ["PATH"] = current_path

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dewa.core.constants import APP_NAME, APP_VERSION, LOG_DIR, QUALITY_CHOICES, JobStatus
from dewa.core.config import AppConfig
from dewa.core.error_codes import JobError
from dewa.core.ledger import JobLedger
from dewa.core.orchestrator import DownloadOrchestrator
from dewa.core.cleanup import cleanup_temporary_files
from dewa.core.paths import format_file_size, get_file_info, get_directory_stats
from dewa.core.tooling import get_diagnostics, ensure_ytdlp, get_ytdlp_version, update_ytdlp
from dewa.core.validators import validate_download_request, parse_input_file

logger = logging.getLogger(APP_NAME)


def setup_logging(level: str = "INFO", log_dir: Path = LOG_DIR):
    """Log to <log_dir>/dewa.log and stderr."""
    handlers = [logging.StreamHandler(sys.stderr)]
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "dewa.log", encoding="utf-8"))
    except OSError as e:
        print(f"Warning: file logging disabled ({e})", file=sys.stderr)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def check_prerequisites(config: AppConfig) -> bool:
    """Check that yt-dlp can be run; log where it was found."""
    version = get_ytdlp_version(config.yt_dlp_path)
    if not version:
        logger.error("yt-dlp not runnable at %r. PATH = %s",
                     config.yt_dlp_path, os.environ.get("PATH", ""))
        print(f"yt-dlp not found at {config.yt_dlp_path!r}. "
              f"Run '{APP_NAME} install-tool' or set YT_DLP_PATH.", file=sys.stderr)
        return False
    logger.info("yt-dlp %s found at: %s", version, config.yt_dlp_path)
    return True


def build_orchestrator(config: AppConfig) -> DownloadOrchestrator:
    ledger = JobLedger(config.history_file)
    return DownloadOrchestrator(ledger, config)


# ── Subcommands ───────────────────────────────────────────────────────

def _print_result(result) -> int:
    if result.success:
        data = result.data
        label = "Already downloaded" if result.status == JobStatus.ALREADY_EXISTS else "Downloaded"
        print(f"{label}: {data['title']}")
        print(f"  platform: {data['platform']}")
        print(f"  file:     {data['file_path']} ({data['file_size_formatted']})")
        return 0
    print(f"Download failed [{result.error['code']}]: {result.error['message']}", file=sys.stderr)
    return 1


def cmd_download(orchestrator: DownloadOrchestrator, args) -> int:
    quality = args.quality or orchestrator.config.default_quality
    try:
        url = validate_download_request(args.url, quality, args.dir, args.filename)
    except JobError as e:
        print(e.message, file=sys.stderr)
        return 2

    # Ctrl-C propagates; the orchestrator stops yt-dlp and marks the job failed
    result = orchestrator.submit_download(url, quality, args.dir, args.filename)
    return _print_result(result)


def cmd_batch(orchestrator: DownloadOrchestrator, args) -> int:
    urls = parse_input_file(args.file)
    if not urls:
        print(f"No URLs found in {args.file}", file=sys.stderr)
        return 1

    quality = args.quality or orchestrator.config.default_quality
    workers = args.workers or orchestrator.config.max_parallel_downloads
    logger.info("Batch download: %d URLs, %d workers", len(urls), workers)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(lambda u: orchestrator.submit_download(u, quality), urls))

    failures = sum(_print_result(r) for r in results)
    print(f"{len(results) - failures}/{len(results)} succeeded")
    return 1 if failures else 0


def cmd_list(orchestrator: DownloadOrchestrator, args) -> int:
    records = orchestrator.list_jobs(
        status=args.status, platform=args.platform,
        sort_by=args.sort_by, sort_order=args.order, limit=args.limit,
    )
    if args.json:
        print(json.dumps([r.to_dict() for r in records], indent=2, ensure_ascii=False))
        return 0
    if not records:
        print("No download records.")
        return 0
    for r in records:
        line = f"{r.id}  {r.status:<11}  {r.platform or '-':<12}  {r.title or '-'}"
        if r.status == JobStatus.IN_PROGRESS and r.progress is not None:
            line += f"  ({r.progress:.1f}%)"
        elif r.status == JobStatus.COMPLETED and r.file_size:
            line += f"  [{format_file_size(r.file_size)}]"
        elif r.status == JobStatus.FAILED:
            line += f"  ! {r.error_message}"
        print(line)
    return 0


def cmd_active(orchestrator: DownloadOrchestrator, args) -> int:
    args.status = JobStatus.IN_PROGRESS
    args.platform = 'all'
    args.sort_by = None
    args.order = 'desc'
    args.limit = None
    return cmd_list(orchestrator, args)


def cmd_show(orchestrator: DownloadOrchestrator, args) -> int:
    record = orchestrator.ledger.get(args.job_id)
    if record is None:
        print(f"Download record not found: {args.job_id}", file=sys.stderr)
        return 1
    details = record.to_dict()
    if record.output_path:
        details["file"] = get_file_info(Path(record.output_path))
    print(json.dumps(details, indent=2, ensure_ascii=False))
    return 0


def cmd_remove(orchestrator: DownloadOrchestrator, args) -> int:
    try:
        orchestrator.ledger.remove(args.job_id)
    except JobError as e:
        print(e.message, file=sys.stderr)
        return 1
    print(f"Removed {args.job_id}")
    return 0


def cmd_prune(orchestrator: DownloadOrchestrator, args) -> int:
    removed = orchestrator.prune_history(args.days)
    print(f"Removed {removed} old records")
    return 0


def _platform_dirs(download_root: Path) -> list[Path]:
    if not download_root.is_dir():
        return []
    return [download_root] + sorted(p for p in download_root.iterdir() if p.is_dir())


def cmd_cleanup(orchestrator: DownloadOrchestrator, args) -> int:
    root = Path(args.dir or orchestrator.config.download_path).expanduser()
    files = freed = 0
    for directory in _platform_dirs(root):
        result = cleanup_temporary_files(directory)
        files += result.files_removed
        freed += result.bytes_freed
    print(f"Removed {files} temporary files ({format_file_size(freed)})")
    return 0


def cmd_doctor(orchestrator: DownloadOrchestrator, args) -> int:
    diagnostics = get_diagnostics(orchestrator.config)
    root = Path(orchestrator.config.download_path).expanduser()
    diagnostics["directories"] = [get_directory_stats(d) for d in _platform_dirs(root)]
    print(json.dumps(diagnostics, indent=2))
    return 1 if diagnostics["problems"] else 0


def cmd_install_tool(orchestrator: DownloadOrchestrator, args) -> int:
    if args.update:
        return 0 if update_ytdlp(orchestrator.config.yt_dlp_path) else 1
    try:
        path = ensure_ytdlp(orchestrator.config.yt_dlp_path,
                            Path(args.install_dir) if args.install_dir else None)
    except JobError as e:
        print(e.message, file=sys.stderr)
        return 1
    print(f"yt-dlp available at {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APP_NAME, description="Download videos with yt-dlp and track every job.")
    parser.add_argument("--config", help="Path to config.json")
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {APP_VERSION}")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("download", help="Download one URL")
    p.add_argument("url")
    p.add_argument("--quality", choices=QUALITY_CHOICES)
    p.add_argument("--dir", help="Custom output directory")
    p.add_argument("--filename", help="Custom output filename")
    p.set_defaults(func=cmd_download, needs_tool=True)

    p = sub.add_parser("batch", help="Download every URL in a .txt or .csv file")
    p.add_argument("file")
    p.add_argument("--quality", choices=QUALITY_CHOICES)
    p.add_argument("--workers", type=int)
    p.set_defaults(func=cmd_batch, needs_tool=True)

    p = sub.add_parser("list", help="Show download history")
    p.add_argument("--status", default="all",
                   choices=["all", "pending", "in_progress", "completed", "failed"])
    p.add_argument("--platform", default="all")
    p.add_argument("--sort-by", default="date")
    p.add_argument("--order", default="desc", choices=["asc", "desc"])
    p.add_argument("--limit", type=int, default=20)
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("active", help="Show downloads in progress")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_active)

    p = sub.add_parser("show", help="Show one download record")
    p.add_argument("job_id")
    p.set_defaults(func=cmd_show)

    p = sub.add_parser("remove", help="Delete a download record")
    p.add_argument("job_id")
    p.set_defaults(func=cmd_remove)

    p = sub.add_parser("prune", help="Delete old download records")
    p.add_argument("--days", type=int)
    p.set_defaults(func=cmd_prune)

    p = sub.add_parser("cleanup", help="Delete leftover yt-dlp temporary files")
    p.add_argument("--dir", help="Directory to sweep (default: download path)")
    p.set_defaults(func=cmd_cleanup)

    p = sub.add_parser("doctor", help="Show tool and config diagnostics")
    p.set_defaults(func=cmd_doctor)

    p = sub.add_parser("install-tool", help="Find or install yt-dlp")
    p.add_argument("--install-dir")
    p.add_argument("--update", action="store_true", help="Self-update the configured yt-dlp")
    p.set_defaults(func=cmd_install_tool)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = AppConfig(Path(args.config) if args.config else None)
    setup_logging(config.log_level)

    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Config: %s", config.summary())

    orchestrator = build_orchestrator(config)
    orchestrator.recover_interrupted_jobs()

    if getattr(args, "needs_tool", False) and not check_prerequisites(config):
        return 1

    return args.func(orchestrator, args)


if __name__ == "__main__":
    sys.exit(main())
