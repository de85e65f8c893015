"""
yt-dlp detection, installation and diagnostics.
"""

import logging
import os
import shutil
import stat
import subprocess
import sys
from pathlib import Path

import requests

from dewa.core.constants import (
    YT_DLP_RELEASE_URL, YT_DLP_COMMON_PATHS, DEFAULT_INSTALL_DIR,
)
from dewa.core.error_codes import ToolInstallError
from dewa.core.security_utils import run_subprocess_capture

logger = logging.getLogger(__name__)

_DOWNLOAD_CHUNK = 1024 * 256


def get_ytdlp_version(tool_path: str = "yt-dlp") -> str | None:
    """Return the yt-dlp version string, or None if it cannot be run."""
    try:
        result = run_subprocess_capture([tool_path, "--version"], timeout=10)
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def find_ytdlp(preferred: str | None = None) -> str | None:
    """
    Locate a working yt-dlp: the preferred path, then PATH, then the
    common install locations. Returns the path or None.
    """
    candidates = []
    if preferred:
        candidates.append(preferred)
    on_path = shutil.which("yt-dlp")
    if on_path:
        candidates.append(on_path)
    candidates.extend(YT_DLP_COMMON_PATHS)

    seen = set()
    for candidate in candidates:
        if candidate in seen:
            continue
        seen.add(candidate)
        resolved = candidate if os.path.isabs(candidate) else shutil.which(candidate)
        if not resolved or not os.path.exists(resolved):
            continue
        version = get_ytdlp_version(resolved)
        if version:
            logger.info("Found yt-dlp at %s (%s)", resolved, version)
            return resolved

    logger.warning("yt-dlp not found in common locations")
    return None


def install_ytdlp(install_dir: Path | None = None, timeout: int = 120) -> str:
    """
    Download the latest yt-dlp release binary into install_dir and mark
    it executable. Raises ToolInstallError on any failure.
    """
    install_dir = install_dir or DEFAULT_INSTALL_DIR
    url = YT_DLP_RELEASE_URL + (".exe" if sys.platform == "win32" else "")
    target = install_dir / ("yt-dlp.exe" if sys.platform == "win32" else "yt-dlp")
    partial = target.with_name(target.name + ".download")

    logger.info("Installing yt-dlp from %s to %s", url, target)
    try:
        install_dir.mkdir(parents=True, exist_ok=True)
        with requests.get(url, stream=True, timeout=timeout) as resp:
            resp.raise_for_status()
            with open(partial, 'wb') as f:
                for chunk in resp.iter_content(chunk_size=_DOWNLOAD_CHUNK):
                    if chunk:
                        f.write(chunk)
        os.replace(partial, target)
        mode = target.stat().st_mode
        target.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    except requests.exceptions.RequestException as e:
        partial.unlink(missing_ok=True)
        raise ToolInstallError(f"yt-dlp download failed: {e}") from e
    except OSError as e:
        partial.unlink(missing_ok=True)
        raise ToolInstallError(f"yt-dlp install failed: {e}") from e

    logger.info("yt-dlp installed at %s", target)
    return str(target)


def ensure_ytdlp(preferred: str | None = None, install_dir: Path | None = None) -> str:
    """Find yt-dlp, installing it if it is missing."""
    found = find_ytdlp(preferred)
    if found:
        return found

    logger.info("yt-dlp not found, attempting automatic installation...")
    installed = install_ytdlp(install_dir)
    if not get_ytdlp_version(installed):
        raise ToolInstallError(f"yt-dlp installed at {installed} but does not run")
    return installed


def update_ytdlp(tool_path: str) -> bool:
    """Self-update yt-dlp. Failure is logged and never fatal."""
    logger.info("Updating yt-dlp to latest version...")
    try:
        result = run_subprocess_capture([tool_path, "--update"], timeout=60)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("Failed to update yt-dlp: %s", e)
        return False
    if result.returncode != 0:
        logger.warning("Failed to update yt-dlp (rc=%s): %s",
                       result.returncode, (result.stderr or "")[:300])
        return False
    logger.info("yt-dlp updated successfully")
    return True


def get_diagnostics(config) -> dict:
    """Gather tool and configuration diagnostics."""
    tool = config.yt_dlp_path
    return {
        "ytdlp_path": tool,
        "ytdlp_version": get_ytdlp_version(tool) or "Not installed",
        "download_path": config.download_path,
        "history_file": str(config.history_file),
        "problems": config.check(),
    }
