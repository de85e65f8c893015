"""
Safe subprocess execution for DEWA.
Argument arrays only; shell=True is never allowed.
"""

import subprocess
import logging

logger = logging.getLogger(__name__)


def _check_args(args) -> None:
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")


def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess using argument arrays only.
    shell=True is explicitly forbidden.
    """
    _check_args(args)

    # Force shell=False: remove any caller-supplied value, then set it once
    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(args, shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: float = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run subprocess and capture stdout/stderr."""
    return run_subprocess(
        args,
        capture_output=True,
        text=True,
        timeout=timeout,
        **kwargs,
    )


def spawn_process(args: list[str], **kwargs) -> subprocess.Popen:
    """
    Start a long-running subprocess with piped, line-buffered text output.
    The caller owns the returned Popen and must wait on it.
    """
    _check_args(args)
    kwargs.pop('shell', None)

    logger.debug("Spawning subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.Popen(
        args,
        shell=False,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding='utf-8',
        errors='replace',
        bufsize=1,
        **kwargs,
    )
