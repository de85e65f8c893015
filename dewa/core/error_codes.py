"""
Standardised error handling for DEWA.
"""

from dewa.core.constants import ErrorCode


class JobError(Exception):
    """Raised when a job encounters a known error condition."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")


class _CodedJobError(JobError):
    """JobError whose code is fixed by the subclass."""

    code_value = ErrorCode.DOWNLOAD_FAILED

    def __init__(self, message: str):
        super().__init__(self.code_value, message)


class ValidationError(_CodedJobError):
    """Caller-supplied input is malformed."""
    code_value = ErrorCode.VALIDATION


class DirectoryCreateError(_CodedJobError):
    """The output directory could not be created."""
    code_value = ErrorCode.DIRECTORY_CREATE


class ProcessSpawnError(_CodedJobError):
    """The external tool is missing or not executable."""
    code_value = ErrorCode.PROCESS_SPAWN


class ProcessExitError(_CodedJobError):
    """The external tool exited with a non-zero code."""
    code_value = ErrorCode.PROCESS_EXIT

    def __init__(self, message: str, exit_code: int | None = None):
        self.exit_code = exit_code
        super().__init__(message)


class DownloadCancelledError(_CodedJobError):
    code_value = ErrorCode.DOWNLOAD_CANCELLED


class NotFoundError(_CodedJobError):
    """No ledger record with the given id."""
    code_value = ErrorCode.NOT_FOUND


class StorageError(_CodedJobError):
    """Ledger document unreadable or unwritable."""
    code_value = ErrorCode.STORAGE


class ToolInstallError(_CodedJobError):
    code_value = ErrorCode.TOOL_INSTALL


_ERRORS_BY_CODE = {
    cls.code_value: cls
    for cls in (ValidationError, DirectoryCreateError, ProcessSpawnError,
                ProcessExitError, DownloadCancelledError, NotFoundError,
                StorageError, ToolInstallError)
}


def error_for_code(code: str | None, message: str) -> JobError:
    """Build the most specific JobError for an error code."""
    cls = _ERRORS_BY_CODE.get(code or "")
    if cls is None:
        return JobError(code or ErrorCode.DOWNLOAD_FAILED, message)
    return cls(message)
