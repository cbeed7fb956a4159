"""Error taxonomy for the LocalWork core."""

from __future__ import annotations


class LocalWorkError(Exception):
    """Base class for all errors raised by the core."""

    error_code = "LOCALWORK_ERROR"
    status_code = 500


class RegistryUnavailableError(LocalWorkError):
    """Raised when the model registry cannot be reached."""

    error_code = "REGISTRY_UNAVAILABLE"
    status_code = 503


class DownloadBusyError(LocalWorkError):
    """Raised when another model is already downloading."""

    error_code = "DOWNLOAD_BUSY"
    status_code = 409


class DownloadFailedError(LocalWorkError):
    """Raised when a download fails (network, disk, checksum)."""

    error_code = "DOWNLOAD_FAILED"
    status_code = 502


class DownloadCancelledError(LocalWorkError):
    """Raised to waiters of a download that was cancelled."""

    error_code = "DOWNLOAD_CANCELLED"
    status_code = 409


class LoadFailedError(LocalWorkError):
    """Raised when a model cannot be loaded into the engine."""

    error_code = "LOAD_FAILED"
    status_code = 422


class NoModelSelectedError(LocalWorkError):
    """Raised when a chat turn is attempted without a ready model."""

    error_code = "NO_MODEL_SELECTED"
    status_code = 409


class SessionBusyError(LocalWorkError):
    """Raised when a chat turn is already in flight."""

    error_code = "SESSION_BUSY"
    status_code = 409


class BackendError(LocalWorkError):
    """Catch-all for failures reported by (or reaching) the backend."""

    error_code = "BACKEND_ERROR"
    status_code = 502


class PermissionDeniedError(LocalWorkError):
    """Raised when a path is outside every granted folder."""

    error_code = "PERMISSION_DENIED"
    status_code = 403


class NotFoundError(LocalWorkError):
    """Raised when revoking or looking up an unknown id."""

    error_code = "NOT_FOUND"
    status_code = 404


class ModelNotFoundError(NotFoundError):
    """Raised when a model id is not in the registry snapshot."""

    error_code = "MODEL_NOT_FOUND"


class ToolExecutionError(LocalWorkError):
    """Raised when a permitted file operation fails on the filesystem."""

    error_code = "TOOL_EXECUTION_FAILED"
    status_code = 400
