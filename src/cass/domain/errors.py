from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    IO_FAILURE = "io_failure"
    CONFIGURATION_MISSING = "configuration_missing"
    TIMEOUT = "timeout"
    CANCELED = "canceled"
    INVALID_CREDENTIALS = "invalid_credentials"
    UNKNOWN = "unknown"


class ProcessingError(Exception):
    """Base class for failures raised before the request reaches the backend."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class IOFailure(ProcessingError):
    kind = ErrorKind.IO_FAILURE

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class ConfigurationMissing(ProcessingError):
    kind = ErrorKind.CONFIGURATION_MISSING
