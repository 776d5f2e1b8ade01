"""Error taxonomy — operational vs programmer failures, and the handler that
decides what to do with each."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    OPERATIONAL = "operational"
    PROGRAMMER = "programmer"


class ErrorCode(str, Enum):
    NETWORK_ERROR = "NETWORK_ERROR"
    BLOCKCHAIN_ERROR = "BLOCKCHAIN_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    FILE_SYSTEM_ERROR = "FILE_SYSTEM_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PACKAGE_NOT_FOUND = "PACKAGE_NOT_FOUND"
    INVALID_PACKAGE = "INVALID_PACKAGE"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"


class MovrError(Exception):
    """Base class for every failure movr knows how to classify."""

    code = ErrorCode.INVARIANT_VIOLATION
    kind = ErrorKind.OPERATIONAL
    status = 500

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    @property
    def is_operational(self) -> bool:
        return self.kind == ErrorKind.OPERATIONAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "kind": self.kind.value,
            "status": self.status,
            "message": self.message,
            "context": self.context,
        }


class NetworkError(MovrError):
    code = ErrorCode.NETWORK_ERROR
    status = 503


class BlockchainError(MovrError):
    """Ledger unreachable or its response could not be understood."""
    code = ErrorCode.BLOCKCHAIN_ERROR
    status = 502


class StorageError(MovrError):
    code = ErrorCode.STORAGE_ERROR
    status = 503


class ConfigError(MovrError):
    code = ErrorCode.CONFIG_ERROR
    status = 400


class FileSystemError(MovrError):
    code = ErrorCode.FILE_SYSTEM_ERROR
    status = 500


class ValidationError(MovrError):
    code = ErrorCode.VALIDATION_ERROR
    status = 400


class PackageNotFoundError(MovrError):
    code = ErrorCode.PACKAGE_NOT_FOUND
    status = 404

    def __init__(self, package_name: str, context: Optional[dict[str, Any]] = None):
        super().__init__(
            f"Package '{package_name}' not found",
            {"package_name": package_name, **(context or {})},
        )


class InvalidPackageError(MovrError):
    code = ErrorCode.INVALID_PACKAGE
    status = 400


class InvariantError(MovrError):
    """A bug: some internal guarantee did not hold."""
    code = ErrorCode.INVARIANT_VIOLATION
    kind = ErrorKind.PROGRAMMER
    status = 500


class ErrorHandler:
    """Logs a failure and decides whether the caller may carry on.

    Used explicitly at each entry point (CLI command, API route); nothing is
    installed process-wide.
    """

    def is_trusted(self, error: BaseException) -> bool:
        return isinstance(error, MovrError) and error.is_operational

    def handle(self, error: BaseException) -> int:
        """Log *error* and return the exit code the entry point should use."""
        if isinstance(error, MovrError):
            logger.error(
                "%s (%s, %s) context=%s",
                error.message, error.code.value, error.kind.value, error.context,
            )
        else:
            logger.error("Unexpected error: %r", error, exc_info=error)
        return 1


error_handler = ErrorHandler()
