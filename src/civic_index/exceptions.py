"""Custom exceptions for the civic record index.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Per-file and per-record failures are
not raised through this hierarchy during batch work; they are collected as
``ScanWarning`` / ``RecordWriteFailure`` values instead.
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Record format errors (1xxx)
    MALFORMED_FRONT_MATTER = 1001
    MISSING_REQUIRED_FIELD = 1002
    INVALID_RECORD = 1003

    # Record store errors (2xxx)
    RECORD_STORE_NOT_FOUND = 2001
    RECORD_STORE_UNREADABLE = 2002

    # Index errors (3xxx)
    INDEX_CORRUPTED = 3001
    INDEX_WRITE_FAILED = 3002

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002

    # Sync errors (5xxx)
    INVALID_CONFLICT_STRATEGY = 5001

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001


class CivicIndexError(Exception):
    """Base exception for all civic-index errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class MalformedFrontMatterError(CivicIndexError):
    """Raised when a record's front matter is absent, unparsable or incomplete."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        missing_fields: Optional[List[str]] = None,
        code: ErrorCode = ErrorCode.MALFORMED_FRONT_MATTER
    ):
        details: Dict[str, Any] = {}
        if path:
            details["path"] = path
        if missing_fields:
            details["missing_fields"] = list(missing_fields)
            if code is ErrorCode.MALFORMED_FRONT_MATTER:
                code = ErrorCode.MISSING_REQUIRED_FIELD

        super().__init__(message, code=code, details=details)
        self.path = path
        self.missing_fields: List[str] = list(missing_fields) if missing_fields else []


class RecordStoreError(CivicIndexError):
    """Raised when the record-store root cannot be scanned at all."""

    def __init__(
        self,
        message: str,
        root: Optional[str] = None,
        code: ErrorCode = ErrorCode.RECORD_STORE_NOT_FOUND,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if root:
            details["root"] = root
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.root = root
        self.original_error = original_error


class CorruptIndexError(CivicIndexError):
    """Raised when an index artifact exists but cannot be decoded.

    Only the ``load`` call fails; regenerating a fresh index is unaffected.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if path:
            details["path"] = path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=ErrorCode.INDEX_CORRUPTED, details=details)
        self.path = path
        self.original_error = original_error


class InvalidConflictStrategyError(CivicIndexError):
    """Raised when an unknown conflict-resolution strategy is requested."""

    def __init__(self, value: Any, allowed: Optional[List[str]] = None):
        details: Dict[str, Any] = {"value": str(value)[:100]}
        if allowed:
            details["allowed"] = list(allowed)
        super().__init__(
            f"Unknown conflict resolution strategy '{value}'",
            code=ErrorCode.INVALID_CONFLICT_STRATEGY,
            details=details,
        )
        self.value = value


class StorageError(CivicIndexError):
    """Raised for storage/persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        record_id: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages
            details["path_hint"] = path.split("/")[-1] if "/" in path else path
        if record_id:
            details["record_id"] = record_id
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.record_id = record_id
        self.original_error = original_error


class ConfigurationError(CivicIndexError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key
