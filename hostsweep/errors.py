"""Module errors: structured error taxonomy for hostsweep."""
#
# PURPOSE:
# Gives every failure the sweep can hit a stable code, so log lines and the
# CLI's stderr output are searchable and consistent.
#
# TWO KINDS OF FAILURE:
# - Fatal preconditions (CONFIG_FILE_NOT_FOUND, LOCK_BUSY, PRIVILEGE_REQUIRED)
#   are raised as SweepError subclasses and end the run with exit code 1
#   before any report directory is created.
# - Everything else (task failures, artifact gaps, archive and notification
#   failures) is absorbed, logged with its code, and shows up as degraded
#   data in the summary.
#
# ERROR CODE FORMAT:
# - CONFIG_XXX: Configuration errors
# - LOCK_XXX: Single-instance lock errors
# - TASK_XXX: Collection task outcomes
# - REPORT_XXX: Report store errors
# - NOTIFY_XXX: Notification delivery errors
# - SYSTEM_XXX: Everything else
#
# USAGE:
#   from hostsweep.errors import SweepError, ErrorCode
#
#   raise SweepError(
#       ErrorCode.LOCK_BUSY,
#       "Another instance is running",
#       details={"holder_pid": 4242}
#   )
#
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    # Config Errors
    CONFIG_INVALID_VALUE = "CONFIG_001"
    CONFIG_FILE_NOT_FOUND = "CONFIG_002"
    CONFIG_UNKNOWN_KEY = "CONFIG_003"
    CONFIG_PARSE_ERROR = "CONFIG_004"

    # Lock Errors
    LOCK_BUSY = "LOCK_001"
    LOCK_UNAVAILABLE = "LOCK_002"

    # Task Errors
    TASK_FAILED = "TASK_001"
    TASK_TIMEOUT = "TASK_002"
    TASK_ARTIFACT_GAP = "TASK_003"
    TASK_START_FAILED = "TASK_004"

    # Report Errors
    REPORT_ARCHIVE_FAILED = "REPORT_001"
    REPORT_BASELINE_GAP = "REPORT_002"
    REPORT_WRITE_FAILED = "REPORT_003"

    # Notification Errors
    NOTIFY_EMAIL_UNAVAILABLE = "NOTIFY_001"
    NOTIFY_EMAIL_FAILED = "NOTIFY_002"
    NOTIFY_WEBHOOK_FAILED = "NOTIFY_003"

    # System Errors
    SYSTEM_PRIVILEGE_REQUIRED = "SYSTEM_001"
    SYSTEM_INTERNAL_ERROR = "SYSTEM_002"


# Codes that abort a run. Anything else is logged and absorbed.
FATAL_CODES = frozenset({
    ErrorCode.CONFIG_FILE_NOT_FOUND,
    ErrorCode.LOCK_BUSY,
    ErrorCode.LOCK_UNAVAILABLE,
    ErrorCode.SYSTEM_PRIVILEGE_REQUIRED,
    ErrorCode.SYSTEM_INTERNAL_ERROR,
})


class SweepError(Exception):
    """
    Base exception class for hostsweep with structured error information.

    Attributes:
        code: ErrorCode enum value (e.g., "LOCK_001")
        message: Human-readable error message
        details: Optional dictionary with additional context
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}

        # Build exception message with code for easy grepping
        super().__init__(f"[{code.value}] {message}")

    @property
    def fatal(self) -> bool:
        return self.code in FATAL_CODES

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for JSON serialization.

        Returns:
            Dictionary with code, message and details
        """
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }

    def to_json(self) -> str:
        import json
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SweepError":
        code = ErrorCode(data["code"])
        return cls(code, data["message"], data.get("details", {}))


# ============================================================================
# Convenience Functions
# ============================================================================

def handle_error(error: Exception, context: Optional[str] = None) -> SweepError:
    """
    Convert a generic exception to a SweepError.

    Args:
        error: The original exception
        context: Optional context string (e.g., "while archiving the report")

    Returns:
        SweepError with appropriate code and message
    """
    if isinstance(error, SweepError):
        return error

    error_type = type(error).__name__

    if isinstance(error, PermissionError):
        code = ErrorCode.SYSTEM_PRIVILEGE_REQUIRED
    elif isinstance(error, FileNotFoundError):
        code = ErrorCode.REPORT_WRITE_FAILED
    else:
        code = ErrorCode.SYSTEM_INTERNAL_ERROR

    message = str(error)
    if context:
        message = f"{context}: {message}"

    return SweepError(
        code=code,
        message=message,
        details={
            "original_type": error_type,
            "original_message": str(error),
        },
    )


__all__ = ["ErrorCode", "SweepError", "FATAL_CODES", "handle_error"]
