"""
Exception classes for the migration runner.

This module provides:
- Error codes for programmatic error handling
- The error taxonomy used by the runner to decide whether a failure
  aborts a run or is recorded against a single change unit
"""


class ErrorCode:
    """Error codes for programmatic error handling."""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    CONFIGURATION_ERROR = "ERR_1001"

    # Database errors (5xxx)
    DATABASE_CONNECTION_ERROR = "ERR_5002"
    DATABASE_CONSISTENCY_ERROR = "ERR_5004"

    # Lock errors (6xxx)
    LOCK_UNAVAILABLE = "ERR_6001"

    # Change set errors (7xxx)
    CHANGE_SET_FAILED = "ERR_7001"
    DUPLICATE_CHANGE_ID = "ERR_7002"


class MigrationError(Exception):
    """Base exception for all migration errors."""

    error_code: str = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.error_code


# =============================================================================
# Fatal errors (abort the run)
# =============================================================================


class ConfigurationError(MigrationError):
    """Raised when the runner is missing required setup. Raised before any I/O."""

    error_code = ErrorCode.CONFIGURATION_ERROR


class MigrationConnectionError(MigrationError):
    """Raised when the database is unreachable, not yet connected, or rejects a write."""

    error_code = ErrorCode.DATABASE_CONNECTION_ERROR


class DuplicateChangeError(MigrationError):
    """Raised when a change log declares the same change id twice."""

    error_code = ErrorCode.DUPLICATE_CHANGE_ID

    def __init__(self, change_id: str, changelog: str):
        super().__init__(f"Duplicated change id found in {changelog}: '{change_id}'")
        self.change_id = change_id
        self.changelog = changelog


# =============================================================================
# Non-fatal errors
# =============================================================================


class LockUnavailableError(MigrationError):
    """Raised when the process lock cannot be obtained and hard failure is configured."""

    error_code = ErrorCode.LOCK_UNAVAILABLE


class ChangeSetError(MigrationError):
    """
    Raised when a single change unit cannot be applied.

    Covers a body that raised and a body that declares a parameter the
    resolver cannot supply. The runner records these against the change
    unit and moves on to the next one.
    """

    error_code = ErrorCode.CHANGE_SET_FAILED

    @property
    def details(self) -> str:
        """Error text persisted on the FAILED change log entry."""
        cause = self.__cause__
        if cause is not None:
            return f"{type(cause).__name__}: {cause}"
        return self.message
