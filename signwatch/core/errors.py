"""Exception hierarchy for signwatch.

Every error raised on purpose by the pipeline derives from SignwatchError so
run loops can tell expected failures apart from programming errors.
"""

from typing import Any, Dict, Optional


class SignwatchError(Exception):
    """Base exception.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: str = "SIGNWATCH_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(SignwatchError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONFIG_ERROR", details=details)


class InvalidEventError(SignwatchError):
    """A login event cannot be evaluated (missing timestamp, user id, ...)."""

    def __init__(self, message: str, event_ref: Optional[str] = None):
        details = {"event": event_ref} if event_ref else {}
        super().__init__(message, code="INVALID_EVENT", details=details)


class ProviderError(SignwatchError):
    """The identity provider API failed or returned garbage."""

    def __init__(self, message: str, operation: str, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["operation"] = operation
        super().__init__(message, code="PROVIDER_ERROR", details=details)


class PersistenceError(SignwatchError):
    """A store write failed; the current user's unit of work was rolled back."""

    def __init__(self, message: str, user_id: Optional[str] = None):
        details = {"user_id": user_id} if user_id else {}
        super().__init__(message, code="PERSISTENCE_ERROR", details=details)


class ReplayAbortedError(SignwatchError):
    """The replay run stopped before reaching the finalizing state."""

    def __init__(self, message: str, state: str):
        super().__init__(message, code="REPLAY_ABORTED", details={"state": state})


class DeliveryError(SignwatchError):
    """A notification sink failed to deliver a payload."""

    def __init__(self, message: str, sink: str):
        super().__init__(message, code="DELIVERY_ERROR", details={"sink": sink})
