"""
Error taxonomy for the perception core.

Rules:
- Every failure a caller can act on has its own class.
- Provider SDK exceptions are translated into these at adapter boundaries.
- classify_error() maps any exception to a user-facing category.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class PerceptionError(Exception):
    """Base class for all classified perception-core errors."""


class DeviceUnavailable(PerceptionError):
    """
    Audio device permission denied, missing, or held by another session.

    Fatal to the current session; the user must retry manually.
    """


class ChannelError(PerceptionError):
    """
    Live remote channel failed to open or died mid-stream.

    Triggers full session teardown. Never retried automatically.
    """


class SynthesisEmpty(PerceptionError):
    """
    Synthesis produced no audio.

    Streaming: the fragment is skipped. One-shot: the narrator resets to idle.
    """


class AuthMissing(PerceptionError):
    """Credentials are missing or were rejected by the provider."""


class Offline(PerceptionError):
    """A remote-dependent operation was attempted while offline."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"{operation} requires connectivity")
        self.operation = operation


class TransientServerOverload(PerceptionError):
    """
    Provider is temporarily overloaded (429/5xx, timeout, connection reset).

    Retried with bounded exponential backoff on one-shot requests only.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponse(PerceptionError):
    """The oracle returned structured data that could not be parsed or validated."""


class ContentRejected(PerceptionError):
    """The oracle refused the request on safety grounds."""


class RemoteStoreError(PerceptionError):
    """Profile store transport failure or non-success status."""


class InvalidTransition(PerceptionError):
    """Illegal session state change (programming error)."""


# ---------------------------------------------------------------------
# User-facing classification
# ---------------------------------------------------------------------

class ErrorCategory(str, Enum):
    """Categories presented to the user, each with one remediation."""
    AUTH_ERROR = "AUTH_ERROR"
    DATA_ERROR = "DATA_ERROR"
    SAFETY_ERROR = "SAFETY_ERROR"
    OFFLINE_ERROR = "OFFLINE_ERROR"
    DEVICE_ERROR = "DEVICE_ERROR"
    CONNECTION_LOST = "CONNECTION_LOST"
    SYSTEM_ERROR = "SYSTEM_ERROR"


_REMEDIATION: dict[ErrorCategory, str] = {
    ErrorCategory.AUTH_ERROR: "API key is missing or invalid. Configure a valid key and sign in again.",
    ErrorCategory.DATA_ERROR: "The model response was malformed. Try re-describing your symptoms with more clarity.",
    ErrorCategory.SAFETY_ERROR: "The request was flagged by safety filters and cannot be processed.",
    ErrorCategory.OFFLINE_ERROR: "Cannot perform this action while offline. Check your network connection.",
    ErrorCategory.DEVICE_ERROR: "Microphone or speaker is unavailable. Check permissions and try again.",
    ErrorCategory.CONNECTION_LOST: "The live connection was lost. Start a new session.",
    ErrorCategory.SYSTEM_ERROR: "An unexpected interruption occurred. Please try again in a few moments.",
}


@dataclass(frozen=True)
class ClassifiedError:
    """An exception paired with its user-facing category."""
    category: ErrorCategory
    message: str
    cause: BaseException

    def __str__(self) -> str:
        return f"{self.category.value}: {self.message}"


def classify_error(exc: BaseException) -> ClassifiedError:
    """Map any exception to the category the UI should present."""
    if isinstance(exc, AuthMissing):
        category = ErrorCategory.AUTH_ERROR
    elif isinstance(exc, MalformedResponse):
        category = ErrorCategory.DATA_ERROR
    elif isinstance(exc, ContentRejected):
        category = ErrorCategory.SAFETY_ERROR
    elif isinstance(exc, Offline):
        category = ErrorCategory.OFFLINE_ERROR
    elif isinstance(exc, DeviceUnavailable):
        category = ErrorCategory.DEVICE_ERROR
    elif isinstance(exc, ChannelError):
        category = ErrorCategory.CONNECTION_LOST
    else:
        category = ErrorCategory.SYSTEM_ERROR
    return ClassifiedError(category=category, message=_REMEDIATION[category], cause=exc)
