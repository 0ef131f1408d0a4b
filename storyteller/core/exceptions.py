"""
StoryTeller error taxonomy.

Every error carries a stable, machine-readable code, an HTTP status used
when it crosses the API boundary, and a recoverability flag the client
uses to decide whether the user can simply try again.
"""

from typing import Any, Dict, Optional


class StoryTellerError(Exception):
    """Base class for all StoryTeller errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    recoverable: bool = False

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload.update(self.details)
        return payload


class ValidationError(StoryTellerError):
    """A story request was rejected before any I/O (e.g. empty topic)."""

    code = "VALIDATION_ERROR"
    status_code = 400
    recoverable = True


class SessionBusyError(StoryTellerError):
    """An operation was attempted while the controller was mid-transition."""

    code = "SESSION_BUSY"
    status_code = 409
    recoverable = True


class ConfigError(StoryTellerError):
    """Required server configuration (API key, assistant id) is missing."""

    code = "CONFIG_ERROR"
    status_code = 400


class UpstreamError(StoryTellerError):
    """The session backend answered with a non-2xx status or could not be reached."""

    code = "UPSTREAM_ERROR"
    status_code = 502
    recoverable = True

    def __init__(self, status: Optional[int], body: str = "", *, operation: str = "createSession"):
        if status is None:
            message = f"{operation} failed: {body}"
        else:
            message = f"{operation} failed: {status}"
        super().__init__(message, details={"status": status, "body": body})
        self.status = status
        self.body = body
        self.operation = operation


class CapabilityError(StoryTellerError):
    """The media-room capability never became usable."""

    code = "CAPABILITY_ERROR"
    status_code = 503


class CapabilityTimeoutError(CapabilityError):
    """The capability did not load within the polling ceiling."""

    code = "CAPABILITY_TIMEOUT"

    def __init__(self, attempts: int, interval: float):
        super().__init__(
            "Media room capability loading timeout - please refresh the page",
            details={"attempts": attempts, "waited_ms": int(attempts * interval * 1000)},
        )
        self.attempts = attempts


class CapabilityUnavailableError(CapabilityError):
    """The capability reported an explicit load failure."""

    code = "CAPABILITY_UNAVAILABLE"

    def __init__(self, reason: str = "Media room capability failed to load - check network connection"):
        super().__init__(reason)


class RoomConnectionError(StoryTellerError):
    """The media room rejected the connection attempt."""

    code = "ROOM_CONNECTION_ERROR"
    status_code = 503
    recoverable = True


class InterruptionError(StoryTellerError):
    """A follow-up request during an active session failed. Non-fatal."""

    code = "INTERRUPTION_ERROR"
    status_code = 502
    recoverable = True


class SpeechCaptureError(StoryTellerError):
    """The speech recognizer reported an error."""

    code = "SPEECH_CAPTURE_ERROR"
    recoverable = True
