"""Exception hierarchy for the callback pipeline."""
from typing import Optional


class FutureSelfError(Exception):
    """Base class for all application errors."""


class MalformedPayloadError(FutureSelfError):
    """Inbound webhook body is structurally invalid."""


class SessionNotFoundError(FutureSelfError):
    """No session exists for the given id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class AudioCaptureError(FutureSelfError):
    """Base class for monitor feed failures."""


class AudioConnectionTimeout(AudioCaptureError):
    """The monitor feed did not complete its handshake in time."""


class AudioConnectionDropped(AudioCaptureError):
    """The monitor feed closed abnormally and could not be re-established."""


class AudioPayloadError(FutureSelfError):
    """Packaged audio is outside the provider's accepted bounds."""

    def __init__(self, message: str, size: int):
        super().__init__(message)
        self.size = size


class InsufficientAudioError(AudioPayloadError):
    """Sample is too small to produce a clone."""


class AudioPayloadTooLargeError(AudioPayloadError):
    """Sample exceeds the provider's upload limit."""


class CloneProviderError(FutureSelfError):
    """Base class for voice-cloning provider failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderTransientError(CloneProviderError):
    """Network failure or retryable status; safe to resubmit."""


class ProviderRejectedError(CloneProviderError):
    """The provider refused the sample; resubmitting will not help."""


class AmbiguousTimeoutError(CloneProviderError):
    """The upload went out but no response came back.

    The clone may still have been created upstream, so the session is left
    pending and the request is never resubmitted.
    """


class PersonaCreationError(FutureSelfError):
    """The future-self assistant could not be created, even with the default voice."""
