"""
Voice error taxonomy.

Maps recognizer signals and exceptions to stable categories, and categories to
localized user messages. Classification never raises: anything unrecognized is
`unknown`.
"""
from typing import Optional

from .messages import get_message


class VoiceErrorCategory:
    """Stable error categories."""

    # Recognition / audio
    PERMISSION_DENIED = "permission_denied"
    NO_MICROPHONE = "no_microphone"
    AUDIO_CAPTURE = "audio_capture"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    ABORTED = "aborted"
    NOT_SUPPORTED = "not_supported"

    # Command handling
    PROCESSING_ERROR = "processing_error"

    # Preferences
    VALIDATION_ERROR = "validation_error"

    UNKNOWN = "unknown"


# Low-level recognizer error codes -> category
_SIGNAL_MAP = {
    "not-allowed": VoiceErrorCategory.PERMISSION_DENIED,
    "permission-denied": VoiceErrorCategory.PERMISSION_DENIED,
    "service-not-allowed": VoiceErrorCategory.PERMISSION_DENIED,
    "no-speech": VoiceErrorCategory.TIMEOUT,
    "speech-timeout": VoiceErrorCategory.TIMEOUT,
    "audio-capture": VoiceErrorCategory.AUDIO_CAPTURE,
    "no-microphone": VoiceErrorCategory.NO_MICROPHONE,
    "not-found": VoiceErrorCategory.NO_MICROPHONE,
    "network": VoiceErrorCategory.NETWORK_ERROR,
    "aborted": VoiceErrorCategory.ABORTED,
    "not-supported": VoiceErrorCategory.NOT_SUPPORTED,
    "language-not-supported": VoiceErrorCategory.NOT_SUPPORTED,
}

RECOVERABLE_CATEGORIES = frozenset({VoiceErrorCategory.TIMEOUT})


class VoiceError(Exception):
    """Base class for pipeline errors that carry a category."""

    category = VoiceErrorCategory.UNKNOWN

    def __init__(self, message: str = "", *, category: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        if category is not None:
            self.category = category


class RecognitionError(VoiceError):
    """Raised by audio sources and recognizer backends."""


class MicrophonePermissionError(RecognitionError):
    category = VoiceErrorCategory.PERMISSION_DENIED


class MicrophoneNotFoundError(RecognitionError):
    category = VoiceErrorCategory.NO_MICROPHONE


class ProcessingError(VoiceError):
    category = VoiceErrorCategory.PROCESSING_ERROR


class PreferencesValidationError(VoiceError):
    """Raised by import_() when a preferences document fails validation."""

    category = VoiceErrorCategory.VALIDATION_ERROR

    def __init__(self, message: str = "", *, errors=None):
        super().__init__(message)
        self.errors = list(errors or [])


class SynthesisError(VoiceError):
    """Speech synthesis or playback failed."""

    category = VoiceErrorCategory.NETWORK_ERROR


class InvalidTransition(VoiceError):
    """A state machine was asked to move along an edge it does not have."""

    category = VoiceErrorCategory.PROCESSING_ERROR


def classify_signal(code: Optional[str]) -> str:
    """
    Classify a recognizer error code ("no-speech", "not-allowed", ...).
    """
    if not code:
        return VoiceErrorCategory.UNKNOWN
    return _SIGNAL_MAP.get(code.strip().lower().replace("_", "-"), VoiceErrorCategory.UNKNOWN)


def classify_exception(error: BaseException) -> str:
    """
    Classify an exception raised while acquiring audio or talking to a service.
    """
    if isinstance(error, VoiceError):
        return error.category
    if isinstance(error, PermissionError):
        return VoiceErrorCategory.PERMISSION_DENIED
    if isinstance(error, (FileNotFoundError, LookupError)):
        return VoiceErrorCategory.NO_MICROPHONE
    if isinstance(error, TimeoutError):
        return VoiceErrorCategory.TIMEOUT

    error_str = str(error).lower()
    if "permission" in error_str or "not allowed" in error_str or "denied" in error_str:
        return VoiceErrorCategory.PERMISSION_DENIED
    if "no microphone" in error_str or "device not found" in error_str:
        return VoiceErrorCategory.NO_MICROPHONE
    if "capture" in error_str:
        return VoiceErrorCategory.AUDIO_CAPTURE
    if "network" in error_str or "connection" in error_str:
        return VoiceErrorCategory.NETWORK_ERROR
    if "abort" in error_str:
        return VoiceErrorCategory.ABORTED
    return VoiceErrorCategory.UNKNOWN


def is_recoverable(category: str) -> bool:
    """True for categories the engine retries on its own in continuous mode."""
    return category in RECOVERABLE_CATEGORIES


def get_user_message(category: str, language: str) -> str:
    """Localized user-facing explanation for an error category."""
    return get_message(f"errors.{category}", language)
