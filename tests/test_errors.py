"""
Error taxonomy: recognizer signals, exceptions, user messages.
"""
import pytest

from voice_commerce.errors import (
    MicrophoneNotFoundError,
    MicrophonePermissionError,
    PreferencesValidationError,
    ProcessingError,
    VoiceError,
    VoiceErrorCategory,
    classify_exception,
    classify_signal,
    get_user_message,
    is_recoverable,
)


class TestSignalClassification:
    @pytest.mark.parametrize("code,category", [
        ("not-allowed", VoiceErrorCategory.PERMISSION_DENIED),
        ("permission-denied", VoiceErrorCategory.PERMISSION_DENIED),
        ("no-speech", VoiceErrorCategory.TIMEOUT),
        ("audio-capture", VoiceErrorCategory.AUDIO_CAPTURE),
        ("network", VoiceErrorCategory.NETWORK_ERROR),
        ("aborted", VoiceErrorCategory.ABORTED),
        ("NO_SPEECH", VoiceErrorCategory.TIMEOUT),
        ("bad-grammar", VoiceErrorCategory.UNKNOWN),
        ("", VoiceErrorCategory.UNKNOWN),
        (None, VoiceErrorCategory.UNKNOWN),
    ])
    def test_codes(self, code, category):
        assert classify_signal(code) == category

    def test_only_timeout_is_recoverable(self):
        assert is_recoverable(VoiceErrorCategory.TIMEOUT)
        for category in (
            VoiceErrorCategory.PERMISSION_DENIED,
            VoiceErrorCategory.NETWORK_ERROR,
            VoiceErrorCategory.ABORTED,
            VoiceErrorCategory.UNKNOWN,
        ):
            assert not is_recoverable(category)


class TestExceptionClassification:
    def test_voice_errors_carry_their_category(self):
        assert classify_exception(MicrophonePermissionError()) == VoiceErrorCategory.PERMISSION_DENIED
        assert classify_exception(MicrophoneNotFoundError()) == VoiceErrorCategory.NO_MICROPHONE
        assert classify_exception(ProcessingError("x")) == VoiceErrorCategory.PROCESSING_ERROR
        assert classify_exception(VoiceError("x", category=VoiceErrorCategory.ABORTED)) == VoiceErrorCategory.ABORTED

    def test_builtin_exception_types(self):
        assert classify_exception(PermissionError("denied")) == VoiceErrorCategory.PERMISSION_DENIED
        assert classify_exception(FileNotFoundError("/dev/snd")) == VoiceErrorCategory.NO_MICROPHONE
        assert classify_exception(TimeoutError()) == VoiceErrorCategory.TIMEOUT

    def test_message_heuristics(self):
        assert classify_exception(RuntimeError("Connection refused")) == VoiceErrorCategory.NETWORK_ERROR
        assert classify_exception(RuntimeError("audio capture failed")) == VoiceErrorCategory.AUDIO_CAPTURE
        assert classify_exception(RuntimeError("No microphone attached")) == VoiceErrorCategory.NO_MICROPHONE
        assert classify_exception(RuntimeError("something odd")) == VoiceErrorCategory.UNKNOWN

    def test_validation_error_keeps_field_errors(self):
        error = PreferencesValidationError("bad", errors=["a", "b"])
        assert error.category == VoiceErrorCategory.VALIDATION_ERROR
        assert error.errors == ["a", "b"]


class TestUserMessages:
    def test_localized(self):
        assert get_user_message(VoiceErrorCategory.TIMEOUT, "de-DE") == "Ich habe nichts gehört"
        assert get_user_message(VoiceErrorCategory.TIMEOUT, "de-CH") == "Ich ha nüt ghört"
        assert get_user_message(VoiceErrorCategory.TIMEOUT, "en-US") == "I didn't hear anything"

    def test_swiss_falls_back_to_standard_german(self):
        assert get_user_message(VoiceErrorCategory.NETWORK_ERROR, "de-CH") == "Keine Verbindung zur Spracherkennung"

    def test_every_category_has_a_message(self):
        categories = [v for k, v in vars(VoiceErrorCategory).items() if k.isupper()]
        for language in ("de-CH", "fr-CH", "it-CH", "en-GB"):
            for category in categories:
                assert get_user_message(category, language) != f"errors.{category}"
