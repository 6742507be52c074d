"""
Voice commerce configuration.

Loads runtime settings from environment variables. User-facing voice settings
(language, thresholds, speaker) live in the preferences store; this module
holds deployment settings and pipeline timing constants.
"""
import os
from dataclasses import dataclass
from typing import Optional


def _clean_env(key: str) -> Optional[str]:
    """Return the env value with trailing comments and whitespace removed, or None."""
    value = os.environ.get(key)
    if not value:
        return None
    if "#" in value:
        value = value.split("#")[0]
    value = value.strip()
    return value or None


def _parse_int_env(key: str, default: int) -> int:
    """
    Parse integer environment variable, stripping comments and whitespace.

    "500  # ms" -> 500, unset or unparsable -> default
    """
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(key: str, default: float) -> float:
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _parse_bool_env(key: str, default: bool) -> bool:
    value = _clean_env(key)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


@dataclass
class VoiceCommerceConfig:
    """Deployment and timing configuration."""

    default_language: str = "de-CH"
    device_id: str = "default"

    # Preferences persistence
    preferences_dir: str = ".voice_preferences"
    preferences_remote_url: Optional[str] = None
    persist_debounce_ms: int = 500

    # External services
    analytics_url: Optional[str] = None
    commerce_api_url: Optional[str] = None
    http_timeout_seconds: float = 5.0

    # Pipeline timing
    auto_process_delay_ms: int = 500
    context_expiry_seconds: float = 60.0
    wake_word_window_seconds: float = 30.0
    timeout_retry_ms: int = 2000
    wake_restart_ms: int = 1000
    history_size: int = 50
    mute_while_speaking: bool = True

    # Google Cloud TTS (REST API with API key authentication)
    google_tts_api_key: Optional[str] = None
    google_tts_sample_rate: int = 16000

    # LiveKit transport
    livekit_url: Optional[str] = None
    livekit_api_key: Optional[str] = None
    livekit_api_secret: Optional[str] = None
    groq_api_key: Optional[str] = None
    groq_stt_model: str = "whisper-large-v3"

    @classmethod
    def from_env(cls) -> "VoiceCommerceConfig":
        """Load configuration from environment variables."""
        return cls(
            default_language=os.environ.get("VC_DEFAULT_LANGUAGE", "de-CH"),
            device_id=os.environ.get("VC_DEVICE_ID", "default"),
            preferences_dir=os.environ.get("VC_PREFERENCES_DIR", ".voice_preferences"),
            preferences_remote_url=os.environ.get("VC_PREFERENCES_REMOTE_URL") or None,
            persist_debounce_ms=_parse_int_env("VC_PERSIST_DEBOUNCE_MS", default=500),
            analytics_url=os.environ.get("VC_ANALYTICS_URL") or None,
            commerce_api_url=os.environ.get("VC_COMMERCE_API_URL") or None,
            http_timeout_seconds=_parse_float_env("VC_HTTP_TIMEOUT_SECONDS", default=5.0),
            auto_process_delay_ms=_parse_int_env("VC_AUTO_PROCESS_DELAY_MS", default=500),
            context_expiry_seconds=_parse_float_env("VC_CONTEXT_EXPIRY_SECONDS", default=60.0),
            wake_word_window_seconds=_parse_float_env("VC_WAKE_WORD_WINDOW_SECONDS", default=30.0),
            timeout_retry_ms=_parse_int_env("VC_TIMEOUT_RETRY_MS", default=2000),
            wake_restart_ms=_parse_int_env("VC_WAKE_RESTART_MS", default=1000),
            history_size=_parse_int_env("VC_HISTORY_SIZE", default=50),
            mute_while_speaking=_parse_bool_env("VC_MUTE_WHILE_SPEAKING", default=True),
            google_tts_api_key=os.environ.get("GOOGLE_TTS_API_KEY") or os.environ.get("GOOGLE_API_KEY"),
            google_tts_sample_rate=_parse_int_env("GOOGLE_TTS_SAMPLE_RATE", default=16000),
            livekit_url=os.environ.get("LIVEKIT_URL"),
            livekit_api_key=os.environ.get("LIVEKIT_API_KEY"),
            livekit_api_secret=os.environ.get("LIVEKIT_API_SECRET"),
            groq_api_key=os.environ.get("GROQ_API_KEY"),
            groq_stt_model=os.environ.get("GROQ_STT_MODEL", "whisper-large-v3"),
        )


def get_config() -> VoiceCommerceConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        _config = VoiceCommerceConfig.from_env()
    return _config


def reset_config() -> None:
    """Drop the cached config so the next get_config() re-reads the environment."""
    global _config
    _config = None


# Global config instance (lazy loaded)
_config: Optional[VoiceCommerceConfig] = None
