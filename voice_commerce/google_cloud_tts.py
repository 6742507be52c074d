"""
Google Cloud Text-to-Speech via REST API.

Uses API key authentication (not service account JSON) for simplicity.
Output: LINEAR16 PCM mono at the configured sample rate (16 kHz by default),
which the LiveKit player can push straight into a room.
"""
import base64
import math
import os
import time
from typing import Dict, Optional, Tuple

import aiohttp
import numpy as np

from logging_setup import get_logger, Component

from .errors import SynthesisError

logger = get_logger(Component.SYNTHESIZER)

SYNTHESIZE_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"

# Google has no Swiss voices; Swiss languages use the closest standard voice.
VOICES: Dict[str, str] = {
    "de-DE": "de-DE-Neural2-B",
    "de-AT": "de-DE-Neural2-B",
    "de-CH": "de-DE-Neural2-B",
    "fr-FR": "fr-FR-Neural2-A",
    "fr-CH": "fr-FR-Neural2-A",
    "it-IT": "it-IT-Neural2-A",
    "it-CH": "it-IT-Neural2-A",
    "en-US": "en-US-Neural2-C",
    "en-GB": "en-GB-Neural2-A",
}
FAMILY_DEFAULTS: Dict[str, str] = {
    "de": "de-DE-Neural2-B",
    "fr": "fr-FR-Neural2-A",
    "it": "it-IT-Neural2-A",
    "en": "en-US-Neural2-C",
}
DEFAULT_VOICE = VOICES["de-CH"]


def select_voice(language: str, voice: Optional[str] = None) -> Tuple[str, str]:
    """
    (languageCode, voice name) for a request.

    An explicit voice wins; otherwise exact language, then language family,
    then the Swiss German default.
    """
    name = voice or VOICES.get(language) or FAMILY_DEFAULTS.get(language.split("-")[0].lower()) or DEFAULT_VOICE
    language_code = "-".join(name.split("-")[:2])
    return language_code, name


def audio_config(sample_rate: int, rate: float, pitch: float, volume: float) -> Dict[str, float]:
    """
    Map pipeline voice settings onto Google's audioConfig.

    rate 0.1-3.0 -> speakingRate 0.25-3.0; pitch 0-2 (1 = neutral) -> -20..+20
    semitones; volume 0-1 -> volumeGainDb -96..0.
    """
    gain_db = -96.0 if volume <= 0 else max(-96.0, 20 * math.log10(volume))
    return {
        "audioEncoding": "LINEAR16",
        "sampleRateHertz": sample_rate,
        "speakingRate": min(max(rate, 0.25), 3.0),
        "pitch": round((pitch - 1.0) * 20.0, 2),
        "volumeGainDb": round(gain_db, 2),
    }


def smooth_edges(pcm_data: bytes, sample_rate: int) -> bytes:
    """
    Remove DC offset and fade in/out so playback starts and ends without a click.
    """
    samples = np.frombuffer(pcm_data[: len(pcm_data) - len(pcm_data) % 2], dtype="<i2").astype(np.float64)
    if samples.size == 0:
        return pcm_data

    dc_offset = samples[:100].mean()
    if abs(dc_offset) > 5:
        samples -= dc_offset

    fade_in = min(int(sample_rate * 0.1), samples.size)
    samples[:fade_in] *= (np.arange(fade_in) / fade_in) ** 2

    fade_out = min(int(sample_rate * 0.05), samples.size)
    if samples.size > fade_out > 0:
        samples[-fade_out:] *= np.arange(fade_out)[::-1] / fade_out

    return np.clip(samples, -32768, 32767).astype("<i2").tobytes()


class GoogleCloudSynthesizer:
    """Google Cloud Text-to-Speech -> raw PCM 16-bit mono."""

    def __init__(self, *, api_key: str, sample_rate: int = 16000, session_id: str = "local"):
        if not api_key:
            raise ValueError(
                "Google Cloud TTS requires a valid API key in GOOGLE_TTS_API_KEY"
            )
        self._api_key = api_key
        self.sample_rate = sample_rate
        self.session_id = session_id

        # Connection pooling
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._connector: Optional[aiohttp.TCPConnector] = None

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        """
        Get or create shared HTTP session with connection pooling.

        Reuses TCP connections between requests to reduce latency.
        """
        if self._http_session is None or self._http_session.closed:
            pool_size = int(os.getenv("GOOGLE_TTS_CONNECTION_POOL_SIZE", "10"))
            connect_timeout = float(os.getenv("GOOGLE_TTS_CONNECTION_TIMEOUT", "3.0"))
            total_timeout = float(os.getenv("GOOGLE_TTS_CONNECTION_TOTAL_TIMEOUT", "10.0"))

            self._connector = aiohttp.TCPConnector(
                limit=pool_size,
                limit_per_host=pool_size,
                ttl_dns_cache=300,
                force_close=False,
            )
            timeout = aiohttp.ClientTimeout(total=total_timeout, connect=connect_timeout)
            self._http_session = aiohttp.ClientSession(connector=self._connector, timeout=timeout)

            logger.info(
                "TTS connection pool created",
                pool_size=pool_size,
                connect_timeout_ms=int(connect_timeout * 1000),
                total_timeout_ms=int(total_timeout * 1000),
            )
        return self._http_session

    async def synthesize(
        self,
        text: str,
        *,
        language: str,
        voice: Optional[str] = None,
        rate: float = 1.0,
        pitch: float = 1.0,
        volume: float = 1.0,
    ) -> bytes:
        language_code, voice_name = select_voice(language, voice)
        payload = {
            "input": {"text": text},
            "voice": {"languageCode": language_code, "name": voice_name},
            "audioConfig": audio_config(self.sample_rate, rate, pitch, volume),
        }

        logger.debug_pii("TTS call started", text=text)
        t_start = time.perf_counter()
        try:
            session = self._get_or_create_session()
            async with session.post(SYNTHESIZE_URL, params={"key": self._api_key}, json=payload) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(
                        "Google Cloud TTS error",
                        session_id=self.session_id,
                        status_code=response.status,
                        error_text=error_text,
                    )
                    raise SynthesisError(f"Google Cloud TTS API error: {response.status} - {error_text}")

                data = await response.json()
        except SynthesisError:
            raise
        except Exception as e:
            logger.error(
                "Google Cloud TTS exception",
                session_id=self.session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise SynthesisError(f"Google Cloud TTS exception: {e}") from e

        audio_b64 = data.get("audioContent")
        if not audio_b64:
            raise SynthesisError("Google Cloud TTS: no audioContent in response")

        pcm_data = base64.b64decode(audio_b64)
        logger.info(
            "TTS call completed",
            session_id=self.session_id,
            voice=voice_name,
            text_length=len(text),
            audio_bytes=len(pcm_data),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return smooth_edges(pcm_data, self.sample_rate)

    async def aclose(self) -> None:
        """
        Best-effort cleanup of HTTP session and connector.
        Safe to call multiple times.
        """
        if self._http_session is not None:
            try:
                await self._http_session.close()
                logger.info("TTS connection pool closed")
            except Exception as e:
                logger.warning(
                    "Error closing TTS HTTP session",
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._http_session = None
                self._connector = None
