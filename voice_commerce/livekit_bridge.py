"""
LiveKit adapters.

- Job metadata -> DispatchContext (session id, language, device id)
- AgentSession `user_input_transcribed` events -> RecognitionEngine backend
- FeedbackEngine player -> `AgentSession.say()`
- Navigation routes -> participant data channel
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping, Optional, Set

from livekit import rtc

from logging_setup import get_logger, Component

from .models import Alternative
from .preferences import SUPPORTED_LANGUAGES

logger = get_logger(Component.LIVEKIT_TRANSPORT)

# Whisper-style STT reports no confidence
DEFAULT_TRANSCRIPT_CONFIDENCE = 0.9
FRAME_MS = 20
NAVIGATION_TOPIC = "voice.navigation"


@dataclass(frozen=True)
class DispatchContext:
    session_id: str
    language: Optional[str] = None
    device_id: Optional[str] = None


def parse_job_metadata(metadata: Optional[str]) -> dict[str, Any]:
    """
    Parse JobContext.job.metadata (freeform string, JSON by convention).

    Returns {} if metadata is missing or not a JSON object.
    """
    if not metadata:
        return {}
    try:
        parsed = json.loads(metadata)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _first_text(*values: Any) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def build_dispatch_context(
    *,
    room_name: str,
    job_metadata: Optional[str],
    participant_attributes: Optional[Mapping[str, str]] = None,
) -> DispatchContext:
    """
    session_id: job metadata, then participant attributes, then the room name.
    language: same order; dropped when not a supported language.
    """
    md = parse_job_metadata(job_metadata)
    attrs = participant_attributes or {}
    language = _first_text(md.get("language"), attrs.get("language"))
    if language is not None and language not in SUPPORTED_LANGUAGES:
        logger.warning("Unsupported language in dispatch metadata", language=language)
        language = None
    return DispatchContext(
        session_id=_first_text(md.get("session_id"), attrs.get("session_id"), room_name) or "unknown",
        language=language,
        device_id=_first_text(md.get("device_id"), attrs.get("device_id")),
    )


class LiveKitRecognizerBackend:
    """
    Recognizer backend fed by AgentSession transcription events.

    The STT stream itself runs for the whole room; start/stop only gate
    whether its transcripts reach the engine.
    """

    supported = True

    def __init__(self):
        self._engine: Any = None
        self.active = False

    def attach(self, session: Any) -> None:
        session.on("user_input_transcribed", self.on_user_input_transcribed)
        session.on("error", self.on_session_error)

    async def start(self, engine: Any, *, language: str, continuous: bool, interim_results: bool, max_alternatives: int) -> None:
        self._engine = engine
        self.active = True
        logger.debug("Transcript gate opened", language=language, continuous=continuous)
        engine.post_started()

    async def stop(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._engine is not None:
            self._engine.post_ended()

    def on_user_input_transcribed(self, event: Any) -> None:
        if not self.active or self._engine is None:
            return
        transcript = getattr(event, "transcript", "") or ""
        if not transcript.strip():
            return
        confidence = getattr(event, "confidence", None)
        if confidence is None:
            confidence = DEFAULT_TRANSCRIPT_CONFIDENCE
        self._engine.post_result(
            [Alternative(transcript=transcript, confidence=float(confidence))],
            is_final=bool(getattr(event, "is_final", False)),
        )

    def on_session_error(self, event: Any) -> None:
        if not self.active or self._engine is None:
            return
        error = getattr(event, "error", event)
        logger.warning("Agent session error", error=str(error), error_type=type(error).__name__)
        self._engine.post_failure("network", str(error))


async def _pcm_frames(audio: bytes, sample_rate: int) -> AsyncIterator[rtc.AudioFrame]:
    samples_per_frame = sample_rate * FRAME_MS // 1000
    step = samples_per_frame * 2
    for offset in range(0, len(audio), step):
        chunk = audio[offset:offset + step]
        if len(chunk) < step:
            chunk = chunk + b"\x00" * (step - len(chunk))
        yield rtc.AudioFrame(
            data=chunk,
            sample_rate=sample_rate,
            num_channels=1,
            samples_per_channel=samples_per_frame,
        )


class AgentSessionPlayer:
    """Plays feedback through `AgentSession.say()`; synthesized audio is passed as frames."""

    def __init__(self, session: Any, *, sample_rate: int = 16000):
        self.session = session
        self.sample_rate = sample_rate

    async def play(self, text: str, audio: Optional[bytes]) -> None:
        if audio:
            handle = self.session.say(text, audio=_pcm_frames(audio, self.sample_rate), add_to_chat_ctx=False)
        else:
            handle = self.session.say(text, add_to_chat_ctx=False)
        await handle.wait_for_playout()

    async def stop(self) -> None:
        self.session.interrupt()

    def pause(self) -> None:
        logger.debug("Pause is not supported by the agent session; ignored")

    def resume(self) -> None:
        return None


class DataChannelNavigator:
    """Publishes navigation routes to the room's participants."""

    def __init__(self, room: Any, *, topic: str = NAVIGATION_TOPIC):
        self.room = room
        self.topic = topic
        self.routes: list[str] = []
        self._pending: Set[asyncio.Task] = set()

    def go_to(self, route: str) -> None:
        self.routes.append(route)
        payload = json.dumps({"type": "navigate", "route": route})
        task = asyncio.get_running_loop().create_task(
            self.room.local_participant.publish_data(payload, reliable=True, topic=self.topic)
        )
        self._pending.add(task)
        task.add_done_callback(self._published)

    def _published(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Navigation publish failed", error=str(error), error_type=type(error).__name__)
