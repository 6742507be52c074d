"""
Speech recognition engine.

One state machine owns the recognition lifecycle:

    idle -> starting -> listening <-> processing
    listening/processing/starting -> stopping -> idle
    any -> error;  error -> starting (explicit start only)

The recognizer backend and the audio source never touch engine state directly.
They post typed events (Started, Result, AudioFrame, Failure, Ended) onto a
queue that a single consumer task applies in arrival order.
"""

from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from logging_setup import get_logger, Component
from observability.events import Component as EventComponent, EventEmitter, Severity, pii_marker

from .audio_levels import levels
from .errors import (
    InvalidTransition,
    VoiceErrorCategory,
    classify_exception,
    classify_signal,
    is_recoverable,
)
from .interfaces import AudioSource, RecognizerBackend
from .models import Alternative, RecognitionSession, RecognitionState, TranscriptUpdate
from .wake_word import WakeWordDetector

logger = get_logger(Component.RECOGNITION)
emitter = EventEmitter(EventComponent.RECOGNITION)

S = RecognitionState

TRANSITIONS: Dict[RecognitionState, frozenset] = {
    S.IDLE: frozenset({S.STARTING, S.ERROR}),
    S.STARTING: frozenset({S.LISTENING, S.STOPPING, S.IDLE, S.ERROR}),
    S.LISTENING: frozenset({S.PROCESSING, S.STOPPING, S.IDLE, S.ERROR}),
    S.PROCESSING: frozenset({S.LISTENING, S.STOPPING, S.IDLE, S.ERROR}),
    S.STOPPING: frozenset({S.IDLE, S.ERROR}),
    S.ERROR: frozenset({S.STARTING, S.IDLE}),
}

WAKE_WORD_WINDOW_SECONDS = 30.0
TIMEOUT_RETRY_SECONDS = 2.0
WAKE_RESTART_SECONDS = 1.0


# --- events posted by backends ---

@dataclass(frozen=True)
class Started:
    pass


@dataclass(frozen=True)
class Result:
    alternatives: Tuple[Alternative, ...]
    is_final: bool


@dataclass(frozen=True)
class AudioFrame:
    pcm: bytes


@dataclass(frozen=True)
class Failure:
    code: str
    message: str = ""


@dataclass(frozen=True)
class Ended:
    pass


RecognitionEvent = Union[Started, Result, AudioFrame, Failure, Ended]


@dataclass
class RecognitionOptions:
    language: str = "de-CH"
    dialect: Optional[str] = None
    enabled: bool = True
    continuous: bool = True
    interim_results: bool = True
    max_alternatives: int = 3
    timeout_ms: int = 5000
    partial_timeout_ms: int = 1000
    sample_rate: int = 16000
    wake_word: Optional[str] = None
    wake_word_enabled: bool = True

    @classmethod
    def from_preferences(cls, prefs: Any) -> "RecognitionOptions":
        """Build options from a preferences.Preferences document."""
        rec = prefs.recognition
        return cls(
            language=prefs.language,
            dialect=prefs.dialect,
            enabled=prefs.enabled,
            continuous=rec.continuous,
            interim_results=rec.interim_results,
            max_alternatives=rec.max_alternatives,
            timeout_ms=rec.timeout_duration,
            partial_timeout_ms=rec.partial_timeout,
            sample_rate=prefs.microphone.sample_rate,
            wake_word=prefs.wake_word,
            wake_word_enabled=prefs.wake_word_enabled,
        )


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


class RecognitionEngine:
    def __init__(
        self,
        backend: RecognizerBackend,
        audio: Optional[AudioSource] = None,
        *,
        session_id: str = "local",
        now: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        wake_window_s: float = WAKE_WORD_WINDOW_SECONDS,
        timeout_retry_s: float = TIMEOUT_RETRY_SECONDS,
        wake_restart_s: float = WAKE_RESTART_SECONDS,
    ):
        self.backend = backend
        self.audio = audio
        self.session_id = session_id
        self.wake_window_s = wake_window_s
        self.timeout_retry_s = timeout_retry_s
        self.wake_restart_s = wake_restart_s
        self._now = now
        self._sleep = sleep

        self._state = S.IDLE
        self._session: Optional[RecognitionSession] = None
        self.last_session: Optional[RecognitionSession] = None
        self._options = RecognitionOptions()
        self._detector = WakeWordDetector.for_language(self._options.language)
        self._explicit_stop = False
        self._paused = False
        self.wake_word_active = False
        self.last_wake_word_at: Optional[float] = None
        self.last_error: Optional[str] = None

        self._events: asyncio.Queue = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._audio_stack: Optional[AsyncExitStack] = None
        self._timers: Dict[str, asyncio.Task] = {}

        self._transcript_listeners: List[Callable[[TranscriptUpdate], Any]] = []
        self._state_listeners: List[Callable[[RecognitionState, RecognitionState], Any]] = []
        self._error_listeners: List[Callable[[str, str], Any]] = []

    # --- observation ---

    @property
    def state(self) -> RecognitionState:
        return self._state

    @property
    def session(self) -> Optional[RecognitionSession]:
        return self._session

    @property
    def options(self) -> RecognitionOptions:
        return self._options

    def on_transcript(self, listener: Callable[[TranscriptUpdate], Any]) -> None:
        self._transcript_listeners.append(listener)

    def on_state_change(self, listener: Callable[[RecognitionState, RecognitionState], Any]) -> None:
        self._state_listeners.append(listener)

    def on_error(self, listener: Callable[[str, str], Any]) -> None:
        """`listener(category, detail)` for errors that surface to the user."""
        self._error_listeners.append(listener)

    # --- commands ---

    async def start(self, options: Optional[RecognitionOptions] = None) -> bool:
        """
        Begin a recognition session. Returns False when the start is rejected.
        """
        options = options or self._options
        if not getattr(self.backend, "supported", True):
            logger.warning("Recognition start rejected: recognizer not supported")
            await self._surface(VoiceErrorCategory.NOT_SUPPORTED, "recognizer not supported")
            return False
        if not options.enabled:
            logger.info("Recognition start rejected: voice input disabled")
            return False
        if self._state not in (S.IDLE, S.ERROR):
            logger.info("Recognition start rejected: engine busy", state=self._state.value)
            return False

        self._ensure_consumer()
        self._cancel_timers()
        if options.language != self._options.language or options.wake_word != self._options.wake_word:
            self._detector = WakeWordDetector.for_language(options.language, options.wake_word)
        self._options = options
        self._explicit_stop = False
        self._paused = False
        self.last_error = None

        self._transition(S.STARTING)
        self._session = RecognitionSession(
            session_id=f"rec_{uuid.uuid4().hex[:10]}",
            language=options.language,
            continuous=options.continuous,
            started_at=self._now(),
        )

        self._audio_stack = AsyncExitStack()
        try:
            if self.audio is not None:
                await self._audio_stack.enter_async_context(
                    self.audio.open(sample_rate=options.sample_rate, channels=1)
                )
            await self.backend.start(
                self,
                language=options.language,
                continuous=options.continuous,
                interim_results=options.interim_results,
                max_alternatives=options.max_alternatives,
            )
        except Exception as e:
            category = classify_exception(e)
            logger.error(
                "Recognition start failed",
                category=category,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._enter_error(category, str(e))
            return False

        if options.timeout_ms > 0:
            self._schedule("max_duration", options.timeout_ms / 1000.0, self._on_max_duration)
        logger.info(
            "Recognition starting",
            language=options.language,
            continuous=options.continuous,
            recognition_session=self._session.session_id,
        )
        return True

    async def stop(self, *, pause: bool = False) -> None:
        """
        Explicit stop; wake-word auto-restart is suppressed for this session.

        With `pause=True` the caller restarts listening itself (e.g. once a
        spoken answer has finished) and the wake-word window stays open.
        """
        self._explicit_stop = True
        self._paused = pause
        self._cancel_timers()
        await self._request_stop()

    async def _request_stop(self) -> None:
        if self._state not in (S.STARTING, S.LISTENING, S.PROCESSING):
            logger.debug("Stop ignored", state=self._state.value)
            return
        self._transition(S.STOPPING)
        try:
            await self.backend.stop()
        except Exception as e:
            logger.warning("Recognizer stop failed", error=str(e), error_type=type(e).__name__)
            self.post_ended()

    async def wait_idle(self) -> None:
        """Wait until every posted event has been applied."""
        await self._events.join()

    async def aclose(self) -> None:
        """Tear down: stop the backend, release audio, stop the consumer."""
        self._cancel_timers()
        self._explicit_stop = True
        self._paused = False
        if self._state in (S.STARTING, S.LISTENING, S.PROCESSING, S.STOPPING):
            try:
                await self.backend.stop()
            except Exception as e:
                logger.warning("Recognizer stop failed during close", error=str(e), error_type=type(e).__name__)
        await self._release_audio()
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        if self._state not in (S.IDLE, S.ERROR):
            self._transition(S.IDLE)
        self._end_session()

    # --- backend entry points ---

    def post(self, event: RecognitionEvent) -> None:
        self._ensure_consumer()
        self._events.put_nowait(event)

    def post_started(self) -> None:
        self.post(Started())

    def post_result(self, alternatives: List[Alternative], is_final: bool) -> None:
        self.post(Result(alternatives=tuple(alternatives), is_final=is_final))

    def post_audio(self, pcm: bytes) -> None:
        self.post(AudioFrame(pcm=pcm))

    def post_failure(self, code: str, message: str = "") -> None:
        self.post(Failure(code=code, message=message))

    def post_ended(self) -> None:
        self.post(Ended())

    # --- event loop ---

    def _ensure_consumer(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.get_running_loop().create_task(self._consume())

    async def _consume(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self._handle(event)
            except Exception as e:
                logger.error(
                    "Recognition event handling failed",
                    event=type(event).__name__,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._events.task_done()

    async def _handle(self, event: RecognitionEvent) -> None:
        if isinstance(event, Started):
            if self._state == S.STARTING:
                self._transition(S.LISTENING)
        elif isinstance(event, Result):
            await self._on_result(event)
        elif isinstance(event, AudioFrame):
            if self._session is not None:
                self._session.audio_level, self._session.noise_level = levels(event.pcm)
        elif isinstance(event, Failure):
            await self._on_failure(event)
        elif isinstance(event, Ended):
            await self._on_ended()

    async def _on_result(self, event: Result) -> None:
        if self._state not in (S.LISTENING, S.PROCESSING) or self._session is None or not event.alternatives:
            return
        ranked = sorted(event.alternatives, key=lambda a: a.confidence, reverse=True)
        best = ranked[0]
        session = self._session

        if not event.is_final:
            if not self._options.interim_results:
                return
            session.interim_transcript = best.transcript
            self._schedule("partial", self._options.partial_timeout_ms / 1000.0, self._on_partial_timeout)
            await self._publish(TranscriptUpdate(
                kind="interim",
                text=best.transcript,
                confidence=best.confidence,
                language=session.language,
            ))
            return

        self._transition(S.PROCESSING)
        self._cancel_timer("partial")
        text = best.transcript.strip()
        wake_phrase = None
        if self._options.wake_word_enabled:
            match = self._detector.detect(text)
            if match is not None:
                wake_phrase = match.phrase
                text = match.remainder
                self.wake_word_active = True
                self.last_wake_word_at = self._now()
                emitter.emit("wake_word.detected", session_id=self.session_id, phrase=match.phrase)

        alternatives = list(ranked[: self._options.max_alternatives])
        session.record_final(text, best.confidence, alternatives)
        if text:
            emitter.emit(
                "transcript.final",
                session_id=self.session_id,
                pii=pii_marker("text"),
                text=text,
                confidence=best.confidence,
                language=session.language,
            )
            await self._publish(TranscriptUpdate(
                kind="final",
                text=text,
                confidence=best.confidence,
                language=session.language,
                alternatives=tuple(alternatives),
                wake_word=wake_phrase,
            ))

        if self._state != S.PROCESSING:
            return
        if self._options.continuous:
            self._transition(S.LISTENING)
        else:
            await self._request_stop()

    async def _on_failure(self, event: Failure) -> None:
        category = classify_signal(event.code)
        emitter.emit(
            "recognition.error",
            session_id=self.session_id,
            severity=Severity.WARN if is_recoverable(category) else Severity.ERROR,
            code=event.code,
            category=category,
        )
        if self._state in (S.IDLE, S.ERROR):
            return
        if is_recoverable(category) and self._options.continuous and not self._explicit_stop:
            logger.info("No speech; retrying", retry_in_s=self.timeout_retry_s)
            self._cancel_timers()
            await self._release_audio()
            self._transition(S.IDLE)
            self._end_session()
            self._schedule("retry", self.timeout_retry_s, self._restart)
            return
        await self._enter_error(category, event.message or event.code)

    async def _on_ended(self) -> None:
        await self._release_audio()
        self._cancel_timer("partial")
        self._cancel_timer("max_duration")
        if self._state in (S.IDLE, S.ERROR):
            return
        self._transition(S.IDLE)
        self._end_session()

        within_window = (
            self.last_wake_word_at is not None
            and self._now() - self.last_wake_word_at < self.wake_window_s
        )
        if self._options.continuous and self.wake_word_active and within_window and not self._explicit_stop:
            logger.info("Wake word active; restarting listening", restart_in_s=self.wake_restart_s)
            self._schedule("wake_restart", self.wake_restart_s, self._restart)
        elif not (within_window and self._paused):
            self.wake_word_active = False

    # --- helpers ---

    def _transition(self, new_state: RecognitionState) -> None:
        old_state = self._state
        if new_state not in TRANSITIONS[old_state]:
            raise InvalidTransition(f"{old_state.value} -> {new_state.value}")
        self._state = new_state
        emitter.emit(
            "recognition.state_changed",
            session_id=self.session_id,
            severity=Severity.DEBUG,
            from_state=old_state.value,
            to_state=new_state.value,
        )
        for listener in list(self._state_listeners):
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.warning("State listener failed", error=str(e), error_type=type(e).__name__)

    async def _enter_error(self, category: str, detail: str) -> None:
        self._cancel_timers()
        await self._release_audio()
        self.last_error = category
        if self._state != S.ERROR:
            self._transition(S.ERROR)
        self._end_session()
        await self._surface(category, detail)

    async def _surface(self, category: str, detail: str) -> None:
        for listener in list(self._error_listeners):
            try:
                await _maybe_await(listener(category, detail))
            except Exception as e:
                logger.warning("Error listener failed", error=str(e), error_type=type(e).__name__)

    async def _publish(self, update: TranscriptUpdate) -> None:
        for listener in list(self._transcript_listeners):
            try:
                await _maybe_await(listener(update))
            except Exception as e:
                logger.warning("Transcript listener failed", error=str(e), error_type=type(e).__name__)

    def _end_session(self) -> None:
        if self._session is not None:
            self.last_session = self._session
            self._session = None

    async def _release_audio(self) -> None:
        stack, self._audio_stack = self._audio_stack, None
        if stack is None:
            return
        try:
            await stack.aclose()
        except Exception as e:
            logger.warning("Audio release failed", error=str(e), error_type=type(e).__name__)

    def _schedule(self, name: str, delay_s: float, callback: Callable[[], Awaitable[Any]]) -> None:
        self._cancel_timer(name)

        async def fire():
            await self._sleep(delay_s)
            self._timers.pop(name, None)
            await callback()

        self._timers[name] = asyncio.get_running_loop().create_task(fire())

    def _cancel_timer(self, name: str) -> None:
        task = self._timers.pop(name, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _cancel_timers(self) -> None:
        for name in list(self._timers):
            self._cancel_timer(name)

    async def _restart(self) -> None:
        await self.start(self._options)

    async def _on_max_duration(self) -> None:
        logger.info("Maximum listening duration reached", timeout_ms=self._options.timeout_ms)
        await self._request_stop()

    async def _on_partial_timeout(self) -> None:
        if self._session is not None:
            self._session.interim_transcript = ""
