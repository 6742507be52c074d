"""
Spoken feedback queue.

Requests play strictly in the order they were enqueued, one at a time, on a
single worker task. Synthesized audio is cached per (text, language, voice,
rate, pitch, volume) when the request asks for it.
"""

from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Optional, Tuple

from logging_setup import get_logger, Component, correlation_scope, current_correlation_id
from observability.events import Component as EventComponent, EventEmitter, Severity

from .interfaces import Player, Synthesizer
from .normalizer import substitute_terms

logger = get_logger(Component.FEEDBACK)
emitter = EventEmitter(EventComponent.FEEDBACK)

# Speech-rate heuristic for progress: characters per second at rate 1.0
CHARS_PER_SECOND = 15.0
MAX_ESTIMATED_PROGRESS = 0.95
DEFAULT_CACHE_SIZE = 64

CacheKey = Tuple[str, str, Optional[str], float, float, float]


@dataclass
class UtteranceRequest:
    text: str
    language: str
    voice: Optional[str] = None
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0
    use_cache: bool = True
    correlation_id: Optional[str] = None
    on_start: Optional[Callable[["UtteranceRequest"], Any]] = None
    on_end: Optional[Callable[["UtteranceRequest"], Any]] = None
    on_error: Optional[Callable[["UtteranceRequest", BaseException], Any]] = None
    id: str = field(default_factory=lambda: f"utt_{uuid.uuid4().hex[:10]}")
    status: str = "queued"  # queued | playing | done | failed | cancelled
    spoken_text: str = ""
    started_at: Optional[float] = None
    _done: Optional[asyncio.Future] = field(default=None, repr=False)

    def __post_init__(self):
        if not 0.1 <= self.rate <= 3.0:
            raise ValueError(f"rate must be between 0.1 and 3.0, got {self.rate}")
        if not 0.0 <= self.pitch <= 2.0:
            raise ValueError(f"pitch must be between 0 and 2, got {self.pitch}")
        if not 0.0 <= self.volume <= 1.0:
            raise ValueError(f"volume must be between 0 and 1, got {self.volume}")

    @property
    def cache_key(self) -> CacheKey:
        return (self.spoken_text, self.language, self.voice, self.rate, self.pitch, self.volume)

    @property
    def estimated_duration_s(self) -> float:
        return (len(self.spoken_text or self.text) / CHARS_PER_SECOND) / self.rate

    def _finish(self, status: str) -> None:
        self.status = status
        if self._done is not None and not self._done.done():
            self._done.set_result(status == "done")

    async def wait(self) -> bool:
        """True once played to the end; False if it failed or was cancelled."""
        if self._done is None:
            return self.status == "done"
        return await asyncio.shield(self._done)


class NullPlayer:
    """Text-only player: logs the utterance and returns immediately."""

    async def play(self, text: str, audio: Optional[bytes]) -> None:
        logger.debug_pii("Utterance (no audio output)", text=text)

    async def stop(self) -> None:
        return None

    def pause(self) -> None:
        return None

    def resume(self) -> None:
        return None


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


async def _run_callback(name: str, callback: Optional[Callable[..., Any]], *args: Any) -> None:
    if callback is None:
        return
    try:
        await _maybe_await(callback(*args))
    except Exception as e:
        logger.warning("Feedback callback failed", callback=name, error=str(e), error_type=type(e).__name__)


class FeedbackEngine:
    def __init__(
        self,
        player: Player,
        synthesizer: Optional[Synthesizer] = None,
        *,
        language: str = "de-CH",
        cache_size: int = DEFAULT_CACHE_SIZE,
        session_id: str = "local",
        now: Callable[[], float] = time.monotonic,
        on_busy_change: Optional[Callable[[bool], Any]] = None,
    ):
        self.player = player
        self.synthesizer = synthesizer
        self.session_id = session_id
        self.on_busy_change = on_busy_change
        self._now = now

        self.enabled = True
        self.language = language
        self.voice: Optional[str] = None
        self.rate = 1.0
        self.pitch = 1.0
        self.volume = 1.0

        self._queue: Deque[UtteranceRequest] = deque()
        self._current: Optional[UtteranceRequest] = None
        self._worker: Optional[asyncio.Task] = None
        self._cache: "OrderedDict[CacheKey, bytes]" = OrderedDict()
        self._cache_size = cache_size
        self._paused_at: Optional[float] = None
        self._paused_total = 0.0
        self._busy = False

    def configure(self, **settings: Any) -> None:
        """Apply voice settings (enabled, language, voice, rate, pitch, volume)."""
        for key, value in settings.items():
            if key not in ("enabled", "language", "voice", "rate", "pitch", "volume"):
                raise TypeError(f"Unknown feedback setting {key!r}")
            setattr(self, key, value)

    @property
    def current(self) -> Optional[UtteranceRequest]:
        return self._current

    @property
    def pending(self) -> Tuple[UtteranceRequest, ...]:
        return tuple(self._queue)

    @property
    def is_busy(self) -> bool:
        return self._current is not None or bool(self._queue)

    @property
    def progress(self) -> float:
        """
        Estimated progress of the playing request in [0, 1].

        The player does not report position, so this is elapsed time over the
        length heuristic, held below 1 until playback actually ends.
        """
        request = self._current
        if request is None or request.started_at is None:
            return 0.0
        estimate = request.estimated_duration_s
        if estimate <= 0:
            return MAX_ESTIMATED_PROGRESS
        end = self._paused_at if self._paused_at is not None else self._now()
        elapsed = end - request.started_at - self._paused_total
        return max(0.0, min(elapsed / estimate, MAX_ESTIMATED_PROGRESS))

    def enqueue(self, text: str, **options: Any) -> Optional[UtteranceRequest]:
        """
        Queue `text` for playback; None when feedback is off or text is empty.

        Options override the configured voice settings for this request and are
        validated (ValueError on out-of-range rate, pitch or volume).
        """
        if not self.enabled:
            logger.debug("Feedback disabled; utterance dropped")
            return None
        if not text or not text.strip():
            return None

        request = UtteranceRequest(
            text=text,
            language=options.pop("language", self.language),
            voice=options.pop("voice", self.voice),
            rate=options.pop("rate", self.rate),
            pitch=options.pop("pitch", self.pitch),
            volume=options.pop("volume", self.volume),
            **options,
        )
        request.spoken_text = substitute_terms(text, request.language)
        if request.correlation_id is None:
            request.correlation_id = current_correlation_id()
        request._done = asyncio.get_running_loop().create_future()
        self._queue.append(request)
        logger.debug("Utterance queued", request_id=request.id, queue_length=len(self._queue))
        self._ensure_worker()
        return request

    async def speak(self, text: str, **options: Any) -> bool:
        """Queue `text` and wait until it has played. False if rejected or not played."""
        request = self.enqueue(text, **options)
        if request is None:
            return False
        return await request.wait()

    async def wait_idle(self) -> None:
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    def pause(self) -> None:
        if self._current is not None and self._paused_at is None:
            self._paused_at = self._now()
            self.player.pause()

    def resume(self) -> None:
        if self._paused_at is not None:
            self._paused_total += self._now() - self._paused_at
            self._paused_at = None
            self.player.resume()

    async def stop(self) -> None:
        """Cancel current playback and drop everything queued."""
        while self._queue:
            self._queue.popleft()._finish("cancelled")
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        await self.player.stop()
        if self._current is not None:
            self._current._finish("cancelled")
            self._current = None
        await self._set_busy(False)

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        await self._set_busy(True)
        try:
            while self._queue:
                request = self._queue.popleft()
                # The worker outlives commands; each utterance reports under its own
                with correlation_scope(request.correlation_id):
                    await self._play(request)
        finally:
            if not self._queue:
                await self._set_busy(False)

    async def _set_busy(self, busy: bool) -> None:
        if busy == self._busy:
            return
        self._busy = busy
        await _run_callback("on_busy_change", self.on_busy_change, busy)

    async def _audio_for(self, request: UtteranceRequest) -> Tuple[Optional[bytes], bool]:
        if self.synthesizer is None:
            return None, False
        key = request.cache_key
        if request.use_cache and key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key], True
        audio = await self.synthesizer.synthesize(
            request.spoken_text,
            language=request.language,
            voice=request.voice,
            rate=request.rate,
            pitch=request.pitch,
            volume=request.volume,
        )
        if request.use_cache:
            self._cache[key] = audio
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return audio, False

    async def _play(self, request: UtteranceRequest) -> None:
        self._current = request
        self._paused_at = None
        self._paused_total = 0.0
        request.status = "playing"
        request.started_at = self._now()
        try:
            audio, cache_hit = await self._audio_for(request)
            emitter.emit(
                "feedback.started",
                session_id=self.session_id,
                request_id=request.id,
                language=request.language,
                text_length=len(request.spoken_text),
                cache_hit=cache_hit,
            )
            await _run_callback("on_start", request.on_start, request)
            await self.player.play(request.spoken_text, audio)
        except asyncio.CancelledError:
            request._finish("cancelled")
            raise
        except Exception as e:
            logger.error(
                "Utterance failed",
                request_id=request.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            emitter.emit(
                "feedback.failed",
                session_id=self.session_id,
                severity=Severity.ERROR,
                request_id=request.id,
                error_type=type(e).__name__,
            )
            request._finish("failed")
            await _run_callback("on_error", request.on_error, request, e)
        else:
            request._finish("done")
            emitter.emit(
                "feedback.finished",
                session_id=self.session_id,
                request_id=request.id,
                duration_ms=int((self._now() - request.started_at) * 1000),
            )
            await _run_callback("on_end", request.on_end, request)
        finally:
            if self._current is request:
                self._current = None
