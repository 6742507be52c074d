"""
Voice command pipeline.

Owns one instance of every component and wires the data flow:

    transcript -> normalize -> resolve -> (clarify | context/execute)
               -> spoken feedback -> history + usage statistics -> telemetry

There is no module-level session state; everything a session needs hangs off
the VoiceCommandPipeline instance.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, List, Optional, Tuple

from logging_setup import get_logger, Component, correlation_scope

from .collaborators import InMemoryCart, RecordingNavigator, demo_catalog
from .config import VoiceCommerceConfig, get_config
from .context import ContextManager
from .errors import get_user_message
from .executor import CommandExecutor
from .feedback import FeedbackEngine, NullPlayer
from .google_cloud_tts import GoogleCloudSynthesizer
from .intent_resolver import IntentResolver
from .interfaces import AnalyticsSink, AudioSource, CartService, NavigationService, Player, RecognizerBackend, Synthesizer
from .messages import get_message, join_alternatives
from .models import CommandResult, Context, ExecutionResult, MatchResult, RecognitionState, TranscriptUpdate
from .normalizer import normalize
from .observability import PipelineObserver
from .preferences import Preferences, PreferencesStore
from .recognition import RecognitionEngine, RecognitionOptions
from .remote import HttpAnalyticsSink, HttpCommerceClient, RemotePreferencesClient
from .timers import CoalescingTimer

logger = get_logger(Component.PIPELINE)

# Final transcripts this short are noise ("äh", "ok")
MIN_AUTO_PROCESS_LENGTH = 3


class VoiceCommandPipeline:
    def __init__(
        self,
        *,
        preferences: PreferencesStore,
        resolver: IntentResolver,
        context: ContextManager,
        executor: CommandExecutor,
        feedback: FeedbackEngine,
        recognition: Optional[RecognitionEngine] = None,
        observer: Optional[PipelineObserver] = None,
        session_id: str = "local",
        history_size: int = 50,
        auto_process_delay_s: float = 0.5,
        mute_while_speaking: bool = True,
        sleep: Callable[[float], Any] = asyncio.sleep,
        resources: Tuple[Any, ...] = (),
    ):
        self.session_id = session_id
        self.preferences = preferences
        self.resolver = resolver
        self.context = context
        self.executor = executor
        self.feedback = feedback
        self.recognition = recognition
        self.observer = observer or PipelineObserver(session_id)
        self.mute_while_speaking = mute_while_speaking
        self.logger = get_logger(Component.PIPELINE, session_id=session_id)

        self.current_command: Optional[CommandResult] = None
        self.last_transcript: Optional[TranscriptUpdate] = None
        self.last_error: Optional[Tuple[str, str]] = None
        self._history: Deque[CommandResult] = deque(maxlen=history_size)
        self._pending_transcript: Optional[TranscriptUpdate] = None
        self._auto_timer = CoalescingTimer(
            auto_process_delay_s, self._process_pending, name="auto_process", sleep=sleep
        )
        self._resume_after_feedback = False
        self._custom_signature: Optional[list] = None
        self._resources = resources

        self.executor.on_stop = self.stop_listening
        self.feedback.on_busy_change = self._on_feedback_busy
        if self.recognition is not None:
            self.recognition.on_transcript(self.on_transcript)
            self.recognition.on_error(self._on_recognition_error)
        self.preferences.subscribe(self._apply_preferences)
        self._apply_preferences(self.preferences.preferences)

    # --- exposed state ---

    @property
    def history(self) -> List[CommandResult]:
        """Processed commands, most recent first."""
        return list(self._history)

    @property
    def live_context(self) -> Optional[Context]:
        return self.context.current

    @property
    def language(self) -> str:
        return self.preferences.preferences.language

    @property
    def recognition_options(self) -> RecognitionOptions:
        return RecognitionOptions.from_preferences(self.preferences.preferences)

    # --- preferences ---

    def _apply_preferences(self, prefs: Preferences) -> None:
        speaker = prefs.speaker
        self.feedback.configure(
            enabled=prefs.feedback.enabled,
            language=prefs.language,
            voice=speaker.voice,
            rate=speaker.rate,
            pitch=speaker.pitch,
            volume=speaker.volume,
        )
        commands = [c.model_dump() for c in prefs.advanced.custom_commands]
        if commands != self._custom_signature:
            self._custom_signature = commands
            self.resolver.set_custom_commands(commands)
            for command in commands:
                if command["intent"] not in self.executor.intents:
                    self.executor.register(command["intent"], self._custom_action(command["intent"], command.get("route")))
            logger.info("Custom commands applied", count=len(commands))

    def _custom_action(self, intent: str, route: Optional[str]) -> Callable[..., Awaitable[ExecutionResult]]:
        async def run(entities, language):
            if route:
                self.executor.navigator.go_to(route)
            return ExecutionResult(True, get_message("system.acknowledged", language), intent, {"route": route, **entities})
        return run

    # --- command processing ---

    async def process_command(self, text: str, confidence: float = 1.0) -> CommandResult:
        """
        Run one utterance through the pipeline and return its CommandResult.

        Never raises for resolution or execution problems; those end up in the
        result and in the spoken answer.
        """
        started = time.perf_counter()
        prefs = self.preferences.preferences
        language, dialect = prefs.language, prefs.dialect

        normalized = normalize(text, language, dialect)
        match = self.resolver.match(
            normalized,
            self.context.current,
            language=language,
            confidence=confidence,
            threshold=prefs.recognition.confidence_threshold,
            dialect=dialect,
        )
        result = CommandResult(
            original_text=text,
            normalized_text=normalized,
            language=language,
            intent=match.intent,
            entities=dict(match.entities),
            confidence=match.confidence,
            category=match.category,
            pattern=match.pattern,
            dialect=match.dialect,
            suggestions=list(match.suggestions),
        )
        with correlation_scope(result.id):
            return await self._complete(result, match, prefs, started)

    async def _complete(self, result: CommandResult, match: MatchResult, prefs: Preferences, started: float) -> CommandResult:
        language = result.language
        self.current_command = result
        self.observer.resolved(result, match)

        if match.matched:
            execution = await self.executor.execute(match.intent, match.entities, language)
            result.execution = execution
            message, speak = execution.message, (
                prefs.feedback.speak_confirmations if execution.success else prefs.feedback.speak_errors
            )
        else:
            message, speak = self._clarification(match, language), True

        result.processing_ms = int((time.perf_counter() - started) * 1000)
        if match.matched:
            self.observer.executed(result, result.execution)
        else:
            self.observer.clarification_requested(result)

        if prefs.privacy.save_history:
            self._history.appendleft(result)
        self.preferences.record_command(result.intent, result.confidence, result.success)
        if prefs.privacy.share_analytics:
            self.observer.telemetry(result)

        if speak:
            self.feedback.enqueue(message)
        self.logger.info(
            "Command processed",
            intent=result.intent,
            confidence=result.confidence,
            success=result.success,
            processing_ms=result.processing_ms,
        )
        return result

    @staticmethod
    def _clarification(match: MatchResult, language: str) -> str:
        message = get_message("clarify.low_confidence", language)
        if match.suggestions:
            options = join_alternatives([s.text for s in match.suggestions], language)
            message = f"{message} {get_message('clarify.suggestions', language, suggestions=options)}"
        return message

    # --- recognition wiring ---

    async def on_transcript(self, update: TranscriptUpdate) -> None:
        """Transcript subscriber: remember it, and auto-process finals after a quiet period."""
        self.last_transcript = update
        if not update.is_final:
            return
        if not self.preferences.preferences.advanced.auto_process:
            return
        if len(update.text.strip()) < MIN_AUTO_PROCESS_LENGTH:
            return
        self._pending_transcript = update
        self._auto_timer.schedule()

    async def _process_pending(self) -> None:
        update, self._pending_transcript = self._pending_transcript, None
        if update is not None:
            await self.process_command(update.text, update.confidence)

    async def _on_recognition_error(self, category: str, detail: str) -> None:
        prefs = self.preferences.preferences
        message = get_user_message(category, prefs.language)
        self.last_error = (category, message)
        self.preferences.record_error(category)
        self.logger.warning("Recognition error surfaced", category=category, detail=detail)
        if prefs.feedback.speak_errors:
            self.feedback.enqueue(message)

    async def start_listening(self) -> bool:
        if self.recognition is None:
            return False
        self.last_error = None
        return await self.recognition.start(self.recognition_options)

    async def stop_listening(self) -> None:
        self._resume_after_feedback = False
        if self.recognition is not None:
            await self.recognition.stop()

    async def _on_feedback_busy(self, busy: bool) -> None:
        if not self.mute_while_speaking or self.recognition is None:
            return
        if busy:
            if self.recognition.state in (RecognitionState.STARTING, RecognitionState.LISTENING, RecognitionState.PROCESSING):
                self._resume_after_feedback = True
                logger.debug("Pausing recognition while feedback plays")
                await self.recognition.stop(pause=True)
        elif self._resume_after_feedback:
            self._resume_after_feedback = False
            if self.recognition.state == RecognitionState.STOPPING:
                await self.recognition.wait_idle()
            logger.debug("Resuming recognition after feedback")
            await self.recognition.start(self.recognition_options)

    # --- lifecycle ---

    async def aclose(self) -> None:
        self._auto_timer.cancel()
        # Stopping the feedback worker reports "not busy"; nothing may resume listening after this
        self._resume_after_feedback = False
        self.feedback.on_busy_change = None
        if self.recognition is not None:
            await self.recognition.aclose()
        await self.feedback.stop()
        await self.observer.drain()
        await self.preferences.aclose()
        for resource in self._resources:
            await resource.aclose()


def build_pipeline(
    config: Optional[VoiceCommerceConfig] = None,
    *,
    session_id: str = "local",
    cart: Optional[CartService] = None,
    navigator: Optional[NavigationService] = None,
    prices: Any = None,
    restaurant: Any = None,
    analytics: Optional[AnalyticsSink] = None,
    player: Optional[Player] = None,
    synthesizer: Optional[Synthesizer] = None,
    backend: Optional[RecognizerBackend] = None,
    audio: Optional[AudioSource] = None,
    remote: Any = None,
    preferences_dir: Optional[str] = None,
    now: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Any] = asyncio.sleep,
) -> VoiceCommandPipeline:
    """
    Assemble a pipeline from configuration.

    Anything not passed in is built from `config`: HTTP clients where a URL is
    configured, in-memory collaborators otherwise. Call `await
    pipeline.preferences.load()` before the first command.
    """
    config = config or get_config()
    resources: List[Any] = []

    if cart is None:
        if config.commerce_api_url:
            cart = HttpCommerceClient(config.commerce_api_url, timeout_s=config.http_timeout_seconds)
            resources.append(cart)
        else:
            cart = InMemoryCart()
    if analytics is None and config.analytics_url:
        analytics = HttpAnalyticsSink(config.analytics_url, timeout_s=config.http_timeout_seconds)
        resources.append(analytics)
    if remote is None and config.preferences_remote_url:
        remote = RemotePreferencesClient(config.preferences_remote_url, timeout_s=config.http_timeout_seconds)
        resources.append(remote)
    if synthesizer is None and config.google_tts_api_key:
        synthesizer = GoogleCloudSynthesizer(
            api_key=config.google_tts_api_key,
            sample_rate=config.google_tts_sample_rate,
            session_id=session_id,
        )
        resources.append(synthesizer)
    if prices is None or restaurant is None:
        catalog = demo_catalog()
        prices = prices or catalog
        restaurant = restaurant or catalog

    store = PreferencesStore(
        preferences_dir or config.preferences_dir,
        config.device_id,
        debounce_s=config.persist_debounce_ms / 1000.0,
        remote=remote,
        session_id=session_id,
    )
    context = ContextManager(config.context_expiry_seconds, session_id=session_id, now=now)
    executor = CommandExecutor(
        cart,
        navigator or RecordingNavigator(),
        context,
        prices=prices,
        restaurant=restaurant,
    )
    feedback = FeedbackEngine(
        player or NullPlayer(),
        synthesizer,
        language=config.default_language,
        session_id=session_id,
        now=now,
    )
    recognition = None
    if backend is not None:
        recognition = RecognitionEngine(
            backend,
            audio,
            session_id=session_id,
            now=now,
            sleep=sleep,
            wake_window_s=config.wake_word_window_seconds,
            timeout_retry_s=config.timeout_retry_ms / 1000.0,
            wake_restart_s=config.wake_restart_ms / 1000.0,
        )

    return VoiceCommandPipeline(
        preferences=store,
        resolver=IntentResolver(),
        context=context,
        executor=executor,
        feedback=feedback,
        recognition=recognition,
        observer=PipelineObserver(session_id, analytics),
        session_id=session_id,
        history_size=config.history_size,
        auto_process_delay_s=config.auto_process_delay_ms / 1000.0,
        mute_while_speaking=config.mute_while_speaking,
        sleep=sleep,
        resources=tuple(resources),
    )
