"""
Pipeline observability.

Emits the per-command lifecycle events (command.resolved, then either
command.clarification_requested or command.executed) under one correlation id,
and hands telemetry to the analytics sink as a background task so a slow or
failing sink never delays the spoken answer.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Set

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter, Severity, pii_marker

from .interfaces import AnalyticsSink
from .models import CommandResult, CommandTelemetry, ExecutionResult, MatchResult

logger = get_logger(LogComponent.PIPELINE)


class PipelineObserver:
    def __init__(self, session_id: str, analytics: Optional[AnalyticsSink] = None):
        self.session_id = session_id
        self.analytics = analytics
        self.emitter = EventEmitter(ObsComponent.PIPELINE)
        self.logger = get_logger(LogComponent.PIPELINE, session_id=session_id)
        self._pending: Set[asyncio.Task] = set()

    def resolved(self, result: CommandResult, match: MatchResult) -> None:
        self.emitter.emit(
            "command.resolved",
            session_id=self.session_id,
            correlation_id=result.id,
            pii=pii_marker("normalized_text"),
            normalized_text=result.normalized_text,
            intent=match.intent,
            category=match.category,
            confidence=match.confidence,
            dialect=match.dialect,
            language=result.language,
        )

    def clarification_requested(self, result: CommandResult) -> None:
        self.emitter.emit(
            "command.clarification_requested",
            session_id=self.session_id,
            severity=Severity.WARN,
            correlation_id=result.id,
            confidence=result.confidence,
            suggestions=[s.intent for s in result.suggestions],
        )

    def executed(self, result: CommandResult, execution: ExecutionResult) -> None:
        self.emitter.emit(
            "command.executed",
            session_id=self.session_id,
            severity=Severity.INFO if execution.success else Severity.WARN,
            correlation_id=result.id,
            intent=result.intent,
            success=execution.success,
            processing_ms=result.processing_ms,
            error_type=execution.data.get("error_type"),
        )

    def telemetry(self, result: CommandResult) -> Optional[asyncio.Task]:
        """Schedule delivery of this command's telemetry; never raises."""
        if self.analytics is None:
            return None
        telemetry = CommandTelemetry(
            session_id=self.session_id,
            intent=result.intent,
            confidence=result.confidence,
            language=result.language,
            success=result.success,
            category=result.category,
            processing_ms=result.processing_ms,
        )
        task = asyncio.get_running_loop().create_task(self._deliver(telemetry, result.id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _deliver(self, telemetry: CommandTelemetry, correlation_id: str) -> None:
        try:
            await self.analytics.record(telemetry)
        except Exception as e:
            self.logger.warning(
                "Analytics delivery failed",
                intent=telemetry.intent,
                error=str(e),
                error_type=type(e).__name__,
            )
            self.emitter.emit(
                "analytics.delivery_failed",
                session_id=self.session_id,
                severity=Severity.WARN,
                correlation_id=correlation_id,
                error_type=type(e).__name__,
            )

    async def drain(self) -> None:
        """Wait for outstanding telemetry deliveries."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
