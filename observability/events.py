"""
Pipeline events.

A pipeline event records that something happened to a command or a session:
a transcript was finalized, an intent resolved, a context opened, an utterance
spoken, preferences persisted. Each event is written as one JSON line to
stdout and kept in the in-memory event store behind `GET /voice/events`.

Envelope: ts, session_id, component, event_type, severity, correlation_id, pii.
The correlation id defaults to the command currently being processed (see
`logging_setup.correlation_scope`), then to the session id.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from logging_setup import current_correlation_id, redact, redaction_enabled

from .event_store import event_store


class Component(str, Enum):
    PIPELINE = "pipeline"
    RECOGNITION = "recognition"
    INTENT_RESOLVER = "intent_resolver"
    CONTEXT = "context"
    EXECUTOR = "executor"
    FEEDBACK = "feedback"
    PREFERENCES = "preferences"
    ANALYTICS = "analytics"
    CONTROL_API = "control_api"


class Severity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


def pii_marker(*fields: str) -> Dict[str, Any]:
    """Mark `fields` of an event as things the customer said or entered."""
    return {"contains_pii": bool(fields), "fields": list(fields), "handling": "none"}


NO_PII = pii_marker()


def _apply_redaction(event: Dict[str, Any], pii: Dict[str, Any]) -> Dict[str, Any]:
    for name in pii["fields"]:
        if name in event:
            event[name] = redact(event[name])
    return {**pii, "handling": "redacted"}


class EventEmitter:
    """Emits events on behalf of one pipeline component."""

    def __init__(self, component: Component):
        self.component = component

    def emit(
        self,
        event_type: str,
        session_id: str,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        pii: Optional[Dict[str, Any]] = None,
        **fields: Any,
    ) -> Dict[str, Any]:
        pii = pii or NO_PII
        event: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or current_correlation_id() or session_id,
        }
        event.update(fields)
        if pii["contains_pii"] and redaction_enabled():
            pii = _apply_redaction(event, pii)
        event["pii"] = pii

        print(json.dumps(event, ensure_ascii=False, default=str), file=sys.stdout, flush=True)
        event_store.store(event)
        return event
