"""
Structured event emission and the in-memory event store.
"""
import json
from datetime import datetime, timedelta, timezone

import pytest

from logging_setup import correlation_scope
from observability.event_store import EventStore, event_store
from observability.events import Component, EventEmitter, Severity, pii_marker


@pytest.fixture(autouse=True)
def clean_store():
    event_store.clear()
    yield
    event_store.clear()


def _emitted(capsys):
    return [json.loads(line) for line in capsys.readouterr().out.strip().split("\n") if line]


class TestEventFormat:
    def test_envelope_fields(self, capsys):
        EventEmitter(Component.EXECUTOR).emit(
            "command.executed",
            session_id="sess-1",
            severity=Severity.WARN,
            intent="add_to_cart",
        )
        event = _emitted(capsys)[0]

        for key in ("ts", "session_id", "component", "event_type", "severity", "correlation_id", "pii"):
            assert key in event
        assert event["component"] == "executor"
        assert event["event_type"] == "command.executed"
        assert event["severity"] == "warn"
        assert event["intent"] == "add_to_cart"
        datetime.fromisoformat(event["ts"])

    def test_correlation_defaults_to_session(self, capsys):
        EventEmitter(Component.PIPELINE).emit("command.resolved", session_id="sess-2")
        EventEmitter(Component.PIPELINE).emit("command.resolved", session_id="sess-2", correlation_id="cmd_1")
        first, second = _emitted(capsys)
        assert first["correlation_id"] == "sess-2"
        assert second["correlation_id"] == "cmd_1"

    def test_pii_marker(self, capsys):
        EventEmitter(Component.RECOGNITION).emit(
            "transcript.final",
            session_id="sess-3",
            pii=pii_marker("text"),
            text="ich möchte einen burger",
        )
        event = _emitted(capsys)[0]
        assert event["pii"] == {"contains_pii": True, "fields": ["text"], "handling": "none"}
        assert event["text"] == "ich möchte einen burger"

    def test_default_pii_is_not_flagged(self, capsys):
        EventEmitter(Component.FEEDBACK).emit("feedback.finished", session_id="sess-4")
        assert _emitted(capsys)[0]["pii"]["contains_pii"] is False


class TestEventStore:
    def test_emitted_events_are_stored(self, capsys):
        emitter = EventEmitter(Component.CONTEXT)
        emitter.emit("context.created", session_id="a", context_type="order_creation")
        emitter.emit("context.cleared", session_id="b", context_type="order_creation", reason="confirmed")

        events = event_store.query(session_id="a")
        assert len(events) == 1
        assert events[0]["context_type"] == "order_creation"

    def test_family_prefix_filter(self, capsys):
        emitter = EventEmitter(Component.PIPELINE)
        for name in ("command.resolved", "command.executed", "context.created"):
            emitter.emit(name, session_id="s")
        assert [e["event_type"] for e in event_store.query(event_type="command.")] == [
            "command.resolved",
            "command.executed",
        ]

    def test_time_window_and_limit(self):
        store = EventStore()
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        for i in range(5):
            store.store({
                "ts": (base + timedelta(minutes=i)).isoformat(),
                "session_id": "s",
                "component": "feedback",
                "event_type": "feedback.started",
            })
        window = store.query(since=base + timedelta(minutes=1), until=base + timedelta(minutes=3))
        assert len(window) == 3
        assert len(store.query(limit=2)) == 2

    def test_bounded_capacity(self):
        store = EventStore(max_events=3)
        for i in range(5):
            store.store({"session_id": "s", "event_type": f"e{i}"})
        stats = store.get_stats()
        assert stats["total_events"] == 3
        assert [e["event_type"] for e in store.query()] == ["e2", "e3", "e4"]

    def test_correlation_filter_and_families(self):
        store = EventStore()
        store.store({"session_id": "s", "event_type": "command.resolved", "correlation_id": "cmd_1"})
        store.store({"session_id": "s", "event_type": "command.executed", "correlation_id": "cmd_1"})
        store.store({"session_id": "s", "event_type": "context.created", "correlation_id": "cmd_2"})

        assert [e["event_type"] for e in store.query(correlation_id="cmd_1")] == [
            "command.resolved",
            "command.executed",
        ]
        assert store.get_stats()["families"] == {"command": 2, "context": 1}

    def test_missing_envelope_fields_get_defaults(self):
        store = EventStore()
        store.store({"session_id": "s", "event_type": "feedback.started"})
        event = store.query()[0]
        assert event["correlation_id"] == "s"
        assert event["component"] == "unknown"


class TestCorrelationAndRedaction:
    def test_correlation_follows_active_command(self, capsys):
        emitter = EventEmitter(Component.EXECUTOR)
        with correlation_scope("cmd_9"):
            emitter.emit("command.executed", session_id="s")
        emitter.emit("command.executed", session_id="s")
        inside, outside = _emitted(capsys)
        assert inside["correlation_id"] == "cmd_9"
        assert outside["correlation_id"] == "s"

    def test_pii_fields_are_redacted_on_request(self, capsys, monkeypatch):
        monkeypatch.setenv("VC_REDACT_PII", "1")
        EventEmitter(Component.RECOGNITION).emit(
            "transcript.final",
            session_id="s",
            pii=pii_marker("text"),
            text="ich möchte einen burger",
            confidence=0.9,
        )
        event = _emitted(capsys)[0]
        assert event["text"] == "<redacted:23>"
        assert event["confidence"] == 0.9
        assert event["pii"]["handling"] == "redacted"
        assert event_store.query(event_type="transcript.final")[0]["text"] == "<redacted:23>"
