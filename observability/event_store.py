"""
In-memory event store behind `GET /voice/events`.

Bounded (oldest events fall off first) so a kiosk or agent worker that runs for
days keeps a fixed footprint. Events are kept as emitted; the timestamp is
parsed once on the way in for time-window queries.
"""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional


def event_family(event_type: str) -> str:
    """"command.executed" -> "command"."""
    return event_type.split(".", 1)[0]


@dataclass(frozen=True)
class _Entry:
    ts: datetime
    event: Dict[str, Any]

    def get(self, key: str, default: str = "") -> str:
        return self.event.get(key, default)


def _parse_ts(raw: Any) -> datetime:
    if isinstance(raw, str):
        ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


class EventStore:
    def __init__(self, max_events: int = 10000):
        self.max_events = max_events
        self._entries: Deque[_Entry] = deque(maxlen=max_events)

    def store(self, event: Dict[str, Any]) -> None:
        session_id = event.get("session_id", "")
        event = {
            "component": "unknown",
            "event_type": "unknown",
            "severity": "info",
            "correlation_id": session_id,
            **event,
        }
        self._entries.append(_Entry(ts=_parse_ts(event.get("ts")), event=event))

    def query(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[str] = None,
        component: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
        correlation_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Matching events, oldest first.

        `event_type` ending in "." selects a whole family ("command." ->
        command.resolved, command.executed, ...). `correlation_id` selects the
        events of one processed command.
        """
        matches: List[Dict[str, Any]] = []
        for entry in self._entries:
            if session_id and entry.get("session_id") != session_id:
                continue
            if correlation_id and entry.get("correlation_id") != correlation_id:
                continue
            if component and entry.get("component") != component:
                continue
            if event_type:
                kind = entry.get("event_type")
                if not (kind.startswith(event_type) if event_type.endswith(".") else kind == event_type):
                    continue
            if (since and entry.ts < since) or (until and entry.ts > until):
                continue
            matches.append(dict(entry.event))
            if limit and len(matches) >= limit:
                break
        return matches

    def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> Dict[str, Any]:
        families = Counter(event_family(e.get("event_type")) for e in self._entries)
        return {
            "total_events": len(self._entries),
            "max_events": self.max_events,
            "families": dict(families),
            "oldest_event_ts": self._entries[0].ts.isoformat() if self._entries else None,
            "newest_event_ts": self._entries[-1].ts.isoformat() if self._entries else None,
        }


# Shared by every EventEmitter in the process
event_store = EventStore()
