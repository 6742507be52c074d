"""
Shared logging for the voice-commerce pipeline.

One JSON object per line on stdout. Every record carries the component that
wrote it, the session it belongs to and, while a command is being processed,
the command's correlation id, so one utterance can be followed from transcript
to spoken answer:

    with correlation_scope(result.id):
        logger.info("Command executed", intent="add_to_cart")

Transcript text and other things the customer said go through `info_pii` /
`debug_pii`. Those fields are nested under "pii" and are replaced by a length
marker when VC_REDACT_PII is set (kiosks in public spaces).
"""

import contextvars
import json
import logging
import os
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, Optional


class Component(str, Enum):
    """Pipeline components for log tagging."""
    PIPELINE = "pipeline"
    RECOGNITION = "recognition"
    WAKE_WORD = "wake_word"
    NORMALIZER = "normalizer"
    INTENT_RESOLVER = "intent_resolver"
    CONTEXT = "context"
    EXECUTOR = "executor"
    FEEDBACK = "feedback"
    SYNTHESIZER = "synthesizer"
    PREFERENCES = "preferences"
    ANALYTICS = "analytics"
    CONTROL_API = "control_api"
    LIVEKIT_TRANSPORT = "livekit_transport"


# Third-party loggers that are chatty at INFO on a kiosk
NOISY_LOGGERS = ("aiohttp.access", "httpx", "livekit", "uvicorn.access")

_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("correlation_id", default=None)

# LogRecord attributes that are not caller fields
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message", "asctime", "taskName", "component", "session_id", "correlation_id",
}


def redaction_enabled() -> bool:
    return os.getenv("VC_REDACT_PII", "").strip().lower() in ("1", "true", "yes", "on")


def redact(value: Any) -> str:
    """Stand-in for a personal value: keeps the length, drops the content."""
    return f"<redacted:{len(str(value))}>"


def current_correlation_id() -> Optional[str]:
    return _correlation_id.get()


@contextmanager
def correlation_scope(correlation_id: Optional[str]) -> Iterator[Optional[str]]:
    """
    Tag every log record (and event) emitted inside the block with `correlation_id`.

    None detaches the block from any command scope it was started in.
    """
    token = _correlation_id.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id.reset(token)


class JSONFormatter(logging.Formatter):
    """timestamp, severity, component, message, session/correlation ids, then caller fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "severity": record.levelname.lower(),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }
        for key in ("session_id", "correlation_id"):
            value = getattr(record, key, None)
            if value:
                entry[key] = value

        entry.update((k, v) for k, v in record.__dict__.items() if k not in _RECORD_ATTRS)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger:
    """
    Component-bound logger taking keyword fields.

        logger = get_logger(Component.EXECUTOR, session_id="kiosk-3")
        logger.info("Item added", item="rösti", quantity=2)
        logger.info_pii("Final transcript", transcript="zwei rösti bitte")
    """

    def __init__(self, component: str | Component, session_id: Optional[str] = None, logger_name: Optional[str] = None):
        self.component = component.value if isinstance(component, Component) else component
        self.session_id = session_id
        self.logger = logging.getLogger(logger_name or f"voice_commerce.{self.component}")

    def _log(self, level: int, message: str, pii: Optional[Dict[str, Any]] = None, **fields: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        exc_info = fields.pop("exc_info", None)

        extra: Dict[str, Any] = {"component": self.component, **fields}
        if self.session_id:
            extra.setdefault("session_id", self.session_id)
        correlation_id = current_correlation_id()
        if correlation_id:
            extra.setdefault("correlation_id", correlation_id)
        if pii:
            extra["pii"] = {k: redact(v) for k, v in pii.items()} if redaction_enabled() else pii

        self.logger.log(level, message, exc_info=exc_info, stacklevel=3, extra=extra)

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, **fields)

    def critical(self, message: str, **fields: Any) -> None:
        self._log(logging.CRITICAL, message, **fields)

    def exception(self, message: str, **fields: Any) -> None:
        fields.setdefault("exc_info", True)
        self._log(logging.ERROR, message, **fields)

    def debug_pii(self, message: str, **pii_fields: Any) -> None:
        self._log(logging.DEBUG, message, pii=pii_fields)

    def info_pii(self, message: str, **pii_fields: Any) -> None:
        self._log(logging.INFO, message, pii=pii_fields)

    def with_session(self, session_id: str) -> "StructuredLogger":
        return StructuredLogger(self.component, session_id=session_id, logger_name=self.logger.name)


def setup_logging(level: str = "INFO", use_json: bool = True, include_timestamp: bool = True) -> None:
    """
    Configure the root logger once at process start (agent worker, control API).

    Plain-text mode is for local development; JSON is what log shipping expects.
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(JSONFormatter())
    else:
        fmt = "%(levelname)s - %(component)s - %(message)s"
        if include_timestamp:
            fmt = "%(asctime)s - " + fmt
        handler.setFormatter(logging.Formatter(fmt, defaults={"component": "unknown"}))
    root_logger.addHandler(handler)

    root_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(root_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root_level, logging.WARNING))


def get_logger(component: str | Component, session_id: Optional[str] = None) -> StructuredLogger:
    return StructuredLogger(component, session_id=session_id)
