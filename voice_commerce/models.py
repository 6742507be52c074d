"""
Data model shared across the voice pipeline.

Plain dataclasses and str-Enums; each component owns the instances it creates
and hands them on by value through its public operations.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class RecognitionState(str, Enum):
    """Recognition engine states."""
    IDLE = "idle"
    STARTING = "starting"
    LISTENING = "listening"
    PROCESSING = "processing"
    STOPPING = "stopping"
    ERROR = "error"


class ContextType(str, Enum):
    """Conversational frames that can interpret a follow-up utterance."""
    ORDER_CREATION = "order_creation"
    PRODUCT_SELECTION = "product_selection"
    PAYMENT = "payment"
    RESERVATION = "reservation"
    HELP = "help"


class CommandCategory(str, Enum):
    NAVIGATION = "navigation"
    ORDERS = "orders"
    MENU = "menu"
    CART = "cart"
    RESTAURANT = "restaurant"
    SYSTEM = "system"


# Matching and tie-break order
CATEGORY_PRIORITY: List[CommandCategory] = [
    CommandCategory.NAVIGATION,
    CommandCategory.ORDERS,
    CommandCategory.MENU,
    CommandCategory.CART,
    CommandCategory.RESTAURANT,
    CommandCategory.SYSTEM,
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Alternative:
    """One N-best recognition hypothesis."""
    transcript: str
    confidence: float


@dataclass(frozen=True)
class TranscriptUpdate:
    """What the recognition engine publishes to transcript subscribers."""
    kind: str  # "interim" | "final"
    text: str
    confidence: float
    language: str
    alternatives: tuple[Alternative, ...] = ()
    wake_word: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def is_final(self) -> bool:
        return self.kind == "final"


@dataclass
class RecognitionSession:
    """
    State of the one active recognition session.

    Created by RecognitionEngine.start(), discarded when the engine goes back
    to idle or error.
    """
    session_id: str
    language: str
    continuous: bool
    started_at: float
    interim_transcript: str = ""
    final_transcript: str = ""
    confidence: float = 0.0
    alternatives: List[Alternative] = field(default_factory=list)
    audio_level: float = 0.0
    noise_level: float = 0.0
    result_count: int = 0
    average_confidence: float = 0.0

    def record_final(self, text: str, confidence: float, alternatives: List[Alternative]) -> None:
        self.final_transcript = text
        self.interim_transcript = ""
        self.confidence = confidence
        self.alternatives = alternatives
        self.result_count += 1
        # Running mean over every final result in this session
        self.average_confidence += (confidence - self.average_confidence) / self.result_count


@dataclass(frozen=True)
class Suggestion:
    """A known example utterance offered when a command was not understood."""
    text: str
    intent: str
    category: str
    similarity: float


@dataclass
class MatchResult:
    """Outcome of intent resolution for one normalized utterance."""
    intent: Optional[str]
    entities: Dict[str, Any]
    confidence: float
    category: Optional[str] = None
    pattern: Optional[str] = None
    dialect: bool = False
    suggestions: List[Suggestion] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.intent is not None


@dataclass
class ExecutionResult:
    success: bool
    message: str
    action: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CommandResult:
    """One processed utterance, as kept in the command history."""
    original_text: str
    normalized_text: str
    language: str
    intent: Optional[str]
    entities: Dict[str, Any]
    confidence: float
    category: Optional[str] = None
    pattern: Optional[str] = None
    dialect: bool = False
    suggestions: List[Suggestion] = field(default_factory=list)
    execution: Optional[ExecutionResult] = None
    processing_ms: int = 0
    timestamp: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=lambda: f"cmd_{uuid.uuid4().hex[:12]}")

    @property
    def executed(self) -> bool:
        return self.execution is not None

    @property
    def success(self) -> bool:
        return self.execution is not None and self.execution.success

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class Context:
    """The single live conversational frame."""
    type: ContextType
    payload: Dict[str, Any]
    created_at: float
    created_wall: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "payload": dict(self.payload),
            "created_at": self.created_wall.isoformat(),
        }


@dataclass(frozen=True)
class CommandTelemetry:
    """Per-command record handed to the analytics sink."""
    session_id: str
    intent: Optional[str]
    confidence: float
    language: str
    success: bool
    category: Optional[str] = None
    processing_ms: int = 0
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data
