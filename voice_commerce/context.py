"""
Single-slot conversational context.

At most one context is live. Creating one replaces the previous one wholesale;
the only in-place change is a payload update from a compatible intent.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Mapping, Optional

from logging_setup import get_logger, Component
from observability.events import Component as EventComponent, EventEmitter

from .models import Context, ContextType

logger = get_logger(Component.CONTEXT)
emitter = EventEmitter(EventComponent.CONTEXT)

# Unresolved contexts (an order left pending, a half-specified reservation)
# are dropped on first access after this many seconds.
DEFAULT_CONTEXT_EXPIRY_SECONDS = 60.0

# Which intents refine which context instead of running on their own
COMPATIBLE_INTENTS: Dict[ContextType, frozenset] = {
    ContextType.ORDER_CREATION: frozenset({"add_to_cart", "remove_from_cart"}),
    ContextType.RESERVATION: frozenset({"make_reservation"}),
    ContextType.PRODUCT_SELECTION: frozenset({"product_info", "show_category", "price_query"}),
    ContextType.HELP: frozenset({"show_help"}),
    ContextType.PAYMENT: frozenset(),
}

RESOLUTION_INTENTS = frozenset({"confirm", "deny"})


def _apply_order_item(payload: Dict[str, Any], intent: str, entities: Mapping[str, Any]) -> None:
    items = list(payload.get("items", []))
    name = entities.get("item")
    if not name:
        return
    if intent == "add_to_cart":
        quantity = entities.get("quantity", 1)
        for line in items:
            if line["item"] == name:
                line["quantity"] = line["quantity"] + quantity
                break
        else:
            items.append({"item": name, "quantity": quantity})
    else:
        items = [line for line in items if line["item"] != name]
    payload["items"] = items


class ContextManager:
    def __init__(
        self,
        expiry_s: float = DEFAULT_CONTEXT_EXPIRY_SECONDS,
        *,
        session_id: str = "local",
        now: Callable[[], float] = time.monotonic,
    ):
        self.expiry_s = expiry_s
        self.session_id = session_id
        self._now = now
        self._context: Optional[Context] = None

    @property
    def current(self) -> Optional[Context]:
        """The live context, or None. An expired context is cleared here."""
        if self._context is not None and self.expiry_s > 0:
            age = self._now() - self._context.created_at
            if age > self.expiry_s:
                logger.info("Context expired", type=self._context.type.value, age_s=round(age, 1))
                self.clear(reason="expired")
        return self._context

    def create_context(self, type: ContextType, payload: Optional[Mapping[str, Any]] = None) -> Context:
        previous = self._context
        self._context = Context(type=ContextType(type), payload=dict(payload or {}), created_at=self._now())
        emitter.emit(
            "context.created",
            session_id=self.session_id,
            context_type=self._context.type.value,
            replaced=previous.type.value if previous else None,
        )
        return self._context

    def is_compatible(self, intent: Optional[str]) -> bool:
        context = self.current
        if context is None or intent is None:
            return False
        return intent in COMPATIBLE_INTENTS.get(context.type, frozenset())

    def update_payload(self, intent: str, entities: Mapping[str, Any]) -> Context:
        """
        Fold a compatible intent's entities into the live context.

        Order creation keeps a list of pending line items; other context types
        take the entities as payload fields.
        """
        context = self.current
        if context is None or not self.is_compatible(intent):
            raise ValueError(f"Intent {intent!r} cannot update the current context")
        if context.type == ContextType.ORDER_CREATION:
            _apply_order_item(context.payload, intent, entities)
        else:
            context.payload.update({k: v for k, v in entities.items() if v not in (None, "")})
            context.payload["last_intent"] = intent
        logger.debug("Context payload updated", type=context.type.value, intent=intent)
        return context

    def clear(self, reason: str = "cleared") -> Optional[Context]:
        previous, self._context = self._context, None
        if previous is not None:
            emitter.emit(
                "context.cleared",
                session_id=self.session_id,
                context_type=previous.type.value,
                reason=reason,
            )
        return previous
