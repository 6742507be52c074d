"""
In-memory collaborators.

Used by the HTTP surface when no commerce backend is configured, by the
LiveKit worker for demo rooms, and by the tests.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from logging_setup import get_logger, Component

from .models import CommandTelemetry

logger = get_logger(Component.EXECUTOR)


@dataclass
class CartLine:
    name: str
    quantity: int


class InMemoryCart:
    """Cart and order service kept in process memory."""

    def __init__(self):
        self.lines: Dict[str, CartLine] = {}
        self.orders: Dict[str, Dict[str, Any]] = {}
        self._order_ids = itertools.count(1001)

    async def add_item(self, name: str, quantity: int) -> CartLine:
        if quantity < 1:
            raise ValueError(f"Quantity must be positive, got {quantity}")
        line = self.lines.get(name)
        if line is None:
            line = self.lines[name] = CartLine(name=name, quantity=0)
        line.quantity += quantity
        return line

    async def remove_item(self, name: str) -> CartLine:
        if name not in self.lines:
            raise KeyError(f"{name} is not in the cart")
        return self.lines.pop(name)

    async def clear_cart(self) -> int:
        count = len(self.lines)
        self.lines.clear()
        return count

    async def create_order(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        order_id = str(next(self._order_ids))
        order = {"id": order_id, "status": "open", **dict(payload)}
        self.orders[order_id] = order
        return order

    async def cancel_order(self, order_id: str, reason: str) -> Dict[str, Any]:
        order = self.orders.get(order_id)
        if order is None:
            raise KeyError(f"Unknown order {order_id}")
        order["status"] = "cancelled"
        order["cancel_reason"] = reason
        return order

    def snapshot(self) -> List[Dict[str, Any]]:
        return [{"item": line.name, "quantity": line.quantity} for line in self.lines.values()]


class RecordingNavigator:
    """Navigation service that remembers every route it was sent to."""

    def __init__(self):
        self.routes: List[str] = []

    def go_to(self, route: str) -> None:
        self.routes.append(route)
        logger.debug("Navigate", route=route)

    @property
    def current(self) -> Optional[str]:
        return self.routes[-1] if self.routes else None


@dataclass
class MenuCatalog:
    """Prices and restaurant facts for informational answers."""

    prices: Dict[str, float] = field(default_factory=dict)
    opening_hours: Optional[str] = None
    address: Optional[str] = None
    tables: Dict[int, str] = field(default_factory=dict)

    async def get_price(self, item: str) -> Optional[float]:
        key = item.strip().lower()
        if key in self.prices:
            return self.prices[key]
        # "burgers" -> "burger", "pizzas" -> "pizza"
        if key.endswith("s") and key[:-1] in self.prices:
            return self.prices[key[:-1]]
        return None

    async def table_status(self, table: int) -> Optional[str]:
        return self.tables.get(table)


class LoggingAnalyticsSink:
    """Analytics sink that logs telemetry and keeps it for inspection."""

    def __init__(self):
        self.records: List[CommandTelemetry] = []

    async def record(self, telemetry: CommandTelemetry) -> None:
        self.records.append(telemetry)
        logger.info(
            "Command telemetry",
            session_id=telemetry.session_id,
            intent=telemetry.intent,
            confidence=telemetry.confidence,
            language=telemetry.language,
            success=telemetry.success,
        )


def demo_catalog() -> MenuCatalog:
    """Small fixed menu for demo rooms and the local HTTP server."""
    return MenuCatalog(
        prices={
            "burger": 18.5,
            "cheeseburger": 19.5,
            "pommes": 6.0,
            "rösti": 14.0,
            "bratwurst": 12.5,
            "cola": 4.5,
            "bier": 6.5,
            "salat": 9.0,
        },
        opening_hours="Mo-Fr 11:00-22:00, Sa 12:00-23:00",
        address="Bahnhofstrasse 1, 8001 Zürich",
        tables={1: "free", 2: "occupied", 3: "reserved"},
    )
