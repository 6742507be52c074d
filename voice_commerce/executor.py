"""
Command execution.

A static dispatch table maps each intent to one coroutine. Before dispatch the
live context gets first say: confirm/deny resolve it, compatible intents
refine it. Every action returns an ExecutionResult with a localized message;
exceptions raised by an action are turned into a localized failure result and
never leave execute().
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import quote

from logging_setup import get_logger, Component

from .context import RESOLUTION_INTENTS, ContextManager
from .errors import ProcessingError, classify_exception
from .interfaces import CartService, NavigationService, PriceLookup, RestaurantInfo
from .messages import get_message
from .models import ContextType, ExecutionResult

logger = get_logger(Component.EXECUTOR)

Action = Callable[[Dict[str, Any], str], Awaitable[ExecutionResult]]

# Contexts whose compatible intents still run their (side-effect free) action
INFORMATIONAL_CONTEXTS = frozenset({ContextType.PRODUCT_SELECTION, ContextType.HELP})

ROUTES = {
    "navigate_menu": "/menu",
    "navigate_home": "/",
    "navigate_cart": "/cart",
    "navigate_orders": "/orders",
    "show_all_tables": "/tables",
    "open_settings": "/settings",
    "checkout": "/checkout",
}

NAVIGATION_MESSAGES = {
    "navigate_menu": "navigation.menu",
    "navigate_home": "navigation.home",
    "navigate_cart": "navigation.cart",
    "navigate_orders": "navigation.orders",
    "show_all_tables": "navigation.tables",
    "open_settings": "navigation.settings",
}


def _format_price(value: float) -> str:
    return f"{value:.2f}"


class CommandExecutor:
    def __init__(
        self,
        cart: CartService,
        navigator: NavigationService,
        context: ContextManager,
        *,
        prices: Optional[PriceLookup] = None,
        restaurant: Optional[RestaurantInfo] = None,
        on_stop: Optional[Callable[[], Awaitable[Any]]] = None,
    ):
        self.cart = cart
        self.navigator = navigator
        self.context = context
        self.prices = prices
        self.restaurant = restaurant
        self.on_stop = on_stop
        self.last_command: Optional[Tuple[str, Dict[str, Any], str]] = None

        self._actions: Dict[str, Action] = {
            **{intent: self._navigation(intent) for intent in NAVIGATION_MESSAGES},
            "create_order": self._create_order,
            "cancel_order": self._cancel_order,
            "check_table_status": self._table_status,
            "search_products": self._search,
            "show_category": self._show_category,
            "product_info": self._product_info,
            "price_query": self._price_query,
            "add_to_cart": self._add_to_cart,
            "remove_from_cart": self._remove_from_cart,
            "clear_cart": self._clear_cart,
            "checkout": self._checkout,
            "make_reservation": self._make_reservation,
            "opening_hours": self._opening_hours,
            "location_info": self._location_info,
            "show_help": self._help,
            "greeting": self._greeting,
            "stop_listening": self._stop_listening,
        }

    @property
    def intents(self) -> Tuple[str, ...]:
        return tuple(self._actions) + ("confirm", "deny", "repeat_last")

    def register(self, intent: str, action: Action) -> None:
        """Attach an action for an intent not in the built-in table (custom commands)."""
        self._actions[intent] = action

    async def execute(self, intent: str, entities: Mapping[str, Any], language: str) -> ExecutionResult:
        entities = dict(entities)
        try:
            if intent == "repeat_last":
                return await self._repeat(language)
            if intent in RESOLUTION_INTENTS:
                return await self._resolve_context(intent, language)
            if self.context.is_compatible(intent):
                result = await self._update_context(intent, entities, language)
            else:
                action = self._actions.get(intent)
                if action is None:
                    raise ProcessingError(f"No action registered for intent {intent!r}")
                result = await action(entities, language)
            self.last_command = (intent, entities, language)
            return result
        except Exception as e:
            logger.error(
                "Action failed",
                intent=intent,
                error=str(e),
                error_type=type(e).__name__,
                category=classify_exception(e),
            )
            return ExecutionResult(
                success=False,
                message=get_message("failure.generic", language),
                action=intent,
                data={"error": str(e), "error_type": type(e).__name__},
            )

    # --- context ---

    async def _resolve_context(self, intent: str, language: str) -> ExecutionResult:
        context = self.context.current
        if context is None:
            return ExecutionResult(False, get_message(f"system.{intent}_none", language), intent)

        payload = dict(context.payload)
        if intent == "confirm":
            if context.type == ContextType.ORDER_CREATION:
                order = await self.cart.create_order(payload)
                message = get_message("order.confirmed", language)
                data = {"order": order}
            elif context.type == ContextType.RESERVATION:
                message = get_message("reservation.confirmed", language)
                data = {"reservation": payload}
            else:
                message = get_message("system.acknowledged", language)
                data = {}
        else:
            if context.type == ContextType.ORDER_CREATION:
                message = get_message("order.discarded", language)
            elif context.type == ContextType.RESERVATION:
                message = get_message("reservation.discarded", language)
            else:
                message = get_message("system.acknowledged", language)
            data = {"discarded": payload}

        # Cleared only once the commit went through
        self.context.clear(reason="confirmed" if intent == "confirm" else "denied")
        data["context_type"] = context.type.value
        return ExecutionResult(True, message, intent, data)

    async def _update_context(self, intent: str, entities: Dict[str, Any], language: str) -> ExecutionResult:
        context = self.context.update_payload(intent, entities)
        if context.type in INFORMATIONAL_CONTEXTS:
            return await self._actions[intent](entities, language)

        if context.type == ContextType.ORDER_CREATION:
            key = "order.item_added" if intent == "add_to_cart" else "order.item_removed"
            message = get_message(key, language, item=entities.get("item", ""), quantity=entities.get("quantity", 1))
        elif context.type == ContextType.RESERVATION:
            message = get_message("reservation.updated", language, **self._reservation_fields(context.payload))
        else:
            message = get_message("system.context_updated", language)
        return ExecutionResult(True, message, intent, {"context": context.to_dict()})

    # --- navigation ---

    def _navigation(self, intent: str) -> Action:
        async def navigate(entities, language):
            route = ROUTES[intent]
            self._go(route)
            return ExecutionResult(True, get_message(NAVIGATION_MESSAGES[intent], language), intent, {"route": route})
        return navigate

    def _go(self, route: str) -> None:
        self.navigator.go_to(route)

    async def _search(self, entities, language):
        query = entities.get("query", "")
        self._go(f"/search?q={quote(query)}")
        return ExecutionResult(True, get_message("navigation.search", language, query=query), "search_products", {"query": query})

    async def _show_category(self, entities, language):
        category = entities.get("category", "")
        self._go(f"/menu?category={quote(category)}")
        if self.context.current is None:
            self.context.create_context(ContextType.PRODUCT_SELECTION, {"category": category})
        return ExecutionResult(True, get_message("navigation.category", language, category=category), "show_category", {"category": category})

    async def _product_info(self, entities, language):
        item = entities.get("item", "")
        self._go(f"/menu/product/{quote(item)}")
        if self.context.current is None:
            self.context.create_context(ContextType.PRODUCT_SELECTION, {"item": item})
        return ExecutionResult(True, get_message("info.product", language, item=item), "product_info", {"item": item})

    # --- cart ---

    async def _add_to_cart(self, entities, language):
        item = entities["item"]
        quantity = entities.get("quantity", 1)
        if not isinstance(quantity, int):
            raise ProcessingError(f"Unrecognized quantity {quantity!r}")
        await self.cart.add_item(item, quantity)
        return ExecutionResult(
            True,
            get_message("cart.added", language, quantity=quantity, item=item),
            "add_to_cart",
            {"item": item, "quantity": quantity},
        )

    async def _remove_from_cart(self, entities, language):
        item = entities["item"]
        await self.cart.remove_item(item)
        return ExecutionResult(True, get_message("cart.removed", language, item=item), "remove_from_cart", {"item": item})

    async def _clear_cart(self, entities, language):
        await self.cart.clear_cart()
        return ExecutionResult(True, get_message("cart.cleared", language), "clear_cart")

    async def _checkout(self, entities, language):
        self._go(ROUTES["checkout"])
        return ExecutionResult(True, get_message("cart.checkout", language), "checkout")

    # --- orders ---

    async def _create_order(self, entities, language):
        table = entities.get("table")
        self.context.create_context(ContextType.ORDER_CREATION, {"table": table, "items": []})
        return ExecutionResult(True, get_message("order.pending", language, table=table), "create_order", {"table": table})

    async def _cancel_order(self, entities, language):
        order_id = str(entities["order_id"])
        await self.cart.cancel_order(order_id, "voice_command")
        return ExecutionResult(True, get_message("order.cancelled", language, order_id=order_id), "cancel_order", {"order_id": order_id})

    async def _table_status(self, entities, language):
        table = entities.get("table")
        self._go(f"/tables/{table}")
        status = None
        if self.restaurant is not None:
            status = await self.restaurant.table_status(table)
        return ExecutionResult(True, get_message("order.table_status", language, table=table), "check_table_status", {"table": table, "status": status})

    # --- restaurant / info ---

    @staticmethod
    def _reservation_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "guests": payload.get("guests") or "?",
            "date": payload.get("date") or "?",
            "time": payload.get("time") or "?",
        }

    async def _make_reservation(self, entities, language):
        payload = {k: entities.get(k) for k in ("guests", "date", "time")}
        self.context.create_context(ContextType.RESERVATION, payload)
        return ExecutionResult(
            True,
            get_message("reservation.pending", language, **self._reservation_fields(payload)),
            "make_reservation",
            payload,
        )

    async def _price_query(self, entities, language):
        item = entities.get("item", "")
        price = await self.prices.get_price(item) if self.prices is not None else None
        if price is None:
            return ExecutionResult(True, get_message("info.price_unknown", language, item=item), "price_query", {"item": item, "price": None})
        return ExecutionResult(
            True,
            get_message("info.price", language, item=item, price=_format_price(price)),
            "price_query",
            {"item": item, "price": price},
        )

    async def _opening_hours(self, entities, language):
        hours = getattr(self.restaurant, "opening_hours", None)
        if not hours:
            return ExecutionResult(True, get_message("info.opening_hours_unknown", language), "opening_hours")
        return ExecutionResult(True, get_message("info.opening_hours", language, hours=hours), "opening_hours", {"hours": hours})

    async def _location_info(self, entities, language):
        address = getattr(self.restaurant, "address", None)
        if not address:
            return ExecutionResult(True, get_message("info.location_unknown", language), "location_info")
        return ExecutionResult(True, get_message("info.location", language, address=address), "location_info", {"address": address})

    async def _help(self, entities, language):
        if self.context.current is None:
            self.context.create_context(ContextType.HELP, {})
        return ExecutionResult(True, get_message("info.help", language), "show_help")

    async def _greeting(self, entities, language):
        return ExecutionResult(True, get_message("info.greeting", language), "greeting")

    # --- system ---

    async def _stop_listening(self, entities, language):
        if self.on_stop is not None:
            await self.on_stop()
        return ExecutionResult(True, get_message("system.stopped", language), "stop_listening")

    async def _repeat(self, language: str) -> ExecutionResult:
        if self.last_command is None:
            return ExecutionResult(False, get_message("system.repeat_none", language), "repeat_last")
        intent, entities, last_language = self.last_command
        logger.info("Repeating last command", intent=intent)
        return await self.execute(intent, entities, last_language)
