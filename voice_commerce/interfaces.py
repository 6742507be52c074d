"""
Collaborator interfaces.

The pipeline talks to everything outside the voice core through these
protocols. In-memory implementations live in collaborators.py, HTTP ones in
remote.py, LiveKit ones in livekit_bridge.py.
"""

from __future__ import annotations

from typing import Any, AsyncContextManager, Dict, Mapping, Optional, Protocol, runtime_checkable

from .models import CommandTelemetry


@runtime_checkable
class CartService(Protocol):
    async def add_item(self, name: str, quantity: int) -> Any: ...

    async def remove_item(self, name: str) -> Any: ...

    async def clear_cart(self) -> Any: ...

    async def create_order(self, payload: Mapping[str, Any]) -> Dict[str, Any]: ...

    async def cancel_order(self, order_id: str, reason: str) -> Any: ...


@runtime_checkable
class NavigationService(Protocol):
    def go_to(self, route: str) -> None: ...


@runtime_checkable
class AnalyticsSink(Protocol):
    async def record(self, telemetry: CommandTelemetry) -> None: ...


class PriceLookup(Protocol):
    async def get_price(self, item: str) -> Optional[float]: ...


class RestaurantInfo(Protocol):
    opening_hours: Optional[str]
    address: Optional[str]

    async def table_status(self, table: int) -> Optional[str]: ...


class Synthesizer(Protocol):
    """Turns text into PCM16 audio."""

    async def synthesize(
        self,
        text: str,
        *,
        language: str,
        voice: Optional[str] = None,
        rate: float = 1.0,
        pitch: float = 1.0,
        volume: float = 1.0,
    ) -> bytes: ...


class Player(Protocol):
    """Plays one utterance; returns when playback has finished."""

    async def play(self, text: str, audio: Optional[bytes]) -> None: ...

    async def stop(self) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...


class RecognizerBackend(Protocol):
    """
    Speech-to-text capability.

    The backend reports back through the engine's `post_*` methods: started,
    result, failure, ended.
    """

    supported: bool

    async def start(self, engine: Any, *, language: str, continuous: bool, interim_results: bool, max_alternatives: int) -> None: ...

    async def stop(self) -> None: ...


class AudioSource(Protocol):
    """Microphone handle factory; the context manager scope is the acquisition."""

    def open(self, *, sample_rate: int, channels: int) -> AsyncContextManager[Any]: ...

