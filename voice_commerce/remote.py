"""
HTTP collaborators.

Best-effort aiohttp clients for the services outside the voice core: the
preferences sync endpoint, the analytics sink and the commerce (cart/order)
backend. Sync and analytics calls never raise; they log and report failure.
Commerce calls raise, because a failed cart mutation must reach the executor
as a failed command.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

import aiohttp

from logging_setup import get_logger, Component

from .errors import VoiceError, VoiceErrorCategory
from .models import CommandTelemetry

logger = get_logger(Component.ANALYTICS)


class _HttpClient:
    def __init__(self, base_url: str, *, timeout_s: float = 5.0, session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def aclose(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


class RemotePreferencesClient(_HttpClient):
    """GET/PUT `{base}/preferences/{device_id}`."""

    def _endpoint(self, device_id: str) -> str:
        return f"{self.base_url}/preferences/{quote(device_id, safe='')}"

    async def fetch(self, device_id: str) -> Optional[Dict[str, Any]]:
        endpoint = self._endpoint(device_id)
        start_ts = time.time()
        try:
            async with self._get_session().get(endpoint) as resp:
                if resp.status == 404:
                    return None
                if not 200 <= resp.status < 300:
                    logger.warning("Remote preferences fetch failed", endpoint=endpoint, status=resp.status)
                    return None
                record = await resp.json()
                logger.info(
                    "Remote preferences fetched",
                    endpoint=endpoint,
                    latency_ms=int((time.time() - start_ts) * 1000),
                )
                return record if isinstance(record, dict) else None
        except Exception as e:
            logger.warning(
                "Remote preferences fetch failed",
                endpoint=endpoint,
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=int((time.time() - start_ts) * 1000),
            )
            return None

    async def push(self, device_id: str, record: Mapping[str, Any]) -> bool:
        endpoint = self._endpoint(device_id)
        try:
            async with self._get_session().put(endpoint, json=dict(record)) as resp:
                ok = 200 <= resp.status < 300
                logger.info("Remote preferences push response", endpoint=endpoint, status=resp.status, ok=ok)
                return ok
        except Exception as e:
            logger.warning(
                "Remote preferences push failed",
                endpoint=endpoint,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False


class HttpAnalyticsSink(_HttpClient):
    """POST per-command telemetry to `{base}/voice/telemetry`."""

    async def record(self, telemetry: CommandTelemetry) -> None:
        endpoint = f"{self.base_url}/voice/telemetry"
        async with self._get_session().post(endpoint, json=telemetry.to_dict()) as resp:
            if not 200 <= resp.status < 300:
                raise VoiceError(
                    f"Analytics endpoint returned {resp.status}",
                    category=VoiceErrorCategory.NETWORK_ERROR,
                )


class HttpCommerceClient(_HttpClient):
    """Cart and order service over the commerce REST API."""

    async def _call(self, method: str, path: str, payload: Optional[Mapping[str, Any]] = None) -> Any:
        endpoint = f"{self.base_url}{path}"
        start_ts = time.time()
        try:
            async with self._get_session().request(method, endpoint, json=dict(payload) if payload is not None else None) as resp:
                logger.debug(
                    "Commerce API response",
                    method=method,
                    endpoint=endpoint,
                    status=resp.status,
                    latency_ms=int((time.time() - start_ts) * 1000),
                )
                if not 200 <= resp.status < 300:
                    raise VoiceError(
                        f"{method} {path} failed with {resp.status}",
                        category=VoiceErrorCategory.PROCESSING_ERROR,
                    )
                if resp.content_length == 0:
                    return None
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise VoiceError(
                        f"{method} {path} returned a body that is not JSON",
                        category=VoiceErrorCategory.PROCESSING_ERROR,
                    ) from e
        except aiohttp.ClientError as e:
            raise VoiceError(f"{method} {path} failed: {e}", category=VoiceErrorCategory.NETWORK_ERROR) from e

    async def add_item(self, name: str, quantity: int) -> Any:
        return await self._call("POST", "/cart/items", {"name": name, "quantity": quantity})

    async def remove_item(self, name: str) -> Any:
        return await self._call("DELETE", f"/cart/items/{quote(name, safe='')}")

    async def clear_cart(self) -> Any:
        return await self._call("DELETE", "/cart/items")

    async def create_order(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._call("POST", "/orders", payload) or {}

    async def cancel_order(self, order_id: str, reason: str) -> Any:
        return await self._call("POST", f"/orders/{quote(order_id, safe='')}/cancel", {"reason": reason})
