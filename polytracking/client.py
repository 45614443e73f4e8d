"""
Remote store client for the PolyTracking backend.

Handles:
- Subscription CRUD scoped to a user key
- Market candidate search
- Telegram notification channel linking
- Retry with backoff for reads, translation of httpx errors into the
  RemoteStoreError taxonomy
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping

import httpx
import structlog
from pydantic import ValidationError

from .errors import (
    RejectedWriteError,
    RemoteStoreError,
    SubscriptionNotFoundError,
    TransportError,
)
from .metrics import REMOTE_ERRORS_TOTAL, MetricsCollector
from .models import (
    ChannelConnection,
    ChannelStatus,
    FlagPatch,
    MarketCandidate,
    Subscription,
    SubscriptionCreate,
)

log = structlog.get_logger()

# Retry configuration (reads only; writes are sent exactly once)
READ_ATTEMPTS = 3
RETRY_BASE_SECONDS = 0.5
MAX_RETRY_AFTER_SECONDS = 30.0


def _error_reason(resp: httpx.Response) -> str | None:
    try:
        body = resp.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    detail = body.get("detail") or body.get("error") or body.get("message")
    if isinstance(detail, str):
        return detail
    if isinstance(detail, list) and detail:
        first = detail[0]
        if isinstance(first, dict) and "msg" in first:
            return str(first["msg"])
    return None


def _retry_after(resp: httpx.Response, fallback: float) -> float:
    """Seconds to wait per Retry-After, which is either a delay or an HTTP-date."""
    value = resp.headers.get("Retry-After")
    if value is None:
        return fallback
    try:
        delay = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return fallback
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        delay = (when - datetime.now(timezone.utc)).total_seconds()
    return min(max(delay, 0.0), MAX_RETRY_AFTER_SECONDS)


def _rejected(resp: httpx.Response) -> RejectedWriteError:
    reason = _error_reason(resp)
    if resp.status_code == 404:
        return SubscriptionNotFoundError(resp.status_code, reason)
    return RejectedWriteError(resp.status_code, reason)


class RemoteStoreClient:
    """
    Async HTTP client for the backend's subscription and channel endpoints.

    Owns no state beyond its connection pool.
    """

    def __init__(
        self,
        base_url: str,
        verify_tls: bool = True,
        request_timeout: float = 10.0,
        metrics: MetricsCollector | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_base_seconds: float = RETRY_BASE_SECONDS,
    ):
        self._base_url = base_url.rstrip("/")
        self._verify_tls = verify_tls
        self._request_timeout = request_timeout
        self._metrics = metrics
        self._transport = transport
        self._retry_base_seconds = retry_base_seconds
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def open(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._request_timeout),
            verify=self._verify_tls,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # --- Subscriptions ---

    async def list_subscriptions(self, user_key: str) -> list[Subscription]:
        resp = await self._request(
            "GET", "/api/subscriptions", params={"user_key": user_key}, attempts=READ_ATTEMPTS
        )
        return self._parse_list(resp, Subscription)

    async def create_subscription(
        self,
        user_key: str,
        asset_id: str,
        title: str,
        target_outcome: str,
        flags: Mapping[str, bool],
    ) -> Subscription:
        body = SubscriptionCreate(
            user_key=user_key,
            asset_id=asset_id,
            title=title,
            target_outcome=target_outcome,
            flags=dict(flags),
        )
        resp = await self._request("POST", "/api/subscriptions", json=body.model_dump())
        return self._parse(resp, Subscription)

    async def patch_subscription(
        self,
        subscription_id: str,
        user_key: str,
        flags: Mapping[str, bool],
    ) -> None:
        """Send a flag patch. Any 2xx is success; the response body is not read."""
        await self._request(
            "PATCH",
            f"/api/subscriptions/{subscription_id}",
            params={"user_key": user_key},
            json=FlagPatch(flags=dict(flags)).model_dump(),
        )

    async def delete_subscription(self, subscription_id: str, user_key: str) -> None:
        await self._request(
            "DELETE",
            f"/api/subscriptions/{subscription_id}",
            params={"user_key": user_key},
        )

    # --- Market search ---

    async def list_market_candidates(self, query: str) -> list[MarketCandidate]:
        resp = await self._request(
            "GET", "/api/markets/search", params={"q": query}, attempts=READ_ATTEMPTS
        )
        return self._parse_list(resp, MarketCandidate)

    # --- Telegram channel ---

    async def connect_notification_channel(self, user_key: str) -> ChannelConnection:
        resp = await self._request("POST", "/api/telegram/connect", json={"user_key": user_key})
        return self._parse(resp, ChannelConnection)

    async def disconnect_notification_channel(self, user_key: str) -> None:
        await self._request("POST", "/api/telegram/disconnect", json={"user_key": user_key})

    async def get_channel_status(self, user_key: str) -> ChannelStatus:
        resp = await self._request(
            "GET", "/api/telegram/status", params={"user_key": user_key}, attempts=READ_ATTEMPTS
        )
        return self._parse(resp, ChannelStatus)

    # --- Health ---

    async def check_health(self) -> bool:
        if not self._client:
            return False
        try:
            resp = await self._client.get("/health")
            return resp.status_code == 200
        except httpx.HTTPError:
            return False

    # --- Internals ---

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        attempts: int = 1,
    ) -> httpx.Response:
        assert self._client, "client is not open"
        last_exc: RemoteStoreError | None = None

        for attempt in range(attempts):
            final = attempt + 1 >= attempts
            try:
                resp = await self._client.request(method, path, params=params, json=json)
            except httpx.TimeoutException:
                last_exc = TransportError(f"{method} {path} timed out")
            except httpx.TransportError as exc:
                last_exc = TransportError(str(exc) or exc.__class__.__name__)
            else:
                if resp.status_code == 429 and not final:
                    retry_after = _retry_after(resp, self._retry_base_seconds * (attempt + 1))
                    log.warning("client.rate_limited", path=path, retry_after=retry_after)
                    await asyncio.sleep(retry_after)
                    continue
                if resp.is_error:
                    last_exc = _rejected(resp)
                    # Don't retry 4xx
                    if resp.status_code < 500 or final:
                        self._count_error(method)
                        raise last_exc
                else:
                    return resp

            if final:
                break
            backoff = self._retry_base_seconds * (2 ** attempt)
            log.warning(
                "client.retry",
                method=method,
                path=path,
                attempt=attempt + 1,
                backoff=backoff,
                error=str(last_exc),
            )
            await asyncio.sleep(backoff)

        self._count_error(method)
        assert last_exc is not None
        raise last_exc

    def _count_error(self, method: str) -> None:
        if self._metrics:
            self._metrics.inc(REMOTE_ERRORS_TOTAL, method=method)

    @staticmethod
    def _parse(resp: httpx.Response, model: type[Any]) -> Any:
        try:
            return model.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise RemoteStoreError(f"Malformed response from backend: {exc}") from exc

    @staticmethod
    def _parse_list(resp: httpx.Response, model: type[Any]) -> list[Any]:
        try:
            payload = resp.json()
            if not isinstance(payload, list):
                raise ValueError("expected a JSON array")
            return [model.model_validate(item) for item in payload]
        except (ValueError, ValidationError) as exc:
            raise RemoteStoreError(f"Malformed response from backend: {exc}") from exc
