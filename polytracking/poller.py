"""
Periodic full refresh of the local mirror.

Each tick reads the whole subscription list and replaces the mirror with it.
Refreshes never merge with in-flight optimistic state: the server response
simply becomes the new baseline. Failures leave the mirror untouched and are
retried on the next tick.
"""

from __future__ import annotations

import asyncio
import time

import structlog

from .client import RemoteStoreClient
from .errors import RemoteStoreError
from .metrics import (
    REFRESH_ERRORS_TOTAL,
    REFRESH_STALE_TOTAL,
    REFRESH_TOTAL,
    SUBSCRIPTIONS,
    MetricsCollector,
)
from .mirror import LocalMirror
from .notices import BACKEND_OFFLINE
from .session import IdentityProvider

log = structlog.get_logger()

DEFAULT_INTERVAL_SECONDS = 15.0


class Poller:
    """Cancellable refresh task tied to the lifetime of the owning view."""

    def __init__(
        self,
        client: RemoteStoreClient,
        mirror: LocalMirror,
        identity: IdentityProvider,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        metrics: MetricsCollector | None = None,
    ):
        self._client = client
        self._mirror = mirror
        self._identity = identity
        self._interval = interval
        self._metrics = metrics

        self._task: asyncio.Task | None = None
        self._running = False
        self._stopped = False
        self._issued = 0
        self._applied = 0

        self._online: bool | None = None
        self._last_refresh_at: float | None = None
        self._last_error: str | None = None
        self._consecutive_failures = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def online(self) -> bool | None:
        """True after a successful refresh, False after a failed one, None before any."""
        return self._online

    @property
    def last_refresh_at(self) -> float | None:
        return self._last_refresh_at

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def status_message(self) -> str:
        if self._online is False:
            return BACKEND_OFFLINE
        return "Connected to PolyTracking Backend."

    async def refresh(self) -> bool:
        """Fetch the full list and replace the mirror. Returns True if applied."""
        if self._stopped:
            return False
        user_key = self._identity.user_key()
        if not user_key:
            log.debug("poller.no_identity")
            return False

        self._issued += 1
        request_no = self._issued
        try:
            records = await self._client.list_subscriptions(user_key)
        except RemoteStoreError as exc:
            self._online = False
            self._last_error = exc.message
            self._consecutive_failures += 1
            if self._metrics:
                self._metrics.inc(REFRESH_ERRORS_TOTAL)
            log.warning(
                "poller.refresh_failed",
                error=exc.message,
                failures=self._consecutive_failures,
            )
            return False

        if self._stopped:
            return False
        if request_no < self._applied:
            if self._metrics:
                self._metrics.inc(REFRESH_STALE_TOTAL)
            log.debug("poller.stale_response", request=request_no, applied=self._applied)
            return False

        self._applied = request_no
        self._mirror.replace_all(records)
        self._online = True
        self._last_error = None
        self._consecutive_failures = 0
        self._last_refresh_at = time.time()
        if self._metrics:
            self._metrics.inc(REFRESH_TOTAL)
            self._metrics.set_gauge(SUBSCRIPTIONS, len(records))
        log.debug("poller.refreshed", count=len(records))
        return True

    async def start(self) -> None:
        """Start polling. The first tick runs immediately."""
        if self._running:
            return
        self._running = True
        self._stopped = False
        self._task = asyncio.create_task(self._poll_loop())
        log.info("poller.started", interval=self._interval)

    async def stop(self) -> None:
        """Cancel the polling task; no refresh is applied after this returns."""
        self._running = False
        self._stopped = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        log.info("poller.stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("poller.tick_error")
            await asyncio.sleep(self._interval)
