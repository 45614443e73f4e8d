"""
Watchlist view orchestrator.

Wires the remote store client, local mirror, poller, mutator and channel
manager together and owns their lifecycle: startup, teardown, signal
handling and periodic health updates.
"""

from __future__ import annotations

import asyncio
import signal

import httpx
import structlog

from .channel import ChannelManager
from .client import RemoteStoreClient
from .config import WatchlistConfig
from .health import HealthServer
from .metrics import BACKEND_REACHABLE, PENDING_WRITES, SUBSCRIPTIONS, MetricsCollector
from .mirror import LocalMirror
from .mutator import OptimisticMutator
from .notices import NoticeBoard
from .poller import Poller
from .session import EnvIdentity, IdentityProvider

log = structlog.get_logger()

HEALTH_UPDATE_SECONDS = 30.0


class WatchlistView:
    """
    One active watchlist: the mirror the renderer reads and the entry points it calls.
    """

    def __init__(
        self,
        config: WatchlistConfig,
        identity: IdentityProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self.metrics = MetricsCollector()
        self.identity = identity or EnvIdentity(config.identity.user_key_env)
        self.mirror = LocalMirror()
        self.notices = NoticeBoard()
        self.client = RemoteStoreClient(
            base_url=config.backend.url,
            verify_tls=config.backend.verify_tls,
            request_timeout=config.backend.request_timeout_seconds,
            retry_base_seconds=config.backend.retry_base_seconds,
            metrics=self.metrics,
            transport=transport,
        )
        self.poller = Poller(
            self.client,
            self.mirror,
            self.identity,
            interval=config.poller.interval_seconds,
            metrics=self.metrics,
        )
        self.mutator = OptimisticMutator(
            self.client,
            self.mirror,
            self.identity,
            self.notices,
            refresh=self.poller.refresh,
            refresh_after_toggle=config.sync.refresh_after_toggle,
            default_enabled=config.sync.default_flags,
            metrics=self.metrics,
        )
        self.channel = ChannelManager(
            self.client,
            self.identity,
            self.notices,
            bot_username=config.telegram.bot_username,
        )
        self._health = HealthServer(
            host=config.metrics.host,
            port=config.metrics.port,
            metrics=self.metrics,
        )
        self._opened = False
        self._running = False
        self._shutdown_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    async def open(self) -> None:
        """Open the HTTP client without starting background tasks."""
        if not self._opened:
            await self.client.open()
            self._opened = True

    async def close(self) -> None:
        if self._opened:
            await self.client.close()
            self._opened = False

    async def refresh(self) -> bool:
        """Manual refresh, same path as a poller tick."""
        return await self.poller.refresh()

    async def start(self) -> None:
        """Open the client, start polling and the health server."""
        log.info("view.starting", backend=self._config.backend.url)
        await self.open()

        if self._config.metrics.enabled:
            try:
                await self._health.start()
                log.info(
                    "view.health_started",
                    host=self._config.metrics.host,
                    port=self._config.metrics.port,
                )
            except OSError as exc:
                log.warning("view.health_start_failed", error=str(exc))

        if self._config.poller.enabled:
            await self.poller.start()
        else:
            await self.poller.refresh()

        self._running = True
        log.info("view.started")

    async def stop(self) -> None:
        """Teardown: stop polling, let in-flight writes settle, close connections."""
        if not self._running:
            return
        self._running = False
        log.info("view.stopping")

        # 1. Stop polling
        await self.poller.stop()

        # 2. In-flight writes are not cancelled
        try:
            await self.mutator.wait_idle(self._config.sync.shutdown_timeout_seconds)
        except asyncio.TimeoutError:
            log.warning("view.pending_writes_abandoned", pending=self.mutator.pending)

        # 3. Close connections
        await self._health.stop()
        await self.close()

        log.info("view.stopped")

    async def run_forever(self) -> None:
        """Run until a shutdown signal arrives."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._shutdown_event.set)

        await self.start()

        try:
            while not self._shutdown_event.is_set():
                await self.update_health()
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(), timeout=HEALTH_UPDATE_SECONDS
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.stop()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def update_health(self) -> dict:
        await self.channel.refresh_status()
        backend_ok = await self.client.check_health()
        status = {
            "subscriptions": len(self.mirror),
            "poller_running": self.poller.running,
            "backend_online": self.poller.online,
            "last_refresh_at": self.poller.last_refresh_at,
            "last_error": self.poller.last_error,
            "consecutive_failures": self.poller.consecutive_failures,
            "pending_writes": self.mutator.pending,
            "telegram_connected": self.channel.connected,
        }
        self.metrics.set_gauge(SUBSCRIPTIONS, len(self.mirror))
        self.metrics.set_gauge(PENDING_WRITES, self.mutator.pending)
        self.metrics.set_gauge(BACKEND_REACHABLE, 1 if backend_ok else 0)
        self._health.update_status(status, backend_ok)
        log.info("view.health", backend_reachable=backend_ok, **status)
        return status
