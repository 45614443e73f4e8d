"""
Telegram notification channel linking.

Connecting asks the backend for a one-time token; the user opens the bot's
deep link with that token and the backend flips the channel status once the
bot has seen it.
"""

from __future__ import annotations

import asyncio
import time

import structlog

from .client import RemoteStoreClient
from .errors import RemoteStoreError
from .notices import NoticeBoard
from .session import IdentityProvider

log = structlog.get_logger()


class ChannelManager:
    """Tracks whether the signed-in user has a linked Telegram chat."""

    def __init__(
        self,
        client: RemoteStoreClient,
        identity: IdentityProvider,
        notices: NoticeBoard,
        bot_username: str | None = None,
    ):
        self._client = client
        self._identity = identity
        self._notices = notices
        self._bot_username = bot_username
        self._connected: bool | None = None
        self._token: str | None = None

    @property
    def connected(self) -> bool | None:
        return self._connected

    @property
    def connection_token(self) -> str | None:
        return self._token

    def deep_link(self, token: str) -> str | None:
        if not self._bot_username:
            return None
        return f"https://t.me/{self._bot_username.lstrip('@')}?start={token}"

    async def connect(self) -> str | None:
        """Request a connection token. Returns the deep link, or the bare token without a bot name."""
        user_key = self._identity.user_key()
        if not user_key:
            self._notices.prompt()
            return None
        try:
            connection = await self._client.connect_notification_channel(user_key)
        except RemoteStoreError as exc:
            self._notices.error(
                f"Failed to connect Telegram: {exc.user_message}"
                if exc.user_message
                else "Failed to connect Telegram"
            )
            return None
        self._token = connection.connection_token
        log.info("channel.token_issued")
        return self.deep_link(self._token) or self._token

    async def disconnect(self) -> bool:
        user_key = self._identity.user_key()
        if not user_key:
            self._notices.prompt()
            return False
        try:
            await self._client.disconnect_notification_channel(user_key)
        except RemoteStoreError as exc:
            self._notices.error(
                f"Failed to disconnect Telegram: {exc.user_message}"
                if exc.user_message
                else "Failed to disconnect Telegram"
            )
            return False
        self._connected = False
        self._token = None
        log.info("channel.disconnected")
        return True

    async def refresh_status(self) -> bool | None:
        """Query the backend. Keeps the last known status if the call fails."""
        user_key = self._identity.user_key()
        if not user_key:
            return None
        try:
            status = await self._client.get_channel_status(user_key)
        except RemoteStoreError as exc:
            log.warning("channel.status_failed", error=exc.message)
            return self._connected
        self._connected = status.connected
        return self._connected

    async def wait_until_connected(
        self, timeout: float = 120.0, interval: float = 3.0
    ) -> bool:
        """Poll the status until the chat is linked or ``timeout`` elapses."""
        deadline = time.monotonic() + timeout
        while True:
            if await self.refresh_status():
                return True
            if time.monotonic() + interval > deadline:
                return False
            await asyncio.sleep(interval)
