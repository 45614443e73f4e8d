"""
Optimistic mutations against the local mirror.

A toggle is applied to the mirror before the write is sent, so the rendering
layer sees it immediately. If the write fails, the whole record is restored
from the snapshot taken before the change, undoing cascaded sibling clears as
well as the primary flag.

Each record carries a latest-mutation token. A failing write rolls back only
while it is still the latest mutation for its record and no full refresh has
replaced the mirror since its snapshot; otherwise the newer state wins.
"""

from __future__ import annotations

import asyncio
import itertools
from enum import Enum
from typing import Awaitable, Callable, Mapping

import structlog

from .client import RemoteStoreClient
from .errors import RemoteStoreError, UnknownSubscriptionError
from .flags import changes, default_flags, require_exclusive, toggle_patch, validate_flag
from .metrics import MetricsCollector
from .mirror import LocalMirror, MirrorSnapshot
from .models import Subscription
from .notices import NoticeBoard
from .session import IdentityProvider

log = structlog.get_logger()

RefreshHook = Callable[[], Awaitable[object]]


class MutationOutcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    ROLLED_BACK = "rolled_back"
    SUPERSEDED = "superseded"
    PROMPTED = "prompted"


def _failure_message(action: str, exc: RemoteStoreError) -> str:
    reason = exc.user_message
    return f"Failed to {action}: {reason}" if reason else f"Failed to {action}"


class OptimisticMutator:
    """Entry points for toggling flags, deleting and creating subscriptions."""

    def __init__(
        self,
        client: RemoteStoreClient,
        mirror: LocalMirror,
        identity: IdentityProvider,
        notices: NoticeBoard,
        refresh: RefreshHook | None = None,
        refresh_after_toggle: bool = False,
        default_enabled: list[str] | tuple[str, ...] | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self._client = client
        self._mirror = mirror
        self._identity = identity
        self._notices = notices
        self._refresh = refresh
        self._refresh_after_toggle = refresh_after_toggle
        self._default_enabled = default_enabled
        self._metrics = metrics

        self._tokens = itertools.count(1)
        self._latest: dict[str, int] = {}
        self._inflight = 0
        self._background: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of writes whose outcome is not known yet."""
        return self._inflight

    async def toggle_flag(
        self, subscription_id: str, flag: str, value: bool
    ) -> MutationOutcome:
        validate_flag(flag)
        current = self._mirror.get(subscription_id)
        if current is None:
            raise UnknownSubscriptionError(subscription_id)

        user_key = self._identity.user_key()
        if not user_key:
            self._notices.prompt()
            return self._finish("toggle", MutationOutcome.PROMPTED)

        patch = toggle_patch(flag, bool(value))
        if not changes(current.flags, patch):
            return self._finish("toggle", MutationOutcome.NOOP)

        snapshot = self._mirror.snapshot()
        token = self._claim(subscription_id)
        self._mirror.apply_patch(subscription_id, patch)
        log.info(
            "mutator.toggle",
            subscription_id=subscription_id,
            flag=flag,
            value=bool(value),
            patch=patch,
        )

        self._inflight += 1
        try:
            await self._client.patch_subscription(subscription_id, user_key, patch)
        except RemoteStoreError as exc:
            outcome = self._revert(snapshot, subscription_id, token, exc)
            self._notices.error(_failure_message("update setting", exc), subscription_id)
            return self._finish("toggle", outcome)
        finally:
            self._inflight -= 1

        self._release(subscription_id, token)
        if self._refresh_after_toggle:
            self._spawn_refresh()
        return self._finish("toggle", MutationOutcome.APPLIED)

    async def delete_subscription(self, subscription_id: str) -> MutationOutcome:
        if subscription_id not in self._mirror:
            raise UnknownSubscriptionError(subscription_id)

        user_key = self._identity.user_key()
        if not user_key:
            self._notices.prompt()
            return self._finish("delete", MutationOutcome.PROMPTED)

        snapshot = self._mirror.snapshot()
        token = self._claim(subscription_id)
        self._mirror.remove(subscription_id)
        log.info("mutator.delete", subscription_id=subscription_id)

        self._inflight += 1
        try:
            await self._client.delete_subscription(subscription_id, user_key)
        except RemoteStoreError as exc:
            outcome = self._revert(snapshot, subscription_id, token, exc)
            self._notices.error(_failure_message("delete", exc), subscription_id)
            return self._finish("delete", outcome)
        finally:
            self._inflight -= 1

        self._release(subscription_id, token)
        await self._after_write()
        return self._finish("delete", MutationOutcome.APPLIED)

    async def subscribe(
        self,
        asset_id: str,
        title: str,
        target_outcome: str = "",
        flags: Mapping[str, bool] | None = None,
    ) -> Subscription | None:
        """Create a subscription. Not optimistic: the id comes from the server."""
        if not asset_id or not title:
            raise ValueError("asset_id and title are required")

        if flags is None:
            if self._default_enabled is None:
                requested = default_flags()
            else:
                requested = default_flags(self._default_enabled)
        else:
            requested = {**default_flags(()), **{validate_flag(k): bool(v) for k, v in flags.items()}}
        require_exclusive(requested)

        user_key = self._identity.user_key()
        if not user_key:
            self._notices.prompt()
            self._finish("subscribe", MutationOutcome.PROMPTED)
            return None

        try:
            created = await self._client.create_subscription(
                user_key, asset_id, title, target_outcome, requested
            )
        except RemoteStoreError as exc:
            log.warning("mutator.subscribe_failed", asset_id=asset_id, error=exc.message)
            self._notices.error(_failure_message("add market", exc))
            if self._metrics:
                self._metrics.record_mutation("subscribe", "failed")
            return None

        self._mirror.upsert(created)
        self._finish("subscribe", MutationOutcome.APPLIED)
        log.info("mutator.subscribed", subscription_id=created.id, asset_id=asset_id)
        await self._after_write()
        return created

    async def wait_idle(self, timeout: float | None = None) -> None:
        """
        Wait for in-flight writes and the refreshes they spawned.

        Raises asyncio.TimeoutError if they are still running after ``timeout``.
        """

        async def _drain() -> None:
            while self._inflight or self._background:
                if self._background:
                    await asyncio.wait(list(self._background))
                else:
                    await asyncio.sleep(0.05)

        await asyncio.wait_for(_drain(), timeout)

    # --- Internals ---

    def _finish(self, kind: str, outcome: MutationOutcome) -> MutationOutcome:
        if self._metrics:
            self._metrics.record_mutation(kind, outcome.value)
        return outcome

    def _claim(self, subscription_id: str) -> int:
        token = next(self._tokens)
        self._latest[subscription_id] = token
        return token

    def _release(self, subscription_id: str, token: int) -> None:
        if self._latest.get(subscription_id) == token:
            del self._latest[subscription_id]

    def _revert(
        self,
        snapshot: MirrorSnapshot,
        subscription_id: str,
        token: int,
        exc: RemoteStoreError,
    ) -> MutationOutcome:
        latest = self._latest.get(subscription_id) == token
        self._release(subscription_id, token)

        if not latest:
            log.warning(
                "mutator.rollback_skipped_newer_mutation",
                subscription_id=subscription_id,
                error=exc.message,
            )
            return MutationOutcome.SUPERSEDED
        if self._mirror.generation != snapshot.generation:
            log.warning(
                "mutator.rollback_skipped_refreshed",
                subscription_id=subscription_id,
                error=exc.message,
            )
            return MutationOutcome.SUPERSEDED

        self._mirror.restore_record(snapshot, subscription_id)
        log.warning("mutator.rolled_back", subscription_id=subscription_id, error=exc.message)
        return MutationOutcome.ROLLED_BACK

    async def _after_write(self) -> None:
        if self._refresh is None:
            return
        try:
            await self._refresh()
        except Exception:
            log.exception("mutator.refresh_error")

    def _spawn_refresh(self) -> None:
        if self._refresh is None:
            return
        task = asyncio.create_task(self._after_write())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
