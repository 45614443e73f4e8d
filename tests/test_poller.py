"""Tests for the refresh poller."""

import asyncio

from polytracking.errors import TransportError
from polytracking.metrics import REFRESH_ERRORS_TOTAL, MetricsCollector
from polytracking.notices import BACKEND_OFFLINE
from polytracking.poller import Poller
from polytracking.session import StaticIdentity

from .fakes import settle


class CountingMirror:
    """Wraps a LocalMirror to count replace_all calls."""

    def __init__(self, mirror):
        self._mirror = mirror
        self.replacements = 0

    def replace_all(self, records):
        self.replacements += 1
        self._mirror.replace_all(records)


async def test_initial_fetch_populates_mirror(store, mirror, identity):
    store.add("1", {"2pct": True})
    store.add("2")
    poller = Poller(store, mirror, identity, interval=60)

    assert len(mirror) == 0
    assert await poller.refresh() is True
    assert [r.id for r in mirror.records()] == ["1", "2"]
    assert poller.online is True
    assert poller.last_refresh_at is not None


async def test_refresh_replaces_optimistic_state(store, mirror, identity):
    store.add("1", {"2pct": True})
    poller = Poller(store, mirror, identity, interval=60)
    await poller.refresh()

    mirror.apply_patch("1", {"liquidity": True})
    await poller.refresh()

    assert mirror.get("1").flag("liquidity") is False


async def test_failed_refresh_keeps_mirror_and_goes_offline(store, mirror, identity):
    store.add("1")
    metrics = MetricsCollector()
    poller = Poller(store, mirror, identity, interval=60, metrics=metrics)
    await poller.refresh()

    store.fail_reads = TransportError("unreachable")
    store.records.clear()
    assert await poller.refresh() is False

    assert [r.id for r in mirror.records()] == ["1"]
    assert poller.online is False
    assert poller.consecutive_failures == 1
    assert poller.last_error == "unreachable"
    assert poller.status_message == BACKEND_OFFLINE
    assert metrics.get(REFRESH_ERRORS_TOTAL) == 1

    store.fail_reads = None
    assert await poller.refresh() is True
    assert poller.consecutive_failures == 0
    assert len(mirror) == 0


async def test_no_identity_skips_refresh(store, mirror):
    store.add("1")
    poller = Poller(store, mirror, StaticIdentity(None), interval=60)

    assert await poller.refresh() is False
    assert store.list_calls == 0


async def test_ticks_on_interval(store, mirror, identity):
    poller = Poller(store, mirror, identity, interval=0.05)
    await poller.start()
    try:
        await asyncio.sleep(0.18)
    finally:
        await poller.stop()
    assert store.list_calls >= 2


async def test_no_replace_after_stop(store, mirror, identity):
    counting = CountingMirror(mirror)
    poller = Poller(store, counting, identity, interval=0.05)
    await poller.start()
    await asyncio.sleep(0.08)
    await poller.stop()
    seen = counting.replacements
    assert seen >= 1

    await asyncio.sleep(0.2)
    assert counting.replacements == seen
    assert poller.running is False


async def test_in_flight_refresh_dropped_on_stop(store, mirror, identity):
    counting = CountingMirror(mirror)
    store.hold_reads = True
    poller = Poller(store, counting, identity, interval=60)
    await poller.start()
    await settle()
    assert len(store.held_reads) == 1

    await poller.stop()
    assert counting.replacements == 0
    assert await poller.refresh() is False


async def test_stale_response_discarded(store, mirror, identity):
    store.add("1")
    store.hold_reads = True
    poller = Poller(store, mirror, identity, interval=60)

    older = asyncio.create_task(poller.refresh())
    await settle()
    store.add("2")
    newer = asyncio.create_task(poller.refresh())
    await settle()

    store.held_reads[1].set_result(None)
    assert await newer is True
    store.held_reads[0].set_result(None)
    assert await older is False

    assert [r.id for r in mirror.records()] == ["1", "2"]
