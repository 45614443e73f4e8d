"""
Local mirror of the user's subscriptions.

The mirror is the only client-side owner of subscription state. It is
replaced wholesale by poller refreshes and patched one record at a time by
the mutator. Every change is announced to registered listeners (the
rendering layer).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Mapping

import structlog

from .flags import violations
from .models import Subscription

log = structlog.get_logger()

ChangeListener = Callable[["LocalMirror"], None]


@dataclass(frozen=True)
class MirrorSnapshot:
    """Immutable copy of the mirror, used as a rollback point."""

    generation: int
    records: tuple[Subscription, ...]

    def get(self, subscription_id: str) -> Subscription | None:
        for record in self.records:
            if record.id == subscription_id:
                return record
        return None

    def ids(self) -> list[str]:
        return [record.id for record in self.records]


class LocalMirror:
    """Ordered, id-keyed collection of subscriptions."""

    def __init__(self) -> None:
        self._records: dict[str, Subscription] = {}
        self._listeners: list[ChangeListener] = []
        self._generation = 0

    @property
    def generation(self) -> int:
        """Incremented by every ``replace_all``; marks a new server baseline."""
        return self._generation

    def on_change(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, subscription_id: object) -> bool:
        return subscription_id in self._records

    def __iter__(self) -> Iterator[Subscription]:
        return iter(list(self._records.values()))

    def get(self, subscription_id: str) -> Subscription | None:
        return self._records.get(subscription_id)

    def records(self) -> list[Subscription]:
        return list(self._records.values())

    # --- Whole-collection operations ---

    def replace_all(self, records: Iterable[Subscription]) -> None:
        replacement: dict[str, Subscription] = {}
        for record in records:
            broken = violations(record.flags)
            if broken:
                log.warning(
                    "mirror.exclusive_flags_violated",
                    subscription_id=record.id,
                    groups=[list(g) for g in broken],
                )
            replacement[record.id] = record.model_copy(deep=True)
        self._records = replacement
        self._generation += 1
        self._notify()

    def snapshot(self) -> MirrorSnapshot:
        return MirrorSnapshot(
            generation=self._generation,
            records=tuple(r.model_copy(deep=True) for r in self._records.values()),
        )

    # --- Single-record operations ---

    def apply_patch(
        self, subscription_id: str, flags: Mapping[str, bool]
    ) -> Subscription | None:
        """Merge ``flags`` into one record. Returns None if the id is absent."""
        current = self._records.get(subscription_id)
        if current is None:
            log.debug("mirror.patch_missing", subscription_id=subscription_id)
            return None
        updated = current.with_flags(flags)
        self._records[subscription_id] = updated
        self._notify()
        return updated

    def upsert(self, record: Subscription) -> None:
        self._records[record.id] = record.model_copy(deep=True)
        self._notify()

    def remove(self, subscription_id: str) -> Subscription | None:
        removed = self._records.pop(subscription_id, None)
        if removed is not None:
            self._notify()
        return removed

    def restore_record(self, snapshot: MirrorSnapshot, subscription_id: str) -> None:
        """
        Put one record back exactly as it was in ``snapshot``.

        A record absent from the snapshot is removed. A record missing from the
        mirror is reinserted after its nearest surviving predecessor.
        """
        original = snapshot.get(subscription_id)
        if original is None:
            self.remove(subscription_id)
            return

        restored = original.model_copy(deep=True)
        if subscription_id in self._records:
            self._records[subscription_id] = restored
        else:
            order = snapshot.ids()
            position = order.index(subscription_id)
            anchor = next(
                (rid for rid in reversed(order[:position]) if rid in self._records),
                None,
            )
            rebuilt: dict[str, Subscription] = {}
            if anchor is None:
                rebuilt[subscription_id] = restored
            for rid, record in self._records.items():
                rebuilt[rid] = record
                if rid == anchor:
                    rebuilt[subscription_id] = restored
            self._records = rebuilt
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                log.exception("mirror.listener_error")
