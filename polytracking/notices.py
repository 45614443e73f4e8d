"""
User-visible notices.

Failed mutations and sign-in prompts are posted here instead of raised. The
rendering layer registers a listener or reads the recent history.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import structlog

log = structlog.get_logger()

NOTICE_HISTORY_MAX = 50

SIGN_IN_PROMPT = "Sign in to manage your watchlist."
BACKEND_OFFLINE = "Unable to connect to PolyTracking Backend."


class NoticeLevel(str, Enum):
    INFO = "info"
    PROMPT = "prompt"
    ERROR = "error"


@dataclass
class Notice:
    level: NoticeLevel
    message: str
    subscription_id: str | None = None
    created_at: float = field(default_factory=time.time)


NoticeListener = Callable[[Notice], None]


class NoticeBoard:
    """Bounded history of notices with change listeners."""

    def __init__(self, maxlen: int = NOTICE_HISTORY_MAX) -> None:
        self._history: deque[Notice] = deque(maxlen=maxlen)
        self._listeners: list[NoticeListener] = []

    def on_notice(self, listener: NoticeListener) -> None:
        self._listeners.append(listener)

    def post(
        self,
        level: NoticeLevel,
        message: str,
        subscription_id: str | None = None,
    ) -> Notice:
        notice = Notice(level=level, message=message, subscription_id=subscription_id)
        self._history.append(notice)
        log.info("notices.posted", level=level.value, message=message)
        for listener in list(self._listeners):
            try:
                listener(notice)
            except Exception:
                log.exception("notices.listener_error")
        return notice

    def error(self, message: str, subscription_id: str | None = None) -> Notice:
        return self.post(NoticeLevel.ERROR, message, subscription_id)

    def prompt(self, message: str = SIGN_IN_PROMPT) -> Notice:
        return self.post(NoticeLevel.PROMPT, message)

    @property
    def latest(self) -> Notice | None:
        return self._history[-1] if self._history else None

    def recent(self, level: NoticeLevel | None = None) -> list[Notice]:
        if level is None:
            return list(self._history)
        return [n for n in self._history if n.level == level]

    def clear(self) -> None:
        self._history.clear()
