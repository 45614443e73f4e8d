"""
Error taxonomy for remote store access and caller mistakes.

Remote failures (transport, rejected writes) are recovered by the mutator and
poller. Caller mistakes (unknown id, unknown flag) propagate.
"""

from __future__ import annotations


class RemoteStoreError(Exception):
    """Base class for any failed call against the backend."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def user_message(self) -> str | None:
        """Reason worth showing to the user, if the server supplied one."""
        return None


class TransportError(RemoteStoreError):
    """The request never completed: connection refused, timeout, reset."""


class RejectedWriteError(RemoteStoreError):
    """The backend answered with a non-success status."""

    def __init__(self, status_code: int, reason: str | None = None):
        self.status_code = status_code
        self.reason = reason
        super().__init__(reason or f"Backend responded with HTTP {status_code}")

    @property
    def user_message(self) -> str | None:
        return self.reason


class SubscriptionNotFoundError(RejectedWriteError):
    """The backend no longer knows the subscription (deleted elsewhere)."""


class UnknownSubscriptionError(LookupError):
    """A mutation referenced an id that is not in the local mirror."""

    def __init__(self, subscription_id: str):
        super().__init__(f"Unknown subscription: {subscription_id}")
        self.subscription_id = subscription_id


class UnknownFlagError(ValueError):
    def __init__(self, name: str):
        super().__init__(f"Unknown notification flag: {name}")
        self.name = name
