"""
Identity providers.

Every backend call is scoped to a user key. A provider returning None means
nobody is signed in and no operations are permitted.
"""

from __future__ import annotations

import os
from typing import Protocol


class IdentityProvider(Protocol):
    def user_key(self) -> str | None:
        ...


class StaticIdentity:
    """Fixed user key, or anonymous when constructed with None."""

    def __init__(self, user_key: str | None = None):
        self._user_key = user_key or None

    def user_key(self) -> str | None:
        return self._user_key

    def sign_in(self, user_key: str) -> None:
        self._user_key = user_key

    def sign_out(self) -> None:
        self._user_key = None


class EnvIdentity:
    """Reads the user key from an environment variable on every call."""

    def __init__(self, env_var: str):
        self._env_var = env_var

    def user_key(self) -> str | None:
        return os.environ.get(self._env_var) or None
