"""Pydantic models for backend payloads."""

from __future__ import annotations

from typing import List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .flags import ALL_FLAGS


class Subscription(BaseModel):
    """A tracked market outcome and its notification flags."""

    model_config = ConfigDict(frozen=True)

    id: str
    asset_id: str
    title: str
    target_outcome: str = ""
    flags: dict[str, bool] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("flags")
    @classmethod
    def _fill_flags(cls, value: dict[str, bool]) -> dict[str, bool]:
        # Known flags missing from the wire default to off; unknown ones pass through
        filled = {name: False for name in ALL_FLAGS}
        filled.update(value)
        return filled

    def flag(self, name: str) -> bool:
        return bool(self.flags.get(name, False))

    def with_flags(self, patch: Mapping[str, bool]) -> Subscription:
        """Return a copy with ``patch`` merged into the flags."""
        return self.model_copy(update={"flags": {**self.flags, **patch}}, deep=True)


class SubscriptionCreate(BaseModel):
    user_key: str
    asset_id: str
    title: str
    target_outcome: str = ""
    flags: dict[str, bool] = Field(default_factory=dict)


class FlagPatch(BaseModel):
    flags: dict[str, bool]


class MarketOption(BaseModel):
    name: str
    asset_id: str
    current_price: Optional[float] = None


class MarketCandidate(BaseModel):
    """A search hit: one market and the outcomes that can be subscribed to."""

    title: str
    image: Optional[str] = None
    options: List[MarketOption] = Field(default_factory=list)


class ChannelConnection(BaseModel):
    connection_token: str


class ChannelStatus(BaseModel):
    connected: bool = False
