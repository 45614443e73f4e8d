"""
Notification flags and mutual-exclusion groups.

Percentage tiers and whale tiers are each exclusive: enabling one member of a
group clears the others. Independent flags are never constrained.
"""

from __future__ import annotations

from typing import Mapping

from .errors import UnknownFlagError

PERCENT_GROUP: tuple[str, ...] = ("0.5pct", "2pct", "5pct")
WHALE_GROUP: tuple[str, ...] = ("whale10k", "whale50k")
INDEPENDENT_FLAGS: tuple[str, ...] = ("liquidity",)

EXCLUSION_GROUPS: tuple[tuple[str, ...], ...] = (PERCENT_GROUP, WHALE_GROUP)
ALL_FLAGS: tuple[str, ...] = PERCENT_GROUP + WHALE_GROUP + INDEPENDENT_FLAGS

# Flags a new subscription gets when the caller passes none
DEFAULT_ENABLED: tuple[str, ...] = ("5pct",)


def validate_flag(name: str) -> str:
    if name not in ALL_FLAGS:
        raise UnknownFlagError(name)
    return name


def group_of(name: str) -> tuple[str, ...] | None:
    """Return the exclusion group containing ``name``, or None if independent."""
    validate_flag(name)
    for group in EXCLUSION_GROUPS:
        if name in group:
            return group
    return None


def default_flags(enabled: tuple[str, ...] | list[str] = DEFAULT_ENABLED) -> dict[str, bool]:
    flags = {name: False for name in ALL_FLAGS}
    for name in enabled:
        flags[validate_flag(name)] = True
    return flags


def toggle_patch(name: str, value: bool) -> dict[str, bool]:
    """
    Build the full patch for setting one flag.

    Setting a grouped flag to true also clears every sibling in its group.
    Setting any flag to false touches only that flag.
    """
    group = group_of(name)
    patch = {name: bool(value)}
    if value and group:
        for sibling in group:
            if sibling != name:
                patch[sibling] = False
    return patch


def violations(flags: Mapping[str, bool]) -> list[tuple[str, ...]]:
    """Return the groups in which more than one flag is enabled."""
    broken = []
    for group in EXCLUSION_GROUPS:
        if sum(1 for name in group if flags.get(name)) > 1:
            broken.append(group)
    return broken


def is_exclusive(flags: Mapping[str, bool]) -> bool:
    return not violations(flags)


def require_exclusive(flags: Mapping[str, bool]) -> Mapping[str, bool]:
    """Raise ValueError if any exclusion group has more than one flag enabled."""
    broken = violations(flags)
    if broken:
        raise ValueError(
            "more than one flag enabled in group: "
            + ", ".join("/".join(group) for group in broken)
        )
    return flags


def changes(current: Mapping[str, bool], patch: Mapping[str, bool]) -> dict[str, bool]:
    """Subset of ``patch`` that would actually change ``current``."""
    return {
        name: value
        for name, value in patch.items()
        if bool(current.get(name, False)) != value
    }
