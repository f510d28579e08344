"""Plausible client identities rotated across acquisition attempts."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Sequence, Tuple

from .fetcher_config import DESKTOP_USER_AGENTS, HEADER_PROFILES, MOBILE_USER_AGENTS


@dataclass(frozen=True)
class Identity:
    """User agent plus the header set a real browser would send with it."""

    name: str
    user_agent: str
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}), compare=False)
    mobile: bool = False
    weight: float = 1.0

    def request_headers(self, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        merged = dict(self.headers)
        merged["User-Agent"] = self.user_agent
        if extra:
            merged.update(extra)
        return merged


def _build_table() -> Tuple[Identity, ...]:
    table = []
    for name, ua, profile in DESKTOP_USER_AGENTS:
        table.append(Identity(name=name, user_agent=ua, headers=HEADER_PROFILES[profile]))
    for name, ua, profile in MOBILE_USER_AGENTS:
        table.append(Identity(name=name, user_agent=ua, headers=HEADER_PROFILES[profile], mobile=True))
    return tuple(table)


DEFAULT_IDENTITIES: Tuple[Identity, ...] = _build_table()


class IdentityPool:
    """Random selection over a fixed identity table.

    The table is immutable; the only state is the random source, so a single
    pool can serve concurrent acquisitions.
    """

    def __init__(
        self,
        identities: Sequence[Identity] = DEFAULT_IDENTITIES,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        if not identities:
            raise ValueError("identity table is empty")
        self._identities = tuple(identities)
        self._rng = rng or random.Random()

    @property
    def identities(self) -> Tuple[Identity, ...]:
        return self._identities

    def next(self, *, mobile: Optional[bool] = None) -> Identity:
        """Pick an identity; ``mobile`` narrows to that class when the table has one."""

        candidates = self._identities
        if mobile is not None:
            narrowed = tuple(i for i in self._identities if i.mobile == mobile)
            candidates = narrowed or candidates
        weights = [max(0.0, i.weight) for i in candidates]
        if not any(weights):
            return self._rng.choice(candidates)
        return self._rng.choices(candidates, weights=weights, k=1)[0]

    def mobile(self) -> Identity:
        return self.next(mobile=True)

    def desktop(self) -> Identity:
        return self.next(mobile=False)


__all__ = ["Identity", "IdentityPool", "DEFAULT_IDENTITIES"]
