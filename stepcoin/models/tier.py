"""
Tier domain model.

A tier is one phase of the earning ladder: a base rate in paisa per 25-step
block and the number of steps that must be walked inside the tier before the
user advances to the next one.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from fractions import Fraction
from typing import Optional


@dataclass(frozen=True)
class TierDefinition:
    ordinal: int
    label: str
    symbol: str
    base_rate: Fraction  # paisa per 25-step block
    step_requirement: int  # steps to accumulate within this tier

    def to_dict(self) -> dict:
        return {
            "ordinal": self.ordinal,
            "label": self.label,
            "symbol": self.symbol,
            "baseRate": float(self.base_rate),
            "stepRequirement": self.step_requirement,
        }


@dataclass
class TierProgress:
    """
    Authoritative per-user tier state.

    Attributes:
        user_id: User identifier
        tier_ordinal: Current tier, 1..N
        steps_in_tier: Steps accumulated since entering the current tier
        last_quarter_notified: Highest completion quarter (0..3) already announced in this tier
        version: Optimistic concurrency token, bumped on every write
    """

    user_id: str
    tier_ordinal: int = 1
    steps_in_tier: int = 0
    last_quarter_notified: int = 0
    version: int = 0

    def validate(self) -> None:
        assert self.user_id, "user_id required"
        assert self.tier_ordinal >= 1, f"tier_ordinal out of range: {self.tier_ordinal}"
        assert self.steps_in_tier >= 0, f"steps_in_tier negative: {self.steps_in_tier}"
        assert 0 <= self.last_quarter_notified <= 3, f"invalid quarter: {self.last_quarter_notified}"

    def evolve(self, **changes) -> "TierProgress":
        return replace(self, **changes)

    @classmethod
    def from_row(cls, row) -> Optional["TierProgress"]:
        if row is None:
            return None
        return cls(
            user_id=row.user_id,
            tier_ordinal=int(row.tier_ordinal),
            steps_in_tier=int(row.steps_in_tier),
            last_quarter_notified=int(row.last_quarter_notified),
            version=int(row.version),
        )

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "tier": self.tier_ordinal,
            "stepsInTier": self.steps_in_tier,
            "lastQuarterNotified": self.last_quarter_notified,
            "version": self.version,
        }
