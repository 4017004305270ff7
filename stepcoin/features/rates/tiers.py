"""
Tier Table

Ordered, immutable ladder of earning phases. Ordinals run 1..N with no gaps;
tier N is terminal and never advances.
"""

from fractions import Fraction
from typing import Dict, Iterator, List, Optional, Sequence

from stepcoin.core.errors import ValidationError
from stepcoin.models.tier import TierDefinition


class TierTable:
    """Lookup over a validated sequence of TierDefinition rows."""

    def __init__(self, tiers: Sequence[TierDefinition]):
        if not tiers:
            raise ValueError("tier table must contain at least one tier")
        for position, tier in enumerate(tiers, start=1):
            if tier.ordinal != position:
                raise ValueError(f"tier ordinals must be 1..N in order; got {tier.ordinal} at position {position}")
            if tier.base_rate <= 0:
                raise ValueError(f"tier {tier.ordinal} base_rate must be positive")
            if tier.step_requirement <= 0:
                raise ValueError(f"tier {tier.ordinal} step_requirement must be positive")
        self._tiers: tuple = tuple(tiers)
        self._by_ordinal: Dict[int, TierDefinition] = {t.ordinal: t for t in self._tiers}

    def __iter__(self) -> Iterator[TierDefinition]:
        return iter(self._tiers)

    def __len__(self) -> int:
        return len(self._tiers)

    @property
    def max_ordinal(self) -> int:
        return self._tiers[-1].ordinal

    def get(self, ordinal: int) -> TierDefinition:
        tier = self._by_ordinal.get(ordinal)
        if tier is None:
            raise ValidationError(f"Unknown tier ordinal: {ordinal}")
        return tier

    def is_terminal(self, ordinal: int) -> bool:
        return self.get(ordinal).ordinal == self.max_ordinal

    def next(self, ordinal: int) -> Optional[TierDefinition]:
        if self.is_terminal(ordinal):
            return None
        return self._by_ordinal[ordinal + 1]

    def to_dict(self) -> List[dict]:
        return [tier.to_dict() for tier in self._tiers]


DEFAULT_TIER_TABLE = TierTable([
    TierDefinition(1, "Paisa Phase", "🟡", Fraction(1), 200_000),
    TierDefinition(2, "Coin Phase", "🪙", Fraction(2), 300_000),
    TierDefinition(3, "Token Phase", "🎟️", Fraction(3), 400_000),
    TierDefinition(4, "Gem Phase", "💎", Fraction(5), 500_000),
    TierDefinition(5, "Diamond Phase", "💠", Fraction(7), 600_000),
    TierDefinition(6, "Crown Phase", "👑", Fraction(10), 1_000_000),
    TierDefinition(7, "Emperor Phase", "🏵️", Fraction(15), 1_700_000),
    TierDefinition(8, "Legend Phase", "🏅", Fraction(20), 2_000_000),
    TierDefinition(9, "Immortal Phase", "🏆", Fraction(30), 3_000_000),
])
