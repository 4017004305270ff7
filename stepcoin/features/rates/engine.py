"""
Rate Engine

Pure conversion of steps into paisa.

    pending_units = floor(floor(steps / 25) * effective_rate)
    effective_rate = tier.base_rate * bonus_factor

All arithmetic is exact (fractions.Fraction over Python ints), so results
carry no floating-point drift and step counts are unbounded.
"""

from dataclasses import dataclass, field
from fractions import Fraction
from typing import Iterable, List

from stepcoin.core.errors import ValidationError
from stepcoin.features.rates.bonus import (
    DEFAULT_BONUS_KINDS,
    BonusBreakdown,
    BonusContext,
    compute_bonus,
)
from stepcoin.features.rates.tiers import DEFAULT_TIER_TABLE, TierTable
from stepcoin.models.tier import TierDefinition

STEPS_PER_BLOCK = 25


def effective_rate(tier: TierDefinition, bonus_factor: Fraction) -> Fraction:
    if bonus_factor < 0:
        raise ValidationError("bonus factor must be non-negative")
    return tier.base_rate * Fraction(bonus_factor)


def pending_units(steps: int, rate: Fraction) -> int:
    if isinstance(steps, bool) or not isinstance(steps, int):
        raise ValidationError("steps must be an integer")
    if steps < 0:
        raise ValidationError("steps must be non-negative")
    if rate < 0:
        raise ValidationError("rate must be non-negative")
    blocks = steps // STEPS_PER_BLOCK
    # Fraction floor division stays exact
    return int((blocks * Fraction(rate)) // 1)


@dataclass(frozen=True)
class RateQuote:
    steps: int
    blocks: int
    base_rate: Fraction
    factor: Fraction
    effective_rate: Fraction
    pending_units: int
    bonuses: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "steps": self.steps,
            "blocks": self.blocks,
            "baseRate": float(self.base_rate),
            "bonusFactor": float(self.factor),
            "effectiveRate": float(self.effective_rate),
            "pendingUnits": self.pending_units,
            "rupees": self.pending_units / 100,
            "bonuses": list(self.bonuses),
        }


def quote(
    steps: int,
    tier: TierDefinition,
    context: BonusContext,
    kinds: Iterable[str] = DEFAULT_BONUS_KINDS,
    tier_table: TierTable = DEFAULT_TIER_TABLE,
) -> RateQuote:
    """Compose bonus, effective rate and pending units for one reading."""
    breakdown: BonusBreakdown = compute_bonus(context, kinds=kinds, tier_table=tier_table)
    rate = effective_rate(tier, breakdown.factor)
    units = pending_units(steps, rate)
    return RateQuote(
        steps=steps,
        blocks=steps // STEPS_PER_BLOCK,
        base_rate=tier.base_rate,
        factor=breakdown.factor,
        effective_rate=rate,
        pending_units=units,
        bonuses=breakdown.descriptions,
    )
