"""
Bonus Calculator

Pure computation of the multiplicative bonus factor for a day.
Each active source is a BonusSource(kind, multiplier, description); the
factor is the product of all sources folded in a fixed order:
weekend, seasonal, streak, milestone.
"""

from dataclasses import dataclass, field
from datetime import date
from fractions import Fraction
from functools import reduce
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from stepcoin.core.errors import ValidationError
from stepcoin.features.rates.tiers import DEFAULT_TIER_TABLE, TierTable

WEEKEND = "weekend"
SEASONAL = "seasonal"
STREAK = "streak"
MILESTONE = "milestone"

DEFAULT_BONUS_KINDS: Tuple[str, ...] = (WEEKEND, SEASONAL, STREAK, MILESTONE)

WEEKEND_MULTIPLIER = Fraction(3, 2)
STREAK_MIN_DAYS = 7
STREAK_STEP_PER_TIER = Fraction(1, 10)

# (label, months, multiplier); months partition the calendar
SEASONS: Tuple[Tuple[str, Tuple[int, ...], Fraction], ...] = (
    ("Summer", (3, 4, 5), Fraction(6, 5)),
    ("Rainy", (6, 7, 8, 9), Fraction(13, 10)),
    ("Winter", (10, 11, 12, 1, 2), Fraction(23, 20)),
)

# (threshold, multiplier), highest first; only the first match applies
MILESTONE_BANDS: Tuple[Tuple[Fraction, Fraction], ...] = (
    (Fraction(3, 4), Fraction(5, 4)),
    (Fraction(1, 2), Fraction(23, 20)),
    (Fraction(1, 4), Fraction(11, 10)),
)


def _check_season_partition() -> None:
    months = sorted(m for _, band, _ in SEASONS for m in band)
    if months != list(range(1, 13)):
        raise RuntimeError(f"season bands must cover each month exactly once: {months}")


_check_season_partition()


@dataclass(frozen=True)
class BonusContext:
    day: date
    streak_days: int = 0
    tier_ordinal: int = 1
    steps_in_tier: int = 0


@dataclass(frozen=True)
class BonusSource:
    kind: str
    multiplier: Fraction
    description: str


@dataclass(frozen=True)
class BonusBreakdown:
    factor: Fraction
    sources: List[BonusSource] = field(default_factory=list)

    @property
    def descriptions(self) -> List[str]:
        return [source.description for source in self.sources]

    def to_dict(self) -> dict:
        return {
            "factor": float(self.factor),
            "sources": [
                {"kind": s.kind, "multiplier": float(s.multiplier), "description": s.description}
                for s in self.sources
            ],
        }


def _fmt(multiplier: Fraction) -> str:
    # 3/2 -> "1.5", 23/20 -> "1.15"
    return f"{float(multiplier):g}"


def weekend_bonus(context: BonusContext, tier_table: TierTable = DEFAULT_TIER_TABLE) -> Optional[BonusSource]:
    if context.day.weekday() < 5:
        return None
    return BonusSource(WEEKEND, WEEKEND_MULTIPLIER, f"Weekend Bonus: {_fmt(WEEKEND_MULTIPLIER)}x")


def seasonal_bonus(context: BonusContext, tier_table: TierTable = DEFAULT_TIER_TABLE) -> Optional[BonusSource]:
    for label, months, multiplier in SEASONS:
        if context.day.month in months:
            return BonusSource(SEASONAL, multiplier, f"{label} Season: {_fmt(multiplier)}x")
    return None


def streak_bonus(context: BonusContext, tier_table: TierTable = DEFAULT_TIER_TABLE) -> Optional[BonusSource]:
    if context.streak_days < STREAK_MIN_DAYS:
        return None
    multiplier = 1 + STREAK_STEP_PER_TIER * context.tier_ordinal
    return BonusSource(STREAK, multiplier, f"{context.streak_days}-day Streak: {_fmt(multiplier)}x")


def milestone_bonus(context: BonusContext, tier_table: TierTable = DEFAULT_TIER_TABLE) -> Optional[BonusSource]:
    requirement = tier_table.get(context.tier_ordinal).step_requirement
    completion = Fraction(max(0, context.steps_in_tier), requirement)
    for threshold, multiplier in MILESTONE_BANDS:
        if completion >= threshold:
            pct = int(threshold * 100)
            return BonusSource(MILESTONE, multiplier, f"{pct}% Milestone: {_fmt(multiplier)}x")
    return None


EVALUATORS: Dict[str, Callable[[BonusContext, TierTable], Optional[BonusSource]]] = {
    WEEKEND: weekend_bonus,
    SEASONAL: seasonal_bonus,
    STREAK: streak_bonus,
    MILESTONE: milestone_bonus,
}


def normalize_kinds(kinds: Iterable[str]) -> Tuple[str, ...]:
    """Validate a subset of bonus kinds and return it in fold order."""
    requested = {str(kind).strip().lower() for kind in kinds}
    unknown = requested - set(DEFAULT_BONUS_KINDS)
    if unknown:
        raise ValidationError(f"Unknown bonus kinds: {', '.join(sorted(unknown))}")
    return tuple(kind for kind in DEFAULT_BONUS_KINDS if kind in requested)


def compute_bonus(
    context: BonusContext,
    kinds: Iterable[str] = DEFAULT_BONUS_KINDS,
    tier_table: TierTable = DEFAULT_TIER_TABLE,
) -> BonusBreakdown:
    """
    Compute the bonus factor for a day.

    Args:
        context: Day, streak length and tier position the bonus depends on
        kinds: Which bonus sources participate (order is always fixed)
        tier_table: Table used to resolve the milestone requirement

    Returns:
        BonusBreakdown with the exact product and the active sources
    """
    if context.streak_days < 0 or context.steps_in_tier < 0:
        raise ValidationError("streak_days and steps_in_tier must be non-negative")
    tier_table.get(context.tier_ordinal)

    sources: List[BonusSource] = []
    for kind in normalize_kinds(kinds):
        source = EVALUATORS[kind](context, tier_table)
        if source is not None:
            sources.append(source)

    factor = reduce(lambda acc, source: acc * source.multiplier, sources, Fraction(1))
    return BonusBreakdown(factor=factor, sources=sources)
