"""
Tier progression state machine.

States are tier ordinals 1..N; N is terminal. Transitions are driven only by
step deltas applied to the authoritative persisted progress, so a threshold
crossing produces exactly one tier-advanced event.
"""

from fractions import Fraction
from typing import List, Tuple

from stepcoin.core.errors import ValidationError
from stepcoin.core.events import QUARTER_MILESTONE, TIER_ADVANCED, make_event
from stepcoin.features.rates.tiers import DEFAULT_TIER_TABLE, TierTable
from stepcoin.models.tier import TierProgress


def _completed_quarter(steps_in_tier: int, requirement: int) -> int:
    """Highest 25% band reached (0..3); the terminal overflow never reports 4."""
    return min(3, (steps_in_tier * 4) // requirement)


def advance(
    progress: TierProgress,
    added_steps: int,
    table: TierTable = DEFAULT_TIER_TABLE,
    carry_over: bool = False,
) -> Tuple[TierProgress, List[dict]]:
    """
    Apply a step delta to tier progress.

    Args:
        progress: Authoritative state (never a cached copy)
        added_steps: Non-negative step delta
        table: Tier ladder
        carry_over: Roll excess steps into the next tier instead of discarding them

    Returns:
        (new progress, emitted events). The version is left for the store to bump.
    """
    if isinstance(added_steps, bool) or not isinstance(added_steps, int) or added_steps < 0:
        raise ValidationError("added_steps must be a non-negative integer")

    tier = table.get(progress.tier_ordinal)
    steps = progress.steps_in_tier + added_steps
    last_quarter = progress.last_quarter_notified
    events: List[dict] = []

    while not table.is_terminal(tier.ordinal) and steps >= tier.step_requirement:
        excess = steps - tier.step_requirement
        nxt = table.next(tier.ordinal)
        events.append(make_event(
            TIER_ADVANCED,
            user_id=progress.user_id,
            from_tier=tier.ordinal,
            to_tier=nxt.ordinal,
            label=nxt.label,
            new_rate=float(nxt.base_rate),
        ))
        tier = nxt
        last_quarter = 0
        if not carry_over:
            steps = 0
            break
        steps = excess

    quarter = _completed_quarter(steps, tier.step_requirement)
    if quarter > last_quarter:
        events.append(make_event(
            QUARTER_MILESTONE,
            user_id=progress.user_id,
            tier=tier.ordinal,
            quarter=quarter * 25,
        ))
        last_quarter = quarter

    updated = progress.evolve(
        tier_ordinal=tier.ordinal,
        steps_in_tier=steps,
        last_quarter_notified=last_quarter,
    )
    return updated, events


def progression_summary(progress: TierProgress, table: TierTable = DEFAULT_TIER_TABLE) -> dict:
    tier = table.get(progress.tier_ordinal)
    terminal = table.is_terminal(tier.ordinal)
    nxt = table.next(tier.ordinal)
    pct = min(Fraction(100), Fraction(progress.steps_in_tier * 100, tier.step_requirement))
    return {
        "userId": progress.user_id,
        "tier": tier.ordinal,
        "label": tier.label,
        "symbol": tier.symbol,
        "rate": float(tier.base_rate),
        "stepsInTier": progress.steps_in_tier,
        "stepRequirement": tier.step_requirement,
        "progressPct": round(float(pct), 2),
        "stepsToNext": None if terminal else max(0, tier.step_requirement - progress.steps_in_tier),
        "nextTier": nxt.to_dict() if nxt else None,
        "isTerminal": terminal,
    }
