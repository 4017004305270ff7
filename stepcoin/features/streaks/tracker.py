from __future__ import annotations

from datetime import date, timedelta
from typing import List, Tuple

from stepcoin.core.errors import ValidationError
from stepcoin.core.events import STREAK_MILESTONE, make_event
from stepcoin.models.streak import StreakPolicy, StreakState


def evaluate_day(
    state: StreakState,
    day: date,
    steps: int,
    policy: StreakPolicy = StreakPolicy(),
) -> Tuple[StreakState, List[dict], int]:
    """Deterministic, replay-safe streak transition for one calendar day.

    Returns (new state, emitted events, bonus units awarded). A day that does
    not qualify leaves the state untouched so a later, larger reading for the
    same day can still count.
    """
    if isinstance(steps, bool) or not isinstance(steps, int) or steps < 0:
        raise ValidationError("steps must be a non-negative integer")

    if steps < policy.qualifying_steps:
        return state, [], 0
    last = state.last_qualifying_date
    if last is not None and last >= day:
        return state, [], 0

    if last == day - timedelta(days=1):
        current = state.current_streak_days + 1
    else:
        current = 1

    awarded = state.bonus_awarded_for_cycle
    if (current - 1) % policy.milestone_days == 0:
        # First day of a new cycle
        awarded = False

    updated = state.evolve(
        current_streak_days=current,
        longest_streak_days=max(state.longest_streak_days, current),
        last_qualifying_date=day,
        bonus_awarded_for_cycle=awarded,
    )

    if current % policy.milestone_days != 0 or awarded:
        return updated, [], 0

    event = make_event(
        STREAK_MILESTONE,
        user_id=state.user_id,
        streak_days=current,
        amount=policy.bonus_units,
        day=day.isoformat(),
    )
    updated = updated.evolve(
        bonus_awarded_for_cycle=True,
        cycles_completed=state.cycles_completed + 1,
        current_streak_days=0 if policy.reset_after_bonus else current,
    )
    return updated, [event], policy.bonus_units
