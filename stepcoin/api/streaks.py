from typing import Dict

from fastapi import APIRouter

from stepcoin.features.streaks.store import streak_store

router = APIRouter(prefix="/v1/streaks", tags=["streaks"])


@router.get("/{user_id}")
def get_streak(user_id: str) -> Dict:
    """Return the current streak state for a user."""
    state = streak_store.get_state(user_id).to_dict()
    policy = streak_store.policy
    state["qualifyingSteps"] = policy.qualifying_steps
    state["milestoneDays"] = policy.milestone_days
    state["bonusUnits"] = policy.bonus_units
    return state
