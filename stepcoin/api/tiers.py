from typing import Dict

from fastapi import APIRouter

from stepcoin.features.tiers.progression import progression_summary
from stepcoin.features.tiers.store import tier_store

router = APIRouter(prefix="/v1/tiers", tags=["tiers"])


@router.get("")
def list_tiers() -> Dict:
    return {"tiers": tier_store.table.to_dict()}


@router.get("/{user_id}/progress")
def get_progress(user_id: str) -> Dict:
    """Current tier, progress within it and what the next tier pays."""
    return progression_summary(tier_store.get(user_id), tier_store.table)
