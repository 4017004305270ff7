from datetime import date
from typing import Dict, Optional

from fastapi import APIRouter, Query

from stepcoin.core.config import bonus_kinds
from stepcoin.features.rates.bonus import BonusContext
from stepcoin.features.rates.engine import quote
from stepcoin.features.rates.tiers import DEFAULT_TIER_TABLE

router = APIRouter(prefix="/v1/rates", tags=["rates"])


@router.get("/quote")
def get_quote(
    steps: int = Query(..., ge=0),
    tier: int = Query(1, ge=1),
    day: Optional[date] = Query(None, alias="date"),
    streak_days: int = Query(0, ge=0),
    steps_in_tier: int = Query(0, ge=0),
    kinds: Optional[str] = Query(None, description="Comma-separated bonus kinds; defaults to BONUS_KINDS"),
) -> Dict:
    """Stateless earnings preview for a step count."""
    definition = DEFAULT_TIER_TABLE.get(tier)
    context = BonusContext(
        day=day or date.today(),
        streak_days=streak_days,
        tier_ordinal=tier,
        steps_in_tier=steps_in_tier,
    )
    selected = bonus_kinds() if kinds is None else tuple(k for k in kinds.split(",") if k.strip())
    return quote(steps, definition, context, kinds=selected).to_dict()
