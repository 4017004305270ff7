from typing import Dict

from fastapi import APIRouter, Query

from stepcoin.core.events import hub

router = APIRouter(prefix="/v1/events", tags=["events"])


@router.get("/{user_id}")
def recent_events(user_id: str, limit: int = Query(20, ge=1, le=200)) -> Dict:
    """Recent notifications (tier advances, streak and quarter milestones, redemptions)."""
    return {"userId": user_id, "events": hub.recent(user_id, limit=limit)}
