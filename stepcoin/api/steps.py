from __future__ import annotations

from datetime import date
from typing import Dict

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict, Field, field_validator

from stepcoin.core.errors import NotFoundError
from stepcoin.features.earnings.service import earnings_service

router = APIRouter(prefix="/v1/steps", tags=["steps"])


class StepsIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., min_length=1)
    day: date = Field(..., alias="date")
    steps: int = Field(..., ge=0)

    @field_validator("user_id")
    @classmethod
    def _trim(cls, value: str) -> str:
        return value.strip()


@router.post("")
def record_steps(payload: StepsIn) -> Dict:
    """Record the cumulative step count for a day and recompute its earnings."""
    recording = earnings_service.record_steps(payload.user_id, payload.day, payload.steps)
    return recording.to_dict(tier_summary=earnings_service.tier_summary(recording.tier))


@router.get("/{user_id}/{day}")
def get_daily_record(user_id: str, day: str) -> Dict:
    record = earnings_service.get_daily_record(user_id, day)
    if record is None:
        raise NotFoundError(f"No earnings recorded for {user_id} on {day}")
    return record.to_dict()


@router.get("/{user_id}")
def get_history(user_id: str, limit: int = Query(30, ge=1, le=366)) -> Dict:
    records = earnings_service.list_history(user_id, limit=limit)
    return {"userId": user_id, "history": [record.to_dict() for record in records]}
