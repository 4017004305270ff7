"""
Wallet API: redemption, balance, transaction history and reconciliation.
"""
from __future__ import annotations

from datetime import date
from typing import Dict, Optional

from fastapi import APIRouter, Header, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from stepcoin.core.errors import ValidationError
from stepcoin.features.wallet.ledger import get_wallet, list_transactions
from stepcoin.features.wallet.reconciliation import run_reconciliation
from stepcoin.features.wallet.redemption import redemption_service
from stepcoin.models.wallet import RedemptionStatus

router = APIRouter(prefix="/v1/wallet", tags=["wallet"])

STATUS_CODES = {
    RedemptionStatus.SUCCEEDED: 200,
    RedemptionStatus.ALREADY_PROCESSED: 200,
    RedemptionStatus.NO_RECORD: 404,
    RedemptionStatus.RATE_LIMITED: 429,
    RedemptionStatus.CONCURRENT_REDEMPTION: 409,
    RedemptionStatus.FAILED: 503,
}


class RedeemIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., min_length=1)
    day: date = Field(..., alias="date")
    idempotency_key: Optional[str] = None

    @field_validator("user_id", "idempotency_key")
    @classmethod
    def _trim(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


@router.post("/redeem")
def redeem(payload: RedeemIn, idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key")):
    """Move one day's earnings into the wallet, exactly once per (user, date)."""
    key = payload.idempotency_key or (idempotency_key or "").strip()
    if not key:
        raise ValidationError("idempotency_key is required (body or Idempotency-Key header)")
    result = redemption_service.redeem(payload.user_id, payload.day, key)
    return JSONResponse(status_code=STATUS_CODES[result.status], content=result.to_dict())


@router.post("/reconcile")
def reconcile() -> Dict:
    return run_reconciliation()


@router.get("/{user_id}")
def wallet(user_id: str) -> Dict:
    return get_wallet(user_id).to_dict()


@router.get("/{user_id}/transactions")
def transactions(user_id: str, limit: int = Query(50, ge=1, le=500)) -> Dict:
    return {
        "userId": user_id,
        "transactions": [tx.to_dict() for tx in list_transactions(user_id, limit=limit)],
    }
