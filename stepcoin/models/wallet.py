"""
Wallet domain models: ledger snapshot, transactions and redemption outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class RedemptionStatus(str, Enum):
    SUCCEEDED = "succeeded"
    ALREADY_PROCESSED = "already_processed"
    RATE_LIMITED = "rate_limited"
    NO_RECORD = "no_record"
    CONCURRENT_REDEMPTION = "concurrent_redemption"
    FAILED = "failed"


RETRYABLE_STATUSES = frozenset({
    RedemptionStatus.RATE_LIMITED,
    RedemptionStatus.CONCURRENT_REDEMPTION,
    RedemptionStatus.FAILED,
})


@dataclass
class WalletLedger:
    user_id: str
    balance: int = 0
    total_earned: int = 0
    total_redeemed: int = 0
    last_updated: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> Optional["WalletLedger"]:
        if row is None:
            return None
        return cls(
            user_id=row.user_id,
            balance=int(row.balance),
            total_earned=int(row.total_earned),
            total_redeemed=int(row.total_redeemed),
            last_updated=row.last_updated,
        )

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "balance": self.balance,
            "balanceRupees": self.balance / 100,
            "totalEarned": self.total_earned,
            "totalRedeemed": self.total_redeemed,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
        }


@dataclass
class WalletTransaction:
    id: int
    user_id: str
    type: str
    amount: int
    balance_after: int
    description: str
    reference: Optional[str] = None
    details: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "WalletTransaction":
        return cls(
            id=row.id,
            user_id=row.user_id,
            type=row.type,
            amount=int(row.amount),
            balance_after=int(row.balance_after),
            description=row.description,
            reference=row.reference,
            details=row.details or {},
            created_at=row.created_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "type": self.type,
            "amount": self.amount,
            "balanceAfter": self.balance_after,
            "description": self.description,
            "reference": self.reference,
            "metadata": self.details,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class RedemptionResult:
    status: RedemptionStatus
    idempotency_key: str
    amount: int = 0
    new_balance: Optional[int] = None
    message: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "amount": self.amount,
            "newBalance": self.new_balance,
            "idempotencyKey": self.idempotency_key,
            "retryable": self.retryable,
            "message": self.message,
        }
