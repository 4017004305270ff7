"""
Daily earning record: one row per user per calendar day.

pending_units is recomputed from the cumulative step count on every update;
bonus_units holds streak bonuses awarded on that day. Both are credited
together when the day is redeemed, after which the record is immutable.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from fractions import Fraction
from typing import Optional


@dataclass
class DailyEarningRecord:
    user_id: str
    day: date
    steps: int = 0
    tier_steps_counted: int = 0
    pending_units: int = 0
    bonus_units: int = 0
    effective_rate: Fraction = Fraction(0)
    tier_ordinal: int = 1
    is_redeemed: bool = False
    redeemed_amount: Optional[int] = None
    balance_after: Optional[int] = None
    redemption_key: Optional[str] = None
    redeemed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def redeemable_amount(self) -> int:
        return self.pending_units + self.bonus_units

    @classmethod
    def from_row(cls, row) -> Optional["DailyEarningRecord"]:
        if row is None:
            return None
        return cls(
            user_id=row.user_id,
            day=row.day,
            steps=int(row.steps),
            tier_steps_counted=int(row.tier_steps_counted),
            pending_units=int(row.pending_units),
            bonus_units=int(row.bonus_units),
            effective_rate=Fraction(row.effective_rate or "0"),
            tier_ordinal=int(row.tier_ordinal),
            is_redeemed=bool(row.is_redeemed),
            redeemed_amount=row.redeemed_amount,
            balance_after=row.balance_after,
            redemption_key=row.redemption_key,
            redeemed_at=row.redeemed_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "date": self.day.isoformat(),
            "steps": self.steps,
            "pendingUnits": self.pending_units,
            "bonusUnits": self.bonus_units,
            "redeemableUnits": self.redeemable_amount,
            "effectiveRate": float(self.effective_rate),
            "tier": self.tier_ordinal,
            "isRedeemed": self.is_redeemed,
            "redeemedAmount": self.redeemed_amount,
            "balanceAfter": self.balance_after,
            "redeemedAt": self.redeemed_at.isoformat() if self.redeemed_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
