from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class StreakPolicy:
    qualifying_steps: int = 5000
    milestone_days: int = 7
    bonus_units: int = 500  # paisa credited once per completed cycle
    reset_after_bonus: bool = True

    @classmethod
    def from_settings(cls, settings_obj) -> "StreakPolicy":
        return cls(
            qualifying_steps=int(settings_obj.STREAK_QUALIFYING_STEPS),
            milestone_days=int(settings_obj.STREAK_MILESTONE_DAYS),
            bonus_units=int(settings_obj.STREAK_BONUS_UNITS),
            reset_after_bonus=bool(settings_obj.STREAK_RESET_AFTER_BONUS),
        )


@dataclass
class StreakState:
    """
    Domain model for a walking streak. Calendar-day level, no direct DB concerns.
    """

    user_id: str
    current_streak_days: int = 0
    longest_streak_days: int = 0
    last_qualifying_date: Optional[date] = None
    bonus_awarded_for_cycle: bool = False
    cycles_completed: int = 0

    def evolve(self, **changes) -> "StreakState":
        return replace(self, **changes)

    @classmethod
    def from_row(cls, row) -> Optional["StreakState"]:
        if row is None:
            return None
        return cls(
            user_id=row.user_id,
            current_streak_days=int(row.current_streak_days),
            longest_streak_days=int(row.longest_streak_days),
            last_qualifying_date=row.last_qualifying_date,
            bonus_awarded_for_cycle=bool(row.bonus_awarded_for_cycle),
            cycles_completed=int(row.cycles_completed),
        )

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "currentStreakDays": self.current_streak_days,
            "longestStreakDays": self.longest_streak_days,
            "lastQualifyingDate": self.last_qualifying_date.isoformat() if self.last_qualifying_date else None,
            "bonusAwardedForCycle": self.bonus_awarded_for_cycle,
            "cyclesCompleted": self.cycles_completed,
        }
