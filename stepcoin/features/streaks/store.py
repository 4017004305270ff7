"""
Persistence for streak state, one row per user in `streak_state`.
"""

import logging
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from stepcoin.core.config import settings
from stepcoin.core.database import get_db_session, streak_state
from stepcoin.core.locks import KeyedLockRegistry, user_locks
from stepcoin.core.metrics import streak_bonuses_total
from stepcoin.features.streaks.tracker import evaluate_day
from stepcoin.models.streak import StreakPolicy, StreakState

logger = logging.getLogger("stepcoin")


class StreakStore:
    def __init__(self, policy: Optional[StreakPolicy] = None, locks: KeyedLockRegistry = user_locks):
        self.policy = policy or StreakPolicy.from_settings(settings)
        self.locks = locks

    def load_for_update(self, session: Session, user_id: str) -> StreakState:
        row = session.execute(
            select(streak_state).where(streak_state.c.user_id == user_id).with_for_update()
        ).first()
        if row is not None:
            return StreakState.from_row(row)
        session.execute(streak_state.insert().values(user_id=user_id))
        return StreakState(user_id=user_id)

    def save(self, session: Session, state: StreakState) -> None:
        session.execute(
            update(streak_state)
            .where(streak_state.c.user_id == state.user_id)
            .values(
                current_streak_days=state.current_streak_days,
                longest_streak_days=state.longest_streak_days,
                last_qualifying_date=state.last_qualifying_date,
                bonus_awarded_for_cycle=state.bonus_awarded_for_cycle,
                cycles_completed=state.cycles_completed,
                updated_at=func.now(),
            )
        )

    def evaluate_in_session(
        self,
        session: Session,
        user_id: str,
        day: date,
        steps: int,
        current: Optional[StreakState] = None,
    ) -> Tuple[StreakState, List[dict], int]:
        """Evaluate one day inside an open transaction. Caller holds the user lock."""
        if current is None:
            current = self.load_for_update(session, user_id)
        updated, events, bonus_units = evaluate_day(current, day, steps, self.policy)
        if updated != current:
            self.save(session, updated)
        if events:
            streak_bonuses_total.inc()
            logger.info(
                "streak.milestone",
                extra={"user_id": user_id, "day": day.isoformat(), "bonus_units": bonus_units},
            )
        return updated, events, bonus_units

    def evaluate(self, user_id: str, day: date, steps: int) -> Tuple[StreakState, List[dict], int]:
        with self.locks.hold(user_id):
            with get_db_session() as session:
                return self.evaluate_in_session(session, user_id, day, steps)

    def get_state(self, user_id: str) -> StreakState:
        with get_db_session() as session:
            row = session.execute(
                select(streak_state).where(streak_state.c.user_id == user_id)
            ).first()
        return StreakState.from_row(row) or StreakState(user_id=user_id)


streak_store = StreakStore()
