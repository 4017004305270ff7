"""
Persistence for tier progress.

Rows are read inside the caller's transaction (FOR UPDATE where the backend
supports it) and written back with an optimistic version check.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from stepcoin.core.config import settings
from stepcoin.core.database import get_db_session, tier_progress
from stepcoin.core.errors import ConflictError
from stepcoin.core.events import TIER_ADVANCED
from stepcoin.core.locks import KeyedLockRegistry, user_locks
from stepcoin.core.metrics import tier_advancements_total
from stepcoin.features.rates.tiers import DEFAULT_TIER_TABLE, TierTable
from stepcoin.features.tiers.progression import advance
from stepcoin.models.tier import TierProgress

logger = logging.getLogger("stepcoin")


class TierProgressStore:
    def __init__(
        self,
        table: TierTable = DEFAULT_TIER_TABLE,
        carry_over: Optional[bool] = None,
        locks: KeyedLockRegistry = user_locks,
    ):
        self.table = table
        self.carry_over = settings.TIER_CARRY_OVER_EXCESS if carry_over is None else carry_over
        self.locks = locks

    def load_for_update(self, session: Session, user_id: str) -> TierProgress:
        row = session.execute(
            select(tier_progress).where(tier_progress.c.user_id == user_id).with_for_update()
        ).first()
        if row is not None:
            return TierProgress.from_row(row)
        session.execute(tier_progress.insert().values(user_id=user_id))
        return TierProgress(user_id=user_id)

    def save(self, session: Session, progress: TierProgress) -> TierProgress:
        result = session.execute(
            update(tier_progress)
            .where(
                tier_progress.c.user_id == progress.user_id,
                tier_progress.c.version == progress.version,
            )
            .values(
                tier_ordinal=progress.tier_ordinal,
                steps_in_tier=progress.steps_in_tier,
                last_quarter_notified=progress.last_quarter_notified,
                version=progress.version + 1,
                updated_at=func.now(),
            )
        )
        if result.rowcount != 1:
            raise ConflictError(f"tier progress for {progress.user_id} changed concurrently")
        return progress.evolve(version=progress.version + 1)

    def apply_in_session(
        self,
        session: Session,
        user_id: str,
        added_steps: int,
        current: Optional[TierProgress] = None,
    ) -> Tuple[TierProgress, List[dict]]:
        """Advance within an open transaction. Caller holds the user lock."""
        if current is None:
            current = self.load_for_update(session, user_id)
        updated, events = advance(current, added_steps, self.table, self.carry_over)
        saved = self.save(session, updated)
        for event in events:
            if event["type"] == TIER_ADVANCED:
                tier_advancements_total.inc(labels={"to_tier": str(event["payload"]["to_tier"])})
                logger.info(
                    "tier.advanced",
                    extra={
                        "user_id": user_id,
                        "from_tier": event["payload"]["from_tier"],
                        "to_tier": event["payload"]["to_tier"],
                    },
                )
        return saved, events

    def apply_steps(self, user_id: str, added_steps: int) -> Tuple[TierProgress, List[dict]]:
        with self.locks.hold(user_id):
            with get_db_session() as session:
                return self.apply_in_session(session, user_id, added_steps)

    def get(self, user_id: str) -> TierProgress:
        with get_db_session() as session:
            row = session.execute(
                select(tier_progress).where(tier_progress.c.user_id == user_id)
            ).first()
        return TierProgress.from_row(row) or TierProgress(user_id=user_id)


tier_store = TierProgressStore()
