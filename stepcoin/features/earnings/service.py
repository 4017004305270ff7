"""
Step ingestion pipeline.

record_steps(user_id, day, steps) runs rate -> tier -> streak for one reading
under the per-user lock and a single transaction, then publishes the emitted
events once the transaction has committed.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Tuple, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from stepcoin.core.config import bonus_kinds, settings
from stepcoin.core.database import daily_earnings, get_db_session
from stepcoin.core.errors import ContentionError, RecordLockedError
from stepcoin.core.events import NotificationHub, hub
from stepcoin.core.locks import KeyedLockRegistry, user_locks
from stepcoin.core.logging import log_event
from stepcoin.core.metrics import steps_recorded_total
from stepcoin.core.validation import coerce_day, require_steps, require_user_id
from stepcoin.features.rates.bonus import BonusContext
from stepcoin.features.rates.engine import RateQuote, quote
from stepcoin.features.tiers.progression import progression_summary
from stepcoin.features.tiers.store import TierProgressStore, tier_store
from stepcoin.features.streaks.store import StreakStore, streak_store
from stepcoin.models.earning import DailyEarningRecord
from stepcoin.models.streak import StreakState
from stepcoin.models.tier import TierProgress


@dataclass
class StepRecording:
    record: DailyEarningRecord
    quote: RateQuote
    tier: TierProgress
    streak: StreakState
    events: List[dict] = field(default_factory=list)

    def to_dict(self, tier_summary: Optional[dict] = None) -> dict:
        return {
            "record": self.record.to_dict(),
            "quote": self.quote.to_dict(),
            "tier": tier_summary or self.tier.to_dict(),
            "streak": self.streak.to_dict(),
            "events": list(self.events),
        }


def _select_record(user_id: str, day: date):
    return select(daily_earnings).where(
        daily_earnings.c.user_id == user_id,
        daily_earnings.c.day == day,
    )


class EarningsService:
    """Coordinates rate engine, tier progression and streak tracking per reading."""

    def __init__(
        self,
        tiers: TierProgressStore = tier_store,
        streaks: StreakStore = streak_store,
        notifications: NotificationHub = hub,
        locks: KeyedLockRegistry = user_locks,
        kinds: Optional[Tuple[str, ...]] = None,
    ):
        self.tiers = tiers
        self.streaks = streaks
        self.notifications = notifications
        self.locks = locks
        self.kinds = kinds if kinds is not None else bonus_kinds(settings)

    def record_steps(self, user_id: str, day: Union[date, str], steps: int) -> StepRecording:
        user_id = require_user_id(user_id)
        day = coerce_day(day)
        steps = require_steps(steps)

        with self.locks.hold(user_id):
            try:
                with get_db_session() as session:
                    recording = self._record_in_session(session, user_id, day, steps)
            except IntegrityError as exc:
                # Another process created the same daily row first
                raise ContentionError(f"daily record for {user_id} on {day} created concurrently") from exc

        steps_recorded_total.inc()
        if recording.events:
            self.notifications.publish(recording.events)
        log_event(
            "info",
            "steps.recorded",
            user_id=user_id,
            event_type="steps",
            extra={
                "day": day.isoformat(),
                "steps": steps,
                "pending_units": recording.record.pending_units,
                "events": len(recording.events),
            },
        )
        return recording

    def _record_in_session(self, session: Session, user_id: str, day: date, steps: int) -> StepRecording:
        row = session.execute(_select_record(user_id, day).with_for_update()).first()
        if row is not None and row.is_redeemed:
            raise RecordLockedError(f"{day.isoformat()} already redeemed for {user_id}")

        counted = int(row.tier_steps_counted) if row is not None else 0
        delta = max(0, steps - counted)

        progress = self.tiers.load_for_update(session, user_id)
        streak = self.streaks.load_for_update(session, user_id)

        # Rate reflects progress as it stood before this reading
        tier = self.tiers.table.get(progress.tier_ordinal)
        context = BonusContext(
            day=day,
            streak_days=streak.current_streak_days,
            tier_ordinal=progress.tier_ordinal,
            steps_in_tier=progress.steps_in_tier,
        )
        rate_quote = quote(steps, tier, context, kinds=self.kinds, tier_table=self.tiers.table)

        new_progress, tier_events = self.tiers.apply_in_session(session, user_id, delta, current=progress)
        new_streak, streak_events, bonus_units = self.streaks.evaluate_in_session(
            session, user_id, day, steps, current=streak
        )

        values = {
            "steps": steps,
            "tier_steps_counted": max(counted, steps),
            "pending_units": rate_quote.pending_units,
            "effective_rate": f"{rate_quote.effective_rate.numerator}/{rate_quote.effective_rate.denominator}",
            "tier_ordinal": tier.ordinal,
            "updated_at": func.now(),
        }
        if row is None:
            session.execute(
                daily_earnings.insert().values(user_id=user_id, day=day, bonus_units=bonus_units, **values)
            )
        else:
            result = session.execute(
                update(daily_earnings)
                .where(daily_earnings.c.id == row.id, daily_earnings.c.is_redeemed.is_(False))
                .values(bonus_units=daily_earnings.c.bonus_units + bonus_units, **values)
            )
            if result.rowcount != 1:
                raise RecordLockedError(f"{day.isoformat()} already redeemed for {user_id}")

        record = DailyEarningRecord.from_row(session.execute(_select_record(user_id, day)).first())
        return StepRecording(
            record=record,
            quote=rate_quote,
            tier=new_progress,
            streak=new_streak,
            events=tier_events + streak_events,
        )

    def tier_summary(self, progress: TierProgress) -> dict:
        return progression_summary(progress, self.tiers.table)

    def get_daily_record(self, user_id: str, day: Union[date, str]) -> Optional[DailyEarningRecord]:
        user_id = require_user_id(user_id)
        day = coerce_day(day)
        with get_db_session() as session:
            row = session.execute(_select_record(user_id, day)).first()
        return DailyEarningRecord.from_row(row)

    def list_history(self, user_id: str, limit: int = 30) -> List[DailyEarningRecord]:
        user_id = require_user_id(user_id)
        limit = max(1, min(int(limit), 366))
        with get_db_session() as session:
            rows = session.execute(
                select(daily_earnings)
                .where(daily_earnings.c.user_id == user_id)
                .order_by(daily_earnings.c.day.desc())
                .limit(limit)
            ).fetchall()
        return [DailyEarningRecord.from_row(row) for row in rows]


earnings_service = EarningsService()
