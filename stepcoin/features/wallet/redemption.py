"""
Wallet redemption engine.

Converts a day's pending units (plus any streak bonus) into wallet balance,
exactly once per (user, day). Outcomes are returned as RedemptionResult
values, never raised, except for malformed input.

Guards, in order:
1. Input validation (including idempotency keys bound to another day)
2. Per-user sliding-window rate limit
3. Record lookup and is_redeemed short-circuit
4. Per-(user, day) lock with a bounded wait
5. Compare-and-swap on daily_earnings.is_redeemed inside the credit transaction
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from stepcoin.core.config import settings
from stepcoin.core.database import daily_earnings, get_db_session, redemption_attempts
from stepcoin.core.errors import ContentionError, ValidationError
from stepcoin.core.events import REDEMPTION_SUCCEEDED, NotificationHub, hub, make_event
from stepcoin.core.locks import KeyedLockRegistry, redemption_locks
from stepcoin.core.logging import log_event
from stepcoin.core.metrics import redemptions_in_flight, redemptions_total, units_credited_total
from stepcoin.core.ratelimit import SlidingWindowLimiter, build_rate_limit_config
from stepcoin.core.validation import coerce_day, require_idempotency_key, require_user_id
from stepcoin.features.wallet.ledger import credit
from stepcoin.models.earning import DailyEarningRecord
from stepcoin.models.wallet import RedemptionResult, RedemptionStatus

logger = logging.getLogger("stepcoin")

PENDING = "pending"


def _select_record(user_id: str, day: date):
    return select(daily_earnings).where(
        daily_earnings.c.user_id == user_id,
        daily_earnings.c.day == day,
    )


def _save_attempt(
    db: Session,
    key: str,
    user_id: str,
    day: date,
    status: str,
    amount: Optional[int] = None,
    new_balance: Optional[int] = None,
    error: Optional[str] = None,
) -> None:
    """Insert or advance the attempt row. A succeeded attempt is never overwritten."""
    existing = db.execute(
        select(redemption_attempts.c.status).where(redemption_attempts.c.idempotency_key == key)
    ).first()
    values = {"status": status, "amount": amount, "new_balance": new_balance, "error": error}
    if existing is None:
        try:
            with db.begin_nested():
                db.execute(redemption_attempts.insert().values(idempotency_key=key, user_id=user_id, day=day, **values))
            return
        except IntegrityError:
            logger.debug("redemption.attempt_raced", extra={"idempotency_key": key})
    db.execute(
        update(redemption_attempts)
        .where(
            redemption_attempts.c.idempotency_key == key,
            redemption_attempts.c.status != RedemptionStatus.SUCCEEDED.value,
        )
        .values(updated_at=func.now(), **values)
    )


def _already_processed(record: DailyEarningRecord, key: str) -> RedemptionResult:
    return RedemptionResult(
        status=RedemptionStatus.ALREADY_PROCESSED,
        idempotency_key=key,
        amount=record.redeemed_amount or 0,
        new_balance=record.balance_after,
        message=f"{record.day.isoformat()} already redeemed",
    )


class RedemptionService:
    def __init__(
        self,
        limiter: Optional[SlidingWindowLimiter] = None,
        locks: KeyedLockRegistry = redemption_locks,
        notifications: NotificationHub = hub,
        lock_timeout: Optional[float] = None,
    ):
        self.limiter = limiter or SlidingWindowLimiter(build_rate_limit_config(settings))
        self.locks = locks
        self.notifications = notifications
        self.lock_timeout = settings.REDEMPTION_LOCK_TIMEOUT_SECONDS if lock_timeout is None else lock_timeout

    def redeem(
        self,
        user_id: str,
        day: Union[date, str],
        idempotency_key: str,
        *,
        now: Optional[datetime] = None,
    ) -> RedemptionResult:
        user_id = require_user_id(user_id)
        day = coerce_day(day)
        key = require_idempotency_key(idempotency_key)
        self._check_key_binding(key, user_id, day)

        result = self._redeem(user_id, day, key, now or datetime.now(timezone.utc))

        redemptions_total.inc(labels={"status": result.status.value})
        log_event(
            "info" if result.status != RedemptionStatus.FAILED else "error",
            "redemption.result",
            user_id=user_id,
            event_type="redemption",
            error_code=None if result.status == RedemptionStatus.SUCCEEDED else result.status.value,
            extra={"day": day.isoformat(), "amount": result.amount, "idempotency_key": key},
        )
        return result

    def _check_key_binding(self, key: str, user_id: str, day: date) -> None:
        with get_db_session() as db:
            bound = db.execute(
                select(redemption_attempts.c.user_id, redemption_attempts.c.day)
                .where(redemption_attempts.c.idempotency_key == key)
            ).first()
        if bound is not None and (bound.user_id != user_id or bound.day != day):
            raise ValidationError("idempotency_key already used for a different redemption")

    def _finalize(self, key: str, user_id: str, day: date, result: RedemptionResult, error: Optional[str] = None) -> RedemptionResult:
        with get_db_session() as db:
            _save_attempt(db, key, user_id, day, result.status.value, result.amount, result.new_balance, error)
        return result

    def _redeem(self, user_id: str, day: date, key: str, now: datetime) -> RedemptionResult:
        if not self.limiter.allow(user_id):
            retry_after = self.limiter.retry_after(user_id)
            return self._finalize(key, user_id, day, RedemptionResult(
                status=RedemptionStatus.RATE_LIMITED,
                idempotency_key=key,
                message=f"Too many redemption attempts; retry in {retry_after:.0f}s",
            ))

        record = self._load(user_id, day)
        if record is None:
            return self._finalize(key, user_id, day, RedemptionResult(
                status=RedemptionStatus.NO_RECORD,
                idempotency_key=key,
                message=f"No earnings recorded for {day.isoformat()}",
            ))
        if record.is_redeemed:
            return self._finalize(key, user_id, day, _already_processed(record, key))

        try:
            with self.locks.hold((user_id, day), timeout=self.lock_timeout):
                return self._redeem_locked(user_id, day, key, now)
        except ContentionError:
            return self._finalize(key, user_id, day, RedemptionResult(
                status=RedemptionStatus.CONCURRENT_REDEMPTION,
                idempotency_key=key,
                message="Another redemption for this day is in progress",
            ))

    def _load(self, user_id: str, day: date) -> Optional[DailyEarningRecord]:
        with get_db_session() as db:
            return DailyEarningRecord.from_row(db.execute(_select_record(user_id, day)).first())

    def _redeem_locked(self, user_id: str, day: date, key: str, now: datetime) -> RedemptionResult:
        # Re-check under the lock; the winner may have committed while we waited
        record = self._load(user_id, day)
        if record.is_redeemed:
            return self._finalize(key, user_id, day, _already_processed(record, key))

        redemptions_in_flight.inc()
        try:
            with get_db_session() as db:
                _save_attempt(db, key, user_id, day, PENDING)
            with get_db_session() as db:
                result = self._commit(db, user_id, day, key, now)
        except Exception as exc:
            logger.exception("redemption.commit_failed", extra={"user_id": user_id, "day": day.isoformat()})
            failed = RedemptionResult(
                status=RedemptionStatus.FAILED,
                idempotency_key=key,
                message="Redemption could not be completed; retry with the same key",
            )
            try:
                return self._finalize(key, user_id, day, failed, error=str(exc)[:500])
            except Exception:
                logger.exception("redemption.attempt_record_failed", extra={"idempotency_key": key})
                return failed
        finally:
            redemptions_in_flight.dec()

        if result.status == RedemptionStatus.SUCCEEDED:
            units_credited_total.inc(amount=result.amount)
            self.notifications.publish([make_event(
                REDEMPTION_SUCCEEDED,
                user_id=user_id,
                day=day.isoformat(),
                amount=result.amount,
                new_balance=result.new_balance,
            )])
        return result

    def _commit(self, db: Session, user_id: str, day: date, key: str, now: datetime) -> RedemptionResult:
        row = db.execute(_select_record(user_id, day).with_for_update()).first()
        record = DailyEarningRecord.from_row(row)
        amount = record.redeemable_amount

        swapped = db.execute(
            update(daily_earnings)
            .where(daily_earnings.c.id == row.id, daily_earnings.c.is_redeemed.is_(False))
            .values(
                is_redeemed=True,
                redeemed_amount=amount,
                redemption_key=key,
                redeemed_at=now,
                updated_at=func.now(),
            )
        )
        if swapped.rowcount != 1:
            current = DailyEarningRecord.from_row(db.execute(_select_record(user_id, day)).first())
            result = _already_processed(current, key)
            _save_attempt(db, key, user_id, day, result.status.value, result.amount, result.new_balance)
            return result

        tx = credit(
            db,
            user_id,
            amount,
            description=f"Redeemed {record.steps} steps for {day.isoformat()}",
            reference=f"redeem:{user_id}:{day.isoformat()}",
            metadata={
                "day": day.isoformat(),
                "steps": record.steps,
                "pending_units": record.pending_units,
                "bonus_units": record.bonus_units,
                "idempotency_key": key,
            },
        )
        db.execute(
            update(daily_earnings)
            .where(daily_earnings.c.id == row.id)
            .values(balance_after=tx.balance_after)
        )
        result = RedemptionResult(
            status=RedemptionStatus.SUCCEEDED,
            idempotency_key=key,
            amount=amount,
            new_balance=tx.balance_after,
        )
        _save_attempt(db, key, user_id, day, result.status.value, result.amount, result.new_balance)
        return result


redemption_service = RedemptionService()
