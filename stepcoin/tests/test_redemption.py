"""
Wallet redemption tests.

Verify:
1. Exactly-once credit per (user, date) across replays, new keys and threads
2. Every outcome is a result value with the right retryable flag
3. Failures roll back completely and can be retried with the same key
4. Idempotency keys cannot be reused for a different day
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta

import pytest
from sqlalchemy import select

from stepcoin.core.database import get_db_session, redemption_attempts
from stepcoin.core.errors import RecordLockedError, ValidationError
from stepcoin.core.events import NotificationHub
from stepcoin.core.locks import KeyedLockRegistry
from stepcoin.core.ratelimit import RateLimitConfig, SlidingWindowLimiter
from stepcoin.features.earnings.service import EarningsService
from stepcoin.features.streaks.store import StreakStore
from stepcoin.features.tiers.store import TierProgressStore
from stepcoin.features.wallet import redemption as redemption_module
from stepcoin.features.wallet.ledger import get_wallet, list_transactions
from stepcoin.features.wallet.reconciliation import run_reconciliation
from stepcoin.features.wallet.redemption import RedemptionService
from stepcoin.models.streak import StreakPolicy
from stepcoin.models.wallet import RedemptionStatus

MONDAY = date(2024, 6, 3)
SATURDAY = date(2024, 6, 8)


@pytest.fixture
def earnings():
    locks = KeyedLockRegistry("test-user")
    return EarningsService(
        tiers=TierProgressStore(carry_over=False, locks=locks),
        streaks=StreakStore(policy=StreakPolicy(), locks=locks),
        notifications=NotificationHub(),
        locks=locks,
        kinds=("weekend", "milestone"),
    )


@pytest.fixture
def locks():
    return KeyedLockRegistry("test-redemption")


def _service(locks, limit=100, lock_timeout=2.0):
    return RedemptionService(
        limiter=SlidingWindowLimiter(RateLimitConfig(enabled=True, limit=limit, window_seconds=60.0)),
        locks=locks,
        notifications=NotificationHub(),
        lock_timeout=lock_timeout,
    )


def _seed_660(earnings, user_id="u1"):
    # Monday puts the user at 25% of tier 1; Saturday then earns at 1.5 x 1.1
    earnings.record_steps(user_id, MONDAY, 50_000)
    result = earnings.record_steps(user_id, SATURDAY, 10_000)
    assert result.record.pending_units == 660
    return SATURDAY


def _attempt(key):
    with get_db_session() as db:
        return db.execute(
            select(redemption_attempts).where(redemption_attempts.c.idempotency_key == key)
        ).first()


class TestExactlyOnce:
    def test_replay_with_same_key_returns_identical_result(self, earnings, locks):
        day = _seed_660(earnings)
        service = _service(locks)

        first = service.redeem("u1", day, "abc")
        second = service.redeem("u1", day, "abc")

        assert first.status == RedemptionStatus.SUCCEEDED
        assert first.amount == 660
        assert first.new_balance == 660
        assert second.status == RedemptionStatus.ALREADY_PROCESSED
        assert (second.amount, second.new_balance) == (first.amount, first.new_balance)

        wallet = get_wallet("u1")
        assert wallet.balance == 660
        assert wallet.total_earned == 660
        assert len(list_transactions("u1")) == 1

    def test_new_key_after_success_is_already_processed(self, earnings, locks):
        day = _seed_660(earnings)
        service = _service(locks)

        service.redeem("u1", day, "first")
        result = service.redeem("u1", day, "second")

        assert result.status == RedemptionStatus.ALREADY_PROCESSED
        assert result.amount == 660
        assert result.retryable is False
        assert get_wallet("u1").balance == 660

    def test_concurrent_redemptions_credit_once(self, earnings, locks):
        day = _seed_660(earnings)
        service = _service(locks)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda i: service.redeem("u1", day, f"key-{i}"), range(8)))

        statuses = [r.status for r in results]
        assert statuses.count(RedemptionStatus.SUCCEEDED) == 1
        assert set(statuses) <= {
            RedemptionStatus.SUCCEEDED,
            RedemptionStatus.ALREADY_PROCESSED,
            RedemptionStatus.CONCURRENT_REDEMPTION,
        }
        assert get_wallet("u1").balance == 660
        assert len(list_transactions("u1")) == 1

    def test_balance_accumulates_across_days(self, earnings, locks):
        _seed_660(earnings)
        service = _service(locks)

        monday = service.redeem("u1", MONDAY, "mon")
        saturday = service.redeem("u1", SATURDAY, "sat")

        assert monday.amount == 2_000
        assert saturday.new_balance == 2_660
        assert [tx.balance_after for tx in list_transactions("u1")] == [2_660, 2_000]
        assert run_reconciliation()["status"] == "ok"


class TestOutcomes:
    def test_no_record(self, locks):
        result = _service(locks).redeem("u1", MONDAY, "k1")
        assert result.status == RedemptionStatus.NO_RECORD
        assert result.retryable is False
        assert _attempt("k1").status == "no_record"

    def test_rate_limited_is_retryable(self, earnings, locks):
        earnings.record_steps("u1", MONDAY, 1_000)
        service = _service(locks, limit=2)

        service.redeem("u1", MONDAY, "k1")
        service.redeem("u1", MONDAY, "k2")
        third = service.redeem("u1", MONDAY, "k3")

        assert third.status == RedemptionStatus.RATE_LIMITED
        assert third.retryable is True

    def test_held_lock_yields_concurrent_redemption(self, earnings, locks):
        earnings.record_steps("u1", MONDAY, 1_000)
        service = _service(locks, lock_timeout=0)

        with locks.hold(("u1", MONDAY)):
            result = service.redeem("u1", MONDAY, "k1")

        assert result.status == RedemptionStatus.CONCURRENT_REDEMPTION
        assert result.retryable is True
        assert get_wallet("u1").balance == 0

        retry = service.redeem("u1", MONDAY, "k1")
        assert retry.status == RedemptionStatus.SUCCEEDED

    def test_zero_amount_day_still_closes(self, earnings, locks):
        earnings.record_steps("u1", MONDAY, 10)
        result = _service(locks).redeem("u1", MONDAY, "k1")

        assert result.status == RedemptionStatus.SUCCEEDED
        assert result.amount == 0
        assert earnings.get_daily_record("u1", MONDAY).is_redeemed is True
        with pytest.raises(RecordLockedError):
            earnings.record_steps("u1", MONDAY, 20_000)

    def test_streak_bonus_is_part_of_redeemed_amount(self, locks):
        shared = KeyedLockRegistry("test-user")
        earnings = EarningsService(
            tiers=TierProgressStore(locks=shared),
            streaks=StreakStore(policy=StreakPolicy(), locks=shared),
            notifications=NotificationHub(),
            locks=shared,
            kinds=(),
        )
        for offset in range(7):
            earnings.record_steps("u1", MONDAY + timedelta(days=offset), 5_000)

        result = _service(locks).redeem("u1", MONDAY + timedelta(days=6), "k7")

        assert result.amount == 200 + 500
        tx = list_transactions("u1")[0]
        assert tx.details["bonus_units"] == 500
        assert tx.details["pending_units"] == 200

    def test_success_publishes_event_and_finalizes_attempt(self, earnings, locks):
        day = _seed_660(earnings)
        service = _service(locks)

        service.redeem("u1", day, "abc")

        events = service.notifications.recent("u1")
        assert events[0]["type"] == "redemption-succeeded"
        assert events[0]["payload"] == {
            "user_id": "u1",
            "day": day.isoformat(),
            "amount": 660,
            "new_balance": 660,
        }
        attempt = _attempt("abc")
        assert attempt.status == "succeeded"
        assert (attempt.amount, attempt.new_balance) == (660, 660)


class TestFailures:
    def test_failure_rolls_back_and_same_key_can_retry(self, earnings, locks, monkeypatch):
        day = _seed_660(earnings)
        service = _service(locks)

        def broken_credit(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(redemption_module, "credit", broken_credit)
        failed = service.redeem("u1", day, "abc")

        assert failed.status == RedemptionStatus.FAILED
        assert failed.retryable is True
        assert earnings.get_daily_record("u1", day).is_redeemed is False
        assert get_wallet("u1").balance == 0
        assert list_transactions("u1") == []
        assert _attempt("abc").status == "failed"

        monkeypatch.undo()
        retried = service.redeem("u1", day, "abc")

        assert retried.status == RedemptionStatus.SUCCEEDED
        assert retried.amount == 660
        assert _attempt("abc").status == "succeeded"


class TestValidation:
    def test_key_bound_to_another_day_rejected(self, earnings, locks):
        day = _seed_660(earnings)
        service = _service(locks)
        service.redeem("u1", day, "abc")

        with pytest.raises(ValidationError):
            service.redeem("u1", MONDAY, "abc")

    def test_key_bound_to_another_user_rejected(self, earnings, locks):
        day = _seed_660(earnings)
        service = _service(locks)
        service.redeem("u1", day, "abc")

        with pytest.raises(ValidationError):
            service.redeem("u2", day, "abc")

    @pytest.mark.parametrize("user_id,day,key", [("", MONDAY, "k"), ("u1", "2024-02-30", "k"), ("u1", MONDAY, " ")])
    def test_malformed_input(self, locks, user_id, day, key):
        with pytest.raises(ValidationError):
            _service(locks).redeem(user_id, day, key)
