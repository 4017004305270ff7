"""
Tests for the wallet ledger and reconciliation.
"""

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from stepcoin.core.database import get_db_session, wallet_ledgers
from stepcoin.core.errors import ValidationError
from stepcoin.features.wallet.ledger import credit, get_or_create_wallet, get_wallet, list_transactions
from stepcoin.features.wallet.reconciliation import run_reconciliation


def test_wallet_created_lazily_at_zero():
    assert get_wallet("u1").balance == 0

    with get_db_session() as db:
        wallet = get_or_create_wallet(db, "u1")
        again = get_or_create_wallet(db, "u1")

    assert wallet.balance == wallet.total_earned == wallet.total_redeemed == 0
    assert again.user_id == "u1"


def test_credit_moves_balance_and_total_earned_together():
    with get_db_session() as db:
        first = credit(db, "u1", 400, description="day one", reference="r1")
        second = credit(db, "u1", 260, description="day two", reference="r2", metadata={"day": "2024-06-08"})

    assert first.balance_after == 400
    assert second.balance_after == 660
    assert second.details == {"day": "2024-06-08"}

    wallet = get_wallet("u1")
    assert wallet.balance == 660
    assert wallet.total_earned == 660


def test_transactions_listed_newest_first():
    with get_db_session() as db:
        for i in range(3):
            credit(db, "u1", 10, description=f"credit {i}", reference=f"r{i}")

    txs = list_transactions("u1", limit=2)
    assert [tx.description for tx in txs] == ["credit 2", "credit 1"]
    assert all(tx.type == "EARN" for tx in txs)


@pytest.mark.parametrize("amount", [-1, 1.5, True])
def test_invalid_credit_rejected(amount):
    with pytest.raises(ValidationError):
        with get_db_session() as db:
            credit(db, "u1", amount, description="bad")
    assert list_transactions("u1") == []


def test_duplicate_reference_rolls_back_second_credit():
    with get_db_session() as db:
        credit(db, "u1", 100, description="once", reference="same")

    with pytest.raises(IntegrityError):
        with get_db_session() as db:
            credit(db, "u1", 100, description="twice", reference="same")

    assert get_wallet("u1").balance == 100


def test_reconciliation_clean_when_no_wallets():
    report = run_reconciliation()
    assert report == {"status": "ok", "checked": 0, "mismatches": []}


def test_reconciliation_flags_tampered_balance():
    with get_db_session() as db:
        credit(db, "u1", 100, description="orphan credit", reference="r1")
        db.execute(update(wallet_ledgers).where(wallet_ledgers.c.user_id == "u1").values(balance=999))

    report = run_reconciliation()

    assert report["status"] == "mismatch"
    assert report["checked"] == 1
    checks = {m["check"] for m in report["mismatches"]}
    # The credit has no redeemed day behind it and the balance was edited
    assert {"balance_equation", "earned_vs_redeemed_days", "last_balance_after"} <= checks
