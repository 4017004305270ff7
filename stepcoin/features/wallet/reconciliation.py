"""
Wallet reconciliation

Read-only integrity checks per wallet:
1. total_earned equals the sum of EARN transactions
2. balance equals total_earned - total_redeemed - spent (no spend path: 0)
3. total_earned equals the sum of redeemed daily amounts (streak bonuses included)
4. the newest transaction's balance_after equals the wallet balance

Mismatches are reported and logged, never auto-corrected.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from stepcoin.core.database import daily_earnings, get_db_session, wallet_ledgers, wallet_transactions
from stepcoin.features.wallet.ledger import EARN

logger = logging.getLogger("stepcoin")

TOTAL_SPENT = 0


def _sum(db: Session, query) -> int:
    return int(db.execute(query).scalar() or 0)


def _check_wallet(db: Session, wallet) -> List[Dict]:
    user_id = wallet.user_id
    problems = []

    earned_tx = _sum(db, select(func.coalesce(func.sum(wallet_transactions.c.amount), 0)).where(
        wallet_transactions.c.user_id == user_id,
        wallet_transactions.c.type == EARN,
    ))
    if earned_tx != wallet.total_earned:
        problems.append({"check": "earned_vs_transactions", "expected": earned_tx, "actual": wallet.total_earned})

    expected_balance = wallet.total_earned - wallet.total_redeemed - TOTAL_SPENT
    if expected_balance != wallet.balance:
        problems.append({"check": "balance_equation", "expected": expected_balance, "actual": wallet.balance})

    redeemed_days = _sum(db, select(func.coalesce(func.sum(daily_earnings.c.redeemed_amount), 0)).where(
        daily_earnings.c.user_id == user_id,
        daily_earnings.c.is_redeemed.is_(True),
    ))
    if redeemed_days != wallet.total_earned:
        problems.append({"check": "earned_vs_redeemed_days", "expected": redeemed_days, "actual": wallet.total_earned})

    last_balance = db.execute(
        select(wallet_transactions.c.balance_after)
        .where(wallet_transactions.c.user_id == user_id)
        .order_by(wallet_transactions.c.id.desc())
        .limit(1)
    ).scalar()
    if last_balance is not None and int(last_balance) != wallet.balance:
        problems.append({"check": "last_balance_after", "expected": int(last_balance), "actual": wallet.balance})

    for problem in problems:
        problem["user_id"] = user_id
    return problems


def run_reconciliation(db: Optional[Session] = None) -> Dict:
    """
    Run reconciliation over every wallet.

    Returns {"status": "ok" | "mismatch", "checked": int, "mismatches": [...]}.
    """
    if db is None:
        with get_db_session() as session:
            return run_reconciliation(session)

    wallets = db.execute(select(wallet_ledgers).order_by(wallet_ledgers.c.user_id)).fetchall()
    mismatches: List[Dict] = []
    for wallet in wallets:
        for problem in _check_wallet(db, wallet):
            logger.warning(
                "reconciliation.mismatch",
                extra={
                    "user_id": problem["user_id"],
                    "check": problem["check"],
                    "expected": problem["expected"],
                    "actual": problem["actual"],
                },
            )
            mismatches.append(problem)

    return {
        "status": "mismatch" if mismatches else "ok",
        "checked": len(wallets),
        "mismatches": mismatches,
    }
