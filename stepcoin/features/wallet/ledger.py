"""
Wallet ledger

- One wallet row per user, created lazily at zero.
- Append-only transaction log; every row records balance_after.
- Balances change only through SQL-side increments inside the caller's
  transaction, so concurrent credits never lose updates.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from stepcoin.core.database import get_db_session, wallet_ledgers, wallet_transactions
from stepcoin.core.errors import ValidationError
from stepcoin.models.wallet import WalletLedger, WalletTransaction

logger = logging.getLogger("stepcoin")

EARN = "EARN"


def get_or_create_wallet(db: Session, user_id: str) -> WalletLedger:
    """Fetch the wallet row, inserting a zero wallet on first use."""
    query = select(wallet_ledgers).where(wallet_ledgers.c.user_id == user_id)
    row = db.execute(query).first()
    if row is None:
        try:
            with db.begin_nested():
                db.execute(wallet_ledgers.insert().values(user_id=user_id))
        except IntegrityError:
            # Created by a concurrent transaction; read theirs
            logger.debug("wallet.create_raced", extra={"user_id": user_id})
        row = db.execute(query).first()
    return WalletLedger.from_row(row)


def credit(
    db: Session,
    user_id: str,
    amount: int,
    *,
    description: str,
    reference: Optional[str] = None,
    metadata: Optional[Dict] = None,
) -> WalletTransaction:
    """
    Increase balance and total_earned by `amount` and append an EARN row.

    Runs inside the caller's transaction; nothing is committed here.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise ValidationError("credit amount must be a non-negative integer")

    get_or_create_wallet(db, user_id)
    db.execute(
        update(wallet_ledgers)
        .where(wallet_ledgers.c.user_id == user_id)
        .values(
            balance=wallet_ledgers.c.balance + amount,
            total_earned=wallet_ledgers.c.total_earned + amount,
            last_updated=func.now(),
        )
    )
    balance_after = db.execute(
        select(wallet_ledgers.c.balance).where(wallet_ledgers.c.user_id == user_id)
    ).scalar_one()

    result = db.execute(
        wallet_transactions.insert().values(
            user_id=user_id,
            type=EARN,
            amount=amount,
            balance_after=balance_after,
            description=description,
            reference=reference,
            details=metadata or {},
        )
    )
    tx_id = result.inserted_primary_key[0]
    row = db.execute(select(wallet_transactions).where(wallet_transactions.c.id == tx_id)).first()
    return WalletTransaction.from_row(row)


def get_wallet(user_id: str) -> WalletLedger:
    """Read-only view; a user without a wallet row sees a zero wallet."""
    with get_db_session() as db:
        row = db.execute(select(wallet_ledgers).where(wallet_ledgers.c.user_id == user_id)).first()
    return WalletLedger.from_row(row) or WalletLedger(user_id=user_id)


def list_transactions(user_id: str, limit: int = 50) -> List[WalletTransaction]:
    """Newest first."""
    limit = max(1, min(int(limit), 500))
    with get_db_session() as db:
        rows = db.execute(
            select(wallet_transactions)
            .where(wallet_transactions.c.user_id == user_id)
            .order_by(wallet_transactions.c.id.desc())
            .limit(limit)
        ).fetchall()
    return [WalletTransaction.from_row(row) for row in rows]
