"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- SQLite support for local development and tests
- Table definitions for earnings, tier/streak state, wallets and redemptions
"""
from typing import Optional, Generator
from contextlib import contextmanager
import logging
import os

from sqlalchemy import (
    create_engine,
    event,
    MetaData,
    Table,
    Column,
    Integer,
    BigInteger,
    String,
    Date,
    DateTime,
    Boolean,
    JSON,
    Text,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.sql import false, func

from stepcoin.core.config import settings

logger = logging.getLogger("stepcoin")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Seconds SQLite waits on a locked database before raising
SQLITE_BUSY_TIMEOUT = 30

# Global engine and session factory
_engine: Optional[Engine] = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _enable_sqlite_immediate_transactions(engine: Engine) -> None:
    """Make every SQLite transaction take the write lock up front.

    pysqlite's deferred BEGIN lets two readers both try to upgrade to writers,
    which fails instantly instead of waiting on the busy timeout.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine(database_url: Optional[str] = None) -> Engine:
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if _engine is not None:
        _engine.dispose()

    if _is_sqlite(url):
        connect_args = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}
        if url in ("sqlite://", "sqlite:///:memory:"):
            _engine = create_engine(url, connect_args=connect_args, poolclass=StaticPool, echo=False)
        else:
            _engine = create_engine(
                url,
                connect_args=connect_args,
                poolclass=QueuePool,
                pool_size=POOL_SIZE,
                max_overflow=MAX_OVERFLOW,
                pool_timeout=POOL_TIMEOUT,
                echo=False,
            )
        _enable_sqlite_immediate_transactions(_engine)
    else:
        # Create engine with connection pooling
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine() -> Engine:
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


def dispose_engine() -> None:
    """Close pooled connections and forget the engine (tests, shutdown)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Commits on success, rolls back on any exception.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI-friendly DB dependency that yields a Session and closes it."""
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


# One row per user per calendar day; pending_units is recomputed on every step update
daily_earnings = Table(
    'daily_earnings',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('day', Date, nullable=False),
    Column('steps', BigInteger, nullable=False, server_default='0'),
    # High-water mark of steps already fed into tier progress for this day
    Column('tier_steps_counted', BigInteger, nullable=False, server_default='0'),
    Column('pending_units', BigInteger, nullable=False, server_default='0'),
    Column('bonus_units', BigInteger, nullable=False, server_default='0'),
    Column('effective_rate', String(64), nullable=False, server_default='0'),  # Fraction as "n/d"
    Column('tier_ordinal', Integer, nullable=False, server_default='1'),
    Column('is_redeemed', Boolean, nullable=False, server_default=false(), index=True),
    Column('redeemed_amount', BigInteger, nullable=True),
    Column('balance_after', BigInteger, nullable=True),
    Column('redemption_key', String(255), nullable=True),
    Column('redeemed_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', 'day', name='uq_daily_earnings_user_day'),
    Index('idx_daily_earnings_user_day', 'user_id', 'day'),
)

# Active tier and steps accumulated within it
tier_progress = Table(
    'tier_progress',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('tier_ordinal', Integer, nullable=False, server_default='1'),
    Column('steps_in_tier', BigInteger, nullable=False, server_default='0'),
    Column('last_quarter_notified', Integer, nullable=False, server_default='0'),
    Column('version', Integer, nullable=False, server_default='0'),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

streak_state = Table(
    'streak_state',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('current_streak_days', Integer, nullable=False, server_default='0'),
    Column('longest_streak_days', Integer, nullable=False, server_default='0'),
    Column('last_qualifying_date', Date, nullable=True),
    Column('bonus_awarded_for_cycle', Boolean, nullable=False, server_default=false()),
    Column('cycles_completed', Integer, nullable=False, server_default='0'),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

wallet_ledgers = Table(
    'wallet_ledgers',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('balance', BigInteger, nullable=False, server_default='0'),
    Column('total_earned', BigInteger, nullable=False, server_default='0'),
    Column('total_redeemed', BigInteger, nullable=False, server_default='0'),
    Column('last_updated', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Append-only audit trail
wallet_transactions = Table(
    'wallet_transactions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('type', String(50), nullable=False),
    Column('amount', BigInteger, nullable=False),
    Column('balance_after', BigInteger, nullable=False),
    Column('description', Text, nullable=False),
    Column('reference', String(255), nullable=True),
    Column('details', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_wallet_transactions_user_created', 'user_id', 'created_at'),
    UniqueConstraint('reference', name='uq_wallet_transactions_reference'),
)

redemption_attempts = Table(
    'redemption_attempts',
    metadata,
    Column('idempotency_key', String(255), primary_key=True),
    Column('user_id', String(100), nullable=False),
    Column('day', Date, nullable=False),
    Column('status', String(50), nullable=False),
    Column('amount', BigInteger, nullable=True),
    Column('new_balance', BigInteger, nullable=True),
    Column('error', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_redemption_attempts_user_created', 'user_id', 'created_at'),
    Index('idx_redemption_attempts_user_day', 'user_id', 'day'),
)
