"""
Database engine, session management, and base model.

This module is the foundation for all database operations.
Every model inherits from Base. Every request gets a session
from get_db().
"""

from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session

from vn_ledger.config import get_settings

settings = get_settings()

# --- Engine ---
# pool_pre_ping=True tests connections before using them,
# which handles cases where the database restarted or a
# connection went stale.
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
)

# --- Session Factory ---
# autocommit=False: every write happens inside an explicit
# transaction that is committed or rolled back as a whole.
# autoflush=False: SQL is only sent on flush/commit, so a
# validation failure halfway through a voucher never leaves
# statements queued against the connection.
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    pass


# --- Dependency for FastAPI ---
def get_db():
    """
    Provide a database session for a single request.

    The try/finally pattern ensures the session is always
    closed, preventing connection leaks.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction_scope(db: Session):
    """
    Run a block of writes as one unit: commit when the block
    finishes, roll back everything when it raises.

        with transaction_scope(db):
            ledger.post_voucher(...)
            budget.record_budget_transaction(...)

    Callers never observe half of the block's writes.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
