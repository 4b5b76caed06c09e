# database.py - Relational store for profiles, ledgers, payments and analyses
# Postgres in production (DATABASE_URL), SQLite locally and in tests.

import os
import logging
import json
import uuid
from contextlib import contextmanager
from typing import Optional, Dict, Any, List, Iterator
from enum import Enum as PyEnum

from sqlalchemy import (
    create_engine, select as sa_select, update as sa_update,
    Column, Integer, String, Boolean, DateTime, Text, Index, Enum, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from core.invariants import REFERRAL_DEFAULT_COMMISSION_RATE
from core.time_kst import utc_now

logger = logging.getLogger("database")

# SQLAlchemy setup
Base = declarative_base()
engine = None
SessionLocal = None
DB_ENABLED = False
DB_TYPE = "none"


class StoreError(RuntimeError):
    """Relational store unavailable or a write failed."""


def _normalize_url(db_url: str) -> str:
    # Hosted Postgres URLs use postgres:// but SQLAlchemy needs postgresql://
    if db_url.startswith("postgres://"):
        return db_url.replace("postgres://", "postgresql://", 1)
    return db_url


def init_database(database_url: Optional[str] = None) -> bool:
    """Initialize database connection and create tables."""
    global engine, SessionLocal, DB_ENABLED, DB_TYPE

    db_url = database_url or os.getenv("DATABASE_URL", "")

    if db_url and not db_url.startswith("sqlite"):
        engine = create_engine(_normalize_url(db_url), pool_pre_ping=True, pool_size=5, max_overflow=10)
        DB_TYPE = "postgresql"
        logger.info("Database: Using PostgreSQL (production)")
    else:
        engine = create_engine(
            db_url or "sqlite:///./local.db",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        DB_TYPE = "sqlite"
        logger.info("Database: Using SQLite (local fallback)")

    try:
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
        Base.metadata.create_all(bind=engine)
        DB_ENABLED = True
        logger.info("Database initialized successfully")
        return True
    except Exception as e:
        logger.error("Database initialization failed: %s", e)
        DB_ENABLED = False
        return False


def close_database() -> None:
    """Dispose the engine (tests call this between databases)."""
    global engine, SessionLocal, DB_ENABLED, DB_TYPE
    if engine is not None:
        engine.dispose()
    engine = None
    SessionLocal = None
    DB_ENABLED = False
    DB_TYPE = "none"


@contextmanager
def get_db():
    """Get database session context manager (None when the DB is disabled)."""
    if not DB_ENABLED or SessionLocal is None:
        yield None
        return

    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_database_status() -> Dict[str, Any]:
    return {"enabled": DB_ENABLED, "type": DB_TYPE}


# ============================================================================
# ENUMS
# ============================================================================

class PaymentStatus(PyEnum):
    """Payment lifecycle. Everything except PENDING is terminal."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"
    EXPIRED = "expired"


class ReferralStatus(PyEnum):
    PENDING = "pending"
    COMPLETED = "completed"


def new_id() -> str:
    return str(uuid.uuid4())


# ============================================================================
# MODELS
# ============================================================================

class Profile(Base):
    """Per-user entitlement state."""
    __tablename__ = "profiles"

    user_id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=True, index=True)
    points = Column(Integer, nullable=False, default=0)
    signup_bonus_granted = Column(Boolean, nullable=False, default=False)

    membership_tier = Column(String(32), nullable=False, default="free")
    membership_expires_at = Column(DateTime, nullable=True)

    referral_code = Column(String(32), nullable=True, unique=True)
    total_referrals = Column(Integer, nullable=False, default=0)
    referral_earnings = Column(Integer, nullable=False, default=0)
    total_spent = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "points": self.points,
            "membership_tier": self.membership_tier,
            "membership_expires_at": self.membership_expires_at.isoformat() if self.membership_expires_at else None,
            "total_referrals": self.total_referrals,
            "referral_earnings": self.referral_earnings,
            "total_spent": self.total_spent,
        }


class PointTransaction(Base):
    """Point ledger. Every balance mutation writes exactly one row."""
    __tablename__ = "point_transactions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    type = Column(String(32), nullable=False)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    description = Column(String(255), nullable=True)
    reference_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utc_now, index=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "amount": self.amount,
            "balance_after": self.balance_after,
            "description": self.description,
            "reference_id": self.reference_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class FreeAnalysisUsage(Base):
    """Keyed ledger (user_id, period_key) -> count."""
    __tablename__ = "free_analysis_usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    period_key = Column(String(10), nullable=False)
    count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("user_id", "period_key", name="uq_free_usage_user_period"),
    )


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    type = Column(String(16), nullable=False)
    reference_id = Column(String(64), nullable=False)
    # Minor units (KRW/JPY have none, USD cents)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="krw")
    provider = Column(String(16), nullable=False, default="toss")
    status = Column(Enum(PaymentStatus, values_callable=lambda e: [m.value for m in e]),
                    nullable=False, default=PaymentStatus.PENDING)
    payment_key = Column(String(200), nullable=True)
    method = Column(String(32), nullable=True)
    failure_code = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utc_now)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_payments_id_status", "id", "status"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "reference_id": self.reference_id,
            "amount": self.amount,
            "currency": self.currency,
            "provider": self.provider,
            "status": self.status.value if self.status else None,
            "method": self.method,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, unique=True)
    plan_id = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default="active")
    payment_id = Column(String(36), nullable=True)
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)


class Referral(Base):
    __tablename__ = "referrals"

    id = Column(String(36), primary_key=True, default=new_id)
    referrer_id = Column(String(64), nullable=False, index=True)
    referee_id = Column(String(64), nullable=False, unique=True)
    commission_rate = Column(Integer, nullable=False, default=REFERRAL_DEFAULT_COMMISSION_RATE)
    status = Column(Enum(ReferralStatus, values_callable=lambda e: [m.value for m in e]),
                    nullable=False, default=ReferralStatus.PENDING)
    first_purchase_processed = Column(Boolean, nullable=False, default=False)
    commission_paid = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utc_now)
    completed_at = Column(DateTime, nullable=True)


class FortuneAnalysis(Base):
    """Persisted analysis result and its paywall metadata."""
    __tablename__ = "fortune_analyses"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    product_type = Column(String(32), nullable=False, default="saju_basic")
    result_json = Column(Text, nullable=False)
    is_premium = Column(Boolean, nullable=False, default=False)
    is_blinded = Column(Boolean, nullable=False, default=True)
    points_paid = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utc_now)
    expires_at = Column(DateTime, nullable=True)

    @property
    def result(self) -> Dict[str, Any]:
        return json.loads(self.result_json)


class UserVoucher(Base):
    __tablename__ = "user_vouchers"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    service_type = Column(String(32), nullable=False)
    total_quantity = Column(Integer, nullable=False, default=1)
    remaining_quantity = Column(Integer, nullable=False, default=1)
    status = Column(String(16), nullable=False, default="active")
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)


# ============================================================================
# RELATIONAL STORE
# ============================================================================

class RelationalStore:
    """
    Small CRUD surface the engine talks to.

    insert / insert_ignore / update / select / select_one / upsert, all filtered with
    SQLAlchemy criteria (equality on id, user_id, status for the guard
    patterns). `update` returns the affected rows so callers can use the
    row count as a compare-and-swap result.
    """

    def __init__(self, session: Session):
        self.session = session

    def insert(self, record):
        self.session.add(record)
        self.session.flush()
        return record

    def update(self, model, patch: Dict[str, Any], *criteria, returning=None) -> List[Any]:
        """
        Conditional UPDATE ... WHERE criteria.

        Returns:
            Rows of `returning` columns when given, else [True] * rowcount
        """
        stmt = sa_update(model).where(*criteria).values(**patch).execution_options(synchronize_session=False)
        if returning is not None:
            cols = returning if isinstance(returning, (list, tuple)) else [returning]
            rows = self.session.execute(stmt.returning(*cols)).all()
            return [row[0] if len(cols) == 1 else tuple(row) for row in rows]
        result = self.session.execute(stmt)
        return [True] * (result.rowcount or 0)

    def _dialect_insert(self, model):
        if self.session.get_bind().dialect.name == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    def insert_ignore(self, model, row: Dict[str, Any], conflict_columns: List[str]) -> bool:
        """
        INSERT ... ON CONFLICT DO NOTHING.

        Returns:
            True when the row was inserted, False when it already existed
        """
        stmt = self._dialect_insert(model).values(**row).on_conflict_do_nothing(index_elements=conflict_columns)
        result = self.session.execute(stmt)
        return (result.rowcount or 0) > 0

    def select(self, model, *criteria, order_by=None, limit: Optional[int] = None) -> List[Any]:
        stmt = sa_select(model).where(*criteria)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def select_one(self, model, *criteria):
        stmt = sa_select(model).where(*criteria).limit(1)
        return self.session.execute(stmt).scalars().first()

    def upsert(self, model, row: Dict[str, Any], conflict_key: str):
        """
        INSERT ... ON CONFLICT (conflict_key) DO UPDATE.

        conflict_key must carry a unique constraint. Returns the stored row.
        """
        patch = {k: v for k, v in row.items() if k != conflict_key}
        column = getattr(model, conflict_key)
        if "updated_at" in model.__table__.c and "updated_at" not in patch:
            patch["updated_at"] = utc_now()
        stmt = self._dialect_insert(model).values(**row).on_conflict_do_update(
            index_elements=[conflict_key], set_=patch,
        )
        self.session.execute(stmt)
        return self.session.execute(
            sa_select(model).where(column == row[conflict_key]).execution_options(populate_existing=True)
        ).scalars().first()


@contextmanager
def store_transaction() -> Iterator[RelationalStore]:
    """
    One database transaction exposed as a RelationalStore.

    Raises:
        StoreError: database not initialized
    """
    with get_db() as db:
        if db is None:
            raise StoreError("database not initialized")
        yield RelationalStore(db)
