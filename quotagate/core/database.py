"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (in-memory SQLite)
- Table definitions for the catalog, subscriptions and the usage ledger
"""
from typing import Optional, Generator
from contextlib import contextmanager
from sqlalchemy import (
    create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, Text,
    Index, ForeignKey, UniqueConstraint, CheckConstraint, text, true, false,
)
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.sql import func
import logging
import os

from quotagate.core.config import settings


logger = logging.getLogger(__name__)

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL") or settings.TEST_DATABASE_URL
    if test_url:
        return test_url

    return settings.DATABASE_URL


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/").endswith("sqlite:"))


def init_engine(database_url: Optional[str] = None):
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

    if _is_memory_sqlite(url):
        # One shared connection so every session sees the same in-memory database
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=settings.DATABASE_ECHO,
        )
    elif url.startswith("sqlite"):
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=settings.DATABASE_ECHO,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=settings.DATABASE_ECHO,
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session(session_factory: Optional[sessionmaker] = None):
    """
    Context manager for database sessions (one transaction).

    Usage:
        with get_db_session() as session:
            session.execute(...)

    Commits on success, rolls back and re-raises on error.
    """
    SessionLocal = session_factory or get_session_factory()
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
    """FastAPI-friendly DB dependency that yields a Session and closes it.

    Use this with `Depends(get_db)` in route functions. The route owns the
    commit; anything left uncommitted is rolled back on close.
    """
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def dialect_insert(session: Session, table: Table):
    """Return a dialect-specific INSERT supporting ON CONFLICT DO NOTHING.

    Only PostgreSQL and SQLite are supported; both understand the clause.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert
        return pg_insert(table)
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert
        return sqlite_insert(table)
    raise RuntimeError(f"Unsupported database dialect for upserts: {dialect}")


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
        logger.warning("Database connection check failed", extra={"error": str(e)})
        return False


# Organizations (read-only here; owned by the account surface)
organizations = Table(
    'organizations',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('name', Text, nullable=True),
    Column('type', String(50), nullable=True),  # recruiting_agency, corporate, business, ...
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Plans (catalog, populated by the admin CRUD surface)
plans = Table(
    'plans',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('product', String(50), nullable=False),  # individual, recruiter, corporate
    Column('tier', String(50), nullable=False),  # free, pro, ...
    Column('interval', String(20), nullable=False),  # monthly, annual
    Column('price_cents', Integer, nullable=False),
    Column('currency', String(3), nullable=False, server_default='ZAR'),
    Column('is_public', Boolean, nullable=False, server_default=true()),
    Column('version', Integer, nullable=False, server_default='1'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # Index for free-plan lookup by product family
    Index('idx_plans_product_tier_interval', 'product', 'tier', 'interval'),
)

# Features (catalog)
features = Table(
    'features',
    metadata,
    Column('key', String(100), primary_key=True),
    Column('name', Text, nullable=False),
    Column('description', Text, nullable=False, server_default=''),
    Column('kind', String(20), nullable=False),  # TOGGLE, QUOTA, METERED
    Column('unit', String(50), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)

# Feature entitlements: what a plan grants for one feature
feature_entitlements = Table(
    'feature_entitlements',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('plan_id', String(100), ForeignKey('plans.id'), nullable=False),
    Column('feature_key', String(100), ForeignKey('features.key'), nullable=False),
    Column('enabled', Boolean, nullable=False, server_default=false()),
    Column('monthly_cap', Integer, nullable=True),  # QUOTA only
    Column('overage_unit_cents', Integer, nullable=True),  # METERED only
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint('plan_id', 'feature_key', name='uq_feature_entitlements_plan_feature'),
    Index('idx_feature_entitlements_plan_id', 'plan_id'),
)

# Subscriptions
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('plan_id', String(100), ForeignKey('plans.id'), nullable=False),
    Column('holder_type', String(10), nullable=False),  # user, org
    Column('holder_id', String(100), nullable=False),
    Column('status', String(20), nullable=False, server_default='active'),  # active, canceled
    Column('current_period_start', DateTime(timezone=True), nullable=False),
    Column('current_period_end', DateTime(timezone=True), nullable=False),
    Column('cancel_at_period_end', Boolean, nullable=False, server_default=false()),
    Column('scheduled_cancellation_date', DateTime(timezone=True), nullable=True),
    Column('canceled_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_subscriptions_holder_status', 'holder_type', 'holder_id', 'status'),
    Index('idx_subscriptions_status_period_end', 'status', 'current_period_end'),
    # At most one active subscription per holder
    Index(
        'uq_subscriptions_active_holder',
        'holder_type',
        'holder_id',
        unique=True,
        postgresql_where=text("status = 'active'"),
        sqlite_where=text("status = 'active'"),
    ),
)

# Usage ledger: one counter per (holder, feature, billing period)
usage_records = Table(
    'usage_records',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('holder_type', String(10), nullable=False),
    Column('holder_id', String(100), nullable=False),
    Column('feature_key', String(100), nullable=False),
    Column('period_start', DateTime(timezone=True), nullable=False),
    Column('period_end', DateTime(timezone=True), nullable=False),
    Column('used', Integer, nullable=False, server_default='0'),
    Column('extra_allowance', Integer, nullable=False, server_default='0'),
    Column('last_reset_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint(
        'holder_type', 'holder_id', 'feature_key', 'period_start', 'period_end',
        name='uq_usage_records_holder_feature_period',
    ),
    CheckConstraint('used >= 0', name='ck_usage_records_used_non_negative'),
    Index('idx_usage_records_holder_period_end', 'holder_type', 'holder_id', 'period_end'),
)

# Admin audit log
billing_admin_audit = Table(
    'billing_admin_audit',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('actor', String(100), nullable=False),
    Column('action', String(100), nullable=False),  # grant_extra_allowance, change_plan, ...
    Column('target_holder', String(120), nullable=True, index=True),  # "user:u1"
    Column('target_resource', String(200), nullable=True),
    Column('payload_json', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_billing_admin_audit_created_at', 'created_at'),
)
