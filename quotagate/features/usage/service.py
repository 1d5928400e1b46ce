"""
quotagate/features/usage/service.py

Usage ledger: one counter per (holder, feature, billing period).

Handles:
- Get-or-create of the period's usage record (race-safe upsert)
- Read-only lookup for views that must not write
- Atomic increments (unconditional and cap-bounded)
- Extra allowance grants
- Counter resets (manual and end-of-period)

Every mutation is a single SQL statement so concurrent callers never lose
updates. Callers own the transaction.
"""

import logging
from datetime import datetime
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from quotagate.core.database import dialect_insert, usage_records
from quotagate.core.errors import NotFoundError, ValidationError
from quotagate.core.timeutil import ensure_utc, normalize_now
from quotagate.models.holder import Holder
from quotagate.models.usage_record import UsageRecord


logger = logging.getLogger(__name__)


def _row_to_record(row) -> UsageRecord:
    return UsageRecord(
        id=row.id,
        holder_type=row.holder_type,
        holder_id=row.holder_id,
        feature_key=row.feature_key,
        period_start=ensure_utc(row.period_start),
        period_end=ensure_utc(row.period_end),
        used=row.used,
        extra_allowance=row.extra_allowance,
        last_reset_at=ensure_utc(row.last_reset_at),
    )


def validate_amount(amount: int) -> None:
    """Reject anything but a positive int (bools included)."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"amount must be a positive integer, got {amount!r}")


def _period_filter(holder: Holder, feature_key: str, period_start: datetime, period_end: datetime):
    return (
        (usage_records.c.holder_type == holder.type)
        & (usage_records.c.holder_id == holder.id)
        & (usage_records.c.feature_key == feature_key)
        & (usage_records.c.period_start == ensure_utc(period_start))
        & (usage_records.c.period_end == ensure_utc(period_end))
    )


def get_record(session: Session, usage_id: int) -> Optional[UsageRecord]:
    row = session.execute(select(usage_records).where(usage_records.c.id == usage_id)).first()
    if not row:
        return None
    return _row_to_record(row)


def find_usage(
    session: Session,
    holder: Holder,
    feature_key: str,
    period_start: datetime,
    period_end: datetime,
) -> Optional[UsageRecord]:
    """Read-only lookup of the period's usage record; never creates one."""
    row = session.execute(
        select(usage_records).where(_period_filter(holder, feature_key, period_start, period_end))
    ).first()
    if not row:
        return None
    return _row_to_record(row)


def get_usage(
    session: Session,
    holder: Holder,
    feature_key: str,
    period_start: datetime,
    period_end: datetime,
) -> UsageRecord:
    """
    Get the usage record for a holder/feature/period, creating it if absent.

    Concurrent first calls converge on one row: the insert is
    ON CONFLICT DO NOTHING against the unique period key, followed by a read.

    Returns:
        UsageRecord (new records start at used=0, extra_allowance=0)
    """
    now = normalize_now(None)
    stmt = dialect_insert(session, usage_records).values(
        holder_type=holder.type,
        holder_id=holder.id,
        feature_key=feature_key,
        period_start=ensure_utc(period_start),
        period_end=ensure_utc(period_end),
        used=0,
        extra_allowance=0,
        last_reset_at=now,
        created_at=now,
        updated_at=now,
    ).on_conflict_do_nothing()
    session.execute(stmt)

    row = session.execute(
        select(usage_records).where(_period_filter(holder, feature_key, period_start, period_end))
    ).first()
    return _row_to_record(row)


def increment_usage(session: Session, usage_id: int, amount: int) -> int:
    """
    Unconditionally add amount to the counter.

    Returns:
        New value of used
    """
    validate_amount(amount)
    new_used = session.execute(
        update(usage_records)
        .where(usage_records.c.id == usage_id)
        .values(used=usage_records.c.used + amount, updated_at=normalize_now(None))
        .returning(usage_records.c.used)
    ).scalar()
    if new_used is None:
        raise NotFoundError(f"Usage record {usage_id} not found", code="usage_not_found")
    return new_used


def increment_usage_within_limit(
    session: Session,
    usage_id: int,
    amount: int,
    monthly_cap: int,
) -> Optional[UsageRecord]:
    """
    Add amount only if the result stays within monthly_cap + extra_allowance.

    Check and increment happen in one statement, so N concurrent callers
    competing for C remaining units can never push used past the limit.

    Returns:
        Updated UsageRecord, or None when the increment would overshoot
    """
    validate_amount(amount)
    row = session.execute(
        update(usage_records)
        .where(usage_records.c.id == usage_id)
        .where(usage_records.c.used + amount <= monthly_cap + usage_records.c.extra_allowance)
        .values(used=usage_records.c.used + amount, updated_at=normalize_now(None))
        .returning(*usage_records.c)
    ).first()
    if not row:
        return None
    return _row_to_record(row)


def add_extra_allowance(session: Session, usage_id: int, amount: int) -> UsageRecord:
    """Additively raise the period limit for one record."""
    validate_amount(amount)
    row = session.execute(
        update(usage_records)
        .where(usage_records.c.id == usage_id)
        .values(
            extra_allowance=usage_records.c.extra_allowance + amount,
            updated_at=normalize_now(None),
        )
        .returning(*usage_records.c)
    ).first()
    if not row:
        raise NotFoundError(f"Usage record {usage_id} not found", code="usage_not_found")
    return _row_to_record(row)


def reset_usage(
    session: Session,
    holder: Holder,
    feature_key: str,
    period_start: datetime,
    period_end: datetime,
    now: Optional[datetime] = None,
) -> int:
    """
    Zero the counter for one holder/feature/period.

    extra_allowance is left as granted. Idempotent.

    Returns:
        Number of records touched (0 or 1)
    """
    now = normalize_now(now)
    result = session.execute(
        update(usage_records)
        .where(_period_filter(holder, feature_key, period_start, period_end))
        .values(used=0, last_reset_at=now, updated_at=now)
    )
    return result.rowcount or 0


def reset_holder_usage(
    session: Session,
    holder: Holder,
    period_end_before: datetime,
    now: Optional[datetime] = None,
) -> int:
    """
    Zero every counter of a holder whose period ended at or before the cutoff.

    Returns:
        Number of records touched
    """
    now = normalize_now(now)
    result = session.execute(
        update(usage_records)
        .where(usage_records.c.holder_type == holder.type)
        .where(usage_records.c.holder_id == holder.id)
        .where(usage_records.c.period_end <= ensure_utc(period_end_before))
        .where(usage_records.c.used != 0)
        .values(used=0, last_reset_at=now, updated_at=now)
    )
    touched = result.rowcount or 0
    if touched:
        logger.info(
            "[usage] reset ended-period counters",
            extra={"holder": holder.ref, "records": touched},
        )
    return touched
