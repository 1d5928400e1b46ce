"""
quotagate/features/billing/period_job.py

Billing period job: runs daily from the billing cron worker.

Handles:
- Scheduled cancellations (cancel_at_period_end) whose period ended
- Period rollover by plan interval for the remaining active subscriptions
- Resetting usage counters of the periods that ended

Cancellations run before rollover so a subscription scheduled to cancel is
never rolled into a new period. A second run with the same clock finds
nothing to do.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from quotagate.core.database import get_db_session, subscriptions
from quotagate.core.timeutil import add_months, ensure_utc, normalize_now
from quotagate.features.catalog.service import get_plan
from quotagate.features.usage.service import reset_holder_usage
from quotagate.models.holder import Holder
from quotagate.models.subscription import SubscriptionStatus


logger = logging.getLogger(__name__)

INTERVAL_MONTHS = {
    "monthly": 1,
    "month": 1,
    "annual": 12,
    "yearly": 12,
    "year": 12,
}


def next_period(period_end: datetime, interval: str, now: datetime):
    """
    Compute the first period starting at or after period_end that covers now.

    Steps are counted from period_end so month-end clamping does not drift
    (Jan 31 -> Feb 28 -> Mar 31).

    Returns:
        (start, end) tuple, or None for an unknown interval
    """
    months = INTERVAL_MONTHS.get((interval or "").lower())
    if months is None:
        return None
    steps = 1
    start = period_end
    end = add_months(period_end, months)
    while end <= now:
        steps += 1
        start = end
        end = add_months(period_end, months * steps)
    return start, end


def process_cancellations(session: Session, now: Optional[datetime] = None) -> int:
    """
    Cancel active subscriptions flagged cancel_at_period_end whose period ended.

    Returns:
        Number of subscriptions canceled
    """
    now = normalize_now(now)
    due_ids: List[str] = list(
        session.execute(
            select(subscriptions.c.id)
            .where(subscriptions.c.status == SubscriptionStatus.ACTIVE)
            .where(subscriptions.c.cancel_at_period_end.is_(True))
            .where(subscriptions.c.current_period_end <= now)
        ).scalars()
    )
    if not due_ids:
        return 0

    session.execute(
        update(subscriptions)
        .where(subscriptions.c.id.in_(due_ids))
        .values(status=SubscriptionStatus.CANCELED, canceled_at=now, updated_at=now)
    )
    for subscription_id in due_ids:
        logger.info("[billing-cron] canceled at period end", extra={"subscription_id": subscription_id})
    return len(due_ids)


def due_for_rollover(session: Session, now: Optional[datetime] = None) -> List[str]:
    """Ids of active subscriptions whose current period has ended."""
    now = normalize_now(now)
    return list(
        session.execute(
            select(subscriptions.c.id)
            .where(subscriptions.c.status == SubscriptionStatus.ACTIVE)
            .where(subscriptions.c.current_period_end <= now)
            .order_by(subscriptions.c.current_period_end)
        ).scalars()
    )


def roll_subscription_period(session: Session, subscription_id: str, now: Optional[datetime] = None) -> Optional[int]:
    """
    Move one subscription into the period that covers now and reset its ended counters.

    Returns:
        Number of usage records reset, or None when the subscription was skipped
        (missing plan or unknown interval)
    """
    now = normalize_now(now)
    row = session.execute(select(subscriptions).where(subscriptions.c.id == subscription_id)).first()
    if not row or row.status != SubscriptionStatus.ACTIVE:
        return None

    plan = get_plan(session, row.plan_id)
    if plan is None:
        logger.error(
            "[billing-cron] plan not found for subscription",
            extra={"subscription_id": subscription_id, "plan_id": row.plan_id},
        )
        return None

    old_end = ensure_utc(row.current_period_end)
    period = next_period(old_end, plan.interval, now)
    if period is None:
        logger.error(
            "[billing-cron] unknown plan interval",
            extra={"subscription_id": subscription_id, "interval": plan.interval},
        )
        return None

    new_start, new_end = period
    session.execute(
        update(subscriptions)
        .where(subscriptions.c.id == subscription_id)
        .values(current_period_start=new_start, current_period_end=new_end, updated_at=now)
    )
    holder = Holder(type=row.holder_type, id=row.holder_id)
    reset = reset_holder_usage(session, holder, old_end, now=now)
    logger.info(
        "[billing-cron] period rolled",
        extra={
            "subscription_id": subscription_id,
            "holder": holder.ref,
            "period_start": new_start.isoformat(),
            "period_end": new_end.isoformat(),
            "usage_reset": reset,
        },
    )
    return reset


def reset_billing_periods(session: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    """Roll every due subscription inside one transaction."""
    now = normalize_now(now)
    summary = {"rolled": 0, "skipped": 0, "usage_reset": 0}
    for subscription_id in due_for_rollover(session, now):
        reset = roll_subscription_period(session, subscription_id, now)
        if reset is None:
            summary["skipped"] += 1
        else:
            summary["rolled"] += 1
            summary["usage_reset"] += reset
    return summary


def run_billing_period_job(
    session_factory: Optional[sessionmaker] = None,
    now: Optional[datetime] = None,
) -> Dict[str, object]:
    """
    Run the whole job: cancellations first, then one transaction per rollover.

    A failing subscription is logged and counted; the rest still run.
    """
    now = normalize_now(now)
    logger.info("[billing-cron] starting billing period job", extra={"now": now.isoformat()})

    with get_db_session(session_factory) as session:
        canceled = process_cancellations(session, now)
        due_ids = due_for_rollover(session, now)

    summary: Dict[str, object] = {
        "canceled": canceled,
        "rolled": 0,
        "skipped": 0,
        "failed": 0,
        "usage_reset": 0,
    }
    for subscription_id in due_ids:
        try:
            with get_db_session(session_factory) as session:
                reset = roll_subscription_period(session, subscription_id, now)
        except Exception as exc:
            summary["failed"] += 1
            logger.error(
                "[billing-cron] period rollover failed",
                exc_info=True,
                extra={"subscription_id": subscription_id, "error": str(exc)},
            )
            continue
        if reset is None:
            summary["skipped"] += 1
        else:
            summary["rolled"] += 1
            summary["usage_reset"] += reset

    summary["ran_at"] = now.isoformat()
    logger.info("[billing-cron] billing period job completed", extra=summary)
    return summary
