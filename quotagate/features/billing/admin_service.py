"""
Admin billing operations service.

Handles:
- Extra allowance grants (support credits)
- Plan changes and cancellations
- Manual usage resets and billing period runs
- Audit logging

Every mutation writes its audit row in the caller's transaction; if the
audit insert fails the whole operation fails with it.
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import insert, update
from sqlalchemy.orm import Session

from quotagate.core.database import billing_admin_audit, subscriptions
from quotagate.core.errors import AdminAuditWriteError, ConflictError, NotFoundError
from quotagate.core.timeutil import normalize_now
from quotagate.features.billing.period_job import process_cancellations, reset_billing_periods
from quotagate.features.catalog.service import get_plan
from quotagate.features.subscriptions.service import get_active_subscription, get_subscription
from quotagate.features.usage.service import add_extra_allowance, get_usage, reset_usage, validate_amount
from quotagate.models.holder import Holder
from quotagate.models.subscription import Subscription, SubscriptionStatus
from quotagate.models.usage_record import UsageRecord


logger = logging.getLogger(__name__)


def record_admin_audit(
    session: Session,
    actor: str,
    action: str,
    target_holder: Optional[str] = None,
    target_resource: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Record an admin action in the audit log (not committed here).

    Args:
        actor: Admin identity (e.g. "key:1a2b3c...")
        action: Action name (e.g. "grant_extra_allowance")
        target_holder: Holder reference ("user:u1")
        target_resource: Resource affected (subscription id, feature key, ...)
        payload: Additional context (JSON-serialized)

    Raises:
        AdminAuditWriteError: the audit insert failed
    """
    try:
        session.execute(
            insert(billing_admin_audit).values(
                actor=actor,
                action=action,
                target_holder=target_holder,
                target_resource=target_resource,
                payload_json=json.dumps(payload, default=str) if payload else None,
                created_at=normalize_now(None),
            )
        )
    except Exception as e:
        logger.error("[admin_billing] audit log write failed", exc_info=True, extra={"action": action})
        raise AdminAuditWriteError(f"Admin audit write failed: {e}") from e


def _require_active(session: Session, holder: Holder, now: datetime) -> Subscription:
    subscription = get_active_subscription(session, holder, now)
    if subscription is None:
        raise NotFoundError(f"No active subscription for {holder.ref}", code="no_subscription")
    return subscription


def _require_subscription(session: Session, subscription_id: str) -> Subscription:
    subscription = get_subscription(session, subscription_id)
    if subscription is None:
        raise NotFoundError(f"Subscription not found: {subscription_id}", code="subscription_not_found")
    return subscription


def grant_extra_allowance(
    session: Session,
    holder: Holder,
    feature_key: str,
    amount: int,
    *,
    actor: str,
    now: Optional[datetime] = None,
) -> UsageRecord:
    """
    Add amount to the holder's current-period allowance for feature_key.

    Additive and unbounded; applies to the current period only.

    Raises:
        ValidationError: amount is not a positive integer
        NotFoundError: the holder has no active subscription
    """
    validate_amount(amount)
    now = normalize_now(now)
    subscription = _require_active(session, holder, now)

    record = get_usage(
        session, holder, feature_key, subscription.current_period_start, subscription.current_period_end
    )
    record = add_extra_allowance(session, record.id, amount)
    record_admin_audit(
        session,
        actor,
        "grant_extra_allowance",
        target_holder=holder.ref,
        target_resource=feature_key,
        payload={"amount": amount, "extra_allowance": record.extra_allowance},
    )
    logger.info(
        "[admin_billing] extra allowance granted",
        extra={"holder": holder.ref, "feature_key": feature_key, "amount": amount, "actor": actor},
    )
    return record


def change_plan(
    session: Session,
    subscription_id: str,
    new_plan_id: str,
    *,
    actor: str,
    now: Optional[datetime] = None,
) -> Subscription:
    """
    Point an active subscription at another plan.

    Usage is not migrated or reset: the new plan's caps apply to the
    counters already recorded for the current period.
    """
    now = normalize_now(now)
    subscription = _require_subscription(session, subscription_id)
    if subscription.status != SubscriptionStatus.ACTIVE:
        raise ConflictError(f"Subscription {subscription_id} is {subscription.status}", code="subscription_not_active")
    if get_plan(session, new_plan_id) is None:
        raise NotFoundError(f"Plan not found: {new_plan_id}", code="plan_not_found")

    session.execute(
        update(subscriptions)
        .where(subscriptions.c.id == subscription_id)
        .values(plan_id=new_plan_id, updated_at=now)
    )
    record_admin_audit(
        session,
        actor,
        "change_plan",
        target_holder=subscription.holder.ref,
        target_resource=subscription_id,
        payload={"from_plan_id": subscription.plan_id, "to_plan_id": new_plan_id},
    )
    logger.info(
        "[admin_billing] plan changed",
        extra={"subscription_id": subscription_id, "from_plan_id": subscription.plan_id, "to_plan_id": new_plan_id},
    )
    return _require_subscription(session, subscription_id)


def cancel_subscription(
    session: Session,
    subscription_id: str,
    immediate: bool,
    *,
    actor: str,
    now: Optional[datetime] = None,
) -> Subscription:
    """
    Cancel now, or schedule cancellation for the end of the current period.

    Scheduled cancellations keep the subscription active until the billing
    period job processes them.

    Raises:
        ConflictError: the subscription is not active
    """
    now = normalize_now(now)
    subscription = _require_subscription(session, subscription_id)
    if subscription.status != SubscriptionStatus.ACTIVE:
        raise ConflictError(f"Subscription {subscription_id} is already {subscription.status}", code="subscription_not_active")

    if immediate:
        values = {"status": SubscriptionStatus.CANCELED, "canceled_at": now}
    else:
        values = {
            "cancel_at_period_end": True,
            "scheduled_cancellation_date": subscription.current_period_end,
        }
    session.execute(
        update(subscriptions)
        .where(subscriptions.c.id == subscription_id)
        .values(updated_at=now, **values)
    )
    record_admin_audit(
        session,
        actor,
        "cancel_subscription",
        target_holder=subscription.holder.ref,
        target_resource=subscription_id,
        payload={"immediate": immediate},
    )
    logger.info(
        "[admin_billing] subscription canceled",
        extra={"subscription_id": subscription_id, "immediate": immediate},
    )
    return _require_subscription(session, subscription_id)


def reset_current_usage(
    session: Session,
    holder: Holder,
    feature_key: str,
    *,
    actor: str,
    now: Optional[datetime] = None,
) -> int:
    """
    Zero the holder's current-period counter for feature_key.

    Returns:
        Number of records reset (0 when nothing was recorded yet)
    """
    now = normalize_now(now)
    subscription = _require_active(session, holder, now)
    touched = reset_usage(
        session,
        holder,
        feature_key,
        subscription.current_period_start,
        subscription.current_period_end,
        now=now,
    )
    record_admin_audit(
        session,
        actor,
        "reset_usage",
        target_holder=holder.ref,
        target_resource=feature_key,
        payload={"records": touched},
    )
    return touched


def trigger_period_reset(
    session: Session,
    *,
    actor: str,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """Run the billing period job by hand inside the caller's transaction."""
    now = normalize_now(now)
    canceled = process_cancellations(session, now)
    summary = reset_billing_periods(session, now)
    summary["canceled"] = canceled
    record_admin_audit(
        session,
        actor,
        "trigger_period_reset",
        payload={"now": now.isoformat(), **summary},
    )
    return summary
