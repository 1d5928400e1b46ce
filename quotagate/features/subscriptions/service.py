"""
quotagate/features/subscriptions/service.py

Subscription resolver.

Handles:
- Active subscription lookup (pure read)
- Product inference for holders without a subscription
- Free-tier auto-provisioning (explicit, race-safe)
- Post-commit delivery of plan-selected notices
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import uuid4
from sqlalchemy import select
from sqlalchemy.orm import Session

from quotagate.core.config import settings
from quotagate.core.database import dialect_insert, organizations, subscriptions
from quotagate.core.errors import ConfigurationError
from quotagate.core.timeutil import add_months, ensure_utc, normalize_now
from quotagate.features.catalog.service import get_free_plan
from quotagate.features.notifications.service import Notifier, PlanSelectedNotice, get_notifier
from quotagate.models.holder import Holder
from quotagate.models.organization import Organization
from quotagate.models.subscription import Subscription, SubscriptionStatus


logger = logging.getLogger(__name__)

RECRUITER_ORG_TYPES = {"recruiting_agency", "recruiting-agency"}
CORPORATE_ORG_TYPES = {"corporate", "business"}


def _row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row.id,
        holder_type=row.holder_type,
        holder_id=row.holder_id,
        plan_id=row.plan_id,
        status=row.status,
        current_period_start=ensure_utc(row.current_period_start),
        current_period_end=ensure_utc(row.current_period_end),
        cancel_at_period_end=bool(row.cancel_at_period_end),
        scheduled_cancellation_date=ensure_utc(row.scheduled_cancellation_date),
        canceled_at=ensure_utc(row.canceled_at),
    )


def _active_rows(holder: Holder):
    return (
        select(subscriptions)
        .where(subscriptions.c.holder_type == holder.type)
        .where(subscriptions.c.holder_id == holder.id)
        .where(subscriptions.c.status == SubscriptionStatus.ACTIVE)
    )


def get_subscription(session: Session, subscription_id: str) -> Optional[Subscription]:
    row = session.execute(select(subscriptions).where(subscriptions.c.id == subscription_id)).first()
    if not row:
        return None
    return _row_to_subscription(row)


def get_active_subscription(
    session: Session,
    holder: Holder,
    now: Optional[datetime] = None,
) -> Optional[Subscription]:
    """
    Get the holder's active, unexpired subscription.

    Pure read: never provisions.
    """
    now = normalize_now(now)
    row = session.execute(
        _active_rows(holder).where(subscriptions.c.current_period_end >= now).limit(1)
    ).first()
    if not row:
        return None
    return _row_to_subscription(row)


def get_organization(session: Session, org_id: str) -> Optional[Organization]:
    row = session.execute(select(organizations).where(organizations.c.id == org_id)).first()
    if not row:
        return None
    return Organization(id=row.id, name=row.name, type=row.type)


def infer_product(session: Session, holder: Holder) -> str:
    """
    Pick the product family whose free plan a new holder gets.

    Users get "individual". Organizations map by their type: agencies to
    "recruiter", corporate/business to "corporate", anything else to
    "recruiter". An organization with no row falls back to "individual".
    """
    if holder.type == "user":
        return "individual"

    org = get_organization(session, holder.id)
    if org is None:
        return "individual"
    if org.type in RECRUITER_ORG_TYPES:
        return "recruiter"
    if org.type in CORPORATE_ORG_TYPES:
        return "corporate"
    return "recruiter"


def deliver_plan_notices(notices: List[PlanSelectedNotice], notifier: Optional[Notifier] = None) -> None:
    """
    Send queued plan-selected notices. Call only after the provisioning
    transaction has committed.

    Delivery is best effort: failures are logged, never raised.
    """
    if not notices:
        return
    notifier = notifier or get_notifier()
    for notice in notices:
        try:
            notifier.plan_selected(notice)
        except Exception as exc:
            logger.warning(
                "[subscriptions] plan selected notification failed",
                extra={"holder": f"{notice.holder_type}:{notice.holder_id}", "error": str(exc)},
            )


def ensure_subscription(
    session: Session,
    holder: Holder,
    *,
    pending_notices: Optional[List[PlanSelectedNotice]] = None,
    now: Optional[datetime] = None,
) -> Optional[Subscription]:
    """
    Return the holder's active subscription, provisioning a free one if needed.

    The insert is ON CONFLICT DO NOTHING against the one-active-per-holder
    index, so concurrent first-use calls end with exactly one active row.
    Only the call that actually inserted queues a notice onto
    pending_notices; nothing is sent from inside the transaction.

    Returns:
        Active Subscription, or None when the holder still has an active
        subscription whose period lapsed (it awaits the billing period job).

    Raises:
        ConfigurationError: no free/monthly plan exists for the inferred product
    """
    now = normalize_now(now)
    existing = get_active_subscription(session, holder, now)
    if existing:
        return existing

    lapsed = session.execute(_active_rows(holder).limit(1)).first()
    if lapsed:
        logger.warning(
            "[subscriptions] active subscription past period end",
            extra={"holder": holder.ref, "subscription_id": lapsed.id},
        )
        return None

    product = infer_product(session, holder)
    plan = get_free_plan(session, product)
    if plan is None:
        logger.error(
            "[subscriptions] free plan not configured",
            extra={"holder": holder.ref, "product": product},
        )
        raise ConfigurationError(f"No free monthly plan configured for product '{product}'")

    stmt = dialect_insert(session, subscriptions).values(
        id=str(uuid4()),
        plan_id=plan.id,
        holder_type=holder.type,
        holder_id=holder.id,
        status=SubscriptionStatus.ACTIVE,
        current_period_start=now,
        current_period_end=add_months(now, settings.FREE_PERIOD_MONTHS),
        cancel_at_period_end=False,
        created_at=now,
        updated_at=now,
    ).on_conflict_do_nothing()
    inserted = (session.execute(stmt).rowcount or 0) > 0

    row = session.execute(_active_rows(holder).limit(1)).first()
    subscription = _row_to_subscription(row)

    if inserted:
        logger.info(
            "[subscriptions] auto-provisioned free plan",
            extra={"holder": holder.ref, "plan_id": plan.id, "subscription_id": subscription.id},
        )
        if pending_notices is not None:
            pending_notices.append(PlanSelectedNotice.for_plan(holder, plan))

    return subscription
