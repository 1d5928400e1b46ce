"""
Admin-only billing override router.
Requires X-Admin-Key header for all endpoints.
Handles allowance grants, plan changes, cancellations and manual resets.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from quotagate.api.entitlements import holder_from_query
from quotagate.core.admin_auth import AdminActor, require_admin
from quotagate.core.database import get_db
from quotagate.features.billing import admin_service
from quotagate.features.entitlements.service import list_entitlements
from quotagate.models.entitlement import EntitlementInfo
from quotagate.models.holder import HolderType
from quotagate.models.subscription import Subscription

logger = logging.getLogger("quotagate.admin_billing")

router = APIRouter(prefix="/v1/admin/billing", tags=["admin-billing"])


# ============================================================================
# Pydantic Models
# ============================================================================

class AllowanceGrantRequest(BaseModel):
    """Grant extra current-period allowance for one feature."""
    holder_type: HolderType
    holder_id: str = Field(..., min_length=1)
    feature_key: str = Field(..., min_length=1)
    amount: int


class AllowanceGrantResponse(BaseModel):
    success: bool
    holder: str
    feature_key: str
    used: int
    extra_allowance: int
    period_end: datetime


class PlanChangeRequest(BaseModel):
    plan_id: str = Field(..., min_length=1)


class CancelRequest(BaseModel):
    immediate: bool = Field(default=False, description="Cancel now instead of at period end")


class SubscriptionResponse(BaseModel):
    id: str
    holder_type: str
    holder_id: str
    plan_id: str
    status: str
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool
    scheduled_cancellation_date: Optional[datetime] = None
    canceled_at: Optional[datetime] = None

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "SubscriptionResponse":
        return cls(**subscription.model_dump())


class UsageResetRequest(BaseModel):
    holder_type: HolderType
    holder_id: str = Field(..., min_length=1)
    feature_key: str = Field(..., min_length=1)


class UsageResetResponse(BaseModel):
    success: bool
    holder: str
    feature_key: str
    records_reset: int


class PeriodResetResponse(BaseModel):
    success: bool
    canceled: int
    rolled: int
    skipped: int
    usage_reset: int


class AdminEntitlementsResponse(BaseModel):
    holder: str
    entitlements: List[EntitlementInfo]


# ============================================================================
# Admin Endpoints
# ============================================================================

@router.post("/allowance/grant", response_model=AllowanceGrantResponse)
def grant_allowance(
    req: AllowanceGrantRequest,
    actor: AdminActor = Depends(require_admin),
    session: Session = Depends(get_db),
):
    """Add support credits to the holder's current period."""
    holder = holder_from_query(req.holder_type, req.holder_id)
    logger.info(
        "[admin_billing] allowance grant requested",
        extra={"actor": actor.actor_id, "holder": holder.ref, "feature_key": req.feature_key, "amount": req.amount},
    )
    try:
        record = admin_service.grant_extra_allowance(
            session, holder, req.feature_key, req.amount, actor=actor.actor_id
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    return AllowanceGrantResponse(
        success=True,
        holder=holder.ref,
        feature_key=req.feature_key,
        used=record.used,
        extra_allowance=record.extra_allowance,
        period_end=record.period_end,
    )


@router.post("/subscriptions/{subscription_id}/plan", response_model=SubscriptionResponse)
def change_plan(
    subscription_id: str,
    req: PlanChangeRequest,
    actor: AdminActor = Depends(require_admin),
    session: Session = Depends(get_db),
):
    """Swap the plan; recorded usage is kept and judged against the new caps."""
    try:
        subscription = admin_service.change_plan(session, subscription_id, req.plan_id, actor=actor.actor_id)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return SubscriptionResponse.from_subscription(subscription)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionResponse)
def cancel_subscription(
    subscription_id: str,
    req: CancelRequest,
    actor: AdminActor = Depends(require_admin),
    session: Session = Depends(get_db),
):
    try:
        subscription = admin_service.cancel_subscription(
            session, subscription_id, req.immediate, actor=actor.actor_id
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    return SubscriptionResponse.from_subscription(subscription)


@router.post("/usage/reset", response_model=UsageResetResponse)
def reset_usage(
    req: UsageResetRequest,
    actor: AdminActor = Depends(require_admin),
    session: Session = Depends(get_db),
):
    """Zero the holder's current-period counter (extra allowance is kept)."""
    holder = holder_from_query(req.holder_type, req.holder_id)
    try:
        touched = admin_service.reset_current_usage(session, holder, req.feature_key, actor=actor.actor_id)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return UsageResetResponse(success=True, holder=holder.ref, feature_key=req.feature_key, records_reset=touched)


@router.post("/periods/reset", response_model=PeriodResetResponse)
def trigger_period_reset(
    actor: AdminActor = Depends(require_admin),
    session: Session = Depends(get_db),
):
    """Run the billing period job now."""
    try:
        summary = admin_service.trigger_period_reset(session, actor=actor.actor_id)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info("[admin_billing] period reset triggered", extra={"actor": actor.actor_id, **summary})
    return PeriodResetResponse(success=True, **summary)


@router.get("/entitlements", response_model=AdminEntitlementsResponse)
def get_entitlements(
    holder_type: HolderType = Query(...),
    holder_id: str = Query(..., min_length=1),
    actor: AdminActor = Depends(require_admin),
    session: Session = Depends(get_db),
):
    """Inspect a holder's entitlements. Read-only: provisions nothing and creates no usage rows."""
    holder = holder_from_query(holder_type, holder_id)
    entitlements = list_entitlements(session, holder, provision=False)
    return AdminEntitlementsResponse(holder=holder.ref, entitlements=entitlements)
