"""
quotagate/features/entitlements/service.py

Entitlement check + consumption service.

Handles:
- Entitlement checks (read-only apart from free-tier provisioning and the
  lazy creation of the period's usage record)
- Consumption with a cap-bounded atomic increment for QUOTA features
- Per-holder entitlement listing for display

Denials from check_allowed() are typed results; consume() raises
FeatureBlocked carrying the same result.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy.orm import Session, sessionmaker

from quotagate.core.database import get_db_session
from quotagate.core.errors import ConfigurationError, FeatureBlocked
from quotagate.core.logging import log_event
from quotagate.core.timeutil import normalize_now
from quotagate.features.catalog.service import get_entitlement, get_plan, list_plan_entitlements
from quotagate.features.notifications.service import Notifier, PlanSelectedNotice
from quotagate.features.subscriptions.service import (
    deliver_plan_notices,
    ensure_subscription,
    get_active_subscription,
)
from quotagate.features.usage.service import (
    find_usage,
    get_record,
    get_usage,
    increment_usage_within_limit,
    validate_amount,
)
from quotagate.models.entitlement import CheckResult, ConsumeResult, DenialReason, EntitlementInfo
from quotagate.models.holder import Holder
from quotagate.models.plan import (
    MeteredEntitlement,
    PlanEntitlement,
    QuotaEntitlement,
    ToggleEntitlement,
)
from quotagate.models.usage_record import UsageRecord


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Evaluation:
    result: CheckResult
    entitlement: Optional[PlanEntitlement] = None
    usage: Optional[UsageRecord] = None


def _quota_result(entitlement: QuotaEntitlement, record: UsageRecord, amount: int) -> CheckResult:
    limit = entitlement.cap + record.extra_allowance
    remaining = limit - record.used
    if remaining >= amount:
        return CheckResult(ok=True, limit=limit, used=record.used, remaining=remaining)
    return CheckResult.deny(DenialReason.QUOTA_EXCEEDED, limit=limit, used=record.used, remaining=remaining)


class EntitlementEngine:
    """
    Decides whether a holder may use a feature and records consumption.

    Each public call runs in its own transaction from session_factory
    (defaults to the application's session factory). Plan-selected notices
    queued by free-tier provisioning go out only after that transaction
    commits.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None, notifier: Optional[Notifier] = None):
        self.session_factory = session_factory
        self.notifier = notifier

    def ensure_subscription(self, holder: Holder, now: Optional[datetime] = None):
        """Return the holder's active subscription, provisioning the free plan if needed."""
        pending: List[PlanSelectedNotice] = []
        with get_db_session(self.session_factory) as session:
            subscription = ensure_subscription(session, holder, pending_notices=pending, now=now)
        deliver_plan_notices(pending, self.notifier)
        return subscription

    def check_allowed(
        self,
        holder: Holder,
        feature_key: str,
        amount: int = 1,
        *,
        provision: bool = True,
        now: Optional[datetime] = None,
    ) -> CheckResult:
        """
        Check whether holder may consume amount units of feature_key.

        Args:
            holder: User or organization
            feature_key: Feature to check (e.g. "job_posts")
            amount: Units the caller intends to consume
            provision: Auto-provision a free subscription when none is active
            now: Fixed timestamp (defaults to now)

        Returns:
            CheckResult; limit/used/remaining are set for QUOTA features
        """
        validate_amount(amount)
        pending: List[PlanSelectedNotice] = []
        with get_db_session(self.session_factory) as session:
            evaluation = self._evaluate(
                session, holder, feature_key, amount, provision=provision, pending=pending, now=now
            )
        deliver_plan_notices(pending, self.notifier)
        return evaluation.result

    def consume(
        self,
        holder: Holder,
        feature_key: str,
        amount: int = 1,
        *,
        now: Optional[datetime] = None,
    ) -> ConsumeResult:
        """
        Check and record consumption of amount units of feature_key.

        Raises:
            FeatureBlocked: the check denied the action, or a concurrent
                consumer took the remaining quota first
        """
        validate_amount(amount)
        # Provisioning and the usage record commit even when the call is blocked
        pending: List[PlanSelectedNotice] = []
        with get_db_session(self.session_factory) as session:
            outcome = self._consume(session, holder, feature_key, amount, pending=pending, now=now)
        deliver_plan_notices(pending, self.notifier)

        if isinstance(outcome, CheckResult):
            log_event(
                "warning",
                "[entitlements] consumption blocked",
                holder=holder.ref,
                feature_key=feature_key,
                event_type="entitlement.blocked",
                error_code=outcome.reason,
                extra={"amount": amount},
            )
            raise FeatureBlocked(outcome.reason, result=outcome)
        return outcome

    def get_entitlements(
        self,
        holder: Holder,
        *,
        provision: bool = True,
        now: Optional[datetime] = None,
    ) -> List[EntitlementInfo]:
        """Every feature on the holder's plan with live counters (empty without a subscription)."""
        pending: List[PlanSelectedNotice] = []
        with get_db_session(self.session_factory) as session:
            infos = list_entitlements(session, holder, provision=provision, pending_notices=pending, now=now)
        deliver_plan_notices(pending, self.notifier)
        return infos

    def _resolve(self, session: Session, holder: Holder, *, provision: bool, pending: list, now: datetime):
        if provision:
            return ensure_subscription(session, holder, pending_notices=pending, now=now)
        return get_active_subscription(session, holder, now)

    def _evaluate(
        self,
        session: Session,
        holder: Holder,
        feature_key: str,
        amount: int,
        *,
        provision: bool,
        pending: list,
        now: Optional[datetime],
    ) -> _Evaluation:
        now = normalize_now(now)
        try:
            subscription = self._resolve(session, holder, provision=provision, pending=pending, now=now)
        except ConfigurationError:
            return _Evaluation(CheckResult.deny(DenialReason.CONFIGURATION_ERROR))
        if subscription is None:
            return _Evaluation(CheckResult.deny(DenialReason.NO_SUBSCRIPTION))

        if get_plan(session, subscription.plan_id) is None:
            logger.error(
                "[entitlements] subscription references missing plan",
                extra={"holder": holder.ref, "plan_id": subscription.plan_id},
            )
            return _Evaluation(CheckResult.deny(DenialReason.INVALID_PLAN))

        entitlement = get_entitlement(session, subscription.plan_id, feature_key)
        if entitlement is None:
            return _Evaluation(CheckResult.deny(DenialReason.FEATURE_NOT_IN_PLAN))

        if isinstance(entitlement, ToggleEntitlement):
            if entitlement.enabled:
                return _Evaluation(CheckResult(ok=True), entitlement)
            return _Evaluation(CheckResult.deny(DenialReason.FEATURE_DISABLED), entitlement)

        if isinstance(entitlement, QuotaEntitlement):
            record = get_usage(
                session,
                holder,
                feature_key,
                subscription.current_period_start,
                subscription.current_period_end,
            )
            return _Evaluation(_quota_result(entitlement, record, amount), entitlement, record)

        if isinstance(entitlement, MeteredEntitlement):
            return _Evaluation(CheckResult(ok=True), entitlement)

        logger.warning(
            "[entitlements] unknown feature kind",
            extra={"feature_key": feature_key, "kind": entitlement.kind},
        )
        return _Evaluation(CheckResult.deny(DenialReason.UNKNOWN_FEATURE_KIND), entitlement)

    def _consume(
        self,
        session: Session,
        holder: Holder,
        feature_key: str,
        amount: int,
        *,
        pending: list,
        now: Optional[datetime],
    ) -> Union[ConsumeResult, CheckResult]:
        evaluation = self._evaluate(
            session, holder, feature_key, amount, provision=True, pending=pending, now=now
        )
        if not evaluation.result.ok:
            return evaluation.result

        entitlement = evaluation.entitlement
        if not isinstance(entitlement, QuotaEntitlement):
            return ConsumeResult(ok=True, new_used=0)

        updated = increment_usage_within_limit(session, evaluation.usage.id, amount, entitlement.cap)
        if updated is None:
            # Lost the race for the last units between check and increment
            current = get_record(session, evaluation.usage.id)
            limit = entitlement.cap + current.extra_allowance
            return CheckResult.deny(
                DenialReason.QUOTA_EXCEEDED,
                limit=limit,
                used=current.used,
                remaining=limit - current.used,
            )

        limit = entitlement.cap + updated.extra_allowance
        logger.info(
            "[entitlements] consumed",
            extra={
                "holder": holder.ref,
                "feature_key": feature_key,
                "amount": amount,
                "used": updated.used,
                "limit": limit,
            },
        )
        return ConsumeResult(
            ok=True,
            new_used=updated.used,
            used=updated.used,
            limit=limit,
            remaining=limit - updated.used,
        )


def list_entitlements(
    session: Session,
    holder: Holder,
    *,
    provision: bool = True,
    pending_notices: Optional[List[PlanSelectedNotice]] = None,
    now: Optional[datetime] = None,
) -> List[EntitlementInfo]:
    """
    Normalized per-feature view of the holder's plan.

    TOGGLE and METERED features carry no counters; QUOTA features report
    live limit/used/remaining for the current period. Features of a kind
    this engine does not understand are left out.

    With provision=False the call writes nothing: no subscription is
    provisioned and a period without a usage record reports zero used.
    """
    now = normalize_now(now)
    try:
        if provision:
            subscription = ensure_subscription(session, holder, pending_notices=pending_notices, now=now)
        else:
            subscription = get_active_subscription(session, holder, now)
    except ConfigurationError:
        return []
    if subscription is None:
        return []

    infos: List[EntitlementInfo] = []
    for entitlement in list_plan_entitlements(session, subscription.plan_id):
        if isinstance(entitlement, ToggleEntitlement):
            infos.append(EntitlementInfo(
                feature_key=entitlement.feature_key,
                feature_name=entitlement.feature_name,
                kind=entitlement.kind,
                enabled=entitlement.enabled,
            ))
        elif isinstance(entitlement, QuotaEntitlement):
            lookup = get_usage if provision else find_usage
            record = lookup(
                session,
                holder,
                entitlement.feature_key,
                subscription.current_period_start,
                subscription.current_period_end,
            )
            used = record.used if record else 0
            limit = entitlement.cap + (record.extra_allowance if record else 0)
            infos.append(EntitlementInfo(
                feature_key=entitlement.feature_key,
                feature_name=entitlement.feature_name,
                kind=entitlement.kind,
                enabled=True,
                limit=limit,
                used=used,
                remaining=limit - used,
            ))
        elif isinstance(entitlement, MeteredEntitlement):
            infos.append(EntitlementInfo(
                feature_key=entitlement.feature_key,
                feature_name=entitlement.feature_name,
                kind=entitlement.kind,
                enabled=True,
            ))
    return infos
