"""
quotagate/features/notifications/service.py

"Plan selected" notifications sent when a holder is auto-provisioned.

Delivery is best-effort: callers log and swallow any exception raised here.
"""

import logging
from typing import Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict

from quotagate.core.config import settings
from quotagate.models.holder import Holder
from quotagate.models.plan import Plan


logger = logging.getLogger(__name__)


def format_price(price_cents: int) -> str:
    """Human price for notices ("Free" or "R149.00")."""
    if not price_cents:
        return "Free"
    return f"R{price_cents / 100:.2f}"


class PlanSelectedNotice(BaseModel):
    model_config = ConfigDict(frozen=True)

    holder_type: str
    holder_id: str
    product: str
    plan_id: str
    plan_name: str
    tier: str
    interval: str
    price_cents: int
    price_display: str

    @classmethod
    def for_plan(cls, holder: Holder, plan: Plan) -> "PlanSelectedNotice":
        return cls(
            holder_type=holder.type,
            holder_id=holder.id,
            product=plan.product,
            plan_id=plan.id,
            plan_name=plan.display_name,
            tier=plan.tier,
            interval=plan.interval,
            price_cents=plan.price_cents,
            price_display=format_price(plan.price_cents),
        )


class Notifier(Protocol):
    def plan_selected(self, notice: PlanSelectedNotice) -> None:
        ...


class LogNotifier:
    """Writes the notice to the log (default when no webhook is configured)."""

    def plan_selected(self, notice: PlanSelectedNotice) -> None:
        logger.info(
            "[notify] plan selected",
            extra={
                "holder": f"{notice.holder_type}:{notice.holder_id}",
                "plan_id": notice.plan_id,
                "plan_name": notice.plan_name,
                "price": notice.price_display,
            },
        )


class WebhookNotifier:
    """POSTs the notice as JSON to an operator-configured URL."""

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    def plan_selected(self, notice: PlanSelectedNotice) -> None:
        body = {"event_type": "plan.selected", "data": notice.model_dump()}
        if self._client is not None:
            response = self._client.post(self.url, json=body)
            response.raise_for_status()
            return
        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(self.url, json=body)
            response.raise_for_status()
        logger.info(
            "[notify] plan selected delivered",
            extra={"plan_id": notice.plan_id, "status": response.status_code},
        )


def get_notifier() -> Notifier:
    """Notifier for the current settings."""
    if settings.NOTIFY_WEBHOOK_URL:
        return WebhookNotifier(settings.NOTIFY_WEBHOOK_URL, timeout=settings.NOTIFY_TIMEOUT_SECONDS)
    return LogNotifier()
