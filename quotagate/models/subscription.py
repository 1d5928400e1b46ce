"""
quotagate/models/subscription.py

Subscription model: links a holder to a plan for a billing period.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from quotagate.models.holder import Holder


class SubscriptionStatus:
    ACTIVE = "active"
    CANCELED = "canceled"


class Subscription(BaseModel):
    """
    Subscription state.

    Status transitions:
    - active -> canceled (immediate)
    - active (cancel_at_period_end) -> canceled at period end (billing period job)
    """
    model_config = ConfigDict(frozen=True)

    id: str
    holder_type: str
    holder_id: str
    plan_id: str
    status: str
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False
    scheduled_cancellation_date: Optional[datetime] = None
    canceled_at: Optional[datetime] = None

    @property
    def holder(self) -> Holder:
        return Holder(type=self.holder_type, id=self.holder_id)
