"""
quotagate/models/plan.py

Plan and catalog entitlement models.

Plans are immutable from the engine's point of view and referenced by id.
A plan's grant for one feature is a tagged union keyed on the feature kind,
so kind-specific fields only exist where they mean something.
"""

from typing import Literal, Optional, Union
from pydantic import BaseModel, ConfigDict


class FeatureKind:
    TOGGLE = "TOGGLE"
    QUOTA = "QUOTA"
    METERED = "METERED"

    ALL = (TOGGLE, QUOTA, METERED)


class Plan(BaseModel):
    """
    Plan represents a product tier with a billing interval.

    Examples:
    - individual / free / monthly
    - recruiter / pro / monthly
    - corporate / pro / annual
    """
    model_config = ConfigDict(frozen=True)

    id: str
    product: str
    tier: str
    interval: str
    price_cents: int
    currency: str = "ZAR"
    is_public: bool = True
    version: int = 1

    @property
    def display_name(self) -> str:
        return f"{self.product.capitalize()} - {self.tier.capitalize()}"


class _EntitlementBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan_id: str
    feature_key: str
    feature_name: str
    enabled: bool


class ToggleEntitlement(_EntitlementBase):
    """On/off feature."""
    kind: Literal["TOGGLE"] = "TOGGLE"


class QuotaEntitlement(_EntitlementBase):
    """Feature capped at monthly_cap uses per billing period (None counts as 0)."""
    kind: Literal["QUOTA"] = "QUOTA"
    monthly_cap: Optional[int] = None

    @property
    def cap(self) -> int:
        return self.monthly_cap or 0


class MeteredEntitlement(_EntitlementBase):
    """Uncapped, post-paid feature billed out of band."""
    kind: Literal["METERED"] = "METERED"
    unit: Optional[str] = None
    overage_unit_cents: Optional[int] = None


class UnsupportedEntitlement(_EntitlementBase):
    """Catalog row whose feature kind this engine does not understand."""
    kind: str


PlanEntitlement = Union[ToggleEntitlement, QuotaEntitlement, MeteredEntitlement, UnsupportedEntitlement]
