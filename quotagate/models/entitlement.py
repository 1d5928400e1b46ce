"""
quotagate/models/entitlement.py

Result records returned by the entitlement engine.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class DenialReason(str, Enum):
    """Why check_allowed() said no. Expected outcomes, never exceptions."""
    NO_SUBSCRIPTION = "NO_SUBSCRIPTION"
    INVALID_PLAN = "INVALID_PLAN"
    FEATURE_NOT_IN_PLAN = "FEATURE_NOT_IN_PLAN"
    FEATURE_DISABLED = "FEATURE_DISABLED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    UNKNOWN_FEATURE_KIND = "UNKNOWN_FEATURE_KIND"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class CheckResult(BaseModel):
    """
    Outcome of an entitlement check.

    limit/used/remaining are only populated for QUOTA features.
    """
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    ok: bool
    reason: Optional[DenialReason] = None
    limit: Optional[int] = None
    used: Optional[int] = None
    remaining: Optional[int] = None

    @classmethod
    def deny(cls, reason: DenialReason, **counters) -> "CheckResult":
        return cls(ok=False, reason=reason, **counters)


class ConsumeResult(BaseModel):
    """Outcome of a committed consumption (new_used is 0 for TOGGLE/METERED)."""
    model_config = ConfigDict(frozen=True)

    ok: bool
    new_used: int
    used: Optional[int] = None
    limit: Optional[int] = None
    remaining: Optional[int] = None


class EntitlementInfo(BaseModel):
    """Normalized per-feature view for display."""
    model_config = ConfigDict(frozen=True)

    feature_key: str
    feature_name: str
    kind: str
    enabled: bool
    limit: Optional[int] = None  # None = not capped
    used: int = 0
    remaining: Optional[int] = None
