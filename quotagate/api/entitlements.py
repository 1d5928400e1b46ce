"""
Entitlements API routes.

Application-facing surface:
- POST /v1/entitlements/check: May the holder use the feature?
- POST /v1/entitlements/consume: Record consumption (403 when blocked)
- GET  /v1/entitlements: Per-feature view of the holder's plan
"""
from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator

from quotagate.core.errors import ValidationError
from quotagate.features.entitlements.service import EntitlementEngine
from quotagate.features.notifications.service import get_notifier
from quotagate.models.entitlement import CheckResult, ConsumeResult, EntitlementInfo
from quotagate.models.holder import Holder, HolderType


router = APIRouter(prefix="/v1/entitlements", tags=["entitlements"])


def get_entitlement_engine() -> EntitlementEngine:
    """FastAPI dependency (override in tests)."""
    return EntitlementEngine(notifier=get_notifier())


def holder_from_query(holder_type: str, holder_id: str) -> Holder:
    holder_id = holder_id.strip()
    if not holder_id:
        raise ValidationError("holder_id must not be blank")
    return Holder(type=holder_type, id=holder_id)


class FeatureRequest(BaseModel):
    """Holder + feature + units."""
    holder_type: HolderType
    holder_id: str = Field(..., min_length=1)
    feature_key: str = Field(..., min_length=1)
    amount: int = 1

    @field_validator("holder_id")
    @classmethod
    def _strip_holder_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("holder_id must not be blank")
        return value

    @property
    def holder(self) -> Holder:
        return Holder(type=self.holder_type, id=self.holder_id)


class EntitlementListResponse(BaseModel):
    holder_type: str
    holder_id: str
    entitlements: List[EntitlementInfo]


@router.post("/check", response_model=CheckResult, response_model_exclude_none=True)
def check(req: FeatureRequest, engine: EntitlementEngine = Depends(get_entitlement_engine)):
    """Check without consuming. Denials are 200 responses with ok=false."""
    return engine.check_allowed(req.holder, req.feature_key, req.amount)


@router.post("/consume", response_model=ConsumeResult)
def consume(req: FeatureRequest, engine: EntitlementEngine = Depends(get_entitlement_engine)):
    """Consume units; a denial is a 403 with error.reason set."""
    return engine.consume(req.holder, req.feature_key, req.amount)


@router.get("", response_model=EntitlementListResponse)
def list_entitlements(
    holder_type: HolderType = Query(...),
    holder_id: str = Query(..., min_length=1),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
):
    holder = holder_from_query(holder_type, holder_id)
    return EntitlementListResponse(
        holder_type=holder.type,
        holder_id=holder.id,
        entitlements=engine.get_entitlements(holder),
    )
