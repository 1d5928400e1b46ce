"""
quotagate/models/usage_record.py

UsageRecord model: the counter for one (holder, feature, billing period).

Period bounds are copied from the subscription when the record is created and
never mutated; a new period always gets a new record.
"""

from datetime import datetime
from pydantic import BaseModel, ConfigDict


class UsageRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    holder_type: str
    holder_id: str
    feature_key: str
    period_start: datetime
    period_end: datetime
    used: int
    extra_allowance: int
    last_reset_at: datetime
