"""
quotagate/models/holder.py

Holder model: the entity that owns billing state (an individual account or an
organization).
"""

from typing import Literal
from pydantic import BaseModel, ConfigDict, field_validator


HolderType = Literal["user", "org"]


class Holder(BaseModel):
    """
    Holder of a subscription.

    Constraint: at most one subscription with status "active" per holder.
    """
    model_config = ConfigDict(frozen=True)

    type: HolderType
    id: str

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("holder id must not be blank")
        return value

    @property
    def ref(self) -> str:
        """Compact "type:id" reference used in logs and audit rows."""
        return f"{self.type}:{self.id}"

    def __str__(self) -> str:
        return self.ref
