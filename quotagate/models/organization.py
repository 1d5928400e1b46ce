from typing import Optional
from pydantic import BaseModel, ConfigDict


class Organization(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str] = None
    type: Optional[str] = None
