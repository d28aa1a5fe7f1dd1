from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Optional
from .common import gen_id

class ServiceType(BaseModel):
    id: str = Field(default_factory=gen_id)
    name: str
    category: str = "general"
    description: Optional[str] = None
    typing_charge_fils: int = Field(default=0, ge=0)
    government_charge_fils: int = Field(default=0, ge=0)
    active: bool = True
