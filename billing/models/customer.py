from typing import Literal
from pydantic import BaseModel, EmailStr, Field
from .common import CustomerKind, gen_id

class Address(BaseModel):
    line1: str
    line2: str | None = None
    city: str
    emirate: str | None = None

class Customer(BaseModel):
    id: str = Field(default_factory=gen_id)
    kind: CustomerKind = "company"
    name: str
    email: EmailStr | None = None
    phone: str | None = None
    address: Address | None = None
    trn: str | None = None  # VAT registration number
    credit_limit_fils: int = Field(default=0, ge=0)
    credit_limit_days: int = Field(default=30, ge=0)
    status: Literal["active", "inactive", "pending"] = "active"
    notes: str | None = None

    @property
    def has_credit_limit(self) -> bool:
        return self.credit_limit_fils > 0
