from __future__ import annotations
from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import date, datetime
from .common import CustomerKind, gen_id

PaymentMethod = Literal["cash", "card", "bank_transfer", "cheque", "online", "other"]
ReceiptStatus = Literal["paid", "cancelled"]


class AdvanceReceipt(BaseModel):
    id: str = Field(default_factory=gen_id)
    receipt_number: Optional[str] = None
    customer_id: str
    customer_kind: CustomerKind = "company"
    amount_fils: int = Field(gt=0)
    payment_date: date = Field(default_factory=date.today)
    method: PaymentMethod = "cash"
    status: ReceiptStatus = "paid"
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Allocation(BaseModel):
    id: str = Field(default_factory=gen_id)
    receipt_id: str
    billing_id: str
    amount_fils: int = Field(gt=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ReceiptBalance(BaseModel):
    """Row handed to the allocator: receipt id plus what is left on it."""
    id: str
    remaining_fils: int
    created_at: datetime


class ReceiptUtilization(BaseModel):
    receipt_id: str
    amount_fils: int
    total_applied_fils: int
    applications_count: int

    @property
    def available_fils(self) -> int:
        return self.amount_fils - self.total_applied_fils

    @property
    def utilization_pct(self) -> float:
        if self.amount_fils <= 0:
            return 0.0
        return round(self.total_applied_fils * 100 / self.amount_fils, 2)

    @property
    def is_fully_utilized(self) -> bool:
        return self.available_fils <= 0

    @property
    def is_over_applied(self) -> bool:
        return self.total_applied_fils > self.amount_fils


class AutoApplyResult(BaseModel):
    receipt_id: str
    applications: List[Allocation] = Field(default_factory=list)

    @property
    def applied(self) -> bool:
        return bool(self.applications)

    @property
    def total_applied_fils(self) -> int:
        return sum(a.amount_fils for a in self.applications)
