from __future__ import annotations
from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import date, datetime
from decimal import Decimal
from .common import CustomerKind, gen_id

BillingStatus = Literal["pending", "in_progress", "completed", "cancelled"]
VatAppliesTo = Literal["service_charge", "total_amount"]


class ServiceCharge(BaseModel):
    """One priced line of a billing. All amounts are snapshots in fils."""
    service_id: Optional[str] = None
    label: str = ""
    quantity: int = 1
    unit_typing_fils: Optional[int] = 0  # None when the line amount was overridden
    unit_government_fils: Optional[int] = 0
    typing_fils: int = 0
    government_fils: int = 0
    discount_fils: int = 0
    vendor_cost_fils: int = 0
    vat_pct: Decimal = Decimal(0)
    vat_applies_to: VatAppliesTo = "service_charge"

    subtotal_fils: int = 0
    total_fils: int = 0  # after discount, never negative
    vat_fils: int = 0
    total_with_vat_fils: int = 0


class LineRequest(BaseModel):
    service_id: str
    quantity: int = 1
    typing_override_fils: Optional[int] = None
    government_override_fils: Optional[int] = None


class BillingRequest(BaseModel):
    customer_id: str
    customer_kind: CustomerKind = "company"
    items: List[LineRequest] = Field(default_factory=list)
    discount_fils: int = 0
    vendor_cost_fils: int = 0
    vendor_id: Optional[str] = None
    vat_pct: Optional[Decimal] = None  # None -> settings default
    vat_applies_to: Optional[VatAppliesTo] = None
    service_date: Optional[date] = None
    cash_type: Optional[str] = None  # cash, card, bank_transfer, cheque, credit
    assigned_employee_id: Optional[str] = None
    status: BillingStatus = "completed"
    notes: Optional[str] = None


class Billing(BaseModel):
    id: str = Field(default_factory=gen_id)
    invoice_number: Optional[str] = None
    customer_id: str
    customer_kind: CustomerKind = "company"
    status: BillingStatus = "completed"

    lines: List[ServiceCharge] = Field(default_factory=list)
    discount_fils: int = 0
    vendor_cost_fils: int = 0
    vendor_id: Optional[str] = None

    service_date: Optional[date] = None
    cash_type: Optional[str] = None
    assigned_employee_id: Optional[str] = None
    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = {"extra": "ignore"}

    # helpers
    @property
    def is_multi_service(self) -> bool:
        return len(self.lines) > 1

    def typing_fils(self) -> int:
        return sum(ln.typing_fils for ln in self.lines)

    def government_fils(self) -> int:
        return sum(ln.government_fils for ln in self.lines)

    def subtotal_fils(self) -> int:
        return sum(ln.subtotal_fils for ln in self.lines)

    def total_fils(self) -> int:
        return sum(ln.total_fils for ln in self.lines)

    def vat_fils(self) -> int:
        return sum(ln.vat_fils for ln in self.lines)

    def total_with_vat_fils(self) -> int:
        return sum(ln.total_with_vat_fils for ln in self.lines)

    def profit_fils(self) -> int:
        return self.typing_fils() - self.vendor_cost_fils
