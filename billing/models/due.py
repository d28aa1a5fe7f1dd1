from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal, Optional
from datetime import date, datetime
from billing.errors import DueTransitionError
from .common import CustomerKind, gen_id

DueStatus = Literal["pending", "partial", "paid", "overdue", "cancelled"]
DuePriority = Literal["medium", "high"]

TERMINAL = ("paid", "cancelled")
OPEN = ("pending", "partial", "overdue")


class Due(BaseModel):
    """Receivable opened when a billing exceeds the customer's available credit."""
    id: str = Field(default_factory=gen_id)
    billing_id: str
    customer_id: str
    customer_kind: CustomerKind = "company"

    original_fils: int
    paid_fils: int = 0  # credit absorbed + later payments
    advance_fils: int = 0  # covered by advance receipts applied to the billing
    due_fils: int = 0

    status: DueStatus = "pending"
    due_date: date
    priority: DuePriority = "medium"

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    notes: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN

    def recompute(self, high_priority_threshold_fils: int) -> None:
        self.due_fils = self.original_fils - self.paid_fils - self.advance_fils
        self.priority = "high" if self.due_fils > high_priority_threshold_fils else "medium"
        self.updated_at = datetime.utcnow()

    def apply_payment(self, amount_fils: int, high_priority_threshold_fils: int) -> None:
        if self.status in TERMINAL:
            raise DueTransitionError(f"due {self.id} is {self.status}; cannot record payment")
        if amount_fils <= 0:
            raise DueTransitionError("payment amount must be positive")
        if amount_fils > self.due_fils:
            raise DueTransitionError(
                f"payment of {amount_fils} fils exceeds the {self.due_fils} fils still due"
            )
        self.paid_fils += amount_fils
        self.recompute(high_priority_threshold_fils)
        if self.due_fils <= 0:
            self.status = "paid"
        elif self.status != "overdue":
            self.status = "partial"

    def mark_overdue(self, today: date) -> bool:
        if self.status in ("pending", "partial") and self.due_fils > 0 and today > self.due_date:
            self.status = "overdue"
            self.updated_at = datetime.utcnow()
            return True
        return False

    def cancel(self) -> None:
        if self.status in TERMINAL:
            raise DueTransitionError(f"due {self.id} is already {self.status}")
        self.status = "cancelled"
        self.updated_at = datetime.utcnow()

    def reprice(self, new_original_fils: int, high_priority_threshold_fils: int) -> None:
        if self.status in TERMINAL:
            raise DueTransitionError(f"due {self.id} is {self.status}; cannot reprice")
        if new_original_fils < self.paid_fils:
            raise DueTransitionError(
                f"new amount {new_original_fils} fils is below the {self.paid_fils} fils already settled"
            )
        self.original_fils = new_original_fils
        self.advance_fils = min(self.advance_fils, new_original_fils - self.paid_fils)
        self.recompute(high_priority_threshold_fils)
        if self.due_fils <= 0:
            self.status = "paid"

    def apply_advances(self, applied_fils: int, high_priority_threshold_fils: int) -> bool:
        """
        Let the advances applied to the billing settle this due, up to what
        credit and direct payments left open. Returns True when anything changed.

        A smaller ``applied_fils`` (allocations released) reopens a due that
        advances had closed.
        """
        if self.status == "cancelled":
            return False
        covered = max(0, min(applied_fils, self.original_fils - self.paid_fils))
        if covered == self.advance_fils:
            return False
        self.advance_fils = covered
        self.recompute(high_priority_threshold_fils)
        if self.due_fils <= 0:
            self.status = "paid"
        elif self.status == "paid":
            self.status = "partial" if self.paid_fils + self.advance_fils > 0 else "pending"
        elif self.status == "pending" and self.advance_fils > 0:
            self.status = "partial"
        return True


class DuePayment(BaseModel):
    id: str = Field(default_factory=gen_id)
    due_id: str
    billing_id: str
    amount_fils: int = Field(gt=0)
    method: Optional[str] = None
    paid_on: date = Field(default_factory=date.today)
    created_at: datetime = Field(default_factory=datetime.utcnow)
