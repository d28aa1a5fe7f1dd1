from __future__ import annotations
from pydantic import BaseModel


class CreditUsage(BaseModel):
    """Derived, never persisted."""
    customer_id: str
    credit_limit_fils: int = 0
    total_outstanding_fils: int = 0

    @property
    def available_credit_fils(self) -> int:
        return max(0, self.credit_limit_fils - self.total_outstanding_fils)

    @property
    def usage_pct(self) -> float:
        if self.credit_limit_fils <= 0:
            return 0.0
        return round(self.total_outstanding_fils * 100 / self.credit_limit_fils, 2)


class CreditDecision(BaseModel):
    charge_fils: int
    credit_limit_fils: int = 0
    paid_by_credit_fils: int
    due_fils: int

    @property
    def opens_due(self) -> bool:
        return self.due_fils > 0

    @property
    def due_status(self) -> str:
        return "partial" if self.paid_by_credit_fils > 0 else "pending"
