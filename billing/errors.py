"""Exceptions raised by the billing core.

Validation problems are raised before anything is written. Credit and
allocation problems on a successfully created billing are reported back to
the caller as warnings by the submission workflow.
"""
from __future__ import annotations

from typing import Dict, Optional


class BillingError(Exception):
    pass


class ChargeValidationError(BillingError, ValueError):
    """Malformed charge input. ``errors`` maps field name -> message."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        detail = "; ".join(f"{k}: {v}" for k, v in self.errors.items())
        super().__init__(f"invalid charge input ({detail})")


class CreditLookupFailure(BillingError):
    def __init__(self, customer_id: str, reason: str = ""):
        self.customer_id = customer_id
        super().__init__(f"credit usage lookup failed for customer {customer_id}: {reason}".rstrip(": "))


class AllocationInconsistency(BillingError):
    """More has been applied from a receipt (or to a billing) than it holds."""

    def __init__(self, receipt_id: Optional[str], amount_fils: int, applied_fils: int, billing_id: Optional[str] = None):
        self.receipt_id = receipt_id
        self.billing_id = billing_id
        self.amount_fils = amount_fils
        self.applied_fils = applied_fils
        target = f"receipt {receipt_id}" if receipt_id else f"billing {billing_id}"
        super().__init__(
            f"{target} over-applied: {applied_fils} fils applied against {amount_fils} fils"
        )

    @property
    def over_applied_fils(self) -> int:
        return self.applied_fils - self.amount_fils


class PersistenceFailure(BillingError):
    pass


class RecordNotFound(BillingError, KeyError):
    def __init__(self, entity: str, key: str):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key} not found")

    def __str__(self) -> str:
        return self.args[0]


class DueTransitionError(BillingError, ValueError):
    pass
