from __future__ import annotations

import logging
from typing import Optional

from billing.errors import BillingError, CreditLookupFailure
from billing.models.credit import CreditDecision, CreditUsage
from billing.storage.store import BillingStore

logger = logging.getLogger(__name__)


def evaluate(usage: CreditUsage, charge_fils: int) -> CreditDecision:
    """Split a new charge into the part the credit line covers and the part that becomes due."""
    if charge_fils < 0:
        raise ValueError("charge must not be negative")
    paid_by_credit = min(max(0, usage.available_credit_fils), charge_fils)
    return CreditDecision(
        charge_fils=charge_fils,
        credit_limit_fils=usage.credit_limit_fils,
        paid_by_credit_fils=paid_by_credit,
        due_fils=charge_fils - paid_by_credit,
    )


class CreditService:
    def __init__(self, store: BillingStore):
        self.store = store

    def credit_usage(self, customer_id: str) -> CreditUsage:
        try:
            return self.store.get_credit_usage(customer_id)
        except (BillingError, OSError) as e:
            raise CreditLookupFailure(customer_id, str(e)) from e

    def evaluate_for(self, customer_id: str, customer_kind: str, charge_fils: int) -> Optional[CreditDecision]:
        """
        None for individuals (no credit line). Raises CreditLookupFailure when
        usage cannot be read; the submission workflow turns that into a warning.
        """
        if customer_kind != "company":
            return None
        usage = self.credit_usage(customer_id)
        decision = evaluate(usage, charge_fils)
        logger.debug(
            "Credit for %s: limit=%s outstanding=%s available=%s charge=%s -> credit=%s due=%s",
            customer_id, usage.credit_limit_fils, usage.total_outstanding_fils,
            usage.available_credit_fils, charge_fils, decision.paid_by_credit_fils, decision.due_fils,
        )
        return decision
