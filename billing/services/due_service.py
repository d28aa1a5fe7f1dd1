from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from billing.errors import DueTransitionError
from billing.models.billing import Billing
from billing.models.credit import CreditDecision
from billing.models.due import Due
from billing.settings import BillingSettings
from billing.storage.store import JsonBillingStore

logger = logging.getLogger(__name__)


class OutstandingCustomer(BaseModel):
    customer_id: str
    name: str
    kind: str
    credit_limit_fils: int = 0
    total_dues_fils: int = 0
    total_advance_fils: int = 0

    @property
    def net_outstanding_fils(self) -> int:
        return self.total_dues_fils - self.total_advance_fils


class OutstandingReport(BaseModel):
    customers: List[OutstandingCustomer] = Field(default_factory=list)

    @property
    def total_customers(self) -> int:
        return len(self.customers)

    @property
    def total_outstanding_fils(self) -> int:
        return sum(max(0, c.net_outstanding_fils) for c in self.customers)

    @property
    def total_advance_fils(self) -> int:
        return sum(c.total_advance_fils for c in self.customers)

    @property
    def total_dues_fils(self) -> int:
        return sum(c.total_dues_fils for c in self.customers)

    @property
    def net_balance_fils(self) -> int:
        return self.total_dues_fils - self.total_advance_fils


class DueService:
    """Receivables opened by the credit check: pending -> partial -> paid, or overdue / cancelled."""

    def __init__(self, store: JsonBillingStore, settings: Optional[BillingSettings] = None):
        self.store = store
        self.settings = settings or store.settings

    def due_date_for(self, opened_on: date, credit_limit_fils: int) -> date:
        days = self.settings.credit_due_days if credit_limit_fils > 0 else self.settings.no_credit_due_days
        return opened_on + timedelta(days=days)

    def build_due(self, billing: Billing, decision: CreditDecision, credit_limit_fils: int,
                  opened_on: Optional[date] = None) -> Due:
        if not decision.opens_due:
            raise DueTransitionError("charge is fully covered by credit; nothing is due")
        due = Due(
            billing_id=billing.id,
            customer_id=billing.customer_id,
            customer_kind=billing.customer_kind,
            original_fils=decision.charge_fils,
            paid_fils=decision.paid_by_credit_fils,
            status=decision.due_status,
            due_date=self.due_date_for(opened_on or date.today(), credit_limit_fils),
        )
        due.recompute(self.settings.high_priority_threshold_fils)
        return due

    def open_due(self, billing: Billing, decision: CreditDecision, credit_limit_fils: int,
                 opened_on: Optional[date] = None) -> Due:
        due = self.build_due(billing, decision, credit_limit_fils, opened_on)
        self.store.create_due(due)
        logger.info("Opened due %s for billing %s: %s fils due by %s (%s, %s)",
                    due.id, billing.id, due.due_fils, due.due_date, due.status, due.priority)
        return due

    def record_payment(self, due_id: str, amount_fils: int, method: Optional[str] = None,
                       paid_on: Optional[date] = None) -> Due:
        due = self.store.record_due_payment(due_id, amount_fils, method=method, paid_on=paid_on)
        logger.info("Payment of %s fils on due %s -> %s (%s fils left)", amount_fils, due_id, due.status, due.due_fils)
        return due

    def mark_overdue(self, today: Optional[date] = None) -> List[Due]:
        today = today or date.today()
        changed: List[Due] = []
        for due in self.store.list_dues():
            if due.mark_overdue(today):
                self.store.update_due(due)
                changed.append(due)
        if changed:
            logger.info("%d due(s) marked overdue", len(changed))
        return changed

    def cancel(self, due_id: str) -> Due:
        due = self.store.get_due(due_id)
        due.cancel()
        self.store.update_due(due)
        logger.info("Cancelled due %s", due_id)
        return due

    def reprice(self, due_id: str, new_total_fils: int) -> Due:
        due = self.store.get_due(due_id)
        due.reprice(new_total_fils, self.settings.high_priority_threshold_fils)
        self.store.update_due(due)
        return due

    def list_open(self, customer_id: Optional[str] = None) -> List[Due]:
        return [d for d in self.store.list_dues(customer_id) if d.is_open]

    def outstanding_report(self, customer_kind: Optional[str] = None, date_from: Optional[date] = None,
                           date_to: Optional[date] = None) -> OutstandingReport:
        """
        Open dues against unspent advances per customer. Dues are picked by
        creation date and receipts by payment date, both inclusive. Advances
        already applied to billings are left out: they have settled their dues.
        """
        def in_range(day: date) -> bool:
            return (date_from is None or day >= date_from) and (date_to is None or day <= date_to)

        dues: Dict[str, int] = {}
        for d in self.store.list_dues():
            if d.is_open and in_range(d.created_at.date()):
                dues[d.customer_id] = dues.get(d.customer_id, 0) + d.due_fils
        advances: Dict[str, int] = {}
        for r in self.store.list_receipts():
            if r.status == "paid" and in_range(r.payment_date):
                unspent = max(0, r.amount_fils - self.store.applied_from_receipt(r.id))
                advances[r.customer_id] = advances.get(r.customer_id, 0) + unspent

        rows = [
            OutstandingCustomer(
                customer_id=c.id, name=c.name, kind=c.kind,
                credit_limit_fils=c.credit_limit_fils,
                total_dues_fils=dues.get(c.id, 0),
                total_advance_fils=advances.get(c.id, 0),
            )
            for c in self.store.list_customers(customer_kind)
        ]
        rows.sort(key=lambda c: c.net_outstanding_fils, reverse=True)
        return OutstandingReport(customers=rows)
