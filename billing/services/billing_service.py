from __future__ import annotations

import logging
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from billing.errors import (
    AllocationInconsistency,
    BillingError,
    ChargeValidationError,
    CreditLookupFailure,
    PersistenceFailure,
    RecordNotFound,
)
from billing.models.billing import Billing, BillingRequest, ServiceCharge
from billing.models.credit import CreditDecision
from billing.models.due import Due
from billing.services.advance_service import AdvanceService
from billing.services.charge_calculator import compute_lines
from billing.services.credit_service import CreditService
from billing.services.due_service import DueService
from billing.services.events import EventBus
from billing.services.locks import CustomerLocks
from billing.settings import BillingSettings
from billing.storage.store import JsonBillingStore

logger = logging.getLogger(__name__)


class SubmissionResult(BaseModel):
    billing: Billing
    due: Optional[Due] = None
    credit: Optional[CreditDecision] = None
    advance_applied_fils: int = 0
    warnings: List[str] = Field(default_factory=list)


class BillingService:
    """
    Billing submission: price -> credit check -> persist -> open due -> apply advances.

    Runs under a per-customer lock. Credit lookup and allocation problems do
    not block a billing; they come back as warnings on the result.
    """

    def __init__(
        self,
        store: JsonBillingStore,
        settings: Optional[BillingSettings] = None,
        events: Optional[EventBus] = None,
        locks: Optional[CustomerLocks] = None,
    ):
        self.store = store
        self.settings = settings or store.settings
        self.events = events or EventBus()
        self.locks = locks or CustomerLocks()
        self.credit = CreditService(store)
        self.dues = DueService(store, self.settings)
        self.advances = AdvanceService(store, self.events)

    # ---------- pricing ---------- #

    def price(self, req: BillingRequest) -> List[ServiceCharge]:
        items = []
        missing = {}
        for idx, item in enumerate(req.items):
            try:
                service = self.store.get_service(item.service_id)
            except RecordNotFound:
                missing[f"items[{idx}].service_id"] = f"unknown service {item.service_id}"
                continue
            items.append((service, item.quantity, item.typing_override_fils, item.government_override_fils))
        if missing:
            raise ChargeValidationError(missing)
        vat_pct = req.vat_pct if req.vat_pct is not None else self.settings.default_vat_pct
        vat_mode = req.vat_applies_to or self.settings.default_vat_applies_to
        return compute_lines(items, discount_fils=req.discount_fils, vat_pct=vat_pct,
                             vat_applies_to=vat_mode, vendor_cost_fils=req.vendor_cost_fils)

    # ---------- submission ---------- #

    def submit(self, req: BillingRequest, today: Optional[date] = None) -> SubmissionResult:
        lines = self.price(req)  # validation errors stop here, nothing written
        billing = Billing(
            customer_id=req.customer_id,
            customer_kind=req.customer_kind,
            status=req.status,
            lines=lines,
            discount_fils=req.discount_fils,
            vendor_cost_fils=req.vendor_cost_fils,
            vendor_id=req.vendor_id,
            service_date=req.service_date or today or date.today(),
            cash_type=req.cash_type,
            assigned_employee_id=req.assigned_employee_id,
            notes=req.notes,
        )
        total = billing.total_with_vat_fils()
        result = SubmissionResult(billing=billing)

        with self.locks.hold(req.customer_id):
            try:
                result.credit = self.credit.evaluate_for(req.customer_id, req.customer_kind, total)
            except CreditLookupFailure as e:
                logger.warning("Credit check skipped for billing of customer %s: %s", req.customer_id, e)
                result.warnings.append(f"Credit limit could not be checked, no due was opened: {e}")

            self.store.create_billing(billing)
            logger.info("Billing %s created for %s %s: %s fils",
                        billing.invoice_number, req.customer_kind, req.customer_id, total)

            if result.credit is not None and result.credit.opens_due:
                try:
                    result.due = self.dues.open_due(billing, result.credit, result.credit.credit_limit_fils, today)
                except BillingError as e:
                    self.store.delete_billing(billing.id)
                    logger.error("Due creation failed, billing %s withdrawn: %s", billing.id, e)
                    raise PersistenceFailure(f"could not open due for billing {billing.id}: {e}") from e

            try:
                result.advance_applied_fils = self.advances.allocate(
                    req.customer_id, req.customer_kind, billing.id, total
                )
            except AllocationInconsistency as e:
                logger.warning("Advance allocation inconsistent for billing %s: %s", billing.id, e)
                result.warnings.append(f"Advance payments not applied: {e}")
            except BillingError as e:
                logger.warning("Advance allocation failed for billing %s: %s", billing.id, e)
                result.warnings.append(f"Advance payments could not be applied, retry later: {e}")

            if result.due is not None and result.advance_applied_fils:
                result.due = self.store.get_due(result.due.id)

        return result

    def retry_allocation(self, billing_id: str) -> int:
        billing = self.store.get_billing(billing_id)
        if billing.status == "cancelled":
            return 0
        with self.locks.hold(billing.customer_id):
            return self.advances.allocate(billing.customer_id, billing.customer_kind,
                                          billing.id, billing.total_with_vat_fils())

    # ---------- edit / cancel ---------- #

    def edit_billing(self, billing_id: str, req: BillingRequest) -> Billing:
        """Recompute every charge field from ``req``; identity, number and creation time are kept."""
        current = self.store.get_billing(billing_id)
        if current.status == "cancelled":
            raise ValueError(f"billing {current.invoice_number} is cancelled")
        if req.customer_id != current.customer_id:
            raise ChargeValidationError({"customer_id": "cannot move a billing to another customer"})
        if req.status == "cancelled":
            raise ChargeValidationError({"status": "use cancel_billing to cancel a billing"})
        lines = self.price(req)
        with self.locks.hold(current.customer_id):
            updated = current.model_copy(update={
                "lines": lines,
                "status": req.status,
                "discount_fils": req.discount_fils,
                "vendor_cost_fils": req.vendor_cost_fils,
                "vendor_id": req.vendor_id,
                "service_date": req.service_date or current.service_date,
                "cash_type": req.cash_type,
                "assigned_employee_id": req.assigned_employee_id,
                "notes": req.notes,
                "updated_at": datetime.utcnow(),
            })
            new_total = updated.total_with_vat_fils()
            applied = self.store.applied_to_billing(billing_id)
            if applied > new_total:
                raise AllocationInconsistency(None, new_total, applied, billing_id=billing_id)

            due = self.store.due_for_billing(billing_id)
            if due is not None and due.is_open:
                due.reprice(new_total, self.settings.high_priority_threshold_fils)
                self.store.update_due(due)
            self.store.update_billing(updated)
            self.store.sync_due(billing_id)
        logger.info("Billing %s edited: %s fils", updated.invoice_number, new_total)
        return updated

    def cancel_billing(self, billing_id: str) -> Billing:
        billing = self.store.get_billing(billing_id)
        if billing.status == "cancelled":
            return billing
        with self.locks.hold(billing.customer_id):
            due = self.store.due_for_billing(billing_id)
            if due is not None and due.is_open:
                self.dues.cancel(due.id)
            released = self.advances.release_billing(billing_id)
            billing.status = "cancelled"
            self.store.update_billing(billing)
        logger.info("Billing %s cancelled; %s fils of advances released", billing.invoice_number, released)
        return billing

    # ---------- queries ---------- #

    def amount_due(self, billing_id: str) -> int:
        return self.store.billing_balance(self.store.get_billing(billing_id))

    def unpaid_billings(self, customer_id: str, customer_kind: Optional[str] = None) -> List[Billing]:
        return [b for b in self.store.list_billings(customer_id, customer_kind) if self.store.billing_balance(b) > 0]
