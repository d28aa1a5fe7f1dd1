from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from billing.errors import AllocationInconsistency
from billing.models.receipt import AdvanceReceipt, Allocation, AutoApplyResult, ReceiptUtilization
from billing.services.events import BalanceCache, BalanceChanged, EventBus
from billing.storage.store import JsonBillingStore

logger = logging.getLogger(__name__)


class AdvanceService:
    """
    Advance payment receipts and their allocation against billings.

    Allocation is FIFO over the customer's receipts (oldest first). Each
    receipt's remaining balance is re-read from storage right before it is
    used; nothing is cached between attempts.
    """

    def __init__(self, store: JsonBillingStore, events: Optional[EventBus] = None):
        self.store = store
        self.events = events or EventBus()
        self.balances = BalanceCache(self._load_balance)
        self.events.subscribe(self.balances.on_event)

    # ---------- balances ---------- #

    def _load_balance(self, customer_id: str, customer_kind: str) -> int:
        return sum(r.remaining_fils for r in self.store.get_advance_receipts(customer_id, customer_kind))

    def customer_balance(self, customer_id: str, customer_kind: str) -> int:
        return self.balances.get(customer_id, customer_kind)

    def _notify(self, receipt: Optional[AdvanceReceipt], action: str, customer_id: Optional[str] = None,
                customer_kind: Optional[str] = None, billing_id: Optional[str] = None) -> None:
        self.events.publish(BalanceChanged(
            customer_id=receipt.customer_id if receipt else customer_id,
            customer_kind=receipt.customer_kind if receipt else customer_kind,
            action=action,
            receipt_id=receipt.id if receipt else None,
            billing_id=billing_id,
        ))

    # ---------- allocation ---------- #

    def allocate(self, customer_id: str, customer_kind: str, billing_id: str, billing_total_fils: int) -> int:
        """
        Settle ``billing_id`` from unspent receipts. Returns the amount applied.

        Only the part of ``billing_total_fils`` not yet covered by earlier
        allocations is considered, so a repeated call applies nothing twice.
        """
        already = self.store.applied_to_billing(billing_id)
        if already > billing_total_fils:
            raise AllocationInconsistency(None, billing_total_fils, already, billing_id=billing_id)
        remaining = billing_total_fils - already
        applied = 0
        if remaining <= 0:
            return 0

        for candidate in self.store.get_advance_receipts(customer_id, customer_kind):
            if remaining <= 0:
                break
            balance = self.store.get_receipt_remaining_balance(candidate.id)
            amount = min(balance, remaining)
            if amount <= 0:
                continue
            self.store.record_allocation(candidate.id, billing_id, amount)
            logger.debug("Applied %s fils from receipt %s to billing %s", amount, candidate.id, billing_id)
            remaining -= amount
            applied += amount

        if applied:
            logger.info("Applied %s fils of advance payments to billing %s", applied, billing_id)
            self._notify(None, "applied", customer_id, customer_kind, billing_id=billing_id)
        return applied

    def auto_apply_receipt(self, receipt_id: str) -> AutoApplyResult:
        """Spend one receipt on the customer's unpaid billings, oldest billing first."""
        receipt = self.store.get_receipt(receipt_id)
        result = AutoApplyResult(receipt_id=receipt_id)
        if receipt.status != "paid":
            return result
        billings = sorted(
            (b for b in self.store.list_billings(receipt.customer_id, receipt.customer_kind) if b.status != "cancelled"),
            key=lambda b: b.created_at,
        )
        for billing in billings:
            available = self.store.get_receipt_remaining_balance(receipt_id)
            if available <= 0:
                break
            unpaid = self.store.billing_balance(billing)
            amount = min(available, unpaid)
            if amount <= 0:
                continue
            result.applications.append(self.store.record_allocation(receipt_id, billing.id, amount))

        if result.applied:
            logger.info("Receipt %s applied %s fils to %d billing(s)",
                        receipt.receipt_number, result.total_applied_fils, len(result.applications))
            self._notify(receipt, "applied")
        return result

    def release_billing(self, billing_id: str) -> int:
        """Give a billing's allocations back to their receipts."""
        removed = self.store.delete_allocations(billing_id=billing_id)
        total = sum(a.amount_fils for a in removed)
        if removed:
            billing = self.store.get_billing(billing_id)
            self._notify(None, "released", billing.customer_id, billing.customer_kind, billing_id=billing_id)
        return total

    # ---------- receipts ---------- #

    def create_receipt(
        self,
        customer_id: str,
        customer_kind: str,
        amount_fils: int,
        method: str = "cash",
        payment_date: Optional[date] = None,
        notes: Optional[str] = None,
        auto_apply: bool = True,
    ) -> tuple[AdvanceReceipt, AutoApplyResult]:
        receipt = AdvanceReceipt(
            customer_id=customer_id,
            customer_kind=customer_kind,
            amount_fils=amount_fils,
            method=method,
            payment_date=payment_date or date.today(),
            notes=notes,
        )
        self.store.add_receipt(receipt)
        logger.info("Receipt %s: %s fils from %s %s", receipt.receipt_number, amount_fils, customer_kind, customer_id)
        self._notify(receipt, "created")

        result = AutoApplyResult(receipt_id=receipt.id)
        if auto_apply:
            result = self.auto_apply_receipt(receipt.id)
        return receipt, result

    def utilization(self, receipt_id: str) -> ReceiptUtilization:
        receipt = self.store.get_receipt(receipt_id)
        allocs = self.store.allocations_for_receipt(receipt_id)
        return ReceiptUtilization(
            receipt_id=receipt_id,
            amount_fils=receipt.amount_fils,
            total_applied_fils=sum(a.amount_fils for a in allocs),
            applications_count=len(allocs),
        )

    def check_receipt(self, receipt_id: str) -> ReceiptUtilization:
        usage = self.utilization(receipt_id)
        if usage.is_over_applied:
            raise AllocationInconsistency(receipt_id, usage.amount_fils, usage.total_applied_fils)
        return usage

    def find_inconsistencies(self, customer_id: Optional[str] = None) -> List[AllocationInconsistency]:
        found: List[AllocationInconsistency] = []
        for receipt in self.store.list_receipts(customer_id):
            try:
                self.check_receipt(receipt.id)
            except AllocationInconsistency as e:
                found.append(e)
        return found

    def update_receipt(
        self,
        receipt_id: str,
        amount_fils: Optional[int] = None,
        method: Optional[str] = None,
        notes: Optional[str] = None,
        reapply: bool = False,
    ) -> tuple[AdvanceReceipt, Optional[AutoApplyResult]]:
        """
        Edit a receipt. Without ``reapply`` existing allocations are kept and
        the receipt is re-validated afterwards: if the new amount is below what
        was already applied, AllocationInconsistency is raised (the edit stays
        stored; see truncate_over_application). With ``reapply`` every
        allocation is released first and the receipt is spent again.
        """
        receipt = self.store.get_receipt(receipt_id)
        old_amount = receipt.amount_fils
        updates = {k: v for k, v in (("amount_fils", amount_fils), ("method", method), ("notes", notes)) if v is not None}
        receipt = AdvanceReceipt.model_validate({**receipt.model_dump(), **updates})

        result: Optional[AutoApplyResult] = None
        if reapply:
            released = self.store.delete_allocations(receipt_id=receipt_id)
            if released:
                logger.info("Released %s fils from receipt %s before re-applying",
                            sum(a.amount_fils for a in released), receipt.receipt_number)
        self.store.update_receipt(receipt)
        logger.info("Receipt %s updated: %s -> %s fils", receipt.receipt_number, old_amount, receipt.amount_fils)
        self._notify(receipt, "updated")

        if reapply:
            result = self.auto_apply_receipt(receipt_id)
        else:
            self.check_receipt(receipt_id)
        return receipt, result

    def truncate_over_application(self, receipt_id: str) -> int:
        """Shrink the newest allocations of an over-applied receipt. Returns fils removed."""
        usage = self.utilization(receipt_id)
        excess = usage.total_applied_fils - usage.amount_fils
        removed = 0
        if excess <= 0:
            return 0
        allocs: List[Allocation] = sorted(self.store.allocations_for_receipt(receipt_id), key=lambda a: a.created_at)
        for alloc in reversed(allocs):
            if excess <= 0:
                break
            cut = min(alloc.amount_fils, excess)
            if cut == alloc.amount_fils:
                self.store.delete_allocation(alloc.id)
            else:
                alloc.amount_fils -= cut
                self.store.update_allocation(alloc)
            excess -= cut
            removed += cut
        logger.warning("Truncated %s fils of over-applied allocations on receipt %s", removed, receipt_id)
        self._notify(self.store.get_receipt(receipt_id), "released")
        return removed

    def cancel_receipt(self, receipt_id: str) -> AdvanceReceipt:
        receipt = self.store.get_receipt(receipt_id)
        if receipt.status == "cancelled":
            raise ValueError(f"receipt {receipt.receipt_number} is already cancelled")
        self.store.delete_allocations(receipt_id=receipt_id)
        receipt.status = "cancelled"
        self.store.update_receipt(receipt)
        self._notify(receipt, "cancelled")
        return receipt

    def delete_receipt(self, receipt_id: str) -> int:
        """Delete a receipt and everything applied from it. Returns fils released."""
        receipt = self.store.get_receipt(receipt_id)
        released = self.store.delete_allocations(receipt_id=receipt_id)
        total = sum(a.amount_fils for a in released)
        self.store.delete_receipt(receipt_id)
        logger.info("Deleted receipt %s; released %s fils from %d billing(s)",
                    receipt.receipt_number, total, len(released))
        self._notify(receipt, "deleted")
        return total
