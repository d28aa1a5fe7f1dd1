from __future__ import annotations

import functools
import logging
import os
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel, ValidationError

from billing.errors import DueTransitionError, PersistenceFailure, RecordNotFound
from billing.models.billing import Billing
from billing.models.credit import CreditUsage
from billing.models.customer import Customer
from billing.models.due import Due, DuePayment
from billing.models.receipt import AdvanceReceipt, Allocation, ReceiptBalance
from billing.models.service import ServiceType
from billing.settings import BillingSettings, default_data_dir
from billing.storage.json_repo import JsonRepository, RepositoryError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class BillingStore(Protocol):
    """What the billing core needs from storage."""

    def get_credit_usage(self, customer_id: str) -> CreditUsage: ...

    def get_advance_receipts(self, customer_id: str, customer_kind: str) -> List[ReceiptBalance]: ...

    def get_receipt_remaining_balance(self, receipt_id: str) -> int: ...

    def record_allocation(self, receipt_id: str, billing_id: str, amount_fils: int) -> Allocation: ...

    def create_billing(self, billing: Billing) -> str: ...

    def create_due(self, due: Due) -> str: ...

    def record_due_payment(self, due_id: str, amount_fils: int, method: Optional[str] = None,
                           paid_on: Optional[date] = None) -> Due: ...


def _persisting(fn: Callable) -> Callable:
    """Storage errors surface as PersistenceFailure."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (OSError, RepositoryError) as e:
            raise PersistenceFailure(f"{fn.__name__} failed: {e}") from e

    return wrapper


def _next_number(rows: List[Dict[str, Any]], field: str, prefix: str, width: int) -> str:
    year = datetime.now().year
    full = f"{prefix}{year}-"
    max_n = 0
    for d in rows:
        num = d.get(field) or ""
        if isinstance(num, str) and num.startswith(full):
            try:
                max_n = max(max_n, int(num[len(full):]))
            except ValueError:
                continue
    return f"{full}{max_n + 1:0{width}d}"


class JsonBillingStore:
    """
    JSON-file implementation of BillingStore.
    One file per entity under ``data_dir``: customers, services, billings,
    receipts, allocations, dues, due_payments.
    """

    def __init__(self, data_dir: Optional[str | os.PathLike] = None, settings: Optional[BillingSettings] = None) -> None:
        self.settings = settings or BillingSettings()
        base = Path(data_dir) if data_dir else default_data_dir()
        base.mkdir(parents=True, exist_ok=True)
        self.data_dir = base

        def repo(name: str, entity: str) -> JsonRepository:
            return JsonRepository(base / f"{name}.json", entity_name=entity, key="id",
                                  backup_keep=self.settings.backup_keep)

        self.customers = repo("customers", "customer")
        self.services = repo("services", "service")
        self.billings = repo("billings", "billing")
        self.receipts = repo("receipts", "receipt")
        self.allocations = repo("allocations", "allocation")
        self.dues = repo("dues", "due")
        self.due_payments = repo("due_payments", "due payment")

    # ---------------- hydration ---------------- #

    @staticmethod
    def _hydrate(d: Optional[Dict[str, Any]], model: Type[M], entity: str, key: str) -> M:
        if d is None:
            raise RecordNotFound(entity, key)
        try:
            return model.model_validate(d)
        except ValidationError as e:
            raise PersistenceFailure(f"stored {entity} {key} is invalid: {e}") from e

    @staticmethod
    def _hydrate_list(rows: List[Dict[str, Any]], model: Type[M]) -> List[M]:
        out: List[M] = []
        for d in rows:
            try:
                out.append(model.model_validate(d))
            except ValidationError as e:
                logger.warning("Skipping invalid %s row %s: %s", model.__name__, d.get("id"), e)
        return out

    # ---------------- customers ---------------- #

    @_persisting
    def add_customer(self, customer: Customer) -> Customer:
        self.customers.add(customer)
        return customer

    @_persisting
    def get_customer(self, customer_id: str) -> Customer:
        return self._hydrate(self.customers.get_by_id(customer_id), Customer, "customer", customer_id)

    @_persisting
    def update_customer(self, customer: Customer) -> Customer:
        self.customers.update(customer)
        return customer

    @_persisting
    def list_customers(self, kind: Optional[str] = None) -> List[Customer]:
        rows = self.customers.find(lambda d: kind is None or d.get("kind") == kind)
        return self._hydrate_list(rows, Customer)

    @_persisting
    def delete_customer(self, customer_id: str) -> bool:
        return self.customers.delete(customer_id)

    # ---------------- service types ---------------- #

    @_persisting
    def add_service(self, service: ServiceType) -> ServiceType:
        self.services.add(service)
        return service

    @_persisting
    def get_service(self, service_id: str) -> ServiceType:
        return self._hydrate(self.services.get_by_id(service_id), ServiceType, "service", service_id)

    @_persisting
    def update_service(self, service: ServiceType) -> ServiceType:
        self.services.update(service)
        return service

    @_persisting
    def list_services(self) -> List[ServiceType]:
        return self._hydrate_list(self.services.list_all(), ServiceType)

    @_persisting
    def delete_service(self, service_id: str) -> bool:
        return self.services.delete(service_id)

    # ---------------- billings ---------------- #

    @_persisting
    def create_billing(self, billing: Billing) -> str:
        if not billing.invoice_number:
            billing.invoice_number = _next_number(
                self.billings.list_all(), "invoice_number", self.settings.invoice_prefix, 4
            )
        self.billings.add(billing)
        return billing.id

    @_persisting
    def get_billing(self, billing_id: str) -> Billing:
        return self._hydrate(self.billings.get_by_id(billing_id), Billing, "billing", billing_id)

    @_persisting
    def update_billing(self, billing: Billing) -> Billing:
        billing.updated_at = datetime.utcnow()
        self.billings.update(billing)
        return billing

    @_persisting
    def delete_billing(self, billing_id: str) -> bool:
        return self.billings.delete(billing_id)

    @_persisting
    def list_billings(self, customer_id: Optional[str] = None, customer_kind: Optional[str] = None) -> List[Billing]:
        rows = self.billings.find(
            lambda d: (customer_id is None or d.get("customer_id") == customer_id)
            and (customer_kind is None or d.get("customer_kind") == customer_kind)
        )
        return self._hydrate_list(rows, Billing)

    # ---------------- receipts ---------------- #

    @_persisting
    def add_receipt(self, receipt: AdvanceReceipt) -> AdvanceReceipt:
        if not receipt.receipt_number:
            receipt.receipt_number = _next_number(
                self.receipts.list_all(), "receipt_number", self.settings.receipt_prefix, 3
            )
        self.receipts.add(receipt)
        return receipt

    @_persisting
    def get_receipt(self, receipt_id: str) -> AdvanceReceipt:
        return self._hydrate(self.receipts.get_by_id(receipt_id), AdvanceReceipt, "receipt", receipt_id)

    @_persisting
    def update_receipt(self, receipt: AdvanceReceipt) -> AdvanceReceipt:
        receipt.updated_at = datetime.utcnow()
        self.receipts.update(receipt)
        return receipt

    @_persisting
    def delete_receipt(self, receipt_id: str) -> bool:
        return self.receipts.delete(receipt_id)

    @_persisting
    def list_receipts(self, customer_id: Optional[str] = None, customer_kind: Optional[str] = None) -> List[AdvanceReceipt]:
        rows = self.receipts.find(
            lambda d: (customer_id is None or d.get("customer_id") == customer_id)
            and (customer_kind is None or d.get("customer_kind") == customer_kind)
        )
        return self._hydrate_list(rows, AdvanceReceipt)

    @_persisting
    def get_advance_receipts(self, customer_id: str, customer_kind: str) -> List[ReceiptBalance]:
        receipts = [
            r for r in self.list_receipts(customer_id, customer_kind) if r.status == "paid"
        ]
        applied: Dict[str, int] = {}
        for a in self._hydrate_list(self.allocations.list_all(), Allocation):
            applied[a.receipt_id] = applied.get(a.receipt_id, 0) + a.amount_fils
        # sorted() is stable: same timestamp keeps insertion order
        receipts = sorted(receipts, key=lambda r: r.created_at)
        out: List[ReceiptBalance] = []
        for r in receipts:
            remaining = r.amount_fils - applied.get(r.id, 0)
            if remaining > 0:
                out.append(ReceiptBalance(id=r.id, remaining_fils=remaining, created_at=r.created_at))
        return out

    @_persisting
    def get_receipt_remaining_balance(self, receipt_id: str) -> int:
        receipt = self.get_receipt(receipt_id)
        if receipt.status != "paid":
            return 0
        return receipt.amount_fils - self.applied_from_receipt(receipt_id)

    # ---------------- allocations ---------------- #
    # every allocation change re-settles the due of the billing it touches

    @_persisting
    def record_allocation(self, receipt_id: str, billing_id: str, amount_fils: int) -> Allocation:
        alloc = Allocation(receipt_id=receipt_id, billing_id=billing_id, amount_fils=amount_fils)
        self.allocations.add(alloc)
        self.sync_due(billing_id)
        return alloc

    @_persisting
    def update_allocation(self, alloc: Allocation) -> Allocation:
        self.allocations.update(alloc)
        self.sync_due(alloc.billing_id)
        return alloc

    @_persisting
    def delete_allocation(self, allocation_id: str) -> bool:
        row = self.allocations.get_by_id(allocation_id)
        deleted = self.allocations.delete(allocation_id)
        if deleted and row:
            self.sync_due(row["billing_id"])
        return deleted

    @_persisting
    def delete_allocations(self, receipt_id: Optional[str] = None, billing_id: Optional[str] = None) -> List[Allocation]:
        if receipt_id is None and billing_id is None:
            raise ValueError("delete_allocations needs receipt_id or billing_id")
        removed = self.allocations.delete_where(
            lambda d: (receipt_id is None or d.get("receipt_id") == receipt_id)
            and (billing_id is None or d.get("billing_id") == billing_id)
        )
        for bid in dict.fromkeys(d.get("billing_id") for d in removed):
            self.sync_due(bid)
        return self._hydrate_list(removed, Allocation)

    @_persisting
    def allocations_for_receipt(self, receipt_id: str) -> List[Allocation]:
        return self._hydrate_list(self.allocations.find(lambda d: d.get("receipt_id") == receipt_id), Allocation)

    @_persisting
    def allocations_for_billing(self, billing_id: str) -> List[Allocation]:
        return self._hydrate_list(self.allocations.find(lambda d: d.get("billing_id") == billing_id), Allocation)

    def applied_from_receipt(self, receipt_id: str) -> int:
        return sum(a.amount_fils for a in self.allocations_for_receipt(receipt_id))

    def applied_to_billing(self, billing_id: str) -> int:
        return sum(a.amount_fils for a in self.allocations_for_billing(billing_id))

    # ---------------- dues ---------------- #

    @_persisting
    def create_due(self, due: Due) -> str:
        if self.dues.find_one(lambda d: d.get("billing_id") == due.billing_id):
            raise RepositoryError(f"billing {due.billing_id} already has a due")
        self.dues.add(due)
        return due.id

    @_persisting
    def get_due(self, due_id: str) -> Due:
        return self._hydrate(self.dues.get_by_id(due_id), Due, "due", due_id)

    @_persisting
    def due_for_billing(self, billing_id: str) -> Optional[Due]:
        d = self.dues.find_one(lambda x: x.get("billing_id") == billing_id)
        return self._hydrate(d, Due, "due", billing_id) if d else None

    @_persisting
    def update_due(self, due: Due) -> Due:
        self.dues.update(due)
        return due

    @_persisting
    def list_dues(self, customer_id: Optional[str] = None) -> List[Due]:
        rows = self.dues.find(lambda d: customer_id is None or d.get("customer_id") == customer_id)
        return self._hydrate_list(rows, Due)

    @_persisting
    def record_due_payment(self, due_id: str, amount_fils: int, method: Optional[str] = None,
                           paid_on: Optional[date] = None) -> Due:
        due = self.get_due(due_id)
        unpaid = self.billing_balance(self.get_billing(due.billing_id))
        if amount_fils > unpaid:
            raise DueTransitionError(
                f"payment of {amount_fils} fils exceeds the {unpaid} fils unpaid on billing {due.billing_id}"
            )
        due.apply_payment(amount_fils, self.settings.high_priority_threshold_fils)
        payment = DuePayment(due_id=due.id, billing_id=due.billing_id, amount_fils=amount_fils,
                             method=method, paid_on=paid_on or date.today())
        self.due_payments.add(payment)
        self.dues.update(due)
        return due

    @_persisting
    def sync_due(self, billing_id: str) -> Optional[Due]:
        """Bring the billing's due in line with the advances applied to the billing."""
        due = self.due_for_billing(billing_id)
        if due is None:
            return None
        if due.apply_advances(self.applied_to_billing(billing_id), self.settings.high_priority_threshold_fils):
            self.dues.update(due)
            logger.info("Due %s settled by advances: %s fils covered, %s fils left (%s)",
                        due.id, due.advance_fils, due.due_fils, due.status)
        return due

    @_persisting
    def payments_for_billing(self, billing_id: str) -> List[DuePayment]:
        return self._hydrate_list(self.due_payments.find(lambda d: d.get("billing_id") == billing_id), DuePayment)

    # ---------------- derived ---------------- #

    def billing_balance(self, billing: Billing) -> int:
        """What is still unpaid on a billing (never negative)."""
        if billing.status == "cancelled":
            return 0
        paid = self.applied_to_billing(billing.id) + sum(p.amount_fils for p in self.payments_for_billing(billing.id))
        return max(0, billing.total_with_vat_fils() - paid)

    @_persisting
    def get_credit_usage(self, customer_id: str) -> CreditUsage:
        customer = self.get_customer(customer_id)
        outstanding = sum(self.billing_balance(b) for b in self.list_billings(customer_id))
        return CreditUsage(
            customer_id=customer_id,
            credit_limit_fils=customer.credit_limit_fils,
            total_outstanding_fils=outstanding,
        )
