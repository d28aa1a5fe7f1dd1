from __future__ import annotations
from typing import List, Optional

from billing.models.credit import CreditUsage
from billing.models.customer import Customer
from billing.storage.store import JsonBillingStore


class CustomerService:
    def __init__(self, store: JsonBillingStore):
        self.store = store

    def list_customers(self, kind: Optional[str] = None) -> List[Customer]:
        return self.store.list_customers(kind)

    def add_customer(self, customer: Customer) -> Customer:
        return self.store.add_customer(customer)

    def update_customer(self, customer: Customer) -> Customer:
        return self.store.update_customer(customer)

    def delete_customer(self, customer_id: str) -> bool:
        return self.store.delete_customer(customer_id)

    def get_by_id(self, customer_id: str) -> Customer:
        return self.store.get_customer(customer_id)

    def set_credit_limit(self, customer_id: str, credit_limit_fils: int, credit_limit_days: Optional[int] = None) -> Customer:
        if credit_limit_fils < 0:
            raise ValueError("credit limit must be zero or more")
        c = self.store.get_customer(customer_id)
        c.credit_limit_fils = credit_limit_fils
        if credit_limit_days is not None:
            c.credit_limit_days = credit_limit_days
        return self.store.update_customer(c)

    def credit_usage(self, customer_id: str) -> CreditUsage:
        return self.store.get_credit_usage(customer_id)
