from datetime import date
from decimal import Decimal

import pytest

from billing.models.billing import BillingRequest, LineRequest
from billing.models.customer import Customer
from billing.models.service import ServiceType
from billing.services.billing_service import BillingService
from billing.storage.store import JsonBillingStore

TODAY = date(2026, 1, 10)


@pytest.fixture
def store(tmp_path):
    return JsonBillingStore(tmp_path / "data")


@pytest.fixture
def company(store):
    return store.add_customer(Customer(kind="company", name="Gulf Trading LLC", credit_limit_fils=500_000))


@pytest.fixture
def individual(store):
    return store.add_customer(Customer(kind="individual", name="Aisha Rahman", credit_limit_fils=0))


@pytest.fixture
def visa_typing(store):
    # AED 100 typing + AED 50 government
    return store.add_service(ServiceType(name="Visa Typing", category="visa",
                                         typing_charge_fils=10_000, government_charge_fils=5_000))


@pytest.fixture
def flat_service(store):
    """Typing-only service at 1 fil per unit; quantity == amount in fils."""
    return store.add_service(ServiceType(name="Document Clearing", typing_charge_fils=1))


@pytest.fixture
def billing(store):
    return BillingService(store)


@pytest.fixture
def request_for(flat_service):
    """Build a VAT-free single-line request worth exactly ``amount`` fils."""

    def make(customer, amount, **kw):
        return BillingRequest(
            customer_id=customer.id,
            customer_kind=customer.kind,
            items=[LineRequest(service_id=flat_service.id, quantity=amount)],
            vat_pct=Decimal(0),
            **kw,
        )

    return make
