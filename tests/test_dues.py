from datetime import date
from types import SimpleNamespace

import pytest

from billing.errors import DueTransitionError
from billing.models.credit import CreditDecision
from billing.models.due import Due
from billing.services.advance_service import AdvanceService
from billing.services.due_service import DueService

TODAY = date(2026, 1, 10)
THRESHOLD = 1_000_000


def make_due(original, paid=0, status="pending", due_date=date(2026, 2, 9)):
    due = Due(billing_id="b1", customer_id="c1", original_fils=original, paid_fils=paid,
              status=status, due_date=due_date)
    due.recompute(THRESHOLD)
    return due


def test_priority_follows_amount_due():
    due = make_due(1_500_000)
    assert due.priority == "high"

    due.apply_payment(600_000, THRESHOLD)

    assert due.status == "partial"
    assert due.due_fils == 900_000
    assert due.priority == "medium"


def test_threshold_itself_is_medium():
    assert make_due(THRESHOLD).priority == "medium"
    assert make_due(THRESHOLD + 1).priority == "high"


def test_full_payment_closes_due():
    due = make_due(30_000, paid=20_000, status="partial")
    due.apply_payment(10_000, THRESHOLD)
    assert due.status == "paid"
    assert due.due_fils == 0
    with pytest.raises(DueTransitionError):
        due.apply_payment(1, THRESHOLD)


@pytest.mark.parametrize("amount", [0, -5, 30_001])
def test_bad_payment_amounts_are_rejected(amount):
    due = make_due(30_000)
    with pytest.raises(DueTransitionError):
        due.apply_payment(amount, THRESHOLD)
    assert due.status == "pending"
    assert due.paid_fils == 0


def test_overdue_stays_overdue_until_paid():
    due = make_due(30_000)
    assert due.mark_overdue(date(2026, 2, 10))
    due.apply_payment(10_000, THRESHOLD)
    assert due.status == "overdue"
    due.apply_payment(20_000, THRESHOLD)
    assert due.status == "paid"


def test_not_overdue_on_the_due_date():
    due = make_due(30_000)
    assert not due.mark_overdue(date(2026, 2, 9))
    assert due.status == "pending"


def test_cancel_only_from_open_states():
    due = make_due(30_000)
    due.cancel()
    assert due.status == "cancelled"
    with pytest.raises(DueTransitionError):
        due.cancel()
    with pytest.raises(DueTransitionError):
        due.apply_payment(100, THRESHOLD)


def test_reprice_keeps_what_was_paid():
    due = make_due(30_000, paid=20_000, status="partial")
    due.reprice(60_000, THRESHOLD)
    assert due.original_fils == 60_000
    assert due.due_fils == 40_000
    with pytest.raises(DueTransitionError):
        due.reprice(10_000, THRESHOLD)


def test_due_dates_depend_on_credit_line(store):
    dues = DueService(store)
    assert dues.due_date_for(TODAY, 500_000) == date(2026, 2, 9)
    assert dues.due_date_for(TODAY, 0) == date(2026, 1, 17)


def test_build_due_from_decision(store):
    dues = DueService(store)
    billing = SimpleNamespace(id="b9", customer_id="c9", customer_kind="company")
    decision = CreditDecision(charge_fils=50_000, credit_limit_fils=500_000,
                              paid_by_credit_fils=20_000, due_fils=30_000)

    due = dues.build_due(billing, decision, 500_000, TODAY)

    assert (due.original_fils, due.paid_fils, due.due_fils) == (50_000, 20_000, 30_000)
    assert due.status == "partial"
    assert due.due_date == date(2026, 2, 9)

    covered = CreditDecision(charge_fils=50_000, paid_by_credit_fils=50_000, due_fils=0)
    with pytest.raises(DueTransitionError):
        dues.build_due(billing, covered, 500_000, TODAY)


def test_recorded_payment_is_stored(store, company, billing, request_for):
    billing.submit(request_for(company, 500_000), today=TODAY)
    res = billing.submit(request_for(company, 40_000), today=TODAY)
    assert res.due.status == "pending"

    due = billing.dues.record_payment(res.due.id, 15_000, method="cash", paid_on=TODAY)

    assert due.status == "partial"
    assert store.get_due(due.id).due_fils == 25_000
    assert [p.amount_fils for p in store.payments_for_billing(res.billing.id)] == [15_000]
    assert billing.amount_due(res.billing.id) == 25_000


def test_overdue_sweep(store, company, billing, request_for):
    billing.submit(request_for(company, 500_000), today=TODAY)
    res = billing.submit(request_for(company, 40_000), today=TODAY)

    assert billing.dues.mark_overdue(date(2026, 2, 9)) == []
    changed = billing.dues.mark_overdue(date(2026, 2, 10))

    assert [d.id for d in changed] == [res.due.id]
    assert [d.id for d in billing.dues.list_open(company.id)] == [res.due.id]
    assert store.get_due(res.due.id).status == "overdue"
    assert billing.dues.mark_overdue(date(2026, 3, 1)) == []


def test_outstanding_report(store, company, individual, billing, request_for):
    billing.submit(request_for(company, 500_000), today=TODAY)
    billing.submit(request_for(company, 40_000), today=TODAY)
    AdvanceService(store).create_receipt(individual.id, "individual", 7_500)

    report = billing.dues.outstanding_report()

    assert report.total_customers == 2
    top, bottom = report.customers
    assert top.customer_id == company.id
    assert top.total_dues_fils == 40_000
    assert bottom.customer_id == individual.id
    assert bottom.net_outstanding_fils == -7_500
    assert report.total_outstanding_fils == 40_000
    assert report.total_advance_fils == 7_500
    assert report.net_balance_fils == 32_500

    only_companies = billing.dues.outstanding_report("company")
    assert [c.customer_id for c in only_companies.customers] == [company.id]


def test_advances_cover_only_the_open_part():
    due = make_due(50_000, paid=20_000, status="partial")

    assert due.apply_advances(50_000, THRESHOLD)
    assert (due.advance_fils, due.due_fils, due.status) == (30_000, 0, "paid")
    assert not due.apply_advances(60_000, THRESHOLD)

    assert due.apply_advances(10_000, THRESHOLD)
    assert (due.due_fils, due.status) == (20_000, "partial")


def test_advances_leave_cancelled_dues_alone():
    due = make_due(30_000)
    due.cancel()
    assert not due.apply_advances(30_000, THRESHOLD)
    assert due.due_fils == 30_000


def test_outstanding_report_date_window(store, individual, billing):
    advances = AdvanceService(store)
    advances.create_receipt(individual.id, "individual", 7_500, payment_date=date(2026, 1, 5))
    advances.create_receipt(individual.id, "individual", 2_500, payment_date=date(2025, 12, 1))

    january = billing.dues.outstanding_report("individual", date_from=date(2026, 1, 1), date_to=date(2026, 1, 31))
    assert january.customers[0].total_advance_fils == 7_500

    everything = billing.dues.outstanding_report("individual")
    assert everything.customers[0].total_advance_fils == 10_000

    assert billing.dues.outstanding_report(date_to=date(2000, 1, 1)).total_dues_fils == 0
