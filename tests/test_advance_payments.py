from datetime import datetime

import pytest

from billing.errors import AllocationInconsistency
from billing.services.advance_service import AdvanceService
from billing.services.events import EventBus


@pytest.fixture
def advances(store):
    return AdvanceService(store)


def test_fifo_across_receipts(store, individual, billing, advances, request_for):
    r1, _ = advances.create_receipt(individual.id, "individual", 10_000)
    r2, _ = advances.create_receipt(individual.id, "individual", 8_000)

    res = billing.submit(request_for(individual, 15_000))

    assert res.advance_applied_fils == 15_000
    assert advances.utilization(r1.id).total_applied_fils == 10_000
    assert advances.utilization(r1.id).utilization_pct == 100.0
    assert store.get_receipt_remaining_balance(r2.id) == 3_000
    assert billing.amount_due(res.billing.id) == 0


def test_nothing_to_apply_returns_zero(store, individual, billing, request_for):
    res = billing.submit(request_for(individual, 5_000))
    assert res.advance_applied_fils == 0
    assert billing.amount_due(res.billing.id) == 5_000


def test_allocate_twice_does_not_double_apply(store, individual, billing, advances, request_for):
    advances.create_receipt(individual.id, "individual", 50_000)
    res = billing.submit(request_for(individual, 20_000))
    assert res.advance_applied_fils == 20_000

    again = advances.allocate(individual.id, "individual", res.billing.id, 20_000)
    assert again == 0
    assert store.applied_to_billing(res.billing.id) == 20_000


def test_partial_then_top_up(store, individual, billing, advances, request_for):
    advances.create_receipt(individual.id, "individual", 5_000)
    res = billing.submit(request_for(individual, 12_000))
    assert res.advance_applied_fils == 5_000

    _, applied = advances.create_receipt(individual.id, "individual", 10_000)
    assert applied.total_applied_fils == 7_000
    assert billing.amount_due(res.billing.id) == 0


def test_receipt_auto_applies_to_oldest_billing_first(store, individual, billing, advances, request_for):
    first = billing.submit(request_for(individual, 6_000)).billing
    second = billing.submit(request_for(individual, 6_000)).billing

    receipt, result = advances.create_receipt(individual.id, "individual", 9_000)

    assert result.applied
    assert [a.billing_id for a in result.applications] == [first.id, second.id]
    assert [a.amount_fils for a in result.applications] == [6_000, 3_000]
    assert advances.utilization(receipt.id).is_fully_utilized


def test_sum_applied_never_exceeds_receipt_or_billing(store, individual, billing, advances, request_for):
    for amount in (3_000, 7_500, 1_250):
        advances.create_receipt(individual.id, "individual", amount)
    bills = [billing.submit(request_for(individual, amount)).billing for amount in (4_000, 4_000, 9_000)]
    advances.create_receipt(individual.id, "individual", 2_000)

    for r in store.list_receipts(individual.id):
        assert store.applied_from_receipt(r.id) <= r.amount_fils
    for b in bills:
        assert store.applied_to_billing(b.id) <= b.total_with_vat_fils()


def test_reduced_receipt_is_flagged_as_over_applied(store, individual, billing, advances, request_for):
    receipt, _ = advances.create_receipt(individual.id, "individual", 20_000)
    res = billing.submit(request_for(individual, 20_000))
    assert res.advance_applied_fils == 20_000

    with pytest.raises(AllocationInconsistency) as exc:
        advances.update_receipt(receipt.id, amount_fils=15_000)
    assert exc.value.receipt_id == receipt.id
    assert exc.value.over_applied_fils == 5_000
    assert len(advances.find_inconsistencies(individual.id)) == 1

    removed = advances.truncate_over_application(receipt.id)
    assert removed == 5_000
    assert advances.check_receipt(receipt.id).total_applied_fils == 15_000
    assert billing.amount_due(res.billing.id) == 5_000
    assert advances.find_inconsistencies() == []


def test_over_applied_receipt_is_skipped_by_allocator(store, individual, billing, advances, request_for):
    receipt, _ = advances.create_receipt(individual.id, "individual", 20_000)
    billing.submit(request_for(individual, 20_000))
    with pytest.raises(AllocationInconsistency):
        advances.update_receipt(receipt.id, amount_fils=15_000)

    res = billing.submit(request_for(individual, 1_000))
    assert res.advance_applied_fils == 0


def test_edit_with_reapply_spends_receipt_again(store, individual, billing, advances, request_for):
    receipt, _ = advances.create_receipt(individual.id, "individual", 20_000)
    res = billing.submit(request_for(individual, 20_000))

    updated, result = advances.update_receipt(receipt.id, amount_fils=15_000, reapply=True)

    assert updated.amount_fils == 15_000
    assert result.total_applied_fils == 15_000
    assert billing.amount_due(res.billing.id) == 5_000
    advances.check_receipt(receipt.id)


def test_delete_receipt_releases_allocations(store, individual, billing, advances, request_for):
    receipt, _ = advances.create_receipt(individual.id, "individual", 8_000)
    res = billing.submit(request_for(individual, 10_000))

    released = advances.delete_receipt(receipt.id)

    assert released == 8_000
    assert store.allocations_for_billing(res.billing.id) == []
    assert billing.amount_due(res.billing.id) == 10_000


def test_cancelled_receipt_is_not_spent(store, individual, billing, advances, request_for):
    receipt, _ = advances.create_receipt(individual.id, "individual", 8_000)
    advances.cancel_receipt(receipt.id)
    res = billing.submit(request_for(individual, 1_000))
    assert res.advance_applied_fils == 0
    with pytest.raises(ValueError):
        advances.cancel_receipt(receipt.id)


def test_receipt_numbers_follow_the_year(store, individual, advances):
    a, _ = advances.create_receipt(individual.id, "individual", 100)
    b, _ = advances.create_receipt(individual.id, "individual", 100)
    year = datetime.now().year
    assert a.receipt_number == f"RCP-{year}-001"
    assert b.receipt_number == f"RCP-{year}-002"


def test_balance_cache_is_refreshed_by_events(store, individual):
    bus = EventBus()
    seen = []
    bus.subscribe(seen.append)
    advances = AdvanceService(store, bus)

    advances.create_receipt(individual.id, "individual", 10_000)
    assert advances.customer_balance(individual.id, "individual") == 10_000

    advances.create_receipt(individual.id, "individual", 5_000)
    assert advances.customer_balance(individual.id, "individual") == 15_000
    assert [e.action for e in seen] == ["created", "created"]
    assert seen[0].customer_id == individual.id


def test_failing_subscriber_does_not_break_publishing(store, individual):
    bus = EventBus()

    def broken(event):
        raise RuntimeError("listener crashed")

    bus.subscribe(broken)
    advances = AdvanceService(store, bus)
    receipt, _ = advances.create_receipt(individual.id, "individual", 1_000)
    assert store.get_receipt(receipt.id).amount_fils == 1_000
