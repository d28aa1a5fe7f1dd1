import json
from decimal import Decimal

import pytest

from billing.errors import PersistenceFailure, RecordNotFound
from billing.models.customer import Customer
from billing.settings import BillingSettings, load_settings
from billing.storage.json_repo import CorruptFile, DuplicateKey, JsonRepository, RepositoryError
from billing.storage.store import JsonBillingStore


@pytest.fixture
def repo(tmp_path):
    return JsonRepository(tmp_path / "things.json", entity_name="thing", backup_keep=2)


def backups(tmp_path):
    return sorted(tmp_path.glob("things.*.bak.json"))


def test_add_get_update_delete(repo):
    row = repo.add({"id": "a", "name": "first"})
    assert repo.get_by_id("a") == row

    repo.update({"id": "a", "name": "renamed"})
    assert repo.get_by_id("a")["name"] == "renamed"

    assert repo.delete("a") is True
    assert repo.delete("a") is False
    assert repo.list_all() == []


def test_missing_key_is_generated(repo):
    row = repo.add({"name": "no id"})
    assert row["id"]
    assert repo.find_one(lambda r: r["name"] == "no id")["id"] == row["id"]


def test_duplicate_key_is_rejected(repo):
    repo.add({"id": "a"})
    with pytest.raises(DuplicateKey):
        repo.add({"id": "a"})


def test_update_of_unknown_row_fails(repo):
    with pytest.raises(RepositoryError):
        repo.update({"id": "ghost"})


def test_rows_keep_insertion_order(repo):
    for key in ("c", "a", "b"):
        repo.add({"id": key})
    assert [r["id"] for r in repo.list_all()] == ["c", "a", "b"]
    removed = repo.delete_where(lambda r: r["id"] != "a")
    assert [r["id"] for r in removed] == ["c", "b"]


def test_unchanged_write_is_skipped(tmp_path, repo):
    repo.add({"id": "a", "name": "x"})
    before = backups(tmp_path)
    repo.update({"id": "a", "name": "x"})
    assert backups(tmp_path) == before


def test_backups_are_rotated(tmp_path, repo):
    for i in range(5):
        repo.add({"id": str(i)})
    assert 0 < len(backups(tmp_path)) <= 2


def test_corrupt_file_is_reported_not_emptied(tmp_path, repo):
    path = tmp_path / "things.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(CorruptFile):
        repo.list_all()
    assert (tmp_path / "things.corrupt.json").exists()
    assert path.read_text(encoding="utf-8") == "{not json"


def test_store_wraps_repository_errors(tmp_path):
    store = JsonBillingStore(tmp_path / "data")
    (tmp_path / "data" / "customers.json").write_text("[oops", encoding="utf-8")
    with pytest.raises(PersistenceFailure):
        store.list_customers()


def test_store_missing_records(tmp_path):
    store = JsonBillingStore(tmp_path / "data")
    with pytest.raises(RecordNotFound) as exc:
        store.get_billing("nope")
    assert str(exc.value) == "billing nope not found"
    with pytest.raises(ValueError):
        store.delete_allocations()


def test_invalid_rows_are_skipped_in_listings(tmp_path):
    store = JsonBillingStore(tmp_path / "data")
    good = store.add_customer(Customer(kind="individual", name="Omar"))
    store.customers.add({"id": "bad", "kind": "alien", "name": "?"})
    assert [c.id for c in store.list_customers()] == [good.id]
    with pytest.raises(PersistenceFailure):
        store.get_customer("bad")


def test_settings_defaults_when_missing(tmp_path):
    settings = load_settings(tmp_path)
    assert settings == BillingSettings()
    assert settings.default_vat_pct == Decimal(5)
    assert settings.high_priority_threshold_fils == 1_000_000


def test_settings_file_overrides(tmp_path):
    (tmp_path / "settings.json").write_text(json.dumps({
        "default_vat_pct": "0",
        "credit_due_days": 45,
        "company": {"name": "Al Noor Typing", "trn": "100200300400003"},
        "unknown_key": True,
    }), encoding="utf-8")
    settings = load_settings(tmp_path)
    assert settings.default_vat_pct == Decimal(0)
    assert settings.credit_due_days == 45
    assert settings.company.trn == "100200300400003"


def test_broken_settings_fall_back(tmp_path):
    (tmp_path / "settings.json").write_text("{", encoding="utf-8")
    assert load_settings(tmp_path) == BillingSettings()


def test_data_dir_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("BILLING_DATA_DIR", str(tmp_path))
    (tmp_path / "settings.json").write_text(json.dumps({"currency": "USD"}), encoding="utf-8")
    assert load_settings().currency == "USD"
    assert JsonBillingStore().data_dir == tmp_path.resolve()
