from decimal import Decimal
from pathlib import Path

import pytest

from bankrec.app import STORAGE_ATTEMPTS, STORAGE_RETRY_DELAY, BankRecApp, derive_balance
from bankrec.backup import BackupCodec
from bankrec.config import ConfigManager, Settings
from bankrec.errors import (
    BackupAuthError,
    ImportFailed,
    NotFound,
    StorageUnavailable,
    ValidationError,
)
from bankrec.key_manager import ACCOUNT_NAME, SERVICE_NAME, SecretManager
from bankrec.models import CandidateRecord
from bankrec.store import DEFAULT_CATEGORIES, EncryptedStore
from tests.helpers.ledger import tx

PASSWORD = "correct-password-123"
N_DEFAULT_CATEGORIES = sum(len(v) for v in DEFAULT_CATEGORIES.values())

STATEMENT = """\
Date,Description,Amount
01/11/2024,DEPOSIT ACME,50.00
01/12/2024,Coffee Shop,-4.50
"""


def _snapshot_rows(ctx: BankRecApp) -> set[tuple]:
    snap = ctx.load_all()
    return {(t.id, t.description, t.amount, t.type, t.is_reconciled) for t in snap.transactions}


@pytest.fixture
def onboarded(app_ctx: BankRecApp) -> BankRecApp:
    app_ctx.onboard("alex@example.com", "Alex", "Doe")
    return app_ctx


# ---- storage lifecycle -------------------------------------------------------


def test_storage_without_a_secret_is_unavailable_after_bounded_retries(app_ctx, sleeps):
    with pytest.raises(StorageUnavailable):
        app_ctx.load_all()
    assert sleeps.calls == [STORAGE_RETRY_DELAY] * (STORAGE_ATTEMPTS - 1)
    assert app_ctx.is_open is False


def test_context_manager_closes_the_store(settings, secure_store, sleeps):
    manager = SecretManager.default(settings, secure_store=secure_store)
    manager.store(manager.generate())
    with BankRecApp(settings, manager, ConfigManager(settings), sleep=sleeps) as ctx:
        ctx.open()
        assert ctx.is_open
    assert not ctx.is_open


# ---- onboarding and ledger ---------------------------------------------------


def test_onboard_provisions_secret_user_and_categories(app_ctx, secure_store):
    result = app_ctx.onboard("alex@example.com", "Alex", "Doe")
    assert secure_store.items[(SERVICE_NAME, ACCOUNT_NAME)] == result.secret
    snap = app_ctx.load_all()
    assert snap.user.id == result.user_id
    assert len(snap.categories) == N_DEFAULT_CATEGORIES
    assert snap.transactions == []
    assert snap.balance == Decimal("0.00")
    assert "Salary" in snap.category_names("income")


def test_onboarding_an_existing_email_updates_names(app_ctx):
    first = app_ctx.onboard("alex@example.com", "Alex", "Doe")
    again = app_ctx.onboard("alex@example.com", "Alexandra")
    assert again == first
    user = app_ctx.load_all().user
    assert (user.first_name, user.last_name) == ("Alexandra", "Doe")


def test_invalid_onboarding_provisions_nothing(app_ctx, secure_store):
    with pytest.raises(ValidationError):
        app_ctx.onboard("not-an-email")
    assert secure_store.items == {}


def test_load_all_without_users(app_ctx):
    app_ctx.secret_manager.store(app_ctx.secret_manager.generate())
    assert app_ctx.load_all() is None


def test_balance_adds_credits_and_subtracts_debits(onboarded):
    onboarded.submit_transaction(
        {"date": "2024-01-01", "description": "Pay", "amount": "100", "type": "credit"}
    )
    onboarded.submit_transaction(
        {"date": "2024-01-02", "description": "Food", "amount": "30.25", "type": "debit"}
    )
    assert onboarded.load_all().balance == Decimal("69.75")
    assert derive_balance([tx("a", "2024-01-01", "5", "debit")]) == Decimal("-5.00")


def test_edit_and_remove(onboarded):
    tx_id = onboarded.submit_transaction(
        {"date": "2024-01-01", "description": "Pay", "amount": "100", "type": "credit"}
    )
    assert onboarded.edit_transaction(tx_id, {"amount": "120"}) == 1
    assert onboarded.load_all().balance == Decimal("120.00")
    assert onboarded.remove_transaction(tx_id) == 1
    assert onboarded.remove_transaction(tx_id) == 0


def test_submit_without_a_user_is_not_found(app_ctx):
    app_ctx.secret_manager.store(app_ctx.secret_manager.generate())
    with pytest.raises(NotFound):
        app_ctx.submit_transaction(
            {"date": "2024-01-01", "description": "Pay", "amount": "1", "type": "credit"}
        )


# ---- statement import and reconciliation -------------------------------------


def test_import_reconciles_matches_and_creates_the_rest(onboarded):
    existing = onboarded.submit_transaction(
        {"date": "2024-01-10", "description": "Invoice 12", "amount": "50", "type": "credit"}
    )
    candidates = onboarded.import_csv(STATEMENT)
    assert [c.description for c in candidates] == ["DEPOSIT ACME", "Coffee Shop"]
    assert candidates[0].matches[0].transaction.id == existing
    assert candidates[1].matches == []

    summary = onboarded.confirm_import(candidates)
    assert (summary.created, summary.reconciled, summary.skipped) == (1, 1, 0)

    snap = onboarded.load_all()
    assert len(snap.transactions) == 2
    assert all(t.is_reconciled for t in snap.transactions)
    assert snap.balance == Decimal("45.50")


def test_explicit_choices_and_unselected_rows(onboarded):
    onboarded.submit_transaction(
        {"date": "2024-01-10", "description": "Invoice 12", "amount": "50", "type": "credit"}
    )
    candidates = onboarded.import_csv(STATEMENT)
    candidates[1].selected = False
    summary = onboarded.confirm_import(candidates, [None, None])
    assert (summary.created, summary.reconciled, summary.skipped) == (1, 0, 1)
    assert len(onboarded.load_all().transactions) == 2

    with pytest.raises(ValidationError):
        onboarded.confirm_import(candidates, [None])


def test_choice_pointing_at_a_deleted_transaction_is_skipped(onboarded):
    candidates = onboarded.import_csv(STATEMENT)
    summary = onboarded.confirm_import(candidates, ["gone", None])
    assert (summary.created, summary.reconciled, summary.skipped) == (1, 0, 1)


def test_confirm_import_skips_rows_that_fail_validation(onboarded):
    candidates = onboarded.import_csv(
        "Date,Description,Amount\n"
        "2024-01-01,Good,5.00\n"
        "2024-01-02,\x01\x02,6.00\n"
        "2024-01-03,Also good,7.00\n"
    )
    assert [c.description for c in candidates] == ["Good", "Also good"]

    candidates.insert(
        1,
        CandidateRecord(
            date="2024-01-02", description="\x01\x02", amount=Decimal("6.00"), type="credit"
        ),
    )
    summary = onboarded.confirm_import(candidates)
    assert (summary.created, summary.reconciled, summary.skipped) == (2, 0, 1)
    assert sorted(t.description for t in onboarded.load_all().transactions) == [
        "Also good",
        "Good",
    ]


def test_invalid_candidate_raises_the_package_validation_error():
    bad = CandidateRecord(
        date="2024-01-02", description="\x01", amount=Decimal("6.00"), type="credit"
    )
    with pytest.raises(ValidationError):
        bad.to_new_transaction(1)


def test_reconciliation_review(onboarded):
    ids = [
        onboarded.submit_transaction(
            {"date": f"2024-01-0{d}", "description": "x", "amount": "1", "type": "debit"}
        )
        for d in (1, 2, 3)
    ]
    pending = onboarded.start_reconciliation_review()
    assert {t.id for t in pending} == set(ids)
    assert onboarded.confirm_reconciliation(ids[:2]) == 2
    assert [t.id for t in onboarded.start_reconciliation_review()] == [ids[2]]


# ---- backup, restore and relocation ------------------------------------------


def test_export_import_round_trip(onboarded, tmp_path):
    onboarded.submit_transaction(
        {"date": "2024-01-01", "description": "Pay", "amount": "100", "type": "credit"}
    )
    before = _snapshot_rows(onboarded)
    backup = onboarded.export_store(tmp_path / "ledger.bak", PASSWORD)

    onboarded.submit_transaction(
        {"date": "2024-02-01", "description": "Later", "amount": "5", "type": "debit"}
    )
    onboarded.import_store(backup, PASSWORD)

    assert _snapshot_rows(onboarded) == before
    db_dir = onboarded.config_manager.get_db_dir()
    assert not list(db_dir.glob("*.previous-*"))
    assert not list(db_dir.glob("*.import-*"))


def test_wrong_password_leaves_the_live_store_untouched(onboarded, tmp_path):
    onboarded.submit_transaction(
        {"date": "2024-01-01", "description": "Pay", "amount": "100", "type": "credit"}
    )
    backup = onboarded.export_store(tmp_path / "ledger.bak", PASSWORD)
    before = _snapshot_rows(onboarded)

    with pytest.raises(BackupAuthError) as exc:
        onboarded.import_store(backup, "not-the-password")
    assert str(exc.value) == "Incorrect password or corrupted file"

    assert onboarded.is_open
    assert _snapshot_rows(onboarded) == before
    onboarded.submit_transaction(
        {"date": "2024-01-02", "description": "Still works", "amount": "1", "type": "debit"}
    )


def test_failed_reopen_restores_the_previous_store(onboarded, tmp_path, monkeypatch):
    onboarded.submit_transaction(
        {"date": "2024-01-01", "description": "Pay", "amount": "100", "type": "credit"}
    )
    backup = onboarded.export_store(tmp_path / "ledger.bak", PASSWORD)
    onboarded.submit_transaction(
        {"date": "2024-02-01", "description": "Kept", "amount": "5", "type": "debit"}
    )
    before = _snapshot_rows(onboarded)

    real_open = EncryptedStore.open
    calls = {"n": 0}

    def flaky_open(path, secret, **kwargs):
        calls["n"] += 1
        if calls["n"] <= STORAGE_ATTEMPTS:
            raise OSError("disk went away")
        return real_open(path, secret, **kwargs)

    monkeypatch.setattr(EncryptedStore, "open", staticmethod(flaky_open))
    with pytest.raises(ImportFailed):
        onboarded.import_store(backup, PASSWORD)
    monkeypatch.undo()

    assert onboarded.is_open
    assert _snapshot_rows(onboarded) == before
    assert not list(onboarded.config_manager.get_db_dir().glob("*.previous-*"))


def test_change_db_path_moves_the_store(onboarded, settings, tmp_path):
    tx_id = onboarded.submit_transaction(
        {"date": "2024-01-01", "description": "Pay", "amount": "100", "type": "credit"}
    )
    target = tmp_path / "elsewhere" / "ledger.db"
    assert onboarded.change_db_path(target) == target
    assert onboarded.store.path == target
    assert ConfigManager(settings).get_db_path() == target
    assert [t.id for t in onboarded.load_all().transactions] == [tx_id]


def test_pinned_db_path_cannot_be_changed(tmp_path, secure_store, sleeps):
    settings = Settings(data_dir=tmp_path / "data", db_path=tmp_path / "pinned.db")
    ctx = BankRecApp(
        settings,
        SecretManager.default(settings, secure_store=secure_store),
        ConfigManager(settings),
        BackupCodec(),
        sleep=sleeps,
    )
    with pytest.raises(ValidationError):
        ctx.change_db_path(Path(tmp_path / "other.db"))
