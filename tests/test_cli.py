import pytest
from typer.testing import CliRunner

from bankrec.cli import app

runner = CliRunner()


@pytest.fixture
def env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("bankrec.app.STORAGE_RETRY_DELAY", 0)
    return {"BANKREC_DATA_DIR": str(tmp_path / "data")}


def _run(env, *args):
    return runner.invoke(app, list(args), env=env)


def test_show_before_onboarding_fails_cleanly(env):
    result = _run(env, "show")
    assert result.exit_code == 1
    assert "bankrec onboard" in result.output


def test_onboard_add_and_show(env):
    result = _run(env, "onboard", "--email", "alex@example.com", "--first-name", "Alex")
    assert result.exit_code == 0, result.output
    assert "Write down your encryption key" in result.output

    result = _run(
        env, "add", "--date", "2024-01-02", "--description", "Pay", "--amount", "100",
        "--type", "credit",
    )
    assert result.exit_code == 0, result.output

    result = _run(env, "show")
    assert result.exit_code == 0, result.output
    assert "Pay" in result.output
    assert "Balance: 100.00" in result.output


def test_invalid_transaction_is_reported(env):
    _run(env, "onboard", "--email", "alex@example.com")
    result = _run(env, "add", "--date", "2024-01-02", "--description", "X", "--amount", "-5")
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_import_csv_preview_then_apply(env, tmp_path):
    _run(env, "onboard", "--email", "alex@example.com")
    statement = tmp_path / "statement.csv"
    statement.write_text("Date,Description,Amount\n01/12/2024,Coffee Shop,-4.50\n", encoding="utf-8")

    preview = _run(env, "import-csv", str(statement))
    assert preview.exit_code == 0, preview.output
    assert "-> new" in preview.output
    assert "Balance: 0.00" in _run(env, "show").output

    applied = _run(env, "import-csv", str(statement), "--accept-best")
    assert applied.exit_code == 0, applied.output
    assert "Created 1, reconciled 0." in applied.output
    assert "Balance: -4.50" in _run(env, "show").output


def test_reconcile_export_and_restore(env, tmp_path):
    _run(env, "onboard", "--email", "alex@example.com")
    _run(env, "add", "--date", "2024-01-02", "--description", "Pay", "--amount", "10", "--type", "credit")
    assert "Reconciled 1 transactions." in _run(env, "reconcile").output

    backup = tmp_path / "ledger.bak"
    result = _run(env, "export", str(backup), "--password", "correct-password-123")
    assert result.exit_code == 0, result.output
    assert backup.exists()

    wrong = _run(env, "restore", str(backup), "--password", "wrong-password")
    assert wrong.exit_code == 1
    assert "Incorrect password or corrupted file" in wrong.output

    ok = _run(env, "restore", str(backup), "--password", "correct-password-123")
    assert ok.exit_code == 0, ok.output
    assert "Balance: 10.00" in _run(env, "show").output
