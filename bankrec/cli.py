"""Typer console interface over :class:`bankrec.app.BankRecApp`.

The root callback loads a local ``.env`` with ``python-dotenv`` (without
overriding variables already set) and configures logging before any command
runs. Commands print user-safe messages; crypto and storage failures are
reported generically and the detail goes to the log.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .app import BankRecApp
from .errors import BankRecError, CryptoFailure, StorageUnavailable
from .key_manager import SecretManager
from .logging_setup import configure_logging
from .matching import default_choice

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Encrypted personal ledger: import bank statements and reconcile them.",
)

# Module-level option objects (ruff B008).
PASSWORD_OPTION: OptionInfo = typer.Option(
    "--password", prompt=True, hide_input=True, help="Backup password."
)
USER_OPTION: OptionInfo = typer.Option("--user-id", help="Defaults to the primary user.")


def _build_app() -> BankRecApp:
    return BankRecApp.create()


def _fail(message: str) -> typer.Exit:
    print(f"Error: {message}", file=sys.stderr)
    return typer.Exit(1)


def _report(exc: BankRecError) -> typer.Exit:
    if isinstance(exc, StorageUnavailable):
        return _fail("storage is not available. Run `bankrec onboard` first.")
    if isinstance(exc, CryptoFailure):
        return _fail(str(exc) or "could not decrypt data")
    return _fail(str(exc))


@app.command("onboard")
def onboard_cmd(
    email: Annotated[str, typer.Option("--email", help="Primary user's email.")],
    first_name: Annotated[str | None, typer.Option("--first-name")] = None,
    last_name: Annotated[str | None, typer.Option("--last-name")] = None,
) -> None:
    """Create the primary user and print the recovery secret."""

    with _build_app() as ctx:
        try:
            result = ctx.onboard(email, first_name, last_name)
        except BankRecError as exc:
            raise _report(exc) from exc
    print(f"User {result.user_id} ready.")
    print("Write down your encryption key and keep it safe:")
    print(SecretManager.format_for_display(result.secret))


@app.command("show")
def show_cmd(user_id: Annotated[int | None, USER_OPTION] = None) -> None:
    """Print the ledger with its derived balance."""

    with _build_app() as ctx:
        try:
            snapshot = ctx.load_all(user_id)
        except BankRecError as exc:
            raise _report(exc) from exc
    if snapshot is None:
        print("No user found. Run `bankrec onboard` first.")
        return
    for tx in snapshot.transactions:
        mark = "R" if tx.is_reconciled else " "
        description = tx.description if tx.description is not None else "<unreadable>"
        print(f"{tx.date}  {mark}  {tx.signed_amount:>14}  {description}  [{tx.id}]")
    print(f"Balance: {snapshot.balance}")


@app.command("add")
def add_cmd(
    date: Annotated[str, typer.Option("--date", help="YYYY-MM-DD")],
    description: Annotated[str, typer.Option("--description")],
    amount: Annotated[str, typer.Option("--amount", help="Non-negative amount.")],
    type_: Annotated[str, typer.Option("--type", help="debit or credit")] = "debit",
    category: Annotated[str | None, typer.Option("--category")] = None,
    check_number: Annotated[str | None, typer.Option("--check-number")] = None,
) -> None:
    """Record a transaction for the primary user."""

    record = {
        "date": date,
        "description": description,
        "amount": amount,
        "type": type_,
        "category": category,
        "check_number": check_number,
    }
    with _build_app() as ctx:
        try:
            tx_id = ctx.submit_transaction(record)
        except BankRecError as exc:
            raise _report(exc) from exc
    print(tx_id)


@app.command("import-csv")
def import_csv_cmd(
    csv_path: Annotated[
        Path, typer.Argument(dir_okay=False, file_okay=True, help="Bank statement CSV.")
    ],
    accept_best: Annotated[
        bool,
        typer.Option(
            "--accept-best",
            help="Reconcile against the top unreconciled match instead of only previewing.",
        ),
    ] = False,
) -> None:
    """Preview a statement's matches, or apply them with ``--accept-best``."""

    try:
        raw_text = csv_path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise _fail(f"could not read {csv_path}: {exc.strerror}") from exc

    with _build_app() as ctx:
        try:
            candidates = ctx.import_csv(raw_text)
            for c in candidates:
                choice = default_choice(c)
                target = f"match {choice}" if choice else "new"
                print(f"{c.date}  {c.type:<6}  {c.amount:>12}  {c.description}  -> {target}")
            if not accept_best:
                print(f"{len(candidates)} rows parsed; rerun with --accept-best to apply.")
                return
            summary = ctx.confirm_import(candidates)
        except BankRecError as exc:
            raise _report(exc) from exc
    print(f"Created {summary.created}, reconciled {summary.reconciled}.")


@app.command("reconcile")
def reconcile_cmd(user_id: Annotated[int | None, USER_OPTION] = None) -> None:
    """Mark every unreconciled transaction as reconciled."""

    with _build_app() as ctx:
        try:
            pending = ctx.start_reconciliation_review(user_id)
            count = ctx.confirm_reconciliation(tx.id for tx in pending)
        except BankRecError as exc:
            raise _report(exc) from exc
    print(f"Reconciled {count} transactions.")


@app.command("export")
def export_cmd(
    dest: Annotated[Path, typer.Argument(help="Backup file to write.")],
    password: Annotated[str, PASSWORD_OPTION],
) -> None:
    """Write a password-protected backup of the whole store."""

    with _build_app() as ctx:
        try:
            written = ctx.export_store(dest, password)
        except BankRecError as exc:
            raise _report(exc) from exc
    print(f"Backup written to {written}")


@app.command("restore")
def restore_cmd(
    source: Annotated[Path, typer.Argument(help="Backup file to restore.")],
    password: Annotated[str, PASSWORD_OPTION],
) -> None:
    """Replace the current store with a backup."""

    with _build_app() as ctx:
        try:
            ctx.import_store(source, password)
        except BankRecError as exc:
            raise _report(exc) from exc
    print("Store restored.")


@app.command("move-db")
def move_db_cmd(new_path: Annotated[Path, typer.Argument(help="New database file.")]) -> None:
    """Copy the database to a new location and use it from now on."""

    with _build_app() as ctx:
        try:
            moved = ctx.change_db_path(new_path)
        except BankRecError as exc:
            raise _report(exc) from exc
    print(f"Database now at {moved}")


@app.callback()
def _root() -> None:
    """Load ``.env`` from the working directory and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    app()
