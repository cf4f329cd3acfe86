"""CLI for the ``bank_ledger`` package.

Command handlers (``cmd_*``) return a process exit code and print errors to
stderr; the Typer commands below only parse options and delegate. A local
``.env`` is loaded (without overriding the environment) and logging is
configured once in the root callback.
"""

from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv

from .config import Settings
from .errors import ImportValidationError, RemoteApiError
from .logging_setup import configure_logging

# ---- Small module-level helpers ----------------------------------------------


def _settings(database_url: str | None) -> Settings:
    settings = Settings.from_env()
    if database_url:
        settings = replace(settings, database_url=database_url)
    return settings


def _bank_client(settings: Settings):
    from .persistence import SqlTokenStore
    from .remote import BankDataClient

    return BankDataClient.from_settings(
        settings, token_store=SqlTokenStore(database_url=settings.database_url)
    )


def _read_file(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        print(f"Error: File not found: {path}", file=sys.stderr)
    except PermissionError:
        print(f"Error: Permission denied: {path}", file=sys.stderr)
    return None


# ---- Command handlers ----------------------------------------------------------


def cmd_init_db(*, database_url: str | None = None, seed: bool = True) -> int:
    from db.client import init_schema, session_scope

    from .categories import seed_default_categories
    from .persistence import ensure_cash_account

    url = _settings(database_url).database_url
    try:
        init_schema(database_url=url)
        with session_scope(database_url=url) as session:
            ensure_cash_account(session)
            seeded = seed_default_categories(session) if seed else 0
    except Exception as e:
        print(f"Error: database initialization failed: {e}", file=sys.stderr)
        return 1
    print(f"Schema ready; {seeded} default categories seeded.")
    return 0


def cmd_import_statement(
    path: Path,
    *,
    fmt: str,
    account_id: str,
    currency: str = "BGN",
    database_url: str | None = None,
) -> int:
    from .ingest import import_statement

    content = _read_file(path)
    if content is None:
        return 1
    try:
        summary = import_statement(
            content,
            fmt=fmt,  # type: ignore[arg-type]
            account_id=account_id,
            currency=currency,
            database_url=_settings(database_url).database_url,
        )
    except ImportValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(
        f"Imported {summary.imported}, skipped {summary.skipped} existing, "
        f"auto-categorized {summary.categorized} of {summary.total} transactions."
    )
    if summary.parse_stats is not None and summary.parse_stats.dropped:
        print(f"Dropped rows: {summary.parse_stats.dropped}")
    for err in summary.errors:
        print(f"  failed {err.record_id}: {err.message}", file=sys.stderr)
    return 1 if summary.errors and not (summary.imported or summary.skipped) else 0


def cmd_apply_rules(*, database_url: str | None = None) -> int:
    from .categorization import apply_to_all_uncategorized

    try:
        result = apply_to_all_uncategorized(database_url=_settings(database_url).database_url)
    except Exception as e:
        print(f"Error: applying rules failed: {e}", file=sys.stderr)
        return 1
    print(f"Categorized {result.categorized_count} of {result.total_uncategorized} uncategorized transactions.")
    return 0


def cmd_report(year: int, month: int, *, database_url: str | None = None) -> int:
    from db.client import session_scope

    from .reports import get_monthly_report

    try:
        with session_scope(database_url=_settings(database_url).database_url) as session:
            report = get_monthly_report(session, year, month)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    stats = report.stats
    print(f"{report.start_date} .. {report.end_date}: {stats.count} transactions")
    print(f"  income {stats.income}  expenses {stats.expenses}  net {stats.net}")
    for row in report.categories:
        print(f"  {row.name:<24} {row.totals.count:>5}  {row.totals.net:>12}")
    return 0


def cmd_alias(original_name: str, display_name: str | None, *, database_url: str | None = None) -> int:
    from db.client import session_scope

    from .persistence import create_counterparty_alias, delete_counterparty_alias, get_counterparty_alias

    try:
        with session_scope(database_url=_settings(database_url).database_url) as session:
            if display_name is None:
                row = get_counterparty_alias(session, original_name)
                if row is None or not delete_counterparty_alias(session, row.id):
                    print(f"Error: no alias for {original_name!r}", file=sys.stderr)
                    return 1
                print(f"Alias for {original_name!r} removed.")
                return 0
            create_counterparty_alias(session, original_name, display_name)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"{original_name!r} is shown as {display_name!r}.")
    return 0


def cmd_sync_accounts(*, database_url: str | None = None) -> int:
    from .sync import SyncOrchestrator

    settings = _settings(database_url)
    try:
        with _bank_client(settings) as client:
            result = SyncOrchestrator(client, database_url=settings.database_url).sync_all_accounts()
    except RemoteApiError as e:
        print(f"Error: account sync failed: {e}", file=sys.stderr)
        return 1

    print(f"Synced {len(result.synced_accounts)} accounts.")
    for err in result.errors:
        print(f"  failed {err.account_id}: {err.message}", file=sys.stderr)
    for req in result.dead_requisitions:
        print(f"  requisition {req.requisition_id} is {req.status}; delete and re-link it")
    for req in result.pending_requisitions:
        print(f"  requisition {req.requisition_id} pending ({req.status})")
    return 1 if result.errors and not result.synced_accounts else 0


def cmd_sync_transactions(
    *,
    days_back: int | None = None,
    account_id: str | None = None,
    database_url: str | None = None,
) -> int:
    from .sync import SyncOrchestrator

    settings = _settings(database_url)
    days = settings.sync_days_back if days_back is None else days_back
    try:
        with _bank_client(settings) as client:
            orchestrator = SyncOrchestrator(client, database_url=settings.database_url)
            if account_id:
                count = orchestrator.sync_account_transactions(account_id, days)
                print(f"{account_id}: {count} new transactions.")
                return 0
            summary = orchestrator.sync_all_transactions(days)
    except (RemoteApiError, ValueError) as e:
        print(f"Error: transaction sync failed: {e}", file=sys.stderr)
        return 1

    for r in summary.results:
        if r.error:
            print(f"  {r.account_name}: failed ({r.error})", file=sys.stderr)
        else:
            print(f"  {r.account_name}: {r.count} new")
    print(f"{summary.transactions_synced} new transactions in total.")
    return 0


def cmd_institutions(*, country: str = "BG", database_url: str | None = None) -> int:
    settings = _settings(database_url)
    try:
        with _bank_client(settings) as client:
            institutions = client.list_institutions(country)
    except RemoteApiError as e:
        print(f"Error: listing institutions failed: {e}", file=sys.stderr)
        return 1
    for inst in institutions:
        print(f"{inst.id}\t{inst.name}")
    return 0


def cmd_requisitions(*, database_url: str | None = None) -> int:
    settings = _settings(database_url)
    try:
        with _bank_client(settings) as client:
            requisitions = client.list_requisitions()
    except RemoteApiError as e:
        print(f"Error: listing requisitions failed: {e}", file=sys.stderr)
        return 1
    for req in requisitions:
        print(f"{req.id}\t{req.status}\t{req.institution_id or '-'}\t{len(req.accounts)} accounts")
    return 0


def cmd_link_bank(
    institution_id: str,
    *,
    redirect: str | None = None,
    database_url: str | None = None,
) -> int:
    settings = _settings(database_url)
    try:
        with _bank_client(settings) as client:
            req = client.create_requisition(institution_id, redirect=redirect)
    except RemoteApiError as e:
        print(f"Error: creating requisition failed: {e}", file=sys.stderr)
        return 1
    print(f"Requisition {req.id} created; open this link to authorize access:")
    print(req.link or "(no link returned)")
    return 0


def cmd_delete_requisition(requisition_id: str, *, database_url: str | None = None) -> int:
    settings = _settings(database_url)
    try:
        with _bank_client(settings) as client:
            client.delete_requisition(requisition_id)
    except RemoteApiError as e:
        print(f"Error: deleting requisition failed: {e}", file=sys.stderr)
        return 1
    print(f"Requisition {requisition_id} deleted.")
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank statements, sync accounts from the bank-data API and "
        "categorize transactions. Loads settings from a local .env."
    ),
)

DatabaseUrlOption = Annotated[
    str | None, typer.Option("--database-url", help="Override DATABASE_URL (falls back to env var).")
]
AccountOption = Annotated[str, typer.Option("--account", "-a", help="Target account id.")]
StatementPath = Annotated[Path, typer.Argument(help="Path to the statement file.", dir_okay=False)]


@app.command("init-db")
def init_db_cmd(
    database_url: DatabaseUrlOption = None,
    seed: Annotated[bool, typer.Option(help="Seed default categories and rules.")] = True,
) -> None:
    """Create tables, the cash account and (optionally) default categories."""

    raise typer.Exit(cmd_init_db(database_url=database_url, seed=seed))


@app.command("import-xml")
def import_xml_cmd(
    path: StatementPath,
    account: AccountOption,
    currency: Annotated[str, typer.Option(help="Statement currency.")] = "BGN",
    database_url: DatabaseUrlOption = None,
) -> None:
    """Import an XML account-movements export."""

    raise typer.Exit(
        cmd_import_statement(
            path, fmt="xml", account_id=account, currency=currency, database_url=database_url
        )
    )


@app.command("import-csv")
def import_csv_cmd(
    path: StatementPath,
    account: AccountOption,
    database_url: DatabaseUrlOption = None,
) -> None:
    """Import a CSV statement export."""

    raise typer.Exit(cmd_import_statement(path, fmt="csv", account_id=account, database_url=database_url))


@app.command("apply-rules")
def apply_rules_cmd(database_url: DatabaseUrlOption = None) -> None:
    """Categorize every uncategorized transaction (rules, then counterparty history)."""

    raise typer.Exit(cmd_apply_rules(database_url=database_url))


@app.command("report")
def report_cmd(
    year: Annotated[int, typer.Option(help="Calendar year.")],
    month: Annotated[int, typer.Option(help="Month number (1-12).")],
    database_url: DatabaseUrlOption = None,
) -> None:
    """Print income, expenses and the category breakdown of one month."""

    raise typer.Exit(cmd_report(year, month, database_url=database_url))


@app.command("alias")
def alias_cmd(
    original_name: Annotated[str, typer.Argument(help="Counterparty name as stored.")],
    display_name: Annotated[
        str | None, typer.Argument(help="Name to show instead; omit to remove the alias.")
    ] = None,
    database_url: DatabaseUrlOption = None,
) -> None:
    """Set or remove the display name of a counterparty."""

    raise typer.Exit(cmd_alias(original_name, display_name, database_url=database_url))


@app.command("sync-accounts")
def sync_accounts_cmd(database_url: DatabaseUrlOption = None) -> None:
    """Refresh accounts and balances of every linked requisition."""

    raise typer.Exit(cmd_sync_accounts(database_url=database_url))


@app.command("sync-transactions")
def sync_transactions_cmd(
    days_back: Annotated[
        int | None, typer.Option(help="Lookback window in days (default from settings).")
    ] = None,
    account: Annotated[str | None, typer.Option("--account", "-a", help="Only this account.")] = None,
    database_url: DatabaseUrlOption = None,
) -> None:
    """Fetch booked transactions for all bank accounts (or one)."""

    raise typer.Exit(
        cmd_sync_transactions(days_back=days_back, account_id=account, database_url=database_url)
    )


@app.command("institutions")
def institutions_cmd(
    country: Annotated[str, typer.Option(help="ISO 3166-1 alpha-2 country.")] = "BG",
    database_url: DatabaseUrlOption = None,
) -> None:
    """List institutions supported in a country."""

    raise typer.Exit(cmd_institutions(country=country, database_url=database_url))


@app.command("requisitions")
def requisitions_cmd(database_url: DatabaseUrlOption = None) -> None:
    """List bank links (requisitions) and their status."""

    raise typer.Exit(cmd_requisitions(database_url=database_url))


@app.command("link-bank")
def link_bank_cmd(
    institution_id: Annotated[str, typer.Argument(help="Institution id from `institutions`.")],
    redirect: Annotated[str | None, typer.Option(help="Redirect URL after consent.")] = None,
    database_url: DatabaseUrlOption = None,
) -> None:
    """Create a requisition and print the consent link."""

    raise typer.Exit(cmd_link_bank(institution_id, redirect=redirect, database_url=database_url))


@app.command("delete-requisition")
def delete_requisition_cmd(
    requisition_id: Annotated[str, typer.Argument(help="Requisition id.")],
    database_url: DatabaseUrlOption = None,
) -> None:
    """Delete a requisition (e.g. an expired link)."""

    raise typer.Exit(cmd_delete_requisition(requisition_id, database_url=database_url))


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Load ``.env`` from the working directory and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


__all__ = [
    "app",
    "cmd_alias",
    "cmd_apply_rules",
    "cmd_delete_requisition",
    "cmd_import_statement",
    "cmd_init_db",
    "cmd_institutions",
    "cmd_link_bank",
    "cmd_report",
    "cmd_requisitions",
    "cmd_sync_accounts",
    "cmd_sync_transactions",
]


if __name__ == "__main__":  # pragma: no cover
    app()
