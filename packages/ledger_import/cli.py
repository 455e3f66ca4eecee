# ruff: noqa: I001
"""CLI for the ``ledger_import`` package.

Command handlers (``cmd_*``) return a process exit code and are wrapped by a
Typer console interface. Environment variables (``DATABASE_URL`` and the
``LEDGER_IMPORT_*`` settings) are loaded from a local ``.env`` using
``python-dotenv`` before any command runs. Business logic lives in
:mod:`ledger_import.api` and the modules it re-exports.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from typer.models import OptionInfo

from .config import ImportSettings, load_settings
from .errors import LedgerImportError, MissingRequiredFieldError
from .ingest.values import format_amount, lookup_recurrence
from .logging_setup import configure_logging
from .models import DraftTransaction, ImportProgress, ScanResult

# ---- Small module-level helpers used by CLI commands -------------------------


def _error(msg: str) -> int:
    print(f"Error: {msg}", file=sys.stderr)
    return 1


def _read_text(path: str) -> str:
    # utf-8-sig drops a BOM written by spreadsheet exports.
    with open(path, encoding="utf-8-sig", newline="") as f:
        return f.read()


def _print_draft(draft: DraftTransaction) -> None:
    category = draft.category or ""
    if draft.sub_category:
        category = f"{category} / {draft.sub_category}"
    flags = []
    if draft.needs_date_verification:
        flags.append("check date")
    if draft.excluded:
        flags.append("excluded")
    suffix = f"  ({', '.join(flags)})" if flags else ""
    print(
        f"  {draft.row_index + 1:>4}  {draft.date}  {format_amount(draft.amount):>12}  "
        f"{draft.descriptor[:40]:<40}  {category}  [{draft.status}]{suffix}"
    )


def _print_candidate(pos: int, c: ScanResult) -> None:
    category = c.category + (f" / {c.sub_category}" if c.sub_category else "")
    print(
        f"{pos:>3}. {c.clean_name}\tcount={c.count}\tavg={format_amount(c.avg_amount)}"
        f"\t{c.recurring_guess}\t{category}\tconfidence={c.confidence:.2f}"
    )


def _progress_printer(update: ImportProgress) -> None:
    if update.stage == "saving" and update.total:
        print(f"\rSaving {update.current}/{update.total}", end="", file=sys.stderr, flush=True)
        if update.current >= update.total:
            print(file=sys.stderr)


def cmd_import_csv(
    csv_path: str,
    *,
    settings: ImportSettings,
    database_url: str | None = None,
    has_header: bool | None = None,
    assume_yes: bool = False,
) -> int:
    """Import a bank export end-to-end and print a summary.

    Flow
    ----
    - Parse the file and map columns automatically (``--header/--no-header``
      overrides header detection).
    - Warn about account names outside ``LEDGER_IMPORT_KNOWN_ACCOUNTS``.
    - Show the preview rows and per-row warnings, then ask for confirmation.
    - Check for possible duplicates; the operator picks which ones to import
      anyway (none with ``--yes``).
    - Save and print the batch summary.

    Errors are written to stderr and a non-zero status is returned.
    """

    from . import api
    from .term_ui import confirm, select_conflicts_to_include

    try:
        text = _read_text(csv_path)
    except FileNotFoundError:
        return _error(f"File not found: {csv_path}")
    except PermissionError:
        return _error(f"Permission denied: {csv_path}")
    except UnicodeDecodeError as e:
        return _error(f"File is not valid UTF-8: {e}")

    session = api.open_session(
        database_url=database_url, settings=settings, on_progress=_progress_printer
    )
    try:
        table = session.parse(text)
        if has_header is not None and has_header != table.has_header:
            session.set_has_header(has_header)

        try:
            unknown = session.check_for_unknown_accounts()
        except MissingRequiredFieldError as e:
            labels = ", ".join(session.table.column_labels()) if session.table else ""
            return _error(f"{e}. Columns found: {labels}")
        if unknown and settings.known_accounts:
            print(f"Warning: unknown account(s): {', '.join(unknown)}", file=sys.stderr)

        preview = session.generate_preview()
        drafts = session.drafts
        print(f"Parsed {len(drafts)} row(s); showing the first {len(preview)}:")
        for draft in preview:
            _print_draft(draft)
        warnings = session.warnings
        if warnings:
            print(f"{len(warnings)} warning(s):")
            for w in warnings:
                print(f"  - {w}")

        if not assume_yes and not confirm(f"Import {len(drafts)} row(s)?"):
            print("Import cancelled.")
            return 0

        check = session.check_duplicates()
        if check.conflicts and not assume_yes:
            session.include_conflicts(select_conflicts_to_include(check.conflicts))

        summary = session.execute()
    except LedgerImportError as e:
        return _error(str(e))

    print(
        f"Imported {summary.inserted} row(s) in batch {summary.batch_id}; "
        f"skipped {summary.skipped_conflicts} possible duplicate(s); "
        f"created {summary.categories_created} categor(y/ies)."
    )
    return 0


def cmd_scan(
    *,
    settings: ImportSettings,
    database_url: str | None = None,
    limit: int = 20,
    interactive: bool = False,
) -> int:
    """Print rule candidates; with ``interactive`` confirm them one by one.

    Each confirmed candidate becomes a rule (pattern and clean name editable,
    category chosen with completion) and may be applied to history.
    """

    from . import api
    from .categories import SqlCategoryStore
    from .store import SqlRecordStore
    from .term_ui import confirm, prompt_text, select_category

    try:
        candidates = api.scan_history(database_url=database_url, settings=settings, limit=limit)
    except LedgerImportError as e:
        return _error(str(e))

    if not candidates:
        print("No rule candidates found.")
        return 0
    for pos, c in enumerate(candidates, start=1):
        _print_candidate(pos, c)
    if not interactive:
        return 0

    repository = api.RuleRepository(SqlRecordStore(database_url))
    try:
        known_categories = SqlCategoryStore(database_url).list_categories()
    except LedgerImportError as e:
        return _error(str(e))

    created = 0
    for c in candidates:
        if not confirm(f"Create a rule for {c.clean_name!r} ({c.count} transactions)?", default=False):
            continue
        pattern = prompt_text("Pattern: ", default=c.clean_name)
        if pattern is None:
            continue
        clean_name = prompt_text("Clean name: ", default=c.clean_name)
        if clean_name is None:
            continue
        category = select_category(known_categories, default=c.category)
        if category is None:
            continue
        sub_category = prompt_text("Sub-category: ", default=c.sub_category, allow_empty=True)
        apply_history = confirm("Apply to existing transactions?", default=True)
        try:
            rule, updated = api.confirm_candidate(
                repository,
                c,
                pattern=pattern,
                clean_name=clean_name,
                category=category,
                sub_category=sub_category or "",
                apply_to_history=apply_history,
                noise_filters=settings.noise_filters,
                batch_size=settings.write_batch_size,
                concurrency=settings.concurrency,
            )
        except LedgerImportError as e:
            return _error(str(e))
        created += 1
        print(f"Created rule {rule.id} ({rule.pattern!r} -> {rule.clean_name}); updated {updated} row(s).")
    print(f"Created {created} rule(s).")
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank CSV exports and categorize them with source rules. "
        "Loads DATABASE_URL and LEDGER_IMPORT_* settings from a local .env."
    ),
)

rules_app = typer.Typer(no_args_is_help=True, help="List and edit source rules.")
app.add_typer(rules_app, name="rules")


# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults). Typer inspects these when used as default values below.
CSV_PATH_OPTION: OptionInfo = typer.Option(
    ...,  # required
    "--csv-path",
    help="Path to the bank export (comma, semicolon, tab or pipe delimited)",
    dir_okay=False,
    file_okay=True,
    exists=False,  # allow non-existent here; the handler reports nice errors
    readable=True,
)

DATABASE_URL_OPTION: OptionInfo = typer.Option(
    None,
    "--database-url",
    help="Override LEDGER_IMPORT_DATABASE_URL / DATABASE_URL.",
)


def _resolve_url(override: str | None) -> str:
    from db.client import resolve_database_url

    try:
        return resolve_database_url(override)
    except RuntimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise typer.Exit(1) from e


def _settings(**overrides: object) -> ImportSettings:
    try:
        return load_settings(**overrides)
    except ValidationError as e:
        print(f"Error: invalid settings: {e}", file=sys.stderr)
        raise typer.Exit(1) from e


@app.command("import-csv")
def import_csv_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    *,
    default_account: str | None = typer.Option(
        None, help="Account used when the file has no account column."
    ),
    date_format: str | None = typer.Option(
        None, help="Date hint: auto, dd-mm-yyyy, mm-dd-yyyy or yyyy-mm-dd."
    ),
    amount_locale: str | None = typer.Option(
        None, help="Amount hint: auto, eu (1.234,56) or us (1,234.56)."
    ),
    trust_csv_categories: bool | None = typer.Option(
        None,
        "--trust-csv-categories/--no-trust-csv-categories",
        help="Keep categories from the file instead of rule categories.",
    ),
    header: bool | None = typer.Option(
        None, "--header/--no-header", help="Override header-row detection."
    ),
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Skip confirmations; possible duplicates are skipped."
    ),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Import a CSV export into the transaction store."""

    settings = _settings(
        default_account=default_account,
        date_format=date_format,
        amount_locale=amount_locale,
        trust_csv_categories=trust_csv_categories,
    )
    database_url = _resolve_url(database_url)
    code = cmd_import_csv(
        str(csv_path),
        settings=settings,
        database_url=database_url,
        has_header=header,
        assume_yes=yes,
    )
    raise typer.Exit(code)


@app.command("scan")
def scan_cmd(
    *,
    limit: int = typer.Option(20, min=1, help="Maximum number of candidates."),
    interactive: bool = typer.Option(
        False, "--interactive", "-i", help="Confirm candidates and create rules."
    ),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Suggest source rules from uncategorized history."""

    database_url = _resolve_url(database_url)
    code = cmd_scan(
        settings=_settings(),
        database_url=database_url,
        limit=limit,
        interactive=interactive,
    )
    raise typer.Exit(code)


@rules_app.command("list")
def rules_list_cmd(database_url: str | None = DATABASE_URL_OPTION) -> None:
    """Print rules as ``<id>\\t<pattern>\\t<clean name>\\t<category>\\t<mode>``."""

    from .rules import RuleRepository
    from .store import SqlRecordStore

    database_url = _resolve_url(database_url)
    try:
        rules = RuleRepository(SqlRecordStore(database_url)).list_rules()
    except LedgerImportError as e:
        raise typer.Exit(_error(str(e))) from e
    for r in rules:
        category = (r.category or "") + (f" / {r.sub_category}" if r.sub_category else "")
        mode = r.match_mode + (" skip-triage" if r.skip_triage else "")
        print(f"{r.id}\t{r.pattern}\t{r.clean_name}\t{category}\t{mode}")


@rules_app.command("add")
def rules_add_cmd(
    pattern: str = typer.Argument(..., help="Raw descriptor pattern."),
    clean_name: str = typer.Argument(..., help="Canonical source name."),
    *,
    category: str | None = typer.Option(None, help="Category to assign."),
    sub_category: str | None = typer.Option(None, help="Sub-category to assign."),
    recurring: str | None = typer.Option(
        None, help="Weekly, Monthly, Quarterly, Bi-annually, Annually, One-off or N/A."
    ),
    exclude: bool = typer.Option(False, "--exclude", help="Exclude matches from budgets."),
    skip_triage: bool = typer.Option(
        False, "--skip-triage", help="Complete matching transactions without review."
    ),
    exact: bool = typer.Option(False, "--exact", help="Disable containment matching."),
    apply_to_history: bool = typer.Option(
        False, "--apply-to-history", help="Update matching stored transactions."
    ),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Create a rule (an existing rule with the same pattern is overwritten)."""

    from .rules import RuleRepository
    from .store import SqlRecordStore

    settings = _settings()
    database_url = _resolve_url(database_url)
    repository = RuleRepository(SqlRecordStore(database_url))
    cadence = None
    if recurring is not None:
        cadence = lookup_recurrence(recurring)
        if cadence is None:
            raise typer.Exit(_error(f"invalid rule: unknown recurrence {recurring!r}"))
    try:
        rule = repository.create_rule(
            pattern,
            clean_name,
            category=category,
            sub_category=sub_category,
            recurring=cadence,
            excluded=exclude,
            skip_triage=skip_triage,
            match_mode="exact" if exact else "fuzzy",
        )
        updated = 0
        if apply_to_history:
            updated = repository.apply_to_history(
                rule,
                noise_filters=settings.noise_filters,
                batch_size=settings.write_batch_size,
                concurrency=settings.concurrency,
            )
    except ValidationError as e:
        raise typer.Exit(_error(f"invalid rule: {e}")) from e
    except LedgerImportError as e:
        raise typer.Exit(_error(str(e))) from e
    print(f"{rule.id}\t{rule.pattern}\t{rule.clean_name}")
    if apply_to_history:
        print(f"Updated {updated} transaction(s).")


@rules_app.command("delete")
def rules_delete_cmd(
    rule_id: str = typer.Argument(..., help="Rule id (see `rules list`)."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Delete a rule by id."""

    from .rules import RuleRepository
    from .store import SqlRecordStore

    database_url = _resolve_url(database_url)
    try:
        deleted = RuleRepository(SqlRecordStore(database_url)).delete_rule(rule_id)
    except LedgerImportError as e:
        raise typer.Exit(_error(str(e))) from e
    if not deleted:
        raise typer.Exit(_error(f"rule not found: {rule_id}"))
    print(f"Deleted rule {rule_id}.")


@rules_app.command("rename")
def rules_rename_cmd(
    old_clean_name: str = typer.Argument(..., help="Current clean name."),
    new_clean_name: str = typer.Argument(..., help="New clean name."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Rename a source group: every rule sharing the clean name is updated."""

    from .rules import RuleRepository
    from .store import SqlRecordStore

    database_url = _resolve_url(database_url)
    try:
        renamed = RuleRepository(SqlRecordStore(database_url)).rename_group(
            old_clean_name, new_clean_name
        )
    except ValueError as e:
        raise typer.Exit(_error(str(e))) from e
    except LedgerImportError as e:
        raise typer.Exit(_error(str(e))) from e
    print(f"Renamed {renamed} rule(s) from {old_clean_name!r} to {new_clean_name!r}.")


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    # Load environment from .env in CWD (override=False to keep existing env)
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Central logging setup so child loggers inherit configuration
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover - exercised via console script
    # Running as a module: `python -m ledger_import.cli`
    app()
