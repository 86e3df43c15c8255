"""Click CLI entry point for the spend command.

Handles argument parsing, config loading, interactive review and error
display. All business logic is delegated to ``parsers``, ``categorizer``,
``session``, ``reconciler`` and ``store``.
"""

from __future__ import annotations

import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

import click

from spend_import import __version__
from spend_import.errors import RuleError, SpendImportError, StoreError
from spend_import.models import Category, MatchSource
from spend_import.parsers import PARSERS

CATEGORY_CHOICES = [c.value for c in Category]


class _DecimalType(click.ParamType):
    name = "amount"

    def convert(self, value, param, ctx):
        if isinstance(value, Decimal):
            return value
        try:
            return Decimal(str(value).strip().lstrip("$").replace(",", ""))
        except InvalidOperation:
            self.fail(f"{value!r} is not a valid amount", param, ctx)


DECIMAL = _DecimalType()


def _configure_logging(verbose: bool, debug: bool) -> None:
    """Set up logging based on verbosity flags."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        force=True,
    )


def _load_config_or_exit(root: Path):
    from spend_import.config import load_config

    try:
        return load_config(root)
    except FileNotFoundError as exc:
        click.echo(
            f"Error: {exc}. Run 'spend init' to create the project configuration.",
            err=True,
        )
        sys.exit(1)
    except SpendImportError as exc:
        click.echo(f"Error loading configuration: {exc}", err=True)
        sys.exit(1)


def _open_store_or_exit(database_url: str):
    from spend_import.store import create_store

    try:
        return create_store(database_url)
    except Exception as exc:
        click.echo(f"Error opening database: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="spend-import")
def cli() -> None:
    """Import bank CSV exports into a categorized spending ledger."""


# ===========================================================================
# init / template
# ===========================================================================


@cli.command()
@click.option(
    "--dir", "target_dir", default=".", type=click.Path(), help="Directory to initialize."
)
def init(target_dir: str) -> None:
    """Create a default spend.toml configuration."""
    from spend_import.config import initialize

    target = Path(target_dir).resolve()

    try:
        config_path = initialize(target)
    except OSError as exc:
        click.echo(f"Error initializing project: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Initialized spend import project in {target} ({config_path.name})")


@cli.command()
@click.option(
    "--output",
    default="import_template.csv",
    type=click.Path(dir_okay=False),
    help="Where to write the template.",
)
def template(output: str) -> None:
    """Write a starter CSV with the expected columns."""
    from spend_import.upload import generate_csv_template

    path = Path(output)
    try:
        path.write_text(generate_csv_template(), encoding="utf-8")
    except OSError as exc:
        click.echo(f"Error writing template: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Wrote CSV template to {path}")


# ===========================================================================
# import
# ===========================================================================


def _review_split(session, index: int) -> None:
    """Prompt for the fragments of a split on row *index*."""
    from spend_import.splits import is_split_valid, split_difference

    parts = click.prompt("  Number of parts", type=click.IntRange(min=2), default=2)
    session.start_split(index)
    while len(session[index].splits) < parts:
        session.add_split(index)

    for i in range(parts):
        row = session[index]
        others = sum((s.amount for j, s in enumerate(row.splits) if j != i), Decimal("0"))
        default = row.splits[i].amount if i < parts - 1 else max(row.amount - others, Decimal("0"))
        amount = click.prompt(f"  Part {i + 1} amount", type=DECIMAL, default=default)
        category = click.prompt(
            f"  Part {i + 1} category",
            type=click.Choice(CATEGORY_CHOICES),
            default=row.splits[i].category.value,
        )
        session.update_split(index, i, amount=amount, category=category)

    row = session[index]
    if not is_split_valid(row):
        click.echo(
            f"  Split is off by ${split_difference(row)}; this row will not be imported.",
            err=True,
        )


def _review(session) -> None:
    """Prompt for a category for every row no rule or bank category covered."""
    from spend_import.categorizer import rule_keyword

    for index, row in enumerate(session.rows):
        if row.source is not MatchSource.DEFAULT:
            continue
        txn = row.transaction
        click.echo(
            f"{txn.date.isoformat()}  {txn.merchant}  ${txn.amount:,.2f}"
            f"  [{txn.bank_category or 'no bank category'}]"
        )
        choice = click.prompt(
            "  Category (or 'split')",
            type=click.Choice([*CATEGORY_CHOICES, "split"]),
            default=row.category.value,
            show_choices=False,
        )
        if choice == "split":
            _review_split(session, index)
            continue
        session.set_category(index, choice)
        keyword = rule_keyword(txn.merchant)
        if keyword and click.confirm(f"  Save rule {keyword} -> {choice}?", default=False):
            session.set_save_rule(index)


@cli.command(name="import")
@click.argument("csv_file", type=click.Path(dir_okay=False))
@click.option("--parser", "parser_name", type=click.Choice(sorted(PARSERS)), help="Override the configured parser.")
@click.option("--review", is_flag=True, default=False, help="Choose categories for unmatched rows.")
@click.option(
    "--save-rules", is_flag=True, default=False, help="Save keyword rules for auto-mapped rows."
)
@click.option("--preview", type=click.Path(dir_okay=False), help="Write the ledger entries to a CSV.")
@click.option("--dry-run", is_flag=True, default=False, help="Parse and categorize only.")
@click.option("--yes", "-y", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.option("--verbose", is_flag=True, default=False, help="Detailed progress output.")
@click.option("--debug", is_flag=True, default=False, help="Developer-level diagnostics.")
def import_(
    csv_file: str,
    parser_name: str | None,
    review: bool,
    save_rules: bool,
    preview: str | None,
    dry_run: bool,
    yes: bool,
    verbose: bool,
    debug: bool,
) -> None:
    """Import a bank CSV export into the ledger."""
    _configure_logging(verbose, debug)
    root = Path.cwd()
    config = _load_config_or_exit(root)

    from spend_import.parsers import get_parser
    from spend_import.upload import read_csv_file, validate_csv_file

    path = Path(csv_file)
    check = validate_csv_file(path, config.max_file_size)
    if not check.valid:
        click.echo(f"Error: {check.error}", err=True)
        sys.exit(1)

    try:
        text = read_csv_file(path)
    except (OSError, UnicodeDecodeError) as exc:
        click.echo(f"Error reading {path}: {exc}", err=True)
        sys.exit(1)

    parse_result = get_parser(parser_name or config.parser)(text)
    if not parse_result.transactions:
        for e in parse_result.errors:
            click.echo(f"Error: {e}", err=True)
        click.echo(f"No transactions to import ({parse_result.skipped} skipped).")
        sys.exit(1 if parse_result.errors else 0)

    store = _open_store_or_exit(config.database_url)
    try:
        rules = store.list_rules(config.user)
    except StoreError as exc:
        click.echo(f"Error loading rules: {exc}", err=True)
        sys.exit(1)

    from spend_import.report import print_import_summary, print_review_summary, write_preview
    from spend_import.session import ImportSession

    session = ImportSession(parse_result, rules)
    if save_rules:
        for index, row in enumerate(session.rows):
            if row.source is MatchSource.BANK:
                session.set_save_rule(index)

    if review:
        _review(session)

    print_review_summary(path.name, parse_result, session.rows, session.summary())

    ready = session.ready_rows()
    held_back = len(session.blocked_rows())

    if preview:
        written = write_preview(ready, preview)
        if verbose:
            click.echo(f"Wrote preview to {written}")

    if dry_run:
        click.echo("Dry run: nothing was imported.")
        return

    if not yes and not click.confirm(f"Import {len(ready)} transaction(s)?", default=True):
        click.echo("Import cancelled.")
        return

    from spend_import.reconciler import reconcile

    try:
        result = reconcile(store, config.user, ready)
    except SpendImportError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    print_import_summary(result, held_back=held_back)

    if not result.fully_succeeded:
        click.echo(
            f"Warning: transactions were imported but rules were not saved: {result.rule_error}",
            err=True,
        )
        sys.exit(1)


# ===========================================================================
# rules
# ===========================================================================


@cli.group()
def rules() -> None:
    """Manage keyword-to-category rules."""


@rules.command(name="list")
def list_rules() -> None:
    """List rules, sorted by keyword."""
    config = _load_config_or_exit(Path.cwd())
    store = _open_store_or_exit(config.database_url)
    try:
        found = store.list_rules(config.user)
    except StoreError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    if not found:
        click.echo("No rules defined.")
        return
    for rule in found:
        click.echo(f"  {rule.keyword:<24} -> {rule.category.value} ({rule.template.value})")


@rules.command(name="add")
@click.argument("keyword")
@click.argument("category", type=click.Choice(CATEGORY_CHOICES))
def add_rule(keyword: str, category: str) -> None:
    """Add a rule: merchants containing KEYWORD go to CATEGORY."""
    from spend_import.categorizer import new_rule

    config = _load_config_or_exit(Path.cwd())
    store = _open_store_or_exit(config.database_url)
    try:
        rule = store.add_rule(config.user, new_rule(keyword, category))
    except SpendImportError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Added rule {rule.keyword} -> {rule.category.value} ({rule.template.value})")


@rules.command(name="edit")
@click.argument("keyword")
@click.argument("category", type=click.Choice(CATEGORY_CHOICES))
def edit_rule(keyword: str, category: str) -> None:
    """Change the category of an existing rule."""
    config = _load_config_or_exit(Path.cwd())
    store = _open_store_or_exit(config.database_url)
    try:
        rule = store.update_rule(config.user, keyword, Category(category))
    except SpendImportError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Updated rule {rule.keyword} -> {rule.category.value} ({rule.template.value})")


@rules.command(name="delete")
@click.argument("keyword")
@click.option("--yes", "-y", is_flag=True, default=False, help="Do not ask for confirmation.")
def delete_rule(keyword: str, yes: bool) -> None:
    """Delete the rule for KEYWORD."""
    config = _load_config_or_exit(Path.cwd())
    if not yes and not click.confirm(f"Delete rule {keyword.upper()}?", default=False):
        click.echo("Cancelled.")
        return
    store = _open_store_or_exit(config.database_url)
    try:
        deleted = store.delete_rule(config.user, keyword)
    except StoreError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    if not deleted:
        click.echo(f"Error: no rule for {keyword.upper()!r}", err=True)
        sys.exit(1)
    click.echo(f"Deleted rule {keyword.upper()}")


@rules.command(name="export")
@click.argument("path", type=click.Path(dir_okay=False))
def export_rules(path: str) -> None:
    """Write all rules to a TOML file."""
    from spend_import.config import save_rules_file

    config = _load_config_or_exit(Path.cwd())
    store = _open_store_or_exit(config.database_url)
    try:
        found = store.list_rules(config.user)
        save_rules_file(Path(path), found)
    except (StoreError, OSError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Exported {len(found)} rule(s) to {path}")


@rules.command(name="load")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def load_rules(path: str) -> None:
    """Add rules from a TOML file; keywords that already exist are kept."""
    from spend_import.config import load_rules_file

    config = _load_config_or_exit(Path.cwd())
    try:
        loaded = load_rules_file(Path(path))
    except RuleError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    except Exception as exc:
        click.echo(f"Error reading {path}: {exc}", err=True)
        sys.exit(1)

    store = _open_store_or_exit(config.database_url)
    try:
        added = store.insert_rules_if_absent(config.user, loaded)
    except StoreError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Loaded {added} new rule(s) of {len(loaded)} in {path}")
