# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Command-Line Interface (CLI) for SMB DRE.

This module wires together the main building blocks of SMB DRE:

- global configuration (database, default company, metrics and display
  options, logging),
- companies, categories, clients and transactions stored in SQLite,
- the statement, metrics, markup, goals and scenario services,
- the cash vault ledger,
- view helpers (tabular rendering and CSV export).

The CLI is intentionally thin: it does not implement financial logic
itself. It parses arguments, calls the services and renders the returned
DataFrames as console tables and/or CSV files.


Commands
--------

- ``init``: create the database schema.
- ``company create|show|list``: manage companies.
- ``tax show|set``: inspect or change the tax configuration of a company.
- ``category add|list``, ``client add|list``: reference data.
- ``transactions import CSV|add|list|delete``: transactions.
- ``dre``: income statement of a month, optionally filtered by category or
  client, optionally compared with the previous month or the same month of
  the previous year.
- ``metrics``: derived metrics; ``--recalculate`` refreshes the cache.
- ``markup``: suggested price from categories tagged with a markup type.
- ``simulate``: what-if scenario on top of the statement of a month.
- ``history``: statement lines over the trailing months.
- ``goals set|show``: monthly goals vs actuals.
- ``cash balances|deposit|transfer|list|delete|tags``: cash vaults.

Examples:

    python -m smb_dre.cli company create --name "Acme" --regime simples_nacional
    python -m smb_dre.cli --company 1 transactions import data/input/march.csv
    python -m smb_dre.cli --company 1 dre --month 3 --year 2025 --compare previous-month
    python -m smb_dre.cli --company 1 cash transfer --from main_balance \\
        --to emergency_reserve --amount 1000


Display modes
-------------
``table`` prints results to stdout, ``csv`` writes timestamped CSV files to
the output directory (``data/output`` by default), ``both`` does both.
The default comes from ``[display].mode`` and can be overridden with
``--display-mode``.

User errors (invalid input, unknown company, insufficient balance) end the
program with a message and a non-zero exit status.
"""

import argparse
import logging
from dataclasses import fields, replace
from datetime import date, datetime
from pathlib import Path
from typing import Optional, Sequence

import pandas as pd

from . import __version__
from .config import DISPLAY_MODES, LOG_LEVELS, AppConfig, load_app_config
from .db import (
    CATEGORY_TYPES,
    COST_CLASSIFICATIONS,
    MARKUP_TYPES,
    TRANSACTION_TYPES,
    DatabaseConfig,
    NewTransaction,
    delete_transaction,
    get_tax_configuration,
    import_transactions,
    init_database,
    insert_category,
    insert_client,
    insert_transaction,
    list_companies,
    load_categories,
    load_clients,
    load_transactions,
    require_company,
    save_tax_configuration,
    set_category_markup_type,
)
from .errors import NotFound, ValidationError
from .goals import GOAL_METRICS
from .io import read_transactions
from .ledger import (
    MAIN_VAULT,
    VAULT_TYPES,
    create_tag,
    delete_cash_transaction,
    delete_tag,
    deposit,
    list_cash_transactions,
    list_tags,
    transfer,
)
from .multi_periods import build_comparison, compute_dre_history
from .periods import COMPARISON_MODES, Period, last_n_months, month_period
from .reports_service import (
    build_cash_balances,
    build_dre_report,
    build_goal_report,
    build_markup_report,
    build_metrics_report,
    build_scenario_report,
    get_cached_metrics,
    recalculate_and_cache,
    register_company,
    set_goal,
)
from .scenarios import ScenarioAdjustments
from .taxes import RATE_FIELDS, TAX_REGIMES, TaxConfiguration, validate_tax_configuration
from .views import (
    balances_to_dataframe,
    comparison_to_dataframe,
    goals_to_dataframe,
    history_to_wide,
    margins_to_dataframe,
    markup_to_dataframe,
    metrics_to_dataframe,
    scenario_to_dataframe,
    statement_to_dataframe,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "smb_dre_config.toml"
DEFAULT_DB_PATH = "data/db/smb_dre.sqlite"
DEFAULT_OUTPUT_DIR = "data/output"

# (title, file stem, table)
Table = tuple[str, str, pd.DataFrame]


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _add_month_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--month", type=int, help="Month (1-12). Defaults to the current month.")
    p.add_argument("--year", type=int, help="Year. Defaults to the current year.")


def _build_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    ap = argparse.ArgumentParser(
        prog="python -m smb_dre.cli",
        description=(
            "SMB DRE - Income statement & cash management engine for SMBs. "
            "Aggregates transactions into the monthly income statement (DRE), "
            "computes management metrics and manages cash vaults."
        ),
    )

    # Generic options
    ap.add_argument(
        "--version",
        action="store_true",
        help="Show the installed version of smb_dre and exit.",
    )
    ap.add_argument(
        "--config",
        dest="config_path",
        help=(
            "Path to the main TOML configuration file. If omitted, "
            f"'{DEFAULT_CONFIG_FILE}' in the current directory is used when present."
        ),
    )
    ap.add_argument(
        "--company",
        dest="company_id",
        type=int,
        help="Company id. Defaults to [company].default_id from the configuration.",
    )
    ap.add_argument(
        "--log-level",
        dest="log_level",
        choices=LOG_LEVELS,
        help="Override [logging].level from the configuration.",
    )
    ap.add_argument(
        "--display-mode",
        dest="display_mode",
        choices=DISPLAY_MODES,
        help=(
            "Override the display.mode setting from the configuration file. "
            "'table' prints results to stdout, 'csv' writes CSV files only, "
            "'both' does both."
        ),
    )
    ap.add_argument(
        "--output",
        dest="output_dir",
        help=(
            "Output directory where CSV files will be written when display "
            f"mode includes 'csv'. If omitted, '{DEFAULT_OUTPUT_DIR}' is used."
        ),
    )

    subparsers = ap.add_subparsers(dest="command", metavar="command")

    # init
    subparsers.add_parser("init", help="Create the database schema if needed.")

    # company
    company = subparsers.add_parser("company", help="Manage companies.")
    company_sub = company.add_subparsers(dest="company_command", metavar="subcommand")
    company_create = company_sub.add_parser("create", help="Create a company.")
    company_create.add_argument("--name", required=True)
    company_create.add_argument("--regime", required=True, choices=TAX_REGIMES)
    company_create.add_argument("--tax-id", dest="tax_id")
    company_create.add_argument("--business-category", dest="business_category")
    company_sub.add_parser("show", help="Show the selected company.")
    company_sub.add_parser("list", help="List every company.")

    # tax
    tax = subparsers.add_parser("tax", help="Tax configuration of the company.")
    tax_sub = tax.add_subparsers(dest="tax_command", metavar="subcommand")
    tax_sub.add_parser("show", help="Show the tax configuration.")
    tax_set = tax_sub.add_parser(
        "set", help="Change tax rates (fractions, e.g. 0.06 for 6%%)."
    )
    for name in RATE_FIELDS:
        tax_set.add_argument(f"--{name.replace('_', '-')}", dest=name, type=float)
    tax_set.add_argument(
        "--irpj-additional-threshold", dest="irpj_additional_threshold", type=float
    )
    tax_set.add_argument("--use-das", dest="use_das", choices=["yes", "no"])

    # category
    category = subparsers.add_parser("category", help="Manage categories.")
    category_sub = category.add_subparsers(dest="category_command", metavar="subcommand")
    category_add = category_sub.add_parser("add", help="Add a category.")
    category_add.add_argument("--name", required=True)
    category_add.add_argument("--type", dest="category_type", required=True, choices=CATEGORY_TYPES)
    category_add.add_argument("--classification", choices=COST_CLASSIFICATIONS)
    category_add.add_argument("--parent", dest="parent_id", type=int)
    category_add.add_argument("--markup-type", dest="markup_type", choices=MARKUP_TYPES)
    category_add.add_argument(
        "--financial",
        action="store_true",
        help="Financial income (revenue) or financial expense (expense).",
    )
    category_sub.add_parser("list", help="List categories.")
    category_markup = category_sub.add_parser(
        "markup", help="Set or clear the markup type of a category."
    )
    category_markup.add_argument("category_id", type=int)
    category_markup.add_argument("--markup-type", dest="markup_type", choices=MARKUP_TYPES)

    # client
    client = subparsers.add_parser("client", help="Manage clients.")
    client_sub = client.add_subparsers(dest="client_command", metavar="subcommand")
    client_add = client_sub.add_parser("add", help="Add a client.")
    client_add.add_argument("--name", required=True)
    client_add.add_argument("--email")
    client_add.add_argument("--phone")
    client_add.add_argument("--tax-id", dest="tax_id")
    client_add.add_argument("--first-purchase", dest="first_purchase")
    client_sub.add_parser("list", help="List clients.")

    # transactions
    transactions = subparsers.add_parser("transactions", help="Manage transactions.")
    tx_sub = transactions.add_subparsers(dest="transactions_command", metavar="subcommand")
    tx_import = tx_sub.add_parser("import", help="Import transactions from a CSV file.")
    tx_import.add_argument("csv_path")
    tx_add = tx_sub.add_parser("add", help="Record one transaction.")
    tx_add.add_argument("--date", dest="tx_date", required=True, help="YYYY-MM-DD")
    tx_add.add_argument("--amount", type=float, required=True)
    tx_add.add_argument("--category", dest="category_id", type=int)
    tx_add.add_argument("--client", dest="client_id", type=int)
    tx_add.add_argument("--description", default="")
    tx_add.add_argument(
        "--type", dest="transaction_type", choices=TRANSACTION_TYPES, default="operational"
    )
    tx_add.add_argument("--new-client", dest="is_new_client", action="store_true")
    tx_add.add_argument("--marketing", dest="is_marketing_cost", action="store_true")
    tx_add.add_argument("--sales", dest="is_sales_cost", action="store_true")
    tx_list = tx_sub.add_parser("list", help="List the transactions of a month.")
    _add_month_args(tx_list)
    tx_delete = tx_sub.add_parser("delete", help="Delete a transaction.")
    tx_delete.add_argument("transaction_id", type=int)

    # dre
    dre = subparsers.add_parser("dre", help="Income statement of a month.")
    _add_month_args(dre)
    dre.add_argument("--category", dest="category_id", type=int)
    dre.add_argument("--client", dest="client_id", type=int)
    dre.add_argument("--compare", choices=COMPARISON_MODES)

    # metrics
    metrics = subparsers.add_parser("metrics", help="Derived metrics of a month.")
    _add_month_args(metrics)
    metrics.add_argument(
        "--recalculate",
        action="store_true",
        help="Recompute the metrics and overwrite the cached snapshot.",
    )
    metrics.add_argument(
        "--cached", action="store_true", help="Show the cached snapshot only."
    )

    # markup
    markup = subparsers.add_parser("markup", help="Markup and suggested price.")
    _add_month_args(markup)
    markup.add_argument(
        "--margin",
        type=float,
        help="Desired margin in percent. Defaults to [metrics].desired_margin_pct.",
    )

    # simulate
    simulate = subparsers.add_parser("simulate", help="What-if scenario.")
    _add_month_args(simulate)
    simulate.add_argument("--revenue", type=float, default=0.0, help="Revenue change in %%.")
    simulate.add_argument("--cogs", type=float, default=0.0, help="COGS change in %%.")
    simulate.add_argument("--opex", type=float, default=0.0, help="Opex change in %%.")
    simulate.add_argument(
        "--financial", type=float, default=0.0, help="Financial expenses change in %%."
    )

    # history
    history = subparsers.add_parser("history", help="Statement over the trailing months.")
    _add_month_args(history)
    history.add_argument("--months", type=int, default=12)

    # goals
    goals = subparsers.add_parser("goals", help="Monthly goals.")
    goals_sub = goals.add_subparsers(dest="goals_command", metavar="subcommand")
    goals_set = goals_sub.add_parser("set", help="Set the goal of a metric.")
    goals_set.add_argument("--metric", required=True, choices=list(GOAL_METRICS))
    goals_set.add_argument("--target", type=float, required=True)
    _add_month_args(goals_set)
    goals_show = goals_sub.add_parser("show", help="Compare goals with actuals.")
    _add_month_args(goals_show)

    # cash
    cash = subparsers.add_parser("cash", help="Cash vaults.")
    cash_sub = cash.add_subparsers(dest="cash_command", metavar="subcommand")
    cash_balances = cash_sub.add_parser("balances", help="Vault balances.")
    _add_month_args(cash_balances)
    cash_deposit = cash_sub.add_parser("deposit", help="Money entering a vault.")
    cash_deposit.add_argument("--amount", type=float, required=True)
    cash_deposit.add_argument("--vault", choices=VAULT_TYPES, default=MAIN_VAULT)
    cash_deposit.add_argument("--description", default="")
    cash_deposit.add_argument("--tag", dest="tags", action="append")
    cash_transfer = cash_sub.add_parser("transfer", help="Transfer between vaults.")
    cash_transfer.add_argument("--from", dest="from_vault", required=True, choices=VAULT_TYPES)
    cash_transfer.add_argument("--to", dest="to_vault", required=True, choices=VAULT_TYPES)
    cash_transfer.add_argument("--amount", type=float, required=True)
    cash_transfer.add_argument("--description", default="")
    cash_transfer.add_argument("--tag", dest="tags", action="append")
    cash_list = cash_sub.add_parser("list", help="List ledger rows.")
    cash_list.add_argument("--vault", choices=VAULT_TYPES)
    cash_list.add_argument("--tag")
    cash_list.add_argument("--from-date", dest="from_date")
    cash_list.add_argument("--to-date", dest="to_date")
    cash_list.add_argument("--include-deleted", dest="include_deleted", action="store_true")
    cash_delete = cash_sub.add_parser("delete", help="Reverse and delete a ledger row.")
    cash_delete.add_argument("transaction_id", type=int)
    cash_delete.add_argument("--reason")
    cash_tags = cash_sub.add_parser("tags", help="Manage cash tags.")
    tags_sub = cash_tags.add_subparsers(dest="tags_command", metavar="subcommand")
    tags_add = tags_sub.add_parser("add", help="Create a tag.")
    tags_add.add_argument("--name", required=True)
    tags_add.add_argument("--color", default="#6366f1")
    tags_sub.add_parser("list", help="List tags.")
    tags_delete = tags_sub.add_parser("delete", help="Delete a tag.")
    tags_delete.add_argument("tag_id", type=int)

    return ap


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_config(args: argparse.Namespace) -> AppConfig:
    """
    Load the configuration file, or fall back to defaults when no file is
    given and the default file does not exist.
    """
    if args.config_path:
        return load_app_config(args.config_path)
    if Path(DEFAULT_CONFIG_FILE).is_file():
        return load_app_config()
    return AppConfig(database=DatabaseConfig(engine="sqlite", path=Path(DEFAULT_DB_PATH).resolve()))


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )


def _parse_optional_date(value: Optional[str]) -> Optional[date]:
    """
    Parse an optional CLI date argument (YYYY-MM-DD).

    Raises
    ------
    SystemExit
        If the date format is invalid.
    """
    if value is None:
        return None

    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        msg = f"Invalid date format: {value!r}. Expected YYYY-MM-DD."
        raise SystemExit(msg) from exc


def _resolve_period(args: argparse.Namespace) -> Period:
    """Month selected by --month/--year, defaulting to the current month."""
    today = datetime.today().date()
    month = args.month if args.month is not None else today.month
    year = args.year if args.year is not None else today.year
    return month_period(month, year)


def _resolve_company(
    parser: argparse.ArgumentParser, args: argparse.Namespace, config: AppConfig
) -> int:
    company_id = args.company_id if args.company_id is not None else config.default_company_id
    if company_id is None:
        parser.error(
            "No company selected. Use --company or set [company].default_id "
            "in the configuration."
        )
    require_company(config.database, company_id)
    return company_id


def _render(tables: list[Table], display_mode: str, output_dir: Path) -> None:
    """Print tables and/or write them as timestamped CSV files."""
    if display_mode in {"table", "both"}:
        for title, _, df in tables:
            print()
            print(f"=== {title} ===")
            if df.empty:
                print("(no rows)")
            else:
                print(df.to_string(index=False))

    if display_mode in {"csv", "both"}:
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d-%H-%M-%S")
        for _, stem, df in tables:
            path = output_dir / f"{stem}_{timestamp}.csv"
            df.to_csv(path, index=False)
            print(f"Wrote {path} ({len(df)} rows)")


def _tax_config_to_dataframe(tax_config: TaxConfiguration) -> pd.DataFrame:
    rows = [{"field": f.name, "value": getattr(tax_config, f.name)} for f in fields(tax_config)]
    return pd.DataFrame(rows, columns=["field", "value"])


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _handle_company(args, parser, config) -> list[Table]:
    subcmd = args.company_command
    if subcmd == "create":
        company = register_company(
            config,
            args.name,
            args.regime,
            tax_id=args.tax_id,
            business_category=args.business_category,
        )
        print(f"Created company #{company.id}: {company.name} ({company.tax_regime})")
        return []

    if subcmd == "list":
        companies = list_companies(config.database)
        df = pd.DataFrame(
            [(c.id, c.name, c.tax_id, c.tax_regime, c.business_category) for c in companies],
            columns=["id", "name", "tax_id", "tax_regime", "business_category"],
        )
        return [("Companies", "companies", df)]

    if subcmd == "show":
        company_id = _resolve_company(parser, args, config)
        company = require_company(config.database, company_id)
        print(f"Company #{company.id}: {company.name}")
        print(f"  tax_id:            {company.tax_id or ''}")
        print(f"  tax_regime:        {company.tax_regime}")
        print(f"  fiscal_period:     {company.fiscal_period}")
        print(f"  business_category: {company.business_category or ''}")
        print(f"  created_at:        {company.created_at.isoformat()}")
        return []

    parser.error("Missing company subcommand: create, show or list.")
    return []


def _handle_tax(args, parser, config, company_id: int) -> list[Table]:
    tax_config = get_tax_configuration(config.database, company_id)

    if args.tax_command == "set":
        changes = {
            name: getattr(args, name)
            for name in (*RATE_FIELDS, "irpj_additional_threshold")
            if getattr(args, name) is not None
        }
        if args.use_das is not None:
            changes["use_das"] = args.use_das == "yes"
        if not changes:
            parser.error("tax set: nothing to change.")
        tax_config = validate_tax_configuration(replace(tax_config, **changes))
        save_tax_configuration(config.database, company_id, tax_config)
        print(f"Updated tax configuration: {', '.join(sorted(changes))}")

    return [("Tax configuration", "tax_configuration", _tax_config_to_dataframe(tax_config))]


def _handle_category(args, parser, config, company_id: int) -> list[Table]:
    subcmd = args.category_command
    if subcmd == "add":
        category_id = insert_category(
            config.database,
            company_id,
            args.name,
            args.category_type,
            cost_classification=args.classification,
            parent_id=args.parent_id,
            markup_type=args.markup_type,
            is_financial=args.financial,
        )
        print(f"Created category #{category_id}: {args.name}")
        return []
    if subcmd == "markup":
        set_category_markup_type(config.database, company_id, args.category_id, args.markup_type)
        print(f"Category #{args.category_id}: markup type set to {args.markup_type or 'none'}")
        return []
    if subcmd == "list":
        return [("Categories", "categories", load_categories(config.database, company_id))]

    parser.error("Missing category subcommand: add, markup or list.")
    return []


def _handle_client(args, parser, config, company_id: int) -> list[Table]:
    subcmd = args.client_command
    if subcmd == "add":
        client_id = insert_client(
            config.database,
            company_id,
            args.name,
            email=args.email,
            phone=args.phone,
            tax_id=args.tax_id,
            first_purchase_date=_parse_optional_date(args.first_purchase),
        )
        print(f"Created client #{client_id}: {args.name}")
        return []
    if subcmd == "list":
        return [("Clients", "clients", load_clients(config.database, company_id))]

    parser.error("Missing client subcommand: add or list.")
    return []


def _handle_transactions(args, parser, config, company_id: int) -> list[Table]:
    subcmd = args.transactions_command
    if subcmd == "import":
        csv_path = Path(args.csv_path)
        if not csv_path.is_file():
            parser.error(f"CSV file not found: {csv_path}")
        print(f"Importing transactions from {csv_path}...")
        stats = import_transactions(config.database, company_id, read_transactions(csv_path))
        print(f"Imported {stats.rows_inserted} transactions.")
        if stats.unknown_categories:
            print(
                "Warning: unknown categories (imported without category): "
                + ", ".join(stats.unknown_categories)
            )
        if stats.unknown_clients:
            print(
                "Warning: unknown clients (imported without client): "
                + ", ".join(stats.unknown_clients)
            )
        return []

    if subcmd == "add":
        tx_id = insert_transaction(
            config.database,
            company_id,
            NewTransaction(
                transaction_date=_parse_optional_date(args.tx_date),
                amount=args.amount,
                description=args.description,
                category_id=args.category_id,
                client_id=args.client_id,
                transaction_type=args.transaction_type,
                is_new_client=args.is_new_client,
                is_marketing_cost=args.is_marketing_cost,
                is_sales_cost=args.is_sales_cost,
            ),
        )
        print(f"Recorded transaction #{tx_id}.")
        return []

    if subcmd == "list":
        period = _resolve_period(args)
        df = load_transactions(config.database, company_id, period.start, period.end)
        df = df.assign(date=df["date"].dt.date)
        print(f"Transactions for {period.label}: {len(df)}")
        return [(f"Transactions {period.label}", "transactions", df)]

    if subcmd == "delete":
        delete_transaction(config.database, company_id, args.transaction_id)
        print(f"Deleted transaction #{args.transaction_id}.")
        return []

    parser.error("Missing transactions subcommand: import, add, list or delete.")
    return []


def _handle_dre(args, config, company_id: int) -> list[Table]:
    period = _resolve_period(args)
    decimals = config.decimals

    if args.compare:
        current, other, variations = build_comparison(config, company_id, period, args.compare)
        return [
            (
                f"Income statement {current.period.label} vs {other.period.label}",
                "income_statement_comparison",
                comparison_to_dataframe(
                    variations, current.period.label, other.period.label, decimals
                ),
            )
        ]

    report = build_dre_report(
        config, company_id, period, category_id=args.category_id, client_id=args.client_id
    )
    if report.aggregated.uncategorized_amount:
        print(
            f"Warning: {report.aggregated.uncategorized_amount:.2f} in transactions "
            "without a category are not included."
        )
    if report.aggregated.unclassified_amount:
        print(
            f"Note: {report.aggregated.unclassified_amount:.2f} of costs without a "
            "fixed/variable classification are counted as fixed."
        )
    return [
        (
            f"Income statement {period.label}",
            "income_statement",
            statement_to_dataframe(report.dre, decimals),
        ),
        ("Margins", "margins", margins_to_dataframe(report.dre, decimals)),
    ]


def _handle_metrics(args, config, company_id: int) -> list[Table]:
    period = _resolve_period(args)

    if args.cached:
        entry = get_cached_metrics(config, company_id, period.month, period.year)
        if entry is None:
            print(f"No cached metrics for {period.label}. Use --recalculate.")
            return []
        df = pd.DataFrame(
            [{"key": k, "value": round(v, config.decimals)} for k, v in entry.values.items()]
        )
        return [(f"Cached metrics {period.label}", "metrics_cache", df)]

    if args.recalculate:
        recalculate_and_cache(config, company_id, period.month, period.year)
        print(f"Metrics cache refreshed for {period.label}.")

    _, metrics = build_metrics_report(config, company_id, period)
    if metrics.break_even_at_risk:
        print(
            "Warning: the break-even point cannot be reached with the current "
            "contribution margin."
        )
    return [
        (
            f"Metrics {period.label}",
            "metrics",
            metrics_to_dataframe(metrics, config.decimals),
        )
    ]


def _handle_markup(args, config, company_id: int) -> list[Table]:
    period = _resolve_period(args)
    inputs, result = build_markup_report(config, company_id, period, args.margin)
    if not result.computable:
        print(
            "Warning: expenses and desired margin reach 100% of the price; "
            "no markup can be computed."
        )
    return [
        (
            f"Markup {period.label}",
            "markup",
            markup_to_dataframe(inputs, result, config.decimals),
        )
    ]


def _handle_simulate(args, config, company_id: int) -> list[Table]:
    period = _resolve_period(args)
    report = build_scenario_report(
        config,
        company_id,
        period,
        ScenarioAdjustments(
            revenue_pct=args.revenue,
            cogs_pct=args.cogs,
            opex_pct=args.opex,
            financial_expense_pct=args.financial,
        ),
    )
    return [
        (
            f"Scenario {period.label}",
            "scenario",
            scenario_to_dataframe(report.lines, config.decimals),
        )
    ]


def _handle_history(args, config, company_id: int) -> list[Table]:
    period = _resolve_period(args)
    periods = last_n_months(period.month, period.year, args.months)
    history = compute_dre_history(config, company_id, periods)
    return [
        (
            f"Income statement history ({periods[0].label} to {periods[-1].label})",
            "income_statement_history",
            history_to_wide(history.statements, config.decimals),
        )
    ]


def _handle_goals(args, parser, config, company_id: int) -> list[Table]:
    period = _resolve_period(args)
    if args.goals_command == "set":
        set_goal(config, company_id, args.metric, period.month, period.year, args.target)
        print(f"Goal set: {args.metric} = {args.target:.2f} for {period.label}")
        return []
    if args.goals_command == "show":
        comparisons = build_goal_report(config, company_id, period)
        return [
            (
                f"Goals {period.label}",
                "goals",
                goals_to_dataframe(comparisons, config.decimals),
            )
        ]

    parser.error("Missing goals subcommand: set or show.")
    return []


def _handle_cash(args, parser, config, company_id: int) -> list[Table]:
    subcmd = args.cash_command
    cfg = config.database

    if subcmd == "balances":
        balances = build_cash_balances(config, company_id, _resolve_period(args))
        return [("Cash balances", "cash_balances", balances_to_dataframe(balances, config.decimals))]

    if subcmd == "deposit":
        row = deposit(cfg, company_id, args.amount, args.description, args.vault, args.tags)
        print(f"Deposited {row.amount:.2f} into {row.vault_type} (#{row.id}).")
        return []

    if subcmd == "transfer":
        result = transfer(
            cfg,
            company_id,
            args.from_vault,
            args.to_vault,
            args.amount,
            args.description,
            args.tags,
        )
        print(
            f"Transferred {result.amount:.2f} from {result.from_vault} "
            f"({result.from_balance:.2f}) to {result.to_vault} ({result.to_balance:.2f})."
        )
        return []

    if subcmd == "list":
        df = list_cash_transactions(
            cfg,
            company_id,
            vault_type=args.vault,
            start=_parse_optional_date(args.from_date),
            end=_parse_optional_date(args.to_date),
            tag=args.tag,
            include_deleted=args.include_deleted,
        )
        df = df.assign(tags=df["tags"].map(", ".join))
        return [("Cash transactions", "cash_transactions", df)]

    if subcmd == "delete":
        result = delete_cash_transaction(cfg, company_id, args.transaction_id, args.reason)
        print(
            f"Deleted cash transaction(s) {', '.join(f'#{i}' for i in result.deleted_ids)}; "
            f"reversal entries {', '.join(f'#{i}' for i in result.compensation_ids)}."
        )
        return []

    if subcmd == "tags":
        if args.tags_command == "add":
            tag_id = create_tag(cfg, company_id, args.name, args.color)
            print(f"Created tag #{tag_id}: {args.name}")
            return []
        if args.tags_command == "list":
            return [("Cash tags", "cash_tags", list_tags(cfg, company_id))]
        if args.tags_command == "delete":
            delete_tag(cfg, company_id, args.tag_id)
            print(f"Deleted tag #{args.tag_id}.")
            return []
        parser.error("Missing tags subcommand: add, list or delete.")

    parser.error("Missing cash subcommand: balances, deposit, transfer, list, delete or tags.")
    return []


def _dispatch(args, parser, config) -> list[Table]:
    command = args.command

    if command == "init":
        init_database(config.database)
        print(f"Database ready: {config.database.path}")
        return []
    if command == "company":
        return _handle_company(args, parser, config)

    company_id = _resolve_company(parser, args, config)

    if command == "tax":
        return _handle_tax(args, parser, config, company_id)
    if command == "category":
        return _handle_category(args, parser, config, company_id)
    if command == "client":
        return _handle_client(args, parser, config, company_id)
    if command == "transactions":
        return _handle_transactions(args, parser, config, company_id)
    if command == "dre":
        return _handle_dre(args, config, company_id)
    if command == "metrics":
        return _handle_metrics(args, config, company_id)
    if command == "markup":
        return _handle_markup(args, config, company_id)
    if command == "simulate":
        return _handle_simulate(args, config, company_id)
    if command == "history":
        return _handle_history(args, config, company_id)
    if command == "goals":
        return _handle_goals(args, parser, config, company_id)
    if command == "cash":
        return _handle_cash(args, parser, config, company_id)

    parser.error(f"Unknown command: {command!r}")
    return []


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Entry point for the SMB DRE CLI.

    This function parses command-line arguments, loads the application
    configuration, configures logging, runs the selected command and
    renders its tables as console tables and/or CSV files.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    # --version: short-circuit and exit early.
    if args.version:
        print(f"smb_dre version {__version__}")
        return

    if not args.command:
        parser.print_help()
        return

    config = _load_config(args)
    _configure_logging(args.log_level or config.log_level)

    init_database(config.database)

    try:
        tables = _dispatch(args, parser, config)
    except (ValidationError, NotFound) as exc:
        raise SystemExit(f"Error: {exc}") from exc

    display_mode = args.display_mode or config.display_mode
    output_dir = Path(args.output_dir) if args.output_dir else Path(DEFAULT_OUTPUT_DIR)
    _render(tables, display_mode, output_dir)


if __name__ == "__main__":
    main()
