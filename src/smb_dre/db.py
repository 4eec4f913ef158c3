# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Database layer for SMB DRE.

This module provides the low-level accessors for the SQLite database used by
the application. It is responsible for:

- Initializing the database schema (idempotent).
- Companies and their one-to-one tax configuration.
- Categories, clients and transactions (the inputs of the income statement).
- Goals and the metrics cache (a materialized view of derived metrics).
- The cash-vault ledger tables (the transactional logic lives in ledger.py).

The database is the single source of truth for transactions across all
statements, metrics and multi-period comparisons.

------------------------------------------------------------------------------
Schema Overview
------------------------------------------------------------------------------

1) companies
   Tenant root. Every other table references companies.id.

   - id, name, tax_id, tax_regime, fiscal_period, business_category,
     created_at

2) tax_configurations
   One row per company (UNIQUE company_id). Rates are REAL fractions and
   may be NULL (treated as 0). The surtax threshold is stored in cents.

3) categories
   - category_type        'revenue' | 'cost' | 'expense'
   - cost_classification  'fixed' | 'variable' | NULL
   - parent_id            optional parent (single level of nesting)
   - markup_type          'direct_cost' | 'variable_expense' |
                          'fixed_expense' | NULL
   - is_financial         financial income / financial expense flag
   - is_active

4) clients
   - name, email, phone, tax_id, first_purchase_date, is_active

5) transactions
   - transaction_date  ISO date, month/year denormalized from it
   - amount_cents      strictly positive integer
   - category_id, client_id (nullable)
   - transaction_type  'administrative' | 'operational'
   - is_new_client, is_marketing_cost, is_sales_cost

6) cash_transactions
   Append-only ledger of vault movements (see ledger.py).
   - vault_type, transaction_type ('transfer_in' | 'transfer_out'),
     amount_cents, description, related_vault_type, pair_id, reversal_of,
     tags (JSON array), created_at, is_deleted, deleted_at,
     deleted_reason

7) cash_tags
   Free-text labels with a display color, unique per company.

8) goals
   Target values per (company, metric, month, year), stored in cents.

9) metrics_cache
   One row per (company, month, year) holding every derived metric.

------------------------------------------------------------------------------
SQLite Notes
------------------------------------------------------------------------------

- Monetary amounts are stored as integer cents.
- All timestamps are stored as ISO-8601 text (UTC).
- Foreign key enforcement is explicitly enabled.
- Connections use a busy timeout so that concurrent writers wait for the
  lock instead of failing immediately.
"""

from __future__ import annotations

import logging
import math
import sqlite3
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Literal

import pandas as pd

from .errors import NotFound, ValidationError
from .taxes import TaxConfiguration, default_tax_configuration, validate_regime

logger = logging.getLogger(__name__)

CATEGORY_TYPES: tuple[str, ...] = ("revenue", "cost", "expense")
COST_CLASSIFICATIONS: tuple[str, ...] = ("fixed", "variable")
MARKUP_TYPES: tuple[str, ...] = ("direct_cost", "variable_expense", "fixed_expense")
TRANSACTION_TYPES: tuple[str, ...] = ("administrative", "operational")

METRICS_CACHE_COLUMNS: tuple[str, ...] = (
    "total_revenue",
    "net_revenue",
    "tax_deductions",
    "fixed_costs",
    "variable_costs",
    "operational_costs",
    "contribution_margin",
    "break_even_point",
    "safety_margin",
    "safety_margin_percent",
    "marketing_costs",
    "sales_costs",
    "new_clients_count",
    "total_active_clients",
    "repeat_customers_count",
    "total_sales_count",
    "average_ticket",
    "cac",
    "ltv",
    "ltv_cac_ratio",
    "roi",
)

TRANSACTION_COLUMNS: list[str] = [
    "id",
    "date",
    "month",
    "year",
    "amount",
    "description",
    "category_id",
    "client_id",
    "transaction_type",
    "is_new_client",
    "is_marketing_cost",
    "is_sales_cost",
]

CATEGORY_COLUMNS: list[str] = [
    "id",
    "name",
    "category_type",
    "cost_classification",
    "parent_id",
    "markup_type",
    "is_financial",
    "is_active",
]

CLIENT_COLUMNS: list[str] = [
    "id",
    "name",
    "email",
    "phone",
    "tax_id",
    "first_purchase_date",
    "is_active",
]

# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Database configuration for SMB DRE.

    Attributes
    ----------
    engine:
        Database engine identifier. Only "sqlite" is supported.
    path:
        Path to the SQLite database file.
    """

    engine: str
    path: Path


@dataclass(frozen=True)
class Company:
    """A tenant: every other entity belongs to exactly one company."""

    id: int
    name: str
    tax_id: str | None
    tax_regime: str
    fiscal_period: str
    business_category: str | None
    created_at: datetime


@dataclass(frozen=True)
class NewTransaction:
    """
    Data required to record a new transaction.

    ``amount`` must be strictly positive: the direction (revenue or cost) is
    derived from the category type at aggregation time.
    """

    transaction_date: date
    amount: float
    description: str = ""
    category_id: int | None = None
    client_id: int | None = None
    transaction_type: str = "operational"
    is_new_client: bool = False
    is_marketing_cost: bool = False
    is_sales_cost: bool = False


@dataclass(frozen=True)
class ImportStats:
    """
    Summary of a CSV import of transactions.

    Attributes
    ----------
    rows_inserted:
        Number of rows inserted into `transactions`.
    unknown_categories:
        Category names present in the file but not defined for the company.
        The matching rows are imported without a category.
    unknown_clients:
        Client names present in the file but not defined for the company.
    """

    rows_inserted: int
    unknown_categories: tuple[str, ...]
    unknown_clients: tuple[str, ...]


GoalMetric = Literal[
    "gross_revenue", "net_revenue", "gross_profit", "operating_profit", "net_profit"
]

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _ensure_sqlite(cfg: DatabaseConfig) -> None:
    """Raise if the configuration does not refer to a supported engine."""
    if cfg.engine.lower() != "sqlite":
        msg = (
            f"Unsupported database engine: {cfg.engine!r}. "
            "Only 'sqlite' is supported for now."
        )
        raise ValueError(msg)


def connect(cfg: DatabaseConfig) -> sqlite3.Connection:
    """
    Open a SQLite connection with foreign keys enabled.

    The caller is responsible for closing the connection.
    """
    _ensure_sqlite(cfg)
    conn = sqlite3.connect(cfg.path, timeout=30.0)
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def to_cents(amount: float) -> int:
    """Convert a monetary amount to integer cents."""
    return int(round(float(amount) * 100))


def from_cents(cents: int | None) -> float:
    """Convert integer cents back to a monetary amount (None -> 0.0)."""
    if cents is None:
        return 0.0
    return float(cents) / 100.0


def now_utc_iso() -> str:
    """Return the current UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _to_iso_date(value) -> str:
    """Convert a date-like value to ISO 'YYYY-MM-DD' string."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, pd.Timestamp):
        return value.date().isoformat()
    return date.fromisoformat(str(value)).isoformat()


def _check_choice(value: str | None, allowed: tuple[str, ...], field: str) -> None:
    if value is not None and value not in allowed:
        raise ValidationError(
            f"Invalid {field} {value!r}. Expected one of: {', '.join(allowed)}."
        )


def _create_schema_if_needed(conn: sqlite3.Connection) -> None:
    """
    Create tables and indexes if they do not exist yet.

    This function is idempotent and can be called multiple times safely.
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS companies (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            name              TEXT    NOT NULL,
            tax_id            TEXT,
            tax_regime        TEXT    NOT NULL,
            fiscal_period     TEXT    NOT NULL DEFAULT 'monthly',
            business_category TEXT,
            created_at        TEXT    NOT NULL
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS tax_configurations (
            id                               INTEGER PRIMARY KEY AUTOINCREMENT,
            company_id                       INTEGER NOT NULL UNIQUE,
            regime_type                      TEXT    NOT NULL,
            icms_rate                        REAL,
            ipi_rate                         REAL,
            pis_rate                         REAL,
            cofins_rate                      REAL,
            iss_rate                         REAL,
            das_rate                         REAL,
            use_das                          INTEGER NOT NULL DEFAULT 0,
            irpj_rate                        REAL,
            irpj_additional_rate             REAL,
            irpj_additional_threshold_cents  INTEGER,
            csll_rate                        REAL,
            updated_at                       TEXT    NOT NULL,

            FOREIGN KEY (company_id) REFERENCES companies(id)
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS categories (
            id                  INTEGER PRIMARY KEY AUTOINCREMENT,
            company_id          INTEGER NOT NULL,
            name                TEXT    NOT NULL,
            category_type       TEXT    NOT NULL,
            -- 'revenue' | 'cost' | 'expense'
            cost_classification TEXT,
            -- 'fixed' | 'variable' | NULL
            parent_id           INTEGER,
            markup_type         TEXT,
            is_financial        INTEGER NOT NULL DEFAULT 0,
            is_active           INTEGER NOT NULL DEFAULT 1,
            created_at          TEXT    NOT NULL,

            FOREIGN KEY (company_id) REFERENCES companies(id),
            FOREIGN KEY (parent_id) REFERENCES categories(id)
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS clients (
            id                  INTEGER PRIMARY KEY AUTOINCREMENT,
            company_id          INTEGER NOT NULL,
            name                TEXT    NOT NULL,
            email               TEXT,
            phone               TEXT,
            tax_id              TEXT,
            first_purchase_date TEXT,
            is_active           INTEGER NOT NULL DEFAULT 1,
            created_at          TEXT    NOT NULL,

            FOREIGN KEY (company_id) REFERENCES companies(id)
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS transactions (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            company_id        INTEGER NOT NULL,
            transaction_date  TEXT    NOT NULL,  -- ISO date 'YYYY-MM-DD'
            month             INTEGER NOT NULL,
            year              INTEGER NOT NULL,
            amount_cents      INTEGER NOT NULL CHECK (amount_cents > 0),
            description       TEXT,
            category_id       INTEGER,
            client_id         INTEGER,
            transaction_type  TEXT    NOT NULL DEFAULT 'operational',
            is_new_client     INTEGER NOT NULL DEFAULT 0,
            is_marketing_cost INTEGER NOT NULL DEFAULT 0,
            is_sales_cost     INTEGER NOT NULL DEFAULT 0,
            created_at        TEXT    NOT NULL,
            updated_at        TEXT,

            FOREIGN KEY (company_id) REFERENCES companies(id),
            FOREIGN KEY (category_id) REFERENCES categories(id),
            FOREIGN KEY (client_id) REFERENCES clients(id)
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS cash_transactions (
            id                 INTEGER PRIMARY KEY AUTOINCREMENT,
            company_id         INTEGER NOT NULL,
            vault_type         TEXT    NOT NULL,
            transaction_type   TEXT    NOT NULL,
            -- 'transfer_in' | 'transfer_out'
            amount_cents       INTEGER NOT NULL CHECK (amount_cents > 0),
            description        TEXT    NOT NULL DEFAULT '',
            related_vault_type TEXT,
            pair_id            INTEGER,
            reversal_of        INTEGER,
            tags               TEXT    NOT NULL DEFAULT '[]',
            created_at         TEXT    NOT NULL,
            is_deleted         INTEGER NOT NULL DEFAULT 0,
            deleted_at         TEXT,
            deleted_reason     TEXT,

            FOREIGN KEY (company_id) REFERENCES companies(id)
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS cash_tags (
            id         INTEGER PRIMARY KEY AUTOINCREMENT,
            company_id INTEGER NOT NULL,
            name       TEXT    NOT NULL,
            color      TEXT    NOT NULL DEFAULT '#6366f1',
            created_at TEXT    NOT NULL,

            UNIQUE (company_id, name),
            FOREIGN KEY (company_id) REFERENCES companies(id)
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS goals (
            id           INTEGER PRIMARY KEY AUTOINCREMENT,
            company_id   INTEGER NOT NULL,
            metric_name  TEXT    NOT NULL,
            period_month INTEGER NOT NULL,
            period_year  INTEGER NOT NULL,
            target_cents INTEGER NOT NULL,
            updated_at   TEXT    NOT NULL,

            UNIQUE (company_id, metric_name, period_month, period_year),
            FOREIGN KEY (company_id) REFERENCES companies(id)
        );
        """
    )

    metric_columns = ",\n            ".join(f"{c} REAL" for c in METRICS_CACHE_COLUMNS)
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS metrics_cache (
            id                 INTEGER PRIMARY KEY AUTOINCREMENT,
            company_id         INTEGER NOT NULL,
            period_month       INTEGER NOT NULL,
            period_year        INTEGER NOT NULL,
            {metric_columns},
            last_calculated_at TEXT    NOT NULL,

            UNIQUE (company_id, period_month, period_year),
            FOREIGN KEY (company_id) REFERENCES companies(id)
        );
        """
    )

    # Indexes
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_transactions_company_period
            ON transactions(company_id, year, month);
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_cash_transactions_company_vault
            ON cash_transactions(company_id, vault_type);
        """
    )

    conn.commit()


# ---------------------------------------------------------------------------
# Public API: schema
# ---------------------------------------------------------------------------


def init_database(cfg: DatabaseConfig) -> None:
    """
    Initialize the database schema if needed.

    - Creates the SQLite file (and its parent directory) if missing.
    - Creates every table and index if missing.
    - This function is idempotent: calling it multiple times is safe.

    Raises
    ------
    ValueError
        If cfg.engine is not supported.
    sqlite3.Error
        If schema creation fails.
    """
    cfg.path.parent.mkdir(parents=True, exist_ok=True)

    conn = connect(cfg)
    try:
        _create_schema_if_needed(conn)
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Companies & tax configuration
# ---------------------------------------------------------------------------


def _row_to_company(row: tuple) -> Company:
    (
        company_id,
        name,
        tax_id,
        tax_regime,
        fiscal_period,
        business_category,
        created_at_str,
    ) = row
    return Company(
        id=company_id,
        name=name,
        tax_id=tax_id,
        tax_regime=tax_regime,
        fiscal_period=fiscal_period,
        business_category=business_category,
        created_at=datetime.fromisoformat(created_at_str),
    )


def _write_tax_configuration(
    cur: sqlite3.Cursor,
    company_id: int,
    tax_config: TaxConfiguration,
) -> None:
    threshold = tax_config.irpj_additional_threshold
    cur.execute(
        """
        INSERT INTO tax_configurations (
            company_id, regime_type,
            icms_rate, ipi_rate, pis_rate, cofins_rate, iss_rate,
            das_rate, use_das,
            irpj_rate, irpj_additional_rate, irpj_additional_threshold_cents,
            csll_rate, updated_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (company_id) DO UPDATE SET
            regime_type = excluded.regime_type,
            icms_rate = excluded.icms_rate,
            ipi_rate = excluded.ipi_rate,
            pis_rate = excluded.pis_rate,
            cofins_rate = excluded.cofins_rate,
            iss_rate = excluded.iss_rate,
            das_rate = excluded.das_rate,
            use_das = excluded.use_das,
            irpj_rate = excluded.irpj_rate,
            irpj_additional_rate = excluded.irpj_additional_rate,
            irpj_additional_threshold_cents = excluded.irpj_additional_threshold_cents,
            csll_rate = excluded.csll_rate,
            updated_at = excluded.updated_at;
        """,
        (
            company_id,
            tax_config.regime_type,
            tax_config.icms_rate,
            tax_config.ipi_rate,
            tax_config.pis_rate,
            tax_config.cofins_rate,
            tax_config.iss_rate,
            tax_config.das_rate,
            int(bool(tax_config.use_das)),
            tax_config.irpj_rate,
            tax_config.irpj_additional_rate,
            to_cents(threshold) if threshold is not None else None,
            tax_config.csll_rate,
            now_utc_iso(),
        ),
    )


def create_company(
    cfg: DatabaseConfig,
    name: str,
    tax_regime: str,
    *,
    tax_id: str | None = None,
    fiscal_period: str = "monthly",
    business_category: str | None = None,
    tax_config: TaxConfiguration | None = None,
) -> Company:
    """
    Create a company together with its tax configuration.

    Parameters
    ----------
    cfg:
        Database configuration.
    name, tax_regime, tax_id, fiscal_period, business_category:
        Company attributes. ``tax_regime`` must be one of taxes.TAX_REGIMES.
    tax_config:
        Tax configuration to store. If None, the built-in defaults for the
        regime are used (see taxes.default_tax_configuration).

    Returns
    -------
    Company
        The newly created company.
    """
    validate_regime(tax_regime)
    if not name.strip():
        raise ValidationError("Company name cannot be empty.")

    if tax_config is None:
        tax_config = default_tax_configuration(tax_regime)

    init_database(cfg)
    created_at = now_utc_iso()

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO companies (
                name, tax_id, tax_regime, fiscal_period, business_category, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (name, tax_id, tax_regime, fiscal_period, business_category, created_at),
        )
        company_id = cur.lastrowid
        _write_tax_configuration(cur, company_id, tax_config)
        conn.commit()
    finally:
        conn.close()

    logger.info("Created company #%s (%s, regime=%s)", company_id, name, tax_regime)

    company = get_company(cfg, company_id)
    if company is None:
        msg = f"Company #{company_id} was just inserted but could not be reloaded."
        raise RuntimeError(msg)
    return company


def get_company(cfg: DatabaseConfig, company_id: int) -> Company | None:
    """Load a company by id, or None if it does not exist."""
    init_database(cfg)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, name, tax_id, tax_regime, fiscal_period,
                   business_category, created_at
              FROM companies
             WHERE id = ?;
            """,
            (company_id,),
        )
        row = cur.fetchone()
    finally:
        conn.close()

    if row is None:
        return None
    return _row_to_company(row)


def require_company(cfg: DatabaseConfig, company_id: int) -> Company:
    """Same as get_company but raises NotFound when the company is missing."""
    company = get_company(cfg, company_id)
    if company is None:
        raise NotFound(f"Company #{company_id} does not exist.")
    return company


def list_companies(cfg: DatabaseConfig) -> list[Company]:
    """Return every company, ordered by id."""
    init_database(cfg)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, name, tax_id, tax_regime, fiscal_period,
                   business_category, created_at
              FROM companies
             ORDER BY id;
            """
        )
        rows = cur.fetchall()
    finally:
        conn.close()

    return [_row_to_company(row) for row in rows]


def get_tax_configuration(cfg: DatabaseConfig, company_id: int) -> TaxConfiguration:
    """
    Load the tax configuration of a company.

    If the company exists but has no stored configuration, the regime
    defaults are created, stored and returned.

    Raises
    ------
    NotFound
        If the company does not exist.
    """
    company = require_company(cfg, company_id)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT regime_type,
                   icms_rate, ipi_rate, pis_rate, cofins_rate, iss_rate,
                   das_rate, use_das,
                   irpj_rate, irpj_additional_rate, irpj_additional_threshold_cents,
                   csll_rate
              FROM tax_configurations
             WHERE company_id = ?;
            """,
            (company_id,),
        )
        row = cur.fetchone()
    finally:
        conn.close()

    if row is None:
        tax_config = default_tax_configuration(company.tax_regime)
        save_tax_configuration(cfg, company_id, tax_config)
        return tax_config

    (
        regime_type,
        icms_rate,
        ipi_rate,
        pis_rate,
        cofins_rate,
        iss_rate,
        das_rate,
        use_das,
        irpj_rate,
        irpj_additional_rate,
        threshold_cents,
        csll_rate,
    ) = row

    return TaxConfiguration(
        regime_type=regime_type,
        icms_rate=icms_rate,
        ipi_rate=ipi_rate,
        pis_rate=pis_rate,
        cofins_rate=cofins_rate,
        iss_rate=iss_rate,
        das_rate=das_rate,
        use_das=bool(use_das),
        irpj_rate=irpj_rate,
        irpj_additional_rate=irpj_additional_rate,
        irpj_additional_threshold=(
            from_cents(threshold_cents) if threshold_cents is not None else None
        ),
        csll_rate=csll_rate,
    )


def save_tax_configuration(
    cfg: DatabaseConfig,
    company_id: int,
    tax_config: TaxConfiguration,
) -> None:
    """Insert or replace the tax configuration of a company."""
    init_database(cfg)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        _write_tax_configuration(cur, company_id, tax_config)
        conn.commit()
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Categories & clients
# ---------------------------------------------------------------------------


def insert_category(
    cfg: DatabaseConfig,
    company_id: int,
    name: str,
    category_type: str,
    *,
    cost_classification: str | None = None,
    parent_id: int | None = None,
    markup_type: str | None = None,
    is_financial: bool = False,
    is_active: bool = True,
) -> int:
    """
    Insert a category and return its id.

    Raises
    ------
    ValidationError
        If an enumerated field has an unknown value, if a cost classification
        is given for a revenue category, or if the parent is itself a
        subcategory (only one level of nesting is allowed).
    NotFound
        If the parent category does not exist for this company.
    """
    _check_choice(category_type, CATEGORY_TYPES, "category_type")
    _check_choice(cost_classification, COST_CLASSIFICATIONS, "cost_classification")
    _check_choice(markup_type, MARKUP_TYPES, "markup_type")

    if category_type == "revenue" and cost_classification is not None:
        raise ValidationError(
            "cost_classification only applies to cost and expense categories."
        )

    require_company(cfg, company_id)

    conn = connect(cfg)
    try:
        cur = conn.cursor()

        if parent_id is not None:
            cur.execute(
                "SELECT parent_id FROM categories WHERE id = ? AND company_id = ?;",
                (parent_id, company_id),
            )
            parent = cur.fetchone()
            if parent is None:
                raise NotFound(f"Parent category #{parent_id} does not exist.")
            if parent[0] is not None:
                raise ValidationError(
                    "Categories support a single level of nesting; "
                    f"category #{parent_id} is already a subcategory."
                )

        cur.execute(
            """
            INSERT INTO categories (
                company_id, name, category_type, cost_classification,
                parent_id, markup_type, is_financial, is_active, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                company_id,
                name,
                category_type,
                cost_classification,
                parent_id,
                markup_type,
                int(is_financial),
                int(is_active),
                now_utc_iso(),
            ),
        )
        category_id = cur.lastrowid
        conn.commit()
    finally:
        conn.close()

    return category_id


def set_category_markup_type(
    cfg: DatabaseConfig,
    company_id: int,
    category_id: int,
    markup_type: str | None,
) -> None:
    """Link (or unlink, with None) a category to a markup calculator bucket."""
    _check_choice(markup_type, MARKUP_TYPES, "markup_type")
    init_database(cfg)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            UPDATE categories
               SET markup_type = ?
             WHERE id = ? AND company_id = ?;
            """,
            (markup_type, category_id, company_id),
        )
        if cur.rowcount == 0:
            raise NotFound(f"Category #{category_id} does not exist.")
        conn.commit()
    finally:
        conn.close()


def insert_client(
    cfg: DatabaseConfig,
    company_id: int,
    name: str,
    *,
    email: str | None = None,
    phone: str | None = None,
    tax_id: str | None = None,
    first_purchase_date: date | None = None,
    is_active: bool = True,
) -> int:
    """Insert a client and return its id."""
    require_company(cfg, company_id)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO clients (
                company_id, name, email, phone, tax_id,
                first_purchase_date, is_active, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                company_id,
                name,
                email,
                phone,
                tax_id,
                first_purchase_date.isoformat() if first_purchase_date else None,
                int(is_active),
                now_utc_iso(),
            ),
        )
        client_id = cur.lastrowid
        conn.commit()
    finally:
        conn.close()

    return client_id


def load_categories(cfg: DatabaseConfig, company_id: int) -> pd.DataFrame:
    """
    Load the categories of a company.

    Returns
    -------
    pandas.DataFrame
        Columns: id, name, category_type, cost_classification, parent_id,
        markup_type, is_financial (bool), is_active (bool).
    """
    init_database(cfg)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, name, category_type, cost_classification, parent_id,
                   markup_type, is_financial, is_active
              FROM categories
             WHERE company_id = ?
             ORDER BY id;
            """,
            (company_id,),
        )
        rows = cur.fetchall()
    finally:
        conn.close()

    df = pd.DataFrame(rows, columns=CATEGORY_COLUMNS)
    df["parent_id"] = df["parent_id"].astype("Int64")
    df["is_financial"] = df["is_financial"].astype(bool)
    df["is_active"] = df["is_active"].astype(bool)
    return df


def load_clients(cfg: DatabaseConfig, company_id: int) -> pd.DataFrame:
    """
    Load the clients of a company.

    Returns
    -------
    pandas.DataFrame
        Columns: id, name, email, phone, tax_id, first_purchase_date,
        is_active (bool).
    """
    init_database(cfg)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, name, email, phone, tax_id, first_purchase_date, is_active
              FROM clients
             WHERE company_id = ?
             ORDER BY id;
            """,
            (company_id,),
        )
        rows = cur.fetchall()
    finally:
        conn.close()

    df = pd.DataFrame(rows, columns=CLIENT_COLUMNS)
    df["is_active"] = df["is_active"].astype(bool)
    return df


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def _validate_new_transaction(tx: NewTransaction) -> None:
    if tx.amount is None or not math.isfinite(float(tx.amount)):
        raise ValidationError(f"Transaction amount must be a finite number, got {tx.amount!r}.")
    if float(tx.amount) <= 0:
        raise ValidationError(
            f"Transaction amount must be strictly positive, got {tx.amount!r}."
        )
    if to_cents(tx.amount) <= 0:
        raise ValidationError("Transaction amount rounds to zero cents.")
    _check_choice(tx.transaction_type, TRANSACTION_TYPES, "transaction_type")


def _check_transaction_references(
    cur: sqlite3.Cursor,
    company_id: int,
    tx: NewTransaction,
) -> None:
    """Category and client must belong to the same company as the transaction."""
    if tx.category_id is not None:
        cur.execute(
            "SELECT 1 FROM categories WHERE id = ? AND company_id = ?;",
            (tx.category_id, company_id),
        )
        if cur.fetchone() is None:
            raise NotFound(f"Category #{tx.category_id} does not exist.")
    if tx.client_id is not None:
        cur.execute(
            "SELECT 1 FROM clients WHERE id = ? AND company_id = ?;",
            (tx.client_id, company_id),
        )
        if cur.fetchone() is None:
            raise NotFound(f"Client #{tx.client_id} does not exist.")


def _insert_transaction_row(
    cur: sqlite3.Cursor,
    company_id: int,
    tx: NewTransaction,
    created_at: str,
) -> int:
    iso_date = _to_iso_date(tx.transaction_date)
    tx_date = date.fromisoformat(iso_date)
    cur.execute(
        """
        INSERT INTO transactions (
            company_id, transaction_date, month, year, amount_cents,
            description, category_id, client_id, transaction_type,
            is_new_client, is_marketing_cost, is_sales_cost, created_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
        """,
        (
            company_id,
            iso_date,
            tx_date.month,
            tx_date.year,
            to_cents(tx.amount),
            tx.description,
            tx.category_id,
            tx.client_id,
            tx.transaction_type,
            int(tx.is_new_client),
            int(tx.is_marketing_cost),
            int(tx.is_sales_cost),
            created_at,
        ),
    )
    return cur.lastrowid


def insert_transaction(
    cfg: DatabaseConfig,
    company_id: int,
    tx: NewTransaction,
) -> int:
    """
    Record a transaction and return its id.

    The month/year columns are derived from ``tx.transaction_date``.

    Raises
    ------
    ValidationError
        If the amount is not a finite, strictly positive number or the type is unknown.
    NotFound
        If the company does not exist, or if the category or client is not
        one of this company's.
    """
    _validate_new_transaction(tx)
    require_company(cfg, company_id)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        _check_transaction_references(cur, company_id, tx)
        tx_id = _insert_transaction_row(cur, company_id, tx, now_utc_iso())
        conn.commit()
    finally:
        conn.close()

    return tx_id


def delete_transaction(cfg: DatabaseConfig, company_id: int, transaction_id: int) -> None:
    """Delete a transaction row. There is no cascading side effect."""
    init_database(cfg)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            "DELETE FROM transactions WHERE id = ? AND company_id = ?;",
            (transaction_id, company_id),
        )
        if cur.rowcount == 0:
            raise NotFound(f"Transaction #{transaction_id} does not exist.")
        conn.commit()
    finally:
        conn.close()


def import_transactions(
    cfg: DatabaseConfig,
    company_id: int,
    df: pd.DataFrame,
) -> ImportStats:
    """
    Import a batch of normalized transactions (see io.read_transactions).

    Category and client columns hold names, resolved against the company's
    categories and clients (case-insensitive). Unknown names are reported in
    the returned ImportStats and the rows are stored without that reference.

    The whole batch is written in a single transaction: a validation error
    on any row leaves the database unchanged.
    """
    require_company(cfg, company_id)

    categories = load_categories(cfg, company_id)
    clients = load_clients(cfg, company_id)
    category_by_name = {
        str(n).strip().lower(): int(i) for i, n in zip(categories["id"], categories["name"])
    }
    client_by_name = {
        str(n).strip().lower(): int(i) for i, n in zip(clients["id"], clients["name"])
    }

    unknown_categories: set[str] = set()
    unknown_clients: set[str] = set()
    new_rows: list[NewTransaction] = []

    for _, row in df.iterrows():
        category_id = None
        raw_category = row.get("category")
        if isinstance(raw_category, str) and raw_category.strip():
            category_id = category_by_name.get(raw_category.strip().lower())
            if category_id is None:
                unknown_categories.add(raw_category.strip())

        client_id = None
        raw_client = row.get("client")
        if isinstance(raw_client, str) and raw_client.strip():
            client_id = client_by_name.get(raw_client.strip().lower())
            if client_id is None:
                unknown_clients.add(raw_client.strip())

        tx = NewTransaction(
            transaction_date=_to_iso_date(row["date"]),
            amount=float(row["amount"]),
            description=str(row.get("description") or ""),
            category_id=category_id,
            client_id=client_id,
            transaction_type=str(row.get("transaction_type") or "operational"),
            is_new_client=bool(row.get("is_new_client", False)),
            is_marketing_cost=bool(row.get("is_marketing_cost", False)),
            is_sales_cost=bool(row.get("is_sales_cost", False)),
        )
        _validate_new_transaction(tx)
        new_rows.append(tx)

    created_at = now_utc_iso()
    conn = connect(cfg)
    try:
        cur = conn.cursor()
        for tx in new_rows:
            _insert_transaction_row(cur, company_id, tx, created_at)
        conn.commit()
    finally:
        conn.close()

    if unknown_categories:
        logger.warning(
            "Imported %d transaction(s) with unknown categories: %s",
            len(new_rows),
            ", ".join(sorted(unknown_categories)),
        )

    return ImportStats(
        rows_inserted=len(new_rows),
        unknown_categories=tuple(sorted(unknown_categories)),
        unknown_clients=tuple(sorted(unknown_clients)),
    )


def load_transactions(
    cfg: DatabaseConfig,
    company_id: int,
    start: date | None = None,
    end: date | None = None,
) -> pd.DataFrame:
    """
    Load the transactions of a company, optionally bounded by dates.

    Parameters
    ----------
    cfg:
        Database configuration.
    company_id:
        Owning company.
    start, end:
        Optional inclusive date bounds on ``transaction_date``.

    Returns
    -------
    pandas.DataFrame
        Columns: id, date (datetime64[ns]), month, year, amount (float,
        positive), description, category_id (Int64), client_id (Int64),
        transaction_type, is_new_client, is_marketing_cost, is_sales_cost
        (bool).

        If no rows match, an empty DataFrame with the same columns is
        returned.
    """
    init_database(cfg)

    where_clauses = ["company_id = ?"]
    params: list[object] = [company_id]
    if start is not None:
        where_clauses.append("transaction_date >= ?")
        params.append(start.isoformat())
    if end is not None:
        where_clauses.append("transaction_date <= ?")
        params.append(end.isoformat())

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT id, transaction_date, month, year, amount_cents, description,
                   category_id, client_id, transaction_type,
                   is_new_client, is_marketing_cost, is_sales_cost
              FROM transactions
             WHERE {' AND '.join(where_clauses)}
             ORDER BY transaction_date, id;
            """,
            params,
        )
        rows = cur.fetchall()
    finally:
        conn.close()

    columns = TRANSACTION_COLUMNS.copy()
    columns[columns.index("amount")] = "amount_cents"
    df = pd.DataFrame(rows, columns=columns)

    df["date"] = pd.to_datetime(df["date"], format="%Y-%m-%d")
    df["amount"] = df["amount_cents"].astype(float) / 100.0
    df = df.drop(columns=["amount_cents"])
    for col in ("category_id", "client_id"):
        df[col] = df[col].astype("Int64")
    for col in ("is_new_client", "is_marketing_cost", "is_sales_cost"):
        df[col] = df[col].astype(bool)

    return df[TRANSACTION_COLUMNS]


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------


def upsert_goal(
    cfg: DatabaseConfig,
    company_id: int,
    metric_name: str,
    month: int,
    year: int,
    target_value: float,
) -> None:
    """Insert or update the target value of a metric for a month."""
    require_company(cfg, company_id)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO goals (
                company_id, metric_name, period_month, period_year,
                target_cents, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (company_id, metric_name, period_month, period_year)
            DO UPDATE SET
                target_cents = excluded.target_cents,
                updated_at = excluded.updated_at;
            """,
            (company_id, metric_name, month, year, to_cents(target_value), now_utc_iso()),
        )
        conn.commit()
    finally:
        conn.close()


def load_goals(
    cfg: DatabaseConfig,
    company_id: int,
    month: int,
    year: int,
) -> dict[str, float]:
    """Return ``{metric_name: target_value}`` for a company and month."""
    init_database(cfg)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT metric_name, target_cents
              FROM goals
             WHERE company_id = ? AND period_month = ? AND period_year = ?
             ORDER BY metric_name;
            """,
            (company_id, month, year),
        )
        rows = cur.fetchall()
    finally:
        conn.close()

    return {name: from_cents(cents) for name, cents in rows}


# ---------------------------------------------------------------------------
# Metrics cache
# ---------------------------------------------------------------------------


def upsert_metrics_cache(
    cfg: DatabaseConfig,
    company_id: int,
    month: int,
    year: int,
    values: Mapping[str, float],
) -> None:
    """
    Insert or overwrite the metrics snapshot of a company for a month.

    ``values`` must provide every column listed in METRICS_CACHE_COLUMNS.
    The upsert makes concurrent or repeated refreshes converge to the same
    stored row.
    """
    missing = [c for c in METRICS_CACHE_COLUMNS if c not in values]
    if missing:
        raise ValueError(f"Missing metrics cache value(s): {', '.join(missing)}")

    init_database(cfg)

    columns = ", ".join(METRICS_CACHE_COLUMNS)
    placeholders = ", ".join("?" for _ in METRICS_CACHE_COLUMNS)
    updates = ",\n                ".join(
        f"{c} = excluded.{c}" for c in METRICS_CACHE_COLUMNS
    )

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            f"""
            INSERT INTO metrics_cache (
                company_id, period_month, period_year, {columns}, last_calculated_at
            )
            VALUES (?, ?, ?, {placeholders}, ?)
            ON CONFLICT (company_id, period_month, period_year) DO UPDATE SET
                {updates},
                last_calculated_at = excluded.last_calculated_at;
            """,
            (
                company_id,
                month,
                year,
                *(float(values[c]) for c in METRICS_CACHE_COLUMNS),
                now_utc_iso(),
            ),
        )
        conn.commit()
    finally:
        conn.close()


def get_metrics_cache(
    cfg: DatabaseConfig,
    company_id: int,
    month: int,
    year: int,
) -> dict[str, float] | None:
    """
    Load the cached metrics of a company for a month.

    Returns
    -------
    dict[str, float] | None
        Mapping of every METRICS_CACHE_COLUMNS entry to its stored value,
        or None if nothing has been cached yet.
    """
    init_database(cfg)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {", ".join(METRICS_CACHE_COLUMNS)}
              FROM metrics_cache
             WHERE company_id = ? AND period_month = ? AND period_year = ?;
            """,
            (company_id, month, year),
        )
        row = cur.fetchone()
    finally:
        conn.close()

    if row is None:
        return None
    return {c: float(v) if v is not None else 0.0 for c, v in zip(METRICS_CACHE_COLUMNS, row)}


def delete_metrics_cache(
    cfg: DatabaseConfig,
    company_id: int,
    month: int,
    year: int,
) -> None:
    """Drop a cached snapshot; it can be regenerated at any time."""
    init_database(cfg)

    conn = connect(cfg)
    try:
        conn.execute(
            """
            DELETE FROM metrics_cache
             WHERE company_id = ? AND period_month = ? AND period_year = ?;
            """,
            (company_id, month, year),
        )
        conn.commit()
    finally:
        conn.close()
