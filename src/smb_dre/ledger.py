# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Cash vault ledger for SMB DRE.

A company splits its cash into five vaults:

    main_balance, emergency_reserve, working_capital, investments, withdrawals

A vault has no stored balance: its balance is the sum of its ledger rows in
`cash_transactions` (transfer_in minus transfer_out). The ledger is
append-only:

- A transfer between two vaults always writes two rows: a transfer_out on
  the source referencing the destination and a transfer_in on the
  destination referencing the source. Both rows point at each other through
  `pair_id`. The main vault follows the same rule.
- Money enters the ledger through `deposit`, a single transfer_in row with
  no related vault.
- `withdrawals` is terminal: it can receive transfers but can never be the
  source of one.
- Deleting a row never removes history. A compensating movement in the
  reverse direction is written (linked through `reversal_of`) and the
  original rows are flagged `is_deleted`. Deleted rows are hidden from
  listings but keep counting in balances, so that the compensation is what
  brings the balances back.

Concurrency
-----------
Every write runs inside a single `BEGIN IMMEDIATE` SQLite transaction: the
write lock is taken before the sufficiency check is evaluated and held
until both rows are committed. Two concurrent transfers from the same vault
are therefore serialized and cannot both pass the check. Any failure rolls
the whole movement back.
"""

from __future__ import annotations

import json
import logging
import math
import re
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

import pandas as pd

from .db import (
    DatabaseConfig,
    connect,
    from_cents,
    init_database,
    now_utc_iso,
    require_company,
    to_cents,
)
from .errors import InsufficientBalance, NotFound, ValidationError

logger = logging.getLogger(__name__)

MAIN_VAULT = "main_balance"
WITHDRAWALS_VAULT = "withdrawals"

VAULT_TYPES: tuple[str, ...] = (
    MAIN_VAULT,
    "emergency_reserve",
    "working_capital",
    "investments",
    WITHDRAWALS_VAULT,
)

VAULT_LABELS: dict[str, str] = {
    MAIN_VAULT: "Main balance",
    "emergency_reserve": "Emergency reserve",
    "working_capital": "Working capital",
    "investments": "Investments",
    WITHDRAWALS_VAULT: "Withdrawals",
}

REVERSAL_PREFIX = "Reversal: "
DEFAULT_TAG_COLOR = "#6366f1"

_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")

CASH_TRANSACTION_COLUMNS: list[str] = [
    "id",
    "created_at",
    "vault_type",
    "transaction_type",
    "amount",
    "description",
    "related_vault_type",
    "pair_id",
    "reversal_of",
    "tags",
    "is_deleted",
]

_SELECT_CASH_TRANSACTION = """
    SELECT id, vault_type, transaction_type, amount_cents, description,
           related_vault_type, pair_id, reversal_of, tags, created_at,
           is_deleted, deleted_at, deleted_reason
      FROM cash_transactions
"""


@dataclass(frozen=True)
class CashTransaction:
    """One ledger row."""

    id: int
    vault_type: str
    transaction_type: str
    amount: float
    description: str
    related_vault_type: Optional[str]
    pair_id: Optional[int]
    reversal_of: Optional[int]
    tags: tuple[str, ...]
    created_at: datetime
    is_deleted: bool
    deleted_at: Optional[datetime]
    deleted_reason: Optional[str]


@dataclass(frozen=True)
class TransferResult:
    """
    Outcome of a successful transfer.

    Balances are the ledger balances right after the transfer was committed.
    """

    out_transaction_id: int
    in_transaction_id: int
    from_vault: str
    to_vault: str
    amount: float
    from_balance: float
    to_balance: float


@dataclass(frozen=True)
class ReversalResult:
    """
    Outcome of a deletion.

    Attributes
    ----------
    deleted_ids:
        Rows flagged as deleted (the target row and its pair partner).
    compensation_ids:
        Rows written to compensate the deleted movement.
    """

    deleted_ids: tuple[int, ...]
    compensation_ids: tuple[int, ...]


@dataclass(frozen=True)
class CashBalances:
    """
    Vault balances of a company.

    ``available_balance`` mirrors the net balance of the income statement
    supplied by the caller. ``main_ledger_balance`` is the ledger balance
    of the main vault, kept for information.
    """

    available_balance: float
    net_balance: float
    main_ledger_balance: float
    emergency_reserve: float
    working_capital: float
    investments: float
    withdrawals: float

    @property
    def total_balance(self) -> float:
        """Sum of every vault ledger balance."""
        return (
            self.main_ledger_balance
            + self.emergency_reserve
            + self.working_capital
            + self.investments
            + self.withdrawals
        )

    def vault(self, vault_type: str) -> float:
        """Ledger balance of one vault."""
        validate_vault(vault_type)
        if vault_type == MAIN_VAULT:
            return self.main_ledger_balance
        return getattr(self, vault_type)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def validate_vault(vault_type: str) -> str:
    """Return ``vault_type`` unchanged or raise ValidationError."""
    if vault_type not in VAULT_TYPES:
        raise ValidationError(
            f"Unknown vault {vault_type!r}. Expected one of: {', '.join(VAULT_TYPES)}."
        )
    return vault_type


def _amount_to_cents(amount: float) -> int:
    try:
        value = float(amount)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid amount {amount!r}.") from exc
    if not math.isfinite(value):
        raise ValidationError(f"Amount must be a finite number, got {amount!r}.")
    cents = to_cents(value)
    if value <= 0 or cents <= 0:
        raise ValidationError(f"Amount must be strictly positive, got {amount!r}.")
    return cents


def _normalize_tags(tags: Optional[Iterable[str]]) -> list[str]:
    if tags is None:
        return []
    if isinstance(tags, str):
        raise ValidationError("tags must be a collection of strings, not a string.")
    out: list[str] = []
    for tag in tags:
        if not isinstance(tag, str) or not tag.strip():
            raise ValidationError(f"Invalid tag {tag!r}.")
        if tag.strip() not in out:
            out.append(tag.strip())
    return out


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


@contextmanager
def _write_transaction(cfg: DatabaseConfig) -> Iterator[sqlite3.Cursor]:
    """
    Yield a cursor inside a `BEGIN IMMEDIATE` transaction.

    Commits when the block exits normally, rolls back on any exception.
    """
    init_database(cfg)

    conn = connect(cfg)
    conn.isolation_level = None
    try:
        conn.execute("BEGIN IMMEDIATE;")
        try:
            yield conn.cursor()
        except BaseException:
            conn.execute("ROLLBACK;")
            raise
        conn.execute("COMMIT;")
    finally:
        conn.close()


def _vault_balance_cents(cur: sqlite3.Cursor, company_id: int, vault_type: str) -> int:
    cur.execute(
        """
        SELECT COALESCE(SUM(
                   CASE transaction_type
                       WHEN 'transfer_in' THEN amount_cents
                       ELSE -amount_cents
                   END
               ), 0)
          FROM cash_transactions
         WHERE company_id = ? AND vault_type = ?;
        """,
        (company_id, vault_type),
    )
    return int(cur.fetchone()[0])


def _ensure_funds(
    cur: sqlite3.Cursor, company_id: int, vault_type: str, cents: int
) -> None:
    available = _vault_balance_cents(cur, company_id, vault_type)
    if available < cents:
        raise InsufficientBalance(vault_type, from_cents(available), from_cents(cents))


def _insert_row(
    cur: sqlite3.Cursor,
    company_id: int,
    vault_type: str,
    transaction_type: str,
    cents: int,
    description: str,
    related_vault_type: Optional[str],
    tags: list[str],
    created_at: str,
    *,
    pair_id: Optional[int] = None,
    reversal_of: Optional[int] = None,
) -> int:
    cur.execute(
        """
        INSERT INTO cash_transactions (
            company_id, vault_type, transaction_type, amount_cents, description,
            related_vault_type, pair_id, reversal_of, tags, created_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
        """,
        (
            company_id,
            vault_type,
            transaction_type,
            cents,
            description,
            related_vault_type,
            pair_id,
            reversal_of,
            json.dumps(tags),
            created_at,
        ),
    )
    return cur.lastrowid


def _move(
    cur: sqlite3.Cursor,
    company_id: int,
    from_vault: str,
    to_vault: str,
    cents: int,
    description: str,
    tags: list[str],
    *,
    reversal_of: Optional[int] = None,
) -> tuple[int, int]:
    """
    Check funds and write the two rows of a vault-to-vault movement.

    Returns the ids of the transfer_out and transfer_in rows.
    """
    _ensure_funds(cur, company_id, from_vault, cents)

    created_at = now_utc_iso()
    out_id = _insert_row(
        cur,
        company_id,
        from_vault,
        "transfer_out",
        cents,
        description,
        to_vault,
        tags,
        created_at,
        reversal_of=reversal_of,
    )
    in_id = _insert_row(
        cur,
        company_id,
        to_vault,
        "transfer_in",
        cents,
        description,
        from_vault,
        tags,
        created_at,
        pair_id=out_id,
        reversal_of=reversal_of,
    )
    cur.execute("UPDATE cash_transactions SET pair_id = ? WHERE id = ?;", (in_id, out_id))
    return out_id, in_id


def _row_to_cash_transaction(row: tuple) -> CashTransaction:
    (
        tx_id,
        vault_type,
        transaction_type,
        amount_cents,
        description,
        related_vault_type,
        pair_id,
        reversal_of,
        tags_json,
        created_at_str,
        is_deleted,
        deleted_at_str,
        deleted_reason,
    ) = row

    return CashTransaction(
        id=tx_id,
        vault_type=vault_type,
        transaction_type=transaction_type,
        amount=from_cents(amount_cents),
        description=description or "",
        related_vault_type=related_vault_type,
        pair_id=pair_id,
        reversal_of=reversal_of,
        tags=tuple(json.loads(tags_json or "[]")),
        created_at=datetime.fromisoformat(created_at_str),
        is_deleted=bool(is_deleted),
        deleted_at=datetime.fromisoformat(deleted_at_str) if deleted_at_str else None,
        deleted_reason=deleted_reason,
    )


def _fetch_row(
    cur: sqlite3.Cursor, company_id: int, transaction_id: int
) -> Optional[CashTransaction]:
    cur.execute(
        _SELECT_CASH_TRANSACTION + " WHERE id = ? AND company_id = ?;",
        (transaction_id, company_id),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return _row_to_cash_transaction(row)


# ---------------------------------------------------------------------------
# Public API: movements
# ---------------------------------------------------------------------------


def deposit(
    cfg: DatabaseConfig,
    company_id: int,
    amount: float,
    description: str = "",
    vault_type: str = MAIN_VAULT,
    tags: Optional[Iterable[str]] = None,
) -> CashTransaction:
    """
    Record money entering the ledger (single transfer_in row).

    Raises
    ------
    ValidationError
        If the amount is not strictly positive or the vault is unknown.
    NotFound
        If the company does not exist.
    """
    validate_vault(vault_type)
    cents = _amount_to_cents(amount)
    tag_list = _normalize_tags(tags)
    require_company(cfg, company_id)

    with _write_transaction(cfg) as cur:
        tx_id = _insert_row(
            cur,
            company_id,
            vault_type,
            "transfer_in",
            cents,
            description,
            None,
            tag_list,
            now_utc_iso(),
        )
        created = _fetch_row(cur, company_id, tx_id)

    logger.info(
        "Company #%s: deposit of %.2f into %s", company_id, from_cents(cents), vault_type
    )

    if created is None:
        msg = f"Cash transaction #{tx_id} was just inserted but could not be reloaded."
        raise RuntimeError(msg)
    return created


def transfer(
    cfg: DatabaseConfig,
    company_id: int,
    from_vault: str,
    to_vault: str,
    amount: float,
    description: str = "",
    tags: Optional[Iterable[str]] = None,
) -> TransferResult:
    """
    Move money from one vault to another, atomically.

    Parameters
    ----------
    cfg:
        Database configuration.
    company_id:
        Owning company.
    from_vault, to_vault:
        Source and destination vaults (see VAULT_TYPES). They must differ
        and the source cannot be ``withdrawals``.
    amount:
        Strictly positive amount.
    description:
        Free text stored on both rows.
    tags:
        Optional labels stored on both rows.

    Returns
    -------
    TransferResult

    Raises
    ------
    ValidationError
        On a non-positive amount, an unknown vault, identical vaults or a
        transfer out of ``withdrawals``.
    InsufficientBalance
        If the source vault holds less than ``amount``. Nothing is written.
    NotFound
        If the company does not exist.
    """
    validate_vault(from_vault)
    validate_vault(to_vault)
    if from_vault == to_vault:
        raise ValidationError("Source and destination vaults must be different.")
    if from_vault == WITHDRAWALS_VAULT:
        raise ValidationError("Money cannot be transferred out of the withdrawals vault.")
    cents = _amount_to_cents(amount)
    tag_list = _normalize_tags(tags)
    require_company(cfg, company_id)

    with _write_transaction(cfg) as cur:
        out_id, in_id = _move(
            cur, company_id, from_vault, to_vault, cents, description, tag_list
        )
        from_balance = _vault_balance_cents(cur, company_id, from_vault)
        to_balance = _vault_balance_cents(cur, company_id, to_vault)

    logger.info(
        "Company #%s: transferred %.2f from %s to %s",
        company_id,
        from_cents(cents),
        from_vault,
        to_vault,
    )

    return TransferResult(
        out_transaction_id=out_id,
        in_transaction_id=in_id,
        from_vault=from_vault,
        to_vault=to_vault,
        amount=from_cents(cents),
        from_balance=from_cents(from_balance),
        to_balance=from_cents(to_balance),
    )


def delete_cash_transaction(
    cfg: DatabaseConfig,
    company_id: int,
    transaction_id: int,
    reason: Optional[str] = None,
) -> ReversalResult:
    """
    Delete a ledger row by reversing its effect.

    The movement the row belongs to is compensated by a movement in the
    reverse direction:

    - a transfer (two rows) is compensated by a transfer from its
      destination back to its source, whichever of the two rows is targeted;
    - a deposit is compensated by an external transfer_out on its vault.

    The compensation must pass the same sufficiency check as any transfer.
    The original row and its pair partner are then flagged as deleted.
    Everything happens in a single transaction.

    Raises
    ------
    NotFound
        If the row does not exist for this company.
    ValidationError
        If the row is already deleted or is itself a compensation row.
    InsufficientBalance
        If the vault to take the money back from no longer holds it.
    """
    with _write_transaction(cfg) as cur:
        original = _fetch_row(cur, company_id, transaction_id)
        if original is None:
            raise NotFound(f"Cash transaction #{transaction_id} does not exist.")
        if original.is_deleted:
            raise ValidationError(f"Cash transaction #{transaction_id} is already deleted.")
        if original.reversal_of is not None:
            raise ValidationError(
                f"Cash transaction #{transaction_id} is a reversal entry and cannot be deleted."
            )

        partner = None
        if original.pair_id is not None:
            partner = _fetch_row(cur, company_id, original.pair_id)

        cents = to_cents(original.amount)
        description = REVERSAL_PREFIX + original.description
        tags = list(original.tags)

        if partner is not None:
            if original.transaction_type == "transfer_out":
                source, destination = original, partner
            else:
                source, destination = partner, original
            compensation_ids = _move(
                cur,
                company_id,
                destination.vault_type,
                source.vault_type,
                cents,
                description,
                tags,
                reversal_of=original.id,
            )
            deleted_ids: tuple[int, ...] = (original.id, partner.id)
        else:
            if original.transaction_type == "transfer_in":
                _ensure_funds(cur, company_id, original.vault_type, cents)
                reverse_type = "transfer_out"
            else:
                reverse_type = "transfer_in"
            compensation_ids = (
                _insert_row(
                    cur,
                    company_id,
                    original.vault_type,
                    reverse_type,
                    cents,
                    description,
                    original.related_vault_type,
                    tags,
                    now_utc_iso(),
                    reversal_of=original.id,
                ),
            )
            deleted_ids = (original.id,)

        deleted_at = now_utc_iso()
        cur.executemany(
            """
            UPDATE cash_transactions
               SET is_deleted = 1,
                   deleted_at = ?,
                   deleted_reason = ?
             WHERE id = ? AND company_id = ?;
            """,
            [(deleted_at, reason, row_id, company_id) for row_id in deleted_ids],
        )

    logger.info(
        "Company #%s: reversed cash transaction #%s (%.2f, %s)",
        company_id,
        transaction_id,
        original.amount,
        original.vault_type,
    )

    return ReversalResult(deleted_ids=deleted_ids, compensation_ids=tuple(compensation_ids))


# ---------------------------------------------------------------------------
# Public API: reads
# ---------------------------------------------------------------------------


def get_vault_balance(cfg: DatabaseConfig, company_id: int, vault_type: str) -> float:
    """Ledger balance of a single vault."""
    validate_vault(vault_type)
    init_database(cfg)

    conn = connect(cfg)
    try:
        cents = _vault_balance_cents(conn.cursor(), company_id, vault_type)
    finally:
        conn.close()

    return from_cents(cents)


def get_balances(
    cfg: DatabaseConfig,
    company_id: int,
    net_balance: float = 0.0,
) -> CashBalances:
    """
    Compute every vault balance of a company.

    Parameters
    ----------
    cfg:
        Database configuration.
    company_id:
        Owning company.
    net_balance:
        Net balance of the income statement (net profit). It is reported
        unchanged as ``available_balance``.
    """
    init_database(cfg)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT vault_type,
                   SUM(CASE transaction_type
                           WHEN 'transfer_in' THEN amount_cents
                           ELSE -amount_cents
                       END)
              FROM cash_transactions
             WHERE company_id = ?
             GROUP BY vault_type;
            """,
            (company_id,),
        )
        rows = cur.fetchall()
    finally:
        conn.close()

    cents = {vault: 0 for vault in VAULT_TYPES}
    for vault, total in rows:
        cents[vault] = int(total or 0)

    return CashBalances(
        available_balance=float(net_balance),
        net_balance=float(net_balance),
        main_ledger_balance=from_cents(cents[MAIN_VAULT]),
        emergency_reserve=from_cents(cents["emergency_reserve"]),
        working_capital=from_cents(cents["working_capital"]),
        investments=from_cents(cents["investments"]),
        withdrawals=from_cents(cents[WITHDRAWALS_VAULT]),
    )


def get_cash_transaction(
    cfg: DatabaseConfig, company_id: int, transaction_id: int
) -> Optional[CashTransaction]:
    """Load one ledger row (deleted or not), or None if it does not exist."""
    init_database(cfg)

    conn = connect(cfg)
    try:
        return _fetch_row(conn.cursor(), company_id, transaction_id)
    finally:
        conn.close()


def list_cash_transactions(
    cfg: DatabaseConfig,
    company_id: int,
    vault_type: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    tag: Optional[str] = None,
    include_deleted: bool = False,
) -> pd.DataFrame:
    """
    List ledger rows, newest first.

    Parameters
    ----------
    vault_type:
        Optional vault filter.
    start, end:
        Optional inclusive bounds on the creation date.
    tag:
        Optional tag that rows must carry.
    include_deleted:
        When False (default), rows flagged as deleted are hidden.

    Returns
    -------
    pandas.DataFrame
        Columns: id, created_at (datetime64), vault_type, transaction_type,
        amount, description, related_vault_type, pair_id, reversal_of,
        tags (list of str), is_deleted (bool).
    """
    if vault_type is not None:
        validate_vault(vault_type)
    init_database(cfg)

    where_clauses = ["company_id = ?"]
    params: list[object] = [company_id]
    if vault_type is not None:
        where_clauses.append("vault_type = ?")
        params.append(vault_type)
    if start is not None:
        where_clauses.append("substr(created_at, 1, 10) >= ?")
        params.append(start.isoformat())
    if end is not None:
        where_clauses.append("substr(created_at, 1, 10) <= ?")
        params.append(end.isoformat())
    if not include_deleted:
        where_clauses.append("is_deleted = 0")

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            _SELECT_CASH_TRANSACTION
            + f" WHERE {' AND '.join(where_clauses)} ORDER BY id DESC;",
            params,
        )
        rows = [_row_to_cash_transaction(row) for row in cur.fetchall()]
    finally:
        conn.close()

    if tag is not None:
        rows = [row for row in rows if tag in row.tags]

    records = [
        {
            "id": row.id,
            "created_at": row.created_at,
            "vault_type": row.vault_type,
            "transaction_type": row.transaction_type,
            "amount": row.amount,
            "description": row.description,
            "related_vault_type": row.related_vault_type,
            "pair_id": row.pair_id,
            "reversal_of": row.reversal_of,
            "tags": list(row.tags),
            "is_deleted": row.is_deleted,
        }
        for row in rows
    ]
    df = pd.DataFrame(records, columns=CASH_TRANSACTION_COLUMNS)
    df["created_at"] = pd.to_datetime(df["created_at"], utc=True)
    return df


# ---------------------------------------------------------------------------
# Cash tags
# ---------------------------------------------------------------------------


def create_tag(
    cfg: DatabaseConfig,
    company_id: int,
    name: str,
    color: str = DEFAULT_TAG_COLOR,
) -> int:
    """
    Create a cash tag and return its id.

    Raises
    ------
    ValidationError
        If the name is empty or already used, or the color is not ``#RRGGBB``.
    """
    name = name.strip()
    if not name:
        raise ValidationError("Tag name cannot be empty.")
    if not _COLOR_RE.match(color):
        raise ValidationError(f"Invalid tag color {color!r}, expected #RRGGBB.")
    require_company(cfg, company_id)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        try:
            cur.execute(
                """
                INSERT INTO cash_tags (company_id, name, color, created_at)
                VALUES (?, ?, ?, ?);
                """,
                (company_id, name, color, now_utc_iso()),
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"Tag {name!r} already exists.") from exc
        tag_id = cur.lastrowid
        conn.commit()
    finally:
        conn.close()

    return tag_id


def list_tags(cfg: DatabaseConfig, company_id: int) -> pd.DataFrame:
    """Return the cash tags of a company (columns: id, name, color)."""
    init_database(cfg)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, name, color
              FROM cash_tags
             WHERE company_id = ?
             ORDER BY name;
            """,
            (company_id,),
        )
        rows = cur.fetchall()
    finally:
        conn.close()

    return pd.DataFrame(rows, columns=["id", "name", "color"])


def delete_tag(cfg: DatabaseConfig, company_id: int, tag_id: int) -> None:
    """
    Delete a cash tag.

    Ledger rows keep the label in their own ``tags`` list.
    """
    init_database(cfg)

    conn = connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            "DELETE FROM cash_tags WHERE id = ? AND company_id = ?;",
            (tag_id, company_id),
        )
        if cur.rowcount == 0:
            raise NotFound(f"Tag #{tag_id} does not exist.")
        conn.commit()
    finally:
        conn.close()
