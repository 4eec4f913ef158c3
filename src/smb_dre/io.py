# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
I/O module for SMB DRE.

This module handles reading transactions from a CSV file and normalizing
them into a simple, consistent structure suitable for ``db.import_transactions``.

Expected input format
---------------------
Column names are case-insensitive:

    date, amount, category, description                  (required)
    client, transaction_type,
    is_new_client, is_marketing_cost, is_sales_cost      (optional)

- ``date``:              date of the transaction (YYYY-MM-DD)
- ``amount``:            strictly positive amount
- ``category``:          category name, resolved against the company's
                         categories at import time (may be empty)
- ``description``:       free text label
- ``client``:            client name, resolved at import time
- ``transaction_type``:  'administrative' or 'operational' (default)
- ``is_*`` flags:        true/false, yes/no, 1/0 (default false)

Label alias
-----------
The column ``label`` is accepted as an alias for ``description``.

Output schema
-------------
    - ``date``              (datetime64[ns])
    - ``amount``            (float, > 0)
    - ``category``          (str, may be empty)
    - ``description``       (str)
    - ``client``            (str, may be empty)
    - ``transaction_type``  (str)
    - ``is_new_client``, ``is_marketing_cost``, ``is_sales_cost`` (bool)

Any other columns present in the input file are ignored. If the CSV
structure or values are invalid, a clear ValueError is raised.
"""

import os
from typing import Union

import pandas as pd

from .db import TRANSACTION_TYPES

FLAG_COLUMNS: tuple[str, ...] = ("is_new_client", "is_marketing_cost", "is_sales_cost")

OUTPUT_COLUMNS: list[str] = [
    "date",
    "amount",
    "category",
    "description",
    "client",
    "transaction_type",
    *FLAG_COLUMNS,
]

_TRUE_VALUES = {"1", "true", "yes", "y", "x"}
_FALSE_VALUES = {"0", "false", "no", "n", ""}


def _parse_flag(value: object, column: str) -> bool:
    if isinstance(value, bool):
        return value
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return False
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value {value!r} in '{column}' column.")


def _text_column(df: pd.DataFrame, column: str, default: str = "") -> pd.Series:
    if column not in df.columns:
        return pd.Series([default] * len(df), index=df.index, dtype=object)
    return df[column].fillna(default).astype(str).str.strip()


def read_transactions(path: Union[str, "os.PathLike[str]"]) -> pd.DataFrame:
    """
    Read transactions from a CSV file and normalize them.

    Parameters
    ----------
    path:
        Path to the CSV file.

    Returns
    -------
    pandas.DataFrame
        A DataFrame with exactly the OUTPUT_COLUMNS columns (see module
        docstring).

    Raises
    ------
    ValueError
        If required columns are missing, a date or amount cannot be parsed,
        an amount is not strictly positive, a transaction type is unknown
        or a flag is not a boolean.
    """
    df = pd.read_csv(path, dtype=str, keep_default_na=False)

    # Normalize column names to lowercase (to make the check case-insensitive)
    df.columns = [c.lower().strip() for c in df.columns]
    cols = set(df.columns)

    if "label" in cols and "description" not in cols:
        df = df.rename(columns={"label": "description"})
        cols = set(df.columns)

    required = {"date", "amount", "category", "description"}
    missing = required - cols
    if missing:
        raise ValueError(
            "Invalid transactions structure. Missing column(s): "
            f"{', '.join(sorted(missing))}. Expected at least: "
            "date, amount, category, description (case-insensitive; 'label' "
            "is accepted as an alias for 'description')."
        )

    out = pd.DataFrame(index=df.index)

    try:
        out["date"] = pd.to_datetime(df["date"], format="%Y-%m-%d", errors="raise")
    except (ValueError, TypeError) as exc:
        raise ValueError("Invalid values in 'date' column, expected YYYY-MM-DD.") from exc

    out["amount"] = pd.to_numeric(df["amount"], errors="coerce")
    if out["amount"].isna().any():
        raise ValueError("Invalid numeric values in 'amount' column.")
    if (out["amount"] <= 0).any():
        raise ValueError(
            "Transaction amounts must be strictly positive; the direction comes "
            "from the category type."
        )

    out["category"] = _text_column(df, "category")
    out["description"] = _text_column(df, "description")
    out["client"] = _text_column(df, "client")

    transaction_type = _text_column(df, "transaction_type", "operational").str.lower()
    transaction_type = transaction_type.replace("", "operational")
    unknown = sorted(set(transaction_type) - set(TRANSACTION_TYPES))
    if unknown:
        raise ValueError(
            f"Invalid values in 'transaction_type' column: {', '.join(unknown)}."
        )
    out["transaction_type"] = transaction_type

    for column in FLAG_COLUMNS:
        if column in df.columns:
            out[column] = [_parse_flag(v, column) for v in df[column]]
        else:
            out[column] = False
        out[column] = out[column].astype(bool)

    return out[OUTPUT_COLUMNS].reset_index(drop=True)
