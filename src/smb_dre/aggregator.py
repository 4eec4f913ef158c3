# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Transaction aggregator for SMB DRE.

This module turns the raw transactions of one month into the flat set of
figures consumed by the statement engine (engine.py) and the metrics
calculator (metrics.py).

Classification
--------------
Every transaction amount is positive; its direction comes from its
category:

    category_type  is_financial  bucket
    -------------  ------------  -----------------------------------------
    revenue        no            revenue
    revenue        yes           financial income
    cost           (ignored)     direct cost (COGS), split fixed / variable
    expense        no            operating expense, fixed or variable
    expense        yes           financial expense

A subcategory inherits ``cost_classification``, ``markup_type`` and the
financial flag from its parent when its own value is not set.

Cost and expense categories without a fixed/variable classification are
counted as fixed. Their total is reported in ``unclassified_amount`` so the
presentation layer can flag them.

Transactions without a category (or referencing a category of another
company) do not enter any sum. Their total is reported in
``uncategorized_amount``.

Client counters (new, active, repeat) are computed on every transaction of
the period, categorized or not.
"""

import logging
from dataclasses import dataclass, fields
from typing import Optional

import pandas as pd

from .periods import Period, filter_by_period

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregatedFigures:
    """
    Flat monthly figures derived from transactions.

    Monetary attributes are unrounded sums of positive amounts.

    Attributes
    ----------
    revenue:
        Non-financial revenue (gross revenue of the statement).
    direct_costs:
        Cost of goods sold; ``direct_fixed_costs + direct_variable_costs``.
    fixed_expenses, variable_expenses:
        Non-financial operating expenses by cost classification.
    financial_expenses, financial_income:
        Financial lines below operating profit.
    marketing_costs, sales_costs:
        Sums of transactions flagged as marketing / sales costs.
    new_clients_count:
        Distinct clients on transactions flagged ``is_new_client``.
    total_active_clients:
        Distinct active clients with a transaction in the period.
    repeat_customers_count:
        Active clients that are not new in the period.
    sales_count:
        Number of non-financial revenue transactions.
    transaction_count:
        Number of transactions in the period after filters.
    uncategorized_amount, unclassified_amount:
        Diagnostics, see module docstring.
    markup_direct_costs, markup_variable_expenses, markup_fixed_expenses:
        Sums per category ``markup_type`` tag, inputs of the markup
        calculator.
    """

    revenue: float = 0.0
    direct_costs: float = 0.0
    direct_fixed_costs: float = 0.0
    direct_variable_costs: float = 0.0
    fixed_expenses: float = 0.0
    variable_expenses: float = 0.0
    financial_expenses: float = 0.0
    financial_income: float = 0.0
    marketing_costs: float = 0.0
    sales_costs: float = 0.0
    new_clients_count: int = 0
    total_active_clients: int = 0
    repeat_customers_count: int = 0
    sales_count: int = 0
    transaction_count: int = 0
    uncategorized_amount: float = 0.0
    unclassified_amount: float = 0.0
    markup_direct_costs: float = 0.0
    markup_variable_expenses: float = 0.0
    markup_fixed_expenses: float = 0.0

    @property
    def revenue_sum(self) -> float:
        """Revenue used for the average ticket (same as ``revenue``)."""
        return self.revenue

    def to_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _resolve_categories(categories: pd.DataFrame) -> pd.DataFrame:
    """
    Return one row per category id with inherited attributes resolved.

    Output columns: category_type, cost_classification, markup_type,
    is_financial, parent_id. Indexed by category id.
    """
    cats = categories.set_index("id")
    resolved = cats[
        ["category_type", "cost_classification", "markup_type", "is_financial", "parent_id"]
    ].copy()

    for idx, row in cats.iterrows():
        parent_id = row["parent_id"]
        if pd.isna(parent_id) or parent_id not in cats.index:
            continue
        parent = cats.loc[parent_id]
        if pd.isna(row["cost_classification"]):
            resolved.at[idx, "cost_classification"] = parent["cost_classification"]
        if pd.isna(row["markup_type"]):
            resolved.at[idx, "markup_type"] = parent["markup_type"]
        if not row["is_financial"] and bool(parent["is_financial"]):
            resolved.at[idx, "is_financial"] = True

    resolved["is_financial"] = resolved["is_financial"].astype(bool)
    return resolved


def _sum(frame: pd.DataFrame, mask: pd.Series) -> float:
    return float(frame.loc[mask, "amount"].sum())


def aggregate(
    transactions: pd.DataFrame,
    categories: pd.DataFrame,
    period: Period,
    clients: Optional[pd.DataFrame] = None,
    *,
    category_id: Optional[int] = None,
    client_id: Optional[int] = None,
) -> AggregatedFigures:
    """
    Aggregate the transactions of a period into statement inputs.

    Parameters
    ----------
    transactions:
        Transactions as returned by ``db.load_transactions``.
    categories:
        Categories as returned by ``db.load_categories``.
    period:
        Month to aggregate (inclusive date bounds).
    clients:
        Optional clients frame (``db.load_clients``). When given, only
        clients flagged active count as active clients.
    category_id:
        Optional filter: keep only this category and its subcategories.
    client_id:
        Optional filter: keep only transactions of this client.

    Returns
    -------
    AggregatedFigures
        Unrounded sums and counters. An empty period yields all zeros.
    """
    tx = filter_by_period(transactions, period)

    if client_id is not None:
        tx = tx[(tx["client_id"] == client_id).fillna(False).astype(bool)]

    resolved = _resolve_categories(categories)

    if category_id is not None:
        children = (resolved["parent_id"] == category_id).fillna(False).astype(bool)
        keep = set(int(c) for c in resolved.index[children.to_numpy()])
        keep.add(category_id)
        tx = tx[tx["category_id"].isin(list(keep)).fillna(False).astype(bool)]

    if tx.empty:
        return AggregatedFigures()

    known = tx["category_id"].isin(list(resolved.index)).fillna(False).astype(bool)
    uncategorized_amount = _sum(tx, ~known)

    cat_tx = (
        tx[known]
        .astype({"category_id": "int64"})
        .join(resolved, on="category_id", rsuffix="_category")
    )

    ctype = cat_tx["category_type"]
    financial = cat_tx["is_financial"].astype(bool)
    classification = cat_tx["cost_classification"]
    variable = classification == "variable"
    unclassified = classification.isna()

    is_revenue = (ctype == "revenue") & ~financial
    is_cost = ctype == "cost"
    is_expense = (ctype == "expense") & ~financial

    revenue = _sum(cat_tx, is_revenue)
    direct_variable = _sum(cat_tx, is_cost & variable)
    direct_fixed = _sum(cat_tx, is_cost & ~variable)
    variable_expenses = _sum(cat_tx, is_expense & variable)
    fixed_expenses = _sum(cat_tx, is_expense & ~variable)
    unclassified_amount = _sum(cat_tx, (is_cost | is_expense) & unclassified)

    markup = cat_tx["markup_type"]

    # Client counters and marketing/sales flags use every transaction of the period.
    with_client = tx[tx["client_id"].notna()]
    active_ids = set(int(c) for c in with_client["client_id"].unique())
    if clients is not None and not clients.empty:
        active_flags = dict(zip(clients["id"].astype(int), clients["is_active"].astype(bool)))
        active_ids = {c for c in active_ids if active_flags.get(c, True)}

    flagged_new = tx[tx["is_new_client"].astype(bool)]
    new_ids = set(int(c) for c in flagged_new["client_id"].dropna().unique())
    anonymous_new = int(flagged_new["client_id"].isna().sum())

    figures = AggregatedFigures(
        revenue=revenue,
        direct_costs=direct_fixed + direct_variable,
        direct_fixed_costs=direct_fixed,
        direct_variable_costs=direct_variable,
        fixed_expenses=fixed_expenses,
        variable_expenses=variable_expenses,
        financial_expenses=_sum(cat_tx, (ctype == "expense") & financial),
        financial_income=_sum(cat_tx, (ctype == "revenue") & financial),
        marketing_costs=_sum(tx, tx["is_marketing_cost"].astype(bool)),
        sales_costs=_sum(tx, tx["is_sales_cost"].astype(bool)),
        new_clients_count=len(new_ids) + anonymous_new,
        total_active_clients=len(active_ids),
        repeat_customers_count=len(active_ids - new_ids),
        sales_count=int(is_revenue.sum()),
        transaction_count=int(len(tx)),
        uncategorized_amount=uncategorized_amount,
        unclassified_amount=unclassified_amount,
        markup_direct_costs=_sum(cat_tx, markup == "direct_cost"),
        markup_variable_expenses=_sum(cat_tx, markup == "variable_expense"),
        markup_fixed_expenses=_sum(cat_tx, markup == "fixed_expense"),
    )

    if uncategorized_amount:
        logger.warning(
            "%s: %.2f in transactions without a category were left out of the statement",
            period.label,
            uncategorized_amount,
        )

    return figures
