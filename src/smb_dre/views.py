# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
View utilities for SMB DRE.

The calculators return plain numeric records. This module turns them into
pandas DataFrames ready for display or CSV export, and is the only place
where rounding happens.

The main views are:

- statement:  one row per statement line, with deduction details and the
              vertical analysis (% of net revenue),
- margins:    gross / operating / net margins,
- metrics:    derived metrics with units and notes (NaN when not
              computable),
- markup, goals, scenario and period comparison tables,
- cash balances per vault,
- history:    wide table of statement lines by month.
"""

from typing import Optional

import pandas as pd

from .engine import MARGIN_LINES, STATEMENT_LINES, DREResult
from .goals import GoalComparison
from .ledger import VAULT_LABELS, VAULT_TYPES, CashBalances
from .metrics import MarkupInputs, MarkupResult, MetricsResult, describe_metrics
from .multi_periods import PeriodVariation
from .scenarios import ScenarioLine


def _round(value: Optional[float], decimals: int) -> float:
    if value is None:
        return float("nan")
    return round(float(value), decimals)


def _renumber_display_order(df: pd.DataFrame) -> pd.DataFrame:
    """Renumber display_order to 10, 20, 30, ... in current row order."""
    df = df.reset_index(drop=True)
    df.insert(0, "display_order", (df.index + 1) * 10)
    return df


def statement_to_dataframe(dre: DREResult, decimals: int = 2) -> pd.DataFrame:
    """
    Income statement as a DataFrame.

    Columns: display_order, key, label, kind, amount, av_pct.
    Deduction lines are inserted (kind 'detail') right after the
    deductions total. ``av_pct`` is the line as a percentage of net
    revenue, 0 when net revenue is 0.
    """
    net_revenue = dre.net_revenue

    def av(amount: float) -> float:
        if net_revenue == 0:
            return 0.0
        return amount / net_revenue * 100.0

    rows: list[dict[str, object]] = []
    for line in STATEMENT_LINES:
        amount = float(getattr(dre, line.key))
        rows.append(
            {
                "key": line.key,
                "label": line.label,
                "kind": line.kind,
                "amount": _round(amount, decimals),
                "av_pct": _round(av(amount), decimals),
            }
        )
        if line.key == "deductions_total":
            for deduction in dre.deductions.lines:
                rows.append(
                    {
                        "key": f"deduction_{deduction.key}",
                        "label": f"  {deduction.label}",
                        "kind": "detail",
                        "amount": _round(deduction.amount, decimals),
                        "av_pct": _round(av(deduction.amount), decimals),
                    }
                )

    return _renumber_display_order(pd.DataFrame(rows))


def margins_to_dataframe(dre: DREResult, decimals: int = 2) -> pd.DataFrame:
    """Margins (% of net revenue). Columns: key, label, value."""
    rows = [
        {"key": key, "label": label, "value": _round(getattr(dre, key), decimals)}
        for key, label in MARGIN_LINES
    ]
    return pd.DataFrame(rows, columns=["key", "label", "value"])


def metrics_to_dataframe(metrics: MetricsResult, decimals: int = 2) -> pd.DataFrame:
    """
    Derived metrics as a DataFrame.

    Columns: key, label, value, unit, notes. ``value`` is NaN for metrics
    that could not be computed (zero or negative denominator).
    """
    rows = [
        {
            "key": m.key,
            "label": m.label,
            "value": _round(m.value, decimals),
            "unit": m.unit,
            "notes": m.notes,
        }
        for m in describe_metrics(metrics)
    ]
    return pd.DataFrame(rows, columns=["key", "label", "value", "unit", "notes"])


def markup_to_dataframe(
    inputs: MarkupInputs, result: MarkupResult, decimals: int = 2
) -> pd.DataFrame:
    """Markup calculator inputs and outputs. Columns: key, label, value."""
    rows = [
        ("direct_cost_total", "Direct costs", inputs.direct_cost_total),
        ("variable_expenses", "Variable expenses", inputs.variable_expenses),
        ("fixed_expenses", "Fixed expenses", inputs.fixed_expenses),
        ("variable_expense_pct", "Variable expenses %", result.variable_expense_pct),
        ("fixed_expense_pct", "Fixed expenses %", result.fixed_expense_pct),
        ("desired_margin_pct", "Desired margin %", result.desired_margin_pct),
        (
            "markup_index",
            "Markup index",
            result.markup_index if result.computable else None,
        ),
        (
            "suggested_price",
            "Suggested price",
            result.suggested_price if result.computable else None,
        ),
    ]
    return pd.DataFrame(
        [{"key": k, "label": label, "value": _round(v, decimals)} for k, label, v in rows],
        columns=["key", "label", "value"],
    )


def goals_to_dataframe(comparisons: list[GoalComparison], decimals: int = 2) -> pd.DataFrame:
    """Goals vs actuals. Columns: metric, label, actual, target, difference, deviation_pct, achieved."""
    columns = ["metric", "label", "actual", "target", "difference", "deviation_pct", "achieved"]
    rows = [
        {
            "metric": c.metric_name,
            "label": c.label,
            "actual": _round(c.actual, decimals),
            "target": _round(c.target, decimals),
            "difference": _round(c.difference, decimals),
            "deviation_pct": _round(c.deviation_pct, decimals),
            "achieved": c.achieved,
        }
        for c in comparisons
    ]
    return pd.DataFrame(rows, columns=columns)


def scenario_to_dataframe(lines: list[ScenarioLine], decimals: int = 2) -> pd.DataFrame:
    """Scenario comparison. Columns: key, label, current, simulated, difference, variation_pct."""
    columns = ["key", "label", "current", "simulated", "difference", "variation_pct"]
    rows = [
        {
            "key": line.key,
            "label": line.label,
            "current": _round(line.current, decimals),
            "simulated": _round(line.simulated, decimals),
            "difference": _round(line.difference, decimals),
            "variation_pct": _round(line.variation_pct, decimals),
        }
        for line in lines
    ]
    return pd.DataFrame(rows, columns=columns)


def comparison_to_dataframe(
    variations: list[PeriodVariation],
    current_label: str,
    comparison_label: str,
    decimals: int = 2,
) -> pd.DataFrame:
    """
    Period comparison, with one column per period named after its label.

    Columns: key, label, <current_label>, <comparison_label>, difference,
    variation_pct.
    """
    rows = [
        {
            "key": v.key,
            "label": v.label,
            current_label: _round(v.current, decimals),
            comparison_label: _round(v.comparison, decimals),
            "difference": _round(v.difference, decimals),
            "variation_pct": _round(v.variation_pct, decimals),
        }
        for v in variations
    ]
    return pd.DataFrame(
        rows,
        columns=["key", "label", current_label, comparison_label, "difference", "variation_pct"],
    )


def balances_to_dataframe(balances: CashBalances, decimals: int = 2) -> pd.DataFrame:
    """
    Vault balances. Columns: key, label, balance.

    The first row is the available balance (statement net balance), the
    last one the sum of every vault.
    """
    rows: list[dict[str, object]] = [
        {
            "key": "available_balance",
            "label": "Available balance",
            "balance": _round(balances.available_balance, decimals),
        }
    ]
    for vault in VAULT_TYPES:
        rows.append(
            {
                "key": vault,
                "label": VAULT_LABELS[vault],
                "balance": _round(balances.vault(vault), decimals),
            }
        )
    rows.append(
        {
            "key": "total_balance",
            "label": "Total in vaults",
            "balance": _round(balances.total_balance, decimals),
        }
    )
    return pd.DataFrame(rows, columns=["key", "label", "balance"])


def history_to_wide(statements: pd.DataFrame, decimals: int = 2) -> pd.DataFrame:
    """
    Pivot a long-format statement history into one column per period.

    Parameters
    ----------
    statements:
        ``HistoryMultiPeriod.statements``.

    Returns
    -------
    pandas.DataFrame
        Columns: key, label, then one column per period label in
        chronological order. Rows follow the statement order.
    """
    if statements.empty:
        return pd.DataFrame(columns=["key", "label"])

    period_order = (
        statements[["period_label", "year", "month"]]
        .drop_duplicates()
        .sort_values(["year", "month"], kind="stable")["period_label"]
        .tolist()
    )
    wide = statements.pivot_table(
        index="key", columns="period_label", values="amount", aggfunc="sum", sort=False
    )
    order = [line.key for line in STATEMENT_LINES if line.key in wide.index]
    labels = {line.key: line.label for line in STATEMENT_LINES}
    wide = wide.loc[order, period_order].round(decimals)
    wide = wide.reset_index()
    wide.insert(1, "label", wide["key"].map(labels))
    wide.columns.name = None
    return wide

