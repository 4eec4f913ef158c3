# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Multi-period orchestration for statements and metrics.

Overview
--------
``compute_dre_history()`` builds the income statement and the derived
metrics of several months in a single pass:

1. Computes the overall [min(start), max(end)] date range covering all
   requested periods.
2. Loads the company's transactions from the database *once* for that
   global range, together with its categories, clients and tax
   configuration.
3. For each Period, aggregates the month, computes the statement and the
   metrics, and records every line with a ``period_label`` column.
4. Concatenates everything into two long-format DataFrames.

``compare_periods()`` and ``build_comparison()`` put a month side by side
with its comparison period (previous month or same month of the previous
year), with the variation of each statement line.

Separation of concerns
----------------------
- ``engine.py`` and ``metrics.py`` remain the single source of truth for
  how one month is computed.
- ``multi_periods.py`` assembles them across months.
"""

from dataclasses import dataclass
from typing import Any, Optional

import pandas as pd

from .aggregator import aggregate
from .config import AppConfig
from .db import (
    get_tax_configuration,
    load_categories,
    load_clients,
    load_transactions,
    require_company,
)
from .engine import STATEMENT_LINES, DREResult, compute_dre
from .metrics import compute_metrics, describe_metrics
from .periods import Period, comparison_period
from .reports_service import DREReport, build_dre_report
from .taxes import resolve_deductions

STATEMENT_HISTORY_COLUMNS: list[str] = [
    "period_label",
    "year",
    "month",
    "key",
    "label",
    "kind",
    "amount",
]

METRICS_HISTORY_COLUMNS: list[str] = [
    "period_label",
    "year",
    "month",
    "key",
    "label",
    "unit",
    "value",
]


@dataclass(frozen=True)
class HistoryMultiPeriod:
    """
    Multi-period result for statements and metrics.

    Attributes
    ----------
    statements :
        Long-format DataFrame, one row per statement line and period.
        Columns: period_label, year, month, key, label, kind, amount.
    metrics :
        Long-format DataFrame, one row per metric and period.
        Columns: period_label, year, month, key, label, unit, value
        (None when the metric is not computable).
    """

    statements: pd.DataFrame
    metrics: pd.DataFrame


@dataclass(frozen=True)
class PeriodVariation:
    """One statement line of a period comparison."""

    key: str
    label: str
    current: float
    comparison: float
    difference: float
    variation_pct: Optional[float]


def compute_dre_history(
    app_config: AppConfig,
    company_id: int,
    periods: list[Period],
) -> HistoryMultiPeriod:
    """
    Compute statements and metrics over multiple months in a single pass.

    Parameters
    ----------
    app_config :
        Global application configuration (database, metrics options).
    company_id :
        Company to report on.
    periods :
        Months to compute, in display order.

    Returns
    -------
    HistoryMultiPeriod

    Raises
    ------
    ValueError
        If no periods are provided.
    NotFound
        If the company does not exist.
    """
    if not periods:
        raise ValueError("compute_dre_history requires at least one Period.")

    cfg = app_config.database
    require_company(cfg, company_id)
    tax_config = get_tax_configuration(cfg, company_id)

    # 1) Global date range across all requested periods.
    global_start = min(p.start for p in periods)
    global_end = max(p.end for p in periods)

    # 2) Load every input once.
    tx_all = load_transactions(cfg, company_id, global_start, global_end)
    categories = load_categories(cfg, company_id)
    clients = load_clients(cfg, company_id)

    statement_rows: list[dict[str, Any]] = []
    metric_rows: list[dict[str, Any]] = []

    for period in periods:
        aggregated = aggregate(tx_all, categories, period, clients)
        deductions = resolve_deductions(tax_config, aggregated.revenue)
        dre = compute_dre(aggregated, deductions, tax_config)
        metrics = compute_metrics(dre, aggregated, ltv_months=app_config.metrics.ltv_months)

        for line in STATEMENT_LINES:
            statement_rows.append(
                {
                    "period_label": period.label,
                    "year": period.year,
                    "month": period.month,
                    "key": line.key,
                    "label": line.label,
                    "kind": line.kind,
                    "amount": float(getattr(dre, line.key)),
                }
            )

        for metric in describe_metrics(metrics):
            metric_rows.append(
                {
                    "period_label": period.label,
                    "year": period.year,
                    "month": period.month,
                    "key": metric.key,
                    "label": metric.label,
                    "unit": metric.unit,
                    "value": metric.value,
                }
            )

    return HistoryMultiPeriod(
        statements=pd.DataFrame(statement_rows, columns=STATEMENT_HISTORY_COLUMNS),
        metrics=pd.DataFrame(metric_rows, columns=METRICS_HISTORY_COLUMNS),
    )


def compare_periods(current: DREResult, comparison: DREResult) -> list[PeriodVariation]:
    """
    Statement lines of two periods side by side.

    ``variation_pct`` is (current - comparison) / |comparison| * 100, and None
    when the comparison value is 0.
    """
    out: list[PeriodVariation] = []
    for line in STATEMENT_LINES:
        current_value = float(getattr(current, line.key))
        comparison_value = float(getattr(comparison, line.key))
        difference = current_value - comparison_value
        if comparison_value == 0:
            variation = None
        else:
            variation = difference / abs(comparison_value) * 100.0
        out.append(
            PeriodVariation(
                key=line.key,
                label=line.label,
                current=current_value,
                comparison=comparison_value,
                difference=difference,
                variation_pct=variation,
            )
        )
    return out


def build_comparison(
    app_config: AppConfig,
    company_id: int,
    period: Period,
    mode: str,
) -> tuple[DREReport, DREReport, list[PeriodVariation]]:
    """
    Statement of ``period`` compared with its comparison period.

    Parameters
    ----------
    mode :
        "previous-month" or "same-period-last-year".
    """
    other = comparison_period(period, mode)
    current_report = build_dre_report(app_config, company_id, period)
    comparison_report = build_dre_report(app_config, company_id, other)
    return (
        current_report,
        comparison_report,
        compare_periods(current_report.dre, comparison_report.dre),
    )
