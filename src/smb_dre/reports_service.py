# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
High-level reporting services.

This module sits between:
- the low-level database helpers in `db.py` and `ledger.py`, and
- user-facing layers such as the CLI.

It wires the pure calculators together for one company and one month:

    db.load_*  ->  aggregator.aggregate  ->  taxes.resolve_deductions
               ->  engine.compute_dre    ->  metrics.compute_metrics
               ->  db.upsert_metrics_cache

Responsibilities
----------------
1) Statements
   - Build the income statement of a month, optionally filtered by
     category or client.

2) Metrics and cache
   - Build the derived metrics of a month.
   - Recalculate and store the metrics cache snapshot (idempotent upsert),
     read it back.

3) Markup, goals, scenarios, cash balances
   - Markup inputs from categories tagged with a markup type.
   - Goals vs actuals.
   - What-if scenarios on top of the current statement.
   - Vault balances next to the statement's net balance.

Design notes
------------
- Every function takes the AppConfig and a company id; tenant isolation is
  enforced by passing the company id to every query.
- A missing company raises NotFound before anything is computed.
- The calculators stay pure; this module is the only place that combines
  them with persistence.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import pandas as pd

from .aggregator import AggregatedFigures, aggregate
from .config import AppConfig
from .db import (
    METRICS_CACHE_COLUMNS,
    Company,
    DatabaseConfig,
    create_company,
    get_metrics_cache,
    get_tax_configuration,
    load_categories,
    load_clients,
    load_goals,
    load_transactions,
    require_company,
    upsert_goal,
    upsert_metrics_cache,
)
from .engine import DREResult, compute_dre
from .goals import GoalComparison, compare_goals, validate_goal_metric
from .ledger import CashBalances, get_balances
from .metrics import (
    MarkupInputs,
    MarkupResult,
    MetricsResult,
    compute_markup,
    compute_markup_inputs,
    compute_metrics,
)
from .periods import Period, month_period, validate_month
from .scenarios import ScenarioAdjustments, ScenarioLine, compare_scenario, simulate
from .taxes import TaxConfiguration, resolve_deductions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DREReport:
    """An income statement with the context it was computed in."""

    company: Company
    period: Period
    tax_config: TaxConfiguration
    aggregated: AggregatedFigures
    dre: DREResult


@dataclass(frozen=True)
class MetricsCacheEntry:
    """Stored metrics snapshot of a company for one month."""

    company_id: int
    month: int
    year: int
    values: dict[str, float]


@dataclass(frozen=True)
class ScenarioReport:
    """Baseline statement, simulated statement and their comparison."""

    baseline: DREReport
    adjustments: ScenarioAdjustments
    simulated: DREResult
    lines: list[ScenarioLine]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _get_db_config(app_config: AppConfig) -> DatabaseConfig:
    """Database configuration of the application."""
    return app_config.database


def _report_from_frames(
    company: Company,
    tax_config: TaxConfiguration,
    period: Period,
    transactions: pd.DataFrame,
    categories: pd.DataFrame,
    clients: pd.DataFrame,
    *,
    category_id: Optional[int] = None,
    client_id: Optional[int] = None,
) -> DREReport:
    aggregated = aggregate(
        transactions,
        categories,
        period,
        clients,
        category_id=category_id,
        client_id=client_id,
    )
    deductions = resolve_deductions(tax_config, aggregated.revenue)
    dre = compute_dre(aggregated, deductions, tax_config)
    return DREReport(
        company=company,
        period=period,
        tax_config=tax_config,
        aggregated=aggregated,
        dre=dre,
    )


def metrics_cache_values(metrics: MetricsResult) -> dict[str, float]:
    """Map a MetricsResult onto the metrics cache columns."""
    values = {
        "total_revenue": metrics.gross_revenue,
        "net_revenue": metrics.net_revenue,
        "tax_deductions": metrics.deductions_total,
        "fixed_costs": metrics.fixed_costs,
        "variable_costs": metrics.variable_costs,
        "operational_costs": metrics.operating_expenses,
        "contribution_margin": metrics.contribution_margin,
        "break_even_point": metrics.break_even_point,
        "safety_margin": metrics.safety_margin,
        "safety_margin_percent": metrics.safety_margin_percent,
        "marketing_costs": metrics.marketing_costs,
        "sales_costs": metrics.sales_costs,
        "new_clients_count": metrics.new_clients_count,
        "total_active_clients": metrics.total_active_clients,
        "repeat_customers_count": metrics.repeat_customers_count,
        "total_sales_count": metrics.sales_count,
        "average_ticket": metrics.average_ticket,
        "cac": metrics.cac,
        "ltv": metrics.ltv,
        "ltv_cac_ratio": metrics.ltv_cac_ratio,
        "roi": metrics.roi,
    }
    return {c: float(values[c]) for c in METRICS_CACHE_COLUMNS}


# ---------------------------------------------------------------------------
# Companies
# ---------------------------------------------------------------------------


def register_company(
    app_config: AppConfig,
    name: str,
    tax_regime: str,
    *,
    tax_id: Optional[str] = None,
    business_category: Optional[str] = None,
) -> Company:
    """
    Create a company with the tax defaults of its regime.

    The defaults come from ``[tax_defaults.<regime>]`` in the configuration,
    falling back to the built-in values.
    """
    return create_company(
        _get_db_config(app_config),
        name,
        tax_regime,
        tax_id=tax_id,
        business_category=business_category,
        tax_config=app_config.default_tax_configuration(tax_regime),
    )


# ---------------------------------------------------------------------------
# Statements and metrics
# ---------------------------------------------------------------------------


def build_dre_report(
    app_config: AppConfig,
    company_id: int,
    period: Period,
    *,
    category_id: Optional[int] = None,
    client_id: Optional[int] = None,
) -> DREReport:
    """
    Build the income statement of a company for a period.

    Parameters
    ----------
    app_config:
        Global application configuration.
    company_id:
        Company to report on.
    period:
        Month to report on (see periods.month_period).
    category_id, client_id:
        Optional presentation filters.

    Raises
    ------
    NotFound
        If the company does not exist.
    """
    cfg = _get_db_config(app_config)
    company = require_company(cfg, company_id)
    tax_config = get_tax_configuration(cfg, company_id)

    return _report_from_frames(
        company,
        tax_config,
        period,
        load_transactions(cfg, company_id, period.start, period.end),
        load_categories(cfg, company_id),
        load_clients(cfg, company_id),
        category_id=category_id,
        client_id=client_id,
    )


def build_metrics_report(
    app_config: AppConfig,
    company_id: int,
    period: Period,
) -> tuple[DREReport, MetricsResult]:
    """Build the statement and the derived metrics of a period."""
    report = build_dre_report(app_config, company_id, period)
    metrics = compute_metrics(
        report.dre, report.aggregated, ltv_months=app_config.metrics.ltv_months
    )
    return report, metrics


def recalculate_and_cache(
    app_config: AppConfig,
    company_id: int,
    month: int,
    year: int,
) -> MetricsCacheEntry:
    """
    Recompute the metrics of a month and overwrite the cache snapshot.

    Running it again with unchanged transactions stores the same values.

    Returns
    -------
    MetricsCacheEntry
        The snapshot as read back from the database.
    """
    validate_month(month, year)
    _, metrics = build_metrics_report(app_config, company_id, month_period(month, year))

    cfg = _get_db_config(app_config)
    upsert_metrics_cache(cfg, company_id, month, year, metrics_cache_values(metrics))
    logger.info("Company #%s: metrics cache refreshed for %02d/%d", company_id, month, year)

    entry = get_cached_metrics(app_config, company_id, month, year)
    if entry is None:
        msg = f"Metrics cache for {month:02d}/{year} was just written but could not be reloaded."
        raise RuntimeError(msg)
    return entry


def get_cached_metrics(
    app_config: AppConfig,
    company_id: int,
    month: int,
    year: int,
) -> Optional[MetricsCacheEntry]:
    """Read the cached snapshot of a month, or None if never computed."""
    validate_month(month, year)
    values = get_metrics_cache(_get_db_config(app_config), company_id, month, year)
    if values is None:
        return None
    return MetricsCacheEntry(company_id=company_id, month=month, year=year, values=values)


# ---------------------------------------------------------------------------
# Markup, goals, scenarios, cash
# ---------------------------------------------------------------------------


def build_markup_report(
    app_config: AppConfig,
    company_id: int,
    period: Period,
    desired_margin_pct: Optional[float] = None,
) -> tuple[MarkupInputs, MarkupResult]:
    """
    Suggested price from the costs of categories tagged with a markup type.

    ``desired_margin_pct`` defaults to ``[metrics].desired_margin_pct``.
    """
    if desired_margin_pct is None:
        desired_margin_pct = app_config.metrics.desired_margin_pct

    report = build_dre_report(app_config, company_id, period)
    inputs = compute_markup_inputs(report.aggregated, report.dre.net_revenue)
    result = compute_markup(
        inputs.direct_cost_total,
        inputs.variable_expense_pct,
        inputs.fixed_expense_pct,
        desired_margin_pct,
    )
    return inputs, result


def set_goal(
    app_config: AppConfig,
    company_id: int,
    metric_name: str,
    month: int,
    year: int,
    target_value: float,
) -> None:
    """Insert or update the goal of a metric for a month."""
    validate_goal_metric(metric_name)
    validate_month(month, year)
    upsert_goal(
        _get_db_config(app_config), company_id, metric_name, month, year, target_value
    )


def build_goal_report(
    app_config: AppConfig,
    company_id: int,
    period: Period,
) -> list[GoalComparison]:
    """Compare the statement of a month with the goals set for it."""
    report = build_dre_report(app_config, company_id, period)
    goals = load_goals(_get_db_config(app_config), company_id, period.month, period.year)
    return compare_goals(report.dre, goals)


def build_scenario_report(
    app_config: AppConfig,
    company_id: int,
    period: Period,
    adjustments: ScenarioAdjustments,
) -> ScenarioReport:
    """Simulate adjustments on top of the statement of a month."""
    baseline = build_dre_report(app_config, company_id, period)
    simulated = simulate(baseline.dre, adjustments, baseline.tax_config)
    return ScenarioReport(
        baseline=baseline,
        adjustments=adjustments,
        simulated=simulated,
        lines=compare_scenario(baseline.dre, simulated),
    )


def build_cash_balances(
    app_config: AppConfig,
    company_id: int,
    period: Optional[Period] = None,
) -> CashBalances:
    """
    Vault balances of a company.

    The available balance is the net profit of ``period`` (the current
    month when omitted).
    """
    if period is None:
        today = datetime.today().date()
        period = month_period(today.month, today.year)

    report = build_dre_report(app_config, company_id, period)
    return get_balances(_get_db_config(app_config), company_id, report.dre.net_profit)
