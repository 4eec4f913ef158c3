# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Derived metrics for SMB DRE.

This module computes the management metrics shown next to the income
statement (break-even, safety margin, contribution margin, CAC, LTV, ROI,
average ticket) and the markup / suggested price calculator.

Every division is guarded: a zero or negative denominator yields 0, never
NaN or Infinity. When that fallback is taken the metric key is recorded in
``not_computable`` so that callers can tell "the value is zero" from "there
is not enough data". A break-even point that cannot be reached while fixed
costs exist is additionally exposed as ``break_even_at_risk``.

Metrics
-------
    fixed_costs             fixed_expenses + direct_fixed_costs
    variable_costs          variable_expenses + direct_variable_costs
    contribution_margin     net_revenue - variable_costs
    contribution_margin_rate
                            contribution_margin / net_revenue
    break_even_point        fixed_costs / contribution_margin_rate
    safety_margin           net_revenue - break_even_point
    safety_margin_percent   safety_margin / net_revenue * 100
    cac                     (marketing + sales costs) / clients_for_cac
    average_ticket          revenue / sales_count
    ltv                     average_ticket * ltv_months
    ltv_cac_ratio           ltv / cac
    roi                     (net_revenue - costs_total) / costs_total * 100
                            (costs_total = fixed_costs + variable_costs)

Markup
------
    markup_index    = 100 / (100 - (variable_pct + fixed_pct + margin_pct))
    suggested_price = direct_cost_total * markup_index
"""

import logging
from dataclasses import dataclass, fields
from typing import Optional

from .aggregator import AggregatedFigures
from .engine import DREResult

logger = logging.getLogger(__name__)

DEFAULT_LTV_MONTHS = 12


@dataclass(frozen=True)
class MetricMeta:
    """
    Display metadata of a derived metric.

    Attributes
    ----------
    key :
        Attribute name on MetricsResult.
    label :
        Human-readable label.
    unit :
        'amount', 'percent', 'ratio' or 'count'.
    notes :
        Short description of the formula.
    """

    key: str
    label: str
    unit: str
    notes: str = ""


METRICS_METADATA: tuple[MetricMeta, ...] = (
    MetricMeta("net_revenue", "Net revenue", "amount"),
    MetricMeta("fixed_costs", "Fixed costs", "amount", "Fixed expenses + fixed direct costs"),
    MetricMeta(
        "variable_costs",
        "Variable costs",
        "amount",
        "Variable expenses + variable direct costs",
    ),
    MetricMeta(
        "contribution_margin", "Contribution margin", "amount", "Net revenue - variable costs"
    ),
    MetricMeta(
        "contribution_margin_rate",
        "Contribution margin rate",
        "ratio",
        "Contribution margin / net revenue",
    ),
    MetricMeta(
        "break_even_point",
        "Break-even point",
        "amount",
        "Fixed costs / contribution margin rate",
    ),
    MetricMeta("safety_margin", "Safety margin", "amount", "Net revenue - break-even point"),
    MetricMeta("safety_margin_percent", "Safety margin %", "percent"),
    MetricMeta("average_ticket", "Average ticket", "amount", "Revenue / number of sales"),
    MetricMeta(
        "cac",
        "Customer acquisition cost",
        "amount",
        "(Marketing + sales costs) / new clients (active clients if none)",
    ),
    MetricMeta("ltv", "Lifetime value", "amount", "Average ticket x retention months"),
    MetricMeta("ltv_cac_ratio", "LTV / CAC", "ratio"),
    MetricMeta(
        "roi",
        "ROI %",
        "percent",
        "Return on all operating costs, not on marketing spend: "
        "(net revenue - (fixed + variable costs)) / (fixed + variable costs)",
    ),
    MetricMeta("new_clients_count", "New clients", "count"),
    MetricMeta("total_active_clients", "Active clients", "count"),
    MetricMeta("repeat_customers_count", "Repeat customers", "count"),
    MetricMeta("sales_count", "Sales", "count"),
)


@dataclass(frozen=True)
class MetricsResult:
    """
    Derived metrics of one month.

    Amounts are unrounded floats; ``safety_margin_percent`` and ``roi`` are
    percentages, ``contribution_margin_rate`` is a fraction.
    """

    gross_revenue: float
    deductions_total: float
    net_revenue: float
    operating_expenses: float
    fixed_costs: float
    variable_costs: float
    costs_total: float
    contribution_margin: float
    contribution_margin_rate: float
    break_even_point: float
    break_even_at_risk: bool
    safety_margin: float
    safety_margin_percent: float
    marketing_costs: float
    sales_costs: float
    new_clients_count: int
    total_active_clients: int
    repeat_customers_count: int
    clients_for_cac: int
    sales_count: int
    average_ticket: float
    cac: float
    ltv: float
    ltv_cac_ratio: float
    roi: float
    not_computable: frozenset[str] = frozenset()

    def to_dict(self) -> dict[str, object]:
        return {
            f.name: getattr(self, f.name) for f in fields(self) if f.name != "not_computable"
        }


@dataclass(frozen=True)
class MetricValue:
    """A metric value paired with its metadata; None when not computable."""

    key: str
    label: str
    value: Optional[float]
    unit: str
    notes: str


def safe_div(numerator: float, denominator: float) -> Optional[float]:
    """``numerator / denominator``, or None when the denominator is <= 0."""
    if denominator <= 0:
        return None
    return numerator / denominator


def compute_metrics(
    dre: DREResult,
    aggregated: AggregatedFigures,
    *,
    ltv_months: int = DEFAULT_LTV_MONTHS,
) -> MetricsResult:
    """
    Compute the derived metrics of a month.

    Parameters
    ----------
    dre:
        Income statement of the month (provides net revenue).
    aggregated:
        Aggregated figures of the same month (costs split, flags, counters).
    ltv_months:
        Number of months of average ticket counted in the lifetime value.

    Returns
    -------
    MetricsResult
    """
    not_computable: set[str] = set()

    def guarded(key: str, numerator: float, denominator: float) -> float:
        value = safe_div(numerator, denominator)
        if value is None:
            not_computable.add(key)
            return 0.0
        return value

    net_revenue = dre.net_revenue
    fixed_costs = aggregated.fixed_expenses + aggregated.direct_fixed_costs
    variable_costs = aggregated.variable_expenses + aggregated.direct_variable_costs
    costs_total = fixed_costs + variable_costs

    contribution_margin = net_revenue - variable_costs
    contribution_margin_rate = guarded(
        "contribution_margin_rate", contribution_margin, net_revenue
    )

    break_even_point = guarded("break_even_point", fixed_costs, contribution_margin_rate)
    break_even_at_risk = contribution_margin_rate <= 0 and fixed_costs > 0

    safety_margin = net_revenue - break_even_point
    safety_margin_percent = guarded("safety_margin_percent", safety_margin * 100.0, net_revenue)

    acquisition_costs = aggregated.marketing_costs + aggregated.sales_costs
    if aggregated.new_clients_count > 0:
        clients_for_cac = aggregated.new_clients_count
    else:
        clients_for_cac = aggregated.total_active_clients
    if clients_for_cac > 0:
        cac = acquisition_costs / clients_for_cac
    else:
        cac = acquisition_costs

    average_ticket = guarded("average_ticket", aggregated.revenue_sum, aggregated.sales_count)
    ltv = average_ticket * ltv_months
    ltv_cac_ratio = guarded("ltv_cac_ratio", ltv, cac)
    roi = guarded("roi", (net_revenue - costs_total) * 100.0, costs_total)

    if break_even_at_risk:
        logger.warning(
            "Break-even point not reachable: contribution margin rate is %.4f "
            "with %.2f of fixed costs",
            contribution_margin_rate,
            fixed_costs,
        )

    return MetricsResult(
        gross_revenue=dre.gross_revenue,
        deductions_total=dre.deductions_total,
        net_revenue=net_revenue,
        operating_expenses=dre.operating_expenses,
        fixed_costs=fixed_costs,
        variable_costs=variable_costs,
        costs_total=costs_total,
        contribution_margin=contribution_margin,
        contribution_margin_rate=contribution_margin_rate,
        break_even_point=break_even_point,
        break_even_at_risk=break_even_at_risk,
        safety_margin=safety_margin,
        safety_margin_percent=safety_margin_percent,
        marketing_costs=aggregated.marketing_costs,
        sales_costs=aggregated.sales_costs,
        new_clients_count=aggregated.new_clients_count,
        total_active_clients=aggregated.total_active_clients,
        repeat_customers_count=aggregated.repeat_customers_count,
        clients_for_cac=clients_for_cac,
        sales_count=aggregated.sales_count,
        average_ticket=average_ticket,
        cac=cac,
        ltv=ltv,
        ltv_cac_ratio=ltv_cac_ratio,
        roi=roi,
        not_computable=frozenset(not_computable),
    )


def describe_metrics(result: MetricsResult) -> list[MetricValue]:
    """
    Pair each metric with its metadata, in display order.

    Metrics listed in ``result.not_computable`` get a value of None.
    """
    out: list[MetricValue] = []
    for meta in METRICS_METADATA:
        value: Optional[float]
        if meta.key in result.not_computable:
            value = None
        else:
            value = float(getattr(result, meta.key))
        out.append(
            MetricValue(
                key=meta.key,
                label=meta.label,
                value=value,
                unit=meta.unit,
                notes=meta.notes,
            )
        )
    return out


# ---------------------------------------------------------------------------
# Markup
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MarkupInputs:
    """
    Cost structure used by the markup calculator.

    ``variable_expense_pct`` and ``fixed_expense_pct`` are percentages of
    net revenue (0 when net revenue is 0).
    """

    direct_cost_total: float
    variable_expenses: float
    fixed_expenses: float
    variable_expense_pct: float
    fixed_expense_pct: float


@dataclass(frozen=True)
class MarkupResult:
    """Markup index and suggested price; ``computable`` is False when guarded."""

    direct_cost_total: float
    variable_expense_pct: float
    fixed_expense_pct: float
    desired_margin_pct: float
    markup_index: float
    suggested_price: float
    computable: bool


def compute_markup_inputs(aggregated: AggregatedFigures, net_revenue: float) -> MarkupInputs:
    """
    Build the markup inputs from categories tagged with a markup type.

    Parameters
    ----------
    aggregated:
        Aggregated figures; only the ``markup_*`` sums are used.
    net_revenue:
        Net revenue of the same month, base of the expense percentages.
    """
    variable_pct = safe_div(aggregated.markup_variable_expenses * 100.0, net_revenue)
    fixed_pct = safe_div(aggregated.markup_fixed_expenses * 100.0, net_revenue)
    return MarkupInputs(
        direct_cost_total=aggregated.markup_direct_costs,
        variable_expenses=aggregated.markup_variable_expenses,
        fixed_expenses=aggregated.markup_fixed_expenses,
        variable_expense_pct=variable_pct if variable_pct is not None else 0.0,
        fixed_expense_pct=fixed_pct if fixed_pct is not None else 0.0,
    )


def compute_markup(
    direct_cost_total: float,
    variable_expense_pct: float,
    fixed_expense_pct: float,
    desired_margin_pct: float,
) -> MarkupResult:
    """
    Compute the markup index and the suggested selling price.

    When ``variable_expense_pct + fixed_expense_pct + desired_margin_pct``
    reaches 100 or more, no price can cover the requested margin: the index
    and price are 0 and ``computable`` is False.
    """
    index = safe_div(
        100.0, 100.0 - (variable_expense_pct + fixed_expense_pct + desired_margin_pct)
    )
    if index is None:
        return MarkupResult(
            direct_cost_total=direct_cost_total,
            variable_expense_pct=variable_expense_pct,
            fixed_expense_pct=fixed_expense_pct,
            desired_margin_pct=desired_margin_pct,
            markup_index=0.0,
            suggested_price=0.0,
            computable=False,
        )

    return MarkupResult(
        direct_cost_total=direct_cost_total,
        variable_expense_pct=variable_expense_pct,
        fixed_expense_pct=fixed_expense_pct,
        desired_margin_pct=desired_margin_pct,
        markup_index=index,
        suggested_price=direct_cost_total * index,
        computable=True,
    )
