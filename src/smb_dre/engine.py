# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Income statement (DRE) engine for SMB DRE.

The statement is a strict top-down cascade where each line is defined in
terms of the previous ones:

    gross_revenue        = aggregated revenue
    deductions_total     = sum of deduction lines (taxes.resolve_deductions)
    net_revenue          = gross_revenue - deductions_total
    cogs                 = aggregated direct costs
    gross_profit         = net_revenue - cogs
    operating_expenses   = fixed_expenses + variable_expenses
    operating_profit     = gross_profit - operating_expenses
    pre_tax_profit       = operating_profit - financial_expenses
                           + financial_income
    income_tax           = pre_tax_profit * irpj_rate          (if > 0)
    income_tax_surtax    = (pre_tax_profit - threshold)
                           * irpj_additional_rate              (if > threshold)
    social_contribution  = pre_tax_profit * csll_rate          (if > 0)
    income_taxes_total   = income_tax + income_tax_surtax + social_contribution
    net_profit           = pre_tax_profit - income_taxes_total

Profit taxes are never negative: a loss yields no tax and no refund.

Margins and vertical analysis (``av_*``) are percentages of net revenue and
are exactly 0 when net revenue is 0. No rounding happens here; rounding is a
presentation concern (views.py).

The cascade itself is exposed as ``run_cascade`` so that the scenario
simulator (scenarios.py) re-runs exactly the same arithmetic on perturbed
inputs.
"""

from dataclasses import dataclass, fields
from typing import Any

from .aggregator import AggregatedFigures
from .taxes import DeductionLines, TaxConfiguration


@dataclass(frozen=True)
class StatementLine:
    """
    Metadata of one statement line.

    Attributes
    ----------
    key :
        Attribute name on DREResult.
    label :
        Human-readable label.
    kind :
        'line' for an input line, 'subtotal' for a computed cascade step,
        'total' for net profit.
    sign :
        +1 when the line adds to the cascade, -1 when it is subtracted.
    """

    key: str
    label: str
    kind: str
    sign: int = 1


STATEMENT_LINES: tuple[StatementLine, ...] = (
    StatementLine("gross_revenue", "Gross revenue", "line"),
    StatementLine("deductions_total", "Deductions", "line", -1),
    StatementLine("net_revenue", "Net revenue", "subtotal"),
    StatementLine("cogs", "Cost of goods sold", "line", -1),
    StatementLine("gross_profit", "Gross profit", "subtotal"),
    StatementLine("operating_expenses", "Operating expenses", "line", -1),
    StatementLine("operating_profit", "Operating profit", "subtotal"),
    StatementLine("financial_expenses", "Financial expenses", "line", -1),
    StatementLine("financial_income", "Financial income", "line"),
    StatementLine("pre_tax_profit", "Pre-tax profit", "subtotal"),
    StatementLine("income_tax", "Income tax (IRPJ)", "line", -1),
    StatementLine("income_tax_surtax", "IRPJ surtax", "line", -1),
    StatementLine("social_contribution", "Social contribution (CSLL)", "line", -1),
    StatementLine("income_taxes_total", "Income taxes", "subtotal", -1),
    StatementLine("net_profit", "Net profit", "total"),
)

MARGIN_LINES: tuple[tuple[str, str], ...] = (
    ("gross_margin", "Gross margin %"),
    ("operating_margin", "Operating margin %"),
    ("net_margin", "Net margin %"),
)

VERTICAL_ANALYSIS_LINES: tuple[tuple[str, str], ...] = (
    ("av_deductions", "Deductions"),
    ("av_cogs", "Cost of goods sold"),
    ("av_operating_expenses", "Operating expenses"),
    ("av_financial_expenses", "Financial expenses"),
    ("av_financial_income", "Financial income"),
    ("av_income_taxes", "Income taxes"),
)


@dataclass(frozen=True)
class CascadeInputs:
    """Inputs of the statement cascade, before any subtotal is computed."""

    gross_revenue: float
    deductions: DeductionLines
    cogs: float
    fixed_expenses: float
    variable_expenses: float
    financial_expenses: float
    financial_income: float

    @property
    def operating_expenses(self) -> float:
        return self.fixed_expenses + self.variable_expenses


@dataclass(frozen=True)
class DREResult:
    """
    A computed income statement.

    All amounts are unrounded floats. Margins and ``av_*`` values are
    percentages (44.0 means 44%).
    """

    gross_revenue: float
    deductions: DeductionLines
    deductions_total: float
    net_revenue: float
    cogs: float
    gross_profit: float
    fixed_expenses: float
    variable_expenses: float
    operating_expenses: float
    operating_profit: float
    financial_expenses: float
    financial_income: float
    pre_tax_profit: float
    income_tax: float
    income_tax_surtax: float
    social_contribution: float
    income_taxes_total: float
    net_profit: float
    gross_margin: float
    operating_margin: float
    net_margin: float
    av_deductions: float
    av_cogs: float
    av_operating_expenses: float
    av_financial_expenses: float
    av_financial_income: float
    av_income_taxes: float

    def inputs(self) -> CascadeInputs:
        """Return the inputs this statement was computed from."""
        return CascadeInputs(
            gross_revenue=self.gross_revenue,
            deductions=self.deductions,
            cogs=self.cogs,
            fixed_expenses=self.fixed_expenses,
            variable_expenses=self.variable_expenses,
            financial_expenses=self.financial_expenses,
            financial_income=self.financial_income,
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Flatten the statement into ``{key: value}``.

        Deduction lines are exposed as ``deduction_<key>`` entries.
        """
        out: dict[str, Any] = {}
        for f in fields(self):
            if f.name == "deductions":
                continue
            out[f.name] = getattr(self, f.name)
        for line in self.deductions.lines:
            out[f"deduction_{line.key}"] = line.amount
        return out


def _pct_of(value: float, base: float) -> float:
    """``value / base * 100``, or 0 when ``base`` is 0."""
    if base == 0:
        return 0.0
    return value / base * 100.0


def run_cascade(inputs: CascadeInputs, tax_config: TaxConfiguration) -> DREResult:
    """
    Run the statement cascade on explicit inputs.

    Parameters
    ----------
    inputs:
        Gross revenue, resolved deduction lines, COGS, operating and
        financial lines.
    tax_config:
        Provides the profit tax rates and surtax threshold.

    Returns
    -------
    DREResult
    """
    gross_revenue = inputs.gross_revenue
    deductions_total = inputs.deductions.total
    net_revenue = gross_revenue - deductions_total
    cogs = inputs.cogs
    gross_profit = net_revenue - cogs
    operating_expenses = inputs.operating_expenses
    operating_profit = gross_profit - operating_expenses
    pre_tax_profit = (
        operating_profit - inputs.financial_expenses + inputs.financial_income
    )

    income_tax = 0.0
    income_tax_surtax = 0.0
    social_contribution = 0.0
    if pre_tax_profit > 0:
        income_tax = pre_tax_profit * tax_config.rate("irpj_rate")
        social_contribution = pre_tax_profit * tax_config.rate("csll_rate")
        threshold = tax_config.surtax_threshold
        if pre_tax_profit > threshold:
            income_tax_surtax = (pre_tax_profit - threshold) * tax_config.rate(
                "irpj_additional_rate"
            )

    income_taxes_total = income_tax + income_tax_surtax + social_contribution
    net_profit = pre_tax_profit - income_taxes_total

    return DREResult(
        gross_revenue=gross_revenue,
        deductions=inputs.deductions,
        deductions_total=deductions_total,
        net_revenue=net_revenue,
        cogs=cogs,
        gross_profit=gross_profit,
        fixed_expenses=inputs.fixed_expenses,
        variable_expenses=inputs.variable_expenses,
        operating_expenses=operating_expenses,
        operating_profit=operating_profit,
        financial_expenses=inputs.financial_expenses,
        financial_income=inputs.financial_income,
        pre_tax_profit=pre_tax_profit,
        income_tax=income_tax,
        income_tax_surtax=income_tax_surtax,
        social_contribution=social_contribution,
        income_taxes_total=income_taxes_total,
        net_profit=net_profit,
        gross_margin=_pct_of(gross_profit, net_revenue),
        operating_margin=_pct_of(operating_profit, net_revenue),
        net_margin=_pct_of(net_profit, net_revenue),
        av_deductions=_pct_of(deductions_total, net_revenue),
        av_cogs=_pct_of(cogs, net_revenue),
        av_operating_expenses=_pct_of(operating_expenses, net_revenue),
        av_financial_expenses=_pct_of(inputs.financial_expenses, net_revenue),
        av_financial_income=_pct_of(inputs.financial_income, net_revenue),
        av_income_taxes=_pct_of(income_taxes_total, net_revenue),
    )


def compute_dre(
    aggregated: AggregatedFigures,
    deductions: DeductionLines,
    tax_config: TaxConfiguration,
) -> DREResult:
    """Compute the income statement of aggregated monthly figures."""
    return run_cascade(
        CascadeInputs(
            gross_revenue=aggregated.revenue,
            deductions=deductions,
            cogs=aggregated.direct_costs,
            fixed_expenses=aggregated.fixed_expenses,
            variable_expenses=aggregated.variable_expenses,
            financial_expenses=aggregated.financial_expenses,
            financial_income=aggregated.financial_income,
        ),
        tax_config,
    )
