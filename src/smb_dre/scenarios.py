# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
What-if scenario simulation.

A scenario perturbs the inputs of a computed statement with independent
percentage adjustments and re-runs the statement cascade (engine.run_cascade)
on the result:

    gross revenue and every deduction line   x (1 + revenue_pct / 100)
    cost of goods sold                       x (1 + cogs_pct / 100)
    operating expenses (fixed and variable)  x (1 + opex_pct / 100)
    financial expenses                       x (1 + financial_expense_pct / 100)
    financial income                         unchanged

Deductions scale with revenue because they are rates applied to it. Profit
taxes are recomputed by the cascade with the same positive-profit guard.
The baseline statement is never modified.
"""

from dataclasses import dataclass
from typing import Optional

from .engine import STATEMENT_LINES, CascadeInputs, DREResult, run_cascade
from .errors import ValidationError
from .taxes import TaxConfiguration


@dataclass(frozen=True)
class ScenarioAdjustments:
    """Percentage adjustments; 10.0 means +10%, -100.0 removes the line."""

    revenue_pct: float = 0.0
    cogs_pct: float = 0.0
    opex_pct: float = 0.0
    financial_expense_pct: float = 0.0


@dataclass(frozen=True)
class ScenarioLine:
    """One statement line of a scenario comparison."""

    key: str
    label: str
    current: float
    simulated: float
    difference: float
    variation_pct: Optional[float]


def _multiplier(name: str, pct: float) -> float:
    if pct < -100.0:
        raise ValidationError(f"{name} cannot be below -100%, got {pct!r}.")
    return 1.0 + pct / 100.0


def simulate(
    baseline: DREResult,
    adjustments: ScenarioAdjustments,
    tax_config: TaxConfiguration,
) -> DREResult:
    """
    Re-run the statement cascade on adjusted inputs.

    Parameters
    ----------
    baseline:
        Statement to start from.
    adjustments:
        Percentage changes per line.
    tax_config:
        Provides the profit tax rates, as for the baseline.

    Returns
    -------
    DREResult
        A new statement; ``baseline`` is left untouched.

    Raises
    ------
    ValidationError
        If an adjustment is below -100%.
    """
    revenue_factor = _multiplier("revenue_pct", adjustments.revenue_pct)
    cogs_factor = _multiplier("cogs_pct", adjustments.cogs_pct)
    opex_factor = _multiplier("opex_pct", adjustments.opex_pct)
    financial_factor = _multiplier(
        "financial_expense_pct", adjustments.financial_expense_pct
    )

    base = baseline.inputs()
    return run_cascade(
        CascadeInputs(
            gross_revenue=base.gross_revenue * revenue_factor,
            deductions=base.deductions.scaled(revenue_factor),
            cogs=base.cogs * cogs_factor,
            fixed_expenses=base.fixed_expenses * opex_factor,
            variable_expenses=base.variable_expenses * opex_factor,
            financial_expenses=base.financial_expenses * financial_factor,
            financial_income=base.financial_income,
        ),
        tax_config,
    )


def compare_scenario(baseline: DREResult, simulated: DREResult) -> list[ScenarioLine]:
    """
    Line-by-line comparison of a baseline and a simulated statement.

    ``variation_pct`` is None when the baseline value is 0.
    """
    lines: list[ScenarioLine] = []
    for meta in STATEMENT_LINES:
        current = float(getattr(baseline, meta.key))
        new = float(getattr(simulated, meta.key))
        difference = new - current
        variation = None if current == 0 else difference / abs(current) * 100.0
        lines.append(
            ScenarioLine(
                key=meta.key,
                label=meta.label,
                current=current,
                simulated=new,
                difference=difference,
                variation_pct=variation,
            )
        )
    return lines
