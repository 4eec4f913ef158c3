# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Comparison of monthly statement figures against goals.
"""

from collections.abc import Mapping
from dataclasses import dataclass

from .engine import DREResult
from .errors import ValidationError

GOAL_METRICS: dict[str, str] = {
    "gross_revenue": "Gross revenue",
    "net_revenue": "Net revenue",
    "gross_profit": "Gross profit",
    "operating_profit": "Operating profit",
    "net_profit": "Net profit",
}


@dataclass(frozen=True)
class GoalComparison:
    """Actual vs target for one metric; deviation_pct is 0 when target is 0."""

    metric_name: str
    label: str
    actual: float
    target: float
    difference: float
    deviation_pct: float

    @property
    def achieved(self) -> bool:
        return self.actual >= self.target


def validate_goal_metric(metric_name: str) -> str:
    if metric_name not in GOAL_METRICS:
        raise ValidationError(
            f"Unknown goal metric {metric_name!r}. "
            f"Expected one of: {', '.join(GOAL_METRICS)}."
        )
    return metric_name


def compare_goals(dre: DREResult, goals: Mapping[str, float]) -> list[GoalComparison]:
    """
    Compare a statement with the goals set for its month.

    Parameters
    ----------
    dre:
        Statement of the month.
    goals:
        ``{metric_name: target}`` as returned by ``db.load_goals``. Unknown
        metric names are ignored.

    Returns
    -------
    list[GoalComparison]
        One entry per goal, in GOAL_METRICS order.
    """
    out: list[GoalComparison] = []
    for metric_name, label in GOAL_METRICS.items():
        if metric_name not in goals:
            continue
        target = float(goals[metric_name])
        actual = float(getattr(dre, metric_name))
        difference = actual - target
        deviation = 0.0 if target == 0 else difference / target * 100.0
        out.append(
            GoalComparison(
                metric_name=metric_name,
                label=label,
                actual=actual,
                target=target,
                difference=difference,
                deviation_pct=deviation,
            )
        )
    return out
