import pytest

from smb_dre.aggregator import AggregatedFigures
from smb_dre.engine import compute_dre
from smb_dre.errors import ValidationError
from smb_dre.goals import compare_goals, validate_goal_metric
from smb_dre.taxes import TaxConfiguration, resolve_deductions


def _dre(revenue: float):
    cfg = TaxConfiguration(use_das=True, das_rate=0.10)
    figures = AggregatedFigures(revenue=revenue)
    return compute_dre(figures, resolve_deductions(cfg, revenue), cfg)


def test_goals_are_compared_in_a_fixed_order():
    comparisons = compare_goals(
        _dre(1_000.0), {"net_revenue": 1_000.0, "gross_revenue": 800.0, "unknown": 1.0}
    )

    assert [c.metric_name for c in comparisons] == ["gross_revenue", "net_revenue"]

    gross, net = comparisons
    assert gross.difference == pytest.approx(200.0)
    assert gross.deviation_pct == pytest.approx(25.0)
    assert gross.achieved is True
    assert net.actual == pytest.approx(900.0)
    assert net.deviation_pct == pytest.approx(-10.0)
    assert net.achieved is False


def test_zero_target_has_zero_deviation():
    (comparison,) = compare_goals(_dre(500.0), {"gross_revenue": 0.0})

    assert comparison.deviation_pct == 0.0
    assert comparison.achieved is True


def test_validate_goal_metric():
    assert validate_goal_metric("net_profit") == "net_profit"
    with pytest.raises(ValidationError):
        validate_goal_metric("ebitda")
