import logging

import pytest

from smb_dre.aggregator import AggregatedFigures
from smb_dre.engine import compute_dre
from smb_dre.metrics import (
    compute_markup,
    compute_markup_inputs,
    compute_metrics,
    describe_metrics,
    safe_div,
)
from smb_dre.taxes import TaxConfiguration, resolve_deductions


def _tax_config() -> TaxConfiguration:
    return TaxConfiguration(
        regime_type="simples_nacional",
        use_das=True,
        das_rate=0.06,
        irpj_rate=0.15,
        csll_rate=0.09,
    )


def _metrics_for(figures: AggregatedFigures, **kwargs):
    cfg = _tax_config()
    dre = compute_dre(figures, resolve_deductions(cfg, figures.revenue), cfg)
    return compute_metrics(dre, figures, **kwargs)


def _reference_figures(**overrides) -> AggregatedFigures:
    values = {
        "revenue": 100_000.0,
        "direct_costs": 30_000.0,
        "direct_variable_costs": 30_000.0,
        "fixed_expenses": 20_000.0,
        "marketing_costs": 1_000.0,
        "sales_costs": 500.0,
        "new_clients_count": 3,
        "total_active_clients": 5,
        "repeat_customers_count": 2,
        "sales_count": 4,
    }
    values.update(overrides)
    return AggregatedFigures(**values)


def test_safe_div_guards_non_positive_denominators():
    assert safe_div(10.0, 4.0) == 2.5
    assert safe_div(10.0, 0.0) is None
    assert safe_div(10.0, -1.0) is None


def test_break_even_and_safety_margin():
    m = _metrics_for(_reference_figures())

    assert m.net_revenue == pytest.approx(94_000.0)
    assert m.fixed_costs == pytest.approx(20_000.0)
    assert m.variable_costs == pytest.approx(30_000.0)
    assert m.contribution_margin == pytest.approx(64_000.0)
    assert m.contribution_margin_rate == pytest.approx(64_000.0 / 94_000.0)
    assert m.break_even_point == pytest.approx(29_375.0)
    assert m.safety_margin == pytest.approx(64_625.0)
    assert m.safety_margin_percent == pytest.approx(68.75)
    assert m.break_even_at_risk is False
    assert m.not_computable == frozenset()


def test_customer_metrics():
    m = _metrics_for(_reference_figures(), ltv_months=12)

    assert m.average_ticket == pytest.approx(25_000.0)
    assert m.ltv == pytest.approx(300_000.0)
    assert m.clients_for_cac == 3
    assert m.cac == pytest.approx(500.0)
    assert m.ltv_cac_ratio == pytest.approx(600.0)
    assert m.roi == pytest.approx(88.0)


def test_cac_falls_back_to_active_clients_then_to_raw_costs():
    m = _metrics_for(_reference_figures(new_clients_count=0, total_active_clients=2))
    assert m.clients_for_cac == 2
    assert m.cac == pytest.approx(750.0)

    m = _metrics_for(_reference_figures(new_clients_count=0, total_active_clients=0))
    assert m.clients_for_cac == 0
    assert m.cac == pytest.approx(1_500.0)


def test_ltv_months_is_configurable():
    m = _metrics_for(_reference_figures(), ltv_months=6)
    assert m.ltv == pytest.approx(150_000.0)


def test_zero_revenue_metrics_are_guarded(caplog):
    figures = AggregatedFigures(fixed_expenses=1_000.0)

    with caplog.at_level(logging.WARNING, logger="smb_dre.metrics"):
        m = _metrics_for(figures)

    assert m.contribution_margin_rate == 0.0
    assert m.break_even_point == 0.0
    assert m.break_even_at_risk is True
    assert m.safety_margin_percent == 0.0
    assert m.average_ticket == 0.0
    assert m.ltv_cac_ratio == 0.0
    assert m.roi == pytest.approx(-100.0)
    assert {
        "contribution_margin_rate",
        "break_even_point",
        "safety_margin_percent",
        "average_ticket",
        "ltv_cac_ratio",
    } <= m.not_computable
    assert "roi" not in m.not_computable
    assert "Break-even point not reachable" in caplog.text


def test_describe_metrics_reports_none_for_guarded_values():
    m = _metrics_for(AggregatedFigures())
    values = {v.key: v.value for v in describe_metrics(m)}

    assert values["average_ticket"] is None
    assert values["roi"] is None
    assert values["net_revenue"] == 0.0
    assert values["sales_count"] == 0.0


def test_markup_reference_values():
    result = compute_markup(100.0, 10.0, 20.0, 30.0)

    assert result.computable is True
    assert result.markup_index == pytest.approx(2.5)
    assert result.suggested_price == pytest.approx(250.0)


@pytest.mark.parametrize("margin", [70.0, 80.0])
def test_markup_is_not_computable_when_percentages_reach_100(margin):
    result = compute_markup(100.0, 10.0, 20.0, margin)

    assert result.computable is False
    assert result.markup_index == 0.0
    assert result.suggested_price == 0.0


def test_markup_inputs_use_tagged_categories_only():
    figures = AggregatedFigures(
        revenue=1_000.0,
        markup_direct_costs=100.0,
        markup_variable_expenses=50.0,
        markup_fixed_expenses=200.0,
    )

    inputs = compute_markup_inputs(figures, net_revenue=1_000.0)

    assert inputs.direct_cost_total == 100.0
    assert inputs.variable_expense_pct == pytest.approx(5.0)
    assert inputs.fixed_expense_pct == pytest.approx(20.0)

    empty = compute_markup_inputs(figures, net_revenue=0.0)
    assert empty.variable_expense_pct == 0.0
    assert empty.fixed_expense_pct == 0.0


def test_roi_notes_name_the_cost_base():
    m = _metrics_for(AggregatedFigures())
    notes = {v.key: v.notes for v in describe_metrics(m)}

    assert "fixed + variable costs" in notes["roi"]
