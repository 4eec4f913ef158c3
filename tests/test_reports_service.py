from datetime import date

import pytest

from smb_dre.config import AppConfig, MetricsOptions
from smb_dre.db import (
    DatabaseConfig,
    NewTransaction,
    insert_category,
    insert_client,
    insert_transaction,
)
from smb_dre.errors import NotFound, ValidationError
from smb_dre.ledger import deposit, transfer
from smb_dre.periods import month_period
from smb_dre.reports_service import (
    build_cash_balances,
    build_dre_report,
    build_goal_report,
    build_markup_report,
    build_metrics_report,
    build_scenario_report,
    get_cached_metrics,
    recalculate_and_cache,
    register_company,
    set_goal,
)
from smb_dre.scenarios import ScenarioAdjustments

MARCH = month_period(3, 2025)


def make_app(tmp_path) -> AppConfig:
    return AppConfig(
        database=DatabaseConfig(engine="sqlite", path=tmp_path / "reports.sqlite"),
        metrics=MetricsOptions(ltv_months=12, desired_margin_pct=30.0),
    )


def seed_company(app: AppConfig) -> tuple[int, dict[str, int]]:
    """
    A Simples Nacional company with one month of activity (March 2025).

    Gross revenue 15,000, COGS 3,000, fixed rent 2,000 and 1,000 of
    variable marketing expenses.
    """
    cfg = app.database
    company = register_company(app, "Padaria Central", "simples_nacional")
    cats = {
        "sales": insert_category(cfg, company.id, "Sales", "revenue"),
        "goods": insert_category(
            cfg, company.id, "Goods", "cost",
            cost_classification="variable", markup_type="direct_cost",
        ),
        "rent": insert_category(
            cfg, company.id, "Rent", "expense",
            cost_classification="fixed", markup_type="fixed_expense",
        ),
        "ads": insert_category(
            cfg, company.id, "Ads", "expense",
            cost_classification="variable", markup_type="variable_expense",
        ),
    }
    ana = insert_client(cfg, company.id, "Ana")
    bruno = insert_client(cfg, company.id, "Bruno")

    d = date(2025, 3, 15)
    for tx in (
        NewTransaction(d, 10_000.0, "Sale", cats["sales"], ana, is_new_client=True),
        NewTransaction(d, 5_000.0, "Sale", cats["sales"], bruno),
        NewTransaction(d, 3_000.0, "Flour", cats["goods"]),
        NewTransaction(d, 2_000.0, "Rent", cats["rent"]),
        NewTransaction(d, 1_000.0, "Instagram", cats["ads"], is_marketing_cost=True),
    ):
        insert_transaction(cfg, company.id, tx)

    return company.id, cats


def test_monthly_statement(tmp_path):
    app = make_app(tmp_path)
    company_id, _ = seed_company(app)

    report = build_dre_report(app, company_id, MARCH)
    dre = report.dre

    assert report.company.name == "Padaria Central"
    assert dre.gross_revenue == pytest.approx(15_000.0)
    assert dre.deductions_total == pytest.approx(900.0)
    assert dre.net_revenue == pytest.approx(14_100.0)
    assert dre.gross_profit == pytest.approx(11_100.0)
    assert dre.operating_profit == pytest.approx(8_100.0)
    assert dre.income_tax == pytest.approx(1_215.0)
    assert dre.income_tax_surtax == 0.0
    assert dre.social_contribution == pytest.approx(729.0)
    assert dre.net_profit == pytest.approx(6_156.0)


def test_statement_filters(tmp_path):
    app = make_app(tmp_path)
    company_id, cats = seed_company(app)

    by_category = build_dre_report(app, company_id, MARCH, category_id=cats["sales"])
    assert by_category.dre.gross_revenue == pytest.approx(15_000.0)
    assert by_category.dre.cogs == 0.0

    by_client = build_dre_report(app, company_id, MARCH, client_id=2)
    assert by_client.dre.gross_revenue == pytest.approx(5_000.0)


def test_unknown_company_raises_not_found(tmp_path):
    app = make_app(tmp_path)
    seed_company(app)

    with pytest.raises(NotFound):
        build_dre_report(app, 99, MARCH)
    with pytest.raises(NotFound):
        recalculate_and_cache(app, 99, 3, 2025)


def test_metrics_report(tmp_path):
    app = make_app(tmp_path)
    company_id, _ = seed_company(app)

    _, metrics = build_metrics_report(app, company_id, MARCH)

    assert metrics.fixed_costs == pytest.approx(2_000.0)
    assert metrics.variable_costs == pytest.approx(4_000.0)
    assert metrics.contribution_margin == pytest.approx(10_100.0)
    assert metrics.average_ticket == pytest.approx(7_500.0)
    assert metrics.new_clients_count == 1
    assert metrics.total_active_clients == 2
    assert metrics.cac == pytest.approx(1_000.0)


def test_recalculate_is_idempotent(tmp_path):
    app = make_app(tmp_path)
    company_id, _ = seed_company(app)

    first = recalculate_and_cache(app, company_id, 3, 2025)
    second = recalculate_and_cache(app, company_id, 3, 2025)

    assert first.values == second.values
    assert first.values["total_revenue"] == 15_000.0
    assert first.values["net_revenue"] == pytest.approx(14_100.0)
    assert get_cached_metrics(app, company_id, 3, 2025) == second


def test_cache_follows_new_transactions_after_refresh(tmp_path):
    app = make_app(tmp_path)
    company_id, cats = seed_company(app)
    recalculate_and_cache(app, company_id, 3, 2025)

    insert_transaction(
        app.database,
        company_id,
        NewTransaction(date(2025, 3, 20), 1_000.0, "Sale", cats["sales"]),
    )

    assert get_cached_metrics(app, company_id, 3, 2025).values["total_revenue"] == 15_000.0
    refreshed = recalculate_and_cache(app, company_id, 3, 2025)
    assert refreshed.values["total_revenue"] == 16_000.0
    assert get_cached_metrics(app, company_id, 4, 2025) is None


def test_goal_report(tmp_path):
    app = make_app(tmp_path)
    company_id, _ = seed_company(app)

    set_goal(app, company_id, "net_profit", 3, 2025, 6_000.0)
    set_goal(app, company_id, "gross_revenue", 3, 2025, 20_000.0)
    with pytest.raises(ValidationError):
        set_goal(app, company_id, "ebitda", 3, 2025, 1.0)

    goals = {g.metric_name: g for g in build_goal_report(app, company_id, MARCH)}

    assert goals["net_profit"].achieved is True
    assert goals["net_profit"].deviation_pct == pytest.approx(2.6)
    assert goals["gross_revenue"].achieved is False
    assert goals["gross_revenue"].difference == pytest.approx(-5_000.0)


def test_markup_report_uses_configured_margin(tmp_path):
    app = make_app(tmp_path)
    company_id, _ = seed_company(app)

    inputs, result = build_markup_report(app, company_id, MARCH)

    variable_pct = 1_000.0 / 14_100.0 * 100.0
    fixed_pct = 2_000.0 / 14_100.0 * 100.0
    assert inputs.direct_cost_total == pytest.approx(3_000.0)
    assert inputs.variable_expense_pct == pytest.approx(variable_pct)
    assert inputs.fixed_expense_pct == pytest.approx(fixed_pct)
    assert result.desired_margin_pct == 30.0
    expected_index = 100.0 / (100.0 - (variable_pct + fixed_pct + 30.0))
    assert result.markup_index == pytest.approx(expected_index)
    assert result.suggested_price == pytest.approx(3_000.0 * expected_index)

    _, blocked = build_markup_report(app, company_id, MARCH, desired_margin_pct=90.0)
    assert blocked.computable is False


def test_scenario_report(tmp_path):
    app = make_app(tmp_path)
    company_id, _ = seed_company(app)

    report = build_scenario_report(
        app, company_id, MARCH, ScenarioAdjustments(revenue_pct=10.0, opex_pct=-50.0)
    )
    lines = {line.key: line for line in report.lines}

    assert report.simulated.gross_revenue == pytest.approx(16_500.0)
    assert report.simulated.deductions_total == pytest.approx(990.0)
    assert report.simulated.operating_expenses == pytest.approx(1_500.0)
    assert lines["gross_revenue"].variation_pct == pytest.approx(10.0)
    assert report.baseline.dre.gross_revenue == pytest.approx(15_000.0)


def test_cash_balances_use_the_statement_net_profit(tmp_path):
    app = make_app(tmp_path)
    company_id, _ = seed_company(app)
    deposit(app.database, company_id, 5_000.0)
    transfer(app.database, company_id, "main_balance", "emergency_reserve", 1_000.0)

    balances = build_cash_balances(app, company_id, MARCH)

    assert balances.available_balance == pytest.approx(6_156.0)
    assert balances.main_ledger_balance == pytest.approx(4_000.0)
    assert balances.emergency_reserve == pytest.approx(1_000.0)
