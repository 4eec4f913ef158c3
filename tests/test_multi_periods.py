from datetime import date

import pandas as pd
import pytest

from smb_dre.config import AppConfig
from smb_dre.db import DatabaseConfig, NewTransaction, insert_category, insert_transaction
from smb_dre.multi_periods import build_comparison, compare_periods, compute_dre_history
from smb_dre.periods import last_n_months, month_period
from smb_dre.reports_service import build_dre_report, register_company


def _app_with_two_months(tmp_path):
    """Sales of 1,000 in February 2025 and 1,500 in March 2025."""
    app = AppConfig(database=DatabaseConfig(engine="sqlite", path=tmp_path / "mp.sqlite"))
    company = register_company(app, "Acme", "simples_nacional")
    sales = insert_category(app.database, company.id, "Sales", "revenue")
    for tx_date, amount in ((date(2025, 2, 10), 1_000.0), (date(2025, 3, 10), 1_500.0)):
        insert_transaction(
            app.database, company.id, NewTransaction(tx_date, amount, "Sale", sales)
        )
    return app, company.id


def test_history_has_one_block_per_period(tmp_path):
    app, company_id = _app_with_two_months(tmp_path)
    periods = last_n_months(3, 2025, 3)

    history = compute_dre_history(app, company_id, periods)

    statements = history.statements
    assert list(statements["period_label"].unique()) == ["Jan/2025", "Feb/2025", "Mar/2025"]
    gross = statements[statements["key"] == "gross_revenue"].set_index("period_label")["amount"]
    assert gross["Jan/2025"] == 0.0
    assert gross["Feb/2025"] == pytest.approx(1_000.0)
    assert gross["Mar/2025"] == pytest.approx(1_500.0)

    metrics = history.metrics
    ticket = metrics[metrics["key"] == "average_ticket"].set_index("period_label")["value"]
    assert pd.isna(ticket["Jan/2025"])
    assert ticket["Mar/2025"] == pytest.approx(1_500.0)


def test_history_matches_single_month_reports(tmp_path):
    app, company_id = _app_with_two_months(tmp_path)
    march = month_period(3, 2025)

    history = compute_dre_history(app, company_id, [march])
    single = build_dre_report(app, company_id, march).dre

    net = history.statements.set_index("key")["amount"]
    assert net["net_profit"] == pytest.approx(single.net_profit)


def test_history_requires_periods(tmp_path):
    app, company_id = _app_with_two_months(tmp_path)
    with pytest.raises(ValueError):
        compute_dre_history(app, company_id, [])


def test_comparison_with_previous_month(tmp_path):
    app, company_id = _app_with_two_months(tmp_path)

    current, other, variations = build_comparison(
        app, company_id, month_period(3, 2025), "previous-month"
    )

    assert other.period.label == "Feb/2025"
    by_key = {v.key: v for v in variations}
    assert by_key["gross_revenue"].difference == pytest.approx(500.0)
    assert by_key["gross_revenue"].variation_pct == pytest.approx(50.0)
    assert current.dre.gross_revenue == pytest.approx(1_500.0)


def test_comparison_against_an_empty_period_has_no_variation(tmp_path):
    app, company_id = _app_with_two_months(tmp_path)
    current = build_dre_report(app, company_id, month_period(3, 2025)).dre
    empty = build_dre_report(app, company_id, month_period(3, 2024)).dre

    variations = compare_periods(current, empty)

    assert all(v.variation_pct is None for v in variations)
    assert variations[0].difference == pytest.approx(1_500.0)
