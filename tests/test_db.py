import sqlite3
from dataclasses import replace
from datetime import date

import pandas as pd
import pytest

from smb_dre.db import (
    METRICS_CACHE_COLUMNS,
    DatabaseConfig,
    NewTransaction,
    create_company,
    delete_transaction,
    get_company,
    get_metrics_cache,
    get_tax_configuration,
    import_transactions,
    init_database,
    insert_category,
    insert_client,
    insert_transaction,
    list_companies,
    load_categories,
    load_goals,
    load_transactions,
    require_company,
    save_tax_configuration,
    set_category_markup_type,
    to_cents,
    upsert_goal,
    upsert_metrics_cache,
)
from smb_dre.errors import NotFound, ValidationError


def make_tmp_db_cfg(tmp_path) -> DatabaseConfig:
    """Helper to build a DatabaseConfig pointing to a temporary SQLite file."""
    db_path = tmp_path / "test_db.sqlite"
    return DatabaseConfig(engine="sqlite", path=db_path)


def test_init_database_creates_file_and_schema(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)

    assert not cfg.path.exists()
    init_database(cfg)
    assert cfg.path.exists()

    conn = sqlite3.connect(cfg.path)
    try:
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table';")
        }
    finally:
        conn.close()

    assert {
        "companies",
        "tax_configurations",
        "categories",
        "clients",
        "transactions",
        "cash_transactions",
        "cash_tags",
        "goals",
        "metrics_cache",
    } <= tables
    assert list_companies(cfg) == []


def test_to_cents_absorbs_float_noise():
    assert to_cents(0.1 + 0.2) == 30
    assert to_cents(10) == 1000


def test_create_company_stores_regime_defaults(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)

    company = create_company(cfg, "Padaria Central", "simples_nacional", tax_id="12.345")

    assert company.id == 1
    assert company.fiscal_period == "monthly"
    assert get_company(cfg, company.id) == company

    tax = get_tax_configuration(cfg, company.id)
    assert tax.regime_type == "simples_nacional"
    assert tax.use_das is True
    assert tax.das_rate == pytest.approx(0.06)
    assert tax.irpj_additional_threshold == pytest.approx(20_000.0)


def test_unknown_company_raises_not_found(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    init_database(cfg)

    assert get_company(cfg, 42) is None
    with pytest.raises(NotFound):
        require_company(cfg, 42)


def test_invalid_company_regime_is_rejected(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    with pytest.raises(ValidationError):
        create_company(cfg, "Acme", "mei")


def test_save_tax_configuration_round_trip(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    company = create_company(cfg, "Acme", "lucro_presumido")

    tax = get_tax_configuration(cfg, company.id)
    save_tax_configuration(
        cfg, company.id, replace(tax, iss_rate=0.02, irpj_additional_threshold=12_345.67)
    )

    reloaded = get_tax_configuration(cfg, company.id)
    assert reloaded.iss_rate == pytest.approx(0.02)
    assert reloaded.irpj_additional_threshold == pytest.approx(12_345.67)
    assert reloaded.use_das is False


def test_categories_allow_a_single_nesting_level(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    company = create_company(cfg, "Acme", "lucro_real")

    parent = insert_category(cfg, company.id, "Rent", "expense", cost_classification="fixed")
    child = insert_category(cfg, company.id, "Office", "expense", parent_id=parent)

    with pytest.raises(ValidationError):
        insert_category(cfg, company.id, "Desk", "expense", parent_id=child)
    with pytest.raises(NotFound):
        insert_category(cfg, company.id, "Orphan", "expense", parent_id=999)

    cats = load_categories(cfg, company.id)
    assert list(cats["name"]) == ["Rent", "Office"]
    assert cats.loc[cats["id"] == child, "parent_id"].iloc[0] == parent


def test_category_validation(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    company = create_company(cfg, "Acme", "lucro_real")

    with pytest.raises(ValidationError):
        insert_category(cfg, company.id, "Sales", "income")
    with pytest.raises(ValidationError):
        insert_category(cfg, company.id, "Sales", "revenue", cost_classification="fixed")
    with pytest.raises(ValidationError):
        insert_category(cfg, company.id, "Goods", "cost", markup_type="margin")


def test_set_category_markup_type(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    company = create_company(cfg, "Acme", "lucro_real")
    goods = insert_category(cfg, company.id, "Goods", "cost", cost_classification="variable")

    set_category_markup_type(cfg, company.id, goods, "direct_cost")
    assert load_categories(cfg, company.id)["markup_type"].iloc[0] == "direct_cost"

    with pytest.raises(NotFound):
        set_category_markup_type(cfg, company.id, 999, "direct_cost")


def test_insert_load_and_delete_transactions(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    company = create_company(cfg, "Acme", "simples_nacional")
    sales = insert_category(cfg, company.id, "Sales", "revenue")

    tx_id = insert_transaction(
        cfg,
        company.id,
        NewTransaction(transaction_date=date(2025, 3, 31), amount=199.99, category_id=sales),
    )
    insert_transaction(
        cfg,
        company.id,
        NewTransaction(transaction_date=date(2025, 4, 1), amount=10.0, category_id=sales),
    )

    march = load_transactions(cfg, company.id, date(2025, 3, 1), date(2025, 3, 31))
    assert len(march) == 1
    assert march["amount"].iloc[0] == pytest.approx(199.99)
    assert march["month"].iloc[0] == 3
    assert march["category_id"].iloc[0] == sales
    assert pd.isna(march["client_id"].iloc[0])

    delete_transaction(cfg, company.id, tx_id)
    assert load_transactions(cfg, company.id, date(2025, 3, 1), date(2025, 3, 31)).empty

    with pytest.raises(NotFound):
        delete_transaction(cfg, company.id, tx_id)


@pytest.mark.parametrize("amount", [0.0, -5.0, 0.001, float("inf"), float("nan")])
def test_transactions_must_be_strictly_positive(tmp_path, amount):
    cfg = make_tmp_db_cfg(tmp_path)
    company = create_company(cfg, "Acme", "simples_nacional")

    with pytest.raises(ValidationError):
        insert_transaction(
            cfg, company.id, NewTransaction(transaction_date=date(2025, 3, 1), amount=amount)
        )


def test_import_resolves_names_case_insensitively(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    company = create_company(cfg, "Acme", "simples_nacional")
    insert_category(cfg, company.id, "Sales", "revenue")
    insert_client(cfg, company.id, "Ana")

    df = pd.DataFrame(
        [
            {"date": date(2025, 3, 1), "amount": 100.0, "category": "sales", "client": "ANA",
             "description": "Sale", "is_new_client": True},
            {"date": date(2025, 3, 2), "amount": 50.0, "category": "Unknown", "client": "Bia",
             "description": "?", "is_new_client": False},
        ]
    )

    stats = import_transactions(cfg, company.id, df)

    assert stats.rows_inserted == 2
    assert stats.unknown_categories == ("Unknown",)
    assert stats.unknown_clients == ("Bia",)

    loaded = load_transactions(cfg, company.id)
    assert loaded["category_id"].notna().sum() == 1
    assert loaded["client_id"].notna().sum() == 1
    assert bool(loaded["is_new_client"].iloc[0]) is True


def test_companies_are_isolated(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    a = create_company(cfg, "A", "simples_nacional")
    b = create_company(cfg, "B", "simples_nacional")
    insert_transaction(cfg, a.id, NewTransaction(transaction_date=date(2025, 1, 1), amount=1.0))

    assert len(load_transactions(cfg, a.id)) == 1
    assert load_transactions(cfg, b.id).empty
    assert [c.name for c in list_companies(cfg)] == ["A", "B"]


@pytest.mark.parametrize("field", ["category_id", "client_id"])
def test_transaction_references_must_belong_to_the_company(tmp_path, field):
    cfg = make_tmp_db_cfg(tmp_path)
    a = create_company(cfg, "A", "simples_nacional")
    b = create_company(cfg, "B", "simples_nacional")
    foreign_ids = {
        "category_id": insert_category(cfg, b.id, "Sales", "revenue"),
        "client_id": insert_client(cfg, b.id, "Ana"),
    }
    base = NewTransaction(transaction_date=date(2025, 3, 1), amount=10.0)

    with pytest.raises(NotFound):
        insert_transaction(cfg, a.id, replace(base, **{field: 999}))
    with pytest.raises(NotFound):
        insert_transaction(cfg, a.id, replace(base, **{field: foreign_ids[field]}))

    assert load_transactions(cfg, a.id).empty


def test_goals_upsert(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    company = create_company(cfg, "Acme", "simples_nacional")

    upsert_goal(cfg, company.id, "net_profit", 3, 2025, 1_000.0)
    upsert_goal(cfg, company.id, "net_profit", 3, 2025, 2_500.5)
    upsert_goal(cfg, company.id, "gross_revenue", 3, 2025, 10_000.0)

    assert load_goals(cfg, company.id, 3, 2025) == {
        "gross_revenue": 10_000.0,
        "net_profit": 2_500.5,
    }
    assert load_goals(cfg, company.id, 4, 2025) == {}


def test_metrics_cache_upsert_overwrites(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    company = create_company(cfg, "Acme", "simples_nacional")

    values = {c: 1.0 for c in METRICS_CACHE_COLUMNS}
    upsert_metrics_cache(cfg, company.id, 3, 2025, values)
    upsert_metrics_cache(cfg, company.id, 3, 2025, {**values, "roi": 42.5})

    cached = get_metrics_cache(cfg, company.id, 3, 2025)
    assert cached is not None
    assert cached["roi"] == 42.5
    assert cached["cac"] == 1.0
    assert get_metrics_cache(cfg, company.id, 4, 2025) is None

    with pytest.raises(ValueError):
        upsert_metrics_cache(cfg, company.id, 3, 2025, {"roi": 1.0})
