import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from smb_dre.db import DatabaseConfig, create_company
from smb_dre.errors import InsufficientBalance, NotFound, ValidationError
from smb_dre.ledger import (
    MAIN_VAULT,
    REVERSAL_PREFIX,
    VAULT_TYPES,
    create_tag,
    delete_cash_transaction,
    delete_tag,
    deposit,
    get_balances,
    get_cash_transaction,
    get_vault_balance,
    list_cash_transactions,
    list_tags,
    transfer,
)


def make_company(tmp_path):
    """Temporary database with one company; returns (cfg, company_id)."""
    cfg = DatabaseConfig(engine="sqlite", path=tmp_path / "ledger.sqlite")
    company = create_company(cfg, "Acme", "simples_nacional")
    return cfg, company.id


def _funded(tmp_path):
    """Main vault at 5,000 and emergency reserve at 2,000."""
    cfg, company_id = make_company(tmp_path)
    deposit(cfg, company_id, 5_000.0, "Opening balance")
    deposit(cfg, company_id, 2_000.0, "Opening reserve", vault_type="emergency_reserve")
    return cfg, company_id


def _all_balances(cfg, company_id) -> dict[str, float]:
    return {v: get_vault_balance(cfg, company_id, v) for v in VAULT_TYPES}


def test_deposit_writes_a_single_row(tmp_path):
    cfg, company_id = make_company(tmp_path)

    row = deposit(cfg, company_id, 150.25, "Cash in", tags=["pix", "pix", " store "])

    assert row.transaction_type == "transfer_in"
    assert row.vault_type == MAIN_VAULT
    assert row.related_vault_type is None
    assert row.pair_id is None
    assert row.tags == ("pix", "store")
    assert get_vault_balance(cfg, company_id, MAIN_VAULT) == pytest.approx(150.25)
    assert len(list_cash_transactions(cfg, company_id)) == 1


def test_transfer_moves_money_and_keeps_the_sum(tmp_path):
    cfg, company_id = _funded(tmp_path)

    result = transfer(cfg, company_id, MAIN_VAULT, "emergency_reserve", 1_000.0, "Reserve")

    assert result.from_balance == pytest.approx(4_000.0)
    assert result.to_balance == pytest.approx(3_000.0)
    assert get_vault_balance(cfg, company_id, MAIN_VAULT) == pytest.approx(4_000.0)
    assert get_vault_balance(cfg, company_id, "emergency_reserve") == pytest.approx(3_000.0)
    assert sum(_all_balances(cfg, company_id).values()) == pytest.approx(7_000.0)


def test_transfer_writes_two_linked_rows(tmp_path):
    cfg, company_id = _funded(tmp_path)

    result = transfer(cfg, company_id, MAIN_VAULT, "investments", 300.0)

    out_row = get_cash_transaction(cfg, company_id, result.out_transaction_id)
    in_row = get_cash_transaction(cfg, company_id, result.in_transaction_id)
    assert out_row.transaction_type == "transfer_out"
    assert out_row.related_vault_type == "investments"
    assert in_row.transaction_type == "transfer_in"
    assert in_row.related_vault_type == MAIN_VAULT
    assert out_row.pair_id == in_row.id
    assert in_row.pair_id == out_row.id


def test_transfer_sequences_conserve_the_total(tmp_path):
    cfg, company_id = _funded(tmp_path)
    before = sum(_all_balances(cfg, company_id).values())

    transfer(cfg, company_id, MAIN_VAULT, "working_capital", 1_200.0)
    transfer(cfg, company_id, "working_capital", "investments", 700.0)
    transfer(cfg, company_id, "emergency_reserve", MAIN_VAULT, 150.5)
    transfer(cfg, company_id, "investments", "withdrawals", 699.99)

    assert sum(_all_balances(cfg, company_id).values()) == pytest.approx(before)


def test_insufficient_balance_leaves_everything_unchanged(tmp_path):
    cfg, company_id = make_company(tmp_path)
    deposit(cfg, company_id, 500.0, vault_type="working_capital")
    rows_before = len(list_cash_transactions(cfg, company_id, include_deleted=True))
    balances_before = _all_balances(cfg, company_id)

    with pytest.raises(InsufficientBalance) as excinfo:
        transfer(cfg, company_id, "working_capital", "investments", 10_000.0)

    assert excinfo.value.vault_type == "working_capital"
    assert excinfo.value.available == pytest.approx(500.0)
    assert excinfo.value.requested == pytest.approx(10_000.0)
    assert _all_balances(cfg, company_id) == balances_before
    assert len(list_cash_transactions(cfg, company_id, include_deleted=True)) == rows_before


def test_concurrent_transfers_never_overdraw(tmp_path):
    cfg, company_id = make_company(tmp_path)
    deposit(cfg, company_id, 1_000.0)
    workers = 8
    barrier = threading.Barrier(workers)

    def attempt(_):
        barrier.wait()
        try:
            transfer(cfg, company_id, MAIN_VAULT, "investments", 300.0)
        except InsufficientBalance:
            return "insufficient"
        return "ok"

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(attempt, range(workers)))

    assert outcomes.count("ok") == 3
    assert outcomes.count("insufficient") == workers - 3
    assert get_vault_balance(cfg, company_id, MAIN_VAULT) == pytest.approx(100.0)
    assert get_vault_balance(cfg, company_id, "investments") == pytest.approx(900.0)


@pytest.mark.parametrize(
    "from_vault, to_vault, amount",
    [
        (MAIN_VAULT, MAIN_VAULT, 10.0),
        ("withdrawals", MAIN_VAULT, 10.0),
        (MAIN_VAULT, "savings", 10.0),
        (MAIN_VAULT, "investments", 0.0),
        (MAIN_VAULT, "investments", -10.0),
        (MAIN_VAULT, "investments", float("inf")),
        (MAIN_VAULT, "investments", float("nan")),
    ],
)
def test_invalid_transfers_are_rejected(tmp_path, from_vault, to_vault, amount):
    cfg, company_id = _funded(tmp_path)

    with pytest.raises(ValidationError):
        transfer(cfg, company_id, from_vault, to_vault, amount)


def test_deposit_for_unknown_company(tmp_path):
    cfg, _ = make_company(tmp_path)
    with pytest.raises(NotFound):
        deposit(cfg, 99, 10.0)


def test_deleting_a_transfer_restores_both_vaults(tmp_path):
    cfg, company_id = _funded(tmp_path)
    result = transfer(cfg, company_id, MAIN_VAULT, "emergency_reserve", 1_000.0, "Reserve")

    reversal = delete_cash_transaction(cfg, company_id, result.out_transaction_id, "typo")

    assert get_vault_balance(cfg, company_id, MAIN_VAULT) == pytest.approx(5_000.0)
    assert get_vault_balance(cfg, company_id, "emergency_reserve") == pytest.approx(2_000.0)
    assert set(reversal.deleted_ids) == {result.out_transaction_id, result.in_transaction_id}
    assert len(reversal.compensation_ids) == 2

    original = get_cash_transaction(cfg, company_id, result.out_transaction_id)
    assert original.is_deleted is True
    assert original.deleted_reason == "typo"
    compensation = get_cash_transaction(cfg, company_id, reversal.compensation_ids[0])
    assert compensation.reversal_of == result.out_transaction_id
    assert compensation.description == REVERSAL_PREFIX + "Reserve"


def test_deleting_the_incoming_row_reverses_the_same_transfer(tmp_path):
    cfg, company_id = _funded(tmp_path)
    result = transfer(cfg, company_id, MAIN_VAULT, "investments", 800.0)

    delete_cash_transaction(cfg, company_id, result.in_transaction_id)

    assert get_vault_balance(cfg, company_id, MAIN_VAULT) == pytest.approx(5_000.0)
    assert get_vault_balance(cfg, company_id, "investments") == 0.0


def test_deleting_a_deposit_takes_the_money_back(tmp_path):
    cfg, company_id = make_company(tmp_path)
    row = deposit(cfg, company_id, 400.0, vault_type="investments")

    delete_cash_transaction(cfg, company_id, row.id)

    assert get_vault_balance(cfg, company_id, "investments") == 0.0


def test_deleting_a_deposit_already_spent_is_rejected(tmp_path):
    cfg, company_id = make_company(tmp_path)
    row = deposit(cfg, company_id, 400.0)
    transfer(cfg, company_id, MAIN_VAULT, "withdrawals", 300.0)

    with pytest.raises(InsufficientBalance):
        delete_cash_transaction(cfg, company_id, row.id)

    assert get_cash_transaction(cfg, company_id, row.id).is_deleted is False
    assert get_vault_balance(cfg, company_id, MAIN_VAULT) == pytest.approx(100.0)


def test_deleted_and_reversal_rows_cannot_be_deleted(tmp_path):
    cfg, company_id = _funded(tmp_path)
    result = transfer(cfg, company_id, MAIN_VAULT, "investments", 100.0)
    reversal = delete_cash_transaction(cfg, company_id, result.out_transaction_id)

    with pytest.raises(ValidationError):
        delete_cash_transaction(cfg, company_id, result.in_transaction_id)
    with pytest.raises(ValidationError):
        delete_cash_transaction(cfg, company_id, reversal.compensation_ids[0])
    with pytest.raises(NotFound):
        delete_cash_transaction(cfg, company_id, 9_999)


def test_listing_hides_deleted_rows_and_filters(tmp_path):
    cfg, company_id = _funded(tmp_path)
    result = transfer(cfg, company_id, MAIN_VAULT, "investments", 100.0, tags=["savings"])
    transfer(cfg, company_id, MAIN_VAULT, "working_capital", 50.0)
    delete_cash_transaction(cfg, company_id, result.out_transaction_id)

    visible = list_cash_transactions(cfg, company_id)
    every_row = list_cash_transactions(cfg, company_id, include_deleted=True)

    assert result.out_transaction_id not in set(visible["id"])
    assert result.out_transaction_id in set(every_row["id"])
    assert list(visible["id"]) == sorted(visible["id"], reverse=True)

    wc = list_cash_transactions(cfg, company_id, vault_type="working_capital")
    assert list(wc["transaction_type"]) == ["transfer_in"]

    tagged = list_cash_transactions(cfg, company_id, tag="savings")
    # the reversal rows carry the tags of the original movement
    assert set(tagged["reversal_of"].dropna()) == {result.out_transaction_id}


def test_balances_summary(tmp_path):
    cfg, company_id = _funded(tmp_path)
    transfer(cfg, company_id, MAIN_VAULT, "withdrawals", 500.0)

    balances = get_balances(cfg, company_id, net_balance=1_234.5)

    assert balances.available_balance == pytest.approx(1_234.5)
    assert balances.main_ledger_balance == pytest.approx(4_500.0)
    assert balances.emergency_reserve == pytest.approx(2_000.0)
    assert balances.withdrawals == pytest.approx(500.0)
    assert balances.vault("withdrawals") == pytest.approx(500.0)
    assert balances.total_balance == pytest.approx(7_000.0)


def test_cash_tags(tmp_path):
    cfg, company_id = make_company(tmp_path)

    tag_id = create_tag(cfg, company_id, "Payroll", "#FF0000")
    create_tag(cfg, company_id, "Alpha")

    with pytest.raises(ValidationError):
        create_tag(cfg, company_id, "Payroll")
    with pytest.raises(ValidationError):
        create_tag(cfg, company_id, "Bad", "red")

    tags = list_tags(cfg, company_id)
    assert list(tags["name"]) == ["Alpha", "Payroll"]

    delete_tag(cfg, company_id, tag_id)
    assert list(list_tags(cfg, company_id)["name"]) == ["Alpha"]
    with pytest.raises(NotFound):
        delete_tag(cfg, company_id, tag_id)
