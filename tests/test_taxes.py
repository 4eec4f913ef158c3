import pytest

from smb_dre.errors import ValidationError
from smb_dre.taxes import (
    BUILTIN_DEFAULTS,
    TAX_REGIMES,
    TaxConfiguration,
    default_tax_configuration,
    resolve_deductions,
    validate_tax_configuration,
)


def test_unified_tax_yields_single_das_line():
    """With use_das, only the DAS rate applies to gross revenue."""
    cfg = TaxConfiguration(
        regime_type="simples_nacional",
        use_das=True,
        das_rate=0.06,
        icms_rate=0.18,
        pis_rate=0.0165,
    )

    deductions = resolve_deductions(cfg, 100_000.0)

    assert deductions.use_das is True
    assert [line.key for line in deductions.lines] == ["das"]
    assert deductions.total == pytest.approx(6_000.0)
    assert deductions.amount("icms") == 0.0


def test_itemized_taxes_sum_every_rate_and_treat_missing_as_zero():
    cfg = TaxConfiguration(
        regime_type="lucro_presumido",
        use_das=False,
        icms_rate=0.10,
        pis_rate=0.01,
        cofins_rate=0.03,
        iss_rate=None,
    )

    deductions = resolve_deductions(cfg, 1_000.0)

    assert [line.key for line in deductions.lines] == ["icms", "ipi", "pis", "cofins", "iss"]
    assert deductions.amount("icms") == pytest.approx(100.0)
    assert deductions.amount("ipi") == 0.0
    assert deductions.amount("iss") == 0.0
    assert deductions.total == pytest.approx(140.0)


def test_zero_revenue_has_zero_deductions():
    cfg = default_tax_configuration("lucro_real")
    assert resolve_deductions(cfg, 0.0).total == 0.0


def test_scaled_deductions_multiply_every_line():
    cfg = TaxConfiguration(use_das=False, pis_rate=0.01, cofins_rate=0.03)
    scaled = resolve_deductions(cfg, 1_000.0).scaled(1.5)

    assert scaled.amount("pis") == pytest.approx(15.0)
    assert scaled.total == pytest.approx(60.0)


@pytest.mark.parametrize("regime", TAX_REGIMES)
def test_builtin_defaults_are_valid_for_every_regime(regime):
    cfg = default_tax_configuration(regime)

    assert cfg.regime_type == regime
    assert cfg.use_das == BUILTIN_DEFAULTS[regime]["use_das"]
    assert cfg.rate("irpj_rate") == pytest.approx(0.15)
    assert cfg.surtax_threshold == pytest.approx(20_000.0)


def test_overrides_replace_defaults_and_ignore_unknown_keys():
    cfg = default_tax_configuration(
        "simples_nacional", {"das_rate": 0.08, "not_a_field": 1, "regime_type": "lucro_real"}
    )

    assert cfg.das_rate == pytest.approx(0.08)
    assert cfg.regime_type == "simples_nacional"


def test_unknown_regime_is_rejected():
    with pytest.raises(ValidationError):
        default_tax_configuration("mei")


def test_rates_outside_unit_interval_are_rejected():
    with pytest.raises(ValidationError):
        validate_tax_configuration(TaxConfiguration(das_rate=6.0))

    with pytest.raises(ValidationError):
        validate_tax_configuration(TaxConfiguration(irpj_additional_threshold=-1.0))
