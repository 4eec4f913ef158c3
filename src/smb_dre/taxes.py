# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Tax configuration and deduction resolution.

A company's tax configuration drives two parts of the income statement:

1. Deductions from gross revenue
   ------------------------------
   Either a single unified Simples Nacional line (DAS) when ``use_das`` is
   enabled, or five itemized sales taxes (ICMS, IPI, PIS, COFINS, ISS).
   When ``use_das`` is enabled the itemized rates are ignored, even if they
   are set in storage.

2. Taxes on profit
   ----------------
   IRPJ, the IRPJ surtax above a monthly threshold, and CSLL. These are
   applied by the statement engine (engine.py) on pre-tax profit only.

All rates are fractions (0.06 means 6%). A missing rate (None) is treated
as 0 everywhere.
"""

from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any, Literal, Optional

from .errors import ValidationError

TaxRegime = Literal["simples_nacional", "lucro_presumido", "lucro_real"]

TAX_REGIMES: tuple[str, ...] = ("simples_nacional", "lucro_presumido", "lucro_real")

# Itemized deduction lines, in statement order.
ITEMIZED_TAXES: tuple[tuple[str, str], ...] = (
    ("icms", "ICMS"),
    ("ipi", "IPI"),
    ("pis", "PIS"),
    ("cofins", "COFINS"),
    ("iss", "ISS"),
)

UNIFIED_TAX: tuple[str, str] = ("das", "DAS (Simples Nacional)")

RATE_FIELDS: tuple[str, ...] = (
    "icms_rate",
    "ipi_rate",
    "pis_rate",
    "cofins_rate",
    "iss_rate",
    "das_rate",
    "irpj_rate",
    "irpj_additional_rate",
    "csll_rate",
)


@dataclass(frozen=True)
class TaxConfiguration:
    """
    Per-company tax rates.

    Attributes
    ----------
    regime_type:
        One of TAX_REGIMES.
    icms_rate, ipi_rate, pis_rate, cofins_rate, iss_rate:
        Itemized sales-tax rates applied to gross revenue.
    das_rate:
        Unified Simples Nacional rate applied to gross revenue.
    use_das:
        When True, only ``das_rate`` is used for deductions.
    irpj_rate:
        Income tax rate on positive pre-tax profit.
    irpj_additional_rate, irpj_additional_threshold:
        Surtax rate applied to the part of pre-tax profit above the monthly
        threshold (a monetary amount).
    csll_rate:
        Social contribution rate on positive pre-tax profit.
    """

    regime_type: str = "simples_nacional"
    icms_rate: Optional[float] = None
    ipi_rate: Optional[float] = None
    pis_rate: Optional[float] = None
    cofins_rate: Optional[float] = None
    iss_rate: Optional[float] = None
    das_rate: Optional[float] = None
    use_das: bool = False
    irpj_rate: Optional[float] = None
    irpj_additional_rate: Optional[float] = None
    irpj_additional_threshold: Optional[float] = None
    csll_rate: Optional[float] = None

    def rate(self, name: str) -> float:
        """Return the rate stored in ``<name>`` as a float, None counting as 0."""
        value = getattr(self, name)
        if value is None:
            return 0.0
        return float(value)

    @property
    def surtax_threshold(self) -> float:
        if self.irpj_additional_threshold is None:
            return 0.0
        return float(self.irpj_additional_threshold)


@dataclass(frozen=True)
class DeductionLine:
    """One deduction line: ``amount = base * rate``."""

    key: str
    label: str
    rate: float
    amount: float


@dataclass(frozen=True)
class DeductionLines:
    """Deduction lines applied to gross revenue, in statement order."""

    lines: tuple[DeductionLine, ...]
    use_das: bool

    @property
    def total(self) -> float:
        return sum((line.amount for line in self.lines), 0.0)

    def amount(self, key: str) -> float:
        """Amount of the line ``key``, 0 when the line is not present."""
        for line in self.lines:
            if line.key == key:
                return line.amount
        return 0.0

    def scaled(self, factor: float) -> "DeductionLines":
        """Return a copy with every line amount multiplied by ``factor``."""
        return DeductionLines(
            lines=tuple(replace(line, amount=line.amount * factor) for line in self.lines),
            use_das=self.use_das,
        )


def resolve_deductions(
    tax_config: TaxConfiguration, gross_revenue: float
) -> DeductionLines:
    """
    Resolve which deductions apply to ``gross_revenue`` and compute them.

    - ``use_das`` True : one line, ``das = gross_revenue * das_rate``.
    - otherwise        : ICMS, IPI, PIS, COFINS and ISS lines, each
                         ``gross_revenue * rate``.

    Missing rates count as 0. No rounding is applied.
    """
    if tax_config.use_das:
        key, label = UNIFIED_TAX
        rate = tax_config.rate("das_rate")
        return DeductionLines(
            lines=(DeductionLine(key=key, label=label, rate=rate, amount=gross_revenue * rate),),
            use_das=True,
        )

    lines = []
    for key, label in ITEMIZED_TAXES:
        rate = tax_config.rate(f"{key}_rate")
        lines.append(
            DeductionLine(key=key, label=label, rate=rate, amount=gross_revenue * rate)
        )
    return DeductionLines(lines=tuple(lines), use_das=False)


# Profit taxes shared by every regime; sales taxes depend on the regime.
_PROFIT_TAX_DEFAULTS: dict[str, Any] = {
    "irpj_rate": 0.15,
    "irpj_additional_rate": 0.10,
    "irpj_additional_threshold": 20000.0,
    "csll_rate": 0.09,
}

BUILTIN_DEFAULTS: dict[str, dict[str, Any]] = {
    "simples_nacional": {
        **_PROFIT_TAX_DEFAULTS,
        "use_das": True,
        "das_rate": 0.06,
    },
    "lucro_presumido": {
        **_PROFIT_TAX_DEFAULTS,
        "use_das": False,
        "pis_rate": 0.0065,
        "cofins_rate": 0.03,
        "iss_rate": 0.05,
    },
    "lucro_real": {
        **_PROFIT_TAX_DEFAULTS,
        "use_das": False,
        "pis_rate": 0.0165,
        "cofins_rate": 0.076,
    },
}


def validate_regime(regime: str) -> str:
    """Return ``regime`` unchanged, or raise ValidationError if unknown."""
    if regime not in TAX_REGIMES:
        raise ValidationError(
            f"Unknown tax regime {regime!r}. Expected one of: {', '.join(TAX_REGIMES)}."
        )
    return regime


def validate_tax_configuration(tax_config: TaxConfiguration) -> TaxConfiguration:
    """
    Check that a tax configuration is usable.

    Raises
    ------
    ValidationError
        If the regime is unknown, a rate is outside [0, 1], or the surtax
        threshold is negative.
    """
    validate_regime(tax_config.regime_type)

    for name in RATE_FIELDS:
        value = getattr(tax_config, name)
        if value is None:
            continue
        if not 0.0 <= float(value) <= 1.0:
            raise ValidationError(
                f"Tax rate {name} must be a fraction between 0 and 1, got {value!r}."
            )

    if tax_config.surtax_threshold < 0:
        raise ValidationError("irpj_additional_threshold cannot be negative.")

    return tax_config


def default_tax_configuration(
    regime: str,
    overrides: Optional[Mapping[str, Any]] = None,
) -> TaxConfiguration:
    """
    Build the default tax configuration for a regime.

    Parameters
    ----------
    regime:
        Tax regime of the company.
    overrides:
        Optional mapping of field name to value (typically the
        ``[tax_defaults.<regime>]`` table of the configuration file).
        Unknown keys are ignored.

    Returns
    -------
    TaxConfiguration
        Built-in regime defaults updated with ``overrides``.
    """
    validate_regime(regime)

    values: dict[str, Any] = dict(BUILTIN_DEFAULTS[regime])
    known = {f.name for f in fields(TaxConfiguration)}
    for key, value in (overrides or {}).items():
        if key in known and key != "regime_type":
            values[key] = value

    return validate_tax_configuration(TaxConfiguration(regime_type=regime, **values))
