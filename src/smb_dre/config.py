# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for SMB DRE.

This module is responsible for:
- loading the main application configuration from a TOML file,
- exposing typed dataclasses used by the rest of the application.
"""

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .db import DatabaseConfig
from .taxes import TAX_REGIMES, TaxConfiguration, default_tax_configuration

DISPLAY_MODES: tuple[str, ...] = ("table", "csv", "both")
LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class MetricsOptions:
    """
    Options of the derived metrics calculators.

    Attributes
    ----------
    ltv_months:
        Number of months of average ticket counted in the lifetime value.
    desired_margin_pct:
        Default desired profit margin (percent) used by the markup
        calculator when none is given on the command line.
    """

    ltv_months: int = 12
    desired_margin_pct: float = 30.0


@dataclass(frozen=True)
class AppConfig:
    """
    Application-wide configuration for SMB DRE.

    This aggregates:
    - the database configuration (where every entity is stored),
    - the default company used by the CLI,
    - the metrics options,
    - per-regime overrides of the built-in tax defaults,
    - display options for tables,
    - the logging level.
    """

    database: DatabaseConfig
    default_company_id: Optional[int] = None
    metrics: MetricsOptions = field(default_factory=MetricsOptions)
    tax_defaults: dict[str, dict[str, Any]] = field(default_factory=dict)
    display_mode: str = "table"
    decimals: int = 2
    log_level: str = "WARNING"

    def default_tax_configuration(self, regime: str) -> TaxConfiguration:
        """Regime defaults updated with the ``[tax_defaults.<regime>]`` table."""
        return default_tax_configuration(regime, self.tax_defaults.get(regime))


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed or is not a table.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Failed to parse TOML config file: {path}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Invalid TOML root type in {path}, expected a table.")

    return data


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, Mapping):
        return {}
    return section


def _parse_metrics(raw: Mapping[str, Any]) -> MetricsOptions:
    """
    Extract the [metrics] options.

    Raises:
        ValueError: if a value cannot be converted or is out of range.
    """
    section = _section(raw, "metrics")

    try:
        ltv_months = int(section.get("ltv_months", 12))
        desired_margin_pct = float(section.get("desired_margin_pct", 30.0))
    except (TypeError, ValueError) as exc:
        raise ValueError(
            "Invalid value in [metrics]: ltv_months must be an integer and "
            "desired_margin_pct a number."
        ) from exc

    if ltv_months < 1:
        raise ValueError("[metrics].ltv_months must be at least 1.")

    return MetricsOptions(ltv_months=ltv_months, desired_margin_pct=desired_margin_pct)


def _parse_tax_defaults(raw: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """
    Extract the [tax_defaults.<regime>] tables.

    Each table is validated by building the resulting TaxConfiguration once.

    Raises:
        ValueError: on an unknown regime or an invalid rate.
    """
    section = _section(raw, "tax_defaults")

    tax_defaults: dict[str, dict[str, Any]] = {}
    for regime, values in section.items():
        if regime not in TAX_REGIMES:
            raise ValueError(
                f"Unknown regime [tax_defaults.{regime}]. "
                f"Expected one of: {', '.join(TAX_REGIMES)}."
            )
        if not isinstance(values, Mapping):
            continue
        tax_defaults[regime] = dict(values)
        # ValidationError is a ValueError.
        default_tax_configuration(regime, tax_defaults[regime])

    return tax_defaults


def load_app_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load the SMB DRE application configuration from a TOML file.

    Expected top-level sections in the TOML file
    --------------------------------------------
    [database]
        Database engine and SQLite file path.

    [company]
        ``default_id``: company used when ``--company`` is not given.

    [metrics]
        ``ltv_months`` and ``desired_margin_pct``.

    [tax_defaults.<regime>]
        Overrides of the built-in tax defaults applied when a company of
        that regime is created.

    [display]
        ``mode`` (table | csv | both) and ``decimals``.

    [logging]
        ``level`` of the root logger configured by the CLI.

    Every section is optional. All file paths in the TOML are resolved
    relative to the directory of the TOML file itself.

    Parameters
    ----------
    config_path : str, optional
        Path to the TOML configuration file. Defaults to
        ``smb_dre_config.toml`` in the current directory.

    Returns
    -------
    AppConfig
        Parsed and validated application configuration.
    """
    if config_path is None:
        config_file = Path("smb_dre_config.toml").resolve()
    else:
        config_file = Path(config_path).resolve()

    raw = _load_toml(config_file)
    base_dir = config_file.parent

    # 1) Database section
    database_section = _section(raw, "database")
    db_engine = str(database_section.get("engine") or "sqlite")
    db_path_raw = database_section.get("path") or "data/db/smb_dre.sqlite"
    db_path = (base_dir / str(db_path_raw)).resolve()
    database_config = DatabaseConfig(engine=db_engine, path=db_path)

    # 2) Company section
    company_section = _section(raw, "company")
    raw_company_id = company_section.get("default_id")
    default_company_id: Optional[int]
    if raw_company_id is None:
        default_company_id = None
    else:
        try:
            default_company_id = int(raw_company_id)
        except (TypeError, ValueError) as exc:
            raise ValueError(
                "Invalid value for 'company.default_id'. Expected an integer."
            ) from exc

    # 3) Metrics and tax defaults
    metrics = _parse_metrics(raw)
    tax_defaults = _parse_tax_defaults(raw)

    # 4) Display options
    display_section = _section(raw, "display")
    display_mode = str(display_section.get("mode", "table"))
    if display_mode not in DISPLAY_MODES:
        raise ValueError(
            f"Invalid [display].mode {display_mode!r}. "
            f"Expected one of: {', '.join(DISPLAY_MODES)}."
        )
    try:
        decimals = int(display_section.get("decimals", 2))
    except (TypeError, ValueError):
        decimals = 2

    # 5) Logging
    logging_section = _section(raw, "logging")
    log_level = str(logging_section.get("level", "WARNING")).upper()
    if log_level not in LOG_LEVELS:
        raise ValueError(
            f"Invalid [logging].level {log_level!r}. "
            f"Expected one of: {', '.join(LOG_LEVELS)}."
        )

    return AppConfig(
        database=database_config,
        default_company_id=default_company_id,
        metrics=metrics,
        tax_defaults=tax_defaults,
        display_mode=display_mode,
        decimals=decimals,
        log_level=log_level,
    )
