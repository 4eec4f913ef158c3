# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
SMB DRE
-------

A Python-based income statement (DRE, "Demonstração do Resultado do
Exercício") and cash management engine for Small and Medium-sized
Businesses (SMBs) under the Brazilian tax regimes.

Main capabilities:
- tax deductions per company regime (Simples Nacional DAS or itemized
  ICMS / IPI / PIS / COFINS / ISS),
- monthly aggregation of transactions by category,
- the cascading income statement with margins and vertical analysis,
- derived metrics (break-even, safety margin, CAC, LTV, ROI, markup),
- a cash vault ledger with atomic transfers and reversal on delete,
- what-if scenarios, goals, period comparison and monthly history,
- a metrics cache refreshed on demand (SQLite).

SMB DRE separates computation (pure calculators), persistence (SQLite),
configuration (TOML) and presentation (CLI), making it suitable for
scripting and automation.


Version: 0.1.0

Usage:
    python -m smb_dre.cli --help
"""

__all__ = [
    "aggregator",
    "engine",
    "goals",
    "ledger",
    "metrics",
    "multi_periods",
    "reports_service",
    "scenarios",
    "taxes",
]

__version__ = "0.1.0"
