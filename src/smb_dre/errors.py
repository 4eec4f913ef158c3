# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Error types raised by SMB DRE.

- ValidationError     : malformed input to an operation (negative amount,
                        unknown vault, invalid month, ...).
- InsufficientBalance : a vault transfer requested beyond available funds.
- NotFound            : a referenced company, category or cash transaction
                        does not exist.

Guarded divisions (zero revenue, zero contribution margin, no clients) are
not errors: the calculators return 0 and list the metric as not computable.
Database errors (sqlite3.Error) are propagated unchanged.
"""


class ValidationError(ValueError):
    """Input rejected before any computation or write took place."""


class InsufficientBalance(ValidationError):
    """A vault does not hold enough funds for the requested movement."""

    def __init__(self, vault_type: str, available: float, requested: float) -> None:
        self.vault_type = vault_type
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient balance in vault {vault_type!r}: "
            f"available {available:.2f}, requested {requested:.2f}."
        )


class NotFound(LookupError):
    """A referenced row does not exist for the given company."""
