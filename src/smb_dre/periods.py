# SMB DRE - Income statement & cash management engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Period helpers for SMB DRE.

Statements are computed per calendar month. This module defines the Period
value object and helpers to derive a month, its comparison period
(previous month or same month of the previous year) and trailing series of
months for historical views.
"""

from calendar import monthrange
from dataclasses import dataclass
from datetime import date

import pandas as pd

from .errors import ValidationError

MONTH_LABELS: tuple[str, ...] = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)

COMPARISON_MODES: tuple[str, ...] = ("previous-month", "same-period-last-year")


@dataclass(frozen=True)
class Period:
    """Represents a reporting period with a human-readable label."""

    start: date
    end: date
    label: str

    @property
    def month(self) -> int:
        return self.start.month

    @property
    def year(self) -> int:
        return self.start.year


def validate_month(month: int, year: int) -> None:
    """Raise ValidationError if (month, year) is not a valid calendar month."""
    if not isinstance(month, int) or not 1 <= month <= 12:
        raise ValidationError(f"Invalid month {month!r}: expected 1 to 12.")
    if not isinstance(year, int) or not 1900 <= year <= 9999:
        raise ValidationError(f"Invalid year {year!r}.")


def month_period(month: int, year: int) -> Period:
    """Full calendar month ``month/year``."""
    validate_month(month, year)
    last_day = monthrange(year, month)[1]
    return Period(
        start=date(year, month, 1),
        end=date(year, month, last_day),
        label=f"{MONTH_LABELS[month - 1]}/{year}",
    )


def previous_month(period: Period) -> Period:
    """Calendar month before ``period``."""
    if period.month == 1:
        return month_period(12, period.year - 1)
    return month_period(period.month - 1, period.year)


def same_period_last_year(period: Period) -> Period:
    """Same calendar month, one year earlier."""
    return month_period(period.month, period.year - 1)


def comparison_period(period: Period, mode: str) -> Period:
    """
    Derive the comparison period of ``period``.

    Parameters
    ----------
    period:
        Current (monthly) period.
    mode:
        "previous-month" or "same-period-last-year".
    """
    if mode == "previous-month":
        return previous_month(period)
    if mode == "same-period-last-year":
        return same_period_last_year(period)
    raise ValidationError(
        f"Unknown comparison mode {mode!r}. Expected one of: {', '.join(COMPARISON_MODES)}."
    )


def last_n_months(month: int, year: int, count: int = 12) -> list[Period]:
    """
    Return ``count`` consecutive monthly periods ending at ``month/year``.

    The list is in chronological order (oldest first).
    """
    if count < 1:
        raise ValidationError("count must be at least 1.")

    periods = [month_period(month, year)]
    while len(periods) < count:
        periods.append(previous_month(periods[-1]))
    periods.reverse()
    return periods


def filter_by_period(frame: pd.DataFrame, period: Period) -> pd.DataFrame:
    """
    Keep only the rows of ``frame`` dated within the period.

    The DataFrame is expected to contain a 'date' column of type
    datetime64[ns] (as produced by ``db.load_transactions``).

    Parameters
    ----------
    frame:
        DataFrame with at least a 'date' column.
    period:
        Period defining the [start, end] boundaries (inclusive).

    Returns
    -------
    pandas.DataFrame
        Filtered copy.
    """
    mask = (frame["date"] >= pd.Timestamp(period.start)) & (
        frame["date"] <= pd.Timestamp(period.end)
    )
    return frame.loc[mask].copy()
