from datetime import date

import pandas as pd
import pytest

from smb_dre.errors import ValidationError
from smb_dre.periods import (
    comparison_period,
    filter_by_period,
    last_n_months,
    month_period,
    previous_month,
    same_period_last_year,
)


def test_month_period_bounds_and_label():
    p = month_period(2, 2024)

    assert p.start == date(2024, 2, 1)
    assert p.end == date(2024, 2, 29)
    assert p.label == "Feb/2024"
    assert (p.month, p.year) == (2, 2024)


@pytest.mark.parametrize("month", [0, 13, -1])
def test_invalid_month_is_rejected(month):
    with pytest.raises(ValidationError):
        month_period(month, 2025)


def test_previous_month_wraps_the_year():
    assert previous_month(month_period(1, 2025)) == month_period(12, 2024)
    assert previous_month(month_period(7, 2025)) == month_period(6, 2025)


def test_comparison_modes():
    march = month_period(3, 2025)

    assert comparison_period(march, "previous-month") == month_period(2, 2025)
    assert comparison_period(march, "same-period-last-year") == month_period(3, 2024)
    assert same_period_last_year(march) == month_period(3, 2024)
    with pytest.raises(ValidationError):
        comparison_period(march, "previous-quarter")


def test_last_n_months_is_chronological():
    periods = last_n_months(2, 2025, 4)

    assert [p.label for p in periods] == ["Nov/2024", "Dec/2024", "Jan/2025", "Feb/2025"]
    with pytest.raises(ValidationError):
        last_n_months(2, 2025, 0)


def test_filter_by_period_is_inclusive():
    df = pd.DataFrame(
        {
            "date": pd.to_datetime(["2025-02-28", "2025-03-01", "2025-03-31", "2025-04-01"]),
            "amount": [1.0, 2.0, 3.0, 4.0],
        }
    )

    out = filter_by_period(df, month_period(3, 2025))

    assert list(out["amount"]) == [2.0, 3.0]
