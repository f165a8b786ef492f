from datetime import date

import pytest

from sms_app.errors import ValidationError
from sms_app.reports.periods import DAY, MONTH, RANGE, date_range, month_range, resolve_params


def test_leap_february_ends_on_the_29th():
    rng = month_range(2, 2024)
    assert rng.start == date(2024, 2, 1)
    assert rng.end == date(2024, 2, 29)


def test_common_february_ends_on_the_28th():
    assert month_range(2, 2023).end == date(2023, 2, 28)


@pytest.mark.parametrize("month, last_day", [(1, 31), (4, 30), (9, 30), (12, 31)])
def test_month_lengths(month, last_day):
    assert month_range(month, 2025).end.day == last_day


def test_month_range_accepts_strings():
    rng = month_range("3", "2024")
    assert (rng.start, rng.end) == (date(2024, 3, 1), date(2024, 3, 31))
    assert (rng.end - rng.start).days == 30


@pytest.mark.parametrize("month, year", [(0, 2024), (13, 2024), ("x", 2024), (5, 1999), (5, 2101), (5, None)])
def test_invalid_month_or_year(month, year):
    with pytest.raises(ValidationError):
        month_range(month, year)


def test_date_range_rejects_reversed_dates():
    with pytest.raises(ValidationError) as exc:
        date_range("2024-03-10", "2024-03-01")
    assert exc.value.field == "start_date"


def test_date_range_rejects_malformed_dates():
    with pytest.raises(ValidationError):
        date_range("2024-13-01", "2024-03-01")
    with pytest.raises(ValidationError):
        date_range("", "2024-03-01")


def test_single_day_range_is_allowed():
    rng = date_range("2024-03-10", "2024-03-10")
    assert rng.start == rng.end
    assert rng.contains("2024-03-10")
    assert not rng.contains("2024-03-11")


def test_resolve_params_defaults_to_today():
    today = date(2024, 2, 14)
    assert resolve_params(RANGE, {}, today=today).range.start == today
    month = resolve_params(MONTH, {}, today=today)
    assert (month.month, month.year) == (2, 2024)
    assert month.end == date(2024, 2, 29)
    assert resolve_params(DAY, None, today=today).start == today


def test_resolve_params_day_kind():
    params = resolve_params(DAY, {"date": "2024-06-01"})
    assert params.start == params.end == date(2024, 6, 1)
    assert params.as_dict()["date"] == "2024-06-01"


def test_resolve_params_unknown_kind():
    with pytest.raises(ValidationError):
        resolve_params("quarter", {})


@pytest.mark.parametrize("raw, field", [
    ({"month": 0, "year": 2024}, "month"),
    ({"month": "0", "year": 2024}, "month"),
    ({"month": 2, "year": 0}, "year"),
])
def test_zero_month_or_year_is_rejected_not_defaulted(raw, field):
    with pytest.raises(ValidationError) as exc:
        resolve_params(MONTH, raw, today=date(2024, 2, 14))
    assert exc.value.field == field


def test_blank_month_falls_back_to_today():
    params = resolve_params(MONTH, {"month": "", "year": ""}, today=date(2024, 2, 14))
    assert (params.month, params.year) == (2, 2024)
