import calendar
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from ..errors import ValidationError

MIN_YEAR = 2000
MAX_YEAR = 2100

RANGE = "range"
MONTH = "month"
DAY = "day"


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    def contains(self, value) -> bool:
        d = coerce_date(value)
        return d is not None and self.start <= d <= self.end

    def as_dict(self):
        return {"start_date": self.start.isoformat(), "end_date": self.end.isoformat()}


@dataclass(frozen=True)
class ReportParams:
    """Resolved report parameters; every report ends up with an inclusive date range."""
    kind: str
    range: DateRange
    month: Optional[int] = None
    year: Optional[int] = None

    @property
    def start(self):
        return self.range.start

    @property
    def end(self):
        return self.range.end

    def as_dict(self):
        out = {"kind": self.kind, **self.range.as_dict()}
        if self.kind == MONTH:
            out["month"] = self.month
            out["year"] = self.year
        if self.kind == DAY:
            out["date"] = self.start.isoformat()
        return out


def coerce_date(value) -> Optional[date]:
    """Lenient conversion used when filtering rows; None when the value is not a date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def parse_date(value, field="date") -> date:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", field)
    d = coerce_date(value)
    if d is None:
        raise ValidationError(f"{field} must be a date in YYYY-MM-DD format", field)
    return d


def parse_month(value) -> int:
    try:
        month = int(value)
    except (TypeError, ValueError):
        raise ValidationError("month must be a number between 1 and 12", "month")
    if not 1 <= month <= 12:
        raise ValidationError("month must be a number between 1 and 12", "month")
    return month


def parse_year(value) -> int:
    try:
        year = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"year must be between {MIN_YEAR} and {MAX_YEAR}", "year")
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValidationError(f"year must be between {MIN_YEAR} and {MAX_YEAR}", "year")
    return year


def date_range(start, end) -> DateRange:
    s = parse_date(start, "start_date")
    e = parse_date(end, "end_date")
    if s > e:
        raise ValidationError("start_date must not be after end_date", "start_date")
    return DateRange(s, e)


def month_range(month, year) -> DateRange:
    """First to last calendar day of the month (28/29/30/31)."""
    m = parse_month(month)
    y = parse_year(year)
    last_day = calendar.monthrange(y, m)[1]
    return DateRange(date(y, m, 1), date(y, m, last_day))


def _given(value, default):
    # 0 is a value to validate, not a missing one
    return default if value is None or value == "" else value


def resolve_params(kind, raw, today=None) -> ReportParams:
    """Validate raw request parameters for a report of the given kind.

    Missing values default to today's date / current month, mirroring the
    report selector's initial state.
    """
    raw = raw or {}
    today = today or date.today()
    if kind == RANGE:
        rng = date_range(raw.get("start_date") or today, raw.get("end_date") or today)
        return ReportParams(RANGE, rng)
    if kind == MONTH:
        month = _given(raw.get("month"), today.month)
        year = _given(raw.get("year"), today.year)
        rng = month_range(month, year)
        return ReportParams(MONTH, rng, month=rng.start.month, year=rng.start.year)
    if kind == DAY:
        d = parse_date(raw.get("date") or raw.get("start_date") or today, "date")
        return ReportParams(DAY, DateRange(d, d))
    raise ValidationError(f"Unknown parameter kind '{kind}'", "kind")
