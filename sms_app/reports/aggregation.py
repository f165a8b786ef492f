"""
Aggregation helpers for the report views.

Every function here is pure: rows in, summaries out. Nothing raises on bad
data. A missing or malformed amount is counted as 0 and reported through a
PartialDataWarning, so one legacy row with a blank amount cannot take the
whole report down.
"""
import logging
import math
import warnings
from dataclasses import asdict, dataclass, field as dc_field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Callable, Dict, Iterable, List, Optional

from ..errors import PartialDataWarning
from . import accessors as acc
from .periods import coerce_date

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
UNDEFINED_KEY = "undefined"
ATTENDANCE_STATUSES = ("present", "absent", "late")
ATTENDANCE_FIELDS = ("present_days", "absent_days", "late_days", "attendance_percentage")


def _accessor(getter) -> Callable:
    if callable(getter):
        return getter
    return acc.field(getter)


def to_decimal(value, *, label="amount") -> Decimal:
    """Convert a numeric field to Decimal; anything unusable becomes 0."""
    if isinstance(value, Decimal):
        if value.is_finite():
            return value
    elif isinstance(value, bool):
        pass
    elif isinstance(value, int):
        return Decimal(value)
    elif isinstance(value, float):
        if math.isfinite(value):
            return Decimal(str(value))
    elif isinstance(value, str):
        try:
            d = Decimal(value.strip().replace(",", ""))
            if d.is_finite():
                return d
        except InvalidOperation:
            pass
    logger.debug("Non-numeric %s %r counted as 0", label, value)
    warnings.warn(f"Non-numeric {label} {value!r} counted as 0", PartialDataWarning, stacklevel=3)
    return ZERO


def percentage(numerator, denominator) -> int:
    """round(numerator / denominator * 100), half up; 0 when the denominator is 0."""
    num = to_decimal(numerator, label="numerator")
    den = to_decimal(denominator, label="denominator")
    if den == 0:
        return 0
    return int((num * 100 / den).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def display_label(key) -> str:
    """Presentation form of a grouping key. Never group on this."""
    if key is None:
        return UNDEFINED_KEY
    return str(key).lower().replace("_", " ")


def total(rows: Iterable[dict], amount=acc.payment_amount) -> Decimal:
    get_amount = _accessor(amount)
    return sum((to_decimal(get_amount(r)) for r in rows), ZERO)


def sum_by_key(rows: Iterable[dict], amount, key, missing: str = "undefined") -> Dict[str, Decimal]:
    """
    Total an amount per grouping key.

    Args:
        rows: records from the data service
        amount: accessor (or field name) for the numeric value
        key: accessor (or field name / dotted path) for the group
        missing: "undefined" buckets rows without a key under "undefined";
            "ignore" drops them

    Returns:
        dict: raw key -> Decimal total, in first-seen key order
    """
    get_amount = _accessor(amount)
    get_key = _accessor(key)
    out: Dict[str, Decimal] = {}
    for row in rows:
        k = get_key(row)
        if k is None or k == "":
            if missing == "ignore":
                continue
            k = UNDEFINED_KEY
        out[k] = out.get(k, ZERO) + to_decimal(get_amount(row))
    return out


def filter_by_range(rows: Iterable[dict], date_of, date_range) -> List[dict]:
    """Keep rows whose date (day granularity) lies in the inclusive range."""
    get_date = _accessor(date_of)
    kept = []
    for row in rows:
        d = coerce_date(get_date(row))
        if d is not None and date_range.start <= d <= date_range.end:
            kept.append(row)
    return kept


# =============================================================================
# ATTENDANCE
# =============================================================================

@dataclass(frozen=True)
class AttendanceBreakdown:
    present: int = 0
    absent: int = 0
    late: int = 0
    total: int = 0
    present_pct: int = 0
    absent_pct: int = 0
    late_pct: int = 0

    def as_dict(self):
        return asdict(self)


def compute_attendance_breakdown(records: Iterable[dict], status=acc.attendance_status) -> AttendanceBreakdown:
    get_status = _accessor(status)
    counts = {s: 0 for s in ATTENDANCE_STATUSES}
    n = 0
    for rec in records:
        n += 1
        s = get_status(rec)
        if s in counts:
            counts[s] += 1
    return AttendanceBreakdown(
        present=counts["present"],
        absent=counts["absent"],
        late=counts["late"],
        total=n,
        present_pct=percentage(counts["present"], n),
        absent_pct=percentage(counts["absent"], n),
        late_pct=percentage(counts["late"], n),
    )


def attendance_by_student(records: Iterable[dict]) -> List[dict]:
    """Per-student present/absent/late counts, in first-seen order."""
    by_student: Dict[object, dict] = {}
    for rec in records:
        sid = acc.attendance_student_id(rec)
        if sid is None:
            continue
        entry = by_student.get(sid)
        if entry is None:
            entry = {"student_id": sid, "student": rec.get("student"), "present": 0, "absent": 0, "late": 0}
            by_student[sid] = entry
        s = acc.attendance_status(rec)
        if s in ATTENDANCE_STATUSES:
            entry[s] += 1
    return list(by_student.values())


# =============================================================================
# INCOME
# =============================================================================

@dataclass(frozen=True)
class NetIncome:
    net: Decimal
    is_profit: bool

    @property
    def magnitude(self) -> Decimal:
        return abs(self.net)

    def as_dict(self):
        return {"net": self.net, "is_profit": self.is_profit, "label": "Profit" if self.is_profit else "Loss",
                "amount": self.magnitude}


def compute_net_income(income_total, expense_total) -> NetIncome:
    net = to_decimal(income_total, label="income") - to_decimal(expense_total, label="expense")
    # Break-even is reported as profit
    return NetIncome(net=net, is_profit=net >= 0)


def combine_income(fee_payments: Iterable[dict], other_income: Iterable[dict]) -> dict:
    lines = []
    for p in fee_payments:
        lines.append({
            "type": "Fee Payment",
            "category": acc.fee_category(p),
            "amount": to_decimal(acc.payment_amount(p)),
            "date": acc.payment_date(p),
            "method": acc.payment_method(p),
        })
    for i in other_income:
        lines.append({
            "type": "Other Income",
            "category": acc.income_category(i),
            "amount": to_decimal(acc.income_amount(i)),
            "date": i.get("date"),
            "method": i.get("method"),
        })
    by_type = sum_by_key(lines, "amount", "type")
    return {
        "lines": lines,
        "total_income": sum(by_type.values(), ZERO),
        "fee_payments_total": by_type.get("Fee Payment", ZERO),
        "other_income_total": by_type.get("Other Income", ZERO),
        "by_category": sum_by_key(lines, "amount", "category"),
    }


# =============================================================================
# FEES & COLLECTIONS
# =============================================================================

def summarize_collections(payments: Iterable[dict]) -> dict:
    by_method = sum_by_key(payments, acc.payment_amount, acc.payment_method)
    collected = sum(by_method.values(), ZERO)
    cash = by_method.get("cash", ZERO)
    bank = by_method.get("bank_transfer", ZERO)
    return {
        "total_collected": collected,
        "cash": cash,
        "bank_transfer": bank,
        "other": collected - cash - bank,
    }


def summarize_fee_payments(payments: Iterable[dict]) -> dict:
    """Collected amount plus discounts and fines, each fee record counted once."""
    payments = list(payments)
    seen = set()
    discounts = ZERO
    fines = ZERO
    for p in payments:
        fee_id = acc.payment_fee_id(p)
        if fee_id is not None:
            if fee_id in seen:
                continue
            seen.add(fee_id)
        discounts += to_decimal(acc.fee_discount(p) or 0, label="discount")
        fines += to_decimal(acc.fee_fine(p) or 0, label="fine")
    return {
        "total_collected": total(payments, acc.payment_amount),
        "total_discounts": discounts,
        "total_fines": fines,
        "payments": len(payments),
    }


# =============================================================================
# ADMISSIONS
# =============================================================================

def summarize_admissions(students: Iterable[dict]) -> dict:
    students = list(students)
    active = sum(1 for s in students if acc.student_status(s) == "active")
    return {"total": len(students), "active": active, "inactive": len(students) - active}


def build_student_monthly_rollup(admissions: Iterable[dict], attendance_summary_rows: Iterable[dict]) -> List[dict]:
    """Left join admissions onto the per-student attendance summary by student id."""
    summary = {}
    for row in attendance_summary_rows:
        sid = row.get("student_id")
        if sid is not None and sid not in summary:
            summary[sid] = row
    out = []
    for student in admissions:
        merged = dict(student)
        match = summary.get(acc.student_id(student))
        for f in ATTENDANCE_FIELDS:
            merged[f] = match.get(f) if match else None
        out.append(merged)
    return out


# =============================================================================
# DAILY ROLLUP
# =============================================================================

@dataclass(frozen=True)
class DailySummary:
    admissions: int = 0
    payments: int = 0
    total_collected: Decimal = ZERO
    collected_by_method: Dict[str, Decimal] = dc_field(default_factory=dict)
    student_attendance: AttendanceBreakdown = dc_field(default_factory=AttendanceBreakdown)
    staff_attendance: AttendanceBreakdown = dc_field(default_factory=AttendanceBreakdown)
    expenses: int = 0
    total_expenses: Decimal = ZERO
    net_income: Optional[NetIncome] = None

    def as_dict(self):
        return {
            "admissions": self.admissions,
            "payments": self.payments,
            "total_collected": self.total_collected,
            "collected_by_method": dict(self.collected_by_method),
            "student_attendance": self.student_attendance.as_dict(),
            "staff_attendance": self.staff_attendance.as_dict(),
            "expenses": self.expenses,
            "total_expenses": self.total_expenses,
            "net_income": self.net_income.as_dict() if self.net_income else None,
        }


def combine_daily_rollup(admissions, payments, student_attendance, staff_attendance, expenses) -> DailySummary:
    admissions = list(admissions)
    payments = list(payments)
    expenses = list(expenses)
    collected = total(payments, acc.payment_amount)
    spent = total(expenses, acc.expense_amount)
    return DailySummary(
        admissions=len(admissions),
        payments=len(payments),
        total_collected=collected,
        collected_by_method=sum_by_key(payments, acc.payment_amount, acc.payment_method),
        student_attendance=compute_attendance_breakdown(student_attendance),
        staff_attendance=compute_attendance_breakdown(staff_attendance),
        expenses=len(expenses),
        total_expenses=spent,
        net_income=compute_net_income(collected, spent),
    )
