"""
Server-side aggregations reachable through DataService.call().

Each procedure takes the SQLAlchemy session plus keyword parameters and
returns a list of plain dictionaries.
"""
from decimal import Decimal

from sqlalchemy import case, func, select

from .models import FeeCategory, FeePayment, StudentAttendance, StudentFee
from .reports.aggregation import percentage
from .reports.periods import month_range, parse_date


def _dec(value):
    if value is None:
        return Decimal("0")
    return value if isinstance(value, Decimal) else Decimal(str(value))


def get_monthly_fee_summary(session, month_param, year_param):
    rng = month_range(month_param, year_param)
    rows = session.execute(
        select(FeePayment.payment_method, func.sum(FeePayment.amount_paid))
        .where(FeePayment.payment_date >= rng.start, FeePayment.payment_date <= rng.end)
        .group_by(FeePayment.payment_method)
    ).all()
    by_method = {}
    for method, amt in rows:
        by_method[method or "other"] = by_method.get(method or "other", Decimal("0")) + _dec(amt)
    total = sum(by_method.values(), Decimal("0"))
    cash = by_method.get("cash", Decimal("0"))
    bank = by_method.get("bank_transfer", Decimal("0"))

    # Outstanding balance over every fee record, payments counted all-time
    paid = dict(
        session.execute(
            select(FeePayment.student_fee_id, func.sum(FeePayment.amount_paid)).group_by(FeePayment.student_fee_id)
        ).all()
    )
    pending = Decimal("0")
    fees = session.execute(
        select(StudentFee.id, StudentFee.total_amount, StudentFee.discount_amount, StudentFee.fine_amount)
    ).all()
    for fee_id, total_amt, discount, fine in fees:
        due = _dec(total_amt) - _dec(discount) + _dec(fine) - _dec(paid.get(fee_id))
        if due > 0:
            pending += due

    return [{
        "total_collected": total,
        "cash_amount": cash,
        "bank_amount": bank,
        "other_amount": total - cash - bank,
        "pending_amount": pending,
    }]


def get_monthly_attendance_summary(session, month_param, year_param):
    rng = month_range(month_param, year_param)
    present = func.sum(case((StudentAttendance.status == "present", 1), else_=0))
    absent = func.sum(case((StudentAttendance.status == "absent", 1), else_=0))
    late = func.sum(case((StudentAttendance.status == "late", 1), else_=0))
    rows = session.execute(
        select(StudentAttendance.student_id, present, absent, late, func.count(StudentAttendance.id))
        .where(StudentAttendance.attendance_date >= rng.start, StudentAttendance.attendance_date <= rng.end)
        .group_by(StudentAttendance.student_id)
        .order_by(StudentAttendance.student_id.asc())
    ).all()
    out = []
    for student_id, p, a, l, total in rows:
        p, a, l, total = int(p or 0), int(a or 0), int(l or 0), int(total or 0)
        # Late arrivals count as attended
        pct = percentage(p + l, total)
        out.append({
            "student_id": student_id,
            "present_days": p,
            "absent_days": a,
            "late_days": l,
            "attendance_percentage": pct,
        })
    return out


def get_income_statement(session, start_date, end_date):
    start = parse_date(start_date, "start_date")
    end = parse_date(end_date, "end_date")
    category = func.coalesce(FeeCategory.name, "uncategorized")
    rows = session.execute(
        select(category, func.sum(FeePayment.amount_paid))
        .select_from(FeePayment)
        .join(StudentFee, StudentFee.id == FeePayment.student_fee_id)
        .outerjoin(FeeCategory, FeeCategory.id == StudentFee.fee_category_id)
        .where(FeePayment.payment_date >= start, FeePayment.payment_date <= end)
        .group_by(category)
        .order_by(category.asc())
    ).all()
    return [{"fee_category": name, "total_amount": _dec(amt)} for name, amt in rows]


PROCEDURES = {
    "get_monthly_fee_summary": get_monthly_fee_summary,
    "get_monthly_attendance_summary": get_monthly_attendance_summary,
    "get_income_statement": get_income_statement,
}
