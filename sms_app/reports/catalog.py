"""
Report catalog.

Each report pairs a fetch step (Data Service reads only, may raise
DataServiceError) with an aggregate step (pure, never raises). The composer
keeps the two apart so a failed fetch never reaches the aggregation engine.
"""
from dataclasses import dataclass
from typing import Callable, Dict

from ..errors import ValidationError
from . import accessors as acc
from . import aggregation as agg
from . import queries
from .periods import DAY, MONTH, RANGE


@dataclass(frozen=True)
class ReportDefinition:
    name: str
    title: str
    description: str
    params_kind: str
    fetch: Callable
    aggregate: Callable

    def as_dict(self):
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "params": self.params_kind,
        }


def _labelled(totals: Dict) -> list:
    return [{"key": k, "label": agg.display_label(k), "amount": v} for k, v in totals.items()]


def _in_range(rows, date_of, params):
    return agg.filter_by_range(rows, date_of, params.range)


# ---- fees ----

def _fetch_fees(service, params):
    return {"payments": queries.fee_payments(service, params.range, with_category=True)}


def _aggregate_fees(raw, params):
    payments = _in_range(raw["payments"], acc.payment_date, params)
    return {
        "summary": agg.summarize_fee_payments(payments),
        "by_fee_type": _labelled(agg.sum_by_key(payments, acc.payment_amount, acc.fee_type)),
        "rows": payments,
    }


# ---- monthly student ----

def _fetch_monthly_student(service, params):
    return {
        "admissions": queries.admissions(service, params.range),
        "attendance": queries.monthly_attendance_summary(service, params.month, params.year),
    }


def _aggregate_monthly_student(raw, params):
    admitted = _in_range(raw["admissions"], acc.admission_date, params)
    return {
        "summary": agg.summarize_admissions(admitted),
        "rows": agg.build_student_monthly_rollup(admitted, raw["attendance"]),
    }


# ---- monthly fees ----

def _fetch_monthly_fees(service, params):
    return {
        "payments": queries.fee_payments(service, params.range),
        "summary": queries.monthly_fee_summary(service, params.month, params.year),
    }


def _aggregate_monthly_fees(raw, params):
    payments = _in_range(raw["payments"], acc.payment_date, params)
    fee_summary = raw["summary"] or {}
    summary = {k: agg.to_decimal(fee_summary.get(k) or 0, label=k) for k in (
        "total_collected", "cash_amount", "bank_amount", "other_amount", "pending_amount")}
    return {
        "summary": summary,
        "by_method": _labelled(agg.sum_by_key(payments, acc.payment_amount, acc.payment_method)),
        "rows": payments,
    }


# ---- weekly ----

def _fetch_weekly(service, params):
    return {
        "attendance": queries.student_attendance(service, params.range),
        "payments": queries.fee_payments(service, params.range),
    }


def _aggregate_weekly(raw, params):
    attendance = _in_range(raw["attendance"], acc.attendance_date, params)
    payments = _in_range(raw["payments"], acc.payment_date, params)
    return {
        "summary": {
            "attendance": agg.compute_attendance_breakdown(attendance).as_dict(),
            "total_collected": agg.total(payments, acc.payment_amount),
            "payments": len(payments),
        },
        "rows": agg.attendance_by_student(attendance),
        "payments": payments,
    }


# ---- daily ----

def _fetch_daily(service, params):
    rng = params.range
    return {
        "admissions": queries.admissions(service, rng),
        "payments": queries.fee_payments(service, rng),
        "student_attendance": queries.student_attendance(service, rng),
        "staff_attendance": queries.staff_attendance(service, rng),
        "expenses": queries.expenses(service, rng),
    }


def _aggregate_daily(raw, params):
    admitted = _in_range(raw["admissions"], acc.admission_date, params)
    payments = _in_range(raw["payments"], acc.payment_date, params)
    expenses = _in_range(raw["expenses"], acc.expense_date, params)
    daily = agg.combine_daily_rollup(
        admitted,
        payments,
        _in_range(raw["student_attendance"], acc.attendance_date, params),
        _in_range(raw["staff_attendance"], acc.attendance_date, params),
        expenses,
    )
    return {
        "summary": daily.as_dict(),
        "rows": payments,
        "admissions": admitted,
        "expenses": expenses,
    }


# ---- income ----

def _fetch_income(service, params):
    return {
        "payments": queries.fee_payments(service, params.range, with_category=True),
        "other_income": queries.other_income(service, params.range),
    }


def _aggregate_income(raw, params):
    combined = agg.combine_income(
        _in_range(raw["payments"], acc.payment_date, params),
        _in_range(raw["other_income"], acc.field("date"), params),
    )
    return {
        "summary": {
            "total_income": combined["total_income"],
            "fee_payments_total": combined["fee_payments_total"],
            "other_income_total": combined["other_income_total"],
        },
        "by_category": _labelled(combined["by_category"]),
        "rows": combined["lines"],
    }


# ---- income statement ----

def _fetch_income_statement(service, params):
    return {
        "income": queries.income_statement(service, params.range),
        "expenses": queries.expenses(service, params.range),
    }


def _aggregate_income_statement(raw, params):
    expenses = _in_range(raw["expenses"], acc.expense_date, params)
    income_total = agg.total(raw["income"], acc.statement_amount)
    expense_total = agg.total(expenses, acc.expense_amount)
    return {
        "summary": {
            "total_income": income_total,
            "total_expenses": expense_total,
            "net_income": agg.compute_net_income(income_total, expense_total).as_dict(),
        },
        "expenses_by_category": _labelled(agg.sum_by_key(expenses, acc.expense_amount, acc.expense_category)),
        "rows": raw["income"],
    }


# ---- collection ----

def _fetch_collection(service, params):
    return {"payments": queries.fee_payments(service, params.range)}


def _aggregate_collection(raw, params):
    payments = _in_range(raw["payments"], acc.payment_date, params)
    return {
        "summary": agg.summarize_collections(payments),
        "by_method": _labelled(agg.sum_by_key(payments, acc.payment_amount, acc.payment_method)),
        "rows": payments,
    }


# ---- admission ----

def _fetch_admission(service, params):
    return {"admissions": queries.admissions(service, params.range, with_family=True)}


def _aggregate_admission(raw, params):
    admitted = _in_range(raw["admissions"], acc.admission_date, params)
    return {"summary": agg.summarize_admissions(admitted), "rows": admitted}


REPORTS: Dict[str, ReportDefinition] = {
    d.name: d for d in (
        ReportDefinition("fees", "Fees Report", "Fee payments with discounts and fines",
                         RANGE, _fetch_fees, _aggregate_fees),
        ReportDefinition("monthly_student", "Monthly Student Report",
                         "Admissions in the month with their attendance", MONTH,
                         _fetch_monthly_student, _aggregate_monthly_student),
        ReportDefinition("monthly_fees", "Monthly Fees Report", "Collections and pending dues for the month",
                         MONTH, _fetch_monthly_fees, _aggregate_monthly_fees),
        ReportDefinition("weekly", "Weekly Report", "Attendance by student and fee collections",
                         RANGE, _fetch_weekly, _aggregate_weekly),
        ReportDefinition("daily", "Daily Report", "Admissions, payments, attendance and expenses for one day",
                         DAY, _fetch_daily, _aggregate_daily),
        ReportDefinition("income", "Income Report", "Fee payments and other income",
                         RANGE, _fetch_income, _aggregate_income),
        ReportDefinition("income_statement", "Income Statement", "Income by fee category against expenses",
                         RANGE, _fetch_income_statement, _aggregate_income_statement),
        ReportDefinition("collection", "Collection Report", "Collections by payment method",
                         RANGE, _fetch_collection, _aggregate_collection),
        ReportDefinition("admission", "Admission Report", "New admissions with family contacts",
                         RANGE, _fetch_admission, _aggregate_admission),
    )
}


def get_report(name) -> ReportDefinition:
    report = REPORTS.get((name or "").strip().lower())
    if report is None:
        raise ValidationError(f"Unknown report type '{name}'", "report_type")
    return report
