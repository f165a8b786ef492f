"""Data Service query shapes used by the report catalog."""
from ..data_service import Join, Order, between

STUDENT_BRIEF = Join(("id", "fullname", "class_name", "gr_number"))


def fee_payments(service, rng, with_category=False):
    fee_joins = {"student": STUDENT_BRIEF}
    if with_category:
        fee_joins["fee_category"] = Join(("id", "name"))
    return service.select(
        "student_fee_payments",
        columns=("id", "student_fee_id", "amount_paid", "payment_date", "payment_method", "receipt_number"),
        joins={
            "student_fee": Join(
                ("id", "student_id", "fee_type", "total_amount", "discount_amount", "fine_amount"),
                fee_joins,
            ),
            "receiver": Join(("id", "full_name")),
        },
        filters=between("payment_date", rng.start, rng.end),
        order_by=[Order("payment_date", descending=True)],
    )


def admissions(service, rng, with_family=False):
    joins = {"family": Join(("father_name", "contact_number"))} if with_family else None
    return service.select(
        "students",
        columns=("id", "fullname", "gr_number", "class_name", "section", "admission_date", "status"),
        joins=joins,
        filters=between("admission_date", rng.start, rng.end),
        order_by=[Order("admission_date", descending=True)],
    )


def student_attendance(service, rng):
    return service.select(
        "attendance_student",
        columns=("id", "student_id", "attendance_date", "status"),
        joins={"student": STUDENT_BRIEF},
        filters=between("attendance_date", rng.start, rng.end),
    )


def staff_attendance(service, rng):
    return service.select(
        "attendance_staff",
        columns=("id", "staff_id", "attendance_date", "status"),
        joins={"staff": Join(("id", "full_name"))},
        filters=between("attendance_date", rng.start, rng.end),
    )


def expenses(service, rng):
    return service.select(
        "school_expenses",
        columns=("id", "title", "amount", "expense_date"),
        joins={"category": Join(("name",))},
        filters=between("expense_date", rng.start, rng.end),
    )


def other_income(service, rng):
    return service.select(
        "other_income",
        filters=between("date", rng.start, rng.end),
        order_by=[Order("date", descending=True)],
    )


def monthly_attendance_summary(service, month, year):
    return service.call("get_monthly_attendance_summary", {"month_param": month, "year_param": year})


def monthly_fee_summary(service, month, year):
    rows = service.call("get_monthly_fee_summary", {"month_param": month, "year_param": year})
    return rows[0] if rows else {}


def income_statement(service, rng):
    return service.call("get_income_statement", {"start_date": rng.start, "end_date": rng.end})
