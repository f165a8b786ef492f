"""
Typed accessors for the row shapes returned by the report queries.

Each report reads nested values through one of these functions instead of
a free-form dotted path, so a renamed relation breaks in one place.
"""


def _nested(row, *names):
    cur = row
    for name in names:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(name)
    return cur


def field(path):
    """Accessor for a dotted path ("student_fee.fee_type"); None when any hop is missing."""
    parts = tuple(p for p in str(path).split(".") if p)
    return lambda row: _nested(row, *parts)


# student_fee_payments

def payment_amount(row):
    return _nested(row, "amount_paid")


def payment_method(row):
    return _nested(row, "payment_method")


def payment_date(row):
    return _nested(row, "payment_date")


def payment_fee_id(row):
    return _nested(row, "student_fee", "id") or _nested(row, "student_fee_id")


def fee_type(row):
    return _nested(row, "student_fee", "fee_type")


def fee_category(row):
    return _nested(row, "student_fee", "fee_category", "name")


def fee_discount(row):
    return _nested(row, "student_fee", "discount_amount")


def fee_fine(row):
    return _nested(row, "student_fee", "fine_amount")


# attendance_student / attendance_staff

def attendance_status(row):
    status = _nested(row, "status")
    return status.strip().lower() if isinstance(status, str) else status


def attendance_student_id(row):
    return _nested(row, "student_id")


def attendance_date(row):
    return _nested(row, "attendance_date")


# students

def student_id(row):
    return _nested(row, "id")


def student_status(row):
    return _nested(row, "status")


def admission_date(row):
    return _nested(row, "admission_date")


# school_expenses

def expense_amount(row):
    return _nested(row, "amount")


def expense_category(row):
    return _nested(row, "category", "name")


def expense_date(row):
    return _nested(row, "expense_date")


# other_income / income statement rows

def income_amount(row):
    return _nested(row, "amount")


def income_category(row):
    return _nested(row, "category")


def statement_amount(row):
    return _nested(row, "total_amount")
