from datetime import datetime, timezone
from . import db

def utc_now():
    return datetime.now(timezone.utc)

from flask_login import UserMixin

# ==========================================
# STUDENTS & FAMILIES
# ==========================================

class Family(db.Model):
    __tablename__ = "families"
    id = db.Column(db.Integer, primary_key=True)
    father_name = db.Column(db.String(128))
    contact_number = db.Column(db.String(32))

    students = db.relationship("Student", back_populates="family", lazy=True)


class Student(db.Model):
    __tablename__ = "students"
    id = db.Column(db.Integer, primary_key=True)
    fullname = db.Column(db.String(128), nullable=False)
    gr_number = db.Column(db.String(32), unique=True, nullable=False)
    class_name = db.Column(db.String(32))
    section = db.Column(db.String(16))
    admission_date = db.Column(db.Date, index=True)
    status = db.Column(db.String(16), default="active")  # active, inactive
    # Weak reference: siblings share one family row
    family_id = db.Column(db.Integer, db.ForeignKey("families.id"))
    created_at = db.Column(db.DateTime, default=utc_now)

    family = db.relationship("Family", back_populates="students")
    fees = db.relationship("StudentFee", back_populates="student", lazy=True)


# ==========================================
# FEES
# ==========================================

class FeeCategory(db.Model):
    __tablename__ = "fee_categories"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)  # tuition, transport...


class StudentFee(db.Model):
    __tablename__ = "student_fees"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)
    fee_type = db.Column(db.String(64))
    total_amount = db.Column(db.Numeric(12, 2), default=0)
    discount_amount = db.Column(db.Numeric(12, 2), default=0)
    fine_amount = db.Column(db.Numeric(12, 2), default=0)
    fee_category_id = db.Column(db.Integer, db.ForeignKey("fee_categories.id"))

    student = db.relationship("Student", back_populates="fees")
    fee_category = db.relationship("FeeCategory")
    payments = db.relationship("FeePayment", back_populates="student_fee", lazy=True)


class FeePayment(db.Model):
    __tablename__ = "student_fee_payments"
    id = db.Column(db.Integer, primary_key=True)
    student_fee_id = db.Column(db.Integer, db.ForeignKey("student_fees.id"), nullable=False)
    amount_paid = db.Column(db.Numeric(12, 2), nullable=False)
    payment_date = db.Column(db.Date, nullable=False, index=True)
    payment_method = db.Column(db.String(32), default="cash")  # cash, bank_transfer, other
    received_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    receipt_number = db.Column(db.String(32))
    created_at = db.Column(db.DateTime, default=utc_now)

    student_fee = db.relationship("StudentFee", back_populates="payments")
    receiver = db.relationship("User")


# ==========================================
# ATTENDANCE
# ==========================================

class StudentAttendance(db.Model):
    __tablename__ = "attendance_student"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)
    attendance_date = db.Column(db.Date, nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False)  # present, absent, late

    student = db.relationship("Student")


class StaffAttendance(db.Model):
    __tablename__ = "attendance_staff"
    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    attendance_date = db.Column(db.Date, nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False)

    staff = db.relationship("User")


# ==========================================
# EXPENSES & OTHER INCOME
# ==========================================

class ExpenseCategory(db.Model):
    __tablename__ = "expense_categories"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)


class Expense(db.Model):
    __tablename__ = "school_expenses"
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(128), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    expense_date = db.Column(db.Date, nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("expense_categories.id"))
    description = db.Column(db.Text)

    category = db.relationship("ExpenseCategory")


class OtherIncome(db.Model):
    __tablename__ = "other_income"
    id = db.Column(db.Integer, primary_key=True)
    category = db.Column(db.String(64))
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    date = db.Column(db.Date, nullable=False, index=True)
    method = db.Column(db.String(32))
    description = db.Column(db.Text)


# ==========================================
# USERS, ROLES & PERMISSIONS
# ==========================================

class User(UserMixin, db.Model):
    __tablename__ = "users"
    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(128), unique=True, nullable=False)
    contact = db.Column(db.String(32))
    password_hash = db.Column(db.String(256))
    status = db.Column(db.String(16), default="active")  # active, inactive
    created_at = db.Column(db.DateTime, default=utc_now)

    @property
    def is_active(self):
        return (self.status or "active") == "active"


class Role(db.Model):
    __tablename__ = "roles"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    is_custom = db.Column(db.Boolean, default=False)


class PermissionGroup(db.Model):
    __tablename__ = "permission_groups"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)


class Permission(db.Model):
    __tablename__ = "permissions"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    description = db.Column(db.String(255))
    group_id = db.Column(db.Integer, db.ForeignKey("permission_groups.id"))

    group = db.relationship("PermissionGroup")


class UserRole(db.Model):
    __tablename__ = "user_roles"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False)

    role = db.relationship("Role")

    __table_args__ = (
        db.UniqueConstraint("user_id", "role_id", name="uq_user_role"),
    )


class RolePermission(db.Model):
    __tablename__ = "role_permissions"
    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False)
    permission_id = db.Column(db.Integer, db.ForeignKey("permissions.id"), nullable=False)
    is_granted = db.Column(db.Boolean, default=True, nullable=False)

    permission = db.relationship("Permission")

    __table_args__ = (
        db.UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
    )


# Table name -> model, used by the data service to resolve selects and writes
TABLES = {
    "families": Family,
    "students": Student,
    "fee_categories": FeeCategory,
    "student_fees": StudentFee,
    "student_fee_payments": FeePayment,
    "attendance_student": StudentAttendance,
    "attendance_staff": StaffAttendance,
    "expense_categories": ExpenseCategory,
    "school_expenses": Expense,
    "other_income": OtherIncome,
    "users": User,
    "roles": Role,
    "permission_groups": PermissionGroup,
    "permissions": Permission,
    "user_roles": UserRole,
    "role_permissions": RolePermission,
}
