import logging
import re
from datetime import date

from werkzeug.security import generate_password_hash

from ..data_service import Join, Order, any_of, eq, ilike, in_
from ..errors import ConflictError, ValidationError
from .permissions import RolePermissionManager

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8
USER_STATUSES = ("active", "inactive")
EDITABLE_FIELDS = ("full_name", "email", "contact", "status", "password")
# Rows that point at a user and block deleting it
USER_REFERENCES = (("student_fee_payments", "received_by"), ("attendance_staff", "staff_id"))


def _clean_email(value):
    email = (value or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("A valid email address is required", "email")
    return email


def _clean_name(value, field="full_name"):
    name = (value or "").strip()
    if not name:
        raise ValidationError("Name is required", field)
    return name


def _clean_password(value):
    if not value or len(value) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters", "password")
    return value


def _clean_status(value):
    status = (value or "").strip().lower()
    if status not in USER_STATUSES:
        raise ValidationError("Status must be active or inactive", "status")
    return status


class UserDirectory:
    """User records and their role assignments."""

    def __init__(self, service, permissions: RolePermissionManager = None):
        self.service = service
        self.permissions = permissions or RolePermissionManager(service)

    # ---- reads ----

    def _role_names(self, user_ids):
        if not user_ids:
            return {}
        rows = self.service.select(
            "user_roles",
            columns=("user_id", "role_id"),
            joins={"role": Join(("id", "name"))},
            filters=[in_("user_id", user_ids)],
            order_by=[Order("role_id")],
        )
        out = {}
        for r in rows:
            role = r.get("role") or {}
            out.setdefault(r["user_id"], []).append(role.get("name"))
        return out

    def _with_roles(self, users):
        names = self._role_names([u["id"] for u in users])
        for u in users:
            u["roles"] = names.get(u["id"], [])
        return users

    def list_users(self, search=None, status=None, role=None):
        filters = []
        term = (search or "").strip()
        if term:
            pattern = f"%{term}%"
            filters.append(any_of(ilike("full_name", pattern), ilike("email", pattern)))
        if status:
            filters.append(eq("status", _clean_status(status)))
        users = self._with_roles(self.service.select("users", filters=filters, order_by=[Order("full_name")]))
        if role:
            wanted = str(role).strip().lower()
            users = [u for u in users if wanted in {(n or "").lower() for n in u["roles"]}]
        return users

    def get_user(self, user_id):
        rows = self.service.select("users", filters=[eq("id", user_id)])
        if not rows:
            return None
        return self._with_roles(rows)[0]

    def _email_taken(self, email, exclude_id=None):
        rows = self.service.select("users", columns=("id",), filters=[eq("email", email)])
        return any(r["id"] != exclude_id for r in rows)

    # ---- writes ----

    def create_user(self, full_name, email, password, contact=None, status="active"):
        full_name = _clean_name(full_name)
        email = _clean_email(email)
        password = _clean_password(password)
        status = _clean_status(status)
        if self._email_taken(email):
            raise ConflictError(f"A user with email {email} already exists", table="users")
        user = self.service.insert("users", [{
            "full_name": full_name,
            "email": email,
            "contact": (contact or "").strip() or None,
            "status": status,
            "password_hash": generate_password_hash(password),
        }])[0]
        logger.info("Created user %s (%s)", user["id"], email)
        return self._with_roles([user])[0]

    def create_user_with_role(self, full_name, email, password, role_id, contact=None, status="active"):
        """Create a user and assign a role; the user is removed again if the assignment fails."""
        user = self.create_user(full_name, email, password, contact=contact, status=status)
        try:
            self.permissions.assign_role(user["id"], role_id)
        except Exception:
            logger.warning("Role %s assignment failed for new user %s; removing the user", role_id, user["id"])
            self.service.delete("users", [eq("id", user["id"])])
            raise
        return self.get_user(user["id"])

    def update_user(self, user_id, patch):
        if self.get_user(user_id) is None:
            return None
        unknown = set(patch or {}) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update {', '.join(sorted(unknown))}", sorted(unknown)[0])
        changes = {}
        for key, value in (patch or {}).items():
            if key == "full_name":
                changes["full_name"] = _clean_name(value)
            elif key == "email":
                email = _clean_email(value)
                if self._email_taken(email, exclude_id=user_id):
                    raise ConflictError(f"A user with email {email} already exists", table="users")
                changes["email"] = email
            elif key == "contact":
                changes["contact"] = (value or "").strip() or None
            elif key == "status":
                changes["status"] = _clean_status(value)
            elif key == "password":
                changes["password_hash"] = generate_password_hash(_clean_password(value))
        if changes:
            self.service.update("users", [eq("id", user_id)], changes)
            logger.info("Updated user %s: %s", user_id, ", ".join(sorted(changes)))
        return self.get_user(user_id)

    def delete_user(self, user_id) -> bool:
        if self.get_user(user_id) is None:
            return False
        for table, column in USER_REFERENCES:
            if self.service.select(table, columns=("id",), filters=[eq(column, user_id)]):
                # Checked before any write
                raise ConflictError(f"User {user_id} is referenced by {table}", table=table)
        self.service.delete("user_roles", [eq("user_id", user_id)])
        self.service.delete("users", [eq("id", user_id)])
        logger.info("Deleted user %s", user_id)
        return True

    def change_role(self, user_id, role_id):
        """Make role_id the user's only role."""
        if self.get_user(user_id) is None:
            return None
        self.permissions.assign_role(user_id, role_id)
        for held in self.permissions.roles_for_user(user_id):
            if held != role_id:
                self.permissions.revoke_role(user_id, held)
        return self.get_user(user_id)

    # ---- roles ----

    def list_roles(self):
        return self.service.select("roles", order_by=[Order("name")])

    def create_role(self, name, is_custom=True):
        name = _clean_name(name, "name")
        if self.service.select("roles", columns=("id",), filters=[eq("name", name)]):
            raise ConflictError(f"Role {name} already exists", table="roles")
        role = self.service.insert("roles", [{"name": name, "is_custom": bool(is_custom)}])[0]
        logger.info("Created role %s (%s)", role["id"], name)
        return role

    # ---- stats ----

    def user_stats(self, today=None):
        today = today or date.today()
        users = self.service.select("users", columns=("id", "status", "created_at"))
        active = sum(1 for u in users if (u.get("status") or "active") == "active")
        this_month = sum(
            1 for u in users
            if u.get("created_at") is not None
            and u["created_at"].year == today.year and u["created_at"].month == today.month
        )
        return {"total": len(users), "active": active, "inactive": len(users) - active, "this_month": this_month}
