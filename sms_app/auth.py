"""
Per-request authentication context.

Resolved once per request from the Flask-Login session and stored on
``g.auth``. Views and decorators read the user, roles and permissions from
here instead of reaching into the session themselves.
"""
import logging

from .users.permissions import RolePermissionManager

logger = logging.getLogger(__name__)

DEFAULT_SUPER_ADMIN_ROLE = "Super Admin"


class AuthContext:
    def __init__(self, user=None, roles=(), permissions=frozenset(), super_admin_role=DEFAULT_SUPER_ADMIN_ROLE):
        self.user = user
        self.roles = tuple(roles)
        self.permissions = frozenset(permissions)
        self.super_admin_role = super_admin_role

    @classmethod
    def anonymous(cls, super_admin_role=DEFAULT_SUPER_ADMIN_ROLE):
        return cls(super_admin_role=super_admin_role)

    @classmethod
    def resolve(cls, service, user, super_admin_role=DEFAULT_SUPER_ADMIN_ROLE):
        if user is None or not getattr(user, "is_authenticated", False):
            return cls.anonymous(super_admin_role)
        manager = RolePermissionManager(service)
        return cls(
            user=user,
            roles=manager.role_names_for_user(user.id),
            permissions=manager.effective_permission_names(user.id),
            super_admin_role=super_admin_role,
        )

    @property
    def is_authenticated(self):
        return self.user is not None

    @property
    def user_id(self):
        return getattr(self.user, "id", None)

    @property
    def is_super_admin(self):
        return self.super_admin_role in self.roles

    def has_role(self, name) -> bool:
        return name in self.roles

    def has_permission(self, name) -> bool:
        if not self.is_authenticated:
            return False
        return self.is_super_admin or name in self.permissions

    def clear(self):
        user_id = getattr(self.user, "id", None)
        if user_id is not None:
            logger.info("Clearing auth context for user %s", user_id)
        self.user = None
        self.roles = ()
        self.permissions = frozenset()

    def as_dict(self):
        user = None
        if self.user is not None:
            user = {"id": self.user.id, "full_name": self.user.full_name, "email": self.user.email}
        return {
            "authenticated": self.is_authenticated,
            "user": user,
            "roles": list(self.roles),
            "permissions": sorted(self.permissions),
            "is_super_admin": self.is_super_admin,
        }

    def __repr__(self):
        return f"<AuthContext user={self.user_id} roles={list(self.roles)}>"
