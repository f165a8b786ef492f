"""
Role-permission manager over the Data Service.

A user's effective permissions are the union of the granted permissions of
every role the user holds. There is no deny rule: a role that does not grant
a permission never takes it away from another role that does.
"""
import logging
from typing import Dict, FrozenSet, Iterable, List

from ..data_service import eq, in_, Join, Order
from ..errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)


def group_permissions_by_group(permissions: Iterable[dict], key="group_id") -> Dict[object, List[dict]]:
    """Group permission rows by group id, groups in first-seen order."""
    grouped: Dict[object, List[dict]] = {}
    for perm in permissions:
        grouped.setdefault(perm.get(key), []).append(perm)
    return grouped


class RolePermissionManager:
    def __init__(self, service):
        self.service = service

    # ---- lookups ----

    def _one(self, table, row_id):
        rows = self.service.select(table, filters=[eq("id", row_id)])
        return rows[0] if rows else None

    def _require(self, table, row_id, label):
        row = self._one(table, row_id)
        if row is None:
            raise ValidationError(f"Unknown {label} {row_id}", f"{label}_id")
        return row

    def _pair(self, role_id, permission_id):
        rows = self.service.select(
            "role_permissions",
            filters=[eq("role_id", role_id), eq("permission_id", permission_id)],
        )
        return rows[0] if rows else None

    # ---- user <-> role ----

    def roles_for_user(self, user_id) -> List[int]:
        rows = self.service.select(
            "user_roles", columns=("role_id",), filters=[eq("user_id", user_id)], order_by=[Order("role_id")]
        )
        return [r["role_id"] for r in rows]

    def role_names_for_user(self, user_id) -> List[str]:
        role_ids = self.roles_for_user(user_id)
        if not role_ids:
            return []
        rows = self.service.select("roles", columns=("name",), filters=[in_("id", role_ids)], order_by=[Order("name")])
        return [r["name"] for r in rows]

    def assign_role(self, user_id, role_id) -> bool:
        """Give the user a role. Returns False when the user already held it."""
        self._require("users", user_id, "user")
        self._require("roles", role_id, "role")
        existing = self.service.select("user_roles", filters=[eq("user_id", user_id), eq("role_id", role_id)])
        if existing:
            return False
        try:
            self.service.insert("user_roles", [{"user_id": user_id, "role_id": role_id}])
        except ConflictError:
            # Another request assigned the same pair first
            logger.info("Role %s already assigned to user %s", role_id, user_id)
            return False
        logger.info("Assigned role %s to user %s", role_id, user_id)
        return True

    def revoke_role(self, user_id, role_id) -> bool:
        """Take a role away. Returns False when the user did not hold it."""
        filters = [eq("user_id", user_id), eq("role_id", role_id)]
        if not self.service.select("user_roles", filters=filters):
            return False
        self.service.delete("user_roles", filters)
        logger.info("Revoked role %s from user %s", role_id, user_id)
        return True

    # ---- effective permissions ----

    def effective_permissions(self, user_id) -> FrozenSet[int]:
        role_ids = self.roles_for_user(user_id)
        if not role_ids:
            return frozenset()
        rows = self.service.select(
            "role_permissions",
            columns=("permission_id",),
            filters=[in_("role_id", role_ids), eq("is_granted", True)],
        )
        return frozenset(r["permission_id"] for r in rows)

    def effective_permission_names(self, user_id) -> FrozenSet[str]:
        ids = self.effective_permissions(user_id)
        if not ids:
            return frozenset()
        rows = self.service.select("permissions", columns=("name",), filters=[in_("id", sorted(ids))])
        return frozenset(r["name"] for r in rows)

    # ---- role <-> permission ----

    def role_permission_map(self, role_id) -> Dict[int, bool]:
        rows = self.service.select("role_permissions", filters=[eq("role_id", role_id)])
        return {r["permission_id"]: bool(r["is_granted"]) for r in rows}

    def set_permission(self, role_id, permission_id, granted: bool) -> bool:
        granted = bool(granted)
        pair = self._pair(role_id, permission_id)
        if pair is None:
            self._require("roles", role_id, "role")
            self._require("permissions", permission_id, "permission")
            self.service.insert("role_permissions", [
                {"role_id": role_id, "permission_id": permission_id, "is_granted": granted}
            ])
        elif bool(pair["is_granted"]) != granted:
            self.service.update("role_permissions", [eq("id", pair["id"])], {"is_granted": granted})
        return granted

    def toggle_permission(self, role_id, permission_id) -> bool:
        """Flip a grant; an absent pair is created granted. Returns the new value."""
        pair = self._pair(role_id, permission_id)
        granted = True if pair is None else not pair["is_granted"]
        return self.set_permission(role_id, permission_id, granted)

    def list_permissions(self) -> List[dict]:
        return self.service.select(
            "permissions",
            joins={"group": Join(("id", "name"))},
            order_by=[Order("group_id"), Order("name")],
        )

    def grouped_permissions(self) -> List[dict]:
        out = []
        for group_id, perms in group_permissions_by_group(self.list_permissions()).items():
            group = perms[0].get("group") or {}
            out.append({"group_id": group_id, "group_name": group.get("name"), "permissions": perms})
        return out
