"""Default permission groups, permissions and roles."""
import logging

import click
from flask.cli import with_appcontext

from .data_service import eq, get_data_service
from .users.permissions import RolePermissionManager

logger = logging.getLogger(__name__)

PERMISSION_GROUPS = {
    "Users": [
        ("manage_users", "Create, edit and assign roles to users"),
        ("manage_settings", "Change school settings"),
    ],
    "Students": [
        ("view_students", "View student records"),
        ("edit_students", "Add and edit student records"),
    ],
    "Fees": [
        ("view_fees", "View fee records and payments"),
        ("manage_fees", "Record payments, discounts and fines"),
    ],
    "Attendance": [
        ("view_attendance", "View attendance"),
        ("manage_attendance", "Mark student and staff attendance"),
    ],
    "Academics": [
        ("manage_academic", "Manage timetable, terms and marks"),
    ],
    "Reports": [
        ("view_reports", "View and export reports"),
    ],
}

ALL_PERMISSIONS = [name for perms in PERMISSION_GROUPS.values() for name, _ in perms]

DEFAULT_ROLES = {
    "Super Admin": ALL_PERMISSIONS,
    "Principal": ALL_PERMISSIONS,
    "Accountant": ["view_students", "manage_fees", "view_fees", "view_reports"],
    "Teacher": ["view_students", "view_attendance", "view_reports"],
    "Receptionist": ["view_students", "edit_students", "view_fees", "view_attendance"],
}


def _get_or_insert(service, table, name, values=None):
    rows = service.select(table, filters=[eq("name", name)])
    if rows:
        return rows[0], False
    return service.insert(table, [dict(values or {}, name=name)])[0], True


def seed_defaults(service):
    """Install the default roles and permissions. Safe to run more than once."""
    created = {"groups": 0, "permissions": 0, "roles": 0, "grants": 0}
    perm_ids = {}
    for group_name, perms in PERMISSION_GROUPS.items():
        group, new = _get_or_insert(service, "permission_groups", group_name)
        created["groups"] += int(new)
        for name, description in perms:
            perm, new = _get_or_insert(service, "permissions", name, {"description": description, "group_id": group["id"]})
            created["permissions"] += int(new)
            perm_ids[name] = perm["id"]

    manager = RolePermissionManager(service)
    for role_name, names in DEFAULT_ROLES.items():
        role, new = _get_or_insert(service, "roles", role_name, {"is_custom": False})
        created["roles"] += int(new)
        grants = manager.role_permission_map(role["id"])
        for name in names:
            # Existing pairs keep whatever an admin set them to
            if perm_ids[name] not in grants:
                manager.set_permission(role["id"], perm_ids[name], True)
                created["grants"] += 1
    logger.info("Seeded defaults: %s", created)
    return created


@click.command("seed-roles")
@with_appcontext
def seed_roles_command():
    """Install default roles, permission groups and permissions."""
    created = seed_defaults(get_data_service())
    click.echo(", ".join(f"{k}: {v} new" for k, v in created.items()))


def register_commands(app):
    app.cli.add_command(seed_roles_command)
