from flask import Blueprint, current_app, g, request

from ..api_utils import api_error, api_success
from ..data_service import get_data_service
from ..decorators import permission_required
from ..errors import ValidationError
from .directory import UserDirectory
from .permissions import RolePermissionManager

users_bp = Blueprint("users", __name__)


def _directory():
    return UserDirectory(get_data_service())


def _permissions():
    return RolePermissionManager(get_data_service())


def _payload():
    return request.get_json(silent=True) or {}


def _role_id(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("role_id must be an integer", "role_id")


# ---- users ----

@users_bp.route("/users", methods=["GET"])
@permission_required("manage_users")
def list_users():
    items = _directory().list_users(
        search=request.args.get("search"),
        status=request.args.get("status"),
        role=request.args.get("role"),
    )
    return api_success({"items": items, "total": len(items)})


@users_bp.route("/users", methods=["POST"])
@permission_required("manage_users")
def create_user():
    data = _payload()
    directory = _directory()
    kwargs = {
        "full_name": data.get("full_name"),
        "email": data.get("email"),
        "password": data.get("password"),
        "contact": data.get("contact"),
        "status": data.get("status") or "active",
    }
    role_id = data.get("role_id")
    if role_id is not None and role_id != "":
        user = directory.create_user_with_role(role_id=_role_id(role_id), **kwargs)
    else:
        user = directory.create_user(**kwargs)
    current_app.logger.info("User %s created by %s", user["id"], g.auth.user_id)
    return api_success(user, status=201)


@users_bp.route("/users/stats", methods=["GET"])
@permission_required("manage_users")
def user_stats():
    return api_success(_directory().user_stats())


@users_bp.route("/users/<int:user_id>", methods=["GET"])
@permission_required("manage_users")
def get_user(user_id):
    user = _directory().get_user(user_id)
    if user is None:
        return api_error("not_found", f"User {user_id} not found", 404)
    return api_success(user)


@users_bp.route("/users/<int:user_id>", methods=["PATCH"])
@permission_required("manage_users")
def update_user(user_id):
    user = _directory().update_user(user_id, _payload())
    if user is None:
        return api_error("not_found", f"User {user_id} not found", 404)
    return api_success(user)


@users_bp.route("/users/<int:user_id>", methods=["DELETE"])
@permission_required("manage_users")
def delete_user(user_id):
    if user_id == g.auth.user_id:
        return api_error("invalid", "You cannot delete your own account", 400)
    if not _directory().delete_user(user_id):
        return api_error("not_found", f"User {user_id} not found", 404)
    current_app.logger.info("User %s deleted by %s", user_id, g.auth.user_id)
    return api_success({"deleted": user_id})


# ---- role assignment ----

@users_bp.route("/users/<int:user_id>/roles/<int:role_id>", methods=["POST"])
@permission_required("manage_users")
def assign_role(user_id, role_id):
    changed = _permissions().assign_role(user_id, role_id)
    return api_success({"user_id": user_id, "role_id": role_id, "changed": changed})


@users_bp.route("/users/<int:user_id>/roles/<int:role_id>", methods=["DELETE"])
@permission_required("manage_users")
def revoke_role(user_id, role_id):
    changed = _permissions().revoke_role(user_id, role_id)
    return api_success({"user_id": user_id, "role_id": role_id, "changed": changed})


@users_bp.route("/users/<int:user_id>/role", methods=["PUT"])
@permission_required("manage_users")
def change_role(user_id):
    user = _directory().change_role(user_id, _role_id(_payload().get("role_id")))
    if user is None:
        return api_error("not_found", f"User {user_id} not found", 404)
    return api_success(user)


@users_bp.route("/users/<int:user_id>/permissions", methods=["GET"])
@permission_required("manage_users")
def user_permissions(user_id):
    manager = _permissions()
    return api_success({
        "user_id": user_id,
        "roles": manager.role_names_for_user(user_id),
        "permission_ids": sorted(manager.effective_permissions(user_id)),
        "permissions": sorted(manager.effective_permission_names(user_id)),
    })


# ---- roles & permissions ----

@users_bp.route("/roles", methods=["GET"])
@permission_required("manage_users")
def list_roles():
    return api_success({"items": _directory().list_roles()})


@users_bp.route("/roles", methods=["POST"])
@permission_required("manage_users")
def create_role():
    data = _payload()
    role = _directory().create_role(data.get("name"), is_custom=data.get("is_custom", True))
    return api_success(role, status=201)


@users_bp.route("/roles/<int:role_id>/permissions", methods=["GET"])
@permission_required("manage_users")
def role_permissions(role_id):
    grants = _permissions().role_permission_map(role_id)
    return api_success({"role_id": role_id, "grants": [{"permission_id": k, "is_granted": v} for k, v in grants.items()]})


@users_bp.route("/permissions", methods=["GET"])
@permission_required("manage_users")
def list_permissions():
    return api_success({"groups": _permissions().grouped_permissions()})


@users_bp.route("/roles/<int:role_id>/permissions/<int:permission_id>/toggle", methods=["POST"])
@permission_required("manage_users")
def toggle_permission(role_id, permission_id):
    granted = _permissions().toggle_permission(role_id, permission_id)
    current_app.logger.info("Role %s permission %s set to %s by %s", role_id, permission_id, granted, g.auth.user_id)
    return api_success({"role_id": role_id, "permission_id": permission_id, "is_granted": granted})
