from flask import Blueprint, current_app, g, request
from flask_login import login_user, logout_user
from sqlalchemy import select
from werkzeug.security import check_password_hash

from .. import db, limiter
from ..api_utils import api_error, api_success
from ..auth import AuthContext
from ..data_service import get_data_service
from ..models import User

main_bp = Blueprint("main", __name__)


@main_bp.route("/", methods=["GET"])
def index():
    return api_success({"service": "sms", "authenticated": g.auth.is_authenticated})


# Authentication routes
@main_bp.route("/login", methods=["POST"])
@limiter.limit("5 per minute", methods=["POST"])
def login():
    data = request.get_json(silent=True) or request.form
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        return api_error("invalid", "Email and password are required.", 400)
    user = db.session.execute(select(User).filter_by(email=email)).scalars().first()
    if not user or not user.password_hash or not check_password_hash(user.password_hash, password):
        current_app.logger.info("Failed login for %s", email)
        return api_error("invalid_credentials", "Invalid credentials.", 401)
    if not user.is_active:
        return api_error("inactive", "This account is inactive.", 403)
    login_user(user)
    g.auth = AuthContext.resolve(
        get_data_service(), user, current_app.config.get("SUPER_ADMIN_ROLE", "Super Admin")
    )
    current_app.logger.info("User %s logged in", user.id)
    return api_success(g.auth.as_dict())


@main_bp.route("/logout", methods=["POST"])
def logout():
    if g.auth.is_authenticated:
        current_app.logger.info("User %s logged out", g.auth.user_id)
        logout_user()
    g.auth.clear()
    return api_success(g.auth.as_dict())


@main_bp.route("/me", methods=["GET"])
def me():
    if not g.auth.is_authenticated:
        return api_error("unauthorized", "Sign in required", 401)
    return api_success(g.auth.as_dict())
