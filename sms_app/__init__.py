import os
import secrets
from datetime import timedelta

from flask import Flask, g, request, session
from flask_caching import Cache
from flask_limiter import Limiter
from flask_limiter.errors import RateLimitExceeded
from flask_login import LoginManager, current_user
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from werkzeug.exceptions import HTTPException

from .errors import ConflictError, DataServiceError, ValidationError

# Global extensions
db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()


def _rate_key():
    ip = request.headers.get("X-Forwarded-For") or request.remote_addr or "local"
    token = session.get("rlid") or ""
    path = request.path or "/"
    return f"{ip}|{token}|{path}"


limiter = Limiter(key_func=_rate_key)
cache = Cache()

# Tables whose changes invalidate cached report views
REPORT_SOURCE_TABLES = (
    "students",
    "student_fees",
    "student_fee_payments",
    "attendance_student",
    "attendance_staff",
    "school_expenses",
    "other_income",
    "fee_categories",
    "expense_categories",
)


def create_app(config=None):
    app = Flask(__name__)
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-key")

    # Session Timeout
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(
        minutes=int(os.environ.get("PERMANENT_SESSION_LIFETIME", "30"))
    )

    REDIS_URL = os.environ.get("REDIS_URL")
    if REDIS_URL:
        app.config["CACHE_TYPE"] = "RedisCache"
        app.config["CACHE_REDIS_URL"] = REDIS_URL
        app.config["RATELIMIT_STORAGE_URI"] = REDIS_URL
    else:
        app.config["CACHE_TYPE"] = os.environ.get("CACHE_TYPE", "SimpleCache")
    app.config["REPORT_CACHE_TIMEOUT"] = int(os.environ.get("REPORT_CACHE_TIMEOUT", "60"))
    app.config["SUPER_ADMIN_ROLE"] = os.environ.get("SUPER_ADMIN_ROLE", "Super Admin")

    # Database configuration: use DATABASE_URL if provided, else sqlite file
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        db_path = os.path.join(os.path.dirname(__file__), "..", "sms.db")
        database_url = f"sqlite:///{os.path.abspath(db_path)}"

    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config.setdefault("RATELIMIT_STORAGE_URI", "memory://")
    if config:
        app.config.update(config)

    from .api_utils import ReportJSONProvider, api_error
    app.json = ReportJSONProvider(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cache.init_app(app)
    login_manager.init_app(app)

    # Import models so they are registered with SQLAlchemy
    from . import models  # noqa: F401
    from .auth import AuthContext
    from .data_service import ChangeBus, TableWatcher, get_data_service

    changes = ChangeBus()
    app.extensions["sms_changes"] = changes

    def _clear_report_cache(change):
        with app.app_context():
            cache.clear()
        app.logger.debug("Report cache cleared after %s on %s", change.event, change.table)

    app.extensions["sms_report_watchers"] = [
        TableWatcher(changes, table, "*", _clear_report_cache).start() for table in REPORT_SOURCE_TABLES
    ]

    @login_manager.user_loader
    def load_user(user_id: str):
        from .models import User
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    @app.before_request
    def ensure_rate_key():
        if not session.get("rlid"):
            session["rlid"] = secrets.token_urlsafe(16)

    @app.before_request
    def resolve_auth():
        # The context keeps the user object itself; the proxy turns anonymous after logout_user()
        g.auth = AuthContext.resolve(get_data_service(), current_user._get_current_object(), app.config["SUPER_ADMIN_ROLE"])

    # Blueprints
    from .main.routes import main_bp
    app.register_blueprint(main_bp)

    from .reports.routes import reports_bp
    app.register_blueprint(reports_bp)

    from .users.routes import users_bp
    app.register_blueprint(users_bp)

    from .seed import register_commands
    register_commands(app)

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return api_error("invalid", e.message, 400, details={"field": e.field} if e.field else None)

    @app.errorhandler(ConflictError)
    def handle_conflict(e):
        return api_error("conflict", e.message, 409)

    @app.errorhandler(DataServiceError)
    def handle_data_service_error(e):
        app.logger.exception("Data service failure on %s", request.path)
        return api_error("data_service_error", "The data service is unavailable.", 502)

    @app.errorhandler(RateLimitExceeded)
    def handle_rate_limit(e):
        return api_error("rate_limited", "Too many requests", 429)

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return api_error(str(e.code), e.description or "", e.code)

    # Create tables on first run (dev convenience)
    with app.app_context():
        db.create_all()

    return app
