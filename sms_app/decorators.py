from functools import wraps

from flask import current_app, g

from .api_utils import api_error


def permission_required(*names):
    """
    Decorator to ensure the current user holds at least one of the named permissions.
    Anonymous callers get 401, signed-in callers without a match get 403.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            auth = g.get("auth")
            if auth is None or not auth.is_authenticated:
                return api_error("unauthorized", "Sign in required", 401)

            if not any(auth.has_permission(n) for n in names):
                current_app.logger.info("User %s denied %s (needs one of %s)", auth.user_id, func.__name__, ", ".join(names))
                return api_error("forbidden", "You do not have permission to access this resource.", 403)

            return func(*args, **kwargs)
        return wrapper
    return decorator
