from functools import wraps

from flask import abort
from flask_login import current_user


def admin_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if not current_user.is_authenticated or current_user.role != "super_admin":
            abort(403)
        return f(*args, **kwargs)
    return decorated


def restaurant_required(f):
    """Only operators bound to a restaurant may use the dashboard routes."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if not current_user.is_authenticated:
            abort(401)
        if current_user.role != "restaurant_admin" or not current_user.restaurant_id:
            abort(403)
        return f(*args, **kwargs)
    return decorated
