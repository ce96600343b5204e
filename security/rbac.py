"""Role checks for blueprints. Failures go through the BookingError handler."""
from functools import wraps

from flask import g

from services.errors import AuthenticationRequired, Forbidden

OPERATOR_ROLE = "ADMIN"


def current_user():
    return getattr(g, "user", None)


def has_role(role_name: str) -> bool:
    user = current_user()
    return user is not None and role_name in user.role_names


def is_operator() -> bool:
    return has_role(OPERATOR_ROLE)


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if current_user() is None:
            raise AuthenticationRequired()
        return fn(*args, **kwargs)
    return wrapper


def require_roles(*role_names: str):
    """
    Usage: @require_roles("TEACHER")

    Operators pass every role check.
    """
    wanted = set(role_names)

    def decorator(fn):
        @wraps(fn)
        @login_required
        def wrapper(*args, **kwargs):
            held = current_user().role_names
            if OPERATOR_ROLE not in held and not held & wanted:
                raise Forbidden(required=sorted(wanted))
            return fn(*args, **kwargs)
        return wrapper
    return decorator
