from __future__ import annotations

from functools import wraps

from flask import abort
from flask_login import current_user

STAFF_ROLES = frozenset(
    {"admin", "zoning_officer", "building_officer", "housing_officer", "housing_inspector"}
)


def require_staff(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            abort(401)
        if (current_user.role or "").lower() not in STAFF_ROLES:
            abort(403)
        return fn(*args, **kwargs)

    return wrapper


def require_role(*roles: str):
    allowed = {role.lower() for role in roles}

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)
            if (current_user.role or "").lower() not in allowed:
                abort(403)
            return fn(*args, **kwargs)

        return wrapper

    return decorator
