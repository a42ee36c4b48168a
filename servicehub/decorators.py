from functools import wraps

from flask import abort
from flask_login import current_user

from servicehub.errors import ForbiddenError


def role_required(*roles):
    """Allow the wrapped view only for authenticated, active users holding one of ``roles``."""

    def wrapper(func):
        @wraps(func)
        def inner(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)
            if not current_user.is_active_user:
                raise ForbiddenError("User account is inactive.")
            if current_user.role not in roles:
                allowed = ", ".join(roles)
                raise ForbiddenError(f"This action requires one of the roles: {allowed}.")
            return func(*args, **kwargs)

        return inner

    return wrapper
