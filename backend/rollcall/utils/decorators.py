"""Custom decorators for authorization."""
from functools import wraps
from flask_jwt_extended import get_jwt
from rollcall.models.group import UserRole
from rollcall.utils.helpers import error_response

def current_role() -> UserRole:
    """Role claim carried by the caller's access token."""
    try:
        return UserRole(get_jwt().get('role', UserRole.STUDENT.value))
    except ValueError:
        return UserRole.STUDENT

def class_rep_required(f):
    """Decorator to require class rep role or higher."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_role() not in [UserRole.CLASS_REP, UserRole.ADMIN]:
            return error_response("Class rep access required", 403, code='CLASS_REP_REQUIRED')

        return f(*args, **kwargs)
    return decorated_function
