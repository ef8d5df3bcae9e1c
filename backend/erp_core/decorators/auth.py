from functools import wraps
from flask_jwt_extended import verify_jwt_in_request
from erp_core.errors import PermissionDenied
from erp_core.services.policy import has_permission


def require_permission(module: str, action: str):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            if not has_permission(module, action):
                raise PermissionDenied(f'Missing permission {module}:{action}')
            return fn(*args, **kwargs)
        return wrapper
    return outer
