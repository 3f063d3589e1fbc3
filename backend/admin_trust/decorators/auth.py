from functools import wraps
from flask import abort
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from admin_trust.services.registry import current_services


def require_permissions(*keys: str):
    """Gate a view on every listed permission key; 403 names the first key missing."""
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            actor_id = get_jwt_identity()
            resolver = current_services().resolver
            for key in keys:
                check = resolver.require_permission(actor_id, key)
                if not check.granted:
                    abort(403, description=f'Missing required permission: {check.missing}')
            return fn(*args, **kwargs)
        return wrapper
    return outer
