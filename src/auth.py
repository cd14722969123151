from functools import wraps

from flask import jsonify
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request

from src.services.actors import ROLE_BUYER, make_actor


def current_actor():
    return make_actor(get_jwt_identity(), get_jwt().get("role", ROLE_BUYER))


def roles_required(*roles):
    """jwt_required() plus a check on the token's `role` claim."""
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            if get_jwt().get("role") not in roles:
                return jsonify({
                    "success": False,
                    "error_code": "FORBIDDEN",
                    "message": "Not allowed to perform this action",
                }), 403
            try:
                current_actor()
            except ValueError:
                return jsonify({"success": False, "error_code": "INVALID_TOKEN", "message": "Invalid token identity"}), 401
            return fn(*args, **kwargs)
        return wrapper
    return decorator
