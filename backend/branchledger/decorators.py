# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .validation import (
    ValidationError,
    NotFoundError,
    ConflictError,
    UnexpectedStorageError,
)


ACTOR_HEADER = "X-Actor-Id"


def require_actor(f):
    """
    Require an actor identity established by the upstream auth layer.

    Authentication and branch permissions are decided before requests reach
    this service; the gateway forwards the authenticated user id in
    X-Actor-Id. Sets g.actor_id for attribution on ledger entries and bills.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not actor_id:
            return jsonify({"error": "Authentication required"}), 401

        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function


def handle_domain_errors(action: str):
    """
    Map domain exceptions to JSON error responses.

    - ValidationError -> 400
    - NotFoundError -> 404
    - ConflictError (InsufficientStockError, DuplicateError) -> 409
    - anything else -> logged, 500
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except ValidationError as e:
                return jsonify({"error": str(e), "details": e.details}), 400
            except NotFoundError as e:
                return jsonify({"error": str(e), "details": e.details}), 404
            except ConflictError as e:
                return jsonify({"error": str(e), "details": e.details}), 409
            except UnexpectedStorageError:
                current_app.logger.exception("Storage failure while trying to %s", action)
                return jsonify({"error": "Internal server error"}), 500
            except Exception:
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error"}), 500

        return decorated_function

    return decorator
