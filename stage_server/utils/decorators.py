"""Route decorators for error handling and authentication.

Core errors propagate unchanged up to here and are converted into the HTTP
failure shape without re-interpretation.
"""
import functools
import logging
from typing import Callable

from flask import request

from stage_server.exception import (
    UnauthorizedError, ValidationError, ForbiddenError, NotFoundError, ExpiredError
)
from stage_server.utils.helpers import respond_error
from stage_server.security.authentication import get_auth_payload, caller_key

logger = logging.getLogger(__name__)


def handle_errors(func: Callable) -> Callable:
    """Decorator to handle common exceptions in route handlers.

    Catches:
    - UnauthorizedError -> 401
    - ForbiddenError -> 403
    - NotFoundError -> 404
    - ExpiredError, ValidationError, ValueError -> 400
    - Other exceptions -> 500

    Usage:
        @bp.route('/example')
        @handle_errors
        def example_route():
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except UnauthorizedError as e:
            logger.warning("Unauthorized: %s", e)
            return respond_error(str(e), status=401, code=e.code)
        except ForbiddenError as e:
            logger.warning("Forbidden: %s", e)
            return respond_error(str(e), status=403, code=e.code)
        except NotFoundError as e:
            return respond_error(str(e), status=404, code=e.code)
        except ExpiredError as e:
            return respond_error(str(e), status=400, code=e.code)
        except ValueError as e:
            logger.warning("Validation error: %s", e)
            return respond_error(str(e), status=400, code=ValidationError.code)
        except Exception:
            logger.exception("Unexpected error in %s", func.__name__)
            return respond_error('Server error', status=500)
    return wrapper


def require_auth(func: Callable) -> Callable:
    """Decorator to require authentication and inject payload into handler.

    The decorated function receives `auth_payload` and `user_key` as keyword
    arguments.

    Usage:
        @bp.route('/protected')
        @require_auth
        def protected_route(auth_payload, user_key):
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        payload = get_auth_payload(request)
        kwargs['auth_payload'] = payload
        kwargs['user_key'] = caller_key(payload)
        return func(*args, **kwargs)
    return wrapper


def validate_json(*required_fields: str) -> Callable:
    """Decorator to validate that required JSON fields are present.

    Usage:
        @bp.route('/create', methods=['POST'])
        @validate_json('name', 'email')
        def create_item():
            data = request.get_json()
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            data = request.get_json(silent=True)

            if not data:
                return respond_error('Request body must be JSON', status=400, code=ValidationError.code)

            missing = [f for f in required_fields if f not in data or data[f] is None]
            if missing:
                return respond_error(f'Missing required fields: {", ".join(missing)}', status=400,
                                     code=ValidationError.code)

            return func(*args, **kwargs)
        return wrapper
    return decorator

