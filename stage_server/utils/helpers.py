from flask import jsonify


def respond_error(message_or_dict, status=400, code=None):
    """Return a standardized error response."""
    if isinstance(message_or_dict, dict):
        body = {'success': False, 'errors': message_or_dict}
    else:
        body = {'success': False, 'error': message_or_dict}
    if code:
        body['code'] = code
    return jsonify(body), status


def respond_success(payload=None, status=200):
    if payload is None:
        payload = {}
    body = {'success': True}
    if isinstance(payload, dict):
        body.update(payload)
    else:
        body['data'] = payload
    return jsonify(body), status


def parse_page_args(args, default_limit=20, max_limit=100):
    """Parse ``page``/``limit`` query args.

    Returns (page, limit, errors); errors is None when both parse.
    """
    errors = {}
    page = 1
    limit = default_limit
    try:
        page = int(args.get('page', 1))
        if page < 1:
            errors['page'] = 'page must be >= 1'
    except (TypeError, ValueError):
        errors['page'] = 'page must be an integer'
    try:
        limit = int(args.get('limit', default_limit))
        if limit < 1 or limit > max_limit:
            errors['limit'] = f'limit must be between 1 and {max_limit}'
    except (TypeError, ValueError):
        errors['limit'] = 'limit must be an integer'
    if errors:
        return None, None, errors
    return page, limit, None


def parse_pagination(args, default_limit=20, max_limit=100):
    """Parse ``limit``/``skip`` query args. Returns (limit, skip, errors)."""
    errors = {}
    limit = default_limit
    skip = 0
    try:
        limit = int(args.get('limit', default_limit))
        if limit < 1 or limit > max_limit:
            errors['limit'] = f'limit must be between 1 and {max_limit}'
    except (TypeError, ValueError):
        errors['limit'] = 'limit must be an integer'
    try:
        skip = int(args.get('skip', 0))
        if skip < 0:
            errors['skip'] = 'skip must be >= 0'
    except (TypeError, ValueError):
        errors['skip'] = 'skip must be an integer'
    if errors:
        return None, None, errors
    return limit, skip, None


def parse_bool(value, default=False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).lower() in ('1', 'true', 'yes')
