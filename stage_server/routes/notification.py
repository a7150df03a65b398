"""Notification routes.

Endpoints (under /api/notifications):
- GET    /                 - List the caller's notifications
- GET    /unread-count     - Unread badge count
- PUT    /{id}/read        - Mark one read
- PUT    /read-all         - Mark all read
- DELETE /{id}             - Delete one
- POST   /                 - Create from a named template (single or batch)

WebSocket Events (emitted automatically):
- notification:new, notification:read, notification:read_all, notification:count
"""
import logging

from flask import Blueprint, current_app, request

from stage_server.exception import ValidationError
from stage_server.notification.templates import bind_sender
from stage_server.utils.decorators import handle_errors, require_auth
from stage_server.utils.helpers import respond_success, respond_error, parse_pagination, parse_bool

logger = logging.getLogger(__name__)

# Blueprint
notification_bp = Blueprint('notification', __name__, url_prefix='/api/notifications')


def _bridge():
    return current_app.extensions['stage']['bridge']


@notification_bp.route('', methods=['GET'], strict_slashes=False)
@handle_errors
@require_auth
def list_notifications(auth_payload, user_key):
    """List notifications, newest first.

    Query Params:
        limit: int - Max results (default: 20, max: 100)
        skip: int - Offset
        unreadOnly: bool - Only unread notifications
    """
    limit, skip, errors = parse_pagination(request.args)
    if errors:
        return respond_error(errors, status=400, code=ValidationError.code)
    unread_only = parse_bool(request.args.get('unreadOnly') or request.args.get('unread_only'))

    notifications, total = _bridge().list_for_user(user_key, limit=limit, skip=skip, unread_only=unread_only)
    return respond_success({
        'notifications': [n.to_dict() for n in notifications],
        'total': total,
        'unreadCount': _bridge().unread_count(user_key),
        'meta': {'limit': limit, 'skip': skip, 'hasMore': skip + limit < total},
    })


@notification_bp.route('/unread-count', methods=['GET'])
@handle_errors
@require_auth
def unread_count(auth_payload, user_key):
    return respond_success({'count': _bridge().unread_count(user_key)})


@notification_bp.route('/<notification_id>/read', methods=['PUT'])
@handle_errors
@require_auth
def mark_read(notification_id, auth_payload, user_key):
    changed = _bridge().mark_one_read(notification_id, user_key)
    return respond_success({'notificationId': notification_id, 'changed': changed})


@notification_bp.route('/read-all', methods=['PUT'])
@handle_errors
@require_auth
def mark_all_read(auth_payload, user_key):
    count = _bridge().mark_all_read(user_key)
    return respond_success({'count': count})


@notification_bp.route('/<notification_id>', methods=['DELETE'])
@handle_errors
@require_auth
def delete_notification(notification_id, auth_payload, user_key):
    _bridge().delete(notification_id, user_key)
    return respond_success({'message': 'Notification deleted'})


@notification_bp.route('', methods=['POST'], strict_slashes=False)
@handle_errors
@require_auth
def create_notification(auth_payload, user_key):
    """Create notifications from named templates.

    The caller is always the sender. For templates that name one
    (newMessage, eventInvitation, bookingRequest, newReview, newFollower)
    ``args`` start at the recipient.

    Request Body (single):
        { "template": "bookingRequest", "args": ["recipient", "event-1", "Jazz Night"] }

    Request Body (batch):
        { "notifications": [ {"template": ..., "args": [...], "kwargs": {...}}, ... ] }

    Unknown template names are rejected with 400.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return respond_error('Request body must be JSON', status=400, code=ValidationError.code)

    if 'notifications' in data:
        drafts = data['notifications']
        if not isinstance(drafts, list):
            return respond_error('notifications must be a list', status=400, code=ValidationError.code)
        result = _bridge().notify_many(drafts, sender=user_key)
        logger.info("Batch notification by %s: %s", user_key, result)
        return respond_success(result, status=201)

    template = data.get('template')
    if not template:
        return respond_error('template is required', status=400, code=ValidationError.code)
    args, kwargs = bind_sender(template, user_key, data.get('args'), data.get('kwargs'))

    notification = _bridge().notify(template, *args, **kwargs)
    return respond_success({'notification': notification.to_dict()}, status=201)
