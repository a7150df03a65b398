"""Chat/Messaging REST API routes.

REST Endpoints (under /api/messages):
- GET    /conversations                              - List conversations with unread counts
- GET    /conversations/{id}                         - Conversation details (marks it read)
- POST   /conversations                              - Find-or-create direct, or create group
- PUT    /conversations/{id}                         - Update group info
- PUT    /conversations/{id}/settings                - Update group settings (admins)
- DELETE /conversations/{id}                         - Delete direct / leave group
- POST   /conversations/{id}/participants            - Add a member
- DELETE /conversations/{id}/participants/{userId}   - Remove a member, or leave
- PUT    /conversations/{id}/participants/{userId}/role
- PUT    /conversations/{id}/mute                    - Mute / unmute for the caller
- GET    /conversations/{id}/messages                - Message history (marks it read)
- POST   /conversations/{id}/messages                - Send a message
- POST   /conversations/{id}/read-all                - Mark all read
- PUT    /{messageId}                                - Edit a message
- DELETE /{messageId}                                - Delete a message
- POST   /{messageId}/read                           - Mark one message read

Sends, edits, deletes and read receipts made here reach connected clients
through the same fan-out as the socket commands.
"""
import logging

from flask import Blueprint, request

from config import config
from stage_server.exception import ValidationError
from stage_server.messaging.service import get_messaging_service
from stage_server.utils.decorators import handle_errors, require_auth, validate_json
from stage_server.utils.helpers import respond_success, respond_error, parse_page_args, parse_bool
from stage_server.utils.time_utils import parse_datetime

logger = logging.getLogger(__name__)

# Blueprint
chat_bp = Blueprint('chat', __name__, url_prefix='/api/messages')


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


# =============================================================================
# Conversation Endpoints
# =============================================================================

@chat_bp.route('/conversations', methods=['GET'])
@handle_errors
@require_auth
def list_conversations(auth_payload, user_key):
    """List the caller's conversations, most recently active first.

    Query Params:
        page: int - 1-based page (default: 1)
        limit: int - Page size (default: 20, max: 100)
    """
    page, limit, errors = parse_page_args(request.args)
    if errors:
        return respond_error(errors, status=400, code=ValidationError.code)

    conversations, total = get_messaging_service().list_conversations(user_key, page=page, limit=limit)
    return respond_success({
        'conversations': [c.to_dict(viewer=user_key) for c in conversations],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'pages': (total + limit - 1) // limit,
        },
    })


@chat_bp.route('/conversations/<conversation_id>', methods=['GET'])
@handle_errors
@require_auth
def get_conversation(conversation_id, auth_payload, user_key):
    conversation = get_messaging_service().get_conversation(user_key, conversation_id)
    return respond_success({'conversation': conversation.to_dict(viewer=user_key)})


@chat_bp.route('/conversations', methods=['POST'])
@handle_errors
@require_auth
def create_conversation(auth_payload, user_key):
    """Find or create a direct conversation, or create a group.

    Request Body (direct):
        { "participantId": "user-key" }

    Request Body (group):
        { "type": "group", "participantIds": [...], "name": "...", "description": "..." }

    Returns 201 when a conversation was created, 200 when an existing direct
    conversation was returned.
    """
    data = _json_body()
    service = get_messaging_service()

    if data.get('type') == 'group':
        conversation = service.create_group(
            user_key,
            data.get('participantIds') or data.get('participants') or [],
            data.get('name'),
            description=data.get('description'),
            avatar=data.get('avatar'),
            is_public=parse_bool(data.get('isPublic')),
        )
        logger.info("Group %s created by %s", conversation.conversation_id, user_key)
        return respond_success({'conversation': conversation.to_dict(viewer=user_key), 'created': True}, status=201)

    participant_id = data.get('participantId') or data.get('participant_id')
    if not participant_id:
        return respond_error('participantId is required', status=400, code=ValidationError.code)
    conversation, created = service.start_direct(user_key, str(participant_id))
    return respond_success({'conversation': conversation.to_dict(viewer=user_key), 'created': created},
                           status=201 if created else 200)


@chat_bp.route('/conversations/<conversation_id>', methods=['PUT'])
@handle_errors
@require_auth
def update_conversation(conversation_id, auth_payload, user_key):
    """Update group name, description, avatar or visibility."""
    data = _json_body()
    conversation = get_messaging_service().update_group_info(
        user_key, conversation_id,
        name=data.get('name'),
        description=data.get('description'),
        avatar=data.get('avatar'),
        is_public=parse_bool(data['isPublic']) if 'isPublic' in data else None,
    )
    return respond_success({'conversation': conversation.to_dict(viewer=user_key)})


@chat_bp.route('/conversations/<conversation_id>/settings', methods=['PUT'])
@handle_errors
@require_auth
def update_settings(conversation_id, auth_payload, user_key):
    """Request Body: any of onlyAdminsCanPost, onlyAdminsCanAddMembers, onlyAdminsCanChangeInfo."""
    data = _json_body()
    names = {
        'onlyAdminsCanPost': 'only_admins_can_post',
        'onlyAdminsCanAddMembers': 'only_admins_can_add_members',
        'onlyAdminsCanChangeInfo': 'only_admins_can_change_info',
    }
    settings = {names.get(k, k): parse_bool(v) for k, v in data.items()}
    conversation = get_messaging_service().update_settings(user_key, conversation_id, **settings)
    return respond_success({'conversation': conversation.to_dict(viewer=user_key)})


@chat_bp.route('/conversations/<conversation_id>', methods=['DELETE'])
@handle_errors
@require_auth
def delete_conversation(conversation_id, auth_payload, user_key):
    result = get_messaging_service().leave_or_delete(user_key, conversation_id)
    message = 'Conversation deleted' if result['deleted'] else 'Left conversation'
    return respond_success({'message': message, **result})


# =============================================================================
# Participant Endpoints
# =============================================================================

@chat_bp.route('/conversations/<conversation_id>/participants', methods=['POST'])
@handle_errors
@require_auth
@validate_json('userId')
def add_participant(conversation_id, auth_payload, user_key):
    """Request Body: { "userId": "user-key", "role": "member" }"""
    data = _json_body()
    new_user = data['userId']
    service = get_messaging_service()
    added = service.add_participant(user_key, conversation_id, str(new_user), role=data.get('role', 'member'))
    conversation = service.conversations.get(conversation_id)
    return respond_success({'added': added, 'conversation': conversation.to_dict(viewer=user_key)},
                           status=201 if added else 200)


@chat_bp.route('/conversations/<conversation_id>/participants/<participant>', methods=['DELETE'])
@handle_errors
@require_auth
def remove_participant(conversation_id, participant, auth_payload, user_key):
    removed = get_messaging_service().remove_participant(user_key, conversation_id, participant)
    return respond_success({'removed': removed})


@chat_bp.route('/conversations/<conversation_id>/participants/<participant>/role', methods=['PUT'])
@handle_errors
@require_auth
@validate_json('role')
def set_participant_role(conversation_id, participant, auth_payload, user_key):
    data = _json_body()
    changed = get_messaging_service().set_role(user_key, conversation_id, participant, data['role'])
    return respond_success({'changed': changed})


@chat_bp.route('/conversations/<conversation_id>/mute', methods=['PUT'])
@handle_errors
@require_auth
def mute_conversation(conversation_id, auth_payload, user_key):
    """Request Body: { "muted": true, "until": "2026-01-01T00:00:00Z" }"""
    data = _json_body()
    until = None
    if data.get('until'):
        until = parse_datetime(data['until'])
        if until is None:
            return respond_error('until must be an ISO datetime', status=400, code=ValidationError.code)
    conversation = get_messaging_service().set_muted(user_key, conversation_id,
                                                     parse_bool(data.get('muted'), default=True), until)
    return respond_success({'conversation': conversation.to_dict(viewer=user_key)})


# =============================================================================
# Message Endpoints
# =============================================================================

@chat_bp.route('/conversations/<conversation_id>/messages', methods=['GET'])
@handle_errors
@require_auth
def list_messages(conversation_id, auth_payload, user_key):
    """Message history, oldest first within the page.

    Query Params:
        page: int - 1 is the newest page
        limit: int - Page size (default: DEFAULT_PAGE_SIZE)
    """
    page, limit, errors = parse_page_args(request.args, default_limit=config.DEFAULT_PAGE_SIZE)
    if errors:
        return respond_error(errors, status=400, code=ValidationError.code)

    messages, total = get_messaging_service().list_messages(user_key, conversation_id, page=page, limit=limit)
    return respond_success({
        'messages': [m.to_dict() for m in messages],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'hasMore': page * limit < total,
        },
    })


@chat_bp.route('/conversations/<conversation_id>/messages', methods=['POST'])
@handle_errors
@require_auth
def send_message(conversation_id, auth_payload, user_key):
    """Request Body: { "content": "...", "attachments": [...], "replyTo": "message-id" }"""
    data = _json_body()
    message = get_messaging_service().send_message(
        user_key, conversation_id,
        content=data.get('content'),
        attachments=data.get('attachments'),
        reply_to=data.get('replyTo') or data.get('reply_to'),
        temp_id=data.get('tempId'),
    )
    return respond_success({'message': message.to_dict()}, status=201)


@chat_bp.route('/conversations/<conversation_id>/read-all', methods=['POST'])
@handle_errors
@require_auth
def mark_all_read(conversation_id, auth_payload, user_key):
    count = get_messaging_service().mark_conversation_read(user_key, conversation_id)
    return respond_success({'count': count})


@chat_bp.route('/<message_id>', methods=['PUT'])
@handle_errors
@require_auth
@validate_json('content')
def edit_message(message_id, auth_payload, user_key):
    data = _json_body()
    message = get_messaging_service().edit_message(user_key, message_id, data['content'])
    return respond_success({'message': message.to_dict()})


@chat_bp.route('/<message_id>', methods=['DELETE'])
@handle_errors
@require_auth
def delete_message(message_id, auth_payload, user_key):
    deleted = get_messaging_service().delete_message(user_key, message_id)
    return respond_success({'message': 'Message deleted', 'messageId': deleted.message_id})


@chat_bp.route('/<message_id>/read', methods=['POST'])
@handle_errors
@require_auth
def mark_message_read(message_id, auth_payload, user_key):
    changed = get_messaging_service().mark_message_read(user_key, message_id)
    return respond_success({'changed': changed})
