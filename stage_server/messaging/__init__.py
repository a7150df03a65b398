"""Messaging module: direct and group conversations with ordered messages.

This module provides:
- Conversation and message models
- The messaging service used by the REST routes and socket handlers
- Read receipts and per-participant unread counters
"""

from stage_server.messaging.models import (
    Conversation, ConversationType, Participant, ParticipantRole,
    Message, MessageStatus, Attachment, AttachmentType, direct_pair_key
)

__all__ = [
    'Conversation', 'ConversationType', 'Participant', 'ParticipantRole',
    'Message', 'MessageStatus', 'Attachment', 'AttachmentType', 'direct_pair_key',
]
