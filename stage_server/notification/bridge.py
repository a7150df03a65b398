"""Notification bridge.

Turns domain events into durable notification records and, when the
recipient is connected, pushes them in real time. The record is written
first; the push is best-effort and its failure never fails the call.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from stage_server.notification.models import Notification
from stage_server.notification.templates import bind_sender, render
from stage_server.repository.notification_repository import NotificationRepository
from stage_server.websocket.event_emitter import EventEmitter
from stage_server.websocket.presence import PresenceRegistry

logger = logging.getLogger(__name__)


class NotificationBridge:

    def __init__(self, repository: NotificationRepository, presence: PresenceRegistry):
        self.repository = repository
        self.presence = presence

    # =========================================================================
    # Create
    # =========================================================================

    def notify(self, template_name: str, *args, **kwargs) -> Notification:
        """Render a named template, persist it and push it if the recipient is online.

        Raises UnknownTemplateError for names outside the template set.
        """
        notification = render(template_name, *args, **kwargs)
        return self.deliver(notification)

    def deliver(self, notification: Notification) -> Notification:
        notification.validate()
        self.repository.insert(notification)
        logger.debug("Notification %s (%s) stored for %s", notification.notification_id,
                     notification.notification_type.value, notification.recipient)
        self._push(notification)
        return notification

    def notify_many(self, drafts: Iterable[Union[Notification, Dict[str, Any]]],
                    sender: Optional[str] = None) -> Dict[str, int]:
        """Deliver a batch independently of each other.

        Each draft is either a Notification or ``{'template': name, 'args': [...], 'kwargs': {...}}``.
        With ``sender`` given, template drafts take their sender from it
        (see ``bind_sender``). Returns counts of successful and failed deliveries.
        """
        successful = 0
        failed = 0
        for draft in drafts:
            try:
                if isinstance(draft, Notification):
                    self.deliver(draft)
                elif sender is not None:
                    template = draft.get('template')
                    args, kwargs = bind_sender(template, sender, draft.get('args'), draft.get('kwargs'))
                    self.notify(template, *args, **kwargs)
                else:
                    self.notify(draft.get('template'), *draft.get('args', []), **draft.get('kwargs', {}))
                successful += 1
            except Exception as e:
                failed += 1
                logger.warning("Batch notification failed: %s", e)
        return {'successful': successful, 'failed': failed}

    def _push(self, notification: Notification) -> bool:
        recipient = notification.recipient
        if not self.presence.is_online(recipient):
            return False
        try:
            pushed = EventEmitter.emit_to_user(recipient, EventEmitter.NOTIFICATION_NEW, {
                'type': 'notification',
                'data': notification.to_dict(),
            })
            if pushed:
                EventEmitter.update_notification_count(recipient, self.repository.unread_count(recipient))
            return pushed
        except Exception:
            logger.exception("Failed to push notification %s to %s", notification.notification_id, recipient)
            return False

    # =========================================================================
    # Read state
    # =========================================================================

    def unread_count(self, recipient: str) -> int:
        return self.repository.unread_count(recipient)

    def list_for_user(self, recipient: str, limit: int = 20, skip: int = 0,
                      unread_only: bool = False) -> Tuple[List[Notification], int]:
        return self.repository.list_for_user(recipient, limit=limit, skip=skip, unread_only=unread_only)

    def mark_one_read(self, notification_id: str, recipient: str) -> bool:
        changed = self.repository.mark_one_read(notification_id, recipient)
        if changed:
            EventEmitter.emit_to_user(recipient, EventEmitter.NOTIFICATION_READ, {'notificationId': notification_id})
            EventEmitter.update_notification_count(recipient, self.repository.unread_count(recipient))
        return changed

    def mark_all_read(self, recipient: str) -> int:
        count = self.repository.mark_all_read(recipient)
        EventEmitter.emit_to_user(recipient, EventEmitter.NOTIFICATION_READ_ALL, {'count': count})
        EventEmitter.update_notification_count(recipient, 0)
        return count

    def delete(self, notification_id: str, recipient: str) -> bool:
        deleted = self.repository.delete_one(notification_id, recipient)
        EventEmitter.update_notification_count(recipient, self.repository.unread_count(recipient))
        return deleted
