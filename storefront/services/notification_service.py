"""
In-app notifications.

Order status changes and high-priority feedback publish notifications here;
the notifications API reads them back per user. Storage is process-local.
"""
from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Deque, Dict, Iterable, List, Optional

from storefront.observability import increment_counter, record_event

MAX_NOTIFICATIONS_PER_USER = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Notification:
    user_id: int
    notification_type: str
    title: str
    message: str
    reference_id: Optional[int] = None
    reference_type: Optional[str] = None
    priority: str = "normal"
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=_utcnow)
    read_at: Optional[datetime] = None

    @property
    def read(self) -> bool:
        return self.read_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.notification_type,
            "title": self.title,
            "message": self.message,
            "reference_id": self.reference_id,
            "reference_type": self.reference_type,
            "priority": self.priority,
            "created_at": self.created_at.isoformat(),
            "read": self.read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
        }


class NotificationService:
    """
    Per-user inbox shared by every instance in the process.

    Each inbox keeps the newest ``MAX_NOTIFICATIONS_PER_USER`` entries,
    newest first.
    """

    _inboxes: Dict[int, Deque[Notification]] = {}
    _lock = RLock()

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)

    def _inbox(self, user_id: int) -> Deque[Notification]:
        return self._inboxes.setdefault(user_id, deque(maxlen=MAX_NOTIFICATIONS_PER_USER))

    def add_notification(
        self,
        user_id: int,
        notification_type: str,
        title: str,
        message: str,
        reference_id: Optional[int] = None,
        reference_type: Optional[str] = None,
        priority: str = "normal",
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            notification_type=notification_type,
            title=title,
            message=message,
            reference_id=reference_id,
            reference_type=reference_type,
            priority=priority,
        )
        with self._lock:
            self._inbox(user_id).appendleft(notification)
        increment_counter("notifications_created_total", labels={"type": notification_type})
        self.logger.info("Notification created for user %d: %s", user_id, title)
        return notification

    def broadcast(self, user_ids: Iterable[int], notification_type: str, title: str, message: str, **kwargs: Any) -> int:
        sent = [self.add_notification(user_id, notification_type, title, message, **kwargs) for user_id in user_ids]
        return len(sent)

    def get_notifications(self, user_id: int, unread_only: bool = False, limit: int = 20) -> List[Dict[str, Any]]:
        with self._lock:
            notifications = list(self._inboxes.get(user_id, ()))
        if unread_only:
            notifications = [n for n in notifications if not n.read]
        return [n.to_dict() for n in notifications[:limit]]

    def get_unread_count(self, user_id: int) -> int:
        with self._lock:
            return sum(1 for n in self._inboxes.get(user_id, ()) if not n.read)

    def mark_as_read(self, user_id: int, notification_id: str) -> bool:
        """Returns False when the notification does not belong to the user."""
        with self._lock:
            for notification in self._inboxes.get(user_id, ()):
                if notification.id == notification_id:
                    notification.read_at = notification.read_at or _utcnow()
                    return True
        return False

    def mark_all_as_read(self, user_id: int) -> int:
        now = _utcnow()
        with self._lock:
            unread = [n for n in self._inboxes.get(user_id, ()) if not n.read]
            for notification in unread:
                notification.read_at = now
        return len(unread)

    def clear_notifications(self, user_id: Optional[int] = None) -> None:
        """Clear one user's inbox, or every inbox when no user is given."""
        with self._lock:
            if user_id is None:
                self._inboxes.clear()
            else:
                self._inboxes.pop(user_id, None)


def publish_order_status_change(
    order_id: int,
    customer_id: int,
    old_status: Optional[str],
    new_status: str,
    order_number: Optional[str] = None,
) -> None:
    """Record the transition and drop a notification in the customer's inbox."""
    record_event(
        "order_status_changed",
        {"order_id": order_id, "customer_id": customer_id, "old_status": old_status, "new_status": new_status},
    )
    increment_counter(
        "order_status_transitions_total",
        labels={"from_status": old_status or "new", "to_status": new_status},
    )

    if old_status:
        message = f"Your order status changed from {old_status.capitalize()} to {new_status.capitalize()}."
    else:
        message = f"Your order has been placed and is {new_status}."

    NotificationService().add_notification(
        user_id=customer_id,
        notification_type="order_status",
        title=f"Order {order_number or f'#{order_id}'} updated",
        message=message,
        reference_id=order_id,
        reference_type="order",
    )
