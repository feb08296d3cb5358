"""Fire-and-forget notification delivery."""
import logging
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from rollcall import db
from rollcall.models.notification import Notification, NotificationType

logger = logging.getLogger(__name__)

class NotificationService:
    """Persists notifications; delivery failures never reach the caller."""

    @staticmethod
    def _deliver(notification: Notification) -> Optional[Notification]:
        if not current_app.config.get('NOTIFICATIONS_ENABLED', True):
            return None
        try:
            db.session.add(notification)
            db.session.commit()
            return notification
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception('Failed to deliver notification "%s"', notification.message[:60])
            return None

    @classmethod
    def send(
        cls,
        recipient_id: str,
        message: str,
        link: str = None,
        type: NotificationType = NotificationType.INFO,
        related_id: int = None,
        sender_id: str = None
    ) -> Optional[Notification]:
        """Notify a single user."""
        if not recipient_id:
            return None
        return cls._deliver(Notification(
            type=type,
            message=message,
            link=link,
            recipient_id=str(recipient_id),
            sender_id=sender_id,
            is_broadcast=False,
            related_id=related_id,
            related_type='attendance' if related_id else None
        ))

    @classmethod
    def broadcast(
        cls,
        group_id: int,
        message: str,
        link: str = None,
        target_role: Optional[str] = 'student',
        type: NotificationType = NotificationType.ANNOUNCEMENT,
        related_id: int = None,
        sender_id: str = None
    ) -> Optional[Notification]:
        """Notify every member of a group (optionally one role only)."""
        if not group_id:
            return None
        return cls._deliver(Notification(
            type=type,
            message=message,
            link=link,
            sender_id=sender_id,
            is_broadcast=True,
            target_group_id=group_id,
            target_role=target_role,
            related_id=related_id,
            related_type='attendance' if related_id else None
        ))

    @staticmethod
    def for_user(user_id: str, group_ids, role: str, unread_only: bool = False):
        """Direct notifications plus broadcasts to the user's groups."""
        direct = Notification.recipient_id == str(user_id)
        broadcast = db.and_(
            Notification.is_broadcast.is_(True),
            Notification.target_group_id.in_(list(group_ids) or [-1]),
            db.or_(Notification.target_role.is_(None), Notification.target_role == role)
        )
        query = Notification.query.filter(db.or_(direct, broadcast))
        if unread_only:
            query = query.filter(Notification.read_at.is_(None))
        return query.order_by(Notification.created_at.desc(), Notification.id.desc())
