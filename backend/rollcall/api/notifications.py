# File: backend/rollcall/api/notifications.py
"""Notifications API: a user's inbox."""
from flask import Blueprint, request
from flask_jwt_extended import jwt_required, get_jwt_identity
from rollcall import db
from rollcall.models.group import GroupMember
from rollcall.models.notification import Notification
from rollcall.services.notification_service import NotificationService
from rollcall.utils.clock import now
from rollcall.utils.decorators import current_role
from rollcall.utils.errors import NotFound
from rollcall.utils.helpers import success_response

notifications_bp = Blueprint('notifications', __name__)

def notification_dict(notification: Notification) -> dict:
    return {
        'id': notification.id,
        'type': notification.type.value,
        'message': notification.message,
        'link': notification.link,
        'is_broadcast': notification.is_broadcast,
        'group_id': notification.target_group_id,
        'related_id': notification.related_id,
        'read_at': notification.read_at.isoformat() if notification.read_at else None,
        'created_at': notification.created_at.isoformat() if notification.created_at else None
    }

@notifications_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return success_response(message='Notifications service is running')

@notifications_bp.route('/', methods=['GET'])
@jwt_required()
def get_notifications():
    """Get the caller's notifications, newest first."""
    user_id = str(get_jwt_identity())
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('per_page', 20, type=int), 100)
    unread_only = request.args.get('unread_only', 'false').lower() == 'true'

    group_ids = [
        group_id for (group_id,) in
        db.session.query(GroupMember.group_id).filter_by(student_id=user_id)
    ]
    pagination = NotificationService.for_user(
        user_id, group_ids, current_role().value, unread_only=unread_only
    ).paginate(page=page, per_page=per_page, error_out=False)

    return success_response(
        data={
            'notifications': [notification_dict(item) for item in pagination.items],
            'pagination': {
                'page': pagination.page,
                'per_page': pagination.per_page,
                'total': pagination.total,
                'pages': pagination.pages,
                'has_next': pagination.has_next,
                'has_prev': pagination.has_prev
            }
        },
        message=f"Found {len(pagination.items)} notifications"
    )

@notifications_bp.route('/<int:notification_id>/read', methods=['POST'])
@jwt_required()
def mark_read(notification_id):
    """Mark one direct notification as read."""
    notification = Notification.query.filter_by(
        id=notification_id, recipient_id=str(get_jwt_identity())
    ).first()
    if not notification:
        raise NotFound('NOTIFICATION_NOT_FOUND', f'No notification found with ID "{notification_id}".')

    if notification.read_at is None:
        notification.read_at = now()
        db.session.commit()
    return success_response(data={'notification': notification_dict(notification)}, message='Notification marked as read')
