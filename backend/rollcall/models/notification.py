"""Persisted user and group notifications."""
from enum import Enum
from rollcall import db
from rollcall.models.base import BaseModel

class NotificationType(Enum):
    INFO = 'info'
    ANNOUNCEMENT = 'announcement'
    ATTENDANCE = 'attendance'
    FLAG_ALERT = 'flag_alert'

class Notification(BaseModel):
    """Notification addressed to one user or broadcast to a group."""
    
    __tablename__ = 'notifications'
    
    type = db.Column(db.Enum(NotificationType), nullable=False, default=NotificationType.INFO)
    message = db.Column(db.Text, nullable=False)
    link = db.Column(db.String(255), nullable=True)
    
    recipient_id = db.Column(db.String(64), nullable=True, index=True)
    sender_id = db.Column(db.String(64), nullable=True)
    
    # Broadcasts target a group (and optionally a role inside it)
    is_broadcast = db.Column(db.Boolean, default=False, nullable=False)
    target_group_id = db.Column(db.Integer, db.ForeignKey('groups.id'), nullable=True, index=True)
    target_role = db.Column(db.String(20), nullable=True)
    
    related_id = db.Column(db.Integer, nullable=True)
    related_type = db.Column(db.String(50), nullable=True)
    read_at = db.Column(db.DateTime, nullable=True)
    
    def __repr__(self):
        return f'<Notification {self.id} -> {self.recipient_id or self.target_group_id}>'
