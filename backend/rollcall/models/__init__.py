"""Models package with all models."""
from .base import BaseModel
from .group import Group, GroupMember, UserRole
from .policies import SessionSettings, ReopenFeatures, ProofRequirement, StatusHandling
from .attendance_session import AttendanceSession, SessionStatus, AttendanceType
from .student_record import (
    StudentAttendanceRecord, CheckInStatus, CheckOutStatus, FinalStatus,
    PleaStatus, MarkMethod, MarkMode, MarkedBy, FlagReason
)
from .notification import Notification, NotificationType

__all__ = [
    'BaseModel', 'Group', 'GroupMember', 'UserRole',
    'SessionSettings', 'ReopenFeatures', 'ProofRequirement', 'StatusHandling',
    'AttendanceSession', 'SessionStatus', 'AttendanceType',
    'StudentAttendanceRecord', 'CheckInStatus', 'CheckOutStatus', 'FinalStatus',
    'PleaStatus', 'MarkMethod', 'MarkMode', 'MarkedBy', 'FlagReason',
    'Notification', 'NotificationType'
]
