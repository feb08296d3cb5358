"""Attendance session: one class meeting's attendance record."""
from datetime import datetime
from enum import Enum
from typing import Dict
from rollcall import db
from rollcall.models.base import BaseModel
from rollcall.models.policies import ReopenFeatures, SessionSettings

class SessionStatus(Enum):
    """Session lifecycle states."""
    UPCOMING = 'upcoming'
    ACTIVE = 'active'
    CLOSED = 'closed'

class AttendanceType(Enum):
    PHYSICAL = 'physical'
    VIRTUAL = 'virtual'

SUMMARY_FIELDS = ('total_present', 'on_time', 'late', 'left_early', 'absent', 'with_plea')

class AttendanceSession(BaseModel):
    """Attendance session for one class meeting."""

    __tablename__ = 'attendance_sessions'
    __table_args__ = (
        db.UniqueConstraint('schedule_id', 'class_date', 'class_start',
                            name='uq_session_schedule_slot'),
    )

    # Identity
    attendance_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    group_id = db.Column(db.Integer, db.ForeignKey('groups.id'), nullable=False, index=True)
    schedule_id = db.Column(db.String(64), nullable=True, index=True)

    # Course
    course_code = db.Column(db.String(50), nullable=False)
    course_title = db.Column(db.String(255), nullable=False)
    lecturer_name = db.Column(db.String(255), nullable=True)
    lecturer_email = db.Column(db.String(255), nullable=True)

    # Calendar slot
    class_date = db.Column(db.Date, nullable=False, index=True)
    class_start = db.Column(db.Time, nullable=False)
    class_end = db.Column(db.Time, nullable=False)

    # Marking window as offsets from class start ("<h>H<m>M" or "FULL")
    entry_start = db.Column(db.String(16), nullable=False, default='0H10M')
    entry_end = db.Column(db.String(16), nullable=False, default='1H30M')

    # Geofence
    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    radius_meters = db.Column(db.Integer, nullable=False, default=50)

    attendance_type = db.Column(db.Enum(AttendanceType), nullable=False, default=AttendanceType.PHYSICAL)
    settings = db.Column(db.JSON, nullable=False, default=dict)

    # Lifecycle
    status = db.Column(db.Enum(SessionStatus), nullable=False, default=SessionStatus.UPCOMING, index=True)
    initialized = db.Column(db.Boolean, nullable=False, default=False)
    auto_end = db.Column(db.Boolean, nullable=False, default=True)
    finalized_at = db.Column(db.DateTime, nullable=True)

    # Reopen sub-state
    reopened = db.Column(db.Boolean, nullable=False, default=False)
    reopened_until = db.Column(db.DateTime, nullable=True)
    reopened_at = db.Column(db.DateTime, nullable=True)
    reopen_allowed_students = db.Column(db.JSON, nullable=False, default=list)
    reopen_features = db.Column(db.JSON, nullable=False, default=dict)

    # Summary stats
    total_present = db.Column(db.Integer, nullable=False, default=0)
    on_time = db.Column(db.Integer, nullable=False, default=0)
    late = db.Column(db.Integer, nullable=False, default=0)
    left_early = db.Column(db.Integer, nullable=False, default=0)
    absent = db.Column(db.Integer, nullable=False, default=0)
    with_plea = db.Column(db.Integer, nullable=False, default=0)

    created_by = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Relationships
    group = db.relationship('Group', backref=db.backref('attendance_sessions', lazy='dynamic'))
    records = db.relationship('StudentAttendanceRecord', backref='session', lazy='dynamic')

    @property
    def policy(self) -> SessionSettings:
        """Typed view of the settings bundle."""
        return SessionSettings.from_dict(self.settings)

    @property
    def reopen_policy(self) -> ReopenFeatures:
        return ReopenFeatures.from_dict(self.reopen_features)

    @property
    def location(self) -> Dict[str, float]:
        return {
            'latitude': self.latitude,
            'longitude': self.longitude,
            'radius_meters': self.radius_meters
        }

    def is_reopen_active(self, now: datetime) -> bool:
        """Check the reopen window still accepts marks."""
        return self.reopened and (self.reopened_until is None or now <= self.reopened_until)

    def summary_stats(self) -> Dict[str, int]:
        return {name: getattr(self, name) or 0 for name in SUMMARY_FIELDS}

    def to_dict(self, include_records: bool = False) -> Dict:
        """Convert to dictionary."""
        data = {
            'id': self.id,
            'attendance_id': self.attendance_id,
            'group_id': self.group_id,
            'schedule_id': self.schedule_id,
            'course_code': self.course_code,
            'course_title': self.course_title,
            'lecturer': {
                'name': self.lecturer_name,
                'email': self.lecturer_email
            },
            'class_date': self.class_date.isoformat(),
            'class_time': {
                'day': self.class_date.strftime('%A'),
                'start': self.class_start.strftime('%H:%M'),
                'end': self.class_end.strftime('%H:%M')
            },
            'entry': {
                'start': self.entry_start,
                'end': self.entry_end
            },
            'location': self.location,
            'attendance_type': self.attendance_type.value,
            'settings': self.policy.to_dict(),
            'status': self.status.value,
            'initialized': self.initialized,
            'auto_end': self.auto_end,
            'finalized_at': self.finalized_at.isoformat() if self.finalized_at else None,
            'reopen': {
                'reopened': self.reopened,
                'reopened_until': self.reopened_until.isoformat() if self.reopened_until else None,
                'allowed_students': list(self.reopen_allowed_students or []),
                'features': self.reopen_policy.to_dict()
            },
            'summary_stats': self.summary_stats(),
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
        if include_records:
            from rollcall.models.student_record import StudentAttendanceRecord
            data['student_records'] = [
                record.to_dict()
                for record in self.records.order_by(StudentAttendanceRecord.name)
            ]
        return data

    def __repr__(self):
        return f'<AttendanceSession {self.attendance_id} {self.status.value if self.status else None}>'
