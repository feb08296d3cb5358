"""One student's participation in one attendance session."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from rollcall import db
from rollcall.models.base import BaseModel

class CheckInStatus(Enum):
    ON_TIME = 'on_time'
    LATE = 'late'
    MISSED = 'missed'
    ABSENT = 'absent'

class CheckOutStatus(Enum):
    ON_TIME = 'on_time'
    LEFT_EARLY = 'left_early'
    MISSED = 'missed'

class FinalStatus(Enum):
    PRESENT = 'present'
    PARTIAL = 'partial'
    ABSENT = 'absent'
    EXCUSED = 'excused'

class PleaStatus(Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'

class MarkMethod(Enum):
    GEO = 'geo'
    MANUAL = 'manual'

class MarkMode(Enum):
    CHECK_IN = 'checkIn'
    CHECK_OUT = 'checkOut'

class MarkedBy(Enum):
    STUDENT = 'student'
    REP = 'rep'

class FlagReason(Enum):
    LOCATION_MISMATCH = 'location_mismatch'
    GEO_DISABLED = 'geo_disabled'
    OUTSIDE_MARKING_WINDOW = 'outside_marking_window'
    JOINED_AFTER_ATTENDANCE_CREATED = 'joined_after_attendance_created'

PLEA_REASONS = (
    'C - Conference / Official Duty',
    'E - Excused',
    'F - Family Emergency',
    'M - Medical',
    'O - Others (Specify)',
    'P - Personal Reasons',
    'R - Religious Observance',
    'S - Suspension',
    'T - Travel',
)

class StudentAttendanceRecord(BaseModel):
    """Attendance record of one student in one session."""

    __tablename__ = 'student_attendance_records'
    __table_args__ = (
        db.UniqueConstraint('session_id', 'student_id', name='uq_record_session_student'),
    )

    # Concurrent writers to the same record fail instead of overwriting each other
    version = db.Column(db.Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    session_id = db.Column(db.Integer, db.ForeignKey('attendance_sessions.id'), nullable=False, index=True)
    student_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=True)

    # Derived statuses
    check_in_status = db.Column(db.Enum(CheckInStatus), nullable=False, default=CheckInStatus.ABSENT)
    check_out_status = db.Column(db.Enum(CheckOutStatus), nullable=False, default=CheckOutStatus.MISSED)
    final_status = db.Column(db.Enum(FinalStatus), nullable=False, default=FinalStatus.ABSENT)

    # Check-in
    check_in_time = db.Column(db.DateTime, nullable=True)
    check_in_method = db.Column(db.Enum(MarkMethod), nullable=True)
    check_in_latitude = db.Column(db.Float, nullable=True)
    check_in_longitude = db.Column(db.Float, nullable=True)
    check_in_distance_meters = db.Column(db.Integer, nullable=True)
    check_in_proof = db.Column(db.String(512), nullable=True)

    # Check-out
    check_out_time = db.Column(db.DateTime, nullable=True)
    check_out_method = db.Column(db.Enum(MarkMethod), nullable=True)
    check_out_latitude = db.Column(db.Float, nullable=True)
    check_out_longitude = db.Column(db.Float, nullable=True)
    check_out_distance_meters = db.Column(db.Integer, nullable=True)

    # Deltas in minutes
    arrival_delta_minutes = db.Column(db.Integer, nullable=True)
    departure_delta_minutes = db.Column(db.Integer, nullable=True)
    duration_minutes = db.Column(db.Integer, nullable=True)

    was_within_range = db.Column(db.Boolean, nullable=True)
    check_in_verified = db.Column(db.Boolean, default=False)
    check_out_verified = db.Column(db.Boolean, default=False)
    marked_by = db.Column(db.Enum(MarkedBy), nullable=True)
    device_ip = db.Column(db.String(64), nullable=True)
    device_user_agent = db.Column(db.String(255), nullable=True)

    # Discipline
    warnings_issued = db.Column(db.Integer, nullable=False, default=0)
    penalty_points = db.Column(db.Integer, nullable=False, default=0)
    reward_points = db.Column(db.Integer, nullable=False, default=0)
    verified_by_rep = db.Column(db.Boolean, default=False)
    notes = db.Column(db.Text, nullable=True)

    # Flags: [{type, severity, detected_by, note}]
    is_flagged = db.Column(db.Boolean, nullable=False, default=False)
    flags = db.Column(db.JSON, nullable=False, default=list)
    flagged_at = db.Column(db.DateTime, nullable=True)
    flagged_by = db.Column(db.String(64), nullable=True)
    flag_status = db.Column(db.String(20), nullable=True)  # active, dismissed

    # Plea
    plea_message = db.Column(db.Text, nullable=True)
    plea_reasons = db.Column(db.JSON, nullable=False, default=list)
    plea_proof_url = db.Column(db.String(512), nullable=True)
    plea_submitted_at = db.Column(db.DateTime, nullable=True)
    plea_status = db.Column(db.Enum(PleaStatus), nullable=True)
    plea_reviewed_at = db.Column(db.DateTime, nullable=True)
    plea_reviewed_by = db.Column(db.String(64), nullable=True)
    plea_reviewer_note = db.Column(db.Text, nullable=True)

    joined_after_attendance_created = db.Column(db.Boolean, nullable=False, default=False)

    # Audit trail: [{type, pathway, description, data, created_by, created_at}]
    history = db.Column(db.JSON, nullable=False, default=list)

    def __init__(self, **kwargs):
        kwargs.setdefault('check_in_status', CheckInStatus.ABSENT)
        kwargs.setdefault('check_out_status', CheckOutStatus.MISSED)
        kwargs.setdefault('final_status', FinalStatus.ABSENT)
        kwargs.setdefault('flags', [])
        kwargs.setdefault('plea_reasons', [])
        kwargs.setdefault('history', [])
        kwargs.setdefault('joined_after_attendance_created', False)
        super().__init__(**kwargs)

    @property
    def has_checked_in(self) -> bool:
        return self.check_in_time is not None

    @property
    def has_checked_out(self) -> bool:
        return self.check_out_time is not None

    def add_flags(self, flags: List[Dict[str, Any]], flagged_at: datetime, flagged_by: str = None) -> None:
        """Append flags, keeping earlier ones."""
        if not flags:
            return
        self.flags = list(self.flags or []) + flags
        self.is_flagged = True
        self.flag_status = 'active'
        self.flagged_at = flagged_at
        self.flagged_by = flagged_by

    def log(self, type: str, pathway: str, description: str, at: datetime,
            data: Optional[Dict[str, Any]] = None, created_by: str = 'system') -> None:
        """Append an entry to the record's audit trail."""
        entry = {
            'type': type,
            'pathway': pathway,
            'description': description,
            'data': data or {},
            'created_by': created_by,
            'created_at': at.isoformat()
        }
        self.history = list(self.history or []) + [entry]

    @staticmethod
    def _mark(time, method, latitude, longitude, distance) -> Optional[Dict[str, Any]]:
        if time is None:
            return None
        location = None
        if latitude is not None and longitude is not None:
            location = {'latitude': latitude, 'longitude': longitude}
        return {
            'time': time.isoformat(),
            'method': method.value if method else None,
            'location': location,
            'distance_from_class_meters': distance
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'id': self.id,
            'session_id': self.session_id,
            'student_id': self.student_id,
            'name': self.name,
            'check_in_status': self.check_in_status.value,
            'check_out_status': self.check_out_status.value,
            'final_status': self.final_status.value,
            'check_in': self._mark(self.check_in_time, self.check_in_method, self.check_in_latitude,
                                   self.check_in_longitude, self.check_in_distance_meters),
            'check_out': self._mark(self.check_out_time, self.check_out_method, self.check_out_latitude,
                                    self.check_out_longitude, self.check_out_distance_meters),
            'arrival_delta_minutes': self.arrival_delta_minutes,
            'departure_delta_minutes': self.departure_delta_minutes,
            'duration_minutes': self.duration_minutes,
            'was_within_range': self.was_within_range,
            'marked_by': self.marked_by.value if self.marked_by else None,
            'discipline': {
                'warnings_issued': self.warnings_issued,
                'penalty_points': self.penalty_points,
                'reward_points': self.reward_points
            },
            'flagged': {
                'is_flagged': self.is_flagged,
                'reasons': list(self.flags or []),
                'flagged_at': self.flagged_at.isoformat() if self.flagged_at else None,
                'flagged_by': self.flagged_by,
                'status': self.flag_status
            },
            'plea': {
                'message': self.plea_message,
                'reasons': list(self.plea_reasons or []),
                'proof_url': self.plea_proof_url,
                'submitted_at': self.plea_submitted_at.isoformat() if self.plea_submitted_at else None,
                'status': self.plea_status.value if self.plea_status else None,
                'reviewed_at': self.plea_reviewed_at.isoformat() if self.plea_reviewed_at else None,
                'reviewer_note': self.plea_reviewer_note
            },
            'joined_after_attendance_created': self.joined_after_attendance_created,
            'history': list(self.history or [])
        }

    def __repr__(self):
        return f'<StudentAttendanceRecord {self.session_id}-{self.student_id}>'
