"""Attendance session service: creation, marking, finalization and pleas."""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from rollcall import db
from rollcall.models.attendance_session import (
    AttendanceSession, AttendanceType, SessionStatus, SUMMARY_FIELDS
)
from rollcall.models.group import Group, UserRole
from rollcall.models.notification import NotificationType
from rollcall.models.policies import SessionSettings
from rollcall.models.student_record import (
    CheckInStatus, FinalStatus, MarkMethod, MarkMode, MarkedBy, PleaStatus,
    PLEA_REASONS, StudentAttendanceRecord
)
from rollcall.services.flag_service import FlagService
from rollcall.services.gps_service import GPSService
from rollcall.services.notification_service import NotificationService
from rollcall.services.record_marks import (
    attach_device, commit_record, mark_outcome, stamp_check_in, stamp_check_out
)
from rollcall.services.roster_service import RosterService
from rollcall.services.settings_enforcer import SettingsEnforcer
from rollcall.services.status_resolver import (
    ARRIVED, contribution, record_final_status, tally
)
from rollcall.services.time_window import TimeWindow, minutes_between
from rollcall.utils.errors import (
    AttendanceError, Conflict, Forbidden, NotFound, TemporalRejection, ValidationFailed
)
from rollcall.utils.validators import Validator

logger = logging.getLogger(__name__)

ROSTER_ROLES = (UserRole.STUDENT, UserRole.CLASS_REP)

def parse_enum(enum_cls, value, code: str, field: str):
    """Coerce a raw payload value into ``enum_cls`` or raise ``code``."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(member.value for member in enum_cls)
        raise ValidationFailed(code, f'{field} "{value}" must be one of: {allowed}.')

def session_link(session: AttendanceSession) -> str:
    return f'/attendance/{session.attendance_id}'

class AttendanceService:
    """Service for attendance sessions and student marks."""

    # ------------------------------------------------------------------ queries

    @staticmethod
    def get_session(attendance_id: str) -> AttendanceSession:
        session = AttendanceSession.query.filter_by(attendance_id=attendance_id).first()
        if not session:
            raise NotFound(
                'ATTENDANCE_NOT_FOUND',
                f'No attendance found with ID "{attendance_id}".'
            )
        return session

    @staticmethod
    def get_record(session: AttendanceSession, student_id: str) -> StudentAttendanceRecord:
        record = StudentAttendanceRecord.query.filter_by(
            session_id=session.id, student_id=str(student_id)
        ).first()
        if not record:
            raise NotFound(
                'RECORD_NOT_FOUND',
                f'No attendance record for student "{student_id}" in this session.'
            )
        return record

    @staticmethod
    def list_group_sessions(group_id: int, status: Optional[str] = None,
                            page: int = 1, per_page: int = 20):
        """Sessions of a group, most recent class first."""
        RosterService.get_group(group_id)
        query = AttendanceSession.query.filter_by(group_id=group_id)
        if status:
            query = query.filter_by(
                status=parse_enum(SessionStatus, status, 'INVALID_STATUS', 'status')
            )
        return query.order_by(
            AttendanceSession.class_date.desc(),
            AttendanceSession.class_start.desc()
        ).paginate(page=page, per_page=per_page, error_out=False)

    # ----------------------------------------------------------------- creation

    @staticmethod
    def create_session(data: Dict, created_by: str, now: datetime) -> AttendanceSession:
        """Create a session for one class meeting.

        Sessions dated today are seeded and activated straight away; future
        sessions wait for the activator.
        """
        config = current_app.config
        Validator.require_fields(
            data, ['group_id', 'class_date', 'class_start', 'class_end', 'latitude', 'longitude']
        )

        group = RosterService.get_group(data['group_id'])

        class_date = Validator.parse_class_date(data['class_date'])
        if class_date < now.date():
            raise ValidationFailed(
                'INVALID_CLASS_DATE',
                f'Class date {class_date.isoformat()} is in the past.'
            )

        class_start = Validator.parse_time_of_day(data['class_start'], 'class_start')
        class_end = Validator.parse_time_of_day(data['class_end'], 'class_end')
        duration = minutes_between(
            datetime.combine(class_date, class_start), datetime.combine(class_date, class_end)
        )
        if duration <= 0:
            raise ValidationFailed(
                'INVALID_TIME_RANGE',
                'Class end time must be after the start time.',
                {'class_start': class_start.strftime('%H:%M'), 'class_end': class_end.strftime('%H:%M')}
            )
        if duration < config['MIN_CLASS_DURATION_MINUTES']:
            raise ValidationFailed(
                'INVALID_TIME_RANGE',
                f"A class must last at least {config['MIN_CLASS_DURATION_MINUTES']} minutes; "
                f'this one lasts {duration}.',
                {'duration_minutes': duration, 'minimum_minutes': config['MIN_CLASS_DURATION_MINUTES']}
            )

        latitude, longitude = data['latitude'], data['longitude']
        radius = data.get('radius_meters', config['DEFAULT_GEOFENCE_RADIUS_METERS'])
        if not Validator.is_coordinate(latitude, longitude):
            raise ValidationFailed('INVALID_LOCATION', 'Latitude and longitude must be valid numbers.')
        if isinstance(radius, bool) or not isinstance(radius, (int, float)) or radius <= 0:
            raise ValidationFailed('INVALID_LOCATION', 'Radius must be a positive number of meters.')

        entry_start = data.get('entry_start') or config['DEFAULT_ENTRY_START']
        entry_end = data.get('entry_end') or config['DEFAULT_ENTRY_END']
        TimeWindow.validate_for_creation(class_date, class_start, class_end, entry_start, entry_end)

        settings = SessionSettings.from_dict(data.get('settings'))
        attendance_type = parse_enum(
            AttendanceType, data.get('attendance_type', AttendanceType.PHYSICAL.value),
            'INVALID_ATTENDANCE_TYPE', 'attendance_type'
        )

        course_code = data.get('course_code') or group.course_code
        course_title = data.get('course_title') or group.course_title
        if not course_code or not course_title:
            raise ValidationFailed(
                'MISSING_FIELDS',
                'Course code and title are required when the group does not define them.',
                {'missing': [name for name, value in
                             (('course_code', course_code), ('course_title', course_title)) if not value]}
            )

        schedule_id = data.get('schedule_id')
        existing = AttendanceService._find_duplicate(group.id, schedule_id, class_date, class_start)
        if existing:
            raise Conflict(
                'ATTENDANCE_EXISTS',
                f'Attendance already exists for this class on {class_date.isoformat()} '
                f"at {class_start.strftime('%H:%M')}.",
                {'attendance_id': existing.attendance_id}
            )

        session = AttendanceSession(
            attendance_id=AttendanceService.generate_attendance_id(group.id, now),
            group_id=group.id,
            schedule_id=str(schedule_id) if schedule_id is not None else None,
            course_code=course_code,
            course_title=course_title,
            lecturer_name=data.get('lecturer_name') or group.lecturer_name,
            lecturer_email=data.get('lecturer_email') or group.lecturer_email,
            class_date=class_date,
            class_start=class_start,
            class_end=class_end,
            entry_start=entry_start.strip(),
            entry_end=entry_end.strip(),
            latitude=float(latitude),
            longitude=float(longitude),
            radius_meters=int(radius),
            attendance_type=attendance_type,
            settings=settings.to_dict(),
            status=SessionStatus.UPCOMING,
            initialized=False,
            auto_end=bool(data.get('auto_end', True)),
            reopened=False,
            reopen_allowed_students=[],
            reopen_features={},
            created_by=str(created_by) if created_by is not None else None,
            notes=data.get('notes'),
            created_at=now,
            updated_at=now
        )
        for name in SUMMARY_FIELDS:
            setattr(session, name, 0)

        db.session.add(session)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = AttendanceService._find_duplicate(group.id, schedule_id, class_date, class_start)
            raise Conflict(
                'ATTENDANCE_EXISTS',
                'Attendance already exists for this class.',
                {'attendance_id': existing.attendance_id if existing else None}
            )

        logger.info('Attendance %s created for group %s on %s',
                    session.attendance_id, group.id, class_date.isoformat())

        if class_date == now.date():
            AttendanceService.activate(session, now)
        else:
            NotificationService.broadcast(
                group.id,
                f'Attendance for {course_code} scheduled on {class_date.isoformat()} '
                f"at {class_start.strftime('%H:%M')}.",
                link=session_link(session),
                related_id=session.id
            )
        return session

    @staticmethod
    def _find_duplicate(group_id, schedule_id, class_date, class_start) -> Optional[AttendanceSession]:
        query = AttendanceSession.query.filter_by(class_date=class_date, class_start=class_start)
        if schedule_id is not None:
            query = query.filter_by(schedule_id=str(schedule_id))
        else:
            query = query.filter_by(group_id=group_id)
        return query.first()

    @staticmethod
    def generate_attendance_id(group_id: int, now: datetime) -> str:
        """``attn_<yyyymmdd>_<last 5 of group id>_<3-digit daily counter>``."""
        prefix = f"attn_{now:%Y%m%d}_{str(group_id).zfill(5)[-5:]}_"
        latest = AttendanceSession.query.filter(
            AttendanceSession.attendance_id.like(f'{prefix}%')
        ).order_by(AttendanceSession.attendance_id.desc()).first()
        counter = int(latest.attendance_id[-3:]) + 1 if latest else 1
        return f'{prefix}{counter:03d}'

    # --------------------------------------------------------------- activation

    @staticmethod
    def seed_records(session: AttendanceSession, now: datetime) -> int:
        """Create one absent record per roster member that has none yet."""
        existing = {
            student_id for (student_id,) in db.session.query(StudentAttendanceRecord.student_id)
            .filter_by(session_id=session.id)
        }
        created = 0
        for member in RosterService.list_members(session.group_id):
            if member.role not in ROSTER_ROLES or member.student_id in existing:
                continue
            if session.created_at and member.joined_at and member.joined_at > session.created_at:
                record = RosterService.late_joiner_record(session, member, now)
            else:
                record = StudentAttendanceRecord(
                    session_id=session.id,
                    student_id=member.student_id,
                    name=member.name
                )
                record.log('record_created', 'activation', 'Absent record seeded on activation.', now)
            if record is None:
                continue
            db.session.add(record)
            existing.add(member.student_id)
            created += 1
        return created

    @staticmethod
    def activate(session: AttendanceSession, now: datetime) -> bool:
        """Flip an upcoming session to active and seed its records.

        Returns False when another worker already activated it.
        """
        claimed = AttendanceSession.query.filter_by(
            id=session.id, status=SessionStatus.UPCOMING, initialized=False
        ).update(
            {'status': SessionStatus.ACTIVE, 'initialized': True, 'updated_at': now},
            synchronize_session=False
        )
        if not claimed:
            db.session.rollback()
            return False

        created = AttendanceService.seed_records(session, now)
        db.session.flush()
        counters = tally(session.records.all())
        AttendanceSession.query.filter_by(id=session.id).update(
            counters, synchronize_session=False
        )
        db.session.commit()

        logger.info('Attendance %s activated with %d record(s)', session.attendance_id, created)
        NotificationService.broadcast(
            session.group_id,
            f'Attendance for {session.course_code} is now open.',
            link=session_link(session),
            type=NotificationType.ATTENDANCE,
            related_id=session.id
        )
        return True

    # ------------------------------------------------------------------ marking

    @staticmethod
    def resolve_record(session: AttendanceSession, student_id: str,
                       now: datetime) -> Tuple[StudentAttendanceRecord, bool]:
        """Existing record of the student, or a new one for a roster member.

        The boolean tells whether the record was created by this call.
        """
        record = StudentAttendanceRecord.query.filter_by(
            session_id=session.id, student_id=str(student_id)
        ).first()
        if record:
            return record, False

        member = RosterService.find_member(session.group_id, student_id)
        if not member or member.role not in ROSTER_ROLES:
            raise Forbidden(
                'NOT_ALLOWED_TO_MARK',
                'You are not on the roster of this class.'
            )

        if member.joined_at and session.created_at and member.joined_at > session.created_at:
            record = RosterService.late_joiner_record(session, member, now)
        else:
            record = StudentAttendanceRecord(
                session_id=session.id,
                student_id=member.student_id,
                name=member.name
            )
            record.log('record_created', 'normal', 'Record created on first mark.', now)
        db.session.add(record)
        return record, True

    @staticmethod
    def mark_entry(
        attendance_id: str,
        student_id: str,
        mode,
        method,
        now: datetime,
        location: Optional[Dict] = None,
        proof: Optional[str] = None,
        marked_by: MarkedBy = MarkedBy.STUDENT,
        device: Optional[Dict] = None
    ) -> Dict:
        """Record a check-in or check-out for one student.

        Every check runs before any field is written; the first failure is
        raised and nothing is persisted.
        """
        mode = parse_enum(MarkMode, mode, 'INVALID_MODE', 'mode')
        method = parse_enum(MarkMethod, method, 'INVALID_METHOD', 'method')
        location = Validator.parse_location(location)
        session = AttendanceService.get_session(attendance_id)

        if session.reopened:
            from rollcall.services.reopen_service import ReopenService
            return ReopenService.mark(
                session, student_id, method, now,
                location=location, proof=proof, marked_by=marked_by, device=device
            )

        if session.status == SessionStatus.UPCOMING:
            raise TemporalRejection(
                'ATTENDANCE_NOT_STARTED',
                f'Attendance for this class opens on {session.class_date.isoformat()}.',
                {'class_date': session.class_date.isoformat()}
            )
        if session.finalized_at is not None:
            raise TemporalRejection(
                'ATTENDANCE_CLOSED',
                'Attendance for this class is closed.',
                {'attempted_at': now.isoformat()}
            )
        settles_at = TimeWindow.settling_instant(session)
        if now > settles_at:
            raise TemporalRejection(
                'ATTENDANCE_CLOSED',
                f"Attendance for this class closed at {settles_at:%H:%M}.",
                {'attempted_at': now.isoformat(), 'closed_at': settles_at.isoformat()}
            )
        # A closed but unfinalized session only completes pairs already started
        if session.status == SessionStatus.CLOSED and mode == MarkMode.CHECK_IN:
            raise TemporalRejection(
                'ATTENDANCE_CLOSED',
                'Check-in for this class is closed.',
                {'attempted_at': now.isoformat()}
            )

        try:
            record, created = AttendanceService.resolve_record(session, student_id, now)
            before = tally([]) if created else contribution(record)

            if mode == MarkMode.CHECK_IN and record.has_checked_in:
                raise Conflict(
                    'ALREADY_CHECKED_IN',
                    'You have already checked in to this class.',
                    {'attendance_id': session.attendance_id, 'check_in_time': record.check_in_time.isoformat()}
                )
            if mode == MarkMode.CHECK_OUT:
                if not record.has_checked_in:
                    raise Conflict(
                        'CHECK_IN_REQUIRED',
                        'You must check in before checking out.',
                        {'attendance_id': session.attendance_id}
                    )
                if record.has_checked_out:
                    raise Conflict(
                        'ALREADY_CHECKED_OUT',
                        'You have already checked out of this class.',
                        {'attendance_id': session.attendance_id,
                         'check_out_time': record.check_out_time.isoformat()}
                    )

            window = TimeWindow.for_session(session)
            policy = session.policy
            SettingsEnforcer.enforce(mode, policy, window, now, record, proof=proof)

            geo = GPSService.evaluate_mark(method, location, session.location)
            if mode == MarkMode.CHECK_IN:
                flags = FlagService.detect(
                    now, window.entry_start, window.entry_end, method, geo.was_within_range, location
                )
                stamp_check_in(record, now, method, location, geo, window,
                               on_time_until=window.entry_start, proof=proof)
            else:
                opens_at, closes_at = TimeWindow.check_out_bounds(
                    window, policy.check_out_lead_minutes, policy.check_out_grace_minutes
                )
                flags = FlagService.detect(
                    now, opens_at, closes_at, method, geo.was_within_range, location
                )
                stamp_check_out(record, now, method, location, geo, window, opens_at)

            record.final_status = record_final_status(record)
            attach_device(record, marked_by, device)
            record.add_flags([flag.to_entry() for flag in flags], flagged_at=now, flagged_by='system')
            record.log(
                'check_in' if mode == MarkMode.CHECK_IN else 'check_out',
                'normal',
                f'{mode.value} by {marked_by.value} via {method.value}.',
                now,
                data={
                    'check_in_status': record.check_in_status.value,
                    'check_out_status': record.check_out_status.value,
                    'final_status': record.final_status.value,
                    'distance_from_class_meters': geo.distance_meters,
                    'flags': [flag.code.value for flag in flags]
                },
                created_by=marked_by.value
            )
            commit_record(record, before)
        except AttendanceError:
            db.session.rollback()
            raise

        logger.info('%s by %s in %s: %s', mode.value, record.student_id,
                    session.attendance_id, record.final_status.value)
        NotificationService.send(
            record.student_id,
            f'{"Check-in" if mode == MarkMode.CHECK_IN else "Check-out"} recorded for '
            f'{session.course_code}: {record.final_status.value}.',
            link=session_link(session),
            type=NotificationType.ATTENDANCE,
            related_id=session.id
        )
        return mark_outcome(record, flags, 'normal', geo.distance_meters)

    # ------------------------------------------------------------- finalization

    @staticmethod
    def finalize(attendance_id: str, now: datetime) -> Dict[str, int]:
        """Explicitly close a session and return its summary."""
        session = AttendanceService.get_session(attendance_id)
        if session.status == SessionStatus.UPCOMING:
            raise TemporalRejection(
                'ATTENDANCE_NOT_STARTED',
                'An attendance that has not started cannot be finalized.',
                {'class_date': session.class_date.isoformat()}
            )
        summary = AttendanceService.finalize_session(session, now)
        if summary is None:
            db.session.refresh(session)
            return session.summary_stats()
        return summary

    @staticmethod
    def finalize_session(session: AttendanceSession, now: datetime) -> Optional[Dict[str, int]]:
        """Close a session, lock unmarked students to absent and recount.

        Returns None when the session was already finalized.
        """
        claimed = AttendanceSession.query.filter(
            AttendanceSession.id == session.id,
            AttendanceSession.finalized_at.is_(None)
        ).update(
            {
                'finalized_at': now,
                'status': SessionStatus.CLOSED,
                'reopened': False,
                'updated_at': now
            },
            synchronize_session=False
        )
        if not claimed:
            db.session.rollback()
            return None

        records = session.records.all()
        forced = 0
        for record in records:
            if record.has_checked_in or record.check_in_status in ARRIVED:
                continue
            locked = record_final_status(record)
            if record.check_in_status == CheckInStatus.ABSENT and record.final_status == locked:
                continue
            record.check_in_status = CheckInStatus.ABSENT
            record.final_status = record_final_status(record)
            record.log('finalized', 'finalize', 'Locked to absent at session close.', now)
            forced += 1

        counters = tally(records)
        AttendanceSession.query.filter_by(id=session.id).update(
            counters, synchronize_session=False
        )
        try:
            db.session.commit()
        except StaleDataError:
            db.session.rollback()
            raise Conflict(
                'CONCURRENT_UPDATE',
                'Attendance records changed while finalizing. Please retry.',
                {'attendance_id': session.attendance_id}
            )

        logger.info('Attendance %s finalized: %s (%d forced absent)',
                    session.attendance_id, counters, forced)

        group = db.session.get(Group, session.group_id)
        if group:
            NotificationService.send(
                group.class_rep_id,
                f"Attendance for {session.course_code} on {session.class_date.isoformat()} closed: "
                f"{counters['total_present']} present, {counters['absent']} absent.",
                link=session_link(session),
                type=NotificationType.ATTENDANCE,
                related_id=session.id
            )
        return counters

    # -------------------------------------------------------------------- pleas

    @staticmethod
    def submit_plea(attendance_id: str, student_id: str, message: str, reasons: List[str],
                    now: datetime, proof_url: Optional[str] = None) -> StudentAttendanceRecord:
        session = AttendanceService.get_session(attendance_id)
        record = AttendanceService.get_record(session, student_id)

        if not message or not str(message).strip():
            raise ValidationFailed('MISSING_FIELDS', 'A plea message is required.', {'missing': ['message']})
        reasons = list(reasons or [])
        unknown = [reason for reason in reasons if reason not in PLEA_REASONS]
        if not reasons or unknown:
            raise ValidationFailed(
                'INVALID_PLEA_REASON',
                'Plea reasons must be chosen from the reason list.',
                {'unknown': unknown, 'allowed': list(PLEA_REASONS)}
            )
        if record.final_status == FinalStatus.PRESENT:
            raise Conflict('PLEA_NOT_NEEDED', 'You were marked present for this class.')
        if record.plea_status in (PleaStatus.PENDING, PleaStatus.APPROVED):
            raise Conflict(
                'PLEA_EXISTS',
                f'A plea for this class is already {record.plea_status.value}.',
                {'plea_status': record.plea_status.value}
            )

        before = contribution(record)
        record.plea_message = str(message).strip()
        record.plea_reasons = reasons
        record.plea_proof_url = proof_url
        record.plea_submitted_at = now
        record.plea_status = PleaStatus.PENDING
        record.plea_reviewed_at = None
        record.plea_reviewed_by = None
        record.plea_reviewer_note = None
        record.log('plea_submitted', 'plea', 'Plea submitted.', now,
                   data={'reasons': reasons}, created_by=str(student_id))
        commit_record(record, before)

        group = db.session.get(Group, session.group_id)
        if group:
            NotificationService.send(
                group.class_rep_id,
                f'{record.name or record.student_id} submitted a plea for {session.course_code}.',
                link=session_link(session),
                type=NotificationType.ATTENDANCE,
                related_id=session.id
            )
        return record

    @staticmethod
    def review_plea(attendance_id: str, student_id: str, decision: str, reviewer_id: str,
                    now: datetime, note: Optional[str] = None) -> StudentAttendanceRecord:
        """Approve or reject a pending plea and recount the record's contribution."""
        decision = parse_enum(PleaStatus, decision, 'INVALID_DECISION', 'decision')
        if decision == PleaStatus.PENDING:
            raise ValidationFailed('INVALID_DECISION', 'decision must be approved or rejected.')

        session = AttendanceService.get_session(attendance_id)
        record = AttendanceService.get_record(session, student_id)
        if record.plea_status != PleaStatus.PENDING:
            raise Conflict('NO_PENDING_PLEA', 'This record has no pending plea.')

        before = contribution(record)
        record.plea_status = decision
        record.plea_reviewed_at = now
        record.plea_reviewed_by = str(reviewer_id)
        record.plea_reviewer_note = note
        if decision == PleaStatus.APPROVED:
            record.final_status = record_final_status(record)
        record.log('plea_reviewed', 'plea', f'Plea {decision.value}.', now,
                   data={'final_status': record.final_status.value}, created_by=str(reviewer_id))
        commit_record(record, before)

        NotificationService.send(
            record.student_id,
            f'Your plea for {session.course_code} was {decision.value}.',
            link=session_link(session),
            type=NotificationType.ATTENDANCE,
            related_id=session.id
        )
        return record

    # -------------------------------------------------------------- flag review

    @staticmethod
    def dismiss_flags(attendance_id: str, student_id: str, reviewer_id: str,
                      now: datetime, note: Optional[str] = None) -> StudentAttendanceRecord:
        session = AttendanceService.get_session(attendance_id)
        record = AttendanceService.get_record(session, student_id)
        if not record.is_flagged:
            raise Conflict('NOT_FLAGGED', 'This record has no active flags.')

        before = contribution(record)
        record.is_flagged = False
        record.flag_status = 'dismissed'
        record.log('flags_dismissed', 'review', note or 'Flags dismissed.', now,
                   data={'flags': [entry.get('type') for entry in record.flags or []]},
                   created_by=str(reviewer_id))
        commit_record(record, before)
        return record

    # ----------------------------------------------------------------- deletion

    @staticmethod
    def delete_session(attendance_id: str) -> None:
        """Delete a session together with its student records."""
        session = AttendanceService.get_session(attendance_id)
        records = session.records.all()
        for record in records:
            db.session.delete(record)
        removed = len(records)
        session.delete()
        logger.info('Attendance %s deleted with %d record(s)', attendance_id, removed)
