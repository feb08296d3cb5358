"""Reopen pathway: time-boxed marking for an allow-list after normal closure."""
import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from flask import current_app

from rollcall import db
from rollcall.models.attendance_session import AttendanceSession, SessionStatus
from rollcall.models.notification import NotificationType
from rollcall.models.policies import ReopenFeatures, StatusHandling
from rollcall.models.student_record import (
    CheckInStatus, CheckOutStatus, FinalStatus, MarkMethod, MarkMode, MarkedBy, PleaStatus,
    StudentAttendanceRecord
)
from rollcall.services.flag_service import FlagService
from rollcall.services.gps_service import GPSService
from rollcall.services.notification_service import NotificationService
from rollcall.services.settings_enforcer import SettingsEnforcer
from rollcall.services.record_marks import (
    attach_device, commit_record, mark_outcome, stamp_check_in, stamp_check_out
)
from rollcall.services.status_resolver import contribution, record_final_status, tally
from rollcall.services.time_window import TimeWindow, format_offset, minutes_between, parse_offset
from rollcall.utils.errors import (
    AttendanceError, Conflict, Forbidden, TemporalRejection, ValidationFailed
)

logger = logging.getLogger(__name__)

STRATEGIES = ('all', 'custom')

HANDLING_STATUS = {
    StatusHandling.PRESENT: FinalStatus.PRESENT,
    StatusHandling.PARTIAL: FinalStatus.PARTIAL,
}

def _handled_status(record: StudentAttendanceRecord, handling: StatusHandling,
                    control: bool) -> FinalStatus:
    """Final status under a reopen handling rule; an approved plea still wins."""
    if record.plea_status == PleaStatus.APPROVED:
        return FinalStatus.EXCUSED
    if control and handling in HANDLING_STATUS:
        return HANDLING_STATUS[handling]
    return record_final_status(record)

class ReopenService:
    """Service for reopening closed sessions to a subset of students."""

    @staticmethod
    def parse_duration(value) -> int:
        """Minutes from ``<h>H<m>M`` or a positive integer."""
        if isinstance(value, bool):
            minutes = None
        elif isinstance(value, int):
            minutes = value
        else:
            minutes = parse_offset(str(value or '').strip().upper())
        if not minutes or minutes <= 0:
            raise ValidationFailed(
                'INVALID_DURATION',
                f'Reopen duration "{value}" must be a positive <hours>H<minutes>M value.'
            )
        return minutes

    @staticmethod
    def eligible_students(session: AttendanceSession, strategy: str,
                          students: Optional[Iterable[str]] = None) -> List[str]:
        """Resolve the allow-list for a reopen request."""
        if strategy not in STRATEGIES:
            raise ValidationFailed(
                'INVALID_STRATEGY',
                f"strategy must be one of: {', '.join(STRATEGIES)}."
            )

        if strategy == 'all':
            records = session.records.filter(
                StudentAttendanceRecord.check_in_time.isnot(None),
                StudentAttendanceRecord.check_out_time.isnot(None)
            )
            return sorted(record.student_id for record in records)

        requested = sorted({str(student_id) for student_id in (students or []) if student_id})
        if not requested:
            raise ValidationFailed(
                'MISSING_FIELDS',
                'A custom reopen needs at least one student.',
                {'missing': ['students']}
            )
        known = {
            student_id for (student_id,) in db.session.query(StudentAttendanceRecord.student_id)
            .filter(StudentAttendanceRecord.session_id == session.id,
                    StudentAttendanceRecord.student_id.in_(requested))
        }
        unknown = [student_id for student_id in requested if student_id not in known]
        if unknown:
            raise ValidationFailed(
                'UNKNOWN_STUDENTS',
                'Some students have no record in this attendance.',
                {'unknown': unknown}
            )
        return requested

    @staticmethod
    def reopen(
        session: AttendanceSession,
        duration,
        strategy: str,
        now: datetime,
        students: Optional[Iterable[str]] = None,
        features: Optional[Dict] = None,
        actor_id: Optional[str] = None
    ) -> Dict:
        """Open a closed (or still running) session for a capped extension.

        The extension ends at ``min(now + duration, class end)``.
        """
        minutes = ReopenService.parse_duration(duration)
        cap = current_app.config['MAX_REOPEN_MINUTES']
        if minutes > cap:
            raise ValidationFailed(
                'INVALID_DURATION',
                f'Reopen duration is capped at {format_offset(cap)}; {format_offset(minutes)} was requested.',
                {'requested_minutes': minutes, 'maximum_minutes': cap}
            )

        if session.status == SessionStatus.UPCOMING:
            raise TemporalRejection(
                'ATTENDANCE_NOT_STARTED',
                'An attendance that has not started cannot be reopened.',
                {'class_date': session.class_date.isoformat()}
            )
        window = TimeWindow.for_session(session)
        # Still-running sessions can be reopened once check-in has closed
        if (session.status == SessionStatus.ACTIVE and not session.reopened
                and now <= TimeWindow.closing_instant(session, window)):
            raise Conflict(
                'ALREADY_ACTIVE',
                'This attendance is still open.',
                {'attendance_id': session.attendance_id}
            )

        until = min(now + timedelta(minutes=minutes), window.class_end)
        if until <= now:
            raise TemporalRejection(
                'REOPEN_WINDOW_ELAPSED',
                f'Class ended at {window.class_end:%H:%M}; there is no time left to reopen.',
                {'attempted_at': now.isoformat(), 'class_end': window.class_end.isoformat()}
            )

        reopen_features = ReopenFeatures.from_dict(features)
        allowed = ReopenService.eligible_students(session, strategy, students)
        if not allowed:
            raise ValidationFailed(
                'NO_ELIGIBLE_STUDENTS',
                'No students are eligible for this reopen.',
                {'strategy': strategy}
            )

        # Widen the nominal window so it covers the extension
        entry_end = session.entry_end
        if until > window.entry_end:
            entry_end = format_offset(minutes_between(window.class_start, until))

        changed = AttendanceSession.query.filter(
            AttendanceSession.id == session.id,
            AttendanceSession.status == session.status
        ).update(
            {
                'status': SessionStatus.ACTIVE,
                'reopened': True,
                'reopened_at': now,
                'reopened_until': until,
                'reopen_allowed_students': allowed,
                'reopen_features': reopen_features.to_dict(),
                'entry_end': entry_end,
                'finalized_at': None,
                'updated_at': now
            },
            synchronize_session=False
        )
        if not changed:
            db.session.rollback()
            raise Conflict(
                'CONCURRENT_UPDATE',
                'This attendance changed while reopening. Please retry.',
                {'attendance_id': session.attendance_id}
            )
        db.session.commit()

        logger.info('Attendance %s reopened until %s for %d student(s) by %s',
                    session.attendance_id, until.isoformat(), len(allowed), actor_id)

        for student_id in allowed:
            NotificationService.send(
                student_id,
                f'Attendance for {session.course_code} reopened until {until:%H:%M}.',
                link=f'/attendance/{session.attendance_id}',
                type=NotificationType.ATTENDANCE,
                related_id=session.id,
                sender_id=actor_id
            )

        return {
            'attendance_id': session.attendance_id,
            'reopened': True,
            'reopened_until': until.isoformat(),
            'entry_end': entry_end,
            'allowed_students': allowed,
            'features': reopen_features.to_dict()
        }

    @staticmethod
    def mark(
        session: AttendanceSession,
        student_id: str,
        method: MarkMethod,
        now: datetime,
        location: Optional[Dict] = None,
        proof: Optional[str] = None,
        marked_by: MarkedBy = MarkedBy.STUDENT,
        device: Optional[Dict] = None
    ) -> Dict:
        """Mark through the reopen pathway.

        The record's state picks the shape: a never-marked student gets a
        check-in and check-out in one step, a checked-in student completes
        the check-out.
        """
        student_id = str(student_id)
        if student_id not in (session.reopen_allowed_students or []):
            raise Forbidden(
                'REOPEN_FORBIDDEN',
                'You are not allowed to mark attendance during this reopen.'
            )
        if not session.is_reopen_active(now):
            raise TemporalRejection(
                'REOPEN_EXPIRED',
                f'The reopen window closed at {session.reopened_until:%H:%M}.',
                {'attempted_at': now.isoformat(), 'reopened_until': session.reopened_until.isoformat()}
            )

        from rollcall.services.attendance_service import AttendanceService

        features = session.reopen_policy
        try:
            record, created = AttendanceService.resolve_record(session, student_id, now)
            before = tally([]) if created else contribution(record)

            if record.has_checked_in and record.has_checked_out:
                raise Conflict(
                    'REOPEN_ALREADY_COMPLETE',
                    'You have already checked in and checked out.',
                    {'attendance_id': session.attendance_id}
                )

            fresh = not record.has_checked_in
            if fresh and not features.allow_fresh_check_in_out:
                raise Forbidden(
                    'REOPEN_FRESH_DENIED',
                    'Fresh check-in and check-out are not allowed during this reopen.'
                )
            if not fresh and not features.allow_check_out_for_checked_in:
                raise Forbidden(
                    'REOPEN_CHECKOUT_DENIED',
                    'Late check-out is not allowed during this reopen.'
                )

            window = TimeWindow.for_session(session)
            policy = session.policy
            # Without check-out a fresh pair is a lone late check-in
            pair = policy.enable_check_in_out
            if fresh:
                SettingsEnforcer.enforce(MarkMode.CHECK_IN, policy, window, now, record,
                                         proof=proof, reopened=True)
            if pair or not fresh:
                SettingsEnforcer.enforce(MarkMode.CHECK_OUT, policy, window, now, record,
                                         reopened=True)

            geo = GPSService.evaluate_mark(method, location, session.location)
            if features.require_geo and geo.was_within_range is not True:
                raise Forbidden(
                    'REOPEN_GEO_REJECTED',
                    'This reopen requires you to be within the class radius.',
                    {'distance_from_class_meters': geo.distance_meters}
                )

            flags = FlagService.detect(
                now, window.entry_start, window.entry_end, method, geo.was_within_range, location
            )

            if fresh:
                stamp_check_in(record, now, method, location, geo, window,
                               on_time_until=window.entry_start, proof=proof)
                record.check_in_status = CheckInStatus.LATE
                if pair:
                    record.check_out_time = now
                    record.check_out_method = method
                    record.check_out_latitude = record.check_in_latitude
                    record.check_out_longitude = record.check_in_longitude
                    record.check_out_distance_meters = geo.distance_meters
                    record.check_out_verified = record.check_in_verified
                    record.check_out_status = CheckOutStatus.LEFT_EARLY
                    record.departure_delta_minutes = minutes_between(now, window.class_end)
                    record.duration_minutes = 0
                    event, description = 'reopen_fresh_pair', 'Fresh check-in and check-out during reopen.'
                else:
                    event, description = 'reopen_check_in', 'Late check-in during reopen.'
                record.final_status = _handled_status(
                    record, features.absent_handling, features.enable_final_status_control
                )
            else:
                stamp_check_out(record, now, method, location, geo, window, check_out_opens_at=now)
                record.check_out_status = (
                    CheckOutStatus.ON_TIME if now <= window.class_end else CheckOutStatus.LEFT_EARLY
                )
                record.final_status = _handled_status(
                    record, features.partial_handling, features.enable_final_status_control
                )
                event, description = 'reopen_check_out', 'Late check-out during reopen.'

            attach_device(record, marked_by, device)
            record.add_flags([flag.to_entry() for flag in flags], flagged_at=now, flagged_by='system')
            record.log(
                event, 'reopen', description, now,
                data={
                    'check_in_status': record.check_in_status.value,
                    'check_out_status': record.check_out_status.value,
                    'final_status': record.final_status.value,
                    'duration_minutes': record.duration_minutes,
                    'reopened_until': session.reopened_until.isoformat() if session.reopened_until else None
                },
                created_by=marked_by.value
            )
            commit_record(record, before)
        except AttendanceError:
            db.session.rollback()
            raise

        logger.info('Reopen mark by %s in %s: %s', student_id, session.attendance_id,
                    record.final_status.value)
        return mark_outcome(record, flags, 'reopen', geo.distance_meters)
