"""Stamping marks onto student records and keeping session counters in step."""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from rollcall import db
from rollcall.models.attendance_session import AttendanceSession
from rollcall.models.student_record import (
    CheckInStatus, CheckOutStatus, MarkMethod, MarkedBy, StudentAttendanceRecord
)
from rollcall.services.flag_service import Flag
from rollcall.services.gps_service import MarkGeoResult
from rollcall.services.status_resolver import contribution, contribution_delta
from rollcall.services.time_window import EntryWindow, minutes_between
from rollcall.utils.errors import Conflict

logger = logging.getLogger(__name__)

def stamp_check_in(record: StudentAttendanceRecord, now: datetime, method: MarkMethod,
                   location: Optional[Dict], geo: MarkGeoResult, window: EntryWindow,
                   on_time_until: datetime, proof: Optional[str] = None) -> None:
    """Write the check-in half and derive its status."""
    record.check_in_time = now
    record.check_in_method = method
    record.check_in_latitude = location['latitude'] if location else None
    record.check_in_longitude = location['longitude'] if location else None
    record.check_in_distance_meters = geo.distance_meters
    record.check_in_proof = proof
    record.was_within_range = geo.was_within_range
    record.check_in_verified = geo.was_within_range is True
    record.arrival_delta_minutes = minutes_between(window.class_start, now)
    record.check_in_status = CheckInStatus.ON_TIME if now <= on_time_until else CheckInStatus.LATE

def stamp_check_out(record: StudentAttendanceRecord, now: datetime, method: MarkMethod,
                    location: Optional[Dict], geo: MarkGeoResult, window: EntryWindow,
                    check_out_opens_at: datetime) -> None:
    """Write the check-out half and derive its status."""
    record.check_out_time = now
    record.check_out_method = method
    record.check_out_latitude = location['latitude'] if location else None
    record.check_out_longitude = location['longitude'] if location else None
    record.check_out_distance_meters = geo.distance_meters
    record.check_out_verified = geo.was_within_range is True
    if geo.was_within_range is False:
        record.was_within_range = False
    record.departure_delta_minutes = minutes_between(now, window.class_end)
    record.duration_minutes = (
        minutes_between(record.check_in_time, now) if record.check_in_time else 0
    )
    record.check_out_status = (
        CheckOutStatus.ON_TIME if now >= check_out_opens_at else CheckOutStatus.LEFT_EARLY
    )

def attach_device(record: StudentAttendanceRecord, marked_by: MarkedBy, device: Optional[Dict]) -> None:
    device = device or {}
    record.marked_by = marked_by
    record.device_ip = device.get('ip')
    record.device_user_agent = (device.get('user_agent') or '')[:255] or None
    if marked_by == MarkedBy.REP:
        record.verified_by_rep = True

def apply_summary_delta(session_id: int, before: Dict[str, int], after: Dict[str, int]) -> Dict[str, int]:
    """Shift the session counters by the change in one record's contribution.

    Counters move with ``column = column + delta`` so concurrent marks for
    different students never lose each other's updates.
    """
    delta = contribution_delta(before, after)
    if delta:
        AttendanceSession.query.filter_by(id=session_id).update(
            {
                getattr(AttendanceSession, name): getattr(AttendanceSession, name) + value
                for name, value in delta.items()
            },
            synchronize_session=False
        )
    return delta

def commit_record(record: StudentAttendanceRecord, before: Dict[str, int]) -> Dict[str, int]:
    """Persist a record mutation together with its counter delta.

    A lost race on the same record (a stale version, or a second insert for
    the same student) surfaces as ``CONCURRENT_UPDATE``.
    """
    session_id, student_id = record.session_id, record.student_id
    try:
        delta = apply_summary_delta(session_id, before, contribution(record))
        db.session.commit()
    except (StaleDataError, IntegrityError):
        db.session.rollback()
        logger.warning('Concurrent update on record %s-%s', session_id, student_id)
        raise Conflict(
            'CONCURRENT_UPDATE',
            'This attendance record was changed by another request. Please retry.',
            {'student_id': student_id}
        )
    return delta

def mark_outcome(record: StudentAttendanceRecord, flags: List[Flag], pathway: str,
                 distance: Optional[int]) -> Dict:
    """Result returned to the caller after a successful mark."""
    return {
        'student_id': record.student_id,
        'pathway': pathway,
        'check_in_status': record.check_in_status.value,
        'check_out_status': record.check_out_status.value,
        'final_status': record.final_status.value,
        'check_in_time': record.check_in_time.isoformat() if record.check_in_time else None,
        'check_out_time': record.check_out_time.isoformat() if record.check_out_time else None,
        'arrival_delta_minutes': record.arrival_delta_minutes,
        'departure_delta_minutes': record.departure_delta_minutes,
        'duration_minutes': record.duration_minutes,
        'distance_from_class_meters': distance,
        'was_within_range': record.was_within_range,
        'flags': [flag.to_entry() for flag in flags]
    }
