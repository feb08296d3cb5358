"""Tests for the reopen pathway."""

import pytest

from conftest import REP_ID, at, mark
from rollcall import db
from rollcall.models.attendance_session import SessionStatus
from rollcall.models.student_record import (
    CheckInStatus, CheckOutStatus, FinalStatus, StudentAttendanceRecord
)
from rollcall.services.attendance_service import AttendanceService
from rollcall.services.lifecycle_scheduler import LifecycleScheduler
from rollcall.services.reopen_service import ReopenService
from rollcall.services.roster_service import RosterService
from rollcall.services.status_resolver import tally
from rollcall.utils.errors import Conflict, Forbidden, TemporalRejection, ValidationFailed

def record_of(session, student_id):
    return StudentAttendanceRecord.query.filter_by(session_id=session.id, student_id=student_id).one()

@pytest.fixture
def closed_session(active_session):
    """Closed at 09:00: stu-1 completed a pair, stu-2 only checked in, stu-3 never came."""
    mark(active_session, 'stu-1', 'checkIn', at(8, 10))
    mark(active_session, 'stu-1', 'checkOut', at(8, 50))
    mark(active_session, 'stu-2', 'checkIn', at(8, 20))
    AttendanceService.finalize(active_session.attendance_id, at(9, 0))
    db.session.refresh(active_session)
    return active_session

def reopen(session, when, duration='0H30M', strategy='custom', students=('stu-2', 'stu-3'), **kwargs):
    return ReopenService.reopen(session, duration, strategy, when, students=list(students),
                                actor_id=REP_ID, **kwargs)

def test_reopen_caps_expiry_at_class_end(closed_session):
    result = reopen(closed_session, at(9, 40), duration='1H0M')

    assert result['reopened_until'] == at(10, 0).isoformat()
    db.session.refresh(closed_session)
    assert closed_session.status == SessionStatus.ACTIVE
    assert closed_session.reopened is True
    assert closed_session.reopened_until == at(10, 0)
    assert closed_session.finalized_at is None
    assert closed_session.entry_end == '2H0M'

def test_reopen_keeps_nominal_window_when_not_elapsed(closed_session):
    result = reopen(closed_session, at(9, 0), duration='0H15M')
    assert result['reopened_until'] == at(9, 15).isoformat()
    assert result['entry_end'] == '1H30M'

def test_all_strategy_takes_students_with_complete_pairs(closed_session):
    result = reopen(closed_session, at(9, 0), strategy='all', students=())
    assert result['allowed_students'] == ['stu-1']

@pytest.mark.parametrize('duration', ['soon', '0H0M', 0, '3H0M'])
def test_invalid_duration(closed_session, duration):
    with pytest.raises(ValidationFailed) as exc:
        reopen(closed_session, at(9, 0), duration=duration)
    assert exc.value.code == 'INVALID_DURATION'

def test_reopen_rejections(active_session, closed_session):
    with pytest.raises(TemporalRejection) as exc:
        reopen(closed_session, at(10, 5))
    assert exc.value.code == 'REOPEN_WINDOW_ELAPSED'

    with pytest.raises(ValidationFailed) as exc:
        reopen(closed_session, at(9, 0), students=('stu-2', 'ghost'))
    assert exc.value.code == 'UNKNOWN_STUDENTS'

    with pytest.raises(ValidationFailed) as exc:
        reopen(closed_session, at(9, 0), strategy='everyone')
    assert exc.value.code == 'INVALID_STRATEGY'

def test_running_session_cannot_be_reopened(make_session):
    session = make_session(schedule_id='sched-running')
    with pytest.raises(Conflict) as exc:
        reopen(session, at(9, 0))
    assert exc.value.code == 'ALREADY_ACTIVE'

def test_fresh_pair_for_never_marked_student(closed_session):
    reopen(closed_session, at(9, 0))
    outcome = mark(closed_session, 'stu-3', 'checkIn', at(9, 10))

    assert outcome['pathway'] == 'reopen'
    assert outcome['final_status'] == 'present'
    record = record_of(closed_session, 'stu-3')
    assert record.check_in_status == CheckInStatus.LATE
    assert record.check_out_status == CheckOutStatus.LEFT_EARLY
    assert record.check_in_time == record.check_out_time == at(9, 10)
    assert record.duration_minutes == 0
    assert record.history[-1]['pathway'] == 'reopen'
    assert record.history[-1]['type'] == 'reopen_fresh_pair'

    db.session.refresh(closed_session)
    assert closed_session.summary_stats() == tally(closed_session.records.all())

def test_absent_handling_as_computed(closed_session):
    reopen(closed_session, at(9, 0), features={'absentHandling': 'as_computed'})
    outcome = mark(closed_session, 'stu-3', 'checkIn', at(9, 10))
    assert outcome['final_status'] == 'partial'

def test_late_check_out_for_checked_in_student(closed_session):
    reopen(closed_session, at(9, 0))
    outcome = mark(closed_session, 'stu-2', 'checkOut', at(9, 20))

    assert outcome['check_out_status'] == 'on_time'
    assert outcome['final_status'] == 'partial'
    assert outcome['duration_minutes'] == 60
    assert record_of(closed_session, 'stu-2').history[-1]['type'] == 'reopen_check_out'

def test_partial_handling_forces_present(closed_session):
    reopen(closed_session, at(9, 0), features={'partialHandling': 'present'})
    outcome = mark(closed_session, 'stu-2', 'checkOut', at(9, 20))
    assert outcome['final_status'] == 'present'

def test_denied_shapes(closed_session):
    reopen(closed_session, at(9, 0), features={
        'allowFreshCheckInOut': False, 'allowCheckOutForCheckedIn': False
    })
    with pytest.raises(Forbidden) as exc:
        mark(closed_session, 'stu-3', 'checkIn', at(9, 5))
    assert exc.value.code == 'REOPEN_FRESH_DENIED'

    with pytest.raises(Forbidden) as exc:
        mark(closed_session, 'stu-2', 'checkOut', at(9, 5))
    assert exc.value.code == 'REOPEN_CHECKOUT_DENIED'

def test_require_geo(closed_session):
    reopen(closed_session, at(9, 0), features={'requireGeo': True})
    with pytest.raises(Forbidden) as exc:
        mark(closed_session, 'stu-3', 'checkIn', at(9, 5), location={'latitude': 6.6018, 'longitude': 3.3515})
    assert exc.value.code == 'REOPEN_GEO_REJECTED'
    assert record_of(closed_session, 'stu-3').check_in_time is None

def test_third_call_is_already_complete(closed_session):
    reopen(closed_session, at(9, 0))
    mark(closed_session, 'stu-3', 'checkIn', at(9, 5))
    with pytest.raises(Conflict) as exc:
        mark(closed_session, 'stu-3', 'checkOut', at(9, 6))
    assert exc.value.code == 'REOPEN_ALREADY_COMPLETE'

def test_allow_list_is_enforced_before_expiry(closed_session):
    reopen(closed_session, at(9, 0))

    for when in (at(9, 10), at(9, 45)):
        with pytest.raises(Forbidden) as exc:
            mark(closed_session, 'stu-1', 'checkIn', when)
        assert exc.value.code == 'REOPEN_FORBIDDEN'
        assert 'stu-2' not in exc.value.message

    with pytest.raises(TemporalRejection) as exc:
        mark(closed_session, 'stu-3', 'checkIn', at(9, 31))
    assert exc.value.code == 'REOPEN_EXPIRED'

def test_minimum_presence_ignored_on_reopen(make_session):
    session = make_session(schedule_id='sched-min', settings={'minimumPresenceDuration': 45})
    mark(session, 'stu-1', 'checkIn', at(8, 10))
    AttendanceService.finalize(session.attendance_id, at(8, 20))
    ReopenService.reopen(session, '0H30M', 'custom', at(8, 25), students=['stu-1'])

    outcome = mark(session, 'stu-1', 'checkOut', at(8, 30))
    assert outcome['duration_minutes'] == 20

def test_reopened_session_closes_and_refinalizes(closed_session):
    reopen(closed_session, at(9, 0))
    mark(closed_session, 'stu-3', 'checkIn', at(9, 10))

    closed = LifecycleScheduler.close_expired(at(9, 31))
    assert closed.processed == 1
    db.session.refresh(closed_session)
    assert closed_session.status == SessionStatus.CLOSED
    assert closed_session.reopened is False

    assert LifecycleScheduler.finalize_due(at(9, 31)).processed == 0
    assert LifecycleScheduler.finalize_due(at(10, 16)).processed == 1

    db.session.refresh(closed_session)
    assert closed_session.finalized_at == at(10, 16)
    assert record_of(closed_session, 'stu-3').final_status == FinalStatus.PRESENT
    assert closed_session.absent == 0
    assert closed_session.total_present == 3

def test_all_strategy_marks_are_already_complete(closed_session):
    reopen(closed_session, at(9, 0), strategy='all', students=())
    with pytest.raises(Conflict) as exc:
        mark(closed_session, 'stu-1', 'checkIn', at(9, 5))
    assert exc.value.code == 'REOPEN_ALREADY_COMPLETE'
    assert record_of(closed_session, 'stu-1').check_out_time == at(8, 50)

def test_selfie_proof_still_required_on_reopen(make_session):
    session = make_session(schedule_id='sched-selfie', settings={'proofRequirement': 'selfie'})
    AttendanceService.finalize(session.attendance_id, at(9, 0))
    ReopenService.reopen(session, '0H30M', 'custom', at(9, 0), students=['stu-3'])

    with pytest.raises(ValidationFailed) as exc:
        mark(session, 'stu-3', 'checkIn', at(9, 5))
    assert exc.value.code == 'PROOF_REQUIRED'
    assert record_of(session, 'stu-3').check_in_time is None

    outcome = mark(session, 'stu-3', 'checkIn', at(9, 6), proof='selfie-ref')
    assert outcome['final_status'] == 'present'
    assert record_of(session, 'stu-3').check_in_proof == 'selfie-ref'

def test_reopen_without_check_out(make_session):
    session = make_session(schedule_id='sched-in-only', settings={'enableCheckInOut': False})
    mark(session, 'stu-1', 'checkIn', at(8, 10))
    AttendanceService.finalize(session.attendance_id, at(9, 0))
    ReopenService.reopen(session, '0H30M', 'custom', at(9, 0), students=['stu-1', 'stu-3'])

    with pytest.raises(Forbidden) as exc:
        mark(session, 'stu-1', 'checkOut', at(9, 5))
    assert exc.value.code == 'CHECK_OUT_DISABLED'

    mark(session, 'stu-3', 'checkIn', at(9, 10))
    record = record_of(session, 'stu-3')
    assert record.check_in_status == CheckInStatus.LATE
    assert record.check_out_time is None
    assert record.final_status == FinalStatus.PRESENT
    assert record.history[-1]['type'] == 'reopen_check_in'

    db.session.refresh(session)
    assert session.summary_stats() == tally(session.records.all())

def test_late_joiner_still_rejected_on_reopen(make_session, group):
    session = make_session(schedule_id='sched-joiners', settings={'allowLateJoiners': False})
    RosterService.add_member(group.id, 'stu-4', 'Dayo Ola', at(8, 15))
    AttendanceService.finalize(session.attendance_id, at(9, 0))
    ReopenService.reopen(session, '0H30M', 'custom', at(9, 0), students=['stu-4'])

    with pytest.raises(Forbidden) as exc:
        mark(session, 'stu-4', 'checkIn', at(9, 5))
    assert exc.value.code == 'LATE_JOINER_NOT_ALLOWED'

def test_reopen_after_scheduled_close(active_session):
    mark(active_session, 'stu-1', 'checkIn', at(8, 10))
    assert LifecycleScheduler.close_expired(at(9, 31)).processed == 1

    result = reopen(active_session, at(9, 40), students=('stu-3',))
    assert result['reopened_until'] == at(10, 0).isoformat()

    outcome = mark(active_session, 'stu-3', 'checkIn', at(9, 45))
    assert outcome['pathway'] == 'reopen'
    assert record_of(active_session, 'stu-3').check_in_time == at(9, 45)

def test_running_session_can_be_reopened_after_check_in_closes(make_session):
    session = make_session(schedule_id='sched-running')
    result = reopen(session, at(9, 40), students=('stu-3',))

    assert result['reopened_until'] == at(10, 0).isoformat()
    db.session.refresh(session)
    assert session.reopened is True
