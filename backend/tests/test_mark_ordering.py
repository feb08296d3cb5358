"""Randomized call orderings never produce a check-out without a check-in."""
import random

import pytest

from conftest import at, mark
from rollcall import db
from rollcall.models.student_record import StudentAttendanceRecord
from rollcall.services.status_resolver import tally
from rollcall.utils.errors import Conflict

STUDENT_IDS = ['stu-1', 'stu-2', 'stu-3']

@pytest.mark.parametrize('seed', [7, 42, 2025])
def test_random_orderings_keep_mark_pairs_consistent(active_session, seed):
    rng = random.Random(seed)
    minute = 0
    rejections = {'CHECK_IN_REQUIRED': 0, 'ALREADY_CHECKED_IN': 0, 'ALREADY_CHECKED_OUT': 0}

    for _ in range(30):
        minute += rng.randint(0, 4)
        student_id = rng.choice(STUDENT_IDS)
        mode = rng.choice(['checkIn', 'checkOut'])
        before = StudentAttendanceRecord.query.filter_by(
            session_id=active_session.id, student_id=student_id
        ).one()
        had_check_in = before.check_in_time is not None

        try:
            mark(active_session, student_id, mode, at(8 + minute // 60, minute % 60))
        except Conflict as error:
            rejections[error.code] += 1
            if error.code == 'CHECK_IN_REQUIRED':
                assert not had_check_in
            continue

        if mode == 'checkOut':
            assert had_check_in

    db.session.expire_all()
    records = StudentAttendanceRecord.query.filter_by(session_id=active_session.id).all()
    for record in records:
        if record.check_out_time is not None:
            assert record.check_in_time is not None
            assert record.check_in_time <= record.check_out_time

    db.session.refresh(active_session)
    assert active_session.summary_stats() == tally(records)
