"""Tests for final-status derivation and summary contributions."""
import itertools
from types import SimpleNamespace

import pytest

from rollcall.models.student_record import CheckInStatus, CheckOutStatus, FinalStatus, PleaStatus
from rollcall.services.status_resolver import contribution, contribution_delta, resolve_final_status, tally

@pytest.mark.parametrize('check_in,check_out,expected', [
    (CheckInStatus.ABSENT, CheckOutStatus.MISSED, FinalStatus.ABSENT),
    (CheckInStatus.ON_TIME, CheckOutStatus.ON_TIME, FinalStatus.PRESENT),
    (CheckInStatus.LATE, CheckOutStatus.ON_TIME, FinalStatus.PARTIAL),
    (CheckInStatus.ON_TIME, CheckOutStatus.MISSED, FinalStatus.PARTIAL),
    (CheckInStatus.LATE, CheckOutStatus.MISSED, FinalStatus.PARTIAL),
    (CheckInStatus.ON_TIME, CheckOutStatus.LEFT_EARLY, FinalStatus.PARTIAL),
    (CheckInStatus.LATE, CheckOutStatus.LEFT_EARLY, FinalStatus.PARTIAL),
    (CheckInStatus.ABSENT, CheckOutStatus.ON_TIME, FinalStatus.PARTIAL),
    (CheckInStatus.MISSED, CheckOutStatus.LEFT_EARLY, FinalStatus.PARTIAL),
    (CheckInStatus.MISSED, CheckOutStatus.MISSED, FinalStatus.ABSENT),
])
def test_branch_table(check_in, check_out, expected):
    assert resolve_final_status(check_in, check_out) == expected
    assert resolve_final_status(check_in, check_out, PleaStatus.PENDING) == expected
    assert resolve_final_status(check_in, check_out, PleaStatus.REJECTED) == expected

def test_approved_plea_always_excuses():
    for check_in, check_out in itertools.product(CheckInStatus, CheckOutStatus):
        assert resolve_final_status(check_in, check_out, PleaStatus.APPROVED) == FinalStatus.EXCUSED

def record(check_in, check_out, plea=None):
    return SimpleNamespace(
        check_in_status=check_in,
        check_out_status=check_out,
        plea_status=plea,
        final_status=resolve_final_status(check_in, check_out, plea)
    )

def test_contribution_and_delta():
    before = contribution(record(CheckInStatus.ABSENT, CheckOutStatus.MISSED))
    after = contribution(record(CheckInStatus.LATE, CheckOutStatus.MISSED))

    assert before == {'total_present': 0, 'on_time': 0, 'late': 0,
                      'left_early': 0, 'absent': 1, 'with_plea': 0}
    assert contribution_delta(before, after) == {'total_present': 1, 'late': 1, 'absent': -1}
    assert contribution_delta(after, after) == {}

def test_tally_counts_each_record_once():
    records = [
        record(CheckInStatus.ON_TIME, CheckOutStatus.ON_TIME),
        record(CheckInStatus.LATE, CheckOutStatus.LEFT_EARLY),
        record(CheckInStatus.ABSENT, CheckOutStatus.MISSED),
        record(CheckInStatus.ABSENT, CheckOutStatus.MISSED, PleaStatus.APPROVED),
    ]
    assert tally(records) == {
        'total_present': 2, 'on_time': 1, 'late': 1,
        'left_early': 1, 'absent': 1, 'with_plea': 1
    }
