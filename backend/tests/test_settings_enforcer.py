"""Tests for per-session admission rules."""
from datetime import date, datetime, time
from types import SimpleNamespace

import pytest

from rollcall.models.policies import SessionSettings
from rollcall.models.student_record import MarkMode
from rollcall.services.settings_enforcer import SettingsEnforcer
from rollcall.services.time_window import TimeWindow
from rollcall.utils.errors import Forbidden, TemporalRejection, ValidationFailed

WINDOW = TimeWindow.compute(date(2025, 3, 10), time(8, 0), time(10, 0), '0H10M', '1H30M')

def at(hour, minute=0):
    return datetime(2025, 3, 10, hour, minute)

def record(checked_in_at=None, joined_after=False):
    return SimpleNamespace(check_in_time=checked_in_at, joined_after_attendance_created=joined_after)

def enforce(mode, settings, when, rec=None, **kwargs):
    SettingsEnforcer.enforce(mode, settings, WINDOW, when, rec or record(), **kwargs)

def test_defaults_accept_any_check_in():
    settings = SessionSettings()
    for when in (at(7, 30), at(8, 30), at(9, 59)):
        enforce(MarkMode.CHECK_IN, settings, when)

def test_late_check_in_rejected_with_actual_and_allowed_times():
    settings = SessionSettings(allow_late_check_in=False)
    with pytest.raises(TemporalRejection) as exc:
        enforce(MarkMode.CHECK_IN, settings, at(9, 45))
    assert exc.value.code == 'TOO_LATE_CHECKIN'
    assert exc.value.details['allowed_until'] == at(9, 30).isoformat()
    assert exc.value.details['minutes_late'] == 15
    assert '09:30' in exc.value.message and '09:45' in exc.value.message

def test_early_check_in_rejected_when_disallowed():
    with pytest.raises(TemporalRejection) as exc:
        enforce(MarkMode.CHECK_IN, SessionSettings(allow_early_check_in=False), at(8, 5))
    assert exc.value.code == 'TOO_EARLY_CHECKIN'
    assert exc.value.details['minutes_early'] == 5

def test_selfie_requires_proof():
    settings = SessionSettings.from_dict({'proofRequirement': 'selfie'})
    with pytest.raises(ValidationFailed) as exc:
        enforce(MarkMode.CHECK_IN, settings, at(8, 5))
    assert exc.value.code == 'PROOF_REQUIRED'
    enforce(MarkMode.CHECK_IN, settings, at(8, 5), proof='uploads/selfie-1.jpg')

def test_late_joiner_rejected_first():
    settings = SessionSettings(allow_late_joiners=False, allow_late_check_in=False)
    with pytest.raises(Forbidden) as exc:
        enforce(MarkMode.CHECK_IN, settings, at(9, 45), record(joined_after=True))
    assert exc.value.code == 'LATE_JOINER_NOT_ALLOWED'

def test_short_duration():
    settings = SessionSettings(minimum_presence_duration=45)
    with pytest.raises(TemporalRejection) as exc:
        enforce(MarkMode.CHECK_OUT, settings, at(8, 20), record(at(8, 5)))
    assert exc.value.code == 'SHORT_DURATION'
    assert exc.value.details == {'duration_minutes': 15, 'minimum_minutes': 45}

def test_short_duration_ignored_when_reopened():
    settings = SessionSettings(minimum_presence_duration=45)
    enforce(MarkMode.CHECK_OUT, settings, at(8, 20), record(at(8, 5)), reopened=True)

def test_check_out_disabled():
    with pytest.raises(Forbidden) as exc:
        enforce(MarkMode.CHECK_OUT, SessionSettings(enable_check_in_out=False), at(9, 55), record(at(8, 5)))
    assert exc.value.code == 'CHECK_OUT_DISABLED'

def test_check_out_window_bounds():
    settings = SessionSettings(allow_early_check_out=False, allow_late_check_out=False)
    checked_in = record(at(8, 5))

    with pytest.raises(TemporalRejection) as exc:
        enforce(MarkMode.CHECK_OUT, settings, at(9, 49), checked_in)
    assert exc.value.code == 'TOO_EARLY_CHECKOUT'

    enforce(MarkMode.CHECK_OUT, settings, at(9, 50), checked_in)
    enforce(MarkMode.CHECK_OUT, settings, at(10, 15), checked_in)

    with pytest.raises(TemporalRejection) as exc:
        enforce(MarkMode.CHECK_OUT, settings, at(10, 16), checked_in)
    assert exc.value.code == 'TOO_LATE_CHECKOUT'
