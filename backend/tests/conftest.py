"""Shared fixtures for the attendance test-suite."""
from datetime import date, datetime, timedelta

import pytest
from flask_jwt_extended import create_access_token

from rollcall import create_app, db
from rollcall.models.group import UserRole
from rollcall.services.attendance_service import AttendanceService
from rollcall.services.roster_service import RosterService
from rollcall.utils.clock import FixedClock

CLASS_DAY = date(2025, 3, 10)
CLASS_LOCATION = {'latitude': 6.5244, 'longitude': 3.3792}
REP_ID = 'rep-1'
STUDENTS = [('stu-1', 'Ada Obi'), ('stu-2', 'Bola Ade'), ('stu-3', 'Chidi Eze')]

def at(hour: int, minute: int = 0, day: date = CLASS_DAY) -> datetime:
    """Instant on the class day."""
    return datetime(day.year, day.month, day.day, hour, minute)

def session_payload(group_id: int, **overrides) -> dict:
    payload = {
        'group_id': group_id,
        'schedule_id': 'sched-csc301-mon',
        'class_date': CLASS_DAY.isoformat(),
        'class_start': '08:00',
        'class_end': '10:00',
        'entry_start': '0H10M',
        'entry_end': '1H30M',
        'latitude': CLASS_LOCATION['latitude'],
        'longitude': CLASS_LOCATION['longitude'],
        'radius_meters': 30,
        'settings': {}
    }
    payload.update(overrides)
    return payload

@pytest.fixture
def clock():
    """Clock parked an hour before class."""
    return FixedClock(at(7))

@pytest.fixture
def app(clock):
    """Create test app."""
    app = create_app('testing', clock=clock)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()

@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()

@pytest.fixture
def group(app, clock):
    """Group with a class rep and three students who joined last week."""
    group = RosterService.create_group(
        'CSC 301 - Group A', REP_ID,
        course_code='CSC301',
        course_title='Operating Systems',
        lecturer_name='Dr. Ngozi Uche'
    )
    joined = clock.now() - timedelta(days=7)
    for student_id, name in STUDENTS:
        RosterService.add_member(group.id, student_id, name, joined)
    return group

@pytest.fixture
def make_session(app, group, clock):
    """Factory creating a session for the fixture group."""
    def factory(**overrides):
        return AttendanceService.create_session(
            session_payload(group.id, **overrides), REP_ID, clock.now()
        )
    return factory

@pytest.fixture
def active_session(make_session):
    """Session for today; created before class, so already active."""
    return make_session()

@pytest.fixture
def auth_headers(app):
    """Bearer headers for an identity and role."""
    def factory(identity: str, role: UserRole = UserRole.STUDENT):
        token = create_access_token(
            identity=identity, additional_claims={'role': role.value}
        )
        return {'Authorization': f'Bearer {token}'}
    return factory

def mark(session, student_id, mode, when, method='geo', location=CLASS_LOCATION, **kwargs):
    """Mark through the service at a given instant."""
    return AttendanceService.mark_entry(
        session.attendance_id, student_id, mode, method, when, location=location, **kwargs
    )
