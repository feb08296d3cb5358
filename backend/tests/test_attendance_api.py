"""Test attendance, group and notification endpoints."""
import json

from conftest import CLASS_LOCATION, REP_ID, at, session_payload
from rollcall.models.group import UserRole

def test_health_checks(client):
    """Test every health endpoint."""
    assert client.get('/health').status_code == 200
    for prefix in ('attendance', 'groups', 'notifications'):
        response = client.get(f'/api/{prefix}/health')
        assert response.status_code == 200
        assert json.loads(response.data)['error'] is False

def test_mutating_routes_need_a_token(client, group):
    response = client.post('/api/attendance/', json=session_payload(group.id))
    assert response.status_code == 401
    assert json.loads(response.data)['message'] == 'Authorization token required'

def test_students_cannot_create_sessions(client, group, auth_headers):
    response = client.post('/api/attendance/', json=session_payload(group.id),
                           headers=auth_headers('stu-1'))
    assert response.status_code == 403
    assert json.loads(response.data)['code'] == 'CLASS_REP_REQUIRED'

def test_other_reps_cannot_manage_the_group(client, group, auth_headers):
    response = client.post('/api/attendance/', json=session_payload(group.id),
                           headers=auth_headers('rep-2', UserRole.CLASS_REP))
    assert response.status_code == 403
    assert json.loads(response.data)['code'] == 'NOT_GROUP_REP'

def test_create_mark_and_finalize(client, group, clock, auth_headers):
    rep = auth_headers(REP_ID, UserRole.CLASS_REP)

    response = client.post('/api/attendance/', json=session_payload(group.id), headers=rep)
    assert response.status_code == 201
    attendance = json.loads(response.data)['data']['attendance']
    assert attendance['status'] == 'active'
    assert attendance['summary_stats']['absent'] == 3
    attendance_id = attendance['attendance_id']

    clock.set(at(8, 5))
    response = client.post(f'/api/attendance/{attendance_id}/mark-entry',
                           json={'mode': 'checkIn', 'method': 'geo', 'location': CLASS_LOCATION},
                           headers=auth_headers('stu-1'))
    assert response.status_code == 200
    outcome = json.loads(response.data)['data']
    assert outcome['check_in_status'] == 'on_time'
    assert outcome['arrival_delta_minutes'] == 5

    response = client.post(f'/api/attendance/{attendance_id}/mark-entry',
                           json={'mode': 'checkIn', 'student_id': 'stu-2'},
                           headers=rep)
    assert response.status_code == 200
    assert json.loads(response.data)['data']['was_within_range'] is True

    response = client.get(f'/api/attendance/{attendance_id}', headers=auth_headers('stu-1'))
    data = json.loads(response.data)['data']['attendance']
    assert 'student_records' not in data
    assert data['my_record']['check_in']['method'] == 'geo'

    clock.set(at(10, 20))
    response = client.post(f'/api/attendance/{attendance_id}/finalize', headers=rep)
    assert response.status_code == 200
    assert json.loads(response.data)['data']['summary_stats']['absent'] == 1

    response = client.get(f'/api/attendance/{attendance_id}', headers=rep)
    records = json.loads(response.data)['data']['attendance']['student_records']
    assert [record['final_status'] for record in records] == ['partial', 'partial', 'absent']

def test_rejections_carry_code_and_details(client, active_session, clock, auth_headers):
    clock.set(at(8, 10))
    url = f'/api/attendance/{active_session.attendance_id}/mark-entry'
    client.post(url, json={'mode': 'checkIn', 'location': CLASS_LOCATION}, headers=auth_headers('stu-1'))

    response = client.post(url, json={'mode': 'checkIn', 'location': CLASS_LOCATION},
                           headers=auth_headers('stu-1'))
    assert response.status_code == 409
    payload = json.loads(response.data)
    assert payload['error'] is True
    assert payload['code'] == 'ALREADY_CHECKED_IN'
    assert payload['details']['attendance_id'] == active_session.attendance_id

    response = client.post(url, json={'mode': 'checkIn', 'method': 'manual'}, headers=auth_headers('stu-2'))
    assert response.status_code == 403
    assert json.loads(response.data)['code'] == 'MANUAL_MARK_FORBIDDEN'

    response = client.post(url, json={'method': 'geo'}, headers=auth_headers('stu-2'))
    assert response.status_code == 400
    assert json.loads(response.data)['code'] == 'MISSING_FIELDS'

    response = client.post(url, json={'mode': 'checkIn', 'location': '6.52,3.37'},
                           headers=auth_headers('stu-2'))
    assert response.status_code == 400
    assert json.loads(response.data)['code'] == 'INVALID_LOCATION'

    response = client.post('/api/attendance/attn_nope/mark-entry', json={'mode': 'checkIn'},
                           headers=auth_headers('stu-2'))
    assert response.status_code == 404
    assert json.loads(response.data)['code'] == 'ATTENDANCE_NOT_FOUND'

def test_reopen_and_plea_routes(client, active_session, clock, auth_headers):
    rep = auth_headers(REP_ID, UserRole.CLASS_REP)
    attendance_id = active_session.attendance_id

    clock.set(at(9, 0))
    client.post(f'/api/attendance/{attendance_id}/finalize', headers=rep)

    response = client.post(f'/api/attendance/{attendance_id}/re-open',
                           json={'duration': '0H20M', 'strategy': 'custom', 'students': ['stu-3']},
                           headers=rep)
    assert response.status_code == 200
    assert json.loads(response.data)['data']['reopened_until'] == at(9, 20).isoformat()

    clock.advance(minutes=5)
    response = client.post(f'/api/attendance/{attendance_id}/mark-entry',
                           json={'mode': 'checkIn', 'location': CLASS_LOCATION},
                           headers=auth_headers('stu-3'))
    assert response.status_code == 200
    payload = json.loads(response.data)
    assert payload['message'] == 'Attendance marked during reopened session.'
    assert payload['data']['final_status'] == 'present'

    response = client.post(f'/api/attendance/{attendance_id}/plea',
                           json={'message': 'Bus broke down', 'reasons': ['T - Travel']},
                           headers=auth_headers('stu-2'))
    assert response.status_code == 201

    response = client.post(f'/api/attendance/{attendance_id}/plea/stu-2/review',
                           json={'decision': 'approved'}, headers=rep)
    assert response.status_code == 200
    assert json.loads(response.data)['data']['record']['final_status'] == 'excused'

def test_group_roster_routes(client, auth_headers):
    rep = auth_headers('rep-9', UserRole.CLASS_REP)

    response = client.post('/api/groups/', json={'name': 'MTH 201 - Group B', 'course_code': 'MTH201',
                                                 'course_title': 'Linear Algebra'}, headers=rep)
    assert response.status_code == 201
    group_id = json.loads(response.data)['data']['group']['id']

    response = client.post(f'/api/groups/{group_id}/members',
                           json={'student_id': 'stu-7', 'name': 'Efe Okon'}, headers=rep)
    assert response.status_code == 201

    response = client.post(f'/api/groups/{group_id}/members',
                           json={'student_id': 'stu-7', 'name': 'Efe Okon'}, headers=rep)
    assert response.status_code == 409
    assert json.loads(response.data)['code'] == 'ALREADY_MEMBER'

    response = client.get(f'/api/groups/{group_id}/members', headers=auth_headers('stu-7'))
    members = json.loads(response.data)['data']['members']
    assert [member['student_id'] for member in members] == ['stu-7']

    response = client.get(f'/api/groups/{group_id}/members', headers=auth_headers('stu-8'))
    assert response.status_code == 403

def test_notifications_inbox(client, active_session, clock, auth_headers):
    clock.set(at(8, 20))
    client.post(f'/api/attendance/{active_session.attendance_id}/mark-entry',
                json={'mode': 'checkIn', 'location': CLASS_LOCATION}, headers=auth_headers('stu-1'))

    response = client.get('/api/notifications/', headers=auth_headers('stu-1'))
    notifications = json.loads(response.data)['data']['notifications']
    direct = [item for item in notifications if not item['is_broadcast']]
    assert len(direct) == 1
    assert any(item['is_broadcast'] for item in notifications)

    response = client.post(f"/api/notifications/{direct[0]['id']}/read", headers=auth_headers('stu-1'))
    assert response.status_code == 200
    assert json.loads(response.data)['data']['notification']['read_at'] == at(8, 20).isoformat()

    response = client.get('/api/notifications/?unread_only=true', headers=auth_headers('stu-1'))
    assert all(item['is_broadcast'] for item in json.loads(response.data)['data']['notifications'])
