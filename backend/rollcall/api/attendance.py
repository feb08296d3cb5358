# File: backend/rollcall/api/attendance.py
"""Attendance API endpoints: sessions, marking, reopen and pleas."""
from flask import Blueprint, current_app, request
from flask_jwt_extended import jwt_required, get_jwt_identity
from rollcall import limiter
from rollcall.models.attendance_session import AttendanceSession
from rollcall.models.group import Group, UserRole
from rollcall.models.student_record import MarkMethod, MarkedBy
from rollcall.services.attendance_service import AttendanceService
from rollcall.services.reopen_service import ReopenService
from rollcall.services.roster_service import RosterService
from rollcall.utils.clock import now
from rollcall.utils.decorators import class_rep_required, current_role
from rollcall.utils.errors import Forbidden
from rollcall.utils.helpers import success_response
from rollcall.utils.validators import Validator

attendance_bp = Blueprint('attendance', __name__)

def ensure_group_rep(group: Group) -> None:
    """Only the group's own class rep (or an admin) manages its sessions."""
    if current_role() == UserRole.ADMIN:
        return
    if str(group.class_rep_id) != str(get_jwt_identity()):
        raise Forbidden('NOT_GROUP_REP', 'You are not the class rep of this group.')

def ensure_group_access(group: Group) -> None:
    if current_role() == UserRole.ADMIN or str(group.class_rep_id) == str(get_jwt_identity()):
        return
    if not RosterService.find_member(group.id, get_jwt_identity()):
        raise Forbidden('NOT_GROUP_MEMBER', 'You are not a member of this group.')

def is_group_rep(group: Group) -> bool:
    return current_role() == UserRole.ADMIN or str(group.class_rep_id) == str(get_jwt_identity())

def managed_session(attendance_id: str) -> AttendanceSession:
    session = AttendanceService.get_session(attendance_id)
    ensure_group_rep(RosterService.get_group(session.group_id))
    return session

def request_device() -> dict:
    return {
        'ip': request.headers.get('X-Forwarded-For', request.remote_addr),
        'user_agent': request.headers.get('User-Agent')
    }

@attendance_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return success_response(message='Attendance service is running')

# =================== SESSIONS ===================

@attendance_bp.route('/', methods=['POST'])
@jwt_required()
@class_rep_required
def create_attendance():
    """Create an attendance session for one class meeting."""
    data = request.get_json(silent=True) or {}
    Validator.require_fields(data, ['group_id'])
    ensure_group_rep(RosterService.get_group(data['group_id']))

    session = AttendanceService.create_session(data, get_jwt_identity(), now())
    current_app.logger.info(f'Attendance {session.attendance_id} created by {get_jwt_identity()}')

    return success_response(
        data={'attendance': session.to_dict()},
        message='Attendance created successfully',
        status_code=201
    )

@attendance_bp.route('/groups/<int:group_id>', methods=['GET'])
@jwt_required()
def list_group_attendance(group_id):
    """List a group's sessions, most recent class first."""
    ensure_group_access(RosterService.get_group(group_id))

    page = request.args.get('page', 1, type=int)
    per_page = min(
        request.args.get('per_page', current_app.config['DEFAULT_PAGE_SIZE'], type=int),
        current_app.config['MAX_PAGE_SIZE']
    )
    pagination = AttendanceService.list_group_sessions(
        group_id, status=request.args.get('status'), page=page, per_page=per_page
    )

    return success_response(
        data={
            'attendances': [session.to_dict() for session in pagination.items],
            'pagination': {
                'page': pagination.page,
                'per_page': pagination.per_page,
                'total': pagination.total,
                'pages': pagination.pages,
                'has_next': pagination.has_next,
                'has_prev': pagination.has_prev
            }
        },
        message=f'Found {pagination.total} attendance(s)'
    )

@attendance_bp.route('/<attendance_id>', methods=['GET'])
@jwt_required()
def get_attendance(attendance_id):
    """Get one session; reps see every record, students their own."""
    session = AttendanceService.get_session(attendance_id)
    group = RosterService.get_group(session.group_id)
    ensure_group_access(group)

    if is_group_rep(group):
        return success_response(data={'attendance': session.to_dict(include_records=True)})

    data = session.to_dict()
    record = session.records.filter_by(student_id=str(get_jwt_identity())).first()
    data['my_record'] = record.to_dict() if record else None
    return success_response(data={'attendance': data})

@attendance_bp.route('/<attendance_id>', methods=['DELETE'])
@jwt_required()
@class_rep_required
def delete_attendance(attendance_id):
    """Delete a session together with its records."""
    managed_session(attendance_id)
    AttendanceService.delete_session(attendance_id)
    current_app.logger.info(f'Attendance {attendance_id} deleted by {get_jwt_identity()}')
    return success_response(message='Attendance deleted successfully')

# =================== MARKING ===================

@attendance_bp.route('/<attendance_id>/mark-entry', methods=['POST'])
@jwt_required()
@limiter.limit("30 per minute")
def mark_entry(attendance_id):
    """Check in or check out.

    Students mark themselves; a class rep may mark a student of the group
    manually by passing ``student_id``.
    """
    data = request.get_json(silent=True) or {}
    Validator.require_fields(data, ['mode'])
    caller_id = str(get_jwt_identity())
    student_id = str(data.get('student_id') or caller_id)
    method = data.get('method', MarkMethod.GEO.value)

    if student_id != caller_id:
        session = managed_session(attendance_id)
        marked_by = MarkedBy.REP
        method = data.get('method', MarkMethod.MANUAL.value)
        if method != MarkMethod.MANUAL.value:
            raise Forbidden('MANUAL_MARK_REQUIRED', 'Marking on behalf of a student must use the manual method.')
    else:
        marked_by = MarkedBy.STUDENT
        if method == MarkMethod.MANUAL.value:
            raise Forbidden('MANUAL_MARK_FORBIDDEN', 'Only a class rep can mark manually.')

    location = data.get('location')
    if location is None and ('latitude' in data or 'longitude' in data):
        location = {'latitude': data.get('latitude'), 'longitude': data.get('longitude')}

    outcome = AttendanceService.mark_entry(
        attendance_id,
        student_id,
        data['mode'],
        method,
        now(),
        location=location,
        proof=data.get('proof'),
        marked_by=marked_by,
        device=request_device()
    )

    return success_response(
        data=outcome,
        message='Attendance marked during reopened session.' if outcome['pathway'] == 'reopen'
        else 'Attendance marked successfully'
    )

# =================== LIFECYCLE ===================

@attendance_bp.route('/<attendance_id>/finalize', methods=['POST'])
@jwt_required()
@class_rep_required
def finalize_attendance(attendance_id):
    """Close the session and lock unmarked students to absent."""
    managed_session(attendance_id)
    summary = AttendanceService.finalize(attendance_id, now())
    return success_response(
        data={'attendance_id': attendance_id, 'summary_stats': summary},
        message='Attendance finalized successfully'
    )

@attendance_bp.route('/<attendance_id>/re-open', methods=['POST'])
@jwt_required()
@class_rep_required
def reopen_attendance(attendance_id):
    """Reopen a closed session for an allow-list of students."""
    session = managed_session(attendance_id)
    data = request.get_json(silent=True) or {}
    Validator.require_fields(data, ['duration'])

    result = ReopenService.reopen(
        session,
        data['duration'],
        data.get('strategy', 'all'),
        now(),
        students=data.get('students'),
        features=data.get('features'),
        actor_id=str(get_jwt_identity())
    )
    return success_response(data=result, message='Attendance reopened successfully')

# =================== PLEAS & FLAGS ===================

@attendance_bp.route('/<attendance_id>/plea', methods=['POST'])
@jwt_required()
def submit_plea(attendance_id):
    """Submit a plea against one's own absence or partial attendance."""
    data = request.get_json(silent=True) or {}
    Validator.require_fields(data, ['message', 'reasons'])

    record = AttendanceService.submit_plea(
        attendance_id,
        str(get_jwt_identity()),
        data['message'],
        data['reasons'],
        now(),
        proof_url=data.get('proof_url')
    )
    return success_response(data={'record': record.to_dict()}, message='Plea submitted successfully', status_code=201)

@attendance_bp.route('/<attendance_id>/plea/<student_id>/review', methods=['POST'])
@jwt_required()
@class_rep_required
def review_plea(attendance_id, student_id):
    """Approve or reject a pending plea."""
    managed_session(attendance_id)
    data = request.get_json(silent=True) or {}
    Validator.require_fields(data, ['decision'])

    record = AttendanceService.review_plea(
        attendance_id, student_id, data['decision'], str(get_jwt_identity()), now(),
        note=data.get('note')
    )
    return success_response(data={'record': record.to_dict()}, message=f'Plea {record.plea_status.value}')

@attendance_bp.route('/<attendance_id>/flags/<student_id>/dismiss', methods=['POST'])
@jwt_required()
@class_rep_required
def dismiss_flags(attendance_id, student_id):
    """Dismiss the flags raised on a student's record."""
    managed_session(attendance_id)
    data = request.get_json(silent=True) or {}

    record = AttendanceService.dismiss_flags(
        attendance_id, student_id, str(get_jwt_identity()), now(), note=data.get('note')
    )
    return success_response(data={'record': record.to_dict()}, message='Flags dismissed')
