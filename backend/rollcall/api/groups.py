# File: backend/rollcall/api/groups.py
"""Group roster endpoints."""
from flask import Blueprint, current_app, request
from flask_jwt_extended import jwt_required, get_jwt_identity
from rollcall.models.group import UserRole
from rollcall.services.roster_service import RosterService
from rollcall.utils.clock import now
from rollcall.utils.decorators import class_rep_required, current_role
from rollcall.utils.errors import Forbidden
from rollcall.utils.helpers import success_response
from rollcall.utils.validators import Validator

groups_bp = Blueprint('groups', __name__)

def member_dict(member):
    return {
        'student_id': member.student_id,
        'name': member.name,
        'role': member.role.value,
        'joined_at': member.joined_at.isoformat() if member.joined_at else None
    }

@groups_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return success_response(message='Groups service is running')

@groups_bp.route('/', methods=['POST'])
@jwt_required()
@class_rep_required
def create_group():
    """Create a group owned by the calling class rep."""
    data = request.get_json(silent=True) or {}
    Validator.require_fields(data, ['name'])

    class_rep_id = str(get_jwt_identity())
    if current_role() == UserRole.ADMIN and data.get('class_rep_id'):
        class_rep_id = str(data['class_rep_id'])

    group = RosterService.create_group(
        data['name'],
        class_rep_id,
        course_code=data.get('course_code'),
        course_title=data.get('course_title'),
        lecturer_name=data.get('lecturer_name'),
        lecturer_email=data.get('lecturer_email'),
        level=data.get('level')
    )
    current_app.logger.info(f'Group {group.id} created by {get_jwt_identity()}')
    return success_response(data={'group': group.to_dict()}, message='Group created successfully', status_code=201)

@groups_bp.route('/<int:group_id>/members', methods=['POST'])
@jwt_required()
@class_rep_required
def add_member(group_id):
    """Add a student to the roster."""
    group = RosterService.get_group(group_id)
    if current_role() != UserRole.ADMIN and str(group.class_rep_id) != str(get_jwt_identity()):
        raise Forbidden('NOT_GROUP_REP', 'You are not the class rep of this group.')

    data = request.get_json(silent=True) or {}
    Validator.require_fields(data, ['student_id', 'name'])
    role = UserRole(Validator.choice(
        data.get('role', UserRole.STUDENT.value),
        {UserRole.STUDENT.value, UserRole.CLASS_REP.value},
        'INVALID_ROLE', 'role'
    ))

    member = RosterService.add_member(group.id, data['student_id'], data['name'], now(), role=role)
    return success_response(data={'member': member_dict(member)}, message='Member added successfully', status_code=201)

@groups_bp.route('/<int:group_id>/members', methods=['GET'])
@jwt_required()
def list_members(group_id):
    """List the group roster."""
    group = RosterService.get_group(group_id)
    caller_id = str(get_jwt_identity())
    if (current_role() != UserRole.ADMIN and str(group.class_rep_id) != caller_id
            and not RosterService.find_member(group.id, caller_id)):
        raise Forbidden('NOT_GROUP_MEMBER', 'You are not a member of this group.')

    members = RosterService.list_members(group.id)
    return success_response(
        data={'group': group.to_dict(), 'members': [member_dict(member) for member in members]},
        message=f'Found {len(members)} member(s)'
    )
