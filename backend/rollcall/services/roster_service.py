"""Group roster access: who may attend which sessions."""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from rollcall import db
from rollcall.models.attendance_session import AttendanceSession, SessionStatus
from rollcall.models.group import Group, GroupMember, UserRole
from rollcall.models.student_record import StudentAttendanceRecord
from rollcall.services.flag_service import FlagService
from rollcall.services.status_resolver import contribution, tally
from rollcall.services.record_marks import apply_summary_delta
from rollcall.utils.errors import Conflict, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

class RosterService:
    """Service for group membership."""

    @staticmethod
    def create_group(name: str, class_rep_id: str, course_code: str = None,
                     course_title: str = None, lecturer_name: str = None,
                     lecturer_email: str = None, level: str = None) -> Group:
        if not name or not class_rep_id:
            raise ValidationFailed('MISSING_FIELDS', 'Group name and class rep are required.')
        group = Group(
            name=name.strip(),
            class_rep_id=str(class_rep_id),
            course_code=course_code,
            course_title=course_title,
            lecturer_name=lecturer_name,
            lecturer_email=lecturer_email,
            level=level
        )
        db.session.add(group)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = Group.query.filter_by(name=name.strip()).first()
            raise Conflict(
                'GROUP_EXISTS',
                f'A group named "{name}" already exists.',
                {'group_id': existing.id if existing else None}
            )
        return group

    @staticmethod
    def get_group(group_id: int) -> Group:
        group = Group.get_by_id(group_id)
        if not group:
            raise NotFound('GROUP_NOT_FOUND', f'No group found with ID "{group_id}".')
        return group

    @staticmethod
    def list_members(group_id: int, role: Optional[UserRole] = None) -> List[GroupMember]:
        query = GroupMember.query.filter_by(group_id=group_id)
        if role is not None:
            query = query.filter_by(role=role)
        return query.order_by(GroupMember.name).all()

    @staticmethod
    def find_member(group_id: int, student_id: str) -> Optional[GroupMember]:
        return GroupMember.query.filter_by(group_id=group_id, student_id=str(student_id)).first()

    @classmethod
    def add_member(cls, group_id: int, student_id: str, name: str, now: datetime,
                   role: UserRole = UserRole.STUDENT) -> GroupMember:
        """Add a member; running sessions of the group get a record for them."""
        group = cls.get_group(group_id)
        if cls.find_member(group.id, student_id):
            raise Conflict(
                'ALREADY_MEMBER',
                f'Student "{student_id}" is already a member of this group.'
            )

        member = GroupMember(
            group_id=group.id,
            student_id=str(student_id),
            name=name,
            role=role,
            joined_at=now
        )
        db.session.add(member)

        running = AttendanceSession.query.filter_by(
            group_id=group.id,
            status=SessionStatus.ACTIVE,
            initialized=True
        ).all()
        for session in running:
            record = cls.late_joiner_record(session, member, now)
            if record is not None:
                db.session.add(record)
                apply_summary_delta(session.id, tally([]), contribution(record))

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise Conflict('ALREADY_MEMBER', f'Student "{student_id}" is already a member of this group.')

        if running:
            logger.info('Late joiner %s added to %d running session(s)', student_id, len(running))
        return member

    @staticmethod
    def late_joiner_record(session: AttendanceSession, member: GroupMember,
                           now: datetime) -> Optional[StudentAttendanceRecord]:
        """Absent record for someone who joined after the session was created."""
        exists = StudentAttendanceRecord.query.filter_by(
            session_id=session.id, student_id=member.student_id
        ).first()
        if exists:
            return None
        record = StudentAttendanceRecord(
            session_id=session.id,
            student_id=member.student_id,
            name=member.name,
            joined_after_attendance_created=True
        )
        record.add_flags([FlagService.joined_late(member.joined_at).to_entry()], flagged_at=now)
        record.log('record_created', 'roster', 'Record created for a student who joined late.', now)
        return record

