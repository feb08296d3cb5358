"""Roster models: groups and their members."""
from datetime import datetime
from enum import Enum
from rollcall import db
from rollcall.models.base import BaseModel

class UserRole(Enum):
    """Roles carried in access tokens and roster entries."""
    STUDENT = 'student'
    CLASS_REP = 'class_rep'
    ADMIN = 'admin'

class Group(BaseModel):
    """A class group whose members attend its sessions."""
    
    __tablename__ = 'groups'
    
    name = db.Column(db.String(255), nullable=False, unique=True)
    course_code = db.Column(db.String(50), nullable=True)
    course_title = db.Column(db.String(255), nullable=True)
    level = db.Column(db.String(50), nullable=True)
    
    # Class rep owns the group and receives session summaries
    class_rep_id = db.Column(db.String(64), nullable=False, index=True)
    lecturer_name = db.Column(db.String(255), nullable=True)
    lecturer_email = db.Column(db.String(255), nullable=True)
    
    # Relationships
    members = db.relationship('GroupMember', backref='group', lazy='dynamic',
                              cascade='all, delete-orphan')
    
    def to_dict(self):
        """Convert to dictionary."""
        data = super().to_dict()
        data['member_count'] = self.members.count()
        return data
    
    def __repr__(self):
        return f'<Group {self.name}>'

class GroupMember(BaseModel):
    """Roster entry of one user in one group."""
    
    __tablename__ = 'group_members'
    __table_args__ = (
        db.UniqueConstraint('group_id', 'student_id', name='uq_group_member'),
    )
    
    group_id = db.Column(db.Integer, db.ForeignKey('groups.id'), nullable=False, index=True)
    student_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    role = db.Column(db.Enum(UserRole), nullable=False, default=UserRole.STUDENT)
    joined_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    
    def __repr__(self):
        return f'<GroupMember {self.group_id}-{self.student_id}>'
