"""Attendance error taxonomy.

Every rejection raised by the marking pipeline, the session lifecycle and the
reopen pathway is an ``AttendanceError`` carrying a stable machine ``code``, a
human readable ``message`` and the HTTP status the API layer answers with.
"""
from typing import Any, Dict, Optional

class AttendanceError(Exception):
    """Base error for every attendance rejection."""
    
    status_code = 400
    
    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to response payload."""
        payload = {
            'error': True,
            'code': self.code,
            'message': self.message,
            'status_code': self.status_code
        }
        if self.details:
            payload['details'] = self.details
        return payload
    
    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} {self.code}>'

class ValidationFailed(AttendanceError):
    """Malformed input, rejected before any state change."""
    status_code = 400

class Forbidden(AttendanceError):
    """Caller may not perform the action (roster, allow-list, role)."""
    status_code = 403

class NotFound(AttendanceError):
    """Session or record does not exist."""
    status_code = 404

class Conflict(AttendanceError):
    """Action collides with existing state."""
    status_code = 409

class TemporalRejection(AttendanceError):
    """Attempt falls outside an allowed time or duration."""
    status_code = 422
