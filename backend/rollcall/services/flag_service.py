"""Automatic flagging of suspicious marks."""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from rollcall.models.student_record import FlagReason, MarkMethod

@dataclass(frozen=True)
class Flag:
    code: FlagReason
    note: str
    severity: str = 'medium'
    detected_by: str = 'system'

    def to_entry(self) -> Dict[str, str]:
        """Shape stored on the student record."""
        return {
            'type': self.code.value,
            'severity': self.severity,
            'detected_by': self.detected_by,
            'note': self.note
        }

class FlagService:
    """Inspects a mark and explains what looks suspicious about it."""

    @staticmethod
    def detect(
        mark_time: datetime,
        entry_start: datetime,
        entry_end: datetime,
        method: MarkMethod,
        was_within_range: Optional[bool],
        reported_location: Optional[Dict]
    ) -> List[Flag]:
        flags = []

        if mark_time < entry_start or mark_time > entry_end:
            flags.append(Flag(
                FlagReason.OUTSIDE_MARKING_WINDOW,
                f'Marked at {mark_time:%H:%M}, outside the window '
                f'{entry_start:%H:%M}-{entry_end:%H:%M}.'
            ))

        if method == MarkMethod.GEO:
            if not reported_location:
                flags.append(Flag(FlagReason.GEO_DISABLED, 'Geo marking without a reported location.'))
            elif was_within_range is False:
                flags.append(Flag(FlagReason.LOCATION_MISMATCH, 'Reported location is outside the class radius.'))

        return flags

    @staticmethod
    def joined_late(joined_at: datetime) -> Flag:
        return Flag(
            FlagReason.JOINED_AFTER_ATTENDANCE_CREATED,
            f'Joined the group at {joined_at:%Y-%m-%d %H:%M}, after the session was created.',
            severity='low'
        )
