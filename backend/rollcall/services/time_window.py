"""Entry-window computation from class slots and relative offsets."""
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from rollcall.utils.errors import ValidationFailed

OFFSET_PATTERN = re.compile(r'^(\d+)H(\d+)M$')
FULL = 'FULL'

@dataclass(frozen=True)
class EntryWindow:
    """Absolute instants of one class meeting."""
    class_start: datetime
    class_end: datetime
    entry_start: datetime
    entry_end: datetime

    @property
    def class_duration_minutes(self) -> int:
        return minutes_between(self.class_start, self.class_end)

    def contains(self, instant: datetime) -> bool:
        return self.entry_start <= instant <= self.entry_end

def minutes_between(earlier: datetime, later: datetime) -> int:
    """Whole minutes from ``earlier`` to ``later``, floored."""
    return int((later - earlier).total_seconds() // 60)

def parse_offset(value: str, class_duration_minutes: Optional[int] = None) -> Optional[int]:
    """Convert ``<h>H<m>M`` (or ``FULL``) into minutes after class start.

    Returns None for anything outside the grammar, and for ``FULL`` when no
    class duration is known.
    """
    if not isinstance(value, str):
        return None
    value = value.strip()
    if value == FULL:
        return class_duration_minutes
    match = OFFSET_PATTERN.match(value)
    if not match:
        return None
    return int(match.group(1)) * 60 + int(match.group(2))

def format_offset(minutes: int) -> str:
    """Inverse of parse_offset for non-negative minute counts."""
    hours, rest = divmod(max(minutes, 0), 60)
    return f'{hours}H{rest}M'

def combine(class_date: date, time_of_day: time) -> datetime:
    return datetime.combine(class_date, time_of_day)

class TimeWindow:
    """Pure conversions between a class slot and its marking window."""

    @staticmethod
    def compute(
        class_date: date,
        class_start: time,
        class_end: time,
        entry_start: str,
        entry_end: str,
        reopened_until: Optional[datetime] = None
    ) -> EntryWindow:
        """Resolve the four instants of a class meeting.

        A reopen expiry later than the nominal entry end widens the window.
        """
        start = combine(class_date, class_start)
        end = combine(class_date, class_end)
        duration = minutes_between(start, end)

        # FULL is only meaningful as the end of the window
        start_offset = None if (entry_start or '').strip() == FULL else parse_offset(entry_start)
        end_offset = parse_offset(entry_end, duration)
        if start_offset is None or end_offset is None:
            raise ValidationFailed(
                'INVALID_ENTRY_WINDOW',
                'Marking window offsets must use the <hours>H<minutes>M format '
                '(or FULL for the end).',
                {'entry_start': entry_start, 'entry_end': entry_end}
            )

        window_start = start + timedelta(minutes=start_offset)
        window_end = start + timedelta(minutes=end_offset)
        if reopened_until is not None and reopened_until > window_end:
            window_end = reopened_until

        return EntryWindow(start, end, window_start, window_end)

    @classmethod
    def for_session(cls, session) -> EntryWindow:
        return cls.compute(
            session.class_date,
            session.class_start,
            session.class_end,
            session.entry_start,
            session.entry_end,
            session.reopened_until if session.reopened else None
        )

    @classmethod
    def validate_for_creation(cls, class_date: date, class_start: time, class_end: time,
                              entry_start: str, entry_end: str) -> EntryWindow:
        """Compute the window and insist that it is not empty or inverted."""
        window = cls.compute(class_date, class_start, class_end, entry_start, entry_end)
        if window.entry_end <= window.entry_start:
            raise ValidationFailed(
                'INVALID_ENTRY_WINDOW',
                'Marking end must be after start, in valid H and M format.',
                {'entry_start': entry_start, 'entry_end': entry_end}
            )
        return window

    @staticmethod
    def check_out_bounds(window: EntryWindow, lead_minutes: int, grace_minutes: int):
        """Opening and closing instants of the check-out window."""
        return (
            window.class_end - timedelta(minutes=lead_minutes),
            window.class_end + timedelta(minutes=grace_minutes)
        )

    @classmethod
    def closing_instant(cls, session, window: Optional[EntryWindow] = None) -> datetime:
        """Instant after which a running session is closed to check-ins."""
        window = window or cls.for_session(session)
        return window.entry_end

    @classmethod
    def settling_instant(cls, session, window: Optional[EntryWindow] = None) -> datetime:
        """Instant after which no normal mark is accepted and the session may be finalized.

        Closed sessions keep taking check-outs until the check-out window ends.
        """
        window = window or cls.for_session(session)
        policy = session.policy
        if policy.enable_check_in_out:
            return max(window.entry_end, cls.check_out_bounds(
                window, policy.check_out_lead_minutes, policy.check_out_grace_minutes
            )[1])
        return window.entry_end
