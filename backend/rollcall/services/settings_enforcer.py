"""Session policy checks applied to every mark before it is recorded."""
from datetime import datetime
from typing import Optional

from rollcall.models.policies import ProofRequirement, SessionSettings
from rollcall.models.student_record import MarkMode
from rollcall.services.time_window import EntryWindow, TimeWindow, minutes_between
from rollcall.utils.errors import Forbidden, TemporalRejection, ValidationFailed

def _clock(instant: datetime) -> str:
    return instant.strftime('%H:%M')

class SettingsEnforcer:
    """Fail-fast validation of a mark against the session's settings.

    Only the first violation is raised.
    """

    @classmethod
    def enforce(
        cls,
        mode: MarkMode,
        settings: SessionSettings,
        window: EntryWindow,
        now: datetime,
        record,
        proof: Optional[str] = None,
        reopened: bool = False
    ) -> None:
        if record.joined_after_attendance_created and not settings.allow_late_joiners:
            raise Forbidden(
                'LATE_JOINER_NOT_ALLOWED',
                'Students who joined the group after this attendance was created cannot mark it.'
            )

        if mode == MarkMode.CHECK_IN:
            cls._check_in(settings, window, now, proof)
        else:
            cls._check_out(settings, window, now, record, reopened)

    @staticmethod
    def _check_in(settings: SessionSettings, window: EntryWindow, now: datetime, proof: Optional[str]) -> None:
        if settings.proof_requirement == ProofRequirement.SELFIE and not proof:
            raise ValidationFailed(
                'PROOF_REQUIRED',
                'A selfie proof is required to check in to this session.'
            )

        if now < window.entry_start and not settings.allow_early_check_in:
            raise TemporalRejection(
                'TOO_EARLY_CHECKIN',
                f'Check-in opens at {_clock(window.entry_start)}; you tried at {_clock(now)}.',
                {
                    'attempted_at': now.isoformat(),
                    'allowed_from': window.entry_start.isoformat(),
                    'minutes_early': minutes_between(now, window.entry_start)
                }
            )

        if now > window.entry_end and not settings.allow_late_check_in:
            raise TemporalRejection(
                'TOO_LATE_CHECKIN',
                f'Check-in closed at {_clock(window.entry_end)}; you tried at {_clock(now)}.',
                {
                    'attempted_at': now.isoformat(),
                    'allowed_until': window.entry_end.isoformat(),
                    'minutes_late': minutes_between(window.entry_end, now)
                }
            )

    @staticmethod
    def _check_out(settings: SessionSettings, window: EntryWindow, now: datetime, record, reopened: bool) -> None:
        if not settings.enable_check_in_out:
            raise Forbidden(
                'CHECK_OUT_DISABLED',
                'Check-out is not enabled for this session.'
            )

        if not reopened and settings.minimum_presence_duration and record.check_in_time:
            elapsed = minutes_between(record.check_in_time, now)
            if elapsed < settings.minimum_presence_duration:
                raise TemporalRejection(
                    'SHORT_DURATION',
                    f'You have been present for {elapsed} minute(s); at least '
                    f'{settings.minimum_presence_duration} minute(s) are required before check-out.',
                    {
                        'duration_minutes': elapsed,
                        'minimum_minutes': settings.minimum_presence_duration
                    }
                )

        opens_at, closes_at = TimeWindow.check_out_bounds(
            window, settings.check_out_lead_minutes, settings.check_out_grace_minutes
        )

        if now < opens_at and not settings.allow_early_check_out:
            raise TemporalRejection(
                'TOO_EARLY_CHECKOUT',
                f'Check-out opens at {_clock(opens_at)}; you tried at {_clock(now)}.',
                {
                    'attempted_at': now.isoformat(),
                    'allowed_from': opens_at.isoformat(),
                    'minutes_early': minutes_between(now, opens_at)
                }
            )

        if now > closes_at and not settings.allow_late_check_out:
            raise TemporalRejection(
                'TOO_LATE_CHECKOUT',
                f'Check-out closed at {_clock(closes_at)}; you tried at {_clock(now)}.',
                {
                    'attempted_at': now.isoformat(),
                    'allowed_until': closes_at.isoformat(),
                    'minutes_late': minutes_between(closes_at, now)
                }
            )
