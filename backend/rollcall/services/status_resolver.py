"""Final-status derivation and summary contributions."""
from typing import Dict, Optional

from rollcall.models.attendance_session import SUMMARY_FIELDS
from rollcall.models.student_record import (
    CheckInStatus, CheckOutStatus, FinalStatus, PleaStatus
)

ARRIVED = (CheckInStatus.ON_TIME, CheckInStatus.LATE)
NOT_ARRIVED = (CheckInStatus.ABSENT, CheckInStatus.MISSED)

def resolve_final_status(
    check_in: CheckInStatus,
    check_out: CheckOutStatus,
    plea: Optional[PleaStatus] = None
) -> FinalStatus:
    """Derive the overall outcome from the two halves of a mark pair."""
    if plea == PleaStatus.APPROVED:
        return FinalStatus.EXCUSED

    if check_in == CheckInStatus.ABSENT and check_out == CheckOutStatus.MISSED:
        return FinalStatus.ABSENT

    if check_in == CheckInStatus.ON_TIME and check_out == CheckOutStatus.ON_TIME:
        return FinalStatus.PRESENT

    if check_in == CheckInStatus.LATE and check_out == CheckOutStatus.ON_TIME:
        return FinalStatus.PARTIAL

    # One-sided completion
    if check_in in ARRIVED and check_out == CheckOutStatus.MISSED:
        return FinalStatus.PARTIAL
    if check_in in NOT_ARRIVED and check_out != CheckOutStatus.MISSED:
        return FinalStatus.PARTIAL

    if check_in in ARRIVED and check_out == CheckOutStatus.LEFT_EARLY:
        return FinalStatus.PARTIAL

    return FinalStatus.ABSENT

def record_final_status(record) -> FinalStatus:
    return resolve_final_status(record.check_in_status, record.check_out_status, record.plea_status)

def contribution(record) -> Dict[str, int]:
    """What one record adds to its session's summary counters."""
    return {
        'total_present': int(record.final_status in (FinalStatus.PRESENT, FinalStatus.PARTIAL)),
        'on_time': int(record.check_in_status == CheckInStatus.ON_TIME),
        'late': int(record.check_in_status == CheckInStatus.LATE),
        'left_early': int(record.check_out_status == CheckOutStatus.LEFT_EARLY),
        'absent': int(record.final_status == FinalStatus.ABSENT),
        'with_plea': int(record.plea_status is not None)
    }

def contribution_delta(before: Dict[str, int], after: Dict[str, int]) -> Dict[str, int]:
    """Per-counter change, with zero entries dropped."""
    delta = {name: after[name] - before[name] for name in SUMMARY_FIELDS}
    return {name: value for name, value in delta.items() if value}

def tally(records) -> Dict[str, int]:
    """Summary counters recomputed from scratch."""
    totals = dict.fromkeys(SUMMARY_FIELDS, 0)
    for record in records:
        for name, value in contribution(record).items():
            totals[name] += value
    return totals
