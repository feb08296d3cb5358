"""Per-session policy bundles stored as JSON on the session row."""
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Dict, Optional

from rollcall.utils.errors import ValidationFailed

class ProofRequirement(Enum):
    NONE = 'none'
    SELFIE = 'selfie'
    FINGERPRINT = 'fingerprint'

class StatusHandling(Enum):
    """Final-status policy applied on the reopen pathway."""
    PRESENT = 'present'
    PARTIAL = 'partial'
    AS_COMPUTED = 'as_computed'

def _coerce(cls, payload: Optional[Dict[str, Any]]):
    """Build a policy dataclass from a camelCase or snake_case mapping."""
    payload = payload or {}
    known = {f.name: f for f in fields(cls)}
    aliases = {f.name.replace('_', ''): f.name for f in fields(cls)}
    values = {}

    for key, value in payload.items():
        name = key if key in known else aliases.get(key.replace('_', '').lower())
        if name is None:
            raise ValidationFailed('INVALID_SETTINGS', f'Unknown setting "{key}".')

        default = known[name].default
        if isinstance(default, bool):
            if not isinstance(value, bool):
                raise ValidationFailed('INVALID_SETTINGS', f'Setting "{key}" must be true or false.')
        elif isinstance(default, int):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationFailed('INVALID_SETTINGS', f'Setting "{key}" must be a non-negative integer.')
        elif isinstance(default, Enum):
            try:
                value = type(default)(value)
            except ValueError:
                allowed = ', '.join(member.value for member in type(default))
                raise ValidationFailed('INVALID_SETTINGS', f'Setting "{key}" must be one of: {allowed}.')
        values[name] = value

    return cls(**values)

def _serialize(policy) -> Dict[str, Any]:
    return {
        key: value.value if isinstance(value, Enum) else value
        for key, value in asdict(policy).items()
    }

@dataclass
class SessionSettings:
    """Admission rules for marking.

    proof_requirement            selfie requires a proof reference on check-in
    allow_late_joiners           students who joined the group after the session
                                 was created may mark
    allow_early_check_in         check-in before entry start is accepted (flagged)
    allow_late_check_in          check-in after entry end is accepted (flagged)
    allow_early_check_out        check-out before the check-out window is accepted
                                 and counted as left_early
    allow_late_check_out         check-out after the check-out window is accepted
    enable_check_in_out          check-out is part of the session
    minimum_presence_duration    minutes between check-in and check-out
    check_out_lead_minutes       check-out window opens this long before class end
    check_out_grace_minutes      check-out window closes this long after class end
    """
    proof_requirement: ProofRequirement = ProofRequirement.NONE
    allow_late_joiners: bool = True
    allow_early_check_in: bool = True
    allow_late_check_in: bool = True
    allow_early_check_out: bool = True
    allow_late_check_out: bool = True
    enable_check_in_out: bool = True
    minimum_presence_duration: int = 0
    check_out_lead_minutes: int = 10
    check_out_grace_minutes: int = 15

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> 'SessionSettings':
        return _coerce(cls, payload)

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)

@dataclass
class ReopenFeatures:
    """Overrides in force while a session is reopened."""
    allow_fresh_check_in_out: bool = True
    allow_check_out_for_checked_in: bool = True
    require_geo: bool = False
    enable_final_status_control: bool = True
    absent_handling: StatusHandling = StatusHandling.PRESENT
    partial_handling: StatusHandling = StatusHandling.AS_COMPUTED

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> 'ReopenFeatures':
        return _coerce(cls, payload)

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)
