"""Validation utilities for attendance payloads."""
import re
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from rollcall.utils.errors import ValidationFailed

TIME_OF_DAY_PATTERN = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')

class Validator:
    """Validation helper class."""
    
    @staticmethod
    def require_fields(data: Dict, required_fields: List[str]) -> None:
        """Raise MISSING_FIELDS naming every absent field."""
        missing = [field for field in required_fields if data.get(field) in (None, '')]
        if missing:
            raise ValidationFailed(
                'MISSING_FIELDS',
                f"Missing required field(s): {', '.join(missing)}.",
                {'missing': missing}
            )
    
    @staticmethod
    def parse_class_date(value: Any) -> date:
        """Parse a ``YYYY-MM-DD`` class date."""
        if isinstance(value, date):
            return value
        try:
            return datetime.strptime(str(value), '%Y-%m-%d').date()
        except ValueError:
            raise ValidationFailed(
                'INVALID_CLASS_DATE',
                f'Class date "{value}" must use the YYYY-MM-DD format.'
            )
    
    @staticmethod
    def parse_time_of_day(value: Any, field: str) -> time:
        """Parse an ``HH:MM`` time of day."""
        if isinstance(value, time):
            return value
        match = TIME_OF_DAY_PATTERN.match(str(value or '').strip())
        if not match:
            raise ValidationFailed(
                'INVALID_TIME_RANGE',
                f'{field} "{value}" must use the HH:MM 24-hour format.'
            )
        return time(int(match.group(1)), int(match.group(2)))
    
    @staticmethod
    def is_coordinate(latitude: Any, longitude: Any) -> bool:
        """Check latitude/longitude are real numbers within range."""
        for value in (latitude, longitude):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return False
            if value != value:  # NaN
                return False
        return -90 <= latitude <= 90 and -180 <= longitude <= 180
    
    @staticmethod
    def parse_location(payload: Optional[Dict]) -> Optional[Dict[str, float]]:
        """Normalise an optional reported location, rejecting garbage."""
        if not payload:
            return None
        if not isinstance(payload, dict):
            raise ValidationFailed(
                'INVALID_LOCATION',
                'Location must be an object with latitude and longitude.'
            )
        latitude = payload.get('latitude')
        longitude = payload.get('longitude')
        if latitude is None and longitude is None:
            return None
        if not Validator.is_coordinate(latitude, longitude):
            raise ValidationFailed(
                'INVALID_LOCATION',
                'Latitude and longitude must be valid numbers.'
            )
        return {'latitude': float(latitude), 'longitude': float(longitude)}
    
    @staticmethod
    def choice(value: Any, allowed, code: str, field: str) -> str:
        """Ensure value is one of the allowed options."""
        if value not in allowed:
            raise ValidationFailed(
                code,
                f"{field} must be one of: {', '.join(sorted(allowed))}."
            )
        return value
