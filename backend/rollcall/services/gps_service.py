"""GPS proximity verification service."""
import math
from dataclasses import dataclass
from typing import Dict, Optional

class GeoUnavailableError(ValueError):
    """Raised when a coordinate or the radius is missing."""

@dataclass(frozen=True)
class GeoVerdict:
    """Distance check between a reported coordinate and a geofence."""
    distance_meters: int
    is_within_range: bool

@dataclass(frozen=True)
class MarkGeoResult:
    """Geo outcome attached to one mark."""
    was_within_range: Optional[bool]
    distance_meters: Optional[int]
    available: bool

class GPSService:
    """Service for GPS and location verification."""

    EARTH_RADIUS_METERS = 6371000

    @staticmethod
    def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """Calculate distance between two GPS points in meters."""
        R = GPSService.EARTH_RADIUS_METERS

        lat1_rad = math.radians(lat1)
        lat2_rad = math.radians(lat2)
        delta_lat = math.radians(lat2 - lat1)
        delta_lon = math.radians(lon2 - lon1)

        a = (math.sin(delta_lat/2) ** 2 +
             math.cos(lat1_rad) * math.cos(lat2_rad) *
             math.sin(delta_lon/2) ** 2)
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1-a))

        return R * c

    @staticmethod
    def verify_proximity(reported: Optional[Dict], target: Optional[Dict]) -> GeoVerdict:
        """Check whether a reported coordinate lies inside the target radius.

        ``target`` carries ``latitude``, ``longitude`` and ``radius_meters``.
        Missing inputs raise GeoUnavailableError instead of passing silently.
        """
        reported = reported or {}
        target = target or {}
        required = (
            reported.get('latitude'), reported.get('longitude'),
            target.get('latitude'), target.get('longitude'),
            target.get('radius_meters')
        )
        if any(value is None for value in required):
            raise GeoUnavailableError('Invalid location or radius for geo proximity check.')

        distance = GPSService.calculate_distance(
            reported['latitude'], reported['longitude'],
            target['latitude'], target['longitude']
        )

        return GeoVerdict(
            distance_meters=int(round(distance)),
            is_within_range=distance <= target['radius_meters']
        )

    @staticmethod
    def evaluate_mark(method, reported: Optional[Dict], target: Optional[Dict]) -> MarkGeoResult:
        """Geo outcome for a mark.

        Manual marks fall back to ``was_within_range = True`` when geo cannot
        be evaluated; geo marks report the evaluation as unavailable so the
        flag engine can raise ``geo_disabled``.
        """
        from rollcall.models.student_record import MarkMethod

        try:
            verdict = GPSService.verify_proximity(reported, target)
        except GeoUnavailableError:
            if method == MarkMethod.GEO:
                return MarkGeoResult(was_within_range=None, distance_meters=None, available=False)
            return MarkGeoResult(was_within_range=True, distance_meters=None, available=False)

        return MarkGeoResult(
            was_within_range=verdict.is_within_range,
            distance_meters=verdict.distance_meters,
            available=True
        )
