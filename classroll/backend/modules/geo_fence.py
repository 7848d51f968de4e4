# classroll/backend/modules/geo_fence.py

import math
from dataclasses import dataclass
from numbers import Real
from typing import Optional

from ..models.db_models import GeoPoint, GeoFenceConfig

# Mean earth radius (IUGG), meters.
EARTH_RADIUS_METERS = 6371008.8


def is_valid_coordinate(lat, lng) -> bool:
    """Checks lat is in [-90, 90] and lng in [-180, 180]. Booleans and NaN are rejected."""
    if isinstance(lat, bool) or isinstance(lng, bool):
        return False
    if not isinstance(lat, Real) or not isinstance(lng, Real):
        return False
    return -90 <= lat <= 90 and -180 <= lng <= 180


def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points using the Haversine formula."""
    lat1, lng1 = math.radians(a.latitude), math.radians(a.longitude)
    lat2, lng2 = math.radians(b.latitude), math.radians(b.longitude)
    d_lat = lat2 - lat1
    d_lng = lng2 - lng1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    # Clamp against rounding just above 1.0 for antipodal points.
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(min(1.0, h)))


def is_within_radius(point: GeoPoint, center: GeoPoint, radius_meters: float) -> bool:
    """True if point lies within radius_meters of center. Invalid coordinates yield False."""
    if not is_valid_coordinate(point.latitude, point.longitude):
        return False
    if not is_valid_coordinate(center.latitude, center.longitude):
        return False
    return distance_meters(point, center) <= radius_meters


def is_accuracy_acceptable(accuracy, max_accuracy: float = 100) -> bool:
    if isinstance(accuracy, bool) or not isinstance(accuracy, Real):
        return False
    return 0 <= accuracy <= max_accuracy


def is_same_location(a: GeoPoint, b: GeoPoint, threshold_meters: float = 50) -> bool:
    return is_within_radius(a, b, threshold_meters)


@dataclass(frozen=True)
class GeoCheck:
    passed: bool
    reason: Optional[str] = None
    distance_meters: Optional[float] = None


def validate_location(config: GeoFenceConfig, point: GeoPoint) -> GeoCheck:
    """
    Runs the configured geo-fence checks against a reported location.
    When geo-fencing is disabled every location passes.
    """
    if not config.geo_fencing_enabled:
        return GeoCheck(passed=True)

    if not is_valid_coordinate(point.latitude, point.longitude):
        return GeoCheck(passed=False, reason="INVALID_COORDINATES")

    distance = distance_meters(point, config.center)
    if distance > config.allowed_radius_meters:
        return GeoCheck(passed=False, reason="OUTSIDE_SCHOOL_RADIUS", distance_meters=distance)

    if config.require_accuracy and point.accuracy is not None:
        if not is_accuracy_acceptable(point.accuracy, config.max_accuracy_meters):
            return GeoCheck(passed=False, reason="LOCATION_ACCURACY_TOO_LOW", distance_meters=distance)

    return GeoCheck(passed=True, distance_meters=distance)
