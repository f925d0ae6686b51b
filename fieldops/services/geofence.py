"""
Geofence Verifier

Great-circle distance between the site coordinate a ticket is bound to and
the coordinate a technician submitted, classified against a tolerance.

Policy:
  - Haversine formula on a spherical Earth (radius 6 371 000 m).
  - ``is_valid = distance_m <= tolerance_m``.
  - Missing expected or actual coordinates fail closed.
  - Reported GPS accuracy is annotated (``accuracy_warning`` when it is
    coarser than the tolerance) but does not gate validity.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

EARTH_RADIUS_M = 6_371_000.0

DEFAULT_TOLERANCE_M = 50.0

MISSING_COORDINATES = "missing coordinates"


@dataclass(frozen=True)
class GeofenceResult:
    is_valid: bool
    distance_m: float | None
    tolerance_m: float
    accuracy_m: float | None = None
    reason: str | None = None
    accuracy_warning: bool = False

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "distance_m": round(self.distance_m, 1) if self.distance_m is not None else None,
            "tolerance_m": self.tolerance_m,
            "accuracy_m": self.accuracy_m,
            "reason": self.reason,
            "accuracy_warning": self.accuracy_warning,
        }


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Distance in metres between two WGS84 points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def _coords(point: dict | None) -> tuple[float, float] | None:
    if not point:
        return None
    lat = point.get("lat")
    lng = point.get("lng")
    if lat is None or lng is None:
        return None
    return float(lat), float(lng)


def verify(expected: dict | None, actual: dict | None,
           tolerance_m: float = DEFAULT_TOLERANCE_M) -> GeofenceResult:
    """Classify *actual* (``{lat, lng, accuracy}``) against *expected* (``{lat, lng}``)."""
    accuracy = None
    if actual and actual.get("accuracy") is not None:
        accuracy = float(actual["accuracy"])

    exp = _coords(expected)
    act = _coords(actual)
    if exp is None or act is None:
        return GeofenceResult(
            is_valid=False,
            distance_m=None,
            tolerance_m=tolerance_m,
            accuracy_m=accuracy,
            reason=MISSING_COORDINATES,
        )

    distance = haversine_distance(exp[0], exp[1], act[0], act[1])
    is_valid = distance <= tolerance_m
    reason = None
    if not is_valid:
        reason = f"Location too far ({round(distance)}m > {tolerance_m:g}m)"

    return GeofenceResult(
        is_valid=is_valid,
        distance_m=distance,
        tolerance_m=tolerance_m,
        accuracy_m=accuracy,
        reason=reason,
        accuracy_warning=accuracy is not None and accuracy > tolerance_m,
    )
