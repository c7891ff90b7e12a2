from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from math import asin, cos, radians, sin, sqrt

from attendance_engine.models import Branch


@dataclass(frozen=True, slots=True)
class LocationEvidence:
    lat: float | None = None
    lon: float | None = None
    accuracy_m: float | None = None
    device_at: datetime | None = None
    ip: str | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    earth_radius_m = 6371000.0

    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return earth_radius_m * c


def distance_to_branch_m(branch: Branch | None, evidence: LocationEvidence) -> float | None:
    if branch is None or branch.lat is None or branch.lon is None:
        return None
    if not evidence.has_coordinates:
        return None
    return round(distance_m(branch.lat, branch.lon, evidence.lat, evidence.lon), 2)


def is_inside_branch_zone(branch: Branch | None, evidence: LocationEvidence) -> bool | None:
    """Return None when the zone cannot be evaluated (no branch center or no coordinates)."""
    distance_value = distance_to_branch_m(branch, evidence)
    if distance_value is None or branch is None:
        return None
    return distance_value <= branch.radius_m
