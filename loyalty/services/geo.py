from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Generic, Iterable, TypeVar

EARTH_RADIUS_KM = 6371.0

T = TypeVar("T")


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle (haversine) distance in km, rounded to 2 decimals."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_KM * c, 2)


@dataclass
class Nearby(Generic[T]):
    item: T
    distance_km: float


def nearby(
    candidates: Iterable[T],
    *,
    latitude: float,
    longitude: float,
    radius_km: float,
) -> list[Nearby[T]]:
    """
    Keep candidates within ``radius_km`` of the origin, closest first.

    Candidates need ``latitude`` / ``longitude`` attributes. Ties keep
    their input order.
    """
    hits: list[Nearby[T]] = []
    for c in candidates:
        d = distance_km(latitude, longitude, float(c.latitude), float(c.longitude))
        if d <= radius_km:
            hits.append(Nearby(item=c, distance_km=d))
    hits.sort(key=lambda h: h.distance_km)
    return hits
