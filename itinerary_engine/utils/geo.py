"""
Geographic helpers shared by sequencing, pricing and the components.
"""
import math
from typing import Iterable, Tuple

EARTH_RADIUS_KM = 6371.0

# km/h, airport procedures folded into the flight speed
TRAVEL_SPEEDS_KMH = {
    "walking": 5,
    "cycling": 15,
    "car": 60,
    "bus": 45,
    "train": 80,
    "flight": 500,
}

# Per-km travel cost in the origin's local currency
TRAVEL_COST_PER_KM = {
    "walking": 0.0,
    "cycling": 0.0,
    "car": 0.5,
    "bus": 0.1,
    "train": 0.15,
    "flight": 0.8,
}


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_between(a, b) -> float:
    """Distance between two objects exposing latitude/longitude."""
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def centroid(points: Iterable) -> Tuple[float, float]:
    """Arithmetic mean of latitude/longitude pairs."""
    pts = list(points)
    if not pts:
        raise ValueError("Cannot compute the centroid of no points")
    lat = sum(p.latitude for p in pts) / len(pts)
    lng = sum(p.longitude for p in pts) / len(pts)
    return lat, lng


def travel_minutes(distance_km: float, mode: str) -> int:
    speed = TRAVEL_SPEEDS_KMH.get(mode, TRAVEL_SPEEDS_KMH["car"])
    return int(round(distance_km / speed * 60))


def travel_cost(distance_km: float, mode: str) -> float:
    rate = TRAVEL_COST_PER_KM.get(mode, TRAVEL_COST_PER_KM["car"])
    return float(round(distance_km * rate))


def season_for_month(month: int) -> str:
    """Northern-hemisphere meteorological season name."""
    if 3 <= month <= 5:
        return "spring"
    if 6 <= month <= 8:
        return "summer"
    if 9 <= month <= 11:
        return "autumn"
    return "winter"
