import math
from datetime import datetime
from typing import Dict, List, Optional
from .config import config

EARTH_RADIUS_KM = 6371

def calculate_distance(lat1, lon1, lat2, lon2):
    """Calculate distance between two GPS points in kilometers using Haversine formula."""
    lat1_rad = math.radians(lat1)
    lon1_rad = math.radians(lon1)
    lat2_rad = math.radians(lat2)
    lon2_rad = math.radians(lon2)

    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad

    a = math.sin(dlat/2)**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon/2)**2
    c = 2 * math.asin(math.sqrt(a))

    return EARTH_RADIUS_KM * c

def calculate_speed_kph(lat1, lon1, time1, lat2, lon2, time2):
    """Calculate speed in km/h between two GPS points."""
    distance_km = calculate_distance(lat1, lon1, lat2, lon2)
    time_diff_hours = (time2 - time1).total_seconds() / 3600

    if time_diff_hours <= 0:
        return 0.0

    return distance_km / time_diff_hours

def compute_acceleration(prev_speed_kph: float, prev_ts: datetime, speed_kph: float, ts: datetime) -> float:
    """Compute acceleration in km/h per second (kph/s)."""
    delta_s = (ts - prev_ts).total_seconds()
    if delta_s <= 0.0:
        # Avoid division by zero; treat as zero acceleration
        return 0.0
    return (speed_kph - prev_speed_kph) / delta_s

def detect_events(
    speed_kph: float,
    acceleration_kph_s: float,
    lat: float = 0.0,
    lon: float = 0.0,
    timestamp: Optional[datetime] = None
) -> List[Dict]:
    """Detect driving events for one telemetry point against the configured thresholds."""
    events = []

    if speed_kph > config.overspeed_kph:
        events.append({
            'event_type': 'speed_limit_violation',
            'event_description': f"Speed {speed_kph:.1f} km/h above limit {config.overspeed_kph:.0f} km/h",
            'timestamp': timestamp,
            'latitude': lat,
            'longitude': lon
        })

    if acceleration_kph_s < config.harsh_brake_kph_s:
        events.append({
            'event_type': 'sudden_braking',
            'event_description': f"Deceleration {acceleration_kph_s:.1f} km/h/s",
            'timestamp': timestamp,
            'latitude': lat,
            'longitude': lon
        })

    if acceleration_kph_s > config.sudden_accel_kph_s:
        events.append({
            'event_type': 'sudden_acceleration',
            'event_description': f"Acceleration {acceleration_kph_s:.1f} km/h/s",
            'timestamp': timestamp,
            'latitude': lat,
            'longitude': lon
        })

    return events
