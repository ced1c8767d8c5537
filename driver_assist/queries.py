"""
Read-side projections over users, trips, events and speed samples.

Date filters select one UTC calendar day: [00:00, next day 00:00).
"""

from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import select
from sqlalchemy.orm import Session
from .errors import NotFoundError
from .models import Event, SpeedSample, Trip, User
from .persistence import get_user

def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Start of the UTC day (inclusive) and start of the next day (exclusive)."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)

def drive_time_seconds(start_time: Optional[datetime], stop_time: Optional[datetime]) -> Optional[int]:
    """Whole seconds between start and stop; None while either is unset, never negative."""
    if start_time is None or stop_time is None:
        return None
    return max(0, int((stop_time - start_time).total_seconds()))

def _in_day(query, column, day: Optional[date]):
    if day is None:
        return query
    start, end = day_bounds(day)
    return query.where(column >= start, column < end)

# Serializers

def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "role": user.role,
        "full_name": user.full_name,
        "email": user.email,
        "car_name": user.car_name,
        "car_number": user.car_number,
        "obd_name": user.obd_name,
        "bluetooth_mac": user.bluetooth_mac,
        "score": user.score,
        "created_at": user.created_at.isoformat() if user.created_at else None
    }

def serialize_event(event: Event) -> Dict[str, Any]:
    return {
        "id": event.id,
        "trip_id": event.trip_id,
        "event_type": event.event_type,
        "event_description": event.event_description,
        "latitude": event.latitude,
        "longitude": event.longitude,
        "score_change": event.score_change,
        "timestamp": event.timestamp.isoformat() if event.timestamp else None
    }

def serialize_speed(sample: SpeedSample) -> Dict[str, Any]:
    return {
        "id": sample.id,
        "trip_id": sample.trip_id,
        "speed_obd": sample.speed_obd,
        "speed_gps": sample.speed_gps,
        "speed_source": sample.speed_source,
        "latitude": sample.latitude,
        "longitude": sample.longitude,
        "timestamp": sample.timestamp.isoformat() if sample.timestamp else None
    }

def serialize_trip(trip: Trip, events: Optional[List[Event]] = None) -> Dict[str, Any]:
    data = {
        "id": trip.id,
        "trip_id": trip.trip_id,
        "user_id": trip.user_id,
        "start_location": {"lat": trip.start_lat, "lon": trip.start_lon},
        "end_location": {"lat": trip.end_lat, "lon": trip.end_lon},
        "traveled_path": list(trip.traveled_path or []),
        "start_time": trip.start_time.isoformat() if trip.start_time else None,
        "stop_time": trip.stop_time.isoformat() if trip.stop_time else None,
        "timestamp": trip.timestamp.isoformat() if trip.timestamp else None,
        "total_distance": trip.total_distance
    }
    drive_time = drive_time_seconds(trip.start_time, trip.stop_time)
    if drive_time is not None:
        data["total_drive_time"] = drive_time
    if events is not None:
        data["events"] = [serialize_event(event) for event in events]
    return data

# Queries

def list_users(db: Session) -> List[Dict[str, Any]]:
    """All drivers (role "user") with profile, vehicle and score fields."""
    users = db.execute(
        select(User).where(User.role == "user").order_by(User.id)
    ).scalars().all()
    return [serialize_user(user) for user in users]

def _events_by_trip(db: Session, user_id: int, trip_ids) -> Dict[str, List[Event]]:
    grouped = defaultdict(list)
    if not trip_ids:
        return grouped
    events = db.execute(
        select(Event)
        .where(Event.user_id == user_id, Event.trip_id.in_(list(trip_ids)))
        .order_by(Event.timestamp)
    ).scalars().all()
    for event in events:
        grouped[event.trip_id].append(event)
    return grouped

def get_trip(db: Session, user_id: int, trip_id: str) -> Dict[str, Any]:
    """The latest record for trip_id merged with its events."""
    get_user(db, user_id)
    trip = db.execute(
        select(Trip)
        .where(Trip.user_id == user_id, Trip.trip_id == trip_id)
        .order_by(Trip.timestamp.desc(), Trip.id.desc())
    ).scalars().first()
    if trip is None:
        raise NotFoundError("Trip", trip_id)
    events = _events_by_trip(db, user_id, [trip_id])
    return serialize_trip(trip, events.get(trip_id, []))

def list_trips(db: Session, user_id: int, day: Optional[date] = None) -> List[Dict[str, Any]]:
    """Trips updated on the given day (all trips without one), each with its events."""
    get_user(db, user_id)
    query = select(Trip).where(Trip.user_id == user_id)
    query = _in_day(query, Trip.timestamp, day)
    trips = db.execute(query.order_by(Trip.timestamp.desc(), Trip.id.desc())).scalars().all()

    events = _events_by_trip(db, user_id, {trip.trip_id for trip in trips})
    return [serialize_trip(trip, events.get(trip.trip_id, [])) for trip in trips]

def get_user_details(
    db: Session,
    user_id: int,
    day: Optional[date] = None,
    trip_id: Optional[str] = None
) -> Dict[str, Any]:
    """Driver profile and score with the events and trips matching the filters."""
    user = db.execute(
        select(User).where(User.id == user_id, User.role == "user")
    ).scalar_one_or_none()
    if user is None:
        raise NotFoundError("User", user_id)

    event_query = _in_day(select(Event).where(Event.user_id == user_id), Event.timestamp, day)
    trip_query = _in_day(select(Trip).where(Trip.user_id == user_id), Trip.timestamp, day)
    if trip_id is not None:
        event_query = event_query.where(Event.trip_id == trip_id)
        trip_query = trip_query.where(Trip.trip_id == trip_id)

    events = db.execute(event_query.order_by(Event.timestamp.desc())).scalars().all()
    trips = db.execute(trip_query.order_by(Trip.timestamp.desc())).scalars().all()

    details = serialize_user(user)
    details["event_logs"] = [serialize_event(event) for event in events]
    details["trips"] = [serialize_trip(trip) for trip in trips]
    return details

def get_speed_data(db: Session, user_id: int, day: Optional[date] = None) -> List[Dict[str, Any]]:
    get_user(db, user_id)
    query = _in_day(select(SpeedSample).where(SpeedSample.user_id == user_id), SpeedSample.timestamp, day)
    samples = db.execute(query.order_by(SpeedSample.timestamp.desc())).scalars().all()
    return [serialize_speed(sample) for sample in samples]

def get_events(db: Session, user_id: int) -> List[Dict[str, Any]]:
    get_user(db, user_id)
    events = db.execute(
        select(Event).where(Event.user_id == user_id).order_by(Event.timestamp.desc())
    ).scalars().all()
    return [serialize_event(event) for event in events]
