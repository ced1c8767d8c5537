from datetime import date
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from ..db import get_db
from ..persistence import (
    add_speed_samples,
    authenticate,
    create_user,
    delete_user,
    log_event,
    submit_trip_update,
    update_user,
)
from ..queries import get_events, get_speed_data, get_trip, get_user_details, list_trips, list_users
from ..schemas import EventCreate, LocationUpdate, LoginRequest, SpeedBatch, UserCreate, UserUpdate

router = APIRouter()

@router.post("/login")
def login(credentials: LoginRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Check a username and password."""
    user = authenticate(db, credentials.username, credentials.password)
    if user is None:
        return {"success": False, "error": "Invalid credentials"}
    return {
        "success": True,
        "user": {"id": user.id, "username": user.username, "role": user.role}
    }

@router.post("/add_user")
def add_user(payload: UserCreate, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Register a driver or admin."""
    user = create_user(db, **payload.model_dump())
    return {"success": True, "message": "User added successfully", "user_id": user.id}

@router.put("/update_user")
def update_user_endpoint(payload: UserUpdate, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Update profile and vehicle pairing fields."""
    fields = payload.model_dump()
    user_id = fields.pop("id")
    update_user(db, user_id, **fields)
    return {"success": True, "message": "User updated successfully"}

@router.delete("/delete_user/{user_id}")
def delete_user_endpoint(user_id: int, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Delete a user and everything recorded for them."""
    counts = delete_user(db, user_id)
    return {"success": True, "deletedCounts": counts}

@router.get("/get_users")
def get_users(db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Get list of all drivers with their current scores."""
    return {"success": True, "users": list_users(db)}

@router.post("/location")
def submit_location(payload: LocationUpdate, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Merge a location update into the driver's open trip."""
    trip = submit_trip_update(
        db,
        user_id=payload.user_id,
        trip_id=payload.trip_id,
        start_location=payload.start_location.model_dump(),
        end_location=payload.end_location.model_dump(),
        traveled_path=[point.model_dump() for point in payload.traveled_path],
        start_time=payload.start_time,
        total_distance=payload.total_distance,
        timestamp=payload.timestamp,
        stop_time=payload.stop_time
    )
    return {"success": True, "location_id": trip.id}

@router.post("/speed")
def submit_speed(payload: SpeedBatch, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Store a batch of speed samples."""
    samples = [reading.model_dump() for reading in payload.speed_data]
    speed_ids = add_speed_samples(db, payload.user_id, samples, trip_id=payload.trip_id)
    return {"success": True, "speed_ids": speed_ids}

@router.post("/log_event")
def submit_event(payload: EventCreate, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Log a driving event and apply its score change."""
    event, score_change = log_event(db, **payload.model_dump())
    return {"success": True, "event_id": event.id, "score_change": score_change}

@router.get("/get_user_details")
def get_user_details_endpoint(
    db: Session = Depends(get_db),
    user_id: int = Query(..., description="Driver ID"),
    day: Optional[date] = Query(None, alias="date", description="UTC day, YYYY-MM-DD"),
    trip_id: Optional[str] = Query(None, description="Restrict to one trip")
) -> Dict[str, Any]:
    """Get a driver with events and trips, optionally for one day or trip."""
    return {"success": True, "user": get_user_details(db, user_id, day, trip_id)}

@router.get("/get_trips_data")
def get_trips_data(
    db: Session = Depends(get_db),
    user_id: int = Query(..., description="Driver ID"),
    day: Optional[date] = Query(None, alias="date", description="UTC day, YYYY-MM-DD"),
    trip_id: Optional[str] = Query(None, description="Return a single trip")
) -> Dict[str, Any]:
    """Get trips with their events."""
    if trip_id is not None:
        return {"success": True, "trip_data": get_trip(db, user_id, trip_id)}
    return {"success": True, "trips_data": list_trips(db, user_id, day)}

@router.get("/get_speed_data")
def get_speed_data_endpoint(
    db: Session = Depends(get_db),
    user_id: int = Query(..., description="Driver ID"),
    day: Optional[date] = Query(None, alias="date", description="UTC day, YYYY-MM-DD")
) -> Dict[str, Any]:
    """Get speed samples for a driver."""
    return {"success": True, "speed_data": get_speed_data(db, user_id, day)}

@router.get("/get_events")
def get_events_endpoint(
    db: Session = Depends(get_db),
    user_id: int = Query(..., description="Driver ID")
) -> Dict[str, Any]:
    """Get events for a driver, newest first."""
    return {"success": True, "events": get_events(db, user_id)}
