import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from .config import config
from .errors import ConflictError, NotFoundError, StorageError, ValidationError
from .models import Event, SpeedSample, Trip, User
from .scoring import apply_event
from .security import hash_password, verify_password

logger = logging.getLogger(__name__)

ROLES = ("admin", "user")
PROFILE_FIELDS = ("full_name", "email", "car_name", "car_number", "obd_name", "bluetooth_mac")

# Attempts at the open-trip find-or-create before giving up
OPEN_TRIP_ATTEMPTS = 3

# Tables owned by a user, deleted before the user row itself
OWNED_MODELS = (Event, SpeedSample, Trip)

def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to naive UTC; naive input is assumed to be UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)

def _require(**fields):
    missing = [name for name, value in fields.items() if value is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

def _coords(location: Mapping[str, Any], field: str) -> Tuple[float, float]:
    """Read a point given as {lat, lon} or {latitude, longitude}."""
    lat = location.get("lat", location.get("latitude"))
    lon = location.get("lon", location.get("longitude"))
    if lat is None or lon is None:
        raise ValidationError(f"{field} requires lat and lon")
    return float(lat), float(lon)

def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user

# Users

def create_user(
    db: Session,
    username: str,
    password: str,
    role: str = "user",
    **profile
) -> User:
    """Register a user with a hashed password and the default score."""
    _require(username=username, password=password)
    if role not in ROLES:
        raise ValidationError(f"Invalid role: {role}")
    if db.execute(select(User.id).where(User.username == username)).first():
        raise ConflictError(f"Username {username} already exists")

    user = User(
        username=username,
        password_hash=hash_password(password),
        role=role,
        score=config.score_default,
        **{name: profile.get(name) for name in PROFILE_FIELDS}
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(f"Username {username} already exists") from e
    db.refresh(user)
    logger.info("Registered %s %s (id=%s)", role, username, user.id)
    return user

def authenticate(db: Session, username: str, password: str) -> Optional[User]:
    """Return the user when the credentials match, otherwise None."""
    user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user

def update_user(
    db: Session,
    user_id: int,
    username: Optional[str] = None,
    password: Optional[str] = None,
    **profile
) -> User:
    """Update profile and vehicle fields; fields left as None are kept."""
    _require(id=user_id)
    if username is None and password is None and all(profile.get(name) is None for name in PROFILE_FIELDS):
        raise ValidationError("No fields to update")
    user = get_user(db, user_id)

    if username is not None and username != user.username:
        taken = db.execute(
            select(User.id).where(User.username == username, User.id != user_id)
        ).first()
        if taken:
            raise ConflictError(f"Username {username} already exists")
        user.username = username
    if password is not None:
        user.password_hash = hash_password(password)
    for name in PROFILE_FIELDS:
        value = profile.get(name)
        if value is not None:
            setattr(user, name, value)

    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(f"Username {username} already exists") from e
    db.refresh(user)
    return user

def _delete_owned(db: Session, model, user_id: int) -> int:
    result = db.execute(
        delete(model)
        .where(model.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount

def delete_user(db: Session, user_id: int) -> Dict[str, int]:
    """
    Delete a user together with their trips, events and speed samples.

    Everything happens in one transaction: either all rows are gone or,
    on any database error, none are.
    """
    get_user(db, user_id)
    counts = {}
    try:
        for model in OWNED_MODELS:
            counts[model.__tablename__] = _delete_owned(db, model, user_id)
        counts["users"] = db.execute(
            delete(User)
            .where(User.id == user_id)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Deleting user %s failed, rolled back", user_id, exc_info=True)
        raise StorageError(f"Failed to delete user {user_id}: {e}") from e

    logger.info("Deleted user %s: %s", user_id, counts)
    return counts

# Trips

def _find_open_trip(db: Session, user_id: int, trip_id: str) -> Optional[Trip]:
    return db.execute(
        select(Trip)
        .where(
            Trip.user_id == user_id,
            Trip.trip_id == trip_id,
            Trip.stop_time.is_(None)
        )
        .with_for_update()
    ).scalars().first()

def submit_trip_update(
    db: Session,
    user_id: int,
    trip_id: str,
    start_location: Mapping[str, Any],
    end_location: Mapping[str, Any],
    traveled_path: Iterable[Mapping[str, Any]],
    start_time: datetime,
    total_distance: float,
    timestamp: Optional[datetime] = None,
    stop_time: Optional[datetime] = None
) -> Trip:
    """
    Merge a location submission into the open trip for (user_id, trip_id).

    The open trip (no stop_time) gets its end location, traveled path, total
    distance and timestamp overwritten; a given stop_time closes it. When no
    open trip exists a new one is created. The partial unique index on open
    trips turns a lost creation race into an IntegrityError, after which the
    lookup is retried and the winner's record is updated instead.
    """
    _require(
        user_id=user_id,
        trip_id=trip_id,
        start_location=start_location,
        end_location=end_location,
        traveled_path=traveled_path,
        start_time=start_time,
        total_distance=total_distance
    )
    get_user(db, user_id)

    start_lat, start_lon = _coords(start_location, "start_location")
    end_lat, end_lon = _coords(end_location, "end_location")
    path = []
    for point in traveled_path:
        lat, lon = _coords(point, "traveled_path")
        path.append({"lat": lat, "lon": lon})
    start_time = to_utc(start_time)
    stop_time = to_utc(stop_time)
    timestamp = to_utc(timestamp) or utcnow()

    for attempt in range(1, OPEN_TRIP_ATTEMPTS + 1):
        trip = _find_open_trip(db, user_id, trip_id)
        if trip is not None:
            trip.end_lat = end_lat
            trip.end_lon = end_lon
            trip.traveled_path = path
            trip.total_distance = total_distance
            trip.timestamp = timestamp
            if stop_time is not None:
                trip.stop_time = stop_time
            db.commit()
            if stop_time is not None:
                logger.info("Closed trip %s for user %s", trip_id, user_id)
            return trip

        trip = Trip(
            user_id=user_id,
            trip_id=trip_id,
            start_lat=start_lat,
            start_lon=start_lon,
            end_lat=end_lat,
            end_lon=end_lon,
            traveled_path=path,
            start_time=start_time,
            stop_time=stop_time,
            timestamp=timestamp,
            total_distance=total_distance
        )
        db.add(trip)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(
                "Open trip %s for user %s was created concurrently (attempt %d), retrying",
                trip_id, user_id, attempt
            )
            continue
        logger.info("Started trip %s for user %s (id=%s)", trip_id, user_id, trip.id)
        return trip

    raise StorageError(f"Could not store update for trip {trip_id}")

# Events and speed

def log_event(
    db: Session,
    user_id: int,
    event_type: str,
    event_description: Optional[str] = None,
    trip_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None
) -> Tuple[Event, int]:
    """Store an event and apply its score change in the same transaction."""
    _require(user_id=user_id, event_type=event_type)
    get_user(db, user_id)

    try:
        score_change = apply_event(db, user_id, event_type)
        event = Event(
            user_id=user_id,
            trip_id=trip_id,
            event_type=event_type,
            event_description=event_description,
            latitude=latitude if latitude is not None else 0.0,
            longitude=longitude if longitude is not None else 0.0,
            score_change=score_change,
            timestamp=to_utc(timestamp) or utcnow()
        )
        db.add(event)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    if score_change:
        logger.info("User %s %s: score change %+d", user_id, event_type, score_change)
    return event, score_change

def add_speed_samples(
    db: Session,
    user_id: int,
    samples: List[Mapping[str, Any]],
    trip_id: Optional[str] = None
) -> List[int]:
    """Store a batch of speed samples; missing speeds default to 0."""
    _require(user_id=user_id, speed_data=samples)
    if not samples:
        raise ValidationError("speed_data must not be empty")
    get_user(db, user_id)

    rows = []
    for sample in samples:
        _require(latitude=sample.get("latitude"), longitude=sample.get("longitude"))
        rows.append(SpeedSample(
            user_id=user_id,
            trip_id=sample.get("trip_id", trip_id),
            speed_obd=sample.get("speed_obd") or 0.0,
            speed_gps=sample.get("speed_gps") or 0.0,
            speed_source=sample.get("speed_source"),
            latitude=sample["latitude"],
            longitude=sample["longitude"],
            timestamp=to_utc(sample.get("timestamp")) or utcnow()
        ))
    db.add_all(rows)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return [row.id for row in rows]
