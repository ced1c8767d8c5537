from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, JSON, Index, text
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from .config import SCORE_DEFAULT

Base = declarative_base()

# All DateTime columns hold naive UTC values.

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    username = Column(String(128), unique=True, nullable=False)
    password_hash = Column(String(128), nullable=False)
    role = Column(String(16), nullable=False, default="user")
    full_name = Column(String(255))
    email = Column(String(255))
    car_name = Column(String(128))
    car_number = Column(String(64))
    obd_name = Column(String(128))
    bluetooth_mac = Column(String(32))
    score = Column(Integer, default=SCORE_DEFAULT)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

class Trip(Base):
    __tablename__ = "trips"
    __table_args__ = (
        # At most one open trip per (user, trip_id)
        Index(
            "uq_trips_open_trip",
            "user_id",
            "trip_id",
            unique=True,
            sqlite_where=text("stop_time IS NULL"),
            postgresql_where=text("stop_time IS NULL"),
        ),
        Index("ix_trips_user_timestamp", "user_id", "timestamp"),
    )
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    trip_id = Column(String(128), nullable=False)
    start_lat = Column(Float, nullable=False)
    start_lon = Column(Float, nullable=False)
    end_lat = Column(Float, nullable=False)
    end_lon = Column(Float, nullable=False)
    traveled_path = Column(JSON, nullable=False, default=list)
    start_time = Column(DateTime, nullable=False)
    stop_time = Column(DateTime)
    timestamp = Column(DateTime, nullable=False)
    total_distance = Column(Float, nullable=False)  # kilometers
    created_at = Column(DateTime, server_default=func.now())
    user = relationship("User")

class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_user_timestamp", "user_id", "timestamp"),
    )
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    trip_id = Column(String(128))
    event_type = Column(String(64), nullable=False)
    event_description = Column(String(512))
    latitude = Column(Float, default=0.0)
    longitude = Column(Float, default=0.0)
    score_change = Column(Integer, default=0)
    timestamp = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

class SpeedSample(Base):
    __tablename__ = "speed_samples"
    __table_args__ = (
        Index("ix_speed_samples_user_timestamp", "user_id", "timestamp"),
    )
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    trip_id = Column(String(128))
    speed_obd = Column(Float, default=0.0)
    speed_gps = Column(Float, default=0.0)
    speed_source = Column(String(16))
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
