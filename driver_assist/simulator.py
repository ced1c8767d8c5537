"""
Replays recorded GPS tracks through the ingestion pipeline.

Each point is submitted the way a device does it: the full traveled path and
the cumulative distance are resent with every trip update, the last point
closes the trip, a GPS speed sample is stored per point and threshold
detected events are logged through the score engine.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional
from uuid import uuid4

import pandas as pd
from sqlalchemy.orm import Session

from .config import config
from .db import Database
from .detection import calculate_distance, calculate_speed_kph, compute_acceleration, detect_events
from .persistence import add_speed_samples, get_user, log_event, submit_trip_update, to_utc

logger = logging.getLogger(__name__)

TRACK_COLUMNS = ("track_id", "latitude", "longitude", "time")

def load_tracks(csv_path: str) -> pd.DataFrame:
    """Read a track points CSV and sort it by track and time."""
    df = pd.read_csv(csv_path)
    missing = [column for column in TRACK_COLUMNS if column not in df.columns]
    if missing:
        raise ValueError(f"{csv_path} is missing columns: {', '.join(missing)}")
    df['time'] = pd.to_datetime(df['time'], utc=True)
    return df.sort_values(['track_id', 'time']).reset_index(drop=True)

class TrackReplay:
    """State of one track being replayed for a user."""

    def __init__(self, user_id: int, trip_id: str):
        self.user_id = user_id
        self.trip_id = trip_id
        self.path: List[Dict[str, float]] = []
        self.total_distance = 0.0
        self.start_time: Optional[datetime] = None
        self.event_count = 0
        self._prev_point = None
        self._prev_speed: Optional[float] = None

    def step(self, db: Session, lat: float, lon: float, timestamp: datetime, last: bool = False) -> Dict:
        """Submit one point; returns what was derived from it."""
        if isinstance(timestamp, pd.Timestamp):
            timestamp = timestamp.to_pydatetime()
        timestamp = to_utc(timestamp)

        speed_kph = 0.0
        acceleration_kph_s = 0.0
        if self._prev_point is None:
            self.start_time = timestamp
        else:
            prev_lat, prev_lon, prev_time = self._prev_point
            self.total_distance += calculate_distance(prev_lat, prev_lon, lat, lon)
            speed_kph = calculate_speed_kph(prev_lat, prev_lon, prev_time, lat, lon, timestamp)
            if self._prev_speed is not None:
                acceleration_kph_s = compute_acceleration(self._prev_speed, prev_time, speed_kph, timestamp)
            self._prev_speed = speed_kph
        self.path.append({"lat": lat, "lon": lon})

        trip = submit_trip_update(
            db,
            user_id=self.user_id,
            trip_id=self.trip_id,
            start_location=self.path[0],
            end_location=self.path[-1],
            traveled_path=list(self.path),
            start_time=self.start_time,
            total_distance=round(self.total_distance, 3),
            timestamp=timestamp,
            stop_time=timestamp if last else None
        )
        add_speed_samples(db, self.user_id, [{
            "latitude": lat,
            "longitude": lon,
            "speed_gps": speed_kph,
            "speed_source": "gps",
            "timestamp": timestamp
        }], trip_id=self.trip_id)

        detected = detect_events(speed_kph, acceleration_kph_s, lat, lon, timestamp)
        for event in detected:
            log_event(db, self.user_id, trip_id=self.trip_id, **event)
        self.event_count += len(detected)

        if last and self.event_count == 0:
            log_event(
                db,
                self.user_id,
                event_type="safe_driving",
                event_description="Trip completed without incidents",
                trip_id=self.trip_id,
                timestamp=timestamp,
                latitude=lat,
                longitude=lon
            )

        self._prev_point = (lat, lon, timestamp)
        return {
            "trip": trip.id,
            "speed_kph": speed_kph,
            "acceleration_kph_s": acceleration_kph_s,
            "events": [event["event_type"] for event in detected]
        }

def replay_track(db: Session, user_id: int, track: pd.DataFrame, trip_id: Optional[str] = None) -> Dict:
    """Replay a whole track without pauses."""
    trip_id = trip_id or f"replay-{uuid4().hex[:12]}"
    replay = TrackReplay(user_id, trip_id)
    total = len(track)
    for position, (_, row) in enumerate(track.iterrows(), start=1):
        replay.step(db, float(row['latitude']), float(row['longitude']), row['time'], last=position == total)
    return {
        "trip_id": trip_id,
        "points": total,
        "total_distance": round(replay.total_distance, 3),
        "events": replay.event_count
    }

class Simulator:
    """Runs track replays as a background task against a database."""

    def __init__(self, database: Database, csv_path: Optional[str] = None, interval: Optional[float] = None):
        self.database = database
        self.csv_path = csv_path or config.trackspoints_csv
        self.interval = config.emit_interval_seconds if interval is None else interval
        self.running = False
        self.current_task: Optional[asyncio.Task] = None

    def is_running(self) -> bool:
        return self.running

    def start(self, user_id: int, track_id=None) -> bool:
        """Start replaying in the background; False if a replay is already running."""
        if self.running:
            return False
        self.running = True
        self.current_task = asyncio.get_running_loop().create_task(self._run(user_id, track_id))
        return True

    def stop(self):
        self.running = False
        if self.current_task and not self.current_task.done():
            logger.info("Cancelling simulation task")
            self.current_task.cancel()

    async def _run(self, user_id: int, track_id=None):
        try:
            df = load_tracks(self.csv_path)
            if track_id is not None:
                df = df[df['track_id'] == track_id]
            track_ids = sorted(df['track_id'].unique())
            logger.info("Replaying %d track(s) from %s for user %s", len(track_ids), self.csv_path, user_id)

            db = self.database.session()
            try:
                get_user(db, user_id)
                for current_track in track_ids:
                    group = df[df['track_id'] == current_track]
                    replay = TrackReplay(user_id, f"track-{current_track}-{uuid4().hex[:8]}")
                    total = len(group)
                    for position, (_, row) in enumerate(group.iterrows(), start=1):
                        if not self.running:
                            logger.info("Simulation stopped during track %s", current_track)
                            return
                        replay.step(db, float(row['latitude']), float(row['longitude']), row['time'],
                                    last=position == total)
                        await asyncio.sleep(self.interval)
                    logger.info("Completed track %s: %d points, %.3f km, %d events",
                                current_track, total, replay.total_distance, replay.event_count)
            finally:
                db.close()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Simulation failed")
        finally:
            self.running = False
