import os

# Must be set before driver_assist.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_FILE"] = ""

import threading
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from driver_assist.db import Database
from driver_assist.main import create_app
from driver_assist.persistence import create_user, submit_trip_update

@pytest.fixture
def database():
    """Fresh in-memory database per test."""
    database = Database("sqlite://")
    database.init_db()
    yield database
    database.dispose()

@pytest.fixture
def file_database(tmp_path):
    """File-backed database, so each thread can hold its own connection."""
    database = Database(f"sqlite:///{tmp_path / 'driver_assist.db'}")
    database.init_db()
    yield database
    database.dispose()

def run_in_threads(database, worker, count):
    """Run worker(session) in count threads started together; returns raised errors."""
    barrier = threading.Barrier(count)
    errors = []

    def target():
        session = database.session()
        try:
            barrier.wait()
            worker(session)
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=target) for _ in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return errors

@pytest.fixture
def db(database):
    session = database.session()
    yield session
    session.close()

@pytest.fixture
def client(database):
    app = create_app(database)
    with TestClient(app) as test_client:
        yield test_client

@pytest.fixture
def make_user(db):
    """Factory creating drivers with unique usernames."""
    counter = {"n": 0}

    def _make_user(role="user", **fields):
        counter["n"] += 1
        fields.setdefault("username", f"driver{counter['n']}")
        fields.setdefault("password", "secret")
        fields.setdefault("full_name", f"Driver {counter['n']}")
        return create_user(db, role=role, **fields)

    return _make_user

@pytest.fixture
def user(make_user):
    return make_user()

def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)

def send_update(db, user_id, trip_id, path, **overrides):
    """Submit a trip update whose path is the full list of (lat, lon) points so far."""
    points = [{"lat": lat, "lon": lon} for lat, lon in path]
    fields = {
        "start_location": points[0],
        "end_location": points[-1],
        "traveled_path": points,
        "start_time": utc(2024, 5, 2, 8, 0, 0),
        "total_distance": float(len(points) - 1),
        "timestamp": utc(2024, 5, 2, 8, len(points), 0),
    }
    fields.update(overrides)
    return submit_trip_update(db, user_id=user_id, trip_id=trip_id, **fields)
