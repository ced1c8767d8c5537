import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from driver_assist import persistence
from driver_assist.errors import ConflictError, NotFoundError, StorageError, ValidationError
from driver_assist.models import Event, SpeedSample, Trip, User
from driver_assist.persistence import (
    add_speed_samples,
    authenticate,
    create_user,
    delete_user,
    log_event,
    update_user,
)
from conftest import send_update, utc

def count(db, model, user_id=None):
    query = select(func.count(model.id))
    if user_id is not None:
        column = model.id if model is User else model.user_id
        query = query.where(column == user_id)
    return db.execute(query).scalar_one()

def populate(db, user_id):
    send_update(db, user_id, "t1", [(1.0, 1.0)], stop_time=utc(2024, 5, 2, 9, 0, 0))
    send_update(db, user_id, "t2", [(2.0, 2.0)])
    log_event(db, user_id, "sudden_braking", "x", trip_id="t1")
    log_event(db, user_id, "safe_driving", "y", trip_id="t2")
    log_event(db, user_id, "other", "z", trip_id="t2")
    add_speed_samples(db, user_id, [
        {"latitude": 1.0, "longitude": 1.0, "speed_gps": 30.0},
        {"latitude": 1.1, "longitude": 1.1, "speed_obd": 32.0},
    ])

class TestRegistration:
    """Creating users and checking credentials."""

    def test_password_is_hashed(self, db, user):
        assert user.password_hash != "secret"
        assert user.password_hash.startswith("$2")

    def test_profile_fields_are_stored(self, make_user):
        user = make_user(car_name="Camry", car_number="ABC123", obd_name="OBD-II", bluetooth_mac="00:1A")

        assert user.car_name == "Camry"
        assert user.car_number == "ABC123"
        assert user.obd_name == "OBD-II"
        assert user.bluetooth_mac == "00:1A"
        assert user.role == "user"

    def test_duplicate_username(self, db, make_user):
        make_user(username="alice")
        with pytest.raises(ConflictError):
            make_user(username="alice")

    def test_invalid_role(self, make_user):
        with pytest.raises(ValidationError):
            make_user(role="superuser")

    def test_missing_password(self, db):
        with pytest.raises(ValidationError):
            create_user(db, "alice", None)

    def test_authenticate(self, db, make_user):
        user = make_user(username="alice", password="pw1")

        assert authenticate(db, "alice", "pw1").id == user.id
        assert authenticate(db, "alice", "wrong") is None
        assert authenticate(db, "nobody", "pw1") is None

class TestUpdateUser:
    """Profile updates."""

    def test_update_fields(self, db, user):
        update_user(db, user.id, email="new@example.com", car_name="Civic")

        db.refresh(user)
        assert user.email == "new@example.com"
        assert user.car_name == "Civic"
        assert user.full_name == "Driver 1"

    def test_update_password(self, db, user):
        update_user(db, user.id, password="changed")

        assert authenticate(db, user.username, "changed") is not None
        assert authenticate(db, user.username, "secret") is None

    def test_rename_to_taken_username(self, db, make_user):
        make_user(username="alice")
        bob = make_user(username="bob")

        with pytest.raises(ConflictError):
            update_user(db, bob.id, username="alice")

    def test_keep_own_username(self, db, user):
        update_user(db, user.id, username=user.username, email="a@b.c")

        db.refresh(user)
        assert user.email == "a@b.c"

    def test_unknown_user(self, db):
        with pytest.raises(NotFoundError):
            update_user(db, 404, email="x@y.z")

    def test_nothing_to_update(self, db, user):
        with pytest.raises(ValidationError):
            update_user(db, user.id, email=None)

class TestDeleteUser:
    """Cascading deletion."""

    def test_deletes_user_and_owned_rows(self, db, make_user):
        alice = make_user()
        bob = make_user()
        populate(db, alice.id)
        populate(db, bob.id)
        alice_id = alice.id

        counts = delete_user(db, alice_id)

        assert counts == {"events": 3, "speed_samples": 2, "trips": 2, "users": 1}
        assert count(db, User, alice_id) == 0
        assert count(db, Trip, alice_id) == 0
        assert count(db, Event, alice_id) == 0
        assert count(db, SpeedSample, alice_id) == 0

        assert count(db, User, bob.id) == 1
        assert count(db, Trip, bob.id) == 2
        assert count(db, Event, bob.id) == 3
        assert count(db, SpeedSample, bob.id) == 2

    def test_user_without_data(self, db, user):
        assert delete_user(db, user.id) == {"events": 0, "speed_samples": 0, "trips": 0, "users": 1}

    def test_unknown_user(self, db):
        with pytest.raises(NotFoundError):
            delete_user(db, 777)

    def test_failure_mid_delete_applies_nothing(self, db, user, monkeypatch):
        populate(db, user.id)
        user_id = user.id
        real_delete = persistence._delete_owned

        def failing_delete(session, model, owner_id):
            if model is Trip:
                raise OperationalError("DELETE FROM trips", {}, Exception("disk I/O error"))
            return real_delete(session, model, owner_id)

        monkeypatch.setattr(persistence, "_delete_owned", failing_delete)

        with pytest.raises(StorageError):
            delete_user(db, user_id)

        assert count(db, User, user_id) == 1
        assert count(db, Trip, user_id) == 2
        assert count(db, Event, user_id) == 3
        assert count(db, SpeedSample, user_id) == 2
