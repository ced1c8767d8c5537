from sqlalchemy import func, select

from driver_assist.models import Event, User
from driver_assist.persistence import authenticate
from driver_assist.seed import SAMPLE_USER, seed_sample_data

def test_seed_creates_sample_driver(db):
    user = seed_sample_data(db)

    assert user.username == SAMPLE_USER["username"]
    assert user.car_name == "Toyota Camry"
    assert authenticate(db, "testuser", "testpass") is not None
    db.refresh(user)
    assert user.score == 96

def test_seed_is_idempotent(db):
    first = seed_sample_data(db)
    second = seed_sample_data(db)

    assert first.id == second.id
    assert db.execute(select(func.count(User.id))).scalar_one() == 1
    assert db.execute(select(func.count(Event.id))).scalar_one() == 1
