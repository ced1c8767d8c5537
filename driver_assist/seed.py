"""
Create the schema and a sample driver.

Usage: python -m driver_assist.seed
"""

import logging
from sqlalchemy import select
from sqlalchemy.orm import Session
from .config import config, setup_logging
from .db import Database
from .models import User
from .persistence import create_user, log_event

logger = logging.getLogger(__name__)

SAMPLE_USER = {
    "username": "testuser",
    "password": "testpass",
    "role": "user",
    "full_name": "Test User",
    "email": "test@example.com",
    "car_name": "Toyota Camry",
    "car_number": "ABC123",
    "obd_name": "OBD-II Device",
    "bluetooth_mac": "00:1A:7D:DA:71:13",
}

def seed_sample_data(db: Session) -> User:
    """Insert the sample driver and one event unless the driver already exists."""
    existing = db.execute(
        select(User).where(User.username == SAMPLE_USER["username"])
    ).scalar_one_or_none()
    if existing is not None:
        logger.info("Sample user %s already present", existing.username)
        return existing

    user = create_user(db, **SAMPLE_USER)
    log_event(
        db,
        user.id,
        event_type="speed_limit_violation",
        event_description="Exceeded speed limit by 10 mph"
    )
    logger.info("Sample data inserted for user %s", user.id)
    return user

def main():
    setup_logging()
    database = Database(config.database_url, echo=config.db_echo)
    try:
        database.init_db()
        db = database.session()
        try:
            seed_sample_data(db)
        finally:
            db.close()
    finally:
        database.dispose()

if __name__ == "__main__":
    main()
