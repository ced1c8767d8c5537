"""
Driver score engine.

Each logged event moves the driver's score by a fixed amount keyed on its
event type. The score lives on the user row and is always kept within
the configured [score_min, score_max] range.
"""

import logging
from typing import Optional

from sqlalchemy import case, func, update
from sqlalchemy.orm import Session

from .config import config
from .models import User

logger = logging.getLogger(__name__)

SCORE_CHANGES = {
    "sudden_acceleration": -4,
    "sudden_braking": -2,
    "speed_limit_violation": -4,
    "collision_warning": -2,
    "safe_driving": 2,
}

def score_delta(event_type: Optional[str]) -> int:
    """Return the score change for an event type, 0 when unrecognized."""
    return SCORE_CHANGES.get(event_type, 0)

def clamp_score(value: int) -> int:
    return max(config.score_min, min(config.score_max, value))

def next_score(current: Optional[int], delta: int) -> int:
    """Score after applying delta; users without a score start from the fallback."""
    if current is None:
        current = config.score_fallback
    return clamp_score(current + delta)

def apply_event(db: Session, user_id: int, event_type: Optional[str]) -> int:
    """
    Apply the score change for event_type to a user inside the current transaction.

    The read-modify-write happens in a single UPDATE statement so concurrent
    events for the same user cannot overwrite each other. The caller owns the
    commit. Returns the delta that was applied.
    """
    delta = score_delta(event_type)
    if delta == 0:
        return 0

    raw = func.coalesce(User.score, config.score_fallback) + delta
    clamped = case(
        (raw < config.score_min, config.score_min),
        (raw > config.score_max, config.score_max),
        else_=raw
    )
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(score=clamped)
        .execution_options(synchronize_session=False)
    )
    logger.debug("Applied score change %+d for user %s (%s)", delta, user_id, event_type)
    return delta
