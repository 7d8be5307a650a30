"""Confidence decay for time-sensitive facts."""

from datetime import datetime, timezone

from .models import Fact, FactCategory

DECAY_PERIOD_DAYS = 30
DECAY_FACTOR = 0.9
DECAY_FLOOR = 0.7


def decayed_confidence(fact: Fact, now: datetime | None = None) -> float:
    """Effective confidence of a fact at ``now``.

    Temporal facts lose 10% per full 30-day period since their last update,
    never dropping below the floor. Other categories do not decay.
    """
    if fact.category != FactCategory.TEMPORAL:
        return fact.confidence

    now = now or datetime.now(timezone.utc)
    updated = fact.updated_at
    if updated.tzinfo is None:
        updated = updated.replace(tzinfo=timezone.utc)
    days = (now - updated).total_seconds() / 86400
    if days <= DECAY_PERIOD_DAYS:
        return fact.confidence

    periods = int(days // DECAY_PERIOD_DAYS)
    # floor never raises a fact that was already below it
    return max(min(DECAY_FLOOR, fact.confidence), fact.confidence * DECAY_FACTOR**periods)
