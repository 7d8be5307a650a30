"""Tests for temporal fact decay."""

from datetime import datetime, timedelta, timezone

import pytest

from memory.decay import decayed_confidence
from memory.models import Fact, FactCategory

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _fact(days_old: float, confidence=0.9, category=FactCategory.TEMPORAL):
    return Fact(
        subject_id="u1",
        key="mood",
        value="busy",
        confidence=confidence,
        category=category,
        updated_at=NOW - timedelta(days=days_old),
    )


class TestDecay:
    def test_fresh_fact_unchanged(self):
        assert decayed_confidence(_fact(10), NOW) == 0.9

    def test_exactly_thirty_days_unchanged(self):
        assert decayed_confidence(_fact(30), NOW) == 0.9

    def test_one_period(self):
        assert decayed_confidence(_fact(31), NOW) == pytest.approx(0.81)

    def test_floor(self):
        assert decayed_confidence(_fact(365), NOW) == pytest.approx(0.7)

    def test_floor_never_raises(self):
        assert decayed_confidence(_fact(100, confidence=0.5), NOW) == pytest.approx(0.5)

    def test_non_temporal_never_decays(self):
        fact = _fact(400, category=FactCategory.PERSONAL)
        assert decayed_confidence(fact, NOW) == 0.9

    def test_naive_timestamp_treated_as_utc(self):
        fact = _fact(61)
        fact.updated_at = fact.updated_at.replace(tzinfo=None)
        assert decayed_confidence(fact, NOW) == pytest.approx(0.9 * 0.81)
