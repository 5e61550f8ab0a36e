"""Tests for LearningProfileStore."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from factories import make_feedback
from placerank.cache import TTLCache
from placerank.codec import learning_profile_to_dict
from placerank.learning_profile import LearningProfileStore
from placerank.models import LearningProfile, WeightVector


def _make_profiles(record=None) -> LearningProfileStore:
    store = MagicMock()
    store.load_learning_profile.return_value = record
    return LearningProfileStore(store=store, cache=TTLCache(ttl_seconds=60))


class TestLoad:
    def test_missing_record_gives_defaults(self) -> None:
        profiles = _make_profiles(record=None)
        profile = profiles.load("u1")
        assert profile.user_id == "u1"
        assert profile.weights == WeightVector()
        assert profile.confidence == 0

    def test_decodes_stored_record(self) -> None:
        stored = LearningProfile(
            user_id="u1",
            weights=WeightVector(0.2, 0.2, 0.2, 0.2, 0.2),
            confidence=7,
            history=[make_feedback(rating=4)],
        )
        profiles = _make_profiles(record=learning_profile_to_dict(stored))
        profile = profiles.load("u1")
        assert profile.weights == stored.weights
        assert profile.confidence == 7
        assert profile.history[0].rating == 4

    def test_corrupt_record_gives_defaults(self) -> None:
        profiles = _make_profiles(record={"weights": {"mood": "not-a-number"}})
        assert profiles.load("u1").weights == WeightVector()

    def test_nan_weight_gives_defaults(self) -> None:
        profiles = _make_profiles(record={"weights": {"location": "nan"}, "confidence": 8})
        profile = profiles.load("u1")
        assert profile.weights == WeightVector()
        assert profile.confidence == 0

    def test_negative_weight_gives_defaults(self) -> None:
        record = {
            "weights": {
                "personality_affinity": 5,
                "interests": -2,
                "talents": 0,
                "mood": 0,
                "location": 0,
            },
            "confidence": 4,
        }
        profile = _make_profiles(record=record).load("u1")
        assert profile.weights == WeightVector()
        assert profile.confidence == 0

    def test_unnormalized_weights_rescaled(self) -> None:
        record = {
            "weights": {
                "personality_affinity": 4,
                "interests": 2,
                "talents": 2,
                "mood": 1,
                "location": 1,
            }
        }
        weights = _make_profiles(record=record).load("u1").weights
        assert sum(weights.as_dict().values()) == pytest.approx(1.0)
        assert weights.personality_affinity == pytest.approx(0.4)
        assert weights.location == pytest.approx(0.1)

    @pytest.mark.parametrize("stored,expected", [(250, 100), (-3, 0)])
    def test_confidence_clamped(self, stored, expected) -> None:
        record = {"weights": WeightVector().as_dict(), "confidence": stored}
        assert _make_profiles(record=record).load("u1").confidence == expected

    def test_record_without_weights_gives_defaults(self) -> None:
        profiles = _make_profiles(record={"confidence": 3})
        assert profiles.load("u1").confidence == 0

    def test_empty_user_id_raises(self) -> None:
        with pytest.raises(ValueError):
            _make_profiles().load("")

    def test_second_load_served_from_cache(self) -> None:
        record = learning_profile_to_dict(LearningProfile(user_id="u1", confidence=2))
        profiles = _make_profiles(record=record)
        profiles.load("u1")
        profiles.load("u1")
        profiles._store.load_learning_profile.assert_called_once_with("u1")

    def test_defaults_not_cached(self) -> None:
        profiles = _make_profiles(record=None)
        profiles.load("u1")
        profiles.load("u1")
        assert profiles._store.load_learning_profile.call_count == 2


class TestSave:
    def test_writes_through(self) -> None:
        profiles = _make_profiles()
        profile = LearningProfile(user_id="u1", confidence=3)
        profiles.save(profile)
        user_id, record = profiles._store.save_learning_profile.call_args[0]
        assert user_id == "u1"
        assert record["confidence"] == 3

    def test_save_refreshes_cache(self) -> None:
        profiles = _make_profiles(record=None)
        profiles.save(LearningProfile(user_id="u1", confidence=9))
        assert profiles.load("u1").confidence == 9
        profiles._store.load_learning_profile.assert_not_called()

    def test_invalidate_forces_reload(self) -> None:
        profiles = _make_profiles(record=None)
        profiles.save(LearningProfile(user_id="u1", confidence=9))
        profiles.invalidate("u1")
        assert profiles.load("u1").confidence == 0
