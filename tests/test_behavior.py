"""Tests for BehaviorPatternExtractor and its helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from factories import NOW, make_feedback, make_place, make_visit
from placerank.behavior import (
    BehaviorPatternExtractor,
    day_type,
    is_stale,
    time_of_day,
)
from placerank.cache import TTLCache
from placerank.models import BehaviorProfile, SearchRecord, UserActivity, WeightVector


@pytest.fixture
def extractor() -> BehaviorPatternExtractor:
    return BehaviorPatternExtractor()


def _morning_cafe_visits(n: int = 6) -> list:
    """*n* weekday morning cafe visits, two per place."""
    visits = []
    for i in range(n):
        when = (NOW - timedelta(days=7 * i)).replace(hour=9)
        visits.append(make_visit(f"cafe_{i // 2}", when, "cafe", tags=["coffee"]))
    return visits


# ---------------------------------------------------------------------------
# Module helpers
# ---------------------------------------------------------------------------


class TestTimeBuckets:
    @pytest.mark.parametrize(
        "hour,bucket",
        [(5, "morning"), (10, "morning"), (11, "afternoon"), (16, "afternoon"),
         (17, "evening"), (21, "evening"), (22, "night"), (0, "night"), (4, "night")],
    )
    def test_time_of_day(self, hour, bucket) -> None:
        assert time_of_day(hour) == bucket

    def test_day_type(self) -> None:
        assert day_type(NOW) == "weekday"
        assert day_type(NOW + timedelta(days=3)) == "weekend"


class TestIsStale:
    def test_missing_profile_is_stale(self) -> None:
        assert is_stale(None, NOW)

    def test_undated_profile_is_stale(self) -> None:
        assert is_stale(BehaviorProfile(), NOW)

    def test_fresh_profile(self) -> None:
        assert not is_stale(BehaviorProfile(last_updated=NOW - timedelta(days=6)), NOW)

    def test_week_old_profile_is_stale(self) -> None:
        assert is_stale(BehaviorProfile(last_updated=NOW - timedelta(days=7)), NOW)


# ---------------------------------------------------------------------------
# extract
# ---------------------------------------------------------------------------


class TestExtract:
    def test_empty_history_gives_neutral_profile(self, extractor) -> None:
        profile = extractor.extract(UserActivity(), NOW)
        assert profile.visit_count == 0
        assert profile.persona == "general_user"
        assert profile.user_type == "new"
        assert profile.activity_level == "inactive"
        assert profile.personalized_weights == WeightVector()
        assert profile.last_updated == NOW

    def test_time_pattern(self, extractor) -> None:
        profile = extractor.extract(UserActivity(visits=_morning_cafe_visits()), NOW)
        assert profile.time.hour_counts == {9: 6}
        assert profile.time.favorite_time_of_day == "morning"
        assert profile.time.time_of_day_shares["morning"] == pytest.approx(1.0)
        assert profile.time.weekday_count == 6
        assert profile.time.favorite_day_type == "weekday"
        assert profile.time.frequency == "medium"

    def test_category_pattern(self, extractor) -> None:
        visits = _morning_cafe_visits(4) + [make_visit("park_1", NOW, "park", tags=["nature"])]
        profile = extractor.extract(UserActivity(visits=visits), NOW)
        assert profile.categories.counts == {"cafe": 4, "park": 1}
        assert profile.categories.dominant_category == "cafe"
        assert profile.categories.diversity == "low"
        assert profile.categories.top_tags[0] == "coffee"

    def test_revisit_pattern_regular(self, extractor) -> None:
        profile = extractor.extract(UserActivity(visits=_morning_cafe_visits()), NOW)
        assert profile.revisits.revisit_rate == pytest.approx(1.0)
        assert profile.revisits.pattern == "high"
        assert profile.revisits.visited_place_ids == {"cafe_0", "cafe_1", "cafe_2"}
        assert profile.revisits.average_interval_days == pytest.approx(7.0)
        assert profile.revisits.interval_regularity == "regular"

    def test_no_revisits(self, extractor) -> None:
        visits = [make_visit(f"p{i}", NOW - timedelta(days=i)) for i in range(3)]
        profile = extractor.extract(UserActivity(visits=visits), NOW)
        assert profile.revisits.pattern == "none"
        assert profile.revisits.average_interval_days is None

    def test_morning_cafe_persona(self, extractor) -> None:
        visits = [
            make_visit(f"cafe_{i}", (NOW - timedelta(days=7 * i)).replace(hour=8))
            for i in range(6)
        ]
        profile = extractor.extract(UserActivity(visits=visits), NOW)
        assert profile.persona == "morning_cafe_goer"

    def test_loyal_regular_persona(self, extractor) -> None:
        profile = extractor.extract(UserActivity(visits=_morning_cafe_visits()), NOW)
        assert profile.persona == "loyal_regular"

    def test_explorer_persona(self, extractor) -> None:
        categories = ["cafe", "park", "museum", "restaurant", "bar"]
        visits = [
            make_visit(f"p{i}", NOW - timedelta(days=i), categories[i % 5])
            for i in range(10)
        ]
        profile = extractor.extract(UserActivity(visits=visits), NOW)
        assert profile.persona == "enthusiastic_explorer"
        assert profile.user_type == "explorer"

    def test_activity_level_very_active(self, extractor) -> None:
        visits = [make_visit(f"p{i}", NOW - timedelta(days=i)) for i in range(5)]
        profile = extractor.extract(UserActivity(visits=visits), NOW)
        assert profile.activity_level == "very_active"

    def test_activity_level_occasional(self, extractor) -> None:
        visits = [make_visit("p1", NOW - timedelta(days=60))]
        profile = extractor.extract(UserActivity(visits=visits), NOW)
        assert profile.activity_level == "occasional"
        assert profile.time.recency == "old"

    def test_place_details_override_visit_category(self, extractor) -> None:
        visits = [make_visit("x1", NOW, category=None)]
        details = [make_place("x1", "museum", tags=("history",))]
        profile = extractor.extract(UserActivity(visits=visits), NOW, details)
        assert profile.categories.counts == {"museum": 1}
        assert profile.categories.top_tags == ["history"]

    def test_feedback_pattern(self, extractor) -> None:
        feedback = [
            make_feedback(rating=5, tags=["quiet"], comment="lovely"),
            make_feedback(rating=4, tags=["quiet"]),
            make_feedback(rating=1, tags=["crowded"]),
        ]
        profile = extractor.extract(UserActivity(feedback=feedback), NOW)
        assert profile.feedback.average_rating == pytest.approx(10 / 3)
        assert profile.feedback.distribution == {1: 1, 2: 0, 3: 0, 4: 1, 5: 1}
        assert profile.feedback.top_positive_tags == ["quiet"]
        assert profile.feedback.top_negative_tags == ["crowded"]
        assert profile.feedback.positive_ratio == pytest.approx(2 / 3)
        assert profile.feedback.style == "occasional"

    def test_search_pattern(self, extractor) -> None:
        searches = [
            SearchRecord(term="Coffee", timestamp=NOW, category="cafe", result_clicks=1),
            SearchRecord(term="coffee ", timestamp=NOW + timedelta(hours=1), category="cafe"),
        ]
        profile = extractor.extract(UserActivity(searches=searches), NOW)
        assert profile.search.top_terms == ["coffee"]
        assert profile.search.top_categories == ["cafe"]
        assert profile.search.click_through_rate == pytest.approx(0.5)
        assert profile.search.style == "category_focused"

    def test_activity_score_bounded(self, extractor) -> None:
        visits = [make_visit(f"p{i}", NOW - timedelta(days=i % 5)) for i in range(20)]
        feedback = [make_feedback(rating=5) for _ in range(12)]
        searches = [SearchRecord(term=f"t{i}", timestamp=NOW) for i in range(10)]
        profile = extractor.extract(
            UserActivity(visits=visits, feedback=feedback, searches=searches), NOW
        )
        assert 0 <= profile.activity_score <= 100

    def test_personalized_weights_normalized(self, extractor) -> None:
        profile = extractor.extract(UserActivity(visits=_morning_cafe_visits()), NOW)
        weights = profile.personalized_weights
        assert sum(weights.as_dict().values()) == pytest.approx(1.0)
        # low diversity and frequent revisits favour personality and location
        assert weights.personality_affinity > WeightVector().personality_affinity
        assert weights.location > WeightVector().location


class TestMemoization:
    def test_same_input_same_day_computed_once(self) -> None:
        extractor = BehaviorPatternExtractor(cache=TTLCache(ttl_seconds=60))
        activity = UserActivity(visits=_morning_cafe_visits())
        first = extractor.extract(activity, NOW)
        second = extractor.extract(activity, NOW + timedelta(hours=1))
        assert first is second

    def test_different_day_recomputed(self) -> None:
        extractor = BehaviorPatternExtractor(cache=TTLCache(ttl_seconds=60))
        activity = UserActivity(visits=_morning_cafe_visits())
        first = extractor.extract(activity, NOW)
        second = extractor.extract(activity, NOW + timedelta(days=1))
        assert first is not second

    def test_no_cache_always_recomputes(self, extractor) -> None:
        activity = UserActivity(visits=[make_visit("p", datetime(2024, 6, 4, 9, tzinfo=timezone.utc))])
        assert extractor.extract(activity, NOW) is not extractor.extract(activity, NOW)
