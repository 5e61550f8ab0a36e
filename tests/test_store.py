"""Tests for InMemoryPlaceStore."""

from __future__ import annotations

from datetime import timedelta

from factories import NOW, make_feedback, make_visit
from placerank.models import BehaviorProfile, SearchRecord, UserProfile


class TestCandidateQueries:
    def test_by_personality_case_insensitive(self, store) -> None:
        ids = [p.place_id for p in store.fetch_candidates_by_personality_type("infp")]
        assert "cafe_1" in ids
        assert "rest_1" not in ids

    def test_candidates_best_first(self, store) -> None:
        places = store.fetch_candidates_by_personality_type("INFP")
        ratings = [p.rating for p in places]
        assert ratings == sorted(ratings, reverse=True)

    def test_by_region(self, store) -> None:
        places = store.fetch_candidates_by_region("Hongdae")
        assert {p.place_id for p in places} == {"rest_1", "shop_1", "music_1"}

    def test_by_mood(self, store) -> None:
        ids = {p.place_id for p in store.fetch_candidates_by_mood("calm")}
        assert {"cafe_1", "gallery_1", "park_1"} <= ids

    def test_unknown_key_gives_empty(self, store) -> None:
        assert store.fetch_candidates_by_region("atlantis") == []

    def test_popular_ordered_by_visits(self, store) -> None:
        popular = store.fetch_popular_candidates(3)
        assert [p.place_id for p in popular] == ["park_1", "rest_1", "cafe_1"]

    def test_fetch_place(self, store) -> None:
        assert store.fetch_place("cafe_1").category == "cafe"
        assert store.fetch_place("missing") is None


class TestFeedback:
    def test_history_newest_first_and_limited(self, store) -> None:
        for i in range(5):
            store.append_feedback("u1", make_feedback(place_id=f"p{i}", ts=NOW + timedelta(hours=i)))
        history = store.fetch_feedback_history("u1", 3)
        assert [e.place_id for e in history] == ["p4", "p3", "p2"]

    def test_unknown_user_has_no_history(self, store) -> None:
        assert store.fetch_feedback_history("nobody", 10) == []


class TestLearningProfiles:
    def test_round_trip(self, store) -> None:
        store.save_learning_profile("u1", {"weights": {"mood": 0.5}})
        assert store.load_learning_profile("u1") == {"weights": {"mood": 0.5}}

    def test_returned_record_is_a_copy(self, store) -> None:
        store.save_learning_profile("u1", {"weights": {"mood": 0.5}})
        store.load_learning_profile("u1")["weights"]["mood"] = 0.9
        assert store.load_learning_profile("u1")["weights"]["mood"] == 0.5

    def test_missing_is_none(self, store) -> None:
        assert store.load_learning_profile("u1") is None


class TestUsers:
    def test_peer_candidates_exclude_requester(self, store) -> None:
        store.add_user(UserProfile(user_id="u_peer", personality_type="infp"))
        store.add_user(UserProfile(user_id="u_other", personality_type="ESTJ"))
        peers = store.fetch_peer_candidates("INFP", "u_infp", 10)
        assert peers == ["u_peer"]

    def test_fetch_user_profiles_skips_unknown(self, store) -> None:
        profiles = store.fetch_user_profiles(["u_infp", "ghost"])
        assert [p.user_id for p in profiles] == ["u_infp"]

    def test_activity_collects_all_sources(self, store) -> None:
        store.record_visit("u_infp", make_visit("cafe_1", NOW))
        store.append_feedback("u_infp", make_feedback("cafe_1"))
        store.record_search("u_infp", SearchRecord(term="coffee", timestamp=NOW))
        activity = store.fetch_user_activity("u_infp")
        assert len(activity.visits) == 1
        assert len(activity.feedback) == 1
        assert len(activity.searches) == 1

    def test_record_visit_creates_user(self, store) -> None:
        store.record_visit("fresh", make_visit("cafe_1", NOW))
        assert store.fetch_user_profiles(["fresh"])[0].visit_history[0].place_id == "cafe_1"

    def test_behavior_profile_round_trip(self, store) -> None:
        assert store.fetch_behavior_profile("u_infp") is None
        store.save_behavior_profile("u_infp", BehaviorProfile(visit_count=3, last_updated=NOW))
        assert store.fetch_behavior_profile("u_infp").visit_count == 3
