"""Persistence collaborator interface and an in-memory implementation."""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

from placerank.models import (
    BehaviorProfile,
    FeedbackEvent,
    PlaceCandidate,
    SearchRecord,
    UserActivity,
    UserProfile,
    VisitRecord,
)

logger = logging.getLogger(__name__)


class PlaceStore(ABC):
    """Read/write access to the records the ranker depends on.

    The ranking core never talks to a database directly; everything goes
    through this interface.  Implementations may raise on failure: the
    :class:`~placerank.engine.RankingEngine` absorbs fetch errors and
    degrades to empty results.

    Candidate fetches return places ordered best-first by the source's own
    notion of relevance.
    """

    # ------------------------------------------------------------------
    # Learning profiles
    # ------------------------------------------------------------------

    @abstractmethod
    def load_learning_profile(self, user_id: str) -> dict[str, Any] | None:
        """Return the stored learning profile record, or ``None`` if absent.

        The record is returned undecoded; see
        :func:`~placerank.codec.learning_profile_from_dict`.
        """

    @abstractmethod
    def save_learning_profile(self, user_id: str, record: dict[str, Any]) -> None:
        """Overwrite the stored learning profile record for *user_id*."""

    # ------------------------------------------------------------------
    # Candidate sources
    # ------------------------------------------------------------------

    @abstractmethod
    def fetch_candidates_by_personality_type(
        self, personality_type: str
    ) -> list[PlaceCandidate]:
        """Places recommended for *personality_type*, best-first."""

    @abstractmethod
    def fetch_candidates_by_region(self, region: str) -> list[PlaceCandidate]:
        """Places in *region*, best-first."""

    @abstractmethod
    def fetch_candidates_by_mood(self, mood: str) -> list[PlaceCandidate]:
        """Places recommended for *mood*, best-first."""

    @abstractmethod
    def fetch_popular_candidates(self, limit: int) -> list[PlaceCandidate]:
        """The most visited places overall, used when ranking yields nothing."""

    @abstractmethod
    def fetch_place(self, place_id: str) -> PlaceCandidate | None:
        """Return a single place by id, or ``None`` if unknown."""

    # ------------------------------------------------------------------
    # Users, feedback and activity
    # ------------------------------------------------------------------

    @abstractmethod
    def fetch_feedback_history(self, user_id: str, limit: int) -> list[FeedbackEvent]:
        """Return up to *limit* feedback events for *user_id*, newest first."""

    @abstractmethod
    def append_feedback(self, user_id: str, event: FeedbackEvent) -> None:
        """Append *event* to the user's permanent feedback log."""

    @abstractmethod
    def fetch_peer_candidates(
        self, personality_type: str, exclude_user_id: str, limit: int
    ) -> list[str]:
        """Return ids of up to *limit* users sharing *personality_type*."""

    @abstractmethod
    def fetch_user_profiles(self, user_ids: list[str]) -> list[UserProfile]:
        """Return the declared profiles for *user_ids*; unknown ids are skipped."""

    @abstractmethod
    def fetch_user_activity(self, user_id: str) -> UserActivity:
        """Return the raw visit, feedback and search history for *user_id*."""

    @abstractmethod
    def fetch_behavior_profile(self, user_id: str) -> BehaviorProfile | None:
        """Return the last saved behaviour profile, or ``None``."""

    @abstractmethod
    def save_behavior_profile(self, user_id: str, profile: BehaviorProfile) -> None:
        """Persist a freshly computed behaviour profile."""


class InMemoryPlaceStore(PlaceStore):
    """Thread-safe, process-local :class:`PlaceStore`.

    Used by the mock server and by tests.  Stored objects are copied on the
    way in and out so callers can never mutate shared state.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._places: dict[str, PlaceCandidate] = {}
        self._users: dict[str, UserProfile] = {}
        self._learning_profiles: dict[str, dict[str, Any]] = {}
        self._feedback: dict[str, list[FeedbackEvent]] = {}
        self._searches: dict[str, list[SearchRecord]] = {}
        self._behavior_profiles: dict[str, BehaviorProfile] = {}

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def add_place(self, place: PlaceCandidate) -> None:
        with self._lock:
            self._places[place.place_id] = place

    def add_user(self, profile: UserProfile) -> None:
        with self._lock:
            self._users[profile.user_id] = copy.deepcopy(profile)

    def record_visit(self, user_id: str, visit: VisitRecord) -> None:
        with self._lock:
            user = self._users.setdefault(user_id, UserProfile(user_id=user_id))
            user.visit_history.append(visit)

    def record_search(self, user_id: str, search: SearchRecord) -> None:
        with self._lock:
            self._searches.setdefault(user_id, []).append(search)

    def all_places(self) -> list[PlaceCandidate]:
        with self._lock:
            return list(self._places.values())

    # ------------------------------------------------------------------
    # PlaceStore interface
    # ------------------------------------------------------------------

    def load_learning_profile(self, user_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._learning_profiles.get(user_id)
            return copy.deepcopy(record) if record is not None else None

    def save_learning_profile(self, user_id: str, record: dict[str, Any]) -> None:
        with self._lock:
            self._learning_profiles[user_id] = copy.deepcopy(record)

    def fetch_candidates_by_personality_type(
        self, personality_type: str
    ) -> list[PlaceCandidate]:
        wanted = personality_type.upper()
        with self._lock:
            matches = [
                p
                for p in self._places.values()
                if wanted in {m.upper() for m in p.recommended_for.mbti}
            ]
        return _best_first(matches)

    def fetch_candidates_by_region(self, region: str) -> list[PlaceCandidate]:
        wanted = region.lower()
        with self._lock:
            matches = [p for p in self._places.values() if p.region.lower() == wanted]
        return _best_first(matches)

    def fetch_candidates_by_mood(self, mood: str) -> list[PlaceCandidate]:
        wanted = mood.lower()
        with self._lock:
            matches = [
                p
                for p in self._places.values()
                if wanted in {m.lower() for m in p.recommended_for.mood}
            ]
        return _best_first(matches)

    def fetch_popular_candidates(self, limit: int) -> list[PlaceCandidate]:
        with self._lock:
            places = list(self._places.values())
        places.sort(key=lambda p: (p.visit_count, p.rating), reverse=True)
        return places[:limit]

    def fetch_place(self, place_id: str) -> PlaceCandidate | None:
        with self._lock:
            return self._places.get(place_id)

    def fetch_feedback_history(self, user_id: str, limit: int) -> list[FeedbackEvent]:
        with self._lock:
            events = list(self._feedback.get(user_id, []))
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    def append_feedback(self, user_id: str, event: FeedbackEvent) -> None:
        with self._lock:
            self._feedback.setdefault(user_id, []).append(event)

    def fetch_peer_candidates(
        self, personality_type: str, exclude_user_id: str, limit: int
    ) -> list[str]:
        wanted = personality_type.upper()
        with self._lock:
            peers = [
                uid
                for uid, user in self._users.items()
                if uid != exclude_user_id and user.personality_type.upper() == wanted
            ]
        return peers[:limit]

    def fetch_user_profiles(self, user_ids: list[str]) -> list[UserProfile]:
        with self._lock:
            return [
                copy.deepcopy(self._users[uid]) for uid in user_ids if uid in self._users
            ]

    def fetch_user_activity(self, user_id: str) -> UserActivity:
        with self._lock:
            user = self._users.get(user_id)
            return UserActivity(
                visits=list(user.visit_history) if user else [],
                feedback=list(self._feedback.get(user_id, [])),
                searches=list(self._searches.get(user_id, [])),
            )

    def fetch_behavior_profile(self, user_id: str) -> BehaviorProfile | None:
        with self._lock:
            profile = self._behavior_profiles.get(user_id)
            return copy.deepcopy(profile) if profile is not None else None

    def save_behavior_profile(self, user_id: str, profile: BehaviorProfile) -> None:
        with self._lock:
            self._behavior_profiles[user_id] = copy.deepcopy(profile)
        logger.debug("Saved behaviour profile for user %r", user_id)


def _best_first(places: list[PlaceCandidate]) -> list[PlaceCandidate]:
    return sorted(places, key=lambda p: (p.rating, p.visit_count), reverse=True)
