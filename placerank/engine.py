"""Ranking engine: orchestrates fetching, learning and the ranking pipeline."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent import futures
from dataclasses import replace
from typing import TypeVar

from placerank.behavior import BehaviorPatternExtractor, is_stale
from placerank.learning_profile import LearningProfileStore
from placerank.models import (
    AdjustmentResult,
    BehaviorProfile,
    FeedbackEvent,
    PersonalWeights,
    PlaceCandidate,
    RankingContext,
    ScoredPlace,
    UserProfile,
    WeightResult,
    WeightVector,
)
from placerank.peers import PeerSimilarityBlender
from placerank.ranking.aggregator import CandidateAggregator
from placerank.ranking.diversity import ensure_category_diversity
from placerank.ranking.reranker import ContextualReranker
from placerank.store import PlaceStore
from placerank.weights import WeightAdjustmentEngine, WeightHistorySummary, analyze_weight_history

logger = logging.getLogger(__name__)

T = TypeVar("T")

FEEDBACK_HISTORY_LIMIT = 50
POPULAR_FALLBACK_LIMIT = 6


class RankingEngine:
    """Produces ranked place lists and learns from feedback.

    Ranking pipeline for :meth:`rank`:

    1. Fetch concurrently: the three candidate lists (personality, region,
       mood), feedback history, the behaviour profile (regenerated and
       saved when older than a week), and the blended weights.
    2. :class:`~placerank.ranking.aggregator.CandidateAggregator` scores and
       keeps the top candidates.
    3. :class:`~placerank.ranking.reranker.ContextualReranker` applies
       behaviour and situation boosts.
    4. :func:`~placerank.ranking.diversity.ensure_category_diversity` caps
       the list and spreads categories.
    5. An empty result falls back to the store's popular places.

    Fetch failures and timeouts never abort a request: the failed source
    contributes nothing (or, for weights, the personal weights are used)
    and the failure is logged.

    Args:
        store: Persistence collaborator.
        learning_profiles: Learning profile loader/saver.
        weight_engine: Applies feedback to learning profiles.
        blender: Blends peers' weights into the user's own.
        extractor: Builds behaviour profiles from activity.
        aggregator: Scores and merges candidate lists.
        reranker: Applies contextual boosts.
        max_workers: Size of the fetch thread pool.
        fetch_timeout_seconds: Deadline for the batch of data fetches.
        peer_timeout_seconds: Deadline for the peer blend.
        max_results: Length cap of the final list.
        clock: Monotonic time source for deadlines.
    """

    def __init__(
        self,
        store: PlaceStore,
        learning_profiles: LearningProfileStore,
        weight_engine: WeightAdjustmentEngine,
        blender: PeerSimilarityBlender,
        extractor: BehaviorPatternExtractor,
        aggregator: CandidateAggregator,
        reranker: ContextualReranker,
        max_workers: int = 8,
        fetch_timeout_seconds: float = 10.0,
        peer_timeout_seconds: float = 8.0,
        max_results: int = 6,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._learning_profiles = learning_profiles
        self._weight_engine = weight_engine
        self._blender = blender
        self._extractor = extractor
        self._aggregator = aggregator
        self._reranker = reranker
        self._executor = futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="placerank-fetch"
        )
        self._fetch_timeout = fetch_timeout_seconds
        self._peer_timeout = peer_timeout_seconds
        self._max_results = max_results
        self._clock = clock

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def rank(self, user_profile: UserProfile, context: RankingContext) -> list[ScoredPlace]:
        """Return the ranked places for *user_profile* in *context*.

        Args:
            user_profile: Declared traits of the requesting user.
                ``user_id`` must be non-empty.
            context: Current time, weather and location.

        Returns:
            Up to ``max_results`` scored places, best first.  Never raises
            for upstream failures; may be empty only if the popular
            fallback is empty too.

        Raises:
            ValueError: If ``user_profile.user_id`` is empty.
        """
        user_id = user_profile.user_id
        if not user_id:
            raise ValueError("user_id must be non-empty")

        pending = {
            "personality": self._submit_candidates(
                self._store.fetch_candidates_by_personality_type,
                user_profile.personality_type,
            ),
            "region": self._submit_candidates(
                self._store.fetch_candidates_by_region,
                user_profile.preferred_regions[0] if user_profile.preferred_regions else "",
            ),
            "mood": self._submit_candidates(
                self._store.fetch_candidates_by_mood, user_profile.current_mood
            ),
            "feedback": self._executor.submit(
                self._store.fetch_feedback_history, user_id, FEEDBACK_HISTORY_LIMIT
            ),
            "behavior": self._executor.submit(
                self._load_behavior_profile, user_profile, context
            ),
        }
        weights_future = self._executor.submit(self._blender.blend, user_id, user_profile)

        deadline = self._clock() + self._fetch_timeout
        personality = self._join(pending["personality"], "personality candidates", deadline, [])
        region = self._join(pending["region"], "region candidates", deadline, [])
        mood = self._join(pending["mood"], "mood candidates", deadline, [])
        feedback = self._join(pending["feedback"], "feedback history", deadline, [])
        behavior = self._join(pending["behavior"], "behaviour profile", deadline, None)
        weights = self._resolve_weights(weights_future, user_id).weights

        scored = self._aggregator.aggregate(
            personality,
            region,
            mood,
            weights,
            user_profile,
            behavior=behavior,
            feedback_history=feedback,
        )
        reranked = self._reranker.rerank(scored, context, behavior, user_profile)
        results = ensure_category_diversity(reranked, self._max_results)

        if not results:
            logger.info("No ranked candidates for user %r; using popular places", user_id)
            results = self._popular_fallback()

        logger.debug(
            "Ranked %d places for user %r: %s",
            len(results),
            user_id,
            [r.place_id for r in results],
        )
        return results

    def record_feedback(
        self, user_id: str, place_id: str, feedback_event: FeedbackEvent
    ) -> AdjustmentResult:
        """Learn from one piece of feedback and persist the result.

        The event is applied to the user's learning profile, the updated
        profile saved, and only then appended to the permanent feedback log,
        so a failed save leaves no orphaned log entry.  A failed append after
        a successful save propagates; the event then lives only in the
        profile history.  Cached peer blends that used this user's weights
        are invalidated.

        Args:
            user_id: The user giving feedback. Must be non-empty.
            place_id: The rated place. Must be non-empty and match
                ``feedback_event.place_id``.
            feedback_event: The rating and tags.

        Returns:
            The :class:`AdjustmentResult` with the updated weights.

        Raises:
            ValueError: On missing identifiers or a mismatched place id.
        """
        if not user_id:
            raise ValueError("user_id must be non-empty")
        if not place_id:
            raise ValueError("place_id must be non-empty")
        if feedback_event.place_id != place_id:
            raise ValueError(
                f"feedback place_id {feedback_event.place_id!r} does not match {place_id!r}"
            )

        place = self._fetch_place(place_id)
        if place is not None and not feedback_event.place_category and place.category:
            feedback_event = replace(feedback_event, place_category=place.category)

        profile = self._learning_profiles.load(user_id)
        result = self._weight_engine.adjust(profile, feedback_event, place)
        self._learning_profiles.save(result.profile)
        self._blender.invalidate(user_id)
        self._store.append_feedback(user_id, feedback_event)

        logger.info(
            "Recorded feedback user=%r place=%r rating=%s applied=%s",
            user_id,
            place_id,
            feedback_event.rating,
            result.applied,
        )
        return result

    def get_weights(
        self, user_id: str, user_profile: UserProfile | None = None
    ) -> WeightResult:
        """Return the weights that would be used to rank for *user_id*.

        Args:
            user_id: The user. Must be non-empty.
            user_profile: Declared traits; looked up from the store when
                omitted.

        Returns:
            Collaborative weights when similar peers exist, otherwise the
            user's personal weights.

        Raises:
            ValueError: If *user_id* is empty.
        """
        if not user_id:
            raise ValueError("user_id must be non-empty")

        if user_profile is None:
            user_profile = self._lookup_user(user_id)
        if user_profile is None:
            return PersonalWeights(weights=self._personal_weights(user_id))

        future = self._executor.submit(self._blender.blend, user_id, user_profile)
        return self._resolve_weights(future, user_id)

    def weight_history(self, user_id: str) -> WeightHistorySummary:
        """Summarize the feedback history behind *user_id*'s learned weights."""
        if not user_id:
            raise ValueError("user_id must be non-empty")
        return analyze_weight_history(self._learning_profiles.load(user_id).history)

    def close(self) -> None:
        """Shut down the fetch thread pool."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _submit_candidates(
        self, fetch: Callable[[str], list[PlaceCandidate]], key: str
    ) -> futures.Future:
        if not key:
            done: futures.Future = futures.Future()
            done.set_result([])
            return done
        return self._executor.submit(fetch, key)

    def _join(self, future: futures.Future, source: str, deadline: float, default: T) -> T:
        """Wait for *future* until *deadline*; failures yield *default*."""
        remaining = max(0.0, deadline - self._clock())
        try:
            return future.result(timeout=remaining)
        except futures.TimeoutError:
            future.cancel()
            logger.warning("Fetching %s timed out; continuing without it", source)
        except Exception:
            logger.exception("Fetching %s failed; continuing without it", source)
        return default

    def _resolve_weights(self, future: futures.Future, user_id: str) -> WeightResult:
        try:
            return future.result(timeout=self._peer_timeout)
        except futures.TimeoutError:
            future.cancel()
            logger.warning("Peer blend for user %r timed out; using personal weights", user_id)
        except Exception:
            logger.exception("Peer blend for user %r failed; using personal weights", user_id)
        return PersonalWeights(weights=self._personal_weights(user_id))

    def _personal_weights(self, user_id: str) -> WeightVector:
        try:
            return self._learning_profiles.load(user_id).weights
        except Exception:
            logger.exception("Loading learning profile for user %r failed", user_id)
            return WeightVector()

    def _load_behavior_profile(
        self, user_profile: UserProfile, context: RankingContext
    ) -> BehaviorProfile | None:
        """Return a fresh behaviour profile, regenerating a stale one.

        Visits carried on the request profile stand in for the stored ones
        when the store has none.
        """
        user_id = user_profile.user_id
        profile = self._store.fetch_behavior_profile(user_id)
        if not is_stale(profile, context.now):
            return profile

        activity = self._store.fetch_user_activity(user_id)
        if not activity.visits and user_profile.visit_history:
            activity = replace(activity, visits=list(user_profile.visit_history))
        if not activity.visits and not activity.feedback and not activity.searches:
            return profile

        profile = self._extractor.extract(activity, context.now)
        try:
            self._store.save_behavior_profile(user_id, profile)
        except Exception:
            logger.exception("Saving behaviour profile for user %r failed", user_id)
        return profile

    def _fetch_place(self, place_id: str) -> PlaceCandidate | None:
        try:
            return self._store.fetch_place(place_id)
        except Exception:
            logger.exception("Fetching place %r failed; adjusting without metadata", place_id)
            return None

    def _lookup_user(self, user_id: str) -> UserProfile | None:
        try:
            profiles = self._store.fetch_user_profiles([user_id])
        except Exception:
            logger.exception("Fetching user profile %r failed", user_id)
            return None
        return profiles[0] if profiles else None

    def _popular_fallback(self) -> list[ScoredPlace]:
        try:
            popular = self._store.fetch_popular_candidates(POPULAR_FALLBACK_LIMIT)
        except Exception:
            logger.exception("Fetching popular places failed")
            return []
        n = len(popular)
        return [
            ScoredPlace(
                place=place,
                match_score=float(n - index),
                match_details={"popularity": float(n - index)},
                context_factors=["popular_fallback"],
            )
            for index, place in enumerate(popular)
        ]
