"""Candidate aggregator: merges per-source candidate lists into one scored ranking."""

from __future__ import annotations

import logging
from collections import defaultdict

from placerank.models import (
    BehaviorProfile,
    Dimension,
    FeedbackEvent,
    PlaceCandidate,
    ScoredPlace,
    UserProfile,
    WeightVector,
)

logger = logging.getLogger(__name__)

_POSITION_SCALE = 10.0
_TAG_MATCH_SCALE = 10.0
_DIRECT_FEEDBACK_BOOST = 5.0
_CATEGORY_FEEDBACK_CAP = 3.0
_BEHAVIOR_CATEGORY_SCALE = 10.0
_BEHAVIOR_CATEGORY_CAP = 4.0

DEFAULT_MAX_RESULTS = 10


class CandidateAggregator:
    """Scores and deduplicates candidates drawn from several sources.

    Each source list is already ordered best-first.  A candidate at
    ``index`` in a list of length ``N`` earns
    ``weight[dimension] × 10 × (N - index) / N`` for that source, and a
    candidate present in several lists earns from each:

    ===================  =====================
    Source list          Dimension
    ===================  =====================
    personality          personality_affinity
    region               location
    mood                 mood
    ===================  =====================

    Additive bonuses follow:

    - ``matching interests × weight[interests] × 10`` and
      ``matching talents × weight[talents] × 10`` (case-insensitive equality
      against place tags and talent relevance).
    - Feedback history: +5 / -5 for places last rated ≥4 / ≤2, and a
      per-category boost equal to the summed ``rating - 3`` of the user's
      feedback in that category, clamped to ±3.
    - Behaviour: ``min(share of visits in the category × 10, 4)``.

    Args:
        max_results: Number of top-scoring candidates kept.
    """

    def __init__(self, max_results: int = DEFAULT_MAX_RESULTS) -> None:
        self._max_results = max_results

    def aggregate(
        self,
        personality_candidates: list[PlaceCandidate],
        region_candidates: list[PlaceCandidate],
        mood_candidates: list[PlaceCandidate],
        weights: WeightVector,
        user_profile: UserProfile,
        behavior: BehaviorProfile | None = None,
        feedback_history: list[FeedbackEvent] | None = None,
    ) -> list[ScoredPlace]:
        """Return up to ``max_results`` scored places, best first.

        Args:
            personality_candidates: Places matched by personality type.
            region_candidates: Places in the user's preferred region.
            mood_candidates: Places matched by current mood.
            weights: Active weight vector.
            user_profile: Supplies interests and talents for tag bonuses.
            behavior: Optional behaviour profile for the category bonus.
            feedback_history: Optional past feedback for feedback bonuses.

        Returns:
            Scored places sorted by descending ``match_score``.  Empty when
            every source list is empty.
        """
        scored: dict[str, ScoredPlace] = {}
        sources = (
            (Dimension.PERSONALITY_AFFINITY, personality_candidates),
            (Dimension.LOCATION, region_candidates),
            (Dimension.MOOD, mood_candidates),
        )
        for dimension, candidates in sources:
            self._add_positional_scores(scored, candidates, dimension, weights[dimension])

        if not scored:
            return []

        interests = {i.lower() for i in user_profile.interests if i}
        talents = {t.lower() for t in user_profile.talents if t}
        for entry in scored.values():
            self._add_tag_bonuses(entry, interests, talents, weights)

        if feedback_history:
            self._add_feedback_bonuses(scored, feedback_history)

        if behavior is not None and behavior.visit_count > 0:
            self._add_behavior_bonus(scored, behavior)

        ranked = sorted(scored.values(), key=lambda s: s.match_score, reverse=True)
        logger.debug(
            "Aggregated %d unique candidates; keeping top %d",
            len(ranked),
            self._max_results,
        )
        return ranked[: self._max_results]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _add_positional_scores(
        scored: dict[str, ScoredPlace],
        candidates: list[PlaceCandidate],
        dimension: Dimension,
        weight: float,
    ) -> None:
        n = len(candidates)
        seen: set[str] = set()
        for index, place in enumerate(candidates):
            if place.place_id in seen:
                continue
            seen.add(place.place_id)
            points = weight * _POSITION_SCALE * (n - index) / n
            entry = scored.setdefault(place.place_id, ScoredPlace(place=place))
            _credit(entry, dimension.value, points)

    @staticmethod
    def _add_tag_bonuses(
        entry: ScoredPlace,
        interests: set[str],
        talents: set[str],
        weights: WeightVector,
    ) -> None:
        place_tags = {t.lower() for t in entry.place.tags}
        interest_matches = len(interests & place_tags)
        if interest_matches:
            _credit(
                entry,
                "interest_tags",
                interest_matches * weights[Dimension.INTERESTS] * _TAG_MATCH_SCALE,
            )

        relevance = {t.lower() for t in entry.place.talent_relevance}
        talent_matches = len(talents & relevance)
        if talent_matches:
            _credit(
                entry,
                "talent_tags",
                talent_matches * weights[Dimension.TALENTS] * _TAG_MATCH_SCALE,
            )

    @staticmethod
    def _add_feedback_bonuses(
        scored: dict[str, ScoredPlace], feedback_history: list[FeedbackEvent]
    ) -> None:
        latest: dict[str, FeedbackEvent] = {}
        category_preference: dict[str, float] = defaultdict(float)
        for event in sorted(feedback_history, key=lambda e: e.timestamp):
            latest[event.place_id] = event
            if event.place_category:
                category_preference[event.place_category] += event.rating - 3

        for place_id, event in latest.items():
            entry = scored.get(place_id)
            if entry is None:
                continue
            if event.rating >= 4:
                _credit(entry, "feedback_direct", _DIRECT_FEEDBACK_BOOST)
            elif event.rating <= 2:
                _credit(entry, "feedback_direct", -_DIRECT_FEEDBACK_BOOST)

        for entry in scored.values():
            preference = category_preference.get(entry.place.category, 0.0)
            if preference:
                boost = max(-_CATEGORY_FEEDBACK_CAP, min(_CATEGORY_FEEDBACK_CAP, preference))
                _credit(entry, "feedback_category", boost)

    @staticmethod
    def _add_behavior_bonus(
        scored: dict[str, ScoredPlace], behavior: BehaviorProfile
    ) -> None:
        counts = behavior.categories.counts
        for entry in scored.values():
            count = counts.get(entry.place.category, 0)
            if not count:
                continue
            share = count / behavior.visit_count
            boost = min(share * _BEHAVIOR_CATEGORY_SCALE, _BEHAVIOR_CATEGORY_CAP)
            _credit(entry, "behavior_category", boost)


def _credit(entry: ScoredPlace, component: str, points: float) -> None:
    entry.match_score += points
    entry.match_details[component] = entry.match_details.get(component, 0.0) + points
