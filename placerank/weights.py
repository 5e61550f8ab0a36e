"""Weight adjustment engine: online per-user learning from explicit feedback."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace

import numpy as np

from placerank.models import (
    AdjustmentResult,
    Dimension,
    FeedbackEvent,
    LearningProfile,
    PlaceCandidate,
    WeightVector,
)
from placerank.vocabulary import KeywordVocabulary

logger = logging.getLogger(__name__)

MAX_LEARNING_RATE = 0.15
MIN_LEARNING_RATE = 0.01
MAX_CONFIDENCE = 100
HISTORY_CAPACITY = 50

_LOW_CONFIDENCE = 5
_HIGH_CONFIDENCE = 20
_NEUTRAL_BAND = 0.1
_NOISE_WINDOW = 5
_NOISE_MIN_POINTS = 3
_NOISE_THRESHOLD = 1.5
_NOISE_DAMPING = 0.8

_TAG_EMPHASIS = 1.0
_METADATA_EMPHASIS = 0.5
_CANDIDATE_INTEREST_TAG_EMPHASIS = 0.3


class WeightAdjustmentEngine:
    """Applies one feedback event to a :class:`LearningProfile`.

    Adjustment pipeline:

    1. ``normalized = (rating - 3) / 2``.  Ratings within ±0.1 of neutral
       leave the weights untouched (the event is still recorded).
    2. Per-dimension *emphasis* from the event's tags (keyword matches,
       +1.0 per matching dimension per tag) and the rated place's metadata:

       ========================================  ===============  =======
       Signal                                    Dimension        Amount
       ========================================  ===============  =======
       place declares personality types          personality      +0.5
       each place tag in the interests list      interests        +0.3
       place distance is known                   location         +0.5
       place declares moods                      mood             +0.5
       ========================================  ===============  =======

       Emphasis is normalized to sum to 1; with no signal it is uniform.
    3. The event is appended to history and confidence incremented, then
       the learning rate is derived from the new confidence: the maximum
       rate below 5 events, the minimum above 20, linear in between.  If
       the last five ratings (at least three) average more than 1.5 away
       from this rating the rate is damped by 0.8.
    4. ``new[d] = old[d] + rate * normalized * emphasis[d]``, clamped at
       zero and renormalized.

    The input profile is never mutated; the caller persists the returned
    profile.

    Args:
        vocabulary: Tag keyword table.
        max_learning_rate: Rate used while confidence is low.
        min_learning_rate: Rate used once confidence is high.
    """

    def __init__(
        self,
        vocabulary: KeywordVocabulary | None = None,
        max_learning_rate: float = MAX_LEARNING_RATE,
        min_learning_rate: float = MIN_LEARNING_RATE,
    ) -> None:
        if min_learning_rate > max_learning_rate:
            raise ValueError("min_learning_rate must not exceed max_learning_rate")
        self._vocabulary = vocabulary or KeywordVocabulary()
        self._max_rate = max_learning_rate
        self._min_rate = min_learning_rate

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def adjust(
        self,
        profile: LearningProfile,
        event: FeedbackEvent,
        place: PlaceCandidate | None = None,
    ) -> AdjustmentResult:
        """Return the profile updated by *event*.

        Args:
            profile: Current learning state for the user.
            event: The feedback to learn from.
            place: The rated place, if it could be loaded.  Its metadata
                contributes to the emphasis distribution.

        Returns:
            An :class:`AdjustmentResult` carrying the new profile.
        """
        history = (list(profile.history) + [event])[-HISTORY_CAPACITY:]
        confidence = min(MAX_CONFIDENCE, profile.confidence + 1)

        normalized = (event.rating - 3) / 2
        if abs(normalized) < _NEUTRAL_BAND:
            logger.debug(
                "Neutral feedback from user %r on %r; weights unchanged",
                profile.user_id,
                event.place_id,
            )
            updated = replace(
                profile,
                history=history,
                confidence=confidence,
                last_updated=event.timestamp,
            )
            return AdjustmentResult(
                profile=updated,
                adjustment={d: 0.0 for d in Dimension},
                applied=False,
            )

        emphasis = self.emphasis(event, place)
        adjustment = {d: normalized * emphasis[d] for d in Dimension}
        rate = self.learning_rate(confidence, history, event.rating)

        delta = np.array([adjustment[d] for d in Dimension]) * rate
        weights = WeightVector.from_array(profile.weights.as_array() + delta).normalized()

        logger.debug(
            "Adjusted weights for user %r: rating=%s rate=%.4f confidence=%d",
            profile.user_id,
            event.rating,
            rate,
            confidence,
        )
        updated = replace(
            profile,
            weights=weights,
            learning_rate=rate,
            confidence=confidence,
            history=history,
            last_updated=event.timestamp,
        )
        return AdjustmentResult(profile=updated, adjustment=adjustment, applied=True)

    def emphasis(
        self, event: FeedbackEvent, place: PlaceCandidate | None = None
    ) -> dict[Dimension, float]:
        """Estimate how much each dimension is implicated by *event*.

        Returns:
            A distribution over :class:`Dimension` summing to 1.0.
        """
        raw = {d: 0.0 for d in Dimension}
        for tag in event.tags:
            for dimension in self._vocabulary.dimensions_for(tag):
                raw[dimension] += _TAG_EMPHASIS

        if place is not None:
            if place.recommended_for.mbti:
                raw[Dimension.PERSONALITY_AFFINITY] += _METADATA_EMPHASIS
            for tag in place.tags:
                if self._vocabulary.matches(tag, Dimension.INTERESTS):
                    raw[Dimension.INTERESTS] += _CANDIDATE_INTEREST_TAG_EMPHASIS
            if place.distance_km is not None:
                raw[Dimension.LOCATION] += _METADATA_EMPHASIS
            if place.recommended_for.mood:
                raw[Dimension.MOOD] += _METADATA_EMPHASIS

        total = sum(raw.values())
        if total <= 0:
            uniform = 1.0 / len(Dimension)
            return {d: uniform for d in Dimension}
        return {d: v / total for d, v in raw.items()}

    def learning_rate(
        self,
        confidence: int,
        history: list[FeedbackEvent],
        current_rating: float,
    ) -> float:
        """Derive the step size from confidence and recent rating agreement.

        Args:
            confidence: Event count including the current event.
            history: Feedback history including the current event.
            current_rating: Rating of the current event.
        """
        if confidence < _LOW_CONFIDENCE:
            rate = self._max_rate
        elif confidence > _HIGH_CONFIDENCE:
            rate = self._min_rate
        else:
            span = _HIGH_CONFIDENCE - _LOW_CONFIDENCE
            progress = (confidence - _LOW_CONFIDENCE) / span
            rate = self._max_rate - (self._max_rate - self._min_rate) * progress

        recent = history[-_NOISE_WINDOW:]
        if len(recent) >= _NOISE_MIN_POINTS:
            recent_avg = sum(e.rating for e in recent) / len(recent)
            if abs(recent_avg - current_rating) > _NOISE_THRESHOLD:
                rate *= _NOISE_DAMPING

        return float(min(self._max_rate, max(self._min_rate, rate)))


# ---------------------------------------------------------------------------
# History analysis
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WeightHistorySummary:
    """Descriptive statistics over a learning profile's feedback history."""

    data_points: int = 0
    average_rating: float = 0.0
    volatility: float = 0.0
    trend: str = "neutral"
    recent_trend: str = "neutral"
    top_tags: list[str] = field(default_factory=list)


def analyze_weight_history(history: list[FeedbackEvent]) -> WeightHistorySummary:
    """Summarize rating level, spread and direction over *history*.

    ``trend`` compares the first and last third of the history (at most
    five events each); ``recent_trend`` counts rises and falls over the last
    five events.
    """
    if not history:
        return WeightHistorySummary()

    ordered = sorted(history, key=lambda e: e.timestamp)
    ratings = np.array([e.rating for e in ordered], dtype=np.float64)

    window = max(1, min(5, len(ordered) // 3))
    first_avg = ratings[:window].mean()
    last_avg = ratings[-window:].mean()
    if last_avg - first_avg > 0.5:
        trend = "improving"
    elif first_avg - last_avg > 0.5:
        trend = "declining"
    else:
        trend = "neutral"

    recent_trend = "neutral"
    recent = ratings[-5:]
    if len(recent) >= 3:
        steps = np.diff(recent)
        rises = int((steps > 0).sum())
        falls = int((steps < 0).sum())
        if rises > falls and rises >= 2:
            recent_trend = "improving"
        elif falls > rises and falls >= 2:
            recent_trend = "declining"

    tags = Counter(tag for e in ordered for tag in e.tags)
    return WeightHistorySummary(
        data_points=len(ordered),
        average_rating=float(ratings.mean()),
        volatility=float(ratings.std()),
        trend=trend,
        recent_trend=recent_trend,
        top_tags=[tag for tag, _ in tags.most_common(5)],
    )
