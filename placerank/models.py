"""Core domain dataclasses shared across all placerank modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union

import numpy as np


class Dimension(str, Enum):
    """The five signal dimensions blended into a place's score."""

    PERSONALITY_AFFINITY = "personality_affinity"
    INTERESTS = "interests"
    TALENTS = "talents"
    MOOD = "mood"
    LOCATION = "location"


class WeightSource(str, Enum):
    """Provenance of a weight vector returned by ``get_weights``."""

    PERSONAL = "personal"
    COLLABORATIVE = "collaborative"


# ---------------------------------------------------------------------------
# Weights
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WeightVector:
    """Blend coefficients for the five signal dimensions.

    Instances are immutable; every adjustment produces a new vector.  Vectors
    handed out by the learning components always sum to 1.0.

    ======================  =======
    Dimension               Default
    ======================  =======
    personality_affinity    0.35
    interests               0.25
    talents                 0.15
    mood                    0.15
    location                0.10
    ======================  =======
    """

    personality_affinity: float = 0.35
    interests: float = 0.25
    talents: float = 0.15
    mood: float = 0.15
    location: float = 0.10

    def __getitem__(self, dimension: Dimension) -> float:
        return getattr(self, Dimension(dimension).value)

    def as_array(self) -> np.ndarray:
        """Return the weights as a float vector in :class:`Dimension` order."""
        return np.array([self[d] for d in Dimension], dtype=np.float64)

    @classmethod
    def from_array(cls, values: np.ndarray) -> WeightVector:
        return cls(*(float(v) for v in values))

    def as_dict(self) -> dict[str, float]:
        return {d.value: self[d] for d in Dimension}

    @classmethod
    def from_dict(cls, data: dict[str, float]) -> WeightVector:
        """Build a vector from a ``{dimension: weight}`` mapping.

        Missing dimensions take their default value.

        Raises:
            ValueError: If a value cannot be interpreted as a number.
        """
        defaults = cls()
        return cls(
            *(float(data.get(d.value, defaults[d])) for d in Dimension)
        )

    def normalized(self) -> WeightVector:
        """Return a copy clamped at zero and rescaled to sum to 1.0.

        A vector with no positive mass falls back to the default
        distribution.
        """
        arr = np.clip(self.as_array(), 0.0, None)
        total = arr.sum()
        if total <= 0.0 or not np.isfinite(total):
            return WeightVector()
        return WeightVector.from_array(arr / total)


@dataclass(frozen=True)
class PersonalWeights:
    """The user's own learned weights, used when no peer blend was possible."""

    weights: WeightVector

    @property
    def source(self) -> WeightSource:
        return WeightSource.PERSONAL


@dataclass(frozen=True)
class CollaborativeWeights:
    """Personal weights blended with the learned weights of similar users.

    Attributes:
        weights: The blended, renormalized vector actually used for ranking.
        personal_weights: The requester's own vector before blending.
        peer_weights: The similarity-weighted average of the peers' vectors.
        peer_count: Number of peers whose profiles contributed.
    """

    weights: WeightVector
    personal_weights: WeightVector
    peer_weights: WeightVector
    peer_count: int

    @property
    def source(self) -> WeightSource:
        return WeightSource.COLLABORATIVE


WeightResult = Union[PersonalWeights, CollaborativeWeights]


# ---------------------------------------------------------------------------
# Feedback and learning state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeedbackEvent:
    """A single explicit rating left by a user for a place.

    Attributes:
        timestamp: When the feedback was given (UTC).
        place_id: The rated place.
        rating: Star rating, 1–5 inclusive.
        tags: Free-form tags the user attached to the rating.
        place_category: Category of the rated place, when known.  Used for
            category-level boosts during ranking.
        comment: Optional free-text comment.
    """

    timestamp: datetime
    place_id: str
    rating: float
    tags: frozenset[str] = frozenset()
    place_category: str | None = None
    comment: str = ""

    def __post_init__(self) -> None:
        if not self.place_id:
            raise ValueError("place_id must be non-empty")
        if not 1 <= self.rating <= 5:
            raise ValueError(f"rating must be between 1 and 5, got {self.rating!r}")
        if not isinstance(self.tags, frozenset):
            object.__setattr__(self, "tags", frozenset(self.tags))


@dataclass
class LearningProfile:
    """Per-user persisted personalization state.

    Attributes:
        user_id: Owner of the profile.
        weights: Current learned weight vector.
        learning_rate: Rate applied on the most recent adjustment.
        confidence: Number of feedback events seen, capped at 100.
        history: Most recent feedback events, oldest first.
        last_updated: When the profile was last adjusted.
    """

    user_id: str
    weights: WeightVector = field(default_factory=WeightVector)
    learning_rate: float = 0.05
    confidence: int = 0
    history: list[FeedbackEvent] = field(default_factory=list)
    last_updated: datetime | None = None


@dataclass(frozen=True)
class AdjustmentResult:
    """Outcome of applying one feedback event to a learning profile.

    Attributes:
        profile: The updated profile (a new object; the input is untouched).
        adjustment: Signed per-dimension adjustment before scaling by the
            learning rate.  All zeros for neutral feedback.
        applied: ``False`` when the rating was too close to neutral to move
            the weights.
    """

    profile: LearningProfile
    adjustment: dict[Dimension, float]
    applied: bool

    @property
    def weights(self) -> WeightVector:
        return self.profile.weights


# ---------------------------------------------------------------------------
# Places
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class RecommendedFor:
    """Audience and situation tags a place declares for itself."""

    mbti: frozenset[str] = frozenset()
    mood: frozenset[str] = frozenset()
    time_of_day: frozenset[str] = frozenset()
    day_type: frozenset[str] = frozenset()
    weather: frozenset[str] = frozenset()


@dataclass(frozen=True)
class PlaceCandidate:
    """A place as returned by one of the candidate sources.

    Read-only from the ranking pipeline's point of view; request-scoped
    scores live on :class:`ScoredPlace` instead.

    Attributes:
        place_id: Unique identifier for the place.
        name: Display name.
        category: Single category label (e.g. ``"cafe"``).
        region: Region label the place belongs to.
        tags: Descriptive tags, matched against user interests.
        coordinates: Location of the place, if known.
        recommended_for: Declared audience/situation affinities.
        talent_relevance: Talents the place caters for.
        operating_hours: Map from lowercase weekday name to an
            ``(open, close)`` pair of ``"HH:MM"`` strings.  A close time
            earlier than the open time means the place closes after midnight.
        rating: Average public rating.
        visit_count: Total recorded visits, used by the popularity fallback.
        distance_km: Precomputed distance from the user, when the source
            provides one.
    """

    place_id: str
    name: str = ""
    category: str = ""
    region: str = ""
    tags: tuple[str, ...] = ()
    coordinates: Coordinates | None = None
    recommended_for: RecommendedFor = field(default_factory=RecommendedFor)
    talent_relevance: tuple[str, ...] = ()
    operating_hours: dict[str, tuple[str, str]] = field(default_factory=dict, hash=False)
    rating: float = 0.0
    visit_count: int = 0
    distance_km: float | None = None


@dataclass
class ScoredPlace:
    """A candidate annotated with its request-scoped score.

    Attributes:
        place: The underlying candidate.
        match_score: Current total score.
        match_details: Additive contribution per scoring component, keyed by
            component name (dimension names, ``"interest_tags"``, ...).
        context_factors: Names of the multiplicative boosts that applied.
    """

    place: PlaceCandidate
    match_score: float = 0.0
    match_details: dict[str, float] = field(default_factory=dict)
    context_factors: list[str] = field(default_factory=list)

    @property
    def place_id(self) -> str:
        return self.place.place_id


# ---------------------------------------------------------------------------
# Users and activity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VisitRecord:
    place_id: str
    visit_date: datetime
    category: str | None = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class SearchRecord:
    term: str
    timestamp: datetime
    category: str | None = None
    result_clicks: int = 0


@dataclass
class UserActivity:
    """Raw activity history the behaviour extractor works from."""

    visits: list[VisitRecord] = field(default_factory=list)
    feedback: list[FeedbackEvent] = field(default_factory=list)
    searches: list[SearchRecord] = field(default_factory=list)


@dataclass
class UserProfile:
    """Declared traits of a user plus the activity the ranker needs.

    Attributes:
        user_id: Unique identifier for the user.
        personality_type: MBTI-style personality label (e.g. ``"INFP"``).
        interests: Declared interests, matched against place tags.
        talents: Declared talents, matched against place talent relevance.
        preferred_regions: Regions to draw candidates from; the first one
            is used for the region candidate list.
        current_mood: Mood label for the mood candidate list.
        current_location: Where the user is now, if known.
        visit_history: Recorded visits, oldest first.
    """

    user_id: str
    personality_type: str = ""
    interests: list[str] = field(default_factory=list)
    talents: list[str] = field(default_factory=list)
    preferred_regions: list[str] = field(default_factory=list)
    current_mood: str = ""
    current_location: Coordinates | None = None
    visit_history: list[VisitRecord] = field(default_factory=list)


@dataclass(frozen=True)
class SimilarityScore:
    """Similarity between the requester and one peer, with its components."""

    peer_user_id: str
    similarity: float
    personality: float
    interests: float
    talents: float


@dataclass(frozen=True)
class RankingContext:
    """Situational inputs to a single ranking request.

    Attributes:
        now: Local time of the request; drives hour, weekday and open-now
            boosts.
        weather: Current weather condition label (e.g. ``"rainy"``).
        location: The user's current position; overrides the profile's.
    """

    now: datetime
    weather: str | None = None
    location: Coordinates | None = None


# ---------------------------------------------------------------------------
# Behaviour profile
# ---------------------------------------------------------------------------


@dataclass
class TimePattern:
    hour_counts: dict[int, int] = field(default_factory=dict)
    time_of_day_counts: dict[str, int] = field(default_factory=dict)
    time_of_day_shares: dict[str, float] = field(default_factory=dict)
    favorite_time_of_day: str | None = None
    weekday_count: int = 0
    weekend_count: int = 0
    weekday_share: float = 0.0
    weekend_share: float = 0.0
    favorite_day_type: str | None = None
    recency: str = "none"
    frequency: str = "none"


@dataclass
class CategoryPattern:
    counts: dict[str, int] = field(default_factory=dict)
    dominant_category: str | None = None
    diversity: str = "none"
    top_tags: list[str] = field(default_factory=list)


@dataclass
class RevisitPattern:
    revisit_rate: float = 0.0
    pattern: str = "none"
    favorite_place_id: str | None = None
    visited_place_ids: frozenset[str] = frozenset()
    average_interval_days: float | None = None
    interval_regularity: str = "unknown"


@dataclass
class FeedbackPattern:
    average_rating: float = 0.0
    distribution: dict[int, int] = field(default_factory=dict)
    positive_ratio: float = 0.0
    critical_ratio: float = 0.0
    top_positive_tags: list[str] = field(default_factory=list)
    top_negative_tags: list[str] = field(default_factory=list)
    frequency: str = "none"
    style: str = "none"


@dataclass
class SearchPattern:
    top_terms: list[str] = field(default_factory=list)
    top_categories: list[str] = field(default_factory=list)
    frequency: str = "none"
    click_through_rate: float = 0.0
    style: str = "none"


@dataclass
class BehaviorProfile:
    """Aggregate statistics derived from a user's recorded activity.

    Derived data only: the profile is recomputed from raw history and is
    considered stale once :attr:`last_updated` is more than seven days old.
    ``visit_count == 0`` marks the neutral profile produced for users with
    no history.
    """

    visit_count: int = 0
    time: TimePattern = field(default_factory=TimePattern)
    categories: CategoryPattern = field(default_factory=CategoryPattern)
    revisits: RevisitPattern = field(default_factory=RevisitPattern)
    feedback: FeedbackPattern = field(default_factory=FeedbackPattern)
    search: SearchPattern = field(default_factory=SearchPattern)
    persona: str = "general_user"
    user_type: str = "new"
    activity_level: str = "inactive"
    activity_score: int = 0
    personalized_weights: WeightVector = field(default_factory=WeightVector)
    last_updated: datetime | None = None
