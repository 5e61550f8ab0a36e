"""Behaviour pattern extractor: raw visit/feedback/search history to a BehaviorProfile."""

from __future__ import annotations

import logging
import statistics
from collections import Counter
from collections.abc import Iterable
from datetime import datetime, timedelta

from placerank.cache import TTLCache, stable_key
from placerank.codec import feedback_event_to_dict, search_to_dict, visit_to_dict
from placerank.models import (
    BehaviorProfile,
    CategoryPattern,
    Dimension,
    FeedbackEvent,
    FeedbackPattern,
    PlaceCandidate,
    RevisitPattern,
    SearchPattern,
    SearchRecord,
    TimePattern,
    UserActivity,
    VisitRecord,
    WeightVector,
)

logger = logging.getLogger(__name__)

TIME_OF_DAY_BUCKETS = ("morning", "afternoon", "evening", "night")
STALE_AFTER = timedelta(days=7)

_CACHE_PREFIX = "behavior:"
_TOP_TAGS = 5
_TOP_SEARCH_TERMS = 10
_TOP_SEARCH_CATEGORIES = 5


def time_of_day(hour: int) -> str:
    """Map an hour (0–23) onto its bucket.

    ==========  ========
    Bucket      Hours
    ==========  ========
    morning     5–10
    afternoon   11–16
    evening     17–21
    night       22–4
    ==========  ========
    """
    if 5 <= hour <= 10:
        return "morning"
    if 11 <= hour <= 16:
        return "afternoon"
    if 17 <= hour <= 21:
        return "evening"
    return "night"


def day_type(moment: datetime) -> str:
    return "weekend" if moment.weekday() >= 5 else "weekday"


def is_stale(profile: BehaviorProfile | None, now: datetime) -> bool:
    """Return ``True`` if *profile* is missing, undated or older than a week."""
    if profile is None or profile.last_updated is None:
        return True
    return now - profile.last_updated >= STALE_AFTER


class BehaviorPatternExtractor:
    """Derives a :class:`BehaviorProfile` from a user's raw activity.

    The extractor is stateless apart from an optional memoization cache.
    Results are keyed by a stable hash of the full input (activity, place
    details and the calendar day of *now*), so identical histories analysed
    on the same day are computed once.

    Persona decision table (first match wins):

    ==========================================  ========================
    Condition                                   Persona
    ==========================================  ========================
    diversity high, frequency high              enthusiastic_explorer
    revisit pattern high, diversity low         loyal_regular
    favourite time morning, top category cafe   morning_cafe_goer
    favourite time evening, restaurant or bar   evening_diner
    favourite day weekend, frequency medium     weekend_leisure_seeker
    diversity medium, frequency medium          balanced_visitor
    frequency low                               occasional_visitor
    otherwise                                   general_user
    ==========================================  ========================

    Args:
        cache: Optional memoization cache.  ``None`` disables memoization.
    """

    def __init__(self, cache: TTLCache | None = None) -> None:
        self._cache = cache

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def extract(
        self,
        activity: UserActivity,
        now: datetime,
        place_details: Iterable[PlaceCandidate] = (),
    ) -> BehaviorProfile:
        """Build a behaviour profile from *activity*.

        Args:
            activity: Visits, feedback and searches for one user.
            now: Reference time for recency and activity level.
            place_details: Known places; their categories and tags take
                precedence over those recorded on the visits.

        Returns:
            A fresh :class:`BehaviorProfile`.  An empty history yields the
            neutral profile.
        """
        details = list(place_details)
        if self._cache is None:
            return self._extract(activity, now, details)

        key = _CACHE_PREFIX + stable_key(
            [visit_to_dict(v) for v in activity.visits],
            [feedback_event_to_dict(e) for e in activity.feedback],
            [search_to_dict(s) for s in activity.searches],
            sorted(p.place_id for p in details),
            now.date().isoformat(),
        )
        return self._cache.get_or_compute(
            key, lambda: self._extract(activity, now, details)
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _extract(
        self,
        activity: UserActivity,
        now: datetime,
        place_details: list[PlaceCandidate],
    ) -> BehaviorProfile:
        visits = _enrich_visits(activity.visits, place_details)
        time_pattern = _time_pattern(visits, now)
        category_pattern = _category_pattern(visits)
        revisit_pattern = _revisit_pattern(visits)
        feedback_pattern = _feedback_pattern(activity.feedback)
        search_pattern = _search_pattern(activity.searches)
        activity_level = _activity_level(visits, now)

        profile = BehaviorProfile(
            visit_count=len(visits),
            time=time_pattern,
            categories=category_pattern,
            revisits=revisit_pattern,
            feedback=feedback_pattern,
            search=search_pattern,
            persona=_persona(time_pattern, category_pattern, revisit_pattern)
            if visits
            else "general_user",
            user_type=_user_type(len(visits), category_pattern, revisit_pattern),
            activity_level=activity_level,
            activity_score=_activity_score(
                len(visits), activity_level, feedback_pattern, search_pattern
            ),
            personalized_weights=_personalized_weights(
                len(visits),
                len(activity.feedback),
                len(activity.searches),
                category_pattern,
                revisit_pattern,
                activity_level,
                feedback_pattern,
                search_pattern,
            ),
            last_updated=now,
        )
        logger.debug(
            "Extracted behaviour profile: visits=%d persona=%s type=%s",
            profile.visit_count,
            profile.persona,
            profile.user_type,
        )
        return profile


# ---------------------------------------------------------------------------
# Visit statistics
# ---------------------------------------------------------------------------


def _enrich_visits(
    visits: list[VisitRecord], place_details: list[PlaceCandidate]
) -> list[VisitRecord]:
    by_id = {p.place_id: p for p in place_details}
    enriched = []
    for visit in visits:
        place = by_id.get(visit.place_id)
        if place is None:
            enriched.append(visit)
            continue
        enriched.append(
            VisitRecord(
                place_id=visit.place_id,
                visit_date=visit.visit_date,
                category=place.category or visit.category,
                tags=place.tags or visit.tags,
            )
        )
    return enriched


def _time_pattern(visits: list[VisitRecord], now: datetime) -> TimePattern:
    if not visits:
        return TimePattern()

    total = len(visits)
    hour_counts = Counter(v.visit_date.hour for v in visits)
    bucket_counts = {b: 0 for b in TIME_OF_DAY_BUCKETS}
    for hour, count in hour_counts.items():
        bucket_counts[time_of_day(hour)] += count

    favorite = None
    best = 0
    for bucket in TIME_OF_DAY_BUCKETS:
        if bucket_counts[bucket] > best:
            favorite, best = bucket, bucket_counts[bucket]

    weekend = sum(1 for v in visits if day_type(v.visit_date) == "weekend")
    weekday = total - weekend

    days_since_last = (now - max(v.visit_date for v in visits)).days
    if days_since_last <= 7:
        recency = "recent"
    elif days_since_last <= 30:
        recency = "moderate"
    else:
        recency = "old"

    return TimePattern(
        hour_counts=dict(sorted(hour_counts.items())),
        time_of_day_counts=bucket_counts,
        time_of_day_shares={b: c / total for b, c in bucket_counts.items()},
        favorite_time_of_day=favorite,
        weekday_count=weekday,
        weekend_count=weekend,
        weekday_share=weekday / total,
        weekend_share=weekend / total,
        favorite_day_type="weekday" if weekday > weekend else "weekend",
        recency=recency,
        frequency=_visit_frequency(total),
    )


def _visit_frequency(count: int) -> str:
    if count >= 10:
        return "high"
    if count >= 5:
        return "medium"
    return "low"


def _category_pattern(visits: list[VisitRecord]) -> CategoryPattern:
    if not visits:
        return CategoryPattern()

    counts = Counter(v.category or "unknown" for v in visits)
    tags = Counter(tag for v in visits for tag in v.tags)
    distinct = len(counts)
    if distinct >= 5:
        diversity = "high"
    elif distinct >= 3:
        diversity = "medium"
    else:
        diversity = "low"

    return CategoryPattern(
        counts=dict(counts),
        dominant_category=counts.most_common(1)[0][0],
        diversity=diversity,
        top_tags=[tag for tag, _ in tags.most_common(_TOP_TAGS)],
    )


def _revisit_pattern(visits: list[VisitRecord]) -> RevisitPattern:
    if not visits:
        return RevisitPattern()

    dates: dict[str, list[datetime]] = {}
    for visit in visits:
        dates.setdefault(visit.place_id, []).append(visit.visit_date)

    revisited = {pid: d for pid, d in dates.items() if len(d) > 1}
    rate = len(revisited) / len(dates)
    if rate > 0.5:
        pattern = "high"
    elif rate > 0.2:
        pattern = "medium"
    elif rate > 0:
        pattern = "low"
    else:
        pattern = "none"

    favorite = max(dates, key=lambda pid: len(dates[pid]))

    average_interval = None
    regularity = "unknown"
    if revisited:
        stats = [_interval_stats(d) for d in revisited.values()]
        average_interval = sum(mean for mean, _ in stats) / len(stats)
        consistency = sum(score for _, score in stats) / len(stats)
        if consistency > 0.7:
            regularity = "regular"
        elif consistency > 0.4:
            regularity = "semi_regular"
        else:
            regularity = "irregular"

    return RevisitPattern(
        revisit_rate=rate,
        pattern=pattern,
        favorite_place_id=favorite,
        visited_place_ids=frozenset(dates),
        average_interval_days=average_interval,
        interval_regularity=regularity,
    )


def _interval_stats(dates: list[datetime]) -> tuple[float, float]:
    """Return ``(mean interval in days, consistency score in [0, 1])``.

    Consistency is ``1 / (1 + coefficient of variation)``; identical
    intervals score 1.0.
    """
    ordered = sorted(dates)
    intervals = [
        (later - earlier).total_seconds() / 86400
        for earlier, later in zip(ordered, ordered[1:])
    ]
    mean = statistics.fmean(intervals)
    if mean <= 0:
        return mean, 0.0
    cv = statistics.pstdev(intervals) / mean
    return mean, 1.0 / (1.0 + cv)


def _activity_level(visits: list[VisitRecord], now: datetime) -> str:
    if not visits:
        return "inactive"
    days_since_last = (now - max(v.visit_date for v in visits)).days
    recent = sum(1 for v in visits if (now - v.visit_date).days <= 30)
    if days_since_last <= 7 and recent >= 5:
        return "very_active"
    if days_since_last <= 14 and recent >= 3:
        return "active"
    if days_since_last <= 30:
        return "moderate"
    if days_since_last <= 90:
        return "occasional"
    return "inactive"


def _persona(
    time_pattern: TimePattern,
    category_pattern: CategoryPattern,
    revisit_pattern: RevisitPattern,
) -> str:
    diversity = category_pattern.diversity
    frequency = time_pattern.frequency
    category = category_pattern.dominant_category or ""

    if diversity == "high" and frequency == "high":
        return "enthusiastic_explorer"
    if revisit_pattern.pattern == "high" and diversity == "low":
        return "loyal_regular"
    if time_pattern.favorite_time_of_day == "morning" and category == "cafe":
        return "morning_cafe_goer"
    if time_pattern.favorite_time_of_day == "evening" and category in ("restaurant", "bar"):
        return "evening_diner"
    if time_pattern.favorite_day_type == "weekend" and frequency == "medium":
        return "weekend_leisure_seeker"
    if diversity == "medium" and frequency == "medium":
        return "balanced_visitor"
    if frequency == "low":
        return "occasional_visitor"
    return "general_user"


def _user_type(
    visit_count: int,
    category_pattern: CategoryPattern,
    revisit_pattern: RevisitPattern,
) -> str:
    if visit_count >= 10:
        if revisit_pattern.revisit_rate > 0.5:
            return "loyal"
        if category_pattern.diversity == "high":
            return "explorer"
        return "focused"
    if visit_count >= 3:
        return "emerging"
    return "new"


# ---------------------------------------------------------------------------
# Feedback and search statistics
# ---------------------------------------------------------------------------


def _feedback_pattern(feedback: list[FeedbackEvent]) -> FeedbackPattern:
    if not feedback:
        return FeedbackPattern()

    total = len(feedback)
    distribution = Counter(int(round(e.rating)) for e in feedback)
    positive_tags: Counter[str] = Counter()
    negative_tags: Counter[str] = Counter()
    for event in feedback:
        if event.rating >= 4:
            positive_tags.update(event.tags)
        elif event.rating <= 2:
            negative_tags.update(event.tags)

    positive = sum(1 for e in feedback if e.rating >= 4)
    critical = sum(1 for e in feedback if e.rating <= 2)

    if total >= 10:
        frequency = "high"
    elif total >= 5:
        frequency = "medium"
    else:
        frequency = "low"

    comments = [len(e.comment) for e in feedback if e.comment]
    comment_share = len(comments) / total
    average_length = sum(comments) / len(comments) if comments else 0.0
    if comment_share > 0.7:
        if average_length > 100:
            style = "detailed"
        elif average_length > 30:
            style = "descriptive"
        else:
            style = "concise"
    elif comment_share > 0.3:
        style = "occasional"
    else:
        style = "rating_only"

    return FeedbackPattern(
        average_rating=sum(e.rating for e in feedback) / total,
        distribution={r: distribution.get(r, 0) for r in range(1, 6)},
        positive_ratio=positive / total,
        critical_ratio=critical / total,
        top_positive_tags=[t for t, _ in positive_tags.most_common(_TOP_TAGS)],
        top_negative_tags=[t for t, _ in negative_tags.most_common(_TOP_TAGS)],
        frequency=frequency,
        style=style,
    )


def _search_pattern(searches: list[SearchRecord]) -> SearchPattern:
    if not searches:
        return SearchPattern()

    total = len(searches)
    terms = Counter(s.term.lower().strip() for s in searches if s.term.strip())
    categories = Counter(s.category for s in searches if s.category)
    click_through = sum(1 for s in searches if s.result_clicks > 0) / total

    if total >= 2:
        first = min(s.timestamp for s in searches)
        last = max(s.timestamp for s in searches)
        daily_rate = total / max(1, (last - first).days)
        if daily_rate >= 3:
            frequency = "high"
        elif daily_rate >= 1:
            frequency = "medium"
        else:
            frequency = "low"
    else:
        frequency = "one_time"

    category_ratio = sum(categories.values()) / total
    keyword_diversity = len(terms) / total
    if category_ratio > 0.7:
        style = "category_focused"
    elif keyword_diversity < 0.3:
        style = "repetitive"
    elif len(terms) > 10 and click_through > 0.7:
        style = "exploratory"
    elif len(terms) <= 3 and total > 5:
        style = "specific"
    else:
        style = "general"

    return SearchPattern(
        top_terms=[t for t, _ in terms.most_common(_TOP_SEARCH_TERMS)],
        top_categories=[c for c, _ in categories.most_common(_TOP_SEARCH_CATEGORIES)],
        frequency=frequency,
        click_through_rate=click_through,
        style=style,
    )


# ---------------------------------------------------------------------------
# Derived scores
# ---------------------------------------------------------------------------

_VISIT_ACTIVITY_POINTS = {
    "very_active": 50,
    "active": 40,
    "moderate": 30,
    "occasional": 20,
}
_FEEDBACK_ACTIVITY_POINTS = {"high": 30, "medium": 20, "low": 10}
_SEARCH_ACTIVITY_POINTS = {"high": 20, "medium": 15, "low": 10, "one_time": 5}


def _activity_score(
    visit_count: int,
    activity_level: str,
    feedback_pattern: FeedbackPattern,
    search_pattern: SearchPattern,
) -> int:
    """Engagement score in [0, 100] from visits, feedback and searches."""
    visit_points = _VISIT_ACTIVITY_POINTS.get(activity_level, 10 if visit_count else 0)
    score = (
        visit_points
        + _FEEDBACK_ACTIVITY_POINTS.get(feedback_pattern.frequency, 0)
        + _SEARCH_ACTIVITY_POINTS.get(search_pattern.frequency, 0)
    )
    return min(100, score)


def _personalized_weights(
    visit_count: int,
    feedback_count: int,
    search_count: int,
    category_pattern: CategoryPattern,
    revisit_pattern: RevisitPattern,
    activity_level: str,
    feedback_pattern: FeedbackPattern,
    search_pattern: SearchPattern,
) -> WeightVector:
    """Nudge the default weights towards what the user's behaviour suggests.

    The nudge grows with the amount of evidence: 0.05 per signal, 0.10 once
    either visits or feedback reach 10 records, 0.15 at 20.
    """
    if not visit_count and not feedback_count:
        return WeightVector()

    evidence = max(visit_count, feedback_count)
    if evidence >= 20:
        step = 0.15
    elif evidence >= 10:
        step = 0.10
    else:
        step = 0.05

    nudges = {d: 0.0 for d in Dimension}
    if visit_count:
        if category_pattern.diversity == "high":
            nudges[Dimension.INTERESTS] += step
        elif category_pattern.diversity == "low":
            nudges[Dimension.PERSONALITY_AFFINITY] += step
        if revisit_pattern.pattern == "high":
            nudges[Dimension.LOCATION] += step
        if activity_level in ("very_active", "active"):
            nudges[Dimension.MOOD] += step / 2

    if feedback_count:
        if feedback_pattern.positive_ratio > 0.7:
            nudges[Dimension.PERSONALITY_AFFINITY] += step / 2
        elif feedback_pattern.critical_ratio > 0.3:
            nudges[Dimension.INTERESTS] += step / 2
        if feedback_pattern.style in ("detailed", "descriptive"):
            nudges[Dimension.TALENTS] += step / 2

    if search_count:
        if search_pattern.style == "category_focused":
            nudges[Dimension.INTERESTS] += step / 2
        elif search_pattern.style == "exploratory":
            nudges[Dimension.TALENTS] += step / 2
        if search_pattern.click_through_rate > 0.8:
            nudges[Dimension.PERSONALITY_AFFINITY] += step / 4

    defaults = WeightVector()
    return WeightVector(*(defaults[d] + nudges[d] for d in Dimension)).normalized()
