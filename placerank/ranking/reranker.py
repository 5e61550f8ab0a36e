"""Contextual re-ranker: multiplicative situational boosts over scored places."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime

from placerank.behavior import day_type, time_of_day
from placerank.models import (
    BehaviorProfile,
    Coordinates,
    PlaceCandidate,
    RankingContext,
    ScoredPlace,
    UserProfile,
)

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

_WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

# (max distance km, factor, label), checked in order
_DISTANCE_BANDS = (
    (1.0, 1.2, "very_close"),
    (3.0, 1.1, "close"),
    (5.0, 1.05, "nearby"),
)


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points in kilometres."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(b.longitude - a.longitude)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def is_open_now(operating_hours: dict[str, tuple[str, str]], now: datetime) -> bool:
    """Return ``True`` if *now* falls inside today's opening hours.

    A close time earlier than the open time spans midnight, so
    ``("22:00", "02:00")`` is open at 23:30 and at 01:00.  Unparseable
    hours count as closed.
    """
    hours = operating_hours.get(_WEEKDAY_NAMES[now.weekday()])
    if not hours:
        return False
    try:
        open_minutes = _minutes(hours[0])
        close_minutes = _minutes(hours[1])
    except (ValueError, IndexError):
        logger.debug("Ignoring malformed operating hours %r", hours)
        return False

    current = now.hour * 60 + now.minute
    if close_minutes < open_minutes:
        return current >= open_minutes or current <= close_minutes
    return open_minutes <= current <= close_minutes


def _minutes(hhmm: str) -> int:
    hour, minute = hhmm.split(":")
    return int(hour) * 60 + int(minute)


class ContextualReranker:
    """Applies behaviour and situation boosts, then re-sorts.

    All boosts multiply the incoming ``match_score``.

    Behaviour pass (only when the behaviour profile has visits):

    ===============================================  ==================
    Condition                                        Factor
    ===============================================  ==================
    visits recorded at the current hour (n)          min(1 + n/10, 1.2)
    current day type is the user's favourite         1.1
    visits recorded in the place's category (n)      min(1 + n/20, 1.15)
    revisit pattern high and place visited           1.15
    revisit pattern low and place not visited        1.15
    persona match (see :data:`_PERSONA_RULES`)       1.2 or 1.25
    ===============================================  ==================

    Context pass:

    ===============================================  ==================
    Condition                                        Factor
    ===============================================  ==================
    open now                                         1.1
    current weather in declared weather              1.15
    distance ≤1 / ≤3 / ≤5 km                         1.2 / 1.1 / 1.05
    current time of day in declared times            1.1
    current day type in declared day types           1.1
    ===============================================  ==================

    The input list and its items are never modified, so re-ranking the
    same input twice gives the same output.
    """

    def rerank(
        self,
        places: list[ScoredPlace],
        context: RankingContext,
        behavior: BehaviorProfile | None = None,
        user_profile: UserProfile | None = None,
    ) -> list[ScoredPlace]:
        """Return boosted copies of *places* sorted by descending score.

        Args:
            places: Scored places from the aggregator.
            context: Current time, weather and location.
            behavior: The user's behaviour profile, if any.
            user_profile: Supplies visit history and a fallback location.
        """
        location = context.location
        visited: set[str] = set()
        if user_profile is not None:
            location = location or user_profile.current_location
            visited.update(v.place_id for v in user_profile.visit_history)
        if behavior is not None:
            visited.update(behavior.revisits.visited_place_ids)

        use_behavior = behavior is not None and behavior.visit_count > 0
        reranked = []
        for entry in places:
            factor = 1.0
            reasons: list[str] = []
            if use_behavior:
                f, r = self.behavior_boost(entry.place, context.now, behavior, visited)
                factor *= f
                reasons.extend(r)
            f, r = self.context_boost(entry.place, context, location)
            factor *= f
            reasons.extend(r)

            reranked.append(
                replace(
                    entry,
                    match_score=entry.match_score * factor,
                    match_details=dict(entry.match_details),
                    context_factors=list(entry.context_factors) + reasons,
                )
            )

        reranked.sort(key=lambda s: s.match_score, reverse=True)
        return reranked

    def behavior_boost(
        self,
        place: PlaceCandidate,
        now: datetime,
        behavior: BehaviorProfile,
        visited: set[str],
    ) -> tuple[float, list[str]]:
        """Return ``(factor, reasons)`` from the user's historical behaviour."""
        factor = 1.0
        reasons: list[str] = []

        hour_visits = behavior.time.hour_counts.get(now.hour, 0)
        if hour_visits > 0:
            factor *= min(1 + hour_visits / 10, 1.2)
            reasons.append("time")

        current_day = day_type(now)
        if behavior.time.favorite_day_type == current_day and (
            behavior.time.weekday_count != behavior.time.weekend_count
        ):
            factor *= 1.1
            reasons.append(current_day)

        category_visits = behavior.categories.counts.get(place.category, 0) if place.category else 0
        if category_visits > 0:
            factor *= min(1 + category_visits / 20, 1.15)
            reasons.append("category")

        has_visited = place.place_id in visited
        pattern = behavior.revisits.pattern
        if pattern == "high" and has_visited:
            factor *= 1.15
            reasons.append("revisit")
        elif pattern == "low" and not has_visited:
            factor *= 1.15
            reasons.append("new")

        persona_factor, persona_reason = _persona_boost(
            behavior.persona, place, now, has_visited
        )
        if persona_reason:
            factor *= persona_factor
            reasons.append(persona_reason)

        return factor, reasons

    def context_boost(
        self,
        place: PlaceCandidate,
        context: RankingContext,
        location: Coordinates | None,
    ) -> tuple[float, list[str]]:
        """Return ``(factor, reasons)`` from the current situation."""
        factor = 1.0
        reasons: list[str] = []

        if place.operating_hours and is_open_now(place.operating_hours, context.now):
            factor *= 1.1
            reasons.append("open_now")

        if context.weather and context.weather in place.recommended_for.weather:
            factor *= 1.15
            reasons.append("weather_match")

        distance = place.distance_km
        if location is not None and place.coordinates is not None:
            distance = haversine_km(location, place.coordinates)
        if distance is not None:
            for limit, band_factor, label in _DISTANCE_BANDS:
                if distance <= limit:
                    factor *= band_factor
                    reasons.append(label)
                    break

        if time_of_day(context.now.hour) in place.recommended_for.time_of_day:
            factor *= 1.1
            reasons.append("time_match")

        if day_type(context.now) in place.recommended_for.day_type:
            factor *= 1.1
            reasons.append("day_match")

        return factor, reasons


# ---------------------------------------------------------------------------
# Persona rules
# ---------------------------------------------------------------------------

_PERSONA_RULES = {
    "enthusiastic_explorer": 1.2,
    "loyal_regular": 1.2,
    "morning_cafe_goer": 1.25,
    "evening_diner": 1.25,
    "weekend_leisure_seeker": 1.2,
}


def _persona_boost(
    persona: str, place: PlaceCandidate, now: datetime, has_visited: bool
) -> tuple[float, str | None]:
    if persona == "enthusiastic_explorer" and not has_visited:
        matched = "explorer"
    elif persona == "loyal_regular" and has_visited:
        matched = "loyal"
    elif persona == "morning_cafe_goer" and place.category == "cafe" and 6 <= now.hour <= 11:
        matched = "morning_cafe"
    elif (
        persona == "evening_diner"
        and place.category in ("restaurant", "bar")
        and 17 <= now.hour <= 21
    ):
        matched = "evening_diner"
    elif persona == "weekend_leisure_seeker" and day_type(now) == "weekend":
        matched = "weekend_leisure"
    else:
        return 1.0, None
    return _PERSONA_RULES[persona], matched
