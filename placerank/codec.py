"""Conversion between domain dataclasses and plain JSON-compatible dicts.

The dict shapes are what the store persists and what travels inside
``google.protobuf.Struct`` payloads, so every key is a string, every
datetime is an ISO-8601 string and every collection is a list.  Numbers may
come back as floats after a Struct round trip; decoders coerce them.
"""

from __future__ import annotations

import math
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

from google.protobuf import json_format, struct_pb2

from placerank.models import (
    BehaviorProfile,
    CategoryPattern,
    CollaborativeWeights,
    Coordinates,
    FeedbackEvent,
    FeedbackPattern,
    LearningProfile,
    PlaceCandidate,
    RankingContext,
    RecommendedFor,
    RevisitPattern,
    ScoredPlace,
    SearchPattern,
    SearchRecord,
    TimePattern,
    UserActivity,
    UserProfile,
    VisitRecord,
    WeightResult,
    WeightVector,
)
from placerank.weights import MAX_CONFIDENCE

_WEIGHT_SUM_TOLERANCE = 1e-6


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------


def encode_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def decode_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch seconds; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _coordinates_to_dict(coords: Coordinates | None) -> dict[str, float] | None:
    if coords is None:
        return None
    return {"latitude": coords.latitude, "longitude": coords.longitude}


def _coordinates_from_dict(data: Any) -> Coordinates | None:
    if not data:
        return None
    return Coordinates(float(data["latitude"]), float(data["longitude"]))


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


# ---------------------------------------------------------------------------
# Feedback and learning profiles
# ---------------------------------------------------------------------------


def feedback_event_to_dict(event: FeedbackEvent) -> dict[str, Any]:
    return {
        "timestamp": encode_datetime(event.timestamp),
        "place_id": event.place_id,
        "rating": event.rating,
        "tags": sorted(event.tags),
        "place_category": event.place_category,
        "comment": event.comment,
    }


def feedback_event_from_dict(data: dict[str, Any]) -> FeedbackEvent:
    """Build a :class:`FeedbackEvent`; raises ``ValueError`` on bad input."""
    timestamp = decode_datetime(data.get("timestamp")) or datetime.now(timezone.utc)
    return FeedbackEvent(
        timestamp=timestamp,
        place_id=str(data.get("place_id") or ""),
        rating=float(data.get("rating", 0)),
        tags=frozenset(data.get("tags") or ()),
        place_category=data.get("place_category") or None,
        comment=data.get("comment") or "",
    )


def learning_profile_to_dict(profile: LearningProfile) -> dict[str, Any]:
    return {
        "user_id": profile.user_id,
        "weights": profile.weights.as_dict(),
        "learning_rate": profile.learning_rate,
        "confidence": profile.confidence,
        "history": [feedback_event_to_dict(e) for e in profile.history],
        "last_updated": encode_datetime(profile.last_updated),
    }


def _stored_weights(data: dict[str, Any]) -> WeightVector:
    """Decode stored weights, renormalizing a vector that drifted off 1.0."""
    weights = WeightVector.from_dict(data)
    values = list(weights.as_dict().values())
    if not all(math.isfinite(v) and v >= 0.0 for v in values):
        raise ValueError(f"weights must be finite and non-negative, got {data!r}")
    if abs(sum(values) - 1.0) > _WEIGHT_SUM_TOLERANCE:
        weights = weights.normalized()
    return weights


def learning_profile_from_dict(user_id: str, data: dict[str, Any]) -> LearningProfile:
    """Decode a stored learning profile record.

    Weights that do not sum to 1.0 are renormalized and confidence is
    clamped to ``[0, 100]``.

    Raises:
        ValueError: If the record is structurally invalid, or a weight is
            negative or not finite.
        KeyError: If the weights mapping is missing.
        TypeError: If a field has the wrong shape.
    """
    confidence = int(data.get("confidence", 0))
    return LearningProfile(
        user_id=user_id,
        weights=_stored_weights(data["weights"]),
        learning_rate=float(data.get("learning_rate", LearningProfile.learning_rate)),
        confidence=min(MAX_CONFIDENCE, max(0, confidence)),
        history=[feedback_event_from_dict(e) for e in data.get("history") or []],
        last_updated=decode_datetime(data.get("last_updated")),
    )


# ---------------------------------------------------------------------------
# Places
# ---------------------------------------------------------------------------


def place_to_dict(place: PlaceCandidate) -> dict[str, Any]:
    rec = place.recommended_for
    return {
        "place_id": place.place_id,
        "name": place.name,
        "category": place.category,
        "region": place.region,
        "tags": list(place.tags),
        "coordinates": _coordinates_to_dict(place.coordinates),
        "recommended_for": {
            "mbti": sorted(rec.mbti),
            "mood": sorted(rec.mood),
            "time_of_day": sorted(rec.time_of_day),
            "day_type": sorted(rec.day_type),
            "weather": sorted(rec.weather),
        },
        "talent_relevance": list(place.talent_relevance),
        "operating_hours": {
            day: {"open": hours[0], "close": hours[1]}
            for day, hours in place.operating_hours.items()
        },
        "rating": place.rating,
        "visit_count": place.visit_count,
        "distance_km": place.distance_km,
    }


def place_from_dict(data: dict[str, Any]) -> PlaceCandidate:
    rec = data.get("recommended_for") or {}
    hours = data.get("operating_hours") or {}
    return PlaceCandidate(
        place_id=str(data["place_id"]),
        name=data.get("name") or "",
        category=data.get("category") or "",
        region=data.get("region") or "",
        tags=tuple(data.get("tags") or ()),
        coordinates=_coordinates_from_dict(data.get("coordinates")),
        recommended_for=RecommendedFor(
            mbti=frozenset(rec.get("mbti") or ()),
            mood=frozenset(rec.get("mood") or ()),
            time_of_day=frozenset(rec.get("time_of_day") or ()),
            day_type=frozenset(rec.get("day_type") or ()),
            weather=frozenset(rec.get("weather") or ()),
        ),
        talent_relevance=tuple(data.get("talent_relevance") or ()),
        operating_hours={
            day.lower(): (h["open"], h["close"])
            for day, h in hours.items()
            if h and h.get("open") and h.get("close")
        },
        rating=float(data.get("rating") or 0.0),
        visit_count=int(data.get("visit_count") or 0),
        distance_km=_optional_float(data.get("distance_km")),
    )


def scored_place_to_dict(scored: ScoredPlace) -> dict[str, Any]:
    return {
        "place": place_to_dict(scored.place),
        "match_score": scored.match_score,
        "match_details": dict(scored.match_details),
        "context_factors": list(scored.context_factors),
    }


# ---------------------------------------------------------------------------
# Users, activity and request context
# ---------------------------------------------------------------------------


def visit_to_dict(visit: VisitRecord) -> dict[str, Any]:
    return {
        "place_id": visit.place_id,
        "visit_date": encode_datetime(visit.visit_date),
        "category": visit.category,
        "tags": list(visit.tags),
    }


def visit_from_dict(data: dict[str, Any]) -> VisitRecord:
    return VisitRecord(
        place_id=str(data["place_id"]),
        visit_date=decode_datetime(data["visit_date"]),
        category=data.get("category") or None,
        tags=tuple(data.get("tags") or ()),
    )


def search_to_dict(search: SearchRecord) -> dict[str, Any]:
    return {
        "term": search.term,
        "timestamp": encode_datetime(search.timestamp),
        "category": search.category,
        "result_clicks": search.result_clicks,
    }


def search_from_dict(data: dict[str, Any]) -> SearchRecord:
    return SearchRecord(
        term=str(data.get("term") or ""),
        timestamp=decode_datetime(data["timestamp"]),
        category=data.get("category") or None,
        result_clicks=int(data.get("result_clicks") or 0),
    )


def user_profile_to_dict(profile: UserProfile) -> dict[str, Any]:
    return {
        "user_id": profile.user_id,
        "personality_type": profile.personality_type,
        "interests": list(profile.interests),
        "talents": list(profile.talents),
        "preferred_regions": list(profile.preferred_regions),
        "current_mood": profile.current_mood,
        "current_location": _coordinates_to_dict(profile.current_location),
        "visit_history": [visit_to_dict(v) for v in profile.visit_history],
    }


def user_profile_from_dict(data: dict[str, Any]) -> UserProfile:
    return UserProfile(
        user_id=str(data.get("user_id") or ""),
        personality_type=data.get("personality_type") or "",
        interests=list(data.get("interests") or ()),
        talents=list(data.get("talents") or ()),
        preferred_regions=list(data.get("preferred_regions") or ()),
        current_mood=data.get("current_mood") or "",
        current_location=_coordinates_from_dict(data.get("current_location")),
        visit_history=[visit_from_dict(v) for v in data.get("visit_history") or ()],
    )


def ranking_context_to_dict(context: RankingContext) -> dict[str, Any]:
    return {
        "now": encode_datetime(context.now),
        "weather": context.weather,
        "location": _coordinates_to_dict(context.location),
    }


def ranking_context_from_dict(data: dict[str, Any]) -> RankingContext:
    return RankingContext(
        now=decode_datetime(data.get("now")) or datetime.now(timezone.utc),
        weather=data.get("weather") or None,
        location=_coordinates_from_dict(data.get("location")),
    )


def weight_result_to_dict(result: WeightResult) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "source": result.source.value,
        "weights": result.weights.as_dict(),
    }
    if isinstance(result, CollaborativeWeights):
        payload["personal_weights"] = result.personal_weights.as_dict()
        payload["peer_weights"] = result.peer_weights.as_dict()
        payload["peer_count"] = result.peer_count
    return payload


# ---------------------------------------------------------------------------
# Behaviour profiles
# ---------------------------------------------------------------------------


def behavior_profile_to_dict(profile: BehaviorProfile) -> dict[str, Any]:
    data = asdict(profile)
    data["time"]["hour_counts"] = {
        str(h): c for h, c in profile.time.hour_counts.items()
    }
    data["feedback"]["distribution"] = {
        str(r): c for r, c in profile.feedback.distribution.items()
    }
    data["revisits"]["visited_place_ids"] = sorted(profile.revisits.visited_place_ids)
    data["last_updated"] = encode_datetime(profile.last_updated)
    return data


def behavior_profile_from_dict(data: dict[str, Any]) -> BehaviorProfile:
    time_data = dict(data.get("time") or {})
    time_data["hour_counts"] = {
        int(h): int(c) for h, c in (time_data.get("hour_counts") or {}).items()
    }
    time_data["time_of_day_counts"] = {
        k: int(v) for k, v in (time_data.get("time_of_day_counts") or {}).items()
    }
    for key in ("weekday_count", "weekend_count"):
        time_data[key] = int(time_data.get(key) or 0)

    category_data = dict(data.get("categories") or {})
    category_data["counts"] = {
        k: int(v) for k, v in (category_data.get("counts") or {}).items()
    }

    revisit_data = dict(data.get("revisits") or {})
    revisit_data["visited_place_ids"] = frozenset(
        revisit_data.get("visited_place_ids") or ()
    )

    feedback_data = dict(data.get("feedback") or {})
    feedback_data["distribution"] = {
        int(float(r)): int(c)
        for r, c in (feedback_data.get("distribution") or {}).items()
    }

    return BehaviorProfile(
        visit_count=int(data.get("visit_count") or 0),
        time=TimePattern(**time_data),
        categories=CategoryPattern(**category_data),
        revisits=RevisitPattern(**revisit_data),
        feedback=FeedbackPattern(**feedback_data),
        search=SearchPattern(**(data.get("search") or {})),
        persona=data.get("persona") or "general_user",
        user_type=data.get("user_type") or "new",
        activity_level=data.get("activity_level") or "inactive",
        activity_score=int(data.get("activity_score") or 0),
        personalized_weights=WeightVector.from_dict(
            data.get("personalized_weights") or {}
        ),
        last_updated=decode_datetime(data.get("last_updated")),
    )


def user_activity_to_dict(activity: UserActivity) -> dict[str, Any]:
    return {
        "visits": [visit_to_dict(v) for v in activity.visits],
        "feedback": [feedback_event_to_dict(e) for e in activity.feedback],
        "searches": [search_to_dict(s) for s in activity.searches],
    }


def user_activity_from_dict(data: dict[str, Any]) -> UserActivity:
    return UserActivity(
        visits=[visit_from_dict(v) for v in data.get("visits") or ()],
        feedback=[feedback_event_from_dict(e) for e in data.get("feedback") or ()],
        searches=[search_from_dict(s) for s in data.get("searches") or ()],
    )


# ---------------------------------------------------------------------------
# protobuf Struct
# ---------------------------------------------------------------------------


def to_struct(payload: dict[str, Any]) -> struct_pb2.Struct:
    """Pack a JSON-compatible dict into a ``google.protobuf.Struct``."""
    return json_format.ParseDict(payload, struct_pb2.Struct())


def from_struct(message: struct_pb2.Struct) -> dict[str, Any]:
    """Unpack a ``google.protobuf.Struct``; numbers come back as floats."""
    return json_format.MessageToDict(message)
