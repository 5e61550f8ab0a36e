"""gRPC transport for :class:`~placerank.store.PlaceStore`.

The document store runs out of process.  :class:`GrpcPlaceStore` is the
client side used by the ranker; :func:`add_place_store_to_server` exposes
any local :class:`PlaceStore` (the mock server's in-memory one, say) as the
matching ``placerank.PlaceStore`` service.  Every method is unary-unary
with ``google.protobuf.Struct`` request and response messages, so no
generated stubs are needed.
"""

from __future__ import annotations

import logging
from typing import Any

import grpc
from google.protobuf import struct_pb2

from placerank.codec import (
    behavior_profile_from_dict,
    behavior_profile_to_dict,
    feedback_event_from_dict,
    feedback_event_to_dict,
    from_struct,
    place_from_dict,
    place_to_dict,
    to_struct,
    user_activity_from_dict,
    user_activity_to_dict,
    user_profile_from_dict,
    user_profile_to_dict,
)
from placerank.models import (
    BehaviorProfile,
    FeedbackEvent,
    PlaceCandidate,
    UserActivity,
    UserProfile,
)
from placerank.store import PlaceStore

logger = logging.getLogger(__name__)

SERVICE_NAME = "placerank.PlaceStore"

_METHODS = (
    "LoadLearningProfile",
    "SaveLearningProfile",
    "FetchCandidatesByPersonalityType",
    "FetchCandidatesByRegion",
    "FetchCandidatesByMood",
    "FetchPopularCandidates",
    "FetchPlace",
    "FetchFeedbackHistory",
    "AppendFeedback",
    "FetchPeerCandidates",
    "FetchUserProfiles",
    "FetchUserActivity",
    "FetchBehaviorProfile",
    "SaveBehaviorProfile",
)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GrpcPlaceStore(PlaceStore):
    """:class:`PlaceStore` backed by a remote ``placerank.PlaceStore`` service.

    RPC failures propagate as :class:`grpc.RpcError`; the ranking engine
    treats them like any other fetch failure.

    Args:
        channel: An open gRPC channel to the store server.
        timeout_seconds: Per-call deadline.
    """

    def __init__(self, channel: grpc.Channel, timeout_seconds: float = 5.0) -> None:
        self._timeout = timeout_seconds
        self._calls = {
            name: channel.unary_unary(
                f"/{SERVICE_NAME}/{name}",
                request_serializer=struct_pb2.Struct.SerializeToString,
                response_deserializer=struct_pb2.Struct.FromString,
            )
            for name in _METHODS
        }

    def _call(self, method: str, **payload: Any) -> dict[str, Any]:
        response = self._calls[method](to_struct(payload), timeout=self._timeout)
        return from_struct(response)

    def load_learning_profile(self, user_id: str) -> dict[str, Any] | None:
        return self._call("LoadLearningProfile", user_id=user_id).get("record")

    def save_learning_profile(self, user_id: str, record: dict[str, Any]) -> None:
        self._call("SaveLearningProfile", user_id=user_id, record=record)

    def fetch_candidates_by_personality_type(
        self, personality_type: str
    ) -> list[PlaceCandidate]:
        response = self._call(
            "FetchCandidatesByPersonalityType", personality_type=personality_type
        )
        return _places(response)

    def fetch_candidates_by_region(self, region: str) -> list[PlaceCandidate]:
        return _places(self._call("FetchCandidatesByRegion", region=region))

    def fetch_candidates_by_mood(self, mood: str) -> list[PlaceCandidate]:
        return _places(self._call("FetchCandidatesByMood", mood=mood))

    def fetch_popular_candidates(self, limit: int) -> list[PlaceCandidate]:
        return _places(self._call("FetchPopularCandidates", limit=limit))

    def fetch_place(self, place_id: str) -> PlaceCandidate | None:
        place = self._call("FetchPlace", place_id=place_id).get("place")
        return place_from_dict(place) if place else None

    def fetch_feedback_history(self, user_id: str, limit: int) -> list[FeedbackEvent]:
        response = self._call("FetchFeedbackHistory", user_id=user_id, limit=limit)
        return [feedback_event_from_dict(e) for e in response.get("events", [])]

    def append_feedback(self, user_id: str, event: FeedbackEvent) -> None:
        self._call(
            "AppendFeedback", user_id=user_id, event=feedback_event_to_dict(event)
        )

    def fetch_peer_candidates(
        self, personality_type: str, exclude_user_id: str, limit: int
    ) -> list[str]:
        response = self._call(
            "FetchPeerCandidates",
            personality_type=personality_type,
            exclude_user_id=exclude_user_id,
            limit=limit,
        )
        return [str(uid) for uid in response.get("user_ids", [])]

    def fetch_user_profiles(self, user_ids: list[str]) -> list[UserProfile]:
        response = self._call("FetchUserProfiles", user_ids=list(user_ids))
        return [user_profile_from_dict(u) for u in response.get("profiles", [])]

    def fetch_user_activity(self, user_id: str) -> UserActivity:
        response = self._call("FetchUserActivity", user_id=user_id)
        return user_activity_from_dict(response.get("activity") or {})

    def fetch_behavior_profile(self, user_id: str) -> BehaviorProfile | None:
        profile = self._call("FetchBehaviorProfile", user_id=user_id).get("profile")
        return behavior_profile_from_dict(profile) if profile else None

    def save_behavior_profile(self, user_id: str, profile: BehaviorProfile) -> None:
        self._call(
            "SaveBehaviorProfile",
            user_id=user_id,
            profile=behavior_profile_to_dict(profile),
        )


def _places(response: dict[str, Any]) -> list[PlaceCandidate]:
    return [place_from_dict(p) for p in response.get("places", [])]


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


class PlaceStoreServicer:
    """Serves a local :class:`PlaceStore` as the ``placerank.PlaceStore`` service.

    Args:
        store: The store to expose.
    """

    def __init__(self, store: PlaceStore) -> None:
        self._store = store

    def _handle(self, method: str, request: struct_pb2.Struct, context: Any) -> struct_pb2.Struct:
        params = from_struct(request)
        try:
            result = getattr(self, f"_{method}")(params)
        except (KeyError, ValueError) as exc:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details(f"Malformed {method} request: {exc}")
            return struct_pb2.Struct()
        except Exception:
            logger.exception("Error handling %s", method)
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details(f"Internal error in {method}.")
            return struct_pb2.Struct()
        return to_struct(result)

    # ------------------------------------------------------------------
    # Method bodies: decoded params in, JSON-compatible dict out
    # ------------------------------------------------------------------

    def _LoadLearningProfile(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"record": self._store.load_learning_profile(params["user_id"])}

    def _SaveLearningProfile(self, params: dict[str, Any]) -> dict[str, Any]:
        self._store.save_learning_profile(params["user_id"], params["record"])
        return {}

    def _FetchCandidatesByPersonalityType(self, params: dict[str, Any]) -> dict[str, Any]:
        places = self._store.fetch_candidates_by_personality_type(
            params["personality_type"]
        )
        return {"places": [place_to_dict(p) for p in places]}

    def _FetchCandidatesByRegion(self, params: dict[str, Any]) -> dict[str, Any]:
        places = self._store.fetch_candidates_by_region(params["region"])
        return {"places": [place_to_dict(p) for p in places]}

    def _FetchCandidatesByMood(self, params: dict[str, Any]) -> dict[str, Any]:
        places = self._store.fetch_candidates_by_mood(params["mood"])
        return {"places": [place_to_dict(p) for p in places]}

    def _FetchPopularCandidates(self, params: dict[str, Any]) -> dict[str, Any]:
        places = self._store.fetch_popular_candidates(int(params["limit"]))
        return {"places": [place_to_dict(p) for p in places]}

    def _FetchPlace(self, params: dict[str, Any]) -> dict[str, Any]:
        place = self._store.fetch_place(params["place_id"])
        return {"place": place_to_dict(place) if place else None}

    def _FetchFeedbackHistory(self, params: dict[str, Any]) -> dict[str, Any]:
        events = self._store.fetch_feedback_history(
            params["user_id"], int(params["limit"])
        )
        return {"events": [feedback_event_to_dict(e) for e in events]}

    def _AppendFeedback(self, params: dict[str, Any]) -> dict[str, Any]:
        event = feedback_event_from_dict(params["event"])
        self._store.append_feedback(params["user_id"], event)
        return {}

    def _FetchPeerCandidates(self, params: dict[str, Any]) -> dict[str, Any]:
        user_ids = self._store.fetch_peer_candidates(
            params["personality_type"],
            params["exclude_user_id"],
            int(params["limit"]),
        )
        return {"user_ids": user_ids}

    def _FetchUserProfiles(self, params: dict[str, Any]) -> dict[str, Any]:
        profiles = self._store.fetch_user_profiles(list(params["user_ids"]))
        return {"profiles": [user_profile_to_dict(p) for p in profiles]}

    def _FetchUserActivity(self, params: dict[str, Any]) -> dict[str, Any]:
        activity = self._store.fetch_user_activity(params["user_id"])
        return {"activity": user_activity_to_dict(activity)}

    def _FetchBehaviorProfile(self, params: dict[str, Any]) -> dict[str, Any]:
        profile = self._store.fetch_behavior_profile(params["user_id"])
        return {"profile": behavior_profile_to_dict(profile) if profile else None}

    def _SaveBehaviorProfile(self, params: dict[str, Any]) -> dict[str, Any]:
        profile = behavior_profile_from_dict(params["profile"])
        self._store.save_behavior_profile(params["user_id"], profile)
        return {}


def add_place_store_to_server(store: PlaceStore, server: grpc.Server) -> None:
    """Register *store* on *server* under the ``placerank.PlaceStore`` service."""
    servicer = PlaceStoreServicer(store)

    def _bind(method: str):
        return lambda request, context: servicer._handle(method, request, context)

    handlers = {
        name: grpc.unary_unary_rpc_method_handler(
            _bind(name),
            request_deserializer=struct_pb2.Struct.FromString,
            response_serializer=struct_pb2.Struct.SerializeToString,
        )
        for name in _METHODS
    }
    server.add_generic_rpc_handlers(
        (grpc.method_handlers_generic_handler(SERVICE_NAME, handlers),)
    )
