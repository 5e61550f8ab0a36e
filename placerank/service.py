"""gRPC servicer: the entry point for all inbound ranking calls."""

from __future__ import annotations

import logging
import time
from typing import Any

import grpc
from google.protobuf import struct_pb2

from placerank.codec import (
    feedback_event_from_dict,
    feedback_event_to_dict,
    from_struct,
    ranking_context_from_dict,
    ranking_context_to_dict,
    scored_place_to_dict,
    to_struct,
    user_profile_from_dict,
    user_profile_to_dict,
    weight_result_to_dict,
)
from placerank.engine import RankingEngine
from placerank.models import FeedbackEvent, RankingContext, UserProfile

logger = logging.getLogger(__name__)

SERVICE_NAME = "placerank.PlaceRanker"

_RANK_WARN_THRESHOLD_MS = 1000

_METHODS = ("Rank", "RecordFeedback", "GetWeights", "GetWeightHistory")


class PlaceRankerServicer:
    """Implements the ``placerank.PlaceRanker`` service.

    Every method takes and returns a ``google.protobuf.Struct``.  Malformed
    requests and missing identifiers map to ``INVALID_ARGUMENT``; anything
    else unexpected is logged and mapped to ``INTERNAL``.

    Args:
        engine: The :class:`~placerank.engine.RankingEngine`.
    """

    def __init__(self, engine: RankingEngine) -> None:
        self._engine = engine

    def Rank(self, request: struct_pb2.Struct, context: Any) -> struct_pb2.Struct:
        """Rank places for a user.

        Request fields: ``user_profile`` (required, with ``user_id``) and
        ``context`` (optional ``now``, ``weather``, ``location``).

        Returns:
            ``{"places": [...]}`` with one entry per ranked place.
        """
        params = from_struct(request)
        user_id = (params.get("user_profile") or {}).get("user_id", "")
        start_ms = time.monotonic() * 1000
        try:
            profile = user_profile_from_dict(params.get("user_profile") or {})
            ranking_context = ranking_context_from_dict(params.get("context") or {})
            places = self._engine.rank(profile, ranking_context)
        except (ValueError, KeyError, TypeError) as exc:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details(str(exc))
            return struct_pb2.Struct()
        except Exception:
            logger.exception("Unexpected error ranking places for user=%r", user_id)
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details("Internal error ranking places.")
            return struct_pb2.Struct()
        finally:
            elapsed_ms = time.monotonic() * 1000 - start_ms
            if elapsed_ms > _RANK_WARN_THRESHOLD_MS:
                logger.warning("Rank for user=%r took %.1fms", user_id, elapsed_ms)
            else:
                logger.debug("Rank for user=%r took %.1fms", user_id, elapsed_ms)

        return to_struct({"places": [scored_place_to_dict(p) for p in places]})

    def RecordFeedback(self, request: struct_pb2.Struct, context: Any) -> struct_pb2.Struct:
        """Record one feedback event and return the updated weights.

        Request fields: ``user_id``, ``place_id`` and ``feedback`` (with
        ``rating``, optional ``tags``, ``timestamp``, ``comment``).
        """
        params = from_struct(request)
        user_id = params.get("user_id", "")
        place_id = params.get("place_id", "")
        try:
            event = feedback_event_from_dict(
                {**(params.get("feedback") or {}), "place_id": place_id}
            )
            result = self._engine.record_feedback(user_id, place_id, event)
        except (ValueError, KeyError, TypeError) as exc:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details(str(exc))
            return struct_pb2.Struct()
        except Exception:
            logger.exception(
                "Error recording feedback for user=%r place=%r", user_id, place_id
            )
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details("Internal error recording feedback.")
            return struct_pb2.Struct()

        return to_struct(
            {
                "weights": result.weights.as_dict(),
                "learning_rate": result.profile.learning_rate,
                "confidence": result.profile.confidence,
                "applied": result.applied,
                "adjustment": {d.value: v for d, v in result.adjustment.items()},
            }
        )

    def GetWeights(self, request: struct_pb2.Struct, context: Any) -> struct_pb2.Struct:
        """Return the active weights and their provenance for ``user_id``."""
        params = from_struct(request)
        user_id = params.get("user_id", "")
        try:
            profile_data = params.get("user_profile")
            profile = user_profile_from_dict(profile_data) if profile_data else None
            result = self._engine.get_weights(user_id, profile)
        except (ValueError, KeyError, TypeError) as exc:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details(str(exc))
            return struct_pb2.Struct()
        except Exception:
            logger.exception("Error fetching weights for user=%r", user_id)
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details("Internal error fetching weights.")
            return struct_pb2.Struct()

        return to_struct(weight_result_to_dict(result))

    def GetWeightHistory(self, request: struct_pb2.Struct, context: Any) -> struct_pb2.Struct:
        """Return rating statistics over ``user_id``'s learning history."""
        params = from_struct(request)
        user_id = params.get("user_id", "")
        try:
            summary = self._engine.weight_history(user_id)
        except ValueError as exc:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details(str(exc))
            return struct_pb2.Struct()
        except Exception:
            logger.exception("Error analysing weight history for user=%r", user_id)
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details("Internal error analysing weight history.")
            return struct_pb2.Struct()

        return to_struct(
            {
                "data_points": summary.data_points,
                "average_rating": summary.average_rating,
                "volatility": summary.volatility,
                "trend": summary.trend,
                "recent_trend": summary.recent_trend,
                "top_tags": list(summary.top_tags),
            }
        )


def add_servicer_to_server(servicer: PlaceRankerServicer, server: grpc.Server) -> None:
    """Register *servicer* on *server* under ``placerank.PlaceRanker``."""
    handlers = {
        name: grpc.unary_unary_rpc_method_handler(
            getattr(servicer, name),
            request_deserializer=struct_pb2.Struct.FromString,
            response_serializer=struct_pb2.Struct.SerializeToString,
        )
        for name in _METHODS
    }
    server.add_generic_rpc_handlers(
        (grpc.method_handlers_generic_handler(SERVICE_NAME, handlers),)
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class PlaceRankerClient:
    """Thin client for the ``placerank.PlaceRanker`` service.

    Args:
        channel: An open gRPC channel to the ranker.
        timeout_seconds: Per-call deadline.
    """

    def __init__(self, channel: grpc.Channel, timeout_seconds: float = 3.0) -> None:
        self._timeout = timeout_seconds
        self._calls = {
            name: channel.unary_unary(
                f"/{SERVICE_NAME}/{name}",
                request_serializer=struct_pb2.Struct.SerializeToString,
                response_deserializer=struct_pb2.Struct.FromString,
            )
            for name in _METHODS
        }

    def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        return from_struct(self._calls[method](to_struct(payload), timeout=self._timeout))

    def rank(
        self, user_profile: UserProfile, context: RankingContext
    ) -> list[dict[str, Any]]:
        payload = {
            "user_profile": user_profile_to_dict(user_profile),
            "context": ranking_context_to_dict(context),
        }
        return self._call("Rank", payload).get("places", [])

    def record_feedback(self, user_id: str, event: FeedbackEvent) -> dict[str, Any]:
        return self._call(
            "RecordFeedback",
            {
                "user_id": user_id,
                "place_id": event.place_id,
                "feedback": feedback_event_to_dict(event),
            },
        )

    def get_weights(self, user_id: str) -> dict[str, Any]:
        return self._call("GetWeights", {"user_id": user_id})
