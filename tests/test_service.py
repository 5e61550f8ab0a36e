"""Tests for PlaceRankerServicer and PlaceRankerClient (gRPC service layer)."""

from __future__ import annotations

from unittest.mock import MagicMock

import grpc
import pytest
from google.protobuf import struct_pb2

from factories import NOW, make_feedback, make_place
from placerank.codec import from_struct, to_struct
from placerank.models import (
    AdjustmentResult,
    CollaborativeWeights,
    Dimension,
    LearningProfile,
    PersonalWeights,
    RankingContext,
    ScoredPlace,
    UserProfile,
    WeightVector,
)
from placerank.service import PlaceRankerClient, PlaceRankerServicer, add_servicer_to_server
from placerank.weights import WeightHistorySummary


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_context() -> MagicMock:
    """Return a mock gRPC context."""
    ctx = MagicMock()
    ctx.set_code = MagicMock()
    ctx.set_details = MagicMock()
    return ctx


def _make_servicer() -> PlaceRankerServicer:
    engine = MagicMock()
    engine.rank.return_value = [
        ScoredPlace(
            place=make_place("cafe_1", region="seongsu"),
            match_score=7.5,
            match_details={"mood": 1.5},
            context_factors=["open_now"],
        )
    ]
    engine.record_feedback.return_value = AdjustmentResult(
        profile=LearningProfile(user_id="u1", weights=WeightVector(0.3, 0.3, 0.2, 0.1, 0.1), confidence=4),
        adjustment={d: 0.0 for d in Dimension},
        applied=True,
    )
    engine.get_weights.return_value = PersonalWeights(weights=WeightVector())
    engine.weight_history.return_value = WeightHistorySummary(
        data_points=2, average_rating=4.5, top_tags=["quiet"]
    )
    return PlaceRankerServicer(engine=engine)


def _rank_request(**profile) -> struct_pb2.Struct:
    return to_struct(
        {
            "user_profile": {"user_id": "u1", "personality_type": "INFP", **profile},
            "context": {"now": NOW.isoformat(), "weather": "rainy"},
        }
    )


# ---------------------------------------------------------------------------
# Rank
# ---------------------------------------------------------------------------


class TestRank:
    def test_returns_places(self) -> None:
        servicer = _make_servicer()
        response = from_struct(servicer.Rank(_rank_request(), _make_context()))
        assert len(response["places"]) == 1
        place = response["places"][0]
        assert place["place"]["place_id"] == "cafe_1"
        assert place["match_score"] == pytest.approx(7.5)
        assert place["context_factors"] == ["open_now"]

    def test_decodes_profile_and_context(self) -> None:
        servicer = _make_servicer()
        servicer.Rank(_rank_request(interests=["art"]), _make_context())
        profile, context = servicer._engine.rank.call_args[0]
        assert isinstance(profile, UserProfile)
        assert profile.interests == ["art"]
        assert isinstance(context, RankingContext)
        assert context.now == NOW
        assert context.weather == "rainy"

    def test_missing_user_id_sets_invalid_argument(self) -> None:
        servicer = _make_servicer()
        servicer._engine.rank.side_effect = ValueError("user_id must be non-empty")
        ctx = _make_context()
        servicer.Rank(to_struct({"user_profile": {}}), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)

    def test_engine_error_sets_internal_status(self) -> None:
        servicer = _make_servicer()
        servicer._engine.rank.side_effect = RuntimeError("boom")
        ctx = _make_context()
        response = servicer.Rank(_rank_request(), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INTERNAL)
        assert from_struct(response) == {}


# ---------------------------------------------------------------------------
# RecordFeedback
# ---------------------------------------------------------------------------


class TestRecordFeedback:
    def _request(self, rating=5) -> struct_pb2.Struct:
        return to_struct(
            {
                "user_id": "u1",
                "place_id": "cafe_1",
                "feedback": {"rating": rating, "tags": ["관심사"], "timestamp": NOW.isoformat()},
            }
        )

    def test_calls_engine(self) -> None:
        servicer = _make_servicer()
        servicer.RecordFeedback(self._request(), _make_context())
        user_id, place_id, event = servicer._engine.record_feedback.call_args[0]
        assert (user_id, place_id) == ("u1", "cafe_1")
        assert event.rating == 5
        assert event.tags == frozenset({"관심사"})

    def test_returns_updated_weights(self) -> None:
        servicer = _make_servicer()
        response = from_struct(servicer.RecordFeedback(self._request(), _make_context()))
        assert response["weights"]["personality_affinity"] == pytest.approx(0.3)
        assert response["confidence"] == 4
        assert response["applied"] is True

    def test_bad_rating_sets_invalid_argument(self) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        servicer.RecordFeedback(self._request(rating=9), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)
        servicer._engine.record_feedback.assert_not_called()

    def test_store_error_sets_internal_status(self) -> None:
        servicer = _make_servicer()
        servicer._engine.record_feedback.side_effect = RuntimeError("db error")
        ctx = _make_context()
        servicer.RecordFeedback(self._request(), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INTERNAL)


# ---------------------------------------------------------------------------
# GetWeights / GetWeightHistory
# ---------------------------------------------------------------------------


class TestGetWeights:
    def test_personal(self) -> None:
        servicer = _make_servicer()
        response = from_struct(servicer.GetWeights(to_struct({"user_id": "u1"}), _make_context()))
        assert response["source"] == "personal"
        assert sum(response["weights"].values()) == pytest.approx(1.0)
        servicer._engine.get_weights.assert_called_once_with("u1", None)

    def test_collaborative_includes_components(self) -> None:
        w = WeightVector()
        servicer = _make_servicer()
        servicer._engine.get_weights.return_value = CollaborativeWeights(w, w, w, peer_count=3)
        response = from_struct(servicer.GetWeights(to_struct({"user_id": "u1"}), _make_context()))
        assert response["source"] == "collaborative"
        assert response["peer_count"] == 3
        assert "peer_weights" in response

    def test_empty_user_sets_invalid_argument(self) -> None:
        servicer = _make_servicer()
        servicer._engine.get_weights.side_effect = ValueError("user_id must be non-empty")
        ctx = _make_context()
        servicer.GetWeights(to_struct({}), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)


class TestGetWeightHistory:
    def test_summary_fields(self) -> None:
        servicer = _make_servicer()
        response = from_struct(
            servicer.GetWeightHistory(to_struct({"user_id": "u1"}), _make_context())
        )
        assert response["data_points"] == 2
        assert response["average_rating"] == pytest.approx(4.5)
        assert response["top_tags"] == ["quiet"]


# ---------------------------------------------------------------------------
# Registration and client
# ---------------------------------------------------------------------------


class TestRegistration:
    def test_registers_generic_handler(self) -> None:
        server = MagicMock()
        add_servicer_to_server(_make_servicer(), server)
        server.add_generic_rpc_handlers.assert_called_once()


class TestClient:
    def _make_client(self, response: dict) -> tuple[PlaceRankerClient, MagicMock]:
        channel = MagicMock()
        call = MagicMock(return_value=to_struct(response))
        channel.unary_unary.return_value = call
        return PlaceRankerClient(channel), call

    def test_rank_sends_profile_and_context(self) -> None:
        client, call = self._make_client({"places": [{"place": {"place_id": "a"}}]})
        places = client.rank(UserProfile(user_id="u1"), RankingContext(now=NOW, weather="sunny"))
        assert places == [{"place": {"place_id": "a"}}]
        sent = from_struct(call.call_args[0][0])
        assert sent["user_profile"]["user_id"] == "u1"
        assert sent["context"]["weather"] == "sunny"

    def test_record_feedback_payload(self) -> None:
        client, call = self._make_client({"applied": True})
        result = client.record_feedback("u1", make_feedback("cafe_1", rating=4))
        assert result == {"applied": True}
        sent = from_struct(call.call_args[0][0])
        assert sent["place_id"] == "cafe_1"
        assert sent["feedback"]["rating"] == 4

    def test_get_weights(self) -> None:
        client, _ = self._make_client({"source": "personal"})
        assert client.get_weights("u1") == {"source": "personal"}
