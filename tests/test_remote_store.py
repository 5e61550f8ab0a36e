"""Tests for the gRPC place store transport (GrpcPlaceStore / PlaceStoreServicer)."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import MagicMock

import grpc
import pytest
from google.protobuf import struct_pb2

from factories import NOW, make_feedback, make_visit
from placerank.codec import from_struct, to_struct
from placerank.models import (
    BehaviorProfile,
    CategoryPattern,
    FeedbackPattern,
    RevisitPattern,
    SearchRecord,
    TimePattern,
    UserProfile,
    WeightVector,
)
from placerank.remote_store import GrpcPlaceStore, PlaceStoreServicer, add_place_store_to_server


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _loopback_channel(servicer: PlaceStoreServicer) -> MagicMock:
    """A fake channel whose calls are served in-process by *servicer*.

    Requests and responses go through the real serializers so every payload
    takes the same Struct round trip it would on the wire.
    """

    def unary_unary(path, request_serializer, response_deserializer):
        method = path.rsplit("/", 1)[-1]

        def call(request, timeout=None):
            wire_request = struct_pb2.Struct.FromString(request_serializer(request))
            response = servicer._handle(method, wire_request, MagicMock())
            return response_deserializer(response.SerializeToString())

        return call

    channel = MagicMock()
    channel.unary_unary.side_effect = unary_unary
    return channel


@pytest.fixture
def remote(store) -> GrpcPlaceStore:
    return GrpcPlaceStore(_loopback_channel(PlaceStoreServicer(store)))


# ---------------------------------------------------------------------------
# Client round trips
# ---------------------------------------------------------------------------


class TestGrpcPlaceStore:
    def test_fetch_place_round_trip(self, remote, place_cafe) -> None:
        assert remote.fetch_place("cafe_1") == place_cafe

    def test_missing_place_is_none(self, remote) -> None:
        assert remote.fetch_place("nope") is None

    def test_candidate_sources(self, remote, store) -> None:
        assert [p.place_id for p in remote.fetch_candidates_by_region("seongsu")] == [
            p.place_id for p in store.fetch_candidates_by_region("seongsu")
        ]
        assert [p.place_id for p in remote.fetch_candidates_by_personality_type("INFP")] == [
            p.place_id for p in store.fetch_candidates_by_personality_type("INFP")
        ]
        assert [p.place_id for p in remote.fetch_candidates_by_mood("calm")] == [
            p.place_id for p in store.fetch_candidates_by_mood("calm")
        ]

    def test_popular_limit(self, remote) -> None:
        assert len(remote.fetch_popular_candidates(3)) == 3

    def test_learning_profile_round_trip(self, remote, store) -> None:
        record = {"weights": WeightVector().as_dict(), "confidence": 3, "history": []}
        remote.save_learning_profile("u1", record)
        assert store.load_learning_profile("u1")["confidence"] == 3
        loaded = remote.load_learning_profile("u1")
        assert loaded["weights"] == pytest.approx(WeightVector().as_dict())

    def test_unknown_learning_profile_is_none(self, remote) -> None:
        assert remote.load_learning_profile("nobody") is None

    def test_feedback_round_trip(self, remote) -> None:
        event = make_feedback("cafe_1", rating=4, tags=["quiet"], place_category="cafe")
        remote.append_feedback("u1", event)
        assert remote.fetch_feedback_history("u1", 10) == [event]

    def test_peer_candidates_and_profiles(self, remote, store) -> None:
        store.add_user(UserProfile(user_id="peer_1", personality_type="INFP", interests=["art"]))
        store.add_user(UserProfile(user_id="peer_2", personality_type="ESTJ"))
        ids = remote.fetch_peer_candidates("INFP", "u_infp", 10)
        assert ids == ["peer_1"]
        profiles = remote.fetch_user_profiles(ids)
        assert profiles[0].interests == ["art"]

    def test_user_activity(self, remote, store) -> None:
        store.record_visit("u_infp", make_visit("cafe_1", NOW - timedelta(days=2)))
        store.record_search("u_infp", SearchRecord(term="latte", timestamp=NOW, result_clicks=2))
        activity = remote.fetch_user_activity("u_infp")
        assert [v.place_id for v in activity.visits] == ["cafe_1"]
        assert activity.searches[0].result_clicks == 2

    def test_behavior_profile_round_trip(self, remote) -> None:
        profile = BehaviorProfile(
            visit_count=4,
            time=TimePattern(hour_counts={9: 3, 14: 1}, weekday_count=4, favorite_day_type="weekday"),
            categories=CategoryPattern(counts={"cafe": 4}, dominant_category="cafe"),
            revisits=RevisitPattern(revisit_rate=0.5, visited_place_ids=frozenset({"a", "b"})),
            feedback=FeedbackPattern(average_rating=4.0, distribution={4: 2}),
            persona="morning_cafe_goer",
            activity_score=40,
            last_updated=NOW,
        )
        remote.save_behavior_profile("u1", profile)
        assert remote.fetch_behavior_profile("u1") == profile

    def test_rpc_error_propagates(self) -> None:
        channel = MagicMock()
        channel.unary_unary.return_value = MagicMock(side_effect=grpc.RpcError())
        with pytest.raises(grpc.RpcError):
            GrpcPlaceStore(channel).fetch_place("cafe_1")


# ---------------------------------------------------------------------------
# Servicer error mapping
# ---------------------------------------------------------------------------


class TestPlaceStoreServicer:
    def test_missing_field_sets_invalid_argument(self, store) -> None:
        ctx = MagicMock()
        response = PlaceStoreServicer(store)._handle("FetchPlace", to_struct({}), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)
        assert from_struct(response) == {}

    def test_bad_feedback_sets_invalid_argument(self, store) -> None:
        ctx = MagicMock()
        request = to_struct(
            {"user_id": "u1", "event": {"place_id": "cafe_1", "rating": 7, "timestamp": NOW.isoformat()}}
        )
        PlaceStoreServicer(store)._handle("AppendFeedback", request, ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)
        assert store.fetch_feedback_history("u1", 10) == []

    def test_store_failure_sets_internal(self) -> None:
        broken = MagicMock()
        broken.fetch_place.side_effect = RuntimeError("disk gone")
        ctx = MagicMock()
        PlaceStoreServicer(broken)._handle("FetchPlace", to_struct({"place_id": "x"}), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INTERNAL)

    def test_registers_generic_handler(self, store) -> None:
        server = MagicMock()
        add_place_store_to_server(store, server)
        server.add_generic_rpc_handlers.assert_called_once()


class TestOverRealServer:
    def test_fetch_place_over_grpc(self, store, place_cafe) -> None:
        server = grpc.server(ThreadPoolExecutor(max_workers=2))
        add_place_store_to_server(store, server)
        port = server.add_insecure_port("localhost:0")
        server.start()
        channel = grpc.insecure_channel(f"localhost:{port}")
        try:
            assert GrpcPlaceStore(channel).fetch_place("cafe_1") == place_cafe
        finally:
            channel.close()
            server.stop(grace=None)
