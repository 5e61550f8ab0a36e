"""
mock_server.py: self-contained mock place store + JSON test API.

Ports
-----
50052  gRPC  placerank.PlaceStore  (this server acts as the data backend)
 8080  HTTP  JSON API (browser/curl-facing)

The HTTP handlers call placerank.PlaceRanker on localhost:50051 as a gRPC
client.

Startup order
-------------
1. python mock_server.py  # PlaceStore gRPC on 50052, JSON API on 8080
2. python main.py  # ranker connects to 50052, serves on 50051
3. curl "http://localhost:8080/api/rank?user_id=user_001"
"""

from __future__ import annotations

import json
import logging
import socketserver
import threading
import time
from concurrent import futures
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

import grpc

from placerank.codec import place_from_dict, place_to_dict, user_profile_from_dict
from placerank.models import FeedbackEvent, RankingContext, VisitRecord
from placerank.remote_store import add_place_store_to_server
from placerank.service import PlaceRankerClient
from placerank.store import InMemoryPlaceStore

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

MOCK_GRPC_PORT: int = 50052
HTTP_PORT: int = 8080
RANKER_GRPC_ADDR: str = "localhost:50051"
GRPC_MAX_WORKERS: int = 10

logger = logging.getLogger("mock_server")

# ---------------------------------------------------------------------------
# Static place catalogue: 12 places, 7 categories, 3 regions
# ---------------------------------------------------------------------------

_DAY_HOURS = {
    day: {"open": "09:00", "close": "22:00"}
    for day in ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
}
_LATE_HOURS = {
    day: {"open": "18:00", "close": "02:00"}
    for day in ("thursday", "friday", "saturday")
}

SAMPLE_PLACES: list[dict[str, Any]] = [
    # Cafes (3)
    {
        "place_id": "cafe_001",
        "name": "Slow Drip Roasters",
        "category": "cafe",
        "region": "seongsu",
        "tags": ["coffee", "quiet", "reading"],
        "coordinates": {"latitude": 37.5445, "longitude": 127.0557},
        "recommended_for": {
            "mbti": ["INFP", "INTJ"],
            "mood": ["calm", "tired"],
            "time_of_day": ["morning", "afternoon"],
            "weather": ["rainy"],
        },
        "operating_hours": _DAY_HOURS,
        "rating": 4.6,
        "visit_count": 320,
    },
    {
        "place_id": "cafe_002",
        "name": "Canvas Coffee Lab",
        "category": "cafe",
        "region": "hongdae",
        "tags": ["coffee", "art", "drawing"],
        "coordinates": {"latitude": 37.5563, "longitude": 126.9236},
        "recommended_for": {
            "mbti": ["ENFP", "INFP"],
            "mood": ["creative", "happy"],
            "time_of_day": ["afternoon"],
        },
        "talent_relevance": ["drawing", "painting"],
        "operating_hours": _DAY_HOURS,
        "rating": 4.3,
        "visit_count": 210,
    },
    {
        "place_id": "cafe_003",
        "name": "Riverside Brew",
        "category": "cafe",
        "region": "yeouido",
        "tags": ["coffee", "view", "river"],
        "coordinates": {"latitude": 37.5284, "longitude": 126.9326},
        "recommended_for": {"mood": ["calm"], "weather": ["sunny"]},
        "operating_hours": _DAY_HOURS,
        "rating": 4.1,
        "visit_count": 150,
    },
    # Restaurants (2)
    {
        "place_id": "rest_001",
        "name": "Hanok Table",
        "category": "restaurant",
        "region": "seongsu",
        "tags": ["food", "korean", "traditional"],
        "coordinates": {"latitude": 37.5430, "longitude": 127.0510},
        "recommended_for": {
            "mbti": ["ESFJ", "ISFJ"],
            "mood": ["happy"],
            "time_of_day": ["evening"],
        },
        "operating_hours": _DAY_HOURS,
        "rating": 4.5,
        "visit_count": 410,
    },
    {
        "place_id": "rest_002",
        "name": "Night Noodle Bar",
        "category": "restaurant",
        "region": "hongdae",
        "tags": ["food", "noodles", "late night"],
        "coordinates": {"latitude": 37.5570, "longitude": 126.9250},
        "recommended_for": {"mood": ["tired"], "time_of_day": ["night"]},
        "operating_hours": _LATE_HOURS,
        "rating": 4.0,
        "visit_count": 280,
    },
    # Culture (2)
    {
        "place_id": "cult_001",
        "name": "Modern Print Gallery",
        "category": "culture",
        "region": "seongsu",
        "tags": ["art", "exhibition", "design"],
        "coordinates": {"latitude": 37.5470, "longitude": 127.0440},
        "recommended_for": {
            "mbti": ["INFP", "INTJ", "ENFP"],
            "mood": ["creative", "calm"],
            "day_type": ["weekend"],
            "weather": ["rainy"],
        },
        "talent_relevance": ["drawing", "design"],
        "operating_hours": _DAY_HOURS,
        "rating": 4.7,
        "visit_count": 190,
    },
    {
        "place_id": "cult_002",
        "name": "Indie Film House",
        "category": "culture",
        "region": "hongdae",
        "tags": ["movies", "indie", "film"],
        "coordinates": {"latitude": 37.5540, "longitude": 126.9210},
        "recommended_for": {"mbti": ["INTP", "INFJ"], "mood": ["sad", "calm"]},
        "operating_hours": _DAY_HOURS,
        "rating": 4.4,
        "visit_count": 130,
    },
    # Parks (2)
    {
        "place_id": "park_001",
        "name": "Seoul Forest",
        "category": "park",
        "region": "seongsu",
        "tags": ["nature", "walking", "picnic"],
        "coordinates": {"latitude": 37.5444, "longitude": 127.0374},
        "recommended_for": {
            "mood": ["happy", "energetic"],
            "day_type": ["weekend"],
            "weather": ["sunny"],
        },
        "rating": 4.8,
        "visit_count": 900,
    },
    {
        "place_id": "park_002",
        "name": "Hangang Riverside Park",
        "category": "park",
        "region": "yeouido",
        "tags": ["nature", "cycling", "river"],
        "coordinates": {"latitude": 37.5265, "longitude": 126.9340},
        "recommended_for": {"mood": ["energetic"], "weather": ["sunny"]},
        "talent_relevance": ["sports"],
        "rating": 4.6,
        "visit_count": 1200,
    },
    # Shopping, music, sports (1 each)
    {
        "place_id": "shop_001",
        "name": "Vinyl & Books",
        "category": "shopping",
        "region": "hongdae",
        "tags": ["books", "music", "records"],
        "coordinates": {"latitude": 37.5551, "longitude": 126.9229},
        "recommended_for": {"mbti": ["INTP", "ISFP"], "mood": ["calm"]},
        "talent_relevance": ["music", "writing"],
        "operating_hours": _DAY_HOURS,
        "rating": 4.2,
        "visit_count": 95,
    },
    {
        "place_id": "music_001",
        "name": "Basement Live Club",
        "category": "music",
        "region": "hongdae",
        "tags": ["live music", "concert", "night"],
        "coordinates": {"latitude": 37.5549, "longitude": 126.9199},
        "recommended_for": {
            "mbti": ["ENFP", "ESTP"],
            "mood": ["energetic", "happy"],
            "time_of_day": ["night"],
        },
        "talent_relevance": ["music", "singing"],
        "operating_hours": _LATE_HOURS,
        "rating": 4.3,
        "visit_count": 240,
    },
    {
        "place_id": "sport_001",
        "name": "Climb Up Gym",
        "category": "sports",
        "region": "yeouido",
        "tags": ["climbing", "fitness", "indoor"],
        "coordinates": {"latitude": 37.5219, "longitude": 126.9245},
        "recommended_for": {"mbti": ["ESTP", "ISTP"], "mood": ["energetic"]},
        "talent_relevance": ["sports"],
        "operating_hours": _DAY_HOURS,
        "rating": 4.5,
        "visit_count": 175,
    },
]

SAMPLE_USERS: list[dict[str, Any]] = [
    {
        "user_id": "user_001",
        "personality_type": "INFP",
        "interests": ["art", "coffee", "reading"],
        "talents": ["drawing"],
        "preferred_regions": ["seongsu"],
        "current_mood": "calm",
        "current_location": {"latitude": 37.5440, "longitude": 127.0500},
    },
    {
        "user_id": "user_002",
        "personality_type": "INFP",
        "interests": ["art", "movies"],
        "talents": ["writing"],
        "preferred_regions": ["hongdae"],
        "current_mood": "creative",
    },
    {
        "user_id": "user_003",
        "personality_type": "ESTP",
        "interests": ["climbing", "live music"],
        "talents": ["sports"],
        "preferred_regions": ["yeouido"],
        "current_mood": "energetic",
    },
]

# (user_id, place_id, days ago, hour of day)
SAMPLE_VISITS: list[tuple[str, str, int, int]] = [
    ("user_001", "cafe_001", 2, 10),
    ("user_001", "cafe_001", 9, 9),
    ("user_001", "cult_001", 6, 15),
    ("user_001", "cafe_002", 13, 11),
    ("user_002", "cult_002", 3, 20),
    ("user_002", "shop_001", 5, 16),
    ("user_003", "sport_001", 1, 18),
    ("user_003", "music_001", 4, 22),
]

_PLACE_BY_ID: dict[str, dict[str, Any]] = {p["place_id"]: p for p in SAMPLE_PLACES}


def build_sample_store() -> InMemoryPlaceStore:
    """Return an :class:`InMemoryPlaceStore` seeded with the sample data."""
    store = InMemoryPlaceStore()
    for data in SAMPLE_PLACES:
        store.add_place(place_from_dict(data))
    for data in SAMPLE_USERS:
        store.add_user(user_profile_from_dict(data))

    now = datetime.now(timezone.utc)
    for user_id, place_id, days_ago, hour in SAMPLE_VISITS:
        place = _PLACE_BY_ID[place_id]
        visited = (now - timedelta(days=days_ago)).replace(
            hour=hour, minute=0, second=0, microsecond=0
        )
        store.record_visit(
            user_id,
            VisitRecord(
                place_id=place_id,
                visit_date=visited,
                category=place["category"],
                tags=tuple(place["tags"]),
            ),
        )
    return store


# Module-level singleton shared between the gRPC servicer and HTTP handlers
_store = build_sample_store()

# ---------------------------------------------------------------------------
# gRPC server
# ---------------------------------------------------------------------------


def _build_grpc_server() -> grpc.Server:
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=GRPC_MAX_WORKERS))
    add_place_store_to_server(_store, server)
    server.add_insecure_port(f"0.0.0.0:{MOCK_GRPC_PORT}")
    return server


def _run_grpc_server(server: grpc.Server) -> None:
    server.start()
    logger.info("PlaceStore gRPC server listening on port %d", MOCK_GRPC_PORT)
    server.wait_for_termination()


# ---------------------------------------------------------------------------
# Ranker gRPC client helpers (called from HTTP handlers)
# ---------------------------------------------------------------------------

# Reuse a single channel for all outbound calls to the ranker.
_ranker_channel: grpc.Channel | None = None
_channel_lock = threading.Lock()


def _get_ranker_client() -> PlaceRankerClient:
    """Return a client backed by a lazily-created, reused gRPC channel."""
    global _ranker_channel
    with _channel_lock:
        if _ranker_channel is None:
            _ranker_channel = grpc.insecure_channel(RANKER_GRPC_ADDR)
    return PlaceRankerClient(_ranker_channel)


def _rpc_error_message(exc: grpc.RpcError) -> str:
    return f"gRPC error: {exc.code()}: {exc.details()}"


# ---------------------------------------------------------------------------
# HTTP server
# ---------------------------------------------------------------------------


class _ThreadingHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    """Each HTTP request is handled in its own thread.

    Required because each handler blocks on a gRPC call to the ranker.
    """

    daemon_threads = True


def _send_json(handler: BaseHTTPRequestHandler, data: Any, status: int = 200) -> None:
    body = json.dumps(data, ensure_ascii=False).encode()
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    handler.send_header("Access-Control-Allow-Origin", "*")
    handler.end_headers()
    handler.wfile.write(body)


def _send_error(handler: BaseHTTPRequestHandler, msg: str, status: int = 400) -> None:
    _send_json(handler, {"error": msg}, status=status)


class MockServerHTTPHandler(BaseHTTPRequestHandler):
    """HTTP handler exposing the JSON API.

    Routes
    ------
    GET  /api/places                      Full catalogue JSON
    GET  /api/rank?user_id=X[&weather=W]  Call ranker gRPC, return ranked places
    POST /api/feedback                    Record one rating
    GET  /api/weights?user_id=X           Current weights and their source
    """

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        # Suppress per-request stdout noise; errors still reach the logger
        pass

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        params = parse_qs(parsed.query)
        path = parsed.path

        if path == "/api/places":
            _send_json(self, [place_to_dict(p) for p in _store.all_places()])
        elif path == "/api/rank":
            self._handle_rank(params)
        elif path == "/api/weights":
            self._handle_weights(params)
        else:
            _send_error(self, "Not found", status=404)

    def do_POST(self) -> None:
        if urlparse(self.path).path == "/api/feedback":
            self._handle_feedback()
        else:
            _send_error(self, "Not found", status=404)

    # ------------------------------------------------------------------
    # Route handlers
    # ------------------------------------------------------------------

    def _handle_rank(self, params: dict) -> None:
        """GET /api/rank?user_id=X"""
        uid = (params.get("user_id") or [""])[0].strip()
        if not uid:
            _send_error(self, "user_id query parameter required")
            return
        profiles = _store.fetch_user_profiles([uid])
        if not profiles:
            _send_error(self, f"Unknown user {uid!r}", status=404)
            return
        profile = profiles[0]
        context = RankingContext(
            now=datetime.now(timezone.utc),
            weather=(params.get("weather") or [None])[0],
            location=profile.current_location,
        )
        try:
            places = _get_ranker_client().rank(profile, context)
        except grpc.RpcError as exc:
            msg = _rpc_error_message(exc)
            logger.error("Rank failed: %s", msg)
            _send_error(self, msg, status=502)
            return
        _send_json(self, {"user_id": uid, "places": places})

    def _handle_feedback(self) -> None:
        """POST /api/feedback  body: {user_id, place_id, rating, tags?, comment?}"""
        try:
            length = int(self.headers.get("Content-Length", 0))
            body = json.loads(self.rfile.read(length))
        except (ValueError, TypeError) as exc:
            _send_error(self, f"Invalid JSON: {exc}")
            return

        user_id = str(body.get("user_id", "")).strip()
        place_id = str(body.get("place_id", "")).strip()
        if not user_id or not place_id:
            _send_error(self, "user_id and place_id required")
            return
        try:
            event = FeedbackEvent(
                timestamp=datetime.now(timezone.utc),
                place_id=place_id,
                rating=float(body.get("rating", 0)),
                tags=frozenset(body.get("tags") or ()),
                comment=str(body.get("comment", "")),
            )
        except (ValueError, TypeError) as exc:
            _send_error(self, str(exc))
            return

        try:
            result = _get_ranker_client().record_feedback(user_id, event)
        except grpc.RpcError as exc:
            msg = _rpc_error_message(exc)
            logger.warning("RecordFeedback failed: %s", msg)
            _send_error(self, msg, status=502)
            return
        _send_json(self, {"ok": True, **result})

    def _handle_weights(self, params: dict) -> None:
        """GET /api/weights?user_id=X"""
        uid = (params.get("user_id") or [""])[0].strip()
        if not uid:
            _send_error(self, "user_id query parameter required")
            return
        try:
            result = _get_ranker_client().get_weights(uid)
        except grpc.RpcError as exc:
            msg = _rpc_error_message(exc)
            logger.error("GetWeights failed: %s", msg)
            _send_error(self, msg, status=502)
            return
        _send_json(self, {"user_id": uid, **result})


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Start the PlaceStore gRPC server and the HTTP JSON API server.

    Startup order:
    1. gRPC PlaceStore on port 50052 (daemon thread).
    2. HTTP JSON API on port 8080 (main thread, blocks until Ctrl-C).

    Then start ``python main.py`` in a separate terminal.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # gRPC server on a daemon thread
    grpc_server = _build_grpc_server()
    grpc_thread = threading.Thread(
        target=_run_grpc_server,
        args=(grpc_server,),
        name="grpc-placestore",
        daemon=True,
    )
    grpc_thread.start()
    time.sleep(0.3)  # let the gRPC port bind before main.py tries to connect

    # HTTP server on the main thread
    http_server = _ThreadingHTTPServer(("0.0.0.0", HTTP_PORT), MockServerHTTPHandler)
    logger.info("JSON API available at  http://localhost:%d/api/places", HTTP_PORT)
    logger.info(
        "Expecting ranker at %s  (start with: python main.py)", RANKER_GRPC_ADDR
    )
    try:
        http_server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down.")
        grpc_server.stop(grace=2)


if __name__ == "__main__":
    main()
