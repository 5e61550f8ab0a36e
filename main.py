"""Entry point: wires all components and starts the gRPC server."""

from __future__ import annotations

import logging
import signal
import sys
from concurrent import futures

import grpc

import config
from placerank.behavior import BehaviorPatternExtractor
from placerank.cache import TTLCache
from placerank.engine import RankingEngine
from placerank.learning_profile import LearningProfileStore
from placerank.peers import PeerSimilarityBlender
from placerank.ranking.aggregator import CandidateAggregator
from placerank.ranking.reranker import ContextualReranker
from placerank.remote_store import GrpcPlaceStore
from placerank.service import PlaceRankerServicer, add_servicer_to_server
from placerank.store import PlaceStore
from placerank.weights import WeightAdjustmentEngine

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_engine(store: PlaceStore) -> RankingEngine:
    """Construct a :class:`~placerank.engine.RankingEngine` over *store*.

    Args:
        store: The persistence collaborator.

    Returns:
        A ready-to-use engine.  Call :meth:`RankingEngine.close` on shutdown.
    """
    weight_cache = TTLCache(ttl_seconds=config.WEIGHT_CACHE_TTL_SECONDS)
    learning_profiles = LearningProfileStore(store=store, cache=weight_cache)

    return RankingEngine(
        store=store,
        learning_profiles=learning_profiles,
        weight_engine=WeightAdjustmentEngine(
            max_learning_rate=config.MAX_LEARNING_RATE,
            min_learning_rate=config.MIN_LEARNING_RATE,
        ),
        blender=PeerSimilarityBlender(
            store=store,
            learning_profiles=learning_profiles,
            cache=weight_cache,
            cache_ttl_seconds=config.WEIGHT_CACHE_TTL_SECONDS,
            peer_limit=config.PEER_LIMIT,
            top_peers=config.TOP_PEERS,
            min_similarity=config.MIN_PEER_SIMILARITY,
        ),
        extractor=BehaviorPatternExtractor(
            cache=TTLCache(ttl_seconds=config.BEHAVIOR_CACHE_TTL_SECONDS)
        ),
        aggregator=CandidateAggregator(max_results=config.NUM_AGGREGATED),
        reranker=ContextualReranker(),
        max_workers=config.FETCH_MAX_WORKERS,
        fetch_timeout_seconds=config.FETCH_TIMEOUT_SECONDS,
        peer_timeout_seconds=config.PEER_SEARCH_TIMEOUT_SECONDS,
        max_results=config.NUM_RESULTS,
    )


def build_server(engine: RankingEngine) -> grpc.Server:
    """Construct and configure the gRPC server with all dependencies wired.

    Args:
        engine: The :class:`~placerank.engine.RankingEngine` to serve.

    Returns:
        A configured but not-yet-started :class:`grpc.Server`.
    """
    server = grpc.server(
        futures.ThreadPoolExecutor(max_workers=config.GRPC_MAX_WORKERS)
    )
    add_servicer_to_server(PlaceRankerServicer(engine=engine), server)
    server.add_insecure_port(
        f"{config.GRPC_SERVER_HOST}:{config.GRPC_SERVER_PORT}"
    )
    return server


def main() -> None:
    """Initialise all components and start the gRPC server.

    Startup sequence:
    1. Connect to the place store as a gRPC client.
    2. Build the ranking engine over it.
    3. Build the gRPC server.
    4. Register ``SIGTERM``/``SIGINT`` shutdown handlers.
    5. Start serving.
    """
    logger.info("Connecting to place store at %s", config.PLACE_STORE_ADDRESS)
    store_channel = grpc.insecure_channel(config.PLACE_STORE_ADDRESS)
    store = GrpcPlaceStore(
        store_channel, timeout_seconds=config.PLACE_STORE_TIMEOUT_SECONDS
    )

    engine = build_engine(store)
    server = build_server(engine)

    def handle_shutdown(signum: int, frame: object) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, shutting down", sig_name)
        server.stop(grace=5)
        engine.close()
        store_channel.close()
        sys.exit(0)

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    server.start()
    logger.info(
        "Place ranker gRPC server listening on %s:%d",
        config.GRPC_SERVER_HOST,
        config.GRPC_SERVER_PORT,
    )
    server.wait_for_termination()


if __name__ == "__main__":
    main()
