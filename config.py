"""Application configuration driven by environment variables.

All settings have sensible defaults for local development.
"""

import os

# ---------------------------------------------------------------------------
# Ranker gRPC server (clients connect to us on this address)
# ---------------------------------------------------------------------------

GRPC_SERVER_HOST: str = os.getenv("GRPC_SERVER_HOST", "0.0.0.0")
GRPC_SERVER_PORT: int = int(os.getenv("GRPC_SERVER_PORT", "50051"))

# Thread pool size for the gRPC server.  Each concurrent RPC occupies one
# thread, so this caps concurrent request handling.
GRPC_MAX_WORKERS: int = int(os.getenv("GRPC_MAX_WORKERS", "10"))

# ---------------------------------------------------------------------------
# Place store server (we connect to it as a gRPC client)
# ---------------------------------------------------------------------------

PLACE_STORE_ADDRESS: str = os.getenv("PLACE_STORE_ADDRESS", "localhost:50052")
PLACE_STORE_TIMEOUT_SECONDS: float = float(
    os.getenv("PLACE_STORE_TIMEOUT_SECONDS", "5")
)

# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

NUM_RESULTS: int = int(os.getenv("NUM_RESULTS", "6"))          # final list length
NUM_AGGREGATED: int = int(os.getenv("NUM_AGGREGATED", "10"))   # kept before re-ranking

# Worker threads used to fan out the per-request store fetches.
FETCH_MAX_WORKERS: int = int(os.getenv("FETCH_MAX_WORKERS", "16"))

# Deadline for the batch of candidate/feedback/behaviour fetches, and for
# the peer search.  On timeout the source is treated as empty (or the
# personal weights are used).
FETCH_TIMEOUT_SECONDS: float = float(os.getenv("FETCH_TIMEOUT_SECONDS", "10"))
PEER_SEARCH_TIMEOUT_SECONDS: float = float(
    os.getenv("PEER_SEARCH_TIMEOUT_SECONDS", "8")
)

# ---------------------------------------------------------------------------
# Learning
# ---------------------------------------------------------------------------

MAX_LEARNING_RATE: float = float(os.getenv("MAX_LEARNING_RATE", "0.15"))
MIN_LEARNING_RATE: float = float(os.getenv("MIN_LEARNING_RATE", "0.01"))

PEER_LIMIT: int = int(os.getenv("PEER_LIMIT", "50"))
TOP_PEERS: int = int(os.getenv("TOP_PEERS", "5"))
MIN_PEER_SIMILARITY: float = float(os.getenv("MIN_PEER_SIMILARITY", "0.3"))

# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------

# Lifetime of cached learning profiles and peer blends.  Collaborative
# blends are kept for half this long.
WEIGHT_CACHE_TTL_SECONDS: int = int(os.getenv("WEIGHT_CACHE_TTL_SECONDS", "86400"))

# Lifetime of memoized behaviour analyses.
BEHAVIOR_CACHE_TTL_SECONDS: int = int(os.getenv("BEHAVIOR_CACHE_TTL_SECONDS", "3600"))
