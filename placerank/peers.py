"""Peer similarity blender: mixes similar users' learned weights into a user's own."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import NamedTuple

import numpy as np

from placerank.cache import TTLCache, stable_key
from placerank.learning_profile import LearningProfileStore
from placerank.models import (
    CollaborativeWeights,
    PersonalWeights,
    SimilarityScore,
    UserProfile,
    WeightResult,
    WeightVector,
)
from placerank.store import PlaceStore

logger = logging.getLogger(__name__)

_CACHE_PREFIX = "peers:"

_PERSONALITY_SHARE = 0.4
_INTERESTS_SHARE = 0.4
_TALENTS_SHARE = 0.2
_CONFIDENCE_SATURATION = 50


class _CachedBlend(NamedTuple):
    result: WeightResult
    peer_ids: frozenset[str]


def jaccard_similarity(left: Iterable[str], right: Iterable[str]) -> float:
    """Case-insensitive Jaccard similarity that also credits substrings.

    An element of *left* counts towards the intersection when it equals,
    contains, or is contained in some element of *right*
    (``"hiking"`` ~ ``"Hiking trails"``).  Either side empty gives 0.0.
    """
    a = {s.lower() for s in left if s}
    b = {s.lower() for s in right if s}
    if not a or not b:
        return 0.0
    intersection = sum(1 for x in a if any(x == y or x in y or y in x for y in b))
    return intersection / len(a | b)


class PeerSimilarityBlender:
    """Blends a user's personal weights with those of similar users.

    Peers must share the requester's personality type.  Each is scored:

    ``similarity = 0.4 + 0.4 × J(interests) + 0.2 × J(talents)``

    where ``J`` is :func:`jaccard_similarity`.  Peers under
    *min_similarity* are dropped, the best *top_peers* are kept, and their
    learned vectors are averaged with factor
    ``similarity × (1 + min(1, confidence / 50))``.  The result is
    ``personal_share × personal + (1 - personal_share) × peers``,
    renormalized.

    Results are cached per user: collaborative blends for half the cache
    TTL, personal fallbacks for the full TTL.  Each cached blend remembers
    which peers fed it.  Call :meth:`invalidate` whenever a user's learned
    weights change; it drops that user's own blends and every blend that
    used them as a peer.  Peers who newly qualify are only picked up once
    the cached entry expires.

    Args:
        store: Source of peer ids and declared profiles.
        learning_profiles: Loader for learned weights.
        cache: Result cache.  ``None`` disables caching.
        cache_ttl_seconds: Lifetime of a personal fallback result.
        peer_limit: Maximum number of peers fetched by personality type.
        top_peers: Number of most similar peers blended.
        min_similarity: Peers below this score are ignored.
        personal_share: Share of the requester's own weights in the blend.
    """

    def __init__(
        self,
        store: PlaceStore,
        learning_profiles: LearningProfileStore,
        cache: TTLCache | None = None,
        cache_ttl_seconds: float = 24 * 3600,
        peer_limit: int = 50,
        top_peers: int = 5,
        min_similarity: float = 0.3,
        personal_share: float = 0.7,
    ) -> None:
        self._store = store
        self._learning_profiles = learning_profiles
        self._cache = cache
        self._ttl = cache_ttl_seconds
        self._peer_limit = peer_limit
        self._top_peers = top_peers
        self._min_similarity = min_similarity
        self._personal_share = personal_share

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def blend(self, user_id: str, user_profile: UserProfile) -> WeightResult:
        """Return the weights to rank with for *user_id*.

        Returns:
            :class:`CollaborativeWeights` when at least one similar peer's
            profile could be loaded, otherwise :class:`PersonalWeights`.

        Raises:
            ValueError: If *user_id* is empty.
        """
        if not user_id:
            raise ValueError("user_id must be non-empty")

        if self._cache is None:
            return self._blend(user_id, user_profile)[0]

        key = self._cache_key(user_id, user_profile)
        cached = self._cache.get(key)
        if cached is not None:
            return cached.result

        result, peer_ids = self._blend(user_id, user_profile)
        ttl = self._ttl / 2 if isinstance(result, CollaborativeWeights) else self._ttl
        self._cache.set(key, _CachedBlend(result, peer_ids), ttl)
        return result

    def find_similar_users(self, user_profile: UserProfile) -> list[SimilarityScore]:
        """Score same-personality peers against *user_profile*, best first.

        Only peers at or above the similarity floor are returned.
        """
        if not user_profile.personality_type:
            return []

        peer_ids = self._store.fetch_peer_candidates(
            user_profile.personality_type, user_profile.user_id, self._peer_limit
        )
        peer_ids = [pid for pid in peer_ids if pid != user_profile.user_id]
        if not peer_ids:
            return []

        scores = []
        for peer in self._store.fetch_user_profiles(peer_ids):
            interests = jaccard_similarity(user_profile.interests, peer.interests)
            talents = jaccard_similarity(user_profile.talents, peer.talents)
            similarity = (
                _PERSONALITY_SHARE * 1.0
                + _INTERESTS_SHARE * interests
                + _TALENTS_SHARE * talents
            )
            if similarity < self._min_similarity:
                continue
            scores.append(
                SimilarityScore(
                    peer_user_id=peer.user_id,
                    similarity=similarity,
                    personality=1.0,
                    interests=interests,
                    talents=talents,
                )
            )

        scores.sort(key=lambda s: s.similarity, reverse=True)
        return scores

    def invalidate(self, user_id: str) -> None:
        """Drop cached blends that depend on *user_id*'s learned weights."""
        if self._cache is None:
            return
        own = f"{_CACHE_PREFIX}{user_id}:"

        def depends_on_user(key: str, value: object) -> bool:
            if not key.startswith(_CACHE_PREFIX):
                return False
            return key.startswith(own) or (
                isinstance(value, _CachedBlend) and user_id in value.peer_ids
            )

        self._cache.invalidate_where(depends_on_user)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _cache_key(self, user_id: str, user_profile: UserProfile) -> str:
        traits = stable_key(
            user_profile.personality_type,
            sorted(user_profile.interests),
            sorted(user_profile.talents),
        )
        return f"{_CACHE_PREFIX}{user_id}:{traits}"

    def _blend(
        self, user_id: str, user_profile: UserProfile
    ) -> tuple[WeightResult, frozenset[str]]:
        personal = self._learning_profiles.load(user_id).weights
        similar = self.find_similar_users(user_profile)[: self._top_peers]

        vectors = []
        factors = []
        peer_ids = []
        for score in similar:
            try:
                peer_profile = self._learning_profiles.load(score.peer_user_id)
            except Exception:
                logger.warning(
                    "Could not load learning profile for peer %r; skipping",
                    score.peer_user_id,
                    exc_info=True,
                )
                continue
            boost = 1 + min(1.0, peer_profile.confidence / _CONFIDENCE_SATURATION)
            vectors.append(peer_profile.weights.as_array())
            factors.append(score.similarity * boost)
            peer_ids.append(score.peer_user_id)

        if not vectors or sum(factors) <= 0:
            logger.debug("No usable peers for user %r; using personal weights", user_id)
            return PersonalWeights(weights=personal), frozenset()

        peer_weights = WeightVector.from_array(
            np.average(np.stack(vectors), axis=0, weights=factors)
        ).normalized()
        blended = WeightVector.from_array(
            self._personal_share * personal.as_array()
            + (1 - self._personal_share) * peer_weights.as_array()
        ).normalized()

        logger.debug(
            "Blended weights for user %r from %d peers", user_id, len(vectors)
        )
        result = CollaborativeWeights(
            weights=blended,
            personal_weights=personal,
            peer_weights=peer_weights,
            peer_count=len(vectors),
        )
        return result, frozenset(peer_ids)
