"""Learning profile store: cached load/save of per-user weight state."""

from __future__ import annotations

import logging

from placerank.cache import TTLCache
from placerank.codec import learning_profile_from_dict, learning_profile_to_dict
from placerank.models import LearningProfile
from placerank.store import PlaceStore

logger = logging.getLogger(__name__)

_CACHE_PREFIX = "learning:"


class LearningProfileStore:
    """Loads and saves :class:`LearningProfile` records through a :class:`PlaceStore`.

    Reads go through a TTL cache; saves write through to the backing store
    and refresh the cached copy.

    Missing or unreadable records never surface as errors.  A user without
    a stored profile, or whose record fails to decode, gets a fresh default
    profile (default weights, confidence 0).  The fallback is not written
    back until the next successful adjustment.

    Saves are last-write-wins: two concurrent feedback submissions for the
    same user each read, adjust and save independently.

    Args:
        store: Backing persistence collaborator.
        cache: Read cache for decoded profiles.
    """

    def __init__(self, store: PlaceStore, cache: TTLCache) -> None:
        self._store = store
        self._cache = cache

    def load(self, user_id: str) -> LearningProfile:
        """Return the learning profile for *user_id*, or a default one.

        Args:
            user_id: The profile owner. Must be non-empty.

        Raises:
            ValueError: If *user_id* is empty.
        """
        if not user_id:
            raise ValueError("user_id must be non-empty")

        key = _CACHE_PREFIX + user_id
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        record = self._store.load_learning_profile(user_id)
        if record is None:
            logger.debug("No learning profile for user %r; using defaults", user_id)
            return LearningProfile(user_id=user_id)

        try:
            profile = learning_profile_from_dict(user_id, record)
        except (KeyError, TypeError, ValueError, AttributeError):
            logger.warning(
                "Corrupt learning profile for user %r; substituting defaults",
                user_id,
                exc_info=True,
            )
            return LearningProfile(user_id=user_id)

        self._cache.set(key, profile)
        return profile

    def save(self, profile: LearningProfile) -> None:
        """Persist *profile* and refresh the cached copy."""
        self._store.save_learning_profile(
            profile.user_id, learning_profile_to_dict(profile)
        )
        self._cache.set(_CACHE_PREFIX + profile.user_id, profile)
        logger.debug(
            "Saved learning profile for user %r (confidence=%d)",
            profile.user_id,
            profile.confidence,
        )

    def invalidate(self, user_id: str) -> None:
        self._cache.invalidate(_CACHE_PREFIX + user_id)
