"""Keyword vocabularies mapping free-form tags onto signal dimensions."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from placerank.models import Dimension

DEFAULT_KEYWORDS: Mapping[Dimension, tuple[str, ...]] = {
    Dimension.PERSONALITY_AFFINITY: ("mbti", "성격", "성향", "introvert", "extrovert"),
    Dimension.INTERESTS: ("관심", "취향", "취미", "interest"),
    Dimension.TALENTS: ("재능", "talent", "skill", "특기"),
    Dimension.MOOD: ("감정", "기분", "mood", "feel"),
    Dimension.LOCATION: ("위치", "장소", "지역", "거리", "location"),
}


class KeywordVocabulary:
    """Fixed lookup table from :class:`Dimension` to trigger keywords.

    A tag matches a dimension when any of the dimension's keywords occurs
    inside it, ignoring case (``"관심사"`` matches the interests keyword
    ``"관심"``).

    Args:
        keywords: Mapping of dimension to keyword list.  Dimensions left
            out have no keywords.  Defaults to :data:`DEFAULT_KEYWORDS`.
    """

    def __init__(
        self, keywords: Mapping[Dimension, Iterable[str]] | None = None
    ) -> None:
        source = DEFAULT_KEYWORDS if keywords is None else keywords
        self._keywords: dict[Dimension, tuple[str, ...]] = {
            d: tuple(k.lower() for k in source.get(d, ())) for d in Dimension
        }

    def keywords(self, dimension: Dimension) -> tuple[str, ...]:
        return self._keywords[dimension]

    def matches(self, tag: str, dimension: Dimension) -> bool:
        lowered = tag.lower()
        return any(k in lowered for k in self._keywords[dimension])

    def dimensions_for(self, tag: str) -> list[Dimension]:
        """Return every dimension whose vocabulary matches *tag*."""
        return [d for d in Dimension if self.matches(tag, d)]
