"""Diversity enforcer: caps the final list and guarantees category variety."""

from __future__ import annotations

from placerank.models import ScoredPlace

DEFAULT_MAX_ITEMS = 6


def ensure_category_diversity(
    places: list[ScoredPlace], max_items: int = DEFAULT_MAX_ITEMS
) -> list[ScoredPlace]:
    """Pick at most *max_items* places spread across categories.

    Lists no longer than *max_items* pass through unchanged.  Otherwise
    places are grouped by category in score order.  With at least
    *max_items* categories, the best place of each of the first
    *max_items* categories is taken.  With fewer, the best place of every
    category is taken first and the remaining slots are filled with the
    next-highest scorers.

    Returns:
        The selection sorted by descending ``match_score``.
    """
    if len(places) <= max_items:
        return list(places)

    ordered = sorted(places, key=lambda s: s.match_score, reverse=True)
    by_category: dict[str, list[ScoredPlace]] = {}
    for entry in ordered:
        by_category.setdefault(entry.place.category, []).append(entry)

    leaders = [group[0] for group in by_category.values()]
    if len(leaders) >= max_items:
        selected = leaders[:max_items]
    else:
        selected = list(leaders)
        chosen = {id(s) for s in selected}
        for entry in ordered:
            if len(selected) >= max_items:
                break
            if id(entry) not in chosen:
                selected.append(entry)
                chosen.add(id(entry))

    return sorted(selected, key=lambda s: s.match_score, reverse=True)
