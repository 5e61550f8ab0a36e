"""Tests for ensure_category_diversity."""

from __future__ import annotations

from factories import make_scored
from placerank.ranking.diversity import ensure_category_diversity


class TestEnsureCategoryDiversity:
    def test_short_list_unchanged(self) -> None:
        places = [make_scored("a", 1.0), make_scored("b", 2.0)]
        assert ensure_category_diversity(places) == places

    def test_empty(self) -> None:
        assert ensure_category_diversity([]) == []

    def test_one_per_category_when_enough_categories(self) -> None:
        categories = ["cafe", "park", "museum", "bar", "shop", "gym"]
        places = []
        for i, category in enumerate(categories):
            places.append(make_scored(f"{category}_top", 100.0 - i, category))
            places.append(make_scored(f"{category}_second", 50.0 - i, category))
        selected = ensure_category_diversity(places, 6)
        assert len(selected) == 6
        assert {s.place.category for s in selected} == set(categories)
        assert all(s.place_id.endswith("_top") for s in selected)

    def test_more_categories_than_slots_takes_best_categories(self) -> None:
        places = [make_scored(f"p{i}", 10.0 - i, f"cat{i}") for i in range(8)]
        selected = ensure_category_diversity(places, 6)
        assert [s.place_id for s in selected] == [f"p{i}" for i in range(6)]

    def test_few_categories_filled_by_score(self) -> None:
        places = [
            make_scored("cafe1", 10.0, "cafe"),
            make_scored("cafe2", 9.0, "cafe"),
            make_scored("cafe3", 8.0, "cafe"),
            make_scored("cafe4", 7.0, "cafe"),
            make_scored("cafe5", 6.0, "cafe"),
            make_scored("cafe6", 5.0, "cafe"),
            make_scored("park1", 1.0, "park"),
        ]
        selected = ensure_category_diversity(places, 6)
        ids = [s.place_id for s in selected]
        assert "park1" in ids
        assert ids == ["cafe1", "cafe2", "cafe3", "cafe4", "cafe5", "park1"]

    def test_output_sorted_by_score(self) -> None:
        places = [make_scored(f"p{i}", float(i), f"cat{i % 3}") for i in range(10)]
        scores = [s.match_score for s in ensure_category_diversity(places, 6)]
        assert scores == sorted(scores, reverse=True)

    def test_custom_cap(self) -> None:
        places = [make_scored(f"p{i}", float(i), "cafe") for i in range(5)]
        assert len(ensure_category_diversity(places, 3)) == 3
