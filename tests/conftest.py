"""Shared pytest fixtures for all placerank tests."""

from __future__ import annotations

import pytest

from factories import make_place
from placerank.models import Coordinates, PlaceCandidate, RecommendedFor, UserProfile
from placerank.store import InMemoryPlaceStore


# ---------------------------------------------------------------------------
# Place fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def place_cafe() -> PlaceCandidate:
    return make_place(
        "cafe_1",
        "cafe",
        region="seongsu",
        tags=("coffee", "reading"),
        coordinates=Coordinates(37.5445, 127.0557),
        recommended_for=RecommendedFor(
            mbti=frozenset({"INFP"}),
            mood=frozenset({"calm"}),
            time_of_day=frozenset({"afternoon"}),
        ),
        operating_hours={"wednesday": ("09:00", "22:00")},
        rating=4.6,
        visit_count=300,
    )


@pytest.fixture
def place_gallery() -> PlaceCandidate:
    return make_place(
        "gallery_1",
        "culture",
        region="seongsu",
        tags=("art", "exhibition"),
        recommended_for=RecommendedFor(
            mbti=frozenset({"INFP", "INTJ"}),
            mood=frozenset({"calm"}),
            weather=frozenset({"rainy"}),
        ),
        talent_relevance=("drawing",),
        rating=4.7,
        visit_count=190,
    )


@pytest.fixture
def place_restaurant() -> PlaceCandidate:
    return make_place(
        "rest_1",
        "restaurant",
        region="hongdae",
        tags=("food", "korean"),
        recommended_for=RecommendedFor(mood=frozenset({"happy"})),
        rating=4.5,
        visit_count=410,
    )


@pytest.fixture
def sample_places(place_cafe, place_gallery, place_restaurant) -> list[PlaceCandidate]:
    """Ten places across seven categories."""
    extra = [
        make_place("cafe_2", "cafe", region="seongsu", tags=("coffee",), rating=4.1, visit_count=80,
                   recommended_for=RecommendedFor(mbti=frozenset({"INFP"}))),
        make_place("park_1", "park", region="seongsu", tags=("nature",), rating=4.8, visit_count=900,
                   recommended_for=RecommendedFor(mood=frozenset({"calm"}))),
        make_place("shop_1", "shopping", region="hongdae", tags=("books",), rating=4.2, visit_count=95,
                   recommended_for=RecommendedFor(mbti=frozenset({"INFP"}))),
        make_place("music_1", "music", region="hongdae", tags=("live music",), rating=4.3,
                   visit_count=240, recommended_for=RecommendedFor(mood=frozenset({"calm"}))),
        make_place("gym_1", "sports", region="seongsu", tags=("climbing",), rating=4.5,
                   visit_count=175, recommended_for=RecommendedFor(mbti=frozenset({"INFP"}))),
        make_place("cafe_3", "cafe", region="seongsu", tags=("dessert",), rating=3.9, visit_count=60),
        make_place("rest_2", "restaurant", region="seongsu", tags=("noodles",), rating=4.0,
                   visit_count=280, recommended_for=RecommendedFor(mood=frozenset({"calm"}))),
    ]
    return [place_cafe, place_gallery, place_restaurant] + extra


# ---------------------------------------------------------------------------
# User profile fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def infp_user() -> UserProfile:
    """A calm INFP who likes art and coffee and lives around Seongsu."""
    return UserProfile(
        user_id="u_infp",
        personality_type="INFP",
        interests=["art", "coffee"],
        talents=["drawing"],
        preferred_regions=["seongsu"],
        current_mood="calm",
    )


@pytest.fixture
def new_user() -> UserProfile:
    """A user who has declared nothing (cold-start case)."""
    return UserProfile(user_id="u_new")


@pytest.fixture
def store(sample_places, infp_user) -> InMemoryPlaceStore:
    s = InMemoryPlaceStore()
    for place in sample_places:
        s.add_place(place)
    s.add_user(infp_user)
    return s
