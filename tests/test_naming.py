from __future__ import annotations

import pytest

from storyflow.naming import (
    KEEP_NAME_OPTION,
    NameSuggestionService,
    heuristic_names,
    is_name_selection_response,
    name_offer_message,
    parse_name_selection,
)

NAMES = ["Rain City Noir", "Tales of Corruption", "Chronicles of the Noir Realm"]


def test_heuristic_names_use_profile_name_and_themes() -> None:
    summary = '{"name": "Rain City Noir", "mainGenre": "Noir", "themes": ["Corruption", 7]}'

    assert heuristic_names(None, summary) == NAMES


def test_heuristic_names_without_summary() -> None:
    assert heuristic_names("space opera") == [
        "Chronicles of the Space Opera Realm",
        "The Space Opera Foundation",
    ]
    assert heuristic_names(None) == ["Chronicles of the Story Realm", "The Story Foundation"]


def test_service_prefers_model_names() -> None:
    service = NameSuggestionService(lambda genre, summary: ["  Aster ", "aster", "", "Tidefall", "Salt", "Extra"])

    assert service.suggest("Fantasy", "summary") == ["Aster", "Tidefall", "Salt"]


def test_service_falls_back_without_model_names() -> None:
    service = NameSuggestionService(lambda genre, summary: None)

    assert service.suggest("Noir", "") == ["Chronicles of the Noir Realm", "The Noir Foundation"]


def test_offer_lists_numbered_names() -> None:
    offer = name_offer_message("Noir", NAMES, "Skyfall")

    assert offer.startswith("Based on the Noir genre")
    assert "1. Rain City Noir\n2. Tales of Corruption\n3. Chronicles of the Noir Realm" in offer
    assert 'keep the current name "Skyfall"' in offer


@pytest.mark.parametrize(
    "text, expected",
    [
        ("2", "Tales of Corruption"),
        ("I like option 3", "Chronicles of the Noir Realm"),
        ("Let's go with rain city noir", "Rain City Noir"),
        ("The first one", "Rain City Noir"),
        ("number 9", None),
        (KEEP_NAME_OPTION, None),
    ],
)
def test_parse_name_selection(text: str, expected: str | None) -> None:
    assert is_name_selection_response(text, NAMES)
    assert parse_name_selection(text, NAMES) == expected


def test_unrelated_reply_is_not_a_selection() -> None:
    assert not is_name_selection_response("Tell me about the harbour district", NAMES)
