from __future__ import annotations

import pytest

from folio.language_detection import detect_language, normalize_language_tag


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("en", "en"),
        ("en-GB", "en"),
        ("pt_BR", "pt"),
        (" RU ", "ru"),
        ("eng", "en"),
        ("fra", "fr"),
        ("", None),
        (None, None),
    ],
)
def test_language_tags_reduce_to_primary_subtag(raw, expected) -> None:
    assert normalize_language_tag(raw) == expected


def test_blank_text_is_not_detected() -> None:
    assert detect_language("") is None
    assert detect_language("   \n ") is None


def test_detects_english_prose() -> None:
    text = (
        "The old lighthouse keeper walked along the shore every morning, "
        "counting the boats that had returned from the night's fishing."
    )

    assert detect_language(text) == "en"


def test_detects_russian_prose() -> None:
    text = "Старый смотритель маяка каждое утро гулял по берегу и считал лодки, вернувшиеся с ночной рыбалки."

    assert detect_language(text) == "ru"
