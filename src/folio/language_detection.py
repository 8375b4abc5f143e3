"""Book language from ``dc:language`` or, when absent, from the text itself."""

from __future__ import annotations

from functools import lru_cache

_LINGUA_TO_ISO: dict[str, str] = {
    "ENGLISH": "en",
    "RUSSIAN": "ru",
    "UKRAINIAN": "uk",
    "KAZAKH": "kk",
    "TATAR": "tt",
    "GERMAN": "de",
    "FRENCH": "fr",
    "SPANISH": "es",
    "ITALIAN": "it",
    "PORTUGUESE": "pt",
    "CHINESE": "zh",
    "JAPANESE": "ja",
}

# Common non-ISO spellings found in dc:language
_TAG_ALIASES: dict[str, str] = {
    "eng": "en", "english": "en",
    "rus": "ru", "russian": "ru",
    "ukr": "uk", "kaz": "kk", "tat": "tt",
    "ger": "de", "deu": "de", "fre": "fr", "fra": "fr",
    "spa": "es", "ita": "it", "por": "pt",
    "chi": "zh", "zho": "zh", "jpn": "ja",
}


def normalize_language_tag(raw: str | None) -> str | None:
    """Reduce a BCP 47 tag or alias (``en-US``, ``rus``) to a lowercase primary subtag."""

    if not raw:
        return None
    primary = raw.strip().lower().replace("_", "-").split("-", 1)[0]
    if not primary:
        return None
    return _TAG_ALIASES.get(primary, primary)


@lru_cache(maxsize=1)
def _get_detector():
    from lingua import Language, LanguageDetectorBuilder

    languages = [getattr(Language, name) for name in _LINGUA_TO_ISO]
    return LanguageDetectorBuilder.from_languages(*languages).with_minimum_relative_distance(0.1).build()


def detect_language(text: str, *, sample_chars: int = 3000) -> str | None:
    """Return an ISO 639-1 code for *text*, or None when detection is inconclusive.

    Only the first *sample_chars* characters are inspected.
    """
    if not text:
        return None

    sample = text[:sample_chars].strip()
    if not sample:
        return None

    result = _get_detector().detect_language_of(sample)
    if result is None:
        return None
    return _LINGUA_TO_ISO.get(result.name.upper())
