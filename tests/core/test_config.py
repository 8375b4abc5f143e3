from __future__ import annotations

import pytest

from folio.config import DEFAULT_MAX_CHARS_PER_PAGE, ParsingConfig


def test_defaults_keep_target_between_min_and_max() -> None:
    config = ParsingConfig()

    assert config.min_chars_per_page < config.target_chars_per_page < config.max_chars_per_page
    assert config.max_chars_per_page == DEFAULT_MAX_CHARS_PER_PAGE
    assert config.enable_fallback_strategies is True


def test_page_budgets_must_be_ordered() -> None:
    with pytest.raises(ValueError, match="target_chars_per_page"):
        ParsingConfig(min_chars_per_page=500, target_chars_per_page=500, max_chars_per_page=900)

    with pytest.raises(ValueError, match="target_chars_per_page"):
        ParsingConfig(min_chars_per_page=100, target_chars_per_page=1000, max_chars_per_page=900)


def test_rejects_out_of_range_scores() -> None:
    with pytest.raises(ValueError, match="min_quality_score"):
        ParsingConfig(min_quality_score=1.5)

    with pytest.raises(ValueError, match="heading_confidence"):
        ParsingConfig(heading_confidence=-0.1)


def test_from_env_reads_prefixed_variables() -> None:
    config = ParsingConfig.from_env(
        {
            "FOLIO_MAX_CHARS_PER_PAGE": "2000",
            "FOLIO_TARGET_CHARS_PER_PAGE": "1500",
            "FOLIO_MIN_CHARS_PER_PAGE": "600",
            "FOLIO_ENABLE_PARALLEL_PROCESSING": "no",
            "FOLIO_SUPPORTED_ENCODINGS": "UTF-8, windows-1251",
            "FOLIO_PROCESSING_TIMEOUT_SECONDS": "12.5",
            "FOLIO_MIN_QUALITY_SCORE": "0.2",
            "UNRELATED": "ignored",
        }
    )

    assert config.max_chars_per_page == 2000
    assert config.target_chars_per_page == 1500
    assert config.min_chars_per_page == 600
    assert config.enable_parallel_processing is False
    assert config.supported_encodings == ("utf-8", "windows-1251")
    assert config.processing_timeout_seconds == 12.5
    assert config.min_quality_score == 0.2


def test_from_env_without_variables_uses_defaults() -> None:
    assert ParsingConfig.from_env({}) == ParsingConfig()


def test_from_env_rejects_bad_values() -> None:
    with pytest.raises(ValueError, match="FOLIO_ENABLE_FALLBACK_STRATEGIES"):
        ParsingConfig.from_env({"FOLIO_ENABLE_FALLBACK_STRATEGIES": "maybe"})

    with pytest.raises(ValueError, match="FOLIO_MAX_WORKERS"):
        ParsingConfig.from_env({"FOLIO_MAX_WORKERS": "0"})

    with pytest.raises(ValueError, match="FOLIO_MAX_RETRY_ATTEMPTS cannot be empty"):
        ParsingConfig.from_env({"FOLIO_MAX_RETRY_ATTEMPTS": "  "})
