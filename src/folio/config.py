"""Runtime configuration for the EPUB parsing pipeline."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Mapping


DEFAULT_MAX_FILE_SIZE_BYTES = 50 * 1024 * 1024
DEFAULT_SUPPORTED_ENCODINGS = ("utf-8", "utf-16", "iso-8859-1")
DEFAULT_MAX_RETRY_ATTEMPTS = 3
DEFAULT_MIN_QUALITY_SCORE = 0.1
DEFAULT_TARGET_CHARS_PER_PAGE = 1200
DEFAULT_MIN_CHARS_PER_PAGE = 800
DEFAULT_MAX_CHARS_PER_PAGE = 1800
DEFAULT_PROCESSING_TIMEOUT_SECONDS = 300.0
DEFAULT_MAX_MEMORY_USAGE_BYTES = 100 * 1024 * 1024
DEFAULT_MAX_WORKERS = 8
DEFAULT_MIN_SPINE_FRACTION = 0.5
DEFAULT_MIN_EXTRACTED_CHARS = 1
DEFAULT_CHAPTER_OFFSET_TOLERANCE = 64
DEFAULT_NAVIGATION_CONFIDENCE = 0.9
DEFAULT_HEADING_CONFIDENCE = 0.7
DEFAULT_SPINE_CONFIDENCE = 0.5

_ENV_PREFIX = "FOLIO_"
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_positive_int(*, name: str, raw_value: str, minimum: int = 1) -> int:
    value = int(raw_value)
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


def _parse_positive_float(*, name: str, raw_value: str, minimum: float = 0.001) -> float:
    value = float(raw_value)
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


def _parse_fraction(*, name: str, raw_value: str) -> float:
    value = float(raw_value)
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1]")
    return value


def _parse_bool(*, name: str, raw_value: str) -> bool:
    lowered = raw_value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean flag (true/false)")


@dataclass(frozen=True, slots=True)
class ParsingConfig:
    """Validated knobs for validation, extraction, cleanup and pagination."""

    max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES
    supported_encodings: tuple[str, ...] = DEFAULT_SUPPORTED_ENCODINGS
    enable_fallback_strategies: bool = True
    max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS
    enable_parallel_processing: bool = True
    preserve_formatting: bool = True
    aggressive_cleanup: bool = False
    min_quality_score: float = DEFAULT_MIN_QUALITY_SCORE
    target_chars_per_page: int = DEFAULT_TARGET_CHARS_PER_PAGE
    min_chars_per_page: int = DEFAULT_MIN_CHARS_PER_PAGE
    max_chars_per_page: int = DEFAULT_MAX_CHARS_PER_PAGE
    preserve_paragraphs: bool = True
    processing_timeout_seconds: float = DEFAULT_PROCESSING_TIMEOUT_SECONDS
    max_memory_usage_bytes: int = DEFAULT_MAX_MEMORY_USAGE_BYTES
    max_workers: int = DEFAULT_MAX_WORKERS
    min_spine_fraction: float = DEFAULT_MIN_SPINE_FRACTION
    min_extracted_chars: int = DEFAULT_MIN_EXTRACTED_CHARS
    chapter_offset_tolerance: int = DEFAULT_CHAPTER_OFFSET_TOLERANCE
    navigation_confidence: float = DEFAULT_NAVIGATION_CONFIDENCE
    heading_confidence: float = DEFAULT_HEADING_CONFIDENCE
    spine_confidence: float = DEFAULT_SPINE_CONFIDENCE
    detect_language: bool = True

    def __post_init__(self) -> None:
        if self.max_file_size_bytes <= 0:
            raise ValueError("max_file_size_bytes must be positive")
        if not self.supported_encodings:
            raise ValueError("supported_encodings cannot be empty")
        if self.max_retry_attempts < 1:
            raise ValueError("max_retry_attempts must be >= 1")
        if not 0.0 <= self.min_quality_score <= 1.0:
            raise ValueError("min_quality_score must be within [0, 1]")
        if min(self.min_chars_per_page, self.target_chars_per_page, self.max_chars_per_page) <= 0:
            raise ValueError("chars-per-page budgets must be positive")
        if not self.min_chars_per_page < self.target_chars_per_page < self.max_chars_per_page:
            raise ValueError("target_chars_per_page must lie strictly between min_chars_per_page and max_chars_per_page")
        if self.processing_timeout_seconds <= 0:
            raise ValueError("processing_timeout_seconds must be positive")
        if self.max_memory_usage_bytes <= 0:
            raise ValueError("max_memory_usage_bytes must be positive")
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if not 0.0 <= self.min_spine_fraction <= 1.0:
            raise ValueError("min_spine_fraction must be within [0, 1]")
        if self.min_extracted_chars < 0:
            raise ValueError("min_extracted_chars cannot be negative")
        if self.chapter_offset_tolerance < 0:
            raise ValueError("chapter_offset_tolerance cannot be negative")
        for name in ("navigation_confidence", "heading_confidence", "spine_confidence"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1]")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ParsingConfig":
        """Build a config from ``FOLIO_*`` variables, keeping defaults for unset ones."""

        source: Mapping[str, str] = os.environ if environ is None else environ
        overrides: dict[str, object] = {}

        def _raw(field_name: str) -> str | None:
            env_name = _ENV_PREFIX + field_name.upper()
            raw_value = source.get(env_name)
            if raw_value is None:
                return None
            raw_value = raw_value.strip()
            if not raw_value:
                raise ValueError(f"{env_name} cannot be empty")
            return raw_value

        for field_name in (
            "max_file_size_bytes",
            "target_chars_per_page",
            "min_chars_per_page",
            "max_chars_per_page",
            "max_memory_usage_bytes",
            "max_workers",
            "max_retry_attempts",
        ):
            raw_value = _raw(field_name)
            if raw_value is not None:
                overrides[field_name] = _parse_positive_int(name=_ENV_PREFIX + field_name.upper(), raw_value=raw_value)

        for field_name in ("min_extracted_chars", "chapter_offset_tolerance"):
            raw_value = _raw(field_name)
            if raw_value is not None:
                overrides[field_name] = _parse_positive_int(
                    name=_ENV_PREFIX + field_name.upper(),
                    raw_value=raw_value,
                    minimum=0,
                )

        for field_name in (
            "min_quality_score",
            "min_spine_fraction",
            "navigation_confidence",
            "heading_confidence",
            "spine_confidence",
        ):
            raw_value = _raw(field_name)
            if raw_value is not None:
                overrides[field_name] = _parse_fraction(name=_ENV_PREFIX + field_name.upper(), raw_value=raw_value)

        for field_name in (
            "enable_fallback_strategies",
            "enable_parallel_processing",
            "preserve_formatting",
            "aggressive_cleanup",
            "preserve_paragraphs",
            "detect_language",
        ):
            raw_value = _raw(field_name)
            if raw_value is not None:
                overrides[field_name] = _parse_bool(name=_ENV_PREFIX + field_name.upper(), raw_value=raw_value)

        timeout_raw = _raw("processing_timeout_seconds")
        if timeout_raw is not None:
            overrides["processing_timeout_seconds"] = _parse_positive_float(
                name="FOLIO_PROCESSING_TIMEOUT_SECONDS",
                raw_value=timeout_raw,
                minimum=0.1,
            )

        encodings_raw = _raw("supported_encodings")
        if encodings_raw is not None:
            encodings = tuple(part.strip().lower() for part in encodings_raw.split(",") if part.strip())
            if not encodings:
                raise ValueError("FOLIO_SUPPORTED_ENCODINGS must list at least one encoding")
            overrides["supported_encodings"] = encodings

        return cls(**overrides)
