"""Content extraction strategies and the extractor that chains them."""

from __future__ import annotations

from folio.config import ParsingConfig

from .base import ExtractionStrategy, StrategyOutcome
from .extractor import ContentExtractor, ExtractionResult
from .strategies import DirectoryTraversalStrategy, FallbackStrategy, ManifestStrategy, SpineStrategy


def build_default_strategies(config: ParsingConfig | None = None) -> list[ExtractionStrategy]:
    """Return the strategy chain in priority order."""

    encodings = (config or ParsingConfig()).supported_encodings
    return [
        SpineStrategy(encodings),
        ManifestStrategy(encodings),
        DirectoryTraversalStrategy(encodings),
        FallbackStrategy(encodings),
    ]


__all__ = [
    "ContentExtractor",
    "DirectoryTraversalStrategy",
    "ExtractionResult",
    "ExtractionStrategy",
    "FallbackStrategy",
    "ManifestStrategy",
    "SpineStrategy",
    "StrategyOutcome",
    "build_default_strategies",
]
