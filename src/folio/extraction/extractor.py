"""Run extraction strategies in priority order until one is usable."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Sequence

from folio.archive import Archive
from folio.config import ParsingConfig
from folio.diagnostics import ParsingDiagnostics
from folio.extraction.base import ExtractionStrategy, StrategyOutcome
from folio.models import ContentResource
from folio.package import PackageDocument

logger = logging.getLogger(__name__)

STAGE = "extraction"


@dataclass(slots=True)
class ExtractionResult:
    resources: list[ContentResource]
    strategy: str | None
    attempted: list[str] = field(default_factory=list)


class ContentExtractor:
    """Turn an opened archive into an ordered list of raw content resources."""

    def __init__(
        self,
        strategies: Sequence[ExtractionStrategy],
        config: ParsingConfig | None = None,
    ) -> None:
        if not strategies:
            raise ValueError("At least one extraction strategy is required")
        self._strategies = list(strategies)
        self._config = config or ParsingConfig()

    def is_valid(self, outcome: StrategyOutcome) -> bool:
        if outcome.is_empty:
            return False
        if outcome.char_count < self._config.min_extracted_chars:
            return False
        if outcome.coverage is not None and outcome.coverage < self._config.min_spine_fraction:
            return False
        return True

    def extract(
        self,
        archive: Archive,
        package: PackageDocument | None,
        diagnostics: ParsingDiagnostics,
    ) -> ExtractionResult:
        strategies = self._strategies if self._config.enable_fallback_strategies else self._strategies[:1]
        attempted: list[str] = []
        best: StrategyOutcome | None = None

        for strategy in strategies:
            attempted.append(strategy.name)
            try:
                outcome = strategy.extract(archive, package)
            except Exception as exc:
                logger.exception("Extraction strategy %s raised", strategy.name)
                diagnostics.error(STAGE, f"Strategy {strategy.name!r} failed: {exc}")
                continue

            for finding in outcome.findings:
                diagnostics.warning(STAGE, f"{strategy.name}: {finding}")

            if self.is_valid(outcome):
                logger.info(
                    "Extracted %d resource(s) with %s strategy (%d text chars)",
                    len(outcome.resources),
                    strategy.name,
                    outcome.char_count,
                )
                return ExtractionResult(resources=outcome.resources, strategy=strategy.name, attempted=attempted)

            diagnostics.error(
                STAGE,
                f"Strategy {strategy.name!r} produced no usable content",
                hint=self._invalid_hint(outcome),
            )
            if not outcome.is_empty and (best is None or outcome.char_count > best.char_count):
                best = outcome

        if best is not None:
            diagnostics.warning(STAGE, f"Using best partial result from {best.strategy!r} strategy")
            return ExtractionResult(resources=best.resources, strategy=best.strategy, attempted=attempted)
        return ExtractionResult(resources=[], strategy=None, attempted=attempted)

    def _invalid_hint(self, outcome: StrategyOutcome) -> str:
        if outcome.is_empty:
            return "no resources located"
        if outcome.coverage is not None and outcome.coverage < self._config.min_spine_fraction:
            return f"resolved {outcome.coverage:.0%} of manifest content documents"
        return f"only {outcome.char_count} text character(s) extracted"
