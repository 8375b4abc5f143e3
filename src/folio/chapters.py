"""Chapter reconstruction from navigation, heading and spine signals."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import logging
from typing import Protocol, Sequence

from folio.config import ParsingConfig
from folio.diagnostics import ParsingDiagnostics
from folio.models import Chapter, ChapterCandidate, ContentResource
from folio.normalization import normalize_whitespace, title_from_path
from folio.package import PackageDocument
from folio.pagination import page_offsets

logger = logging.getLogger(__name__)

STAGE = "chapters"


class ChapterSignalAnalyzer(Protocol):
    name: str

    def analyze(
        self,
        package: PackageDocument | None,
        resources: Sequence[ContentResource],
    ) -> tuple[list[ChapterCandidate], list[str]]:
        """Return candidates plus messages for entries that could not be resolved."""


def _resource_index(resources: Sequence[ContentResource]) -> dict[str, int]:
    index: dict[str, int] = {}
    for position, resource in enumerate(resources):
        index.setdefault(resource.path, position)
        index.setdefault(resource.path.lower(), position)
    return index


def resource_title(resource: ContentResource) -> str:
    if resource.headings:
        return resource.headings[0].title
    if resource.title:
        return resource.title
    return title_from_path(resource.path)


class NavigationAnalyzer:
    """Authored table of contents: EPUB3 nav document or EPUB2 NCX."""

    name = "navigation"

    def __init__(self, confidence: float) -> None:
        self._confidence = confidence

    def analyze(
        self,
        package: PackageDocument | None,
        resources: Sequence[ContentResource],
    ) -> tuple[list[ChapterCandidate], list[str]]:
        if package is None or package.navigation is None:
            return [], []

        lookup = _resource_index(resources)
        candidates: list[ChapterCandidate] = []
        unresolved: list[str] = []
        for point in package.navigation.flatten():
            if not point.href:
                continue
            path, _, fragment = point.href.partition("#")
            position = lookup.get(path, lookup.get(path.lower()))
            if position is None:
                unresolved.append(f"TOC entry {point.label!r} points at {point.href}, which is not a content resource")
                continue
            resource = resources[position]
            offset = resource.anchors.get(fragment, 0) if fragment else 0
            if fragment and fragment not in resource.anchors:
                logger.debug("Anchor %s not found in %s, using resource start", fragment, path)
            candidates.append(
                ChapterCandidate(
                    title=normalize_whitespace(point.label) or resource_title(resource),
                    resource_index=position,
                    offset=offset,
                    level=point.level,
                    confidence=self._confidence,
                    source=self.name,
                )
            )
        return candidates, unresolved


class HeadingAnalyzer:
    """Heading tags recovered by the HTML processor."""

    name = "heading"

    def __init__(self, confidence: float) -> None:
        self._confidence = confidence

    def analyze(
        self,
        package: PackageDocument | None,
        resources: Sequence[ContentResource],
    ) -> tuple[list[ChapterCandidate], list[str]]:
        candidates = [
            ChapterCandidate(
                title=heading.title,
                resource_index=position,
                offset=heading.offset,
                level=heading.level,
                confidence=self._confidence,
                source=self.name,
            )
            for position, resource in enumerate(resources)
            for heading in resource.headings
        ]
        return candidates, []


class SpineAnalyzer:
    """One candidate per content resource, at its start."""

    name = "spine"

    def __init__(self, confidence: float) -> None:
        self._confidence = confidence

    def analyze(
        self,
        package: PackageDocument | None,
        resources: Sequence[ContentResource],
    ) -> tuple[list[ChapterCandidate], list[str]]:
        candidates = [
            ChapterCandidate(
                title=resource_title(resource),
                resource_index=position,
                offset=0,
                level=1,
                confidence=self._confidence,
                source=self.name,
            )
            for position, resource in enumerate(resources)
            if resource.text
        ]
        return candidates, []


def assign_parents(chapters: list[Chapter]) -> None:
    """Set ``parent_id`` from levels: the nearest preceding chapter with a smaller level."""

    stack: list[Chapter] = []
    for chapter in chapters:
        while stack and stack[-1].level >= chapter.level:
            stack.pop()
        chapter.parent_id = stack[-1].chapter_id if stack else None
        stack.append(chapter)


def _toc_buckets(buckets: list[list[ChapterCandidate]], toc_source: str) -> list[list[ChapterCandidate]]:
    covered = {
        candidate.resource_index for bucket in buckets for candidate in bucket if candidate.source == toc_source
    }
    if not covered:
        return buckets

    kept: list[list[ChapterCandidate]] = []
    uncovered_seen: set[int] = set()
    for bucket in buckets:
        resource_index = bucket[0].resource_index
        if any(candidate.source == toc_source for candidate in bucket):
            kept.append(bucket)
        elif resource_index not in covered and resource_index not in uncovered_seen:
            uncovered_seen.add(resource_index)
            kept.append(bucket)
    return kept


def merge_candidates(
    candidates: Sequence[ChapterCandidate],
    resources: Sequence[ContentResource],
    *,
    tolerance: int,
    analyzer_order: Sequence[str] = ("navigation", "heading", "spine"),
    toc_source: str | None = None,
) -> list[Chapter]:
    """Deduplicate candidates that land on (nearly) the same position.

    Candidates are ordered by resource and offset; a candidate joins the current
    bucket when it is in the same resource and within ``tolerance`` characters
    of the bucket's first candidate. Each bucket yields one chapter positioned
    at the bucket start and titled by its most confident member; ties go to the
    analyzer listed first in ``analyzer_order``.

    With ``toc_source`` set and at least one candidate from that analyzer, the
    table of contents decides which chapters exist: other buckets survive only
    as the first bucket of a resource the table of contents never reaches.
    """

    rank = {name: position for position, name in enumerate(analyzer_order)}
    resolved = [candidate for candidate in candidates if candidate.resource_index is not None]
    ordered = sorted(
        resolved,
        key=lambda candidate: (candidate.resource_index, candidate.offset, rank.get(candidate.source, len(rank))),
    )

    buckets: list[list[ChapterCandidate]] = []
    for candidate in ordered:
        if buckets:
            head = buckets[-1][0]
            if head.resource_index == candidate.resource_index and candidate.offset - head.offset <= tolerance:
                buckets[-1].append(candidate)
                continue
        buckets.append([candidate])

    if toc_source is not None:
        buckets = _toc_buckets(buckets, toc_source)

    chapters: list[Chapter] = []
    for number, bucket in enumerate(buckets, start=1):
        winner = max(bucket, key=lambda candidate: (candidate.confidence, -rank.get(candidate.source, len(rank))))
        head = bucket[0]
        resource = resources[head.resource_index]
        chapters.append(
            Chapter(
                chapter_id=f"chapter-{number}",
                title=winner.title,
                level=max(1, winner.level),
                resource_id=resource.resource_id,
                resource_index=head.resource_index,
                offset=head.offset,
                source=winner.source,
                confidence=winner.confidence,
            )
        )
    assign_parents(chapters)
    return chapters


def build_default_analyzers(config: ParsingConfig) -> list[ChapterSignalAnalyzer]:
    return [
        NavigationAnalyzer(config.navigation_confidence),
        HeadingAnalyzer(config.heading_confidence),
        SpineAnalyzer(config.spine_confidence),
    ]


class ChapterAnalyzer:
    """Run every signal analyzer and merge their candidates into chapters."""

    def __init__(
        self,
        config: ParsingConfig | None = None,
        analyzers: Sequence[ChapterSignalAnalyzer] | None = None,
    ) -> None:
        self._config = config or ParsingConfig()
        self._analyzers = list(analyzers) if analyzers is not None else build_default_analyzers(self._config)

    def analyze(
        self,
        package: PackageDocument | None,
        resources: Sequence[ContentResource],
        diagnostics: ParsingDiagnostics | None = None,
    ) -> list[Chapter]:
        if self._config.enable_parallel_processing and len(self._analyzers) > 1:
            with ThreadPoolExecutor(max_workers=len(self._analyzers), thread_name_prefix="folio-chapters") as pool:
                futures = [pool.submit(analyzer.analyze, package, resources) for analyzer in self._analyzers]
                results = [future.result() for future in futures]
        else:
            results = [analyzer.analyze(package, resources) for analyzer in self._analyzers]

        candidates: list[ChapterCandidate] = []
        for analyzer, (found, unresolved) in zip(self._analyzers, results):
            candidates.extend(found)
            for message in unresolved:
                if diagnostics is not None:
                    diagnostics.warning(STAGE, message, hint="entry dropped")
            logger.debug("%s analyzer proposed %d candidate(s)", analyzer.name, len(found))

        chapters = merge_candidates(
            candidates,
            resources,
            tolerance=self._config.chapter_offset_tolerance,
            analyzer_order=[analyzer.name for analyzer in self._analyzers],
            toc_source=self._toc_source(),
        )
        logger.info("Merged %d candidate(s) into %d chapter(s)", len(candidates), len(chapters))
        return chapters

    def _toc_source(self) -> str | None:
        if any(analyzer.name == NavigationAnalyzer.name for analyzer in self._analyzers):
            return NavigationAnalyzer.name
        return None


def _local_page(resource: ContentResource, offset: int) -> int:
    local = 0
    for page in resource.pages:
        if page.char_start <= offset:
            local = page.local_index
        else:
            break
    return local


def assign_page_ranges(
    chapters: list[Chapter],
    resources: Sequence[ContentResource],
    diagnostics: ParsingDiagnostics | None = None,
) -> list[Chapter]:
    """Bind merged chapters to ordered, non-overlapping global page ranges.

    A chapter starts on the page holding its offset. When that page is already
    taken by the previous chapter it moves to the following page, provided the
    page still belongs to its resource; otherwise it is dropped. Each chapter
    ends right before the next one starts and the last one ends on the last
    page of the book. Chapters pointing into a resource without pages (an
    image-only cover, say) are dropped.
    """

    offsets = page_offsets(resources)
    total = sum(resource.page_count for resource in resources)

    def _drop(chapter: Chapter, reason: str) -> None:
        if diagnostics is not None:
            diagnostics.warning(STAGE, f"Chapter {chapter.title!r} dropped: {reason}")

    placed: list[Chapter] = []
    for chapter in chapters:
        resource = resources[chapter.resource_index]
        if not resource.pages:
            _drop(chapter, f"{resource.path} has no pages")
            continue
        first = offsets[chapter.resource_index]
        start = first + _local_page(resource, chapter.offset)
        last_own = first + resource.page_count - 1
        if placed and start <= placed[-1].start_page:
            start = placed[-1].start_page + 1
            if start > last_own:
                _drop(chapter, "shares its only page with the previous chapter")
                continue
        if start > total - 1:
            _drop(chapter, "starts after the last page")
            continue
        chapter.start_page = start
        placed.append(chapter)

    for current, following in zip(placed, placed[1:]):
        current.end_page = following.start_page - 1
    if placed:
        placed[-1].end_page = total - 1

    for number, chapter in enumerate(placed, start=1):
        chapter.chapter_id = f"chapter-{number}"
    assign_parents(placed)
    return placed
