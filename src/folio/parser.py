"""Parse entry point: sequences validation, extraction, processing and pagination."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
import logging
import os
from pathlib import Path
import time
from typing import Callable, Sequence

from folio.archive import Archive, ArchiveError
from folio.chapters import ChapterAnalyzer, assign_page_ranges
from folio.config import ParsingConfig
from folio.diagnostics import ParsingDiagnostics
from folio.extraction import ContentExtractor, ExtractionStrategy, build_default_strategies
from folio.html_processing import HtmlProcessor
from folio.identity import ParseCache, book_fingerprint
from folio.language_detection import detect_language, normalize_language_tag
from folio.models import BookMetadata, Chapter, ContentResource, DocumentModel, ParseResult
from folio.normalization import title_from_path
from folio.package import PackageDocument, PackageError, load_package
from folio.pagination import PaginationEngine, assign_global_indices
from folio.validation import EpubValidator

logger = logging.getLogger(__name__)

STAGE = "parser"
_LANGUAGE_SAMPLE_CHARS = 3000


def _fallback_title(filename: str | None) -> str:
    return title_from_path(filename) if filename else "Untitled"


class BookParser:
    """Turn EPUB bytes into a paginated ``DocumentModel``; never raises for bad input."""

    def __init__(
        self,
        config: ParsingConfig | None = None,
        *,
        cache: ParseCache | None = None,
        strategies: Sequence[ExtractionStrategy] | None = None,
        language_detector: Callable[[str], str | None] = detect_language,
    ) -> None:
        self._config = config or ParsingConfig()
        self._cache = cache
        self._validator = EpubValidator(self._config)
        self._extractor = ContentExtractor(strategies or build_default_strategies(self._config), self._config)
        self._processor = HtmlProcessor(self._config)
        self._chapters = ChapterAnalyzer(self._config)
        self._paginator = PaginationEngine(self._config)
        self._detect_language = language_detector
        self._workers = max(1, min(os.cpu_count() or 1, self._config.max_workers))

    @property
    def config(self) -> ParsingConfig:
        return self._config

    def parse_file(self, path: str | Path) -> ParseResult:
        source = Path(path)
        try:
            data = source.read_bytes()
        except OSError as exc:
            started = time.monotonic()
            diagnostics = ParsingDiagnostics()
            diagnostics.fatal("input", f"Failed to read source file: {exc}")
            return self._fallback(book_fingerprint(b""), source.name, diagnostics, started)
        return self.parse(data, filename=source.name)

    def parse(self, data: bytes, filename: str | None = None) -> ParseResult:
        started = time.monotonic()
        book_id = book_fingerprint(data)
        if self._cache is not None:
            cached = self._cache.get(book_id, self._config)
            if cached is not None:
                return cached

        diagnostics = ParsingDiagnostics()
        try:
            result = self._run(data, filename, book_id, diagnostics, started)
        except Exception as exc:  # pragma: no cover - last-resort guard
            logger.exception("Unexpected failure while parsing %s", filename or book_id)
            diagnostics.fatal(STAGE, f"Unexpected failure: {exc}")
            result = self._fallback(book_id, filename, diagnostics, started)

        logger.info("%s in %.2fs", result.summary, result.elapsed_seconds)
        if result.success and self._cache is not None:
            self._cache.put(book_id, self._config, result)
        return result

    def _fallback(
        self,
        book_id: str,
        filename: str | None,
        diagnostics: ParsingDiagnostics,
        started: float,
        strategies_used: list[str] | None = None,
    ) -> ParseResult:
        document = DocumentModel(
            book_id=book_id,
            metadata=BookMetadata(title=_fallback_title(filename)),
            diagnostics=diagnostics,
        )
        return ParseResult(
            success=False,
            document=document,
            elapsed_seconds=time.monotonic() - started,
            strategies_used=strategies_used or [],
        )

    def _run(
        self,
        data: bytes,
        filename: str | None,
        book_id: str,
        diagnostics: ParsingDiagnostics,
        started: float,
    ) -> ParseResult:
        deadline = started + self._config.processing_timeout_seconds

        validation = self._validator.validate(data, filename)
        diagnostics.extend(validation.findings)
        if not validation.can_continue:
            return self._fallback(book_id, filename, diagnostics, started)

        try:
            archive = Archive(data, max_retry_attempts=self._config.max_retry_attempts)
        except ArchiveError as exc:
            diagnostics.fatal("archive", f"Archive could not be opened: {exc}")
            return self._fallback(book_id, filename, diagnostics, started)

        with archive:
            package = self._load_package(archive, diagnostics)
            extraction = self._extractor.extract(archive, package, diagnostics)

        if not extraction.resources:
            diagnostics.fatal("extraction", "No content could be extracted by any strategy")
            return self._fallback(book_id, filename, diagnostics, started, extraction.attempted)

        resources, timed_out = self._map_resources(
            self._process_resource,
            extraction.resources,
            deadline,
            diagnostics,
            stage="html",
        )
        if timed_out:
            diagnostics.fatal(
                STAGE,
                f"Processing timed out after {self._config.processing_timeout_seconds:g}s; "
                f"kept {len(resources)} of {len(extraction.resources)} resource(s)",
            )
        if not resources:
            return self._fallback(book_id, filename, diagnostics, started, extraction.attempted)

        chapters = self._chapters.analyze(package, resources, diagnostics)

        # once the deadline has passed, the completed resources are paginated without a limit
        paginated, pagination_timed_out = self._map_resources(
            self._paginate_resource,
            resources,
            None if timed_out else deadline,
            diagnostics,
            stage="pagination",
        )
        if pagination_timed_out:
            diagnostics.fatal(
                STAGE,
                f"Pagination timed out; kept {len(paginated)} of {len(resources)} resource(s)",
            )
        if len(paginated) != len(resources):
            chapters = _reindex_chapters(chapters, paginated)
            resources = paginated

        total_pages = assign_global_indices(resources)
        if total_pages == 0:
            diagnostics.fatal("pagination", "No readable text was found in any content resource")
            return self._fallback(book_id, filename, diagnostics, started, extraction.attempted)
        chapters = assign_page_ranges(chapters, resources, diagnostics)

        document = DocumentModel(
            book_id=book_id,
            metadata=self._build_metadata(package, resources, filename),
            resources=resources,
            chapters=chapters,
            diagnostics=diagnostics,
        )
        return ParseResult(
            success=True,
            document=document,
            elapsed_seconds=time.monotonic() - started,
            strategies_used=extraction.attempted,
        )

    def _load_package(self, archive: Archive, diagnostics: ParsingDiagnostics) -> PackageDocument | None:
        try:
            package = load_package(archive)
        except PackageError as exc:
            diagnostics.error("package", str(exc), hint="falling back to archive-level extraction")
            return None
        for issue in package.issues:
            diagnostics.warning("package", issue)
        return package

    def _process_resource(self, resource: ContentResource, buffer: ParsingDiagnostics) -> None:
        self._processor.process(resource, buffer)

    def _paginate_resource(self, resource: ContentResource, buffer: ParsingDiagnostics) -> None:
        self._paginator.paginate(resource)

    def _map_resources(
        self,
        work: Callable[[ContentResource, ParsingDiagnostics], object],
        resources: list[ContentResource],
        deadline: float | None,
        diagnostics: ParsingDiagnostics,
        *,
        stage: str,
    ) -> tuple[list[ContentResource], bool]:
        """Apply ``work`` to each resource, keeping completed ones in their original order.

        Each call records into its own buffer; only buffers of completed calls are
        merged into ``diagnostics``, so workers abandoned at the deadline never
        touch the returned model.
        """

        if not self._config.enable_parallel_processing or self._workers == 1 or len(resources) == 1:
            return self._map_sequential(work, resources, deadline, diagnostics, stage=stage)

        buffers = [ParsingDiagnostics() for _ in resources]
        pool = ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix=f"folio-{stage}")
        try:
            futures: list[Future] = [
                pool.submit(work, resource, buffer) for resource, buffer in zip(resources, buffers)
            ]
            timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
            done, not_done = wait(futures, timeout=timeout)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        completed: list[ContentResource] = []
        for resource, future, buffer in zip(resources, futures, buffers):
            if future not in done:
                continue
            error = future.exception()
            if error is not None:
                diagnostics.error(stage, f"{resource.path} skipped: {error}")
                continue
            diagnostics.merge(buffer)
            completed.append(resource)
        return completed, bool(not_done)

    def _map_sequential(
        self,
        work: Callable[[ContentResource, ParsingDiagnostics], object],
        resources: list[ContentResource],
        deadline: float | None,
        diagnostics: ParsingDiagnostics,
        *,
        stage: str,
    ) -> tuple[list[ContentResource], bool]:
        completed: list[ContentResource] = []
        for resource in resources:
            if deadline is not None and time.monotonic() >= deadline:
                return completed, True
            buffer = ParsingDiagnostics()
            try:
                work(resource, buffer)
            except Exception as exc:
                logger.exception("%s failed for %s", stage, resource.path)
                diagnostics.error(stage, f"{resource.path} skipped: {exc}")
                continue
            diagnostics.merge(buffer)
            completed.append(resource)
        return completed, False

    def _build_metadata(
        self,
        package: PackageDocument | None,
        resources: list[ContentResource],
        filename: str | None,
    ) -> BookMetadata:
        source = package.metadata if package is not None else None
        title = source.title if source is not None and source.title else _fallback_title(filename)
        language = normalize_language_tag(source.language) if source is not None else None
        if language is None and self._config.detect_language:
            sample = "\n".join(resource.text or "" for resource in resources)[:_LANGUAGE_SAMPLE_CHARS]
            language = self._detect_language(sample)
        return BookMetadata(
            title=title,
            author=source.author if source is not None else None,
            language=language,
            publisher=source.publisher if source is not None else None,
            identifier=source.identifier if source is not None else None,
            description=source.description if source is not None else None,
            epub_version=package.epub_version if package is not None else None,
        )


def _reindex_chapters(chapters: list[Chapter], resources: list[ContentResource]) -> list[Chapter]:
    positions = {resource.resource_id: index for index, resource in enumerate(resources)}
    kept: list[Chapter] = []
    for chapter in chapters:
        position = positions.get(chapter.resource_id)
        if position is None:
            continue
        chapter.resource_index = position
        kept.append(chapter)
    return kept
