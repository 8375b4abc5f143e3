"""Canonical data structures produced and consumed by the parsing pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field

from folio.diagnostics import Diagnostic, ParsingDiagnostics, Severity


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of the archive and EPUB conformance checks."""

    can_continue: bool
    findings: tuple[Diagnostic, ...] = ()
    detected_encoding: str | None = None
    container_ok: bool = False
    has_html_manifest_entry: bool = False

    @property
    def has_fatal(self) -> bool:
        return any(finding.severity is Severity.FATAL for finding in self.findings)


@dataclass(slots=True)
class Page:
    """A span of a resource's normalized text shown as one reader page."""

    text: str
    local_index: int
    char_start: int
    char_end: int
    global_index: int | None = None


@dataclass(frozen=True, slots=True)
class HeadingMark:
    """A heading recovered from markup, located in the normalized text."""

    level: int
    title: str
    offset: int


@dataclass(slots=True)
class ContentResource:
    """One HTML/XHTML content unit plus everything derived from it."""

    resource_id: str
    path: str
    media_type: str
    raw: bytes
    strategy: str = ""
    linear: bool = True
    encoding: str | None = None
    title: str | None = None
    text: str | None = None
    quality_score: float = 0.0
    degraded: bool = False
    headings: list[HeadingMark] = field(default_factory=list)
    anchors: dict[str, int] = field(default_factory=dict)
    pages: list[Page] = field(default_factory=list)

    @property
    def is_processed(self) -> bool:
        return self.text is not None

    @property
    def page_count(self) -> int:
        return len(self.pages)


@dataclass(frozen=True, slots=True)
class ChapterCandidate:
    """A chapter start proposed by one analyzer before merging."""

    title: str
    resource_index: int | None
    offset: int
    level: int
    confidence: float
    source: str


@dataclass(slots=True)
class Chapter:
    """A merged chapter; page range is filled in after pagination."""

    chapter_id: str
    title: str
    level: int
    resource_id: str
    resource_index: int
    offset: int
    source: str
    confidence: float
    parent_id: str | None = None
    start_page: int = -1
    end_page: int = -1

    @property
    def page_count(self) -> int:
        if self.start_page < 0 or self.end_page < self.start_page:
            return 0
        return self.end_page - self.start_page + 1

    def contains_page(self, index: int) -> bool:
        return self.start_page <= index <= self.end_page

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.chapter_id,
            "title": self.title,
            "level": self.level,
            "resource_id": self.resource_id,
            "source": self.source,
            "parent_id": self.parent_id,
            "start_page": self.start_page,
            "end_page": self.end_page,
        }


@dataclass(slots=True)
class BookMetadata:
    """Normalized descriptive metadata for the book."""

    title: str
    author: str | None = None
    language: str | None = None
    publisher: str | None = None
    identifier: str | None = None
    description: str | None = None
    epub_version: str | None = None


@dataclass(slots=True)
class DocumentModel:
    """Final pipeline output; the caller owns it once returned."""

    book_id: str
    metadata: BookMetadata
    resources: list[ContentResource] = field(default_factory=list)
    chapters: list[Chapter] = field(default_factory=list)
    diagnostics: ParsingDiagnostics = field(default_factory=ParsingDiagnostics)

    @property
    def total_pages(self) -> int:
        return sum(resource.page_count for resource in self.resources)

    def pages(self) -> list[str]:
        return [page.text for resource in self.resources for page in resource.pages]

    def page(self, index: int) -> str | None:
        """Return page text by absolute index, or None when out of range."""

        if index < 0:
            return None
        for resource in self.resources:
            if index < resource.page_count:
                return resource.pages[index].text
            index -= resource.page_count
        return None

    def chapter_for_page(self, index: int) -> Chapter | None:
        for chapter in self.chapters:
            if chapter.contains_page(index):
                return chapter
        return None

    def is_complete(self) -> bool:
        """True when every resource was processed and paginated."""

        if not self.resources or self.total_pages == 0:
            return False
        for resource in self.resources:
            if not resource.is_processed:
                return False
            if resource.text and not resource.pages:
                return False
        return all(chapter.page_count > 0 for chapter in self.chapters)


@dataclass(slots=True)
class ParseResult:
    """Success indicator plus the (possibly minimal) document model."""

    success: bool
    document: DocumentModel
    elapsed_seconds: float = 0.0
    strategies_used: list[str] = field(default_factory=list)

    @property
    def diagnostics(self) -> list[Diagnostic]:
        return self.document.diagnostics.entries

    @property
    def summary(self) -> str:
        status = "parsed" if self.success else "failed"
        document = self.document
        return (
            f"{status} '{document.metadata.title}': {len(document.resources)} resources, "
            f"{document.total_pages} pages, {len(document.chapters)} chapters; "
            f"{document.diagnostics.summary()}"
        )
