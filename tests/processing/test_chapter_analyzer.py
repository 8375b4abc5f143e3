from __future__ import annotations

from folio.archive import Archive
from folio.chapters import ChapterAnalyzer, assign_page_ranges, merge_candidates
from folio.config import ParsingConfig
from folio.diagnostics import ParsingDiagnostics, Severity
from folio.extraction import ContentExtractor, build_default_strategies
from folio.html_processing import HtmlProcessor
from folio.models import Chapter, ChapterCandidate, ContentResource, Page
from folio.package import load_package
from folio.pagination import PaginationEngine


def _resource(path: str, page_starts: list[int] | None = None) -> ContentResource:
    resource = ContentResource(resource_id=path, path=path, media_type="application/xhtml+xml", raw=b"", text="x")
    starts = page_starts or []
    for index, start in enumerate(starts):
        end = starts[index + 1] if index + 1 < len(starts) else start + 100
        resource.pages.append(Page(text="x" * (end - start), local_index=index, char_start=start, char_end=end))
    return resource


def _candidate(title: str, resource_index: int | None, offset: int, *, level: int = 1, confidence: float, source: str) -> ChapterCandidate:
    return ChapterCandidate(
        title=title,
        resource_index=resource_index,
        offset=offset,
        level=level,
        confidence=confidence,
        source=source,
    )


def _chapter(title: str, resource_index: int, offset: int, resource_id: str) -> Chapter:
    return Chapter(
        chapter_id="tmp",
        title=title,
        level=1,
        resource_id=resource_id,
        resource_index=resource_index,
        offset=offset,
        source="heading",
        confidence=0.7,
    )


def _processed_resources(epub_bytes: bytes):
    config = ParsingConfig()
    diagnostics = ParsingDiagnostics()
    with Archive(epub_bytes) as archive:
        package = load_package(archive)
        extraction = ContentExtractor(build_default_strategies(config), config).extract(archive, package, diagnostics)
    processor = HtmlProcessor(config)
    for resource in extraction.resources:
        processor.process(resource)
    return package, extraction.resources


def test_nearby_candidates_merge_and_most_confident_title_wins() -> None:
    resources = [_resource("a.xhtml"), _resource("b.xhtml")]
    candidates = [
        _candidate("a", 0, 0, confidence=0.5, source="spine"),
        _candidate("CHAPTER ONE", 0, 12, confidence=0.7, source="heading"),
        _candidate("Chapter One", 0, 0, confidence=0.9, source="navigation"),
        _candidate("A later scene", 0, 500, level=2, confidence=0.7, source="heading"),
        _candidate("b", 1, 0, confidence=0.5, source="spine"),
    ]

    chapters = merge_candidates(candidates, resources, tolerance=64)

    assert [chapter.title for chapter in chapters] == ["Chapter One", "A later scene", "b"]
    assert [chapter.source for chapter in chapters] == ["navigation", "heading", "spine"]
    assert [chapter.chapter_id for chapter in chapters] == ["chapter-1", "chapter-2", "chapter-3"]
    assert chapters[0].offset == 0
    assert chapters[1].parent_id == "chapter-1"
    assert chapters[2].parent_id is None
    assert chapters[2].resource_id == "b.xhtml"


def test_equal_confidence_tie_goes_to_the_analyzer_listed_first() -> None:
    resources = [_resource("a.xhtml")]
    candidates = [
        _candidate("From headings", 0, 0, confidence=0.8, source="heading"),
        _candidate("From navigation", 0, 5, confidence=0.8, source="navigation"),
    ]

    chapters = merge_candidates(candidates, resources, tolerance=64, analyzer_order=("navigation", "heading"))

    assert len(chapters) == 1
    assert chapters[0].title == "From navigation"


def test_unresolved_candidates_are_ignored_and_tolerance_is_per_resource() -> None:
    resources = [_resource("a.xhtml"), _resource("b.xhtml")]
    candidates = [
        _candidate("Lost", None, 0, confidence=0.9, source="navigation"),
        _candidate("End of a", 0, 10, confidence=0.7, source="heading"),
        _candidate("Start of b", 1, 0, confidence=0.7, source="heading"),
    ]

    chapters = merge_candidates(candidates, resources, tolerance=64)

    assert [chapter.title for chapter in chapters] == ["End of a", "Start of b"]


def test_page_ranges_are_contiguous_and_cover_the_book() -> None:
    resources = [_resource("a.xhtml", [0, 100, 200]), _resource("b.xhtml", [0, 100])]
    chapters = [
        _chapter("One", 0, 0, "a.xhtml"),
        _chapter("Two", 0, 150, "a.xhtml"),
        _chapter("Three", 1, 0, "b.xhtml"),
    ]

    placed = assign_page_ranges(chapters, resources)

    assert [(chapter.start_page, chapter.end_page) for chapter in placed] == [(0, 0), (1, 2), (3, 4)]
    assert sum(chapter.page_count for chapter in placed) == 5
    assert [chapter.chapter_id for chapter in placed] == ["chapter-1", "chapter-2", "chapter-3"]


def test_chapter_sharing_a_page_moves_forward_within_its_resource() -> None:
    resources = [_resource("a.xhtml", [0, 100, 200])]
    chapters = [_chapter("One", 0, 0, "a.xhtml"), _chapter("Two", 0, 40, "a.xhtml")]

    placed = assign_page_ranges(chapters, resources)

    assert [(chapter.start_page, chapter.end_page) for chapter in placed] == [(0, 0), (1, 2)]


def test_chapter_without_a_page_of_its_own_is_dropped_with_a_warning() -> None:
    resources = [_resource("a.xhtml", [0, 100]), _resource("b.xhtml", [0])]
    chapters = [
        _chapter("One", 0, 0, "a.xhtml"),
        _chapter("Two", 1, 0, "b.xhtml"),
        _chapter("Two, continued", 1, 30, "b.xhtml"),
    ]
    diagnostics = ParsingDiagnostics()

    placed = assign_page_ranges(chapters, resources, diagnostics)

    assert [chapter.title for chapter in placed] == ["One", "Two"]
    assert [(chapter.start_page, chapter.end_page) for chapter in placed] == [(0, 1), (2, 2)]
    warnings = diagnostics.by_severity(Severity.WARNING)
    assert len(warnings) == 1
    assert "Two, continued" in warnings[0].message


def test_analyzer_merges_toc_headings_and_spine_for_each_chapter(sample_epub: bytes) -> None:
    package, resources = _processed_resources(sample_epub)
    diagnostics = ParsingDiagnostics()

    chapters = ChapterAnalyzer(ParsingConfig()).analyze(package, resources, diagnostics)

    assert [chapter.title for chapter in chapters] == [f"Chapter {number}" for number in range(1, 6)]
    assert all(chapter.source == "navigation" for chapter in chapters)
    assert [chapter.resource_index for chapter in chapters] == list(range(5))
    assert len(diagnostics) == 0

    engine = PaginationEngine()
    for resource in resources:
        engine.paginate(resource)
    placed = assign_page_ranges(chapters, resources, diagnostics)
    total = sum(resource.page_count for resource in resources)
    assert placed[0].start_page == 0
    assert placed[-1].end_page == total - 1
    assert sum(chapter.page_count for chapter in placed) == total


def test_toc_entry_pointing_outside_the_content_is_reported(make_epub) -> None:
    ncx = """<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <navMap>
    <navPoint id="np1" playOrder="1">
      <navLabel><text>Opening</text></navLabel>
      <content src="text/chapter1.xhtml"/>
    </navPoint>
    <navPoint id="np2" playOrder="2">
      <navLabel><text>Ghost</text></navLabel>
      <content src="text/missing.xhtml"/>
    </navPoint>
  </navMap>
</ncx>
"""
    package, resources = _processed_resources(make_epub(chapter_count=2, ncx=ncx))
    diagnostics = ParsingDiagnostics()

    chapters = ChapterAnalyzer(ParsingConfig(enable_parallel_processing=False)).analyze(package, resources, diagnostics)

    assert [chapter.title for chapter in chapters] == ["Opening", "Chapter 2"]
    assert chapters[1].source == "heading"
    warnings = diagnostics.by_severity(Severity.WARNING)
    assert len(warnings) == 1
    assert "Ghost" in warnings[0].message


def test_table_of_contents_decides_which_chapters_exist() -> None:
    resources = [_resource("a.xhtml"), _resource("b.xhtml"), _resource("appendix.xhtml")]
    candidates = [
        _candidate("One", 0, 0, confidence=0.9, source="navigation"),
        _candidate("ONE", 0, 0, confidence=0.7, source="heading"),
        _candidate("A scene", 0, 900, level=2, confidence=0.7, source="heading"),
        _candidate("Two", 1, 0, confidence=0.9, source="navigation"),
        _candidate("Another scene", 1, 400, level=2, confidence=0.7, source="heading"),
        _candidate("Appendix", 2, 0, confidence=0.7, source="heading"),
        _candidate("Appendix part", 2, 300, level=2, confidence=0.7, source="heading"),
        _candidate("appendix", 2, 0, confidence=0.5, source="spine"),
    ]

    chapters = merge_candidates(candidates, resources, tolerance=64, toc_source="navigation")

    assert [chapter.title for chapter in chapters] == ["One", "Two", "Appendix"]
    assert [chapter.resource_index for chapter in chapters] == [0, 1, 2]


def test_without_toc_candidates_every_bucket_is_kept() -> None:
    resources = [_resource("a.xhtml")]
    candidates = [
        _candidate("Start", 0, 0, confidence=0.7, source="heading"),
        _candidate("Middle", 0, 500, level=2, confidence=0.7, source="heading"),
    ]

    chapters = merge_candidates(candidates, resources, tolerance=64, toc_source="navigation")

    assert [chapter.title for chapter in chapters] == ["Start", "Middle"]


def test_chapter_in_a_resource_without_pages_does_not_take_the_next_page() -> None:
    resources = [_resource("cover.xhtml"), _resource("a.xhtml", [0]), _resource("b.xhtml", [0])]
    chapters = [
        _chapter("Cover", 0, 0, "cover.xhtml"),
        _chapter("One", 1, 0, "a.xhtml"),
        _chapter("Two", 2, 0, "b.xhtml"),
    ]
    diagnostics = ParsingDiagnostics()

    placed = assign_page_ranges(chapters, resources, diagnostics)

    assert [(chapter.title, chapter.start_page, chapter.end_page) for chapter in placed] == [
        ("One", 0, 0),
        ("Two", 1, 1),
    ]
    assert "'Cover' dropped" in diagnostics.by_severity(Severity.WARNING)[0].message
