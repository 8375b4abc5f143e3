from __future__ import annotations

from folio.config import ParsingConfig
from folio.models import ContentResource
from folio.pagination import PaginationEngine, assign_global_indices, page_offsets

SENTENCE = "The quick brown fox jumps over the lazy dog."


def _paragraph(number: int) -> str:
    return f"Paragraph {number:02d}. " + " ".join([SENTENCE] * 6)


def _resource(text: str, path: str = "OEBPS/text/a.xhtml") -> ContentResource:
    return ContentResource(resource_id=path, path=path, media_type="application/xhtml+xml", raw=b"", text=text)


def _assert_exact_spans(text: str, spans: list[tuple[int, int]]) -> None:
    previous_end = 0
    for start, end in spans:
        assert previous_end <= start < end <= len(text)
        previous_end = end


def test_long_text_without_punctuation_is_cut_into_max_sized_pages() -> None:
    config = ParsingConfig(min_chars_per_page=1000, target_chars_per_page=1500, max_chars_per_page=2000)
    text = ("abcd " * 10000).strip()

    spans = PaginationEngine(config).split(text)

    assert len(spans) == 25
    assert all(end - start <= 2000 for start, end in spans)
    assert sum(end - start for start, end in spans) == len(text)
    _assert_exact_spans(text, spans)


def test_short_text_becomes_a_single_page() -> None:
    text = "  A short note that fits on one page.  "

    spans = PaginationEngine().split(text)

    assert spans == [(2, len(text) - 2)]


def test_blank_text_has_no_pages() -> None:
    engine = PaginationEngine()

    assert engine.split("") == []
    assert engine.split(" \n\n \t") == []


def test_pages_respect_budgets_and_break_between_paragraphs() -> None:
    text = "\n\n".join(_paragraph(number) for number in range(1, 31))
    engine = PaginationEngine()

    pages = engine.paginate(_resource(text))

    assert len(pages) > 1
    assert all(len(page.text) <= engine.max_chars for page in pages)
    assert all(len(page.text) >= engine.min_chars for page in pages[:-1])
    assert all(page.text.startswith("Paragraph") for page in pages)
    assert all(page.text.endswith("dog.") for page in pages)
    for page in pages:
        assert text[page.char_start : page.char_end] == page.text
    assert [page.local_index for page in pages] == list(range(len(pages)))
    _assert_exact_spans(text, [(page.char_start, page.char_end) for page in pages])


def test_underfull_page_is_topped_up_with_sentences_from_the_next_paragraph() -> None:
    opening = " ".join(["Short opening paragraph."] * 20)
    long_paragraph = " ".join([SENTENCE] * 38)
    text = f"{opening}\n\n{long_paragraph}"
    engine = PaginationEngine()

    pages = engine.paginate(_resource(text))

    assert len(pages) == 2
    assert pages[0].text.startswith("Short opening paragraph.")
    assert pages[0].text.endswith("dog.")
    assert engine.min_chars <= len(pages[0].text) <= engine.max_chars
    assert pages[1].text.startswith("The quick brown fox")
    assert pages[1].char_end == len(text)


def test_sentence_mode_ignores_paragraph_boundaries() -> None:
    config = ParsingConfig(preserve_paragraphs=False)
    text = "\n\n".join(_paragraph(number) for number in range(1, 11))

    pages = PaginationEngine(config).paginate(_resource(text))

    assert len(pages) > 1
    assert all(len(page.text) <= config.max_chars_per_page for page in pages)
    assert all(page.text.endswith(".") for page in pages)


def test_pagination_is_deterministic_and_repeatable() -> None:
    text = "\n\n".join(_paragraph(number) for number in range(1, 21))
    engine = PaginationEngine()
    resource = _resource(text)

    first = [page.text for page in engine.paginate(resource)]
    second = [page.text for page in engine.paginate(resource)]

    assert first == second
    assert engine.split(text) == PaginationEngine(ParsingConfig()).split(text)


def test_global_indices_run_across_resources() -> None:
    engine = PaginationEngine()
    resources = [
        _resource("\n\n".join(_paragraph(number) for number in range(1, 11)), "a.xhtml"),
        _resource("", "empty.xhtml"),
        _resource("Closing words.", "b.xhtml"),
    ]
    for resource in resources:
        engine.paginate(resource)

    total = assign_global_indices(resources)

    assert total == sum(resource.page_count for resource in resources)
    assert resources[1].pages == []
    indices = [page.global_index for resource in resources for page in resource.pages]
    assert indices == list(range(total))
    assert page_offsets(resources) == [0, resources[0].page_count, resources[0].page_count]


def test_short_page_before_an_oversized_sentence_is_filled_from_it() -> None:
    config = ParsingConfig(min_chars_per_page=800, target_chars_per_page=1200, max_chars_per_page=2000)
    text = "a" * 100 + "\n\n" + "b" * 5000

    spans = PaginationEngine(config).split(text)

    assert [end - start for start, end in spans] == [1200, 2000, 1902]
    assert spans[0] == (0, 1200)
    assert spans[-1][1] == len(text)
    _assert_exact_spans(text, spans)
