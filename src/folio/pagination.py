"""Content-based pagination of normalized resource text."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import logging
import re
from typing import Iterable

from razdel import sentenize

from folio.config import ParsingConfig
from folio.models import ContentResource, Page

logger = logging.getLogger(__name__)

_PARAGRAPH_BREAK_RE = re.compile(r"\n[ \t]*\n\s*")


@dataclass(slots=True)
class _Unit:
    start: int
    end: int
    is_paragraph: bool = False
    is_chunk: bool = False

    @property
    def length(self) -> int:
        return self.end - self.start


def _trimmed(text: str, start: int, end: int) -> tuple[int, int] | None:
    raw = text[start:end]
    stripped = raw.strip()
    if not stripped:
        return None
    left_trim = len(raw) - len(raw.lstrip())
    right_trim = len(raw) - len(raw.rstrip())
    return start + left_trim, end - right_trim


def _paragraph_spans(text: str) -> list[tuple[int, int]]:
    spans: list[tuple[int, int]] = []
    cursor = 0
    for match in _PARAGRAPH_BREAK_RE.finditer(text):
        span = _trimmed(text, cursor, match.start())
        if span is not None:
            spans.append(span)
        cursor = match.end()
    span = _trimmed(text, cursor, len(text))
    if span is not None:
        spans.append(span)
    return spans


def _sentence_spans(text: str, start: int, end: int) -> list[tuple[int, int]]:
    segment = text[start:end]
    spans: list[tuple[int, int]] = []
    for match in sentenize(segment):
        span = _trimmed(segment, match.start, match.stop)
        if span is not None:
            spans.append((start + span[0], start + span[1]))
    if spans:
        return spans
    span = _trimmed(text, start, end)
    return [span] if span is not None else []


class PaginationEngine:
    """Split text into pages under character budgets, preferring larger semantic breaks."""

    def __init__(self, config: ParsingConfig | None = None) -> None:
        self._config = config or ParsingConfig()

    @property
    def min_chars(self) -> int:
        return self._config.min_chars_per_page

    @property
    def target_chars(self) -> int:
        return self._config.target_chars_per_page

    @property
    def max_chars(self) -> int:
        return self._config.max_chars_per_page

    def _hard_chunks(self, start: int, end: int) -> list[_Unit]:
        return [
            _Unit(offset, min(offset + self.max_chars, end), is_chunk=True)
            for offset in range(start, end, self.max_chars)
        ]

    def _sentence_units(self, text: str, start: int, end: int) -> list[_Unit]:
        units: list[_Unit] = []
        for sentence_start, sentence_end in _sentence_spans(text, start, end):
            if sentence_end - sentence_start > self.max_chars:
                units.extend(self._hard_chunks(sentence_start, sentence_end))
            else:
                units.append(_Unit(sentence_start, sentence_end))
        return units

    def _units(self, text: str) -> list[_Unit]:
        if not self._config.preserve_paragraphs:
            return self._sentence_units(text, 0, len(text))

        units: list[_Unit] = []
        for start, end in _paragraph_spans(text):
            if end - start > self.max_chars:
                units.extend(self._sentence_units(text, start, end))
            else:
                units.append(_Unit(start, end, is_paragraph=True))
        return units

    def split(self, text: str) -> list[tuple[int, int]]:
        """Return page spans ``(start, end)`` over ``text``; every span is at most ``max_chars`` long."""

        stripped = text.strip()
        if not stripped:
            return []
        if len(text) <= self.min_chars:
            span = _trimmed(text, 0, len(text))
            return [span] if span is not None else []

        pending = deque(self._units(text))
        spans: list[tuple[int, int]] = []
        page_start: int | None = None
        page_end = 0

        while pending:
            unit = pending.popleft()
            if page_start is None:
                page_start, page_end = unit.start, unit.end
                continue

            grown = unit.end - page_start
            current = page_end - page_start
            if grown <= self.target_chars:
                page_end = unit.end
                continue
            if current < self.min_chars:
                if grown <= self.max_chars:
                    page_end = unit.end
                    continue
                if unit.is_paragraph:
                    sentences = self._sentence_units(text, unit.start, unit.end)
                    if len(sentences) > 1:
                        pending.extendleft(reversed(sentences))
                        continue
                if unit.is_chunk:
                    # oversized sentence: cut where this page reaches its target
                    cut = page_start + self.target_chars
                    if unit.start < cut < unit.end:
                        tail_end = unit.end
                        while pending and pending[0].is_chunk and pending[0].start == tail_end:
                            tail_end = pending.popleft().end
                        pending.extendleft(reversed(self._hard_chunks(cut, tail_end)))
                        spans.append((page_start, cut))
                        page_start = None
                        continue

            spans.append((page_start, page_end))
            page_start, page_end = unit.start, unit.end

        if page_start is not None:
            spans.append((page_start, page_end))
        return spans

    def paginate(self, resource: ContentResource) -> list[Page]:
        """Replace ``resource.pages`` with freshly split pages and return them."""

        text = resource.text or ""
        resource.pages = [
            Page(text=text[start:end], local_index=index, char_start=start, char_end=end)
            for index, (start, end) in enumerate(self.split(text))
        ]
        short = [
            page.local_index
            for page in resource.pages[:-1]
            if len(page.text) < self.min_chars
        ]
        if short:
            logger.debug("%s: %d page(s) below the minimum budget", resource.path, len(short))
        return resource.pages


def assign_global_indices(resources: Iterable[ContentResource]) -> int:
    """Number pages across resources in order; returns the total page count."""

    index = 0
    for resource in resources:
        for page in resource.pages:
            page.global_index = index
            index += 1
    return index


def page_offsets(resources: Iterable[ContentResource]) -> list[int]:
    """Global index of each resource's first page (equal to the running total for empty resources)."""

    offsets: list[int] = []
    total = 0
    for resource in resources:
        offsets.append(total)
        total += resource.page_count
    return offsets
