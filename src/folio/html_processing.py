"""HTML/XHTML to reader text: a fixed sequence of string stages plus quality scoring.

Structure survives the stages as private-use markers embedded in the text:
``\\ue000h2\\ue001`` opens a level-2 heading, ``\\ue000/h\\ue001`` closes it and
``\\ue000#intro\\ue001`` marks where the element with ``id="intro"`` begins.
Once the stages have run the markers are lifted out into
``ContentResource.headings`` and ``ContentResource.anchors``, with offsets into
the final text.
"""

from __future__ import annotations

import html
import logging
import re
import unicodedata
from typing import Callable

from bs4 import BeautifulSoup, NavigableString
from bs4.builder import ParserRejectedMarkup

from folio.archive import decode_text
from folio.config import ParsingConfig
from folio.diagnostics import ParsingDiagnostics
from folio.models import ContentResource, HeadingMark
from folio.normalization import (
    normalize_unicode_spaces,
    normalize_whitespace,
    strip_control_characters,
    strip_zero_width,
)

logger = logging.getLogger(__name__)

STAGE = "html"

MARK_OPEN = "\ue000"
MARK_CLOSE = "\ue001"
HEADING_END = f"{MARK_OPEN}/h{MARK_CLOSE}"

BLOCK_TAGS = (
    "address", "article", "aside", "blockquote", "dd", "div", "dl", "dt",
    "figcaption", "figure", "footer", "header", "hr", "li", "main", "nav",
    "ol", "p", "pre", "section", "table", "tr", "ul",
)
HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")

_PRIVATE_MARK_RE = re.compile(r"[\ue000\ue001]")
_MARKER_RE = re.compile(r"\ue000([^\ue001]*)\ue001")
_MARKERS_THEN_SPACE_RE = re.compile(r"((?:\ue000[^\ue001]*\ue001)+)(\s+)")
# markup-significant entities stay escaped until the markup is parsed
_ENTITY_RE = re.compile(r"&(?!(?:lt|gt|amp|quot|apos|#0*(?:60|62|38|34|39)|#[xX]0*(?:3[cCeE]|26|22|27));)(#[0-9]+|#[xX][0-9a-fA-F]+|[A-Za-z][A-Za-z0-9]*);")
_SCRIPT_RE = re.compile(r"<(script|style|noscript|template)\b[^>]*?(?:/>|>.*?</\1\s*>)", re.IGNORECASE | re.DOTALL)
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_TITLE_RE = re.compile(r"<title\b[^>]*>(.*?)</title\s*>", re.IGNORECASE | re.DOTALL)
_XML_DECL_RE = re.compile(r"^\s*<\?xml[^>]*\?>")
_HEAD_RE = re.compile(r"<head\b.*?</head\s*>", re.IGNORECASE | re.DOTALL)
_HEADING_RE = re.compile(r"<h([1-6])\b[^>]*>(.*?)</h\1\s*>", re.IGNORECASE | re.DOTALL)
_ID_TAG_RE = re.compile(r"<[A-Za-z][^>]*?\sid\s*=\s*[\"']([^\"']+)[\"'][^>]*>")
_BLOCK_TAG_RE = re.compile(r"</?(?:%s)\b[^>]*>" % "|".join(BLOCK_TAGS), re.IGNORECASE)
_BR_RE = re.compile(r"<br\b[^>]*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_INLINE_SPACE_RE = re.compile(r"[ \t\r\f\v]+")
_HTML_SPACE_RE = re.compile(r"[ \t\n\r\f]+")
_BLANK_LINES_RE = re.compile(r"\n(?:[ \t]*\n)+")


def decode_entities(text: str) -> str:
    """Decode character entities, leaving the ones that would alter markup."""

    text = _PRIVATE_MARK_RE.sub("", text)
    return _ENTITY_RE.sub(lambda match: html.unescape(match.group(0)), text)


def remove_scripts(text: str) -> str:
    text = _COMMENT_RE.sub("", text)
    return _SCRIPT_RE.sub("", text)


def _is_decoration(line: str) -> bool:
    visible = _MARKER_RE.sub("", line).strip()
    if not visible:
        return False
    return all(unicodedata.category(char)[0] in "PSZ" for char in visible)


def extract_title(text: str) -> str | None:
    match = _TITLE_RE.search(text)
    if match is None:
        return None
    title = normalize_whitespace(html.unescape(_TAG_RE.sub(" ", match.group(1))))
    return title or None


def strip_tags_with_regex(text: str, *, preserve_formatting: bool = True) -> str:
    """Tag stripping for markup the HTML parser refuses.

    Entities are decoded only after the tags are gone, so escaped markup such
    as ``&lt;script&gt;`` survives as text, the same as on the parser path.
    """

    block = "\n\n" if preserve_formatting else " "
    text = _HTML_SPACE_RE.sub(" ", _HEAD_RE.sub("", text))
    text = _ID_TAG_RE.sub(lambda match: f"{MARK_OPEN}#{match.group(1)}{MARK_CLOSE}{match.group(0)}", text)
    text = _HEADING_RE.sub(
        lambda match: f"{block}{MARK_OPEN}h{match.group(1)}{MARK_CLOSE}{match.group(2)}{HEADING_END}{block}",
        text,
    )
    text = _BLOCK_TAG_RE.sub(block, text)
    text = _BR_RE.sub("\n" if preserve_formatting else " ", text)
    text = _TAG_RE.sub("", text)
    return html.unescape(text)


def lift_markers(text: str) -> tuple[str, list[HeadingMark], dict[str, int]]:
    """Remove markers from ``text`` and return the clean text, headings and anchors."""

    parts: list[str] = []
    headings: list[HeadingMark] = []
    anchors: dict[str, int] = {}
    length = 0
    open_heading: tuple[int, int] | None = None
    cursor = 0

    for match in _MARKER_RE.finditer(text):
        chunk = text[cursor : match.start()]
        parts.append(chunk)
        length += len(chunk)
        cursor = match.end()

        token = match.group(1)
        if token.startswith("#"):
            anchors.setdefault(token[1:], length)
        elif token == "/h":
            if open_heading is not None:
                level, start = open_heading
                title = normalize_whitespace("".join(parts)[start:])
                if title:
                    headings.append(HeadingMark(level=level, title=title, offset=start))
                open_heading = None
        elif len(token) == 2 and token[0] == "h" and token[1] in "123456":
            open_heading = (int(token[1]), length)

    parts.append(text[cursor:])
    clean = "".join(parts)
    stripped = clean.rstrip()
    lead = len(stripped) - len(stripped.lstrip())
    clean = stripped[lead:]

    def _shift(offset: int) -> int:
        return min(max(offset - lead, 0), len(clean))

    headings = [HeadingMark(level=mark.level, title=mark.title, offset=_shift(mark.offset)) for mark in headings]
    anchors = {key: _shift(value) for key, value in anchors.items()}
    return clean, headings, anchors


def quality_score(text: str, raw_size: int) -> float:
    """Visible characters per raw byte, clamped to [0, 1]."""

    if raw_size <= 0:
        return 0.0
    visible = sum(1 for char in text if not char.isspace())
    return min(1.0, visible / raw_size)


class HtmlProcessor:
    """Turn a resource's raw markup into normalized text with structure marks."""

    def __init__(self, config: ParsingConfig | None = None) -> None:
        self._config = config or ParsingConfig()
        self._stages: list[tuple[str, Callable[[str], str]]] = [
            ("entities", decode_entities),
            ("scripts", remove_scripts),
            ("structure", self._preserve_structure),
            ("normalize", self._normalize_text),
            ("whitespace", self._optimize_whitespace),
        ]

    def process(self, resource: ContentResource, diagnostics: ParsingDiagnostics | None = None) -> ContentResource:
        """Fill ``text``, ``headings``, ``anchors``, ``title`` and ``quality_score`` in place."""

        decoded, encoding = decode_text(resource.raw, self._config.supported_encodings)
        resource.encoding = resource.encoding or encoding
        resource.title = extract_title(decoded)

        text = decoded
        for name, stage in self._stages:
            try:
                text = stage(text)
            except (ParserRejectedMarkup, RecursionError) as exc:
                if name != "structure":
                    raise
                logger.warning("HTML parser rejected %s, stripping tags with regex: %s", resource.path, exc)
                if diagnostics is not None:
                    diagnostics.warning(STAGE, f"{resource.path}: markup could not be parsed, used plain tag stripping")
                text = strip_tags_with_regex(text, preserve_formatting=self._config.preserve_formatting)

        clean, headings, anchors = lift_markers(text)
        resource.text = clean
        resource.headings = headings
        resource.anchors = anchors

        resource.quality_score = quality_score(clean, len(resource.raw))
        resource.degraded = resource.quality_score < self._config.min_quality_score
        if resource.degraded and diagnostics is not None:
            diagnostics.warning(
                STAGE,
                f"{resource.path}: low text quality score {resource.quality_score:.2f}",
                hint="resource kept but marked degraded",
            )
        logger.debug(
            "Processed %s: %d chars, %d heading(s), quality %.2f",
            resource.path,
            len(clean),
            len(headings),
            resource.quality_score,
        )
        return resource

    def _preserve_structure(self, text: str) -> str:
        soup = BeautifulSoup(_XML_DECL_RE.sub("", text, count=1), "lxml")
        root = soup.body or soup
        for tag in root.find_all(["head", "title"]):
            tag.decompose()
        for node in list(root.find_all(string=True)):
            if type(node) is NavigableString and node.find_parent("pre") is None:
                node.replace_with(_HTML_SPACE_RE.sub(" ", str(node)))

        block = "\n\n" if self._config.preserve_formatting else " "
        for heading in root.find_all(list(HEADING_TAGS)):
            heading.insert(0, f"{MARK_OPEN}{heading.name}{MARK_CLOSE}")
            heading.append(HEADING_END)
        for tag in root.find_all(list(BLOCK_TAGS + HEADING_TAGS)):
            if tag.parent is not None:
                tag.insert_before(block)
                tag.insert_after(block)
        for tag in root.find_all("br"):
            tag.replace_with("\n" if self._config.preserve_formatting else " ")
        for tag in root.find_all(id=True):
            if tag is root or tag.parent is None:
                continue
            tag.insert_before(f"{MARK_OPEN}#{tag['id']}{MARK_CLOSE}")
        return root.get_text()

    def _normalize_text(self, text: str) -> str:
        text = unicodedata.normalize("NFC", normalize_unicode_spaces(text))
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        if self._config.aggressive_cleanup:
            text = strip_control_characters(strip_zero_width(text))
            text = "\n".join(_drop_decoration(line) for line in text.split("\n"))
        return _INLINE_SPACE_RE.sub(" ", text)

    def _optimize_whitespace(self, text: str) -> str:
        while True:
            moved = _MARKERS_THEN_SPACE_RE.sub(r"\2\1", text)
            if moved == text:
                break
            text = moved
        text = "\n".join(line.strip(" ") for line in text.split("\n"))
        text = _BLANK_LINES_RE.sub("\n\n", text)
        return text.strip()


def _drop_decoration(line: str) -> str:
    """Replace a decoration-only line (``* * *``, rules) by just its markers."""

    if not _is_decoration(line):
        return line
    return "".join(match.group(0) for match in _MARKER_RE.finditer(line))
