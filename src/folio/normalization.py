"""Text normalization helpers shared by the pipeline stages."""

from __future__ import annotations

from pathlib import PurePosixPath
import re
import unicodedata

_WHITESPACE_RE = re.compile(r"\s+")
_TITLE_SPLIT_RE = re.compile(r"[._\-]+")
_UNICODE_SPACES_RE = re.compile(r"[\u00a0\u1680\u2000-\u200a\u202f\u205f\u3000]")
_ZERO_WIDTH_RE = re.compile(r"[\u200b-\u200d\u2060\ufeff\u00ad]")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def normalize_whitespace(text: str) -> str:
    """Collapse repeated whitespace and trim boundaries."""

    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_text(text: str) -> str:
    """Produce stable text for comparisons and hashing."""

    normalized = unicodedata.normalize("NFKC", text)
    return normalize_whitespace(normalized).casefold()


def normalize_unicode_spaces(text: str) -> str:
    """Map exotic Unicode spaces to ASCII space."""

    return _UNICODE_SPACES_RE.sub(" ", text)


def strip_zero_width(text: str) -> str:
    return _ZERO_WIDTH_RE.sub("", text)


def strip_control_characters(text: str) -> str:
    return _CONTROL_RE.sub("", text)


def title_from_path(path: str) -> str:
    """Derive a readable title from a file name: ``my_book-v2.epub`` -> ``My Book V2``."""

    stem = PurePosixPath(path.replace("\\", "/")).stem
    cleaned = normalize_whitespace(_TITLE_SPLIT_RE.sub(" ", stem))
    return cleaned.title() if cleaned else "Untitled"
