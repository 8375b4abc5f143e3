"""Shared contract for content extraction strategies."""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Protocol, Sequence, runtime_checkable

from folio.archive import Archive, decode_text
from folio.models import ContentResource
from folio.package import PackageDocument

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")


def text_char_count(text: str) -> int:
    """Count non-whitespace characters outside markup tags."""

    return len(_SPACE_RE.sub("", _TAG_RE.sub(" ", text)))


@dataclass(slots=True)
class StrategyOutcome:
    """Resources produced by one strategy plus its non-fatal findings."""

    strategy: str
    resources: list[ContentResource] = field(default_factory=list)
    findings: list[str] = field(default_factory=list)
    char_count: int = 0
    coverage: float | None = None

    def add(self, resource: ContentResource, decoded: str) -> None:
        self.resources.append(resource)
        self.char_count += text_char_count(decoded)

    @property
    def is_empty(self) -> bool:
        return not self.resources


@runtime_checkable
class ExtractionStrategy(Protocol):
    """Protocol that every extraction strategy must implement."""

    name: str

    def extract(self, archive: Archive, package: PackageDocument | None) -> StrategyOutcome:
        """Return the resources this strategy can locate; may raise on broken input."""


def read_resource(
    archive: Archive,
    path: str,
    *,
    resource_id: str,
    media_type: str,
    strategy: str,
    encodings: Sequence[str],
    linear: bool = True,
) -> tuple[ContentResource, str]:
    """Read one archive member into a ``ContentResource``; returns it with its decoded text."""

    member = archive.find(path) or path
    raw = archive.read(member)
    decoded, encoding = decode_text(raw, encodings)
    resource = ContentResource(
        resource_id=resource_id,
        path=member,
        media_type=media_type,
        raw=raw,
        strategy=strategy,
        linear=linear,
        encoding=encoding,
    )
    return resource, decoded
