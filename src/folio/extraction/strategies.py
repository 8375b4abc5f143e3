"""Extraction strategies, from the most structured to the most permissive."""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Sequence

from folio.archive import Archive, ArchiveError, decode_text, looks_like_text
from folio.extraction.base import StrategyOutcome, read_resource
from folio.models import ContentResource
from folio.package import PackageDocument

logger = logging.getLogger(__name__)

HTML_SUFFIXES = (".html", ".xhtml", ".htm")
_FALLBACK_SKIP_SUFFIXES = (".opf", ".ncx", ".css", ".js")


def _content_items(package: PackageDocument):
    items = package.html_items
    content = [item for item in items if not item.is_nav]
    return content or items


class SpineStrategy:
    """Manifest items in spine reading order."""

    name = "spine"

    def __init__(self, encodings: Sequence[str]) -> None:
        self._encodings = tuple(encodings)

    def extract(self, archive: Archive, package: PackageDocument | None) -> StrategyOutcome:
        outcome = StrategyOutcome(strategy=self.name)
        if package is None:
            outcome.findings.append("no package document, spine unavailable")
            return outcome
        if not package.spine:
            outcome.findings.append("spine is empty")
            return outcome

        seen: set[str] = set()
        for itemref in package.spine:
            item = package.item_by_id(itemref.idref)
            if item is None:
                outcome.findings.append(f"spine references unknown manifest id {itemref.idref!r}")
                continue
            if not item.is_html or item.href in seen:
                continue
            if archive.find(item.href) is None:
                outcome.findings.append(f"spine item {item.item_id!r} points at missing file {item.href}")
                continue
            try:
                resource, decoded = read_resource(
                    archive,
                    item.href,
                    resource_id=item.item_id,
                    media_type=item.media_type,
                    strategy=self.name,
                    encodings=self._encodings,
                    linear=itemref.linear,
                )
            except ArchiveError as exc:
                outcome.findings.append(f"spine item {item.item_id!r} unreadable: {exc}")
                continue
            seen.add(item.href)
            outcome.add(resource, decoded)

        expected = _content_items(package)
        outcome.coverage = len(outcome.resources) / len(expected) if expected else 0.0
        return outcome


class ManifestStrategy:
    """Every HTML manifest item in manifest order."""

    name = "manifest"

    def __init__(self, encodings: Sequence[str]) -> None:
        self._encodings = tuple(encodings)

    def extract(self, archive: Archive, package: PackageDocument | None) -> StrategyOutcome:
        outcome = StrategyOutcome(strategy=self.name)
        if package is None:
            outcome.findings.append("no package document, manifest unavailable")
            return outcome

        for item in _content_items(package):
            if archive.find(item.href) is None:
                outcome.findings.append(f"manifest item {item.item_id!r} points at missing file {item.href}")
                continue
            try:
                resource, decoded = read_resource(
                    archive,
                    item.href,
                    resource_id=item.item_id,
                    media_type=item.media_type,
                    strategy=self.name,
                    encodings=self._encodings,
                )
            except ArchiveError as exc:
                outcome.findings.append(f"manifest item {item.item_id!r} unreadable: {exc}")
                continue
            outcome.add(resource, decoded)
        return outcome


class DirectoryTraversalStrategy:
    """HTML-looking archive members sorted by path, ignoring the package."""

    name = "directory"

    def __init__(self, encodings: Sequence[str]) -> None:
        self._encodings = tuple(encodings)

    def extract(self, archive: Archive, package: PackageDocument | None) -> StrategyOutcome:
        outcome = StrategyOutcome(strategy=self.name)
        skip: set[str] = set()
        if package is not None and package.navigation is not None:
            skip.add(package.navigation.source_path)

        paths = sorted(
            name
            for name in archive.names()
            if name.lower().endswith(HTML_SUFFIXES)
            and not name.upper().startswith("META-INF/")
            and name not in skip
        )
        for path in paths:
            try:
                resource, decoded = read_resource(
                    archive,
                    path,
                    resource_id=_id_from_path(path),
                    media_type="application/xhtml+xml",
                    strategy=self.name,
                    encodings=self._encodings,
                )
            except ArchiveError as exc:
                outcome.findings.append(f"{path} unreadable: {exc}")
                continue
            outcome.add(resource, decoded)
        return outcome


class FallbackStrategy:
    """Aggregate every text-decodable member into one resource."""

    name = "fallback"

    def __init__(self, encodings: Sequence[str]) -> None:
        self._encodings = tuple(encodings)

    def extract(self, archive: Archive, package: PackageDocument | None) -> StrategyOutcome:
        outcome = StrategyOutcome(strategy=self.name)
        parts: list[str] = []
        for name in sorted(archive.names()):
            lowered = name.lower()
            if lowered == "mimetype" or lowered.startswith("meta-inf/") or lowered.endswith(_FALLBACK_SKIP_SUFFIXES):
                continue
            try:
                raw = archive.read(name)
            except ArchiveError as exc:
                outcome.findings.append(f"{name} unreadable: {exc}")
                continue
            if not looks_like_text(raw):
                continue
            text, _encoding = decode_text(raw, self._encodings)
            if text.strip():
                parts.append(text)

        if not parts:
            return outcome
        aggregated = "\n\n".join(parts)
        resource = ContentResource(
            resource_id="fallback",
            path="fallback",
            media_type="text/html",
            raw=aggregated.encode("utf-8"),
            strategy=self.name,
            encoding="utf-8",
        )
        outcome.add(resource, aggregated)
        logger.info("Fallback strategy aggregated %d archive member(s)", len(parts))
        return outcome


def _id_from_path(path: str) -> str:
    stem = PurePosixPath(path).with_suffix("").as_posix()
    return stem.replace("/", "-") or path
