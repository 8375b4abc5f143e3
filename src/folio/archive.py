"""Read-only view over an EPUB zip payload with charset-aware decoding."""

from __future__ import annotations

import codecs
from dataclasses import dataclass
from io import BytesIO
import logging
import re
from typing import Iterator, Sequence
from zipfile import BadZipFile, ZipFile
import zlib

from charset_normalizer import from_bytes

logger = logging.getLogger(__name__)

ZIP_MAGIC = b"PK\x03\x04"

_XML_DECL_ENCODING_RE = re.compile(rb"""<\?xml[^>]*encoding\s*=\s*["']([A-Za-z0-9._\-]+)["']""", re.IGNORECASE)
_META_CHARSET_RE = re.compile(rb"""<meta[^>]+charset\s*=\s*["']?([A-Za-z0-9._\-]+)""", re.IGNORECASE)
_BOMS: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF32_LE, "utf-32"),
    (codecs.BOM_UTF32_BE, "utf-32"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)


@dataclass(slots=True)
class ArchiveError(Exception):
    """Raised when the container cannot be opened or a member cannot be read."""

    message: str
    member: str | None = None

    def __str__(self) -> str:
        if self.member:
            return f"{self.message} (member={self.member})"
        return self.message


def _canonical_encoding(name: str) -> str | None:
    try:
        return codecs.lookup(name).name
    except LookupError:
        return None


def declared_encoding(raw: bytes) -> str | None:
    """Return the charset declared by an XML prolog or HTML meta tag, if any."""

    head = raw[:2048]
    match = _XML_DECL_ENCODING_RE.search(head) or _META_CHARSET_RE.search(head)
    if match is None:
        return None
    return match.group(1).decode("ascii", errors="ignore").lower() or None


def decode_text(raw: bytes, encodings: Sequence[str] = ("utf-8",)) -> tuple[str, str]:
    """Decode bytes to text, returning ``(text, encoding)``.

    Order: byte-order mark, declared charset, the configured encodings, a
    charset-normalizer guess, and finally lossy UTF-8.
    """

    for bom, encoding in _BOMS:
        if raw.startswith(bom):
            try:
                return raw.decode(encoding), encoding
            except UnicodeDecodeError:
                break

    candidates: list[str] = []
    declared = declared_encoding(raw)
    if declared:
        candidates.append(declared)
    candidates.extend(encodings)

    seen: set[str] = set()
    for candidate in candidates:
        canonical = _canonical_encoding(candidate)
        if canonical is None or canonical in seen:
            continue
        seen.add(canonical)
        if canonical.startswith(("utf-16", "utf-32")) and b"\x00" not in raw[:64]:
            continue
        try:
            return raw.decode(canonical), canonical
        except UnicodeDecodeError:
            continue

    best = from_bytes(raw).best()
    if best is not None and best.encoding:
        return str(best), best.encoding

    return raw.decode("utf-8", errors="replace"), "utf-8"


def looks_like_text(raw: bytes) -> bool:
    """Cheap check that a payload is UTF-8 or UTF-16 text rather than binary."""

    if not raw:
        return False
    if raw.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        try:
            raw.decode("utf-16")
            return True
        except UnicodeDecodeError:
            return False
    if b"\x00" in raw[:4096]:
        return False
    try:
        raw.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return True


class Archive:
    """Mapping-like access from internal path to member bytes."""

    def __init__(self, data: bytes, *, max_retry_attempts: int = 1) -> None:
        if not data.startswith(ZIP_MAGIC):
            raise ArchiveError("Payload does not start with a zip local file header")
        try:
            self._zip = ZipFile(BytesIO(data), "r")
        except (BadZipFile, OSError, ValueError) as exc:
            raise ArchiveError(f"Zip directory could not be read: {exc}") from exc

        self._max_retry_attempts = max(1, max_retry_attempts)
        self._infos = {info.filename: info for info in self._zip.infolist() if not info.is_dir()}
        self._lower_index: dict[str, str] = {}
        for name in self._infos:
            self._lower_index.setdefault(name.lower(), name)

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "Archive":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def names(self) -> list[str]:
        return list(self._infos)

    def __iter__(self) -> Iterator[str]:
        return iter(self._infos)

    def __len__(self) -> int:
        return len(self._infos)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and self.find(path) is not None

    @property
    def total_uncompressed_size(self) -> int:
        return sum(info.file_size for info in self._infos.values())

    def find(self, path: str) -> str | None:
        """Resolve a member name exactly, then case-insensitively."""

        cleaned = path.lstrip("/")
        if cleaned in self._infos:
            return cleaned
        return self._lower_index.get(cleaned.lower())

    def read(self, path: str) -> bytes:
        name = self.find(path)
        if name is None:
            raise ArchiveError("Archive member not found", member=path)

        last_error: Exception | None = None
        for attempt in range(1, self._max_retry_attempts + 1):
            try:
                return self._zip.read(name)
            except (BadZipFile, zlib.error, OSError, EOFError) as exc:
                last_error = exc
                logger.warning("Read attempt %d/%d failed for %s: %s", attempt, self._max_retry_attempts, name, exc)
        raise ArchiveError(f"Member could not be decompressed: {last_error}", member=name)
