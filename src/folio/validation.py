"""Archive integrity and EPUB conformance checks run before any parsing."""

from __future__ import annotations

import codecs
import logging

from lxml import etree

from folio.archive import Archive, ArchiveError, declared_encoding
from folio.config import ParsingConfig
from folio.diagnostics import Diagnostic, Severity
from folio.models import ValidationResult
from folio.package import CONTAINER_PATH, PackageError, load_package, parse_xml

logger = logging.getLogger(__name__)

STAGE = "validation"
MIN_ARCHIVE_BYTES = 22
EPUB_MIMETYPE = "application/epub+zip"


def _canonical(name: str) -> str:
    try:
        return codecs.lookup(name).name
    except LookupError:
        return name.lower()


class EpubValidator:
    """Produce a ``ValidationResult``; never raises for bad input."""

    def __init__(self, config: ParsingConfig | None = None) -> None:
        self._config = config or ParsingConfig()

    def validate(self, data: bytes, filename: str | None = None) -> ValidationResult:
        findings: list[Diagnostic] = []

        def _finding(severity: Severity, message: str, hint: str | None = None) -> None:
            findings.append(Diagnostic(severity=severity, stage=STAGE, message=message, hint=hint))

        size = len(data)
        if size < MIN_ARCHIVE_BYTES:
            _finding(Severity.FATAL, f"File is too small to be an EPUB ({size} bytes)")
            return ValidationResult(can_continue=False, findings=tuple(findings))
        if size > self._config.max_file_size_bytes:
            _finding(
                Severity.FATAL,
                f"File size {size} exceeds the limit of {self._config.max_file_size_bytes} bytes",
                hint="raise max_file_size_bytes to accept larger books",
            )
            return ValidationResult(can_continue=False, findings=tuple(findings))

        try:
            archive = Archive(data, max_retry_attempts=self._config.max_retry_attempts)
        except ArchiveError as exc:
            _finding(Severity.FATAL, f"Not a readable zip archive: {exc}", hint="the file is not an EPUB or is truncated")
            return ValidationResult(can_continue=False, findings=tuple(findings))

        with archive:
            uncompressed = archive.total_uncompressed_size
            if uncompressed > self._config.max_memory_usage_bytes:
                _finding(
                    Severity.FATAL,
                    f"Archive expands to {uncompressed} bytes, above the {self._config.max_memory_usage_bytes} byte limit",
                    hint="raise max_memory_usage_bytes to accept larger books",
                )
                return ValidationResult(can_continue=False, findings=tuple(findings))

            self._check_mimetype(archive, _finding)
            container_ok, container_raw = self._check_container(archive, _finding)
            has_html, opf_raw = self._check_manifest(archive, _finding)
            detected = self._detect_encoding(opf_raw or container_raw, _finding)

        result = ValidationResult(
            can_continue=not any(finding.severity is Severity.FATAL for finding in findings),
            findings=tuple(findings),
            detected_encoding=detected,
            container_ok=container_ok,
            has_html_manifest_entry=has_html,
        )
        logger.debug("Validated %s: %d finding(s)", filename or "<bytes>", len(findings))
        return result

    def _check_mimetype(self, archive: Archive, finding) -> None:
        if archive.find("mimetype") is None:
            finding(Severity.WARNING, "mimetype entry is missing")
            return
        try:
            value = archive.read("mimetype").decode("ascii", errors="replace").strip()
        except ArchiveError as exc:
            finding(Severity.WARNING, f"mimetype entry is unreadable: {exc}")
            return
        if value != EPUB_MIMETYPE:
            finding(Severity.WARNING, f"mimetype entry declares {value!r} instead of {EPUB_MIMETYPE!r}")

    def _check_container(self, archive: Archive, finding) -> tuple[bool, bytes | None]:
        if archive.find(CONTAINER_PATH) is None:
            finding(Severity.ERROR, f"{CONTAINER_PATH} is missing", hint="content will be located by path guessing")
            return False, None
        try:
            raw = archive.read(CONTAINER_PATH)
            root = parse_xml(raw)
        except ArchiveError as exc:
            finding(Severity.ERROR, f"{CONTAINER_PATH} is unreadable: {exc}")
            return False, None
        except etree.XMLSyntaxError as exc:
            finding(Severity.ERROR, f"{CONTAINER_PATH} is not well-formed XML: {exc}")
            return False, None
        rootfiles = [node for node in root.xpath("//*[local-name()='rootfile']") if node.get("full-path")]
        if not rootfiles:
            finding(Severity.ERROR, f"{CONTAINER_PATH} names no rootfile")
            return False, raw
        return True, raw

    def _check_manifest(self, archive: Archive, finding) -> tuple[bool, bytes | None]:
        try:
            package = load_package(archive)
        except PackageError as exc:
            finding(Severity.ERROR, f"Manifest could not be read: {exc}", hint="content will be located by directory traversal")
            return False, None
        if not package.html_items:
            finding(Severity.ERROR, "Manifest lists no HTML/XHTML content documents")
            return False, archive.read(package.opf_path)
        return True, archive.read(package.opf_path)

    def _detect_encoding(self, raw: bytes | None, finding) -> str | None:
        if raw is None:
            return None
        detected = declared_encoding(raw) or "utf-8"
        supported = {_canonical(name) for name in self._config.supported_encodings}
        if _canonical(detected) not in supported:
            finding(Severity.WARNING, f"Declared encoding {detected!r} is not in the supported list")
        return detected
