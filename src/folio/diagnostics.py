"""Append-only diagnostics shared by every pipeline stage."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import threading
from typing import Iterable, Iterator

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """How far a finding degrades the parse."""

    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


_LOG_LEVELS = {
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
    Severity.FATAL: logging.CRITICAL,
}


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """One non-fatal or fatal finding produced by a stage."""

    severity: Severity
    stage: str
    message: str
    hint: str | None = None

    def __str__(self) -> str:
        text = f"[{self.severity.value}] {self.stage}: {self.message}"
        if self.hint:
            text += f" (hint: {self.hint})"
        return text

    def to_dict(self) -> dict[str, str | None]:
        return {
            "severity": self.severity.value,
            "stage": self.stage,
            "message": self.message,
            "hint": self.hint,
        }


class ParsingDiagnostics:
    """Thread-safe collector; entries are never removed or rewritten."""

    def __init__(self) -> None:
        self._entries: list[Diagnostic] = []
        self._lock = threading.Lock()

    def add(self, severity: Severity, stage: str, message: str, hint: str | None = None) -> Diagnostic:
        entry = Diagnostic(severity=severity, stage=stage, message=message, hint=hint)
        self.append(entry)
        return entry

    def warning(self, stage: str, message: str, hint: str | None = None) -> Diagnostic:
        return self.add(Severity.WARNING, stage, message, hint)

    def error(self, stage: str, message: str, hint: str | None = None) -> Diagnostic:
        return self.add(Severity.ERROR, stage, message, hint)

    def fatal(self, stage: str, message: str, hint: str | None = None) -> Diagnostic:
        return self.add(Severity.FATAL, stage, message, hint)

    def append(self, entry: Diagnostic) -> None:
        with self._lock:
            self._entries.append(entry)
        logger.log(_LOG_LEVELS[entry.severity], "%s: %s", entry.stage, entry.message)

    def extend(self, entries: Iterable[Diagnostic]) -> None:
        for entry in entries:
            self.append(entry)

    def merge(self, other: "ParsingDiagnostics") -> None:
        """Take over entries already recorded (and logged) by another collector."""

        entries = other.entries
        with self._lock:
            self._entries.extend(entries)

    @property
    def entries(self) -> list[Diagnostic]:
        with self._lock:
            return list(self._entries)

    def by_severity(self, severity: Severity) -> list[Diagnostic]:
        return [entry for entry in self.entries if entry.severity is severity]

    @property
    def has_fatal(self) -> bool:
        return any(entry.severity is Severity.FATAL for entry in self.entries)

    def summary(self) -> str:
        entries = self.entries
        if not entries:
            return "no issues"
        counts = {severity: 0 for severity in Severity}
        for entry in entries:
            counts[entry.severity] += 1
        parts = [f"{count} {severity.value}(s)" for severity, count in counts.items() if count]
        return ", ".join(parts)

    def __deepcopy__(self, memo: dict[int, object]) -> "ParsingDiagnostics":
        # entries are frozen; only the list and the lock need to be fresh
        clone = ParsingDiagnostics()
        clone._entries = self.entries
        return clone

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
