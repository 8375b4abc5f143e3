"""Checkout shim: lets `python -m folio.cli.parse_book` resolve modules under src/folio."""

from __future__ import annotations

from pathlib import Path

_SRC_FOLIO = Path(__file__).resolve().parents[1] / "src" / "folio"

if _SRC_FOLIO.is_dir() and str(_SRC_FOLIO) not in __path__:
    __path__.append(str(_SRC_FOLIO))
