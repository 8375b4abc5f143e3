"""CLI command that parses one EPUB and prints a JSON report."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from dotenv import load_dotenv

from folio.config import ParsingConfig
from folio.parser import BookParser


load_dotenv()

LOGGER = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Parse an EPUB into pages and chapters")
    parser.add_argument("--path", required=True, help="EPUB file to parse")
    parser.add_argument("--page", type=int, default=None, help="Also print the text of this absolute page index")
    parser.add_argument("--verbose", action="store_true", help="Log debug details to stderr")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        config = ParsingConfig.from_env()
    except ValueError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return 2

    source_path = Path(args.path)
    result = BookParser(config).parse_file(source_path)
    document = result.document

    payload: dict[str, object] = {
        "path": str(source_path),
        "book_id": document.book_id,
        "success": result.success,
        "summary": result.summary,
        "title": document.metadata.title,
        "author": document.metadata.author,
        "language": document.metadata.language,
        "epub_version": document.metadata.epub_version,
        "total_pages": document.total_pages,
        "strategies": result.strategies_used,
        "chapters": [chapter.to_dict() for chapter in document.chapters],
        "diagnostics": [entry.to_dict() for entry in result.diagnostics],
    }
    if args.page is not None:
        payload["page"] = {"index": args.page, "text": document.page(args.page)}

    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
