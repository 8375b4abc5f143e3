"""Stable book identity and an explicit cache of parse results."""

from __future__ import annotations

from collections import OrderedDict
import copy
import hashlib
import logging
import threading

from folio.config import ParsingConfig
from folio.models import ParseResult

logger = logging.getLogger(__name__)


def book_fingerprint(raw_bytes: bytes) -> str:
    """sha256 of the container bytes; the key storage collaborators persist under."""

    return hashlib.sha256(raw_bytes).hexdigest()


class ParseCache:
    """In-memory LRU of successful parse results keyed by payload and config.

    Entries are deep-copied on the way in and out so callers own what they get.
    """

    def __init__(self, max_entries: int = 16) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._entries: OrderedDict[tuple[str, ParsingConfig], ParseResult] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, book_id: str, config: ParsingConfig) -> ParseResult | None:
        key = (book_id, config)
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
        logger.debug("Parse cache hit for %s", book_id)
        return copy.deepcopy(cached)

    def put(self, book_id: str, config: ParsingConfig, result: ParseResult) -> None:
        stored = copy.deepcopy(result)
        with self._lock:
            self._entries[(book_id, config)] = stored
            self._entries.move_to_end((book_id, config))
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted %s from parse cache", evicted[0])

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
