"""Collection name autocompletion.

Each server's collection names are concatenated into one buffer with a span
per name, so a single regex scan finds every name containing the query.
Entries for all servers are dropped together when the cache expires.
"""

import asyncio
import bisect
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Pattern

from feed_notifier.storage import database


logger = logging.getLogger(__name__)

DEFAULT_EXPIRY = timedelta(seconds=15)
MAX_COMPLETIONS = 25


@dataclass(frozen=True)
class Span:
    """Half-open [start, end) range of one name inside the buffer."""

    start: int
    end: int

    def overlaps(self, start: int, end: int) -> bool:
        return max(self.start, start) < min(self.end, end)


class Haystack:
    """Substring search over a fixed list of names."""

    def __init__(self, names: List[str]):
        self.names = list(names)
        self.buffer = "".join(self.names)

        # Spans index the lower-cased buffer, whose length can differ from
        # the original for some non-ASCII characters.
        lowered = [name.lower() for name in self.names]
        self.lowered = "".join(lowered)
        self.spans: List[Span] = []
        offset = 0
        for name in lowered:
            self.spans.append(Span(offset, offset + len(name)))
            offset += len(name)

        self._starts = [span.start for span in self.spans]

    def find_all(self, pattern: Pattern) -> List[str]:
        """Return each name overlapping a match of `pattern`, once, in name order."""
        found = set()
        for match in pattern.finditer(self.lowered):
            start, end = match.span()
            # First span that could overlap: the one containing `start`
            index = max(bisect.bisect_right(self._starts, start) - 1, 0)
            while index < len(self.spans) and self.spans[index].start < end:
                if self.spans[index].overlaps(start, end):
                    found.add(index)
                index += 1

        return [self.names[i] for i in sorted(found)]

    def search(self, raw_input: str) -> List[str]:
        """Case-insensitive literal substring search; empty input matches all."""
        if not raw_input:
            return list(self.names)
        return self.find_all(compile_query(raw_input))


def compile_query(raw_input: str) -> Pattern:
    """Build a literal, case-insensitive pattern from user input."""
    return re.compile(re.escape(raw_input.lower()), re.IGNORECASE)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CollectionSearchCache:
    """TTL cache of per-server haystacks.

    One lock covers the whole lookup, including a rebuild on a miss, so a
    caller never sees a partially built entry.
    """

    def __init__(
        self,
        load_names: Callable[[str], Awaitable[List[str]]] = database.get_collection_names,
        ttl: timedelta = DEFAULT_EXPIRY,
        limit: int = MAX_COMPLETIONS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._load_names = load_names
        self.ttl = ttl
        self.limit = limit
        self._clock = clock
        self._entries: Dict[str, Haystack] = {}
        self._expires = clock()
        self._lock = asyncio.Lock()

    async def collection_names(self, server_id: str, raw_input: str) -> List[str]:
        """Suggest up to `limit` collection names of a server containing `raw_input`."""
        async with self._lock:
            now = self._clock()
            if now >= self._expires:
                if self._entries:
                    logger.info("Autocompletions have expired")
                self._entries = {}
                self._expires = now + self.ttl

            haystack = self._entries.get(server_id)
            if haystack is None:
                logger.debug(f"Autocompletion cache miss for server {server_id}")
                haystack = Haystack(await self._load_names(server_id))
                self._entries[server_id] = haystack

            return haystack.search(raw_input)[:self.limit]

    def clear(self) -> None:
        """Drop every entry; the next lookup rebuilds from the registry."""
        self._entries = {}
