"""Multi-term matching over article content.

One Aho-Corasick automaton holds every snapshot key, so a single pass over
the content finds every occurrence of every term. Construction is
O(total term characters); a scan is O(content length + matches).

Matching is case-insensitive. The content is case-folded with a
length-preserving fold so every offset refers to the original string.
"""
from __future__ import annotations

import logging
import threading
from bisect import bisect_left, bisect_right
from collections.abc import Iterable
from dataclasses import dataclass

import ahocorasick

from linkoverlay.models import Snapshot, fold_case

__all__ = [
    "MatcherCache",
    "SpanSet",
    "TermMatch",
    "TermMatcher",
    "fold_case",
    "is_word_boundary",
]

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TermMatch:
    """A dictionary key found at ``[start, end)`` of the content."""

    start: int
    end: int
    term_lower: str

    @property
    def length(self) -> int:
        return self.end - self.start


def _is_word_char(ch: str) -> bool:
    # Hyphen and underscore join words: "machine" never matches inside "deep-machine".
    return ch.isalnum() or ch in "-_"


def is_word_boundary(content: str, start: int, end: int) -> bool:
    """True when ``content[start:end]`` is not glued to a neighbouring word."""
    before_ok = start <= 0 or not _is_word_char(content[start - 1])
    after_ok = end >= len(content) or not _is_word_char(content[end])
    return before_ok and after_ok


class SpanSet:
    """Sorted set of half-open ``[start, end)`` spans with overlap queries.

    Overlapping or touching spans are merged on insert, which keeps the
    stored spans disjoint and ``overlaps`` at O(log n).
    """

    __slots__ = ("_starts", "_ends")

    def __init__(self, spans: Iterable[tuple[int, int]] = ()) -> None:
        self._starts: list[int] = []
        self._ends: list[int] = []
        for start, end in sorted(spans):
            self.add(start, end)

    def __len__(self) -> int:
        return len(self._starts)

    def __iter__(self):
        return iter(zip(self._starts, self._ends))

    def add(self, start: int, end: int) -> None:
        if end <= start:
            return
        i = bisect_left(self._starts, start)
        if i > 0 and self._ends[i - 1] >= start:
            i -= 1
            start = self._starts[i]
            end = max(end, self._ends[i])
            del self._starts[i]
            del self._ends[i]
        while i < len(self._starts) and self._starts[i] <= end:
            end = max(end, self._ends[i])
            del self._starts[i]
            del self._ends[i]
        self._starts.insert(i, start)
        self._ends.insert(i, end)

    def overlaps(self, start: int, end: int) -> bool:
        i = bisect_right(self._starts, start) - 1
        if i >= 0 and self._ends[i] > start:
            return True
        j = i + 1
        return j < len(self._starts) and self._starts[j] < end

    def contains(self, start: int, end: int) -> bool:
        """True when ``[start, end)`` lies entirely inside one stored span."""
        i = bisect_right(self._starts, start) - 1
        return i >= 0 and self._ends[i] >= end


class TermMatcher:
    """Immutable automaton over one snapshot version's keys."""

    def __init__(self, terms: Iterable[str], *, version: int = 0) -> None:
        self.version = version
        keys = sorted({t for t in terms if t and t.strip()})
        self._size = len(keys)
        self._automaton: ahocorasick.Automaton | None = None
        if keys:
            automaton = ahocorasick.Automaton()
            for key in keys:
                folded = fold_case(key)
                automaton.add_word(folded, (key, len(folded)))
            automaton.make_automaton()
            self._automaton = automaton

    def __len__(self) -> int:
        return self._size

    def find_all(
        self,
        content: str,
        *,
        exclude: SpanSet | None = None,
    ) -> list[TermMatch]:
        """Every word-bounded occurrence of every key, ordered by position.

        Matches overlapping an ``exclude`` span are dropped. Overlaps between
        matches are kept; choosing among them is the resolver's job.
        """
        if self._automaton is None or not content:
            return []
        haystack = fold_case(content)
        matches: list[TermMatch] = []
        for end_idx, (key, length) in self._automaton.iter(haystack):
            start = end_idx - length + 1
            end = end_idx + 1
            if not is_word_boundary(content, start, end):
                continue
            if exclude is not None and exclude.overlaps(start, end):
                continue
            matches.append(TermMatch(start=start, end=end, term_lower=key))
        matches.sort(key=lambda m: (m.start, m.end))
        return matches


class MatcherCache:
    """Holds the matcher for the most recent snapshot version seen.

    The lock covers only construction; readers of an already-built matcher
    never block.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._matcher: TermMatcher | None = None

    def for_snapshot(self, snapshot: Snapshot) -> TermMatcher:
        matcher = self._matcher
        if matcher is not None and matcher.version == snapshot.version:
            return matcher
        with self._lock:
            matcher = self._matcher
            if matcher is None or matcher.version != snapshot.version:
                matcher = TermMatcher(snapshot.terms, version=snapshot.version)
                self._matcher = matcher
                log.debug(
                    "Built term matcher: version=%d terms=%d", snapshot.version, len(matcher),
                )
            return matcher
