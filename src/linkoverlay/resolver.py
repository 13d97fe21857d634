"""Link resolver: headings, dictionary matches and overrides → ResolvedLinks.

Resolution order for one article:

1. Headings. Every H2/H3 line is an exclusion zone. Headings with a cached
   standalone title become links over their text.
2. Dictionary terms. One automaton scan over the content outside exclusion
   zones (headings, fenced code, links already in the content).
3. Conflicts. Candidates are walked longest first, then leftmost. A
   candidate is dropped if its term was already accepted or its span
   overlaps an accepted span.
4. Overrides. Each accepted match looks up its surface form, then its
   canonical term. ``disabled`` drops the match, ``custom_title`` replaces
   the title.
5. Among the remaining matches only the earliest per canonical term
   survives.

All offsets refer to the original content; nothing here shifts them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from linkoverlay.errors import DictionaryUnavailable, MalformedContent
from linkoverlay.headings import HeadingTitleCache
from linkoverlay.markdown import (
    HeadingSpan,
    MarkdownLink,
    code_fence_ranges,
    find_heading_spans,
    find_markdown_links,
)
from linkoverlay.matcher import MatcherCache, SpanSet, TermMatch
from linkoverlay.models import (
    HeadingLink,
    LinkKind,
    Override,
    OverrideType,
    ResolvedLink,
    Snapshot,
    fold_case,
)
from linkoverlay.overrides import OverrideStore
from linkoverlay.snapshot import SnapshotCache

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _Zones:
    """Exclusion zones for one content string."""

    blocked: SpanSet
    links: SpanSet
    link_texts: SpanSet


def _build_zones(
    content: str,
    headings: list[HeadingSpan],
    existing: list[MarkdownLink],
) -> _Zones:
    blocked = SpanSet(
        [(h.line_start, h.line_end) for h in headings] + code_fence_ranges(content)
    )
    return _Zones(
        blocked=blocked,
        links=SpanSet((link.start, link.end) for link in existing),
        link_texts=SpanSet((link.text_start, link.text_end) for link in existing),
    )


def _locate_heading(
    explanation_id: int,
    heading: HeadingLink,
    spans_by_key: dict[str, list[HeadingSpan]],
) -> list[HeadingSpan]:
    spans = spans_by_key.get(heading.heading_text_lower)
    if not spans:
        raise MalformedContent(explanation_id, heading.heading_text)
    return spans


def _check_disjoint_ascending(links: list[ResolvedLink]) -> None:
    for prev, cur in zip(links, links[1:]):
        if cur.start_index < prev.end_index:
            raise RuntimeError(
                f"Resolved links overlap: [{prev.start_index}, {prev.end_index}) "
                f"and [{cur.start_index}, {cur.end_index})"
            )


class LinkResolver:
    """Computes the links for one article render. Holds no per-call state."""

    def __init__(
        self,
        snapshots: SnapshotCache,
        headings: HeadingTitleCache,
        overrides: OverrideStore,
        *,
        matchers: MatcherCache | None = None,
    ) -> None:
        self._snapshots = snapshots
        self._headings = headings
        self._overrides = overrides
        self._matchers = matchers if matchers is not None else MatcherCache()

    def resolve_links_for_article(self, explanation_id: int, content: str) -> list[ResolvedLink]:
        """Non-overlapping links for ``content``, ascending by start offset."""
        if not content:
            return []
        heading_spans = find_heading_spans(content)
        existing = find_markdown_links(content)
        zones = _build_zones(content, heading_spans, existing)

        links = self._resolve_heading_links(explanation_id, heading_spans)

        try:
            snapshot = self._snapshots.get_snapshot()
        except DictionaryUnavailable as exc:
            log.warning(
                "Article %d: dictionary unavailable, resolving headings only: %s",
                explanation_id, exc,
            )
            snapshot = None

        if snapshot is not None and snapshot.data:
            overrides = self._overrides.get_overrides_for_article(explanation_id)
            links.extend(self._resolve_term_links(content, snapshot, overrides, zones))

        links.sort(key=lambda link: link.start_index)
        _check_disjoint_ascending(links)
        return links

    # ─── Headings ─────────────────────────────────────────────────

    def _resolve_heading_links(
        self,
        explanation_id: int,
        heading_spans: list[HeadingSpan],
    ) -> list[ResolvedLink]:
        if not heading_spans:
            return []
        cached = self._headings.get_heading_links(explanation_id)
        if not cached:
            return []

        spans_by_key: dict[str, list[HeadingSpan]] = {}
        for span in heading_spans:
            spans_by_key.setdefault(span.key, []).append(span)

        links: list[ResolvedLink] = []
        for heading in cached.values():
            try:
                spans = _locate_heading(explanation_id, heading, spans_by_key)
            except MalformedContent as exc:
                log.debug("Skipping heading link: %s", exc)
                continue
            for span in spans:
                if find_markdown_links(span.text):
                    continue
                links.append(
                    ResolvedLink(
                        term=span.text,
                        start_index=span.text_start,
                        end_index=span.text_end,
                        standalone_title=heading.standalone_title,
                        kind=LinkKind.HEADING,
                    )
                )
        return links

    # ─── Dictionary terms ─────────────────────────────────────────

    def _resolve_term_links(
        self,
        content: str,
        snapshot: Snapshot,
        overrides: dict[str, Override],
        zones: _Zones,
    ) -> list[ResolvedLink]:
        matcher = self._matchers.for_snapshot(snapshot)
        matches = matcher.find_all(content, exclude=zones.blocked)

        # Terms already linked in the content count as their first occurrence.
        already_linked: set[str] = set()
        candidates: list[TermMatch] = []
        for m in matches:
            if zones.link_texts.contains(m.start, m.end):
                already_linked.add(self._canonical_key(snapshot, m.term_lower))
            elif not zones.links.overlaps(m.start, m.end):
                candidates.append(m)

        accepted = self._accept_longest_first(candidates)

        # Overrides apply per match, before collapsing: a disabled surface form
        # drops only its own matches.
        first_by_canonical: dict[str, tuple[TermMatch, Override | None]] = {}
        for m in sorted(accepted, key=lambda m: m.start):
            canonical = self._canonical_key(snapshot, m.term_lower)
            if canonical in already_linked:
                continue
            override = overrides.get(m.term_lower) or overrides.get(canonical)
            if override is not None and override.is_disabled:
                continue
            first_by_canonical.setdefault(canonical, (m, override))

        links: list[ResolvedLink] = []
        for m, override in first_by_canonical.values():
            entry = snapshot.data[m.term_lower]
            title = entry.standalone_title
            if (
                override is not None
                and override.override_type is OverrideType.CUSTOM_TITLE
                and override.custom_standalone_title
            ):
                title = override.custom_standalone_title
            links.append(
                ResolvedLink(
                    term=content[m.start:m.end],
                    start_index=m.start,
                    end_index=m.end,
                    standalone_title=title,
                    kind=LinkKind.TERM,
                    canonical_term=entry.canonical_term,
                )
            )
        return links

    @staticmethod
    def _accept_longest_first(candidates: list[TermMatch]) -> list[TermMatch]:
        ordered = sorted(candidates, key=lambda m: (-m.length, m.start))
        taken = SpanSet()
        seen: set[str] = set()
        accepted: list[TermMatch] = []
        for m in ordered:
            if m.term_lower in seen:
                continue
            if taken.overlaps(m.start, m.end):
                continue
            taken.add(m.start, m.end)
            seen.add(m.term_lower)
            accepted.append(m)
        return accepted

    @staticmethod
    def _canonical_key(snapshot: Snapshot, term_lower: str) -> str:
        entry = snapshot.lookup(term_lower)
        return fold_case(entry.canonical_term) if entry is not None else term_lower
