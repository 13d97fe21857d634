"""Tests for linkoverlay.resolver — heading priority, conflicts, overrides, invariants."""
from __future__ import annotations

import re
from pathlib import Path

import pytest

from linkoverlay.dictionary import Dictionary
from linkoverlay.errors import DictionaryUnavailable
from linkoverlay.headings import HeadingTitleCache
from linkoverlay.models import LinkKind, ResolvedLink
from linkoverlay.overlay import apply_links_to_content
from linkoverlay.overrides import OverrideStore
from linkoverlay.resolver import LinkResolver
from linkoverlay.snapshot import SnapshotCache
from linkoverlay.store import LinkStore


# ───────────────────── Fixtures ──────────────────────────────────────


@pytest.fixture()
def store(tmp_path: Path) -> LinkStore:
    s = LinkStore(tmp_path / "links.duckdb", create_if_missing=True)
    yield s  # type: ignore[misc]
    s.close()


@pytest.fixture()
def snapshots(store: LinkStore) -> SnapshotCache:
    return SnapshotCache(store)


@pytest.fixture()
def dictionary(store: LinkStore, snapshots: SnapshotCache) -> Dictionary:
    return Dictionary(store, snapshots)


@pytest.fixture()
def headings(store: LinkStore) -> HeadingTitleCache:
    return HeadingTitleCache(store)


@pytest.fixture()
def overrides(store: LinkStore) -> OverrideStore:
    return OverrideStore(store)


@pytest.fixture()
def resolver(
    snapshots: SnapshotCache, headings: HeadingTitleCache, overrides: OverrideStore,
) -> LinkResolver:
    return LinkResolver(snapshots, headings, overrides)


def _spans(links: list[ResolvedLink]) -> list[tuple[str, str]]:
    return [(link.term, link.standalone_title) for link in links]


def _assert_invariants(links: list[ResolvedLink]) -> None:
    starts = [link.start_index for link in links]
    assert starts == sorted(starts)
    for prev, cur in zip(links, links[1:]):
        assert prev.end_index <= cur.start_index
    canon = [link.canonical_term.lower() for link in links if link.kind is LinkKind.TERM]
    assert len(canon) == len(set(canon))


class _DownSnapshots:
    def get_snapshot(self):
        raise DictionaryUnavailable("connection refused")


# ───────────────────── Scenarios ─────────────────────────────────────


class TestScenarios:
    def test_single_term_preserves_case(self, dictionary: Dictionary, resolver: LinkResolver) -> None:
        dictionary.create_term("machine learning", "Intro to ML")
        content = "Machine Learning is powerful."
        [link] = resolver.resolve_links_for_article(1, content)
        assert link.term == "Machine Learning"
        assert link.standalone_title == "Intro to ML"
        assert (link.start_index, link.end_index) == (0, 16)
        assert link.kind is LinkKind.TERM

    def test_alias_and_canonical_link_once(
        self, dictionary: Dictionary, resolver: LinkResolver,
    ) -> None:
        term = dictionary.create_term("machine learning", "Intro to ML")
        dictionary.add_aliases(term.id, ["ML"])
        links = resolver.resolve_links_for_article(1, "ML and machine learning")
        assert _spans(links) == [("ML", "Intro to ML")]
        assert links[0].start_index == 0

    def test_heading_suppresses_term_inside_it(
        self, dictionary: Dictionary, headings: HeadingTitleCache, resolver: LinkResolver,
    ) -> None:
        dictionary.create_term("machine learning", "Intro to ML")
        headings.save_heading_links(1, {"Machine Learning": "Machine Learning Basics"})
        content = "## Machine Learning\nText without the term."
        [link] = resolver.resolve_links_for_article(1, content)
        assert link.kind is LinkKind.HEADING
        assert link.standalone_title == "Machine Learning Basics"
        assert content[link.start_index:link.end_index] == "Machine Learning"

    def test_disabled_override_drops_term(
        self, dictionary: Dictionary, overrides: OverrideStore, resolver: LinkResolver,
    ) -> None:
        term = dictionary.create_term("machine learning", "Intro to ML")
        dictionary.add_aliases(term.id, ["ML"])
        overrides.set_override(1, "ML", "disabled")
        assert resolver.resolve_links_for_article(1, "We use ML daily.") == []
        # Other articles are unaffected.
        assert len(resolver.resolve_links_for_article(2, "We use ML daily.")) == 1

    def test_longer_overlapping_term_wins(
        self, dictionary: Dictionary, resolver: LinkResolver,
    ) -> None:
        dictionary.create_term("New York", "About New York")
        dictionary.create_term("York", "About York")
        links = resolver.resolve_links_for_article(1, "New York City")
        assert _spans(links) == [("New York", "About New York")]


# ───────────────────── Resolution rules ──────────────────────────────


class TestResolution:
    def test_empty_content(self, dictionary: Dictionary, resolver: LinkResolver) -> None:
        dictionary.create_term("bond", "What is a Bond?")
        assert resolver.resolve_links_for_article(1, "") == []

    def test_no_matches_is_empty(self, dictionary: Dictionary, resolver: LinkResolver) -> None:
        dictionary.create_term("bond", "What is a Bond?")
        assert resolver.resolve_links_for_article(1, "Nothing relevant here.") == []

    def test_empty_dictionary(self, resolver: LinkResolver) -> None:
        assert resolver.resolve_links_for_article(1, "Bonds and stocks.") == []

    def test_first_occurrence_only(self, dictionary: Dictionary, resolver: LinkResolver) -> None:
        dictionary.create_term("bond", "What is a Bond?")
        content = "A bond is a loan. Every bond has a coupon."
        [link] = resolver.resolve_links_for_article(1, content)
        assert link.start_index == content.index("bond")

    def test_custom_title_override(
        self, dictionary: Dictionary, overrides: OverrideStore, resolver: LinkResolver,
    ) -> None:
        dictionary.create_term("machine learning", "Intro to ML")
        overrides.set_override(1, "Machine Learning", "custom_title", "ML in Finance")
        [link] = resolver.resolve_links_for_article(1, "machine learning rocks")
        assert link.standalone_title == "ML in Finance"

    def test_override_on_canonical_applies_to_alias_match(
        self, dictionary: Dictionary, overrides: OverrideStore, resolver: LinkResolver,
    ) -> None:
        term = dictionary.create_term("machine learning", "Intro to ML")
        dictionary.add_aliases(term.id, ["ML"])
        overrides.set_override(1, "machine learning", "disabled")
        assert resolver.resolve_links_for_article(1, "ML is everywhere") == []

    @pytest.mark.parametrize("content", ["ML and machine learning", "machine learning and ML"])
    def test_disabled_alias_keeps_canonical_in_either_order(
        self, dictionary: Dictionary, overrides: OverrideStore, resolver: LinkResolver, content: str,
    ) -> None:
        term = dictionary.create_term("machine learning", "Intro to ML")
        dictionary.add_aliases(term.id, ["ML"])
        overrides.set_override(1, "ML", "disabled")
        links = resolver.resolve_links_for_article(1, content)
        assert _spans(links) == [("machine learning", "Intro to ML")]
        assert links[0].start_index == content.index("machine learning")

    @pytest.mark.parametrize(
        ("content", "expected"),
        [
            ("ML and machine learning", [("ML", "ML Primer")]),
            ("machine learning and ML", [("machine learning", "Intro to ML")]),
        ],
    )
    def test_custom_title_on_alias_applies_to_alias_only(
        self,
        dictionary: Dictionary,
        overrides: OverrideStore,
        resolver: LinkResolver,
        content: str,
        expected: list[tuple[str, str]],
    ) -> None:
        term = dictionary.create_term("machine learning", "Intro to ML")
        dictionary.add_aliases(term.id, ["ML"])
        overrides.set_override(1, "ML", "custom_title", "ML Primer")
        assert _spans(resolver.resolve_links_for_article(1, content)) == expected

    def test_term_with_expanding_lowercase(
        self, dictionary: Dictionary, overrides: OverrideStore, resolver: LinkResolver,
    ) -> None:
        dictionary.create_term("İstanbul", "About Istanbul")
        content = "Visit İstanbul today."
        [link] = resolver.resolve_links_for_article(1, content)
        assert link.term == "İstanbul"
        assert (link.start_index, link.end_index) == (6, 14)
        overrides.set_override(1, "İstanbul", "disabled")
        assert resolver.resolve_links_for_article(1, content) == []

    def test_disabled_term_does_not_relink_elsewhere(
        self, dictionary: Dictionary, overrides: OverrideStore, resolver: LinkResolver,
    ) -> None:
        dictionary.create_term("bond", "What is a Bond?")
        overrides.set_override(1, "bond", "disabled")
        assert resolver.resolve_links_for_article(1, "bond, bond, bond") == []

    def test_override_for_unmatched_term_has_no_effect(
        self, dictionary: Dictionary, overrides: OverrideStore, resolver: LinkResolver,
    ) -> None:
        dictionary.create_term("bond", "What is a Bond?")
        overrides.set_override(1, "equity", "custom_title", "Equity 101")
        assert _spans(resolver.resolve_links_for_article(1, "a bond")) == [("bond", "What is a Bond?")]

    def test_inactive_term_not_linked(self, dictionary: Dictionary, resolver: LinkResolver) -> None:
        term = dictionary.create_term("bond", "What is a Bond?")
        dictionary.set_active(term.id, False)
        assert resolver.resolve_links_for_article(1, "a bond") == []

    def test_term_in_heading_without_title_still_excluded(
        self, dictionary: Dictionary, resolver: LinkResolver,
    ) -> None:
        dictionary.create_term("bond", "What is a Bond?")
        content = "## Bond Basics\nA bond is a loan."
        [link] = resolver.resolve_links_for_article(1, content)
        assert link.start_index == content.index("A bond") + 2

    def test_code_fence_excluded(self, dictionary: Dictionary, resolver: LinkResolver) -> None:
        dictionary.create_term("bond", "What is a Bond?")
        content = "```\nbond = 1\n```\nA bond."
        [link] = resolver.resolve_links_for_article(1, content)
        assert link.start_index == content.rindex("bond")

    def test_heading_link_missing_from_content_is_omitted(
        self, headings: HeadingTitleCache, resolver: LinkResolver,
    ) -> None:
        headings.save_heading_links(1, {"Gone": "Gone Title", "Overview": "Overview Title"})
        content = "## Overview\ntext"
        assert _spans(resolver.resolve_links_for_article(1, content)) == [
            ("Overview", "Overview Title")
        ]

    def test_heading_and_terms_merge_in_order(
        self, dictionary: Dictionary, headings: HeadingTitleCache, resolver: LinkResolver,
    ) -> None:
        dictionary.create_term("inflation", "What is Inflation?")
        dictionary.create_term("interest rates", "How Interest Rates Work")
        headings.save_heading_links(1, {"Causes": "Causes of Inflation"})
        content = (
            "Inflation erodes value.\n"
            "## Causes\n"
            "Low interest rates and more inflation.\n"
        )
        links = resolver.resolve_links_for_article(1, content)
        assert [link.kind for link in links] == [LinkKind.TERM, LinkKind.HEADING, LinkKind.TERM]
        assert [link.term for link in links] == ["Inflation", "Causes", "interest rates"]
        _assert_invariants(links)

    def test_dictionary_outage_returns_headings_only(
        self, headings: HeadingTitleCache, overrides: OverrideStore,
    ) -> None:
        headings.save_heading_links(1, {"Overview": "Overview Title"})
        resolver = LinkResolver(_DownSnapshots(), headings, overrides)  # type: ignore[arg-type]
        links = resolver.resolve_links_for_article(1, "## Overview\nbond")
        assert _spans(links) == [("Overview", "Overview Title")]

    def test_deterministic(self, dictionary: Dictionary, resolver: LinkResolver) -> None:
        dictionary.create_term("New York", "About New York")
        dictionary.create_term("York", "About York")
        dictionary.create_term("city", "About Cities")
        content = "York is old. New York City is a city near York."
        first = resolver.resolve_links_for_article(1, content)
        assert resolver.resolve_links_for_article(1, content) == first
        _assert_invariants(first)
        assert _spans(first) == [
            ("York", "About York"),
            ("New York", "About New York"),
            ("City", "About Cities"),
        ]


# ───────────────────── Idempotence ───────────────────────────────────


class TestIdempotence:
    def test_resolve_on_overlaid_content_adds_nothing(
        self, dictionary: Dictionary, headings: HeadingTitleCache, resolver: LinkResolver,
    ) -> None:
        term = dictionary.create_term("machine learning", "Intro to ML")
        dictionary.add_aliases(term.id, ["ML"])
        dictionary.create_term("New York", "About New York")
        headings.save_heading_links(1, {"Overview": "ML Overview"})
        content = "## Overview\nML in New York. More machine learning in New York.\n"

        once = apply_links_to_content(content, resolver.resolve_links_for_article(1, content))
        second_links = resolver.resolve_links_for_article(1, once)
        twice = apply_links_to_content(once, second_links)

        assert twice == once
        visible = re.findall(r"\[([^\]]+)\]\(", once)
        assert visible == ["Overview", "ML", "New York"]
