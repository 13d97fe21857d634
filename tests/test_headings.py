"""Tests for heading title generation and invalidation."""
from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

import pytest

from linkoverlay.headings import HeadingTitleCache
from linkoverlay.store import LinkStore

ARTICLE = "Intro text.\n## Overview\nBody.\n### Key Points\nMore.\n"


class StubGenerator:
    def __init__(self, titles: Mapping[str, str] | None = None, error: Exception | None = None):
        self.titles = dict(titles or {})
        self.error = error
        self.calls: list[str] = []

    def generate_heading_standalone_titles(self, content: str) -> Mapping[str, str]:
        self.calls.append(content)
        if self.error is not None:
            raise self.error
        return self.titles


@pytest.fixture()
def store(tmp_path: Path) -> LinkStore:
    s = LinkStore(tmp_path / "links.duckdb", create_if_missing=True)
    yield s  # type: ignore[misc]
    s.close()


@pytest.fixture()
def cache(store: LinkStore) -> HeadingTitleCache:
    return HeadingTitleCache(store)


class TestOnArticleCreated:
    def test_persists_generated_titles(self, cache: HeadingTitleCache) -> None:
        gen = StubGenerator({
            "Overview": "Overview of Inflation",
            "Key Points": "\"Key Points About Inflation\"",
        })
        assert cache.on_article_created(1, ARTICLE, gen) == 2
        links = cache.get_heading_links(1)
        assert set(links) == {"overview", "key points"}
        assert links["key points"].standalone_title == "Key Points About Inflation"

    def test_no_headings_skips_generator(self, cache: HeadingTitleCache) -> None:
        gen = StubGenerator({"x": "y"})
        assert cache.on_article_created(1, "No headings here.", gen) == 0
        assert gen.calls == []

    def test_generator_failure_leaves_no_links(self, cache: HeadingTitleCache) -> None:
        gen = StubGenerator(error=RuntimeError("model timeout"))
        assert cache.on_article_created(1, ARTICLE, gen) == 0
        assert cache.get_heading_links(1) == {}

    def test_titles_for_unknown_headings_dropped(self, cache: HeadingTitleCache) -> None:
        gen = StubGenerator({"overview": "Overview of X", "Not A Heading": "Nope", "Key Points": "  "})
        assert cache.on_article_created(1, ARTICLE, gen) == 1
        assert list(cache.get_heading_links(1)) == ["overview"]


class TestOnArticleUpdated:
    def test_unchanged_headings_keep_links(self, cache: HeadingTitleCache) -> None:
        cache.save_heading_links(1, {"Overview": "O", "Key Points": "K"})
        edited = ARTICLE.replace("Body.", "Rewritten body.")
        assert cache.on_article_updated(1, ARTICLE, edited) is False
        assert len(cache.get_heading_links(1)) == 2

    def test_case_only_change_keeps_links(self, cache: HeadingTitleCache) -> None:
        cache.save_heading_links(1, {"Overview": "O"})
        assert cache.on_article_updated(1, ARTICLE, ARTICLE.replace("Overview", "OVERVIEW")) is False

    def test_changed_headings_drop_all_links(self, cache: HeadingTitleCache) -> None:
        cache.save_heading_links(1, {"Overview": "O", "Key Points": "K"})
        edited = ARTICLE.replace("Key Points", "Takeaways")
        assert cache.on_article_updated(1, ARTICLE, edited) is True
        assert cache.get_heading_links(1) == {}

    def test_added_heading_drops_links(self, cache: HeadingTitleCache) -> None:
        cache.save_heading_links(1, {"Overview": "O"})
        edited = ARTICLE + "## Summary\n"
        assert cache.on_article_updated(1, ARTICLE, edited) is True
        assert cache.get_heading_links(1) == {}


class TestRegenerate:
    def test_replaces_existing_titles(self, cache: HeadingTitleCache) -> None:
        cache.save_heading_links(1, {"Old Heading": "stale"})
        gen = StubGenerator({"Overview": "Fresh Overview"})
        assert cache.regenerate(1, ARTICLE, gen) == 1
        assert list(cache.get_heading_links(1)) == ["overview"]


class TestSave:
    def test_blank_entries_ignored(self, cache: HeadingTitleCache) -> None:
        assert cache.save_heading_links(1, {"": "x", "A": "", "B": "b"}) == 1
        assert list(cache.get_heading_links(1)) == ["b"]
