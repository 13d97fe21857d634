"""Tests for linkoverlay.markdown — headings, code fences, existing links."""
from __future__ import annotations

from linkoverlay.markdown import (
    code_fence_ranges,
    extract_headings,
    find_heading_spans,
    find_markdown_links,
    headings_match,
)


class TestHeadings:
    def test_extracts_h2_and_h3_only(self) -> None:
        content = "# Title\n## Overview\ntext\n### Details\n#### Deep\n##NoSpace\n"
        assert extract_headings(content) == ["Overview", "Details"]

    def test_spans_point_at_heading_text(self) -> None:
        content = "intro\n## Key Points  \nbody"
        [span] = find_heading_spans(content)
        assert span.level == 2
        assert content[span.text_start:span.text_end] == "Key Points"
        assert content[span.line_start:span.line_end] == "## Key Points  "
        assert span.key == "key points"

    def test_crlf_line_endings(self) -> None:
        content = "## Overview\r\nbody\r\n"
        [span] = find_heading_spans(content)
        assert span.text == "Overview"

    def test_headings_inside_code_fence_ignored(self) -> None:
        content = "## Real\n```\n## Fake\n```\n### Also Real\n"
        assert extract_headings(content) == ["Real", "Also Real"]

    def test_empty_content(self) -> None:
        assert extract_headings("") == []
        assert find_heading_spans("") == []


class TestHeadingsMatch:
    def test_same_headings_ignoring_case(self) -> None:
        assert headings_match(["Overview", "Key Points"], ["overview", "KEY POINTS"])

    def test_different_length(self) -> None:
        assert not headings_match(["A"], ["A", "B"])

    def test_reordered(self) -> None:
        assert not headings_match(["A", "B"], ["B", "A"])

    def test_both_empty(self) -> None:
        assert headings_match([], [])


class TestCodeFences:
    def test_closed_fence(self) -> None:
        content = "before\n```python\nx = 1\n```\nafter"
        [(start, end)] = code_fence_ranges(content)
        assert content[start:end] == "```python\nx = 1\n```"

    def test_unclosed_fence_runs_to_end(self) -> None:
        content = "before\n```\nforever"
        [(start, end)] = code_fence_ranges(content)
        assert end == len(content)
        assert content[start:].startswith("```")


class TestMarkdownLinks:
    def test_finds_link_spans(self) -> None:
        content = "See [Machine Learning](/standalone-title?t=What%20is%20ML%3F) now."
        [link] = find_markdown_links(content)
        assert content[link.start:link.end].startswith("[Machine Learning](")
        assert content[link.text_start:link.text_end] == "Machine Learning"
        assert link.target == "/standalone-title?t=What%20is%20ML%3F"

    def test_no_links(self) -> None:
        assert find_markdown_links("plain [brackets] and (parens)") == []
