"""Structural markdown scanning with original-string offsets.

Only what the resolver needs: H2/H3 headings, fenced code blocks and
links that are already present in the content. Everything returns
half-open ``[start, end)`` offsets into the string it was given.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from linkoverlay.models import normalize_heading_key


_HEADING_RE = re.compile(r"^(#{2,3})[ \t]+(.+?)[ \t\r]*$", re.MULTILINE)
_CODE_FENCE_RE = re.compile(r"(?ms)^[ \t]{0,3}```.*?(?:^[ \t]{0,3}```[^\n]*$|\Z)")
_LINK_RE = re.compile(r"\[([^\[\]\n]+)\]\(([^()\s]*)\)")


@dataclass(frozen=True, slots=True)
class HeadingSpan:
    level: int
    text: str
    text_start: int
    text_end: int
    line_start: int
    line_end: int

    @property
    def key(self) -> str:
        return normalize_heading_key(self.text)


@dataclass(frozen=True, slots=True)
class MarkdownLink:
    start: int
    end: int
    text_start: int
    text_end: int
    target: str


def code_fence_ranges(content: str) -> list[tuple[int, int]]:
    return [(m.start(), m.end()) for m in _CODE_FENCE_RE.finditer(content or "")]


def _inside(start: int, ranges: list[tuple[int, int]]) -> bool:
    return any(a <= start < b for a, b in ranges)


def find_heading_spans(content: str) -> list[HeadingSpan]:
    """H2 and H3 headings in document order, skipping fenced code."""
    fences = code_fence_ranges(content)
    spans: list[HeadingSpan] = []
    for m in _HEADING_RE.finditer(content or ""):
        if fences and _inside(m.start(), fences):
            continue
        if not m.group(2).strip():
            continue
        spans.append(
            HeadingSpan(
                level=len(m.group(1)),
                text=m.group(2),
                text_start=m.start(2),
                text_end=m.end(2),
                line_start=m.start(),
                line_end=m.end(),
            )
        )
    return spans


def extract_headings(content: str) -> list[str]:
    """Ordered heading texts (H2/H3) of ``content``."""
    return [h.text for h in find_heading_spans(content)]


def headings_match(old: list[str], new: list[str]) -> bool:
    """Same length and same text at every position, ignoring case."""
    if len(old) != len(new):
        return False
    return all(
        normalize_heading_key(a) == normalize_heading_key(b)
        for a, b in zip(old, new, strict=True)
    )


def find_markdown_links(content: str) -> list[MarkdownLink]:
    return [
        MarkdownLink(
            start=m.start(),
            end=m.end(),
            text_start=m.start(1),
            text_end=m.end(1),
            target=m.group(2),
        )
        for m in _LINK_RE.finditer(content or "")
    ]
