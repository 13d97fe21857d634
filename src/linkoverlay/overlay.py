"""Insert resolved links into plain content for display.

Links are applied from the last offset to the first so an insertion never
moves an offset that has not been processed yet. The stored content is
never modified; every call returns a new string.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote

from linkoverlay.models import ResolvedLink

if TYPE_CHECKING:
    from linkoverlay.resolver import LinkResolver

log = logging.getLogger(__name__)

STANDALONE_TITLE_ROUTE = "/standalone-title"

# RFC 2396 unreserved marks. Parentheses are left out so they are escaped
# and never end a markdown link target early.
_SAFE_CHARS = "-_.!~*'"


def encode_standalone_title_param(title: str) -> str:
    return quote(title, safe=_SAFE_CHARS)


def decode_standalone_title_param(encoded: str) -> str:
    return unquote(encoded)


def standalone_title_href(title: str, *, route: str = STANDALONE_TITLE_ROUTE) -> str:
    return f"{route}?t={encode_standalone_title_param(title)}"


def _validate(content: str, links: Sequence[ResolvedLink]) -> list[ResolvedLink]:
    ordered = sorted(links, key=lambda link: link.start_index, reverse=True)
    limit = len(content)
    for link in ordered:
        if not 0 <= link.start_index < link.end_index <= len(content):
            raise ValueError(
                f"Link [{link.start_index}, {link.end_index}) outside content of length {len(content)}"
            )
        if link.end_index > limit:
            raise ValueError(
                f"Link [{link.start_index}, {link.end_index}) overlaps a later link"
            )
        limit = link.start_index
    return ordered


def apply_links_to_content(
    content: str,
    links: Sequence[ResolvedLink],
    *,
    route: str = STANDALONE_TITLE_ROUTE,
) -> str:
    """Return ``content`` with ``[text](route?t=title)`` at each link span.

    Raises ValueError for out-of-range or overlapping links before any
    markup is inserted.
    """
    if not links:
        return content
    parts: list[str] = []
    tail = len(content)
    for link in _validate(content, links):
        text = content[link.start_index:link.end_index]
        parts.append(content[link.end_index:tail])
        parts.append(f"[{text}]({standalone_title_href(link.standalone_title, route=route)})")
        tail = link.start_index
    parts.append(content[:tail])
    return "".join(reversed(parts))


def render_article(
    resolver: LinkResolver,
    explanation_id: int,
    content: str,
    *,
    route: str = STANDALONE_TITLE_ROUTE,
) -> str:
    """Resolve and overlay links; fall back to the plain content on any failure."""
    try:
        links = resolver.resolve_links_for_article(explanation_id, content)
        return apply_links_to_content(content, links, route=route)
    except Exception:
        log.exception("Article %d: link overlay failed, rendering plain content", explanation_id)
        return content
