"""Heading title cache: generate once at creation, invalidate on heading change.

Standalone titles for H2/H3 headings come from an external generator and
are persisted before the article is first rendered. The render path only
reads them. When an edit changes the heading list, every title for the
article is deleted; headings stay unlinked until something regenerates
them out of band.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

from linkoverlay.markdown import extract_headings, headings_match
from linkoverlay.models import HeadingLink, normalize_heading_key
from linkoverlay.store import LinkStore

log = logging.getLogger(__name__)


class TitleGenerator(Protocol):
    def generate_heading_standalone_titles(self, content: str) -> Mapping[str, str]:
        """Map each heading text in ``content`` to a standalone title."""
        ...


def _clean_title(title: str) -> str:
    return str(title or "").strip().strip("\"'").strip()


class HeadingTitleCache:
    def __init__(self, store: LinkStore) -> None:
        self._store = store

    def get_heading_links(self, explanation_id: int) -> dict[str, HeadingLink]:
        """Heading links keyed by normalized (lowercase, single-spaced) heading text."""
        return {
            link.heading_text_lower: link
            for link in self._store.get_heading_links(explanation_id)
        }

    def save_heading_links(self, explanation_id: int, titles: Mapping[str, str]) -> int:
        cleaned = {
            heading.strip(): _clean_title(title)
            for heading, title in titles.items()
            if heading and heading.strip() and _clean_title(title)
        }
        return self._store.save_heading_links(explanation_id, cleaned)

    def on_article_created(
        self,
        explanation_id: int,
        content: str,
        generator: TitleGenerator,
    ) -> int:
        """Generate and persist titles for the new article's headings.

        Generator failures are logged and leave the article without heading
        links; creation itself is never blocked.
        """
        headings = extract_headings(content)
        if not headings:
            return 0
        try:
            generated = generator.generate_heading_standalone_titles(content)
        except Exception as exc:
            log.warning(
                "Heading title generation failed for article %d: %s", explanation_id, exc,
            )
            return 0
        wanted = {normalize_heading_key(h) for h in headings}
        titles = {
            heading: title
            for heading, title in (generated or {}).items()
            if normalize_heading_key(heading) in wanted
        }
        saved = self.save_heading_links(explanation_id, titles)
        if saved < len(wanted):
            log.info(
                "Article %d: %d of %d headings received standalone titles",
                explanation_id, saved, len(wanted),
            )
        return saved

    def on_article_updated(self, explanation_id: int, old_content: str, new_content: str) -> bool:
        """Drop cached titles if the heading list changed. Returns True if dropped."""
        if headings_match(extract_headings(old_content), extract_headings(new_content)):
            return False
        removed = self._store.delete_heading_links(explanation_id)
        log.info(
            "Article %d headings changed; invalidated %d heading links", explanation_id, removed,
        )
        return True

    def regenerate(self, explanation_id: int, content: str, generator: TitleGenerator) -> int:
        self._store.delete_heading_links(explanation_id)
        return self.on_article_created(explanation_id, content, generator)
