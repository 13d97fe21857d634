"""Per-article override store.

Overrides only adjust matches the resolver already found: a ``custom_title``
for a term that never matches has no visible effect.
"""
from __future__ import annotations

import logging

from linkoverlay.models import Override, OverrideType, fold_case, validate_override
from linkoverlay.store import LinkStore

log = logging.getLogger(__name__)


class OverrideStore:
    def __init__(self, store: LinkStore) -> None:
        self._store = store

    def get_overrides_for_article(self, explanation_id: int) -> dict[str, Override]:
        """Overrides keyed by ``term_lower``."""
        return self._store.get_overrides(explanation_id)

    def set_override(
        self,
        explanation_id: int,
        term: str,
        override_type: OverrideType | str,
        custom_standalone_title: str | None = None,
    ) -> Override:
        """Insert or replace the override for ``(explanation_id, term_lower)``.

        Raises InvalidOverride before anything is written.
        """
        kind = validate_override(override_type, custom_standalone_title, term=term)
        title = None
        if kind is OverrideType.CUSTOM_TITLE and custom_standalone_title:
            title = custom_standalone_title.strip()
        override = Override(
            explanation_id=explanation_id,
            term=term.strip(),
            override_type=kind,
            custom_standalone_title=title,
        )
        self._store.upsert_override(override)
        log.info(
            "Article %d: %s override for %r", explanation_id, kind.value, override.term_lower,
        )
        return override

    def remove_override(self, explanation_id: int, term: str) -> bool:
        """Delete the override, reverting the term to the dictionary default."""
        removed = self._store.delete_override(explanation_id, term)
        if removed:
            log.info("Article %d: removed override for %r", explanation_id, fold_case(term.strip()))
        return removed
