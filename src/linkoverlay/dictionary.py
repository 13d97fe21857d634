"""Dictionary administration: terms and aliases.

Every successful mutation rebuilds the snapshot before returning. If the
rebuild fails the mutation stays committed; the error propagates and the
next successful rebuild brings the snapshot back in line.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from linkoverlay.models import Alias, CanonicalTerm, SnapshotEntry
from linkoverlay.snapshot import SnapshotCache
from linkoverlay.store import LinkStore

log = logging.getLogger(__name__)


class Dictionary:
    def __init__(self, store: LinkStore, snapshots: SnapshotCache) -> None:
        self._store = store
        self._snapshots = snapshots

    def _rebuild(self, reason: str) -> None:
        try:
            self._snapshots.rebuild_snapshot()
        except Exception:
            log.exception("Snapshot rebuild after %s failed", reason)
            raise

    # ─── Terms ────────────────────────────────────────────────────

    def create_term(
        self,
        canonical_term: str,
        standalone_title: str,
        *,
        description: str | None = None,
        is_active: bool = True,
    ) -> CanonicalTerm:
        term, created = self._store.create_term(
            canonical_term, standalone_title, description=description, is_active=is_active,
        )
        if created:
            self._rebuild(f"create_term({term.canonical_term!r})")
        return term

    def update_term(self, term_id: int, **updates: Any) -> CanonicalTerm:
        term = self._store.update_term(term_id, updates)
        if updates:
            self._rebuild(f"update_term({term_id})")
        return term

    def set_active(self, term_id: int, is_active: bool) -> CanonicalTerm:
        return self.update_term(term_id, is_active=is_active)

    def delete_term(self, term_id: int) -> None:
        if not self._store.delete_term(term_id):
            raise KeyError(f"Whitelist term not found: {term_id}")
        self._rebuild(f"delete_term({term_id})")

    def get_term(self, term_id: int) -> CanonicalTerm:
        term = self._store.get_term(term_id)
        if term is None:
            raise KeyError(f"Whitelist term not found: {term_id}")
        return term

    def list_terms(self, *, active_only: bool = True) -> list[CanonicalTerm]:
        return self._store.list_terms(active_only=active_only)

    # ─── Aliases ──────────────────────────────────────────────────

    def add_aliases(self, term_id: int, aliases: Iterable[str]) -> list[Alias]:
        result, inserted = self._store.add_aliases(term_id, aliases)
        if inserted:
            self._rebuild(f"add_aliases({term_id})")
        return result

    def remove_alias(self, alias_id: int) -> None:
        if not self._store.remove_alias(alias_id):
            raise KeyError(f"Alias not found: {alias_id}")
        self._rebuild(f"remove_alias({alias_id})")

    def get_aliases(self, term_id: int) -> list[Alias]:
        return self._store.get_aliases(term_id)

    def get_active_whitelist_map(self) -> dict[str, SnapshotEntry]:
        """Live (non-snapshot) lookup map; used for diagnostics and rebuilds."""
        return self._store.get_active_whitelist_map()
