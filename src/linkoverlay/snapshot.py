"""Versioned snapshot cache over the term dictionary.

Two layers:

* the authoritative snapshot row in ``LinkStore`` (version bumped atomically
  on every rebuild), and
* an ephemeral ``EdgeCache`` keyed by ``(cache_key, version)`` with a short
  TTL as a safety net.

A cached value is served only when its stamped version equals the store's
current version. Population races are settled the same way: a write that
carries an older version than the one already cached is refused.
"""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from linkoverlay.errors import DictionaryUnavailable, StaleSnapshotVersionConflict
from linkoverlay.models import Snapshot
from linkoverlay.store import DuckDBError, LinkStore

log = logging.getLogger(__name__)

DEFAULT_CACHE_KEY = "link_whitelist_snapshot"
DEFAULT_TTL_SECONDS = 300.0


@dataclass(frozen=True, slots=True)
class _EdgeEntry:
    version: int
    value: Any
    expires_at: float


class EdgeCache:
    """In-process TTL cache whose entries are stamped with a snapshot version."""

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[str, _EdgeEntry] = {}
        self._lock = threading.Lock()

    def get(self, cache_key: str, version: int) -> Any | None:
        """Return the cached value only if stamped with exactly ``version``."""
        with self._lock:
            entry = self._entries.get(cache_key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[cache_key]
                return None
            if entry.version != version:
                return None
            return entry.value

    def put(self, cache_key: str, version: int, value: Any) -> None:
        """Store ``value`` at ``version``.

        Raises StaleSnapshotVersionConflict when a live entry already holds a
        newer version.
        """
        with self._lock:
            now = self._clock()
            current = self._entries.get(cache_key)
            if current is not None and current.expires_at > now and current.version > version:
                raise StaleSnapshotVersionConflict(cache_key, version, current.version)
            self._entries[cache_key] = _EdgeEntry(
                version=version, value=value, expires_at=now + self._ttl,
            )

    def invalidate(self, cache_key: str | None = None) -> None:
        with self._lock:
            if cache_key is None:
                self._entries.clear()
            else:
                self._entries.pop(cache_key, None)

    def stamped_version(self, cache_key: str) -> int | None:
        with self._lock:
            entry = self._entries.get(cache_key)
            return entry.version if entry is not None else None


class SnapshotCache:
    """Snapshot access for resolvers and rebuild hook for dictionary writes."""

    def __init__(
        self,
        store: LinkStore,
        *,
        edge_cache: EdgeCache | None = None,
        cache_key: str = DEFAULT_CACHE_KEY,
    ) -> None:
        self._store = store
        self._edge = edge_cache if edge_cache is not None else EdgeCache()
        self._cache_key = cache_key

    @property
    def edge_cache(self) -> EdgeCache:
        return self._edge

    def rebuild_snapshot(self) -> Snapshot:
        """Rebuild from active terms + aliases and bump the version by one."""
        try:
            snapshot = self._store.write_snapshot()
        except DuckDBError as exc:
            raise DictionaryUnavailable(f"Snapshot rebuild failed: {exc}") from exc
        log.info(
            "Rebuilt link whitelist snapshot: version=%d entries=%d",
            snapshot.version, len(snapshot.data),
        )
        self._populate(snapshot)
        return snapshot

    def get_snapshot(self) -> Snapshot:
        """Return the current snapshot, rebuilding on cold start."""
        try:
            version = self._store.read_snapshot_version()
        except DuckDBError as exc:
            raise DictionaryUnavailable(f"Snapshot version unreadable: {exc}") from exc

        if version <= 0:
            log.info("No link whitelist snapshot yet; building one")
            return self.rebuild_snapshot()

        cached = self._edge.get(self._cache_key, version)
        if cached is not None:
            return cached

        try:
            snapshot = self._store.read_snapshot()
        except DuckDBError as exc:
            raise DictionaryUnavailable(f"Snapshot unreadable: {exc}") from exc
        self._populate(snapshot)
        return snapshot

    def _populate(self, snapshot: Snapshot) -> None:
        try:
            self._edge.put(self._cache_key, snapshot.version, snapshot)
        except StaleSnapshotVersionConflict as exc:
            log.debug("Edge cache kept newer snapshot: %s", exc)
