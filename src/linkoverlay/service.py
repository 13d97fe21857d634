"""One object wiring the store, caches, dictionary and resolver together."""
from __future__ import annotations

from pathlib import Path

from linkoverlay.config import OverlayConfig
from linkoverlay.dictionary import Dictionary
from linkoverlay.headings import HeadingTitleCache, TitleGenerator
from linkoverlay.models import ResolvedLink
from linkoverlay.overlay import apply_links_to_content, render_article
from linkoverlay.overrides import OverrideStore
from linkoverlay.resolver import LinkResolver
from linkoverlay.snapshot import EdgeCache, SnapshotCache
from linkoverlay.store import LinkStore


class LinkOverlayService:
    def __init__(self, store: LinkStore, config: OverlayConfig | None = None) -> None:
        self.config = config or OverlayConfig(db_path=store.db_path)
        self.store = store
        self.snapshots = SnapshotCache(
            store,
            edge_cache=EdgeCache(ttl_seconds=self.config.edge_cache_ttl_seconds),
            cache_key=self.config.edge_cache_key,
        )
        self.dictionary = Dictionary(store, self.snapshots)
        self.headings = HeadingTitleCache(store)
        self.overrides = OverrideStore(store)
        self.resolver = LinkResolver(self.snapshots, self.headings, self.overrides)

    @classmethod
    def open(
        cls,
        config: OverlayConfig | None = None,
        *,
        db_path: Path | str | None = None,
    ) -> LinkOverlayService:
        config = config or OverlayConfig.from_env()
        path = Path(db_path) if db_path is not None else config.db_path
        if str(path) != ":memory:":
            path.parent.mkdir(parents=True, exist_ok=True)
        store = LinkStore(path, create_if_missing=True)
        return cls(store, config)

    # ─── Article lifecycle hooks ──────────────────────────────────

    def article_created(self, explanation_id: int, content: str, generator: TitleGenerator) -> int:
        return self.headings.on_article_created(explanation_id, content, generator)

    def article_updated(self, explanation_id: int, old_content: str, new_content: str) -> bool:
        return self.headings.on_article_updated(explanation_id, old_content, new_content)

    def article_deleted(self, explanation_id: int) -> dict[str, int]:
        return self.store.delete_article(explanation_id)

    # ─── Render path ──────────────────────────────────────────────

    def resolve(self, explanation_id: int, content: str) -> list[ResolvedLink]:
        return self.resolver.resolve_links_for_article(explanation_id, content)

    def apply(self, content: str, links: list[ResolvedLink]) -> str:
        return apply_links_to_content(content, links, route=self.config.title_route)

    def render(self, explanation_id: int, content: str) -> str:
        return render_article(
            self.resolver, explanation_id, content, route=self.config.title_route,
        )

    def close(self) -> None:
        self.store.close()
