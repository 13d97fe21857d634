"""Render-time link overlay for generated articles."""

from linkoverlay.errors import (
    DictionaryUnavailable,
    InvalidOverride,
    MalformedContent,
    StaleSnapshotVersionConflict,
)
from linkoverlay.models import (
    Alias,
    CanonicalTerm,
    HeadingLink,
    LinkKind,
    Override,
    OverrideType,
    ResolvedLink,
    Snapshot,
    SnapshotEntry,
)
from linkoverlay.overlay import apply_links_to_content, render_article
from linkoverlay.resolver import LinkResolver
from linkoverlay.service import LinkOverlayService
from linkoverlay.store import LinkStore

__all__ = [
    "Alias",
    "CanonicalTerm",
    "DictionaryUnavailable",
    "HeadingLink",
    "InvalidOverride",
    "LinkKind",
    "LinkOverlayService",
    "LinkResolver",
    "LinkStore",
    "MalformedContent",
    "Override",
    "OverrideType",
    "ResolvedLink",
    "Snapshot",
    "SnapshotEntry",
    "StaleSnapshotVersionConflict",
    "apply_links_to_content",
    "render_article",
]
