"""Value types shared by the store, snapshot, resolver and overlay.

Rows coming out of DuckDB are converted into these frozen dataclasses at the
store boundary; nothing above the store handles raw tuples.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from linkoverlay.errors import InvalidOverride


MAX_TERM_LENGTH = 255
MAX_TITLE_LENGTH = 500


def fold_case(text: str) -> str:
    """Lowercase ``text`` without changing its length.

    Characters whose lowercase form is longer (``"İ"`` becomes two code
    points) are kept as they are. Dictionary keys and article content both go
    through this fold, so the two sides always agree.
    """
    lowered = text.lower()
    if len(lowered) == len(text):
        return lowered
    return "".join(ch.lower() if len(ch.lower()) == 1 else ch for ch in text)


class OverrideType(str, Enum):
    CUSTOM_TITLE = "custom_title"
    DISABLED = "disabled"


class LinkKind(str, Enum):
    HEADING = "heading"
    TERM = "term"


# ---------------------------------------------------------------------------
# Dictionary
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class CanonicalTerm:
    """One whitelist entry. Soft-disabled via ``is_active`` rather than deleted."""

    id: int
    canonical_term: str
    canonical_term_lower: str
    standalone_title: str
    description: str | None = None
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class Alias:
    id: int
    term_id: int
    alias_term: str
    alias_term_lower: str


@dataclass(frozen=True, slots=True)
class SnapshotEntry:
    canonical_term: str
    standalone_title: str

    def to_dict(self) -> dict[str, str]:
        return {
            "canonical_term": self.canonical_term,
            "standalone_title": self.standalone_title,
        }


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Versioned, alias-resolved view of the active dictionary.

    ``data`` is keyed by lowercase surface form (canonical term or alias).
    ``version`` is the only freshness signal; it is never compared with
    wall-clock time.
    """

    version: int
    data: Mapping[str, SnapshotEntry] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Shared through the edge cache; callers get a read-only view.
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))

    @property
    def terms(self) -> list[str]:
        return list(self.data)

    def lookup(self, term_lower: str) -> SnapshotEntry | None:
        return self.data.get(term_lower)

    def data_to_json(self) -> dict[str, dict[str, str]]:
        return {k: v.to_dict() for k, v in self.data.items()}

    @classmethod
    def from_json(cls, version: int, raw: dict[str, Any] | None) -> Snapshot:
        data: dict[str, SnapshotEntry] = {}
        for key, entry in (raw or {}).items():
            if not isinstance(entry, dict):
                continue
            data[str(key)] = SnapshotEntry(
                canonical_term=str(entry.get("canonical_term", "")),
                standalone_title=str(entry.get("standalone_title", "")),
            )
        return cls(version=int(version), data=data)


# ---------------------------------------------------------------------------
# Per-article rows
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class HeadingLink:
    explanation_id: int
    heading_text: str
    standalone_title: str

    @property
    def heading_text_lower(self) -> str:
        return normalize_heading_key(self.heading_text)


@dataclass(frozen=True, slots=True)
class Override:
    """A per-article exception for one term.

    ``custom_standalone_title`` is required for ``custom_title`` and must be
    absent for ``disabled``; construction enforces this.
    """

    explanation_id: int
    term: str
    override_type: OverrideType
    custom_standalone_title: str | None = None

    def __post_init__(self) -> None:
        validate_override(self.override_type, self.custom_standalone_title, term=self.term)

    @property
    def term_lower(self) -> str:
        return fold_case(self.term.strip())

    @property
    def is_disabled(self) -> bool:
        return self.override_type is OverrideType.DISABLED


def validate_override(
    override_type: OverrideType | str,
    custom_standalone_title: str | None,
    *,
    term: str = "",
) -> OverrideType:
    """Check an override's type/title pairing and return the parsed type."""
    if not str(term or "").strip():
        raise InvalidOverride("Override term must not be empty")
    try:
        kind = OverrideType(override_type)
    except ValueError:
        raise InvalidOverride(f"Unknown override_type: {override_type!r}") from None
    title = (custom_standalone_title or "").strip()
    if kind is OverrideType.CUSTOM_TITLE:
        if not title:
            raise InvalidOverride(
                f"custom_title override for {term!r} requires custom_standalone_title"
            )
        if len(title) > MAX_TITLE_LENGTH:
            raise InvalidOverride(
                f"custom_standalone_title for {term!r} exceeds {MAX_TITLE_LENGTH} characters"
            )
    elif custom_standalone_title is not None:
        raise InvalidOverride(
            f"disabled override for {term!r} must not carry custom_standalone_title"
        )
    return kind


# ---------------------------------------------------------------------------
# Resolver output
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ResolvedLink:
    """One link to insert at ``[start_index, end_index)`` of the original content."""

    term: str
    start_index: int
    end_index: int
    standalone_title: str
    kind: LinkKind = LinkKind.TERM
    canonical_term: str | None = None

    def overlaps(self, start: int, end: int) -> bool:
        return not (end <= self.start_index or start >= self.end_index)

    def to_dict(self) -> dict[str, Any]:
        return {
            "term": self.term,
            "startIndex": self.start_index,
            "endIndex": self.end_index,
            "standaloneTitle": self.standalone_title,
            "type": self.kind.value,
        }


def normalize_heading_key(text: str) -> str:
    return " ".join((text or "").split()).lower()
