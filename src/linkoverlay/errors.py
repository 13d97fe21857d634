"""Error taxonomy for the link overlay core.

Only ``InvalidOverride`` is meant to reach an administrative caller. The
others are raised at internal seams and recovered by the component above
them (snapshot outage -> heading-only links, stale edge-cache write ->
ignored, malformed heading -> link omitted).
"""
from __future__ import annotations


class DictionaryUnavailable(RuntimeError):
    """Raised when the snapshot cannot be read from or written to its store."""


class InvalidOverride(ValueError):
    """Raised when an override row is inconsistent with its ``override_type``."""


class StaleSnapshotVersionConflict(RuntimeError):
    """Raised when an edge-cache write carries an older version than the entry it would replace."""

    def __init__(self, cache_key: str, attempted: int, current: int) -> None:
        super().__init__(
            f"Edge cache {cache_key!r}: refusing version {attempted}, "
            f"already holding {current}"
        )
        self.cache_key = cache_key
        self.attempted = attempted
        self.current = current


class MalformedContent(ValueError):
    """Raised when a heading link cannot be located among the content's heading markers."""

    def __init__(self, explanation_id: int, heading_text: str) -> None:
        super().__init__(
            f"Heading {heading_text!r} not found in content of article {explanation_id}"
        )
        self.explanation_id = explanation_id
        self.heading_text = heading_text
