"""DuckDB read/write store for the link overlay system.

Manages ``links.duckdb``, holding:

* ``link_whitelist`` / ``link_whitelist_aliases`` — the term dictionary
* ``link_whitelist_snapshot`` — single-row, versioned, alias-resolved copy
* ``article_heading_links`` — pre-generated heading titles per article
* ``article_link_overrides`` — per-article term exceptions

DuckDB has no ``ON DELETE CASCADE``; cascades are done here, inside one
transaction. A DuckDB connection is not thread-safe, so every public method
holds ``self._lock`` for the duration of its statements.
"""
from __future__ import annotations

import contextlib
import importlib
import json
import threading
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from linkoverlay.errors import DictionaryUnavailable
from linkoverlay.models import (
    MAX_TERM_LENGTH,
    MAX_TITLE_LENGTH,
    Alias,
    CanonicalTerm,
    HeadingLink,
    Override,
    OverrideType,
    Snapshot,
    SnapshotEntry,
    fold_case,
    normalize_heading_key,
)

# Dynamic DuckDB import for pyright compatibility
_duckdb_mod = importlib.import_module("duckdb")

DuckDBError: type[Exception] = _duckdb_mod.Error

# orjson with stdlib fallback
_orjson: Any
try:
    import orjson  # type: ignore[import-untyped]
    _orjson = orjson
except ImportError:
    _orjson = None


def _json_dumps(obj: Any) -> str:
    if _orjson is not None:
        return _orjson.dumps(obj).decode("utf-8")
    return json.dumps(obj)


def _json_loads(s: str) -> Any:
    if _orjson is not None:
        return _orjson.loads(s)
    return json.loads(s)


def _to_dict(cols: list[str], row: tuple[Any, ...]) -> dict[str, Any]:
    """Zip column names with a row tuple into a dict (strict length check)."""
    return dict(zip(cols, row, strict=True))


def _clean_text(value: Any, *, field_name: str, max_length: int) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValueError(f"{field_name} must not be empty")
    if len(text) > max_length:
        raise ValueError(f"{field_name} exceeds {max_length} characters")
    return text


SCHEMA_VERSION = "1.0.0"
SNAPSHOT_ROW_ID = 1


# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_DDL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS _schema_version (
    table_name VARCHAR PRIMARY KEY,
    version VARCHAR NOT NULL
);

-- ─── DICTIONARY ───────────────────────────────────────────────────────
CREATE SEQUENCE IF NOT EXISTS link_whitelist_seq START 1;
CREATE TABLE IF NOT EXISTS link_whitelist (
    id INTEGER PRIMARY KEY DEFAULT nextval('link_whitelist_seq'),
    canonical_term VARCHAR NOT NULL,
    canonical_term_lower VARCHAR NOT NULL UNIQUE,
    standalone_title VARCHAR NOT NULL,
    description VARCHAR,
    is_active BOOLEAN NOT NULL DEFAULT true,
    created_at TIMESTAMP DEFAULT current_timestamp,
    updated_at TIMESTAMP DEFAULT current_timestamp
);

CREATE SEQUENCE IF NOT EXISTS link_whitelist_aliases_seq START 1;
CREATE TABLE IF NOT EXISTS link_whitelist_aliases (
    id INTEGER PRIMARY KEY DEFAULT nextval('link_whitelist_aliases_seq'),
    whitelist_id INTEGER NOT NULL,
    alias_term VARCHAR NOT NULL,
    alias_term_lower VARCHAR NOT NULL UNIQUE,
    created_at TIMESTAMP DEFAULT current_timestamp
);
CREATE INDEX IF NOT EXISTS idx_link_whitelist_aliases_whitelist
    ON link_whitelist_aliases(whitelist_id);

-- ─── SNAPSHOT (single row, id = 1) ────────────────────────────────────
CREATE TABLE IF NOT EXISTS link_whitelist_snapshot (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    version INTEGER NOT NULL DEFAULT 0,
    data VARCHAR NOT NULL DEFAULT '{}',
    updated_at TIMESTAMP DEFAULT current_timestamp
);

-- ─── PER-ARTICLE ──────────────────────────────────────────────────────
CREATE SEQUENCE IF NOT EXISTS article_heading_links_seq START 1;
CREATE TABLE IF NOT EXISTS article_heading_links (
    id INTEGER PRIMARY KEY DEFAULT nextval('article_heading_links_seq'),
    explanation_id INTEGER NOT NULL,
    heading_text VARCHAR NOT NULL,
    heading_text_lower VARCHAR NOT NULL,
    standalone_title VARCHAR NOT NULL,
    created_at TIMESTAMP DEFAULT current_timestamp,
    UNIQUE (explanation_id, heading_text_lower)
);

CREATE SEQUENCE IF NOT EXISTS article_link_overrides_seq START 1;
CREATE TABLE IF NOT EXISTS article_link_overrides (
    id INTEGER PRIMARY KEY DEFAULT nextval('article_link_overrides_seq'),
    explanation_id INTEGER NOT NULL,
    term VARCHAR NOT NULL,
    term_lower VARCHAR NOT NULL,
    override_type VARCHAR NOT NULL CHECK (override_type IN ('custom_title', 'disabled')),
    custom_standalone_title VARCHAR,
    created_at TIMESTAMP DEFAULT current_timestamp,
    UNIQUE (explanation_id, term_lower)
)
"""

_TERM_COLS = (
    "id, canonical_term, canonical_term_lower, standalone_title, description, is_active"
)
_ALIAS_COLS = "id, whitelist_id, alias_term, alias_term_lower"


def _term_from_row(row: tuple[Any, ...]) -> CanonicalTerm:
    return CanonicalTerm(
        id=int(row[0]),
        canonical_term=row[1],
        canonical_term_lower=row[2],
        standalone_title=row[3],
        description=row[4],
        is_active=bool(row[5]),
    )


def _alias_from_row(row: tuple[Any, ...]) -> Alias:
    return Alias(
        id=int(row[0]),
        term_id=int(row[1]),
        alias_term=row[2],
        alias_term_lower=row[3],
    )


# ---------------------------------------------------------------------------
# LinkStore class
# ---------------------------------------------------------------------------

class LinkStore:
    """Read/write interface to ``links.duckdb``."""

    def __init__(
        self,
        db_path: Path | str,
        *,
        create_if_missing: bool = False,
    ) -> None:
        self._db_path = Path(db_path)
        if str(db_path) != ":memory:" and not self._db_path.exists() and not create_if_missing:
            raise FileNotFoundError(f"Links database not found: {self._db_path}")

        self._lock = threading.RLock()
        self._conn: Any = _duckdb_mod.connect(str(db_path))
        self._create_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _create_schema(self) -> None:
        """Create all tables if they don't exist and seed the snapshot row."""
        for stmt in _SCHEMA_DDL.split(";"):
            stmt = stmt.strip()
            if stmt:
                self._conn.execute(stmt)
        self._conn.execute(
            "INSERT INTO link_whitelist_snapshot (id, version, data) VALUES (?, 0, '{}') "
            "ON CONFLICT (id) DO NOTHING",
            [SNAPSHOT_ROW_ID],
        )
        self._conn.execute(
            "INSERT OR REPLACE INTO _schema_version (table_name, version) VALUES (?, ?)",
            ["links", SCHEMA_VERSION],
        )

    def _connection(self) -> Any:
        if self._conn is None:
            raise DictionaryUnavailable(f"Links database is closed: {self._db_path}")
        return self._conn

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[Any]:
        with self._lock:
            conn = self._connection()
            conn.execute("BEGIN TRANSACTION")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                with contextlib.suppress(Exception):
                    conn.execute("ROLLBACK")
                raise

    # ─── Dictionary terms ─────────────────────────────────────────

    def get_term(self, term_id: int) -> CanonicalTerm | None:
        with self._lock:
            row = self._connection().execute(
                f"SELECT {_TERM_COLS} FROM link_whitelist WHERE id = ?", [term_id]
            ).fetchone()
        return _term_from_row(row) if row else None

    def get_term_by_lower(self, term_lower: str) -> CanonicalTerm | None:
        with self._lock:
            row = self._connection().execute(
                f"SELECT {_TERM_COLS} FROM link_whitelist WHERE canonical_term_lower = ?",
                [fold_case(term_lower.strip())],
            ).fetchone()
        return _term_from_row(row) if row else None

    def list_terms(self, *, active_only: bool = False) -> list[CanonicalTerm]:
        where = " WHERE is_active" if active_only else ""
        with self._lock:
            rows = self._connection().execute(
                f"SELECT {_TERM_COLS} FROM link_whitelist{where} ORDER BY canonical_term"
            ).fetchall()
        return [_term_from_row(r) for r in rows]

    def create_term(
        self,
        canonical_term: str,
        standalone_title: str,
        *,
        description: str | None = None,
        is_active: bool = True,
    ) -> tuple[CanonicalTerm, bool]:
        """Insert a term; return ``(term, created)``.

        An existing term with the same lowercase form is returned unchanged
        with ``created=False``.
        """
        term = _clean_text(canonical_term, field_name="canonical_term", max_length=MAX_TERM_LENGTH)
        title = _clean_text(standalone_title, field_name="standalone_title", max_length=MAX_TITLE_LENGTH)
        term_lower = fold_case(term)
        with self._transaction() as conn:
            existing = conn.execute(
                f"SELECT {_TERM_COLS} FROM link_whitelist WHERE canonical_term_lower = ?",
                [term_lower],
            ).fetchone()
            if existing:
                return _term_from_row(existing), False
            clash = conn.execute(
                "SELECT 1 FROM link_whitelist_aliases WHERE alias_term_lower = ?",
                [term_lower],
            ).fetchone()
            if clash:
                raise ValueError(f"{term!r} is already an alias of another term")
            row = conn.execute(
                f"""
                INSERT INTO link_whitelist
                (canonical_term, canonical_term_lower, standalone_title, description, is_active)
                VALUES (?, ?, ?, ?, ?)
                RETURNING {_TERM_COLS}
                """,
                [term, term_lower, title, description, is_active],
            ).fetchone()
        return _term_from_row(row), True

    def update_term(self, term_id: int, updates: dict[str, Any]) -> CanonicalTerm:
        allowed = {"canonical_term", "standalone_title", "description", "is_active"}
        unknown = set(updates) - allowed
        if unknown:
            raise ValueError(f"Unknown term fields: {sorted(unknown)}")

        fields: dict[str, Any] = {}
        if "canonical_term" in updates:
            term = _clean_text(
                updates["canonical_term"], field_name="canonical_term", max_length=MAX_TERM_LENGTH,
            )
            fields["canonical_term"] = term
            fields["canonical_term_lower"] = fold_case(term)
        if "standalone_title" in updates:
            fields["standalone_title"] = _clean_text(
                updates["standalone_title"], field_name="standalone_title", max_length=MAX_TITLE_LENGTH,
            )
        if "description" in updates:
            fields["description"] = updates["description"]
        if "is_active" in updates:
            fields["is_active"] = bool(updates["is_active"])

        with self._transaction() as conn:
            current = conn.execute(
                f"SELECT {_TERM_COLS} FROM link_whitelist WHERE id = ?", [term_id]
            ).fetchone()
            if current is None:
                raise KeyError(f"Whitelist term not found: {term_id}")
            if not fields:
                return _term_from_row(current)
            new_lower = fields.get("canonical_term_lower")
            if new_lower and new_lower != current[2]:
                clash = conn.execute(
                    "SELECT 1 FROM link_whitelist WHERE canonical_term_lower = ? AND id <> ? "
                    "UNION ALL SELECT 1 FROM link_whitelist_aliases WHERE alias_term_lower = ?",
                    [new_lower, term_id, new_lower],
                ).fetchone()
                if clash:
                    raise ValueError(f"{fields['canonical_term']!r} is already in the dictionary")
            sets = ", ".join(f"{k} = ?" for k in fields)
            row = conn.execute(
                f"UPDATE link_whitelist SET {sets}, updated_at = current_timestamp "
                f"WHERE id = ? RETURNING {_TERM_COLS}",
                [*fields.values(), term_id],
            ).fetchone()
        return _term_from_row(row)

    def delete_term(self, term_id: int) -> bool:
        """Delete a term and its aliases. Returns False when the id is unknown."""
        with self._transaction() as conn:
            exists = conn.execute(
                "SELECT 1 FROM link_whitelist WHERE id = ?", [term_id]
            ).fetchone()
            if not exists:
                return False
            conn.execute("DELETE FROM link_whitelist_aliases WHERE whitelist_id = ?", [term_id])
            conn.execute("DELETE FROM link_whitelist WHERE id = ?", [term_id])
        return True

    # ─── Aliases ──────────────────────────────────────────────────

    def get_aliases(self, term_id: int) -> list[Alias]:
        with self._lock:
            rows = self._connection().execute(
                f"SELECT {_ALIAS_COLS} FROM link_whitelist_aliases "
                "WHERE whitelist_id = ? ORDER BY alias_term",
                [term_id],
            ).fetchall()
        return [_alias_from_row(r) for r in rows]

    def add_aliases(self, term_id: int, aliases: Iterable[str]) -> tuple[list[Alias], int]:
        """Attach aliases to a term, skipping ones that already exist.

        Returns ``(existing + inserted aliases, inserted count)``. An alias
        equal to a canonical term is rejected, as is an alias already owned
        by a different term.
        """
        cleaned: dict[str, str] = {}
        for alias in aliases:
            text = _clean_text(alias, field_name="alias_term", max_length=MAX_TERM_LENGTH)
            cleaned.setdefault(fold_case(text), text)
        if not cleaned:
            return [], 0

        lowers = list(cleaned)
        placeholders = ", ".join("?" for _ in lowers)
        inserted: list[Alias] = []
        with self._transaction() as conn:
            if conn.execute("SELECT 1 FROM link_whitelist WHERE id = ?", [term_id]).fetchone() is None:
                raise KeyError(f"Whitelist term not found: {term_id}")
            canonical_clash = conn.execute(
                f"SELECT canonical_term FROM link_whitelist "
                f"WHERE canonical_term_lower IN ({placeholders})",
                lowers,
            ).fetchone()
            if canonical_clash:
                raise ValueError(f"{canonical_clash[0]!r} is a canonical term, not an alias")
            existing_rows = conn.execute(
                f"SELECT {_ALIAS_COLS} FROM link_whitelist_aliases "
                f"WHERE alias_term_lower IN ({placeholders})",
                lowers,
            ).fetchall()
            existing = [_alias_from_row(r) for r in existing_rows]
            foreign = [a for a in existing if a.term_id != term_id]
            if foreign:
                raise ValueError(
                    f"Alias {foreign[0].alias_term!r} already belongs to term {foreign[0].term_id}"
                )
            seen = {a.alias_term_lower for a in existing}
            for lower, text in cleaned.items():
                if lower in seen:
                    continue
                row = conn.execute(
                    f"""
                    INSERT INTO link_whitelist_aliases (whitelist_id, alias_term, alias_term_lower)
                    VALUES (?, ?, ?)
                    RETURNING {_ALIAS_COLS}
                    """,
                    [term_id, text, lower],
                ).fetchone()
                inserted.append(_alias_from_row(row))
        return existing + inserted, len(inserted)

    def remove_alias(self, alias_id: int) -> bool:
        with self._transaction() as conn:
            row = conn.execute(
                "DELETE FROM link_whitelist_aliases WHERE id = ? RETURNING id", [alias_id]
            ).fetchone()
        return row is not None

    def get_active_whitelist_map(self) -> dict[str, SnapshotEntry]:
        with self._lock:
            return self._active_whitelist_map(self._connection())

    @staticmethod
    def _active_whitelist_map(conn: Any) -> dict[str, SnapshotEntry]:
        """Canonical keys first, then aliases resolved to their parent entry."""
        terms = conn.execute(
            "SELECT id, canonical_term, canonical_term_lower, standalone_title "
            "FROM link_whitelist WHERE is_active ORDER BY canonical_term_lower"
        ).fetchall()
        by_id: dict[int, SnapshotEntry] = {}
        data: dict[str, SnapshotEntry] = {}
        for term_id, canonical, canonical_lower, title in terms:
            entry = SnapshotEntry(canonical_term=canonical, standalone_title=title)
            by_id[int(term_id)] = entry
            data[canonical_lower] = entry
        aliases = conn.execute(
            "SELECT a.whitelist_id, a.alias_term_lower FROM link_whitelist_aliases AS a "
            "JOIN link_whitelist AS w ON w.id = a.whitelist_id "
            "WHERE w.is_active ORDER BY a.alias_term_lower"
        ).fetchall()
        for term_id, alias_lower in aliases:
            parent = by_id.get(int(term_id))
            if parent is not None and alias_lower not in data:
                data[alias_lower] = parent
        return data

    # ─── Snapshot ─────────────────────────────────────────────────

    def read_snapshot_version(self) -> int:
        with self._lock:
            row = self._connection().execute(
                "SELECT version FROM link_whitelist_snapshot WHERE id = ?", [SNAPSHOT_ROW_ID]
            ).fetchone()
        return int(row[0]) if row else 0

    def read_snapshot(self) -> Snapshot:
        with self._lock:
            row = self._connection().execute(
                "SELECT version, data FROM link_whitelist_snapshot WHERE id = ?",
                [SNAPSHOT_ROW_ID],
            ).fetchone()
        if row is None:
            return Snapshot(version=0)
        return Snapshot.from_json(int(row[0]), _json_loads(row[1] or "{}"))

    def write_snapshot(self) -> Snapshot:
        """Rebuild the snapshot row from the dictionary in one transaction.

        The version bump is a single ``UPDATE ... RETURNING`` so two rebuilds
        can never claim the same version number.
        """
        with self._transaction() as conn:
            data = self._active_whitelist_map(conn)
            payload = _json_dumps({k: v.to_dict() for k, v in data.items()})
            row = conn.execute(
                "UPDATE link_whitelist_snapshot "
                "SET version = version + 1, data = ?, updated_at = current_timestamp "
                "WHERE id = ? RETURNING version",
                [payload, SNAPSHOT_ROW_ID],
            ).fetchone()
            if row is None:
                row = conn.execute(
                    "INSERT INTO link_whitelist_snapshot (id, version, data) VALUES (?, 1, ?) "
                    "RETURNING version",
                    [SNAPSHOT_ROW_ID, payload],
                ).fetchone()
        return Snapshot(version=int(row[0]), data=data)

    # ─── Heading links ────────────────────────────────────────────

    def get_heading_links(self, explanation_id: int) -> list[HeadingLink]:
        with self._lock:
            rows = self._connection().execute(
                "SELECT explanation_id, heading_text, standalone_title "
                "FROM article_heading_links WHERE explanation_id = ? ORDER BY id",
                [explanation_id],
            ).fetchall()
        return [
            HeadingLink(explanation_id=int(r[0]), heading_text=r[1], standalone_title=r[2])
            for r in rows
        ]

    def save_heading_links(self, explanation_id: int, headings: dict[str, str]) -> int:
        """Upsert heading → title pairs. Additive: other headings are untouched."""
        records: dict[str, tuple[str, str]] = {}
        for heading_text, title in headings.items():
            text = _clean_text(heading_text, field_name="heading_text", max_length=MAX_TITLE_LENGTH)
            clean_title = _clean_text(title, field_name="standalone_title", max_length=MAX_TITLE_LENGTH)
            records[normalize_heading_key(text)] = (text, clean_title)
        if not records:
            return 0
        with self._transaction() as conn:
            for lower, (text, title) in records.items():
                conn.execute(
                    """
                    INSERT INTO article_heading_links
                    (explanation_id, heading_text, heading_text_lower, standalone_title)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT (explanation_id, heading_text_lower)
                    DO UPDATE SET heading_text = excluded.heading_text,
                                  standalone_title = excluded.standalone_title
                    """,
                    [explanation_id, text, lower, title],
                )
        return len(records)

    def delete_heading_links(self, explanation_id: int) -> int:
        with self._transaction() as conn:
            rows = conn.execute(
                "DELETE FROM article_heading_links WHERE explanation_id = ? RETURNING id",
                [explanation_id],
            ).fetchall()
        return len(rows)

    # ─── Overrides ────────────────────────────────────────────────

    def get_overrides(self, explanation_id: int) -> dict[str, Override]:
        with self._lock:
            rows = self._connection().execute(
                "SELECT explanation_id, term, override_type, custom_standalone_title "
                "FROM article_link_overrides WHERE explanation_id = ? ORDER BY term_lower",
                [explanation_id],
            ).fetchall()
        result: dict[str, Override] = {}
        for r in rows:
            override = Override(
                explanation_id=int(r[0]),
                term=r[1],
                override_type=OverrideType(r[2]),
                custom_standalone_title=r[3],
            )
            result[override.term_lower] = override
        return result

    def upsert_override(self, override: Override) -> Override:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO article_link_overrides
                (explanation_id, term, term_lower, override_type, custom_standalone_title)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (explanation_id, term_lower)
                DO UPDATE SET term = excluded.term,
                              override_type = excluded.override_type,
                              custom_standalone_title = excluded.custom_standalone_title
                """,
                [
                    override.explanation_id,
                    override.term.strip(),
                    override.term_lower,
                    override.override_type.value,
                    override.custom_standalone_title,
                ],
            )
        return override

    def delete_override(self, explanation_id: int, term: str) -> bool:
        with self._transaction() as conn:
            row = conn.execute(
                "DELETE FROM article_link_overrides "
                "WHERE explanation_id = ? AND term_lower = ? RETURNING id",
                [explanation_id, fold_case(term.strip())],
            ).fetchone()
        return row is not None

    # ─── Article lifecycle ────────────────────────────────────────

    def delete_article(self, explanation_id: int) -> dict[str, int]:
        """Remove every row owned by an article."""
        with self._transaction() as conn:
            headings = conn.execute(
                "DELETE FROM article_heading_links WHERE explanation_id = ? RETURNING id",
                [explanation_id],
            ).fetchall()
            overrides = conn.execute(
                "DELETE FROM article_link_overrides WHERE explanation_id = ? RETURNING id",
                [explanation_id],
            ).fetchall()
        return {"heading_links": len(headings), "overrides": len(overrides)}

    # ─── Lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        """Close the DuckDB connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
