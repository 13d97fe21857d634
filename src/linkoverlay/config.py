"""Runtime configuration from the environment (and an optional ``.env``)."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from linkoverlay.overlay import STANDALONE_TITLE_ROUTE
from linkoverlay.snapshot import DEFAULT_CACHE_KEY, DEFAULT_TTL_SECONDS

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_DB_PATH = PROJECT_ROOT / "data" / "links.duckdb"


def load_dotenv(env_path: Path | None = None) -> None:
    """Load ``KEY=value`` lines into ``os.environ`` without overriding set keys."""
    env_path = env_path or PROJECT_ROOT / ".env"
    if not env_path.exists():
        return
    for line in env_path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip().strip("'\"")
        if key and key not in os.environ:
            os.environ[key] = value


@dataclass(frozen=True, slots=True)
class OverlayConfig:
    db_path: Path = DEFAULT_DB_PATH
    edge_cache_ttl_seconds: float = DEFAULT_TTL_SECONDS
    edge_cache_key: str = DEFAULT_CACHE_KEY
    title_route: str = STANDALONE_TITLE_ROUTE

    @classmethod
    def from_env(cls, *, env_path: Path | None = None) -> OverlayConfig:
        load_dotenv(env_path)
        ttl_raw = os.environ.get("LINK_OVERLAY_EDGE_TTL_SECONDS", "").strip()
        try:
            ttl = float(ttl_raw) if ttl_raw else DEFAULT_TTL_SECONDS
        except ValueError:
            raise ValueError(
                f"LINK_OVERLAY_EDGE_TTL_SECONDS must be a number, got {ttl_raw!r}"
            ) from None
        if ttl <= 0:
            raise ValueError("LINK_OVERLAY_EDGE_TTL_SECONDS must be positive")
        db_raw = os.environ.get("LINK_OVERLAY_DB", "").strip()
        return cls(
            db_path=Path(db_raw) if db_raw else DEFAULT_DB_PATH,
            edge_cache_ttl_seconds=ttl,
            edge_cache_key=os.environ.get("LINK_OVERLAY_EDGE_CACHE_KEY", "").strip()
            or DEFAULT_CACHE_KEY,
            title_route=os.environ.get("LINK_OVERLAY_TITLE_ROUTE", "").strip()
            or STANDALONE_TITLE_ROUTE,
        )
