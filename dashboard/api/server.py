"""FastAPI server exposing the link overlay to the surrounding application.

Opens the links database configured by ``LINK_OVERLAY_DB`` (see
``linkoverlay.config``) and exposes render, override and dictionary
endpoints as JSON.

Usage:
    PYTHONPATH=src uvicorn dashboard.api.server:app --reload --port 8000
"""
from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field

# Add src to path so we can import linkoverlay without installing it
_src = Path(__file__).resolve().parents[2] / "src"
if str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from linkoverlay.config import OverlayConfig  # noqa: E402
from linkoverlay.errors import DictionaryUnavailable, InvalidOverride  # noqa: E402
from linkoverlay.models import Alias, CanonicalTerm, Override  # noqa: E402
from linkoverlay.service import LinkOverlayService  # noqa: E402

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Globals
# ---------------------------------------------------------------------------
_service: LinkOverlayService | None = None


def _get_service() -> LinkOverlayService:
    """Get the overlay service, raising 503 if not available."""
    if _service is None:
        raise HTTPException(status_code=503, detail="Links database not available")
    return _service


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, DictionaryUnavailable):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, KeyError):
        return HTTPException(status_code=404, detail=str(exc.args[0]) if exc.args else "Not found")
    if isinstance(exc, (InvalidOverride, ValueError)):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    global _service  # noqa: PLW0603
    config = OverlayConfig.from_env()
    try:
        _service = LinkOverlayService.open(config)
        log.info("Links database opened: %s", config.db_path)
    except Exception as e:
        log.warning("Could not open links database %s: %s", config.db_path, e)
        _service = None
    yield
    if _service is not None:
        _service.close()
        _service = None


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Link Overlay API",
    version="0.1.0",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class RenderRequest(BaseModel):
    content: str


class TermCreate(BaseModel):
    canonical_term: str = Field(min_length=1, max_length=255)
    standalone_title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    is_active: bool = True
    aliases: list[str] = Field(default_factory=list)


class TermUpdate(BaseModel):
    canonical_term: str | None = Field(default=None, min_length=1, max_length=255)
    standalone_title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    is_active: bool | None = None


class AliasesAdd(BaseModel):
    aliases: list[str]


class OverrideSet(BaseModel):
    override_type: str
    custom_standalone_title: str | None = None


class HeadingTitles(BaseModel):
    titles: dict[str, str]


def _term_json(term: CanonicalTerm, aliases: list[Alias] | None = None) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": term.id,
        "canonical_term": term.canonical_term,
        "standalone_title": term.standalone_title,
        "description": term.description,
        "is_active": term.is_active,
    }
    if aliases is not None:
        out["aliases"] = [{"id": a.id, "alias_term": a.alias_term} for a in aliases]
    return out


def _override_json(override: Override) -> dict[str, Any]:
    return {
        "explanation_id": override.explanation_id,
        "term": override.term,
        "term_lower": override.term_lower,
        "override_type": override.override_type.value,
        "custom_standalone_title": override.custom_standalone_title,
    }


# ---------------------------------------------------------------------------
# Routes: Health
# ---------------------------------------------------------------------------
@app.get("/api/health")
async def health():
    version = None
    if _service is not None:
        try:
            version = _service.store.read_snapshot_version()
        except Exception as e:
            log.warning("Health check could not read snapshot version: %s", e)
    return {
        "status": "ok",
        "store_loaded": _service is not None,
        "snapshot_version": version,
    }


# ---------------------------------------------------------------------------
# Routes: Articles
# ---------------------------------------------------------------------------
@app.post("/api/articles/{explanation_id}/render")
async def render(explanation_id: int, req: RenderRequest):
    svc = _get_service()
    try:
        links = svc.resolve(explanation_id, req.content)
        content = svc.apply(req.content, links)
    except Exception:
        log.exception("Article %d: render failed, returning plain content", explanation_id)
        return {"content": req.content, "links": [], "degraded": True}
    return {
        "content": content,
        "links": [link.to_dict() for link in links],
        "degraded": False,
    }


@app.post("/api/articles/{explanation_id}/headings")
async def save_headings(explanation_id: int, req: HeadingTitles):
    svc = _get_service()
    try:
        saved = svc.headings.save_heading_links(explanation_id, req.titles)
    except ValueError as e:
        raise _http_error(e) from e
    return {"saved": saved}


@app.delete("/api/articles/{explanation_id}")
async def delete_article(explanation_id: int):
    return _get_service().article_deleted(explanation_id)


@app.get("/api/articles/{explanation_id}/overrides")
async def list_overrides(explanation_id: int):
    overrides = _get_service().overrides.get_overrides_for_article(explanation_id)
    return {"overrides": [_override_json(o) for o in overrides.values()]}


@app.put("/api/articles/{explanation_id}/overrides/{term}")
async def set_override(explanation_id: int, term: str, req: OverrideSet):
    svc = _get_service()
    try:
        override = svc.overrides.set_override(
            explanation_id, term, req.override_type, req.custom_standalone_title,
        )
    except InvalidOverride as e:
        raise _http_error(e) from e
    return _override_json(override)


@app.delete("/api/articles/{explanation_id}/overrides/{term}")
async def remove_override(explanation_id: int, term: str):
    if not _get_service().overrides.remove_override(explanation_id, term):
        raise HTTPException(status_code=404, detail=f"No override for {term!r}")
    return {"removed": True}


# ---------------------------------------------------------------------------
# Routes: Dictionary
# ---------------------------------------------------------------------------
@app.get("/api/whitelist")
async def list_terms(include_inactive: bool = False):
    svc = _get_service()
    terms = svc.dictionary.list_terms(active_only=not include_inactive)
    return {"terms": [_term_json(t, svc.dictionary.get_aliases(t.id)) for t in terms]}


@app.post("/api/whitelist")
async def create_term(req: TermCreate):
    svc = _get_service()
    try:
        term = svc.dictionary.create_term(
            req.canonical_term,
            req.standalone_title,
            description=req.description,
            is_active=req.is_active,
        )
        aliases = svc.dictionary.add_aliases(term.id, req.aliases) if req.aliases else []
    except (ValueError, KeyError, DictionaryUnavailable) as e:
        raise _http_error(e) from e
    return _term_json(term, aliases)


@app.patch("/api/whitelist/{term_id}")
async def update_term(term_id: int, req: TermUpdate):
    svc = _get_service()
    updates = req.model_dump(exclude_unset=True)
    try:
        term = svc.dictionary.update_term(term_id, **updates)
    except (ValueError, KeyError, DictionaryUnavailable) as e:
        raise _http_error(e) from e
    return _term_json(term, svc.dictionary.get_aliases(term_id))


@app.delete("/api/whitelist/{term_id}")
async def delete_term(term_id: int):
    try:
        _get_service().dictionary.delete_term(term_id)
    except (KeyError, DictionaryUnavailable) as e:
        raise _http_error(e) from e
    return {"deleted": True}


@app.post("/api/whitelist/{term_id}/aliases")
async def add_aliases(term_id: int, req: AliasesAdd):
    try:
        aliases = _get_service().dictionary.add_aliases(term_id, req.aliases)
    except (ValueError, KeyError, DictionaryUnavailable) as e:
        raise _http_error(e) from e
    return {"aliases": [{"id": a.id, "alias_term": a.alias_term} for a in aliases]}


@app.delete("/api/whitelist/aliases/{alias_id}")
async def remove_alias(alias_id: int):
    try:
        _get_service().dictionary.remove_alias(alias_id)
    except (KeyError, DictionaryUnavailable) as e:
        raise _http_error(e) from e
    return {"deleted": True}


@app.get("/api/whitelist/snapshot")
async def get_snapshot():
    try:
        snapshot = _get_service().snapshots.get_snapshot()
    except DictionaryUnavailable as e:
        raise _http_error(e) from e
    return {"version": snapshot.version, "data": snapshot.data_to_json()}
