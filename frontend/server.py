"""
frontend/server.py
FastAPI backend for the manga importer admin.
Drives the scrape pipeline, manual catalog entries and queued imports.
"""

import json
import uuid
from typing import List, Optional

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel

from config import get_config
from errors import ErrorCode, ScrapeError
from pipeline import RedisJobStore, build_pipeline
from proxies import list_providers
from sources import get_source, list_sources

# -------------------------------------------------------
# 🚀 App Initialization
# -------------------------------------------------------

app = FastAPI(title="Manga Importer", version="1.0.0")
app.state.pipeline = build_pipeline()
app.state.redis = None
app.state.jobs = None

IMPORT_QUEUE = "import_jobs"


@app.on_event("startup")
async def startup():
    """Connect Redis and start recording pipeline jobs."""
    app.state.redis = aioredis.from_url(get_config().redis_url, decode_responses=True)
    app.state.jobs = RedisJobStore(app.state.redis)
    app.state.pipeline.job_store = app.state.jobs


@app.get("/health")
async def health():
    """Simple health check for Docker and monitoring."""
    return {"status": "ok"}


def require_admin(x_admin_token: str = Header(default="")):
    token = get_config().admin_token
    if token and x_admin_token != token:
        raise HTTPException(403, "Apenas administradores podem usar o importador")


api = APIRouter(prefix="/api/v1", dependencies=[Depends(require_admin)])


def _respond(result):
    """StepResult -> JSON body, failures with an error become HTTP errors."""
    if result.ok or result.error is None:
        return result.to_dict()
    code = getattr(result.error, "code", None)
    if code == ErrorCode.VALIDATION:
        raise HTTPException(400, result.to_dict())
    if code == ErrorCode.AUTHORIZATION:
        raise HTTPException(403, result.to_dict())
    raise HTTPException(502, result.to_dict())


# -------------------------------------------------------
# 📦 Request bodies
# -------------------------------------------------------

class SourceBody(BaseModel):
    name: str


class ProxyBody(BaseModel):
    id: str


class MangaBody(BaseModel):
    slug: str


class ChapterBody(BaseModel):
    number: float


class ChapterListBody(BaseModel):
    numbers: List[float]


class ManualMangaBody(BaseModel):
    title: str
    cover_url: str
    slug: Optional[str] = None
    type: str = "manga"
    synopsis: Optional[str] = None
    author: Optional[str] = None
    artist: Optional[str] = None
    genres: List[str] = []


class ImportBody(BaseModel):
    source: str
    url: str
    title: str
    slug: Optional[str] = None
    cover_url: str = ""
    proxy: Optional[str] = None
    chapters: List[float] = []


# -------------------------------------------------------
# ⚙️ API: Sources & proxies
# -------------------------------------------------------

@api.get("/sources")
async def get_sources():
    return list_sources()


@api.get("/proxies")
async def get_proxies():
    return list_providers()


# -------------------------------------------------------
# 🔍 API: Scrape workflow
# -------------------------------------------------------

@api.get("/scrape/state")
async def scrape_state():
    return app.state.pipeline.snapshot()


@api.post("/scrape/source")
async def scrape_source(body: SourceBody):
    return _respond(app.state.pipeline.select_source(body.name))


@api.post("/scrape/proxy")
async def scrape_proxy(body: ProxyBody):
    return _respond(app.state.pipeline.select_proxy(body.id))


@api.post("/scrape/catalog")
async def scrape_catalog():
    return _respond(await app.state.pipeline.fetch_catalog())


@api.post("/scrape/manga")
async def scrape_manga(body: MangaBody):
    return _respond(await app.state.pipeline.select_manga(body.slug))


@api.post("/scrape/chapters/toggle")
async def toggle_chapter(body: ChapterBody):
    app.state.pipeline.toggle_chapter(body.number)
    return app.state.pipeline.snapshot()


@api.post("/scrape/chapters/toggle-all")
async def toggle_all_chapters():
    app.state.pipeline.toggle_all_chapters()
    return app.state.pipeline.snapshot()


@api.post("/scrape/chapters/select")
async def select_chapters(body: ChapterListBody):
    app.state.pipeline.select_chapters(body.numbers)
    return app.state.pipeline.snapshot()


@api.post("/scrape/extract")
async def scrape_extract():
    return _respond(await app.state.pipeline.extract_pages())


@api.post("/scrape/publish/{number}")
async def scrape_publish(number: float, slug: Optional[str] = None):
    return _respond(await app.state.pipeline.publish(number, slug))


@api.post("/scrape/publish-all")
async def scrape_publish_all():
    return _respond(await app.state.pipeline.publish_all())


@api.post("/scrape/cancel")
async def scrape_cancel():
    app.state.pipeline.cancel()
    return {"message": "Cancelamento solicitado"}


@api.post("/scrape/reset")
async def scrape_reset():
    app.state.pipeline.reset()
    return app.state.pipeline.snapshot()


# -------------------------------------------------------
# 📚 API: Catalog
# -------------------------------------------------------

@api.get("/mangas")
async def list_mangas():
    return await app.state.pipeline.publisher.catalog.list_mangas()


@api.post("/mangas")
async def add_manga(body: ManualMangaBody):
    fields = body.model_dump(exclude={"title", "cover_url", "slug", "type"})
    try:
        return await app.state.pipeline.publisher.add_manga(
            body.title, body.cover_url, slug=body.slug, manga_type=body.type, **fields
        )
    except ScrapeError as e:
        status = {ErrorCode.VALIDATION: 400, ErrorCode.AUTHORIZATION: 403}.get(e.code, 502)
        raise HTTPException(status, e.to_dict())


# -------------------------------------------------------
# 📥 API: Queued imports
# -------------------------------------------------------

def _redis():
    if app.state.redis is None:
        raise HTTPException(503, "Redis indisponível")
    return app.state.redis


@api.post("/imports")
async def enqueue_import(body: ImportBody):
    """Queue a full import for the worker."""
    r = _redis()
    try:
        profile = get_source(body.source)
    except ScrapeError as e:
        raise HTTPException(400, e.to_dict())
    if not profile.validate_manga_url(body.url):
        raise HTTPException(400, f"URL não pertence a {profile.display_name}")

    job_id = str(uuid.uuid4())
    job = {"id": job_id, **body.model_dump()}
    await app.state.jobs.create(job_id, status="queued", source=body.source, title=body.title, url=body.url)
    await r.rpush(IMPORT_QUEUE, json.dumps(job))
    return {"message": f"Importação de {body.title} enfileirada", "job_id": job_id}


@api.get("/imports/{job_id}")
async def get_import(job_id: str):
    _redis()
    job = await app.state.jobs.get(job_id)
    if not job:
        raise HTTPException(404, "Job not found")
    return job


app.include_router(api)
