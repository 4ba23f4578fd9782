import asyncio
import json

import redis.asyncio as aioredis
from rich.console import Console

from config import get_config
from models import RemoteCatalogEntry
from pipeline import RedisJobStore, build_pipeline
from scrapers import slug_from_url

QUEUE = "import_jobs"

console = Console()


async def run_import(pipeline, store, job: dict):
    """Headless run of the whole workflow for one queued manga."""
    job_id = job["id"]
    await store.update(job_id, status="running")

    step = pipeline.select_source(job["source"])
    if step.ok:
        step = pipeline.select_proxy(job.get("proxy") or pipeline.config.proxy_provider)
    if not step.ok:
        await store.update(job_id, status="failed", message=step.message)
        return step

    entry = RemoteCatalogEntry(
        title=job["title"],
        slug=job.get("slug") or slug_from_url(job["url"], r"/manga/([^/?#]+)/?"),
        cover_url=job.get("cover_url", ""),
        url=job["url"],
    )
    pipeline.attach_job(entry.slug, job_id)
    result = await pipeline.fetch_chapter_list(entry)
    if result.ok:
        if job.get("chapters"):
            pipeline.select_chapters(job["chapters"])
        else:
            pipeline.toggle_all_chapters()
        result = await pipeline.extract_pages()
    if result.ok or pipeline.scraped:
        result = await pipeline.publish_all()

    await store.update(job_id, status="completed" if result.ok else "failed", message=result.message)
    console.log(f"{'✅' if result.ok else '❌'} import {job_id} {entry.slug}: {result.message}")
    pipeline.reset()
    return result


async def main():
    config = get_config()
    redis = aioredis.from_url(config.redis_url, decode_responses=True)
    store = RedisJobStore(redis)
    pipeline = build_pipeline(config, job_store=store)
    while True:
        job = await redis.blpop(QUEUE, timeout=5)
        if not job:
            await asyncio.sleep(1)
            continue
        try:
            data = json.loads(job[1])
        except ValueError:
            console.log(f"[red]Skipping malformed job:[/red] {job[1]!r}")
            continue
        await run_import(pipeline, store, data)


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
