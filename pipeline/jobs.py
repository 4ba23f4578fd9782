"""
pipeline/jobs.py
Per-chapter status records for an import run, so a run can be inspected
(and picked up again) after the pipeline that started it is gone.
"""

import json
import uuid
from datetime import datetime, timezone

from redis.exceptions import RedisError
from rich.console import Console

from models import ChapterStatus, format_number

console = Console()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MemoryJobStore:
    def __init__(self):
        self.jobs = {}

    async def create(self, job_id: str = None, **meta) -> str:
        job_id = job_id or str(uuid.uuid4())
        self.jobs[job_id] = {
            "id": job_id,
            "created_at": _now(),
            **meta,
            "chapters": {},
            "errors": {},
        }
        return job_id

    async def update(self, job_id: str, **fields):
        if job_id in self.jobs:
            self.jobs[job_id].update(fields)

    async def set_chapter(self, job_id: str, number: float, status: ChapterStatus, error: str = ""):
        job = self.jobs.get(job_id)
        if job is None:
            return
        key = format_number(number)
        job["chapters"][key] = ChapterStatus(status).value
        if error:
            job["errors"][key] = error
        else:
            job["errors"].pop(key, None)

    async def get(self, job_id: str):
        job = self.jobs.get(job_id)
        if job is None:
            return None
        return {**job, "chapters": dict(job["chapters"]), "errors": dict(job["errors"])}


class RedisJobStore:
    """
    import_job:<id>           hash of job fields
    import_job:<id>:chapters  hash chapter number -> status
    import_job:<id>:errors    hash chapter number -> last error
    """

    prefix = "import_job"

    def __init__(self, redis):
        self.redis = redis

    def _key(self, job_id, suffix=""):
        return f"{self.prefix}:{job_id}{suffix}"

    async def create(self, job_id: str = None, **meta) -> str:
        job_id = job_id or str(uuid.uuid4())
        fields = {"id": job_id, "created_at": _now()}
        fields.update({k: json.dumps(v) for k, v in meta.items()})
        try:
            await self.redis.hset(self._key(job_id), mapping=fields)
        except RedisError as e:
            console.log(f"[red]Could not record job {job_id}:[/red] {e}")
        return job_id

    async def update(self, job_id: str, **fields):
        try:
            await self.redis.hset(
                self._key(job_id), mapping={k: json.dumps(v) for k, v in fields.items()}
            )
        except RedisError as e:
            console.log(f"[red]Could not update job {job_id}:[/red] {e}")

    async def set_chapter(self, job_id: str, number: float, status: ChapterStatus, error: str = ""):
        key = format_number(number)
        try:
            await self.redis.hset(self._key(job_id, ":chapters"), key, ChapterStatus(status).value)
            if error:
                await self.redis.hset(self._key(job_id, ":errors"), key, error)
            else:
                await self.redis.hdel(self._key(job_id, ":errors"), key)
        except RedisError as e:
            console.log(f"[red]Could not record chapter {key} of job {job_id}:[/red] {e}")

    async def get(self, job_id: str):
        raw = await self.redis.hgetall(self._key(job_id))
        if not raw:
            return None
        job = {}
        for field, value in raw.items():
            if field in ("id", "created_at"):
                job[field] = value
            else:
                job[field] = json.loads(value)
        job["chapters"] = await self.redis.hgetall(self._key(job_id, ":chapters"))
        job["errors"] = await self.redis.hgetall(self._key(job_id, ":errors"))
        return job
