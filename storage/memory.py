"""
storage/memory.py
In-process object storage and catalog, for local runs and tests.
"""

import uuid

from constants import STORAGE_BUCKET
from errors import CatalogError


class MemoryObjectStorage:
    def __init__(self, base_url: str = f"memory://{STORAGE_BUCKET}"):
        self.base_url = base_url.rstrip("/")
        self.objects = {}

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        self.objects[path] = (data, content_type)
        return self.public_url(path)

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{path}"


class MemoryCatalogStore:
    """Mirrors the `mangas` / `chapters` tables, including the unique keys."""

    def __init__(self):
        self.mangas = {}
        self.chapters = {}

    async def find_manga_by_slug(self, slug: str):
        for row in self.mangas.values():
            if row["slug"] == slug:
                return dict(row)
        return None

    async def insert_manga(self, row: dict) -> dict:
        if await self.find_manga_by_slug(row["slug"]):
            raise CatalogError('duplicate key value violates unique constraint "mangas_slug_key"')
        stored = {"id": str(uuid.uuid4()), **row}
        self.mangas[stored["id"]] = stored
        return dict(stored)

    async def delete_manga(self, manga_id: str):
        self.mangas.pop(manga_id, None)
        for chapter_id in [cid for cid, ch in self.chapters.items() if ch["manga_id"] == manga_id]:
            del self.chapters[chapter_id]

    async def list_mangas(self):
        return sorted((dict(row) for row in self.mangas.values()), key=lambda r: r["title"])

    async def find_chapter(self, manga_id: str, number: float):
        for row in self.chapters.values():
            if row["manga_id"] == manga_id and row["number"] == number:
                return dict(row)
        return None

    async def insert_chapter(self, row: dict) -> dict:
        if row["manga_id"] not in self.mangas:
            raise CatalogError('insert on table "chapters" violates foreign key constraint')
        if await self.find_chapter(row["manga_id"], row["number"]):
            raise CatalogError('duplicate key value violates unique constraint "chapters_manga_id_number_key"')
        stored = {"id": str(uuid.uuid4()), **row}
        self.chapters[stored["id"]] = stored
        return dict(stored)

    async def update_chapter(self, chapter_id: str, fields: dict) -> dict:
        if chapter_id not in self.chapters:
            raise CatalogError(f"Capítulo não encontrado: {chapter_id}")
        self.chapters[chapter_id].update(fields)
        return dict(self.chapters[chapter_id])
