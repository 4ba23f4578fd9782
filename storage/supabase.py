"""
storage/supabase.py
Supabase backend over plain HTTP: PostgREST for the catalog tables and the
Storage API for page images.
"""

from urllib.parse import quote

import httpx

from constants import DEFAULT_REQUEST_TIMEOUT, STORAGE_BUCKET
from errors import CatalogError, ErrorCode, StorageError


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return body.get("message") or body.get("error") or body.get("msg") or f"HTTP {resp.status_code}"
    return f"HTTP {resp.status_code}"


def _raise_for(resp: httpx.Response, error_cls):
    if resp.is_success:
        return
    code = ErrorCode.AUTHORIZATION if resp.status_code in (401, 403) else None
    raise error_cls(_error_message(resp), code)


class _SupabaseBase:
    def __init__(self, url: str, key: str, client: httpx.AsyncClient = None):
        self.url = url.rstrip("/")
        self.client = client or httpx.AsyncClient(
            base_url=self.url,
            timeout=DEFAULT_REQUEST_TIMEOUT,
            headers={"apikey": key, "Authorization": f"Bearer {key}"},
        )

    async def aclose(self):
        await self.client.aclose()


class SupabaseStorage(_SupabaseBase):
    def __init__(self, url: str, key: str, bucket: str = STORAGE_BUCKET, client=None):
        super().__init__(url, key, client)
        self.bucket = bucket

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        resp = await self.client.post(
            f"/storage/v1/object/{self.bucket}/{quote(path)}",
            content=data,
            headers={
                "Content-Type": content_type,
                "x-upsert": "true",
                "cache-control": "3600",
            },
        )
        _raise_for(resp, StorageError)
        return self.public_url(path)

    def public_url(self, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{quote(path)}"


class SupabaseCatalog(_SupabaseBase):
    RETURN_ROW = {"Prefer": "return=representation"}

    async def _select(self, table: str, params: dict):
        resp = await self.client.get(f"/rest/v1/{table}", params=params)
        _raise_for(resp, CatalogError)
        return resp.json()

    async def _write(self, method: str, table: str, params=None, json=None) -> dict:
        resp = await self.client.request(
            method, f"/rest/v1/{table}", params=params, json=json, headers=self.RETURN_ROW
        )
        _raise_for(resp, CatalogError)
        rows = resp.json()
        if not rows:
            raise CatalogError(f"Nenhuma linha retornada por {method} {table}")
        return rows[0]

    async def find_manga_by_slug(self, slug: str):
        rows = await self._select("mangas", {"slug": f"eq.{slug}", "select": "id,slug,title"})
        return rows[0] if rows else None

    async def insert_manga(self, row: dict) -> dict:
        return await self._write("POST", "mangas", json=row)

    async def delete_manga(self, manga_id: str):
        resp = await self.client.delete("/rest/v1/mangas", params={"id": f"eq.{manga_id}"})
        _raise_for(resp, CatalogError)

    async def list_mangas(self):
        return await self._select("mangas", {"select": "id,slug,title", "order": "title.asc"})

    async def find_chapter(self, manga_id: str, number: float):
        rows = await self._select("chapters", {
            "manga_id": f"eq.{manga_id}",
            "number": f"eq.{number}",
            "select": "id,number",
        })
        return rows[0] if rows else None

    async def insert_chapter(self, row: dict) -> dict:
        return await self._write("POST", "chapters", json=row)

    async def update_chapter(self, chapter_id: str, fields: dict) -> dict:
        return await self._write("PATCH", "chapters", params={"id": f"eq.{chapter_id}"}, json=fields)
