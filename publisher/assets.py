"""
publisher/assets.py
Re-hosts scraped page images on our own object storage.
Best effort per page: an image that can't be re-hosted keeps its remote url.
"""

from io import BytesIO
from pathlib import PurePosixPath
from urllib.parse import urlparse

from PIL import Image
from rich.console import Console

from config import get_config
from constants import DEFAULT_IMAGE_EXT, DEFAULT_IMAGE_TYPE
from errors import ScrapeCancelled, StorageError
from models import format_number

console = Console()


def extension_for(url: str) -> str:
    suffix = PurePosixPath(urlparse(url).path).suffix.lstrip(".").lower()
    if suffix and suffix.isalnum() and len(suffix) <= 5:
        return suffix
    return DEFAULT_IMAGE_EXT


def page_path(manga_slug: str, chapter_number: float, position: int, ext: str) -> str:
    """chapters/<slug>/cap-<n>/page-<NNN>.<ext>, position is 1-based."""
    return f"chapters/{manga_slug}/cap-{format_number(chapter_number)}/page-{position:03d}.{ext}"


def cover_path(manga_slug: str, ext: str) -> str:
    return f"covers/{manga_slug}/cover.{ext}"


def sniff_content_type(data: bytes) -> str:
    try:
        with Image.open(BytesIO(data)) as img:
            return Image.MIME.get(img.format, DEFAULT_IMAGE_TYPE)
    except OSError:
        raise StorageError("Resposta do proxy não é uma imagem")


class AssetRepublisher:
    def __init__(self, fetcher, storage, config=None):
        self.fetcher = fetcher
        self.storage = storage
        self.config = config or get_config()

    def _prepare(self, data: bytes, content_type: str, ext: str):
        if self.config.compress_images:
            try:
                with Image.open(BytesIO(data)) as img:
                    out = BytesIO()
                    img.convert("RGB").save(out, "JPEG", quality=85, optimize=True)
            except OSError:
                raise StorageError("Resposta do proxy não é uma imagem")
            return out.getvalue(), "image/jpeg", "jpg"

        if not content_type.startswith("image/"):
            content_type = sniff_content_type(data)
        return data, content_type, ext

    async def _rehost(self, remote_url: str, path_for, proxy, cancel=None) -> str:
        data, content_type = await self.fetcher.fetch_bytes(
            proxy.build_url(remote_url, False), cancel=cancel
        )
        data, content_type, ext = self._prepare(data, content_type, extension_for(remote_url))
        return await self.storage.upload(path_for(ext), data, content_type)

    async def republish(self, chapter, proxy, on_status=None, cancel=None):
        """
        Upload every page of `chapter` in ascending index order.
        Returns the final url list, one entry per page.
        """
        pages = sorted(chapter.pages, key=lambda p: p.index)
        urls = []

        for position, page in enumerate(pages, 1):
            if on_status is not None:
                on_status(f"Página {position}/{len(pages)}...")
            try:
                url = await self._rehost(
                    page.url,
                    lambda ext: page_path(chapter.manga_slug, chapter.chapter_number, position, ext),
                    proxy,
                    cancel,
                )
            except ScrapeCancelled:
                raise
            except Exception as e:
                console.log(f"[red]Failed to upload page {position}:[/red] {e}")
                url = page.url
            urls.append(url)

        return urls

    async def republish_cover(self, manga_slug: str, cover_url: str, proxy) -> str:
        if not cover_url:
            return cover_url
        try:
            return await self._rehost(cover_url, lambda ext: cover_path(manga_slug, ext), proxy)
        except Exception as e:
            console.log(f"[yellow]Keeping remote cover for {manga_slug}:[/yellow] {e}")
            return cover_url
