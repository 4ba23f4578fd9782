"""
publisher/catalog.py
Writes scraped chapters into the site's catalog.

A publish creates the manga on first sight (from the source's detail page),
re-hosts the pages and writes one chapter row per (manga, number).
"""

import re
import unicodedata

import httpx
from rich.console import Console

from constants import DEFAULT_MANGA_STATUS, MANGA_TYPES
from errors import CatalogError, ErrorCode, ScrapeCancelled, ScrapeError, ValidationError
from models import MangaMetadata, PublishResult, format_number
from sources import get_source

console = Console()


def slugify(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode()
    return re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")


def _compact(row: dict) -> dict:
    """Drop empty values so the database defaults apply."""
    return {k: v for k, v in row.items() if v not in (None, "", [])}


class CatalogPublisher:
    def __init__(self, fetcher, catalog, republisher, rehost_covers: bool = True):
        self.fetcher = fetcher
        self.catalog = catalog
        self.republisher = republisher
        self.rehost_covers = rehost_covers

    # -------------------------------------------------------
    # 📖 Manga
    # -------------------------------------------------------

    async def fetch_metadata(self, profile, manga_url: str, proxy, on_status=None) -> MangaMetadata:
        """Detail page metadata; any failure just means empty fields."""
        if not manga_url:
            return MangaMetadata()
        try:
            html = await self.fetcher.fetch_text(
                proxy.build_url(manga_url, profile.render_details), on_status=on_status
            )
        except ScrapeCancelled:
            raise
        except (ScrapeError, httpx.HTTPError) as e:
            console.log(f"[yellow]Failed to fetch manga details, using defaults:[/yellow] {e}")
            return MangaMetadata()
        return profile.extract_metadata(html)

    async def ensure_manga(self, chapter, proxy, on_status=None):
        """Returns (manga_id, created)."""
        existing = await self.catalog.find_manga_by_slug(chapter.manga_slug)
        if existing:
            return existing["id"], False

        profile = get_source(chapter.source)
        if on_status is not None:
            on_status("Extraindo dados da obra...")
        meta = await self.fetch_metadata(profile, chapter.manga_url, proxy, on_status)

        cover = chapter.cover_url
        if self.rehost_covers:
            cover = await self.republisher.republish_cover(chapter.manga_slug, cover, proxy)

        row = await self.catalog.insert_manga(_compact({
            "title": chapter.manga_title,
            "slug": chapter.manga_slug,
            "cover_url": cover,
            "type": meta.manga_type,
            "status": DEFAULT_MANGA_STATUS,
            "synopsis": meta.synopsis or f"Importado de {profile.display_name}",
            "author": meta.author,
            "artist": meta.artist,
            "genres": meta.genres,
        }))
        console.log(f"📚 Created manga {chapter.manga_title} ({row['id']})")
        return row["id"], True

    async def add_manga(self, title: str, cover_url: str, slug: str = None,
                        manga_type: str = "manga", **fields) -> dict:
        """Manual creation from the admin form."""
        title = (title or "").strip()
        if not title:
            raise ValidationError("Título é obrigatório")
        if not (cover_url or "").strip():
            raise ValidationError("Capa é obrigatória")
        if manga_type not in MANGA_TYPES:
            raise ValidationError(f"Tipo inválido: {manga_type}")

        slug = slugify(slug or title)
        if not slug:
            raise ValidationError("Slug inválido")
        if await self.catalog.find_manga_by_slug(slug):
            raise ValidationError(f"Já existe uma obra com o slug {slug}")

        return await self.catalog.insert_manga(_compact({
            "title": title,
            "slug": slug,
            "cover_url": cover_url.strip(),
            "type": manga_type,
            "status": fields.pop("status", DEFAULT_MANGA_STATUS),
            **fields,
        }))

    # -------------------------------------------------------
    # 🚀 Publish
    # -------------------------------------------------------

    async def _write_chapter(self, manga_id: str, number: float, pages):
        """Returns (chapter_id, replaced)."""
        existing = await self.catalog.find_chapter(manga_id, number)
        if existing:
            row = await self.catalog.update_chapter(existing["id"], {"pages": pages})
            return row["id"], True
        row = await self.catalog.insert_chapter({"manga_id": manga_id, "number": number, "pages": pages})
        return row["id"], False

    async def publish(self, chapter, proxy, on_status=None, cancel=None) -> PublishResult:
        label = format_number(chapter.chapter_number)
        try:
            manga_id, created = await self.ensure_manga(chapter, proxy, on_status)
        except httpx.HTTPError as e:
            raise CatalogError(f"Falha ao acessar o catálogo: {e}", ErrorCode.TRANSIENT)

        try:
            if on_status is not None:
                on_status(f"Fazendo upload das páginas do capítulo {label}...")
            urls = await self.republisher.republish(chapter, proxy, on_status=on_status, cancel=cancel)
            chapter_id, replaced = await self._write_chapter(manga_id, chapter.chapter_number, urls)
        except (ScrapeError, httpx.HTTPError) as e:
            if created:
                await self._undo_manga(manga_id, chapter.manga_slug)
            if isinstance(e, ScrapeError):
                raise
            raise CatalogError(f"Falha ao acessar o catálogo: {e}", ErrorCode.TRANSIENT)

        remote = {p.url for p in chapter.pages}
        fallbacks = sum(1 for url in urls if url in remote)
        console.log(f"✅ {chapter.manga_slug} cap {label}: {len(urls) - fallbacks}/{len(urls)} pages re-hosted")

        return PublishResult(
            manga_id=manga_id,
            chapter_id=chapter_id,
            chapter_number=chapter.chapter_number,
            pages=urls,
            fallback_pages=fallbacks,
            created_manga=created,
            replaced_chapter=replaced,
        )

    async def _undo_manga(self, manga_id: str, slug: str):
        try:
            await self.catalog.delete_manga(manga_id)
            console.log(f"[yellow]Rolled back manga {slug} after failed chapter write[/yellow]")
        except (ScrapeError, httpx.HTTPError) as e:
            console.log(f"[red]Could not roll back manga {slug}:[/red] {e}")
