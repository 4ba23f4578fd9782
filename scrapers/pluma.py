"""
scrapers/pluma.py
PlumaComics (MangaStream/WordPress theme). Listings are built client-side,
so every request goes through the proxy with rendering on.
"""

from constants import PLUMACOMICS_URL
from models import RemoteCatalogEntry, RemoteChapterRef

from .base import (
    SiteProfile,
    absolute_url,
    first_attr,
    parse_chapter_number,
    parse_html,
    slug_from_url,
    text_of,
)


class PlumaComicsProfile(SiteProfile):
    name = "plumacomics"
    display_name = "PlumaComics"
    base_url = PLUMACOMICS_URL
    manga_pattern = r"^https?://(www\.)?plumacomics\.cloud/manga/[\w\-]+"

    page_selector = "img.ts-main-image"

    def list_catalog(self, html: str):
        """Cards of the home page "hot" slider."""
        soup = parse_html(html)
        entries = []
        for card in soup.select(".hotslid .bs .bsx a"):
            title = (card.get("title") or "").strip()
            url = absolute_url(self.base_url, (card.get("href") or "").strip())
            cover = absolute_url(self.base_url, first_attr(card.select_one("img"), ("src", "data-src")))
            slug = slug_from_url(url)
            if title and slug:
                entries.append(RemoteCatalogEntry(title=title, slug=slug, cover_url=cover, url=url))
        return entries

    def list_chapters(self, html: str):
        soup = parse_html(html)
        chapters = []
        for link in soup.select(".chbox .eph-num a"):
            label = text_of(link.select_one(".chapternum"))
            number = parse_chapter_number(label)
            if number <= 0:
                continue
            chapters.append(RemoteChapterRef(
                number=number,
                label=label,
                url=absolute_url(self.base_url, (link.get("href") or "").strip()),
                published=text_of(link.select_one(".chapterdate")),
            ))
        chapters.sort(key=lambda c: c.number, reverse=True)
        return chapters
