"""
scrapers/nexus.py
NexusToons. Listings are server-rendered so catalog and chapter requests
skip proxy rendering; the reader itself still needs it.
"""

from constants import NEXUSTOONS_URL
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


class NexusToonsProfile(SiteProfile):
    name = "nexustoons"
    display_name = "NexusToons"
    base_url = NEXUSTOONS_URL
    manga_pattern = r"^https?://(www\.)?nexustoons\.site/manga/[\w\-]+"

    render_catalog = False
    render_chapters = False
    render_details = True

    page_selector = "img.manga-page-image"

    def list_catalog(self, html: str):
        """Cards of the trending carousel."""
        soup = parse_html(html)
        entries = []
        for card in soup.select(".embla__slide a.content-card"):
            title = text_of(card.select_one("h3"))
            href = (card.get("href") or "").strip()
            img = card.select_one("img.content-cover") or card.select_one("img")
            cover = first_attr(img, ("src", "data-src", "data-lazy-src"))
            slug = slug_from_url(href, r"/manga/([^/?#]+)/?")
            if title and slug:
                entries.append(RemoteCatalogEntry(
                    title=title,
                    slug=slug,
                    cover_url=absolute_url(self.base_url, cover),
                    url=absolute_url(self.base_url, href),
                ))
        return entries

    def list_chapters(self, html: str):
        soup = parse_html(html)
        chapters = []
        for item in soup.select("a.chapter-item"):
            number = parse_chapter_number(item.get("data-chapter-number") or "")
            if number <= 0:
                continue
            chapters.append(RemoteChapterRef(
                number=number,
                label=f"Capítulo {int(number)}",
                url=absolute_url(self.base_url, (item.get("href") or "").strip()),
                published=text_of(item.select_one(".chapter-date")),
            ))
        chapters.sort(key=lambda c: c.number, reverse=True)
        return chapters
