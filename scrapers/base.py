"""
scrapers/base.py
SiteProfile interface and the parsing helpers shared by every source.
A profile turns raw HTML from one source site into catalog entries,
chapter refs, page urls and manga metadata.
"""

import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from constants import DEFAULT_MANGA_TYPE
from models import MangaMetadata, RemotePage

# -------------------------------------------------------
# 🧩 Parsing helpers
# -------------------------------------------------------

PLACEHOLDER_MARKERS = ("placeholder", "data:image/")

SYNOPSIS_SELECTORS = (
    '.entry-content[itemprop="description"]',
    ".synp p",
    ".summary__content p",
    ".desc p",
)
INFO_SELECTOR = ".infox .flex-wrap span, .tsinfo .imptdt"
GENRE_SELECTOR = ".mgen a, .genres-content a, .genre-item a"
INFO_LABELS = re.compile(r"autor|artista|artist|author|tipo|type", re.IGNORECASE)


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def parse_chapter_number(text: str) -> float:
    """First run of digits in `text`, or 0 when there is none."""
    match = re.search(r"(\d+)", text or "")
    return float(int(match.group(1))) if match else 0.0


def slug_from_url(url: str, pattern: str = r"/manga/([^/?#]+)/?$") -> str:
    match = re.search(pattern, url or "")
    return match.group(1) if match else ""


def is_placeholder(url: str) -> bool:
    lowered = (url or "").lower()
    return any(marker in lowered for marker in PLACEHOLDER_MARKERS)


def first_select(soup, selectors):
    """Return the first element matched by any selector in order."""
    for selector in selectors:
        el = soup.select_one(selector)
        if el is not None:
            return el
    return None


def first_attr(el, attrs) -> str:
    if el is None:
        return ""
    for attr in attrs:
        value = (el.get(attr) or "").strip()
        if value:
            return value
    return ""


def text_of(el) -> str:
    return el.get_text(strip=True) if el is not None else ""


def absolute_url(base_url: str, url: str) -> str:
    if not url:
        return url
    if url.startswith("//"):
        return f"https:{url}"
    return url if url.startswith("http") else urljoin(base_url, url)


def detect_manga_type(value: str):
    lowered = (value or "").lower()
    # manhua/manhwa before manga, both contain it
    for candidate in ("manhua", "manhwa", "manga", "webtoon", "novel"):
        if candidate in lowered:
            return candidate
    return None


# -------------------------------------------------------
# 🧠 SiteProfile
# -------------------------------------------------------

class SiteProfile:
    """
    One supported source site.

    Subclasses set the urls and selectors and implement the list/extract
    methods. Nothing here raises on unexpected markup: fields that match
    nothing come back empty.
    """

    name = ""
    display_name = ""
    base_url = ""
    catalog_path = "/"
    manga_pattern = r"^https?://(www\.)?example\.com/manga/[\w\-]+"

    # whether the proxy should execute the page's scripts
    render_catalog = True
    render_chapters = True
    render_pages = True
    render_details = True

    page_selector = "img"
    page_attrs = ("src", "data-src")

    @property
    def catalog_url(self) -> str:
        return urljoin(self.base_url, self.catalog_path)

    def validate_manga_url(self, url: str) -> bool:
        return bool(re.match(self.manga_pattern, url or ""))

    def list_catalog(self, html: str):
        raise NotImplementedError

    def list_chapters(self, html: str):
        raise NotImplementedError

    def extract_pages(self, html: str):
        soup = parse_html(html)
        pages = []
        for idx, img in enumerate(soup.select(self.page_selector)):
            src = first_attr(img, self.page_attrs)
            if src and not is_placeholder(src):
                pages.append(RemotePage(index=idx, url=absolute_url(self.base_url, src)))
        pages.sort(key=lambda p: p.index)
        return pages

    def extract_metadata(self, html: str) -> MangaMetadata:
        soup = parse_html(html)
        meta = MangaMetadata(manga_type=DEFAULT_MANGA_TYPE)

        synopsis_el = first_select(soup, SYNOPSIS_SELECTORS)
        if synopsis_el is not None:
            meta.synopsis = " ".join(synopsis_el.get_text(" ").split())
        else:
            desc = soup.select_one('meta[name="description"]')
            meta.synopsis = (desc.get("content") or "").strip() if desc else ""

        for item in soup.select(INFO_SELECTOR):
            label = item.get_text(" ", strip=True).lower()
            inner = item.select_one("a, i")
            value = text_of(inner) or INFO_LABELS.sub("", item.get_text(" ", strip=True)).strip(" :")

            if "autor" in label or "author" in label:
                meta.author = value
            if "artista" in label or "artist" in label:
                meta.artist = value
            if "tipo" in label or "type" in label:
                meta.manga_type = detect_manga_type(value) or meta.manga_type

        for el in soup.select(GENRE_SELECTOR):
            genre = text_of(el)
            if genre and genre not in meta.genres:
                meta.genres.append(genre)

        return meta

    def describe(self):
        return {"name": self.name, "display_name": self.display_name, "url": self.base_url}

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.name}>"
