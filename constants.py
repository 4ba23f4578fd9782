"""
constants.py
Fixed values shared by the scrapers, the fetcher and the publisher.
"""

HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "pt-BR,pt;q=0.9,en-US;q=0.8,en;q=0.7",
}

# Rendering proxies can take a long time to return a page.
DEFAULT_REQUEST_TIMEOUT = 90.0

# HTTP statuses worth a bounded retry
RETRYABLE_STATUSES = (502, 503)

PLUMACOMICS_URL = "https://plumacomics.cloud/"
NEXUSTOONS_URL = "https://nexustoons.site/"

STORAGE_BUCKET = "manga-content"

MANGA_TYPES = ("manga", "manhwa", "manhua", "novel", "webtoon")
DEFAULT_MANGA_TYPE = "manhua"
DEFAULT_MANGA_STATUS = "ongoing"

DEFAULT_IMAGE_EXT = "jpg"
DEFAULT_IMAGE_TYPE = "image/jpeg"
