from __future__ import annotations

import os
import sys
from typing import Any
from urllib.parse import parse_qs, urlparse

import pytest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from config import Config  # noqa: E402
from errors import RetryExhausted  # noqa: E402
from models import RemotePage, ScrapedChapter  # noqa: E402


def target_of(proxied_url: str) -> str:
    """Undo the proxy wrapping: return the `url=` parameter."""
    return parse_qs(urlparse(proxied_url).query)["url"][0]


class FakeFetcher:
    """Serves canned bodies keyed by target url (the proxy part is stripped)."""

    def __init__(self, pages: dict[str, Any] | None = None, images: dict[str, Any] | None = None):
        self.pages = pages or {}
        self.images = images or {}
        self.calls: list[tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def _lookup(self, table, url):
        body = table.get(target_of(url))
        if isinstance(body, Exception):
            raise body
        if body is None:
            raise RetryExhausted(f"no canned body for {target_of(url)}", 3)
        return body

    async def fetch_text(self, url: str, on_status=None, cancel=None) -> str:
        self.calls.append(("text", url))
        return self._lookup(self.pages, url)

    async def fetch_until_success(self, url: str, on_status=None, cancel=None) -> str:
        self.calls.append(("persistent", url))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            return self._lookup(self.pages, url)
        finally:
            self.in_flight -= 1

    async def fetch_bytes(self, url: str, on_status=None, cancel=None):
        self.calls.append(("bytes", url))
        return self._lookup(self.images, url), "image/png"


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


@pytest.fixture
def config(monkeypatch: pytest.MonkeyPatch) -> Config:
    for name in (
        "RETRY_COUNT", "RETRY_DELAY", "PAGE_RETRY_DELAY", "PAGE_RETRY_MAX_DELAY", "PAGE_RETRY_LIMIT",
        "CHAPTER_DELAY", "COMPRESS_IMAGES", "ADMIN_TOKEN", "SCRAPE_SOURCE", "PROXY_PROVIDER",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    return Config()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def scraped_chapter() -> ScrapedChapter:
    return ScrapedChapter(
        chapter_number=1.0,
        manga_title="Test Manga",
        manga_slug="test-manga",
        pages=[
            RemotePage(index=0, url="https://cdn.src/test-manga/1/001.jpg"),
            RemotePage(index=1, url="https://cdn.src/test-manga/1/002.webp?v=2"),
            RemotePage(index=2, url="https://cdn.src/test-manga/1/003"),
        ],
        manga_url="https://plumacomics.cloud/manga/test-manga/",
        cover_url="https://cdn.src/covers/test-manga.png",
        source="plumacomics",
    )


class FakeRedis:
    """The handful of redis.asyncio hash/list commands the importer uses."""

    def __init__(self):
        self.hashes: dict[str, dict[str, str]] = {}
        self.lists: dict[str, list[str]] = {}

    async def hset(self, name, key=None, value=None, mapping=None):
        target = self.hashes.setdefault(name, {})
        if key is not None:
            target[key] = value
        if mapping:
            target.update(mapping)
        return 1

    async def hdel(self, name, *keys):
        target = self.hashes.get(name, {})
        return sum(1 for key in keys if target.pop(key, None) is not None)

    async def hgetall(self, name):
        return dict(self.hashes.get(name, {}))

    async def rpush(self, name, *values):
        self.lists.setdefault(name, []).extend(values)
        return len(self.lists[name])
