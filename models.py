"""
models.py
Plain data records passed between the scraper stages.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, List, Optional

from constants import DEFAULT_MANGA_TYPE


def format_number(number: float) -> str:
    """1.0 -> "1", 10.5 -> "10.5"."""
    number = float(number)
    return str(int(number)) if number.is_integer() else str(number)


@dataclass
class RemoteCatalogEntry:
    title: str
    slug: str
    cover_url: str
    url: str
    selected: bool = False


@dataclass
class RemoteChapterRef:
    number: float
    label: str
    url: str
    published: str = ""
    selected: bool = False


@dataclass
class RemotePage:
    index: int
    url: str


@dataclass
class ScrapedChapter:
    chapter_number: float
    manga_title: str
    manga_slug: str
    pages: List[RemotePage]
    manga_url: str = ""
    cover_url: str = ""
    source: str = ""

    def to_dict(self):
        return asdict(self)


@dataclass
class MangaMetadata:
    synopsis: str = ""
    author: str = ""
    artist: str = ""
    manga_type: str = DEFAULT_MANGA_TYPE
    genres: List[str] = field(default_factory=list)


@dataclass
class PublishResult:
    manga_id: str
    chapter_id: str
    chapter_number: float
    pages: List[str]
    fallback_pages: int = 0
    created_manga: bool = False
    replaced_chapter: bool = False


@dataclass
class StepResult:
    ok: bool
    message: str
    error: Optional[Exception] = None
    data: Any = None

    def to_dict(self):
        data = {"ok": self.ok, "message": self.message}
        if self.data is not None:
            data["data"] = self.data
        if self.error is not None and hasattr(self.error, "to_dict"):
            data["error"] = self.error.to_dict()
        elif self.error is not None:
            data["error"] = {"code": "unknown", "message": str(self.error)}
        return data


class ChapterStatus(str, Enum):
    PENDING = "pending"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    FAILED = "failed"
