from __future__ import annotations

import asyncio

import httpx
import pytest

from downloader import RetryingFetcher
from errors import CatalogError, ErrorCode, RetryExhausted, ScrapeCancelled
from models import ChapterStatus, PublishResult, RemoteCatalogEntry
from pipeline import MemoryJobStore, ScrapePipeline, Stage
from publisher import AssetRepublisher, CatalogPublisher
from storage import MemoryCatalogStore, MemoryObjectStorage

from .conftest import FakeFetcher

HOME = "https://plumacomics.cloud/"
MANGA_URL = "https://plumacomics.cloud/manga/test-manga/"

CATALOG_HTML = """
<div class="hotslid"><div class="bs"><div class="bsx">
  <a href="https://plumacomics.cloud/manga/test-manga/" title="Test Manga"><img src="https://cdn.src/cover.jpg"></a>
</div></div></div>
"""

CHAPTERS_HTML = """
<div class="chbox"><div class="eph-num"><a href="https://plumacomics.cloud/test-manga-capitulo-1/">
  <span class="chapternum">Capítulo 1</span></a></div></div>
<div class="chbox"><div class="eph-num"><a href="https://plumacomics.cloud/test-manga-capitulo-2/">
  <span class="chapternum">Capítulo 2</span></a></div></div>
<div class="chbox"><div class="eph-num"><a href="https://plumacomics.cloud/test-manga-capitulo-3/">
  <span class="chapternum">Capítulo 3</span></a></div></div>
"""


def reader_html(chapter: int) -> str:
    # listed out of order on purpose, plus a lazy-load placeholder
    return f"""
    <img class="ts-main-image" src="https://cdn.src/test-manga/{chapter}/001.jpg">
    <img class="ts-main-image" src="https://cdn.src/lazy-placeholder.gif">
    <img class="ts-main-image" src="https://cdn.src/test-manga/{chapter}/003.png">
    """


def chapter_url(n: int) -> str:
    return f"https://plumacomics.cloud/test-manga-capitulo-{n}/"


class SequenceFetcher(FakeFetcher):
    """Logs when each chapter fetch starts/ends against the recorded sleeps."""

    def __init__(self, sleep, **kwargs):
        super().__init__(**kwargs)
        self.sleep = sleep
        self.timeline: list[tuple[str, int]] = []

    async def fetch_until_success(self, url, on_status=None, cancel=None):
        self.timeline.append(("start", len(self.sleep.delays)))
        try:
            return await super().fetch_until_success(url, on_status, cancel)
        finally:
            self.timeline.append(("end", len(self.sleep.delays)))


def _site_pages():
    pages = {HOME: CATALOG_HTML, MANGA_URL: CHAPTERS_HTML}
    pages.update({chapter_url(n): reader_html(n) for n in (1, 2, 3)})
    return pages


def _images():
    images = {}
    for n in (1, 2, 3):
        images[f"https://cdn.src/test-manga/{n}/001.jpg"] = b"jpg"
        images[f"https://cdn.src/test-manga/{n}/003.png"] = b"png"
    images["https://cdn.src/cover.jpg"] = b"cover"
    return images


def _pipeline(config, sleep, fetcher=None, catalog=None, job_store=None, on_published=None):
    fetcher = fetcher or FakeFetcher(pages=_site_pages(), images=_images())
    catalog = catalog or MemoryCatalogStore()
    republisher = AssetRepublisher(fetcher, MemoryObjectStorage(), config)
    publisher = CatalogPublisher(fetcher, catalog, republisher)
    pipeline = ScrapePipeline(
        fetcher, publisher, config=config, source="plumacomics", proxy="scraperapi",
        job_store=job_store, sleep=sleep, on_published=on_published,
    )
    return pipeline, fetcher, catalog


@pytest.mark.asyncio
async def test_end_to_end_import(config, sleep):
    published = []
    pipeline, fetcher, catalog = _pipeline(config, sleep, on_published=published.append)
    assert pipeline.stage == Stage.SOURCE

    result = await pipeline.fetch_catalog()
    assert result.ok and pipeline.stage == Stage.MANGAS
    assert pipeline.status == "1 mangás encontrados"
    entry = pipeline.entries[0]
    assert (entry.title, entry.slug, entry.url) == ("Test Manga", "test-manga", MANGA_URL)

    result = await pipeline.select_manga("test-manga")
    assert result.ok and pipeline.stage == Stage.CHAPTERS
    assert [c.number for c in pipeline.chapters] == [3, 2, 1]
    assert pipeline.selected_manga.selected

    pipeline.toggle_chapter(1)
    result = await pipeline.extract_pages()
    assert result.ok and pipeline.stage == Stage.PUBLISH
    [scraped] = pipeline.scraped
    assert scraped.chapter_number == 1
    assert [p.index for p in scraped.pages] == [0, 2]
    assert all("placeholder" not in p.url for p in scraped.pages)

    result = await pipeline.publish(1)
    assert result.ok, result.message
    assert pipeline.scraped == []
    assert published and published[0].chapter_number == 1

    manga = await catalog.find_manga_by_slug("test-manga")
    chapter = await catalog.find_chapter(manga["id"], 1.0)
    pages = catalog.chapters[chapter["id"]]["pages"]
    assert pages == [
        "memory://manga-content/chapters/test-manga/cap-1/page-001.jpg",
        "memory://manga-content/chapters/test-manga/cap-1/page-002.png",
    ]


@pytest.mark.asyncio
async def test_fetch_catalog_failure_stays_in_source(config, sleep):
    pipeline, _, _ = _pipeline(config, sleep, fetcher=FakeFetcher())
    result = await pipeline.fetch_catalog()
    assert not result.ok
    assert result.error.code == ErrorCode.EXHAUSTED
    assert pipeline.stage == Stage.SOURCE
    assert pipeline.status == "Erro ao carregar mangás - tente novamente"
    assert pipeline.busy is False


@pytest.mark.asyncio
async def test_zero_results_is_reported_not_raised(config, sleep):
    pipeline, _, _ = _pipeline(config, sleep, fetcher=FakeFetcher(pages={HOME: "<html></html>"}))
    result = await pipeline.fetch_catalog()
    assert not result.ok and result.error is None
    assert pipeline.status == "0 mangás encontrados"
    assert pipeline.stage == Stage.SOURCE


@pytest.mark.asyncio
async def test_chapter_list_failure_stays_in_mangas(config, sleep):
    pipeline, fetcher, _ = _pipeline(config, sleep, fetcher=FakeFetcher(pages={HOME: CATALOG_HTML}))
    await pipeline.fetch_catalog()
    result = await pipeline.select_manga("test-manga")
    assert not result.ok
    assert pipeline.stage == Stage.MANGAS
    assert pipeline.status == "Erro ao carregar capítulos"


@pytest.mark.asyncio
async def test_unknown_manga_is_rejected(config, sleep):
    pipeline, fetcher, _ = _pipeline(config, sleep)
    await pipeline.fetch_catalog()
    result = await pipeline.select_manga("missing")
    assert result.error.code == ErrorCode.VALIDATION
    assert len(fetcher.calls) == 1


@pytest.mark.asyncio
async def test_extract_without_selection_makes_no_request(config, sleep):
    pipeline, fetcher, _ = _pipeline(config, sleep)
    await pipeline.fetch_catalog()
    await pipeline.select_manga("test-manga")
    calls_before = len(fetcher.calls)

    result = await pipeline.extract_pages()

    assert not result.ok
    assert result.error.code == ErrorCode.VALIDATION
    assert result.message == "Selecione pelo menos um capítulo"
    assert len(fetcher.calls) == calls_before
    assert pipeline.stage == Stage.CHAPTERS


@pytest.mark.asyncio
async def test_extraction_is_sequential_with_pacing(config, sleep):
    fetcher = SequenceFetcher(sleep, pages=_site_pages(), images=_images())
    pipeline, _, _ = _pipeline(config, sleep, fetcher=fetcher)
    await pipeline.fetch_catalog()
    await pipeline.select_manga("test-manga")
    pipeline.toggle_all_chapters()

    result = await pipeline.extract_pages()

    assert result.ok and result.data == 3
    assert [kind for kind, _ in fetcher.calls].count("persistent") == 3
    assert fetcher.max_in_flight == 1
    # each chapter ends before the next starts, with one pause in between
    assert fetcher.timeline == [
        ("start", 0), ("end", 0),
        ("start", 1), ("end", 1),
        ("start", 2), ("end", 2),
    ]
    assert sleep.delays == [1.0, 1.0]
    assert [c.chapter_number for c in pipeline.scraped] == [3, 2, 1]


@pytest.mark.asyncio
async def test_failed_chapter_does_not_stop_the_batch(config, sleep):
    pages = _site_pages()
    del pages[chapter_url(2)]
    pipeline, _, _ = _pipeline(config, sleep, fetcher=FakeFetcher(pages=pages, images=_images()))
    await pipeline.fetch_catalog()
    await pipeline.select_manga("test-manga")
    pipeline.select_chapters([1, 2, 3])

    result = await pipeline.extract_pages()

    assert result.ok and result.data == 2
    assert [c.chapter_number for c in pipeline.scraped] == [3, 1]
    assert ("test-manga", 2.0) in pipeline.errors
    assert pipeline.snapshot()["errors"] == {"test-manga/2": pipeline.errors[("test-manga", 2.0)]}
    assert pipeline.status == "2 capítulo(s) extraído(s)"


@pytest.mark.asyncio
async def test_chapter_without_pages_is_not_kept(config, sleep):
    pages = _site_pages()
    pages[chapter_url(1)] = "<p>sem imagens</p>"
    pipeline, _, _ = _pipeline(config, sleep, fetcher=FakeFetcher(pages=pages))
    await pipeline.fetch_catalog()
    await pipeline.select_manga("test-manga")
    pipeline.toggle_chapter(1)

    result = await pipeline.extract_pages()

    assert not result.ok
    assert pipeline.scraped == []
    assert pipeline.stage == Stage.PAGES


@pytest.mark.asyncio
async def test_cancel_stops_extraction(config, sleep):
    class CancellingFetcher(FakeFetcher):
        async def fetch_until_success(self, url, on_status=None, cancel=None):
            self.calls.append(("persistent", url))
            raise ScrapeCancelled("Operação cancelada")

    fetcher = CancellingFetcher(pages=_site_pages())
    pipeline, _, _ = _pipeline(config, sleep, fetcher=fetcher)
    await pipeline.fetch_catalog()
    await pipeline.select_manga("test-manga")
    pipeline.toggle_all_chapters()

    result = await pipeline.extract_pages()

    assert result.error.code == ErrorCode.CANCELLED
    assert [kind for kind, _ in fetcher.calls].count("persistent") == 1
    assert pipeline.busy is False


@pytest.mark.asyncio
async def test_reset_discards_in_flight_results(config, sleep):
    pipeline = None

    class ResettingFetcher(FakeFetcher):
        async def fetch_text(self, url, on_status=None, cancel=None):
            html = await super().fetch_text(url, on_status, cancel)
            pipeline.reset()
            return html

    pipeline, _, _ = _pipeline(config, sleep, fetcher=ResettingFetcher(pages=_site_pages()))
    result = await pipeline.fetch_catalog()

    assert not result.ok
    assert pipeline.entries == []
    assert pipeline.stage == Stage.SOURCE


@pytest.mark.asyncio
async def test_reset_clears_everything(config, sleep):
    pipeline, _, _ = _pipeline(config, sleep)
    await pipeline.fetch_catalog()
    await pipeline.select_manga("test-manga")
    pipeline.toggle_chapter(2)
    await pipeline.extract_pages()
    assert pipeline.scraped

    pipeline.reset()

    assert pipeline.stage == Stage.SOURCE
    assert pipeline.entries == [] and pipeline.chapters == [] and pipeline.scraped == []
    assert pipeline.selected_manga is None
    assert pipeline.status == ""


@pytest.mark.asyncio
async def test_toggle_all_flips_between_all_and_none(config, sleep):
    pipeline, _, _ = _pipeline(config, sleep)
    await pipeline.fetch_catalog()
    await pipeline.select_manga("test-manga")

    pipeline.toggle_chapter(3)
    pipeline.toggle_all_chapters()
    assert all(c.selected for c in pipeline.chapters)
    pipeline.toggle_all_chapters()
    assert not any(c.selected for c in pipeline.chapters)


@pytest.mark.asyncio
async def test_publish_failure_keeps_chapter_for_retry(config, sleep):
    class FlakyCatalog(MemoryCatalogStore):
        failures = 1

        async def insert_chapter(self, row):
            if self.failures:
                self.failures -= 1
                raise CatalogError("permission denied for table chapters", ErrorCode.AUTHORIZATION)
            return await super().insert_chapter(row)

    pipeline, _, catalog = _pipeline(config, sleep, catalog=FlakyCatalog())
    await pipeline.fetch_catalog()
    await pipeline.select_manga("test-manga")
    pipeline.toggle_chapter(1)
    await pipeline.extract_pages()

    first = await pipeline.publish(1)
    assert not first.ok
    assert first.error.code == ErrorCode.AUTHORIZATION
    assert pipeline.find_scraped(1) is not None
    assert catalog.mangas == {}

    second = await pipeline.publish(1)
    assert second.ok
    assert pipeline.scraped == []
    assert len(catalog.mangas) == 1


@pytest.mark.asyncio
async def test_publish_all_continues_after_failure(config, sleep):
    class PickyCatalog(MemoryCatalogStore):
        async def insert_chapter(self, row):
            if row["number"] == 2:
                raise CatalogError("chapter 2 rejected")
            return await super().insert_chapter(row)

    pipeline, _, catalog = _pipeline(config, sleep, catalog=PickyCatalog())
    await pipeline.fetch_catalog()
    await pipeline.select_manga("test-manga")
    pipeline.toggle_all_chapters()
    await pipeline.extract_pages()

    result = await pipeline.publish_all()

    assert not result.ok
    assert result.message == "2/3 capítulo(s) publicado(s)"
    assert result.data["test-manga"]["2"]["ok"] is False
    assert [c.chapter_number for c in pipeline.scraped] == [2]
    assert len(catalog.chapters) == 2
    assert len(catalog.mangas) == 1


@pytest.mark.asyncio
async def test_publish_unknown_chapter_rejected(config, sleep):
    pipeline, _, _ = _pipeline(config, sleep)
    result = await pipeline.publish(99)
    assert result.error.code == ErrorCode.VALIDATION


@pytest.mark.asyncio
async def test_job_store_tracks_chapter_status(config, sleep):
    store = MemoryJobStore()
    pages = _site_pages()
    del pages[chapter_url(3)]
    pipeline, _, _ = _pipeline(config, sleep, fetcher=FakeFetcher(pages=pages, images=_images()), job_store=store)
    await pipeline.fetch_catalog()
    await pipeline.select_manga("test-manga")
    pipeline.toggle_all_chapters()
    await pipeline.extract_pages()
    await pipeline.publish(1)

    job = await store.get(pipeline.job_id)
    assert job["manga"] == "test-manga"
    assert job["chapters"] == {
        "3": ChapterStatus.FAILED.value,
        "2": ChapterStatus.EXTRACTED.value,
        "1": ChapterStatus.PUBLISHED.value,
    }
    assert "3" in job["errors"]


@pytest.mark.asyncio
async def test_select_source_resets_and_validates(config, sleep):
    pipeline, _, _ = _pipeline(config, sleep)
    await pipeline.fetch_catalog()

    assert not pipeline.select_source("mangadex").ok
    assert pipeline.entries

    assert pipeline.select_source("nexustoons").ok
    assert pipeline.source.name == "nexustoons"
    assert pipeline.entries == [] and pipeline.stage == Stage.SOURCE

    assert not pipeline.select_proxy("unknown").ok
    assert pipeline.select_proxy("proxyscrape").ok
    assert pipeline.snapshot()["proxy"] == "proxyscrape"


@pytest.mark.asyncio
async def test_fetch_chapter_list_accepts_external_entry(config, sleep):
    pipeline, _, _ = _pipeline(config, sleep)
    entry = RemoteCatalogEntry(title="Test Manga", slug="test-manga", cover_url="", url=MANGA_URL)
    result = await pipeline.fetch_chapter_list(entry)
    assert result.ok
    assert pipeline.selected_manga is entry
    snapshot = pipeline.snapshot()
    assert snapshot["stage"] == "chapters"
    assert [c["number"] for c in snapshot["chapters"]] == [3, 2, 1]


OTHER_URL = "https://plumacomics.cloud/manga/other/"
OTHER_CHAPTERS_HTML = """
<div class="chbox"><div class="eph-num"><a href="https://plumacomics.cloud/other-capitulo-2/">
  <span class="chapternum">Capítulo 2</span></a></div></div>
"""


@pytest.mark.asyncio
async def test_each_manga_gets_its_own_job_and_errors(config, sleep):
    store = MemoryJobStore()
    pages = _site_pages()
    del pages[chapter_url(3)]
    pages[OTHER_URL] = OTHER_CHAPTERS_HTML
    pages["https://plumacomics.cloud/other-capitulo-2/"] = '<img class="ts-main-image" src="https://cdn.src/other/2/001.jpg">'
    images = {**_images(), "https://cdn.src/other/2/001.jpg": b"other"}
    pipeline, _, catalog = _pipeline(config, sleep, fetcher=FakeFetcher(pages=pages, images=images), job_store=store)

    await pipeline.fetch_catalog()
    await pipeline.select_manga("test-manga")
    pipeline.select_chapters([2, 3])
    await pipeline.extract_pages()
    first_job = pipeline.job_id

    other = RemoteCatalogEntry(title="Other", slug="other", cover_url="", url=OTHER_URL)
    await pipeline.fetch_chapter_list(other)
    pipeline.select_chapters([2])
    await pipeline.extract_pages()
    second_job = pipeline.job_id

    assert second_job != first_job
    assert set(pipeline.errors) == {("test-manga", 3.0)}
    assert sorted((c.manga_slug, c.chapter_number) for c in pipeline.scraped) == [("other", 2.0), ("test-manga", 2.0)]

    # without a slug, the selected manga's chapter is the one published
    result = await pipeline.publish(2)
    assert result.ok
    assert await catalog.find_manga_by_slug("other") is not None
    assert await catalog.find_manga_by_slug("test-manga") is None

    result = await pipeline.publish(2, "test-manga")
    assert result.ok
    assert await catalog.find_manga_by_slug("test-manga") is not None
    assert pipeline.scraped == []

    first = await store.get(first_job)
    second = await store.get(second_job)
    assert first["manga"] == "test-manga"
    assert first["chapters"] == {"2": "published", "3": "failed"}
    assert second["manga"] == "other"
    assert second["chapters"] == {"2": "published"}
    assert second["errors"] == {}


class ResettingPublisher:
    """Resets the pipeline mid-publish, then fails or succeeds."""

    def __init__(self, error=None):
        self.pipeline = None
        self.error = error

    async def publish(self, chapter, proxy, on_status=None, cancel=None):
        self.pipeline.reset()
        if self.error is not None:
            raise self.error
        return PublishResult(
            manga_id="m1", chapter_id="c1", chapter_number=chapter.chapter_number,
            pages=[p.url for p in chapter.pages],
        )


async def _extracted_pipeline(config, sleep, publisher, on_published=None):
    fetcher = FakeFetcher(pages=_site_pages(), images=_images())
    pipeline = ScrapePipeline(fetcher, publisher, config=config, source="plumacomics",
                              proxy="scraperapi", sleep=sleep, on_published=on_published)
    publisher.pipeline = pipeline
    await pipeline.fetch_catalog()
    await pipeline.select_manga("test-manga")
    pipeline.toggle_chapter(1)
    await pipeline.extract_pages()
    return pipeline


@pytest.mark.asyncio
async def test_publish_failure_after_reset_leaves_fresh_state(config, sleep):
    publisher = ResettingPublisher(ScrapeCancelled("Operação cancelada"))
    pipeline = await _extracted_pipeline(config, sleep, publisher)

    result = await pipeline.publish(1)

    assert not result.ok
    assert result.message == "Resultado descartado após reiniciar"
    assert pipeline.stage == Stage.SOURCE
    assert pipeline.status == ""
    assert pipeline.errors == {}
    assert pipeline.publishing is None
    assert pipeline.busy is False


@pytest.mark.asyncio
async def test_publish_success_after_reset_is_discarded(config, sleep):
    published = []
    publisher = ResettingPublisher()
    pipeline = await _extracted_pipeline(config, sleep, publisher, on_published=published.append)

    result = await pipeline.publish(1)

    assert result.message == "Resultado descartado após reiniciar"
    assert published == []
    assert pipeline.status == ""
    assert pipeline.snapshot()["publishing"] is None


@pytest.mark.asyncio
async def test_extraction_error_after_reset_is_discarded(config, sleep):
    pipeline = None

    class ResetThenFail(FakeFetcher):
        async def fetch_until_success(self, url, on_status=None, cancel=None):
            pipeline.reset()
            raise RetryExhausted("Falha após 20 tentativas (HTTP 500)", 20)

    pipeline, _, _ = _pipeline(config, sleep, fetcher=ResetThenFail(pages=_site_pages()))
    await pipeline.fetch_catalog()
    await pipeline.select_manga("test-manga")
    pipeline.toggle_all_chapters()

    result = await pipeline.extract_pages()

    assert result.message == "Resultado descartado após reiniciar"
    assert pipeline.errors == {}
    assert pipeline.status == ""
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_cancel_aborts_in_flight_catalog_request(config, sleep):
    started = asyncio.Event()

    async def stalled(request):
        started.set()
        await asyncio.Event().wait()

    client = httpx.AsyncClient(transport=httpx.MockTransport(stalled))
    fetcher = RetryingFetcher(config, client=client, sleep=sleep)
    pipeline, _, _ = _pipeline(config, sleep, fetcher=fetcher)

    task = asyncio.ensure_future(pipeline.fetch_catalog())
    await started.wait()
    assert pipeline.busy
    pipeline.cancel()
    result = await task

    assert result.error.code == ErrorCode.CANCELLED
    assert pipeline.stage == Stage.SOURCE
    assert pipeline.busy is False
    assert sleep.delays == []
