"""
pipeline/scrape.py
The admin import workflow: source -> mangas -> chapters -> pages -> publish.

One instance serves one operator. State lives in memory; every stage catches
ScrapeError at its boundary and reports it as a StepResult plus `status`.
"""

import asyncio
from contextlib import contextmanager
from dataclasses import asdict
from enum import Enum

from rich.console import Console

from config import get_config
from downloader import CancelToken
from errors import ScrapeCancelled, ScrapeError, ValidationError
from models import ChapterStatus, ScrapedChapter, StepResult, format_number
from proxies import get_provider
from sources import get_source

console = Console()


class Stage(str, Enum):
    SOURCE = "source"
    MANGAS = "mangas"
    CHAPTERS = "chapters"
    PAGES = "pages"
    PUBLISH = "publish"


BUSY = "Outra operação está em andamento"
DISCARDED = "Resultado descartado após reiniciar"


def _chapter_key(key) -> str:
    slug, number = key
    return f"{slug}/{format_number(number)}"


class ScrapePipeline:
    def __init__(self, fetcher, publisher, config=None, source=None, proxy=None,
                 job_store=None, sleep=asyncio.sleep, on_published=None):
        self.config = config or get_config()
        self.fetcher = fetcher
        self.publisher = publisher
        self.source = get_source(source or self.config.scrape_source)
        self.proxy = get_provider(proxy or self.config.proxy_provider)
        self.job_store = job_store
        self.sleep = sleep
        self.on_published = on_published

        self._generation = 0
        self._cancel = CancelToken()
        self.busy = False
        self._clear()

    def _clear(self):
        self.stage = Stage.SOURCE
        self.entries = []
        self.selected_manga = None
        self.chapters = []
        self.scraped = []
        self.errors = {}
        self.publishing = None
        self.status = ""
        self.jobs = {}

    # -------------------------------------------------------
    # 🔧 Helpers
    # -------------------------------------------------------

    def _stale(self, generation: int) -> bool:
        return generation != self._generation

    def _reporter(self, generation, prefix=""):
        def report(message):
            if not self._stale(generation):
                self.status = f"{prefix}{message}"
        return report

    @contextmanager
    def _working(self):
        generation = self._generation
        self.busy = True
        try:
            yield generation
        finally:
            if not self._stale(generation):
                self.busy = False

    def _fail(self, generation, message, error) -> StepResult:
        if not self._stale(generation):
            self.status = message
        console.log(f"[red]{message}:[/red] {error.message}")
        return StepResult(False, message, error)

    def _rejected(self, message) -> StepResult:
        self.status = message
        return StepResult(False, message, ValidationError(message))

    @property
    def job_id(self):
        """Job record of the manga currently selected, if any."""
        if self.selected_manga is None:
            return None
        return self.jobs.get(self.selected_manga.slug)

    def attach_job(self, slug: str, job_id: str):
        """Record progress of `slug` under an existing job instead of a new one."""
        self.jobs[slug] = job_id

    async def _track(self, slug, number, status, error=""):
        job_id = self.jobs.get(slug)
        if self.job_store is not None and job_id is not None:
            await self.job_store.set_chapter(job_id, number, status, error)

    # -------------------------------------------------------
    # ⚙️ Operator choices
    # -------------------------------------------------------

    def select_source(self, name: str) -> StepResult:
        if self.busy:
            return self._rejected(BUSY)
        try:
            source = get_source(name)
        except ValidationError as e:
            return self._rejected(e.message)
        self.reset()
        self.source = source
        return StepResult(True, f"Fonte: {source.display_name}")

    def select_proxy(self, provider_id: str) -> StepResult:
        if self.busy:
            return self._rejected(BUSY)
        try:
            self.proxy = get_provider(provider_id)
        except ValidationError as e:
            return self._rejected(e.message)
        return StepResult(True, f"Proxy: {self.proxy.display_name}")

    def toggle_chapter(self, number: float):
        for chapter in self.chapters:
            if chapter.number == number:
                chapter.selected = not chapter.selected

    def toggle_all_chapters(self):
        all_selected = bool(self.chapters) and all(c.selected for c in self.chapters)
        for chapter in self.chapters:
            chapter.selected = not all_selected

    def select_chapters(self, numbers):
        wanted = {float(n) for n in numbers}
        for chapter in self.chapters:
            chapter.selected = chapter.number in wanted

    def selected_chapters(self):
        return [c for c in self.chapters if c.selected]

    # -------------------------------------------------------
    # 🔍 source -> mangas
    # -------------------------------------------------------

    async def fetch_catalog(self) -> StepResult:
        if self.busy:
            return self._rejected(BUSY)

        with self._working() as generation:
            self.status = f"Carregando lista de mangás do {self.source.display_name}..."
            self.entries = []
            url = self.proxy.build_url(self.source.catalog_url, self.source.render_catalog)
            try:
                html = await self.fetcher.fetch_text(
                    url, on_status=self._reporter(generation), cancel=self._cancel
                )
            except ScrapeError as e:
                return self._fail(generation, "Erro ao carregar mangás - tente novamente", e)
            if self._stale(generation):
                return StepResult(False, DISCARDED)

            self.entries = self.source.list_catalog(html)
            self.status = f"{len(self.entries)} mangás encontrados"
            console.log(f"🔍 {self.source.name}: {self.status}")
            if self.entries:
                self.stage = Stage.MANGAS
            return StepResult(bool(self.entries), self.status, data=len(self.entries))

    # -------------------------------------------------------
    # 📚 mangas -> chapters
    # -------------------------------------------------------

    async def select_manga(self, slug: str) -> StepResult:
        entry = next((e for e in self.entries if e.slug == slug), None)
        if entry is None:
            return self._rejected(f"Mangá não encontrado: {slug}")
        return await self.fetch_chapter_list(entry)

    async def fetch_chapter_list(self, entry) -> StepResult:
        if self.busy:
            return self._rejected(BUSY)

        with self._working() as generation:
            for e in self.entries:
                e.selected = e is entry
            entry.selected = True
            self.selected_manga = entry
            self.chapters = []
            self.status = f"Carregando capítulos de {entry.title}..."

            url = self.proxy.build_url(entry.url, self.source.render_chapters)
            try:
                html = await self.fetcher.fetch_text(
                    url, on_status=self._reporter(generation), cancel=self._cancel
                )
            except ScrapeError as e:
                return self._fail(generation, "Erro ao carregar capítulos", e)
            if self._stale(generation):
                return StepResult(False, DISCARDED)

            self.chapters = self.source.list_chapters(html)
            self.status = f"{len(self.chapters)} capítulos encontrados"
            console.log(f"📚 {entry.slug}: {self.status}")
            if self.chapters:
                self.stage = Stage.CHAPTERS
            return StepResult(bool(self.chapters), self.status, data=len(self.chapters))

    # -------------------------------------------------------
    # 📸 chapters -> pages
    # -------------------------------------------------------

    def _add_scraped(self, chapter: ScrapedChapter):
        self.scraped = [
            c for c in self.scraped
            if not (c.manga_slug == chapter.manga_slug and c.chapter_number == chapter.chapter_number)
        ]
        self.scraped.append(chapter)

    async def _start_job(self, manga, selected):
        if self.job_store is None:
            return
        if manga.slug not in self.jobs:
            self.jobs[manga.slug] = await self.job_store.create(
                source=self.source.name, manga=manga.slug, title=manga.title, url=manga.url
            )
        for ref in selected:
            await self._track(manga.slug, ref.number, ChapterStatus.PENDING)

    async def extract_pages(self, cancel: CancelToken = None) -> StepResult:
        """
        Fetch and parse every selected chapter, one at a time, pausing
        `chapter_delay` seconds between chapters. Results land in
        `self.scraped` as soon as each chapter is done.
        """
        selected = self.selected_chapters()
        if not selected:
            return self._rejected("Selecione pelo menos um capítulo")
        if self.selected_manga is None:
            return self._rejected("Nenhum mangá selecionado")
        if self.busy:
            return self._rejected(BUSY)

        manga = self.selected_manga
        token = cancel or self._cancel
        extracted = 0
        cancelled = None

        with self._working() as generation:
            self.stage = Stage.PAGES
            await self._start_job(manga, selected)

            for i, ref in enumerate(selected):
                label = format_number(ref.number)
                key = (manga.slug, ref.number)
                self.status = f"Extraindo capítulo {label} ({i + 1}/{len(selected)})..."
                await self._track(manga.slug, ref.number, ChapterStatus.EXTRACTING)

                try:
                    html = await self.fetcher.fetch_until_success(
                        self.proxy.build_url(ref.url, self.source.render_pages),
                        on_status=self._reporter(generation, f"Capítulo {label} - "),
                        cancel=token,
                    )
                except ScrapeCancelled as e:
                    if self._stale(generation):
                        return StepResult(False, DISCARDED)
                    await self._track(manga.slug, ref.number, ChapterStatus.FAILED, e.message)
                    cancelled = e
                    break
                except ScrapeError as e:
                    console.log(f"[red]Erro no capítulo {label}:[/red] {e.message}")
                    if self._stale(generation):
                        return StepResult(False, DISCARDED)
                    self.errors[key] = e.message
                    await self._track(manga.slug, ref.number, ChapterStatus.FAILED, e.message)
                else:
                    if self._stale(generation):
                        return StepResult(False, DISCARDED)
                    pages = self.source.extract_pages(html)
                    if pages:
                        self._add_scraped(ScrapedChapter(
                            chapter_number=ref.number,
                            manga_title=manga.title,
                            manga_slug=manga.slug,
                            pages=pages,
                            manga_url=manga.url,
                            cover_url=manga.cover_url,
                            source=self.source.name,
                        ))
                        self.errors.pop(key, None)
                        extracted += 1
                        await self._track(manga.slug, ref.number, ChapterStatus.EXTRACTED)
                        console.log(f"📸 {manga.slug} cap {label}: {len(pages)} pages")
                    else:
                        self.errors[key] = "Nenhuma página encontrada"
                        await self._track(manga.slug, ref.number, ChapterStatus.FAILED, "Nenhuma página encontrada")

                if i < len(selected) - 1:
                    await self.sleep(self.config.chapter_delay)

            if self._stale(generation):
                return StepResult(False, DISCARDED)

            if self.scraped:
                self.stage = Stage.PUBLISH
            if cancelled is not None:
                return self._fail(generation, f"Extração cancelada ({extracted} capítulo(s) extraído(s))", cancelled)
            self.status = f"{extracted} capítulo(s) extraído(s)"
            return StepResult(extracted > 0, self.status, data=extracted)

    # -------------------------------------------------------
    # 🚀 publish
    # -------------------------------------------------------

    def find_scraped(self, number: float, slug: str = None):
        """Without a slug, the selected manga's chapter wins over other mangas'."""
        matches = [
            c for c in self.scraped
            if c.chapter_number == float(number) and (slug is None or c.manga_slug == slug)
        ]
        if slug is None and self.selected_manga is not None:
            for chapter in matches:
                if chapter.manga_slug == self.selected_manga.slug:
                    return chapter
        return matches[0] if matches else None

    async def _publish_one(self, chapter, generation) -> StepResult:
        label = format_number(chapter.chapter_number)
        key = (chapter.manga_slug, chapter.chapter_number)
        self.publishing = key
        await self._track(chapter.manga_slug, chapter.chapter_number, ChapterStatus.PUBLISHING)
        try:
            result = await self.publisher.publish(
                chapter, self.proxy, on_status=self._reporter(generation), cancel=self._cancel
            )
        except ScrapeError as e:
            console.log(f"[red]Erro ao publicar capítulo {label}:[/red] {e.message}")
            if self._stale(generation):
                return StepResult(False, DISCARDED, e)
            self.publishing = None
            self.errors[key] = e.message
            await self._track(chapter.manga_slug, chapter.chapter_number, ChapterStatus.FAILED, e.message)
            self.status = f"Erro ao publicar capítulo {label}: {e.message}"
            return StepResult(False, self.status, e)

        if self._stale(generation):
            console.log(f"[yellow]{chapter.manga_slug} cap {label} published after reset[/yellow]")
            return StepResult(False, DISCARDED, data=asdict(result))

        self.publishing = None
        self.scraped = [c for c in self.scraped if c is not chapter]
        self.errors.pop(key, None)
        await self._track(chapter.manga_slug, chapter.chapter_number, ChapterStatus.PUBLISHED)
        if self.on_published is not None:
            self.on_published(result)
        self.status = f"Capítulo {label} publicado com sucesso"
        return StepResult(True, self.status, data=asdict(result))

    async def publish(self, number: float, slug: str = None) -> StepResult:
        chapter = self.find_scraped(number, slug)
        if chapter is None:
            return self._rejected(f"Capítulo {format_number(number)} não foi extraído")
        if self.busy:
            return self._rejected(BUSY)
        with self._working() as generation:
            return await self._publish_one(chapter, generation)

    async def publish_all(self) -> StepResult:
        """Publish every scraped chapter; one failure does not stop the rest."""
        if not self.scraped:
            return self._rejected("Nenhum capítulo para publicar")
        if self.busy:
            return self._rejected(BUSY)

        results = {}
        with self._working() as generation:
            batch = sorted(self.scraped, key=lambda c: (c.manga_slug, c.chapter_number))
            for chapter in batch:
                if self._stale(generation):
                    break
                outcome = await self._publish_one(chapter, generation)
                results.setdefault(chapter.manga_slug, {})[format_number(chapter.chapter_number)] = outcome.to_dict()

        published = sum(1 for chapters in results.values() for r in chapters.values() if r["ok"])
        message = f"{published}/{len(batch)} capítulo(s) publicado(s)"
        if not self._stale(generation):
            self.status = message
        return StepResult(published == len(batch), message, data=results)

    # -------------------------------------------------------
    # ⏹ cancel / reset
    # -------------------------------------------------------

    def cancel(self):
        """Abort whatever request is in flight."""
        self._cancel.cancel()
        self._cancel = CancelToken()

    def reset(self):
        self.cancel()
        self._generation += 1
        self.busy = False
        self._clear()

    def snapshot(self):
        return {
            "stage": self.stage.value,
            "source": self.source.name,
            "proxy": self.proxy.id,
            "busy": self.busy,
            "status": self.status,
            "mangas": [asdict(e) for e in self.entries],
            "selected_manga": asdict(self.selected_manga) if self.selected_manga else None,
            "chapters": [asdict(c) for c in self.chapters],
            "scraped": [
                {
                    "chapter_number": c.chapter_number,
                    "manga_slug": c.manga_slug,
                    "manga_title": c.manga_title,
                    "pages": len(c.pages),
                }
                for c in self.scraped
            ],
            "publishing": _chapter_key(self.publishing) if self.publishing else None,
            "errors": {_chapter_key(k): v for k, v in self.errors.items()},
            "job_id": self.job_id,
            "jobs": dict(self.jobs),
        }
