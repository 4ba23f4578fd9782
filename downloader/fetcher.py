"""
downloader/fetcher.py
HTTP GET through a proxy url with two retry policies:
bounded retry for listings and images, persistent retry for chapter pages.
"""

import asyncio

import httpx
from rich.console import Console

from config import get_config
from constants import DEFAULT_REQUEST_TIMEOUT, HEADERS, RETRYABLE_STATUSES
from errors import FetchError, RetryExhausted, ScrapeCancelled

console = Console()


class CancelToken:
    """Operator-triggered stop signal shared by one batch of requests."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()


def _report(on_status, message):
    if on_status is not None:
        on_status(message)


class RetryingFetcher:
    def __init__(self, config=None, client=None, sleep=asyncio.sleep):
        self.config = config or get_config()
        self.client = client or httpx.AsyncClient(
            timeout=DEFAULT_REQUEST_TIMEOUT,
            headers=HEADERS,
            follow_redirects=True,
        )
        self.sleep = sleep

    async def aclose(self):
        await self.client.aclose()

    # -------------------------------------------------------
    # Cancellable primitives
    # -------------------------------------------------------

    async def _race(self, coro, cancel):
        if cancel is None:
            return await coro
        if cancel.cancelled:
            coro.close()
            raise ScrapeCancelled("Operação cancelada")

        task = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(cancel.wait())
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        try:
            await task
        except (asyncio.CancelledError, httpx.HTTPError):
            pass
        raise ScrapeCancelled("Operação cancelada")

    async def _get(self, url, cancel=None) -> httpx.Response:
        return await self._race(self.client.get(url), cancel)

    async def _pause(self, delay, cancel=None):
        await self._race(self.sleep(delay), cancel)

    # -------------------------------------------------------
    # Bounded retry
    # -------------------------------------------------------

    async def fetch(self, url: str, on_status=None, cancel=None) -> httpx.Response:
        """
        GET with up to `retry_count` extra attempts on 502/503 or network errors.
        Any other non-OK status fails straight away.
        """
        retries = self.config.retry_count
        attempts = retries + 1
        reason = ""

        for attempt in range(1, attempts + 1):
            try:
                resp = await self._get(url, cancel)
            except httpx.HTTPError as e:
                reason = f"{e.__class__.__name__}: {e}"
                console.log(f"[yellow]Attempt {attempt}/{attempts} failed:[/yellow] {reason}")
                if attempt < attempts:
                    _report(on_status, f"Reconectando ({attempt}/{retries})...")
                    await self._pause(self.config.retry_base_delay, cancel)
                continue

            if resp.is_success:
                return resp

            reason = f"HTTP {resp.status_code}"
            if resp.status_code not in RETRYABLE_STATUSES:
                raise FetchError(reason, status=resp.status_code)

            console.log(f"[yellow]Attempt {attempt}/{attempts} failed:[/yellow] {reason}")
            if attempt < attempts:
                _report(on_status, f"Erro temporário, tentando novamente ({attempt}/{retries})...")
                await self._pause(self.config.retry_base_delay, cancel)

        raise RetryExhausted(f"Falha após {attempts} tentativas ({reason})", attempts)

    async def fetch_text(self, url: str, on_status=None, cancel=None) -> str:
        resp = await self.fetch(url, on_status=on_status, cancel=cancel)
        return resp.text

    async def fetch_bytes(self, url: str, on_status=None, cancel=None):
        """Returns (body, content_type)."""
        resp = await self.fetch(url, on_status=on_status, cancel=cancel)
        content_type = resp.headers.get("content-type", "").split(";")[0].strip()
        return resp.content, content_type

    # -------------------------------------------------------
    # Persistent retry (chapter pages)
    # -------------------------------------------------------

    def backoff(self, attempt: int) -> float:
        delay = self.config.page_retry_delay * (2 ** (attempt - 1))
        return min(delay, self.config.page_retry_max_delay)

    async def fetch_until_success(self, url: str, on_status=None, cancel=None) -> str:
        """
        Keep requesting `url` until it answers OK, backing off exponentially.
        Stops on `cancel` or once `page_retry_limit` attempts are spent
        (a limit of 0 never stops).
        """
        limit = self.config.page_retry_limit
        attempt = 0

        while True:
            attempt += 1
            _report(on_status, f"tentativa {attempt}...")
            try:
                resp = await self._get(url, cancel)
                if resp.is_success:
                    return resp.text
                reason = f"HTTP {resp.status_code}"
            except httpx.HTTPError as e:
                reason = f"{e.__class__.__name__}: {e}"

            console.log(f"Attempt {attempt} failed with {reason}, retrying...")
            if limit and attempt >= limit:
                raise RetryExhausted(f"Falha após {attempt} tentativas ({reason})", attempt)
            await self._pause(self.backoff(attempt), cancel)
