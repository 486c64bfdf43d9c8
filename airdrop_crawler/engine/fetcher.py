"""HTTP fetching with a shared headless-browser fallback."""

from __future__ import annotations

import json
import random
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Dict, Iterator

import httpx
import structlog
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Page
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from ..config import DEFAULT_USER_AGENT, GlobalConfig
from ..errors import FetchError


@dataclass(slots=True)
class FetchResponse:
    """Standardised response wrapper."""

    url: str
    status_code: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)
    rendered: bool = False

    def json(self) -> Any:
        return json.loads(self.text)


class Fetcher:
    """Lightweight HTTP requests with a bounded timeout and no automatic retry."""

    def __init__(
        self,
        global_config: GlobalConfig,
        logger: structlog.BoundLogger | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.global_config = global_config
        self.timeout = global_config.fetch_timeout
        self.logger = logger or structlog.get_logger("airdrop_crawler.fetcher")
        self._client = client or httpx.Client(follow_redirects=True, timeout=self.timeout)

    def close(self) -> None:
        self._client.close()

    def user_agent(self) -> str:
        agents = self.global_config.user_agents
        return random.choice(agents) if agents else DEFAULT_USER_AGENT

    def fetch(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> FetchResponse:
        req_headers = {"User-Agent": self.user_agent()}
        req_headers.update(headers or {})
        try:
            response = self._client.request(
                method="GET",
                url=url,
                params=params,
                headers=req_headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            self.logger.warning("fetch_timeout", url=url, timeout=self.timeout)
            raise FetchError(url, f"timed out after {self.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            self.logger.warning("fetch_error", url=url, error=str(exc))
            raise FetchError(url, f"transport error: {exc}") from exc
        if self._is_failure(response):
            raise FetchError(url, f"unexpected status {response.status_code}")
        return FetchResponse(
            url=str(response.url),
            status_code=response.status_code,
            text=response.text,
            headers=dict(response.headers),
        )

    @staticmethod
    def _is_failure(response: Any) -> bool:
        status_code = getattr(response, "status_code", 0)
        return status_code >= 400


class RenderEngine:
    """One headless browser shared by a cycle; pages are scoped per fetch.

    The browser starts lazily on the first page request and is torn down by
    ``close`` (or leaving the ``with`` block), whichever path the cycle exits by.
    """

    def __init__(
        self,
        global_config: GlobalConfig,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.global_config = global_config
        self.timeout = global_config.render_timeout
        self.logger = logger or structlog.get_logger("airdrop_crawler.render")
        self._lock = RLock()
        self._playwright = None
        self._browser = None
        self._context = None

    def __enter__(self) -> "RenderEngine":
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.close()

    @property
    def started(self) -> bool:
        return self._browser is not None

    def _ensure_started(self) -> None:
        if self._playwright is not None:
            return
        try:
            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch(
                headless=self.global_config.headless,
                args=["--no-sandbox", "--disable-setuid-sandbox"],
            )
            agents = self.global_config.user_agents
            self._context = self._browser.new_context(
                user_agent=agents[0] if agents else DEFAULT_USER_AGENT,
                viewport={"width": 1920, "height": 1080},
                ignore_https_errors=True,
            )
        except PlaywrightError as exc:
            self.close()
            raise FetchError("browser://chromium", f"browser launch failed: {exc}") from exc
        self.logger.info("render_engine_started")

    @contextmanager
    def page(self) -> Iterator[Page]:
        with self._lock:
            self._ensure_started()
            page = self._context.new_page()
        try:
            yield page
        finally:
            page.close()

    def render(self, url: str, wait_selector: str | None = None) -> FetchResponse:
        timeout_ms = int(self.timeout * 1000)
        with self.page() as page:
            try:
                response = page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
                if wait_selector:
                    page.wait_for_selector(wait_selector, timeout=timeout_ms)
                page.wait_for_timeout(250)
                content = page.content()
            except PlaywrightTimeoutError as exc:
                raise FetchError(url, f"render timed out: {exc}") from exc
            except PlaywrightError as exc:
                raise FetchError(url, f"render failed: {exc}") from exc
            return FetchResponse(
                url=page.url,
                status_code=response.status if response else 200,
                text=content,
                headers=dict(response.headers) if response else {},
                rendered=True,
            )

    def close(self) -> None:
        with self._lock:
            if self._context is not None:
                self._context.close()
                self._context = None
            if self._browser is not None:
                self._browser.close()
                self._browser = None
            if self._playwright is not None:
                self._playwright.stop()
                self._playwright = None
                self.logger.info("render_engine_stopped")


__all__ = ["FetchResponse", "Fetcher", "RenderEngine"]
