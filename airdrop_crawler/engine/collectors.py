"""Per-kind collectors turning one source into a list of RawRecords."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urlencode

import structlog

from ..config import GlobalConfig, SourceConfig, SourceKind
from ..errors import FetchError
from .fetcher import Fetcher, FetchResponse, RenderEngine
from .parser import Parser, SocialItem
from .records import RawRecord

SOCIAL_WAIT_SELECTOR = "article"


class BaseCollector(ABC):
    """Common collaborators shared by every collector kind."""

    kind: SourceKind

    def __init__(
        self,
        fetcher: Fetcher,
        render_engine: RenderEngine | None,
        global_config: GlobalConfig,
        parser: Parser | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.render_engine = render_engine
        self.global_config = global_config
        self.parser = parser or Parser()
        self.logger = logger or structlog.get_logger("airdrop_crawler.collector")

    @abstractmethod
    def collect(self, source: SourceConfig) -> list[RawRecord]:
        """Fetch and extract candidates for one source."""

    def _render(self, url: str, wait_selector: str | None, cause: FetchError | None = None) -> FetchResponse:
        if self.render_engine is None:
            if cause is not None:
                raise cause
            raise FetchError(url, "no rendering engine available")
        return self.render_engine.render(url, wait_selector=wait_selector)


class WebpageCollector(BaseCollector):
    """Listing pages: plain fetch first, headless render when that is not enough."""

    kind = SourceKind.WEBPAGE

    def collect(self, source: SourceConfig) -> list[RawRecord]:
        rules = source.extraction_rules
        html: str | None = None
        page_url = source.endpoint
        cause: FetchError | None = None
        try:
            response = self.fetcher.fetch(source.endpoint)
        except FetchError as exc:
            cause = exc
            self.logger.info("render_fallback", source=source.source_id, reason=str(exc))
        else:
            if self.parser.has_containers(response.text, rules):
                html, page_url = response.text, response.url
            else:
                self.logger.info("render_fallback", source=source.source_id, reason="no_containers")
        if html is None:
            rendered = self._render(source.endpoint, rules.wait_selector, cause)
            html, page_url = rendered.text, rendered.url
        records = self.parser.parse_cards(html, rules, page_url, source.source_id)
        self.logger.debug("cards_extracted", source=source.source_id, count=len(records))
        return records


class SocialSearchCollector(BaseCollector):
    """Recent-search API when credentials exist, rendered search page otherwise."""

    kind = SourceKind.SOCIAL_SEARCH

    def collect(self, source: SourceConfig) -> list[RawRecord]:
        items: list[SocialItem] | None = None
        if self.global_config.social_api.bearer_token:
            try:
                items = self._search_api(source)
            except (FetchError, ValueError) as exc:
                self.logger.warning("social_api_failed", source=source.source_id, error=str(exc))
        if items is None:
            items = self._search_page(source)
        records: list[RawRecord] = []
        for item in items:
            record = self.parser.record_from_social(item, source.source_id)
            if record is not None:
                records.append(record)
        self.logger.debug(
            "social_items_extracted", source=source.source_id, items=len(items), records=len(records)
        )
        return records

    def _search_api(self, source: SourceConfig) -> list[SocialItem]:
        social = self.global_config.social_api
        response = self.fetcher.fetch(
            f"{social.base_url.rstrip('/')}/tweets/search/recent",
            params={
                "query": source.query,
                "max_results": min(source.max_results, 100),
                "tweet.fields": "created_at,author_id,public_metrics",
                "expansions": "author_id",
                "user.fields": "username",
            },
            headers={"Authorization": f"Bearer {social.bearer_token}"},
        )
        return self.items_from_payload(response.json())

    @staticmethod
    def items_from_payload(payload: dict[str, Any]) -> list[SocialItem]:
        users = {
            user.get("id"): user.get("username", "")
            for user in (payload.get("includes") or {}).get("users", [])
        }
        items: list[SocialItem] = []
        for post in payload.get("data") or []:
            username = users.get(post.get("author_id"), "")
            link = f"https://x.com/{username}/status/{post.get('id')}" if username else ""
            items.append(SocialItem(text=post.get("text", ""), author=username, link=link))
        return items

    def _search_page(self, source: SourceConfig) -> list[SocialItem]:
        separator = "&" if "?" in source.endpoint else "?"
        url = f"{source.endpoint}{separator}{urlencode({'q': source.query, 'src': 'typed_query', 'f': 'live'})}"
        wait_selector = source.extraction_rules.wait_selector or SOCIAL_WAIT_SELECTOR
        rendered = self._render(url, wait_selector)
        return self.parser.parse_social_items(rendered.text, rendered.url)


class StructuredApiCollector(BaseCollector):
    """Placeholder for JSON endpoints; yields nothing."""

    kind = SourceKind.STRUCTURED_API

    def collect(self, source: SourceConfig) -> list[RawRecord]:
        self.logger.debug("structured_api_stub", source=source.source_id)
        return []


_COLLECTORS: dict[SourceKind, type[BaseCollector]] = {
    SourceKind.WEBPAGE: WebpageCollector,
    SourceKind.SOCIAL_SEARCH: SocialSearchCollector,
    SourceKind.STRUCTURED_API: StructuredApiCollector,
}


def build_collector(
    kind: SourceKind | str,
    fetcher: Fetcher,
    render_engine: RenderEngine | None,
    global_config: GlobalConfig,
    logger: structlog.BoundLogger | None = None,
) -> BaseCollector:
    collector_cls = _COLLECTORS.get(SourceKind(kind))
    if collector_cls is None:
        raise ValueError(f"Unsupported source kind: {kind}")
    return collector_cls(fetcher, render_engine, global_config, logger=logger)


__all__ = [
    "BaseCollector",
    "SocialSearchCollector",
    "StructuredApiCollector",
    "WebpageCollector",
    "build_collector",
]
