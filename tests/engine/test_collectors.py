from __future__ import annotations

import json

import pytest

from airdrop_crawler.config import GlobalConfig, SocialApiConfig, SourceKind
from airdrop_crawler.engine.collectors import (
    SocialSearchCollector,
    StructuredApiCollector,
    WebpageCollector,
    build_collector,
)
from airdrop_crawler.engine.fetcher import FetchResponse
from airdrop_crawler.errors import FetchError

CARD_HTML = """
<div class="airdrop-item"><h3>Blast Airdrop</h3><p>Layer 2 token drop</p></div>
"""

RENDERED_SEARCH = """
<article>
  <div data-testid="User-Name">Scroll @scroll_zkp</div>
  <div data-testid="tweetText">Scroll airdrop claim opens today</div>
  <a href="/scroll_zkp/status/9">1h</a>
</article>
"""


class FakeFetcher:
    def __init__(self, response: FetchResponse | Exception) -> None:
        self.response = response
        self.calls: list[dict] = []

    def fetch(self, url, *, params=None, headers=None):  # noqa: ANN001
        self.calls.append({"url": url, "params": params, "headers": headers})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    def close(self) -> None:
        return


class FakeRenderEngine:
    def __init__(self, html: str) -> None:
        self.html = html
        self.calls: list[tuple[str, str | None]] = []

    def render(self, url, wait_selector=None):  # noqa: ANN001
        self.calls.append((url, wait_selector))
        return FetchResponse(url=url, status_code=200, text=self.html, rendered=True)


def _ok(text: str, url: str = "https://example.com/airdrops") -> FetchResponse:
    return FetchResponse(url=url, status_code=200, text=text)


def test_webpage_collector_uses_plain_fetch_when_containers_present(
    sample_global_config, sample_source_config
) -> None:
    render = FakeRenderEngine("")
    collector = WebpageCollector(FakeFetcher(_ok(CARD_HTML)), render, sample_global_config)
    records = collector.collect(sample_source_config())
    assert [record.name for record in records] == ["Blast Airdrop"]
    assert render.calls == []


def test_webpage_collector_renders_after_fetch_failure(sample_global_config, sample_source_config) -> None:
    render = FakeRenderEngine(CARD_HTML)
    fetcher = FakeFetcher(FetchError("https://example.com/airdrops", "timed out after 10s"))
    source = sample_source_config()
    records = WebpageCollector(fetcher, render, sample_global_config).collect(source)
    assert len(records) == 1
    assert render.calls == [(source.endpoint, None)]


def test_webpage_collector_renders_when_containers_missing(sample_global_config, sample_source_config) -> None:
    render = FakeRenderEngine(CARD_HTML)
    fetcher = FakeFetcher(_ok("<html><body><div id='app'></div></body></html>"))
    source = sample_source_config(extraction_rules={"wait_selector": ".airdrop-item"})
    records = WebpageCollector(fetcher, render, sample_global_config).collect(source)
    assert len(records) == 1
    assert render.calls == [(source.endpoint, ".airdrop-item")]


def test_webpage_collector_without_renderer_reraises(sample_global_config, sample_source_config) -> None:
    fetcher = FakeFetcher(FetchError("https://example.com/airdrops", "unexpected status 503"))
    with pytest.raises(FetchError):
        WebpageCollector(fetcher, None, sample_global_config).collect(sample_source_config())


def test_social_collector_queries_api_with_bearer(sample_source_config) -> None:
    config = GlobalConfig(delay_range=(0, 0), social_api=SocialApiConfig(bearer_token="tkn"))
    payload = {
        "data": [
            {"id": "1", "text": "Blast Network airdrop is live https://blast.io", "author_id": "u1"},
            {"id": "2", "text": "Lovely weather today", "author_id": "u2"},
        ],
        "includes": {"users": [{"id": "u1", "username": "blast_l2"}, {"id": "u2", "username": "sun"}]},
    }
    fetcher = FakeFetcher(_ok(json.dumps(payload), url="https://api.twitter.com/2/tweets/search/recent"))
    render = FakeRenderEngine("")
    source = sample_source_config(kind=SourceKind.SOCIAL_SEARCH, max_results=50)
    records = SocialSearchCollector(fetcher, render, config).collect(source)

    call = fetcher.calls[0]
    assert call["url"] == "https://api.twitter.com/2/tweets/search/recent"
    assert call["params"]["max_results"] == 50
    assert call["params"]["query"] == "#airdrop crypto"
    assert call["headers"] == {"Authorization": "Bearer tkn"}
    assert render.calls == []
    assert len(records) == 1
    assert records[0].name == "Blast Network"
    assert records[0].handle == "@blast_l2"
    assert records[0].source_url == "https://x.com/blast_l2/status/1"


def test_social_collector_falls_back_to_rendered_search(sample_source_config) -> None:
    config = GlobalConfig(delay_range=(0, 0), social_api=SocialApiConfig(bearer_token="tkn"))
    fetcher = FakeFetcher(FetchError("https://api.twitter.com/2/tweets/search/recent", "unexpected status 429"))
    render = FakeRenderEngine(RENDERED_SEARCH)
    source = sample_source_config(kind=SourceKind.SOCIAL_SEARCH, endpoint="https://x.com/search")
    records = SocialSearchCollector(fetcher, render, config).collect(source)
    url, wait_selector = render.calls[0]
    assert url.startswith("https://x.com/search?q=%23airdrop+crypto")
    assert wait_selector == "article"
    assert [record.handle for record in records] == ["@scroll_zkp"]


def test_social_collector_without_credentials_skips_api(sample_global_config, sample_source_config) -> None:
    fetcher = FakeFetcher(_ok("{}"))
    render = FakeRenderEngine(RENDERED_SEARCH)
    source = sample_source_config(kind=SourceKind.SOCIAL_SEARCH, endpoint="https://x.com/search")
    records = SocialSearchCollector(fetcher, render, sample_global_config).collect(source)
    assert fetcher.calls == []
    assert len(records) == 1


def test_structured_api_collector_returns_nothing(sample_global_config, sample_source_config) -> None:
    collector = StructuredApiCollector(FakeFetcher(RuntimeError("unused")), None, sample_global_config)
    assert collector.collect(sample_source_config(kind=SourceKind.STRUCTURED_API)) == []


@pytest.mark.parametrize(
    ("kind", "expected"),
    [
        ("webpage", WebpageCollector),
        (SourceKind.SOCIAL_SEARCH, SocialSearchCollector),
        ("structured-api", StructuredApiCollector),
    ],
)
def test_build_collector_resolves_kind(kind, expected, sample_global_config) -> None:
    collector = build_collector(kind, FakeFetcher(_ok("")), None, sample_global_config)
    assert isinstance(collector, expected)
