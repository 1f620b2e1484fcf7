"""Tests for the same-origin web crawler.

All fetches go to an in-memory site; no network access.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from pipelines.crawler import (
    CrawlFrontier,
    FetchError,
    FetchResponse,
    ParseError,
    WebCrawler,
    extract_page,
    normalize_link,
    origin_of
)
from tests.conftest import FakeSite, html_page

BASE = "https://example.test"


async def collect(crawler: WebCrawler, seed: str):
    return [page async for page in crawler.crawl(seed)]


class FakeResponse:
    """Minimal stand-in for an aiohttp response context manager."""

    def __init__(self, status=200, body="", content_type="text/html; charset=utf-8", url=BASE + "/",
                 decode_error=None):
        self.status = status
        self.body = body
        self.headers = {"content-type": content_type}
        self.url = url
        self.decode_error = decode_error

    async def text(self):
        if self.decode_error is not None:
            raise self.decode_error
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class TestLinkHandling:
    """Tests for link resolution and filtering."""

    origin = origin_of(BASE + "/")

    def test_relative_links_resolved_against_page(self):
        assert normalize_link("page2", BASE + "/docs/", self.origin) == BASE + "/docs/page2"
        assert normalize_link("/page2", BASE + "/docs/intro", self.origin) == BASE + "/page2"
        assert normalize_link("../up", BASE + "/docs/a/b", self.origin) == BASE + "/docs/up"

    def test_fragment_mailto_tel_ignored(self):
        for href in ["#section", "mailto:info@example.test", "tel:+3212345", "javascript:void(0)", ""]:
            assert normalize_link(href, BASE + "/", self.origin) is None

    def test_fragment_stripped_from_resolved_url(self):
        assert normalize_link("/page2#part", BASE + "/", self.origin) == BASE + "/page2"

    def test_other_origins_rejected(self):
        assert normalize_link("https://other.test/x", BASE + "/", self.origin) is None
        assert normalize_link("http://example.test/x", BASE + "/", self.origin) is None
        assert normalize_link("https://example.test:8443/x", BASE + "/", self.origin) is None
        assert normalize_link("ftp://example.test/x", BASE + "/", self.origin) is None

    def test_absolute_same_origin_kept(self):
        assert normalize_link(BASE + "/abs", BASE + "/", self.origin) == BASE + "/abs"


class TestExtractPage:
    def test_scripts_and_styles_removed(self):
        html = """<html><head><style>body {color: red}</style></head>
        <body><script>var secret = 1;</script><h1>Title</h1>
        <p>Visible   text</p><noscript>enable js</noscript><a href="/next">Next</a></body></html>"""
        text, hrefs = extract_page(html)
        assert text == "Title Visible text Next"
        assert "secret" not in text
        assert "color" not in text
        assert hrefs == ["/next"]

    def test_parse_failure_raises_parse_error(self):
        with patch("pipelines.crawler.BeautifulSoup", side_effect=RuntimeError("bad markup")):
            with pytest.raises(ParseError):
                extract_page("<html>")


class TestCrawlFrontier:
    @pytest.mark.asyncio
    async def test_offer_admits_each_url_once(self):
        frontier = CrawlFrontier(max_pages=10, max_depth=3)
        assert frontier.offer(BASE + "/a", 0)
        assert not frontier.offer(BASE + "/a", 1)
        assert BASE + "/a" in frontier
        assert len(frontier) == 1
        assert frontier.pending.qsize() == 1

    @pytest.mark.asyncio
    async def test_limits(self):
        frontier = CrawlFrontier(max_pages=2, max_depth=1)
        assert not frontier.offer(BASE + "/deep", 2)
        assert frontier.offer(BASE + "/a", 0)
        assert frontier.offer(BASE + "/b", 1)
        assert not frontier.offer(BASE + "/c", 1)

    def test_invalid_max_pages(self):
        with pytest.raises(ValueError):
            CrawlFrontier(max_pages=0, max_depth=1)


class TestWebCrawler:
    """Tests for the crawl loop."""

    @pytest.mark.asyncio
    async def test_cycle_visits_each_page_once(self):
        site = FakeSite({
            BASE + "/a": html_page("Page A", ["/b"]),
            BASE + "/b": html_page("Page B", ["/a", BASE + "/a#top"]),
        })
        crawler = WebCrawler(fetcher=site.fetch, max_concurrent=2)
        pages = await collect(crawler, BASE + "/a")

        assert sorted(p.url for p in pages) == [BASE + "/a", BASE + "/b"]
        assert site.fetch_counts == {BASE + "/a": 1, BASE + "/b": 1}

    @pytest.mark.asyncio
    async def test_page_text_and_depth(self, policy_site):
        crawler = WebCrawler(fetcher=policy_site.fetch)
        pages = {p.url: p for p in await collect(crawler, BASE + "/")}

        assert pages[BASE + "/"].text == "AI governance requires careful rules."
        assert pages[BASE + "/"].depth == 0
        assert pages[BASE + "/page2"].text == "Implementation details for AI rules."
        assert pages[BASE + "/page2"].depth == 1

    @pytest.mark.asyncio
    async def test_external_and_special_links_not_followed(self):
        site = FakeSite({
            BASE + "/": html_page("Home", [
                "https://elsewhere.test/", "mailto:a@b.c", "tel:123", "#frag", "/about"
            ]),
            BASE + "/about": html_page("About"),
        })
        pages = await collect(WebCrawler(fetcher=site.fetch), BASE + "/")

        assert sorted(p.url for p in pages) == [BASE + "/", BASE + "/about"]
        assert set(site.fetch_counts) == {BASE + "/", BASE + "/about"}

    @pytest.mark.asyncio
    async def test_fetch_failures_are_skipped(self):
        site = FakeSite({
            BASE + "/": html_page("Home", ["/missing", "/broken", "/ok"]),
            BASE + "/broken": html_page("never served"),
            BASE + "/ok": html_page("Still crawled"),
        }, failing=[BASE + "/broken"])
        pages = await collect(WebCrawler(fetcher=site.fetch), BASE + "/")

        assert sorted(p.url for p in pages) == [BASE + "/", BASE + "/ok"]
        assert site.fetch_counts[BASE + "/missing"] == 1
        assert site.fetch_counts[BASE + "/broken"] == 1

    @pytest.mark.asyncio
    async def test_unparseable_page_yields_empty_text(self, policy_site):
        crawler = WebCrawler(fetcher=policy_site.fetch)
        with patch("pipelines.crawler.extract_page", side_effect=ParseError("broken")):
            pages = await collect(crawler, BASE + "/")

        assert [(p.url, p.text) for p in pages] == [(BASE + "/", "")]

    @pytest.mark.asyncio
    async def test_max_pages_caps_crawl(self):
        pages_html = {
            f"{BASE}/p{i}": html_page(f"Page {i}", [f"/p{i + 1}"]) for i in range(10)
        }
        site = FakeSite(pages_html)
        pages = await collect(WebCrawler(fetcher=site.fetch, max_pages=3), BASE + "/p0")

        assert len(pages) == 3
        assert sum(site.fetch_counts.values()) == 3

    @pytest.mark.asyncio
    async def test_max_depth_caps_crawl(self):
        site = FakeSite({
            BASE + "/": html_page("root", ["/one"]),
            BASE + "/one": html_page("one", ["/two"]),
            BASE + "/two": html_page("two"),
        })
        pages = await collect(WebCrawler(fetcher=site.fetch, max_depth=1), BASE + "/")

        assert sorted(p.url for p in pages) == [BASE + "/", BASE + "/one"]
        assert BASE + "/two" not in site.fetch_counts

    @pytest.mark.asyncio
    async def test_concurrent_workers_never_double_fetch(self):
        hub_links = [f"/leaf{i}" for i in range(20)]
        pages_html = {BASE + "/": html_page("hub", hub_links)}
        for i in range(20):
            # every leaf links to every other leaf and back to the hub
            pages_html[f"{BASE}/leaf{i}"] = html_page(f"leaf {i}", hub_links + ["/"])
        site = FakeSite(pages_html)

        async def slow_fetch(url):
            await asyncio.sleep(0.001)
            return await site.fetch(url)

        pages = await collect(WebCrawler(fetcher=slow_fetch, max_concurrent=8), BASE + "/")

        assert len(pages) == 21
        assert all(count == 1 for count in site.fetch_counts.values())

    @pytest.mark.asyncio
    async def test_unexpected_worker_error_propagates(self):
        async def exploding_fetch(url):
            raise RuntimeError("bug in fetcher")

        with pytest.raises(RuntimeError, match="bug in fetcher"):
            await collect(WebCrawler(fetcher=exploding_fetch), BASE + "/")

    @pytest.mark.asyncio
    async def test_visited_set_scoped_to_one_crawl(self, policy_site):
        crawler = WebCrawler(fetcher=policy_site.fetch)
        await collect(crawler, BASE + "/")
        await collect(crawler, BASE + "/")
        assert policy_site.fetch_counts[BASE + "/"] == 2

    @staticmethod
    def redirecting_fetch(site, redirects):
        async def fetch(url):
            target = redirects.get(url, url)
            response = await site.fetch(target)
            response.final_url = target
            return response
        return fetch

    @pytest.mark.asyncio
    async def test_off_site_redirect_skipped(self):
        site = FakeSite({
            BASE + "/": html_page("Home", ["/out"]),
            "https://elsewhere.test/landing": html_page("Elsewhere", ["/private"]),
        })
        fetch = self.redirecting_fetch(site, {BASE + "/out": "https://elsewhere.test/landing"})
        pages = await collect(WebCrawler(fetcher=fetch), BASE + "/")

        assert [(p.url, p.text) for p in pages] == [(BASE + "/", "Home")]
        assert "https://elsewhere.test/private" not in site.fetch_counts

    @pytest.mark.asyncio
    async def test_redirect_target_not_fetched_again(self):
        site = FakeSite({
            BASE + "/": html_page("Home", ["/old"]),
            BASE + "/new": html_page("New page", ["/new", "/old"]),
        })
        fetch = self.redirecting_fetch(site, {BASE + "/old": BASE + "/new"})
        pages = await collect(WebCrawler(fetcher=fetch), BASE + "/")

        assert sorted(p.text for p in pages) == ["Home", "New page"]
        assert site.fetch_counts[BASE + "/new"] == 1

    @pytest.mark.asyncio
    async def test_redirect_to_already_visited_page_skipped(self):
        site = FakeSite({
            BASE + "/": html_page("Home", ["/new", "/old"]),
            BASE + "/new": html_page("New page"),
        })
        fetch = self.redirecting_fetch(site, {BASE + "/old": BASE + "/new"})
        pages = await collect(WebCrawler(fetcher=fetch, max_concurrent=1), BASE + "/")

        assert sorted(p.url for p in pages) == [BASE + "/", BASE + "/new"]

    @pytest.mark.asyncio
    async def test_rejects_non_http_seed(self):
        with pytest.raises(ValueError):
            await collect(WebCrawler(fetcher=AsyncMock()), "file:///etc/passwd")


class TestDefaultFetcher:
    """Tests for the aiohttp-backed fetch with retries."""

    def make_crawler(self, responses):
        crawler = WebCrawler(max_retries=2, retry_delay=0, max_retry_delay=0)
        session = MagicMock()
        session.closed = False
        session.get.side_effect = responses
        session.close = AsyncMock()
        crawler.session = session
        return crawler, session

    @pytest.mark.asyncio
    async def test_successful_fetch(self):
        crawler, _ = self.make_crawler([FakeResponse(body="<p>hello</p>")])
        response = await crawler._fetch_url(BASE + "/")
        assert isinstance(response, FetchResponse)
        assert response.status == 200
        assert response.body == "<p>hello</p>"

    @pytest.mark.asyncio
    async def test_retryable_status_is_retried(self):
        crawler, session = self.make_crawler([FakeResponse(status=503), FakeResponse(body="ok")])
        response = await crawler._fetch_url(BASE + "/")
        assert response.body == "ok"
        assert session.get.call_count == 2

    @pytest.mark.asyncio
    async def test_http_error_raises_fetch_error(self):
        crawler, _ = self.make_crawler([FakeResponse(status=404)])
        with pytest.raises(FetchError) as exc_info:
            await crawler._fetch_url(BASE + "/gone")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_non_text_content_rejected(self):
        crawler, _ = self.make_crawler([FakeResponse(content_type="application/pdf")])
        with pytest.raises(FetchError, match="Non-text"):
            await crawler._fetch_url(BASE + "/doc.pdf")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        UnicodeDecodeError("utf-8", b"\xff\xfe", 0, 1, "invalid start byte"),
        LookupError("unknown encoding: x-unknown"),
    ])
    async def test_undecodable_body_raises_fetch_error(self, error):
        crawler, _ = self.make_crawler([FakeResponse(decode_error=error)])
        with pytest.raises(FetchError, match="decode"):
            await crawler._fetch_url(BASE + "/bad")

    @pytest.mark.asyncio
    async def test_undecodable_page_skipped_during_crawl(self):
        responses = {
            BASE + "/": FakeResponse(body=html_page("Home", ["/bad", "/good"]), url=BASE + "/"),
            BASE + "/bad": FakeResponse(
                url=BASE + "/bad",
                decode_error=UnicodeDecodeError("utf-8", b"\xff\xfe", 0, 1, "invalid start byte")
            ),
            BASE + "/good": FakeResponse(body=html_page("Good page"), url=BASE + "/good"),
        }
        crawler = WebCrawler(max_retries=0)
        session = MagicMock()
        session.closed = False
        session.get.side_effect = lambda url, **kwargs: responses[url]
        crawler.session = session

        pages = await collect(crawler, BASE + "/")

        assert sorted(p.url for p in pages) == [BASE + "/", BASE + "/good"]

    @pytest.mark.asyncio
    async def test_timeouts_exhaust_retries(self):
        crawler, session = self.make_crawler(asyncio.TimeoutError())
        with pytest.raises(FetchError) as exc_info:
            await crawler._fetch_url(BASE + "/slow")
        assert exc_info.value.status_code == 408
        assert session.get.call_count == 3

    @pytest.mark.asyncio
    async def test_close_closes_session(self):
        crawler, session = self.make_crawler([])
        await crawler.close()
        session.close.assert_awaited_once()
        assert crawler.session is None

    def test_retry_classification(self):
        crawler = WebCrawler()
        assert crawler._is_retryable_error(None, 429)
        assert crawler._is_retryable_error(None, 502)
        assert not crawler._is_retryable_error(None, 404)
        assert crawler._is_retryable_error(asyncio.TimeoutError())
        assert crawler._is_retryable_error(aiohttp.ServerDisconnectedError())
        assert not crawler._is_retryable_error(ValueError("nope"))

    def test_retry_delay_is_capped(self):
        crawler = WebCrawler(retry_delay=1.0, max_retry_delay=5.0)
        assert 1.0 <= crawler._calculate_retry_delay(0) <= 1.3
        assert crawler._calculate_retry_delay(10) == 5.0
