"""Web crawler pipeline for BriefContext.

Crawls a seed URL and its same-origin pages, yielding the text of every
fetched page. Workers pull from a bounded frontier and hand finished pages to
a single consumer through a results queue.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Set, Tuple
from urllib.parse import urljoin, urlparse, urlunparse

import aiohttp
from bs4 import BeautifulSoup

from observability.metrics import pages_crawled

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "BriefContext/0.1 (+knowledge-base crawler)"

# hrefs that never lead to another crawlable page
IGNORED_HREF_PREFIXES = ("#", "mailto:", "tel:", "javascript:")


class FetchError(Exception):
    """Raised when a single page cannot be fetched."""

    def __init__(self, url: str, message: str, status_code: int = 0):
        super().__init__(f"{url}: {message}")
        self.url = url
        self.status_code = status_code


class ParseError(Exception):
    """Raised when page markup cannot be parsed."""
    pass


@dataclass
class FetchResponse:
    """Response of the fetch capability."""
    status: int
    body: str
    content_type: str = "text/html"
    final_url: Optional[str] = None


Fetcher = Callable[[str], Awaitable[FetchResponse]]


@dataclass
class CrawlResult:
    """Text extracted from one crawled page."""
    url: str
    text: str
    depth: int
    status_code: int = 200


@dataclass
class CrawlStats:
    """Statistics for a crawl session."""
    total_urls: int = 0
    successful: int = 0
    failed: int = 0
    parse_errors: int = 0
    dropped_links: int = 0
    redirects_skipped: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = datetime.utcnow()

    @property
    def duration(self) -> Optional[timedelta]:
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        return None

    def finish(self):
        """Mark crawl as finished."""
        self.end_time = datetime.utcnow()


class CrawlFrontier:
    """Visited-URL set plus a bounded queue of pending ``(url, depth)`` entries.

    ``offer`` is the only way a URL gets queued. It tests and records
    the URL without yielding to the event loop, so two workers can never both
    admit the same URL.
    """

    def __init__(self, max_pages: int, max_depth: int, capacity: Optional[int] = None):
        if max_pages <= 0:
            raise ValueError("max_pages must be positive")
        self.max_pages = max_pages
        self.max_depth = max_depth
        self.capacity = capacity or max_pages
        self.visited: Set[str] = set()
        self.pending: asyncio.Queue = asyncio.Queue(maxsize=self.capacity)

    def __contains__(self, url: str) -> bool:
        return url in self.visited

    def __len__(self) -> int:
        return len(self.visited)

    def offer(self, url: str, depth: int) -> bool:
        """Admit ``url`` for crawling unless seen before or over a limit."""
        if url in self.visited:
            return False
        if depth > self.max_depth or len(self.visited) >= self.max_pages:
            return False
        try:
            self.pending.put_nowait((url, depth))
        except asyncio.QueueFull:
            return False
        self.visited.add(url)
        return True

    def mark_visited(self, url: str) -> bool:
        """Record ``url`` as seen without queueing it.

        Used for redirect targets. Returns False if it was already seen.
        """
        if url in self.visited:
            return False
        self.visited.add(url)
        return True


class _WorkerFailure:
    """Carries an unexpected worker exception to the consuming side."""

    def __init__(self, error: BaseException):
        self.error = error


_CRAWL_DONE = object()


def extract_page(html: str) -> Tuple[str, List[str]]:
    """Extract visible text and raw anchor targets from HTML.

    Raises:
        ParseError: If the markup cannot be parsed
    """
    try:
        soup = BeautifulSoup(html, "html.parser")
    except Exception as e:
        raise ParseError(str(e)) from e

    for element in soup(["script", "style", "noscript"]):
        element.decompose()

    root = soup.body or soup
    text = " ".join(root.get_text(" ").split())
    hrefs = [a["href"].strip() for a in soup.find_all("a", href=True)]
    return text, hrefs


def origin_of(url: str) -> Tuple[str, str]:
    parsed = urlparse(url)
    return parsed.scheme.lower(), parsed.netloc.lower()


def normalize_link(href: str, page_url: str, origin: Tuple[str, str]) -> Optional[str]:
    """Resolve ``href`` against ``page_url`` and keep it only if same-origin.

    Returns:
        Absolute URL without fragment, or None if the link should not be followed
    """
    if not href or href.lower().startswith(IGNORED_HREF_PREFIXES):
        return None

    absolute_url = urljoin(page_url, href)
    parsed = urlparse(absolute_url)
    if parsed.scheme.lower() not in ("http", "https"):
        return None
    if (parsed.scheme.lower(), parsed.netloc.lower()) != origin:
        return None

    return urlunparse(parsed._replace(fragment=""))


class WebCrawler:
    """Asynchronous same-origin crawler with a bounded frontier."""

    def __init__(self,
                 max_pages: int = 200,
                 max_depth: int = 5,
                 max_concurrent: int = 5,
                 frontier_capacity: Optional[int] = None,
                 request_timeout: float = 30,
                 user_agent: Optional[str] = None,
                 max_retries: int = 2,
                 retry_delay: float = 1.0,
                 max_retry_delay: float = 30.0,
                 fetcher: Optional[Fetcher] = None):
        """Initialize crawler.

        Args:
            max_pages: Maximum number of URLs admitted per crawl
            max_depth: Maximum link distance from the seed URL
            max_concurrent: Number of concurrent fetch workers
            frontier_capacity: Pending-queue capacity (defaults to max_pages)
            request_timeout: Request timeout in seconds
            user_agent: User agent string
            max_retries: Maximum number of retry attempts per page
            retry_delay: Base delay between retries (seconds)
            max_retry_delay: Maximum delay between retries (seconds)
            fetcher: Replacement for the built-in aiohttp fetch
        """
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be positive")
        self.max_pages = max_pages
        self.max_depth = max_depth
        self.max_concurrent = max_concurrent
        self.frontier_capacity = frontier_capacity
        self.request_timeout = request_timeout
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.fetcher: Fetcher = fetcher or self._fetch_url
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            connector = aiohttp.TCPConnector(limit=self.max_concurrent * 2)
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self.session = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout,
                headers={'User-Agent': self.user_agent}
            )
        return self.session

    async def close(self):
        """Close the crawler session."""
        if self.session:
            await self.session.close()
            self.session = None

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay with jitter."""
        base_delay = self.retry_delay * (2 ** attempt)
        jitter = random.uniform(0.1, 0.3) * base_delay
        return min(base_delay + jitter, self.max_retry_delay)

    def _is_retryable_error(self, exception: Optional[Exception], status_code: Optional[int] = None) -> bool:
        """Determine if an error is retryable."""
        retryable_status_codes = {408, 429, 500, 502, 503, 504}

        if status_code and status_code in retryable_status_codes:
            return True

        if isinstance(exception, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
            return True

        # Retry on connection errors, but not on client errors like 404
        return isinstance(exception, (aiohttp.ClientConnectionError,
                                      aiohttp.ServerDisconnectedError))

    async def _fetch_url(self, url: str) -> FetchResponse:
        """Fetch a single URL with retries.

        Raises:
            FetchError: On network failure, timeout, HTTP error or non-text content
        """
        session = await self._ensure_session()
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                logger.debug(f"Fetching {url} (attempt {attempt + 1}/{self.max_retries + 1})")
                async with session.get(url, allow_redirects=True) as response:
                    if self._is_retryable_error(None, response.status) and attempt < self.max_retries:
                        delay = self._calculate_retry_delay(attempt)
                        logger.warning(f"Retryable status {response.status} for {url}, retrying in {delay:.2f}s")
                        await asyncio.sleep(delay)
                        continue

                    if response.status >= 400:
                        raise FetchError(url, f"HTTP {response.status}", response.status)

                    content_type = response.headers.get('content-type', '')
                    if content_type and not content_type.startswith('text/'):
                        raise FetchError(url, f"Non-text content type: {content_type}", response.status)

                    try:
                        body = await response.text()
                    except (UnicodeDecodeError, LookupError) as e:
                        raise FetchError(url, f"Cannot decode body: {e}", response.status) from e

                    return FetchResponse(
                        status=response.status,
                        body=body,
                        content_type=content_type,
                        final_url=str(response.url)
                    )

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_exception = e
                if attempt < self.max_retries and self._is_retryable_error(e):
                    delay = self._calculate_retry_delay(attempt)
                    logger.warning(f"Error fetching {url}: {e!r}, retrying in {delay:.2f}s")
                    await asyncio.sleep(delay)
                    continue
                break

        status_code = 408 if isinstance(last_exception, asyncio.TimeoutError) else 0
        raise FetchError(url, f"giving up after {self.max_retries + 1} attempts: {last_exception!r}", status_code)

    async def _process(self, url: str, depth: int, frontier: CrawlFrontier,
                       origin: Tuple[str, str], stats: CrawlStats) -> Optional[CrawlResult]:
        stats.total_urls += 1
        try:
            response = await self.fetcher(url)
            if response.status >= 400:
                raise FetchError(url, f"HTTP {response.status}", response.status)
        except FetchError as e:
            stats.failed += 1
            pages_crawled.labels(outcome="failed").inc()
            logger.warning(f"Skipping {url}: {e}")
            return None

        base_url = url
        if response.final_url:
            final_url = urlunparse(urlparse(response.final_url)._replace(fragment=""))
            if final_url != url:
                if origin_of(final_url) != origin:
                    reason = f"redirected off-site to {final_url}"
                elif not frontier.mark_visited(final_url):
                    reason = f"redirected to already visited {final_url}"
                else:
                    reason = None
                if reason:
                    stats.redirects_skipped += 1
                    pages_crawled.labels(outcome="skipped").inc()
                    logger.info(f"Skipping {url}: {reason}")
                    return None
            base_url = final_url

        try:
            text, hrefs = extract_page(response.body)
        except ParseError as e:
            stats.parse_errors += 1
            logger.warning(f"Could not parse {url}, treating as empty: {e}")
            text, hrefs = "", []

        for href in hrefs:
            link = normalize_link(href, base_url, origin)
            if link is None or link in frontier:
                continue
            if not frontier.offer(link, depth + 1):
                stats.dropped_links += 1
                logger.debug(f"Frontier limit reached, dropping {link}")

        stats.successful += 1
        pages_crawled.labels(outcome="success").inc()
        return CrawlResult(url=url, text=text, depth=depth, status_code=response.status)

    async def _worker(self, frontier: CrawlFrontier, results: asyncio.Queue,
                      origin: Tuple[str, str], stats: CrawlStats):
        while True:
            url, depth = await frontier.pending.get()
            try:
                result = await self._process(url, depth, frontier, origin, stats)
                if result is not None:
                    await results.put(result)
            except Exception as e:
                await results.put(_WorkerFailure(e))
            finally:
                frontier.pending.task_done()

    async def _signal_when_drained(self, frontier: CrawlFrontier, results: asyncio.Queue):
        await frontier.pending.join()
        await results.put(_CRAWL_DONE)

    async def crawl(self, seed_url: str) -> AsyncIterator[CrawlResult]:
        """Crawl ``seed_url`` and every reachable same-origin page.

        Pages are yielded as workers finish them. The visited set lives only
        for this call, so crawling the same seed twice fetches it twice.
        """
        origin = origin_of(seed_url)
        if origin[0] not in ("http", "https"):
            raise ValueError(f"Unsupported seed URL: {seed_url}")

        seed = urlunparse(urlparse(seed_url)._replace(fragment=""))
        frontier = CrawlFrontier(self.max_pages, self.max_depth, self.frontier_capacity)
        results: asyncio.Queue = asyncio.Queue()
        stats = CrawlStats()
        frontier.offer(seed, 0)

        logger.info(f"Starting crawl of {seed} (max_pages={self.max_pages}, max_depth={self.max_depth})")
        started = time.time()

        tasks = [
            asyncio.create_task(self._worker(frontier, results, origin, stats))
            for _ in range(self.max_concurrent)
        ]
        tasks.append(asyncio.create_task(self._signal_when_drained(frontier, results)))

        try:
            while True:
                item = await results.get()
                if item is _CRAWL_DONE:
                    break
                if isinstance(item, _WorkerFailure):
                    raise item.error
                yield item
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            stats.finish()
            logger.info(f"Crawl of {seed} finished in {time.time() - started:.1f}s: "
                        f"{stats.successful} successful, {stats.failed} failed, "
                        f"{stats.parse_errors} unparseable, {stats.dropped_links} links dropped, "
                        f"{stats.redirects_skipped} redirects skipped "
                        f"out of {stats.total_urls} URLs")


async def crawl_site(seed_url: str, **crawler_kwargs) -> List[CrawlResult]:
    """Convenience function to crawl a site into a list of pages."""
    async with WebCrawler(**crawler_kwargs) as crawler:
        return [page async for page in crawler.crawl(seed_url)]
