import string
from collections import Counter
from typing import Dict, Optional

import pytest

from indexer.embeddings import EmbeddingClient, EmbeddingServiceError
from pipelines.crawler import FetchError, FetchResponse


class StubEmbedder(EmbeddingClient):
    """Deterministic embedder: letter frequencies of the text (26 dims)."""

    provider = "stub"

    def __init__(self, fail_on: Optional[str] = None):
        super().__init__()
        self.fail_on = fail_on
        self.calls = []
        self.closed = False

    @staticmethod
    def vector_for(text: str):
        counts = Counter(c for c in text.lower() if c in string.ascii_lowercase)
        return tuple(float(counts.get(letter, 0)) for letter in string.ascii_lowercase)

    async def _embed(self, text: str):
        self.calls.append(text)
        if self.fail_on is not None and self.fail_on in text:
            raise EmbeddingServiceError("stub embedding service unavailable", status_code=503)
        return self.vector_for(text)

    async def close(self):
        self.closed = True


class FakeSite:
    """In-memory website used as the crawler's fetch capability."""

    def __init__(self, pages: Dict[str, str], failing=()):
        self.pages = pages
        self.failing = set(failing)
        self.fetch_counts: Counter = Counter()

    async def fetch(self, url: str) -> FetchResponse:
        self.fetch_counts[url] += 1
        if url in self.failing:
            raise FetchError(url, "connection reset")
        if url not in self.pages:
            return FetchResponse(status=404, body="not found")
        return FetchResponse(status=200, body=self.pages[url])


def html_page(body: str, links=()) -> str:
    anchors = "".join(f'<a href="{href}"></a>' for href in links)
    return f"<html><head><title>t</title></head><body><p>{body}</p>{anchors}</body></html>"


@pytest.fixture
def stub_embedder():
    return StubEmbedder()


@pytest.fixture
def policy_site():
    """Two-page site from the AI Act knowledge source example."""
    return FakeSite({
        "https://example.test/": html_page("AI governance requires careful rules.", ["/page2"]),
        "https://example.test/page2": html_page("Implementation details for AI rules."),
    })
