"""Context service for BriefContext.

Owns the document store for the lifetime of the process. Builds the
knowledge base on first use (or loads a snapshot) and answers
relevant-context queries for the conversational agent.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from indexer.document_store import DocumentStore, PersistenceError, RetrievableUnit, ScoredUnit
from indexer.embeddings import EmbeddingClient, EmbeddingServiceError, Vector
from indexer.similarity import rank
from observability.metrics import context_duration, context_requests, stored_units
from pipelines.chunker import TextChunk, TextChunker
from pipelines.corpus_ingest import CorpusError, iter_archive_documents
from pipelines.crawler import WebCrawler

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 3


class ServiceState(str, Enum):
    """Lifecycle states of the context service."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


def format_excerpts(hits: Sequence[ScoredUnit]) -> str:
    """Render ranked units as attributed excerpts."""
    return "\n\n".join(f"From {hit.unit.source_ref}: {hit.unit.content}" for hit in hits)


class ContextService:
    """Retrieval engine behind ``get_relevant_context``.

    Construct once at startup and share by reference. ``initialize`` is
    idempotent; concurrent callers wait on the same build.
    """

    def __init__(self,
                 store: DocumentStore,
                 embedder: EmbeddingClient,
                 crawler: Optional[WebCrawler] = None,
                 chunker: Optional[TextChunker] = None,
                 seed_urls: Iterable[str] = (),
                 corpus_archives: Iterable[str] = (),
                 embed_timeout: Optional[float] = 30.0,
                 embed_concurrency: int = 4):
        """
        Args:
            store: Document store, owned by this service from now on
            embedder: Embedding capability for units and queries
            crawler: Crawler for ``seed_urls``
            chunker: Chunker shared by crawled pages and corpus documents
            seed_urls: Pages to crawl when no snapshot exists
            corpus_archives: ZIP archives ingested before crawling
            embed_timeout: Per-call embedding timeout in seconds
            embed_concurrency: Maximum concurrent embedding calls during a build
        """
        self.store = store
        self.embedder = embedder
        self.crawler = crawler
        self.chunker = chunker or TextChunker()
        self.seed_urls = list(seed_urls)
        self.corpus_archives = list(corpus_archives)
        self.embed_timeout = embed_timeout
        self.embed_concurrency = embed_concurrency
        self.state = ServiceState.UNINITIALIZED
        self.durable = store.durable
        self.build_count = 0
        self._init_task: Optional[asyncio.Task] = None

    @property
    def is_ready(self) -> bool:
        return self.state == ServiceState.READY

    async def initialize(self) -> None:
        """Load the snapshot or build the knowledge base, exactly once."""
        if self.state == ServiceState.READY:
            return

        if self._init_task is None:
            self.state = ServiceState.INITIALIZING
            self._init_task = asyncio.create_task(self._initialize())

        # Shielded so one cancelled caller does not abort the shared build
        await asyncio.shield(self._init_task)

    async def _initialize(self) -> None:
        try:
            if await self._load_snapshot():
                self.state = ServiceState.READY
                return
            await self._build()
            self.state = ServiceState.READY
        except BaseException:
            await self._reset_after_failure()
            raise

    async def _reset_after_failure(self):
        self.state = ServiceState.UNINITIALIZED
        self._init_task = None
        await self._discard_partial_build()

    async def _load_snapshot(self) -> bool:
        try:
            loaded = await self.store.load()
        except PersistenceError as e:
            logger.error(f"Snapshot unusable, rebuilding knowledge base: {e}")
            return False

        if loaded:
            count = await self.store.count()
            stored_units.set(count)
            logger.info(f"Knowledge base ready from snapshot with {count} units")
        return loaded

    async def _discard_partial_build(self):
        try:
            await self.store.clear()
        except PersistenceError as e:
            logger.error(f"Could not discard partial build: {e}")

    async def rebuild(self) -> int:
        """Replace the store contents with a fresh build.

        The rebuild becomes the in-flight initialization, so queries arriving
        meanwhile wait for it instead of reading a partial store.

        Returns:
            Number of units stored
        """
        while self._init_task is not None and not self._init_task.done():
            await asyncio.shield(self._init_task)

        self.state = ServiceState.INITIALIZING
        self._init_task = asyncio.create_task(self._rebuild())
        await asyncio.shield(self._init_task)
        return await self.store.count()

    async def _rebuild(self) -> None:
        try:
            await self.store.clear()
            await self._build()
        except BaseException:
            await self._reset_after_failure()
            raise
        self.state = ServiceState.READY

    async def _embed(self, text: str) -> Vector:
        # Model loading is not an embedding call and is not timed
        await self.embedder.warm_up()
        try:
            return await asyncio.wait_for(self.embedder.embed(text), timeout=self.embed_timeout)
        except asyncio.TimeoutError as e:
            raise EmbeddingServiceError(f"Embedding call exceeded {self.embed_timeout}s") from e

    async def _embed_chunks(self, chunks: List[TextChunk]) -> List[RetrievableUnit]:
        semaphore = asyncio.Semaphore(self.embed_concurrency)

        async def embed_one(chunk: TextChunk) -> RetrievableUnit:
            async with semaphore:
                vector = await self._embed(chunk.content)
            return RetrievableUnit(
                id=chunk.chunk_id,
                content=chunk.content,
                source_ref=chunk.source_ref,
                embedding=vector
            )

        return list(await asyncio.gather(*(embed_one(chunk) for chunk in chunks)))

    async def _store_document(self, source_ref: str, text: str) -> int:
        chunks = self.chunker.chunk_document(source_ref, text)
        if not chunks:
            return 0
        for unit in await self._embed_chunks(chunks):
            await self.store.add(unit)
        return len(chunks)

    async def _load_corpus_documents(self) -> List[Tuple[str, str]]:
        documents: List[Tuple[str, str]] = []
        for archive in self.corpus_archives:
            try:
                documents.extend(iter_archive_documents(archive))
            except CorpusError as e:
                logger.error(f"Skipping corpus archive: {e}")
        return documents

    async def _build(self) -> None:
        """Run the ingest pipeline and persist the result.

        The crawler's workers hand pages over one at a time; this coroutine
        is the only writer to the store.
        """
        started = time.time()
        self.build_count += 1
        units = 0

        for source_ref, text in await self._load_corpus_documents():
            units += await self._store_document(source_ref, text)

        if self.seed_urls and self.crawler is None:
            raise ValueError("Seed URLs configured without a crawler")

        for seed_url in self.seed_urls:
            pages = self.crawler.crawl(seed_url)
            try:
                async for page in pages:
                    units += await self._store_document(page.url, page.text)
            finally:
                await pages.aclose()

        stored_units.set(units)
        logger.info(f"Built knowledge base with {units} units in {time.time() - started:.1f}s")
        await self._persist()

    async def _persist(self) -> None:
        if not self.durable:
            logger.debug("Store is not durable; skipping snapshot")
            return
        try:
            await self.store.persist()
        except PersistenceError as e:
            self.durable = False
            logger.error(f"Snapshot write failed, continuing in memory only: {e}")

    async def get_relevant_context(self, query: str, max_results: int = DEFAULT_MAX_RESULTS) -> str:
        """Return the stored excerpts most relevant to ``query``.

        Excerpts are rendered as ``From <source>: <content>`` and separated by
        blank lines. Returns an empty string for a blank query or an empty
        store.

        Raises:
            EmbeddingServiceError: If the query or a build cannot be embedded
        """
        started = time.time()
        try:
            await self.initialize()

            if not query or not query.strip() or max_results <= 0:
                context_requests.labels(status="empty").inc()
                return ""

            if await self.store.count() == 0:
                context_requests.labels(status="empty").inc()
                return ""

            vector = await self._embed(query)
            hits = await self.store.query(vector, max_results)
            if hits is None:
                hits = rank(vector, await self.store.all(), max_results)
        except Exception:
            context_requests.labels(status="error").inc()
            raise
        finally:
            context_duration.observe(time.time() - started)

        context_requests.labels(status="success").inc()
        logger.debug(f"Returning {len(hits)} excerpts for query {query[:80]!r}")
        return format_excerpts(hits)

    async def try_get_relevant_context(self, query: str, max_results: int = DEFAULT_MAX_RESULTS) -> str:
        """Like ``get_relevant_context`` but returns ``""`` on any failure.

        The agent should answer without retrieved context rather than fail.
        """
        try:
            return await self.get_relevant_context(query, max_results)
        except Exception as e:
            logger.error(f"Context retrieval failed, continuing without context: {e}")
            return ""

    async def close(self) -> None:
        """Cancel an in-flight build and release connections."""
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
            await asyncio.gather(self._init_task, return_exceptions=True)
        if self.crawler is not None:
            await self.crawler.close()
        await self.embedder.close()
        await self.store.close()
        logger.info("Context service closed")
