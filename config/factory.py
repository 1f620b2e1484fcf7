"""Builds the engine's components from settings.

Every component is created once here and handed to the context service;
the store backend cannot change afterwards.
"""

import logging

from indexer.document_store import DocumentStore, InMemoryFileBackedStore
from indexer.embeddings import (
    DEFAULT_LOCAL_MODEL,
    DEFAULT_OPENAI_MODEL,
    EmbeddingClient,
    OpenAIEmbeddingClient,
    SentenceTransformerEmbeddingClient
)
from indexer.postgres_adapter import PgVectorStore
from pipelines.chunker import TextChunker
from pipelines.crawler import WebCrawler
from server.context_service import ContextService

from .settings import EmbeddingProvider, KnowledgeBaseSettings, StoreBackend

logger = logging.getLogger(__name__)


def create_document_store(settings: KnowledgeBaseSettings) -> DocumentStore:
    """Create the configured document store backend."""
    if settings.store.backend == StoreBackend.PGVECTOR:
        logger.info("Using PostgreSQL/pgvector document store")
        return PgVectorStore(settings.store.postgres)

    logger.info(f"Using file-backed document store: {settings.store.snapshot_path or '(memory only)'}")
    return InMemoryFileBackedStore(settings.store.snapshot_path)


def create_embedding_client(settings: KnowledgeBaseSettings) -> EmbeddingClient:
    """Create the configured embedding client."""
    embedding = settings.embedding
    if embedding.provider == EmbeddingProvider.SENTENCE_TRANSFORMERS:
        return SentenceTransformerEmbeddingClient(embedding.model or DEFAULT_LOCAL_MODEL)

    return OpenAIEmbeddingClient(
        api_key=embedding.api_key,
        model=embedding.model or DEFAULT_OPENAI_MODEL,
        base_url=embedding.base_url,
        timeout=embedding.timeout
    )


def create_crawler(settings: KnowledgeBaseSettings) -> WebCrawler:
    crawler = settings.crawler
    return WebCrawler(
        max_pages=crawler.max_pages,
        max_depth=crawler.max_depth,
        max_concurrent=crawler.max_concurrent,
        request_timeout=crawler.request_timeout,
        user_agent=crawler.user_agent,
        max_retries=crawler.max_retries
    )


def build_context_service(settings: KnowledgeBaseSettings) -> ContextService:
    """Wire a context service from settings."""
    return ContextService(
        store=create_document_store(settings),
        embedder=create_embedding_client(settings),
        crawler=create_crawler(settings),
        chunker=TextChunker(settings.chunk_size),
        seed_urls=settings.crawler.seed_urls,
        corpus_archives=settings.corpus_archives,
        embed_timeout=settings.embedding.timeout,
        embed_concurrency=settings.embedding.max_concurrent
    )
