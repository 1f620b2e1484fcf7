"""Indexer package for BriefContext.

Provides embedding clients, document stores and similarity ranking.
"""

from .document_store import (
    DocumentStore,
    InMemoryFileBackedStore,
    PersistenceError,
    RetrievableUnit,
    ScoredUnit
)
from .embeddings import (
    EmbeddingClient,
    EmbeddingServiceError,
    OpenAIEmbeddingClient,
    SentenceTransformerEmbeddingClient
)
from .postgres_adapter import PgVectorConfig, PgVectorStore
from .similarity import cosine_similarity, rank

__all__ = [
    'DocumentStore',
    'InMemoryFileBackedStore',
    'PersistenceError',
    'RetrievableUnit',
    'ScoredUnit',
    'EmbeddingClient',
    'EmbeddingServiceError',
    'OpenAIEmbeddingClient',
    'SentenceTransformerEmbeddingClient',
    'PgVectorConfig',
    'PgVectorStore',
    'cosine_similarity',
    'rank'
]
