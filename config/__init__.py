"""Configuration module for BriefContext.

Provides settings models and the factory that wires the engine together.
"""

from .settings import (
    CrawlerSettings,
    EmbeddingProvider,
    EmbeddingSettings,
    KnowledgeBaseSettings,
    StoreBackend,
    StoreSettings,
    load_settings
)
from .factory import (
    build_context_service,
    create_crawler,
    create_document_store,
    create_embedding_client
)

__all__ = [
    'CrawlerSettings',
    'EmbeddingProvider',
    'EmbeddingSettings',
    'KnowledgeBaseSettings',
    'StoreBackend',
    'StoreSettings',
    'load_settings',
    'build_context_service',
    'create_crawler',
    'create_document_store',
    'create_embedding_client'
]
