"""Settings for the BriefContext retrieval engine.

Settings come from environment variables or a YAML file and are validated
with pydantic.
"""

import os
import logging
from enum import Enum
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field

from indexer.postgres_adapter import PgVectorConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "BRIEFCONTEXT_"


class StoreBackend(str, Enum):
    """Supported document store backends."""
    FILE = "file"
    PGVECTOR = "pgvector"


class EmbeddingProvider(str, Enum):
    """Supported embedding services."""
    OPENAI = "openai"
    SENTENCE_TRANSFORMERS = "sentence-transformers"


class CrawlerSettings(BaseModel):
    """Crawler configuration."""
    seed_urls: List[str] = Field(
        default_factory=lambda: ["https://artificialintelligenceact.eu"],
        description="Pages the crawl starts from"
    )
    max_pages: int = Field(default=200, gt=0, description="Maximum pages admitted per seed")
    max_depth: int = Field(default=5, ge=0, description="Maximum link distance from the seed")
    max_concurrent: int = Field(default=5, gt=0, description="Concurrent fetch workers")
    request_timeout: float = Field(default=30.0, gt=0, description="Page fetch timeout in seconds")
    max_retries: int = Field(default=2, ge=0, description="Retries per page")
    user_agent: Optional[str] = Field(default=None, description="User agent header")


class EmbeddingSettings(BaseModel):
    """Embedding service configuration."""
    provider: EmbeddingProvider = Field(default=EmbeddingProvider.OPENAI)
    model: Optional[str] = Field(default=None, description="Model name; provider default when unset")
    api_key: Optional[str] = Field(default=None, description="API key for hosted providers")
    base_url: str = Field(default="https://api.openai.com/v1")
    timeout: float = Field(default=30.0, gt=0, description="Per-call timeout in seconds")
    max_concurrent: int = Field(default=4, gt=0, description="Concurrent embedding calls")


class StoreSettings(BaseModel):
    """Document store configuration."""
    backend: StoreBackend = Field(default=StoreBackend.FILE)
    snapshot_path: Optional[str] = Field(default="data/knowledge_base.json")
    postgres: PgVectorConfig = Field(default_factory=PgVectorConfig)


class KnowledgeBaseSettings(BaseModel):
    """Top-level engine configuration."""
    crawler: CrawlerSettings = Field(default_factory=CrawlerSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    chunk_size: int = Field(default=1000, gt=0, description="Target chunk size in characters")
    corpus_archives: List[str] = Field(default_factory=list, description="ZIP archives ingested before crawling")
    topic_keywords: List[str] = Field(default_factory=list, description="Query pre-filter keywords")
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls) -> 'KnowledgeBaseSettings':
        """Create configuration from environment variables."""
        def env(name: str, default: Optional[str] = None) -> Optional[str]:
            return os.getenv(ENV_PREFIX + name, default)

        def env_list(name: str) -> List[str]:
            value = env(name, "")
            return [item.strip() for item in value.split(",") if item.strip()]

        crawler = CrawlerSettings(
            max_pages=int(env('MAX_PAGES', '200')),
            max_depth=int(env('MAX_DEPTH', '5')),
            max_concurrent=int(env('CRAWL_CONCURRENCY', '5')),
            request_timeout=float(env('REQUEST_TIMEOUT', '30')),
            max_retries=int(env('MAX_RETRIES', '2')),
            user_agent=env('USER_AGENT')
        )
        seed_urls = env_list('SEED_URLS')
        if seed_urls:
            crawler.seed_urls = seed_urls

        embedding = EmbeddingSettings(
            provider=EmbeddingProvider(env('EMBEDDING_PROVIDER', 'openai').lower()),
            model=env('EMBEDDING_MODEL'),
            api_key=env('EMBEDDING_API_KEY') or os.getenv('OPENAI_API_KEY'),
            base_url=env('EMBEDDING_BASE_URL', 'https://api.openai.com/v1'),
            timeout=float(env('EMBEDDING_TIMEOUT', '30')),
            max_concurrent=int(env('EMBEDDING_CONCURRENCY', '4'))
        )

        store = StoreSettings(
            backend=StoreBackend(env('STORE_BACKEND', 'file').lower()),
            snapshot_path=env('SNAPSHOT_PATH', 'data/knowledge_base.json') or None,
            postgres=PgVectorConfig(
                host=os.getenv('POSTGRES_HOST', 'localhost'),
                port=int(os.getenv('POSTGRES_PORT', '5432')),
                database=os.getenv('POSTGRES_DB', 'briefcontext'),
                user=os.getenv('POSTGRES_USER', 'briefcontext'),
                password=os.getenv('POSTGRES_PASSWORD', ''),
                table=os.getenv('POSTGRES_TABLE', 'retrievable_units')
            )
        )

        return cls(
            crawler=crawler,
            embedding=embedding,
            store=store,
            chunk_size=int(env('CHUNK_SIZE', '1000')),
            corpus_archives=env_list('CORPUS_ARCHIVES'),
            topic_keywords=env_list('TOPIC_KEYWORDS'),
            log_level=env('LOG_LEVEL', 'INFO'),
            log_json=env('LOG_JSON', 'false').lower() in ('1', 'true', 'yes')
        )

    @classmethod
    def from_yaml(cls, path: str) -> 'KnowledgeBaseSettings':
        """Load configuration from a YAML file.

        Missing keys take their defaults. An API key absent from the file is
        read from ``OPENAI_API_KEY``.
        """
        yaml_file = Path(path)
        with open(yaml_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Settings file {yaml_file} must contain a mapping")

        settings = cls.model_validate(data)
        if not settings.embedding.api_key:
            settings.embedding.api_key = os.getenv('OPENAI_API_KEY')

        logger.info(f"Loaded settings from {yaml_file}")
        return settings


def load_settings(config_path: Optional[str] = None) -> KnowledgeBaseSettings:
    """Load settings from ``config_path`` if given, else from the environment."""
    if config_path:
        return KnowledgeBaseSettings.from_yaml(config_path)
    return KnowledgeBaseSettings.from_env()
