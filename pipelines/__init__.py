"""Pipelines package for BriefContext.

Provides crawling, bulk corpus ingest and chunking functionality.
"""

from .crawler import (
    WebCrawler,
    CrawlFrontier,
    CrawlResult,
    CrawlStats,
    FetchResponse,
    FetchError,
    ParseError,
    crawl_site
)
from .chunker import TextChunker, TextChunk, chunk_text, generate_chunk_id
from .corpus_ingest import CorpusError, iter_archive_documents

__all__ = [
    # Crawler
    'WebCrawler',
    'CrawlFrontier',
    'CrawlResult',
    'CrawlStats',
    'FetchResponse',
    'FetchError',
    'ParseError',
    'crawl_site',

    # Chunker
    'TextChunker',
    'TextChunk',
    'chunk_text',
    'generate_chunk_id',

    # Corpus ingest
    'CorpusError',
    'iter_archive_documents'
]
