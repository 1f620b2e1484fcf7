"""Observability package for BriefContext."""

from .logging import setup_logging, get_logger, JSONFormatter, ColoredFormatter
from .metrics import (
    briefcontext_registry,
    pages_crawled,
    embedding_requests,
    embedding_duration,
    context_requests,
    context_duration,
    stored_units,
    render_metrics
)

__all__ = [
    'setup_logging',
    'get_logger',
    'JSONFormatter',
    'ColoredFormatter',
    'briefcontext_registry',
    'pages_crawled',
    'embedding_requests',
    'embedding_duration',
    'context_requests',
    'context_duration',
    'stored_units',
    'render_metrics'
]
