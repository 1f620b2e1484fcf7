"""Prometheus metrics for the BriefContext retrieval engine."""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from prometheus_client.core import CollectorRegistry

# Dedicated registry so the engine's metrics can be served on their own
briefcontext_registry = CollectorRegistry()

pages_crawled = Counter(
    'briefcontext_pages_crawled_total',
    'Pages processed by the crawler',
    ['outcome'],
    registry=briefcontext_registry
)

embedding_requests = Counter(
    'briefcontext_embedding_requests_total',
    'Embedding requests sent to the embedding service',
    ['provider', 'status'],
    registry=briefcontext_registry
)

embedding_duration = Histogram(
    'briefcontext_embedding_duration_seconds',
    'Embedding request duration in seconds',
    ['provider'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=briefcontext_registry
)

context_requests = Counter(
    'briefcontext_context_requests_total',
    'Calls to get_relevant_context',
    ['status'],
    registry=briefcontext_registry
)

context_duration = Histogram(
    'briefcontext_context_duration_seconds',
    'get_relevant_context duration in seconds',
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=briefcontext_registry
)

stored_units = Gauge(
    'briefcontext_stored_units',
    'Retrievable units held by the document store',
    registry=briefcontext_registry
)


def render_metrics() -> tuple:
    """Return ``(payload, content_type)`` for a metrics endpoint."""
    return generate_latest(briefcontext_registry), CONTENT_TYPE_LATEST
