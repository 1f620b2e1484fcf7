"""Command line interface for BriefContext."""

import argparse
import asyncio
import logging
import sys

from config import build_context_service, load_settings
from indexer.document_store import PersistenceError
from indexer.embeddings import EmbeddingServiceError
from observability.logging import setup_logging
from .topic_filter import TopicFilter

logger = logging.getLogger(__name__)


async def _build(settings) -> int:
    service = build_context_service(settings)
    try:
        return await service.rebuild()
    finally:
        await service.close()


async def _query(settings, text: str, k: int) -> str:
    service = build_context_service(settings)
    try:
        return await service.get_relevant_context(text, k)
    finally:
        await service.close()


def _serve(settings, host: str, port: int):
    import uvicorn
    from .context_api import create_app

    app = create_app(build_context_service(settings), TopicFilter(settings.topic_keywords))
    uvicorn.run(app, host=host, port=port, log_config=None)


def main(argv=None):
    parser = argparse.ArgumentParser(description="BriefContext retrieval engine")
    parser.add_argument("--config", help="YAML settings file (defaults to environment variables)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("build", help="Crawl, embed and persist the knowledge base")

    query_parser = subparsers.add_parser("query", help="Print the context for a query")
    query_parser.add_argument("text", help="Query text")
    query_parser.add_argument("-k", "--max-results", type=int, default=3, help="Number of excerpts")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)
    settings = load_settings(args.config)
    setup_logging(level=settings.log_level, use_json=settings.log_json)

    try:
        if args.command == "build":
            units = asyncio.run(_build(settings))
            logger.info(f"Knowledge base built with {units} units")
        elif args.command == "query":
            context = asyncio.run(_query(settings, args.text, args.max_results))
            print(context if context else "No relevant context found.")
        elif args.command == "serve":
            _serve(settings, args.host, args.port)
    except (EmbeddingServiceError, PersistenceError) as e:
        logger.error(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
