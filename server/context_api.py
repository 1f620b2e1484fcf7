"""HTTP API exposing the context service to the conversational agent."""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field

from observability.metrics import render_metrics
from .context_service import DEFAULT_MAX_RESULTS, ContextService
from .topic_filter import TopicFilter

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"


class ContextRequest(BaseModel):
    query: str
    max_results: int = Field(default=DEFAULT_MAX_RESULTS, ge=1, le=50)


class ContextResponse(BaseModel):
    context: str
    filtered: bool = False


def create_app(service: ContextService, topic_filter: Optional[TopicFilter] = None) -> FastAPI:
    """Create the API app around an already constructed service."""
    topic_filter = topic_filter or TopicFilter()
    app = FastAPI(title="BriefContext API", version=API_VERSION)
    app.state.context_service = service

    @app.on_event("shutdown")
    async def shutdown_event():
        await service.close()

    @app.get("/health")
    async def health():
        units = await service.store.count() if service.is_ready else 0
        return {"status": "ok", "state": service.state.value, "units": units}

    @app.post("/context", response_model=ContextResponse)
    async def relevant_context(req: ContextRequest):
        if not topic_filter.matches(req.query):
            logger.debug(f"Query filtered as off-topic: {req.query[:80]!r}")
            return ContextResponse(context="", filtered=True)

        # The agent answers without context when retrieval fails
        context = await service.try_get_relevant_context(req.query, req.max_results)
        return ContextResponse(context=context)

    @app.post("/rebuild")
    async def rebuild():
        try:
            units = await service.rebuild()
        except Exception as e:
            logger.error(f"Rebuild failed: {e}")
            raise HTTPException(status_code=503, detail=f"Rebuild failed: {e}")
        return {"status": "ok", "units": units}

    @app.get("/metrics")
    async def metrics():
        payload, content_type = render_metrics()
        return Response(content=payload, media_type=content_type)

    return app
