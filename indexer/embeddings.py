# BriefContext Embeddings Module
# Wraps external embedding services behind one async capability

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import aiohttp
import numpy as np

from observability.metrics import embedding_duration, embedding_requests

logger = logging.getLogger(__name__)

Vector = Tuple[float, ...]

DEFAULT_OPENAI_MODEL = "text-embedding-ada-002"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_LOCAL_MODEL = "all-MiniLM-L6-v2"


class EmbeddingServiceError(Exception):
    """Raised when the upstream embedding service fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EmbeddingClient(ABC):
    """Turns text into a fixed-dimension vector.

    Implementations are stateless apart from their connection and never
    cache results.
    """

    provider = "unknown"

    def __init__(self):
        self.dimension: Optional[int] = None

    async def embed(self, text: str) -> Vector:
        """Embed ``text``.

        Raises:
            EmbeddingServiceError: If the service fails or returns a vector of
                unexpected dimension
        """
        started = time.time()
        try:
            vector = await self._embed(text)
        except EmbeddingServiceError:
            embedding_requests.labels(provider=self.provider, status="error").inc()
            raise
        finally:
            embedding_duration.labels(provider=self.provider).observe(time.time() - started)

        if not vector:
            embedding_requests.labels(provider=self.provider, status="error").inc()
            raise EmbeddingServiceError("Embedding service returned an empty vector")
        if self.dimension is None:
            self.dimension = len(vector)
        elif len(vector) != self.dimension:
            embedding_requests.labels(provider=self.provider, status="error").inc()
            raise EmbeddingServiceError(
                f"Embedding dimension changed from {self.dimension} to {len(vector)}"
            )

        embedding_requests.labels(provider=self.provider, status="success").inc()
        return vector

    @abstractmethod
    async def _embed(self, text: str) -> Vector:
        ...

    async def warm_up(self) -> None:
        """Prepare the client before the first ``embed`` call. Idempotent."""
        pass

    async def close(self):
        pass


class OpenAIEmbeddingClient(EmbeddingClient):
    """Embedding client for OpenAI-compatible ``/embeddings`` endpoints."""

    provider = "openai"

    def __init__(self,
                 api_key: Optional[str],
                 model: str = DEFAULT_OPENAI_MODEL,
                 base_url: str = DEFAULT_OPENAI_BASE_URL,
                 timeout: float = 30.0):
        """
        Initialize embedding client

        Args:
            api_key: Bearer token for the embedding API
            model: Embedding model name
            base_url: API root, without the ``/embeddings`` suffix
            timeout: Per-request timeout in seconds
        """
        super().__init__()
        if not api_key:
            raise EmbeddingServiceError("An API key is required for the embedding service")
        self.api_key = api_key
        self.model = model
        self.endpoint = base_url.rstrip("/") + "/embeddings"
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                }
            )
        return self.session

    async def _embed(self, text: str) -> Vector:
        session = await self._ensure_session()
        try:
            async with session.post(self.endpoint, json={"model": self.model, "input": text}) as response:
                if response.status >= 400:
                    detail = await response.text()
                    raise EmbeddingServiceError(
                        f"Embedding request failed with HTTP {response.status}: {detail[:200]}",
                        status_code=response.status
                    )
                data = await response.json()
        except asyncio.TimeoutError as e:
            raise EmbeddingServiceError(f"Embedding request timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise EmbeddingServiceError(f"Embedding request failed: {e}") from e

        try:
            return tuple(float(x) for x in data["data"][0]["embedding"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise EmbeddingServiceError(f"Invalid embeddings API response: {e}") from e

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None


class SentenceTransformerEmbeddingClient(EmbeddingClient):
    """Embedding client backed by a local sentence-transformers model."""

    provider = "sentence-transformers"

    def __init__(self, model_name: str = DEFAULT_LOCAL_MODEL):
        super().__init__()
        self.model_name = model_name
        self.model = None
        self._load_lock = asyncio.Lock()

    async def warm_up(self) -> None:
        """Load (and on first use download) the model off the event loop."""
        if self.model is not None:
            return
        async with self._load_lock:
            if self.model is not None:
                return
            try:
                await asyncio.to_thread(self._load_model)
            except Exception as e:
                logger.error(f"Failed to load embedding model {self.model_name}: {e}")
                raise EmbeddingServiceError(f"Cannot load embedding model {self.model_name}: {e}") from e

    def _load_model(self):
        """Load the sentence transformer model"""
        from sentence_transformers import SentenceTransformer

        logger.info(f"Loading embedding model: {self.model_name}")
        self.model = SentenceTransformer(self.model_name)
        self.dimension = self.model.get_sentence_embedding_dimension()
        logger.info(f"Model loaded successfully. Embedding dimension: {self.dimension}")

    def _encode(self, text: str) -> Vector:
        if self.model is None:
            self._load_model()
        embedding = self.model.encode(text, convert_to_numpy=True)
        return tuple(float(x) for x in np.asarray(embedding, dtype=np.float32))

    async def _embed(self, text: str) -> Vector:
        try:
            return await asyncio.to_thread(self._encode, text)
        except Exception as e:
            logger.error(f"Local embedding failed: {e}")
            raise EmbeddingServiceError(f"Local embedding model failed: {e}") from e
