"""PostgreSQL document store for BriefContext.

Keeps retrievable units in a pgvector table. The database provides
durability and answers top-K queries with pgvector's cosine distance.
"""

import logging
from typing import List, Optional, Sequence

import asyncpg
from pydantic import BaseModel

from .document_store import DocumentStore, PersistenceError, RetrievableUnit, ScoredUnit

logger = logging.getLogger(__name__)


class PgVectorConfig(BaseModel):
    """PostgreSQL connection configuration."""
    host: str = "localhost"
    port: int = 5432
    database: str = "briefcontext"
    user: str = "briefcontext"
    password: str = ""
    table: str = "retrievable_units"
    min_connections: int = 1
    max_connections: int = 10
    command_timeout: int = 60


def to_pgvector(vector: Sequence[float]) -> str:
    """Format a vector as a pgvector text literal."""
    return "[" + ",".join(repr(float(x)) for x in vector) + "]"


def from_pgvector(literal: str) -> tuple:
    """Parse a pgvector text literal."""
    return tuple(float(x) for x in literal.strip("[]").split(","))


class PgVectorStore(DocumentStore):
    """Document store delegating persistence and ranking to pgvector."""

    def __init__(self, config: PgVectorConfig):
        super().__init__()
        self.config = config
        self.table = config.table
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Initialize connection pool and ensure schema exists."""
        if self.pool is not None:
            return
        try:
            self.pool = await asyncpg.create_pool(
                host=self.config.host,
                port=self.config.port,
                database=self.config.database,
                user=self.config.user,
                password=self.config.password,
                min_size=self.config.min_connections,
                max_size=self.config.max_connections,
                command_timeout=self.config.command_timeout
            )
            async with self.pool.acquire() as conn:
                await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
                await conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {self.table} (
                        position BIGSERIAL,
                        id TEXT PRIMARY KEY,
                        content TEXT NOT NULL,
                        source_ref TEXT NOT NULL,
                        embedding vector NOT NULL
                    )
                """)
            logger.info(f"PostgreSQL store initialized: {self.config.host}:{self.config.port}/{self.config.database}")
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Failed to initialize PostgreSQL: {e}")
            raise PersistenceError(f"Cannot initialize PostgreSQL store: {e}") from e

    async def _acquire_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            await self.initialize()
        return self.pool

    async def add(self, unit: RetrievableUnit) -> None:
        self._check_dimension(unit)
        pool = await self._acquire_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    f"""
                    INSERT INTO {self.table} (id, content, source_ref, embedding)
                    VALUES ($1, $2, $3, $4::vector)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    unit.id, unit.content, unit.source_ref, to_pgvector(unit.embedding)
                )
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Failed to insert unit {unit.id}: {e}") from e

    async def all(self) -> List[RetrievableUnit]:
        pool = await self._acquire_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    f"SELECT id, content, source_ref, embedding::text AS embedding "
                    f"FROM {self.table} ORDER BY position"
                )
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Failed to read units: {e}") from e

        return [
            RetrievableUnit(
                id=row['id'],
                content=row['content'],
                source_ref=row['source_ref'],
                embedding=from_pgvector(row['embedding'])
            )
            for row in rows
        ]

    async def count(self) -> int:
        pool = await self._acquire_pool()
        try:
            async with pool.acquire() as conn:
                return await conn.fetchval(f"SELECT COUNT(*) FROM {self.table}")
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Failed to count units: {e}") from e

    async def persist(self) -> None:
        # Every insert is already committed
        logger.debug("PostgreSQL store persists on write; nothing to flush")

    async def load(self) -> bool:
        count = await self.count()
        if count:
            pool = await self._acquire_pool()
            async with pool.acquire() as conn:
                self.dimension = await conn.fetchval(
                    f"SELECT vector_dims(embedding) FROM {self.table} ORDER BY position LIMIT 1"
                )
            logger.info(f"PostgreSQL store holds {count} units")
        return count > 0

    async def clear(self) -> None:
        pool = await self._acquire_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(f"TRUNCATE {self.table} RESTART IDENTITY")
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Failed to clear units: {e}") from e
        self.dimension = None

    async def query(self, vector: Sequence[float], k: int) -> Optional[List[ScoredUnit]]:
        """Top-K by pgvector cosine distance; ties fall back to insertion order."""
        if k <= 0:
            return []
        pool = await self._acquire_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT id, content, source_ref, embedding::text AS embedding,
                           COALESCE(NULLIF(1 - (embedding <=> $1::vector), 'NaN'), 0) AS score
                    FROM {self.table}
                    ORDER BY score DESC, position
                    LIMIT $2
                    """,
                    to_pgvector(vector), k
                )
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Similarity query failed: {e}") from e

        return [
            ScoredUnit(
                unit=RetrievableUnit(
                    id=row['id'],
                    content=row['content'],
                    source_ref=row['source_ref'],
                    embedding=from_pgvector(row['embedding'])
                ),
                score=float(row['score'])
            )
            for row in rows
        ]

    async def close(self):
        """Close connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("PostgreSQL connection pool closed")
