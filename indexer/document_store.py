"""Document store for BriefContext.

Defines the retrievable unit record and the storage capability shared by all
backends, plus the in-memory backend with a JSON snapshot file.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pipelines.chunker import generate_chunk_id

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when the store cannot be read from or written to durable storage."""
    pass


@dataclass(frozen=True)
class RetrievableUnit:
    """A chunk of source text paired with its embedding."""
    id: str
    content: str
    source_ref: str
    embedding: Tuple[float, ...]

    def __post_init__(self):
        if not self.content:
            raise ValueError("RetrievableUnit content cannot be empty")
        if not self.embedding:
            raise ValueError("RetrievableUnit embedding cannot be empty")
        # Freeze list input so the unit stays immutable
        object.__setattr__(self, "embedding", tuple(float(x) for x in self.embedding))

    @property
    def dimension(self) -> int:
        return len(self.embedding)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the snapshot record format."""
        return {
            "id": self.id,
            "content": self.content,
            "sourceRef": self.source_ref,
            "embedding": list(self.embedding)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], position: int = 0) -> 'RetrievableUnit':
        """Create a unit from a snapshot record.

        Records written without an ``id`` get one derived from their source
        reference and position.
        """
        source_ref = data["sourceRef"]
        return cls(
            id=data.get("id") or generate_chunk_id(source_ref, position),
            content=data["content"],
            source_ref=source_ref,
            embedding=tuple(data["embedding"])
        )


@dataclass(frozen=True)
class ScoredUnit:
    """A unit together with its similarity to a query."""
    unit: RetrievableUnit
    score: float


class DocumentStore(ABC):
    """Storage capability for retrievable units.

    Units are appended during a build and read back in insertion order. All
    units in one store share the same embedding dimension.
    """

    durable = True

    def __init__(self):
        self.dimension: Optional[int] = None

    def _check_dimension(self, unit: RetrievableUnit):
        if self.dimension is None:
            self.dimension = unit.dimension
        elif unit.dimension != self.dimension:
            raise ValueError(
                f"Embedding dimension {unit.dimension} does not match store dimension {self.dimension}"
            )

    @abstractmethod
    async def add(self, unit: RetrievableUnit) -> None:
        ...

    @abstractmethod
    async def all(self) -> List[RetrievableUnit]:
        ...

    @abstractmethod
    async def count(self) -> int:
        ...

    @abstractmethod
    async def persist(self) -> None:
        """Write the current contents to durable storage."""

    @abstractmethod
    async def load(self) -> bool:
        """Load durable contents into the store.

        Returns:
            True if existing content was loaded
        """

    @abstractmethod
    async def clear(self) -> None:
        """Drop every unit ahead of a full rebuild."""

    async def query(self, vector: Sequence[float], k: int) -> Optional[List[ScoredUnit]]:
        """Top-K search performed by the backend itself.

        Returns None when the backend leaves ranking to the caller.
        """
        return None

    async def close(self) -> None:
        pass


class InMemoryFileBackedStore(DocumentStore):
    """Append-only list of units flushed to a JSON snapshot on demand."""

    def __init__(self, snapshot_path: Optional[str] = None):
        """
        Args:
            snapshot_path: Snapshot file location; None keeps the store in memory only
        """
        super().__init__()
        self.snapshot_path = Path(snapshot_path) if snapshot_path else None
        self.durable = self.snapshot_path is not None
        self._units: List[RetrievableUnit] = []

    async def add(self, unit: RetrievableUnit) -> None:
        self._check_dimension(unit)
        self._units.append(unit)

    async def all(self) -> List[RetrievableUnit]:
        return list(self._units)

    async def count(self) -> int:
        return len(self._units)

    async def clear(self) -> None:
        self._units = []
        self.dimension = None

    async def persist(self) -> None:
        """Write the snapshot through a temporary file and an atomic rename."""
        if self.snapshot_path is None:
            return

        records = [unit.to_dict() for unit in self._units]
        tmp_name = None
        try:
            self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.snapshot_path.parent,
                prefix=f".{self.snapshot_path.name}.",
                suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.snapshot_path)
            tmp_name = None
        except OSError as e:
            logger.error(f"Failed to write snapshot {self.snapshot_path}: {e}")
            raise PersistenceError(f"Cannot write snapshot {self.snapshot_path}: {e}") from e
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        logger.info(f"Persisted {len(records)} units to {self.snapshot_path}")

    async def load(self) -> bool:
        if self.snapshot_path is None or not self.snapshot_path.exists():
            return False

        try:
            with open(self.snapshot_path, "r", encoding="utf-8") as f:
                records = json.load(f)
            if not isinstance(records, list):
                raise ValueError("snapshot root is not an array")
            units = [RetrievableUnit.from_dict(record, i) for i, record in enumerate(records)]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to read snapshot {self.snapshot_path}: {e}")
            raise PersistenceError(f"Cannot read snapshot {self.snapshot_path}: {e}") from e

        await self.clear()
        try:
            for unit in units:
                await self.add(unit)
        except ValueError as e:
            await self.clear()
            raise PersistenceError(f"Inconsistent snapshot {self.snapshot_path}: {e}") from e

        logger.info(f"Loaded {len(units)} units from {self.snapshot_path}")
        return bool(units)
