"""
Retrieval collaborator contract.

The knowledge base itself (embeddings, vector store, ingestion) lives outside
the router. Anything with an async ``retrieve(query, top_k)`` returning
scored chunks, best first, can be plugged in.
"""
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from intent_router.core.logging import get_logger

logger = get_logger(__name__)


class RetrievedChunk(BaseModel):
    """One scored unit of retrieved content."""

    content: str
    source: str = "unknown"
    score: float = Field(..., ge=0.0, le=1.0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


def coerce_chunks(items: Optional[Iterable[Any]]) -> List[RetrievedChunk]:
    """Accept chunk models or plain mappings; raises ValidationError on bad items."""
    if items is None:
        return []
    return [
        item if isinstance(item, RetrievedChunk) else RetrievedChunk.model_validate(item)
        for item in items
    ]


class Retriever(Protocol):
    async def retrieve(self, query: str, top_k: int) -> List[RetrievedChunk]:
        """Return up to top_k chunks ordered by descending score; [] on no match."""
        ...


class StaticRetriever:
    """
    Retriever over a fixed list of pre-scored chunks.

    Used to replay a decision offline: the chunks and their scores are
    recorded once and every query gets the same ranked list back.
    """

    def __init__(self, chunks: Sequence[RetrievedChunk]):
        self._chunks = sorted(chunks, key=lambda c: c.score, reverse=True)

    async def retrieve(self, query: str, top_k: int) -> List[RetrievedChunk]:
        return list(self._chunks[:top_k])

    @classmethod
    def from_json_file(cls, path: Path) -> "StaticRetriever":
        """Load ``[{"content": ..., "source": ..., "score": ...}, ...]``."""
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        if not isinstance(raw, list):
            raise ValueError(f"{path} must contain a JSON list of chunks")
        chunks = coerce_chunks(raw)
        logger.info("static_retriever_loaded", path=str(path), chunk_count=len(chunks))
        return cls(chunks)


_default_retriever: Optional[Retriever] = None


def set_default_retriever(retriever: Optional[Retriever]) -> None:
    """Register the knowledge-base retriever used by get_router_service()."""
    global _default_retriever
    _default_retriever = retriever


def get_default_retriever() -> Retriever:
    if _default_retriever is None:
        raise RuntimeError("No retriever registered; call set_default_retriever() first")
    return _default_retriever
