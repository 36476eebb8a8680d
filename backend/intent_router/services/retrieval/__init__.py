"""
Retrieval collaborator contract and chunk type.
"""
from .base import (
    RetrievedChunk,
    Retriever,
    StaticRetriever,
    coerce_chunks,
    get_default_retriever,
    set_default_retriever,
)

__all__ = [
    "RetrievedChunk",
    "Retriever",
    "StaticRetriever",
    "coerce_chunks",
    "get_default_retriever",
    "set_default_retriever",
]
