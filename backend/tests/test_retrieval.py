"""
Unit tests for the retrieval collaborator helpers.
"""
import json

import pytest
from pydantic import ValidationError

from intent_router.services.retrieval import base
from intent_router.services.retrieval.base import RetrievedChunk, StaticRetriever


@pytest.mark.asyncio
async def test_static_retriever_orders_and_limits():
    retriever = StaticRetriever(
        [
            RetrievedChunk(content="a", score=0.1),
            RetrievedChunk(content="b", score=0.7),
            RetrievedChunk(content="c", score=0.4),
        ]
    )

    chunks = await retriever.retrieve("anything", top_k=2)

    assert [c.content for c in chunks] == ["b", "c"]


@pytest.mark.asyncio
async def test_static_retriever_from_json_file(tmp_path):
    path = tmp_path / "chunks.json"
    path.write_text(
        json.dumps(
            [
                {"content": "Expenses are filed within 30 days.", "source": "finance.md", "score": 0.3},
                {"content": "Badges must be worn on site.", "score": 0.05},
            ]
        ),
        encoding="utf-8",
    )

    retriever = StaticRetriever.from_json_file(path)
    chunks = await retriever.retrieve("expenses", top_k=5)

    assert chunks[0].source == "finance.md"
    assert chunks[1].source == "unknown"


def test_from_json_file_rejects_non_list(tmp_path):
    path = tmp_path / "chunks.json"
    path.write_text(json.dumps({"content": "x"}), encoding="utf-8")
    with pytest.raises(ValueError):
        StaticRetriever.from_json_file(path)


def test_chunk_score_must_be_normalized():
    with pytest.raises(ValidationError):
        RetrievedChunk(content="x", score=1.2)


def test_default_retriever_registry(monkeypatch):
    monkeypatch.setattr(base, "_default_retriever", None)
    with pytest.raises(RuntimeError):
        base.get_default_retriever()

    retriever = StaticRetriever([])
    base.set_default_retriever(retriever)
    assert base.get_default_retriever() is retriever
