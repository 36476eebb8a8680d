"""
Tool handlers for routed requests.

Each handler executes one route and returns a ToolResponse envelope. Handler
failures are captured in the envelope (success=False, errors=[...]) rather
than raised, so callers always get a uniform result.

dispatch() selects the handler purely from RouteDecision.intent and passes
the decision's retrieval_query to the retrieval handler.
"""
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from intent_router.core.config import load_thresholds
from intent_router.core.logging import get_logger
from intent_router.services.llm.llm_client import get_llm_client
from intent_router.services.retrieval.base import RetrievedChunk, Retriever, coerce_chunks
from intent_router.services.routing.schema import Intent, RouteDecision, round4

logger = get_logger(__name__)

CHAT_CONFIDENCE = 0.7
CONFIG_WITHOUT_EXAMPLES_CONFIDENCE = 0.6
RAG_TOP_K = 5
CONFIG_EXAMPLES_TOP_K = 3

NOT_SURE_ANSWER = "I am not sure based on the available private context."

CHAT_SYSTEM_PROMPT = "You are a helpful internal AI assistant."
GROUNDED_SYSTEM_PROMPT = (
    "You are a compliance policy assistant. Use only the provided context, "
    "cite passages as [C#], and say you are unsure when the context is insufficient."
)
CAUTIOUS_SYSTEM_PROMPT = (
    "You are a helpful assistant. Mention that private retrieval context was "
    "insufficient and provide a cautious general response."
)
CONFIG_SYSTEM_PROMPT = (
    "You transform workflow rules into deterministic JSON batch configuration. "
    "If reference examples are given, use them as supporting reference only."
)
CONFIG_OUTPUT_SHAPE = """{
  "waterfallFilters": [
    {
      "name": "filter name",
      "condition": "natural language condition",
      "onPass": "destination",
      "onFail": "destination"
    }
  ]
}"""


class Citation(BaseModel):
    id: str
    source: str
    score: float


class ToolResponse(BaseModel):
    """Uniform envelope returned by every handler."""

    success: bool
    route: Intent
    trace_id: str
    confidence: float = 0.0
    result: Dict[str, Any] = Field(default_factory=dict)
    citations: List[Citation] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    latency_ms: int = 0


def build_citations(chunks: Sequence[RetrievedChunk]) -> List[Citation]:
    return [
        Citation(id=f"C{i + 1}", source=chunk.source, score=chunk.score)
        for i, chunk in enumerate(chunks)
    ]


def confidence_from_chunks(chunks: Sequence[RetrievedChunk]) -> float:
    """Top chunk score, clamped and rounded; 0 without chunks."""
    if not chunks:
        return 0.0
    return round4(max(chunk.score for chunk in chunks))


def build_context(chunks: Sequence[RetrievedChunk]) -> str:
    return "\n\n".join(
        f"[C{i + 1}] ({chunk.source}) {chunk.content}" for i, chunk in enumerate(chunks)
    )


class ToolHandlers:
    """Chat, knowledge-base search, grounded-answer and config-generation handlers."""

    def __init__(self, retriever: Retriever, llm_client=None):
        self._retriever = retriever
        self._llm_client = llm_client or get_llm_client()

    def _envelope(self, route: Intent, start: float, **fields: Any) -> ToolResponse:
        return ToolResponse(
            route=route,
            trace_id=str(uuid.uuid4()),
            latency_ms=int((time.time() - start) * 1000),
            **fields,
        )

    def _failure(self, route: Intent, start: float, exc: Exception) -> ToolResponse:
        logger.warning(
            "tool_handler_failed",
            route=route.value,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return self._envelope(route, start, success=False, confidence=0.0, errors=[str(exc)])

    async def chat_answer(self, message: str, system_prompt: Optional[str] = None) -> ToolResponse:
        start = time.time()
        try:
            answer = await self._llm_client.complete(
                system=system_prompt or CHAT_SYSTEM_PROMPT,
                user=message,
                agent="chat",
            )
        except Exception as exc:
            return self._failure(Intent.CHAT, start, exc)
        return self._envelope(
            Intent.CHAT,
            start,
            success=True,
            confidence=CHAT_CONFIDENCE,
            result={"answer": answer},
        )

    async def rag_search(self, query: str, top_k: int = RAG_TOP_K) -> ToolResponse:
        """Knowledge-base lookup only: chunks, citations and confidence, no completion."""
        start = time.time()
        try:
            chunks = coerce_chunks(await self._retriever.retrieve(query, top_k))
        except Exception as exc:
            return self._failure(Intent.RETRIEVAL, start, exc)
        return self._envelope(
            Intent.RETRIEVAL,
            start,
            success=True,
            confidence=confidence_from_chunks(chunks),
            result={"chunks": [chunk.model_dump() for chunk in chunks]},
            citations=build_citations(chunks),
        )

    async def rag_answer(
        self,
        query: str,
        top_k: int = RAG_TOP_K,
        fallback_to_chat: bool = True,
    ) -> ToolResponse:
        """
        Answer from the knowledge base with [C#] citations.

        Below the low-retrieval threshold the model is not asked to ground an
        answer; the caller gets a fixed "not sure" message, or a cautious
        general answer when fallback_to_chat is set.
        """
        start = time.time()
        try:
            chunks = coerce_chunks(await self._retriever.retrieve(query, top_k))
            confidence = confidence_from_chunks(chunks)
            answer = NOT_SURE_ANSWER

            if chunks and confidence >= load_thresholds().low_retrieval:
                answer = await self._llm_client.complete(
                    system=GROUNDED_SYSTEM_PROMPT,
                    user=(
                        f"User question: {query}\n\n"
                        f"Retrieved private context:\n{build_context(chunks)}"
                    ),
                    agent="rag_answer",
                )
            elif fallback_to_chat:
                answer = await self._llm_client.complete(
                    system=CAUTIOUS_SYSTEM_PROMPT,
                    user=query,
                    agent="rag_fallback",
                )
        except Exception as exc:
            return self._failure(Intent.RETRIEVAL, start, exc)

        return self._envelope(
            Intent.RETRIEVAL,
            start,
            success=True,
            confidence=confidence,
            result={
                "answer": answer,
                "chunks": [chunk.model_dump() for chunk in chunks],
            },
            citations=build_citations(chunks),
        )

    async def config_generate(
        self,
        instruction: str,
        use_rag_context: bool = True,
        top_k: int = CONFIG_EXAMPLES_TOP_K,
    ) -> ToolResponse:
        """Turn natural-language rules into a waterfallFilters JSON config."""
        start = time.time()
        try:
            chunks: List[RetrievedChunk] = []
            if use_rag_context:
                chunks = coerce_chunks(await self._retriever.retrieve(instruction, top_k))
            references = "\n".join(
                f"Example {i + 1} (score {chunk.score:.4f}): {chunk.content}"
                for i, chunk in enumerate(chunks)
            )
            generated = await self._llm_client.complete(
                system=CONFIG_SYSTEM_PROMPT,
                user=(
                    "Convert the user instructions into strict JSON using this shape:\n"
                    f"{CONFIG_OUTPUT_SHAPE}\n\n"
                    f"User instructions:\n{instruction}\n\n"
                    f"Reference examples:\n{references or 'N/A'}\n\n"
                    "Return only valid JSON."
                ),
                agent="config_generate",
                max_tokens=1024,
            )
        except Exception as exc:
            return self._failure(Intent.CONFIG, start, exc)

        confidence = (
            confidence_from_chunks(chunks) if chunks else CONFIG_WITHOUT_EXAMPLES_CONFIDENCE
        )
        return self._envelope(
            Intent.CONFIG,
            start,
            success=True,
            confidence=confidence,
            result={
                "generated_config": generated,
                "chunks": [chunk.model_dump() for chunk in chunks],
            },
            citations=build_citations(chunks),
        )

    async def dispatch(self, decision: RouteDecision, utterance: str) -> ToolResponse:
        """Execute the handler for decision.intent."""
        if decision.intent == Intent.RETRIEVAL:
            return await self.rag_answer(decision.retrieval_query or utterance)
        if decision.intent == Intent.CONFIG:
            return await self.config_generate(utterance)
        return await self.chat_answer(utterance)
