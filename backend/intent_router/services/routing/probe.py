"""
Retrieval confidence probe.

Issues one bounded retrieval call and condenses the ranked chunks into a
single confidence in [0, 1]:

    confidence = clamp01(0.55 * top + 0.35 * avg_top3 + 0.10 * gap)

where ``top`` is the best score, ``avg_top3`` the mean of up to the first
three scores and ``gap`` the margin of the best chunk over the runner-up.
A probe failure of any kind yields the zero-confidence probe.
"""
import asyncio
from typing import Optional, Sequence

from pydantic import ValidationError

from intent_router.core.logging import get_logger, log_stage
from intent_router.core.metrics import record_collaborator_failure, record_probe
from intent_router.core.tracing import mark_degraded, stage_span
from intent_router.services.retrieval.base import RetrievedChunk, Retriever, coerce_chunks
from intent_router.services.routing.schema import ZERO_PROBE, RetrievalProbe, clamp01

logger = get_logger(__name__)

TOP_WEIGHT = 0.55
AVG_TOP3_WEIGHT = 0.35
GAP_WEIGHT = 0.10

DEFAULT_PROBE_TOP_K = 5


def summarize_chunks(chunks: Sequence[RetrievedChunk]) -> RetrievalProbe:
    """Condense scored chunks into a probe; order of the input does not matter."""
    scores = sorted((clamp01(chunk.score) for chunk in chunks), reverse=True)
    if not scores:
        return ZERO_PROBE

    top_score = scores[0]
    second_score = scores[1] if len(scores) > 1 else 0.0
    top3 = scores[:3]
    avg_top3 = sum(top3) / len(top3)
    score_gap = max(0.0, top_score - second_score) if len(scores) > 1 else 0.0

    confidence = clamp01(
        TOP_WEIGHT * top_score + AVG_TOP3_WEIGHT * avg_top3 + GAP_WEIGHT * score_gap
    )
    return RetrievalProbe(
        confidence=round(confidence, 4),
        top_score=round(top_score, 4),
        avg_top3=round(avg_top3, 4),
        score_gap=round(score_gap, 4),
        chunk_count=len(scores),
    )


class RetrievalConfidenceProbe:
    """Bounded pre-commit retrieval used to estimate knowledge-base relevance."""

    def __init__(
        self,
        retriever: Retriever,
        top_k: int = DEFAULT_PROBE_TOP_K,
        timeout_seconds: Optional[float] = 3.0,
    ):
        self._retriever = retriever
        self.top_k = top_k
        self.timeout_seconds = timeout_seconds

    async def probe(self, query: str) -> RetrievalProbe:
        """Never raises; any retrieval failure returns the zero probe."""
        with stage_span("probe", top_k=self.top_k) as span:
            try:
                chunks = await asyncio.wait_for(
                    self._retriever.retrieve(query, self.top_k),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                record_collaborator_failure("probe", "timeout")
                mark_degraded(span, "retrieval timed out")
                log_stage(
                    "router.probe",
                    "probe_timeout",
                    timeout_seconds=self.timeout_seconds,
                )
                return ZERO_PROBE
            except Exception as exc:
                record_collaborator_failure("probe", "error")
                mark_degraded(span, "retrieval failed")
                log_stage(
                    "router.probe",
                    "probe_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return ZERO_PROBE

            try:
                result = summarize_chunks(coerce_chunks(list(chunks or [])[: self.top_k]))
            except (TypeError, ValidationError) as exc:
                record_collaborator_failure("probe", "malformed")
                mark_degraded(span, "retrieval returned unusable chunks")
                log_stage(
                    "router.probe",
                    "probe_malformed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return ZERO_PROBE

            span.set_attribute("router.probe_confidence", result.confidence)
            record_probe(result.confidence, result.chunk_count)
            log_stage(
                "router.probe",
                "probe_completed",
                query=query,
                **result.model_dump(),
            )
            return result
