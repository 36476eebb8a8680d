"""
Routing orchestration.

Turns one utterance into one RouteDecision:
- Lexical stage first; empty input, small talk and config rules settle the
  decision without any model or retrieval call
- Otherwise the classifier and the query rewriter run concurrently
- The retrieval probe runs on the rewritten query once both have settled
- The decision rules combine lexical intent, classifier and probe

Every collaborator call is bounded by a timeout and attempted once. Any
failure degrades to an absent signal (classifier), the original utterance
(rewriter) or the zero probe; route() always returns a decision.
"""
import asyncio
import time
from typing import Optional

from intent_router.core.config import (
    RouterSettings,
    Thresholds,
    load_router_settings,
    load_thresholds,
)
from intent_router.core.deadline import collaborator_deadline
from intent_router.core.logging import (
    generate_request_id,
    get_logger,
    log_stage,
    request_id_var,
    trace_id_var,
)
from intent_router.core.metrics import (
    record_collaborator_failure,
    record_route_decision,
    record_short_circuit,
)
from intent_router.core.tracing import get_trace_id_from_context, mark_degraded, stage_span
from intent_router.services.retrieval.base import Retriever, get_default_retriever
from intent_router.services.routing.agents.classifier import get_classifier_agent
from intent_router.services.routing.agents.rewrite import get_query_rewrite_agent
from intent_router.services.routing.lexical import (
    LexicalAnalysis,
    get_lexical_extractor,
)
from intent_router.services.routing.policy import decide
from intent_router.services.routing.probe import RetrievalConfidenceProbe
from intent_router.services.routing.schema import (
    ZERO_PROBE,
    ClassifierResult,
    RouteDecision,
)

logger = get_logger(__name__)


class RouterService:
    """
    Decision engine entry point.

    Holds only immutable collaborators, so one instance can serve any number
    of concurrent decisions.
    """

    def __init__(
        self,
        retriever: Retriever,
        classifier_agent=None,
        rewrite_agent=None,
        lexical_extractor=None,
        settings: Optional[RouterSettings] = None,
    ):
        self._retriever = retriever
        self._classifier = classifier_agent or get_classifier_agent()
        self._rewriter = rewrite_agent or get_query_rewrite_agent()
        self._lexical = lexical_extractor or get_lexical_extractor()
        self._settings = settings

    @property
    def settings(self) -> RouterSettings:
        return self._settings or load_router_settings()

    async def route(
        self,
        utterance: str,
        thresholds: Optional[Thresholds] = None,
    ) -> RouteDecision:
        """
        Route one utterance.

        Args:
            utterance: Raw user request
            thresholds: Explicit thresholds; read from the environment when None

        Returns:
            RouteDecision (never raises for collaborator failures)
        """
        request_token = request_id_var.set(generate_request_id())
        start = time.perf_counter()
        try:
            with stage_span("route"):
                trace_token = trace_id_var.set(get_trace_id_from_context())
                try:
                    decision = await self._route(utterance or "", thresholds)
                finally:
                    trace_id_var.reset(trace_token)
        finally:
            request_id_var.reset(request_token)

        record_route_decision(
            decision.intent.value,
            decision.reason.value,
            time.perf_counter() - start,
        )
        return decision

    def route_sync(
        self,
        utterance: str,
        thresholds: Optional[Thresholds] = None,
    ) -> RouteDecision:
        """Blocking wrapper for callers without an event loop."""
        return asyncio.run(self.route(utterance, thresholds))

    async def _route(
        self,
        utterance: str,
        thresholds: Optional[Thresholds],
    ) -> RouteDecision:
        with stage_span("lexical"):
            analysis = self._lexical.analyze(utterance)
        log_stage(
            "router.lexical",
            "lexical_analyzed",
            lexical_intent=analysis.lexical_intent.value,
            short_circuit=analysis.short_circuit.value if analysis.short_circuit else None,
            **analysis.signal.model_dump(),
        )

        if analysis.short_circuit is not None:
            return self._short_circuit(utterance, analysis)

        settings = self.settings
        # resolved per decision, never cached
        thresholds = thresholds or load_thresholds()

        classifier, retrieval_query = await asyncio.gather(
            self._classify(utterance, settings.classifier_timeout_seconds),
            self._rewrite(utterance, settings.rewrite_timeout_seconds),
        )

        probe = await RetrievalConfidenceProbe(
            self._retriever,
            top_k=settings.probe_top_k,
            timeout_seconds=settings.probe_timeout_seconds,
        ).probe(retrieval_query)

        with stage_span("decision"):
            decision = decide(
                lexical_intent=analysis.lexical_intent,
                classifier=classifier,
                probe=probe,
                thresholds=thresholds,
                retrieval_query=retrieval_query,
            )
        log_stage(
            "router.decision",
            "route_decided",
            lexical_intent=analysis.lexical_intent.value,
            thresholds=thresholds.model_dump(),
            **decision.to_log_dict(),
        )
        return decision

    def _short_circuit(self, utterance: str, analysis: LexicalAnalysis) -> RouteDecision:
        record_short_circuit(analysis.short_circuit.value)
        decision = RouteDecision(
            intent=analysis.lexical_intent,
            confidence=analysis.short_circuit_confidence,
            reason=analysis.short_circuit,
            retrieval_query=utterance,
            retrieval_probe=ZERO_PROBE,
            classifier=None,
        )
        log_stage("router.decision", "route_short_circuited", **decision.to_log_dict())
        return decision

    async def _classify(self, utterance: str, timeout: float) -> Optional[ClassifierResult]:
        with stage_span("classifier") as span:
            try:
                with collaborator_deadline(timeout):
                    result = await asyncio.wait_for(self._classifier.classify(utterance), timeout=timeout)
            except asyncio.TimeoutError:
                record_collaborator_failure("classifier", "timeout")
                mark_degraded(span, "classifier timed out")
                log_stage("router.classifier", "classifier_timeout", timeout_seconds=timeout)
                return None
            except Exception as exc:
                record_collaborator_failure("classifier", "error")
                mark_degraded(span, "classifier failed")
                log_stage(
                    "router.classifier",
                    "classifier_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return None

        if result is None:
            record_collaborator_failure("classifier", "malformed")
            log_stage("router.classifier", "classifier_absent")
            return None

        log_stage(
            "router.classifier",
            "classifier_completed",
            intent=result.intent.value,
            confidence=result.confidence,
            reason=result.reason,
        )
        return result

    async def _rewrite(self, utterance: str, timeout: float) -> str:
        """Rewritten query, or the original utterance on any failure."""
        with stage_span("rewrite") as span:
            try:
                with collaborator_deadline(timeout):
                    rewritten = await asyncio.wait_for(self._rewriter.rewrite(utterance), timeout=timeout)
            except asyncio.TimeoutError:
                record_collaborator_failure("rewrite", "timeout")
                mark_degraded(span, "rewrite timed out")
                log_stage("router.rewrite", "rewrite_timeout", timeout_seconds=timeout)
                return utterance
            except Exception as exc:
                record_collaborator_failure("rewrite", "error")
                mark_degraded(span, "rewrite failed")
                log_stage(
                    "router.rewrite",
                    "rewrite_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return utterance

        if not rewritten or not rewritten.strip():
            record_collaborator_failure("rewrite", "malformed")
            log_stage("router.rewrite", "rewrite_fallback_original")
            return utterance

        log_stage("router.rewrite", "rewrite_completed", original=utterance, rewritten=rewritten)
        return rewritten


_router_service: Optional[RouterService] = None


def get_router_service() -> RouterService:
    """
    Global singleton accessor.

    The retriever comes from set_default_retriever(); the knowledge base is
    owned by the host application.
    """
    global _router_service
    if _router_service is None:
        _router_service = RouterService(retriever=get_default_retriever())
    return _router_service


async def route(utterance: str, thresholds: Optional[Thresholds] = None) -> RouteDecision:
    """Route with the global service."""
    return await get_router_service().route(utterance, thresholds)
