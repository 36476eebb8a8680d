"""
Unit tests for RouterService.

Collaborators are in-memory stubs; the tests check which collaborators run,
how failures degrade, and the decision that comes out.
"""
import asyncio
from typing import List, Optional

import pytest

from intent_router.core.config import RouterSettings, Thresholds
from intent_router.services.retrieval.base import RetrievedChunk
from intent_router.services.routing.orchestration import RouterService
from intent_router.services.routing.schema import ClassifierResult, Intent, RouteReason

FAST_SETTINGS = RouterSettings(
    probe_top_k=5,
    classifier_timeout_seconds=0.2,
    rewrite_timeout_seconds=0.2,
    probe_timeout_seconds=0.2,
)


class StubClassifier:
    def __init__(self, result: Optional[ClassifierResult] = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls: List[str] = []

    async def classify(self, utterance: str) -> Optional[ClassifierResult]:
        self.calls.append(utterance)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class StubRewriter:
    def __init__(self, rewritten: Optional[str] = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.rewritten = rewritten
        self.error = error
        self.delay = delay
        self.calls: List[str] = []

    async def rewrite(self, utterance: str) -> Optional[str]:
        self.calls.append(utterance)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.rewritten


class StubRetriever:
    def __init__(self, scores=(), error: Optional[Exception] = None):
        self.scores = scores
        self.error = error
        self.queries: List[str] = []

    async def retrieve(self, query: str, top_k: int) -> List[RetrievedChunk]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return [
            RetrievedChunk(content=f"passage {i}", source="policies.md", score=s)
            for i, s in enumerate(self.scores)
        ]


def _service(classifier=None, rewriter=None, retriever=None):
    return RouterService(
        retriever=retriever or StubRetriever(),
        classifier_agent=classifier or StubClassifier(),
        rewrite_agent=rewriter or StubRewriter(),
        settings=FAST_SETTINGS,
    )


@pytest.fixture(autouse=True)
def clear_threshold_env(monkeypatch):
    for name in ("ROUTER_HIGH_RETRIEVAL", "ROUTER_LOW_RETRIEVAL", "ROUTER_HIGH_INTENT"):
        monkeypatch.delenv(name, raising=False)


class TestShortCircuits:
    """Lexical fast paths never touch the classifier, rewriter or retriever."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "utterance,intent,confidence,reason",
        [
            ("", Intent.CHAT, 1.0, RouteReason.EMPTY_INPUT),
            ("hello", Intent.CHAT, 0.98, RouteReason.SMALL_TALK_GUARD),
            ("thanks", Intent.CHAT, 0.98, RouteReason.SMALL_TALK_GUARD),
            ("if score < 7 then reject", Intent.CONFIG, 0.95, RouteReason.STRONG_CONFIG_PATTERN),
            ("create batch config with rules", Intent.CONFIG, 0.95, RouteReason.STRONG_CONFIG_PATTERN),
        ],
    )
    async def test_short_circuit(self, utterance, intent, confidence, reason):
        classifier, rewriter, retriever = StubClassifier(), StubRewriter(), StubRetriever([0.9])
        service = _service(classifier, rewriter, retriever)

        decision = await service.route(utterance)

        assert decision.intent == intent
        assert decision.confidence == pytest.approx(confidence)
        assert decision.reason == reason
        assert decision.retrieval_query == utterance
        assert decision.classifier is None
        assert decision.retrieval_probe.confidence == 0.0
        assert classifier.calls == []
        assert rewriter.calls == []
        assert retriever.queries == []


@pytest.mark.asyncio
async def test_probe_runs_on_rewritten_query():
    retriever = StubRetriever([0.5, 0.3, 0.2])
    service = _service(
        StubClassifier(ClassifierResult(intent="retrieval", confidence=0.9)),
        StubRewriter("annual leave carry-over policy"),
        retriever,
    )

    decision = await service.route("can I carry over my vacation days?")

    assert retriever.queries == ["annual leave carry-over policy"]
    assert decision.retrieval_query == "annual leave carry-over policy"
    assert decision.intent == Intent.RETRIEVAL
    assert decision.reason == RouteReason.RETRIEVAL_PROBE_HIGH


@pytest.mark.asyncio
async def test_classifier_and_rewriter_run_concurrently():
    classifier = StubClassifier(ClassifierResult(intent="chat", confidence=0.9), delay=0.1)
    rewriter = StubRewriter("poem about autumn", delay=0.1)
    settings = RouterSettings(classifier_timeout_seconds=1.0, rewrite_timeout_seconds=1.0, probe_timeout_seconds=1.0)
    service = RouterService(
        retriever=StubRetriever(),
        classifier_agent=classifier,
        rewrite_agent=rewriter,
        settings=settings,
    )

    loop = asyncio.get_running_loop()
    started = loop.time()
    decision = await service.route("write a poem about autumn")
    elapsed = loop.time() - started

    assert decision.reason == RouteReason.CLASSIFIER_CHAT_HIGH
    assert elapsed < 0.19


@pytest.mark.asyncio
async def test_classifier_retrieval_with_mid_probe():
    # single chunk 0.17 -> 0.9 * 0.17 = 0.153
    service = _service(
        StubClassifier(ClassifierResult(intent="retrieval", confidence=0.8)),
        StubRewriter("expense reimbursement deadline"),
        StubRetriever([0.17]),
    )

    decision = await service.route("when do I need to file expenses by")

    assert decision.intent == Intent.RETRIEVAL
    assert decision.reason == RouteReason.CLASSIFIER_RETRIEVAL_PLUS_PROBE
    assert decision.confidence == pytest.approx(0.8)
    assert decision.retrieval_probe.confidence == pytest.approx(0.153)


@pytest.mark.asyncio
async def test_classifier_failure_degrades_to_absent():
    service = _service(
        StubClassifier(error=RuntimeError("LLM API key not configured")),
        StubRewriter("q"),
        StubRetriever([0.3]),
    )

    decision = await service.route("summarize the travel policy")

    assert decision.classifier is None
    assert decision.intent == Intent.RETRIEVAL
    assert decision.reason == RouteReason.RETRIEVAL_PROBE_HIGH


@pytest.mark.asyncio
async def test_classifier_timeout_degrades_to_absent():
    service = _service(
        StubClassifier(ClassifierResult(intent="chat", confidence=0.99), delay=1.0),
        StubRewriter("q"),
    )

    decision = await service.route("write a haiku")

    assert decision.classifier is None
    assert decision.reason == RouteReason.DEFAULT_CHAT_FALLBACK
    assert decision.confidence == 0.0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "rewriter",
    [
        StubRewriter(None),
        StubRewriter("   "),
        StubRewriter(error=ConnectionError("upstream reset")),
        StubRewriter("late", delay=1.0),
    ],
)
async def test_retrieval_query_falls_back_to_utterance(rewriter):
    retriever = StubRetriever([0.1])
    service = _service(StubClassifier(), rewriter, retriever)

    decision = await service.route("where is the incident response runbook")

    assert decision.retrieval_query == "where is the incident response runbook"
    assert retriever.queries == ["where is the incident response runbook"]


@pytest.mark.asyncio
async def test_probe_failure_degrades_to_zero():
    service = _service(
        StubClassifier(ClassifierResult(intent="retrieval", confidence=0.9)),
        StubRewriter("q"),
        StubRetriever(error=TimeoutError("vector store down")),
    )

    decision = await service.route("what does the audit checklist cover")

    assert decision.retrieval_probe.confidence == 0.0
    assert decision.intent == Intent.CHAT
    assert decision.reason == RouteReason.DEFAULT_CHAT_FALLBACK
    assert decision.confidence == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_every_collaborator_failing_still_returns_decision():
    service = _service(
        StubClassifier(error=ValueError("boom")),
        StubRewriter(error=ValueError("boom")),
        StubRetriever(error=ValueError("boom")),
    )

    decision = await service.route("what is our data retention policy?")

    assert decision.intent == Intent.CHAT
    assert decision.reason == RouteReason.DEFAULT_CHAT_FALLBACK
    assert decision.retrieval_query == "what is our data retention policy?"


@pytest.mark.asyncio
async def test_lexical_retrieval_tie_break():
    # single chunk 0.15 -> 0.135, between LOW and HIGH
    service = _service(
        StubClassifier(ClassifierResult(intent="chat", confidence=0.3)),
        StubRewriter("incident severity definitions"),
        StubRetriever([0.15]),
    )

    decision = await service.route("what is a sev1 incident?")

    assert decision.intent == Intent.RETRIEVAL
    assert decision.reason == RouteReason.LEXICAL_RETRIEVAL_WITH_PROBE
    assert decision.confidence == pytest.approx(0.135)


@pytest.mark.asyncio
async def test_thresholds_read_from_environment_per_decision(monkeypatch):
    service = _service(StubClassifier(), StubRewriter("q"), StubRetriever([0.25]))

    first = await service.route("tell me a joke")
    monkeypatch.setenv("ROUTER_HIGH_RETRIEVAL", "0.5")
    second = await service.route("tell me a joke")

    assert first.reason == RouteReason.RETRIEVAL_PROBE_HIGH
    assert second.reason == RouteReason.DEFAULT_CHAT_FALLBACK


@pytest.mark.asyncio
async def test_explicit_thresholds_override_environment(monkeypatch):
    monkeypatch.setenv("ROUTER_HIGH_RETRIEVAL", "0.9")
    service = _service(StubClassifier(), StubRewriter("q"), StubRetriever([0.25]))

    decision = await service.route("tell me a joke", thresholds=Thresholds(high_retrieval=0.2))

    assert decision.reason == RouteReason.RETRIEVAL_PROBE_HIGH


@pytest.mark.asyncio
async def test_concurrent_decisions_are_independent():
    service = _service(
        StubClassifier(ClassifierResult(intent="chat", confidence=0.9)),
        StubRewriter(None),
        StubRetriever([0.05]),
    )
    utterances = [f"write a limerick about topic {i}" for i in range(10)]

    decisions = await asyncio.gather(*(service.route(u) for u in utterances))

    assert [d.retrieval_query for d in decisions] == utterances
    assert all(d.reason == RouteReason.CLASSIFIER_CHAT_HIGH for d in decisions)


def test_route_sync():
    service = _service(StubClassifier(), StubRewriter(), StubRetriever())
    decision = service.route_sync("hello")
    assert decision.reason == RouteReason.SMALL_TALK_GUARD


class RawRetriever:
    """Returns whatever payload it was given, untyped."""

    def __init__(self, payload):
        self.payload = payload

    async def retrieve(self, query, top_k):
        return self.payload


@pytest.mark.asyncio
async def test_mapping_chunks_from_retriever_are_scored():
    service = _service(
        StubClassifier(),
        StubRewriter("travel policy summary"),
        RawRetriever([{"content": "Economy class for flights under 6h.", "source": "hr.md", "score": 0.5}]),
    )

    decision = await service.route("summarize the travel policy")

    assert decision.intent == Intent.RETRIEVAL
    assert decision.reason == RouteReason.RETRIEVAL_PROBE_HIGH
    assert decision.retrieval_probe.top_score == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_unusable_retriever_payload_still_returns_decision():
    service = _service(
        StubClassifier(ClassifierResult(intent="chat", confidence=0.9)),
        StubRewriter("travel policy summary"),
        RawRetriever([{"content": "missing score", "source": "hr.md"}]),
    )

    decision = await service.route("summarize the travel policy")

    assert decision.retrieval_probe.confidence == 0.0
    assert decision.intent == Intent.CHAT
    assert decision.reason == RouteReason.CLASSIFIER_CHAT_HIGH


@pytest.mark.asyncio
async def test_hung_completion_upstream_opens_circuit_through_router():
    import httpx

    from intent_router.core.circuit_breaker import CircuitState
    from intent_router.services.llm.llm_client import LLMClient
    from intent_router.services.routing.agents.classifier import IntentClassifierAgent

    async def stalled(request):
        await asyncio.sleep(10)
        return httpx.Response(200, json={})

    client = LLMClient(
        api_base="https://llm.internal/v1",
        api_key="sk-test",
        model="gpt-4o-mini",
        transport=httpx.MockTransport(stalled),
    )
    client.circuit_breaker.min_requests_for_threshold = 3
    service = _service(IntentClassifierAgent(llm_client=client), StubRewriter("q"), StubRetriever())

    for _ in range(3):
        decision = await service.route("write a short poem")
        assert decision.classifier is None

    assert client.circuit_breaker.state == CircuitState.OPEN

    loop = asyncio.get_running_loop()
    started = loop.time()
    decision = await service.route("write a short poem")
    assert decision.classifier is None
    assert loop.time() - started < 0.1
