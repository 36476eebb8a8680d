"""
Prometheus metrics for the router.

Metrics Categories:
- LLM collaborator: request latency, errors, tokens, estimated cost
- Structured output: schema validation failures per agent
- Routing: decisions by intent/reason, short-circuits, decision latency
- Retrieval probe: confidence distribution, chunk counts
- Collaborator failures by collaborator and kind (timeout, error, malformed)

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration, _distribution for distributions
"""
from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

from intent_router.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# LLM COLLABORATOR METRICS
# ============================================================================

llm_request_duration_seconds = Histogram(
    "router_llm_request_duration_seconds",
    "Completion call latency in seconds",
    ["agent", "model"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=registry,
)

llm_errors_total = Counter(
    "router_llm_errors_total",
    "Total number of failed completion calls",
    ["agent", "error_type"],
    registry=registry,
)

llm_tokens_total = Counter(
    "router_llm_tokens_total",
    "Total tokens consumed by completion calls",
    ["agent", "model", "direction"],  # direction: input / output
    registry=registry,
)

llm_cost_usd_total = Counter(
    "router_llm_cost_usd_total",
    "Estimated completion cost in USD",
    ["agent", "model"],
    registry=registry,
)

llm_schema_validation_failures_total = Counter(
    "router_llm_schema_validation_failures_total",
    "Structured model outputs that could not be parsed or validated",
    ["agent"],
    registry=registry,
)

# ============================================================================
# ROUTING METRICS
# ============================================================================

route_decisions_total = Counter(
    "router_decisions_total",
    "Total number of routing decisions",
    ["intent", "reason"],
    registry=registry,
)

route_short_circuits_total = Counter(
    "router_short_circuits_total",
    "Decisions made by the lexical stage without any collaborator call",
    ["reason"],
    registry=registry,
)

route_decision_duration_seconds = Histogram(
    "router_decision_duration_seconds",
    "End-to-end routing decision latency in seconds",
    buckets=[0.001, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=registry,
)

collaborator_failures_total = Counter(
    "router_collaborator_failures_total",
    "Collaborator calls degraded to an absent or default signal",
    ["collaborator", "kind"],  # kind: timeout / error / malformed
    registry=registry,
)

# ============================================================================
# RETRIEVAL PROBE METRICS
# ============================================================================

probe_confidence_distribution = Histogram(
    "router_probe_confidence_distribution",
    "Distribution of retrieval probe confidence",
    buckets=[0.0, 0.05, 0.1, 0.12, 0.15, 0.2, 0.3, 0.5, 0.75, 1.0],
    registry=registry,
)

probe_chunk_count_distribution = Histogram(
    "router_probe_chunk_count_distribution",
    "Number of chunks returned to the retrieval probe",
    buckets=[0, 1, 2, 3, 5, 10, 20],
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def record_llm_request(agent: str, model: str, duration_ms: float) -> None:
    llm_request_duration_seconds.labels(agent=agent, model=model).observe(duration_ms / 1000.0)


def record_llm_error(agent: str, error_type: str) -> None:
    llm_errors_total.labels(agent=agent, error_type=error_type).inc()


def record_llm_tokens_and_cost(
    agent: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
    cost_usd: float,
) -> None:
    """
    Record token usage and estimated cost for one completion call.

    Args:
        agent: Logical agent name ("classifier", "rewrite", "chat", ...)
        model: Model identifier
        input_tokens: Prompt tokens reported by the upstream API
        output_tokens: Completion tokens reported by the upstream API
        cost_usd: Estimated cost (0 when no price is configured)
    """
    if input_tokens:
        llm_tokens_total.labels(agent=agent, model=model, direction="input").inc(input_tokens)
    if output_tokens:
        llm_tokens_total.labels(agent=agent, model=model, direction="output").inc(output_tokens)
    if cost_usd > 0:
        llm_cost_usd_total.labels(agent=agent, model=model).inc(cost_usd)


def record_llm_schema_validation_failure(agent: str) -> None:
    llm_schema_validation_failures_total.labels(agent=agent).inc()


def record_collaborator_failure(collaborator: str, kind: str) -> None:
    collaborator_failures_total.labels(collaborator=collaborator, kind=kind).inc()


def record_route_decision(intent: str, reason: str, duration_seconds: float) -> None:
    route_decisions_total.labels(intent=intent, reason=reason).inc()
    route_decision_duration_seconds.observe(duration_seconds)


def record_short_circuit(reason: str) -> None:
    route_short_circuits_total.labels(reason=reason).inc()


def record_probe(confidence: float, chunk_count: int) -> None:
    probe_confidence_distribution.observe(confidence)
    probe_chunk_count_distribution.observe(chunk_count)


def get_metrics() -> bytes:
    """Prometheus metrics in text exposition format."""
    return generate_latest(registry)
