"""
Request routing: lexical signals, intent classifier, query rewriter,
retrieval confidence probe and the decision rules that combine them.

Only the decision is produced here; executing the chosen route belongs to
the tool handlers.
"""
from .orchestration import RouterService, get_router_service, route
from .policy import decide
from .schema import (
    ClassifierResult,
    Intent,
    LexicalSignal,
    RetrievalProbe,
    RouteDecision,
    RouteReason,
)

__all__ = [
    "RouterService",
    "get_router_service",
    "route",
    "decide",
    "ClassifierResult",
    "Intent",
    "LexicalSignal",
    "RetrievalProbe",
    "RouteDecision",
    "RouteReason",
]
