"""
Routing decision rules.

An ordered list of guarded rules evaluated in one pass over an immutable
context; the first rule whose guard holds produces the decision:

1. classifier says config with high confidence        -> config
2. probe confidence >= HIGH_RETRIEVAL                  -> retrieval
3. classifier says retrieval (high) and probe >= LOW   -> retrieval
4. classifier says chat (high) and probe < HIGH        -> chat
5. lexical stage says retrieval and probe >= LOW       -> retrieval
6. otherwise                                           -> chat

decide() has no side effects and reads nothing but its arguments, so a
decision can be replayed offline from recorded classifier and probe values.
"""
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from intent_router.core.config import Thresholds
from intent_router.services.routing.schema import (
    ClassifierResult,
    Intent,
    RetrievalProbe,
    RouteDecision,
    RouteReason,
)


@dataclass(frozen=True)
class DecisionContext:
    lexical_intent: Intent
    classifier: Optional[ClassifierResult]
    probe: RetrievalProbe
    thresholds: Thresholds

    def classifier_votes(self, intent: Intent) -> bool:
        return (
            self.classifier is not None
            and self.classifier.intent == intent
            and self.classifier.confidence >= self.thresholds.high_intent
        )

    @property
    def classifier_confidence(self) -> float:
        return self.classifier.confidence if self.classifier is not None else 0.0


Guard = Callable[[DecisionContext], bool]
Outcome = Callable[[DecisionContext], Tuple[Intent, float]]


@dataclass(frozen=True)
class Rule:
    reason: RouteReason
    guard: Guard
    outcome: Outcome


RULES: Tuple[Rule, ...] = (
    Rule(
        RouteReason.CLASSIFIER_CONFIG_HIGH,
        lambda ctx: ctx.classifier_votes(Intent.CONFIG),
        lambda ctx: (Intent.CONFIG, ctx.classifier_confidence),
    ),
    Rule(
        RouteReason.RETRIEVAL_PROBE_HIGH,
        lambda ctx: ctx.probe.confidence >= ctx.thresholds.high_retrieval,
        lambda ctx: (Intent.RETRIEVAL, ctx.probe.confidence),
    ),
    Rule(
        RouteReason.CLASSIFIER_RETRIEVAL_PLUS_PROBE,
        lambda ctx: (
            ctx.classifier_votes(Intent.RETRIEVAL)
            and ctx.probe.confidence >= ctx.thresholds.low_retrieval
        ),
        lambda ctx: (Intent.RETRIEVAL, max(ctx.classifier_confidence, ctx.probe.confidence)),
    ),
    Rule(
        RouteReason.CLASSIFIER_CHAT_HIGH,
        lambda ctx: (
            ctx.classifier_votes(Intent.CHAT)
            and ctx.probe.confidence < ctx.thresholds.high_retrieval
        ),
        lambda ctx: (Intent.CHAT, ctx.classifier_confidence),
    ),
    Rule(
        RouteReason.LEXICAL_RETRIEVAL_WITH_PROBE,
        lambda ctx: (
            ctx.lexical_intent == Intent.RETRIEVAL
            and ctx.probe.confidence >= ctx.thresholds.low_retrieval
        ),
        lambda ctx: (Intent.RETRIEVAL, ctx.probe.confidence),
    ),
)

FALLBACK_RULE = Rule(
    RouteReason.DEFAULT_CHAT_FALLBACK,
    lambda ctx: True,
    lambda ctx: (Intent.CHAT, max(ctx.classifier_confidence, ctx.probe.confidence)),
)


def decide(
    lexical_intent: Intent,
    classifier: Optional[ClassifierResult],
    probe: RetrievalProbe,
    thresholds: Thresholds,
    retrieval_query: str,
) -> RouteDecision:
    """Apply the rules in order and build the decision from the first match."""
    ctx = DecisionContext(
        lexical_intent=lexical_intent,
        classifier=classifier,
        probe=probe,
        thresholds=thresholds,
    )
    rule = next((r for r in RULES if r.guard(ctx)), FALLBACK_RULE)
    intent, confidence = rule.outcome(ctx)
    return RouteDecision(
        intent=intent,
        confidence=confidence,
        reason=rule.reason,
        retrieval_query=retrieval_query,
        retrieval_probe=probe,
        classifier=classifier,
    )
