"""
LLM intent classification agent.

Responsibilities:
- Ask the model for a minimal {intent, confidence, reason} object
- Parse it leniently (fences, surrounding prose) and validate with pydantic
- Never perform retrieval or make the routing decision itself

Parse or validation failures return None ("classifier absent"). Transport
errors propagate; RouterService bounds and absorbs them.
"""
from typing import Optional

from intent_router.core.logging import get_logger
from intent_router.core.metrics import record_llm_schema_validation_failure
from intent_router.services.llm.llm_client import get_llm_client
from intent_router.services.routing.schema import (
    ClassifierResult,
    SchemaValidationError,
    validate_classifier_payload,
)
from intent_router.services.routing.structured_output import parse_json_object

logger = get_logger(__name__)

CLASSIFIER_SYSTEM_PROMPT = (
    "You route requests for an internal assistant. Pick exactly one intent:\n"
    '- "retrieval": the user asks about company policy, compliance, incidents, '
    "procedures or anything that must be answered from the private knowledge base.\n"
    '- "config": the user describes rules, filters or thresholds that should be '
    "turned into a structured batch configuration.\n"
    '- "chat": anything else (general questions, writing help, conversation).\n\n'
    "Respond with a single JSON object only:\n"
    '{"intent": "chat | retrieval | config", "confidence": 0.0-1.0, '
    '"reason": "short justification"}\n'
    "Do not include any other text."
)


class IntentClassifierAgent:
    """Structured-output intent classifier."""

    def __init__(self, llm_client=None):
        self._llm_client = llm_client or get_llm_client()

    async def classify(self, utterance: str) -> Optional[ClassifierResult]:
        """
        Classify the utterance into chat / retrieval / config.

        Returns:
            ClassifierResult, or None when the model output is unusable.

        Raises:
            RuntimeError / httpx errors if the completion call fails.
        """
        if not utterance or not utterance.strip():
            return None

        content = await self._llm_client.complete(
            system=CLASSIFIER_SYSTEM_PROMPT,
            user=utterance,
            agent="classifier",
            max_tokens=128,
        )

        payload = parse_json_object(content)
        if payload is None:
            record_llm_schema_validation_failure("classifier")
            logger.warning("classifier_llm_invalid_json", raw=content[:500])
            return None

        try:
            return validate_classifier_payload(payload)
        except SchemaValidationError as exc:
            record_llm_schema_validation_failure("classifier")
            logger.warning(
                "classifier_llm_schema_invalid",
                error=str(exc),
                raw_payload=payload,
            )
            return None


_classifier_agent: Optional[IntentClassifierAgent] = None


def get_classifier_agent() -> IntentClassifierAgent:
    """Global singleton accessor."""
    global _classifier_agent
    if _classifier_agent is None:
        _classifier_agent = IntentClassifierAgent()
    return _classifier_agent
