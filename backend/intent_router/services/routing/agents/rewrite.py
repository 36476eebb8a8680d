"""
Query rewrite agent.

Produces a higher-recall variant of the utterance for the retrieval probe
and for downstream retrieval. Named entities and legal or policy references
(article numbers, clause IDs, regulation names) must survive the rewrite.

Returns None when the output is unparseable or empty; the caller then keeps
the original utterance.
"""
from typing import Optional

from intent_router.core.logging import get_logger
from intent_router.core.metrics import record_llm_schema_validation_failure
from intent_router.services.llm.llm_client import get_llm_client
from intent_router.services.routing.schema import (
    SchemaValidationError,
    validate_rewrite_payload,
)
from intent_router.services.routing.structured_output import parse_json_object

logger = get_logger(__name__)

REWRITE_SYSTEM_PROMPT = (
    "You rewrite user requests into search queries for a private policy and "
    "compliance knowledge base. Expand abbreviations and add close synonyms so "
    "that relevant passages are not missed. Keep every named entity and every "
    "legal or policy reference (article, section, clause, regulation names and "
    "numbers) exactly as written.\n\n"
    'Respond with a single JSON object only: {"query": "rewritten search query"}'
)


class QueryRewriteAgent:
    """Higher-recall retrieval query generator."""

    def __init__(self, llm_client=None):
        self._llm_client = llm_client or get_llm_client()

    async def rewrite(self, utterance: str) -> Optional[str]:
        """
        Rewrite the utterance for retrieval.

        Returns:
            The rewritten query, or None if the output should be ignored.

        Raises:
            RuntimeError / httpx errors if the completion call fails.
        """
        if not utterance or not utterance.strip():
            return None

        content = await self._llm_client.complete(
            system=REWRITE_SYSTEM_PROMPT,
            user=utterance,
            agent="rewrite",
            max_tokens=256,
        )

        payload = parse_json_object(content)
        if payload is None:
            record_llm_schema_validation_failure("rewrite")
            logger.warning("rewrite_llm_invalid_json", raw=content[:500])
            return None

        try:
            rewrite = validate_rewrite_payload(payload)
        except SchemaValidationError as exc:
            record_llm_schema_validation_failure("rewrite")
            logger.warning(
                "rewrite_llm_schema_invalid",
                error=str(exc),
                raw_payload=payload,
            )
            return None

        if not rewrite.query:
            logger.info("rewrite_llm_empty_query")
            return None
        return rewrite.query


_rewrite_agent: Optional[QueryRewriteAgent] = None


def get_query_rewrite_agent() -> QueryRewriteAgent:
    """Global singleton accessor."""
    global _rewrite_agent
    if _rewrite_agent is None:
        _rewrite_agent = QueryRewriteAgent()
    return _rewrite_agent
