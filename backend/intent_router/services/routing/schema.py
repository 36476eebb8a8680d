"""
Pydantic models for routing signals and the final decision.

Every model here is immutable once built. RouteDecision is the only artifact
handed to the tool invocation layer; handlers dispatch on ``intent`` and may
use ``retrieval_query`` in place of the raw utterance.
"""
import math
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class Intent(str, Enum):
    CHAT = "chat"
    RETRIEVAL = "retrieval"
    CONFIG = "config"


class RouteReason(str, Enum):
    """Fixed set of decision reasons; never free text."""

    EMPTY_INPUT = "empty_input"
    SMALL_TALK_GUARD = "small_talk_guard"
    STRONG_CONFIG_PATTERN = "strong_config_pattern"
    CLASSIFIER_CONFIG_HIGH = "classifier_config_high"
    RETRIEVAL_PROBE_HIGH = "retrieval_probe_high"
    CLASSIFIER_RETRIEVAL_PLUS_PROBE = "classifier_retrieval_plus_probe"
    CLASSIFIER_CHAT_HIGH = "classifier_chat_high"
    LEXICAL_RETRIEVAL_WITH_PROBE = "lexical_retrieval_with_probe"
    DEFAULT_CHAT_FALLBACK = "default_chat_fallback"


DEFAULT_CLASSIFIER_CONFIDENCE = 0.5


def clamp01(value: float) -> float:
    """Clamp to [0, 1]; NaN collapses to 0."""
    if value is None or math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


def round4(value: float) -> float:
    return round(clamp01(value), 4)


class LexicalSignal(BaseModel):
    """Deterministic keyword/pattern evidence extracted from one utterance."""

    model_config = ConfigDict(frozen=True)

    matched_config_terms: Tuple[str, ...] = ()
    matched_config_patterns: Tuple[str, ...] = ()
    matched_retrieval_terms: Tuple[str, ...] = ()
    matched_question_cues: Tuple[str, ...] = ()
    config_score: int = 0
    retrieval_score: int = 0


class ClassifierResult(BaseModel):
    """
    Structured output of the intent classifier.

    Schema:
    {"intent": "chat | retrieval | config", "confidence": 0.0-1.0, "reason": "..."}

    The intent must be one of the three routes (case-insensitive). A missing
    or unparseable confidence becomes 0.5; out-of-range values are clamped.
    """

    model_config = ConfigDict(frozen=True)

    intent: Intent
    confidence: float = DEFAULT_CLASSIFIER_CONFIDENCE
    reason: str = ""

    @field_validator("intent", mode="before")
    @classmethod
    def normalize_intent(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, value: Any) -> float:
        if isinstance(value, bool) or value is None:
            return DEFAULT_CLASSIFIER_CONFIDENCE
        try:
            number = float(value)
        except (TypeError, ValueError):
            return DEFAULT_CLASSIFIER_CONFIDENCE
        if math.isnan(number):
            return DEFAULT_CLASSIFIER_CONFIDENCE
        return clamp01(number)

    @field_validator("reason", mode="before")
    @classmethod
    def coerce_reason(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)


class RewriteOutput(BaseModel):
    """Structured output of the query rewriter: {"query": "..."}."""

    query: str = Field(..., description="Higher-recall retrieval query")

    @field_validator("query")
    @classmethod
    def strip_query(cls, value: str) -> str:
        return value.strip()


class RetrievalProbe(BaseModel):
    """Knowledge-base relevance estimate condensed from one bounded retrieval."""

    model_config = ConfigDict(frozen=True)

    confidence: float = Field(0.0, ge=0.0, le=1.0)
    top_score: float = 0.0
    avg_top3: float = 0.0
    score_gap: float = 0.0
    chunk_count: int = 0


ZERO_PROBE = RetrievalProbe()


class RouteDecision(BaseModel):
    """
    Final routing decision, one per utterance.

    ``confidence`` is clamped to [0, 1] and rounded to 4 decimals on
    construction, whatever the caller passed in.
    """

    model_config = ConfigDict(frozen=True)

    intent: Intent
    confidence: float
    reason: RouteReason
    retrieval_query: str
    retrieval_probe: RetrievalProbe = ZERO_PROBE
    classifier: Optional[ClassifierResult] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def normalize_confidence(cls, value: Any) -> float:
        return round4(float(value))

    def to_log_dict(self) -> Dict[str, Any]:
        return {
            "intent": self.intent.value,
            "confidence": self.confidence,
            "reason": self.reason.value,
            "retrieval_query": self.retrieval_query,
            "probe_confidence": self.retrieval_probe.confidence,
            "classifier_intent": self.classifier.intent.value if self.classifier else None,
            "classifier_confidence": self.classifier.confidence if self.classifier else None,
        }


class SchemaValidationError(Exception):
    """Raised when model output fails schema validation."""

    def __init__(self, agent: str, message: str, raw_output: Optional[str] = None):
        super().__init__(message)
        self.agent = agent
        self.raw_output = raw_output


def validate_classifier_payload(payload: Dict[str, Any]) -> ClassifierResult:
    """
    Validate a parsed classifier object.

    Raises:
        SchemaValidationError if validation fails.
    """
    try:
        return ClassifierResult.model_validate(payload)
    except ValidationError as exc:
        raise SchemaValidationError(
            agent="classifier",
            message=f"Invalid classifier payload: {exc}",
        ) from exc


def validate_rewrite_payload(payload: Dict[str, Any]) -> RewriteOutput:
    """
    Validate a parsed rewrite object.

    Raises:
        SchemaValidationError if validation fails.
    """
    try:
        return RewriteOutput.model_validate(payload)
    except ValidationError as exc:
        raise SchemaValidationError(
            agent="rewrite",
            message=f"Invalid rewrite payload: {exc}",
        ) from exc
