"""
Lexical signal extraction.

Pure and deterministic: no I/O, no model calls. Runs first on every
utterance and can settle the decision on its own:

1. Empty input -> chat (empty_input)
2. Greeting / thanks / farewell -> chat (small_talk_guard)
3. Any config term or conditional-rule pattern -> config (strong_config_pattern)
4. Otherwise a retrieval score is computed; it never decides alone, it only
   seeds the lexical tie-break used by the decision rules.

Terms match as whole words only ("rule" does not match "overruled") and
multi-word terms tolerate any run of whitespace between their words.
"""
import re
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from intent_router.services.routing.schema import Intent, LexicalSignal, RouteReason

CONFIG_TERMS: Tuple[str, ...] = (
    "config",
    "configs",
    "configuration",
    "batch",
    "rule",
    "rules",
    "ruleset",
    "waterfall",
    "waterfall filter",
    "onpass",
    "onfail",
)

CONFIG_PATTERNS: Tuple[Tuple[str, str], ...] = (
    ("if_then", r"\bif\b.+?\bthen\b"),
    ("score_comparison", r"\bscore\s*(?:<=|>=|<|>)\s*-?\d+(?:\.\d+)?"),
    (
        "conditional_action",
        r"\b(?:reject|approve|accept|flag|route)\b.*?\b(?:if|when)\b.*?(?:<=|>=|<|>|==?)\s*-?\d",
    ),
)

RETRIEVAL_TERMS: Tuple[str, ...] = (
    "policy",
    "policies",
    "compliance",
    "incident",
    "incidents",
    "procedure",
    "procedures",
    "guideline",
    "guidelines",
    "handbook",
    "regulation",
    "regulations",
    "sop",
    "audit",
    "code of conduct",
    "leave policy",
    "knowledge base",
    "documentation",
    "clause",
    "article",
    "gdpr",
    "retention",
    "escalation",
)

QUESTION_CUES: Tuple[str, ...] = (
    "what is",
    "what are",
    "what does",
    "how do",
    "how does",
    "how to",
    "how can",
    "where can",
    "where is",
    "when should",
    "who is responsible",
    "am i allowed",
    "is it allowed",
    "according to",
    "explain",
    "tell me about",
    "can you find",
    "look up",
)

SMALL_TALK_PATTERNS: Tuple[str, ...] = (
    r"(?:hi|hello|hey|hiya|greetings|good\s+(?:morning|afternoon|evening|day))"
    r"(?:\s+(?:there|all|everyone|team))?",
    r"(?:thanks|thank\s+you|thx|ty|many\s+thanks|cheers|much\s+appreciated)"
    r"(?:\s+(?:so\s+much|a\s+lot|again))?",
    r"(?:bye|goodbye|good\s*bye|see\s+you(?:\s+later)?|see\s+ya|take\s+care|good\s+night)",
    r"(?:how\s+are\s+you(?:\s+doing)?|how's\s+it\s+going|what's\s+up)",
    r"(?:ok|okay|great|cool|nice|awesome|perfect)(?:[\s,]+(?:thanks|thank\s+you))?",
)

SMALL_TALK_CONFIDENCE = 0.98
STRONG_CONFIG_CONFIDENCE = 0.95
EMPTY_INPUT_CONFIDENCE = 1.0

# retrieval_score at which the lexical stage votes for retrieval
LEXICAL_RETRIEVAL_MIN_SCORE = 2


def compile_term(term: str) -> Pattern[str]:
    """Whole-word pattern for a (possibly multi-word) lowercase term."""
    words = [re.escape(word) for word in term.split()]
    return re.compile(r"(?<!\w)" + r"\s+".join(words) + r"(?!\w)")


def _compile_terms(terms: Iterable[str]) -> List[Tuple[str, Pattern[str]]]:
    return [(term, compile_term(term)) for term in terms]


class LexicalAnalysis(BaseModel):
    """Outcome of the lexical stage for one utterance."""

    model_config = ConfigDict(frozen=True)

    normalized_text: str
    signal: LexicalSignal
    lexical_intent: Intent
    short_circuit: Optional[RouteReason] = None
    short_circuit_confidence: float = 0.0


class LexicalSignalExtractor:
    """
    Keyword and pattern matcher for routing.

    Vocabularies are fixed at construction so the extractor can be shared
    across concurrent decisions without locking.
    """

    def __init__(
        self,
        config_terms: Sequence[str] = CONFIG_TERMS,
        config_patterns: Sequence[Tuple[str, str]] = CONFIG_PATTERNS,
        retrieval_terms: Sequence[str] = RETRIEVAL_TERMS,
        question_cues: Sequence[str] = QUESTION_CUES,
        small_talk_patterns: Sequence[str] = SMALL_TALK_PATTERNS,
    ):
        self._config_terms = _compile_terms(config_terms)
        self._config_patterns = [(name, re.compile(rx)) for name, rx in config_patterns]
        self._retrieval_terms = _compile_terms(retrieval_terms)
        self._question_cues = _compile_terms(question_cues)
        self._small_talk = [
            re.compile(r"^" + rx + r"[\s!.,?]*$") for rx in small_talk_patterns
        ]

    @staticmethod
    def normalize(text: Optional[str]) -> str:
        if not text:
            return ""
        return text.lower().strip()

    def is_small_talk(self, normalized: str) -> bool:
        return any(rx.match(normalized) for rx in self._small_talk)

    @staticmethod
    def _matches(normalized: str, compiled: List[Tuple[str, Pattern[str]]]) -> Tuple[str, ...]:
        return tuple(name for name, rx in compiled if rx.search(normalized))

    def config_signal(self, normalized: str) -> LexicalSignal:
        terms = self._matches(normalized, self._config_terms)
        patterns = self._matches(normalized, self._config_patterns)
        score = len(terms) + (2 if patterns else 0)
        return LexicalSignal(
            matched_config_terms=terms,
            matched_config_patterns=patterns,
            config_score=score,
        )

    def retrieval_signal(self, normalized: str, base: LexicalSignal) -> LexicalSignal:
        terms = self._matches(normalized, self._retrieval_terms)
        cues = self._matches(normalized, self._question_cues)
        score = 2 * len(terms)
        if "?" in normalized and terms:
            score += 1
        if "information" in normalized:
            score += 1
        if cues:
            score += 1
        return base.model_copy(
            update={
                "matched_retrieval_terms": terms,
                "matched_question_cues": cues,
                "retrieval_score": score,
            }
        )

    def analyze(self, utterance: Optional[str]) -> LexicalAnalysis:
        normalized = self.normalize(utterance)

        if not normalized:
            return LexicalAnalysis(
                normalized_text="",
                signal=LexicalSignal(),
                lexical_intent=Intent.CHAT,
                short_circuit=RouteReason.EMPTY_INPUT,
                short_circuit_confidence=EMPTY_INPUT_CONFIDENCE,
            )

        if self.is_small_talk(normalized):
            return LexicalAnalysis(
                normalized_text=normalized,
                signal=LexicalSignal(),
                lexical_intent=Intent.CHAT,
                short_circuit=RouteReason.SMALL_TALK_GUARD,
                short_circuit_confidence=SMALL_TALK_CONFIDENCE,
            )

        signal = self.config_signal(normalized)
        if signal.config_score >= 1:
            return LexicalAnalysis(
                normalized_text=normalized,
                signal=signal,
                lexical_intent=Intent.CONFIG,
                short_circuit=RouteReason.STRONG_CONFIG_PATTERN,
                short_circuit_confidence=STRONG_CONFIG_CONFIDENCE,
            )

        signal = self.retrieval_signal(normalized, signal)
        lexical_intent = (
            Intent.RETRIEVAL
            if signal.retrieval_score >= LEXICAL_RETRIEVAL_MIN_SCORE
            else Intent.CHAT
        )
        return LexicalAnalysis(
            normalized_text=normalized,
            signal=signal,
            lexical_intent=lexical_intent,
        )


_extractor: Optional[LexicalSignalExtractor] = None


def get_lexical_extractor() -> LexicalSignalExtractor:
    """Global singleton accessor."""
    global _extractor
    if _extractor is None:
        _extractor = LexicalSignalExtractor()
    return _extractor
