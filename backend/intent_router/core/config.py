"""
Environment-driven configuration.

Values are read from the process environment, optionally seeded from a
``.env`` file at the backend root. Routing thresholds are re-read on every
call to load_thresholds() so that a configuration change applies to the
next decision without a restart.

Environment configuration:
- ROUTER_HIGH_RETRIEVAL: probe confidence that alone selects retrieval (0.20)
- ROUTER_LOW_RETRIEVAL: minimum probe confidence backing a retrieval vote (0.12)
- ROUTER_HIGH_INTENT: minimum classifier confidence to trust its vote (0.65)
- ROUTER_PROBE_TOP_K: chunks requested by the retrieval probe (5)
- ROUTER_CLASSIFIER_TIMEOUT_SECONDS / ROUTER_REWRITE_TIMEOUT_SECONDS (5.0)
- ROUTER_PROBE_TIMEOUT_SECONDS (3.0)
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from intent_router.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ENV_PATH = Path(__file__).parent.parent.parent / ".env"

DEFAULT_HIGH_RETRIEVAL = 0.20
DEFAULT_LOW_RETRIEVAL = 0.12
DEFAULT_HIGH_INTENT = 0.65
DEFAULT_PROBE_TOP_K = 5

_env_loaded = False


def ensure_env_loaded(env_path: Optional[Path] = None) -> None:
    """Load the .env file once; existing environment variables win."""
    global _env_loaded
    if _env_loaded:
        return
    path = env_path or DEFAULT_ENV_PATH
    if path.exists():
        load_dotenv(path, override=False)
    _env_loaded = True


class Thresholds(BaseModel):
    """Decision thresholds used by the routing rules."""

    model_config = {"frozen": True}

    high_retrieval: float = Field(DEFAULT_HIGH_RETRIEVAL, ge=0.0, le=1.0)
    low_retrieval: float = Field(DEFAULT_LOW_RETRIEVAL, ge=0.0, le=1.0)
    high_intent: float = Field(DEFAULT_HIGH_INTENT, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_retrieval_order(self) -> "Thresholds":
        if self.low_retrieval > self.high_retrieval:
            raise ValueError("low_retrieval must not exceed high_retrieval")
        return self


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("config_invalid_float", name=name, value=raw, default=default)
        return default


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("config_invalid_int", name=name, value=raw, default=default)
        return default


def load_thresholds() -> Thresholds:
    """
    Read routing thresholds from the environment.

    Called once per decision. If the configured combination is invalid
    (out of range, or low above high) the defaults are used instead.
    """
    ensure_env_loaded()
    try:
        return Thresholds(
            high_retrieval=env_float("ROUTER_HIGH_RETRIEVAL", DEFAULT_HIGH_RETRIEVAL),
            low_retrieval=env_float("ROUTER_LOW_RETRIEVAL", DEFAULT_LOW_RETRIEVAL),
            high_intent=env_float("ROUTER_HIGH_INTENT", DEFAULT_HIGH_INTENT),
        )
    except ValueError as exc:
        logger.warning("config_invalid_thresholds", error=str(exc))
        return Thresholds()


class RouterSettings(BaseModel):
    """Per-collaborator limits for one decision."""

    probe_top_k: int = Field(DEFAULT_PROBE_TOP_K, ge=1)
    classifier_timeout_seconds: float = Field(5.0, gt=0.0)
    rewrite_timeout_seconds: float = Field(5.0, gt=0.0)
    probe_timeout_seconds: float = Field(3.0, gt=0.0)


def load_router_settings() -> RouterSettings:
    ensure_env_loaded()
    try:
        return RouterSettings(
            probe_top_k=env_int("ROUTER_PROBE_TOP_K", DEFAULT_PROBE_TOP_K),
            classifier_timeout_seconds=env_float("ROUTER_CLASSIFIER_TIMEOUT_SECONDS", 5.0),
            rewrite_timeout_seconds=env_float("ROUTER_REWRITE_TIMEOUT_SECONDS", 5.0),
            probe_timeout_seconds=env_float("ROUTER_PROBE_TIMEOUT_SECONDS", 3.0),
        )
    except ValueError as exc:
        logger.warning("config_invalid_router_settings", error=str(exc))
        return RouterSettings()
