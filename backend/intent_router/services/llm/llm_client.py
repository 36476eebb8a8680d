"""
Async completion client for an OpenAI-compatible chat API.

Design constraints:
- Plain HTTP (httpx) against /chat/completions; no vendor SDKs
- One attempt per call: no retries, bounded by the client timeout
- Guarded by a circuit breaker so an unhealthy upstream fails fast

Environment configuration:
- LLM_API_BASE: Base URL for API (default: https://api.openai.com/v1)
- LLM_API_KEY: API key / bearer token
- LLM_MODEL: Model name (default: gpt-4o-mini)
- LLM_TIMEOUT_SECONDS: Request timeout in seconds (default: 10.0)
- LLM_TEMPERATURE: Sampling temperature (default: 0.2)
- LLM_COST_PER_1K_TOKENS: Optional cost hint for metrics (USD, float)
"""
import asyncio
import os
import time
from typing import Any, Dict, List, Optional

import httpx

from intent_router.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from intent_router.core.config import ensure_env_loaded, env_float
from intent_router.core.deadline import remaining_seconds
from intent_router.core.logging import get_logger
from intent_router.core.metrics import (
    record_llm_error,
    record_llm_request,
    record_llm_tokens_and_cost,
)

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful internal AI assistant."


class LLMResponseFormatError(Exception):
    """Raised when the upstream response does not have the expected shape."""


class LLMClient:
    """Async HTTP client for completion calls."""

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str],
        model: str,
        timeout_seconds: float = 10.0,
        temperature: float = 0.2,
        cost_per_1k_tokens: float = 0.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self._transport = transport

        self.circuit_breaker = CircuitBreaker(
            name="llm_completion",
            failure_threshold=0.5,
            time_window_seconds=60,
            open_duration_seconds=30,
        )

    async def _post(
        self,
        path: str,
        json_payload: Dict[str, Any],
        timeout_seconds: float,
    ) -> httpx.Response:
        """
        POST helper; non-2xx responses and an exhausted time budget raise so
        the breaker counts them.
        """
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        url = f"{self.api_base}{path}"
        async with httpx.AsyncClient(
            timeout=timeout_seconds,
            transport=self._transport,
        ) as client:
            response = await asyncio.wait_for(
                client.post(url, headers=headers, json=json_payload),
                timeout=timeout_seconds,
            )
            response.raise_for_status()
            return response

    async def chat(
        self,
        agent: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 512,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Call the chat completion endpoint.

        Args:
            agent: Logical agent name ("classifier", "rewrite", "chat", ...)
            messages: OpenAI-style chat messages
            max_tokens: Max tokens for completion
            response_format: Optional response_format for JSON mode

        Returns:
            Raw JSON response from the API.
        """
        if not self.api_key:
            record_llm_error(agent, "missing_api_key")
            raise RuntimeError("LLM API key not configured")

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": max_tokens,
        }
        if response_format:
            payload["response_format"] = response_format

        start = time.time()
        try:
            response: httpx.Response = await self.circuit_breaker.call_async(
                self._post,
                "/chat/completions",
                json_payload=payload,
                timeout_seconds=remaining_seconds(self.timeout_seconds),
            )
        except CircuitBreakerOpenError:
            record_llm_error(agent, "circuit_open")
            logger.warning(
                "llm_circuit_open",
                agent=agent,
                circuit=self.circuit_breaker.get_metrics(),
            )
            raise
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            record_llm_error(agent, "timeout")
            logger.warning(
                "llm_timeout",
                agent=agent,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        except httpx.HTTPError as exc:
            record_llm_error(agent, "http_error")
            logger.warning(
                "llm_http_error",
                agent=agent,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            record_llm_request(agent, self.model, (time.time() - start) * 1000.0)

        try:
            data = response.json()
        except ValueError as exc:
            record_llm_error(agent, "invalid_json")
            raise LLMResponseFormatError(f"Completion response is not JSON: {exc}") from exc
        if not isinstance(data, dict):
            record_llm_error(agent, "invalid_json")
            raise LLMResponseFormatError("Completion response is not a JSON object")

        usage = data.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        input_tokens = int(usage.get("prompt_tokens") or 0)
        output_tokens = int(usage.get("completion_tokens") or 0)
        total_tokens = input_tokens + output_tokens
        cost_usd = 0.0
        if self.cost_per_1k_tokens > 0 and total_tokens > 0:
            cost_usd = (total_tokens / 1000.0) * self.cost_per_1k_tokens

        record_llm_tokens_and_cost(
            agent=agent,
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost_usd,
        )
        return data

    async def complete(
        self,
        user: str,
        system: Optional[str] = None,
        agent: str = "chat",
        max_tokens: int = 512,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Single-turn completion returning the assistant text.

        Raises:
            LLMResponseFormatError if the response carries no message content.
            httpx / circuit breaker errors from chat().
        """
        messages = [
            {"role": "system", "content": system or DEFAULT_SYSTEM_PROMPT},
            {"role": "user", "content": user},
        ]
        data = await self.chat(
            agent=agent,
            messages=messages,
            max_tokens=max_tokens,
            response_format=response_format,
        )
        return extract_message_content(data)


def extract_message_content(data: Dict[str, Any]) -> str:
    """Pull choices[0].message.content out of an OpenAI-style response."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise LLMResponseFormatError(f"Malformed completion response: {exc!r}") from exc
    if content is None:
        return ""
    if not isinstance(content, str):
        raise LLMResponseFormatError("Completion content is not a string")
    return content


_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """
    Global completion client built from the environment.

    Without LLM_API_KEY every call raises RuntimeError, which the routing
    agents treat as an absent signal.
    """
    global _llm_client
    if _llm_client is None:
        ensure_env_loaded()
        _llm_client = LLMClient(
            api_base=os.getenv("LLM_API_BASE", "https://api.openai.com/v1"),
            api_key=os.getenv("LLM_API_KEY"),
            model=os.getenv("LLM_MODEL", "gpt-4o-mini"),
            timeout_seconds=env_float("LLM_TIMEOUT_SECONDS", 10.0),
            temperature=env_float("LLM_TEMPERATURE", 0.2),
            cost_per_1k_tokens=env_float("LLM_COST_PER_1K_TOKENS", 0.0),
        )
    return _llm_client
