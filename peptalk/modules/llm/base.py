"""BaseAgent: shared async LLM call logic, JSON parsing, cost tracking.

Providers supported:
  - anthropic (Claude, direct API)
  - openai (GPT chat completions)
  - google (Gemini via google-genai)

Every call goes through the agent's retry policy. ``call_llm`` returns a
``CallResult`` instead of raising, so callers decide whether a failure ends
their stage.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

import structlog

from peptalk.core.config import LLMConfig
from peptalk.core.retry import CallResult, CallStatus, call_with_retry, is_transient
from peptalk.modules.llm.cost_tracker import CostTracker
from peptalk.modules.llm.sanitizer import strip_code_fences

logger = structlog.get_logger()

# Default models per provider
DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-sonnet-4-5-20250929",
    "openai": "gpt-4o",
    "google": "gemini-2.5-flash",
}

# Directory where prompt templates live
_PROMPTS_DIR = Path(__file__).parent / "prompts"

_RETRYABLE_CODES = {429, 500, 502, 503, 504}


def is_retryable_llm_error(exc: BaseException) -> bool:
    if is_transient(exc):
        return True
    # google-genai APIError carries the HTTP status as ``code``
    code = getattr(exc, "code", None)
    return isinstance(code, int) and code in _RETRYABLE_CODES


class BaseAgent:
    """Base class for all pipeline LLM agents.

    Provides:
      - lazy async client initialization per provider
      - unified call_llm() with retry, token tracking and timing
      - prompt loading from the prompts/ directory
      - JSON parsing with code-fence stripping
    """

    agent_name: str = "base"

    def __init__(
        self,
        config: LLMConfig,
        cost_tracker: CostTracker | None = None,
    ) -> None:
        self.config = config
        self.provider = config.provider
        self.model = config.model or DEFAULT_MODELS.get(self.provider, "")
        self.cost_tracker = cost_tracker

        # Lazy-initialized clients
        self._client: Any = None

        logger.debug(f"{self.agent_name} initialized", provider=self.provider, model=self.model)

    # ------------------------------------------------------------------
    # Prompt loading
    # ------------------------------------------------------------------

    @staticmethod
    def load_prompt(filename: str) -> str:
        """Load a prompt template from the prompts/ directory."""
        path = _PROMPTS_DIR / filename
        if not path.exists():
            raise FileNotFoundError(f"Prompt file not found: {path}")
        return path.read_text(encoding="utf-8").strip()

    # ------------------------------------------------------------------
    # LLM client builders (lazy)
    # ------------------------------------------------------------------

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        # SDK-level retries are off: the agent's RetryPolicy owns retrying
        timeout = self.config.retry.timeout
        if self.provider == "anthropic":
            from anthropic import AsyncAnthropic

            self._client = AsyncAnthropic(api_key=self.config.api_key, max_retries=0, timeout=timeout)
        elif self.provider == "openai":
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self.config.api_key, max_retries=0, timeout=timeout)
        elif self.provider == "google":
            from google import genai
            from google.genai import types as genai_types

            self._client = genai.Client(
                api_key=self.config.api_key,
                http_options=genai_types.HttpOptions(timeout=int(timeout * 1000)),
            )
        else:
            raise ValueError(f"Unsupported provider: {self.provider}")
        return self._client

    # ------------------------------------------------------------------
    # Unified LLM call
    # ------------------------------------------------------------------

    async def call_llm(
        self,
        system_prompt: str,
        user_content: str,
        *,
        response_json: bool = True,
        max_tokens: int | None = None,
        temperature: float | None = None,
        call_name: str = "",
        peptide: str = "",
    ) -> CallResult[dict[str, Any]]:
        """Call the configured provider and return parsed result + metadata.

        On success ``result.value`` is:
            {
                "content": str | dict,  # raw text, or parsed JSON if response_json
                "input_tokens": int,
                "output_tokens": int,
                "cache_creation_tokens": int,
                "cache_read_tokens": int,
                "duration_ms": int,
                "provider": str,
                "model": str,
            }
        """
        max_tokens = max_tokens or self.config.max_tokens
        temperature = self.config.temperature if temperature is None else temperature

        if self.provider == "anthropic":
            dispatch = self._call_anthropic
        elif self.provider == "openai":
            dispatch = self._call_openai
        elif self.provider == "google":
            dispatch = self._call_gemini
        else:
            return CallResult(
                status=CallStatus.failure,
                error=f"Unsupported provider: {self.provider}",
            )

        result = await call_with_retry(
            lambda: dispatch(
                system_prompt,
                user_content,
                response_json=response_json,
                max_tokens=max_tokens,
                temperature=temperature,
            ),
            self.config.retry,
            label=f"{self.agent_name}_{self.provider}",
            retry_if=is_retryable_llm_error,
        )
        if not result.ok:
            return result

        response = result.value
        logger.info(
            f"{self.agent_name} LLM call",
            provider=self.provider,
            call=call_name,
            peptide=peptide,
            input_tokens=response["input_tokens"],
            output_tokens=response["output_tokens"],
            duration_ms=response["duration_ms"],
        )

        if self.cost_tracker:
            self.cost_tracker.record(
                provider=self.provider,
                model=self.model,
                input_tokens=response["input_tokens"],
                output_tokens=response["output_tokens"],
                cache_creation_tokens=response["cache_creation_tokens"],
                cache_read_tokens=response["cache_read_tokens"],
                call_name=call_name or self.agent_name,
                peptide=peptide,
                duration_ms=response["duration_ms"],
            )

        if response_json:
            try:
                response["content"] = self.parse_json(response["content"])
            except (ValueError, TypeError) as e:
                logger.warning(f"{self.agent_name} returned invalid JSON", error=str(e))
                return CallResult(
                    status=CallStatus.failure,
                    error=f"{self.agent_name} returned invalid JSON: {e}",
                    attempts=result.attempts,
                )

        return CallResult(status=CallStatus.success, value=response, attempts=result.attempts)

    async def _call_anthropic(
        self,
        system_prompt: str,
        user_content: str,
        *,
        response_json: bool,
        max_tokens: int,
        temperature: float,
    ) -> dict[str, Any]:
        client = self._get_client()
        start = time.time()

        response = await client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=[
                {
                    "type": "text",
                    "text": system_prompt,
                    "cache_control": {"type": "ephemeral"},
                }
            ],
            messages=[{"role": "user", "content": user_content}],
        )

        usage = response.usage
        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return {
            "content": text,
            "input_tokens": getattr(usage, "input_tokens", 0) or 0,
            "output_tokens": getattr(usage, "output_tokens", 0) or 0,
            "cache_creation_tokens": getattr(usage, "cache_creation_input_tokens", 0) or 0,
            "cache_read_tokens": getattr(usage, "cache_read_input_tokens", 0) or 0,
            "duration_ms": int((time.time() - start) * 1000),
            "provider": "anthropic",
            "model": self.model,
        }

    async def _call_openai(
        self,
        system_prompt: str,
        user_content: str,
        *,
        response_json: bool,
        max_tokens: int,
        temperature: float,
    ) -> dict[str, Any]:
        client = self._get_client()
        start = time.time()

        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_json:
            kwargs["response_format"] = {"type": "json_object"}

        response = await client.chat.completions.create(**kwargs)

        usage = response.usage
        details = getattr(usage, "prompt_tokens_details", None)
        cached = getattr(details, "cached_tokens", 0) or 0
        prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
        return {
            "content": response.choices[0].message.content or "",
            "input_tokens": prompt_tokens - cached,
            "output_tokens": getattr(usage, "completion_tokens", 0) or 0,
            "cache_creation_tokens": 0,
            "cache_read_tokens": cached,
            "duration_ms": int((time.time() - start) * 1000),
            "provider": "openai",
            "model": self.model,
        }

    async def _call_gemini(
        self,
        system_prompt: str,
        user_content: str,
        *,
        response_json: bool,
        max_tokens: int,
        temperature: float,
    ) -> dict[str, Any]:
        from google.genai import types

        client = self._get_client()
        start = time.time()

        config_kwargs: dict[str, Any] = {
            "system_instruction": system_prompt,
            "temperature": temperature,
            "max_output_tokens": max_tokens,
        }
        if response_json:
            config_kwargs["response_mime_type"] = "application/json"

        response = await client.aio.models.generate_content(
            model=self.model,
            contents=user_content,
            config=types.GenerateContentConfig(**config_kwargs),
        )

        usage = response.usage_metadata
        cached = getattr(usage, "cached_content_token_count", 0) or 0
        return {
            "content": response.text or "",
            "input_tokens": (getattr(usage, "prompt_token_count", 0) or 0) - cached,
            "output_tokens": getattr(usage, "candidates_token_count", 0) or 0,
            "cache_creation_tokens": 0,
            "cache_read_tokens": cached,
            "duration_ms": int((time.time() - start) * 1000),
            "provider": "google",
            "model": self.model,
        }

    # ------------------------------------------------------------------
    # JSON parsing
    # ------------------------------------------------------------------

    @staticmethod
    def parse_json(raw_text: str) -> dict:
        """Parse LLM output as JSON, stripping code fences if present."""
        data = json.loads(strip_code_fences(raw_text))
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        return data
