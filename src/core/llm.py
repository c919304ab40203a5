"""
Pomodoro Sync — LLM Provider Abstraction.

Single public function `complete()` that routes to the provider named in
the user's synced AI settings. Supports: openai (any OpenAI-compatible
chat-completions endpoint, the default), anthropic, gemini.

Empty fields in the synced settings fall back to the LLM_* env vars.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from src.data.models import AiSettings

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://x666.me"


class LLMError(Exception):
    """Raised when a completion cannot be obtained (missing key, API error)."""


# Type alias for provider implementations:
#   (api_key, base_url, model, system, user_message, max_tokens, temperature, json_mode)
_ProviderFn = Callable[[str, str, str, str, str, int, float, bool], Awaitable[str]]


def normalize_base_url(base_url: str) -> str:
    """Trim trailing slashes and default to https:// when no scheme is given."""
    trimmed = (base_url or "").strip().rstrip("/")
    if not trimmed:
        return DEFAULT_BASE_URL
    if trimmed.startswith(("http://", "https://")):
        return trimmed
    return f"https://{trimmed}"


# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


async def _complete_openai(
    api_key: str, base_url: str, model: str, system: str, user_message: str,
    max_tokens: int, temperature: float, json_mode: bool,
) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key, base_url=f"{normalize_base_url(base_url)}/v1")
    extra: dict = {}
    if json_mode:
        extra["response_format"] = {"type": "json_object"}
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
        **extra,
    )
    if not response.choices:
        return ""
    message = response.choices[0].message
    content = message.content or ""
    if content.strip():
        return content

    # Some gateways answer JSON-mode requests through a tool call instead.
    tool_calls = getattr(message, "tool_calls", None) or []
    if tool_calls:
        arguments = getattr(tool_calls[0].function, "arguments", "") or ""
        if arguments.strip():
            return arguments
    return json.dumps(response.model_dump(), ensure_ascii=False)


async def _complete_anthropic(
    api_key: str, base_url: str, model: str, system: str, user_message: str,
    max_tokens: int, temperature: float, json_mode: bool,
) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    return response.content[0].text


async def _complete_gemini(
    api_key: str, base_url: str, model: str, system: str, user_message: str,
    max_tokens: int, temperature: float, json_mode: bool,
) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(
        model_name=model,
        system_instruction=system,
    )
    config = genai.types.GenerationConfig(
        max_output_tokens=max_tokens,
        temperature=temperature,
        response_mime_type="application/json" if json_mode else None,
    )
    response = await gm.generate_content_async(user_message, generation_config=config)
    return response.text


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "openai":    (_complete_openai,    "gemini-3-flash-preview"),
    "anthropic": (_complete_anthropic, "claude-haiku-4-5-20251001"),
    "gemini":    (_complete_gemini,    "gemini-2.0-flash"),
}


def _select_provider(ai: AiSettings | None) -> tuple[_ProviderFn, str, str, str]:
    """Resolve (provider_fn, base_url, model, api_key) from synced settings + env."""
    from src.config import settings

    provider_name = ((ai.provider if ai else "") or settings.LLM_PROVIDER).lower()
    if provider_name not in _PROVIDERS:
        raise LLMError(
            f"Unknown LLM provider {provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    fn, default_model = _PROVIDERS[provider_name]
    model = (ai.model if ai else "") or settings.LLM_MODEL or default_model
    api_key = ((ai.api_key if ai else "") or settings.LLM_API_KEY or "").strip()
    base_url = (ai.base_url if ai else "") or DEFAULT_BASE_URL

    if not api_key:
        raise LLMError("Missing API key: set one with /setkey")

    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return fn, base_url, model, api_key


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(
    system: str,
    user_message: str,
    *,
    ai: AiSettings | None = None,
    max_tokens: int = 1024,
    temperature: float = 0.7,
    json_mode: bool = False,
) -> str:
    """Send a prompt to the configured LLM provider and return the response text.

    Raises LLMError on a missing key or any provider failure — callers
    decide how to degrade.
    """
    fn, base_url, model, api_key = _select_provider(ai)
    try:
        return await fn(api_key, base_url, model, system, user_message, max_tokens, temperature, json_mode)
    except LLMError:
        raise
    except Exception as exc:
        logger.warning("LLM request failed: %s", exc)
        raise LLMError(str(exc)) from exc
