"""LLM provider selection for linkwise.

Requests go to Anthropic directly or to OpenRouter's OpenAI-compatible
gateway. The provider is chosen from ``llm.provider`` in .linkwise when set,
otherwise from whichever single API key is present in the environment.

Both SDKs are optional: ``pip install 'linkwise[llm]'``.
"""

from __future__ import annotations

import os
from enum import StrEnum
from typing import Any

from .config import LLMConfig, get_llm_config

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class Provider(StrEnum):
    ANTHROPIC = "anthropic"
    OPENROUTER = "openrouter"


API_KEY_VARS = {
    Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
    Provider.OPENROUTER: "OPENROUTER_API_KEY",
}


class LLMProviderError(Exception):
    """No usable LLM provider: bad config, missing key, or missing SDK."""


# Canonical short names and what each provider calls them
MODEL_ALIASES: dict[str, dict[Provider, str]] = {
    "claude-3-haiku": {
        Provider.ANTHROPIC: "claude-3-haiku-20240307",
        Provider.OPENROUTER: "anthropic/claude-3-haiku",
    },
    "claude-3.5-haiku": {
        Provider.ANTHROPIC: "claude-3-5-haiku-20241022",
        Provider.OPENROUTER: "anthropic/claude-3-5-haiku",
    },
    "claude-haiku-4.5": {
        Provider.ANTHROPIC: "claude-haiku-4-5-20250414",
        Provider.OPENROUTER: "anthropic/claude-haiku-4.5",
    },
    "claude-sonnet-4": {
        Provider.ANTHROPIC: "claude-sonnet-4-20250514",
        Provider.OPENROUTER: "anthropic/claude-sonnet-4",
    },
}


def resolve_model(model: str, provider: str) -> str:
    """Translate a model name into the form the provider expects.

    Aliases map to provider-specific IDs. Otherwise the ``anthropic/``
    vendor prefix is dropped for Anthropic and added for bare ``claude-*``
    names on OpenRouter.

    >>> resolve_model("claude-3.5-haiku", "openrouter")
    'anthropic/claude-3-5-haiku'
    """
    aliases = MODEL_ALIASES.get(model)
    if aliases is not None:
        return aliases[Provider(provider)]
    if provider == Provider.ANTHROPIC:
        return model.removeprefix("anthropic/")
    if provider == Provider.OPENROUTER and model.startswith("claude-"):
        return f"anthropic/{model}"
    return model


def detect_provider(config: LLMConfig | None = None) -> Provider:
    """Pick the provider to use.

    Raises:
        LLMProviderError: If llm.provider is invalid, or no provider is
            configured and the environment holds both keys or neither.
    """
    config = config or get_llm_config()

    if config.provider:
        try:
            return Provider(config.provider.lower())
        except ValueError:
            valid = ", ".join(repr(p.value) for p in Provider)
            raise LLMProviderError(f"Invalid llm.provider '{config.provider}'. Must be one of {valid}.")

    available = [p for p, var in API_KEY_VARS.items() if os.environ.get(var)]
    if len(available) == 1:
        return available[0]
    if available:
        raise LLMProviderError(
            "Both ANTHROPIC_API_KEY and OPENROUTER_API_KEY are set; "
            "pick one with 'llm: {provider: anthropic}' (or openrouter) in .linkwise."
        )
    raise LLMProviderError("No LLM API key configured. Set ANTHROPIC_API_KEY or OPENROUTER_API_KEY.")


def get_async_client(provider: str | None = None) -> tuple[Any, Provider]:
    """Build an async SDK client for the detected (or given) provider.

    Raises:
        LLMProviderError: If the provider cannot be determined, its key is
            missing, or its SDK is not installed.
    """
    chosen = Provider(provider) if provider else detect_provider()
    key_var = API_KEY_VARS[chosen]
    api_key = os.environ.get(key_var)
    if not api_key:
        raise LLMProviderError(f"{key_var} environment variable is required.")

    try:
        if chosen is Provider.ANTHROPIC:
            import anthropic

            return anthropic.AsyncAnthropic(api_key=api_key), chosen

        from openai import AsyncOpenAI

        return AsyncOpenAI(base_url=OPENROUTER_BASE_URL, api_key=api_key), chosen
    except ImportError as e:
        raise LLMProviderError(f"{e.name} is not installed. Install with: pip install 'linkwise[llm]'")


async def make_completion_async(
    client: Any,
    provider: str,
    model: str,
    messages: list[dict[str, str]],
    max_tokens: int = 500,
    temperature: float = 0.3,
    json_mode: bool = False,
) -> str:
    """Send one chat request and return the reply text.

    ``json_mode`` requests a JSON object response; only the OpenAI-compatible
    API supports it, Anthropic relies on the prompt alone.
    """
    request: dict[str, Any] = {
        "model": resolve_model(model, provider),
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }

    if provider == Provider.ANTHROPIC:
        reply = await client.messages.create(**request)
        return reply.content[0].text

    if json_mode:
        request["response_format"] = {"type": "json_object"}
    reply = await client.chat.completions.create(**request)
    return reply.choices[0].message.content or ""
