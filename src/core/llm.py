"""
Agenda Assistant — LLM client.

Used only for freeform conversation. `complete()` sends one system prompt plus
one user message to whichever provider LLM_PROVIDER names (openai by default;
anthropic, gemini and cohere are also registered). The provider is resolved
on first use and cached for the life of the process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

# (api_key, model, system, user_message, max_tokens) -> reply text
_CallFn = Callable[[str, str, str, str, int], Awaitable[str]]


class LLMNotConfiguredError(RuntimeError):
    """Raised when complete() is called without an LLM_API_KEY."""


@dataclass(frozen=True)
class _Provider:
    name: str
    call: _CallFn
    default_model: str


@dataclass(frozen=True)
class _Selection:
    provider: _Provider
    model: str
    api_key: str


_REGISTRY: dict[str, _Provider] = {}


def _register(name: str, default_model: str) -> Callable[[_CallFn], _CallFn]:
    def decorator(fn: _CallFn) -> _CallFn:
        _REGISTRY[name] = _Provider(name=name, call=fn, default_model=default_model)
        return fn
    return decorator


@_register("openai", "gpt-4o-mini")
async def _call_openai(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    from openai import AsyncOpenAI

    response = await AsyncOpenAI(api_key=api_key).chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.choices[0].message.content or ""


@_register("anthropic", "claude-haiku-4-5-20251001")
async def _call_anthropic(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import anthropic

    response = await anthropic.AsyncAnthropic(api_key=api_key).messages.create(
        model=model,
        max_tokens=max_tokens,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    return "".join(block.text for block in response.content if block.type == "text")


@_register("gemini", "gemini-2.0-flash")
async def _call_gemini(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    response = await genai.GenerativeModel(
        model_name=model, system_instruction=system,
    ).generate_content_async(
        user_message,
        generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
    )
    return response.text


@_register("cohere", "command-a-03-2025")
async def _call_cohere(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import cohere

    response = await cohere.AsyncClientV2(api_key=api_key).chat(
        model=model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.message.content[0].text


def is_configured() -> bool:
    from src.config import settings

    return bool(settings.LLM_API_KEY)


def _select() -> _Selection:
    from src.config import settings

    if not settings.LLM_API_KEY:
        raise LLMNotConfiguredError("LLM_API_KEY is not set")

    name = settings.LLM_PROVIDER.strip().lower()
    provider = _REGISTRY.get(name)
    if provider is None:
        raise ValueError(f"Unknown LLM_PROVIDER={name!r}. Supported: {', '.join(_REGISTRY)}")

    selection = _Selection(provider, settings.LLM_MODEL or provider.default_model, settings.LLM_API_KEY)
    logger.info("LLM provider: %s, model: %s", provider.name, selection.model)
    return selection


_selection: _Selection | None = None


def reset() -> None:
    """Forget the cached provider so the next call re-reads settings."""
    global _selection
    _selection = None


async def complete(system: str, user_message: str, max_tokens: int = 256) -> str:
    """Return the model's reply text.

    Raises LLMNotConfiguredError without a key; provider errors propagate.
    """
    global _selection

    if _selection is None:
        _selection = _select()
    return await _selection.provider.call(
        _selection.api_key, _selection.model, system, user_message, max_tokens,
    )
