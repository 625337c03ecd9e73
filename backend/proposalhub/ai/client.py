from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, TypeVar

from openai import OpenAI
from pydantic import BaseModel, ValidationError

from ..observability.logging import get_logger
from ..settings import settings
from .fallback import FallbackExhausted, run_chain

log = get_logger("ai")

T = TypeVar("T", bound=BaseModel)


class AiError(RuntimeError):
    pass


class AiNotConfigured(AiError):
    pass


class AiUpstreamError(AiError):
    pass


class AiParseError(AiError):
    pass


class AiExhausted(AiError):
    """Every model in the fallback list failed or produced unusable output."""


@dataclass(frozen=True)
class AiMeta:
    purpose: str
    model: str
    attempts: int
    used_response_format: str | None


def _models_to_try(purpose: str) -> list[str]:
    return settings.ai_models_for(purpose)


def _client(*, timeout_s: int | None = None) -> Any:
    if not settings.openai_api_key:
        raise AiNotConfigured("OPENAI_API_KEY not configured")
    # Fallback across models is ours; keep SDK retries off so each attempt is bounded by the timeout.
    return OpenAI(
        api_key=settings.openai_api_key,
        max_retries=0,
        timeout=max(5, int(timeout_s or settings.ai_timeout_seconds)),
    )


def _is_reasoning_model(model: str) -> bool:
    m = (model or "").strip().lower()
    return m.startswith(("o1", "o3", "o4"))


def _clip(s: str, max_len: int) -> str:
    s = str(s or "")
    return s if len(s) <= max_len else s[:max_len]


def _normalize_messages(messages: list[dict[str, str]], max_chars: int) -> list[dict[str, str]]:
    # Guard against accidentally sending huge prompts.
    return [
        {"role": str(m.get("role") or "user"), "content": _clip(str(m.get("content") or ""), max_chars)}
        for m in messages or []
    ]


def _should_retry_with_legacy_max_tokens(e: Exception) -> bool:
    msg = (str(e) or "").lower()
    return "unsupported parameter" in msg and "max_completion_tokens" in msg


def _extract_first_json_object(text: str) -> str | None:
    if not text:
        return None
    m = re.search(r"\{[\s\S]*\}", text)
    return m.group(0) if m else None


def _complete(
    client: Any,
    *,
    model: str,
    messages: list[dict[str, str]],
    max_tokens: int,
    temperature: float,
    response_format: dict[str, Any] | None = None,
) -> str:
    kwargs: dict[str, Any] = {"model": model, "messages": messages}
    # Reasoning models reject sampling parameters.
    if not _is_reasoning_model(model):
        kwargs["temperature"] = temperature
    if response_format is not None:
        kwargs["response_format"] = response_format
    try:
        completion = client.chat.completions.create(**(kwargs | {"max_completion_tokens": max_tokens}))
    except Exception as e:
        if not _should_retry_with_legacy_max_tokens(e):
            raise
        completion = client.chat.completions.create(**(kwargs | {"max_tokens": max_tokens}))
    return (completion.choices[0].message.content or "").strip()


def call_text(
    *,
    purpose: str,
    messages: list[dict[str, str]],
    max_tokens: int = 1200,
    temperature: float = 0.4,
    min_chars: int = 1,
    timeout_s: int | None = None,
    max_prompt_chars: int = 220_000,
) -> tuple[str, AiMeta]:
    """Try each configured model in order; output shorter than `min_chars` moves on to the next."""
    client = _client(timeout_s=timeout_s)
    max_tokens = int(min(int(max_tokens), int(settings.openai_max_output_tokens_cap or max_tokens)))
    messages = _normalize_messages(messages, max_prompt_chars)

    def _strategy(model: str):
        return lambda: _complete(
            client, model=model, messages=messages, max_tokens=max_tokens, temperature=temperature
        )

    def _accept(out: str) -> str | None:
        if not out:
            return "empty_output"
        if len(out) < min_chars:
            return f"short_output ({len(out)} < {min_chars} chars)"
        return None

    try:
        outcome = run_chain(
            [(m, _strategy(m)) for m in _models_to_try(purpose)],
            label=f"ai_text:{purpose}",
            accept=_accept,
        )
    except FallbackExhausted as e:
        raise AiExhausted(f"All models failed ({purpose})") from e
    except AiError:
        raise
    except Exception as e:
        raise AiUpstreamError(str(e) or "ai_text_failed") from e

    log.info("ai_call_ok", purpose=purpose, model=outcome.strategy, attempts=outcome.attempts, response_format="chat_text")
    return outcome.value, AiMeta(
        purpose=purpose, model=outcome.strategy, attempts=outcome.attempts, used_response_format="chat_text"
    )


def _parse_json(content: str, response_model: type[T], *, allow_extract: bool) -> T:
    if not content:
        raise AiParseError("empty_model_response")
    raw_json = content
    if allow_extract:
        raw_json = _extract_first_json_object(content) or content
    try:
        data = json.loads(raw_json)
    except json.JSONDecodeError as e:
        raise AiParseError(f"json_decode_error: {e}") from e
    try:
        return response_model.model_validate(data)
    except ValidationError as e:
        raise AiParseError(f"schema_validation_error: {e}") from e


def call_json(
    *,
    purpose: str,
    response_model: type[T],
    messages: list[dict[str, str]],
    max_tokens: int = 1200,
    temperature: float = 0.2,
    timeout_s: int | None = None,
    max_prompt_chars: int = 220_000,
) -> tuple[T, AiMeta]:
    """Call OpenAI and parse into a Pydantic model.

    Per model, first with JSON-object enforcement, then plain text with
    best-effort extraction of the first {...} block. The output is always
    validated server-side against `response_model`.
    """
    client = _client(timeout_s=timeout_s)
    max_tokens = int(min(int(max_tokens), int(settings.openai_max_output_tokens_cap or max_tokens)))
    messages = _normalize_messages(messages, max_prompt_chars)

    def _strategy(model: str, json_mode: bool):
        def _run() -> T:
            content = _complete(
                client,
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=0.0 if json_mode else temperature,
                response_format={"type": "json_object"} if json_mode else None,
            )
            return _parse_json(content, response_model, allow_extract=not json_mode)

        return _run

    strategies = []
    for model in _models_to_try(purpose):
        strategies.append((f"{model}:json_object", _strategy(model, True)))
        strategies.append((f"{model}:text", _strategy(model, False)))

    try:
        outcome = run_chain(strategies, label=f"ai_json:{purpose}")
    except FallbackExhausted as e:
        raise AiExhausted(f"All models failed ({purpose})") from e
    except AiError:
        raise
    except Exception as e:
        raise AiUpstreamError(str(e) or "ai_json_failed") from e

    model, _, mode = outcome.strategy.partition(":")
    log.info("ai_call_ok", purpose=purpose, model=model, attempts=outcome.attempts, response_format=f"chat_{mode}")
    return outcome.value, AiMeta(
        purpose=purpose, model=model, attempts=outcome.attempts, used_response_format=f"chat_{mode}"
    )
