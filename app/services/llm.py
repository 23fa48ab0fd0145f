from __future__ import annotations

import json
import logging
import os
import time
from functools import lru_cache
from typing import Any

from openai import OpenAI

logger = logging.getLogger(__name__)

DEFAULT_REQUIREMENTS_MODEL = "gpt-4.1-mini"


class LLMError(RuntimeError):
    def __init__(self, message: str, *, code: str = "llm_unavailable"):
        super().__init__(message)
        self.code = code


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _looks_like_placeholder(value: str) -> bool:
    lower = value.strip().lower()
    return lower.startswith("your_") or lower.startswith("replace_") or lower in {"changeme", "todo"}


def requirements_llm_enabled() -> bool:
    if not _env_bool("REQUIREMENTS_LLM_ENABLED", True):
        return False
    api_key = (os.getenv("OPENAI_API_KEY") or "").strip()
    if not api_key or _looks_like_placeholder(api_key):
        return False
    return True


def _timeout_s() -> float:
    try:
        return float(os.getenv("REQUIREMENTS_LLM_TIMEOUT_S", "18"))
    except ValueError:
        return 18.0


@lru_cache(maxsize=1)
def _client() -> OpenAI:
    # Single attempt: enrichment is optional and must not stall the request.
    return OpenAI(
        api_key=(os.getenv("OPENAI_API_KEY") or "").strip(),
        base_url=(os.getenv("OPENAI_BASE_URL") or None),
        timeout=_timeout_s(),
        max_retries=0,
    )


def requirements_model() -> str:
    return (os.getenv("OPENAI_REQUIREMENTS_MODEL") or DEFAULT_REQUIREMENTS_MODEL).strip()


def json_completion(
    *,
    system_prompt: str,
    user_prompt: str,
    json_schema: dict[str, Any] | None = None,
    schema_name: str = "response",
    temperature: float = 0.1,
    max_output_tokens: int = 1400,
) -> dict[str, Any]:
    """Run one JSON chat completion and return the parsed object.

    Raises LLMError when the client is not configured, the call fails or the
    reply is not a JSON object. Callers decide how to degrade.
    """
    if not requirements_llm_enabled():
        raise LLMError("OpenAI is not configured for requirement enrichment.", code="llm_disabled")

    if json_schema is not None:
        response_format: dict[str, Any] = {
            "type": "json_schema",
            "json_schema": {"name": schema_name, "strict": True, "schema": json_schema},
        }
    else:
        response_format = {"type": "json_object"}

    model = requirements_model()
    started = time.perf_counter()
    try:
        response = _client().chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            response_format=response_format,
            max_tokens=max_output_tokens,
        )
    except Exception as exc:  # noqa: BLE001 - surfaced as LLMError for the caller
        raise LLMError(f"completion failed: {exc}", code="llm_exception") from exc

    latency_ms = int((time.perf_counter() - started) * 1000)
    content = response.choices[0].message.content if response.choices else ""
    if not content:
        raise LLMError("empty completion", code="empty_response")

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as exc:
        raise LLMError(f"unparsable completion: {exc}", code="invalid_json") from exc
    if not isinstance(parsed, dict):
        raise LLMError("completion is not a JSON object", code="invalid_schema")

    logger.info("llm_json_completion model=%s latency_ms=%s prompt_len=%s", model, latency_ms, len(user_prompt))
    return parsed
