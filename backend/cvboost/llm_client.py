from __future__ import annotations

import json
import logging
import os
import re
import time
from typing import Any

import httpx

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o"
DEFAULT_EXTRACT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_SECONDS = 60.0

logger = logging.getLogger("cvboost.llm")


class LLMError(RuntimeError):
    """Base class for every failure talking to the chat-completions API."""


class LLMNotConfiguredError(LLMError):
    pass


class LLMRequestError(LLMError):
    pass


class LLMResponseError(LLMError):
    pass


def get_api_key() -> str:
    return os.getenv("OPENAI_API_KEY", "").strip()


def is_configured() -> bool:
    return bool(get_api_key())


def get_default_model() -> str:
    return os.getenv("CVBOOST_LLM_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL


def get_extract_model() -> str:
    return os.getenv("CVBOOST_LLM_EXTRACT_MODEL", DEFAULT_EXTRACT_MODEL).strip() or DEFAULT_EXTRACT_MODEL


def get_base_url() -> str:
    return (os.getenv("OPENAI_BASE_URL", DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL).rstrip("/")


def get_timeout_seconds() -> float:
    raw = os.getenv("CVBOOST_LLM_TIMEOUT_SECONDS", "").strip()
    try:
        value = float(raw) if raw else DEFAULT_TIMEOUT_SECONDS
    except ValueError:
        value = DEFAULT_TIMEOUT_SECONDS
    return max(1.0, value)


def _log_call(*, model: str, status: int | None, duration_ms: int, outcome: str) -> None:
    logger.info(
        json.dumps(
            {
                "event": "llm_call",
                "model": model,
                "status": status,
                "duration_ms": duration_ms,
                "outcome": outcome,
            },
            ensure_ascii=False,
        )
    )


def chat_completion(
    messages: list[dict[str, str]],
    *,
    model: str | None = None,
    temperature: float = 0.7,
    max_tokens: int | None = None,
    json_mode: bool = False,
    transport: httpx.BaseTransport | None = None,
) -> str:
    api_key = get_api_key()
    if not api_key:
        raise LLMNotConfiguredError("Missing required environment variable: OPENAI_API_KEY")

    selected_model = model or get_default_model()
    body: dict[str, Any] = {
        "model": selected_model,
        "messages": messages,
        "temperature": temperature,
    }
    if max_tokens is not None:
        body["max_tokens"] = int(max_tokens)
    if json_mode:
        body["response_format"] = {"type": "json_object"}

    started_at = time.perf_counter()
    status: int | None = None
    try:
        with httpx.Client(timeout=get_timeout_seconds(), transport=transport) as client:
            response = client.post(
                f"{get_base_url()}/chat/completions",
                headers={"Authorization": f"Bearer {api_key}"},
                json=body,
            )
            status = response.status_code
            response.raise_for_status()
            payload = response.json()
    except httpx.HTTPStatusError as exc:
        _log_call(model=selected_model, status=status, duration_ms=int((time.perf_counter() - started_at) * 1000), outcome="http_error")
        raise LLMRequestError(f"LLM request failed with status {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        _log_call(model=selected_model, status=status, duration_ms=int((time.perf_counter() - started_at) * 1000), outcome="transport_error")
        raise LLMRequestError(f"LLM request failed: {exc}") from exc
    except ValueError as exc:
        _log_call(model=selected_model, status=status, duration_ms=int((time.perf_counter() - started_at) * 1000), outcome="invalid_json")
        raise LLMResponseError("LLM response body is not JSON") from exc

    _log_call(model=selected_model, status=status, duration_ms=int((time.perf_counter() - started_at) * 1000), outcome="ok")

    choices = payload.get("choices") if isinstance(payload, dict) else None
    if not isinstance(choices, list) or not choices:
        raise LLMResponseError("LLM returned empty choices")

    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    return str(content or "").strip()


def extract_json_object(raw: str) -> dict[str, Any]:
    content = (raw or "").strip()
    if content.startswith("```"):
        content = re.sub(r"^```(?:json)?", "", content, flags=re.IGNORECASE).strip()
        content = re.sub(r"```$", "", content).strip()

    start = content.find("{")
    end = content.rfind("}")
    if start < 0 or end <= start:
        raise LLMResponseError("No JSON object found in LLM response")

    try:
        parsed = json.loads(content[start : end + 1])
    except json.JSONDecodeError as exc:
        raise LLMResponseError("LLM response is not valid JSON") from exc

    if not isinstance(parsed, dict):
        raise LLMResponseError("LLM response is not a JSON object")
    return parsed
