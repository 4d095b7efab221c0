"""Parsing of chat-completion response bodies (OpenAI-compatible providers)."""

import json

from pydantic import BaseModel

from .models import TokenUsage


class Completion(BaseModel):
    """Raw result of one provider exchange."""

    body: bytes = b""
    status_code: int = 0
    content: str = ""
    usage: TokenUsage | None = None
    response_model: str = ""
    request_id: str = ""
    latency_ms: int = 0


def _safe_json(text) -> dict | None:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _message_content(data: dict) -> str:
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content")
    if isinstance(content, list):
        # Some providers return content parts instead of a plain string
        return "".join(part.get("text", "") for part in content if isinstance(part, dict))
    return content or ""


def parse_usage(data: dict) -> TokenUsage | None:
    usage = data.get("usage")
    if not isinstance(usage, dict) or "prompt_tokens" not in usage:
        return None
    return TokenUsage(
        input_tokens=usage.get("prompt_tokens") or 0,
        output_tokens=usage.get("completion_tokens") or 0,
    )


def parse_completion(body: bytes, status_code: int, latency_ms: int = 0) -> Completion:
    """Parse a non-streaming chat completion. Unparseable bodies give empty content."""
    completion = Completion(body=body, status_code=status_code, latency_ms=latency_ms)
    data = _safe_json(body)
    if data:
        completion.content = _message_content(data)
        completion.usage = parse_usage(data)
        completion.response_model = data.get("model", "") or ""
        completion.request_id = data.get("id", "") or ""
    return completion
