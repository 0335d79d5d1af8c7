"""Backend for OpenAI-compatible Chat Completions endpoints."""

from __future__ import annotations

from typing import Any

from ..config.settings import ProviderConfig
from ..core.errors import BackendError
from .http import DEFAULT_TIMEOUT_S, error_message, post_json, strip_code_fence


def build_payload(model: str, system_prompt: str, user_input: str) -> dict[str, Any]:
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_input},
        ],
    }


def call(
    config: ProviderConfig,
    api_key: str,
    user_input: str,
    system_prompt: str,
    *,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> str:
    payload = build_payload(config.model, system_prompt, user_input)
    response = post_json(
        config.id,
        config.base_url,
        payload,
        headers={"Authorization": f"Bearer {api_key}"},
        timeout=timeout,
    )
    message = error_message(response)
    if message:
        raise BackendError(config.id, message)
    choices = response.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0] if isinstance(choices[0], dict) else {}
    content = (first.get("message") or {}).get("content")
    return strip_code_fence(str(content or ""))
