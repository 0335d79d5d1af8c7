from __future__ import annotations

from typing import Any

from ..config.settings import ProviderConfig
from ..core.errors import BackendError
from .http import DEFAULT_TIMEOUT_S, error_message, post_json, strip_code_fence


def build_payload(system_prompt: str, user_input: str) -> dict[str, Any]:
    return {
        "system_instruction": {"parts": [{"text": system_prompt}]},
        "contents": [{"role": "user", "parts": [{"text": user_input}]}],
    }


def call(
    config: ProviderConfig,
    api_key: str,
    user_input: str,
    system_prompt: str,
    *,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> str:
    url = f"{config.base_url.rstrip('/')}/{config.model}:generateContent"
    response = post_json(
        config.id,
        url,
        build_payload(system_prompt, user_input),
        headers={"x-goog-api-key": api_key},
        timeout=timeout,
    )
    message = error_message(response)
    if message:
        raise BackendError(config.id, message)
    candidates = response.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    text = "".join(str(part.get("text") or "") for part in parts if isinstance(part, dict))
    return strip_code_fence(text)
