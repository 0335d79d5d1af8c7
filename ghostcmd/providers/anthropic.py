from __future__ import annotations

from typing import Any

from ..config.settings import ProviderConfig
from ..core.errors import BackendError
from .http import DEFAULT_TIMEOUT_S, error_message, post_json, strip_code_fence

ANTHROPIC_VERSION = "2023-06-01"
MAX_TOKENS = 256


def build_payload(model: str, system_prompt: str, user_input: str) -> dict[str, Any]:
    return {
        "model": model,
        "max_tokens": MAX_TOKENS,
        "system": system_prompt,
        "messages": [{"role": "user", "content": user_input}],
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
        headers={"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION},
        timeout=timeout,
    )
    message = error_message(response)
    if message:
        raise BackendError(config.id, message)
    blocks = response.get("content")
    if not isinstance(blocks, list):
        return ""
    for block in blocks:
        if isinstance(block, dict) and block.get("type") == "text":
            return strip_code_fence(str(block.get("text") or ""))
    return ""
