"""Backend for a local Ollama server; no API key is sent."""

from __future__ import annotations

from typing import Any

from ..config.settings import ProviderConfig
from ..core.errors import BackendError
from .http import DEFAULT_TIMEOUT_S, error_message, post_json, strip_code_fence


def build_payload(model: str, system_prompt: str, user_input: str) -> dict[str, Any]:
    return {
        "model": model,
        "stream": False,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_input},
        ],
    }


def call(
    config: ProviderConfig,
    api_key: str,  # noqa: ARG001
    user_input: str,
    system_prompt: str,
    *,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> str:
    response = post_json(
        config.id,
        config.base_url,
        build_payload(config.model, system_prompt, user_input),
        headers={},
        timeout=timeout,
    )
    message = error_message(response)
    if message:
        raise BackendError(config.id, message)
    content = (response.get("message") or {}).get("content")
    return strip_code_fence(str(content or ""))
