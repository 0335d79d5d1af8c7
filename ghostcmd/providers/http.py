from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Any, Mapping, Optional

from ..core.errors import BackendError
from ..core.session_log import log_exception, log_request

DEFAULT_TIMEOUT_S = 30.0


def post_json(
    provider: str,
    url: str,
    payload: dict[str, Any],
    *,
    headers: Mapping[str, str],
    timeout: float = DEFAULT_TIMEOUT_S,
) -> dict[str, Any]:
    """POST a JSON payload and return the decoded JSON object.

    Network failures, timeouts and non-JSON bodies raise BackendError. HTTP
    error statuses are decoded when possible so the caller can still read
    the provider's error envelope.
    """
    data = json.dumps(payload, ensure_ascii=True).encode("utf-8")
    request = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json", **headers},
        method="POST",
    )
    status: Optional[int] = None
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:  # noqa: S310
            status = response.status
            body = response.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as exc:
        status = exc.code
        body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
        log_request(provider, url=url, payload=payload, status=status, response=body)
        decoded = _decode(body)
        message = error_message(decoded) if decoded is not None else None
        raise BackendError(provider, message or f"HTTP {exc.code} {exc.reason}") from exc
    except urllib.error.URLError as exc:
        log_exception(provider, exc)
        raise BackendError(provider, f"request failed: {exc.reason}") from exc
    except TimeoutError as exc:
        log_exception(provider, exc)
        raise BackendError(provider, f"request timed out after {timeout:g}s") from exc
    except OSError as exc:
        log_exception(provider, exc)
        raise BackendError(provider, f"request failed: {exc}") from exc

    decoded = _decode(body)
    log_request(
        provider,
        url=url,
        payload=payload,
        status=status,
        response=decoded if decoded is not None else body,
    )
    if decoded is None:
        raise BackendError(provider, "response was not a JSON object")
    return decoded


def _decode(body: str) -> Optional[dict[str, Any]]:
    if not body:
        return None
    try:
        value = json.loads(body)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def error_message(payload: Mapping[str, Any]) -> Optional[str]:
    """Return the provider-reported error message, if any."""
    error = payload.get("error")
    if not error:
        return None
    if isinstance(error, dict):
        message = error.get("message") or error.get("type") or error.get("status")
        return str(message) if message else json.dumps(error)
    return str(error)


def strip_code_fence(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if line.strip()]
    if lines and lines[0].lstrip().startswith("```"):
        lines = lines[1:]
    if lines and lines[-1].strip() == "```":
        lines = lines[:-1]
    return "\n".join(lines)
