from __future__ import annotations

import json
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

LOG_LEVELS = ("error", "warn", "info", "debug")
LOG_LEVEL_PRIORITY = {level: idx for idx, level in enumerate(LOG_LEVELS)}
LOG_TYPE_SESSION = "session"


@dataclass(frozen=True)
class LogSelection:
    enabled_types: frozenset[str]
    enabled_levels: frozenset[str]


def resolve_debug_config(raw: Any) -> LogSelection:
    enabled_types: set[str] = set()
    enabled_levels: set[str] = set()

    def enable_all() -> None:
        enabled_types.add(LOG_TYPE_SESSION)
        enabled_levels.update(LOG_LEVELS)

    def enable_level(level: str) -> None:
        if level not in LOG_LEVEL_PRIORITY:
            return
        idx = LOG_LEVEL_PRIORITY[level]
        enabled_levels.update(LOG_LEVELS[: idx + 1])

    def handle_token(token: str) -> None:
        if token == "all":
            enable_all()
            return
        if token == LOG_TYPE_SESSION:
            enabled_types.add(LOG_TYPE_SESSION)
            return
        if token in LOG_LEVEL_PRIORITY:
            enable_level(token)

    if raw is None or raw is False:
        return LogSelection(frozenset(), frozenset())
    if raw is True:
        enable_all()
        return LogSelection(frozenset(enabled_types), frozenset(enabled_levels))
    if isinstance(raw, str):
        cleaned = raw.strip().lower()
        if cleaned in {"", "none", "null", "off", "false", "0", "no", "n"}:
            return LogSelection(frozenset(), frozenset())
        if cleaned in {"true", "1", "yes", "y", "on"}:
            enable_all()
            return LogSelection(frozenset(enabled_types), frozenset(enabled_levels))
        for token in cleaned.split(","):
            token = token.strip()
            if token:
                handle_token(token)
        return LogSelection(frozenset(enabled_types), frozenset(enabled_levels))
    if isinstance(raw, (list, tuple, set)):
        for item in raw:
            if not isinstance(item, str):
                continue
            cleaned = item.strip().lower()
            if not cleaned:
                continue
            if cleaned in {"true", "1", "yes", "y", "on", "all"}:
                enable_all()
                continue
            if cleaned in {"none", "null", "off", "false", "0", "no", "n"}:
                continue
            handle_token(cleaned)
        return LogSelection(frozenset(enabled_types), frozenset(enabled_levels))
    return LogSelection(frozenset(), frozenset())


class DebugLog:
    """Append plain-text debug entries when debug logging is enabled.

    Callers are responsible for never passing secret values; credential
    events carry lengths and success flags only.
    """

    def __init__(self, path: Path, debug_config: Any) -> None:
        self._path = path
        self.enabled = False
        self._enabled_types: set[str] = set()
        self._enabled_levels: set[str] = set()
        self.configure(debug_config)

    @property
    def path(self) -> Path:
        return self._path

    def configure(self, debug_config: Any) -> None:
        selection = resolve_debug_config(debug_config)
        self._enabled_types = set(selection.enabled_types)
        self._enabled_levels = set(selection.enabled_levels)
        self.enabled = bool(self._enabled_types or self._enabled_levels)

    def close(self) -> None:
        self.enabled = False

    def log_request(
        self,
        source: str,
        *,
        url: str,
        payload: Any,
        status: int | None,
        response: Any,
    ) -> None:
        if not self._session_enabled():
            return
        self._write(
            source,
            "backend.request",
            {"url": url, "status": status, "request": payload, "response": response},
            log_type=LOG_TYPE_SESSION,
        )

    def log_level(self, source: str, level: str, event: str, content: Any | None = None) -> None:
        if not self._level_enabled(level):
            return
        self._write(source, event, content, log_type=level)

    def log_exception(self, source: str, exc: BaseException) -> None:
        if not self._level_enabled("error"):
            return
        location = None
        tb = exc.__traceback__
        if tb is not None:
            frames = traceback.extract_tb(tb)
            if frames:
                last = frames[-1]
                location = f"{last.filename}:{last.lineno} in {last.name}"
        trace_text = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self.log_level(
            source,
            "error",
            "exception",
            {
                "type": type(exc).__name__,
                "message": str(exc),
                "location": location,
                "traceback": trace_text,
            },
        )

    def _session_enabled(self) -> bool:
        return self.enabled and LOG_TYPE_SESSION in self._enabled_types

    def _level_enabled(self, level: str) -> bool:
        return self.enabled and level in self._enabled_levels

    def _write(self, source: str, event: str, content: Any, *, log_type: str) -> None:
        if not self.enabled:
            return
        timestamp = datetime.now(timezone.utc).isoformat()
        entry = f"=== {timestamp} [{log_type}/{source}] {event} ===\n"
        body = self._format_content(content)
        if body:
            entry += body + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(entry + "\n")
        except OSError:
            self.close()

    def _format_content(self, content: Any) -> str:
        if content is None:
            return ""
        if isinstance(content, (dict, list)):
            return json.dumps(content, indent=2, ensure_ascii=False, default=str)
        return str(content).rstrip()


_ACTIVE_LOGGER: DebugLog | None = None


def set_active_logger(logger: DebugLog | None) -> None:
    global _ACTIVE_LOGGER
    _ACTIVE_LOGGER = logger


def log_request(
    source: str, *, url: str, payload: Any, status: int | None, response: Any
) -> None:
    logger = _ACTIVE_LOGGER
    if logger is not None:
        logger.log_request(source, url=url, payload=payload, status=status, response=response)


def log_exception(source: str, exc: BaseException) -> None:
    logger = _ACTIVE_LOGGER
    if logger is not None:
        logger.log_exception(source, exc)


def log_error(source: str, event: str, content: Any | None = None) -> None:
    logger = _ACTIVE_LOGGER
    if logger is not None:
        logger.log_level(source, "error", event, content)


def log_warn(source: str, event: str, content: Any | None = None) -> None:
    logger = _ACTIVE_LOGGER
    if logger is not None:
        logger.log_level(source, "warn", event, content)


def log_info(source: str, event: str, content: Any | None = None) -> None:
    logger = _ACTIVE_LOGGER
    if logger is not None:
        logger.log_level(source, "info", event, content)


def log_debug(source: str, event: str, content: Any | None = None) -> None:
    logger = _ACTIVE_LOGGER
    if logger is not None:
        logger.log_level(source, "debug", event, content)
