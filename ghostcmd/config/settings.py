from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from rich.console import Console

from ..core.errors import ConfigError
from .paths import GhostPaths

ENV_PREFIX = "GHOSTCMD_"
DEFAULT_PROVIDER = "anthropic"
DEFAULT_KEYCHAIN_NAME = "${provider}-api-key"
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_TICK_S = 0.1
DEFAULT_TRIGGER_KEY = "c-space"
DEFAULT_ACCEPT_KEYS: Tuple[str, ...] = ("tab", "right")


@dataclass(frozen=True)
class ProviderConfig:
    id: str
    display_name: str
    model: str
    base_url: str
    requires_key: bool = True
    key_example: str = ""

    @property
    def key_slot(self) -> str:
        return key_slot(self.id)


PROVIDER_DEFAULTS: Dict[str, ProviderConfig] = {
    "anthropic": ProviderConfig(
        id="anthropic",
        display_name="Anthropic",
        model="claude-haiku-4-5-20251001",
        base_url="https://api.anthropic.com/v1/messages",
        key_example="sk-ant-...",
    ),
    "openai": ProviderConfig(
        id="openai",
        display_name="OpenAI",
        model="gpt-4o-mini",
        base_url="https://api.openai.com/v1/chat/completions",
        key_example="sk-...",
    ),
    "deepseek": ProviderConfig(
        id="deepseek",
        display_name="DeepSeek",
        model="deepseek-chat",
        base_url="https://api.deepseek.com/chat/completions",
        key_example="sk-...",
    ),
    "groq": ProviderConfig(
        id="groq",
        display_name="Groq",
        model="llama-3.3-70b-versatile",
        base_url="https://api.groq.com/openai/v1/chat/completions",
        key_example="gsk_...",
    ),
    "cerebras": ProviderConfig(
        id="cerebras",
        display_name="Cerebras",
        model="llama-3.3-70b",
        base_url="https://api.cerebras.ai/v1/chat/completions",
        key_example="csk-...",
    ),
    "nvidia": ProviderConfig(
        id="nvidia",
        display_name="NVIDIA NIM",
        model="meta/llama-3.3-70b-instruct",
        base_url="https://integrate.api.nvidia.com/v1/chat/completions",
        key_example="nvapi-...",
    ),
    "openrouter": ProviderConfig(
        id="openrouter",
        display_name="OpenRouter",
        model="anthropic/claude-haiku-4.5",
        base_url="https://openrouter.ai/api/v1/chat/completions",
        key_example="sk-or-...",
    ),
    "synthetic": ProviderConfig(
        id="synthetic",
        display_name="Synthetic",
        model="hf:moonshotai/Kimi-K2.5",
        base_url="https://api.synthetic.new/openai/v1/chat/completions",
        key_example="syn_...",
    ),
    "gemini": ProviderConfig(
        id="gemini",
        display_name="Google Gemini",
        model="gemini-2.5-flash",
        base_url="https://generativelanguage.googleapis.com/v1beta/models",
        key_example="AIza...",
    ),
    "ollama": ProviderConfig(
        id="ollama",
        display_name="Ollama",
        model="llama3.2",
        base_url="http://localhost:11434/api/chat",
        requires_key=False,
    ),
}


def normalize_provider(provider_id: str) -> str:
    return (provider_id or "").strip().lower()


def key_slot(provider_id: str) -> str:
    return f"{normalize_provider(provider_id).upper()}_API_KEY"


@dataclass(frozen=True)
class GhostSettings:
    """Immutable runtime configuration, built once at startup."""

    provider: str = DEFAULT_PROVIDER
    providers: Mapping[str, ProviderConfig] = field(
        default_factory=lambda: dict(PROVIDER_DEFAULTS)
    )
    api_key_command: str = ""
    keychain_name: str = DEFAULT_KEYCHAIN_NAME
    request_timeout: float = DEFAULT_TIMEOUT_S
    tick_interval: float = DEFAULT_TICK_S
    trigger_key: str = DEFAULT_TRIGGER_KEY
    accept_keys: Tuple[str, ...] = DEFAULT_ACCEPT_KEYS
    debug: Any = None
    log_path: Optional[Path] = None
    paths: GhostPaths = field(default_factory=GhostPaths)

    @property
    def resolved_log_path(self) -> Path:
        return self.log_path or self.paths.default_log_file

    def provider_config(self, provider_id: Optional[str] = None) -> ProviderConfig:
        name = normalize_provider(provider_id or self.provider)
        config = self.providers.get(name)
        if config is None:
            known = ", ".join(sorted(self.providers))
            raise ConfigError(f"Unknown provider '{name}'. Known providers: {known}.")
        return config

    def with_provider(self, provider_id: str) -> "GhostSettings":
        return replace(self, provider=normalize_provider(provider_id))


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    *,
    console: Optional[Console] = None,
) -> GhostSettings:
    """Build settings from GHOSTCMD_* environment variables."""
    env = os.environ if environ is None else environ
    console = console or Console(stderr=True)

    def get(name: str) -> str:
        return str(env.get(ENV_PREFIX + name, "") or "").strip()

    def get_float(name: str, default: float) -> float:
        raw = get(name)
        if not raw:
            return default
        try:
            value = float(raw)
        except ValueError:
            value = -1.0
        if value <= 0:
            console.print(
                f"[yellow]Ignoring {ENV_PREFIX}{name}={raw!r}: expected a positive number.[/yellow]"
            )
            return default
        return value

    providers: Dict[str, ProviderConfig] = {}
    for name, base in PROVIDER_DEFAULTS.items():
        prefix = name.upper()
        model = get(f"{prefix}_MODEL") or base.model
        base_url = get(f"{prefix}_BASE_URL") or base.base_url
        providers[name] = replace(base, model=model, base_url=base_url)

    accept_raw = get("ACCEPT_KEYS")
    accept_keys = tuple(
        key.strip() for key in accept_raw.split(",") if key.strip()
    ) or DEFAULT_ACCEPT_KEYS
    log_raw = get("LOG")
    return GhostSettings(
        provider=normalize_provider(get("PROVIDER") or DEFAULT_PROVIDER),
        providers=providers,
        api_key_command=get("API_KEY_COMMAND"),
        keychain_name=get("KEYCHAIN_NAME") or DEFAULT_KEYCHAIN_NAME,
        request_timeout=get_float("TIMEOUT", DEFAULT_TIMEOUT_S),
        tick_interval=get_float("TICK", DEFAULT_TICK_S),
        trigger_key=get("TRIGGER_KEY") or DEFAULT_TRIGGER_KEY,
        accept_keys=accept_keys,
        debug=get("DEBUG") or None,
        log_path=Path(log_raw).expanduser() if log_raw else None,
    )
