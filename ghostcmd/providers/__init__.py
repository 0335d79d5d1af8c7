"""Provider backends and the dispatcher that selects between them."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Dict, Mapping, Optional

from ..config.settings import GhostSettings, ProviderConfig, normalize_provider
from ..core.errors import ConfigError
from . import anthropic, gemini, ollama, openai_compat

if TYPE_CHECKING:
    from ..core.credentials import CredentialResolver

Backend = Callable[..., str]

BACKENDS: Dict[str, Backend] = {
    "anthropic": anthropic.call,
    "openai": openai_compat.call,
    "deepseek": openai_compat.call,
    "groq": openai_compat.call,
    "cerebras": openai_compat.call,
    "nvidia": openai_compat.call,
    "openrouter": openai_compat.call,
    "synthetic": openai_compat.call,
    "gemini": gemini.call,
    "ollama": ollama.call,
}


class ProviderDispatcher:
    """Route a request to the backend registered for a provider id."""

    def __init__(
        self,
        settings: GhostSettings,
        resolver: "CredentialResolver",
        backends: Optional[Mapping[str, Backend]] = None,
    ) -> None:
        self.settings = settings
        self.resolver = resolver
        self._backends = dict(BACKENDS if backends is None else backends)

    def backend_for(self, provider_id: str) -> Backend:
        name = normalize_provider(provider_id)
        backend = self._backends.get(name)
        if backend is None:
            raise ConfigError(f"No backend registered for provider '{name}'.")
        return backend

    def dispatch(self, provider_id: str, user_input: str, system_prompt: str) -> str:
        config: ProviderConfig = self.settings.provider_config(provider_id)
        backend = self.backend_for(config.id)
        api_key = self.resolver.require(config.id) if config.requires_key else ""
        return backend(
            config,
            api_key,
            user_input,
            system_prompt,
            timeout=self.settings.request_timeout,
        )


__all__ = ["BACKENDS", "Backend", "ProviderDispatcher"]
