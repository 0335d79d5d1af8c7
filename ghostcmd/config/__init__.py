"""Configuration package."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .paths import GhostPaths
    from .settings import GhostSettings, ProviderConfig, load_settings

__all__ = ["GhostPaths", "GhostSettings", "ProviderConfig", "load_settings"]


def __getattr__(name: str) -> Any:
    if name in {"GhostSettings", "ProviderConfig", "load_settings"}:
        from . import settings

        return getattr(settings, name)
    if name == "GhostPaths":
        from .paths import GhostPaths

        return GhostPaths
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
