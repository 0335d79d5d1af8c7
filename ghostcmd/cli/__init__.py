"""Command-line entry points and the prompt_toolkit line-editor adapter."""

from .adapter import GhostTextProcessor, PromptToolkitAdapter, parse_keys
from .app import GhostCmdCLI, main

__all__ = [
    "GhostCmdCLI",
    "GhostTextProcessor",
    "PromptToolkitAdapter",
    "main",
    "parse_keys",
]
