from __future__ import annotations

import os
import platform
import re
from pathlib import Path
from typing import Callable, Mapping, Optional

from .config.resources import read_prompt_text

SYSTEM_PROMPT_NAME = "system.md"
FALLBACK_PROMPT = "Complete the user intent as a single-line shell command. Output only the command."


def describe_os() -> str:
    system = platform.system()
    if system == "Darwin":
        release = platform.mac_ver()[0] or "unknown"
        return f"macOS {release}"
    return system or "unknown"


class PromptBuilder:
    """Builds the system prompt sent with every suggestion request."""

    def __init__(
        self,
        *,
        environ: Optional[Mapping[str, str]] = None,
        cwd_provider: Optional[Callable[[], Path]] = None,
        template: Optional[str] = None,
    ) -> None:
        self._environ = os.environ if environ is None else environ
        self._cwd_provider = cwd_provider or Path.cwd
        self._template = template if template is not None else read_prompt_text(SYSTEM_PROMPT_NAME)
        self._os = describe_os()

    def context(self) -> dict[str, str]:
        shell = self._environ.get("SHELL") or "sh"
        return {
            "os": self._os,
            "shell": Path(shell).name,
            "cwd": str(self._cwd_provider()),
        }

    def build(self) -> str:
        template = self._template or FALLBACK_PROMPT
        values = self.context()
        # only known keys are substituted; braces inside examples survive
        return re.sub(
            r"{(os|shell|cwd)}",
            lambda match: values[match.group(1)],
            template,
        ).strip()
