from __future__ import annotations

import getpass
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Tuple

from rich.console import Console
from rich.panel import Panel

from ..config.settings import GhostSettings, ProviderConfig, key_slot, normalize_provider
from .errors import CredentialMissing
from .sanitize import sanitize
from .session_log import log_debug

PROVIDER_PLACEHOLDER = "${provider}"
KEY_COMMAND_TIMEOUT_S = 10.0
KEYCHAIN_TIMEOUT_S = 5.0


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str


CommandRunner = Callable[[str], CommandResult]
SecretLookup = Callable[[str], Optional[str]]
MissingKeyHandler = Callable[[str, Optional[ProviderConfig]], None]


class CredentialCache:
    """Process-wide credential slots keyed by environment-variable name.

    Lookups fall back to the process environment so an exported key always
    wins. Resolved values stay in memory and are never exported.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self._environ = os.environ if environ is None else environ
        self._values: Dict[str, str] = {}

    def get(self, slot: str) -> str:
        value = self._values.get(slot)
        if value:
            return value
        return str(self._environ.get(slot, "") or "")

    def set(self, slot: str, value: str) -> None:
        self._values[slot] = value

    def clear(self) -> None:
        self._values.clear()


DEFAULT_CACHE = CredentialCache()


def expand_provider(template: str, provider_id: str) -> str:
    return template.replace(PROVIDER_PLACEHOLDER, normalize_provider(provider_id))


def run_shell_command(command: str) -> CommandResult:
    try:
        proc = subprocess.run(
            command,
            shell=True,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            timeout=KEY_COMMAND_TIMEOUT_S,
            check=False,
        )
    except subprocess.TimeoutExpired:
        return CommandResult(returncode=124, stdout="")
    except OSError:
        return CommandResult(returncode=127, stdout="")
    return CommandResult(returncode=proc.returncode, stdout=proc.stdout or "")


def lookup_secret_store(entry_name: str) -> Optional[str]:
    """Read a generic password from the macOS Keychain or libsecret."""
    user = getpass.getuser()
    if sys.platform == "darwin":
        args = ["security", "find-generic-password", "-s", entry_name, "-a", user, "-w"]
    elif shutil.which("secret-tool"):
        args = ["secret-tool", "lookup", "service", entry_name, "account", user]
    else:
        return None
    try:
        proc = subprocess.run(
            args,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=KEYCHAIN_TIMEOUT_S,
            check=False,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    if proc.returncode != 0:
        return None
    return proc.stdout


def print_key_help(
    console: Console,
    settings: GhostSettings,
    provider_id: str,
    config: Optional[ProviderConfig],
) -> None:
    slot = key_slot(provider_id)
    entry = expand_provider(settings.keychain_name, provider_id)
    example = (config.key_example if config else "") or "..."
    lines = [
        f"[bold]{slot}[/bold] not found.",
        "",
        "Set it via environment variable:",
        f"  export {slot}='{example}'",
        "",
        "Or provide a command that prints it:",
        "  export GHOSTCMD_API_KEY_COMMAND='pass show ${provider}/api-key'",
        "",
        "Or store it in the system keychain:",
    ]
    if sys.platform == "darwin":
        lines.append(f"  security add-generic-password -s '{entry}' -a \"$USER\" -w '{example}'")
    else:
        lines.append(
            f"  secret-tool store --label='{entry}' service '{entry}' account \"$USER\""
        )
    if config is not None:
        lines.extend(
            [
                "",
                "Current configuration:",
                f"  Model: {config.model}",
                f"  Base URL: {config.base_url}",
            ]
        )
    title = f"ghostcmd · {config.display_name if config else provider_id}"
    console.print(Panel("\n".join(lines), title=title, border_style="yellow"))


class CredentialResolver:
    """Resolve a provider secret through an ordered chain of sources.

    Order: local providers need nothing, then the cached/exported slot,
    then the custom key command, then the platform secret store. Failures
    of one source fall through to the next; only exhausting every source
    is reported.
    """

    def __init__(
        self,
        settings: GhostSettings,
        *,
        cache: Optional[CredentialCache] = None,
        runner: Optional[CommandRunner] = None,
        secret_lookup: Optional[SecretLookup] = None,
        on_missing: Optional[MissingKeyHandler] = None,
        console: Optional[Console] = None,
    ) -> None:
        self.settings = settings
        self.cache = cache if cache is not None else DEFAULT_CACHE
        self._runner = runner or run_shell_command
        self._secret_lookup = secret_lookup or lookup_secret_store
        self._console = console or Console(stderr=True)
        self._on_missing = on_missing or self._print_help

    def resolve(self, provider_id: str) -> Tuple[str, bool]:
        provider = normalize_provider(provider_id)
        slot = key_slot(provider)
        config = self.settings.providers.get(provider)

        if config is not None and not config.requires_key:
            return "", True

        cached = self.cache.get(slot)
        if cached:
            return cached, True

        secret = self._from_command(provider)
        if secret:
            self.cache.set(slot, secret)
            return secret, True

        secret = self._from_secret_store(provider)
        if secret:
            self.cache.set(slot, secret)
            return secret, True

        log_debug("credentials", "credential.missing", {"provider": provider, "slot": slot})
        self._on_missing(provider, config)
        return "", False

    def require(self, provider_id: str) -> str:
        secret, found = self.resolve(provider_id)
        if not found:
            provider = normalize_provider(provider_id)
            raise CredentialMissing(provider, key_slot(provider))
        return secret

    def _from_command(self, provider: str) -> str:
        template = self.settings.api_key_command
        if not template:
            return ""
        command = expand_provider(template, provider)
        result = self._runner(command)
        secret = sanitize(result.stdout) if result.returncode == 0 else ""
        log_debug(
            "credentials",
            "credential.command",
            {
                "command": command,
                "exit_status": result.returncode,
                "result": "success" if secret else "failure",
                "length": len(secret),
            },
        )
        return secret

    def _from_secret_store(self, provider: str) -> str:
        entry = expand_provider(self.settings.keychain_name, provider)
        raw = self._secret_lookup(entry)
        secret = sanitize(raw or "")
        log_debug(
            "credentials",
            "credential.keychain",
            {
                "entry": entry,
                "result": "success" if secret else "failure",
                "length": len(secret),
            },
        )
        return secret

    def _print_help(self, provider: str, config: Optional[ProviderConfig]) -> None:
        print_key_help(self._console, self.settings, provider, config)
