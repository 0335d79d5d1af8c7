from __future__ import annotations

import argparse
import asyncio
import errno
import os
import subprocess
import sys
import threading
from contextlib import suppress
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.application import run_in_terminal, set_app
from prompt_toolkit.filters import is_done
from prompt_toolkit.history import FileHistory, InMemoryHistory
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout.processors import ConditionalProcessor
from prompt_toolkit.styles import Style
from rich.console import Console

from ..config.settings import GhostSettings, ProviderConfig, load_settings
from ..core.credentials import CredentialResolver, print_key_help
from ..core.engine import SuggestionEngine, abandon_task, run_detached
from ..core.errors import BackendError, ConfigError, EmptyResult, GhostCmdError
from ..core.sanitize import sanitize
from ..core.session_log import DebugLog, log_exception, log_info, set_active_logger
from ..core.wait import RequestStatus
from ..prompts import PromptBuilder
from ..providers import ProviderDispatcher
from .adapter import GhostTextProcessor, PromptToolkitAdapter
from .terminal import cbreak, drain_keys, poll_key

EXIT_CODE_OK = 0
EXIT_CODE_FAILED = 1
EXIT_CODE_CONFIG = 2
EXIT_CODE_CANCELLED = 130
KEY_POLL_INTERVAL_S = 0.05

PROMPT_STYLE = Style.from_dict(
    {
        "ghost": "#808080 italic",
        "prompt": "ansicyan bold",
        "bottom-toolbar": "noreverse #808080",
    }
)


class GhostCmdCLI:
    """Interactive shell prompt with on-demand AI command suggestions."""

    def __init__(
        self,
        settings: Optional[GhostSettings] = None,
        console: Optional[Console] = None,
        *,
        err_console: Optional[Console] = None,
        resolver: Optional[CredentialResolver] = None,
        dispatcher: Optional[ProviderDispatcher] = None,
        prompt_builder: Optional[PromptBuilder] = None,
    ) -> None:
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)
        self.settings = settings or load_settings(console=self.err_console)
        self.debug_log = DebugLog(self.settings.resolved_log_path, self.settings.debug)
        set_active_logger(self.debug_log)
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.resolver = resolver or CredentialResolver(
            self.settings,
            on_missing=self._show_key_help,
            console=self.err_console,
        )
        self.dispatcher = dispatcher or ProviderDispatcher(self.settings, self.resolver)
        self.session: PromptSession | None = None
        self.adapter: PromptToolkitAdapter | None = None
        self.engine: SuggestionEngine | None = None
        self._app_running = False

    def build_session(self) -> PromptSession:
        """Create the prompt session and wire the engine into it."""
        bindings = KeyBindings()
        adapter = PromptToolkitAdapter(
            bindings,
            trigger_key=self.settings.trigger_key,
            accept_keys=self.settings.accept_keys,
        )
        session = PromptSession(
            history=self._history(),
            key_bindings=bindings,
            input_processors=[
                ConditionalProcessor(GhostTextProcessor(adapter), filter=~is_done),
            ],
            bottom_toolbar=adapter.toolbar_text,
            style=PROMPT_STYLE,
        )
        engine = SuggestionEngine(
            self.settings,
            adapter,
            self.resolver,
            self.dispatcher,
            self.prompt_builder,
        )
        adapter.attach(session.app, session.default_buffer)
        try:
            adapter.connect(engine)
        except ValueError as exc:
            raise ConfigError(f"Invalid key binding: {exc}") from exc
        self.session = session
        self.adapter = adapter
        self.engine = engine
        return session

    async def run(self) -> int:
        try:
            session = self.session or self.build_session()
            self.settings.provider_config()
        except ConfigError as exc:
            self.err_console.print(f"[red]{exc}[/red]")
            return EXIT_CODE_CONFIG
        self._print_banner()
        while True:
            self._app_running = True
            try:
                line = await session.prompt_async([("class:prompt", "❯ ")])
            except KeyboardInterrupt:
                self._finish_line()
                continue
            except EOFError:
                self._finish_line()
                break
            self._finish_line()
            command = line.strip()
            if not command:
                continue
            if command in {"exit", "quit"}:
                break
            self._execute(command)
        return EXIT_CODE_OK

    async def run_prompt(self, text: str) -> int:
        """Print a single suggestion for ``text``; any key cancels."""
        provider = self.settings.provider
        try:
            self.settings.provider_config(provider)
        except ConfigError as exc:
            self.err_console.print(f"[red]{exc}[/red]")
            return EXIT_CODE_CONFIG
        if not text.strip():
            self.err_console.print("[yellow]Nothing to complete.[/yellow]")
            return EXIT_CODE_FAILED
        _, found = self.resolver.resolve(provider)
        if not found:
            return EXIT_CODE_FAILED

        stop_event = threading.Event()
        request = run_detached(
            self.dispatcher.dispatch, provider, text, self.prompt_builder.build()
        )
        key_task = asyncio.create_task(self._wait_for_keypress(stop_event))
        loop = asyncio.get_running_loop()
        timeout = self.settings.request_timeout
        deadline = loop.time() + timeout + self.settings.tick_interval
        cancelled = False
        async with RequestStatus(self.err_console, provider, timeout):
            try:
                pending = {request, key_task}
                while request in pending and not cancelled:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        break
                    done, pending = await asyncio.wait(
                        pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                    )
                    if key_task in done and key_task.result():
                        cancelled = True
            finally:
                stop_event.set()
                await self._stop_key_listener(key_task)

        if cancelled:
            abandon_task(request)
            log_info("cli", "request.cancelled", {"provider": provider})
            self.err_console.print("[yellow]Cancelled.[/yellow]")
            return EXIT_CODE_CANCELLED
        if not request.done():
            abandon_task(request)
            self._print_error(str(BackendError(provider, "request timed out")))
            return EXIT_CODE_FAILED
        try:
            command = sanitize(request.result())
        except GhostCmdError as exc:
            log_exception("cli", exc)
            self._print_error(str(exc))
            return EXIT_CODE_FAILED
        except Exception as exc:  # noqa: BLE001
            log_exception("cli", exc)
            self._print_error(str(BackendError(provider, str(exc) or type(exc).__name__)))
            return EXIT_CODE_FAILED
        if not command:
            self._print_error(str(EmptyResult(provider)), style="yellow")
            return EXIT_CODE_FAILED
        self.console.print(command, markup=False, highlight=False, soft_wrap=True)
        return EXIT_CODE_OK

    def _print_error(self, message: str, style: str = "red") -> None:
        self.err_console.print(f"ghostcmd: {message}", style=style, markup=False, highlight=False)

    async def _wait_for_keypress(self, stop_event: threading.Event) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self._read_keypress(stop_event))

    def _read_keypress(self, stop_event: threading.Event) -> bool:
        if not sys.stdin.isatty():
            return False
        try:
            with cbreak(sys.stdin.fileno()) as active:
                if not active:
                    return False
                while not stop_event.is_set():
                    if poll_key(KEY_POLL_INTERVAL_S) is None:
                        continue
                    drain_keys()
                    return True
        except (OSError, ValueError) as exc:
            log_exception("cli", exc)
        return False

    async def _stop_key_listener(self, key_task: asyncio.Task) -> None:
        if key_task.done():
            return
        try:
            await asyncio.wait_for(key_task, timeout=0.5)
        except asyncio.TimeoutError:
            key_task.cancel()
            with suppress(asyncio.CancelledError):
                await key_task

    def _finish_line(self) -> None:
        self._app_running = False
        if self.engine is not None:
            self.engine.on_line_finished()
        if self.adapter is not None:
            self.adapter.clear_notice()

    def _execute(self, command: str) -> int:
        shell = os.environ.get("SHELL") or "/bin/sh"
        log_info("cli", "command.run", {"command": command})
        try:
            proc = subprocess.run([shell, "-c", command], check=False)
        except OSError as exc:
            log_exception("cli", exc)
            self.err_console.print(f"[red]Failed to run {shell}: {exc}[/red]")
            return 127
        return proc.returncode

    def _history(self):  # type: ignore[no-untyped-def]
        path = self.settings.paths.history_file
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            return InMemoryHistory()
        return FileHistory(str(path))

    def _show_key_help(self, provider: str, config: Optional[ProviderConfig]) -> None:
        def show() -> None:
            print_key_help(self.err_console, self.settings, provider, config)

        app = self.session.app if self.session is not None else None
        if not self._app_running or app is None or app.loop is None:
            show()
            return

        def show_above_prompt() -> None:
            with set_app(app):
                run_in_terminal(show)

        # credential lookup runs on a worker thread while the prompt is live
        app.loop.call_soon_threadsafe(show_above_prompt)

    def _print_banner(self) -> None:
        config = self.settings.provider_config()
        accept = "/".join(self.settings.accept_keys)
        self.console.print(
            f"[bold]ghostcmd[/bold] · {config.display_name} ({config.model})\n"
            f"Type an intent, press [cyan]{self.settings.trigger_key}[/cyan] for a suggestion, "
            f"[cyan]{accept}[/cyan] to accept, Enter to run. [dim]exit or Ctrl+D to quit[/dim]"
        )
        if self.debug_log.enabled:
            self.console.print(f"[dim]Debug log: {self.debug_log.path}[/dim]")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="ghostcmd - inline AI shell command suggestions"
    )
    parser.add_argument("-v", "--version", action="store_true", help="Show version and exit")
    parser.add_argument(
        "-p",
        "--prompt",
        help="Print a single suggestion for PROMPT without entering the interactive UI",
    )
    parser.add_argument("--provider", help="Provider id, overrides GHOSTCMD_PROVIDER")
    args = parser.parse_args()
    if args.version:
        from ghostcmd import __version__

        print(f"ghostcmd {__version__}")
        return
    err_console = Console(stderr=True)
    settings = load_settings(console=err_console)
    if args.provider:
        settings = settings.with_provider(args.provider)
    cli = GhostCmdCLI(settings, err_console=err_console)
    try:
        if args.prompt is not None:
            raise SystemExit(asyncio.run(cli.run_prompt(args.prompt)))
        raise SystemExit(asyncio.run(cli.run()))
    except BrokenPipeError:
        return
    except KeyboardInterrupt:
        return
    except OSError as exc:
        if exc.errno == errno.EPIPE:
            return
        log_exception("cli", exc)
        raise


if __name__ == "__main__":
    main()
