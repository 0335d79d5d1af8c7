from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from contextlib import suppress
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Tuple

from ..config.settings import GhostSettings, key_slot
from .errors import BackendError, EmptyResult, GhostCmdError
from .sanitize import sanitize
from .session_log import log_debug, log_exception, log_info, log_warn
from .wait import SpinnerFrames

if TYPE_CHECKING:
    from ..prompts import PromptBuilder
    from ..providers import ProviderDispatcher
    from .credentials import CredentialResolver

GHOST_SEPARATOR = " ⇥ "


class EngineState(Enum):
    DORMANT = "dormant"
    PENDING = "pending"
    ACTIVE = "active"


@dataclass(frozen=True)
class Suggestion:
    text: str
    source_input: str


@dataclass(frozen=True)
class KeyBindingSnapshot:
    """The binding layer the engine put on top of the accept keys.

    Restoring removes exactly ``handles``; whatever owned ``keys`` before
    was never touched and takes over again once the layer is gone.
    """

    keys: Tuple[str, ...]
    handles: Tuple[Any, ...] = field(default_factory=tuple)


AcceptHandler = Callable[[], bool]


class LineEditorAdapter(ABC):
    """Capabilities the engine needs from the host line editor."""

    @abstractmethod
    def buffer_text(self) -> str: ...

    @abstractmethod
    def replace_buffer(self, text: str) -> None:
        """Replace the whole buffer and move the cursor to its end."""

    @abstractmethod
    def render_overlay(self, text: str) -> None: ...

    @abstractmethod
    def clear_overlay(self) -> None: ...

    @abstractmethod
    def rebind_accept_keys(self, handler: AcceptHandler) -> KeyBindingSnapshot: ...

    @abstractmethod
    def restore_accept_keys(self, snapshot: KeyBindingSnapshot) -> None: ...

    @abstractmethod
    def notify(self, message: str) -> None:
        """Show a transient, non-fatal notice."""


def overlay_for(suggestion: str, buffer: str) -> str:
    """Ghost text for a suggestion given the live buffer."""
    if not suggestion or suggestion == buffer:
        return ""
    if suggestion.startswith(buffer):
        return suggestion[len(buffer) :]
    return f"{GHOST_SEPARATOR}{suggestion}"


class SuggestionEngine:
    """Own the suggestion lifecycle: DORMANT -> PENDING -> ACTIVE -> DORMANT.

    All methods run on the editor's event loop. Credential lookup and the
    backend call are the only work done off-loop; their results are used
    only when the generation they were started under is still current.
    """

    def __init__(
        self,
        settings: GhostSettings,
        adapter: LineEditorAdapter,
        resolver: "CredentialResolver",
        dispatcher: "ProviderDispatcher",
        prompt_builder: "PromptBuilder",
    ) -> None:
        self.settings = settings
        self.adapter = adapter
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.prompt_builder = prompt_builder
        self.state = EngineState.DORMANT
        self._suggestion: Optional[Suggestion] = None
        self._snapshot: Optional[KeyBindingSnapshot] = None
        self._buffer_at_suggestion = ""
        self._generation = 0
        self._task: Optional[asyncio.Future] = None
        self._frames = SpinnerFrames()

    @property
    def provider(self) -> str:
        return self.settings.provider

    @property
    def suggestion(self) -> Optional[str]:
        return self._suggestion.text if self._suggestion else None

    @property
    def buffer_at_suggestion(self) -> str:
        return self._buffer_at_suggestion

    @property
    def snapshot(self) -> Optional[KeyBindingSnapshot]:
        return self._snapshot

    async def on_trigger(self) -> None:
        if self.state is EngineState.PENDING:
            # the trigger key is a keypress like any other while waiting
            log_debug("engine", "trigger.while_pending")
            self.cancel()
            return
        if self.state is EngineState.ACTIVE:
            self._deactivate()
        buffer = self.adapter.buffer_text()
        if not buffer.strip():
            return
        self._generation += 1
        generation = self._generation
        provider = self.provider
        lookup = run_detached(self.resolver.resolve, provider)
        error: Optional[Exception] = None
        found = False
        try:
            _, found = await lookup
        except asyncio.CancelledError:
            abandon_task(lookup)
            raise
        except Exception as exc:  # noqa: BLE001
            error = exc
        if (
            generation != self._generation
            or self.state is not EngineState.DORMANT
            or self.adapter.buffer_text() != buffer
        ):
            log_debug("engine", "trigger.stale", {"provider": provider})
            return
        if error is not None:
            log_exception("engine", error)
            self.adapter.notify(f"ghostcmd: credential lookup failed ({error})")
            return
        if not found:
            self.adapter.notify(f"ghostcmd: {key_slot(provider)} not found")
            return
        await self._request(buffer)

    def cancel(self) -> bool:
        """Abandon the in-flight request; its result will be discarded."""
        if self.state is not EngineState.PENDING:
            return False
        self._generation += 1
        task, self._task = self._task, None
        if task is not None:
            abandon_task(task)
        self.state = EngineState.DORMANT
        self.adapter.clear_overlay()
        log_info("engine", "request.cancelled", {"provider": self.provider})
        return True

    def accept(self) -> bool:
        if self.state is not EngineState.ACTIVE or self._suggestion is None:
            return False
        text = self._suggestion.text
        self._deactivate()
        self.adapter.replace_buffer(text)
        log_info("engine", "suggestion.accepted", {"command": text})
        return True

    def on_buffer_changed(self, new_buffer: str) -> None:
        if self.state is EngineState.PENDING:
            self.cancel()
            return
        if self.state is not EngineState.ACTIVE or self._suggestion is None:
            return
        text = self._suggestion.text
        if text.startswith(new_buffer) and text != new_buffer:
            self._buffer_at_suggestion = new_buffer
            self._render(new_buffer)
            return
        self._deactivate()

    def on_line_finished(self) -> None:
        if self.state is EngineState.PENDING:
            self.cancel()
        elif self.state is EngineState.ACTIVE:
            self._deactivate()
        else:
            self.adapter.clear_overlay()

    async def _request(self, buffer: str) -> None:
        self._generation += 1
        generation = self._generation
        self.state = EngineState.PENDING
        self._frames.reset()
        provider = self.provider
        system_prompt = self.prompt_builder.build()
        log_info("engine", "request.start", {"provider": provider, "input": buffer})

        loop = asyncio.get_running_loop()
        task = run_detached(self.dispatcher.dispatch, provider, buffer, system_prompt)
        self._task = task
        deadline = loop.time() + self.settings.request_timeout + self.settings.tick_interval
        timed_out = False
        try:
            while not task.done():
                if generation != self._generation:
                    break
                if loop.time() >= deadline:
                    timed_out = True
                    break
                self.adapter.render_overlay(self._frames.next_frame())
                await asyncio.wait({task}, timeout=self.settings.tick_interval)
        except asyncio.CancelledError:
            if generation == self._generation:
                self.cancel()
            raise

        if generation != self._generation:
            return
        self._task = None
        if timed_out:
            abandon_task(task)
            self._fail(BackendError(provider, "request timed out"))
            return
        try:
            raw = task.result()
        except GhostCmdError as exc:
            log_exception("engine", exc)
            self._fail(exc)
            return
        except Exception as exc:  # noqa: BLE001
            log_exception("engine", exc)
            self._fail(BackendError(provider, str(exc) or type(exc).__name__))
            return
        self._activate(buffer, raw)

    def _activate(self, source_input: str, raw: str) -> None:
        text = sanitize(raw or "")
        buffer = self.adapter.buffer_text()
        if not text or text == buffer:
            self.state = EngineState.DORMANT
            self.adapter.clear_overlay()
            log_info("engine", "suggestion.empty", {"provider": self.provider})
            self.adapter.notify(f"ghostcmd: {EmptyResult(self.provider)}")
            return
        self._suggestion = Suggestion(text=text, source_input=source_input)
        self._buffer_at_suggestion = buffer
        self._snapshot = self.adapter.rebind_accept_keys(self.accept)
        self.state = EngineState.ACTIVE
        log_info("engine", "suggestion.shown", {"command": text})
        self._render(buffer)

    def _fail(self, exc: GhostCmdError) -> None:
        self.state = EngineState.DORMANT
        self.adapter.clear_overlay()
        log_warn("engine", "request.failed", {"error": str(exc)})
        self.adapter.notify(f"ghostcmd: {exc}")

    def _render(self, buffer: str) -> None:
        overlay = overlay_for(self._suggestion.text if self._suggestion else "", buffer)
        if overlay:
            self.adapter.render_overlay(overlay)
        else:
            self.adapter.clear_overlay()

    def _deactivate(self) -> None:
        snapshot = self._snapshot
        self._suggestion = None
        self._buffer_at_suggestion = ""
        self._snapshot = None
        self.state = EngineState.DORMANT
        self.adapter.clear_overlay()
        if snapshot is not None:
            self.adapter.restore_accept_keys(snapshot)


def run_detached(func: Callable[..., Any], *args: Any) -> asyncio.Future:
    """Run a blocking call on a daemon thread and return a loop future for it.

    Unlike the default executor, the thread never holds up interpreter or
    event loop shutdown, so an abandoned request cannot delay exit.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def settle(result: Any, error: Optional[BaseException]) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def worker() -> None:
        result: Any = None
        error: Optional[BaseException] = None
        try:
            result = func(*args)
        except Exception as exc:  # noqa: BLE001
            error = exc
        with suppress(RuntimeError):
            loop.call_soon_threadsafe(settle, result, error)

    threading.Thread(target=worker, name="ghostcmd-request", daemon=True).start()
    return future


def abandon_task(task: asyncio.Future) -> None:
    def _discard(done: asyncio.Future) -> None:
        if not done.cancelled():
            done.exception()

    task.add_done_callback(_discard)
    if not task.done():
        task.cancel()
