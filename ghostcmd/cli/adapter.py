from __future__ import annotations

from contextlib import suppress
from typing import TYPE_CHECKING, Any, Iterable, Optional, Tuple

from prompt_toolkit.application import Application
from prompt_toolkit.buffer import Buffer
from prompt_toolkit.document import Document
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout.processors import Processor, Transformation, TransformationInput

from ..core.engine import AcceptHandler, EngineState, KeyBindingSnapshot, LineEditorAdapter

if TYPE_CHECKING:
    from ..core.engine import SuggestionEngine

GHOST_STYLE = "class:ghost"


def parse_keys(key: str) -> Tuple[Any, ...]:
    """Normalize a key name ("tab", "c-space") to prompt_toolkit's key tuple."""
    scratch = KeyBindings()
    scratch.add(key)(lambda event: None)
    return scratch.bindings[0].keys


class GhostTextProcessor(Processor):
    """Append the adapter's overlay text after the last line of the buffer."""

    def __init__(self, adapter: "PromptToolkitAdapter", style: str = GHOST_STYLE) -> None:
        self.adapter = adapter
        self.style = style

    def apply_transformation(self, transformation_input: TransformationInput) -> Transformation:
        ti = transformation_input
        overlay = self.adapter.overlay
        if overlay and ti.lineno == ti.document.line_count - 1:
            return Transformation(fragments=ti.fragments + [(self.style, overlay)])
        return Transformation(fragments=ti.fragments)


class PromptToolkitAdapter(LineEditorAdapter):
    """Host a SuggestionEngine inside a prompt_toolkit PromptSession.

    The engine only ever touches the accept keys, and only while a
    suggestion is visible: claiming them layers a binding on top of
    whatever was there, restoring removes that layer again.
    """

    def __init__(
        self,
        bindings: KeyBindings,
        *,
        trigger_key: str,
        accept_keys: Iterable[str],
    ) -> None:
        self.bindings = bindings
        self.trigger_key = trigger_key
        self.accept_keys = tuple(accept_keys)
        self.overlay = ""
        self.notice = ""
        self._buffer: Optional[Buffer] = None
        self._app: Optional[Application] = None
        self._engine: Optional["SuggestionEngine"] = None
        self._cancelled_by_key = False

    def attach(self, app: Application, buffer: Buffer) -> None:
        self._app = app
        self._buffer = buffer
        buffer.on_text_changed += self._on_text_changed

    def connect(self, engine: "SuggestionEngine") -> None:
        """Install the trigger binding and the keypress hook that drive ``engine``.

        Every keypress is seen by the key processor before any binding
        runs, so cancelling there covers keys with bindings of their own
        (arrows, Home, End) as well as plain characters, which then go on
        to be inserted by the default bindings.
        """
        self._engine = engine
        for key in self.accept_keys:
            parse_keys(key)  # fail at startup, not on the first suggestion
        if self._app is not None:
            processor = self._app.key_processor
            processor.before_key_press += self._before_key_press
            processor.after_key_press += self._after_key_press

        @self.bindings.add(self.trigger_key, eager=True)
        def _trigger(event) -> None:  # type: ignore[no-untyped-def]
            if self._cancelled_by_key:
                # this press already cancelled a pending request
                return
            event.app.create_background_task(engine.on_trigger())

    def _before_key_press(self, _processor: Any) -> None:
        engine = self._engine
        if engine is not None and engine.state is EngineState.PENDING:
            self._cancelled_by_key = engine.cancel()

    def _after_key_press(self, _processor: Any) -> None:
        self._cancelled_by_key = False

    def buffer_text(self) -> str:
        return self._buffer.text if self._buffer is not None else ""

    def replace_buffer(self, text: str) -> None:
        if self._buffer is None:
            return
        self._buffer.document = Document(text, cursor_position=len(text))

    def render_overlay(self, text: str) -> None:
        self.overlay = text
        self._invalidate()

    def clear_overlay(self) -> None:
        if not self.overlay:
            return
        self.overlay = ""
        self._invalidate()

    def rebind_accept_keys(self, handler: AcceptHandler) -> KeyBindingSnapshot:
        def _accept(event) -> None:  # type: ignore[no-untyped-def]
            handler()

        for key in self.accept_keys:
            self.bindings.add(key, eager=True)(_accept)
        return KeyBindingSnapshot(keys=self.accept_keys, handles=(_accept,))

    def restore_accept_keys(self, snapshot: KeyBindingSnapshot) -> None:
        for handle in snapshot.handles:
            with suppress(ValueError):
                self.bindings.remove(handle)

    def notify(self, message: str) -> None:
        self.notice = message
        self._invalidate()

    def clear_notice(self) -> None:
        self.notice = ""

    def toolbar_text(self) -> str:
        if self.notice:
            return f" {self.notice}"
        accept = "/".join(self.accept_keys)
        return f" {self.trigger_key}: suggest · {accept}: accept · exit: quit"

    def _on_text_changed(self, buffer: Buffer) -> None:
        self.notice = ""
        if self._engine is not None:
            self._engine.on_buffer_changed(buffer.text)

    def _invalidate(self) -> None:
        if self._app is not None and self._app.is_running:
            self._app.invalidate()

