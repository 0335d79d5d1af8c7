import asyncio
import threading
import time
import unittest
from typing import List, Optional
from unittest import mock

from ghostcmd.config.settings import GhostSettings
from ghostcmd.core.credentials import CommandResult, CredentialCache, CredentialResolver
from ghostcmd.core.engine import (
    GHOST_SEPARATOR,
    AcceptHandler,
    EngineState,
    KeyBindingSnapshot,
    LineEditorAdapter,
    SuggestionEngine,
    overlay_for,
)
from ghostcmd.core.errors import BackendError


class FakeAdapter(LineEditorAdapter):
    def __init__(self, buffer: str = "") -> None:
        self.buffer = buffer
        self.overlay = ""
        self.rendered: List[str] = []
        self.notices: List[str] = []
        self.accept_handler: Optional[AcceptHandler] = None
        self.snapshots: List[KeyBindingSnapshot] = []
        self.restored: List[KeyBindingSnapshot] = []

    def buffer_text(self) -> str:
        return self.buffer

    def replace_buffer(self, text: str) -> None:
        self.buffer = text

    def render_overlay(self, text: str) -> None:
        self.overlay = text
        self.rendered.append(text)

    def clear_overlay(self) -> None:
        self.overlay = ""

    def rebind_accept_keys(self, handler: AcceptHandler) -> KeyBindingSnapshot:
        self.accept_handler = handler
        snapshot = KeyBindingSnapshot(keys=("tab", "right"), handles=(handler,))
        self.snapshots.append(snapshot)
        return snapshot

    def restore_accept_keys(self, snapshot: KeyBindingSnapshot) -> None:
        self.accept_handler = None
        self.restored.append(snapshot)

    def notify(self, message: str) -> None:
        self.notices.append(message)


class FakeDispatcher:
    def __init__(self, result: str = "", error: Optional[BaseException] = None) -> None:
        self.result = result
        self.error = error
        self.calls: List[tuple] = []
        self.release: Optional[threading.Event] = None

    def dispatch(self, provider: str, user_input: str, system_prompt: str) -> str:
        self.calls.append((provider, user_input, system_prompt))
        if self.release is not None:
            self.release.wait(5)
        if self.error is not None:
            raise self.error
        return self.result


class SuggestionEngineTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.settings = GhostSettings(request_timeout=2.0, tick_interval=0.01)
        self.adapter = FakeAdapter()
        self.resolver = mock.Mock()
        self.resolver.resolve.return_value = ("sk-test", True)
        self.dispatcher = FakeDispatcher(result="ls -la")
        self.prompt_builder = mock.Mock()
        self.prompt_builder.build.return_value = "SYSTEM"
        self.engine = SuggestionEngine(
            self.settings,
            self.adapter,
            self.resolver,
            self.dispatcher,  # type: ignore[arg-type]
            self.prompt_builder,
        )

    def block_backend(self) -> threading.Event:
        release = threading.Event()
        self.dispatcher.release = release
        self.addCleanup(release.set)
        return release

    async def wait_for_state(self, state: EngineState) -> None:
        for _ in range(200):
            if self.engine.state is state:
                return
            await asyncio.sleep(0.005)
        self.fail(f"engine never reached {state}")

    async def test_trigger_shows_suggestion_as_ghost_text(self) -> None:
        self.adapter.buffer = "list files"
        await self.engine.on_trigger()

        self.assertEqual(self.engine.state, EngineState.ACTIVE)
        self.assertEqual(self.engine.suggestion, "ls -la")
        self.assertEqual(self.adapter.overlay, f"{GHOST_SEPARATOR}ls -la")
        self.assertEqual(self.adapter.buffer, "list files")
        self.assertEqual(self.dispatcher.calls, [("anthropic", "list files", "SYSTEM")])
        self.assertIsNotNone(self.adapter.accept_handler)
        self.assertTrue(self.adapter.rendered[0].strip())

    async def test_accept_replaces_buffer_and_restores_keys(self) -> None:
        self.adapter.buffer = "list files"
        await self.engine.on_trigger()
        snapshot = self.engine.snapshot

        self.assertTrue(self.adapter.accept_handler())  # type: ignore[misc]
        self.assertEqual(self.adapter.buffer, "ls -la")
        self.assertEqual(self.engine.state, EngineState.DORMANT)
        self.assertEqual(self.adapter.overlay, "")
        self.assertEqual(self.adapter.restored, [snapshot])
        self.assertIsNone(self.engine.snapshot)
        self.assertFalse(self.engine.accept())

    async def test_suggestion_extending_buffer_shows_only_suffix(self) -> None:
        self.dispatcher.result = "git status"
        self.adapter.buffer = "git s"
        await self.engine.on_trigger()
        self.assertEqual(self.adapter.overlay, "tatus")

        self.adapter.buffer = "git st"
        self.engine.on_buffer_changed("git st")
        self.assertEqual(self.engine.state, EngineState.ACTIVE)
        self.assertEqual(self.adapter.overlay, "atus")
        self.assertEqual(self.engine.buffer_at_suggestion, "git st")

    async def test_diverging_edit_dismisses_suggestion(self) -> None:
        self.dispatcher.result = "git status"
        self.adapter.buffer = "git s"
        await self.engine.on_trigger()

        self.adapter.buffer = "git x"
        self.engine.on_buffer_changed("git x")
        self.assertEqual(self.engine.state, EngineState.DORMANT)
        self.assertEqual(self.adapter.overlay, "")
        self.assertEqual(len(self.adapter.restored), 1)
        self.assertIsNone(self.adapter.accept_handler)

    async def test_typing_the_whole_suggestion_dismisses_it(self) -> None:
        self.dispatcher.result = "git status"
        self.adapter.buffer = "git s"
        await self.engine.on_trigger()

        self.adapter.buffer = "git status"
        self.engine.on_buffer_changed("git status")
        self.assertEqual(self.engine.state, EngineState.DORMANT)
        self.assertEqual(len(self.adapter.restored), 1)

    async def test_result_is_sanitized(self) -> None:
        self.dispatcher.result = "\x1b[31mls -la\x1b[0m\nrm -rf /"
        self.adapter.buffer = "list files"
        await self.engine.on_trigger()
        self.assertEqual(self.engine.suggestion, "ls -larm -rf /")

    async def test_empty_buffer_does_nothing(self) -> None:
        self.adapter.buffer = "   "
        await self.engine.on_trigger()
        self.assertEqual(self.engine.state, EngineState.DORMANT)
        self.resolver.resolve.assert_not_called()
        self.assertEqual(self.dispatcher.calls, [])

    async def test_missing_credential_notifies_without_request(self) -> None:
        self.resolver.resolve.return_value = ("", False)
        self.adapter.buffer = "list files"
        await self.engine.on_trigger()
        self.assertEqual(self.engine.state, EngineState.DORMANT)
        self.assertEqual(self.adapter.notices, ["ghostcmd: ANTHROPIC_API_KEY not found"])
        self.assertEqual(self.dispatcher.calls, [])

    async def test_empty_result_notifies(self) -> None:
        self.dispatcher.result = "\x1b[0m\n"
        self.adapter.buffer = "list files"
        await self.engine.on_trigger()
        self.assertEqual(self.engine.state, EngineState.DORMANT)
        self.assertEqual(self.adapter.notices, ["ghostcmd: [anthropic] no suggestion"])
        self.assertEqual(self.adapter.snapshots, [])

    async def test_result_equal_to_buffer_is_not_shown(self) -> None:
        self.dispatcher.result = "ls"
        self.adapter.buffer = "ls"
        await self.engine.on_trigger()
        self.assertEqual(self.engine.state, EngineState.DORMANT)
        self.assertEqual(self.adapter.overlay, "")
        self.assertEqual(len(self.adapter.notices), 1)

    async def test_backend_error_is_reported_inline(self) -> None:
        self.dispatcher.error = BackendError("anthropic", "HTTP 500 Internal Server Error")
        self.adapter.buffer = "list files"
        await self.engine.on_trigger()
        self.assertEqual(self.engine.state, EngineState.DORMANT)
        self.assertEqual(
            self.adapter.notices, ["ghostcmd: [anthropic] HTTP 500 Internal Server Error"]
        )
        self.assertEqual(self.adapter.overlay, "")

    async def test_unexpected_error_is_wrapped(self) -> None:
        self.dispatcher.error = ValueError("boom")
        self.adapter.buffer = "list files"
        await self.engine.on_trigger()
        self.assertEqual(self.adapter.notices, ["ghostcmd: [anthropic] boom"])

    async def test_cancel_discards_late_result(self) -> None:
        release = self.block_backend()
        self.adapter.buffer = "list files"
        trigger = asyncio.create_task(self.engine.on_trigger())
        await self.wait_for_state(EngineState.PENDING)

        self.assertTrue(self.engine.cancel())
        self.assertEqual(self.engine.state, EngineState.DORMANT)
        await asyncio.wait_for(trigger, timeout=1)

        release.set()
        await asyncio.sleep(0.05)
        self.assertEqual(self.engine.state, EngineState.DORMANT)
        self.assertIsNone(self.engine.suggestion)
        self.assertEqual(self.adapter.overlay, "")
        self.assertEqual(self.adapter.notices, [])
        self.assertFalse(self.engine.cancel())

    async def test_typing_while_pending_cancels(self) -> None:
        self.block_backend()
        self.adapter.buffer = "list files"
        trigger = asyncio.create_task(self.engine.on_trigger())
        await self.wait_for_state(EngineState.PENDING)

        self.engine.on_buffer_changed("list filesx")
        self.assertEqual(self.engine.state, EngineState.DORMANT)
        await asyncio.wait_for(trigger, timeout=1)

    async def test_trigger_while_pending_cancels(self) -> None:
        self.block_backend()
        self.adapter.buffer = "list files"
        trigger = asyncio.create_task(self.engine.on_trigger())
        await self.wait_for_state(EngineState.PENDING)

        await self.engine.on_trigger()
        self.assertEqual(self.engine.state, EngineState.DORMANT)
        await asyncio.wait_for(trigger, timeout=1)
        self.assertEqual(len(self.dispatcher.calls), 1)

    async def test_spinner_frames_render_while_pending(self) -> None:
        release = self.block_backend()
        self.adapter.buffer = "list files"
        trigger = asyncio.create_task(self.engine.on_trigger())
        await self.wait_for_state(EngineState.PENDING)
        await asyncio.sleep(0.05)
        release.set()
        await asyncio.wait_for(trigger, timeout=1)

        frames = self.adapter.rendered[:-1]
        self.assertGreaterEqual(len(frames), 2)
        self.assertNotEqual(frames[0], frames[1])
        self.assertEqual(self.engine.state, EngineState.ACTIVE)

    async def test_request_times_out(self) -> None:
        self.settings = GhostSettings(request_timeout=0.05, tick_interval=0.01)
        self.engine.settings = self.settings
        self.block_backend()
        self.adapter.buffer = "list files"
        await asyncio.wait_for(self.engine.on_trigger(), timeout=1)
        self.assertEqual(self.engine.state, EngineState.DORMANT)
        self.assertEqual(self.adapter.notices, ["ghostcmd: [anthropic] request timed out"])

    async def test_cancelling_trigger_task_returns_to_dormant(self) -> None:
        self.block_backend()
        self.adapter.buffer = "list files"
        trigger = asyncio.create_task(self.engine.on_trigger())
        await self.wait_for_state(EngineState.PENDING)
        trigger.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await trigger
        self.assertEqual(self.engine.state, EngineState.DORMANT)

    async def test_trigger_while_active_requests_again(self) -> None:
        self.adapter.buffer = "list files"
        await self.engine.on_trigger()
        first = self.engine.snapshot

        self.dispatcher.result = "ls -lah"
        await self.engine.on_trigger()
        self.assertEqual(self.adapter.restored, [first])
        self.assertEqual(self.engine.suggestion, "ls -lah")
        self.assertEqual(self.engine.state, EngineState.ACTIVE)
        self.assertEqual(len(self.dispatcher.calls), 2)

    async def test_line_finished_clears_everything(self) -> None:
        self.adapter.buffer = "list files"
        await self.engine.on_trigger()
        self.engine.on_line_finished()
        self.assertEqual(self.engine.state, EngineState.DORMANT)
        self.assertEqual(self.adapter.overlay, "")
        self.assertEqual(len(self.adapter.restored), 1)
        self.assertIsNone(self.engine.suggestion)

    async def test_provider_switch_is_used_for_next_request(self) -> None:
        self.engine.settings = self.settings.with_provider("ollama")
        self.adapter.buffer = "list files"
        await self.engine.on_trigger()
        self.assertEqual(self.dispatcher.calls[0][0], "ollama")
        self.resolver.resolve.assert_called_with("ollama")

    async def test_slow_credential_command_keeps_the_loop_responsive(self) -> None:
        def slow_runner(command: str) -> CommandResult:
            time.sleep(0.5)
            return CommandResult(returncode=0, stdout="sk-slow\n")

        self.engine.resolver = CredentialResolver(
            GhostSettings(api_key_command="print-key ${provider}"),
            cache=CredentialCache({}),
            runner=slow_runner,
            secret_lookup=mock.Mock(return_value=None),
            on_missing=mock.Mock(),
        )
        self.adapter.buffer = "list files"
        gaps: List[float] = []
        stop = asyncio.Event()

        async def heartbeat() -> None:
            loop = asyncio.get_running_loop()
            last = loop.time()
            while not stop.is_set():
                await asyncio.sleep(0.01)
                now = loop.time()
                gaps.append(now - last)
                last = now

        beat = asyncio.create_task(heartbeat())
        await self.engine.on_trigger()
        stop.set()
        await beat

        self.assertEqual(self.engine.state, EngineState.ACTIVE)
        self.assertEqual(self.engine.suggestion, "ls -la")
        self.assertLess(max(gaps), 0.2)

    async def test_edit_during_credential_lookup_drops_the_trigger(self) -> None:
        release = threading.Event()
        self.addCleanup(release.set)
        self.resolver.resolve.side_effect = lambda provider: release.wait(5) and ("sk", True)
        self.adapter.buffer = "list files"
        trigger = asyncio.create_task(self.engine.on_trigger())
        await asyncio.sleep(0.02)

        self.adapter.buffer = "list files -a"
        self.engine.on_buffer_changed("list files -a")
        release.set()
        await trigger

        self.assertEqual(self.engine.state, EngineState.DORMANT)
        self.assertEqual(self.dispatcher.calls, [])
        self.assertEqual(self.adapter.notices, [])

    async def test_second_trigger_during_lookup_sends_one_request(self) -> None:
        release = threading.Event()
        self.addCleanup(release.set)
        self.resolver.resolve.side_effect = lambda provider: release.wait(5) and ("sk", True)
        self.adapter.buffer = "list files"
        first = asyncio.create_task(self.engine.on_trigger())
        await asyncio.sleep(0.01)
        second = asyncio.create_task(self.engine.on_trigger())
        await asyncio.sleep(0.01)
        release.set()
        await asyncio.gather(first, second)

        self.assertEqual(self.engine.state, EngineState.ACTIVE)
        self.assertEqual(len(self.dispatcher.calls), 1)


class OverlayTests(unittest.TestCase):
    def test_overlay_for(self) -> None:
        self.assertEqual(overlay_for("git status", "git s"), "tatus")
        self.assertEqual(overlay_for("ls -la", "list files"), f"{GHOST_SEPARATOR}ls -la")
        self.assertEqual(overlay_for("ls -la", ""), "ls -la")
        self.assertEqual(overlay_for("ls", "ls"), "")
        self.assertEqual(overlay_for("", "ls"), "")


if __name__ == "__main__":
    unittest.main()
