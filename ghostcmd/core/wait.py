from __future__ import annotations

import asyncio
from contextlib import suppress

from rich.console import Console
from rich.spinner import Spinner

DEFAULT_SPINNER = "dots"


class SpinnerFrames:
    """Cycle through rich spinner frames for inline progress overlays."""

    def __init__(self, name: str = DEFAULT_SPINNER, label: str = "") -> None:
        self.frames = list(Spinner(name).frames)
        self.label = label
        self._index = 0

    def reset(self) -> None:
        self._index = 0

    def next_frame(self) -> str:
        frame = self.frames[self._index % len(self.frames)]
        self._index += 1
        return f" {frame} {self.label}".rstrip()


class RequestStatus:
    """Status line on stderr while a one-shot request is in flight.

    Use it as ``async with RequestStatus(console, provider, timeout):``.
    The line names the provider, shows the time spent against the
    request timeout and disappears when the block exits.
    """

    def __init__(
        self,
        console: Console,
        provider: str,
        timeout: float,
        *,
        refresh: float = 0.1,
    ) -> None:
        self.console = console
        self.provider = provider
        self.timeout = timeout
        self.refresh = refresh
        self._done = asyncio.Event()
        self._task: asyncio.Task | None = None

    def describe(self, elapsed: float) -> str:
        left = max(self.timeout - elapsed, 0.0)
        return f"{self.provider}: {elapsed:.1f}s, gives up in {left:.0f}s · any key cancels"

    async def __aenter__(self) -> "RequestStatus":
        self._done.clear()
        self._task = asyncio.create_task(self._show())
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self._done.set()
        task, self._task = self._task, None
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task

    async def _show(self) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        with self.console.status(self.describe(0.0), spinner=DEFAULT_SPINNER) as status:
            while not self._done.is_set():
                with suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._done.wait(), timeout=self.refresh)
                status.update(self.describe(loop.time() - started))
