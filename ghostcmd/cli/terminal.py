"""
Cross-platform single-key polling.

Used by the one-shot mode to notice a cancellation keypress while a
request is in flight. On Unix the terminal is switched to cbreak mode with
termios/tty and polled with select; on Windows msvcrt is polled directly.
"""

import sys
import time
from contextlib import contextmanager
from typing import Iterator, Optional

if sys.platform == "win32":
    import msvcrt

    @contextmanager
    def cbreak(fd: int) -> Iterator[bool]:
        """Console input already reaches msvcrt unbuffered (Windows)."""
        yield True

    def poll_key(timeout: float) -> Optional[str]:
        """Return one pending key, waiting at most ``timeout`` seconds (Windows)."""
        deadline = time.monotonic() + timeout
        while True:
            if msvcrt.kbhit():
                return msvcrt.getwch()
            if time.monotonic() >= deadline:
                return None
            time.sleep(0.01)

else:
    import select
    import termios
    import tty

    @contextmanager
    def cbreak(fd: int) -> Iterator[bool]:
        """Put the terminal in cbreak mode, yielding False when it is not a tty (Unix)."""
        try:
            old_settings = termios.tcgetattr(fd)
        except (termios.error, OSError):
            old_settings = None
        if old_settings is None:
            yield False
            return
        tty.setcbreak(fd)
        try:
            yield True
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)

    def poll_key(timeout: float) -> Optional[str]:
        """Return one pending key, waiting at most ``timeout`` seconds (Unix)."""
        ready, _, _ = select.select([sys.stdin], [], [], timeout)
        if not ready:
            return None
        return sys.stdin.read(1)


def drain_keys(limit: int = 8) -> None:
    """Swallow the rest of a multi-byte key sequence such as an arrow key."""
    for _ in range(limit):
        if poll_key(0) is None:
            break


__all__ = ["cbreak", "drain_keys", "poll_key"]
