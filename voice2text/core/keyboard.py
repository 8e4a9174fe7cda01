"""Escape-key watcher that feeds a CancellationToken.

WHY: The operator can press Escape to stop watching a long indexing job.
Reading the keyboard is terminal specific and blocking, so it lives in
its own thread and only talks to the poll loop through the token.

HOW: On POSIX, stdin is switched to cbreak mode and polled with select();
on Windows, msvcrt.kbhit()/getwch() are used. Pressing ESC cancels the
token and ends the thread. Leaving the context manager stops the thread
and restores the terminal.

RULES:
- No-op when stdin is not a TTY (pipes, CI, tests)
- The terminal mode is always restored on exit
- Only ESC cancels; other keys are ignored
"""

from __future__ import annotations

import logging
import os
import sys
import threading
from typing import Optional

from voice2text.core.indexing import CancellationToken

logger = logging.getLogger(__name__)

ESCAPE = "\x1b"
_POLL_S = 0.1


class EscapeKeyWatcher:
    """Context manager that cancels ``token`` when ESC is pressed."""

    def __init__(self, token: CancellationToken, stream=None) -> None:  # noqa: ANN001
        self.token = token
        self._stream = stream if stream is not None else sys.stdin
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def active(self) -> bool:
        return self._thread is not None

    def __enter__(self) -> EscapeKeyWatcher:
        try:
            interactive = self._stream.isatty()
        except (AttributeError, ValueError):
            interactive = False
        if not interactive:
            logger.debug("stdin is not a TTY; escape key cancellation disabled")
            return self

        if sys.platform == "win32":
            target = self._watch_windows
        else:
            target = self._watch_posix
        self._thread = threading.Thread(target=target, name="escape-key-watcher", daemon=True)
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None

    def _watch_posix(self) -> None:
        import select
        import termios
        import tty

        fd = self._stream.fileno()
        saved = termios.tcgetattr(fd)
        try:
            tty.setcbreak(fd)
            while not self._stop.is_set():
                readable, _, _ = select.select([fd], [], [], _POLL_S)
                if readable and os.read(fd, 1) == ESCAPE.encode("ascii"):
                    self.token.cancel()
                    return
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)

    def _watch_windows(self) -> None:
        import msvcrt

        while not self._stop.is_set():
            if msvcrt.kbhit() and msvcrt.getwch() == ESCAPE:
                self.token.cancel()
                return
            self._stop.wait(_POLL_S)
