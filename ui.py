# ui.py
# Terminal collaborators: rich progress bar and the q/ESC abort key monitor

from __future__ import annotations
import logging
import os
import select
import sys
import threading
from typing import Callable, Optional, TextIO, Tuple

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn

from config import ABORT_KEYS, PROGRESS_INTERVAL

logger = logging.getLogger(__name__)


class ProgressUI:
    """
    Renders scan progress from a `progress()` callable returning (claimed, total).
    The callable is only ever read, from a background refresh thread.
    """

    def __init__(self, progress: Callable[[], Tuple[int, int]], console: Console):
        self.progress = progress
        self.console = console
        self._bar: Optional[Progress] = None
        self._task = None
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        _, total = self.progress()
        self._bar = Progress(
            TextColumn("[bold cyan]Scanning"),
            BarColumn(bar_width=40),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=self.console,
            transient=False,
        )
        self._task = self._bar.add_task("scan", total=total)
        self._bar.start()
        self._thread = threading.Thread(target=self._poll, name="progress", daemon=True)
        self._thread.start()

    def stop(self, aborted: bool = False):
        if self._bar is None or self._done.is_set():
            return
        self._done.set()
        if self._thread:
            self._thread.join()
        claimed, total = self.progress()
        self._bar.update(self._task, completed=claimed if aborted else total)
        self._bar.stop()

    def _poll(self):
        while not self._done.wait(PROGRESS_INTERVAL):
            claimed, _ = self.progress()
            self._bar.update(self._task, completed=claimed)


class KeyMonitor:
    """
    Sets `cancel` when q, Q or ESC is pressed.
    Only active on a POSIX terminal; elsewhere start() and stop() do nothing.
    """

    def __init__(self, cancel: threading.Event, stream: Optional[TextIO] = None):
        self.cancel = cancel
        self.stream = stream if stream is not None else sys.stdin
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._fd: Optional[int] = None
        self._saved_attrs = None

    @property
    def active(self) -> bool:
        return self._thread is not None

    def start(self):
        if os.name != "posix" or not self.stream.isatty():
            logger.debug("stdin is not a terminal; abort keys disabled")
            return
        import termios
        import tty

        self._fd = self.stream.fileno()
        self._saved_attrs = termios.tcgetattr(self._fd)
        tty.setcbreak(self._fd)
        self._thread = threading.Thread(target=self._watch, name="key-monitor", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join()
            self._thread = None
        if self._saved_attrs is not None:
            import termios

            termios.tcsetattr(self._fd, termios.TCSAFLUSH, self._saved_attrs)
            self._saved_attrs = None

    def _watch(self):
        while not self._stop.is_set() and not self.cancel.is_set():
            ready, _, _ = select.select([self._fd], [], [], PROGRESS_INTERVAL)
            if not ready:
                continue
            try:
                ch = os.read(self._fd, 1)
            except OSError:
                break  # terminal went away
            if not ch:
                break  # EOF
            if ch.decode("latin-1") in ABORT_KEYS:
                logger.info("Abort requested from keyboard")
                self.cancel.set()
                break
