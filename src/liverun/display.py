"""Display sinks: where run output and run statistics are shown.

Every sink synchronizes itself; callers (pump threads, the scheduler) never
lock on its behalf. Curses calls are only ever made from the thread that
calls run(), which the session keeps on the main thread.
"""

import curses
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import click

from liverun.constants import (
    HEADER_TEXT,
    KEYS_TEXT,
    MAX_REGION_BYTES,
    STDERR_TEXT,
    STDOUT_TEXT,
)

# getch() timeout, which also bounds redraw latency
REDRAW_INTERVAL_MS = 100

KEY_ESCAPE = 27


def format_duration(seconds: float) -> str:
    """Format duration in human-readable form."""
    if seconds < 1:
        return f"{seconds*1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    else:
        mins = int(seconds // 60)
        secs = seconds % 60
        return f"{mins}m {secs:.0f}s"


# =============================================================================
# INTERFACES
# =============================================================================

class OutputSink(ABC):
    """Accepts raw output bytes from a child process."""

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Append a chunk of output. Must be safe to call from any thread."""
        pass


class DisplaySink(ABC):
    """Status and output surface driven by the run scheduler."""

    stdout: OutputSink
    stderr: OutputSink

    @abstractmethod
    def clear(self) -> None:
        """Reset the output regions before a run."""
        pass

    @abstractmethod
    def set_run_count(self, count: int) -> None:
        pass

    @abstractmethod
    def set_run_duration(self, duration_ms: int) -> None:
        pass

    @abstractmethod
    def set_status(self, text: str) -> None:
        """Show a short status note (exit status, kills, errors)."""
        pass

    @abstractmethod
    def refresh(self) -> None:
        """Request that pending changes become visible."""
        pass

    def run(
        self,
        done: threading.Event,
        on_kill: Callable[[], None],
        on_quit: Callable[[], None],
    ) -> None:
        """
        Block the calling thread until done is set.

        Interactive sinks override this to read keys, calling on_kill
        and on_quit as the user asks.
        """
        while not done.wait(0.2):
            pass


# =============================================================================
# IN-MEMORY SINKS
# =============================================================================

class TextRegion(OutputSink):
    """Thread-safe byte buffer that keeps only the newest max_bytes."""

    def __init__(
        self,
        placeholder: str = "",
        max_bytes: int = MAX_REGION_BYTES,
        on_write: Optional[Callable[[], None]] = None,
    ):
        self._lock = threading.Lock()
        self._buffer = bytearray(placeholder.encode())
        self._max_bytes = max_bytes
        self._on_write = on_write

    def write(self, data: bytes) -> None:
        with self._lock:
            self._buffer.extend(data)
            overflow = len(self._buffer) - self._max_bytes
            if overflow > 0:
                del self._buffer[:overflow]
        if self._on_write is not None:
            self._on_write()

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def getvalue(self) -> bytes:
        with self._lock:
            return bytes(self._buffer)

    def text(self) -> str:
        return self.getvalue().decode("utf-8", errors="replace")


class BufferedDisplay(DisplaySink):
    """Keeps output and statistics in memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self._dirty = threading.Event()
        self.stdout = TextRegion(STDOUT_TEXT, on_write=self._dirty.set)
        self.stderr = TextRegion(STDERR_TEXT, on_write=self._dirty.set)
        self.run_count = 0
        self.run_duration_ms = 0
        self.status = ""
        self.clears = 0
        self.refreshes = 0

    def clear(self) -> None:
        self.stdout.clear()
        self.stderr.clear()
        with self._lock:
            self.status = ""
            self.clears += 1
        self._dirty.set()

    def set_run_count(self, count: int) -> None:
        with self._lock:
            self.run_count = count

    def set_run_duration(self, duration_ms: int) -> None:
        with self._lock:
            self.run_duration_ms = duration_ms

    def set_status(self, text: str) -> None:
        with self._lock:
            self.status = text

    def refresh(self) -> None:
        with self._lock:
            self.refreshes += 1
        self._dirty.set()

    def header_text(self) -> str:
        with self._lock:
            parts = [
                f"run {self.run_count} times",
                format_duration(self.run_duration_ms / 1000),
            ]
            if self.status:
                parts.append(self.status)
        return "   ".join(parts)


# =============================================================================
# PLAIN TERMINAL
# =============================================================================

class EchoSink(OutputSink):
    def __init__(self, lock: threading.Lock, err: bool = False):
        self._lock = lock
        self._err = err

    def write(self, data: bytes) -> None:
        with self._lock:
            click.echo(data, nl=False, err=self._err)


class PlainDisplay(BufferedDisplay):
    """Streams output straight to the terminal, one status line per run."""

    def __init__(self):
        super().__init__()
        self._echo_lock = threading.Lock()
        self.stdout = EchoSink(self._echo_lock)
        self.stderr = EchoSink(self._echo_lock, err=True)

    def clear(self) -> None:
        with self._lock:
            self.status = ""
            self.clears += 1
        with self._echo_lock:
            click.echo("-" * 40)

    def refresh(self) -> None:
        super().refresh()
        line = self.header_text()
        with self._echo_lock:
            click.echo(f"[{HEADER_TEXT}] {line}")


# =============================================================================
# CURSES
# =============================================================================

def _printable(line: str) -> str:
    line = line.expandtabs(4)
    return "".join(ch if ch.isprintable() else "?" for ch in line)


def wrap_tail(text: str, width: int, height: int) -> List[str]:
    """Hard-wrap text to width and keep the last height rows."""
    if width <= 0 or height <= 0:
        return []
    rows: List[str] = []
    for line in text.splitlines():
        line = _printable(line)
        if not line:
            rows.append("")
            continue
        rows.extend(line[i:i + width] for i in range(0, len(line), width))
    return rows[-height:]


class CursesDisplay(BufferedDisplay):
    """Full-screen display: header, stdout and stderr panes, help bar."""

    def __init__(self, target_name: str, interpreter: str):
        super().__init__()
        self.help_text = f"Edit {target_name} & save to run with {interpreter}"

    def run(self, done, on_kill, on_quit) -> None:
        curses.wrapper(self._loop, done, on_kill, on_quit)

    def _loop(self, stdscr, done, on_kill, on_quit) -> None:
        try:
            curses.curs_set(0)
        except curses.error:
            pass
        stdscr.keypad(True)
        stdscr.timeout(REDRAW_INTERVAL_MS)

        # Keep the terminal's own background
        try:
            curses.start_color()
            curses.use_default_colors()
            curses.init_pair(1, curses.COLOR_RED, -1)
        except curses.error:
            pass

        self._dirty.set()
        while not done.is_set():
            if self._dirty.is_set():
                self._dirty.clear()
                self._draw(stdscr)

            key = stdscr.getch()
            if key == ord("k"):
                on_kill()
            elif key in (ord("q"), KEY_ESCAPE):
                on_quit()
            elif key == curses.KEY_RESIZE:
                self._dirty.set()

    def _put(self, win, y: int, x: int, text: str, attr: int = 0) -> None:
        height, width = win.getmaxyx()
        if y >= height or x >= width:
            return
        try:
            win.addnstr(y, x, text, width - x - 1, attr)
        except curses.error:
            pass

    def _draw_pane(self, stdscr, y: int, x: int, height: int, width: int, title: str, text: str) -> None:
        if height < 3 or width < 4:
            return
        win = stdscr.derwin(height, width, y, x)
        win.box()
        self._put(win, 0, 2, f" {title} ")
        for row, line in enumerate(wrap_tail(text, width - 2, height - 2), start=1):
            self._put(win, row, 1, line)

    def _draw(self, stdscr) -> None:
        stdscr.erase()
        height, width = stdscr.getmaxyx()

        if height < 6 or width < 24:
            self._put(stdscr, 0, 0, "terminal too small")
            stdscr.refresh()
            return

        red = curses.color_pair(1)
        self._put(stdscr, 0, 0, HEADER_TEXT, red | curses.A_BOLD)
        status = self.header_text()
        self._put(stdscr, 0, max(len(HEADER_TEXT) + 2, width - len(status) - 1), status)

        pane_height = height - 3
        left_width = width * 2 // 3
        self._draw_pane(stdscr, 1, 0, pane_height, left_width, "stdout", self.stdout.text())
        self._draw_pane(stdscr, 1, left_width, pane_height, width - left_width, "stderr", self.stderr.text())

        self._put(stdscr, height - 1, 0, f"{self.help_text}   {KEYS_TEXT}", red)
        stdscr.refresh()
