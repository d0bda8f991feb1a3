"""Change detection through an external blocking watch utility.

Each call to ChangeSource.wait_for_change() launches the utility once with the
watched paths on its stdin, and returns when it exits. The directory listing is
taken again at the start of every cycle, so files created after startup are
watched from the next cycle on.
"""

import logging
import subprocess
import threading
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from liverun.config import ConfigError
from liverun.constants import (
    DEFAULT_IGNORE_PATTERNS,
    DEFAULT_WATCH_COMMAND,
    DEFAULT_WATCH_RETRY_DELAY_S,
    WATCH_DIRECTORY_FLAG,
    WATCH_EXIT_NEW_FILE,
)
from liverun.target import list_directory

LOGGER = logging.getLogger(__name__)

# Exit statuses that mean "something changed"
CHANGE_EXIT_CODES = (0, WATCH_EXIT_NEW_FILE)


class WatchError(Exception):
    """Raised when a change source is misconfigured."""
    pass


class ChangeSource:
    """Restartable blocking wait for a change to the watched path set."""

    def __init__(
        self,
        list_paths: Callable[[], List[Path]],
        watch_command: Optional[Sequence[str]] = None,
        retry_delay_s: float = DEFAULT_WATCH_RETRY_DELAY_S,
    ):
        self.watch_command = list(DEFAULT_WATCH_COMMAND if watch_command is None else watch_command)
        if not self.watch_command:
            raise WatchError("watch command must not be empty")

        self._list_paths = list_paths
        self.retry_delay_s = retry_delay_s
        self.cycles = 0

        self._lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None
        self._cancelled = threading.Event()

    @classmethod
    def for_file(cls, path: Path, **kwargs) -> "ChangeSource":
        """Watch a single file (temporary-file mode)."""
        return cls(lambda: [path], **kwargs)

    @classmethod
    def for_directory(
        cls,
        directory: Path,
        target: Optional[Path] = None,
        ignore_patterns: Sequence[str] = DEFAULT_IGNORE_PATTERNS,
        watch_command: Optional[Sequence[str]] = None,
        **kwargs,
    ) -> "ChangeSource":
        """Watch every file under a directory, plus the target file."""

        def list_paths() -> List[Path]:
            paths = list_directory(directory, ignore_patterns)
            if target is not None and target not in paths:
                paths.append(target)
            return paths

        # -d is entr's; other utilities get the command as configured
        command = list(DEFAULT_WATCH_COMMAND if watch_command is None else watch_command)
        if command and Path(command[0]).name == "entr" and WATCH_DIRECTORY_FLAG not in command:
            command.insert(1, WATCH_DIRECTORY_FLAG)

        return cls(list_paths, watch_command=command, **kwargs)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def wait_for_change(self) -> bool:
        """
        Block until the watched set changes.

        Listing and launch failures and unexpected exit statuses are logged and retried
        after retry_delay_s.

        Returns:
            True on a change, False once cancelled.
        """
        while not self._cancelled.is_set():
            try:
                paths = self._list_paths()
            except (ConfigError, OSError) as e:
                LOGGER.warning("Could not list watched files: %s; retrying in %.1fs", e, self.retry_delay_s)
                self._cancelled.wait(self.retry_delay_s)
                continue

            watched = "".join(f"{p}\n" for p in paths).encode()

            with self._lock:
                if self._cancelled.is_set():
                    return False
                try:
                    process = subprocess.Popen(
                        self.watch_command,
                        stdin=subprocess.PIPE,
                        stdout=subprocess.DEVNULL,
                        stderr=subprocess.PIPE,
                    )
                except OSError as e:
                    LOGGER.warning(
                        "Could not launch %s: %s; retrying in %.1fs",
                        self.watch_command[0], e, self.retry_delay_s,
                    )
                    process = None
                self._process = process

            if process is None:
                self._cancelled.wait(self.retry_delay_s)
                continue

            self.cycles += 1
            LOGGER.debug("Watch cycle %d over %d paths", self.cycles, len(paths))
            _, stderr = process.communicate(input=watched)

            with self._lock:
                self._process = None

            if self._cancelled.is_set():
                return False

            if process.returncode in CHANGE_EXIT_CODES:
                return True

            LOGGER.warning(
                "%s exited with %d: %s",
                self.watch_command[0],
                process.returncode,
                stderr.decode(errors="replace").strip(),
            )
            self._cancelled.wait(self.retry_delay_s)

        return False

    def cancel(self) -> None:
        """Stop waiting: kills the running utility; later waits return False."""
        self._cancelled.set()

        with self._lock:
            process = self._process

        if process is not None and process.poll() is None:
            try:
                process.kill()
            except OSError as e:
                LOGGER.debug("Watch utility already gone: %s", e)


def watch_loop(source: ChangeSource, on_change: Callable[[], None]) -> None:
    """Forward every change to on_change until the source is cancelled."""
    while source.wait_for_change():
        on_change()
