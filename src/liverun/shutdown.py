"""Shutdown coordination.

Four independent steps run in parallel: cancel the watcher, stop the run in
flight, kill the editor, and delete the target file if it is temporary.
One step failing or hanging never holds up the others.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Callable, Dict, List, Optional

from liverun.constants import DEFAULT_SHUTDOWN_TIMEOUT_S
from liverun.scheduler import RunScheduler
from liverun.target import TargetFile
from liverun.watcher import ChangeSource

LOGGER = logging.getLogger(__name__)


class ShutdownCoordinator:
    """Tears down every process and file a session created, exactly once."""

    def __init__(
        self,
        target: TargetFile,
        change_source: Optional[ChangeSource] = None,
        scheduler: Optional[RunScheduler] = None,
        editor: Optional[Future] = None,
        timeout_s: float = DEFAULT_SHUTDOWN_TIMEOUT_S,
    ):
        self.target = target
        self.change_source = change_source
        self.scheduler = scheduler
        self.editor = editor
        self.timeout_s = timeout_s

        self._lock = threading.Lock()
        self._started = False

    @property
    def started(self) -> bool:
        with self._lock:
            return self._started

    def _cancel_watcher(self) -> None:
        if self.change_source is not None:
            self.change_source.cancel()

    def _stop_run(self) -> None:
        if self.scheduler is not None:
            self.scheduler.stop()

    def _kill_editor(self) -> None:
        if self.editor is None:
            return

        try:
            process = self.editor.result(timeout=self.timeout_s)
        except OSError as e:
            # The editor never started, so there is nothing to kill
            LOGGER.info("Editor was not launched: %s", e)
            return

        if process.poll() is None:
            process.kill()
            process.wait(timeout=self.timeout_s)

    def _remove_target(self) -> None:
        self.target.remove()

    def shutdown(self) -> List[str]:
        """
        Run every shutdown step concurrently and wait for them.

        Only the first call does anything.

        Returns:
            Names of the steps that failed or did not finish in time.
        """
        with self._lock:
            if self._started:
                return []
            self._started = True

        steps: Dict[str, Callable[[], None]] = {
            "watcher": self._cancel_watcher,
            "run": self._stop_run,
            "editor": self._kill_editor,
            "target": self._remove_target,
        }
        failed = []

        executor = ThreadPoolExecutor(max_workers=len(steps), thread_name_prefix="liverun-shutdown")
        futures = {executor.submit(step): name for name, step in steps.items()}

        try:
            for future in as_completed(futures, timeout=self.timeout_s):
                name = futures[future]
                try:
                    future.result()
                except Exception as e:
                    LOGGER.warning("Shutdown step '%s' failed: %s", name, e)
                    failed.append(name)
        except FuturesTimeoutError:
            pending = [name for future, name in futures.items() if not future.done()]
            LOGGER.warning("Shutdown timed out waiting for: %s", ", ".join(pending))
            failed.extend(pending)
        finally:
            executor.shutdown(wait=False)

        return failed
