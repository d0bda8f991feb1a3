"""Top-level session: wires the runner together and owns its lifetime.

Threads:
    liverun-editor   launches the editor once
    liverun-watch    watch loop, feeds change events to the scheduler
    liverun-runs     scheduler dispatcher, one run at a time
    liverun-kills    kill listener
    main             display and signal handling
"""

import logging
import signal
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Optional

from liverun.config import Config
from liverun.display import CursesDisplay, DisplaySink, PlainDisplay
from liverun.editor import launch_editor
from liverun.scheduler import RunScheduler
from liverun.shutdown import ShutdownCoordinator
from liverun.supervisor import ProcessSupervisor
from liverun.target import TargetFile, resolve_target
from liverun.watcher import ChangeSource, watch_loop

LOGGER = logging.getLogger(__name__)

# Bound on joining worker threads after shutdown
THREAD_JOIN_TIMEOUT_S = 2.0


class Session:
    """One run of the live-reload loop, from startup to shutdown."""

    def __init__(self, config: Config, file: Optional[str] = None, display: Optional[DisplaySink] = None):
        self.config = config
        self.file = file
        self.display = display

        self.target: Optional[TargetFile] = None
        self.scheduler: Optional[RunScheduler] = None
        self.change_source: Optional[ChangeSource] = None
        self.coordinator: Optional[ShutdownCoordinator] = None

        self._done = threading.Event()
        self.started = threading.Event()

    def request_stop(self) -> None:
        self._done.set()

    def _make_display(self, target: TargetFile) -> DisplaySink:
        if self.config.use_tui:
            return CursesDisplay(target.path.name, self.config.interpreter)
        return PlainDisplay()

    def _make_change_source(self, target: TargetFile) -> ChangeSource:
        if target.is_temporary:
            return ChangeSource.for_file(
                target.path,
                watch_command=self.config.watch_command,
                retry_delay_s=self.config.watch_retry_delay_s,
            )
        return ChangeSource.for_directory(
            self.config.directory,
            target=target.path,
            ignore_patterns=self.config.ignore_patterns,
            watch_command=self.config.watch_command,
            retry_delay_s=self.config.watch_retry_delay_s,
        )

    def _watch(self) -> None:
        try:
            watch_loop(self.change_source, self.scheduler.notify_change)
        except Exception:
            LOGGER.exception("Watch loop stopped")
            self.display.set_status("watcher stopped")
            self.display.refresh()

    def _install_signal_handlers(self) -> Dict[int, Callable]:
        """Route SIGINT/SIGTERM to a graceful stop. Main thread only."""
        if threading.current_thread() is not threading.main_thread():
            return {}

        def handle_signal(signum, frame):
            LOGGER.info("Received signal %s, shutting down", signum)
            self._done.set()

        previous = {}
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, handle_signal)
        return previous

    def run(self) -> int:
        """
        Run until a termination signal or a quit request.

        Returns:
            Exit status (0 on graceful shutdown).

        Raises:
            ConfigError: If the target file cannot be resolved.
        """
        config = self.config
        self.target = resolve_target(self.file, config.interpreter)

        if self.display is None:
            self.display = self._make_display(self.target)

        supervisor = ProcessSupervisor(kill_grace_s=config.kill_grace_s)
        self.scheduler = RunScheduler(
            supervisor,
            self.display,
            config.interpreter,
            self.target.path,
            staleness_threshold_s=config.staleness_threshold_s,
        )
        self.change_source = self._make_change_source(self.target)

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="liverun-editor")
        editor = executor.submit(launch_editor, config.editor, self.target.path)
        executor.shutdown(wait=False)

        self.coordinator = ShutdownCoordinator(
            self.target,
            change_source=self.change_source,
            scheduler=self.scheduler,
            editor=editor,
            timeout_s=config.shutdown_timeout_s,
        )

        threads = [
            threading.Thread(target=self._watch, name="liverun-watch", daemon=True),
            threading.Thread(target=self.scheduler.run_forever, name="liverun-runs", daemon=True),
            threading.Thread(target=self.scheduler.listen_for_kills, name="liverun-kills", daemon=True),
        ]

        previous = self._install_signal_handlers()
        try:
            for thread in threads:
                thread.start()
            self.started.set()
            LOGGER.info("Watching %s with %s", self.target.path, config.interpreter)

            self.display.run(self._done, on_kill=self.scheduler.request_kill, on_quit=self.request_stop)
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

            failed = self.coordinator.shutdown()
            if failed:
                LOGGER.warning("Incomplete shutdown: %s", ", ".join(failed))

            for thread in threads:
                if thread.is_alive():
                    thread.join(THREAD_JOIN_TIMEOUT_S)

        return 0
