"""Run scheduler: turns change events into interpreter runs, one at a time.

Phases of the single run slot:

    IDLE -> TRIGGERED -> RUNNING -> IDLE
                            |
                            +-> KILLING -> IDLE

A change that arrives while a run holds the slot is kept as one pending event
and starts the next run once the slot is released. If the run in flight has
been going for longer than the staleness threshold when the change arrives,
it is killed first. Killed runs are never counted.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Union

from liverun.constants import DEFAULT_STALENESS_S
from liverun.display import DisplaySink
from liverun.supervisor import ProcessSupervisor, RunResult, SpawnError, SupervisedProcess

LOGGER = logging.getLogger(__name__)

IDLE = "IDLE"
TRIGGERED = "TRIGGERED"
RUNNING = "RUNNING"
KILLING = "KILLING"

# Bounds how long the dispatcher takes to notice stop()
POLL_INTERVAL_S = 0.1

_STOP = object()


@dataclass
class RunStatistics:
    count: int = 0
    last_duration_ms: int = 0
    last_exit_code: Optional[int] = None

    def record(self, result: RunResult) -> None:
        self.count += 1
        self.last_duration_ms = result.duration_ms
        self.last_exit_code = result.exit_code


@dataclass
class RunState:
    """The single execution slot."""

    last_run_started_at: Optional[float] = None
    active_process: Optional[SupervisedProcess] = None
    phase: str = IDLE  # IDLE | TRIGGERED | RUNNING | KILLING
    kill_issued: bool = False
    kill_reason: str = ""
    # Set once the issued kill either landed or found the process already gone
    kill_settled: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)
    # Held for the whole spawn -> wait -> statistics span of a run
    slot: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    # Short-lived; guards the fields above
    guard: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class RunScheduler:
    """Single-flight scheduler for interpreter runs."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        sink: DisplaySink,
        interpreter: str,
        target: Union[str, Path],
        staleness_threshold_s: float = DEFAULT_STALENESS_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.supervisor = supervisor
        self.sink = sink
        self.interpreter = interpreter
        self.target = target
        self.staleness_threshold_s = staleness_threshold_s
        self._clock = clock

        self.state = RunState()
        self.statistics = RunStatistics()

        # One pending change at most; extra changes are dropped while it waits
        self._changes: "queue.Queue[bool]" = queue.Queue(maxsize=1)
        self._kill_requests: queue.Queue = queue.Queue()
        self._stopping = threading.Event()

    @property
    def phase(self) -> str:
        with self.state.guard:
            return self.state.phase

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    # =========================================================================
    # EVENTS
    # =========================================================================

    def notify_change(self) -> None:
        """Deliver a change event. Never blocks."""
        if self._stopping.is_set():
            return

        try:
            self._changes.put_nowait(True)
        except queue.Full:
            LOGGER.debug("Change coalesced into the pending run")

        self._preempt_if_stale()

    def request_kill(self) -> None:
        """Ask for the active run to be killed. Safe from any thread, at any time."""
        self._kill_requests.put_nowait(True)

    def is_stale(self, now: float) -> bool:
        last = self.state.last_run_started_at
        return last is not None and now - last > self.staleness_threshold_s

    def _claim_active(self, reason: str, now: Optional[float] = None) -> Optional[SupervisedProcess]:
        """Mark the active process as being killed. With `now`, only if it is stale."""
        with self.state.guard:
            process = self.state.active_process
            if process is None or self.state.kill_issued:
                return None
            if now is not None and not self.is_stale(now):
                return None
            self.state.kill_issued = True
            self.state.kill_reason = reason
            self.state.kill_settled = threading.Event()
            self.state.phase = KILLING
            return process

    def kill_active(self, reason: str = "killed") -> bool:
        """
        Kill the run in flight, if any.

        Returns:
            True if this call killed the run; False if there was none
            or it had already exited.
        """
        process = self._claim_active(reason)
        if process is None:
            return False

        LOGGER.info("Killing pid %d (%s)", process.pid, reason)
        return self._deliver_kill(process)

    def _preempt_if_stale(self) -> bool:
        process = self._claim_active("killed (stale)", now=self._clock())
        if process is None:
            return False

        LOGGER.info("Run pid %d is stale; killing it for the newer change", process.pid)
        return self._deliver_kill(process)

    def _deliver_kill(self, process: SupervisedProcess) -> bool:
        """Signal a claimed process; drop the claim if it had already exited."""
        delivered = False
        try:
            delivered = self.supervisor.kill(process)
        finally:
            with self.state.guard:
                if not delivered:
                    LOGGER.debug("pid %d exited before the kill; keeping its run", process.pid)
                    self.state.kill_issued = False
                    self.state.kill_reason = ""
                    if self.state.active_process is process:
                        self.state.phase = RUNNING
                self.state.kill_settled.set()
        return delivered

    # =========================================================================
    # RUNS
    # =========================================================================

    def run_once(self) -> Optional[RunResult]:
        """
        Execute one run in the slot.

        Logic:
        1. Acquire the slot (blocks while another run is in flight)
        2. Clear the display
        3. Record the start time and spawn the interpreter
        4. Wait for exit
        5. Record statistics unless the run was killed
        6. Refresh the display and release the slot

        Returns:
            RunResult for a completed run; None if killed, not started,
            or the scheduler is stopping.
        """
        with self.state.slot:
            with self.state.guard:
                self.state.phase = TRIGGERED

            self.sink.clear()

            try:
                with self.state.guard:
                    if self._stopping.is_set():
                        self.state.phase = IDLE
                        return None
                    self.state.last_run_started_at = self._clock()
                    process = self.supervisor.spawn(
                        self.interpreter, self.target, self.sink.stdout, self.sink.stderr
                    )
                    self.state.active_process = process
                    self.state.kill_issued = False
                    self.state.phase = RUNNING
            except SpawnError as e:
                LOGGER.warning("%s", e)
                self.sink.stderr.write(f"{e}\n".encode())
                self.sink.set_status("failed to start")
                self.sink.refresh()
                with self.state.guard:
                    self.state.phase = IDLE
                return None

            result = self.supervisor.wait(process)

            # A kill claimed while output drained may still find the process gone
            with self.state.guard:
                settled = self.state.kill_settled if self.state.kill_issued else None
            if settled is not None:
                settled.wait()

            with self.state.guard:
                killed = self.state.kill_issued
                reason = self.state.kill_reason
                self.state.active_process = None
                self.state.kill_issued = False
                if not killed:
                    self.statistics.record(result)
                count = self.statistics.count

            if killed:
                self.sink.set_status(reason)
            else:
                self.sink.set_run_count(count)
                self.sink.set_run_duration(result.duration_ms)
                self.sink.set_status("" if result.exit_code == 0 else f"exit {result.exit_code}")
            self.sink.refresh()

            with self.state.guard:
                self.state.phase = IDLE

            return None if killed else result

    def run_forever(self) -> None:
        """Dispatcher loop: one run per (coalesced) change event until stopped."""
        while not self._stopping.is_set():
            try:
                self._changes.get(timeout=POLL_INTERVAL_S)
            except queue.Empty:
                continue

            if self._stopping.is_set():
                break

            try:
                self.run_once()
            except Exception:
                LOGGER.exception("Run failed")

    def listen_for_kills(self) -> None:
        """Kill listener loop: serves request_kill() until stopped."""
        while True:
            request = self._kill_requests.get()
            if request is _STOP:
                break
            self.kill_active()

    def stop(self) -> bool:
        """
        Stop both loops and kill the run in flight.

        Returns:
            True if a run was killed.
        """
        self._stopping.set()
        self._kill_requests.put_nowait(_STOP)
        return self.kill_active("shutdown")
