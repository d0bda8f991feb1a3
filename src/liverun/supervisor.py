"""Spawn the interpreter against the target file and supervise the child.

Each run gets its own process group so that a kill also reaches anything the
program started. Output is copied into the sinks by one pump thread per pipe.
"""

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Callable, List, Optional, Union

from liverun.constants import DEFAULT_KILL_GRACE_S, PIPE_CHUNK_SIZE
from liverun.display import OutputSink

LOGGER = logging.getLogger(__name__)

# Bound on waiting for pipes to drain once the child has exited
PUMP_JOIN_TIMEOUT_S = 1.0


class SpawnError(Exception):
    """Raised when the interpreter process cannot be started."""
    pass


@dataclass
class RunResult:
    exit_code: int
    duration_ms: int


@dataclass
class SupervisedProcess:
    popen: subprocess.Popen
    stdout_sink: OutputSink
    stderr_sink: OutputSink
    started_at: float
    pumps: List[threading.Thread] = field(default_factory=list)

    @property
    def pid(self) -> int:
        return self.popen.pid

    def poll(self) -> Optional[int]:
        return self.popen.poll()


def _pump(stream: IO[bytes], sink: OutputSink) -> None:
    """Copy a pipe into a sink until EOF. Keeps draining if the sink fails."""
    try:
        for chunk in iter(lambda: stream.read1(PIPE_CHUNK_SIZE), b""):
            try:
                sink.write(chunk)
            except Exception:
                LOGGER.exception("Output sink rejected %d bytes", len(chunk))
    finally:
        stream.close()


class ProcessSupervisor:
    """Starts, waits for and kills interpreter runs."""

    def __init__(
        self,
        kill_grace_s: float = DEFAULT_KILL_GRACE_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.kill_grace_s = kill_grace_s
        self._clock = clock

    def spawn(
        self,
        interpreter: str,
        target: Union[str, Path],
        stdout_sink: OutputSink,
        stderr_sink: OutputSink,
    ) -> SupervisedProcess:
        """
        Start `interpreter target` with both output streams wired to sinks.

        Raises:
            SpawnError: If the process could not be started.
        """
        cmd = [interpreter, str(target)]
        started_at = self._clock()

        try:
            popen = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnError(f"failed to start {interpreter}: {e}") from e

        process = SupervisedProcess(
            popen=popen,
            stdout_sink=stdout_sink,
            stderr_sink=stderr_sink,
            started_at=started_at,
        )

        for stream, sink, name in (
            (popen.stdout, stdout_sink, "stdout"),
            (popen.stderr, stderr_sink, "stderr"),
        ):
            pump = threading.Thread(
                target=_pump,
                args=(stream, sink),
                name=f"liverun-{name}-{popen.pid}",
                daemon=True,
            )
            pump.start()
            process.pumps.append(pump)

        LOGGER.debug("Spawned %s (pid %d)", " ".join(cmd), popen.pid)
        return process

    def wait(self, process: SupervisedProcess) -> RunResult:
        """Block until the process exits and its output has drained."""
        exit_code = process.popen.wait()
        for pump in process.pumps:
            pump.join(PUMP_JOIN_TIMEOUT_S)

        elapsed = self._clock() - process.started_at
        result = RunResult(exit_code=exit_code, duration_ms=max(int(elapsed * 1000), 0))
        LOGGER.debug("pid %d exited with %d after %dms", process.pid, exit_code, result.duration_ms)
        return result

    def kill(self, process: SupervisedProcess) -> bool:
        """
        Terminate the process group, escalating to SIGKILL after the grace period.

        Safe to call after the process has exited, and more than once.

        Returns:
            True if a signal was sent by this call.
        """
        if process.poll() is not None:
            return False

        if not self._signal(process, signal.SIGTERM):
            return False

        try:
            process.popen.wait(timeout=self.kill_grace_s)
        except subprocess.TimeoutExpired:
            LOGGER.debug("pid %d ignored SIGTERM; killing", process.pid)
            self._signal(process, signal.SIGKILL)
            process.popen.wait()

        return True

    def _signal(self, process: SupervisedProcess, sig: int) -> bool:
        try:
            os.killpg(process.pid, sig)
        except ProcessLookupError:
            return False
        except OSError as e:
            LOGGER.warning("Could not signal pid %d: %s", process.pid, e)
            return False
        return True
