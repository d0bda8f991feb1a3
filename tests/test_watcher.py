"""Tests for the change source.

A small Python program stands in for the watch utility so the tests do not
depend on entr being installed.
"""

import sys
import threading
import time

import pytest

from liverun.watcher import ChangeSource, WatchError, watch_loop


def utility(code: str):
    return [sys.executable, "-c", code]


# Exits at once, as if a change happened
CHANGED = utility("import sys; sys.stdin.read()")
# Blocks until killed
BLOCKS = utility("import sys, time; sys.stdin.read(); time.sleep(60)")


class TestWaitForChange:
    """One watch cycle per call."""

    def test_exit_zero_is_change(self, tmp_path):
        source = ChangeSource.for_file(tmp_path / "a.py", watch_command=CHANGED)
        assert source.wait_for_change() is True
        assert source.cycles == 1

    def test_restartable(self, tmp_path):
        source = ChangeSource.for_file(tmp_path / "a.py", watch_command=CHANGED)
        assert all(source.wait_for_change() for _ in range(3))
        assert source.cycles == 3

    def test_new_file_status_is_change(self, tmp_path):
        source = ChangeSource.for_file(tmp_path / "a.py", watch_command=utility("raise SystemExit(2)"))
        assert source.wait_for_change() is True

    def test_paths_written_to_stdin(self, tmp_path):
        """The watched set is sent newline-joined on stdin."""
        received = tmp_path / "received.txt"
        command = utility(f"import sys; open({str(received)!r}, 'w').write(sys.stdin.read())")
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "a.py").write_text("")
        (tmp_path / "src" / "b.py").write_text("")
        target = tmp_path / "main.py"
        target.write_text("")

        source = ChangeSource.for_directory(tmp_path / "src", target=target, watch_command=command)
        source.wait_for_change()

        lines = received.read_text().splitlines()
        assert lines == [
            str(tmp_path / "src" / "a.py"),
            str(tmp_path / "src" / "b.py"),
            str(target),
        ]

    def test_directory_mode_adds_flag(self, tmp_path):
        source = ChangeSource.for_directory(tmp_path, watch_command=["entr", "-npz", "true"])
        assert source.watch_command == ["entr", "-d", "-npz", "true"]

    def test_directory_mode_other_utility_unchanged(self, tmp_path):
        source = ChangeSource.for_directory(tmp_path, watch_command=CHANGED)
        assert source.watch_command == CHANGED

    def test_empty_command_rejected(self, tmp_path):
        with pytest.raises(WatchError):
            ChangeSource.for_file(tmp_path / "a.py", watch_command=[])

    def test_empty_command_rejected_in_directory_mode(self, tmp_path):
        with pytest.raises(WatchError):
            ChangeSource.for_directory(tmp_path, watch_command=[])

    def test_file_mode_keeps_command(self, tmp_path):
        source = ChangeSource.for_file(tmp_path / "a.py", watch_command=["entr", "-npz", "true"])
        assert source.watch_command == ["entr", "-npz", "true"]

    def test_directory_rescanned_each_cycle(self, tmp_path):
        """Files created after startup are watched from the next cycle."""
        watched = tmp_path / "watched"
        watched.mkdir()
        (watched / "a.py").write_text("")
        received = tmp_path / "received.txt"
        command = utility(f"import sys; open({str(received)!r}, 'w').write(sys.stdin.read())")

        source = ChangeSource.for_directory(watched, watch_command=command)
        source.wait_for_change()
        assert received.read_text().splitlines() == [str(watched / "a.py")]

        (watched / "b.py").write_text("")
        source.wait_for_change()
        assert str(watched / "b.py") in received.read_text().splitlines()


class TestFailures:
    """Launch failures and errors are retried until cancelled."""

    def test_launch_failure_retried(self, tmp_path):
        source = ChangeSource.for_file(
            tmp_path / "a.py",
            watch_command=[str(tmp_path / "no-such-utility")],
            retry_delay_s=0.05,
        )
        results = []
        thread = threading.Thread(target=lambda: results.append(source.wait_for_change()))
        thread.start()

        time.sleep(0.3)
        assert thread.is_alive()

        source.cancel()
        thread.join(5)
        assert results == [False]
        assert source.cycles == 0

    def test_error_status_retried(self, tmp_path):
        """An error exit is not a change; the cycle is retried."""
        marker = tmp_path / "attempts"
        command = utility(
            f"import sys, pathlib; p = pathlib.Path({str(marker)!r}); "
            "p.write_text(p.read_text() + 'x' if p.exists() else 'x'); "
            "sys.exit(0 if len(p.read_text()) >= 3 else 1)"
        )
        source = ChangeSource.for_file(tmp_path / "a.py", watch_command=command, retry_delay_s=0.01)

        assert source.wait_for_change() is True
        assert marker.read_text() == "xxx"


    def test_missing_directory_retried(self, tmp_path):
        """A watched directory that disappears is waited for, not fatal."""
        watched = tmp_path / "watched"
        watched.mkdir()
        source = ChangeSource.for_directory(watched, watch_command=CHANGED, retry_delay_s=0.05)
        assert source.wait_for_change() is True

        watched.rmdir()
        results = []
        thread = threading.Thread(target=lambda: results.append(source.wait_for_change()))
        thread.start()

        time.sleep(0.3)
        assert thread.is_alive()
        assert source.cycles == 1

        watched.mkdir()
        thread.join(5)
        assert results == [True]
        assert source.cycles == 2

    def test_missing_directory_then_cancel(self, tmp_path):
        source = ChangeSource.for_directory(tmp_path / "missing", watch_command=CHANGED, retry_delay_s=0.05)
        results = []
        thread = threading.Thread(target=lambda: results.append(source.wait_for_change()))
        thread.start()

        time.sleep(0.2)
        source.cancel()
        thread.join(5)
        assert results == [False]
        assert source.cycles == 0


class TestCancel:
    """Cancelling the blocking wait."""

    def test_cancel_unblocks_wait(self, tmp_path):
        source = ChangeSource.for_file(tmp_path / "a.py", watch_command=BLOCKS)
        results = []
        thread = threading.Thread(target=lambda: results.append(source.wait_for_change()))
        thread.start()

        time.sleep(0.3)
        source.cancel()
        thread.join(5)

        assert not thread.is_alive()
        assert results == [False]

    def test_cancelled_source_never_waits(self, tmp_path):
        source = ChangeSource.for_file(tmp_path / "a.py", watch_command=BLOCKS)
        source.cancel()
        assert source.wait_for_change() is False
        assert source.cancelled

    def test_cancel_twice(self, tmp_path):
        source = ChangeSource.for_file(tmp_path / "a.py", watch_command=CHANGED)
        source.cancel()
        source.cancel()


def test_watch_loop_forwards_changes(tmp_path):
    source = ChangeSource.for_file(tmp_path / "a.py", watch_command=CHANGED)
    seen = []

    def on_change():
        seen.append(1)
        if len(seen) == 3:
            source.cancel()

    watch_loop(source, on_change)

    assert len(seen) == 3
