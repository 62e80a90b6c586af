"""Tests for process tracking and termination helpers."""

from __future__ import annotations

import os
import socket
import subprocess
import sys
from collections.abc import Iterator

import pytest

from harproxy.models import TrackedProcess
from harproxy.session.process_control import (
    find_listeners_for_port,
    is_alive,
    stop_tracked_process,
    track_process,
    validate_tracked,
)

SLEEPER = "import time\nwhile True:\n    time.sleep(0.1)\n"


@pytest.fixture
def sleeper() -> Iterator[subprocess.Popen[bytes]]:
    proc = subprocess.Popen(
        [sys.executable, "-c", SLEEPER],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )
    yield proc
    if proc.poll() is None:
        proc.kill()
    proc.wait(timeout=5)


class TestTracking:
    """Tests for tracked process records."""

    def test_track_running_process(self, sleeper: subprocess.Popen[bytes]) -> None:
        tp = track_process(sleeper.pid)
        assert tp is not None
        assert tp.pid == sleeper.pid
        assert tp.create_time is not None
        if os.name != "nt":
            assert tp.pgid == sleeper.pid
        assert validate_tracked(tp) is not None
        assert is_alive(tp)

    def test_create_time_mismatch_is_rejected(
        self, sleeper: subprocess.Popen[bytes]
    ) -> None:
        tp = track_process(sleeper.pid)
        assert tp is not None
        reused = TrackedProcess(pid=tp.pid, create_time=(tp.create_time or 0) - 100)
        assert validate_tracked(reused) is None
        assert not is_alive(reused)

    def test_untracked_records(self) -> None:
        assert validate_tracked(TrackedProcess()) is None
        assert track_process(2**22 + 12345) is None

    def test_own_process_group_is_never_adopted(self) -> None:
        tp = track_process(os.getpid())
        assert tp is not None
        assert tp.pgid is None


class TestStopTrackedProcess:
    """Tests for escalating shutdown."""

    def test_stops_process_group(self, sleeper: subprocess.Popen[bytes]) -> None:
        tp = track_process(sleeper.pid)
        assert tp is not None
        stop_tracked_process(
            tp, name="sleeper", sigint_timeout=1.0, sigterm_timeout=1.0, sigkill_timeout=1.0
        )
        assert sleeper.wait(timeout=5) is not None
        assert not is_alive(tp)

    def test_stopping_a_dead_process_is_harmless(
        self, sleeper: subprocess.Popen[bytes]
    ) -> None:
        tp = track_process(sleeper.pid)
        assert tp is not None
        sleeper.kill()
        sleeper.wait(timeout=5)
        stop_tracked_process(tp, name="sleeper", sigint_timeout=0.1, sigterm_timeout=0.1)


def test_find_listeners_for_port() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen()
        port = int(sock.getsockname()[1])
        assert os.getpid() in find_listeners_for_port(port)
