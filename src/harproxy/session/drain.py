"""Background draining of a child process's combined output.

The drain thread is the only writer of the line buffer; readers take
snapshots under the same condition so every line appended before a marker
is visible to whoever waits for that marker.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import IO

from harproxy.session.logging import LogComponent, get_logger

logger = get_logger(LogComponent.DRAIN)
output_logger = get_logger(LogComponent.MITMDUMP)


class OutputDrain:
    """Continuously consume a byte stream line by line into an in-memory buffer.

    Attributes:
        name: Label used for the thread name and log messages
    """

    def __init__(
        self,
        stream: IO[bytes],
        *,
        name: str = "mitmdump",
        on_line: Callable[[str], None] | None = None,
    ) -> None:
        self.name: str = name
        self._stream: IO[bytes] = stream
        self._on_line: Callable[[str], None] | None = on_line
        self._lines: list[str] = []
        self._finished: bool = False
        self._condition: threading.Condition = threading.Condition()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start draining on a daemon thread; returns immediately."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run,
            name=f"{self.name}-output-drain",
            daemon=True,
        )
        self._thread.start()

    def _run(self) -> None:
        # Read until end of file: a quiet process is not a finished one.
        try:
            for raw in iter(self._stream.readline, b""):
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                with self._condition:
                    self._lines.append(line)
                    self._condition.notify_all()
                output_logger.info(line)
                if self._on_line is not None:
                    try:
                        self._on_line(line)
                    except Exception as e:
                        logger.error(f"Output callback for {self.name} failed: {e}")
        except (OSError, ValueError) as e:
            # ValueError: the stream was closed underneath us during shutdown.
            logger.debug(f"Stopped reading output of {self.name}: {e}")
        finally:
            with self._condition:
                self._finished = True
                self._condition.notify_all()

    def _contains(self, marker: str) -> bool:
        return any(marker in line for line in self._lines)

    def wait_for(self, marker: str, timeout: float) -> bool:
        """Block until `marker` shows up in the output.

        Returns False (never raises) if the timeout elapses or the stream ends
        without the marker having appeared.
        """
        deadline = time.monotonic() + timeout
        with self._condition:
            while not self._contains(marker):
                if self._finished:
                    return False
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._condition.wait(remaining)
            return True

    @property
    def lines(self) -> list[str]:
        with self._condition:
            return list(self._lines)

    @property
    def output(self) -> str:
        with self._condition:
            return "\n".join(self._lines)

    @property
    def finished(self) -> bool:
        """True once the stream reached end of file."""
        with self._condition:
            return self._finished

    def close(self, timeout: float = 2.0) -> None:
        """Wait for the drain thread to finish, then close the stream.

        Expects the writing process to be gone already; errors are logged, never raised.
        """
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
            if self._thread.is_alive():
                # Closing now would block on the reader's buffer lock; the daemon
                # thread releases the stream once the last writer exits.
                logger.warning(
                    f"Output drain for {self.name} still running after {timeout}s, "
                    "leaving stream open"
                )
                return
        try:
            self._stream.close()
        except (OSError, ValueError) as e:
            logger.warning(f"Couldn't close output stream of {self.name}: {e}")
