"""Lifecycle of the supervised mitmdump process.

The supervisor builds the command line, spawns the process with stdout and
stderr merged into one pipe, drains that pipe on a background thread and
waits for the readiness marker before anyone routes traffic through it.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Iterable, Sequence
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict

from harproxy.constants import (
    DEFAULT_EXECUTABLE,
    DEFAULT_READINESS_TIMEOUT,
    DEFAULT_SIGINT_TIMEOUT,
    DEFAULT_SIGKILL_TIMEOUT,
    DEFAULT_SIGTERM_TIMEOUT,
    READINESS_MARKER,
)
from harproxy.errors import StartupError
from harproxy.models import TrackedProcess
from harproxy.session.drain import OutputDrain
from harproxy.session.logging import LogComponent, get_logger
from harproxy.session.process_control import (
    find_listeners_for_port,
    is_alive,
    stop_tracked_process,
    track_process,
)

logger = get_logger(LogComponent.SUPERVISOR)


class SupervisedProcess(BaseModel):
    """Handle to a spawned proxy process, owned by the ProcessSupervisor that started it."""

    model_config: ClassVar[ConfigDict] = ConfigDict(arbitrary_types_allowed=True)

    port: int
    command: list[str]
    process: subprocess.Popen
    drain: OutputDrain
    tracked: TrackedProcess | None = None
    stopped: bool = False

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def output(self) -> str:
        return self.drain.output

    def is_alive(self) -> bool:
        if self.tracked is not None:
            return is_alive(self.tracked)
        return self.process.poll() is None


class ProcessSupervisor:
    """Starts, watches and stops mitmdump processes.

    Attributes:
        executable: Command prefix used to launch the proxy (e.g. ["mitmdump"])
        readiness_marker: Output substring signalling the proxy is listening
    """

    def __init__(
        self,
        executable: Sequence[str] = (DEFAULT_EXECUTABLE,),
        *,
        readiness_marker: str = READINESS_MARKER,
        sigint_timeout: float = DEFAULT_SIGINT_TIMEOUT,
        sigterm_timeout: float = DEFAULT_SIGTERM_TIMEOUT,
        sigkill_timeout: float = DEFAULT_SIGKILL_TIMEOUT,
        env: dict[str, str] | None = None,
    ) -> None:
        if not executable:
            raise ValueError("executable must not be empty")
        self.executable: list[str] = list(executable)
        self.readiness_marker: str = readiness_marker
        self.sigint_timeout: float = sigint_timeout
        self.sigterm_timeout: float = sigterm_timeout
        self.sigkill_timeout: float = sigkill_timeout
        self.env: dict[str, str] | None = env

    def build_command(
        self, port: int, extra_args: Iterable[Sequence[str]] = ()
    ) -> list[str]:
        """Build `<executable> -p <port>` followed by every contributed fragment."""
        command = [*self.executable, "-p", str(port)]
        for fragment in extra_args:
            command.extend(fragment)
        return command

    def start(
        self, port: int, extra_args: Iterable[Sequence[str]] = ()
    ) -> SupervisedProcess:
        """Spawn the proxy and start draining its output. Does not wait for readiness."""
        command = self.build_command(port, extra_args)
        logger.info(f"Starting proxy using command: {' '.join(command)}")

        # Own session/process group so the whole tree can be signalled on stop.
        popen_kwargs: dict[str, Any] = {}  # pyright: ignore[reportExplicitAny]
        if os.name == "nt":
            popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]
        else:
            popen_kwargs["start_new_session"] = True

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=self.env,
                **popen_kwargs,
            )
        except OSError as e:
            raise StartupError(
                f"Couldn't start {self.executable[0]} process: {e}", port=port
            ) from e

        try:
            assert process.stdout is not None
            drain = OutputDrain(
                process.stdout, name=os.path.basename(self.executable[-1])
            )
            drain.start()

            handle = SupervisedProcess(
                port=port,
                command=command,
                process=process,
                drain=drain,
                tracked=track_process(process.pid),
            )
        except BaseException:
            # Nobody holds a handle yet, so nobody else could stop this process.
            process.kill()
            process.wait()
            raise
        logger.debug(f"Proxy process started with pid {process.pid}")
        return handle

    def is_ready(
        self, handle: SupervisedProcess, timeout: float = DEFAULT_READINESS_TIMEOUT
    ) -> bool:
        """Wait up to `timeout` seconds for the readiness marker."""
        return handle.drain.wait_for(self.readiness_marker, timeout)

    def wait_until_ready(
        self, handle: SupervisedProcess, timeout: float = DEFAULT_READINESS_TIMEOUT
    ) -> None:
        """Like is_ready, but stops the process and raises StartupError on failure."""
        if self.is_ready(handle, timeout):
            logger.info(f"Proxy is listening on port {handle.port}")
            return

        returncode = handle.process.poll()
        self.stop(handle)
        listeners = [
            pid for pid in find_listeners_for_port(handle.port) if pid != handle.pid
        ]

        output = handle.output
        if returncode is not None:
            reason = f"exited with code {returncode} before it was ready"
        else:
            reason = f"did not report readiness within {timeout}s"
        if listeners:
            reason += f" (port {handle.port} is held by pid(s) {listeners})"
        logger.error(f"Proxy hasn't started properly, output: {output}")
        raise StartupError(
            f"Proxy {reason}",
            output=output,
            returncode=returncode,
            port=handle.port,
        )

    def stop(self, handle: SupervisedProcess) -> None:
        """Terminate the process tree and close its output stream. Never raises."""
        if handle.stopped:
            return
        handle.stopped = True

        try:
            if handle.tracked is not None:
                stop_tracked_process(
                    handle.tracked,
                    name="mitmdump",
                    sigint_timeout=self.sigint_timeout,
                    sigterm_timeout=self.sigterm_timeout,
                    sigkill_timeout=self.sigkill_timeout,
                )
            if handle.process.poll() is None:
                handle.process.kill()
            handle.process.wait(timeout=self.sigkill_timeout)
        except Exception as e:
            logger.warning(f"Couldn't terminate proxy process {handle.pid}: {e}")

        handle.drain.close()
        logger.info(f"Proxy on port {handle.port} stopped")
