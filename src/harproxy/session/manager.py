"""Proxy session orchestration: start/stop mitmdump and collect its HAR."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from types import TracebackType

from harproxy.errors import SessionStateError
from harproxy.models import CaptureType, Har, ProxySettings, SessionState
from harproxy.session.addons import AddonsManagerAddon, HarCaptureAddon, ProxyAddon
from harproxy.session.client import ControlPlaneClient, HarCaptureManager
from harproxy.session.logging import LogComponent, get_logger
from harproxy.session.supervisor import ProcessSupervisor, SupervisedProcess

logger = get_logger(LogComponent.SESSION)


class ProxySessionManager:
    """Runs one mitmdump session and keeps the last captured archive.

    The archive fetched last stays available after stop(), so callers can
    collect the final capture once the proxy is gone.
    """

    def __init__(
        self,
        settings: ProxySettings | None = None,
        *,
        supervisor: ProcessSupervisor | None = None,
        control_client: ControlPlaneClient | None = None,
    ) -> None:
        self.settings: ProxySettings = settings or ProxySettings()
        self.supervisor: ProcessSupervisor = supervisor or ProcessSupervisor(
            self.settings.executable,
            readiness_marker=self.settings.readiness_marker,
            sigint_timeout=self.settings.sigint_timeout,
            sigterm_timeout=self.settings.sigterm_timeout,
            sigkill_timeout=self.settings.sigkill_timeout,
        )
        self.control_client: ControlPlaneClient = control_client or ControlPlaneClient(
            self.settings.control_port,
            host=self.settings.control_host,
            timeout=self.settings.request_timeout,
        )
        self.har_manager: HarCaptureManager = HarCaptureManager(self.control_client)
        self.addons: list[ProxyAddon] = [
            HarCaptureAddon(self.settings.addons_dir),
            AddonsManagerAddon(self.settings.addons_dir, self.control_client.port),
        ]

        self._lock: threading.RLock = threading.RLock()
        self._state: SessionState = SessionState.STOPPED
        self._process: SupervisedProcess | None = None
        self._proxy_port: int = 0
        self._last_har: Har = Har()

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._state == SessionState.RUNNING

    @property
    def process(self) -> SupervisedProcess | None:
        """Handle of the current (or last) proxy process."""
        with self._lock:
            return self._process

    @property
    def output(self) -> str:
        """Output of the current (or last) proxy process."""
        with self._lock:
            return self._process.output if self._process is not None else ""

    def get_proxy_port(self) -> int:
        with self._lock:
            return self._proxy_port

    def start(self, port: int) -> None:
        """Start mitmdump on `port` and block until it is listening.

        Raises:
            SessionStateError: If a session is already starting or running
            StartupError: If the process can't be spawned or never becomes ready
        """
        with self._lock:
            if self._state != SessionState.STOPPED:
                raise SessionStateError(f"Proxy session is already {self._state.value}")
            self._state = SessionState.STARTING
            self._process = None

            try:
                self._process = self.supervisor.start(
                    port, [addon.command_args() for addon in self.addons]
                )
                self.supervisor.wait_until_ready(
                    self._process, timeout=self.settings.readiness_timeout
                )
            except BaseException:
                logger.exception(f"Failed to start proxy on port {port}")
                self._teardown()
                raise

            self._proxy_port = port
            self._state = SessionState.RUNNING

    def stop(self) -> None:
        """Stop the session after taking a final snapshot of the archive. Never raises."""
        with self._lock:
            if self._state == SessionState.STOPPED:
                logger.debug("Proxy session is not running, nothing to stop")
                return

            if self._state == SessionState.RUNNING:
                try:
                    self.get_har()
                except Exception as e:
                    logger.warning(f"Couldn't take final HAR snapshot: {e}")

            self._teardown()

    def _teardown(self) -> None:
        self._state = SessionState.STOPPED
        if self._process is not None:
            self.supervisor.stop(self._process)

    def get_har(self, clean: bool = False) -> Har:
        """Return the captured archive.

        While running, the archive is fetched from the control plane (and
        reset there if `clean` is set). Otherwise the last fetched archive is
        returned without any I/O.

        Raises:
            ControlPlaneError: If the control plane request fails
            HarDeserializationError: If the archive is malformed
        """
        with self._lock:
            if self._state != SessionState.RUNNING:
                return self._last_har

            har = Har.from_json(self.har_manager.fetch_har(clean))
            self._last_har = har
            return har

    def _require_running(self, operation: str) -> None:
        if self._state != SessionState.RUNNING:
            raise SessionStateError(f"Can't {operation}: proxy session is not running")

    def set_har_capture_types(self, capture_types: Iterable[CaptureType]) -> None:
        with self._lock:
            self._require_running("set HAR capture types")
            self.har_manager.set_capture_types(capture_types)

    def new_har(self, page_ref: str | None = None, page_title: str | None = None) -> Har:
        """Start a fresh archive, returning the one captured so far.

        The clean fetch is the only reset; the new page is announced afterwards
        so traffic recorded in between lands in the fresh archive.
        """
        with self._lock:
            self._require_running("start a new HAR")
            previous = self.get_har(clean=True)
            self.har_manager.new_page(page_ref, page_title)
            return previous

    def new_page(self, page_ref: str | None = None, page_title: str | None = None) -> None:
        with self._lock:
            self._require_running("start a new page")
            self.har_manager.new_page(page_ref, page_title)

    def __enter__(self) -> ProxySessionManager:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()
