"""HTTP client for the addons-manager control plane embedded in mitmdump."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path

import httpx

from harproxy.constants import (
    DEFAULT_CONTROL_HOST,
    DEFAULT_REQUEST_TIMEOUT,
    HAR_ADDON_PATH,
)
from harproxy.errors import ControlPlaneError, HarDeserializationError
from harproxy.models import CaptureType
from harproxy.session.logging import LogComponent, get_logger

logger = get_logger(LogComponent.CONTROL_PLANE)


class ControlPlaneClient:
    """Client for the control plane of a running proxy.

    The control plane listens on localhost:<port>; every addon exposes its
    operations under /<addon>/<operation>. Calls are single synchronous
    requests without retries.
    """

    def __init__(
        self,
        port: int,
        *,
        host: str = DEFAULT_CONTROL_HOST,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the control plane client.

        Args:
            port: Port the addons manager listens on
            host: Host of the control plane (default: localhost)
            timeout: Timeout for requests in seconds
            transport: Optional httpx transport (used to stub the control plane)
        """
        self.port: int = port
        self.base_url: str = f"http://{host}:{port}"
        self.timeout: float = timeout
        self._transport: httpx.BaseTransport | None = transport

    def _addon_url(self, addon: str, operation: str) -> str:
        """Build URL for an addon operation."""
        return f"{self.base_url}/{addon.strip('/')}/{operation.strip('/')}"

    def request(
        self,
        addon: str,
        operation: str,
        params: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Call an addon operation and return the successful response.

        Raises:
            ControlPlaneError: If the control plane is unreachable or answers with an error status
        """
        url = self._addon_url(addon, operation)
        logger.debug(f"GET {url} params={dict(params or {})}")
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.get(url, params=params)
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as e:
            raise ControlPlaneError(
                f"Control plane returned {e.response.status_code} for {addon}/{operation}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ControlPlaneError(
                f"Couldn't reach control plane at {self.base_url}: {e}"
            ) from e

    def is_reachable(self) -> bool:
        """Check if the control plane accepts connections.

        Returns:
            True if any HTTP response came back, False otherwise
        """
        try:
            with httpx.Client(timeout=2.0, transport=self._transport) as client:
                client.get(self.base_url)
                return True
        except httpx.HTTPError:
            return False


class HarCaptureManager:
    """HAR operations of the capture addon, driven through the control plane."""

    def __init__(self, client: ControlPlaneClient, addon: str = HAR_ADDON_PATH):
        self.client: ControlPlaneClient = client
        self.addon: str = addon

    def set_capture_types(self, capture_types: Iterable[CaptureType]) -> None:
        """Enable the capture filter for the given parts of the traffic."""
        types = ",".join(t.value for t in capture_types)
        self.client.request(self.addon, "set_har_capture_types", {"captureTypes": types})

    def fetch_har(self, clean: bool = False) -> bytes:
        """Return the current archive as raw JSON bytes.

        With clean=True the addon resets its capture in the same request, so
        nothing recorded between fetching and clearing is lost.

        The addon answers either with the archive itself or with
        {"path": "<file>"} naming the HAR file it wrote.

        Raises:
            ControlPlaneError: If the request fails
            HarDeserializationError: If the named HAR file can't be read
        """
        response = self.client.request(
            self.addon, "get_har", {"cleanHar": str(clean).lower()}
        )
        try:
            data = response.json()
        except ValueError as e:
            raise HarDeserializationError(f"Couldn't read HAR response: {e}") from e

        if isinstance(data, dict) and set(data) == {"path"}:
            har_path = Path(str(data["path"]))
            try:
                return har_path.read_bytes()
            except OSError as e:
                raise HarDeserializationError(
                    f"Couldn't read HAR file {har_path}: {e}"
                ) from e
        return response.content

    def new_har(self, page_ref: str | None = None, page_title: str | None = None) -> None:
        """Discard the captured traffic and start a fresh archive."""
        self.client.request(self.addon, "new_har", _page_params(page_ref, page_title))

    def new_page(
        self, page_ref: str | None = None, page_title: str | None = None
    ) -> None:
        """Start a new page; subsequent entries are attached to it."""
        self.client.request(self.addon, "new_page", _page_params(page_ref, page_title))


def _page_params(page_ref: str | None, page_title: str | None) -> dict[str, str]:
    params: dict[str, str] = {}
    if page_ref is not None and page_ref.strip():
        params["pageRef"] = page_ref.strip()
    if page_title is not None and page_title.strip():
        params["pageTitle"] = page_title.strip()
    return params
