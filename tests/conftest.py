from __future__ import annotations

import socket
import sys
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from harproxy.models import ProxySettings
from harproxy.session.client import ControlPlaneClient

FAKE_MITMDUMP: Path = Path(__file__).parent / "fake_mitmdump.py"

SAMPLE_ENTRY: dict[str, object] = {
    "startedDateTime": "2024-05-01T10:00:00.000Z",
    "time": 42.5,
    "request": {"method": "GET", "url": "http://example.com/", "headers": []},
    "response": {"status": 200, "statusText": "OK", "headers": []},
    "timings": {"send": 1, "wait": 40, "receive": 1.5},
    "serverIPAddress": "93.184.216.34",
}


class StubControlPlane:
    """In-memory addons manager answering the HAR operations."""

    def __init__(self) -> None:
        self.entries: list[dict[str, object]] = []
        self.requests: list[httpx.Request] = []
        self.capture_types: str | None = None
        self.pages: list[str] = []
        self.fail_with: int | None = None
        # Called right after a clean fetch, to simulate traffic arriving mid-operation.
        self.on_clean: Callable[[], None] | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, text="boom")

        path = request.url.path
        params = request.url.params
        if path == "/har/get_har":
            body = {
                "log": {
                    "version": "1.2",
                    "creator": {"name": "stub", "version": "0"},
                    "entries": list(self.entries),
                }
            }
            if params.get("cleanHar") == "true":
                self.entries.clear()
                if self.on_clean is not None:
                    self.on_clean()
            return httpx.Response(200, json=body)
        if path == "/har/new_har":
            self.entries.clear()
            self.pages = [params.get("pageRef", "Page 0")]
            return httpx.Response(200, json={})
        if path == "/har/new_page":
            self.pages.append(params.get("pageRef", f"Page {len(self.pages)}"))
            return httpx.Response(200, json={})
        if path == "/har/set_har_capture_types":
            self.capture_types = params.get("captureTypes")
            return httpx.Response(200, json={})
        return httpx.Response(404)

    def client(self, port: int = 8088) -> ControlPlaneClient:
        return ControlPlaneClient(port, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


@pytest.fixture
def fake_mitmdump() -> list[str]:
    return [sys.executable, "-u", str(FAKE_MITMDUMP)]


@pytest.fixture
def settings(fake_mitmdump: list[str], tmp_path: Path) -> ProxySettings:
    return ProxySettings(
        executable=fake_mitmdump,
        addons_dir=tmp_path / "addons",
        readiness_timeout=5.0,
        sigint_timeout=1.0,
        sigterm_timeout=1.0,
        sigkill_timeout=1.0,
    )


@pytest.fixture
def control_plane() -> StubControlPlane:
    return StubControlPlane()


@pytest.fixture
def sample_entry() -> dict[str, object]:
    return dict(SAMPLE_ENTRY)
