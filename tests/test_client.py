"""Tests for the control plane client."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from harproxy.errors import ControlPlaneError, HarDeserializationError
from harproxy.models import CaptureType
from harproxy.session.client import ControlPlaneClient, HarCaptureManager


def _client(handler) -> ControlPlaneClient:
    return ControlPlaneClient(8088, transport=httpx.MockTransport(handler))


class TestControlPlaneClient:
    """Tests for URL building and error mapping."""

    def test_addon_urls(self) -> None:
        client = ControlPlaneClient(9099, host="127.0.0.1")
        assert client.base_url == "http://127.0.0.1:9099"
        assert client._addon_url("/har/", "get_har") == "http://127.0.0.1:9099/har/get_har"

    def test_error_status(self) -> None:
        client = _client(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(ControlPlaneError) as exc_info:
            client.request("har", "get_har")
        assert exc_info.value.status_code == 500

    def test_unreachable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        with pytest.raises(ControlPlaneError) as exc_info:
            client.request("har", "get_har")
        assert exc_info.value.status_code is None
        assert client.is_reachable() is False

    def test_reachable_on_any_response(self) -> None:
        assert _client(lambda request: httpx.Response(404)).is_reachable() is True


class TestHarCaptureManager:
    """Tests for the HAR operations."""

    def test_fetch_har_sends_clean_flag_in_one_request(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"log": {"entries": []}})

        manager = HarCaptureManager(_client(handler))
        payload = manager.fetch_har(clean=True)

        assert json.loads(payload) == {"log": {"entries": []}}
        assert len(seen) == 1
        assert seen[0].url.path == "/har/get_har"
        assert seen[0].url.params["cleanHar"] == "true"

        manager.fetch_har()
        assert seen[1].url.params["cleanHar"] == "false"

    def test_fetch_har_reads_file_named_by_addon(self, tmp_path: Path) -> None:
        har_file = tmp_path / "capture.har"
        har_file.write_text('{"log": {"version": "1.2", "entries": []}}')

        manager = HarCaptureManager(
            _client(lambda request: httpx.Response(200, json={"path": str(har_file)}))
        )
        assert manager.fetch_har() == har_file.read_bytes()

    def test_fetch_har_missing_file(self, tmp_path: Path) -> None:
        missing = tmp_path / "gone.har"
        manager = HarCaptureManager(
            _client(lambda request: httpx.Response(200, json={"path": str(missing)}))
        )
        with pytest.raises(HarDeserializationError):
            manager.fetch_har()

    def test_fetch_har_non_json(self) -> None:
        manager = HarCaptureManager(
            _client(lambda request: httpx.Response(200, text="<html>nope</html>"))
        )
        with pytest.raises(HarDeserializationError):
            manager.fetch_har()

    def test_set_capture_types(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        HarCaptureManager(_client(handler)).set_capture_types(
            [CaptureType.REQUEST_HEADERS, CaptureType.RESPONSE_CONTENT]
        )
        assert seen[0].url.path == "/har/set_har_capture_types"
        assert seen[0].url.params["captureTypes"] == "REQUEST_HEADERS,RESPONSE_CONTENT"

    def test_page_operations(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        manager = HarCaptureManager(_client(handler))
        manager.new_har()
        manager.new_page(" checkout ", "Checkout")

        assert seen[0].url.path == "/har/new_har"
        assert dict(seen[0].url.params) == {}
        assert seen[1].url.path == "/har/new_page"
        assert dict(seen[1].url.params) == {"pageRef": "checkout", "pageTitle": "Checkout"}
