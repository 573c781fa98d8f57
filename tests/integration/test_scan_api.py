"""Integration tests for the scan API (upload, progress stream, result).

The full application is built with :func:`peroxide.main.create_app` and driven
through ``httpx.AsyncClient`` over ``ASGITransport``, so uploads, the detached
worker task, the registry and the event stream all run for real in the test
event loop.  The settle delay is zero.

Coverage targets
----------------
* Upload returns ``scanId`` immediately and stores a ``scanning`` record.
* Scenarios: ``malware`` text → suspicious; injection APIs → unsafe;
  registry APIs → suspicious; clean text → safe.
* Oversized uploads → 400 with nothing registered, written or spooled.
* Client disconnect ends the event stream of a scan that never finishes.
* Malformed requests → 400 (not multipart, no file part).
* Unknown ids → 404 ``{"error": "Scan not found"}`` on both read endpoints.
* Event stream: ``data:`` frames with non-decreasing progress ending at 100.
* Result: camelCase wire format, rendered logs, fileInfo, idempotent reads.
* Temp file removed once the scan finishes.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import tempfile
from unittest.mock import patch

import pytest
from httpx import AsyncClient

from peroxide.core.models import ScanStatus


async def _upload(client: AsyncClient, content: bytes, filename: str = "sample.bin") -> str:
    response = await client.post(
        "/api/upload",
        files={"file": (filename, content, "application/octet-stream")},
    )
    assert response.status_code == 200, response.text
    return response.json()["scanId"]


async def _wait_result(client: AsyncClient, scan_id: str, timeout: float = 5.0) -> dict:
    async def _poll() -> dict:
        while True:
            body = (await client.get(f"/api/scan-result/{scan_id}")).json()
            if body["status"] != "scanning":
                return body
            await asyncio.sleep(0.01)

    return await asyncio.wait_for(_poll(), timeout=timeout)


def _parse_sse(text: str) -> list[dict]:
    frames = [f for f in text.split("\n\n") if f]
    assert all(f.startswith("data: ") for f in frames)
    return [json.loads(f[len("data: "):]) for f in frames]


# ---------------------------------------------------------------------------
# POST /api/upload
# ---------------------------------------------------------------------------


class TestUpload:
    async def test_returns_scan_id(self, client: AsyncClient, app):
        response = await client.post(
            "/api/upload",
            files={"file": ("sample.txt", b"hello", "text/plain")},
        )

        assert response.status_code == 200
        scan_id = response.json()["scanId"]
        assert scan_id.startswith("scan-")
        assert scan_id in app.state.registry

    async def test_oversized_upload_rejected(self, client: AsyncClient, app, upload_dir):
        response = await client.post(
            "/api/upload",
            files={"file": ("big.bin", b"x" * 2048, "application/octet-stream")},
        )

        assert response.status_code == 400
        assert response.json()["error"].startswith("File size exceeds maximum limit of")
        assert len(app.state.registry) == 0
        assert list(upload_dir.iterdir()) == []

    async def test_large_body_rejected_before_multipart_spooling(
        self, client: AsyncClient, app, upload_dir
    ):
        with patch.object(tempfile.SpooledTemporaryFile, "rollover") as rollover:
            response = await client.post(
                "/api/upload",
                files={"file": ("huge.bin", b"x" * (3 * 1024 * 1024), "application/octet-stream")},
            )

        assert response.status_code == 400
        assert response.json() == {"error": "File size exceeds maximum limit of 1024 bytes"}
        rollover.assert_not_called()
        assert len(app.state.registry) == 0
        assert list(upload_dir.iterdir()) == []

    async def test_non_multipart_rejected(self, client: AsyncClient, app):
        response = await client.post("/api/upload", json={"file": "nope"})

        assert response.status_code == 400
        assert response.json() == {"error": "Expected multipart/form-data"}
        assert len(app.state.registry) == 0

    async def test_missing_file_part_rejected(self, client: AsyncClient, app):
        response = await client.post(
            "/api/upload",
            files={"attachment": ("sample.txt", b"hello", "text/plain")},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "No file found in multipart data"}
        assert len(app.state.registry) == 0

    async def test_temp_file_removed_after_scan(self, client: AsyncClient, upload_dir):
        scan_id = await _upload(client, b"hello")
        await _wait_result(client, scan_id)

        assert list(upload_dir.iterdir()) == []


# ---------------------------------------------------------------------------
# GET /api/scan-result/{scan_id}
# ---------------------------------------------------------------------------


class TestScanResult:
    async def test_scenario_a_suspicious_keyword(self, client: AsyncClient):
        scan_id = await _upload(client, b"this is malware text")
        body = await _wait_result(client, scan_id)

        assert body["status"] == "suspicious"
        assert body["threats"] == [
            {
                "type": "Suspicious String",
                "details": body["threats"][0]["details"],
                "severity": "suspicious",
                "threatId": "S001",
            }
        ]
        assert body["stats"] == {"threatsFound": 1, "malicious": 0, "suspicious": 1, "neutral": 0}

    async def test_scenario_b_process_injection(self, client: AsyncClient):
        content = b"MZ\x90\x00 kernel32.dll CreateRemoteThread VirtualAllocEx"
        scan_id = await _upload(client, content, filename="dropper.exe")
        body = await _wait_result(client, scan_id)

        assert body["status"] == "unsafe"
        assert body["stats"]["malicious"] >= 1
        assert "[50%] PE executable detected, analyzing..." in body["logs"]

    async def test_scenario_c_registry_modification(self, client: AsyncClient):
        scan_id = await _upload(client, b"RegSetValueExW RegCreateKeyExW")
        body = await _wait_result(client, scan_id)

        assert body["status"] == "suspicious"
        assert [t["threatId"] for t in body["threats"]] == ["S003"]

    async def test_scenario_d_clean_file(self, client: AsyncClient):
        scan_id = await _upload(client, b"just an ordinary text file")
        body = await _wait_result(client, scan_id)

        assert body["status"] == "safe"
        assert body["threats"] == []
        assert body["stats"]["threatsFound"] == 0
        assert body["logs"] == [
            "[10%] Reading file content...",
            "[30%] Scanning file headers...",
            "[60%] Performing signature analysis...",
            "[90%] Finalizing results...",
            "[100%] Scan complete!",
        ]

    async def test_file_info(self, client: AsyncClient):
        content = b"file info payload"
        scan_id = await _upload(client, content, filename="../../info.txt")
        body = await _wait_result(client, scan_id)

        assert body["fileInfo"] == {
            "filename": "info.txt",
            "size": len(content),
            "sha256": hashlib.sha256(content).hexdigest(),
        }

    async def test_result_is_idempotent_after_completion(self, client: AsyncClient):
        scan_id = await _upload(client, b"virus")
        await _wait_result(client, scan_id)

        first = await client.get(f"/api/scan-result/{scan_id}")
        second = await client.get(f"/api/scan-result/{scan_id}")

        assert first.status_code == second.status_code == 200
        assert first.content == second.content

    async def test_scanning_record_readable_before_completion(self, client: AsyncClient, app):
        scan_id = "scan-manual"
        app.state.registry.create(scan_id)

        body = (await client.get(f"/api/scan-result/{scan_id}")).json()

        assert body["status"] == ScanStatus.SCANNING.value
        assert body["logs"] == []
        assert "fileInfo" not in body

    async def test_unknown_scan_is_404(self, client: AsyncClient):
        response = await client.get("/api/scan-result/scan-does-not-exist")

        assert response.status_code == 404
        assert response.json() == {"error": "Scan not found"}


# ---------------------------------------------------------------------------
# GET /api/scan-status/{scan_id}
# ---------------------------------------------------------------------------


class TestScanStatusStream:
    async def test_stream_ends_at_100(self, client: AsyncClient):
        scan_id = await _upload(client, b"MZ\x90\x00 malware")

        response = await asyncio.wait_for(
            client.get(f"/api/scan-status/{scan_id}"), timeout=5
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        events = _parse_sse(response.text)
        progress = [e["progress"] for e in events]
        assert progress == sorted(progress)
        assert events[-1] == {"progress": 100, "message": "Scan complete!"}
        assert {"progress": 10, "message": "Reading file content..."} in events

    async def test_stream_matches_result_logs(self, client: AsyncClient):
        scan_id = await _upload(client, b"clean")
        response = await asyncio.wait_for(
            client.get(f"/api/scan-status/{scan_id}"), timeout=5
        )
        body = (await client.get(f"/api/scan-result/{scan_id}")).json()

        rendered = [f"[{e['progress']}%] {e['message']}" for e in _parse_sse(response.text)]
        assert rendered == body["logs"]

    async def test_stream_for_failed_scan_ends_with_error_message(self, client: AsyncClient, app):
        registry = app.state.registry
        registry.create("scan-failed")
        registry.append_log("scan-failed", 10, "Reading file content...")
        registry.finalize("scan-failed", ScanStatus.ERROR, [], message="Error reading file: gone")

        response = await client.get("/api/scan-status/scan-failed")

        events = _parse_sse(response.text)
        assert events[-1]["message"] == "Error reading file: gone"

    async def test_client_disconnect_ends_stream_of_unfinished_scan(self, app):
        registry = app.state.registry
        registry.create("scan-live")
        registry.append_log("scan-live", 10, "Reading file content...")

        notifier = app.state.notifier
        disconnected = asyncio.Event()
        request_sent = False
        frames: list[bytes] = []

        async def receive() -> dict:
            # The empty request body once, then disconnect after the first frame.
            nonlocal request_sent
            if not request_sent:
                request_sent = True
                return {"type": "http.request", "body": b"", "more_body": False}
            await disconnected.wait()
            return {"type": "http.disconnect"}

        async def send(message: dict) -> None:
            if message["type"] == "http.response.body" and message.get("body"):
                frames.append(message["body"])
                disconnected.set()

        scope = {
            "type": "http",
            "asgi": {"version": "3.0", "spec_version": "2.4"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": "/api/scan-status/scan-live",
            "raw_path": b"/api/scan-status/scan-live",
            "root_path": "",
            "query_string": b"",
            "headers": [(b"host", b"test"), (b"accept", b"text/event-stream")],
            "client": ("127.0.0.1", 1234),
            "server": ("test", 80),
        }

        with patch.object(notifier, "stream", wraps=notifier.stream) as stream:
            await asyncio.wait_for(app(scope, receive, send), timeout=5)

        assert stream.call_args.kwargs["is_disconnected"] is not None
        assert len(frames) == 1
        assert _parse_sse(frames[0].decode()) == [
            {"progress": 10, "message": "Reading file content..."}
        ]
        assert registry.get("scan-live").status is ScanStatus.SCANNING

    async def test_unknown_scan_is_404(self, client: AsyncClient):
        response = await client.get("/api/scan-status/scan-does-not-exist")

        assert response.status_code == 404
        assert response.json() == {"error": "Scan not found"}


# ---------------------------------------------------------------------------
# Application surface
# ---------------------------------------------------------------------------


class TestApplication:
    async def test_unknown_route_uses_error_envelope(self, client: AsyncClient):
        response = await client.get("/api/nope")

        assert response.status_code == 404
        assert "error" in response.json()

    async def test_cors_preflight(self, client: AsyncClient):
        response = await client.options(
            "/api/upload",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"

    @pytest.mark.parametrize("path", ["/api/scan-result/x", "/healthz"])
    async def test_responses_carry_correlation_id(self, client: AsyncClient, path: str):
        response = await client.get(path, headers={"X-Correlation-ID": "it-corr"})
        assert response.headers["x-correlation-id"] == "it-corr"
