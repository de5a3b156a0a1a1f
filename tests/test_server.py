"""
HTTP surface tests using aiohttp's TestClient/TestServer.

Covers:
- Download routes (platform, channel, version, filename, user-agent detection)
- Squirrel.Mac update checks and the /update redirect
- Squirrel.Windows RELEASES feed rewriting
- Notes content negotiation
- Webhook signature verification and refresh
- API routes and token guard
- Error mapping
"""

import hashlib
import hmac
import json

import pytest
from aiohttp.test_utils import TestClient, TestServer

from releasehub.config import ServerConfig
from releasehub.exceptions import UpstreamError
from releasehub.server import HUB_KEY, ReleaseHub, create_app, verify_signature
from tests.helpers import FakeBackend, make_release

pytestmark = [pytest.mark.unit, pytest.mark.http]

SHA = "94689FEDE03FED7AB59C24337673A27837F0C3EC"
MAC_UA = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7)"


def _backend():
    backend = FakeBackend()
    backend.add_release(
        make_release(
            "1.0.0",
            ["App-1.0.0.dmg", "App-1.0.0-mac.zip", "AppSetup-1.0.0.exe", "RELEASES",
             "App-1.0.0-full.nupkg"],
            notes="First stable",
            days=10,
        ),
        contents={
            "RELEASES": f"{SHA} App-1.0.0-full.nupkg 1234\n".encode("utf-8"),
        },
    )
    backend.add_release(
        make_release(
            "1.1.0-beta.1",
            ["App-1.1.0.dmg", "App-1.1.0-mac.zip", "RELEASES", "App-1.1.0-beta1-full.nupkg"],
            notes="Beta features",
            days=20,
        ),
        contents={
            "RELEASES": (
                f"{SHA} App-1.0.0-full.nupkg 1234\n"
                f"{SHA.lower()} App-1.1.0-beta1-full.nupkg 5678"
            ).encode("utf-8"),
        },
    )
    backend.add_release(
        make_release("0.9.0", ["App-0.9.0.dmg", "app-0.9.0-linux-x64.zip"], notes="Old", days=1)
    )
    return backend


def _client(tmp_path, backend=None, **settings):
    settings.setdefault("cache_dir", str(tmp_path / "cache"))
    config = ServerConfig(**settings)
    hub = ReleaseHub(config, backend=backend or _backend())
    return TestClient(TestServer(create_app(hub)))


class TestDownloads:
    """Download routes."""

    @pytest.mark.asyncio
    async def test_download_latest_stable_for_platform(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/download/osx")
            body = await resp.read()

            assert resp.status == 200
            assert body == b"App-1.0.0.dmg"
            assert resp.headers["Content-Length"] == str(len(body))
            assert 'filename="App-1.0.0.dmg"' in resp.headers["Content-Disposition"]
            assert resp.headers["Content-Disposition"].startswith("attachment")

    @pytest.mark.asyncio
    async def test_filetype_hint(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/download/osx?filetype=zip")
            assert await resp.read() == b"App-1.0.0-mac.zip"

            resp = await client.get("/download/osx?filetype=deb")
            assert resp.status == 404
            assert (await resp.json())["kind"] == "not_found"

    @pytest.mark.asyncio
    async def test_download_by_channel(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/download/channel/beta/osx")
            assert await resp.read() == b"App-1.1.0.dmg"

            resp = await client.get("/download/channel/Beta/osx")
            assert await resp.read() == b"App-1.1.0.dmg"

    @pytest.mark.asyncio
    async def test_download_compact_platform_ids(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/download/osx64")
            assert resp.status == 200
            assert await resp.read() == b"App-1.0.0.dmg"

            resp = await client.get("/download/version/0.9.0/linux64")
            assert await resp.read() == b"app-0.9.0-linux-x64.zip"

    @pytest.mark.asyncio
    async def test_download_by_version_ignores_channel(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/download/version/0.9.0/linux")
            assert await resp.read() == b"app-0.9.0-linux-x64.zip"

            resp = await client.get("/download/version/v1.1.0-beta.1/osx")
            assert await resp.read() == b"App-1.1.0.dmg"

    @pytest.mark.asyncio
    async def test_download_named_file(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/download/1.0.0/AppSetup-1.0.0.exe")
            assert resp.status == 200
            assert await resp.read() == b"AppSetup-1.0.0.exe"

            resp = await client.get("/download/1.0.0/missing.exe")
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_platform_from_user_agent(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/", headers={"User-Agent": MAC_UA})
            assert await resp.read() == b"App-1.0.0.dmg"

            resp = await client.get("/", headers={"User-Agent": "curl/8.0"})
            assert resp.status == 400
            assert (await resp.json())["kind"] == "malformed_input"

    @pytest.mark.asyncio
    async def test_fallback_to_any_channel(self, tmp_path):
        backend = FakeBackend()
        backend.add_release(make_release("2.0.0-beta.2", ["App.dmg"]))
        async with _client(tmp_path, backend=backend) as client:
            resp = await client.get("/download/osx")
            assert resp.status == 200
            assert await resp.read() == b"App.dmg"

    @pytest.mark.asyncio
    async def test_repeated_downloads_are_cached(self, tmp_path):
        backend = _backend()
        async with _client(tmp_path, backend=backend) as client:
            for _ in range(3):
                resp = await client.get("/download/osx")
                assert resp.status == 200
            assert backend.fetch_calls == ["1.0.0/App-1.0.0.dmg"]

    @pytest.mark.asyncio
    async def test_unknown_platform(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/download/beos")
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_upstream_failure_maps_to_502(self, tmp_path):
        backend = _backend()
        backend.fetch_error = UpstreamError("storage down")
        async with _client(tmp_path, backend=backend) as client:
            resp = await client.get("/download/osx")
            assert resp.status == 502
            assert await resp.json() == {"error": "storage down", "kind": "upstream_failure"}


class TestUpdates:
    """Squirrel update endpoints."""

    @pytest.mark.asyncio
    async def test_update_redirect(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get(
                "/update?version=1.0.0&platform=osx", allow_redirects=False
            )
            assert resp.status == 302
            assert resp.headers["Location"] == "/update/osx/1.0.0"

            resp = await client.get("/update?platform=osx", allow_redirects=False)
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_osx_update_available(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/update/osx/0.9.0")
            data = await resp.json()

            assert resp.status == 200
            assert data["name"] == "1.1.0-beta.1"
            assert data["url"] == (
                f"http://{client.host}:{client.port}"
                "/download/version/1.1.0-beta.1/osx?filetype=zip"
            )
            assert data["notes"] == "Beta features\n\nFirst stable"
            assert data["pub_date"] == "2024-01-21T00:00:00.000Z"

    @pytest.mark.asyncio
    async def test_osx_update_respects_channel(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/update/osx/0.9.0?channel=stable")
            assert (await resp.json())["name"] == "1.0.0"

    @pytest.mark.asyncio
    async def test_osx_no_update(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/update/osx/1.1.0-beta.1")
            assert resp.status == 204

            resp = await client.get("/update/osx/v1.1.0-beta.1")
            assert resp.status == 204

    @pytest.mark.asyncio
    async def test_public_url_is_used_for_links(self, tmp_path):
        async with _client(tmp_path, public_url="https://updates.example.com") as client:
            resp = await client.get("/update/osx/0.9.0")
            data = await resp.json()
            assert data["url"].startswith("https://updates.example.com/download/version/")

    @pytest.mark.asyncio
    async def test_windows_feed_is_rewritten(self, tmp_path):
        async with _client(tmp_path, public_url="https://updates.example.com") as client:
            resp = await client.get("/update/win32/1.0.0/RELEASES")
            body = await resp.text()

            assert resp.status == 200
            assert resp.headers["Content-Length"] == str(len(body.encode("utf-8")))
            assert 'filename="RELEASES"' in resp.headers["Content-Disposition"]
            assert body == (
                f"{SHA} https://updates.example.com/download/1.0.0/App-1.0.0-full.nupkg 1234\n"
                f"{SHA.lower()} https://updates.example.com/download/1.1.0-beta.1/"
                "App-1.1.0-beta1-full.nupkg 5678"
            )

    @pytest.mark.asyncio
    async def test_windows_feed_corrupt_manifest(self, tmp_path):
        backend = FakeBackend()
        backend.add_release(
            make_release("1.0.0", ["RELEASES"]),
            contents={"RELEASES": b"not a manifest line"},
        )
        async with _client(tmp_path, backend=backend) as client:
            resp = await client.get("/update/windows/1.0.0/RELEASES")
            assert resp.status == 500
            assert (await resp.json())["kind"] == "decode_failure"

    @pytest.mark.asyncio
    async def test_windows_feed_without_newer_version(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/update/windows/9.0.0/RELEASES")
            assert resp.status == 404


class TestNotes:
    """Notes endpoint content negotiation."""

    @pytest.mark.asyncio
    async def test_plain_text_notes(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/notes/1.0.0")
            assert resp.content_type == "text/plain"
            assert await resp.text() == (
                "## 1.1.0-beta.1\nBeta features\n\n## 1.0.0\nFirst stable"
            )

    @pytest.mark.asyncio
    async def test_json_notes(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/notes", headers={"Accept": "application/json"})
            data = await resp.json()
            assert data["notes"] == "Beta features\n\nFirst stable\n\nOld"
            assert data["pub_date"] == "2024-01-21T00:00:00.000Z"

    @pytest.mark.asyncio
    async def test_no_matching_versions(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/notes/5.0.0")
            assert resp.status == 404


def _signed(secret, payload):
    return "sha256=" + hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


class TestWebhook:
    """POST /refresh."""

    def test_verify_signature(self):
        assert verify_signature("s3cret", b"{}", _signed("s3cret", b"{}"))
        assert not verify_signature("s3cret", b"{}", _signed("other", b"{}"))
        assert not verify_signature("s3cret", b"{}", None)
        assert not verify_signature("s3cret", b"{}", "sha1=abc")

    @pytest.mark.asyncio
    async def test_release_event_triggers_refresh(self, tmp_path):
        backend = _backend()
        async with _client(tmp_path, backend=backend, refresh_secret="s3cret") as client:
            payload = json.dumps({"action": "published"}).encode()
            backend.add_release(make_release("2.0.0", ["App-2.0.0.dmg"]))

            resp = await client.post(
                "/refresh",
                data=payload,
                headers={
                    "X-GitHub-Event": "release",
                    "X-Hub-Signature-256": _signed("s3cret", payload),
                },
            )
            assert resp.status == 202

            await client.server.app[HUB_KEY].index.wait_idle()
            status = await (await client.get("/api/status")).json()
            assert status["releases"] == 4

            resp = await client.get("/download/osx")
            assert await resp.read() == b"App-2.0.0.dmg"

    @pytest.mark.asyncio
    async def test_bad_signature_is_rejected(self, tmp_path):
        async with _client(tmp_path, refresh_secret="s3cret") as client:
            resp = await client.post(
                "/refresh",
                data=b"{}",
                headers={"X-GitHub-Event": "release", "X-Hub-Signature-256": "sha256=00"},
            )
            assert resp.status == 403
            assert (await resp.json())["kind"] == "invalid_signature"

    @pytest.mark.asyncio
    async def test_ping_and_missing_event(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.post("/refresh", data=b"{}", headers={"X-GitHub-Event": "ping"})
            assert resp.status == 200

            resp = await client.post("/refresh", data=b"{}")
            assert resp.status == 400


class TestApi:
    """JSON API routes."""

    @pytest.mark.asyncio
    async def test_versions_and_channels(self, tmp_path):
        async with _client(tmp_path) as client:
            versions = await (await client.get("/api/versions")).json()
            assert [v["tag"] for v in versions] == ["1.1.0-beta.1", "1.0.0", "0.9.0"]
            assert versions[0]["channel"] == "beta"

            stable = await (await client.get("/api/versions?channel=stable")).json()
            assert [v["tag"] for v in stable] == ["1.0.0", "0.9.0"]

            channels = await (await client.get("/api/channels")).json()
            assert channels["beta"]["latest"] == "1.1.0-beta.1"
            assert channels["stable"]["latest"] == "1.0.0"

    @pytest.mark.asyncio
    async def test_resolve(self, tmp_path):
        async with _client(tmp_path) as client:
            resp = await client.get("/api/resolve?channel=stable&platform=windows")
            data = await resp.json()
            assert data["tag"] == "1.0.0"
            assert any(a["filename"] == "AppSetup-1.0.0.exe" for a in data["assets"])

            resp = await client.get("/api/resolve", params={"tag": ">=abc"})
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_status(self, tmp_path):
        async with _client(tmp_path) as client:
            data = await (await client.get("/api/status")).json()
            assert data["status"] == "ok"
            assert data["backend"] == "fake"
            assert data["releases"] == 3

    @pytest.mark.asyncio
    async def test_api_token_guard(self, tmp_path):
        async with _client(tmp_path, api_token="tok") as client:
            resp = await client.get("/api/versions")
            assert resp.status == 401

            resp = await client.get("/api/versions", headers={"Authorization": "token tok"})
            assert resp.status == 200

            resp = await client.get("/api/versions?token=tok")
            assert resp.status == 200

            resp = await client.get("/api/versions?token=wrong")
            assert resp.status == 401


class TestLifecycle:
    """Startup and shutdown."""

    @pytest.mark.asyncio
    async def test_prefetch_failure_does_not_prevent_startup(self, tmp_path):
        backend = _backend()
        backend.list_error = UpstreamError("offline")
        async with _client(tmp_path, backend=backend) as client:
            resp = await client.get("/download/osx")
            assert resp.status == 502

            backend.list_error = None
            resp = await client.get("/download/osx")
            assert resp.status == 200

    @pytest.mark.asyncio
    async def test_backend_closed_on_cleanup(self, tmp_path):
        backend = _backend()
        async with _client(tmp_path, backend=backend) as client:
            await client.get("/api/status")
        assert backend.closed
