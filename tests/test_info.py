from __future__ import annotations

import httpx
import pytest

from tests.utils.fakes import FakeImage
from weavenet.common.errors import WeaveError
from weavenet.router import info


def _patch_transport(monkeypatch, handler):
    real_client = httpx.AsyncClient

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(info.httpx, "AsyncClient", factory)


@pytest.mark.asyncio
async def test_fetch_status_returns_body(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/status"
        return httpx.Response(200, text="Our name is 7a:3c:00:11:22:33\n")

    _patch_transport(monkeypatch, handler)

    body = await info.fetch_status("http://127.0.0.1:6784/status", timeout=1.0)

    assert body.startswith("Our name is")


@pytest.mark.asyncio
async def test_fetch_status_wraps_connection_errors(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    _patch_transport(monkeypatch, handler)

    with pytest.raises(WeaveError, match="Unable to fetch router status"):
        await info.fetch_status("http://127.0.0.1:6784/status")


@pytest.mark.asyncio
async def test_fetch_status_rejects_error_responses(monkeypatch):
    _patch_transport(monkeypatch, lambda request: httpx.Response(503))

    with pytest.raises(WeaveError):
        await info.fetch_status("http://127.0.0.1:6784/status")


def test_image_version_prefers_release_tag(docker_client):
    docker_client.images.items["zettio/weave"] = FakeImage(["zettio/weave:latest", "zettio/weave:0.9.0"])

    assert info.image_version(docker_client, "zettio/weave") == "0.9.0"


def test_image_version_without_release_tag(docker_client):
    docker_client.images.items["zettio/weave"] = FakeImage(["zettio/weave:latest"])

    assert info.image_version(docker_client, "zettio/weave") == "unreleased"


def test_image_version_for_missing_image(docker_client):
    with pytest.raises(WeaveError, match="Unable to find zettio/weave image."):
        info.image_version(docker_client, "zettio/weave")
