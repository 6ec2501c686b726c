"""Unit tests for the default host delegates."""

import httpx
import pytest

from skillbox.netguard import SsrfBlockedError
from skillbox.sandbox.bridge import HttpMethod, HttpRequest
from skillbox.sandbox.delegates import (
    HttpxNetworkDelegate,
    LocalFilesystemDelegate,
    ProcessEnvironmentDelegate,
    ResponseTooLargeError,
)

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestHttpxNetworkDelegate:
    """Test HttpxNetworkDelegate."""

    async def test_request(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, content=b"created")

        async with mock_client(handler) as client:
            delegate = HttpxNetworkDelegate(allow_private_networks=True, client=client)
            response = await delegate.request(
                HttpRequest(url="https://api.example.com/items", method=HttpMethod.POST, body=b"{}")
            )

        assert response.status == 201
        assert response.body == b"created"
        assert seen[0].method == "POST"
        assert seen[0].content == b"{}"

    async def test_response_size_capped(self):
        async with mock_client(lambda request: httpx.Response(200, content=b"x" * 100)) as client:
            delegate = HttpxNetworkDelegate(
                max_response_bytes=10, allow_private_networks=True, client=client
            )
            with pytest.raises(ResponseTooLargeError):
                await delegate.request(HttpRequest(url="https://api.example.com/"))

    async def test_private_address_blocked(self):
        delegate = HttpxNetworkDelegate()
        with pytest.raises(SsrfBlockedError):
            await delegate.request(HttpRequest(url="http://10.0.0.5/internal"))


class TestLocalFilesystemDelegate:
    """Test LocalFilesystemDelegate."""

    async def test_read_and_write(self, tmp_path):
        delegate = LocalFilesystemDelegate()
        path = tmp_path / "data.bin"

        await delegate.write(path, b"\x00\x01")

        assert await delegate.read(path) == b"\x00\x01"

    async def test_read_size_capped(self, tmp_path):
        path = tmp_path / "big.txt"
        path.write_bytes(b"x" * 20)

        with pytest.raises(ResponseTooLargeError):
            await LocalFilesystemDelegate(max_read_bytes=10).read(path)

    async def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            await LocalFilesystemDelegate().read(tmp_path / "missing")


class TestProcessEnvironmentDelegate:
    """Test ProcessEnvironmentDelegate."""

    async def test_get(self, monkeypatch):
        monkeypatch.setenv("SKILLBOX_TEST_VALUE", "42")
        monkeypatch.delenv("SKILLBOX_TEST_MISSING", raising=False)
        delegate = ProcessEnvironmentDelegate()

        assert await delegate.get("SKILLBOX_TEST_VALUE") == "42"
        assert await delegate.get("SKILLBOX_TEST_MISSING") is None
