"""Default host capability implementations.

These back the HostFunctionBridge in a standard process. Each is async and
raises ordinary exceptions on failure; the bridge turns them into HostError.
"""

import asyncio
import logging
import os
from pathlib import Path

import httpx

from skillbox.netguard import ensure_public_host, validate_url
from skillbox.sandbox.bridge import HostResponse, HttpRequest

logger = logging.getLogger(__name__)


class ResponseTooLargeError(Exception):
    """Response body exceeded the configured cap."""

    pass


class HttpxNetworkDelegate:
    """HTTP requests through httpx with an SSRF guard and a body size cap."""

    def __init__(
        self,
        timeout: float = 30.0,
        max_response_bytes: int = 1024 * 1024,
        allow_private_networks: bool = False,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize network delegate.

        Args:
            timeout: Per-request timeout in seconds
            max_response_bytes: Largest response body accepted
            allow_private_networks: Skip the SSRF guard (local development only)
            client: Shared AsyncClient (one is created per request otherwise)
        """
        self.timeout = timeout
        self.max_response_bytes = max_response_bytes
        self.allow_private_networks = allow_private_networks
        self._client = client

    async def request(self, request: HttpRequest) -> HostResponse:
        url = validate_url(request.url) if not self.allow_private_networks else httpx.URL(request.url)
        if not self.allow_private_networks:
            await ensure_public_host(url.host, url.port or (443 if url.scheme == "https" else 80))

        if self._client is not None:
            return await self._send(self._client, request)

        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=False) as client:
            return await self._send(client, request)

    async def _send(self, client: httpx.AsyncClient, request: HttpRequest) -> HostResponse:
        async with client.stream(
            request.method.value, request.url, content=request.body, timeout=self.timeout
        ) as response:
            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) > self.max_response_bytes:
                    raise ResponseTooLargeError(
                        f"response exceeds {self.max_response_bytes} bytes"
                    )
            logger.debug(f"{request.method.value} {request.url} -> {response.status_code}")
            return HostResponse(status=response.status_code, body=bytes(body))


class LocalFilesystemDelegate:
    """Read and write files on the local filesystem.

    Paths arrive canonicalized and already checked against the skill's
    capabilities.
    """

    def __init__(self, max_read_bytes: int = 10 * 1024 * 1024):
        self.max_read_bytes = max_read_bytes

    async def read(self, path: Path) -> bytes:
        return await asyncio.to_thread(self._read, path)

    async def write(self, path: Path, data: bytes) -> None:
        await asyncio.to_thread(path.write_bytes, data)

    def _read(self, path: Path) -> bytes:
        size = path.stat().st_size
        if size > self.max_read_bytes:
            raise ResponseTooLargeError(f"file is {size} bytes (limit {self.max_read_bytes})")
        return path.read_bytes()


class ProcessEnvironmentDelegate:
    """Read variables from the host process environment."""

    async def get(self, name: str) -> str | None:
        return os.environ.get(name)
