"""Capability-gated bridge between guest host calls and host capabilities.

Every privileged request a skill makes passes through HostFunctionBridge.handle:
the request names the capability it needs, the skill's CapabilitySet decides,
and only a covered request reaches the delegate that does the real work.

Delegates are owned by the surrounding process (HTTP client, filesystem,
environment) and are plain async objects.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

import httpx
from pydantic import ValidationError

from skillbox.skills.capabilities import (
    AccessMode,
    CapabilitySet,
    EnvCapability,
    FilesystemCapability,
    NetworkCapability,
)
from skillbox.skills.security import canonicalize_path

logger = logging.getLogger(__name__)


class BridgeError(Exception):
    """Base exception for host call failures."""

    pass


class CapabilityDeniedError(BridgeError):
    """Request is not covered by the skill's capabilities.

    Attributes:
        required: Tag of the capability the request needed
        skill: name@version of the requesting skill
    """

    def __init__(self, required: str, skill: str = ""):
        self.required = required
        self.skill = skill
        super().__init__(f"capability not permitted: {required}")


class HostError(BridgeError):
    """A covered request failed inside the host capability."""

    pass


class InvocationInterrupted(BridgeError):
    """The invocation's wall-clock budget ran out during a host call."""

    def __init__(self, message: str = "invocation interrupted: wall-clock timeout"):
        super().__init__(message)


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"

    @classmethod
    def from_code(cls, code: int) -> "HttpMethod":
        """Map the guest ABI method code (0 GET .. 4 PATCH)."""
        methods = list(cls)
        if not 0 <= code < len(methods):
            raise ValueError(f"unknown HTTP method code {code}")
        return methods[code]


@dataclass(frozen=True)
class HttpRequest:
    """Outbound HTTP request. The URL must be absolute http(s) with a valid host.

    Internationalized host names are checked and matched in their IDNA
    (xn--) form, so manifests declare them that way.
    """

    url: str
    method: HttpMethod = HttpMethod.GET
    body: bytes | None = None

    def __post_init__(self):
        try:
            parsed = httpx.URL(self.url)
        except httpx.InvalidURL as e:
            raise ValueError(f"invalid request URL '{self.url}': {e}") from None
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise ValueError(f"invalid request URL '{self.url}' (absolute http(s) URL required)")
        try:
            self.required_capability()
        except ValueError:
            raise ValueError(f"invalid request URL '{self.url}' (unsupported host name)") from None

    def required_capability(self) -> NetworkCapability:
        parsed = httpx.URL(self.url)
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        return NetworkCapability.for_host(parsed.raw_host.decode("ascii"), port)


@dataclass(frozen=True)
class ReadFileRequest:
    """Read a whole file. The path is canonicalized on construction."""

    path: Path

    def __post_init__(self):
        object.__setattr__(self, "path", _canonical_request_path(self.path))

    def required_capability(self) -> FilesystemCapability:
        return FilesystemCapability(path_prefix=str(self.path), mode=AccessMode.READ)


@dataclass(frozen=True)
class WriteFileRequest:
    """Replace a file's contents. The path is canonicalized on construction."""

    path: Path
    data: bytes

    def __post_init__(self):
        object.__setattr__(self, "path", _canonical_request_path(self.path))

    def required_capability(self) -> FilesystemCapability:
        return FilesystemCapability(path_prefix=str(self.path), mode=AccessMode.WRITE)


@dataclass(frozen=True)
class EnvRequest:
    name: str

    def required_capability(self) -> EnvCapability:
        return EnvCapability(name=self.name)


HostRequest = HttpRequest | ReadFileRequest | WriteFileRequest | EnvRequest


@dataclass(frozen=True)
class HostResponse:
    """Result of a host call.

    status is the HTTP status for network requests, 0 for other successful
    requests and -1 when an environment variable is unset.
    """

    status: int = 0
    body: bytes = b""


def _canonical_request_path(path: str | Path) -> Path:
    if not Path(path).is_absolute():
        raise ValueError(f"path must be absolute: '{path}'")
    return canonicalize_path(path)


class NetworkDelegate(Protocol):
    async def request(self, request: HttpRequest) -> HostResponse: ...


class FilesystemDelegate(Protocol):
    async def read(self, path: Path) -> bytes: ...

    async def write(self, path: Path, data: bytes) -> None: ...


class EnvironmentDelegate(Protocol):
    async def get(self, name: str) -> str | None: ...


class HostFunctionBridge:
    """Gate host requests on a skill's capabilities.

    Example:
        >>> bridge = HostFunctionBridge(network=HttpxNetworkDelegate())
        >>> caps = CapabilitySet.from_manifest(manifest)
        >>> response = await bridge.handle(caps, HttpRequest("https://api.weather.com/now"))
    """

    def __init__(
        self,
        network: NetworkDelegate | None = None,
        filesystem: FilesystemDelegate | None = None,
        environment: EnvironmentDelegate | None = None,
    ):
        """Initialize bridge.

        Args:
            network: Delegate performing HTTP requests
            filesystem: Delegate performing file reads and writes
            environment: Delegate reading environment variables
        """
        self.network = network
        self.filesystem = filesystem
        self.environment = environment

    async def handle(
        self, capabilities: CapabilitySet, request: HostRequest, *, skill: str | None = None
    ) -> HostResponse:
        """Check a request against capabilities and forward it if covered.

        Args:
            capabilities: The calling skill's capability set
            request: Host request from the guest
            skill: Label for logs (defaults to the set's name@version)

        Returns:
            HostResponse from the delegate

        Raises:
            CapabilityDeniedError: If the request is not covered (delegate not called)
            HostError: If the request is malformed, no delegate is configured or
                the delegate fails
        """
        label = skill or capabilities.skill
        try:
            required = request.required_capability()
        except ValueError as e:
            raise HostError(f"invalid host request: {_first_error(e)}") from None

        if not capabilities.covers(required):
            logger.warning(f"Capability denied for skill {label}: {required.tag}")
            raise CapabilityDeniedError(required.tag, skill=label)

        try:
            return await self._dispatch(request)
        except BridgeError:
            raise
        except Exception as e:
            logger.info(f"Host call failed for skill {label}: {type(e).__name__}")
            raise HostError(f"{type(e).__name__}: {e}") from None

    async def _dispatch(self, request: HostRequest) -> HostResponse:
        if isinstance(request, HttpRequest):
            if self.network is None:
                raise HostError("network capability is not available on this host")
            return await self.network.request(request)

        if isinstance(request, ReadFileRequest):
            if self.filesystem is None:
                raise HostError("filesystem capability is not available on this host")
            return HostResponse(body=await self.filesystem.read(request.path))

        if isinstance(request, WriteFileRequest):
            if self.filesystem is None:
                raise HostError("filesystem capability is not available on this host")
            await self.filesystem.write(request.path, request.data)
            return HostResponse()

        if isinstance(request, EnvRequest):
            if self.environment is None:
                raise HostError("environment capability is not available on this host")
            value = await self.environment.get(request.name)
            if value is None:
                return HostResponse(status=-1)
            return HostResponse(body=value.encode("utf-8"))

        raise HostError(f"unsupported host request {type(request).__name__}")


def _first_error(error: ValueError) -> str:
    """Readable reason from a ValueError, unwrapping pydantic's report."""
    if isinstance(error, ValidationError):
        return error.errors()[0]["msg"]
    return str(error)
