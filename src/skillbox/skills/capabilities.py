"""Typed capability model for skills.

A capability is a scoped permission declared in a skill manifest. Manifests
write them as tagged strings:

    network:api.example.com          exact host, any port
    network:*.example.com            any subdomain (not the apex)
    network:api.example.com:8443     port-scoped
    filesystem:read:/data            read under /data
    filesystem:write:/tmp/out        write under /tmp/out
    env:WEATHER_API_KEY              read one environment variable
    none                             no capability (contributes nothing)

CapabilitySet is the immutable, per-skill view used by the host function
bridge to decide whether a request is covered.
"""

import re
from collections.abc import Iterable, Iterator
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from skillbox.skills.security import canonicalize_path

if TYPE_CHECKING:
    from skillbox.skills.manifest import SkillManifest

_HOST_LABEL = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class AccessMode(str, Enum):
    """Filesystem access mode. Write does not imply read, nor the reverse."""

    READ = "read"
    WRITE = "write"


@lru_cache(maxsize=1024)
def parse_host_pattern(pattern: str) -> tuple[bool, str, int | None]:
    """Split a host pattern into (wildcard, host, port).

    Args:
        pattern: Host pattern such as "*.example.com:443" or "[::1]:8080"

    Returns:
        Tuple of wildcard flag, normalized host and optional port

    Raises:
        ValueError: If the pattern is not a valid host pattern
    """
    value = pattern.strip().lower()
    if not value:
        raise ValueError("host pattern must not be empty")
    if any(ch in value for ch in "/@?# "):
        raise ValueError(f"'{pattern}' is not a host pattern (no scheme, path or credentials)")

    wildcard = False
    if value.startswith("*."):
        wildcard = True
        value = value[2:]

    port: int | None = None
    if value.startswith("["):
        # Bracketed IPv6 literal
        end = value.find("]")
        if end == -1:
            raise ValueError(f"unterminated IPv6 literal in '{pattern}'")
        host = value[1:end]
        rest = value[end + 1 :]
        if rest:
            if not rest.startswith(":"):
                raise ValueError(f"unexpected text after IPv6 literal in '{pattern}'")
            port = _parse_port(rest[1:], pattern)
        if wildcard:
            raise ValueError(f"wildcards are not allowed on IP literals: '{pattern}'")
        if not host or not re.match(r"^[0-9a-f:.]+$", host):
            raise ValueError(f"invalid IPv6 literal in '{pattern}'")
        return wildcard, host, port

    if value.count(":") == 1:
        value, raw_port = value.split(":")
        port = _parse_port(raw_port, pattern)
    elif ":" in value:
        raise ValueError(f"IPv6 literals must be bracketed: '{pattern}'")

    host = value.rstrip(".")
    if "*" in host:
        raise ValueError(f"'*' is only allowed as a leading '*.' label: '{pattern}'")
    labels = host.split(".")
    if not host or not all(_HOST_LABEL.match(label) for label in labels):
        raise ValueError(f"invalid host name in '{pattern}'")
    if wildcard and len(labels) < 2:
        raise ValueError(f"wildcard pattern must name a parent domain: '{pattern}'")

    return wildcard, host, port


def _parse_port(raw: str, pattern: str) -> int:
    if not raw.isdigit() or not 0 < int(raw) < 65536:
        raise ValueError(f"invalid port in '{pattern}'")
    return int(raw)


class NetworkCapability(BaseModel):
    """Network access to hosts matching a pattern."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["network"] = "network"
    host_pattern: str

    @field_validator("host_pattern")
    @classmethod
    def validate_host_pattern(cls, v: str) -> str:
        """Validate and lower-case the host pattern."""
        parse_host_pattern(v)
        return v.strip().lower()

    @classmethod
    def for_host(cls, host: str, port: int) -> "NetworkCapability":
        """Build the concrete capability a request to host:port requires."""
        host = host.lower().rstrip(".")
        if ":" in host:
            return cls(host_pattern=f"[{host}]:{port}")
        return cls(host_pattern=f"{host}:{port}")

    @property
    def tag(self) -> str:
        return f"network:{self.host_pattern}"

    def matches(self, host: str, port: int | None) -> bool:
        """Check whether a concrete host and port fall under this pattern."""
        wildcard, pattern_host, pattern_port = parse_host_pattern(self.host_pattern)
        if pattern_port is not None and port != pattern_port:
            return False
        if wildcard:
            return host.endswith("." + pattern_host)
        return host == pattern_host


class FilesystemCapability(BaseModel):
    """Read or write access under an absolute path prefix."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["filesystem"] = "filesystem"
    path_prefix: str
    mode: AccessMode

    @field_validator("path_prefix")
    @classmethod
    def validate_path_prefix(cls, v: str) -> str:
        """Path prefixes must be absolute."""
        if not v or not Path(v).is_absolute():
            raise ValueError(f"filesystem path must be absolute: '{v}'")
        return v

    @property
    def tag(self) -> str:
        return f"filesystem:{self.mode.value}:{self.path_prefix}"


class EnvCapability(BaseModel):
    """Read access to a single host environment variable."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["env"] = "env"
    name: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not _ENV_NAME.match(v):
            raise ValueError(f"invalid environment variable name: '{v}'")
        return v

    @property
    def tag(self) -> str:
        return f"env:{self.name}"


Capability = Annotated[
    Union[NetworkCapability, FilesystemCapability, EnvCapability],
    Field(discriminator="kind"),
]

CAPABILITY_TAGS = ("network", "filesystem", "env", "none")


def parse_capability(tag: str) -> NetworkCapability | FilesystemCapability | EnvCapability | None:
    """Parse a tagged capability string.

    Args:
        tag: Tagged string, e.g. "network:api.example.com" or "filesystem:read:/data"

    Returns:
        The typed capability, or None for the "none" tag

    Raises:
        ValueError: If the tag is unknown or its value is malformed

    Examples:
        >>> parse_capability("env:HOME").name
        'HOME'
        >>> parse_capability("none") is None
        True
    """
    if not isinstance(tag, str):
        raise ValueError(f"capability must be a string, got {type(tag).__name__}")

    kind, sep, value = tag.strip().partition(":")
    if kind == "none" and not sep:
        return None
    if kind not in CAPABILITY_TAGS or kind == "none":
        raise ValueError(f"unknown capability tag '{kind}' in '{tag}'")
    if not value:
        raise ValueError(f"capability '{tag}' is missing a value")

    if kind == "network":
        return NetworkCapability(host_pattern=value)
    if kind == "filesystem":
        mode, sep, path = value.partition(":")
        if not sep or mode not in ("read", "write"):
            raise ValueError(f"filesystem capability must be 'filesystem:read|write:<path>': '{tag}'")
        return FilesystemCapability(path_prefix=path, mode=AccessMode(mode))
    return EnvCapability(name=value)


_CONSTRUCTION_TOKEN = object()


class CapabilitySet:
    """Immutable set of permissions granted to one skill.

    Only CapabilitySet.from_manifest() creates instances. There is no way to
    add a capability after construction.

    Example:
        >>> caps = CapabilitySet.from_manifest(manifest)
        >>> caps.covers(NetworkCapability.for_host("api.example.com", 443))
        True
    """

    __slots__ = ("_skill", "_granted", "_network", "_filesystem", "_env")

    def __init__(
        self,
        granted: Iterable[NetworkCapability | FilesystemCapability | EnvCapability],
        *,
        skill: str = "",
        _token: object = None,
    ):
        if _token is not _CONSTRUCTION_TOKEN:
            raise TypeError("CapabilitySet can only be created with CapabilitySet.from_manifest()")

        granted = frozenset(granted)
        network = tuple(cap for cap in granted if isinstance(cap, NetworkCapability))
        filesystem = tuple(
            (canonicalize_path(cap.path_prefix), cap.mode)
            for cap in granted
            if isinstance(cap, FilesystemCapability)
        )
        env = frozenset(cap.name for cap in granted if isinstance(cap, EnvCapability))

        object.__setattr__(self, "_skill", skill)
        object.__setattr__(self, "_granted", granted)
        object.__setattr__(self, "_network", network)
        object.__setattr__(self, "_filesystem", filesystem)
        object.__setattr__(self, "_env", env)

    @classmethod
    def from_manifest(cls, manifest: "SkillManifest") -> "CapabilitySet":
        """Build the capability set declared by a manifest."""
        return cls(
            manifest.capabilities,
            skill=f"{manifest.name}@{manifest.version}",
            _token=_CONSTRUCTION_TOKEN,
        )

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("CapabilitySet is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError("CapabilitySet is immutable")

    @property
    def skill(self) -> str:
        return self._skill

    def covers(self, requested: NetworkCapability | FilesystemCapability | EnvCapability | None) -> bool:
        """Check whether a requested capability is covered by a granted one.

        Args:
            requested: Concrete capability a host call needs, or None when the
                call needs no permission

        Returns:
            True if the request falls under a granted capability
        """
        if requested is None:
            return True

        if isinstance(requested, NetworkCapability):
            try:
                wildcard, host, port = parse_host_pattern(requested.host_pattern)
            except ValueError:
                return False
            # Requests must name a concrete host
            if wildcard:
                return False
            return any(cap.matches(host, port) for cap in self._network)

        if isinstance(requested, FilesystemCapability):
            path = canonicalize_path(requested.path_prefix)
            return any(
                mode == requested.mode and (path == prefix or path.is_relative_to(prefix))
                for prefix, mode in self._filesystem
            )

        if isinstance(requested, EnvCapability):
            return requested.name in self._env

        return False

    def tags(self) -> list[str]:
        """Sorted tag strings for display and serialization."""
        return sorted(cap.tag for cap in self._granted)

    def __iter__(self) -> Iterator[NetworkCapability | FilesystemCapability | EnvCapability]:
        return iter(self._granted)

    def __len__(self) -> int:
        return len(self._granted)

    def __contains__(self, item: object) -> bool:
        return item in self._granted

    def __repr__(self) -> str:
        return f"CapabilitySet(skill={self._skill!r}, capabilities={self.tags()!r})"
