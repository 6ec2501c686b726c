"""SSRF guard shared by the HTTP host capability and the built-in HTTP tool.

Requests are refused when the URL names, or the host resolves to, a private,
loopback, link-local or otherwise internal address.
"""

import asyncio
import ipaddress
import logging
import socket

import httpx

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")

# Cloud metadata endpoint
_METADATA_V4 = ipaddress.IPv4Address("169.254.169.254")


class SsrfBlockedError(Exception):
    """Request target is an internal address."""

    pass


def is_private_ip(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    """Check whether an address is internal to the host or its network.

    Examples:
        >>> is_private_ip(ipaddress.ip_address("10.0.0.1"))
        True
        >>> is_private_ip(ipaddress.ip_address("93.184.216.34"))
        False
    """
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return is_private_ip(ip.ipv4_mapped)

    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_unspecified
        or ip.is_multicast
        or ip.is_reserved
        or ip == _METADATA_V4
    )


def validate_url(url: str) -> httpx.URL:
    """Parse a URL and reject unsupported schemes or literal internal hosts.

    Returns:
        Parsed httpx.URL

    Raises:
        ValueError: If the URL is malformed or the scheme is not http(s)
        SsrfBlockedError: If the host is a literal internal address
    """
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise ValueError(f"Invalid URL '{url}': {e}") from None

    if parsed.scheme not in ALLOWED_SCHEMES:
        raise ValueError(f"Unsupported URL scheme '{parsed.scheme}' (only http and https)")
    if not parsed.host:
        raise ValueError(f"URL has no host: '{url}'")

    try:
        ip = ipaddress.ip_address(parsed.host)
    except ValueError:
        return parsed

    if is_private_ip(ip):
        logger.error(f"SSRF blocked: URL targets private IP {ip}")
        raise SsrfBlockedError(f"SSRF blocked: URL targets private IP {ip}")
    return parsed


async def ensure_public_host(host: str, port: int) -> None:
    """Resolve a host name and refuse it if any address is internal.

    Raises:
        SsrfBlockedError: If the host resolves to an internal address
        OSError: If resolution fails
    """
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)

    for info in infos:
        ip = ipaddress.ip_address(info[4][0].split("%", 1)[0])
        if is_private_ip(ip):
            logger.error(f"SSRF blocked: {host} resolves to private IP {ip}")
            raise SsrfBlockedError(f"SSRF blocked: {host} resolves to private IP {ip}")
