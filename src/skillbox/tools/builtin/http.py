"""HTTP fetch tool.

Fetches a URL with httpx behind the same SSRF guard the sandbox uses. The
response body is capped and decoded as text.
"""

import logging
from collections.abc import Callable
from typing import Annotated

import httpx
from pydantic import Field

from skillbox.config.schema import SkillboxSettings
from skillbox.netguard import SsrfBlockedError, ensure_public_host, validate_url
from skillbox.tools.builtin.base import BuiltinToolset

logger = logging.getLogger(__name__)

MAX_BODY_CHARS = 50 * 1024
VALID_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD")


class HttpTools(BuiltinToolset):
    """Fetch web resources."""

    def __init__(self, settings: SkillboxSettings, transport: httpx.AsyncBaseTransport | None = None):
        """Initialize HTTP tools.

        Args:
            settings: Skillbox settings
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        super().__init__(settings)
        self._transport = transport

    def get_tools(self) -> list[Callable]:
        return [self.http_fetch]

    async def http_fetch(
        self,
        url: Annotated[str, Field(description="Absolute http(s) URL to fetch")],
        method: Annotated[str, Field(description="HTTP method (GET, POST, PUT, DELETE, PATCH, HEAD)")] = "GET",
        headers: Annotated[dict[str, str] | None, Field(description="Request headers")] = None,
        body: Annotated[str | None, Field(description="Request body")] = None,
    ) -> dict:
        """Fetch a URL and return status, headers and body text.

        Private and internal addresses are refused. Bodies over 50 KiB are
        truncated.
        """
        method = method.upper()
        if method not in VALID_METHODS:
            return self._create_error_response(
                error="invalid_method",
                message=f"Invalid method '{method}'. Valid methods: {', '.join(VALID_METHODS)}",
            )

        host_settings = self.settings.host
        try:
            if host_settings.allow_private_networks:
                parsed = httpx.URL(url)
            else:
                parsed = validate_url(url)
                await ensure_public_host(
                    parsed.host, parsed.port or (443 if parsed.scheme == "https" else 80)
                )
        except SsrfBlockedError as e:
            return self._create_error_response(error="ssrf_blocked", message=str(e))
        except (ValueError, httpx.InvalidURL) as e:
            return self._create_error_response(error="invalid_url", message=str(e))
        except OSError as e:
            return self._create_error_response(
                error="dns_failure", message=f"Could not resolve {url}: {e}"
            )

        try:
            async with httpx.AsyncClient(
                timeout=host_settings.http_timeout,
                follow_redirects=False,
                transport=self._transport,
            ) as client:
                response = await client.request(method, url, headers=headers, content=body)
        except httpx.TimeoutException:
            return self._create_error_response(
                error="timeout", message=f"Request timed out after {host_settings.http_timeout}s"
            )
        except httpx.HTTPError as e:
            return self._create_error_response(error="request_failed", message=str(e))

        text = response.text
        truncated = len(text) > MAX_BODY_CHARS
        result = {
            "status": response.status_code,
            "headers": dict(response.headers),
            "body": text[:MAX_BODY_CHARS],
            "truncated": truncated,
        }
        return self._create_success_response(
            result=result, message=f"{method} {url} -> {response.status_code}"
        )
