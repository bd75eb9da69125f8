"""Request/response normalization for the node API and chain RPC."""

import json
import logging
from typing import Any

import httpx

from ..core.config import get_settings

logger = logging.getLogger(__name__)

# Sentinel for "use the gateway's default timeout"
DEFAULT = object()


class ApiError(Exception):
    """A failed call. str(error) is always safe to show to the operator."""

    def __init__(self, message: str, status_code: int | None = None, url: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.url = url

    def __str__(self) -> str:
        return self.message


class TransportError(ApiError):
    """No response reached the client. Always retryable."""


class BackendError(ApiError):
    """The server answered with an error, or with something unusable."""


def _error_envelope(body: Any, status_code: int) -> str | None:
    """Extract the message of a {"error": "..."} envelope, if the body is one."""
    if not isinstance(body, dict):
        return None
    message = body.get("error")
    if not isinstance(message, str) or not message:
        return None
    if status_code != 200:
        return message
    # Legacy 200 paths return a bare envelope; a status snapshot carries
    # its own "error" field next to real data and is not a failure.
    if set(body) == {"error"}:
        return message
    return None


class ApiGateway:
    """Issues HTTP calls and maps every outcome to a value or an ApiError."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url if base_url is not None else settings.api_base_url).rstrip("/")
        self.timeout = timeout or settings.request_timeout_seconds
        self._transport = transport

    def url_for(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return self.base_url + path

    async def request(
        self,
        path: str,
        method: str = "GET",
        json_body: Any = None,
        params: dict | None = None,
        timeout: Any = DEFAULT,
    ) -> Any:
        """
        Perform one call and return the parsed JSON body.

        Raises TransportError when no response arrives and BackendError for
        error envelopes, unexpected statuses and unparsable bodies. Pass
        timeout=None to wait indefinitely (device confirmations).
        """
        url = self.url_for(path)
        request_timeout = self.timeout if timeout is DEFAULT else timeout

        async with httpx.AsyncClient(timeout=request_timeout, transport=self._transport) as client:
            try:
                response = await client.request(method, url, json=json_body, params=params)
            except httpx.RequestError as e:
                logger.warning(f"{method} {url} failed: {e!r}")
                raise TransportError(f"Network error: {str(e) or type(e).__name__}", url=url) from e

        status = response.status_code
        body: Any = None
        parse_failed = False
        if response.content:
            try:
                body = response.json()
            except (json.JSONDecodeError, UnicodeDecodeError):
                parse_failed = True

        message = _error_envelope(body, status)
        if message is not None:
            logger.warning(f"{method} {url}: HTTP {status}: {message}")
            raise BackendError(message, status_code=status, url=url)

        if status != 200:
            logger.warning(f"{method} {url}: HTTP {status}")
            raise BackendError(f"Error Fetching URL (HTTP {status})", status_code=status, url=url)

        if parse_failed:
            logger.warning(f"{method} {url}: response is not JSON")
            raise BackendError("Invalid JSON response", status_code=status, url=url)

        return body

    async def get(self, path: str, params: dict | None = None, timeout: Any = DEFAULT) -> Any:
        return await self.request(path, "GET", params=params, timeout=timeout)

    async def post(self, path: str, body: Any = None, timeout: Any = DEFAULT) -> Any:
        return await self.request(path, "POST", json_body=body, timeout=timeout)
