"""`fetch` capability: forwards requests to an HTTP proxy as one JSON envelope."""

from __future__ import annotations

import base64
import json
from typing import Any, Mapping

import httpx

from ..errors import FetchError


class FetchResponse:
    """Response handed back to caller code by the `fetch` capability.

    Example:
        ```python
        response = FetchResponse(200, {"content-type": "text/plain"}, b"ok", "https://api")
        ```
    """

    __slots__ = ("status", "ok", "headers", "url", "_body")

    def __init__(self, status: int, headers: Mapping[str, str], body: bytes, url: str) -> None:
        """Copy the proxy response fields.

        Example:
            ```python
            FetchResponse(404, {}, b"", "https://api/missing")
            ```
        """
        self.status = status
        self.ok = 200 <= status < 300
        self.headers = dict(headers)
        self.url = url
        self._body = body

    def text(self) -> str:
        """Return the body decoded as UTF-8.

        Example:
            ```python
            body = response.text()
            ```
        """
        return self._body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Return the body parsed as JSON.

        Example:
            ```python
            data = response.json()
            ```
        """
        return json.loads(self._body)

    def __repr__(self) -> str:
        """Render status and URL.

        Example:
            ```python
            repr(response)
            ```
        """
        return f"<FetchResponse {self.status} {self.url}>"


def _flatten_headers(headers: Any) -> dict[str, str]:
    """Flatten caller headers into a string-keyed map.

    Example:
        ```python
        _flatten_headers([("Accept", "application/json")])
        ```
    """
    if headers is None:
        return {}
    items = headers.items() if isinstance(headers, Mapping) else headers
    return {str(key): str(value) for key, value in items}


def _encode_body(body: Any) -> str | None:
    """Base64-encode a non-empty body; structured bodies are JSON-encoded first.

    Example:
        ```python
        _encode_body("hello")  # "aGVsbG8="
        ```
    """
    if body is None:
        return None
    if isinstance(body, (dict, list)):
        raw = json.dumps(body).encode("utf-8")
    elif isinstance(body, str):
        raw = body.encode("utf-8")
    elif isinstance(body, (bytes, bytearray)):
        raw = bytes(body)
    else:
        raise TypeError(f"Unsupported fetch body type: {type(body).__name__}")
    if not raw:
        return None
    return base64.b64encode(raw).decode("ascii")


def build_envelope(
    url: str,
    method: str = "GET",
    headers: Any = None,
    body: Any = None,
) -> dict[str, Any]:
    """Serialize one outbound request into the proxy envelope.

    Example:
        ```python
        envelope = build_envelope("https://api/items", method="post", body={"a": 1})
        ```
    """
    return {
        "method": str(method).upper(),
        "url": str(url),
        "headers": _flatten_headers(headers),
        "body": _encode_body(body),
    }


class ProxyFetch:
    """`fetch` capability that forwards every request as one POST to a proxy.

    Example:
        ```python
        fetch = ProxyFetch("https://proxy.internal/forward")
        ```
    """

    def __init__(
        self,
        proxy_url: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Remember the proxy endpoint and client settings.

        Example:
            ```python
            ProxyFetch("http://127.0.0.1:8080/proxy", timeout_seconds=5)
            ```
        """
        self._proxy_url = proxy_url
        self._timeout = timeout_seconds
        self._transport = transport

    async def __call__(
        self,
        url: str,
        method: str = "GET",
        headers: Any = None,
        body: Any = None,
    ) -> FetchResponse:
        """Send the envelope to the proxy and return its response.

        Example:
            ```python
            response = await fetch("https://api/items", headers={"Accept": "application/json"})
            ```
        """
        envelope = build_envelope(url, method=method, headers=headers, body=body)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(self._proxy_url, json=envelope)
        except httpx.HTTPError as exc:
            raise FetchError(f"Proxy request failed: {type(exc).__name__}: {exc}") from None
        return FetchResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=response.content,
            url=envelope["url"],
        )

    def __repr__(self) -> str:
        """Hide the proxy endpoint from caller code.

        Example:
            ```python
            repr(fetch)  # "<fetch>"
            ```
        """
        return "<fetch>"
