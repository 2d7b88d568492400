"""Small JSON-over-HTTP helper shared by the market, news, and LLM clients."""
from __future__ import annotations

import json
from http.client import HTTPException
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

DEFAULT_HTTP_HEADERS = {
    "User-Agent": "CryptoDigestBot/1.0",
    "Accept": "application/json",
}


class HttpClientError(RuntimeError):
    """Base class for outbound HTTP failures."""


class HttpTransportError(HttpClientError):
    """Raised when the remote host cannot be reached or the read fails."""


class HttpStatusError(HttpClientError):
    """Raised when the remote host answers with a non-success status."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"HTTP {status}: {body[:180]}")
        self.status = status
        self.body = body


class HttpDecodeError(HttpClientError):
    """Raised when the response body is not valid JSON."""

    def __init__(self, body: str) -> None:
        super().__init__("Response is not valid JSON.")
        self.body = body


def request_json(
    url: str,
    *,
    method: str = "GET",
    headers: Optional[dict[str, str]] = None,
    body: Any | None = None,
    timeout: float,
) -> Any:
    request_headers = dict(DEFAULT_HTTP_HEADERS)
    if headers:
        request_headers.update(headers)

    data = None
    if body is not None:
        data = json.dumps(body).encode("utf-8")
        request_headers.setdefault("Content-Type", "application/json")

    try:
        request = Request(url, data=data, method=method, headers=request_headers)
        with urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8", errors="replace")
    except HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="ignore") if exc.fp is not None else ""
        raise HttpStatusError(exc.code, detail) from exc
    except (URLError, OSError, HTTPException, ValueError) as exc:
        raise HttpTransportError(f"Request to {_redact(url)} failed: {exc}") from exc

    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HttpDecodeError(raw) from exc


def body_snippet(exc: Exception, limit: int = 180) -> str:
    body = getattr(exc, "body", "")
    return str(body)[:limit]


def status_of(exc: Exception) -> Optional[int]:
    return getattr(exc, "status", None)


def _redact(url: str) -> str:
    # query strings may carry api keys
    return url.split("?", 1)[0]
