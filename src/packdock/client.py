from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

import httpx

from ._version import __version__
from .config import DEFAULT_TIMEOUT_S


class PackdockError(RuntimeError):
    pass


@dataclass(frozen=True)
class PackdockHTTPError(PackdockError):
    status_code: int
    body: str

    def __str__(self) -> str:  # pragma: no cover
        return f"HTTP {self.status_code}: {self.body}"


class PackdockClient:
    """
    Thin synchronous HTTP client shared by the fetcher, the registry repository and the pipeline.

    Transport errors are wrapped into PackdockError and HTTP status >= 400 into PackdockHTTPError;
    nothing is retried here, the caller decides.
    """

    def __init__(
        self,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        default_headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.timeout_s = timeout_s
        self._default_headers = {"User-Agent": f"packdock/{__version__}"}
        self._default_headers.update(default_headers or {})
        self._http = httpx.Client(timeout=timeout_s, follow_redirects=True, transport=transport)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "PackdockClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        req_headers = dict(self._default_headers)
        if headers:
            req_headers.update(headers)
        return req_headers

    def request(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            resp = self._http.request(method.upper(), url, params=params, headers=self._headers(headers))
        except httpx.HTTPError as e:
            raise PackdockError(f"Request failed: {method.upper()} {url}: {e}") from e

        if resp.status_code >= 400:
            raise PackdockHTTPError(resp.status_code, resp.text)
        return resp

    def get_json(self, url: str, *, params: dict[str, Any] | None = None) -> Any:
        resp = self.request(method="GET", url=url, params=params)
        try:
            return resp.json()
        except json.JSONDecodeError as e:
            raise PackdockError(f"Invalid JSON from {url}: {e}") from e

    def get_bytes(self, url: str) -> bytes:
        return self.request(method="GET", url=url).content

    def last_modified(self, url: str) -> str:
        resp = self.request(method="HEAD", url=url)
        return resp.headers.get("last-modified", "")

    @contextmanager
    def stream(self, url: str) -> Iterator[httpx.Response]:
        try:
            with self._http.stream("GET", url, headers=self._headers(None)) as resp:
                if resp.status_code >= 400:
                    resp.read()
                    raise PackdockHTTPError(resp.status_code, resp.text)
                yield resp
        except httpx.HTTPError as e:
            raise PackdockError(f"Download failed: {url}: {e}") from e
