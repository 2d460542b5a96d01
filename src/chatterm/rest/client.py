"""Minimal HTTP request/response transport built on `urllib.request`."""

from __future__ import annotations

import logging
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass
from email.message import Message as HeaderMap
from typing import IO, Any, Iterator, Mapping

from chatterm.errors import TransportError

logger = logging.getLogger(__name__)

_DEFAULT = object()


def join_url(base_url: str, path: str) -> str:
    base = (base_url or "").strip()
    if not base:
        return path
    if not path:
        return base
    return base.rstrip("/") + "/" + path.lstrip("/")


@dataclass
class RestResponse:
    """A response whose body has not been read yet."""

    status: int
    headers: Mapping[str, str]
    body: IO[bytes]

    def read(self) -> bytes:
        try:
            return self.body.read()
        except (OSError, socket.timeout) as exc:
            raise TransportError(f"failed to read response body: {exc}") from exc

    def text(self) -> str:
        return self.read().decode("utf-8", errors="replace")

    def iter_lines(self) -> Iterator[str]:
        """Yield decoded body lines without their line terminators."""
        while True:
            try:
                raw = self.body.readline()
            except (OSError, socket.timeout) as exc:
                raise TransportError(f"failed to read response body: {exc}") from exc
            if not raw:
                return
            yield raw.decode("utf-8", errors="replace").rstrip("\r\n")

    def close(self) -> None:
        close = getattr(self.body, "close", None)
        if callable(close):
            try:
                close()
            except OSError:
                logger.debug("error closing response body", exc_info=True)

    def __enter__(self) -> "RestResponse":
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()


class RestClient:
    """
    Simple HTTP REST client.

    - `base_url` is joined with each request path.
    - `timeout_s` is the default per-request timeout; pass `timeout=None` to `request`
      for long-lived calls (streaming) that must not be cut off.
    - Non-2xx responses are returned, not raised; callers decide what a status means.
    - One attempt per call, no retries.
    """

    def __init__(
        self,
        base_url: str = "",
        timeout_s: float | None = None,
        *,
        opener: urllib.request.OpenerDirector | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout_s = timeout_s
        self._opener = opener or urllib.request.build_opener()

    def request(
        self,
        path: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
        timeout: Any = _DEFAULT,
    ) -> RestResponse:
        url = join_url(self.base_url, path)
        req = urllib.request.Request(url, data=body, headers=dict(headers or {}), method=method.upper())
        effective_timeout = self.timeout_s if timeout is _DEFAULT else timeout
        logger.debug("%s %s (timeout=%s)", req.get_method(), url, effective_timeout)

        try:
            resp = self._opener.open(req, timeout=effective_timeout)
        except urllib.error.HTTPError as exc:
            # urllib raises for non-2xx; the error object doubles as the response.
            return RestResponse(status=int(exc.code), headers=_header_map(exc.headers), body=exc)
        except urllib.error.URLError as exc:
            raise TransportError(f"{req.get_method()} {url} failed: {exc.reason}") from exc
        except (OSError, socket.timeout) as exc:
            raise TransportError(f"{req.get_method()} {url} failed: {exc}") from exc

        status = getattr(resp, "status", None) or resp.getcode()
        return RestResponse(status=int(status), headers=_header_map(getattr(resp, "headers", None)), body=resp)


def _header_map(headers: Any) -> Mapping[str, str]:
    if isinstance(headers, HeaderMap):
        return headers
    out = HeaderMap()
    if isinstance(headers, Mapping):
        for key, value in headers.items():
            out[str(key)] = str(value)
    return out
