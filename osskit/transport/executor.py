"""
Generic HTTP Executor
=====================

The client core depends only on this narrow contract:

    send(method, url, headers, body) -> Result[HttpResponse, TransportError]
    open_stream(method, url, headers) -> Result[StreamedResponse, TransportError]

Any HTTP stack can sit behind it. HttpxExecutor is the production
implementation on a pooled ``httpx.AsyncClient``; tests plug in an
in-memory fake service.

Only connection-level failures become errors here. Every HTTP status,
4xx and 5xx included, is a successful exchange at this layer and is mapped
to the error taxonomy by the request layer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator, Awaitable, Callable, Dict, Mapping, Optional, Protocol, Union, runtime_checkable

import httpx

from osskit.core import constants as C
from osskit.core.config import RetryConfig
from osskit.core.errors import TransportError
from osskit.core.types import Err, Ok, Result

logger = logging.getLogger(__name__)

RequestBody = Union[None, bytes, AsyncIterable[bytes]]


@dataclass(frozen=True)
class HttpResponse:
    """
    Response as seen by the client core.

    Attributes:
        status: HTTP status code.
        headers: Response headers with lower-cased names.
        body: Fully read response body.
    """

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    @property
    def request_id(self) -> Optional[str]:
        return self.headers.get(C.REQUEST_ID_HEADER)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True)
class StreamedResponse:
    """
    Response whose body is read incrementally.

    ``chunks`` is consumed at most once; iteration raises TransportError
    when the connection drops mid-body. ``close`` releases the connection
    and must be awaited whether or not the body was read to the end.
    """

    status: int
    headers: Dict[str, str]
    chunks: AsyncIterator[bytes]
    close: Callable[[], Awaitable[None]]

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    @property
    def request_id(self) -> Optional[str]:
        return self.headers.get(C.REQUEST_ID_HEADER)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    async def read(self) -> bytes:
        """Drain the remaining body and close."""
        try:
            return b"".join([chunk async for chunk in self.chunks])
        finally:
            await self.close()


@runtime_checkable
class HttpExecutor(Protocol):
    """Anything that can perform one HTTP exchange."""

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: RequestBody = None,
    ) -> Result[HttpResponse, TransportError]:
        ...

    async def open_stream(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
    ) -> Result[StreamedResponse, TransportError]:
        ...

    async def close(self) -> None:
        ...


class HttpxExecutor:
    """
    HttpExecutor backed by a shared ``httpx.AsyncClient``.

    The connection pool lives as long as the executor; call ``close()`` (or
    close the owning client) to release it.

    Example:
        >>> executor = HttpxExecutor(RetryConfig(request_timeout_s=30))
        >>> result = await executor.send("HEAD", url, headers)
        >>> await executor.close()
    """

    __slots__ = ("_client", "_timeout_s", "_owns_client")

    def __init__(
        self,
        retry: Optional[RetryConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        retry = retry or RetryConfig()
        self._timeout_s = retry.request_timeout_s
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(retry.request_timeout_s, connect=retry.connect_timeout_s),
            follow_redirects=False,
        )

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: RequestBody = None,
    ) -> Result[HttpResponse, TransportError]:
        try:
            response = await self._client.request(
                method,
                url,
                headers=dict(headers),
                content=body,
            )
        except httpx.TimeoutException as e:
            logger.debug("%s %s timed out: %s", method, url, e)
            return Err(TransportError.timeout(url, self._timeout_s, cause=e))
        except httpx.TransportError as e:
            logger.debug("%s %s failed: %s", method, url, e)
            return Err(TransportError.connection_failed(url, cause=e))

        return Ok(HttpResponse(
            status=response.status_code,
            headers={name.lower(): value for name, value in response.headers.items()},
            body=response.content,
        ))

    async def open_stream(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
    ) -> Result[StreamedResponse, TransportError]:
        request = self._client.build_request(method, url, headers=dict(headers))
        try:
            response = await self._client.send(request, stream=True)
        except httpx.TimeoutException as e:
            logger.debug("%s %s timed out: %s", method, url, e)
            return Err(TransportError.timeout(url, self._timeout_s, cause=e))
        except httpx.TransportError as e:
            logger.debug("%s %s failed: %s", method, url, e)
            return Err(TransportError.connection_failed(url, cause=e))

        return Ok(StreamedResponse(
            status=response.status_code,
            headers={name.lower(): value for name, value in response.headers.items()},
            chunks=self._iter_body(response, url),
            close=response.aclose,
        ))

    async def _iter_body(self, response: httpx.Response, url: str) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.TimeoutException as e:
            raise TransportError.timeout(url, self._timeout_s, cause=e) from e
        except httpx.TransportError as e:
            raise TransportError.connection_failed(url, cause=e) from e

    async def close(self) -> None:
        """Release pooled connections. Safe to call multiple times."""
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()
