"""
Signed Request Transport
========================

Builds, signs and sends one request through the HttpExecutor, then maps
the response into the error taxonomy.

Pipeline:
---------
1. CanonicalRequest.for_object(verb, bucket, key, headers, subresources)
2. Signer.sign_header(..., timestamp=clock())   (Date + Authorization)
3. URL = bucket base URL + escaped key + sorted query
4. executor.send(...)                            (TransportError on I/O)
5. status in accepted set -> Ok(response); otherwise error_from_response

open_stream() runs the same pipeline but hands the body out unread, for
downloads that should not be buffered in memory.

The clock is injected so tests pin Date headers and expiries. Retries
re-sign every attempt so a slow backoff never sends a stale Date.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Collection, Mapping, Optional, Tuple

from osskit.auth.canonical import CanonicalRequest
from osskit.auth.encoding import encode_query, escape_key
from osskit.auth.signer import Signer
from osskit.core.config import ClientConfig
from osskit.core.errors import LocalIOError, OssError, TransportError, error_from_response
from osskit.core.types import Err, Ok, Result
from osskit.observability.metrics import TransferMetrics
from osskit.reliability.retry import RetryPolicy, retry_with_backoff
from osskit.transport.executor import HttpExecutor, HttpResponse, RequestBody, StreamedResponse

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class OssTransport:
    """
    Per-client request pipeline.

    Holds the configuration, credentials, signer, executor and metrics of
    one client instance; no state is shared between instances.
    """

    __slots__ = ("_config", "_executor", "_signer", "_clock", "_metrics", "_retry_policy")

    def __init__(
        self,
        config: ClientConfig,
        executor: HttpExecutor,
        signer: Optional[Signer] = None,
        clock: Clock = time.time,
        metrics: Optional[TransferMetrics] = None,
    ) -> None:
        self._config = config
        self._executor = executor
        self._signer = signer or Signer()
        self._clock = clock
        self._metrics = metrics or TransferMetrics()
        self._retry_policy = RetryPolicy.from_config(config.retry)

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def signer(self) -> Signer:
        return self._signer

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def metrics(self) -> TransferMetrics:
        return self._metrics

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @property
    def executor(self) -> HttpExecutor:
        return self._executor

    def object_url(self, key: str, bucket: Optional[str] = None) -> str:
        """Unsigned URL of an object."""
        return self._config.bucket_url(bucket) + escape_key(key)

    def _prepare(
        self,
        method: str,
        key: str,
        headers: Optional[Mapping[str, str]],
        query: Optional[Mapping[str, Optional[str]]],
        bucket: str,
    ) -> Tuple[str, Mapping[str, str], str]:
        """Canonical verb, signed headers and URL of one request."""
        query = dict(query or {})
        canonical = CanonicalRequest.for_object(method, bucket, key, headers, query)
        auth = self._signer.sign_header(canonical, self._config.credentials, self._clock())

        url = self._config.bucket_url(bucket) + canonical.encoded_key
        if query:
            url = f"{url}?{encode_query(query.items())}"
        return canonical.verb, auth.headers, url

    def _transport_failed(self, verb: str, key: str, bucket: str, error: OssError) -> Err[OssError]:
        error = error.with_context(method=verb, key=key or None)
        self._metrics.record_error(error.code.name, transport=True)
        logger.warning(
            "%s %s failed: %s", verb, key or "/", error,
            extra={"bucket": bucket, "error_code": error.code.name},
        )
        return Err(error)

    def _rejected(self, verb: str, key: str, bucket: str, status: int, headers: Mapping[str, str], body: bytes) -> Err[OssError]:
        error = error_from_response(status, headers, body, key=key or None)
        self._metrics.record_error(error.code.name)
        logger.debug(
            "%s %s -> %d %s", verb, key or "/", status, error.server_code,
            extra={"bucket": bucket, "request_id": error.request_id},
        )
        return Err(error)

    async def send(
        self,
        method: str,
        key: str = "",
        *,
        headers: Optional[Mapping[str, str]] = None,
        query: Optional[Mapping[str, Optional[str]]] = None,
        body: RequestBody = None,
        bucket: Optional[str] = None,
        accept: Collection[int] = (),
    ) -> Result[HttpResponse, OssError]:
        """
        Sign and send one request.

        Args:
            method: HTTP verb.
            key: Object key ("" for bucket-level requests).
            headers: Request headers (Content-Type, x-oss-*, conditions).
            query: Query parameters; signed ones enter the signature.
            body: None, bytes or an async iterable of bytes.
            bucket: Bucket override (defaults to the configured bucket).
            accept: Non-2xx statuses to return as Ok (e.g. 304).

        Returns:
            Ok(response) for 2xx and accepted statuses, else Err with the
            mapped error. A streamed body that fails to read locally yields
            LocalIOError.
        """
        bucket = bucket or self._config.bucket
        verb, signed, url = self._prepare(method, key, headers, query, bucket)

        start_ns = time.perf_counter_ns()
        try:
            sent = await self._executor.send(verb, url, signed, body)
        except OSError as e:
            error = LocalIOError.source_unreadable(str(e.filename or key), e)
            logger.warning("%s %s aborted, body unreadable: %s", verb, key or "/", e, extra={"bucket": bucket})
            return Err(error.with_context(method=verb, key=key or None))
        latency_ns = time.perf_counter_ns() - start_ns

        if sent.is_err():
            return self._transport_failed(verb, key, bucket, sent.error)

        response = sent.value
        self._metrics.record_request(
            verb,
            latency_ns,
            sent=len(body) if isinstance(body, (bytes, bytearray)) else 0,
            received=len(response.body),
        )

        if response.ok or response.status in accept:
            logger.debug(
                "%s %s -> %d", verb, key or "/", response.status,
                extra={"bucket": bucket, "request_id": response.request_id},
            )
            return Ok(response)

        return self._rejected(verb, key, bucket, response.status, response.headers, response.body)

    async def open_stream(
        self,
        method: str,
        key: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        query: Optional[Mapping[str, Optional[str]]] = None,
        bucket: Optional[str] = None,
        accept: Collection[int] = (),
        policy: Optional[RetryPolicy] = None,
    ) -> Result[StreamedResponse, OssError]:
        """
        Sign and open a request whose response body is read incrementally.

        Opening is retried like send_with_retry; once the body is handed
        out, failures surface while iterating it. Error responses are read
        in full and closed here.
        """
        bucket = bucket or self._config.bucket

        async def attempt() -> Result[StreamedResponse, OssError]:
            verb, signed, url = self._prepare(method, key, headers, query, bucket)
            start_ns = time.perf_counter_ns()
            opened = await self._executor.open_stream(verb, url, signed)
            if opened.is_err():
                return self._transport_failed(verb, key, bucket, opened.error)

            response = opened.value
            self._metrics.record_request(verb, time.perf_counter_ns() - start_ns)
            if response.ok or response.status in accept:
                logger.debug(
                    "%s %s -> %d (streaming)", verb, key or "/", response.status,
                    extra={"bucket": bucket, "request_id": response.request_id},
                )
                return Ok(response)

            body = await response.read()
            return self._rejected(verb, key, bucket, response.status, response.headers, body)

        def on_retry(attempt_no: int, error: OssError) -> None:
            self._metrics.record_retry()
            logger.info("Retrying %s %s (attempt %d): %s", method, key or "/", attempt_no + 1, error)

        return await retry_with_backoff(attempt, policy or self._retry_policy, on_retry=on_retry)

    async def send_with_retry(
        self,
        method: str,
        key: str = "",
        *,
        headers: Optional[Mapping[str, str]] = None,
        query: Optional[Mapping[str, Optional[str]]] = None,
        body: Optional[bytes] = None,
        bucket: Optional[str] = None,
        accept: Collection[int] = (),
        policy: Optional[RetryPolicy] = None,
    ) -> Result[HttpResponse, OssError]:
        """
        send() with bounded retry of transient failures.

        The body must be bytes (re-sendable); streams are never retried.
        """

        async def attempt() -> Result[HttpResponse, OssError]:
            return await self.send(
                method, key, headers=headers, query=query, body=body, bucket=bucket, accept=accept
            )

        def on_retry(attempt_no: int, error: OssError) -> None:
            self._metrics.record_retry()
            logger.info(
                "Retrying %s %s (attempt %d): %s", method, key or "/", attempt_no + 1, error,
                extra={"transient": isinstance(error, TransportError)},
            )

        return await retry_with_backoff(
            attempt, policy or self._retry_policy, on_retry=on_retry
        )

    async def close(self) -> None:
        await self._executor.close()
