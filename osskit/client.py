"""
Object Storage Client
=====================

Facade over the signing, transfer and coordination layers for one bucket
context.

Operations:
-----------
| Method          | Request                            | Notes                          |
|-----------------|------------------------------------|--------------------------------|
| put             | PUT /key or multipart              | planner decides                |
| put_stream      | PUT /key (chunked)                 | Content-Length if supplied     |
| head / get      | HEAD|GET /key                      | 304 -> not_modified result     |
| get_stream      | GET /key (body read lazily)        | async byte iterator            |
| copy            | PUT /dest + x-oss-copy-source      | source If-* as copy-source-if-*|
| put_meta        | PUT /key + copy onto itself        | metadata directive REPLACE     |
| delete          | DELETE /key                        | 204 and 404 both succeed       |
| delete_multi    | POST /?delete                      | up to 1000 keys, Content-MD5   |
| restore         | POST /key?restore                  | archive objects only           |
| signature_url   | (no request)                       | expiry from the injected clock |
| multipart_upload| see MultipartCoordinator           | resumable with a checkpoint    |
| append          | see AppendCoordinator              | server-authoritative position  |

Every method returns a Result; nothing raises for service or transport
failures. The one exception is iterating a get_stream body, which raises
TransportError when the connection drops mid-body.

Example:
    >>> config = ClientConfig(endpoint="oss-cn-hangzhou.aliyuncs.com", bucket="media",
    ...                       credentials=Credentials("AKID", "secret"))
    >>> async with ObjectClient(config) as client:
    ...     stored = await client.put("hello.txt", b"hello world")
    ...     url = client.signature_url("hello.txt", expires=3600)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple

from osskit.auth.canonical import CanonicalRequest
from osskit.auth.encoding import escape_key, normalize_key
from osskit.auth.signer import Signer
from osskit.core import constants as C
from osskit.core.config import ClientConfig
from osskit.core.errors import InvalidArgument, LocalIOError, NotFound, OssError, ServiceError
from osskit.core.types import (
    ByteRange,
    ContentMD5,
    Err,
    ObjectDescriptor,
    Ok,
    Result,
    TargetObjectState,
    parse_http_date,
)
from osskit.observability.logging import LogLevel, setup_logging
from osskit.observability.metrics import TransferMetrics
from osskit.transfer.append import AppendCoordinator, AppendResult
from osskit.transfer.conditions import ConditionContext, ConditionalEvaluator, ObjectPrecondition
from osskit.transfer.content_type import resolve_content_type
from osskit.transfer.multipart import MultipartCoordinator
from osskit.transfer.planner import PayloadSource, SourceKind, TransferPlanner
from osskit.transport.documents import child_text, delete_multiple_body, iter_children, parse_document
from osskit.transport.executor import HttpExecutor, HttpResponse, HttpxExecutor, StreamedResponse
from osskit.transport.options import RequestOptions, UrlOptions
from osskit.transport.request import Clock, OssTransport

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT TYPES
# =============================================================================

class _ObjectHeaders:
    """Typed views over the response headers of an object read."""

    @property
    def not_modified(self) -> bool:
        return self.status == 304

    @property
    def etag(self) -> Optional[str]:
        return self.headers.get("etag")

    @property
    def last_modified(self) -> Optional[datetime]:
        return parse_http_date(self.headers.get("last-modified"))

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type")

    @property
    def content_length(self) -> Optional[int]:
        raw = self.headers.get("content-length")
        return int(raw) if raw and raw.isdigit() else None

    @property
    def request_id(self) -> Optional[str]:
        return self.headers.get(C.REQUEST_ID_HEADER)

    @property
    def meta(self) -> Dict[str, str]:
        """User metadata with the x-oss-meta- prefix removed."""
        prefix = C.META_HEADER_PREFIX
        return {
            name[len(prefix):]: value
            for name, value in self.headers.items()
            if name.startswith(prefix)
        }

    def target_state(self) -> TargetObjectState:
        return TargetObjectState.from_headers(self.headers)


@dataclass(frozen=True)
class ObjectResponse(_ObjectHeaders):
    """
    HEAD/GET result.

    ``not_modified`` is True for a 304 outcome; content and metadata are
    then empty. A GET written to ``dest`` leaves ``content`` empty.
    """

    key: str
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    content: bytes = b""


class ObjectStream(_ObjectHeaders):
    """
    GET result whose body is read incrementally.

    Iterate it once with ``async for``. The connection is released when
    the body ends, when iteration fails, or on ``aclose()``; use
    ``async with`` when the body may be abandoned part way.
    """

    __slots__ = ("key", "status", "headers", "_response", "_closed")

    def __init__(
        self,
        key: str,
        status: int,
        headers: Dict[str, str],
        response: Optional[StreamedResponse] = None,
    ) -> None:
        self.key = key
        self.status = status
        self.headers = headers
        self._response = response
        self._closed = response is None

    async def __aiter__(self) -> AsyncIterator[bytes]:
        if self._response is None:
            return
        try:
            async for chunk in self._response.chunks:
                yield chunk
        finally:
            await self.aclose()

    async def read(self) -> bytes:
        return b"".join([chunk async for chunk in self])

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            assert self._response is not None
            await self._response.close()

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> ObjectStream:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


@dataclass(frozen=True)
class CopyResult:
    key: str
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None
    not_modified: bool = False
    request_id: Optional[str] = None


def _parse_iso8601(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# CLIENT
# =============================================================================

class ObjectClient:
    """
    Async object-storage client for one configuration.

    All state (credentials, connection pool, metrics, concurrency bound) is
    scoped to the instance.
    """

    __slots__ = (
        "_config",
        "_transport",
        "_planner",
        "_evaluator",
        "_multipart",
        "_appender",
    )

    def __init__(
        self,
        config: ClientConfig,
        executor: Optional[HttpExecutor] = None,
        clock: Clock = time.time,
        signer: Optional[Signer] = None,
    ) -> None:
        """
        Args:
            config: Validated client configuration.
            executor: HTTP executor (defaults to a pooled HttpxExecutor).
            clock: Epoch-seconds clock used for Date headers and URL expiry.
            signer: Request signer (defaults to the standard OSS signer).

        Raises:
            ValueError: If the configuration fails cross-field validation.
        """
        validated = config.validate()
        if validated.is_err():
            raise ValueError(validated.error)

        self._config = config
        self._transport = OssTransport(
            config,
            executor or HttpxExecutor(config.retry),
            signer=signer,
            clock=clock,
            metrics=TransferMetrics(),
        )
        self._planner = TransferPlanner(config.transfer)
        self._evaluator = ConditionalEvaluator()
        self._multipart = MultipartCoordinator(self._transport, config.transfer, self._planner)
        self._appender = AppendCoordinator(self._transport, self._evaluator, self._planner)

    @classmethod
    def from_env(
        cls,
        prefix: str = "OSSKIT",
        configure_logging: bool = False,
        **kwargs: Any,
    ) -> Result[ObjectClient, str]:
        """
        Build a client from ``{prefix}_*`` environment variables.

        With ``configure_logging`` the ``osskit`` logger is set up from
        ``{prefix}_LOG_LEVEL`` and ``{prefix}_LOG_JSON``.
        """
        loaded = ClientConfig.from_env(prefix)
        if loaded.is_err():
            return loaded
        config = loaded.value
        validated = config.validate()
        if validated.is_err():
            return validated
        if configure_logging:
            observability = config.observability
            setup_logging(LogLevel.from_name(observability.log_level), observability.log_json)
        return Ok(cls(config, **kwargs))

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> ObjectClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the executor's connections. Safe to call multiple times."""
        await self._transport.close()

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def metrics(self) -> TransferMetrics:
        return self._transport.metrics

    @property
    def multipart(self) -> MultipartCoordinator:
        return self._multipart

    @property
    def appender(self) -> AppendCoordinator:
        return self._appender

    # -------------------------------------------------------------------------
    # WRITES
    # -------------------------------------------------------------------------

    async def put(
        self,
        key: str,
        data: Any,
        options: Optional[RequestOptions] = None,
        *,
        content_length: Optional[int] = None,
        checkpoint_path: Optional[str] = None,
        bucket: Optional[str] = None,
    ) -> Result[ObjectDescriptor, OssError]:
        """
        Store ``data`` (bytes, file path or stream) under ``key``.

        Sources at or above the multipart threshold go through the
        multipart coordinator; everything else is a single PUT.
        """
        loaded = PayloadSource.load(data)
        if loaded.is_err():
            return loaded
        source = loaded.value
        planned = self._planner.plan(source, content_length)
        if planned.is_err():
            return planned
        plan = planned.value

        if plan.multipart and (content_length is None or content_length == source.size):
            return await self._multipart.upload(
                key,
                source,
                options,
                checkpoint_path=checkpoint_path,
                part_size=plan.part_size,
                bucket=bucket,
            )

        if source.seekable and plan.content_length is not None and plan.content_length != source.size:
            try:
                source = PayloadSource.from_bytes(await source.read_range(0, plan.content_length))
            except OSError as e:
                return Err(LocalIOError.source_unreadable(source.path or key, e))

        options = options or RequestOptions()
        headers = options.to_headers()
        headers["Content-Type"] = resolve_content_type(options.content_type, source.path, key)
        headers.update(plan.headers())

        if source.kind is SourceKind.BUFFER:
            assert source.data is not None
            headers.setdefault("Content-MD5", ContentMD5.compute(source.data).to_base64())
            sent = await self._transport.send_with_retry(
                "PUT", key, headers=headers, body=source.data, bucket=bucket
            )
        else:
            sent = await self._transport.send("PUT", key, headers=headers, body=source.body(), bucket=bucket)
        if sent.is_err():
            return sent

        response = sent.value
        self._transport.metrics.record_upload()
        return Ok(ObjectDescriptor(
            key=key,
            etag=response.header("etag"),
            last_modified=parse_http_date(response.header("last-modified")),
            size=plan.content_length,
            request_id=response.request_id,
        ))

    async def put_stream(
        self,
        key: str,
        stream: Any,
        options: Optional[RequestOptions] = None,
        *,
        content_length: Optional[int] = None,
        bucket: Optional[str] = None,
    ) -> Result[ObjectDescriptor, OssError]:
        """Single PUT of a stream; chunked unless ``content_length`` is given."""
        source = PayloadSource.from_stream(stream)
        return await self.put(key, source, options, content_length=content_length, bucket=bucket)

    async def multipart_upload(
        self,
        key: str,
        data: Any,
        options: Optional[RequestOptions] = None,
        *,
        checkpoint_path: Optional[str] = None,
        part_size: Optional[int] = None,
        bucket: Optional[str] = None,
    ) -> Result[ObjectDescriptor, OssError]:
        """Force a multipart upload regardless of size."""
        return await self._multipart.upload(
            key,
            data,
            options,
            checkpoint_path=checkpoint_path,
            part_size=part_size,
            bucket=bucket,
        )

    async def append(
        self,
        key: str,
        data: Any,
        position: int = 0,
        options: Optional[RequestOptions] = None,
        *,
        precondition: Optional[ObjectPrecondition] = None,
        bucket: Optional[str] = None,
    ) -> Result[AppendResult, OssError]:
        return await self._appender.append(key, data, position, options, precondition, bucket)

    async def copy(
        self,
        source_key: str,
        dest_key: str,
        options: Optional[RequestOptions] = None,
        *,
        source_precondition: Optional[ObjectPrecondition] = None,
        precondition: Optional[ObjectPrecondition] = None,
        source_bucket: Optional[str] = None,
        bucket: Optional[str] = None,
    ) -> Result[CopyResult, OssError]:
        """
        Server-side copy.

        Args:
            source_key: Key to copy from.
            dest_key: Key to copy to.
            options: Metadata for the destination; when ``meta`` is set the
                source metadata is replaced rather than copied.
            source_precondition: Sent as ``x-oss-copy-source-if-*``; a
                matching If-None-Match yields ``not_modified``.
            precondition: Destination precondition, checked in WRITE
                context against a HEAD of the destination.
            source_bucket: Bucket of the source (defaults to the target).
            bucket: Target bucket override.
        """
        return await self._copy(
            source_key,
            dest_key,
            options or RequestOptions(),
            replace_metadata=bool(options is not None and options.meta),
            source_precondition=source_precondition,
            precondition=precondition,
            source_bucket=source_bucket,
            bucket=bucket,
        )

    async def put_meta(
        self,
        key: str,
        meta: Mapping[str, str],
        options: Optional[RequestOptions] = None,
        *,
        bucket: Optional[str] = None,
    ) -> Result[CopyResult, OssError]:
        """
        Replace the user metadata of ``key`` in place.

        A copy of the object onto itself with the REPLACE directive; the
        content is not transferred. An empty ``meta`` clears the metadata.
        """
        options = replace(options or RequestOptions(), meta=dict(meta))
        return await self._copy(key, key, options, replace_metadata=True, bucket=bucket)

    async def _copy(
        self,
        source_key: str,
        dest_key: str,
        options: RequestOptions,
        *,
        replace_metadata: bool,
        source_precondition: Optional[ObjectPrecondition] = None,
        precondition: Optional[ObjectPrecondition] = None,
        source_bucket: Optional[str] = None,
        bucket: Optional[str] = None,
    ) -> Result[CopyResult, OssError]:
        if precondition is not None and not precondition.is_empty:
            checked = await self._check_write_precondition(dest_key, precondition, bucket)
            if checked.is_err():
                return checked

        source_bucket = source_bucket or bucket or self._config.bucket
        headers = options.to_headers()
        headers[C.COPY_SOURCE_HEADER] = f"/{source_bucket}/{escape_key(source_key)}"
        if options.content_type:
            headers["Content-Type"] = options.content_type
        if replace_metadata:
            headers[C.METADATA_DIRECTIVE_HEADER] = "REPLACE"
        if source_precondition is not None:
            headers.update(source_precondition.to_copy_source_headers())

        sent = await self._transport.send("PUT", dest_key, headers=headers, bucket=bucket, accept=(304,))
        if sent.is_err():
            return sent

        response = sent.value
        if response.status == 304:
            return Ok(CopyResult(key=dest_key, not_modified=True, request_id=response.request_id))

        root = parse_document(response.body)
        etag = (child_text(root, "ETag") if root is not None else None) or response.header("etag")
        last_modified = _parse_iso8601(child_text(root, "LastModified") if root is not None else None)
        return Ok(CopyResult(
            key=dest_key,
            etag=etag,
            last_modified=last_modified,
            request_id=response.request_id,
        ))

    async def delete(self, key: str, *, bucket: Optional[str] = None) -> Result[None, OssError]:
        """Delete an object; a missing object counts as deleted."""
        sent = await self._transport.send_with_retry("DELETE", key, bucket=bucket)
        if sent.is_err() and not isinstance(sent.error, NotFound):
            return sent
        return Ok(None)

    async def delete_multi(
        self,
        keys: Sequence[str],
        quiet: bool = False,
        *,
        bucket: Optional[str] = None,
    ) -> Result[List[str], OssError]:
        """
        Delete up to 1000 objects in one request.

        Returns the keys the service reports as deleted. Missing keys are
        reported as deleted too; quiet mode reports nothing, so success
        yields an empty list.
        """
        keys = list(keys)
        if not keys:
            return Err(InvalidArgument.invalid("keys", keys, "at least one key is required"))
        if len(keys) > C.DELETE_MULTIPLE_MAX_KEYS:
            return Err(InvalidArgument.invalid(
                "keys", len(keys), f"at most {C.DELETE_MULTIPLE_MAX_KEYS} keys per request"
            ))

        body = delete_multiple_body(keys, quiet)
        headers = {
            "Content-Type": "application/xml",
            "Content-MD5": ContentMD5.compute(body).to_base64(),
        }
        sent = await self._transport.send_with_retry(
            "POST", "", headers=headers, query={"delete": None}, body=body, bucket=bucket
        )
        if sent.is_err():
            return sent

        response = sent.value
        root = parse_document(response.body)
        if root is None:
            if quiet:
                return Ok([])
            return Err(ServiceError.malformed_response(
                "DeleteMultipleObjects", "missing DeleteResult document", response.status, response.request_id
            ))
        deleted = [child_text(entry, "Key") or "" for entry in iter_children(root, "Deleted")]
        logger.debug(
            "Deleted %d of %d objects", len(deleted), len(keys),
            extra={"bucket": bucket or self._config.bucket, "request_id": response.request_id},
        )
        return Ok(deleted)

    async def restore(self, key: str, *, bucket: Optional[str] = None) -> Result[int, OssError]:
        """
        Start restoring an archived object.

        Returns the status (202 for a newly started restore). A restore
        already running yields RestoreInProgress; non-archive objects yield
        OperationNotSupported.
        """
        sent = await self._transport.send("POST", key, query={"restore": None}, bucket=bucket)
        return sent.map(lambda response: response.status)

    # -------------------------------------------------------------------------
    # READS
    # -------------------------------------------------------------------------

    async def head(
        self,
        key: str,
        precondition: Optional[ObjectPrecondition] = None,
        *,
        bucket: Optional[str] = None,
    ) -> Result[ObjectResponse, OssError]:
        """Object metadata; preconditions are evaluated by the server."""
        return await self._read("HEAD", key, precondition, bucket=bucket)

    async def get(
        self,
        key: str,
        precondition: Optional[ObjectPrecondition] = None,
        *,
        byte_range: Optional[ByteRange] = None,
        process: Optional[str] = None,
        dest: Any = None,
        bucket: Optional[str] = None,
    ) -> Result[ObjectResponse, OssError]:
        """
        Object content.

        Args:
            key: Object key.
            precondition: If-* headers; 304 yields ``not_modified``.
            byte_range: Partial read.
            process: Processing directive, sent as ``x-oss-process``.
            dest: File path or writer (sync or async ``write``). The body
                is streamed there instead of into ``content``; a partially
                written file is removed on failure.
            bucket: Bucket override.
        """
        if dest is not None:
            return await self._download(key, dest, precondition, byte_range, process, bucket)
        result = await self._read("GET", key, precondition, byte_range=byte_range, process=process, bucket=bucket)
        if result.is_ok() and not result.value.not_modified:
            self._transport.metrics.record_download()
        return result

    async def get_stream(
        self,
        key: str,
        precondition: Optional[ObjectPrecondition] = None,
        *,
        byte_range: Optional[ByteRange] = None,
        process: Optional[str] = None,
        bucket: Optional[str] = None,
    ) -> Result[ObjectStream, OssError]:
        """
        Object content as an async byte iterator.

        Only opening the request is retried. A connection lost mid-body
        raises TransportError from the iteration.

        Example:
            >>> opened = await client.get_stream("video.mp4")
            >>> async with opened.unwrap() as stream:
            ...     async for chunk in stream:
            ...         sink.write(chunk)
        """
        headers, query = self._read_request(precondition, byte_range, process)
        opened = await self._transport.open_stream(
            "GET", key, headers=headers, query=query, bucket=bucket, accept=(304,)
        )
        if opened.is_err():
            return opened

        response = opened.value
        if response.status == 304:
            await response.close()
            return Ok(ObjectStream(key, 304, {}))
        self._transport.metrics.record_download()
        return Ok(ObjectStream(key, response.status, response.headers, response))

    async def _download(
        self,
        key: str,
        dest: Any,
        precondition: Optional[ObjectPrecondition],
        byte_range: Optional[ByteRange],
        process: Optional[str],
        bucket: Optional[str],
    ) -> Result[ObjectResponse, OssError]:
        opened = await self.get_stream(key, precondition, byte_range=byte_range, process=process, bucket=bucket)
        if opened.is_err():
            return opened

        async with opened.value as stream:
            if stream.not_modified:
                return Ok(ObjectResponse(key=key, status=304))
            if isinstance(dest, (str, os.PathLike)):
                written = await _save_to_path(stream, os.fspath(dest))
            else:
                written = await _save_to_writer(stream, dest)
        if written.is_err():
            return written

        logger.debug("Downloaded %d bytes of %s", written.value, key, extra={"request_id": stream.request_id})
        return Ok(ObjectResponse(key=key, status=stream.status, headers=stream.headers))

    def _read_request(
        self,
        precondition: Optional[ObjectPrecondition],
        byte_range: Optional[ByteRange],
        process: Optional[str],
    ) -> Tuple[Dict[str, str], Optional[Dict[str, Optional[str]]]]:
        headers = precondition.to_headers() if precondition is not None else {}
        if byte_range is not None:
            headers["Range"] = byte_range.to_http_header()
        query: Optional[Dict[str, Optional[str]]] = {"x-oss-process": process} if process else None
        return headers, query

    async def _read(
        self,
        method: str,
        key: str,
        precondition: Optional[ObjectPrecondition],
        *,
        byte_range: Optional[ByteRange] = None,
        process: Optional[str] = None,
        bucket: Optional[str] = None,
    ) -> Result[ObjectResponse, OssError]:
        headers, query = self._read_request(precondition, byte_range, process)
        sent = await self._transport.send_with_retry(
            method, key, headers=headers, query=query, bucket=bucket, accept=(304,)
        )
        if sent.is_err():
            return sent
        return Ok(_object_response(key, sent.value))

    async def _check_write_precondition(
        self,
        key: str,
        precondition: ObjectPrecondition,
        bucket: Optional[str],
    ) -> Result[None, OssError]:
        state: Optional[TargetObjectState] = None
        current = await self.head(key, bucket=bucket)
        if current.is_ok():
            state = current.value.target_state()
        elif not isinstance(current.error, NotFound):
            return current
        checked = self._evaluator.check(precondition, state, ConditionContext.WRITE, key=key)
        return checked.map(lambda _: None)

    # -------------------------------------------------------------------------
    # URLS
    # -------------------------------------------------------------------------

    def signature_url(
        self,
        key: str,
        method: str = "GET",
        expires: Optional[int] = None,
        options: Optional[UrlOptions] = None,
        *,
        bucket: Optional[str] = None,
    ) -> str:
        """
        Presigned URL valid for ``expires`` seconds from the client clock.

        Raises:
            ValueError: If ``expires`` is not positive.
        """
        options = options or UrlOptions()
        lifetime = options.expires if expires is None else expires
        if lifetime <= 0:
            raise ValueError(f"expires must be > 0, got {lifetime}")

        bucket = bucket or self._config.bucket
        request = CanonicalRequest.for_object(method, bucket, key, headers=options.to_headers())
        return self._transport.signer.sign_url(
            request,
            self._config.credentials,
            int(self._transport.clock()) + lifetime,
            self._config.bucket_url(bucket),
            extra_query=options.to_query(),
        )

    def object_url(self, key: str, base_url: Optional[str] = None, *, bucket: Optional[str] = None) -> str:
        """Unsigned URL of ``key`` under ``base_url`` (default: the bucket URL)."""
        if base_url is None:
            return self._transport.object_url(key, bucket)
        if not base_url.endswith("/"):
            base_url += "/"
        return base_url + escape_key(normalize_key(key))


def _object_response(key: str, response: HttpResponse) -> ObjectResponse:
    if response.status == 304:
        return ObjectResponse(key=key, status=304, headers={})
    return ObjectResponse(key=key, status=response.status, headers=response.headers, content=response.body)


def _remove_partial(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        return


async def _save_to_path(stream: ObjectStream, path: str) -> Result[int, OssError]:
    """Write the body to ``path``; nothing is left behind on failure."""
    try:
        fh = await asyncio.to_thread(open, path, "wb")
    except OSError as e:
        return Err(LocalIOError.destination_unwritable(path, e))

    written = 0
    try:
        try:
            async for chunk in stream:
                await asyncio.to_thread(fh.write, chunk)
                written += len(chunk)
        finally:
            await asyncio.to_thread(fh.close)
    except OSError as e:
        await asyncio.to_thread(_remove_partial, path)
        return Err(LocalIOError.destination_unwritable(path, e))
    except OssError as e:
        await asyncio.to_thread(_remove_partial, path)
        return Err(e)
    return Ok(written)


async def _save_to_writer(stream: ObjectStream, writer: Any) -> Result[int, OssError]:
    written = 0
    try:
        async for chunk in stream:
            pending = writer.write(chunk)
            if inspect.isawaitable(pending):
                await pending
            written += len(chunk)
    except OSError as e:
        return Err(LocalIOError.destination_unwritable(str(getattr(writer, "name", type(writer).__name__)), e))
    except OssError as e:
        return Err(e)
    return Ok(written)


__all__ = ["ObjectClient", "ObjectResponse", "ObjectStream", "CopyResult"]
