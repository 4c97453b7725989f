"""
Multipart Upload Coordinator
============================

Orchestrates initiate / upload-part / complete / abort with bounded
concurrency, per-part retry and checkpoint resume.

Request Flow:
-------------
| Step        | Request                                   | Retried |
|-------------|-------------------------------------------|---------|
| initiate    | POST   /key?uploads                       | no      |
| upload_part | PUT    /key?partNumber=N&uploadId=U       | yes     |
| list_parts  | GET    /key?uploadId=U[&part-number-marker]| yes     |
| complete    | POST   /key?uploadId=U  (ordered part XML)| no      |
| abort       | DELETE /key?uploadId=U                    | yes     |

Concurrency Model:
------------------
- One asyncio.Semaphore per coordinator bounds in-flight part uploads;
  it is acquired before a part task is spawned and released by the task's
  done callback, so cancelled-before-start tasks never leak a slot.
- Parts finish in any order; results are keyed by part number and
  complete() always submits them in ascending order.
- The first failed part cancels every other in-flight part; all spawned
  tasks have settled before upload_source() returns.
- abort() cancels tracked part tasks; upload_source() then stops spawning
  and reports the upload as incomplete instead of raising.
- Local I/O failures (unreadable source, unwritable checkpoint) are part
  failures like any other.

Resume:
-------
resume() trusts the checkpoint only for identity (upload id, part size,
source signature). Which parts are acknowledged is re-derived from the
server listing, so two resumes of an unchanged checkpoint always agree.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Awaitable, Callable, List, Optional, Sequence

from osskit.core import constants as C
from osskit.core.config import TransferConfig
from osskit.core.errors import (
    CheckpointStale,
    InvalidArgument,
    LocalIOError,
    MultipartIncomplete,
    NotFound,
    OssError,
    ServiceError,
)
from osskit.core.types import ContentMD5, Err, ObjectDescriptor, Ok, Result
from osskit.observability.logging import log_context
from osskit.transfer.checkpoint import Checkpoint, CheckpointStore, SourceSignature
from osskit.transfer.content_type import resolve_content_type
from osskit.transfer.planner import PayloadSource, SourceKind, TransferPlanner
from osskit.transfer.session import MultipartSession, MultipartState, PartResult
from osskit.transport.documents import child_text, complete_multipart_body, iter_children, parse_document
from osskit.transport.options import RequestOptions
from osskit.transport.request import OssTransport

logger = logging.getLogger(__name__)


class MultipartCoordinator:
    """
    Multipart upload engine for one client.

    Example:
        >>> coordinator = MultipartCoordinator(transport)
        >>> result = await coordinator.upload("videos/big.mp4", "/data/big.mp4",
        ...                                   checkpoint_path="/data/big.mp4.ckpt")
        >>> result.unwrap().etag
    """

    __slots__ = ("_transport", "_config", "_planner", "_semaphore")

    def __init__(
        self,
        transport: OssTransport,
        config: Optional[TransferConfig] = None,
        planner: Optional[TransferPlanner] = None,
    ) -> None:
        self._transport = transport
        self._config = config or transport.config.transfer
        self._planner = planner or TransferPlanner(self._config)
        self._semaphore = asyncio.Semaphore(self._config.parallel)

    @property
    def parallel(self) -> int:
        return self._config.parallel

    # -------------------------------------------------------------------------
    # INITIATE
    # -------------------------------------------------------------------------

    async def initiate(
        self,
        key: str,
        options: Optional[RequestOptions] = None,
        *,
        total_size: Optional[int] = None,
        part_size: Optional[int] = None,
        file_path: Optional[str] = None,
        bucket: Optional[str] = None,
    ) -> Result[MultipartSession, OssError]:
        """
        Allocate a server-side upload id.

        The Content-Type is resolved here, once, and recorded on the
        session. Not retried: a retry after an ambiguous failure would
        allocate a second upload id.
        """
        part_size = part_size or self._config.part_size_for(total_size)
        if part_size < self._config.min_part_size:
            return Err(InvalidArgument.invalid(
                "part_size", part_size, f"must be >= {self._config.min_part_size}"
            ))
        if total_size is not None and self._planner.part_count(total_size, part_size) > self._config.max_parts:
            return Err(InvalidArgument.invalid(
                "part_size", part_size, f"yields more than {self._config.max_parts} parts"
            ))

        options = options or RequestOptions()
        content_type = resolve_content_type(options.content_type, file_path, key)
        headers = options.to_headers()
        headers["Content-Type"] = content_type

        sent = await self._transport.send("POST", key, headers=headers, query={"uploads": None}, bucket=bucket)
        if sent.is_err():
            return sent

        response = sent.value
        root = parse_document(response.body)
        upload_id = child_text(root, "UploadId") if root is not None else None
        if not upload_id:
            return Err(ServiceError.malformed_response(
                "InitiateMultipartUpload", "missing UploadId", response.status, response.request_id
            ))

        session = MultipartSession(
            upload_id=upload_id,
            bucket=bucket or self._transport.config.bucket,
            key=key,
            part_size=part_size,
            total_size=total_size,
            content_type=content_type,
        )
        logger.info(
            "Initiated multipart upload",
            extra={"key": key, "upload_id": upload_id, "part_size": part_size, "total_size": total_size},
        )
        return Ok(session)

    # -------------------------------------------------------------------------
    # PARTS
    # -------------------------------------------------------------------------

    async def upload_part(
        self,
        session: MultipartSession,
        part_number: int,
        data: bytes,
        last: bool = False,
    ) -> Result[PartResult, OssError]:
        """
        Upload one part within the coordinator's concurrency bound.

        Args:
            session: Open session.
            part_number: 1-based, unique per session.
            data: Part payload; at least the minimum part size unless last.
            last: Whether this is the final part.
        """
        async with self._semaphore:
            return await self._upload_part(session, part_number, data, last)

    async def _upload_part(
        self,
        session: MultipartSession,
        part_number: int,
        data: bytes,
        last: bool,
    ) -> Result[PartResult, OssError]:
        # Caller holds a semaphore slot.
        if session.state not in (MultipartState.INITIATED, MultipartState.UPLOADING):
            return Err(InvalidArgument.invalid(
                "session", session.state.value, "parts can only be uploaded to an open session"
            ))
        if not 1 <= part_number <= self._config.max_parts:
            return Err(InvalidArgument.invalid(
                "part_number", part_number, f"must be in [1, {self._config.max_parts}]"
            ))
        if not last and len(data) < self._config.min_part_size:
            return Err(InvalidArgument.invalid(
                "part", part_number,
                f"{len(data)} bytes is below the minimum part size {self._config.min_part_size}",
            ))
        if not session.claim(part_number):
            return Err(InvalidArgument.invalid("part_number", part_number, "already uploaded or in flight"))

        try:
            if session.state is MultipartState.INITIATED:
                session.state = MultipartState.UPLOADING

            sent = await self._transport.send_with_retry(
                "PUT",
                session.key,
                headers={"Content-MD5": ContentMD5.compute(data).to_base64()},
                query={"partNumber": str(part_number), "uploadId": session.upload_id},
                body=data,
                bucket=session.bucket,
            )
            if sent.is_err():
                logger.warning(
                    "Part %d failed: %s", part_number, sent.error,
                    extra={"key": session.key, "upload_id": session.upload_id},
                )
                return sent

            etag = sent.value.header("etag")
            if not etag:
                return Err(ServiceError.malformed_response(
                    "UploadPart", "missing ETag", sent.value.status, sent.value.request_id
                ))

            part = PartResult(part_number=part_number, etag=etag, size=len(data))
            await session.record(part)
            self._transport.metrics.record_part()
            return Ok(part)
        finally:
            session.release(part_number)

    async def upload_source(
        self,
        session: MultipartSession,
        source: PayloadSource,
        checkpoint: Optional[CheckpointStore] = None,
    ) -> Result[MultipartSession, OssError]:
        """
        Upload every missing part of ``source`` with bounded fan-out.

        BUFFER and FILE sources are read per part inside the worker, so
        memory stays at ``parallel * part_size``. STREAM sources are read
        sequentially and re-chunked to exact part sizes; the session's
        total size is fixed once the stream is exhausted.

        A checkpoint, when given for a FILE source, is rewritten after every
        acknowledged part. Writes run in a worker thread, one at a time and
        in acknowledgement order.

        Returns:
            Ok(session) with every part acknowledged, or the first part
            error after all other in-flight parts were cancelled. Local read
            and checkpoint failures surface as LocalIOError; an abort() that
            lands mid-upload yields MultipartIncomplete.
        """
        source_name = source.path or session.key
        signature: Optional[SourceSignature] = None
        if checkpoint is not None and source.kind is SourceKind.FILE:
            assert source.path is not None
            try:
                signature = SourceSignature.of_path(source.path)
            except OSError as e:
                return Err(LocalIOError.source_unreadable(source.path, e))

        failures: List[OssError] = []
        tasks: List["asyncio.Task[Result[PartResult, OssError]]"] = []
        save_lock = asyncio.Lock()

        async def persist() -> Optional[OssError]:
            if checkpoint is None or signature is None:
                return None
            snapshot = Checkpoint.from_session(session, source.path, signature)
            async with save_lock:
                try:
                    await asyncio.to_thread(checkpoint.save, snapshot)
                except OSError as e:
                    return LocalIOError.checkpoint_unwritable(checkpoint.path, e)
            return None

        async def run(part_number: int, load: Callable[[], Awaitable[bytes]], last: bool) -> Result[PartResult, OssError]:
            try:
                data = await load()
            except OSError as e:
                result: Result[PartResult, OssError] = Err(LocalIOError.source_unreadable(source_name, e))
            else:
                result = await self._upload_part(session, part_number, data, last)
                if result.is_ok():
                    unsaved = await persist()
                    if unsaved is not None:
                        result = Err(unsaved)
            if result.is_err():
                failures.append(result.error)
            return result

        def stopped() -> bool:
            return bool(failures) or session.state.terminal or any(task.cancelled() for task in tasks)

        async def spawn(part_number: int, load: Callable[[], Awaitable[bytes]], last: bool) -> bool:
            await self._semaphore.acquire()
            if stopped():
                self._semaphore.release()
                return False
            task = asyncio.create_task(run(part_number, load, last))
            task.add_done_callback(lambda _: self._semaphore.release())
            session.track(task)
            tasks.append(task)
            return True

        unsaved = await persist()
        if unsaved is not None:
            return Err(unsaved)

        with log_context(key=session.key, upload_id=session.upload_id):
            try:
                if source.seekable:
                    await self._spawn_ranges(session, source, spawn)
                else:
                    try:
                        await self._spawn_stream(session, source, spawn)
                    except OSError as e:
                        failures.append(LocalIOError.source_unreadable(source_name, e))

                # asyncio.wait never raises a part's CancelledError into
                # this frame; our own cancellation still propagates.
                waiting = set(tasks)
                while waiting and not failures:
                    done, waiting = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                    if any(task.cancelled() for task in done):
                        break
            finally:
                pending = [task for task in tasks if not task.done()]
                for task in pending:
                    task.cancel()
                if pending:
                    await asyncio.gather(*pending, return_exceptions=True)

        for task in tasks:
            crashed = None if task.cancelled() else task.exception()
            if crashed is not None:
                raise crashed

        if failures:
            return Err(failures[0])
        if session.state.terminal or any(task.cancelled() for task in tasks):
            logger.warning(
                "Upload aborted with parts in flight",
                extra={"key": session.key, "upload_id": session.upload_id},
            )
            return Err(MultipartIncomplete.aborted(session.upload_id, session.missing_parts()))

        missing = session.missing_parts()
        if missing:
            return Err(MultipartIncomplete.missing_parts(session.upload_id, missing))
        logger.info(
            "Uploaded %d parts (%d bytes)", len(session.parts), session.uploaded_bytes,
            extra={"key": session.key, "upload_id": session.upload_id},
        )
        return Ok(session)

    async def _spawn_ranges(
        self,
        session: MultipartSession,
        source: PayloadSource,
        spawn: Callable[[int, Callable[[], Awaitable[bytes]], bool], Awaitable[bool]],
    ) -> None:
        total = source.size or 0
        if session.total_size is None:
            session.total_size = total

        if total == 0:
            if 1 not in session.parts:
                await spawn(1, _constant(b""), True)
            return

        ranges = self._planner.part_ranges(total, session.part_size)
        last_number = len(ranges)
        for part_number, byte_range in ranges:
            if part_number in session.parts:
                continue

            async def load(start: int = byte_range.start, length: int = byte_range.length) -> bytes:
                return await source.read_range(start, length)

            if not await spawn(part_number, load, part_number == last_number):
                return

    async def _spawn_stream(
        self,
        session: MultipartSession,
        source: PayloadSource,
        spawn: Callable[[int, Callable[[], Awaitable[bytes]], bool], Awaitable[bool]],
    ) -> None:
        # One-chunk lookahead: a chunk is only known to be non-final once
        # its successor has been read.
        total = 0
        part_number = 0
        pending: Optional[bytes] = None
        async for chunk in source.iter_chunks(session.part_size):
            if pending is not None:
                part_number += 1
                if not await spawn(part_number, _constant(pending), False):
                    return
            pending = chunk
            total += len(chunk)

        part_number += 1
        session.total_size = total
        await spawn(part_number, _constant(pending or b""), True)

    # -------------------------------------------------------------------------
    # COMPLETE / ABORT
    # -------------------------------------------------------------------------

    async def complete(
        self,
        session: MultipartSession,
        parts: Optional[Sequence[PartResult]] = None,
    ) -> Result[ObjectDescriptor, OssError]:
        """
        Commit the upload.

        Args:
            session: Session with every part acknowledged.
            parts: Explicit part list; must be strictly increasing. Defaults
                to the session's acknowledged parts.

        Returns:
            ObjectDescriptor with the composite etag. Gaps yield
            MultipartIncomplete; out-of-order or duplicate explicit lists
            yield InvalidArgument. On failure the session returns to
            UPLOADING and stays resumable or abortable.
        """
        if session.state not in (MultipartState.INITIATED, MultipartState.UPLOADING):
            return Err(InvalidArgument.invalid(
                "session", session.state.value, "only an open session can be completed"
            ))
        if session.in_flight:
            return Err(InvalidArgument.invalid(
                "session", session.in_flight, "part uploads are still in flight"
            ))

        ordered = list(parts) if parts is not None else session.ordered_parts()
        numbers = [part.part_number for part in ordered]
        if any(b <= a for a, b in zip(numbers, numbers[1:])):
            return Err(InvalidArgument.invalid(
                "parts", numbers[:20], "part numbers must be strictly increasing"
            ))

        expected = session.expected_part_count or (numbers[-1] if numbers else 1)
        missing = sorted(set(range(1, expected + 1)) - set(numbers))
        if missing:
            return Err(MultipartIncomplete.missing_parts(session.upload_id, missing))
        if numbers and numbers[-1] > expected:
            return Err(InvalidArgument.invalid(
                "parts", numbers[-1], f"exceeds the expected part count {expected}"
            ))

        body = complete_multipart_body((part.part_number, part.etag) for part in ordered)
        session.state = MultipartState.COMPLETING
        finished = False
        try:
            sent = await self._transport.send(
                "POST",
                session.key,
                headers={"Content-Type": "application/xml"},
                query={"uploadId": session.upload_id},
                body=body,
                bucket=session.bucket,
            )
            if sent.is_err():
                return sent

            response = sent.value
            root = parse_document(response.body)
            etag = (child_text(root, "ETag") if root is not None else None) or response.header("etag")
            if not etag:
                return Err(ServiceError.malformed_response(
                    "CompleteMultipartUpload", "missing ETag", response.status, response.request_id
                ))

            finished = True
            session.state = MultipartState.COMPLETED
            self._transport.metrics.record_upload()
            logger.info(
                "Completed multipart upload",
                extra={"key": session.key, "upload_id": session.upload_id, "parts": len(ordered)},
            )
            return Ok(ObjectDescriptor(
                key=session.key,
                etag=etag,
                size=sum(part.size for part in ordered),
                request_id=response.request_id,
            ))
        finally:
            if not finished and session.state is MultipartState.COMPLETING:
                session.state = MultipartState.UPLOADING

    async def abort(self, session: MultipartSession) -> Result[None, OssError]:
        """
        Cancel in-flight parts and release server-side storage.

        Idempotent: a COMPLETED or ABORTED session is a no-op, and a server
        that no longer knows the upload id counts as success.
        """
        if session.state.terminal:
            return Ok(None)

        await session.cancel_in_flight()

        sent = await self._transport.send_with_retry(
            "DELETE",
            session.key,
            query={"uploadId": session.upload_id},
            bucket=session.bucket,
        )
        if sent.is_err() and not _is_no_such_upload(sent.error):
            logger.warning(
                "Abort failed: %s", sent.error,
                extra={"key": session.key, "upload_id": session.upload_id},
            )
            return sent

        session.state = MultipartState.ABORTED
        logger.info("Aborted multipart upload", extra={"key": session.key, "upload_id": session.upload_id})
        return Ok(None)

    # -------------------------------------------------------------------------
    # LISTING / RESUME
    # -------------------------------------------------------------------------

    async def list_parts(
        self,
        key: str,
        upload_id: str,
        bucket: Optional[str] = None,
    ) -> Result[List[PartResult], OssError]:
        """All acknowledged parts of an upload, following pagination."""
        parts: List[PartResult] = []
        marker: Optional[str] = None
        while True:
            query = {"uploadId": upload_id, "max-parts": str(C.LIST_PARTS_PAGE_SIZE)}
            if marker:
                query["part-number-marker"] = marker
            sent = await self._transport.send_with_retry("GET", key, query=query, bucket=bucket)
            if sent.is_err():
                return sent

            root = parse_document(sent.value.body)
            if root is None:
                return Err(ServiceError.malformed_response(
                    "ListParts", "unparseable body", sent.value.status, sent.value.request_id
                ))
            try:
                for element in iter_children(root, "Part"):
                    parts.append(PartResult(
                        part_number=int(child_text(element, "PartNumber") or ""),
                        etag=child_text(element, "ETag") or "",
                        size=int(child_text(element, "Size") or "0"),
                    ))
            except ValueError as e:
                return Err(ServiceError.malformed_response(
                    "ListParts", str(e), sent.value.status, sent.value.request_id
                ))

            truncated = (child_text(root, "IsTruncated") or "false").lower() == "true"
            next_marker = child_text(root, "NextPartNumberMarker")
            if not truncated or not next_marker or next_marker == marker:
                return Ok(sorted(parts, key=lambda p: p.part_number))
            marker = next_marker

    def _expected_sizes(self, total_size: int, part_size: int) -> dict[int, int]:
        """Part number -> exact byte size for a source of ``total_size`` bytes."""
        if total_size == 0:
            return {1: 0}
        return {
            number: byte_range.length
            for number, byte_range in self._planner.part_ranges(total_size, part_size)
        }

    async def resume(
        self,
        checkpoint: Checkpoint,
        source_path: Optional[str] = None,
    ) -> Result[MultipartSession, OssError]:
        """
        Rebuild a session from a checkpoint.

        Validates the local source signature, then re-lists the parts the
        server holds. Parts whose size does not match the expected slice are
        left out and will be re-uploaded.

        Returns:
            Session whose missing_parts() are exactly the unacknowledged
            part numbers; CheckpointStale when the source changed or the
            server no longer knows the upload id.
        """
        path = source_path or checkpoint.source_path
        label = path or checkpoint.key
        if not path:
            return Err(CheckpointStale.because(label, "checkpoint has no source path"))
        if not os.path.exists(path):
            return Err(CheckpointStale.because(label, "source file is missing"))

        current = SourceSignature.of_path(path)
        if not checkpoint.source_matches(current):
            return Err(CheckpointStale.because(label, "source file changed since the checkpoint"))

        listed = await self.list_parts(checkpoint.key, checkpoint.upload_id, checkpoint.bucket)
        if listed.is_err():
            if isinstance(listed.error, NotFound):
                return Err(CheckpointStale.because(label, f"upload {checkpoint.upload_id} is unknown to the server"))
            return listed

        session = MultipartSession(
            upload_id=checkpoint.upload_id,
            bucket=checkpoint.bucket,
            key=checkpoint.key,
            part_size=checkpoint.part_size,
            total_size=current.size,
            content_type=checkpoint.content_type,
        )
        expected = self._expected_sizes(current.size, checkpoint.part_size)
        for part in listed.value:
            if expected.get(part.part_number) == part.size:
                session.parts[part.part_number] = part
        if session.parts:
            session.state = MultipartState.UPLOADING

        logger.info(
            "Resumed multipart upload with %d of %d parts acknowledged",
            len(session.parts), session.expected_part_count,
            extra={"key": session.key, "upload_id": session.upload_id},
        )
        return Ok(session)

    # -------------------------------------------------------------------------
    # FULL FLOW
    # -------------------------------------------------------------------------

    async def upload(
        self,
        key: str,
        source: object,
        options: Optional[RequestOptions] = None,
        *,
        checkpoint_path: Optional[str] = None,
        part_size: Optional[int] = None,
        bucket: Optional[str] = None,
    ) -> Result[ObjectDescriptor, OssError]:
        """
        Resume-or-initiate, upload every part, complete.

        Without a checkpoint a failed upload is aborted server-side. With
        one it is kept so a later call resumes it; a stale checkpoint is
        discarded (its upload aborted best-effort) and a fresh upload
        started.
        """
        loaded = PayloadSource.load(source)
        if loaded.is_err():
            return loaded
        payload = loaded.value
        # Only files can be re-read after a restart.
        store = (
            CheckpointStore(checkpoint_path)
            if checkpoint_path and payload.kind is SourceKind.FILE
            else None
        )

        session: Optional[MultipartSession] = None
        if store is not None:
            resumed = await self._resume_from_store(store, key, payload, bucket)
            if resumed.is_err():
                return resumed
            session = resumed.value

        if session is None:
            started = await self.initiate(
                key,
                options,
                total_size=payload.size,
                part_size=part_size,
                file_path=payload.path,
                bucket=bucket,
            )
            if started.is_err():
                return started
            session = started.value

        uploaded = await self.upload_source(session, payload, store)
        if uploaded.is_err():
            await self._abandon(session, store)
            return uploaded

        completed = await self.complete(session)
        if completed.is_err():
            await self._abandon(session, store)
            return completed

        if store is not None:
            store.discard()
        return completed

    async def _resume_from_store(
        self,
        store: CheckpointStore,
        key: str,
        payload: PayloadSource,
        bucket: Optional[str],
    ) -> Result[Optional[MultipartSession], OssError]:
        loaded = store.load()
        if loaded.is_err():
            logger.warning("Discarding unreadable checkpoint: %s", loaded.error)
            store.discard()
            return Ok(None)

        checkpoint = loaded.value
        if checkpoint is None:
            return Ok(None)

        if checkpoint.key != key or checkpoint.bucket != (bucket or self._transport.config.bucket):
            resumed: Result[MultipartSession, OssError] = Err(
                CheckpointStale.because(store.path, f"checkpoint belongs to {checkpoint.bucket}/{checkpoint.key}")
            )
        else:
            resumed = await self.resume(checkpoint, payload.path)

        if resumed.is_ok():
            return resumed
        if not isinstance(resumed.error, CheckpointStale):
            return resumed

        logger.warning("Starting over: %s", resumed.error)
        store.discard()
        stale = MultipartSession(
            upload_id=checkpoint.upload_id,
            bucket=checkpoint.bucket,
            key=checkpoint.key,
            part_size=checkpoint.part_size,
            state=MultipartState.UPLOADING,
        )
        aborted = await self.abort(stale)
        if aborted.is_err():
            logger.warning("Could not abort stale upload %s: %s", checkpoint.upload_id, aborted.error)
        return Ok(None)

    async def _abandon(self, session: MultipartSession, store: Optional[CheckpointStore]) -> None:
        # Without a written checkpoint nothing could ever resume the upload.
        if store is not None and store.exists():
            logger.info(
                "Keeping upload for resume", extra={"key": session.key, "upload_id": session.upload_id}
            )
            return
        aborted = await self.abort(session)
        if aborted.is_err():
            logger.error(
                "Failed to abort upload after error: %s", aborted.error,
                extra={"key": session.key, "upload_id": session.upload_id},
            )


def _constant(data: bytes) -> Callable[[], Awaitable[bytes]]:
    async def load() -> bytes:
        return data
    return load


def _is_no_such_upload(error: OssError) -> bool:
    return isinstance(error, NotFound) and error.server_code in (None, "NoSuchUpload", "NoSuchKey")
