"""
Append Coordinator
==================

Sequential, position-addressed writes:

    POST /key?append&position=N      ->  x-oss-next-append-position: M

The server is the only authority on the object's length. Every call takes
the position the caller believes the object ends at and returns the
server-reported next position, which must be fed into the following call.

Failure Modes:
--------------
| Server response                 | Result                   |
|---------------------------------|--------------------------|
| 409 PositionNotEqualToLength    | PositionMismatch         |
| 409 ObjectNotAppendable         | OperationNotSupported    |
| 2xx without next position       | ServiceError (malformed) |

Appends are never retried: a retry after an ambiguous failure could write
the same bytes twice, and the position check would only catch it on the
following call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from osskit.core import constants as C
from osskit.core.errors import InvalidArgument, NotFound, OssError, PositionMismatch, ServiceError
from osskit.core.types import ContentMD5, Err, Ok, Result, TargetObjectState
from osskit.transfer.conditions import ConditionContext, ConditionalEvaluator, ObjectPrecondition
from osskit.transfer.content_type import resolve_content_type
from osskit.transfer.planner import PayloadSource, SourceKind, TransferPlanner
from osskit.transport.options import RequestOptions
from osskit.transport.request import OssTransport

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AppendState:
    """Caller-owned cursor: where the next append must start."""

    key: str
    next_position: int = 0


@dataclass(frozen=True, slots=True)
class AppendResult:
    """
    Outcome of one append.

    Attributes:
        key: Object key.
        position: Offset the payload was written at.
        next_position: Server-reported object length after the write.
        crc64: Server CRC64 of the whole object, when reported.
        request_id: Server request id.
    """

    key: str
    position: int
    next_position: int
    crc64: Optional[str] = None
    request_id: Optional[str] = None

    def to_state(self) -> AppendState:
        return AppendState(key=self.key, next_position=self.next_position)


class AppendCoordinator:
    """
    Append writer sharing the client's signer, transport and evaluator.

    Example:
        >>> appender = AppendCoordinator(transport)
        >>> state = AppendState("logs/today.txt")
        >>> for line in (b"foo", b"bar", b"baz"):
        ...     state = (await appender.append_state(state, line)).unwrap()
        >>> state.next_position
        9
    """

    __slots__ = ("_transport", "_evaluator", "_planner")

    def __init__(
        self,
        transport: OssTransport,
        evaluator: Optional[ConditionalEvaluator] = None,
        planner: Optional[TransferPlanner] = None,
    ) -> None:
        self._transport = transport
        self._evaluator = evaluator or ConditionalEvaluator()
        self._planner = planner or TransferPlanner(transport.config.transfer)

    async def _target_state(
        self, key: str, bucket: Optional[str]
    ) -> Result[Optional[TargetObjectState], OssError]:
        sent = await self._transport.send_with_retry("HEAD", key, bucket=bucket)
        if sent.is_err():
            if isinstance(sent.error, NotFound):
                return Ok(None)
            return sent
        return Ok(TargetObjectState.from_headers(sent.value.headers))

    async def append(
        self,
        key: str,
        payload: Any,
        position: int = 0,
        options: Optional[RequestOptions] = None,
        precondition: Optional[ObjectPrecondition] = None,
        bucket: Optional[str] = None,
    ) -> Result[AppendResult, OssError]:
        """
        Append ``payload`` at ``position``.

        Args:
            key: Object key (created on the first append at position 0).
            payload: bytes, a file path or a stream.
            position: Where the caller believes the object ends.
            options: Structured request options.
            precondition: Checked in WRITE context against a fresh HEAD
                before anything is sent.
            bucket: Bucket override.

        Returns:
            AppendResult with the authoritative next position, or
            PositionMismatch when ``position`` is not the current length.
        """
        if position < 0:
            return Err(InvalidArgument.invalid("position", position, "must be >= 0"))

        if precondition is not None and not precondition.is_empty:
            state = await self._target_state(key, bucket)
            if state.is_err():
                return state
            checked = self._evaluator.check(precondition, state.value, ConditionContext.WRITE, key=key)
            if checked.is_err():
                return checked

        loaded = PayloadSource.load(payload)
        if loaded.is_err():
            return loaded
        source = loaded.value
        planned = self._planner.plan(source, allow_multipart=False)
        if planned.is_err():
            return planned

        options = options or RequestOptions()
        headers = options.to_headers()
        headers["Content-Type"] = resolve_content_type(options.content_type, source.path, key)
        headers.update(planned.value.headers())
        if source.kind is SourceKind.BUFFER and "Content-MD5" not in headers:
            assert source.data is not None
            headers["Content-MD5"] = ContentMD5.compute(source.data).to_base64()

        sent = await self._transport.send(
            "POST",
            key,
            headers=headers,
            query={"append": None, "position": str(position)},
            body=source.body(),
            bucket=bucket,
        )
        if sent.is_err():
            error = sent.error
            if isinstance(error, PositionMismatch):
                error = error.with_context(key=key, position=position)
                logger.info(
                    "Append position %d rejected, server length is %s",
                    position, error.context.get("next_position"),
                    extra={"key": key, "request_id": error.request_id},
                )
            return Err(error)

        response = sent.value
        raw_next = response.header(C.NEXT_APPEND_POSITION_HEADER)
        if raw_next is None or not raw_next.strip().isdigit():
            return Err(ServiceError.malformed_response(
                "AppendObject",
                f"missing or invalid {C.NEXT_APPEND_POSITION_HEADER}: {raw_next!r}",
                response.status,
                response.request_id,
            ))

        self._transport.metrics.record_append()
        result = AppendResult(
            key=key,
            position=position,
            next_position=int(raw_next),
            crc64=response.header("x-oss-hash-crc64ecma"),
            request_id=response.request_id,
        )
        logger.debug(
            "Appended at %d, next position %d", position, result.next_position,
            extra={"key": key, "request_id": result.request_id},
        )
        return Ok(result)

    async def append_state(
        self,
        state: AppendState,
        payload: Any,
        options: Optional[RequestOptions] = None,
        precondition: Optional[ObjectPrecondition] = None,
        bucket: Optional[str] = None,
    ) -> Result[AppendState, OssError]:
        """Append at ``state.next_position`` and return the server-advanced state."""
        appended = await self.append(
            state.key, payload, state.next_position, options, precondition, bucket
        )
        return appended.map(lambda result: result.to_state())
