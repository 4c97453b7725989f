"""
Transfer Planner
================

Decides, before a single byte is sent, how a payload travels:

| Source  | Length known | Single-shot framing       | Multipart          |
|---------|--------------|---------------------------|--------------------|
| BUFFER  | yes          | Content-Length            | size >= threshold  |
| FILE    | yes (stat)   | Content-Length            | size >= threshold  |
| STREAM  | no           | Transfer-Encoding: chunked| never (see below)  |

A caller-supplied length overrides whatever the source reports, so a
stream whose length is known out of band is sent with Content-Length.

Streams of unknown length are never split automatically: the part count
could exceed the service limit. Callers that want multipart for a stream
go through MultipartCoordinator.upload_source directly.

Memory Model:
-------------
Buffers are sliced with memoryview (zero-copy); files are read one part at
a time in a worker thread; streams are re-chunked to exact part sizes.
"""

from __future__ import annotations

import asyncio
import inspect
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Union

from osskit.core.config import TransferConfig
from osskit.core.errors import InvalidArgument, LocalIOError
from osskit.core.types import ByteRange, Err, Ok, Result

PathLike = Union[str, "os.PathLike[str]"]

# Read size for chunked streaming of whole sources.
STREAM_READ_SIZE = 64 * 1024


class SourceKind(Enum):
    BUFFER = "buffer"
    FILE = "file"
    STREAM = "stream"


def _read_file_range(path: str, offset: int, length: int) -> bytes:
    with open(path, "rb") as fh:
        fh.seek(offset)
        return fh.read(length)


@dataclass(frozen=True)
class PayloadSource:
    """
    Where upload bytes come from.

    Attributes:
        kind: BUFFER, FILE or STREAM.
        data: Bytes for BUFFER sources.
        path: Local path for FILE sources.
        stream: Binary file object (sync or async ``read``), or a sync or
            async iterable of bytes, for STREAM sources.
        size: Length in bytes when known.
    """

    kind: SourceKind
    data: Optional[bytes] = None
    path: Optional[str] = None
    stream: Any = None
    size: Optional[int] = None

    @classmethod
    def from_bytes(cls, data: Union[bytes, bytearray, memoryview]) -> PayloadSource:
        raw = bytes(data)
        return cls(kind=SourceKind.BUFFER, data=raw, size=len(raw))

    @classmethod
    def from_file(cls, path: PathLike) -> PayloadSource:
        """File source; the length comes from stat at planning time."""
        path = os.fspath(path)
        return cls(kind=SourceKind.FILE, path=path, size=os.stat(path).st_size)

    @classmethod
    def from_stream(cls, stream: Any, size: Optional[int] = None) -> PayloadSource:
        return cls(kind=SourceKind.STREAM, stream=stream, size=size)

    @classmethod
    def coerce(cls, payload: Any) -> PayloadSource:
        """Bytes-like -> BUFFER, str/PathLike -> FILE, anything else -> STREAM."""
        if isinstance(payload, PayloadSource):
            return payload
        if isinstance(payload, (bytes, bytearray, memoryview)):
            return cls.from_bytes(payload)
        if isinstance(payload, (str, os.PathLike)):
            return cls.from_file(payload)
        return cls.from_stream(payload)

    @classmethod
    def load(cls, payload: Any) -> Result[PayloadSource, LocalIOError]:
        """coerce() with a missing or unreadable file returned as Err."""
        try:
            return Ok(cls.coerce(payload))
        except OSError as e:
            return Err(LocalIOError.source_unreadable(str(e.filename or payload), e))

    @property
    def seekable(self) -> bool:
        """Whether arbitrary ranges can be re-read (needed for part retry and resume)."""
        return self.kind is not SourceKind.STREAM

    async def read_range(self, offset: int, length: int) -> bytes:
        """Read ``length`` bytes at ``offset`` from a BUFFER or FILE source."""
        if self.kind is SourceKind.BUFFER:
            assert self.data is not None
            return bytes(memoryview(self.data)[offset:offset + length])
        if self.kind is SourceKind.FILE:
            assert self.path is not None
            return await asyncio.to_thread(_read_file_range, self.path, offset, length)
        raise TypeError("stream sources cannot be read by range")

    async def _raw_chunks(self) -> AsyncIterator[bytes]:
        if self.kind is not SourceKind.STREAM:
            offset = 0
            total = self.size or 0
            while offset < total:
                length = min(STREAM_READ_SIZE, total - offset)
                yield await self.read_range(offset, length)
                offset += length
            return

        stream = self.stream
        if hasattr(stream, "read"):
            while True:
                chunk = stream.read(STREAM_READ_SIZE)
                if inspect.isawaitable(chunk):
                    chunk = await chunk
                if not chunk:
                    return
                yield bytes(chunk)
        elif hasattr(stream, "__aiter__"):
            async for chunk in stream:
                if chunk:
                    yield bytes(chunk)
        else:
            for chunk in stream:
                if chunk:
                    yield bytes(chunk)

    async def iter_chunks(self, chunk_size: int) -> AsyncIterator[bytes]:
        """
        Yield consecutive chunks of exactly ``chunk_size`` bytes.

        Only the final chunk may be shorter. Nothing is yielded for an
        empty source.
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be > 0, got {chunk_size}")
        buffer = bytearray()
        async for raw in self._raw_chunks():
            buffer.extend(raw)
            while len(buffer) >= chunk_size:
                yield bytes(buffer[:chunk_size])
                del buffer[:chunk_size]
        if buffer:
            yield bytes(buffer)

    def body(self) -> Union[bytes, AsyncIterator[bytes]]:
        """Single-shot request body: bytes for buffers, an async iterator otherwise."""
        if self.kind is SourceKind.BUFFER:
            assert self.data is not None
            return self.data
        return self._raw_chunks()


@dataclass(frozen=True, slots=True)
class TransferPlan:
    """
    Framing decision for one upload.

    Attributes:
        kind: Source kind the plan was made for.
        content_length: Declared length, or None for chunked transfer.
        chunked: Transfer-Encoding: chunked.
        multipart: Use the multipart coordinator.
        part_size: Part size when multipart (or for a later multipart fallback).
    """

    kind: SourceKind
    content_length: Optional[int]
    chunked: bool
    multipart: bool
    part_size: int

    def headers(self) -> Dict[str, str]:
        """Framing headers for a single-shot upload."""
        if self.chunked:
            return {"Transfer-Encoding": "chunked"}
        return {"Content-Length": str(self.content_length)}


class TransferPlanner:
    """
    Single-shot vs multipart, Content-Length vs chunked.

    Example:
        >>> planner = TransferPlanner(TransferConfig())
        >>> planner.plan(PayloadSource.from_bytes(b"hello")).unwrap().headers()
        {'Content-Length': '5'}
    """

    __slots__ = ("_config",)

    def __init__(self, config: Optional[TransferConfig] = None) -> None:
        self._config = config or TransferConfig()

    @property
    def config(self) -> TransferConfig:
        return self._config

    def plan(
        self,
        source: PayloadSource,
        content_length: Optional[int] = None,
        allow_multipart: bool = True,
    ) -> Result[TransferPlan, InvalidArgument]:
        """
        Decide the transfer framing.

        Args:
            source: Payload source.
            content_length: Caller-declared length; overrides the source.
            allow_multipart: False forces a single-shot plan.
        """
        if content_length is not None:
            if content_length < 0:
                return Err(InvalidArgument.invalid("content_length", content_length, "must be >= 0"))
            if source.seekable and source.size is not None and content_length > source.size:
                return Err(InvalidArgument.invalid(
                    "content_length", content_length,
                    f"exceeds source size {source.size}",
                ))
            length: Optional[int] = content_length
        else:
            length = source.size

        multipart = (
            allow_multipart
            and source.seekable
            and length is not None
            and length >= self._config.multipart_threshold
        )
        return Ok(TransferPlan(
            kind=source.kind,
            content_length=length,
            chunked=length is None,
            multipart=multipart,
            part_size=self._config.part_size_for(length),
        ))

    @staticmethod
    def part_count(total_size: int, part_size: int) -> int:
        if total_size <= 0:
            return 0
        return -(-total_size // part_size)

    @staticmethod
    def part_ranges(total_size: int, part_size: int) -> List[Tuple[int, ByteRange]]:
        """
        Split ``total_size`` bytes into 1-based (part_number, range) pairs.

        Every range but the last is exactly ``part_size`` long.
        """
        ranges: List[Tuple[int, ByteRange]] = []
        for index, start in enumerate(range(0, total_size, part_size), start=1):
            end = min(start + part_size, total_size) - 1
            ranges.append((index, ByteRange(start=start, end=end)))
        return ranges
