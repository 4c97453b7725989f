"""
Transfer Planning Test Suite

Tests for:
- TransferPlanner: single-shot vs multipart, Content-Length vs chunked
- PayloadSource: buffers, files, sync/async streams, exact chunking
- Content-Type resolution
- MultipartSession bookkeeping
- CheckpointStore: round trip, atomic replace, corrupt files

Run: python -m pytest osskit/tests/test_transfer.py -v
"""

from __future__ import annotations

import io
import json
import os

import pytest

from osskit.core.config import TransferConfig
from osskit.core.errors import CheckpointStale, InvalidArgument
from osskit.transfer.checkpoint import Checkpoint, CheckpointStore, SourceSignature
from osskit.transfer.content_type import resolve_content_type
from osskit.transfer.planner import PayloadSource, SourceKind, TransferPlanner
from osskit.transfer.session import MultipartSession, MultipartState, PartResult

KB = 1024


@pytest.fixture
def planner() -> TransferPlanner:
    return TransferPlanner(TransferConfig(part_size=KB, min_part_size=KB, multipart_threshold=4 * KB))


async def _collect(source: PayloadSource, chunk_size: int) -> list:
    return [chunk async for chunk in source.iter_chunks(chunk_size)]


# =============================================================================
# PLANNER
# =============================================================================

class TestPlanner:

    def test_small_buffer_is_single_shot_with_length(self, planner: TransferPlanner) -> None:
        plan = planner.plan(PayloadSource.from_bytes(b"hello")).unwrap()
        assert not plan.multipart
        assert not plan.chunked
        assert plan.headers() == {"Content-Length": "5"}

    def test_threshold_switches_to_multipart(self, planner: TransferPlanner) -> None:
        assert not planner.plan(PayloadSource.from_bytes(b"x" * (4 * KB - 1))).unwrap().multipart
        assert planner.plan(PayloadSource.from_bytes(b"x" * (4 * KB))).unwrap().multipart

    def test_stream_without_length_is_chunked(self, planner: TransferPlanner) -> None:
        plan = planner.plan(PayloadSource.from_stream(io.BytesIO(b"x" * 10 * KB))).unwrap()
        assert plan.chunked
        assert not plan.multipart
        assert plan.headers() == {"Transfer-Encoding": "chunked"}

    def test_stream_with_length_uses_content_length(self, planner: TransferPlanner) -> None:
        plan = planner.plan(PayloadSource.from_stream(io.BytesIO(b"abc")), content_length=3).unwrap()
        assert plan.headers() == {"Content-Length": "3"}
        assert not plan.multipart

    def test_multipart_can_be_disabled(self, planner: TransferPlanner) -> None:
        plan = planner.plan(PayloadSource.from_bytes(b"x" * 8 * KB), allow_multipart=False).unwrap()
        assert not plan.multipart

    def test_invalid_lengths(self, planner: TransferPlanner) -> None:
        source = PayloadSource.from_bytes(b"abc")
        assert isinstance(planner.plan(source, content_length=-1).error, InvalidArgument)
        assert isinstance(planner.plan(source, content_length=4).error, InvalidArgument)

    def test_part_ranges_cover_the_source(self) -> None:
        ranges = TransferPlanner.part_ranges(2500, 1000)
        assert [(n, r.start, r.end) for n, r in ranges] == [(1, 0, 999), (2, 1000, 1999), (3, 2000, 2499)]
        assert TransferPlanner.part_count(2500, 1000) == 3
        assert TransferPlanner.part_count(0, 1000) == 0

    def test_part_size_grows_to_respect_max_parts(self) -> None:
        config = TransferConfig(part_size=KB, min_part_size=KB, max_parts=10)
        assert config.part_size_for(100 * KB) == 10 * KB
        assert config.part_size_for(None) == KB


# =============================================================================
# SOURCES
# =============================================================================

class TestPayloadSource:

    def test_coerce(self, tmp_path) -> None:
        path = tmp_path / "f.bin"
        path.write_bytes(b"abc")
        assert PayloadSource.coerce(b"abc").kind is SourceKind.BUFFER
        assert PayloadSource.coerce(str(path)).kind is SourceKind.FILE
        assert PayloadSource.coerce(path).size == 3
        assert PayloadSource.coerce(io.BytesIO(b"abc")).kind is SourceKind.STREAM

    @pytest.mark.asyncio
    async def test_file_range_read(self, tmp_path) -> None:
        path = tmp_path / "f.bin"
        path.write_bytes(b"0123456789")
        assert await PayloadSource.from_file(path).read_range(3, 4) == b"3456"

    @pytest.mark.asyncio
    async def test_stream_is_rechunked_to_exact_sizes(self) -> None:
        def pieces():
            yield b"ab"
            yield b"cdefg"
            yield b""
            yield b"hij"

        chunks = await _collect(PayloadSource.from_stream(pieces()), 4)
        assert chunks == [b"abcd", b"efgh", b"ij"]

    @pytest.mark.asyncio
    async def test_async_iterable_stream(self) -> None:
        async def pieces():
            for piece in (b"abc", b"def"):
                yield piece

        assert await _collect(PayloadSource.from_stream(pieces()), 3) == [b"abc", b"def"]

    @pytest.mark.asyncio
    async def test_async_reader_stream(self) -> None:
        class Reader:
            def __init__(self, data: bytes) -> None:
                self._buffer = io.BytesIO(data)

            async def read(self, size: int) -> bytes:
                return self._buffer.read(size)

        assert await _collect(PayloadSource.from_stream(Reader(b"x" * 10)), 6) == [b"x" * 6, b"x" * 4]

    @pytest.mark.asyncio
    async def test_empty_source_yields_nothing(self) -> None:
        assert await _collect(PayloadSource.from_bytes(b""), 4) == []

    @pytest.mark.asyncio
    async def test_streams_cannot_be_range_read(self) -> None:
        with pytest.raises(TypeError):
            await PayloadSource.from_stream(io.BytesIO(b"abc")).read_range(0, 1)


# =============================================================================
# CONTENT TYPE
# =============================================================================

class TestContentType:

    def test_priority(self) -> None:
        assert resolve_content_type("text/custom", "a.png", "b.json") == "text/custom"
        assert resolve_content_type(None, "/tmp/a.png", "b.json") == "image/png"
        assert resolve_content_type(None, None, "dir/b.json") == "application/json"
        assert resolve_content_type(None, None, "no-extension") == "application/octet-stream"


# =============================================================================
# SESSION
# =============================================================================

class TestSession:

    def test_missing_and_ordered_parts(self) -> None:
        session = MultipartSession(upload_id="U", bucket="b", key="k", part_size=KB, total_size=3 * KB + 1)
        session.parts[3] = PartResult(3, '"C"', KB)
        session.parts[1] = PartResult(1, '"A"', KB)

        assert session.expected_part_count == 4
        assert session.missing_parts() == [2, 4]
        assert [p.part_number for p in session.ordered_parts()] == [1, 3]
        assert session.uploaded_bytes == 2 * KB

    def test_empty_source_needs_one_part(self) -> None:
        session = MultipartSession(upload_id="U", bucket="b", key="k", part_size=KB, total_size=0)
        assert session.missing_parts() == [1]

    def test_claim_is_exclusive(self) -> None:
        session = MultipartSession(upload_id="U", bucket="b", key="k", part_size=KB)
        assert session.claim(1)
        assert not session.claim(1)
        session.release(1)
        assert session.claim(1)

    def test_terminal_states(self) -> None:
        assert MultipartState.COMPLETED.terminal
        assert MultipartState.ABORTED.terminal
        assert not MultipartState.COMPLETING.terminal


# =============================================================================
# CHECKPOINTS
# =============================================================================

def _checkpoint(source: str) -> Checkpoint:
    session = MultipartSession(
        upload_id="UP1", bucket="media", key="big.bin", part_size=KB, total_size=3 * KB,
        content_type="application/octet-stream",
    )
    session.parts[1] = PartResult(1, '"A"', KB)
    return Checkpoint.from_session(session, source, SourceSignature.of_path(source))


class TestCheckpointStore:

    def test_round_trip(self, tmp_path) -> None:
        source = tmp_path / "big.bin"
        source.write_bytes(b"x" * 3 * KB)
        store = CheckpointStore(str(tmp_path / "big.ckpt"))

        checkpoint = _checkpoint(str(source))
        store.save(checkpoint)
        loaded = store.load().unwrap()

        assert loaded.to_dict() == checkpoint.to_dict()
        assert loaded.source_matches(SourceSignature.of_path(str(source)))

    def test_missing_file_is_none(self, tmp_path) -> None:
        assert CheckpointStore(str(tmp_path / "none.ckpt")).load().unwrap() is None

    def test_save_replaces_without_leaving_temp_files(self, tmp_path) -> None:
        source = tmp_path / "big.bin"
        source.write_bytes(b"x" * 3 * KB)
        store = CheckpointStore(str(tmp_path / "big.ckpt"))

        checkpoint = _checkpoint(str(source))
        store.save(checkpoint)
        checkpoint.parts.append(PartResult(2, '"B"', KB))
        store.save(checkpoint)

        assert sorted(os.listdir(tmp_path)) == ["big.bin", "big.ckpt"]
        assert len(store.load().unwrap().parts) == 2

    @pytest.mark.parametrize("content", ["{not json", json.dumps({"version": 99}), json.dumps({"version": 1})])
    def test_corrupt_checkpoint_is_stale(self, tmp_path, content: str) -> None:
        path = tmp_path / "bad.ckpt"
        path.write_text(content)
        result = CheckpointStore(str(path)).load()
        assert isinstance(result.error, CheckpointStale)

    def test_discard_is_idempotent(self, tmp_path) -> None:
        source = tmp_path / "big.bin"
        source.write_bytes(b"x")
        store = CheckpointStore(str(tmp_path / "big.ckpt"))
        store.save(_checkpoint(str(source)))

        store.discard()
        store.discard()
        assert not store.exists()

    def test_signature_detects_size_change(self, tmp_path) -> None:
        source = tmp_path / "big.bin"
        source.write_bytes(b"x" * 3 * KB)
        checkpoint = _checkpoint(str(source))

        source.write_bytes(b"x" * 4 * KB)
        assert not checkpoint.source_matches(SourceSignature.of_path(str(source)))
