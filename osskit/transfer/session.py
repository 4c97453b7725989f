"""
Multipart Session State
=======================

State machine:

    INITIATED --> UPLOADING --> COMPLETING --> COMPLETED
        |             |   ^          |
        |             |   +----------+  (complete failed or was cancelled)
        +-------------+--------------------> ABORTED

The part table is written by concurrent upload tasks; every mutation goes
through ``record`` under the session lock. Each task owns its slot (the
part number), so the lock only guards the dict structure.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

from osskit.core import constants as C


class MultipartState(Enum):
    INITIATED = "initiated"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (MultipartState.COMPLETED, MultipartState.ABORTED)


@dataclass(frozen=True, slots=True)
class PartResult:
    """Acknowledged part: number (1-based), server etag and byte size."""

    part_number: int
    etag: str
    size: int

    def to_dict(self) -> Dict[str, object]:
        return {"part_number": self.part_number, "etag": self.etag, "size": self.size}

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> PartResult:
        return cls(
            part_number=int(data["part_number"]),  # type: ignore[arg-type]
            etag=str(data["etag"]),
            size=int(data["size"]),  # type: ignore[arg-type]
        )


@dataclass(eq=False)
class MultipartSession:
    """
    One server-side multipart upload.

    Attributes:
        upload_id: Server-allocated upload id.
        bucket: Target bucket.
        key: Target object key.
        part_size: Size of every part but the last.
        total_size: Source length, None for streams of unknown length.
        content_type: Resolved once at initiate time.
        state: Current lifecycle state.
        parts: Acknowledged parts keyed by part number.
    """

    upload_id: str
    bucket: str
    key: str
    part_size: int
    total_size: Optional[int] = None
    content_type: str = C.DEFAULT_CONTENT_TYPE
    state: MultipartState = MultipartState.INITIATED
    parts: Dict[int, PartResult] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    _tasks: Set["asyncio.Task[object]"] = field(default_factory=set, repr=False)
    _claimed: Set[int] = field(default_factory=set, repr=False)

    @property
    def completed(self) -> bool:
        return self.state is MultipartState.COMPLETED

    @property
    def expected_part_count(self) -> Optional[int]:
        """Number of parts the source needs, when its size is known."""
        if self.total_size is None:
            return None
        if self.total_size == 0:
            return 1
        return -(-self.total_size // self.part_size)

    def missing_parts(self) -> List[int]:
        """Part numbers still to upload (empty when the size is unknown)."""
        expected = self.expected_part_count
        if expected is None:
            return []
        return [n for n in range(1, expected + 1) if n not in self.parts]

    def ordered_parts(self) -> List[PartResult]:
        return [self.parts[n] for n in sorted(self.parts)]

    @property
    def uploaded_bytes(self) -> int:
        return sum(part.size for part in self.parts.values())

    async def record(self, part: PartResult) -> None:
        """Store an acknowledged part."""
        async with self._lock:
            self.parts[part.part_number] = part

    def claim(self, part_number: int) -> bool:
        """Reserve a part number; False if it is acknowledged or already in flight."""
        if part_number in self.parts or part_number in self._claimed:
            return False
        self._claimed.add(part_number)
        return True

    def release(self, part_number: int) -> None:
        self._claimed.discard(part_number)

    def track(self, task: "asyncio.Task[object]") -> None:
        """Register an in-flight part task so abort can cancel it."""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def in_flight(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    async def cancel_in_flight(self) -> None:
        """Cancel tracked part tasks and wait until all of them have settled."""
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
