"""
Upload Checkpoints
==================

Durable snapshot of a multipart session plus the local source signature.

Persisted layout (JSON, version 1):
-----------------------------------
    {
      "version": 1,
      "upload_id": "...", "bucket": "...", "key": "...",
      "part_size": 1048576, "total_size": 5242880,
      "content_type": "video/mp4",
      "source_path": "/data/movie.mp4",
      "signature": {"size": 5242880, "mtime_ns": 1767225600000000000},
      "parts": [{"part_number": 1, "etag": "\\"...\\"", "size": 1048576}]
    }

Writes go to a temporary file in the same directory followed by
os.replace, so a crash leaves either the old or the new checkpoint, never
a truncated one.

A checkpoint is only trusted for resume when the source signature still
matches; acknowledged parts are then re-derived from the server listing,
the stored part list only serves as a hint.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from osskit.core import constants as C
from osskit.core.errors import CheckpointStale
from osskit.core.types import Err, Ok, Result
from osskit.transfer.session import MultipartSession, PartResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SourceSignature:
    """Identity of a local file: size plus modification time in nanoseconds."""

    size: int
    mtime_ns: int

    @classmethod
    def of_path(cls, path: str) -> SourceSignature:
        st = os.stat(path)
        return cls(size=st.st_size, mtime_ns=st.st_mtime_ns)

    def to_dict(self) -> Dict[str, int]:
        return {"size": self.size, "mtime_ns": self.mtime_ns}


@dataclass
class Checkpoint:
    """Resumable record of one multipart upload."""

    upload_id: str
    bucket: str
    key: str
    part_size: int
    total_size: Optional[int]
    content_type: str
    source_path: Optional[str]
    signature: Optional[SourceSignature]
    parts: List[PartResult] = field(default_factory=list)
    version: int = C.CHECKPOINT_VERSION

    @classmethod
    def from_session(
        cls,
        session: MultipartSession,
        source_path: Optional[str] = None,
        signature: Optional[SourceSignature] = None,
    ) -> Checkpoint:
        return cls(
            upload_id=session.upload_id,
            bucket=session.bucket,
            key=session.key,
            part_size=session.part_size,
            total_size=session.total_size,
            content_type=session.content_type,
            source_path=source_path,
            signature=signature,
            parts=session.ordered_parts(),
        )

    def source_matches(self, current: SourceSignature) -> bool:
        return self.signature is not None and self.signature == current

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "upload_id": self.upload_id,
            "bucket": self.bucket,
            "key": self.key,
            "part_size": self.part_size,
            "total_size": self.total_size,
            "content_type": self.content_type,
            "source_path": self.source_path,
            "signature": self.signature.to_dict() if self.signature else None,
            "parts": [part.to_dict() for part in self.parts],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Checkpoint:
        """Raises KeyError, TypeError or ValueError on a malformed document."""
        if data.get("version") != C.CHECKPOINT_VERSION:
            raise ValueError(f"unsupported checkpoint version {data.get('version')!r}")
        signature = data.get("signature")
        total_size = data.get("total_size")
        return cls(
            upload_id=str(data["upload_id"]),
            bucket=str(data["bucket"]),
            key=str(data["key"]),
            part_size=int(data["part_size"]),
            total_size=int(total_size) if total_size is not None else None,
            content_type=str(data.get("content_type") or C.DEFAULT_CONTENT_TYPE),
            source_path=data.get("source_path"),
            signature=(
                SourceSignature(size=int(signature["size"]), mtime_ns=int(signature["mtime_ns"]))
                if signature else None
            ),
            parts=[PartResult.from_dict(p) for p in data.get("parts", [])],
        )


class CheckpointStore:
    """
    Checkpoint persistence at a fixed path.

    Example:
        >>> store = CheckpointStore("/tmp/movie.mp4.ckpt")
        >>> store.save(Checkpoint.from_session(session, path, signature))
        >>> store.load().unwrap().upload_id
    """

    __slots__ = ("_path",)

    def __init__(self, path: str) -> None:
        self._path = os.fspath(path)

    @property
    def path(self) -> str:
        return self._path

    def exists(self) -> bool:
        return os.path.exists(self._path)

    def load(self) -> Result[Optional[Checkpoint], CheckpointStale]:
        """
        Read the checkpoint.

        Returns:
            Ok(None) when no checkpoint exists, Ok(checkpoint) when it
            parses, Err(CheckpointStale) when it is corrupt or from an
            unsupported version.
        """
        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return Ok(None)
        except (OSError, json.JSONDecodeError) as e:
            return Err(CheckpointStale.because(self._path, f"unreadable: {e}"))

        try:
            return Ok(Checkpoint.from_dict(data))
        except (KeyError, TypeError, ValueError) as e:
            return Err(CheckpointStale.because(self._path, f"malformed: {e}"))

    def save(self, checkpoint: Checkpoint) -> None:
        """Atomically replace the checkpoint file."""
        directory = os.path.dirname(os.path.abspath(self._path))
        fd, tmp_path = tempfile.mkstemp(prefix=".ckpt-", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(checkpoint.to_dict(), fh, separators=(",", ":"))
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self._path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def discard(self) -> None:
        """Remove the checkpoint; missing files are fine."""
        try:
            os.unlink(self._path)
        except FileNotFoundError:
            return
        logger.debug("Discarded checkpoint %s", self._path)
