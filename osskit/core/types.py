"""
Core Type Definitions for the Object Storage Client

Implements Result/Either monads for zero-exception control flow and the
small immutable value types shared by the signing and transfer layers.

Design Principles:
- Never use null for absence (use Optional or Result)
- Errors travel inside Err, exceptions are reserved for programming errors
- Value types are frozen dataclasses with __slots__
- Secrets never appear in repr()

Complexity: O(1) for all type operations
"""

from __future__ import annotations

import base64
import hashlib
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import (
    Any,
    Callable,
    Generic,
    Literal,
    Optional,
    TypeVar,
    Union,
)

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD: ZERO-EXCEPTION CONTROL FLOW
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Immutable, hashable container for successful computation results.
    """

    value: T

    def is_ok(self) -> Literal[True]:
        """O(1) success check."""
        return True

    def is_err(self) -> Literal[False]:
        """O(1) error check."""
        return False

    def unwrap(self) -> T:
        """
        Extract value. Safe to call after is_ok() check.

        Returns:
            T: The wrapped success value
        """
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return value, ignoring default."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply transformation to success value."""
        return Ok(fn(self.value))

    def flat_map(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Monadic bind for chaining fallible operations."""
        return fn(self.value)

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Immutable container for error information.
    Carries full error context for exhaustive handling.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Attempting to unwrap an error is a programming error.

        Raises:
            RuntimeError: Always, with error context
        """
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Return default value on error."""
        return default

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        """No-op on error variant - propagates error unchanged."""
        return self

    def flat_map(self, fn: Callable[[Any], Result[U, E]]) -> Err[E]:
        """Propagate error through monadic chain."""
        return self

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# TIMESTAMP FOR ERROR CORRELATION
# =============================================================================
@dataclass(frozen=True, slots=True, order=True)
class Timestamp:
    """
    Nanosecond wall-clock timestamp.

    Attached to every error so log lines and server request ids
    can be correlated after the fact.
    """

    nanos: int

    @classmethod
    def now(cls) -> Timestamp:
        """Capture current time with nanosecond precision."""
        return cls(nanos=time.time_ns())

    @property
    def seconds(self) -> float:
        """Convert to floating-point seconds."""
        return self.nanos / 1_000_000_000

    def __repr__(self) -> str:
        return f"Timestamp({self.nanos}ns)"


# =============================================================================
# CREDENTIALS
# =============================================================================
@dataclass(frozen=True, slots=True)
class Credentials:
    """
    Access key pair plus optional STS session token.

    Immutable for the lifetime of a client instance. The secret and the
    token are excluded from repr() so credentials can be logged safely.
    """

    access_key_id: str
    access_key_secret: str = field(repr=False)
    security_token: Optional[str] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.access_key_id:
            raise ValueError("access_key_id must not be empty")
        if not self.access_key_secret:
            raise ValueError("access_key_secret must not be empty")

    @property
    def is_temporary(self) -> bool:
        """True for STS credentials carrying a session token."""
        return bool(self.security_token)


# =============================================================================
# BYTE RANGE FOR PARTIAL OBJECT READS
# =============================================================================
@dataclass(frozen=True, slots=True)
class ByteRange:
    """
    Represents a byte range for partial object reads and part slicing.

    Invariant: 0 <= start <= end
    """

    start: int
    end: int

    def __post_init__(self) -> None:
        """Validate range invariants."""
        if self.start < 0:
            raise ValueError(f"start must be >= 0, got {self.start}")
        if self.end < self.start:
            raise ValueError(f"end ({self.end}) must be >= start ({self.start})")

    @property
    def length(self) -> int:
        """Number of bytes in range (inclusive)."""
        return self.end - self.start + 1

    def to_http_header(self) -> str:
        """Convert to HTTP Range header value."""
        return f"bytes={self.start}-{self.end}"

    def __repr__(self) -> str:
        return f"ByteRange({self.start}-{self.end})"


# =============================================================================
# OBJECT STATE
# =============================================================================
@dataclass(frozen=True, slots=True)
class TargetObjectState:
    """
    The slice of object metadata that preconditions are evaluated against.

    Attributes:
        etag: Entity tag as returned by the server (quotes preserved).
        last_modified: Modification time, timezone-aware UTC.
    """

    etag: Optional[str]
    last_modified: Optional[datetime]

    @classmethod
    def from_headers(cls, headers: dict[str, str]) -> TargetObjectState:
        """Build from lower-cased response headers (ETag, Last-Modified)."""
        return cls(
            etag=headers.get("etag"),
            last_modified=parse_http_date(headers.get("last-modified")),
        )


@dataclass(frozen=True, slots=True)
class ObjectDescriptor:
    """
    Result of a successful write (put, copy, multipart complete).

    Attributes:
        key: Object key.
        etag: Entity tag reported by the server.
        last_modified: Server modification time when reported.
        size: Payload size in bytes when known locally.
        request_id: Server request id (x-oss-request-id).
    """

    key: str
    etag: Optional[str]
    last_modified: Optional[datetime] = None
    size: Optional[int] = None
    request_id: Optional[str] = None


# =============================================================================
# CONTENT DIGEST
# =============================================================================
@dataclass(frozen=True, slots=True)
class ContentMD5:
    """
    MD5 digest of a payload, as used by the Content-MD5 header.

    Memory: 16 bytes (MD5 digest)
    """

    digest: bytes

    def __post_init__(self) -> None:
        if len(self.digest) != 16:
            raise ValueError(f"MD5 digest must be 16 bytes, got {len(self.digest)}")

    @classmethod
    def compute(cls, data: bytes) -> ContentMD5:
        """
        Compute MD5 of data.

        Complexity: O(n) where n is len(data)
        """
        return cls(digest=hashlib.md5(data).digest())

    def to_base64(self) -> str:
        """Header representation."""
        return base64.b64encode(self.digest).decode("ascii")

    def to_hex(self) -> str:
        """Hex representation (single-part etags use this form)."""
        return self.digest.hex()

    def __str__(self) -> str:
        return self.to_base64()


# =============================================================================
# HTTP DATES
# =============================================================================
def format_http_date(value: Union[datetime, float, int]) -> str:
    """
    Render an RFC 1123 date in GMT.

    Accepts an aware datetime or epoch seconds. Naive datetimes are
    treated as UTC.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        dt = value.astimezone(timezone.utc)
    else:
        dt = datetime.fromtimestamp(float(value), tz=timezone.utc)
    return format_datetime(dt, usegmt=True)


def parse_http_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 1123 GMT date; None for missing or malformed input."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
