"""
Exhaustive Error Hierarchy for the Object Storage Client

Design Principles:
- Forbid exceptions for control flow (errors are returned inside Err)
- Enforce exhaustive pattern matching for all error variants
- Never swallow errors or use null for absence
- Carry full error context (status, server code, request id) for diagnosis

Each error type includes:
- Unique error code for programmatic handling
- Human-readable message for logging
- Optional cause chain for root cause analysis
- Timestamp for correlation with server-side request logs

Usage:
    result = await client.append(key, b"data", position=3)
    match result:
        case Ok(appended):
            state = appended.next_position
        case Err(PositionMismatch() as err):
            position = err.context.get("next_position")
        case Err(TransportError()):
            schedule_retry()
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from osskit.core.types import Timestamp


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by subsystem:
    - 1xxx: Transport errors
    - 2xxx: Service (server-reported) errors
    - 3xxx: Conditional / state errors
    - 4xxx: Multipart and append coordination errors
    - 5xxx: Local I/O errors
    - 9xxx: Caller / internal errors
    """

    # Transport errors (1xxx)
    TRANSPORT_CONNECTION_FAILED = 1001
    TRANSPORT_TIMEOUT = 1002

    # Service errors (2xxx)
    SERVICE_ERROR = 2001
    SERVICE_UNAVAILABLE = 2002
    SERVICE_AUTHENTICATION_FAILED = 2003
    SERVICE_NOT_FOUND = 2004
    SERVICE_MALFORMED_RESPONSE = 2005

    # Conditional / state errors (3xxx)
    PRECONDITION_FAILED = 3001
    RESTORE_IN_PROGRESS = 3002
    OPERATION_NOT_SUPPORTED = 3003

    # Coordination errors (4xxx)
    POSITION_MISMATCH = 4001
    MULTIPART_INCOMPLETE = 4002
    CHECKPOINT_STALE = 4003

    # Local I/O errors (5xxx)
    LOCAL_SOURCE_UNREADABLE = 5001
    LOCAL_CHECKPOINT_UNWRITABLE = 5002
    LOCAL_DESTINATION_UNWRITABLE = 5003

    # Caller errors (9xxx)
    INVALID_ARGUMENT = 9001


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass(eq=False)
class OssError(Exception):
    """
    Base class for all client errors.

    Provides common infrastructure for error handling:
    - Unique error ID for log correlation
    - Error code for programmatic handling
    - Timestamp for correlation
    - Cause chain for root cause analysis
    - HTTP status, server error code and request id when a response exists
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Initialize Exception base class with message
        super().__init__(self.message)

    @property
    def status(self) -> Optional[int]:
        """HTTP status of the failing response, if any."""
        return self.context.get("status")

    @property
    def server_code(self) -> Optional[str]:
        """Machine-readable code from the server error document."""
        return self.context.get("server_code")

    @property
    def request_id(self) -> Optional[str]:
        """Server request id for support tickets."""
        return self.context.get("request_id")

    @property
    def retryable(self) -> bool:
        """Whether a bounded local retry may succeed."""
        return False

    def with_context(self, **kwargs: Any) -> OssError:
        """
        Add context to error (returns new instance of the same class).

        Context is useful for debugging but must not contain secrets.
        """
        return type(self)(
            code=self.code,
            message=self.message,
            error_id=self.error_id,
            timestamp=self.timestamp,
            cause=self.cause,
            context={**self.context, **kwargs},
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize error to dictionary for structured logging."""
        return {
            "error_id": self.error_id,
            "error_type": type(self).__name__,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp_nanos": self.timestamp.nanos,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"context={self.context!r})"
        )


# =============================================================================
# TRANSPORT ERRORS
# =============================================================================
@dataclass(eq=False)
class TransportError(OssError):
    """
    Connection-level failures: refused connections, resets, timeouts.

    Always retryable within the bounded per-part retry budget.
    """

    @property
    def retryable(self) -> bool:
        return True

    @classmethod
    def connection_failed(
        cls,
        url: str,
        cause: Optional[BaseException] = None,
    ) -> TransportError:
        """Connection could not be established or was dropped."""
        return cls(
            code=ErrorCode.TRANSPORT_CONNECTION_FAILED,
            message=f"Connection to {url} failed: {cause}",
            cause=cause,
            context={"url": url},
        )

    @classmethod
    def timeout(
        cls,
        url: str,
        timeout_s: float,
        cause: Optional[BaseException] = None,
    ) -> TransportError:
        """Request exceeded its timeout."""
        return cls(
            code=ErrorCode.TRANSPORT_TIMEOUT,
            message=f"Request to {url} timed out after {timeout_s}s",
            cause=cause,
            context={"url": url, "timeout_s": timeout_s},
        )


# =============================================================================
# SERVICE ERRORS
# =============================================================================
@dataclass(eq=False)
class ServiceError(OssError):
    """
    Server-reported failure without a more specific mapping.

    5xx responses are retryable; everything else is not.
    """

    @property
    def retryable(self) -> bool:
        status = self.status
        return status is not None and status >= 500

    @classmethod
    def from_status(
        cls,
        status: int,
        server_code: str,
        message: str,
        request_id: Optional[str] = None,
    ) -> ServiceError:
        """Generic server error."""
        code = ErrorCode.SERVICE_UNAVAILABLE if status >= 500 else ErrorCode.SERVICE_ERROR
        return cls(
            code=code,
            message=message or f"Server returned {status} {server_code}",
            context={"status": status, "server_code": server_code, "request_id": request_id},
        )

    @classmethod
    def malformed_response(
        cls,
        operation: str,
        reason: str,
        status: Optional[int] = None,
        request_id: Optional[str] = None,
    ) -> ServiceError:
        """Success status but a body or header the client cannot use."""
        return cls(
            code=ErrorCode.SERVICE_MALFORMED_RESPONSE,
            message=f"Malformed response to {operation}: {reason}",
            context={"operation": operation, "status": status, "request_id": request_id},
        )


@dataclass(eq=False)
class AuthenticationError(OssError):
    """
    Signature mismatch or rejected credentials.

    Never retried: it indicates a canonicalization, credential or clock bug.
    """


@dataclass(eq=False)
class NotFound(OssError):
    """404: NoSuchKey, NoSuchBucket or NoSuchUpload."""


@dataclass(eq=False)
class PreconditionFailed(OssError):
    """
    412 or local precondition evaluation failure.

    The caller must re-fetch the object state before trying again.
    """

    @classmethod
    def condition(
        cls,
        condition: str,
        key: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> PreconditionFailed:
        """A named precondition did not hold."""
        return cls(
            code=ErrorCode.PRECONDITION_FAILED,
            message=(
                "At least one of the pre-conditions you specified did not hold. "
                f"(condition: {condition})"
            ),
            context={"status": 412, "condition": condition, "key": key, "request_id": request_id},
        )


@dataclass(eq=False)
class RestoreInProgress(OssError):
    """Archive restore already running for this object."""


@dataclass(eq=False)
class OperationNotSupported(OssError):
    """Operation invalid for the object or bucket (e.g. restore on standard storage)."""


# =============================================================================
# COORDINATION ERRORS
# =============================================================================
@dataclass(eq=False)
class PositionMismatch(OssError):
    """
    Append position differs from the server's object length.

    Signals a lost race or caller bookkeeping error. Not retried;
    the caller must re-read the current length first.
    """

    @property
    def next_position(self) -> Optional[int]:
        """Server-reported current length, when the response carried it."""
        return self.context.get("next_position")

    @classmethod
    def at(
        cls,
        key: str,
        position: int,
        next_position: Optional[int],
        request_id: Optional[str] = None,
    ) -> PositionMismatch:
        return cls(
            code=ErrorCode.POSITION_MISMATCH,
            message="Position is not equal to file length",
            context={
                "status": 409,
                "server_code": "PositionNotEqualToLength",
                "key": key,
                "position": position,
                "next_position": next_position,
                "request_id": request_id,
            },
        )


@dataclass(eq=False)
class MultipartIncomplete(OssError):
    """A required part is missing when completing a multipart upload."""

    @classmethod
    def missing_parts(
        cls,
        upload_id: str,
        missing: list[int],
    ) -> MultipartIncomplete:
        return cls(
            code=ErrorCode.MULTIPART_INCOMPLETE,
            message=f"Upload {upload_id} is missing parts {missing[:10]}",
            context={"upload_id": upload_id, "missing": missing},
        )

    @classmethod
    def aborted(cls, upload_id: str, missing: list[int]) -> MultipartIncomplete:
        return cls(
            code=ErrorCode.MULTIPART_INCOMPLETE,
            message=f"Upload {upload_id} was aborted with parts in flight",
            context={"upload_id": upload_id, "missing": missing, "aborted": True},
        )


@dataclass(eq=False)
class CheckpointStale(OssError):
    """Checkpoint no longer matches the local source or the server upload."""

    @classmethod
    def because(cls, path: str, reason: str) -> CheckpointStale:
        return cls(
            code=ErrorCode.CHECKPOINT_STALE,
            message=f"Checkpoint {path} is stale: {reason}",
            context={"path": path, "reason": reason},
        )


@dataclass(eq=False)
class LocalIOError(OssError):
    """
    Local filesystem failure around a transfer.

    The source vanished or became unreadable mid-upload, the checkpoint
    could not be written, or a download destination rejected the bytes.
    """

    @classmethod
    def source_unreadable(cls, path: str, cause: OSError) -> LocalIOError:
        return cls(
            code=ErrorCode.LOCAL_SOURCE_UNREADABLE,
            message=f"Cannot read source {path}: {cause}",
            cause=cause,
            context={"path": path},
        )

    @classmethod
    def checkpoint_unwritable(cls, path: str, cause: OSError) -> LocalIOError:
        return cls(
            code=ErrorCode.LOCAL_CHECKPOINT_UNWRITABLE,
            message=f"Cannot write checkpoint {path}: {cause}",
            cause=cause,
            context={"path": path},
        )

    @classmethod
    def destination_unwritable(cls, path: str, cause: OSError) -> LocalIOError:
        return cls(
            code=ErrorCode.LOCAL_DESTINATION_UNWRITABLE,
            message=f"Cannot write download to {path}: {cause}",
            cause=cause,
            context={"path": path},
        )


@dataclass(eq=False)
class InvalidArgument(OssError):
    """Caller error detected before any request is sent."""

    @classmethod
    def invalid(cls, argument: str, value: Any, reason: str) -> InvalidArgument:
        return cls(
            code=ErrorCode.INVALID_ARGUMENT,
            message=f"Invalid {argument}: {reason}",
            context={"argument": argument, "value": str(value)[:100], "reason": reason},
        )


# =============================================================================
# SERVER ERROR RESPONSE MAPPING
# =============================================================================
_AUTH_CODES = frozenset({
    "SignatureDoesNotMatch",
    "InvalidAccessKeyId",
    "AccessDenied",
    "RequestTimeTooSkewed",
    "InvalidSecurityToken",
    "SecurityTokenExpired",
})

_NOT_SUPPORTED_CODES = frozenset({
    "OperationNotSupported",
    "ObjectNotAppendable",
})

_MULTIPART_CODES = frozenset({
    "InvalidPart",
    "InvalidPartOrder",
})


@dataclass(frozen=True, slots=True)
class ErrorDocument:
    """Parsed <Error> body returned by the service."""

    code: str = ""
    message: str = ""
    request_id: Optional[str] = None
    host_id: Optional[str] = None

    @classmethod
    def parse(cls, body: bytes) -> ErrorDocument:
        """
        Parse an XML error body.

        Empty or unparseable bodies (HEAD responses carry none) yield an
        empty document rather than an error.
        """
        if not body:
            return cls()
        try:
            root = ET.fromstring(body)
        except ET.ParseError:
            return cls(message=body[:200].decode("utf-8", "replace"))
        return cls(
            code=root.findtext("Code") or "",
            message=root.findtext("Message") or "",
            request_id=root.findtext("RequestId"),
            host_id=root.findtext("HostId"),
        )


_STATUS_FALLBACK_CODES = {
    304: "NotModified",
    403: "AccessDenied",
    404: "NoSuchKey",
    409: "Conflict",
    412: "PreconditionFailed",
}


def error_from_response(
    status: int,
    headers: dict[str, str],
    body: bytes,
    key: Optional[str] = None,
) -> OssError:
    """
    Translate a non-success response into the error taxonomy.

    Args:
        status: HTTP status code.
        headers: Lower-cased response headers.
        body: Raw response body (XML error document or empty).
        key: Object key involved, for context.

    Returns:
        The most specific OssError subclass for the response.
    """
    doc = ErrorDocument.parse(body)
    server_code = doc.code or _STATUS_FALLBACK_CODES.get(status, f"Http{status}")
    request_id = doc.request_id or headers.get("x-oss-request-id")
    message = doc.message or f"{server_code} (status {status})"
    context: dict[str, Any] = {
        "status": status,
        "server_code": server_code,
        "request_id": request_id,
        "host_id": doc.host_id,
        "key": key,
    }

    if server_code == "PositionNotEqualToLength":
        next_position = headers.get("x-oss-next-append-position")
        return PositionMismatch.at(
            key=key or "",
            position=-1,
            next_position=int(next_position) if next_position and next_position.isdigit() else None,
            request_id=request_id,
        )
    if server_code == "RestoreAlreadyInProgress":
        return RestoreInProgress(code=ErrorCode.RESTORE_IN_PROGRESS, message=message, context=context)
    if server_code in _NOT_SUPPORTED_CODES:
        return OperationNotSupported(
            code=ErrorCode.OPERATION_NOT_SUPPORTED, message=message, context=context
        )
    if server_code in _MULTIPART_CODES:
        return MultipartIncomplete(code=ErrorCode.MULTIPART_INCOMPLETE, message=message, context=context)
    if status == 412:
        return PreconditionFailed(code=ErrorCode.PRECONDITION_FAILED, message=message, context=context)
    if status == 404:
        return NotFound(code=ErrorCode.SERVICE_NOT_FOUND, message=message, context=context)
    if status in (401, 403) or server_code in _AUTH_CODES:
        return AuthenticationError(
            code=ErrorCode.SERVICE_AUTHENTICATION_FAILED, message=message, context=context
        )
    return ServiceError.from_status(status, server_code, message, request_id).with_context(
        host_id=doc.host_id, key=key
    )
