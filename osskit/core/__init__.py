"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for the client:
- Result/Either monads for zero-exception control flow
- Exhaustive error hierarchy mapped from server error documents
- Configuration management with validation
"""

from osskit.core.types import (
    Result,
    Ok,
    Err,
    Timestamp,
    Credentials,
    ByteRange,
    TargetObjectState,
    ObjectDescriptor,
    ContentMD5,
    format_http_date,
    parse_http_date,
)
from osskit.core.errors import (
    ErrorCode,
    OssError,
    TransportError,
    ServiceError,
    AuthenticationError,
    NotFound,
    PreconditionFailed,
    RestoreInProgress,
    OperationNotSupported,
    PositionMismatch,
    MultipartIncomplete,
    CheckpointStale,
    LocalIOError,
    InvalidArgument,
    error_from_response,
)
from osskit.core.config import (
    ClientConfig,
    TransferConfig,
    RetryConfig,
    ObservabilityConfig,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Timestamp",
    "Credentials",
    "ByteRange",
    "TargetObjectState",
    "ObjectDescriptor",
    "ContentMD5",
    "format_http_date",
    "parse_http_date",
    "ErrorCode",
    "OssError",
    "TransportError",
    "ServiceError",
    "AuthenticationError",
    "NotFound",
    "PreconditionFailed",
    "RestoreInProgress",
    "OperationNotSupported",
    "PositionMismatch",
    "MultipartIncomplete",
    "CheckpointStale",
    "LocalIOError",
    "InvalidArgument",
    "error_from_response",
    "ClientConfig",
    "TransferConfig",
    "RetryConfig",
    "ObservabilityConfig",
]
