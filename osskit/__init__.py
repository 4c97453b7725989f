"""
Async Object Storage Client

An asyncio client for OSS-style object storage services:
- Request signing: HMAC-SHA1 Authorization headers and presigned URLs
- Conditional requests: If-Match / If-None-Match / If-(Un)Modified-Since
- Transfer planning: single PUT, chunked stream or multipart
- Multipart uploads: bounded fan-out, per-part retry, checkpoint resume
- Append uploads: position-addressed sequential writes

Every operation returns a Result (Ok/Err); service, transport and local I/O
failures never raise. Iterating a get_stream body is the one exception: a
connection lost mid-body raises TransportError.

License: MIT
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from osskit.core.types import (
    Result,
    Ok,
    Err,
    Credentials,
    ByteRange,
    ObjectDescriptor,
    TargetObjectState,
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
)
from osskit.core.config import ClientConfig, RetryConfig, TransferConfig

from osskit.auth import CallbackDescriptor, Canonicalizer, CanonicalRequest, Signer
from osskit.transfer import (
    AppendCoordinator,
    AppendResult,
    AppendState,
    ConditionContext,
    ConditionOutcome,
    ConditionalEvaluator,
    MultipartCoordinator,
    MultipartSession,
    ObjectPrecondition,
    PayloadSource,
    TransferPlanner,
)
from osskit.transport import HttpExecutor, HttpResponse, HttpxExecutor, RequestOptions, UrlOptions
from osskit.observability import TransferMetrics, setup_logging
from osskit.client import CopyResult, ObjectClient, ObjectResponse, ObjectStream

__all__ = [
    # Version
    "__version__",
    # Client
    "ObjectClient",
    "ObjectResponse",
    "ObjectStream",
    "CopyResult",
    # Types
    "Result",
    "Ok",
    "Err",
    "Credentials",
    "ByteRange",
    "ObjectDescriptor",
    "TargetObjectState",
    # Errors
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
    # Config
    "ClientConfig",
    "RetryConfig",
    "TransferConfig",
    # Signing
    "CallbackDescriptor",
    "Canonicalizer",
    "CanonicalRequest",
    "Signer",
    # Transfer
    "AppendCoordinator",
    "AppendResult",
    "AppendState",
    "ConditionContext",
    "ConditionOutcome",
    "ConditionalEvaluator",
    "MultipartCoordinator",
    "MultipartSession",
    "ObjectPrecondition",
    "PayloadSource",
    "TransferPlanner",
    # Transport
    "HttpExecutor",
    "HttpResponse",
    "HttpxExecutor",
    "RequestOptions",
    "UrlOptions",
    # Observability
    "TransferMetrics",
    "setup_logging",
]
