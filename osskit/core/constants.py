"""
System-Wide Constants for the Object Storage Client

All magic numbers and protocol names centralized here.
"""

from typing import Final

# =============================================================================
# SIZE AND TIME UNITS
# =============================================================================
KB: Final[int] = 1024
MB: Final[int] = 1024 * KB

SECOND_MS: Final[int] = 1000

# =============================================================================
# PROTOCOL NAMES
# =============================================================================
VENDOR_HEADER_PREFIX: Final[str] = "x-oss-"
META_HEADER_PREFIX: Final[str] = "x-oss-meta-"
COPY_SOURCE_HEADER: Final[str] = "x-oss-copy-source"
COPY_SOURCE_CONDITION_PREFIX: Final[str] = "x-oss-copy-source-"
SECURITY_TOKEN_HEADER: Final[str] = "x-oss-security-token"
REQUEST_ID_HEADER: Final[str] = "x-oss-request-id"
NEXT_APPEND_POSITION_HEADER: Final[str] = "x-oss-next-append-position"
AUTH_SCHEME: Final[str] = "OSS"
ACCESS_KEY_QUERY_PARAM: Final[str] = "OSSAccessKeyId"

DEFAULT_CONTENT_TYPE: Final[str] = "application/octet-stream"

# =============================================================================
# MULTIPART LIMITS
# =============================================================================
MIN_PART_SIZE: Final[int] = 100 * KB
DEFAULT_PART_SIZE: Final[int] = 1 * MB
MAX_PART_NUMBER: Final[int] = 10000
MULTIPART_THRESHOLD: Final[int] = 8 * MB
DEFAULT_PARALLEL: Final[int] = 5
LIST_PARTS_PAGE_SIZE: Final[int] = 1000

# =============================================================================
# OBJECT OPERATIONS
# =============================================================================
DELETE_MULTIPLE_MAX_KEYS: Final[int] = 1000
METADATA_DIRECTIVE_HEADER: Final[str] = "x-oss-metadata-directive"

# =============================================================================
# RELIABILITY
# =============================================================================
RETRY_BASE_MS: Final[int] = 100
RETRY_MAX_MS: Final[int] = 10 * SECOND_MS
RETRY_MAX_ATTEMPTS: Final[int] = 3
REQUEST_TIMEOUT_S: Final[float] = 60.0
CONNECT_TIMEOUT_S: Final[float] = 10.0

# =============================================================================
# PRESIGNED URLS
# =============================================================================
DEFAULT_SIGN_URL_EXPIRES_S: Final[int] = 1800

# =============================================================================
# CHECKPOINTS
# =============================================================================
CHECKPOINT_VERSION: Final[int] = 1
