"""
Configuration Management for the Object Storage Client

Provides validated configuration with sensible defaults.
Supports environment variable overrides.

Design:
- Immutable after validation (frozen dataclasses)
- Fail-fast on invalid configuration (__post_init__ invariants)
- Passed explicitly to every coordinator; no global client state
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from osskit.core.types import Result, Ok, Err, Credentials
from osskit.core import constants as C


@dataclass(frozen=True)
class TransferConfig:
    """Multipart and single-shot transfer tuning."""

    part_size: int = C.DEFAULT_PART_SIZE
    min_part_size: int = C.MIN_PART_SIZE
    multipart_threshold: int = C.MULTIPART_THRESHOLD
    parallel: int = C.DEFAULT_PARALLEL
    max_parts: int = C.MAX_PART_NUMBER

    def __post_init__(self) -> None:
        if self.min_part_size <= 0:
            raise ValueError(f"min_part_size must be > 0, got {self.min_part_size}")
        if self.part_size < self.min_part_size:
            raise ValueError(
                f"part_size ({self.part_size}) must be >= min_part_size ({self.min_part_size})"
            )
        if self.parallel < 1:
            raise ValueError(f"parallel must be >= 1, got {self.parallel}")
        if not (1 <= self.max_parts <= C.MAX_PART_NUMBER):
            raise ValueError(f"max_parts must be in [1, {C.MAX_PART_NUMBER}], got {self.max_parts}")

    def part_size_for(self, total_size: Optional[int]) -> int:
        """
        Part size that keeps the part count within max_parts.

        Unknown sizes (streams) use the configured part size.
        """
        if total_size is None:
            return self.part_size
        minimum = -(-total_size // self.max_parts)
        return max(self.part_size, minimum)


@dataclass(frozen=True)
class RetryConfig:
    """Per-request retry and timeout configuration."""

    max_retries: int = C.RETRY_MAX_ATTEMPTS
    base_delay_ms: int = C.RETRY_BASE_MS
    max_delay_ms: int = C.RETRY_MAX_MS
    request_timeout_s: float = C.REQUEST_TIMEOUT_S
    connect_timeout_s: float = C.CONNECT_TIMEOUT_S

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_ms < 0 or self.max_delay_ms < self.base_delay_ms:
            raise ValueError("retry delays must satisfy 0 <= base_delay_ms <= max_delay_ms")
        if self.request_timeout_s <= 0 or self.connect_timeout_s <= 0:
            raise ValueError("timeouts must be > 0")


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration."""

    log_level: str = "INFO"
    log_json: bool = True

    def __post_init__(self) -> None:
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log_level {self.log_level!r}")


@dataclass(frozen=True)
class ClientConfig:
    """
    Root configuration for a client instance.

    Attributes:
        endpoint: Service host, optionally with scheme
            (e.g. "oss-cn-hangzhou.aliyuncs.com" or "http://127.0.0.1:9000").
        bucket: Default bucket for object operations.
        credentials: Access key pair, immutable for the client lifetime.
        secure: Use https when the endpoint carries no scheme.
        cname: Endpoint is a custom domain already bound to the bucket.
        path_style: Address buckets as /bucket/key instead of bucket.endpoint.
    """

    endpoint: str
    bucket: str
    credentials: Credentials
    secure: bool = True
    cname: bool = False
    path_style: bool = False
    transfer: TransferConfig = field(default_factory=TransferConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @property
    def scheme(self) -> str:
        """URL scheme, taken from the endpoint when it carries one."""
        if "://" in self.endpoint:
            return self.endpoint.split("://", 1)[0]
        return "https" if self.secure else "http"

    @property
    def host(self) -> str:
        """Endpoint host[:port] without scheme or trailing slash."""
        host = self.endpoint.split("://", 1)[-1]
        return host.rstrip("/")

    def bucket_url(self, bucket: Optional[str] = None) -> str:
        """
        Base URL that object keys are appended to (always ends with '/').

        CNAME endpoints already designate the bucket; path-style puts the
        bucket in the path; otherwise the bucket becomes a host prefix.
        """
        bucket = bucket or self.bucket
        if self.cname:
            return f"{self.scheme}://{self.host}/"
        if self.path_style:
            return f"{self.scheme}://{self.host}/{bucket}/"
        return f"{self.scheme}://{bucket}.{self.host}/"

    @classmethod
    def from_env(cls, prefix: str = "OSSKIT") -> Result[ClientConfig, str]:
        """
        Load configuration from environment variables.

        Environment Variables:
        - {prefix}_ENDPOINT, {prefix}_BUCKET (required)
        - {prefix}_ACCESS_KEY_ID, {prefix}_ACCESS_KEY_SECRET (required)
        - {prefix}_SECURITY_TOKEN
        - {prefix}_SECURE, {prefix}_CNAME, {prefix}_PATH_STYLE
        - {prefix}_PART_SIZE, {prefix}_PARALLEL, {prefix}_MULTIPART_THRESHOLD
        - {prefix}_MAX_RETRIES, {prefix}_REQUEST_TIMEOUT_S
        - {prefix}_LOG_LEVEL, {prefix}_LOG_JSON
        """

        def _get(key: str, default: str = "") -> str:
            return os.getenv(f"{prefix}_{key}", default)

        def _get_int(key: str, default: int) -> int:
            return int(_get(key, str(default)))

        def _get_bool(key: str, default: bool) -> bool:
            return _get(key, str(default)).strip().lower() in ("1", "true", "yes", "on")

        endpoint = _get("ENDPOINT")
        bucket = _get("BUCKET")
        if not endpoint or not bucket:
            return Err(f"{prefix}_ENDPOINT and {prefix}_BUCKET are required")

        try:
            credentials = Credentials(
                access_key_id=_get("ACCESS_KEY_ID"),
                access_key_secret=_get("ACCESS_KEY_SECRET"),
                security_token=_get("SECURITY_TOKEN") or None,
            )
            transfer = TransferConfig(
                part_size=_get_int("PART_SIZE", C.DEFAULT_PART_SIZE),
                parallel=_get_int("PARALLEL", C.DEFAULT_PARALLEL),
                multipart_threshold=_get_int("MULTIPART_THRESHOLD", C.MULTIPART_THRESHOLD),
            )
            retry = RetryConfig(
                max_retries=_get_int("MAX_RETRIES", C.RETRY_MAX_ATTEMPTS),
                request_timeout_s=float(_get("REQUEST_TIMEOUT_S", str(C.REQUEST_TIMEOUT_S))),
            )
            observability = ObservabilityConfig(
                log_level=_get("LOG_LEVEL", "INFO").upper(),
                log_json=_get_bool("LOG_JSON", True),
            )
            return Ok(cls(
                endpoint=endpoint,
                bucket=bucket,
                credentials=credentials,
                secure=_get_bool("SECURE", True),
                cname=_get_bool("CNAME", False),
                path_style=_get_bool("PATH_STYLE", False),
                transfer=transfer,
                retry=retry,
                observability=observability,
            ))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")

    def validate(self) -> Result[None, str]:
        """Validate cross-field invariants."""
        if self.cname and self.path_style:
            return Err("cname and path_style are mutually exclusive")
        if not self.bucket:
            return Err("bucket must not be empty")
        if self.transfer.multipart_threshold < self.transfer.min_part_size:
            return Err("multipart_threshold must be >= min_part_size")
        return Ok(None)
