"""
Transfer Metrics
================

Per-client counters for requests, bytes, retries and errors.

All mutation happens on the event loop thread, so plain integer fields
suffice; snapshot() gives a copy suitable for logging or health output.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict


@dataclass
class TransferMetrics:
    """
    Nanosecond-precision metrics for object transfers.

    Tracks upload/download throughput and latency.
    """
    # Operation counters
    request_count: int = 0
    put_count: int = 0
    get_count: int = 0
    part_count: int = 0
    append_count: int = 0

    # Byte counters
    bytes_uploaded: int = 0
    bytes_downloaded: int = 0

    # Latency accumulators (nanoseconds)
    upload_latency_sum_ns: int = 0
    download_latency_sum_ns: int = 0

    # Error counters
    transport_errors: int = 0
    service_errors: int = 0
    retry_count: int = 0
    errors_by_code: Dict[str, int] = field(default_factory=dict)

    def record_request(self, method: str, latency_ns: int, sent: int = 0, received: int = 0) -> None:
        """Record one completed HTTP exchange."""
        self.request_count += 1
        if sent:
            self.bytes_uploaded += sent
            self.upload_latency_sum_ns += latency_ns
        if method == "GET" and received:
            self.bytes_downloaded += received
            self.download_latency_sum_ns += latency_ns

    def record_upload(self) -> None:
        """Record a completed single-shot object write."""
        self.put_count += 1

    def record_download(self) -> None:
        self.get_count += 1

    def record_part(self) -> None:
        self.part_count += 1

    def record_append(self) -> None:
        self.append_count += 1

    def record_retry(self) -> None:
        self.retry_count += 1

    def record_error(self, code: str, transport: bool = False) -> None:
        """Record a failed request by error code name."""
        if transport:
            self.transport_errors += 1
        else:
            self.service_errors += 1
        self.errors_by_code[code] = self.errors_by_code.get(code, 0) + 1

    def get_upload_throughput_mbps(self) -> float:
        """Calculate average upload throughput in MB/s."""
        if self.upload_latency_sum_ns == 0:
            return 0.0
        seconds = self.upload_latency_sum_ns / 1_000_000_000
        return (self.bytes_uploaded / 1_000_000) / seconds

    def get_download_throughput_mbps(self) -> float:
        """Calculate average download throughput in MB/s."""
        if self.download_latency_sum_ns == 0:
            return 0.0
        seconds = self.download_latency_sum_ns / 1_000_000_000
        return (self.bytes_downloaded / 1_000_000) / seconds

    def snapshot(self) -> Dict[str, Any]:
        data = asdict(self)
        data["upload_throughput_mbps"] = self.get_upload_throughput_mbps()
        data["download_throughput_mbps"] = self.get_download_throughput_mbps()
        return data
