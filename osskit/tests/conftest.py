"""
Shared fixtures: a small-part transfer configuration, an in-memory
service and a client with a pinned clock.
"""

from __future__ import annotations

import pytest

from osskit.client import ObjectClient
from osskit.core.config import ClientConfig, RetryConfig, TransferConfig
from osskit.core.types import Credentials
from osskit.tests.fake_oss import BUCKET, FIXED_NOW, PART, FakeOssService


@pytest.fixture
def credentials() -> Credentials:
    return Credentials("AKIDEXAMPLE", "secret-example")


@pytest.fixture
def transfer_config() -> TransferConfig:
    return TransferConfig(part_size=PART, min_part_size=PART, multipart_threshold=4 * PART, parallel=2)


@pytest.fixture
def config(credentials: Credentials, transfer_config: TransferConfig) -> ClientConfig:
    return ClientConfig(
        endpoint="http://oss.test",
        bucket=BUCKET,
        credentials=credentials,
        transfer=transfer_config,
        retry=RetryConfig(max_retries=2, base_delay_ms=0, max_delay_ms=0),
    )


@pytest.fixture
def service(credentials: Credentials) -> FakeOssService:
    return FakeOssService(credentials)


@pytest.fixture
def client(config: ClientConfig, service: FakeOssService) -> ObjectClient:
    return ObjectClient(config, executor=service, clock=lambda: FIXED_NOW)

