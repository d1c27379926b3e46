"""Shared fixtures."""

import pytest

from fake_storage import FakeStorageClient
from objtransfer.models import RetryPolicy, TransferConfig
from objtransfer.multipart import UploadManager


@pytest.fixture
def storage() -> FakeStorageClient:
    """In-memory storage client."""
    return FakeStorageClient()


@pytest.fixture
def transfer_config() -> TransferConfig:
    """Small parts and no retry delays so tests run fast."""
    return TransferConfig(
        part_size=100,
        stream_part_size=100,
        min_part_size=1,
        max_workers=4,
        retry=RetryPolicy(max_attempts=3, delays=(0.0,)),
    )


@pytest.fixture
def manager(storage, transfer_config) -> UploadManager:
    """Upload manager backed by the in-memory client."""
    return UploadManager(storage, transfer_config)
