"""Pytest fixtures for sharded-counters tests."""

import asyncio
import random
from collections.abc import Awaitable
from unittest.mock import patch

import pytest
from moto import mock_aws

from sharded_counters import CounterDefinition, InMemoryStore, ShardedCounter
from sharded_counters.repository import Repository


class FakeClock:
    """Settable replacement for time.time()."""

    def __init__(self, now: float = 6000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mock AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    # Unset AWS_ENDPOINT_URL to ensure moto intercepts requests
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)


def _patch_aiobotocore_response():
    """
    Patch aiobotocore to work with moto's sync responses.

    Moto returns botocore.awsrequest.AWSResponse which has sync content,
    but aiobotocore expects async content. This patch wraps the response
    handling to convert sync content to async.

    See: https://github.com/aio-libs/aiobotocore/discussions/1300
    """
    from aiobotocore import endpoint

    original_convert = endpoint.convert_to_response_dict

    async def patched_convert(http_response, operation_model):
        # If content is not awaitable (moto's sync response), wrap it
        if hasattr(http_response, "_content") and not isinstance(http_response._content, Awaitable):
            # Create a future that returns the content
            fut: asyncio.Future[bytes] = asyncio.Future()
            fut.set_result(http_response.content)
            http_response._content = fut
        return await original_convert(http_response, operation_model)

    return patch.object(endpoint, "convert_to_response_dict", patched_convert)


@pytest.fixture
def mock_dynamodb(aws_credentials):
    """Mock DynamoDB for tests."""
    with mock_aws(), _patch_aiobotocore_response():
        yield


@pytest.fixture
async def repo(mock_dynamodb):
    """Repository on a fresh mocked table."""
    repo = Repository(table_name="test_counters", region="us-east-1")
    await repo.create_table()
    yield repo
    await repo.close()


@pytest.fixture
def clock() -> FakeClock:
    """Clock at t=6000s, tick 100 for a 60s interval."""
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def likes() -> CounterDefinition:
    return CounterDefinition(
        name="likes",
        shard_count=4,
        default_shard_template={"count": 0},
        rollup_interval=60,
    )


@pytest.fixture
def counter(likes, store, clock) -> ShardedCounter:
    """ShardedCounter over the in-memory store with a seeded RNG."""
    return ShardedCounter(likes, store, rng=random.Random(1234), clock=clock)
