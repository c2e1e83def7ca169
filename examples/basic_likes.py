#!/usr/bin/env python3
"""
Basic Sharded Counter Example

Counts likes on a post with DynamoDB Local, then folds the shards into
the post with a rollup pass.

Setup:
    # Start DynamoDB Local
    docker run -p 8000:8000 amazon/dynamodb-local

    # Run this example
    python examples/basic_likes.py

For real AWS DynamoDB, set environment variables:
    export AWS_ACCESS_KEY_ID=...
    export AWS_SECRET_ACCESS_KEY=...
    export AWS_DEFAULT_REGION=us-east-1

Then update ENDPOINT_URL to None below.
"""

import asyncio
import time

from sharded_counters import (
    CounterDefinition,
    DocumentNotFoundError,
    DocumentRef,
    Repository,
    ShardedCounter,
    SyncShardedCounter,
)

# Configuration for DynamoDB Local
ENDPOINT_URL = "http://localhost:8000"
TABLE_NAME = "sharded_counters_example"

# Short ticks so the example does not wait a full minute
LIKES = CounterDefinition(
    name="likes",
    shard_count=4,
    default_shard_template={"count": 0},
    rollup_interval=1,
)


async def async_main() -> None:
    """Demonstrate async increments and rollup."""
    print("=== Async Sharded Counter Example ===\n")

    repo = Repository(TABLE_NAME, region="us-east-1", endpoint_url=ENDPOINT_URL)
    await repo.create_table()

    post = DocumentRef("posts", "async-post")
    await repo.set(post, {"count": 0})

    async with ShardedCounter(LIKES, repo) as counter:
        await counter.create_shards(post)

        for i in range(5):
            result = await counter.handle().increment_field("count", 1).update(post)
            print(f"Like {i + 1}: wrote {result.path}")

        # Increments are stamped one tick ahead
        await asyncio.sleep(LIKES.rollup_interval * 2)

        summary = await counter.rollup()
        print(f"\nRollup: {summary.to_dict()}")

        parent = await repo.get(post)
        print(f"Post likes after rollup: {parent.fields['count']}")

        remaining = 0
        for shard_id in LIKES.shard_ids():
            try:
                await repo.get(post.child(LIKES.name, shard_id))
                remaining += 1
            except DocumentNotFoundError:
                pass
        print(f"Shards left: {remaining}")


def sync_main() -> None:
    """Demonstrate the synchronous wrapper."""
    print("\n=== Sync Sharded Counter Example ===\n")

    repo = Repository(TABLE_NAME, region="us-east-1", endpoint_url=ENDPOINT_URL)
    post = DocumentRef("posts", "sync-post")

    with SyncShardedCounter(LIKES, repo) as counter:
        counter._run(repo.set(post, {"count": 0}))

        for _ in range(3):
            counter.increment(post, {"count": 2})

        time.sleep(LIKES.rollup_interval * 2)
        summary = counter.rollup()
        print(f"Rolled up {summary.shards_deleted} shards: {summary.totals}")


if __name__ == "__main__":
    asyncio.run(async_main())
    sync_main()
