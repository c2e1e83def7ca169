"""Lambda handler for scheduled rollup passes."""

import asyncio
import json
import os
import time
import traceback
from datetime import UTC, datetime
from typing import Any

from .counter import ShardedCounter
from .exceptions import RollupAbortedError
from .models import CounterDefinition
from .repository import Repository
from .schema import DEFAULT_TABLE_NAME

# Configuration from environment
TABLE_NAME = os.environ.get("TABLE_NAME", DEFAULT_TABLE_NAME)
ENDPOINT_URL = os.environ.get("AWS_ENDPOINT_URL") or None


class StructuredLogger:
    """JSON-formatted logger for CloudWatch Logs Insights."""

    def __init__(self, name: str):
        self._name = name

    def _log(self, level: str, message: str, **extra: Any) -> None:
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": level,
            "logger": self._name,
            "message": message,
            **extra,
        }
        print(json.dumps(log_entry, default=str))

    def info(self, message: str, **extra: Any) -> None:
        self._log("INFO", message, **extra)

    def error(self, message: str, exc_info: bool = False, **extra: Any) -> None:
        if exc_info:
            extra["exception"] = traceback.format_exc()
        self._log("ERROR", message, **extra)


logger = StructuredLogger(__name__)


async def _run_rollup(definition: CounterDefinition) -> dict[str, Any]:
    async with ShardedCounter(definition, Repository(TABLE_NAME, endpoint_url=ENDPOINT_URL)) as counter:
        result = await counter.rollup()
        return result.to_dict()


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Lambda handler for scheduled (EventBridge) rollup invocations.

    Runs one rollup pass for the counter configured in the environment.
    The schedule should not fire faster than a pass completes; overlapping
    passes over the same counter can double count.

    Environment variables:
        TABLE_NAME: DynamoDB table name (default: sharded_counters)
        COUNTER_NAME: Counter name (required)
        SHARD_COUNT: Shards per parent (default: 10)
        ROLLUP_INTERVAL: Seconds per tick (default: 60)
        SHARD_TEMPLATE: Default shard fields as JSON (default: {})

    Args:
        event: Scheduled event (contents ignored)
        context: Lambda context

    Returns:
        Rollup result summary, statusCode 500 if the pass aborted
    """
    start_time = time.perf_counter()
    request_id = getattr(context, "aws_request_id", "unknown")
    definition = CounterDefinition.from_environment()

    logger.info(
        "Rollup invocation started",
        request_id=request_id,
        function_name=getattr(context, "function_name", "unknown"),
        table_name=TABLE_NAME,
        counter_name=definition.name,
        shard_count=definition.shard_count,
        rollup_interval=definition.rollup_interval,
    )

    try:
        summary = asyncio.run(_run_rollup(definition))
    except RollupAbortedError as e:
        processing_time_ms = (time.perf_counter() - start_time) * 1000
        logger.error(
            "Rollup invocation aborted",
            exc_info=True,
            request_id=request_id,
            parent=e.parent_path,
            committed=e.partial.to_dict(),
            processing_time_ms=round(processing_time_ms, 2),
        )
        return {
            "statusCode": 500,
            "body": {
                "error": str(e),
                "parent": e.parent_path,
                **e.partial.to_dict(),
            },
        }

    processing_time_ms = (time.perf_counter() - start_time) * 1000
    logger.info(
        "Rollup invocation completed",
        request_id=request_id,
        pages_fetched=summary["pages_fetched"],
        shards_scanned=summary["shards_scanned"],
        parents_rolled_up=summary["parents_rolled_up"],
        shards_deleted=summary["shards_deleted"],
        processing_time_ms=round(processing_time_ms, 2),
    )

    return {"statusCode": 200, "body": summary}
