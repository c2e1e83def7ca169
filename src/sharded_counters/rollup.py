"""Rollup of stale shards into their parent documents."""

import logging
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .exceptions import RollupAbortedError
from .models import (
    CounterDefinition,
    Document,
    DocumentRef,
    Increment,
    RollupResult,
    is_numeric,
    staleness_window,
)
from .schema import CREATION_TICK, DOCUMENT_ID, is_reserved
from .store_protocol import DocumentStoreProtocol

logger = logging.getLogger(__name__)


@dataclass
class ShardGroup:
    """All shards of one parent collected during a scan."""

    parent_path: str
    shards: list[Document]

    @property
    def parent_ref(self) -> DocumentRef:
        parent = self.shards[0].ref.parent
        if parent is None:
            raise ValueError(f"Shard {self.shards[0].ref.path} has no parent document")
        return parent


def aggregate_shards(shards: Iterable[Document]) -> dict[str, int | float]:
    """
    Sum every non-reserved numeric field across shards.

    Non-numeric fields (strings, bools, maps) are ignored. Integer fields
    stay integers unless a float is mixed in.
    """
    totals: dict[str, int | float] = {}
    for shard in shards:
        for key, value in shard.fields.items():
            if is_reserved(key) or not is_numeric(value):
                continue
            totals[key] = totals.get(key, 0) + value
    return totals


class ShardGroupBuffer:
    """
    Splits a stream of shards ordered by parent into per-parent groups.

    Only the trailing group is held back, since the next page may still
    contain shards of the same parent. Every other group is released as
    soon as a shard of a different parent arrives.
    """

    def __init__(self) -> None:
        self._pending: deque[Document] = deque()

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending_parent(self) -> str | None:
        """Parent of the incomplete trailing group, if any."""
        return self._pending[0].parent_path if self._pending else None

    def push(self, shards: Iterable[Document]) -> list[ShardGroup]:
        """Add shards and return the groups that are now complete."""
        completed = []
        for shard in shards:
            if self._pending and shard.parent_path != self.pending_parent:
                completed.append(self._drain())
            self._pending.append(shard)
        return completed

    def flush(self) -> ShardGroup | None:
        """Release the trailing group once no more pages exist."""
        if not self._pending:
            return None
        return self._drain()

    def _drain(self) -> ShardGroup:
        parent_path = self.pending_parent
        assert parent_path is not None
        shards = list(self._pending)
        self._pending.clear()
        return ShardGroup(parent_path=parent_path, shards=shards)


class RollupEngine:
    """
    Folds stale shards of one counter definition into their parents.

    A pass scans the shard collection group across all parents, ordered by
    parent and restricted to shards whose creation tick is inside the
    trailing window. Each parent's shards are summed and, in one atomic
    batch, the sum is added to the parent and the shards are deleted.

    Passes over the same definition must not overlap; see
    ``ShardedCounter.rollup`` which serializes them.
    """

    def __init__(
        self,
        definition: CounterDefinition,
        store: DocumentStoreProtocol,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.definition = definition
        self._store = store
        self._clock = clock

    async def run(self) -> RollupResult:
        """
        Run one full rollup pass.

        Returns:
            RollupResult with counters for the pass

        Raises:
            RollupAbortedError: If a parent's batch fails to commit. Batches
                committed before the failure are kept.
        """
        start_time = time.perf_counter()
        tick = self.definition.tick(self._clock())
        window = staleness_window(tick)
        page_size = self.definition.shard_count

        logger.debug(
            "Rollup pass started for %s (tick=%d, window=%d..%d)",
            self.definition.name,
            tick,
            window[-1],
            window[0],
        )

        result = RollupResult()
        buffer = ShardGroupBuffer()
        cursor: Document | None = None

        while True:
            page = await self._store.query_group(
                self.definition.name,
                order_by=DOCUMENT_ID,
                where_in=(CREATION_TICK, window),
                limit=page_size,
                start_after=cursor,
            )
            result.pages_fetched += 1
            result.shards_scanned += len(page.documents)

            exhausted = len(page.documents) < page_size
            groups = buffer.push(page.documents)
            if exhausted:
                tail = buffer.flush()
                if tail is not None:
                    groups.append(tail)

            for group in groups:
                await self._commit_group(group, result)

            if exhausted:
                break
            cursor = page.cursor

        logger.info(
            "Rollup pass completed for %s: %d parents, %d shards deleted, %d pages in %.2fms",
            self.definition.name,
            result.parents_rolled_up,
            result.shards_deleted,
            result.pages_fetched,
            (time.perf_counter() - start_time) * 1000,
        )
        return result

    async def _commit_group(self, group: ShardGroup, result: RollupResult) -> None:
        """Add a group's sum to its parent and delete its shards atomically."""
        totals = aggregate_shards(group.shards)
        increments = {key: value for key, value in totals.items() if value != 0}

        batch = self._store.batch()
        if increments:
            batch.update(
                group.parent_ref,
                {key: Increment(value) for key, value in increments.items()},
            )
        for shard in group.shards:
            batch.delete(shard.ref)

        try:
            await batch.commit()
        except Exception as e:
            logger.error(
                "Rollup batch failed for %s (%d shards): %s",
                group.parent_path,
                len(group.shards),
                e,
            )
            raise RollupAbortedError(group.parent_path, e, result) from e

        result.parents_rolled_up += 1
        result.shards_deleted += len(group.shards)
        if increments:
            result.increments_applied += 1
            applied = result.totals.setdefault(group.parent_path, {})
            for key, value in increments.items():
                applied[key] = applied.get(key, 0) + value

        logger.debug(
            "Rolled up %d shards into %s: %s",
            len(group.shards),
            group.parent_path,
            increments,
        )
