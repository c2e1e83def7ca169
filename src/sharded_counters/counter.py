"""Sharded counter: increment dispatch, shard initialization and rollup."""

import asyncio
import logging
import random
import time
from collections.abc import Callable, Mapping
from typing import Any

from .exceptions import (
    DocumentExistsError,
    DocumentNotFoundError,
    NoFieldsSpecifiedError,
    ReservedFieldError,
    UnsupportedValueError,
)
from .models import (
    CounterDefinition,
    DocumentRef,
    Increment,
    RollupResult,
    WriteResult,
    is_numeric,
)
from .rollup import RollupEngine
from .schema import CREATION_TICK, DOCUMENT_ID, RESERVED_FIELDS, is_reserved
from .store_protocol import DocumentStoreProtocol

logger = logging.getLogger(__name__)

# Shared by every counter in the process, seeded once from the OS
_shard_random = random.SystemRandom()


def check_field(field: str) -> None:
    """Raise ReservedFieldError if ``field`` is a reserved shard field."""
    if is_reserved(field):
        raise ReservedFieldError(field, RESERVED_FIELDS)


def check_template(template: Mapping[str, Any]) -> None:
    """Raise ReservedFieldError if a shard template sets a reserved field."""
    for key in template:
        check_field(key)


class CounterHandle:
    """
    Pending field deltas for one counter update.

    Build one per update, add deltas with ``increment_field`` and apply them
    with ``update``. Deltas for the same field accumulate.

    Example:
        handle = counter.handle()
        handle.increment_field("likes", 1)
        handle.increment_field("score", 2.5)
        await handle.update(DocumentRef("posts", "p1"))
    """

    def __init__(self, counter: "ShardedCounter") -> None:
        self._counter = counter
        self._fields: dict[str, int | float] = {}

    def __len__(self) -> int:
        return len(self._fields)

    @property
    def fields(self) -> dict[str, int | float]:
        """Copy of the pending deltas."""
        return dict(self._fields)

    def increment_field(self, field: str, delta: int | float) -> "CounterHandle":
        """
        Add ``delta`` to the pending change of ``field``.

        Raises:
            ReservedFieldError: If ``field`` is a reserved shard field
            UnsupportedValueError: If ``delta`` is not an int or float
        """
        check_field(field)
        if not is_numeric(delta):
            raise UnsupportedValueError(field, delta)
        self._fields[field] = self._fields.get(field, 0) + delta
        return self

    def reset(self) -> None:
        """Drop all pending deltas."""
        self._fields.clear()

    async def update(self, parent: DocumentRef) -> WriteResult:
        """Apply the pending deltas to a random shard of ``parent``."""
        return await self._counter.update_counters(parent, self)


class ShardedCounter:
    """
    Async sharded counter for one CounterDefinition.

    Writes go to one of ``shard_count`` shard documents under the parent,
    chosen uniformly at random. ``rollup`` periodically folds shards back
    into their parents.

    Args:
        definition: Counter configuration
        store: Document store backend
        rng: Random source for shard selection (default: process-wide SystemRandom)
        clock: Returns the current unix time in seconds
    """

    def __init__(
        self,
        definition: CounterDefinition,
        store: DocumentStoreProtocol,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.definition = definition
        self._store = store
        self._rng = rng or _shard_random
        self._clock = clock
        self._rollup_lock = asyncio.Lock()

    @property
    def store(self) -> DocumentStoreProtocol:
        return self._store

    async def close(self) -> None:
        """Close the underlying store."""
        await self._store.close()

    async def __aenter__(self) -> "ShardedCounter":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Shards
    # -------------------------------------------------------------------------

    def handle(self) -> CounterHandle:
        """Start a new set of pending deltas."""
        return CounterHandle(self)

    def shard_ref(self, parent: DocumentRef, index: int) -> DocumentRef:
        """Reference of shard ``index`` under ``parent``."""
        return parent.child(self.definition.name, str(index))

    def pick_shard(self) -> int:
        """Pick a shard index uniformly from ``[0, shard_count)``."""
        return self._rng.randrange(self.definition.shard_count)

    def next_tick(self) -> int:
        """Creation tick for writes made now: one full interval ahead."""
        return self.definition.tick(self._clock()) + 1

    async def create_shards(
        self,
        parent: DocumentRef,
        template: Mapping[str, Any] | None = None,
    ) -> list[DocumentRef]:
        """
        Create all ``shard_count`` shards of ``parent``.

        Each shard is seeded with ``template`` (the definition's default
        template if omitted). Existing shards are overwritten, which discards
        any counts not yet rolled up, so call this at most once per parent
        and before any increments.

        Raises:
            ReservedFieldError: If the template sets a reserved field
        """
        if template is None:
            template = self.definition.default_shard_template
        check_template(template)

        tick = self.next_tick()
        refs = []
        for index in range(self.definition.shard_count):
            ref = self.shard_ref(parent, index)
            await self._store.set(
                ref,
                {**template, DOCUMENT_ID: parent.path, CREATION_TICK: tick},
            )
            refs.append(ref)

        logger.debug("Created %d shards under %s", len(refs), parent.path)
        return refs

    async def update_counters(self, parent: DocumentRef, handle: CounterHandle) -> WriteResult:
        """
        Apply a handle's deltas to a randomly picked shard of ``parent``.

        The shard's creation tick is stamped one interval ahead so it cannot
        be rolled up while writers may still target it. A missing shard is
        created from the default template plus the deltas.

        Raises:
            NoFieldsSpecifiedError: If the handle holds no deltas
        """
        deltas = handle.fields
        if not deltas:
            raise NoFieldsSpecifiedError()

        shard = self.shard_ref(parent, self.pick_shard())
        tick = self.next_tick()

        updates: dict[str, Any] = {field: Increment(delta) for field, delta in deltas.items()}
        updates[CREATION_TICK] = tick

        try:
            return await self._store.update(shard, updates)
        except DocumentNotFoundError:
            logger.debug("Shard %s missing, creating it", shard.path)

        return await self._create_shard(parent, shard, deltas, tick, updates)

    async def increment(
        self,
        parent: DocumentRef,
        deltas: Mapping[str, int | float],
    ) -> WriteResult:
        """Shortcut for building a handle from ``deltas`` and updating ``parent``."""
        handle = self.handle()
        for field, delta in deltas.items():
            handle.increment_field(field, delta)
        return await self.update_counters(parent, handle)

    async def _create_shard(
        self,
        parent: DocumentRef,
        shard: DocumentRef,
        deltas: dict[str, int | float],
        tick: int,
        updates: dict[str, Any],
    ) -> WriteResult:
        template = dict(self.definition.default_shard_template)
        check_template(template)

        fields = template
        for field, delta in deltas.items():
            base = fields.get(field, 0)
            fields[field] = (base if is_numeric(base) else 0) + delta
        fields[DOCUMENT_ID] = parent.path
        fields[CREATION_TICK] = tick

        try:
            return await self._store.create(shard, fields)
        except DocumentExistsError:
            # Another writer created the shard first
            logger.warning("Shard %s created concurrently, retrying as update", shard.path)
            return await self._store.update(shard, updates)

    # -------------------------------------------------------------------------
    # Rollup
    # -------------------------------------------------------------------------

    async def rollup(self) -> RollupResult:
        """
        Fold every stale shard of this counter into its parent.

        Concurrent calls on the same ShardedCounter run one after another.

        Raises:
            RollupAbortedError: If a parent's batch fails to commit
        """
        async with self._rollup_lock:
            engine = RollupEngine(self.definition, self._store, clock=self._clock)
            return await engine.run()


class SyncShardedCounter:
    """
    Synchronous sharded counter.

    Wraps ShardedCounter, running async operations in an event loop owned
    by this instance.
    """

    def __init__(
        self,
        definition: CounterDefinition,
        store: DocumentStoreProtocol,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._counter = ShardedCounter(definition, store, rng=rng, clock=clock)
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def definition(self) -> CounterDefinition:
        return self._counter.definition

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        """Get or create the event loop."""
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
        return self._loop

    def _run(self, coro: Any) -> Any:
        """Run a coroutine in the event loop."""
        return self._get_loop().run_until_complete(coro)

    def close(self) -> None:
        """Close the underlying store and the event loop."""
        try:
            self._run(self._counter.close())
        finally:
            if self._loop is not None:
                self._loop.close()
                self._loop = None

    def __enter__(self) -> "SyncShardedCounter":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def handle(self) -> CounterHandle:
        """Start a new set of pending deltas; apply with ``update_counters``."""
        return self._counter.handle()

    def create_shards(
        self,
        parent: DocumentRef,
        template: Mapping[str, Any] | None = None,
    ) -> list[DocumentRef]:
        """Create all shards of ``parent``."""
        return self._run(self._counter.create_shards(parent, template))

    def update_counters(self, parent: DocumentRef, handle: CounterHandle) -> WriteResult:
        """Apply a handle's deltas to a random shard of ``parent``."""
        return self._run(self._counter.update_counters(parent, handle))

    def increment(self, parent: DocumentRef, deltas: Mapping[str, int | float]) -> WriteResult:
        """Apply ``deltas`` to a random shard of ``parent``."""
        return self._run(self._counter.increment(parent, deltas))

    def rollup(self) -> RollupResult:
        """Fold every stale shard into its parent."""
        return self._run(self._counter.rollup())
