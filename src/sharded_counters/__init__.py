"""
sharded-counters: High-frequency counters sharded over a document store.

Increments are spread over ``shard_count`` shard documents under each
parent document, so concurrent writers do not contend on a single item.
A periodic rollup pass sums the shards of every parent, adds the sums to
the parents and deletes the consumed shards in one atomic batch per parent.

Example:
    from sharded_counters import CounterDefinition, DocumentRef, Repository, ShardedCounter

    likes = CounterDefinition(
        name="likes",
        shard_count=4,
        default_shard_template={"count": 0},
        rollup_interval=60,
    )
    counter = ShardedCounter(likes, Repository("my-table", region="us-east-1"))

    post = DocumentRef("posts", "p1")
    handle = counter.handle()
    handle.increment_field("count", 1)
    await handle.update(post)

    # Periodically, e.g. from a scheduled job
    result = await counter.rollup()
"""

# ---------------------------------------------------------------------------
# Lazy imports
# ---------------------------------------------------------------------------
# Repository is imported lazily via __getattr__ below so the counter engine
# and the in-memory store can be used without aioboto3 installed.
# ---------------------------------------------------------------------------
from importlib.metadata import PackageNotFoundError, version
from typing import TYPE_CHECKING

from .counter import CounterHandle, ShardedCounter, SyncShardedCounter
from .exceptions import (
    BatchTooLargeError,
    DocumentExistsError,
    DocumentNotFoundError,
    InvalidDefinitionError,
    NoFieldsSpecifiedError,
    ReservedFieldError,
    RollupAbortedError,
    RollupError,
    ShardCounterError,
    StoreError,
    UnsupportedValueError,
    ValidationError,
)
from .memory import InMemoryStore
from .models import (
    CounterDefinition,
    Document,
    DocumentRef,
    Increment,
    Page,
    RollupResult,
    WriteResult,
)
from .rollup import RollupEngine, aggregate_shards
from .store_protocol import DocumentStoreProtocol, WriteBatchProtocol

if TYPE_CHECKING:
    from .repository import Repository as Repository

try:
    __version__ = version("sharded-counters")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Main classes
    "ShardedCounter",
    "SyncShardedCounter",
    "CounterHandle",
    "RollupEngine",
    "aggregate_shards",
    # Stores
    "DocumentStoreProtocol",
    "WriteBatchProtocol",
    "Repository",
    "InMemoryStore",
    # Models
    "CounterDefinition",
    "Document",
    "DocumentRef",
    "Increment",
    "Page",
    "RollupResult",
    "WriteResult",
    # Exceptions - Base
    "ShardCounterError",
    # Exceptions - Categories
    "ValidationError",
    "StoreError",
    "RollupError",
    # Exceptions - Validation
    "InvalidDefinitionError",
    "ReservedFieldError",
    "UnsupportedValueError",
    # Exceptions - Counter
    "NoFieldsSpecifiedError",
    # Exceptions - Store
    "DocumentNotFoundError",
    "DocumentExistsError",
    "BatchTooLargeError",
    # Exceptions - Rollup
    "RollupAbortedError",
]


def __getattr__(name: str) -> type:
    """Lazy import for modules that require aioboto3."""
    if name == "Repository":
        from .repository import Repository

        return Repository
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
