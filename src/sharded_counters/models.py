"""Core models for sharded-counters."""

import json
import math
import os
from dataclasses import dataclass, field
from typing import Any

from .exceptions import InvalidDefinitionError
from .schema import CREATION_TICK, DOCUMENT_ID, RESERVED_FIELDS, STALENESS_WINDOW_TICKS


@dataclass(frozen=True)
class DocumentRef:
    """
    Reference to a document in the store.

    Top-level documents have no parent. Shards live one level down, in a
    sub-collection of their parent document.

    Attributes:
        collection: Collection the document belongs to
        id: Document id within the collection
        parent: Owning document for sub-collection documents
    """

    collection: str
    id: str
    parent: "DocumentRef | None" = None

    def __post_init__(self) -> None:
        if not self.collection or "/" in self.collection:
            raise ValueError(f"Invalid collection name: {self.collection!r}")
        if not self.id or "/" in self.id:
            raise ValueError(f"Invalid document id: {self.id!r}")

    def child(self, collection: str, doc_id: str) -> "DocumentRef":
        """Reference a document in a sub-collection of this document."""
        return DocumentRef(collection=collection, id=doc_id, parent=self)

    @property
    def path(self) -> str:
        """Slash-joined path from the root collection, e.g. ``posts/p1/likes/3``."""
        own = f"{self.collection}/{self.id}"
        if self.parent is None:
            return own
        return f"{self.parent.path}/{own}"

    @classmethod
    def from_path(cls, path: str) -> "DocumentRef":
        """Parse a slash-joined path back into a reference."""
        parts = path.strip("/").split("/")
        if len(parts) < 2 or len(parts) % 2:
            raise ValueError(f"Invalid document path: {path!r}")
        ref: DocumentRef | None = None
        for i in range(0, len(parts), 2):
            ref = cls(collection=parts[i], id=parts[i + 1], parent=ref)
        assert ref is not None
        return ref

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True)
class Increment:
    """Write value that adds ``delta`` to a field, treating a missing field as zero."""

    delta: int | float


@dataclass
class Document:
    """Snapshot of a document read from the store."""

    ref: DocumentRef
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def parent_path(self) -> str | None:
        """Parent back-reference stored on shard documents."""
        return self.fields.get(DOCUMENT_ID)

    @property
    def creation_tick(self) -> int | None:
        """Tick stamped by the last write to a shard document."""
        return self.fields.get(CREATION_TICK)


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a single document write."""

    path: str
    update_time_ms: int


@dataclass
class Page:
    """
    One page of a collection group query.

    Attributes:
        documents: Matching documents in query order
        cursor: Last document of the page, pass as ``start_after`` to resume
    """

    documents: list[Document]
    cursor: Document | None = None


def is_numeric(value: Any) -> bool:
    """True for int and float values; bools are not counts."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def current_tick(now: float, rollup_interval: float) -> int:
    """Tick index for a unix timestamp: ``floor(now / rollup_interval)``."""
    return math.floor(now / rollup_interval)


def staleness_window(tick: int) -> list[int]:
    """Trailing ticks eligible for rollup, newest first."""
    return [tick - i for i in range(STALENESS_WINDOW_TICKS)]


@dataclass(frozen=True)
class CounterDefinition:
    """
    Static configuration of one logical sharded counter.

    Attributes:
        name: Sub-collection name holding the shards under each parent
        shard_count: Number of shards per parent (write fan-out)
        default_shard_template: Initial field values of lazily created shards
        rollup_interval: Seconds per tick
    """

    name: str
    shard_count: int
    default_shard_template: dict[str, Any] = field(default_factory=dict)
    rollup_interval: float = 60

    def __post_init__(self) -> None:
        if not self.name or "/" in self.name:
            raise InvalidDefinitionError("name", self.name, "must be non-empty without '/'")
        if self.shard_count < 1:
            raise InvalidDefinitionError("shard_count", self.shard_count, "must be at least 1")
        if self.rollup_interval <= 0:
            raise InvalidDefinitionError(
                "rollup_interval", self.rollup_interval, "must be positive"
            )
        for key in self.default_shard_template:
            if key in RESERVED_FIELDS:
                raise InvalidDefinitionError(
                    "default_shard_template",
                    key,
                    f"reserved shard fields {list(RESERVED_FIELDS)} cannot be templated",
                )

    def tick(self, now: float) -> int:
        """Current tick for this counter's interval."""
        return current_tick(now, self.rollup_interval)

    def shard_ids(self) -> list[str]:
        """Document ids of all shards, ``"0"`` to ``str(shard_count - 1)``."""
        return [str(i) for i in range(self.shard_count)]

    @classmethod
    def from_environment(cls, prefix: str = "") -> "CounterDefinition":
        """
        Create a CounterDefinition from environment variables.

        Reads ``{prefix}COUNTER_NAME`` (required), ``{prefix}SHARD_COUNT``
        (default 10), ``{prefix}ROLLUP_INTERVAL`` (default 60) and
        ``{prefix}SHARD_TEMPLATE`` (JSON object, default empty).
        """
        return cls(
            name=os.environ[f"{prefix}COUNTER_NAME"],
            shard_count=int(os.environ.get(f"{prefix}SHARD_COUNT", "10")),
            default_shard_template=json.loads(os.environ.get(f"{prefix}SHARD_TEMPLATE", "{}")),
            rollup_interval=float(os.environ.get(f"{prefix}ROLLUP_INTERVAL", "60")),
        )


@dataclass
class RollupResult:
    """Counters describing one rollup pass."""

    pages_fetched: int = 0
    shards_scanned: int = 0
    parents_rolled_up: int = 0
    shards_deleted: int = 0
    increments_applied: int = 0
    totals: dict[str, dict[str, int | float]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON responses."""
        return {
            "pages_fetched": self.pages_fetched,
            "shards_scanned": self.shards_scanned,
            "parents_rolled_up": self.parents_rolled_up,
            "shards_deleted": self.shards_deleted,
            "increments_applied": self.increments_applied,
            "totals": self.totals,
        }
