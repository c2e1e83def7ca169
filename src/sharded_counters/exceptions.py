"""Exceptions for sharded-counters."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import RollupResult


# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------


class ShardCounterError(Exception):
    """
    Base exception for all sharded-counters errors.

    All exceptions raised by this library inherit from this class,
    allowing callers to catch all library-specific errors with a single
    except clause.
    """

    pass


# ---------------------------------------------------------------------------
# Category Exceptions
# ---------------------------------------------------------------------------


class ValidationError(ShardCounterError, ValueError):
    """
    Base exception for caller contract violations.

    These indicate a programming error at the call site (bad configuration,
    reserved field usage, unsupported delta types), not a runtime condition
    to recover from.

    Attributes:
        field: Name of the offending field or setting
        value: The rejected value
        reason: Human-readable explanation
    """

    def __init__(self, field: str, value: object, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


class StoreError(ShardCounterError):
    """
    Base exception for document store errors raised by this library.

    Transport and permission errors from the underlying client (e.g.
    botocore ``ClientError``) are not wrapped and propagate verbatim.
    """

    pass


class RollupError(ShardCounterError):
    """Base exception for rollup pass errors."""

    pass


# ---------------------------------------------------------------------------
# Validation Exceptions
# ---------------------------------------------------------------------------


class InvalidDefinitionError(ValidationError):
    """Raised when a CounterDefinition is built with invalid settings."""

    pass


class ReservedFieldError(ValidationError):
    """
    Raised when a caller tries to write a reserved shard field.

    The reserved fields track the parent document and the creation tick
    of a shard. Writing them would corrupt rollup bookkeeping.
    """

    def __init__(self, field: str, reserved: tuple[str, ...]) -> None:
        self.reserved = reserved
        super().__init__(
            "field",
            field,
            f"reserved shard fields {list(reserved)} cannot be set by callers",
        )


class UnsupportedValueError(ValidationError, TypeError):
    """Raised when an increment delta is not an int or float."""

    def __init__(self, field: str, value: object) -> None:
        super().__init__(
            field,
            value,
            f"increment deltas must be int or float, got {type(value).__name__}",
        )


# ---------------------------------------------------------------------------
# Counter Exceptions
# ---------------------------------------------------------------------------


class NoFieldsSpecifiedError(ShardCounterError):
    """Raised when a counter update is issued without any pending deltas."""

    def __init__(self) -> None:
        super().__init__("No shard fields specified")


# ---------------------------------------------------------------------------
# Store Exceptions
# ---------------------------------------------------------------------------


class DocumentNotFoundError(StoreError):
    """Raised when a document does not exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Document not found: {path}")


class DocumentExistsError(StoreError):
    """Raised when creating a document that already exists."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Document already exists: {path}")


class BatchTooLargeError(StoreError):
    """Raised when a write batch exceeds the store's transaction size."""

    def __init__(self, size: int, maximum: int) -> None:
        self.size = size
        self.maximum = maximum
        super().__init__(f"Write batch has {size} operations, maximum is {maximum}")


# ---------------------------------------------------------------------------
# Rollup Exceptions
# ---------------------------------------------------------------------------


class RollupAbortedError(RollupError):
    """
    Raised when a rollup pass stops because a batch could not be committed.

    Batches committed before the failure stay committed. The failed parent's
    shards are untouched and will be picked up by a later pass while they
    remain inside the staleness window.

    Attributes:
        parent_path: Path of the parent whose batch failed
        cause: The underlying exception
        partial: Result counters for the batches committed before the failure
    """

    def __init__(
        self,
        parent_path: str,
        cause: Exception,
        partial: "RollupResult",
    ) -> None:
        self.parent_path = parent_path
        self.cause = cause
        self.partial = partial
        super().__init__(
            f"Rollup aborted at parent {parent_path} after "
            f"{partial.parents_rolled_up} committed batch(es): {cause}"
        )
