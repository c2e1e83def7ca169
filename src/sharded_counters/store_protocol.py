"""Document store protocol for sharded counter backends.

This module defines the DocumentStoreProtocol that all storage backends must
implement. The protocol uses Python's typing.Protocol with @runtime_checkable
decorator, enabling duck typing and isinstance() checks at runtime.
"""

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import Document, DocumentRef, Page, WriteResult


@runtime_checkable
class WriteBatchProtocol(Protocol):
    """
    All-or-nothing group of writes.

    Operations are buffered locally and applied together by ``commit()``.
    Either every operation succeeds or none is applied.
    """

    def update(self, ref: "DocumentRef", updates: dict[str, Any]) -> None:
        """Queue an update; values may be ``Increment`` markers."""
        ...

    def delete(self, ref: "DocumentRef") -> None:
        """Queue a delete."""
        ...

    def __len__(self) -> int:
        """Number of queued operations."""
        ...

    async def commit(self) -> None:
        """
        Apply every queued operation atomically.

        Raises:
            DocumentNotFoundError: If an updated document does not exist
            BatchTooLargeError: If the backend cannot apply this many operations
        """
        ...


@runtime_checkable
class DocumentStoreProtocol(Protocol):
    """
    Protocol for sharded counter document stores.

    All storage backends (DynamoDB, In-Memory) must implement this protocol
    to work with ShardedCounter. The protocol is divided into:

    - **Lifecycle**: Connection management
    - **Document operations**: Point reads and writes
    - **Collection group queries**: Ordered, filtered, resumable scans
    - **Batches**: Atomic multi-document writes

    Example:
        # Custom backend implementation
        class MyStore:
            async def get(self, ref: DocumentRef) -> Document:
                ...

        # Duck typing - no inheritance needed
        store = MyStore()
        assert isinstance(store, DocumentStoreProtocol)  # True at runtime
    """

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """
        Close the backend connection and release resources.

        Safe to call multiple times.
        """
        ...

    # -------------------------------------------------------------------------
    # Document operations
    # -------------------------------------------------------------------------

    async def get(self, ref: "DocumentRef") -> "Document":
        """
        Read a document.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        ...

    async def create(self, ref: "DocumentRef", fields: dict[str, Any]) -> "WriteResult":
        """
        Create a document.

        Raises:
            DocumentExistsError: If the document already exists
        """
        ...

    async def set(self, ref: "DocumentRef", fields: dict[str, Any]) -> "WriteResult":
        """Create a document or overwrite all of its fields."""
        ...

    async def update(self, ref: "DocumentRef", updates: dict[str, Any]) -> "WriteResult":
        """
        Update fields of an existing document.

        Plain values replace the field. ``Increment`` values add their delta
        to the field, treating a missing field as zero.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        ...

    async def delete(self, ref: "DocumentRef") -> None:
        """Delete a document. Deleting a missing document is not an error."""
        ...

    # -------------------------------------------------------------------------
    # Collection group queries
    # -------------------------------------------------------------------------

    async def query_group(
        self,
        group: str,
        *,
        order_by: str,
        where_in: tuple[str, list[Any]],
        limit: int,
        start_after: "Document | None" = None,
    ) -> "Page":
        """
        Query every sub-collection named ``group``, across all parents.

        Args:
            group: Sub-collection name
            order_by: Field to sort by, ascending
            where_in: ``(field, values)`` filter, the field must equal one of the values
            limit: Maximum documents to return
            start_after: Resume after this document (the previous page's cursor)

        Returns:
            Page of at most ``limit`` documents. Fewer than ``limit`` means
            the query is exhausted.
        """
        ...

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    def batch(self) -> WriteBatchProtocol:
        """Start a new atomic write batch."""
        ...
