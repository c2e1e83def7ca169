"""In-memory document store for tests and local development."""

import copy
import time
from typing import Any

from .exceptions import DocumentExistsError, DocumentNotFoundError
from .models import Document, DocumentRef, Increment, Page, WriteResult


class InMemoryStore:
    """
    Process-local implementation of DocumentStoreProtocol.

    Documents are kept in a dict keyed by path. Every operation completes
    without yielding to the event loop, so each call (and each batch commit)
    is atomic with respect to other coroutines.
    """

    def __init__(self) -> None:
        self._docs: dict[str, tuple[DocumentRef, dict[str, Any]]] = {}
        self.commits = 0

    async def close(self) -> None:
        """Nothing to release."""

    def _now_ms(self) -> int:
        return int(time.time() * 1000)

    def _result(self, ref: DocumentRef) -> WriteResult:
        return WriteResult(path=ref.path, update_time_ms=self._now_ms())

    # -------------------------------------------------------------------------
    # Document operations
    # -------------------------------------------------------------------------

    async def get(self, ref: DocumentRef) -> Document:
        entry = self._docs.get(ref.path)
        if entry is None:
            raise DocumentNotFoundError(ref.path)
        return Document(ref=ref, fields=copy.deepcopy(entry[1]))

    async def create(self, ref: DocumentRef, fields: dict[str, Any]) -> WriteResult:
        if ref.path in self._docs:
            raise DocumentExistsError(ref.path)
        self._docs[ref.path] = (ref, _plain(fields))
        return self._result(ref)

    async def set(self, ref: DocumentRef, fields: dict[str, Any]) -> WriteResult:
        self._docs[ref.path] = (ref, _plain(fields))
        return self._result(ref)

    async def update(self, ref: DocumentRef, updates: dict[str, Any]) -> WriteResult:
        entry = self._docs.get(ref.path)
        if entry is None:
            raise DocumentNotFoundError(ref.path)
        _apply(entry[1], updates)
        return self._result(ref)

    async def delete(self, ref: DocumentRef) -> None:
        self._docs.pop(ref.path, None)

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
        start_after: Document | None = None,
    ) -> Page:
        where_field, values = where_in
        allowed = set(values)

        matches = [
            (fields[order_by], path, ref, fields)
            for path, (ref, fields) in self._docs.items()
            if ref.parent is not None
            and ref.collection == group
            and order_by in fields
            and fields.get(where_field) in allowed
        ]
        matches.sort(key=lambda m: (m[0], m[1]))

        if start_after is not None:
            after = (start_after.fields[order_by], start_after.ref.path)
            matches = [m for m in matches if (m[0], m[1]) > after]

        docs = [Document(ref=ref, fields=copy.deepcopy(fields)) for _, _, ref, fields in matches]
        docs = docs[:limit]
        return Page(documents=docs, cursor=docs[-1] if docs else None)

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    def batch(self) -> "InMemoryWriteBatch":
        return InMemoryWriteBatch(self)

    # -------------------------------------------------------------------------
    # Inspection helpers
    # -------------------------------------------------------------------------

    def documents(self, collection: str | None = None) -> list[Document]:
        """All stored documents, optionally restricted to one collection name."""
        return [
            Document(ref=ref, fields=copy.deepcopy(fields))
            for ref, fields in self._docs.values()
            if collection is None or ref.collection == collection
        ]


class InMemoryWriteBatch:
    """Atomic batch for InMemoryStore."""

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store
        self._ops: list[tuple[str, DocumentRef, dict[str, Any] | None]] = []

    def update(self, ref: DocumentRef, updates: dict[str, Any]) -> None:
        self._ops.append(("update", ref, updates))

    def delete(self, ref: DocumentRef) -> None:
        self._ops.append(("delete", ref, None))

    def __len__(self) -> int:
        return len(self._ops)

    async def commit(self) -> None:
        docs = self._store._docs

        # Validate every precondition before touching any document
        for op, ref, _ in self._ops:
            if op == "update" and ref.path not in docs:
                raise DocumentNotFoundError(ref.path)

        staged = {path: (ref, copy.deepcopy(fields)) for path, (ref, fields) in docs.items()}
        for op, ref, updates in self._ops:
            if op == "update":
                assert updates is not None
                _apply(staged[ref.path][1], updates)
            else:
                staged.pop(ref.path, None)

        docs.clear()
        docs.update(staged)
        self._store.commits += 1


def _plain(fields: dict[str, Any]) -> dict[str, Any]:
    """Resolve Increment markers in a full-document write to their deltas."""
    return {
        key: value.delta if isinstance(value, Increment) else copy.deepcopy(value)
        for key, value in fields.items()
    }


def _apply(fields: dict[str, Any], updates: dict[str, Any]) -> None:
    for key, value in updates.items():
        if isinstance(value, Increment):
            fields[key] = fields.get(key, 0) + value.delta
        else:
            fields[key] = copy.deepcopy(value)
