"""Tests for InMemoryStore."""

import pytest

from sharded_counters import DocumentStoreProtocol, WriteBatchProtocol
from sharded_counters.exceptions import DocumentExistsError, DocumentNotFoundError
from sharded_counters.memory import InMemoryStore
from sharded_counters.models import DocumentRef, Increment

POST = DocumentRef("posts", "p1")


def shard(parent: DocumentRef, index: int) -> DocumentRef:
    return parent.child("likes", str(index))


class TestProtocol:
    """InMemoryStore satisfies the store protocols."""

    def test_is_document_store(self, store):
        assert isinstance(store, DocumentStoreProtocol)

    def test_batch_is_write_batch(self, store):
        assert isinstance(store.batch(), WriteBatchProtocol)


class TestDocumentOperations:
    """Point reads and writes."""

    async def test_get_missing_raises(self, store):
        with pytest.raises(DocumentNotFoundError) as exc_info:
            await store.get(POST)
        assert exc_info.value.path == "posts/p1"

    async def test_create_then_get(self, store):
        result = await store.create(POST, {"count": 1, "title": "hello"})

        doc = await store.get(POST)

        assert result.path == "posts/p1"
        assert doc.ref == POST
        assert doc.fields == {"count": 1, "title": "hello"}

    async def test_create_existing_raises(self, store):
        await store.create(POST, {"count": 1})
        with pytest.raises(DocumentExistsError):
            await store.create(POST, {"count": 2})

    async def test_set_overwrites(self, store):
        await store.set(POST, {"count": 1, "extra": True})
        await store.set(POST, {"count": 7})
        assert (await store.get(POST)).fields == {"count": 7}

    async def test_update_increment_treats_missing_as_zero(self, store):
        await store.create(POST, {"count": 1})

        await store.update(POST, {"count": Increment(4), "views": Increment(2.5), "title": "x"})

        assert (await store.get(POST)).fields == {"count": 5, "views": 2.5, "title": "x"}

    async def test_update_missing_raises(self, store):
        with pytest.raises(DocumentNotFoundError):
            await store.update(POST, {"count": Increment(1)})

    async def test_delete_is_idempotent(self, store):
        await store.create(POST, {"count": 1})
        await store.delete(POST)
        await store.delete(POST)
        with pytest.raises(DocumentNotFoundError):
            await store.get(POST)

    async def test_returned_fields_are_copies(self, store):
        await store.create(POST, {"tags": ["a"]})
        doc = await store.get(POST)
        doc.fields["tags"].append("b")
        assert (await store.get(POST)).fields == {"tags": ["a"]}


class TestQueryGroup:
    """Collection group queries."""

    @pytest.fixture
    async def populated(self, store):
        for parent_id in ["p2", "p1", "p3"]:
            parent = DocumentRef("posts", parent_id)
            for index in range(2):
                await store.set(
                    shard(parent, index),
                    {"count": 1, "did": parent.path, "ct": 100},
                )
        # Outside the tick filter
        await store.set(shard(DocumentRef("posts", "p4"), 0), {"did": "posts/p4", "ct": 50})
        # Same collection name at top level is not part of the group
        await store.set(DocumentRef("likes", "x"), {"did": "posts/p0", "ct": 100})
        # Missing the order field
        await store.set(shard(DocumentRef("posts", "p5"), 0), {"ct": 100})
        return store

    async def test_orders_by_parent_and_filters(self, populated):
        page = await populated.query_group(
            "likes", order_by="did", where_in=("ct", [100, 99]), limit=10
        )

        assert [d.ref.path for d in page.documents] == [
            "posts/p1/likes/0",
            "posts/p1/likes/1",
            "posts/p2/likes/0",
            "posts/p2/likes/1",
            "posts/p3/likes/0",
            "posts/p3/likes/1",
        ]
        assert page.cursor == page.documents[-1]

    async def test_paginates_with_cursor(self, populated):
        first = await populated.query_group("likes", order_by="did", where_in=("ct", [100]), limit=4)
        second = await populated.query_group(
            "likes", order_by="did", where_in=("ct", [100]), limit=4, start_after=first.cursor
        )

        assert len(first.documents) == 4
        assert [d.ref.path for d in second.documents] == [
            "posts/p3/likes/0",
            "posts/p3/likes/1",
        ]

    async def test_empty_page_has_no_cursor(self, store):
        page = await store.query_group("likes", order_by="did", where_in=("ct", [1]), limit=4)
        assert page.documents == []
        assert page.cursor is None


class TestBatch:
    """Atomic batches."""

    async def test_commit_applies_all(self, store):
        await store.create(POST, {"count": 0})
        await store.set(shard(POST, 0), {"count": 3})

        batch = store.batch()
        batch.update(POST, {"count": Increment(3)})
        batch.delete(shard(POST, 0))
        assert len(batch) == 2
        await batch.commit()

        assert (await store.get(POST)).fields == {"count": 3}
        assert store.documents("likes") == []
        assert store.commits == 1

    async def test_failed_commit_applies_nothing(self, store):
        await store.set(shard(POST, 0), {"count": 3})

        batch = store.batch()
        batch.delete(shard(POST, 0))
        batch.update(POST, {"count": Increment(3)})

        with pytest.raises(DocumentNotFoundError):
            await batch.commit()

        assert (await store.get(shard(POST, 0))).fields == {"count": 3}
        assert store.commits == 0
