"""DynamoDB document store for sharded counters."""

import time
from typing import Any

import aioboto3  # type: ignore[import-untyped]
from botocore.exceptions import ClientError

from . import schema
from .exceptions import BatchTooLargeError, DocumentExistsError, DocumentNotFoundError
from .models import Document, DocumentRef, Increment, Page, WriteResult


class Repository:
    """
    Async DynamoDB implementation of DocumentStoreProtocol.

    Single-table layout: a top-level document is one item keyed by its
    collection and id, and its sub-collection documents (shards) share the
    parent's partition key. Shards are also projected into GSI1, partitioned
    by collection name and sorted by parent, which backs collection group
    queries.
    """

    def __init__(
        self,
        table_name: str = schema.DEFAULT_TABLE_NAME,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self.table_name = table_name
        self.region = region
        self.endpoint_url = endpoint_url
        self._session: aioboto3.Session | None = None
        self._client: Any = None

    async def _get_client(self) -> Any:
        """Get or create the DynamoDB client."""
        if self._client is None:
            self._session = aioboto3.Session()
            self._client = await self._session.client(
                "dynamodb",
                region_name=self.region,
                endpoint_url=self.endpoint_url,
            ).__aenter__()
        return self._client

    async def close(self) -> None:
        """Close the DynamoDB client."""
        if self._client is not None:
            await self._client.__aexit__(None, None, None)
            self._client = None
            self._session = None

    async def __aenter__(self) -> "Repository":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _now_ms(self) -> int:
        """Current time in milliseconds."""
        return int(time.time() * 1000)

    # -------------------------------------------------------------------------
    # Table operations
    # -------------------------------------------------------------------------

    async def create_table(self) -> None:
        """Create the DynamoDB table if it doesn't exist."""
        client = await self._get_client()
        definition = schema.get_table_definition(self.table_name)

        try:
            await client.create_table(**definition)
            # Wait for table to be active
            waiter = client.get_waiter("table_exists")
            await waiter.wait(TableName=self.table_name)
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceInUseException":
                raise

    async def delete_table(self) -> None:
        """Delete the DynamoDB table."""
        client = await self._get_client()
        try:
            await client.delete_table(TableName=self.table_name)
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceNotFoundException":
                raise

    # -------------------------------------------------------------------------
    # Document operations
    # -------------------------------------------------------------------------

    async def get(self, ref: DocumentRef) -> Document:
        client = await self._get_client()
        response = await client.get_item(
            TableName=self.table_name,
            Key=self._key(ref),
            ConsistentRead=True,
        )
        item = response.get("Item")
        if not item:
            raise DocumentNotFoundError(ref.path)
        return self._deserialize_document(item)

    async def create(self, ref: DocumentRef, fields: dict[str, Any]) -> WriteResult:
        client = await self._get_client()
        try:
            await client.put_item(
                TableName=self.table_name,
                Item=self._build_item(ref, fields),
                ConditionExpression="attribute_not_exists(PK)",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise DocumentExistsError(ref.path) from e
            raise
        return WriteResult(path=ref.path, update_time_ms=self._now_ms())

    async def set(self, ref: DocumentRef, fields: dict[str, Any]) -> WriteResult:
        client = await self._get_client()
        await client.put_item(TableName=self.table_name, Item=self._build_item(ref, fields))
        return WriteResult(path=ref.path, update_time_ms=self._now_ms())

    async def update(self, ref: DocumentRef, updates: dict[str, Any]) -> WriteResult:
        client = await self._get_client()
        try:
            await client.update_item(**self.build_update(ref, updates))
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise DocumentNotFoundError(ref.path) from e
            raise
        return WriteResult(path=ref.path, update_time_ms=self._now_ms())

    async def delete(self, ref: DocumentRef) -> None:
        client = await self._get_client()
        await client.delete_item(TableName=self.table_name, Key=self._key(ref))

    def build_update(self, ref: DocumentRef, updates: dict[str, Any]) -> dict[str, Any]:
        """
        Build UpdateItem parameters for a document update.

        ``Increment`` values become ``if_not_exists(field, 0) + delta`` so a
        missing field counts as zero. The update is conditional on the item
        existing.
        """
        if not updates:
            raise ValueError(f"No fields to update for {ref.path}")

        # Every placeholder must be referenced by the expression
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        assignments: list[str] = []

        for i, (key, value) in enumerate(updates.items()):
            if schema.is_reserved(key):
                path = f"#r{i}"
                names[path] = key
            else:
                path = f"#data.#f{i}"
                names["#data"] = "data"
                names[f"#f{i}"] = key

            if isinstance(value, Increment):
                values[":zero"] = {"N": "0"}
                values[f":v{i}"] = self._serialize_value(value.delta)
                assignments.append(f"{path} = if_not_exists({path}, :zero) + :v{i}")
            else:
                values[f":v{i}"] = self._serialize_value(value)
                assignments.append(f"{path} = :v{i}")

        if schema.DOCUMENT_ID in updates and ref.parent is not None:
            parent_path = updates[schema.DOCUMENT_ID]
            values[":gsi1pk"] = {"S": schema.gsi1_pk_group(ref.collection)}
            values[":gsi1sk"] = {"S": schema.gsi1_sk_shard(parent_path, ref.id)}
            assignments.append("GSI1PK = :gsi1pk")
            assignments.append("GSI1SK = :gsi1sk")

        return {
            "TableName": self.table_name,
            "Key": self._key(ref),
            "UpdateExpression": "SET " + ", ".join(assignments),
            "ConditionExpression": "attribute_exists(PK)",
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
        }

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
        """
        Query shards of every parent through GSI1, ordered by parent.

        DynamoDB applies ``Limit`` before the filter, so this keeps reading
        until ``limit`` matches are collected or the index is exhausted.
        """
        if order_by != schema.DOCUMENT_ID:
            raise ValueError(f"Collection group queries can only be ordered by {schema.DOCUMENT_ID!r}")

        client = await self._get_client()
        where_field, where_values = where_in

        names: dict[str, str] = {}
        if schema.is_reserved(where_field):
            names["#w"] = where_field
            filter_path = "#w"
        else:
            names["#data"] = "data"
            names["#w"] = where_field
            filter_path = "#data.#w"

        values: dict[str, Any] = {":pk": {"S": schema.gsi1_pk_group(group)}}
        placeholders = []
        for i, value in enumerate(where_values):
            values[f":in{i}"] = self._serialize_value(value)
            placeholders.append(f":in{i}")

        query_args: dict[str, Any] = {
            "TableName": self.table_name,
            "IndexName": schema.GSI1_NAME,
            "KeyConditionExpression": "GSI1PK = :pk",
            "FilterExpression": f"{filter_path} IN ({', '.join(placeholders)})",
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
            "Limit": limit,
        }

        if start_after is not None:
            query_args["ExclusiveStartKey"] = self._index_key(start_after)

        docs: list[Document] = []
        while True:
            response = await client.query(**query_args)
            docs.extend(self._deserialize_document(item) for item in response.get("Items", []))
            if len(docs) >= limit:
                break
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            query_args["ExclusiveStartKey"] = last_key

        docs = docs[:limit]
        return Page(documents=docs, cursor=docs[-1] if docs else None)

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    def batch(self) -> "DynamoWriteBatch":
        return DynamoWriteBatch(self)

    async def transact_write(self, items: list[dict[str, Any]]) -> None:
        """Execute a transactional write."""
        if not items:
            return

        client = await self._get_client()
        await client.transact_write_items(TransactItems=items)

    # -------------------------------------------------------------------------
    # Key helpers
    # -------------------------------------------------------------------------

    def _key(self, ref: DocumentRef) -> dict[str, Any]:
        """Primary key of a document."""
        for part in (ref.collection, ref.id):
            if "#" in part:
                raise ValueError(f"'#' is not allowed in document paths: {ref.path}")

        if ref.parent is None:
            return {
                "PK": {"S": schema.pk_document(ref.collection, ref.id)},
                "SK": {"S": schema.sk_meta()},
            }
        if ref.parent.parent is not None:
            raise ValueError(f"Only one level of sub-collections is supported: {ref.path}")
        return {
            **self._key(ref.parent),
            "SK": {"S": schema.sk_sub(ref.collection, ref.id)},
        }

    def _index_key(self, doc: Document) -> dict[str, Any]:
        """GSI1 key of a shard document, used as a query cursor."""
        parent_path = doc.parent_path
        if parent_path is None:
            raise ValueError(f"Document {doc.ref.path} has no {schema.DOCUMENT_ID!r} field")
        return {
            **self._key(doc.ref),
            "GSI1PK": {"S": schema.gsi1_pk_group(doc.ref.collection)},
            "GSI1SK": {"S": schema.gsi1_sk_shard(parent_path, doc.ref.id)},
        }

    def _build_item(self, ref: DocumentRef, fields: dict[str, Any]) -> dict[str, Any]:
        """Build a full item for put_item."""
        data = {k: v for k, v in fields.items() if not schema.is_reserved(k)}
        item: dict[str, Any] = {
            **self._key(ref),
            "data": {"M": self._serialize_map(data)},
        }

        for key in schema.RESERVED_FIELDS:
            if key in fields:
                item[key] = self._serialize_value(fields[key])

        # Shards are projected into the collection group index
        if ref.parent is not None and schema.DOCUMENT_ID in fields:
            item["GSI1PK"] = {"S": schema.gsi1_pk_group(ref.collection)}
            item["GSI1SK"] = {"S": schema.gsi1_sk_shard(fields[schema.DOCUMENT_ID], ref.id)}

        return item

    # -------------------------------------------------------------------------
    # Serialization helpers
    # -------------------------------------------------------------------------

    def _serialize_map(self, data: dict[str, Any]) -> dict[str, Any]:
        """Serialize a Python dict to DynamoDB map format."""
        return {key: self._serialize_value(value) for key, value in data.items()}

    def _serialize_value(self, value: Any) -> dict[str, Any]:
        """Serialize a single value to DynamoDB format."""
        if isinstance(value, Increment):
            value = value.delta
        if isinstance(value, str):
            return {"S": value}
        elif isinstance(value, bool):
            return {"BOOL": value}
        elif isinstance(value, (int, float)):
            return {"N": str(value)}
        elif isinstance(value, dict):
            return {"M": self._serialize_map(value)}
        elif isinstance(value, list):
            return {"L": [self._serialize_value(v) for v in value]}
        elif value is None:
            return {"NULL": True}
        return {"S": str(value)}

    def _deserialize_map(self, data: dict[str, Any]) -> dict[str, Any]:
        """Deserialize a DynamoDB map to Python dict."""
        return {key: self._deserialize_value(value) for key, value in data.items()}

    def _deserialize_value(self, value: dict[str, Any]) -> Any:
        """Deserialize a single DynamoDB value."""
        if "S" in value:
            return value["S"]
        elif "N" in value:
            num_str = value["N"]
            if "." in num_str or "e" in num_str.lower():
                return float(num_str)
            return int(num_str)
        elif "BOOL" in value:
            return value["BOOL"]
        elif "M" in value:
            return self._deserialize_map(value["M"])
        elif "L" in value:
            return [self._deserialize_value(v) for v in value["L"]]
        elif "NULL" in value:
            return None
        return None

    def _deserialize_document(self, item: dict[str, Any]) -> Document:
        """Deserialize a DynamoDB item to Document."""
        collection, doc_id = schema.parse_document_pk(item["PK"]["S"])
        ref = DocumentRef(collection=collection, id=doc_id)
        sk = item["SK"]["S"]
        if sk != schema.SK_META:
            sub_collection, sub_id = schema.parse_sub_sk(sk)
            ref = ref.child(sub_collection, sub_id)

        fields = self._deserialize_map(item.get("data", {}).get("M", {}))
        for key in schema.RESERVED_FIELDS:
            if key in item:
                fields[key] = self._deserialize_value(item[key])
        return Document(ref=ref, fields=fields)


class DynamoWriteBatch:
    """Atomic batch backed by TransactWriteItems."""

    def __init__(self, repository: Repository) -> None:
        self._repository = repository
        self._items: list[dict[str, Any]] = []
        self._paths: list[str] = []

    def update(self, ref: DocumentRef, updates: dict[str, Any]) -> None:
        update = self._repository.build_update(ref, updates)
        self._items.append({"Update": update})
        self._paths.append(ref.path)

    def delete(self, ref: DocumentRef) -> None:
        self._items.append(
            {
                "Delete": {
                    "TableName": self._repository.table_name,
                    "Key": self._repository._key(ref),
                }
            }
        )
        self._paths.append(ref.path)

    def __len__(self) -> int:
        return len(self._items)

    async def commit(self) -> None:
        if len(self._items) > schema.MAX_TRANSACTION_ITEMS:
            raise BatchTooLargeError(len(self._items), schema.MAX_TRANSACTION_ITEMS)

        try:
            await self._repository.transact_write(self._items)
        except ClientError as e:
            if e.response["Error"]["Code"] != "TransactionCanceledException":
                raise
            reasons = e.response.get("CancellationReasons", [])
            for path, reason in zip(self._paths, reasons):
                if reason.get("Code") == "ConditionalCheckFailed":
                    raise DocumentNotFoundError(path) from e
            raise
