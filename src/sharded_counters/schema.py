"""Shard field names and DynamoDB schema definitions."""

from typing import Any

# Reserved shard fields
DOCUMENT_ID = "did"  # Parent back-reference, orders shards by parent for rollup
CREATION_TICK = "ct"  # Tick of the last write, selects shards due for rollup
RESERVED_FIELDS = (DOCUMENT_ID, CREATION_TICK)

# Number of trailing ticks a rollup pass looks back
STALENESS_WINDOW_TICKS = 10

# Table and index names
DEFAULT_TABLE_NAME = "sharded_counters"
GSI1_NAME = "GSI1"  # Collection group scans ordered by parent

# Key prefixes
DOC_PREFIX = "DOC#"
GROUP_PREFIX = "GROUP#"

# Sort key prefixes
SK_META = "#META"
SK_SUB = "#SUB#"

# DynamoDB TransactWriteItems action limit
MAX_TRANSACTION_ITEMS = 100


def is_reserved(field: str) -> bool:
    """True if the field name is reserved for shard bookkeeping."""
    return field in RESERVED_FIELDS


def pk_document(collection: str, doc_id: str) -> str:
    """Build partition key for a top-level document."""
    return f"{DOC_PREFIX}{collection}/{doc_id}"


def sk_meta() -> str:
    """Build sort key for a top-level document."""
    return SK_META


def sk_sub(collection: str, doc_id: str) -> str:
    """Build sort key for a sub-collection document."""
    return f"{SK_SUB}{collection}/{doc_id}"


def gsi1_pk_group(collection: str) -> str:
    """Build GSI1 partition key for a collection group."""
    return f"{GROUP_PREFIX}{collection}"


def gsi1_sk_shard(parent_path: str, doc_id: str) -> str:
    """Build GSI1 sort key ordering shards by parent."""
    return f"{parent_path}#{doc_id}"


def parse_sub_sk(sk: str) -> tuple[str, str]:
    """Parse collection and document id from a sub-collection sort key."""
    # SK format: #SUB#{collection}/{doc_id}
    if not sk.startswith(SK_SUB):
        raise ValueError(f"Invalid sub-document SK: {sk}")
    parts = sk[len(SK_SUB) :].split("/", 1)
    if len(parts) != 2:
        raise ValueError(f"Invalid sub-document SK format: {sk}")
    return parts[0], parts[1]


def parse_document_pk(pk: str) -> tuple[str, str]:
    """Parse collection and document id from a top-level partition key."""
    # PK format: DOC#{collection}/{doc_id}
    if not pk.startswith(DOC_PREFIX):
        raise ValueError(f"Invalid document PK: {pk}")
    parts = pk[len(DOC_PREFIX) :].split("/", 1)
    if len(parts) != 2:
        raise ValueError(f"Invalid document PK format: {pk}")
    return parts[0], parts[1]


def get_table_definition(table_name: str) -> dict[str, Any]:
    """
    Get the DynamoDB table definition for CreateTable.

    Returns a dictionary suitable for boto3 create_table().
    """
    return {
        "TableName": table_name,
        "BillingMode": "PAY_PER_REQUEST",
        "AttributeDefinitions": [
            {"AttributeName": "PK", "AttributeType": "S"},
            {"AttributeName": "SK", "AttributeType": "S"},
            {"AttributeName": "GSI1PK", "AttributeType": "S"},
            {"AttributeName": "GSI1SK", "AttributeType": "S"},
        ],
        "KeySchema": [
            {"AttributeName": "PK", "KeyType": "HASH"},
            {"AttributeName": "SK", "KeyType": "RANGE"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": GSI1_NAME,
                "KeySchema": [
                    {"AttributeName": "GSI1PK", "KeyType": "HASH"},
                    {"AttributeName": "GSI1SK", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
    }
