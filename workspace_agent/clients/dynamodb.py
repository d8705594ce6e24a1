"""
Utility wrapper for storing OAuth credentials and sessions in DynamoDB.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import ClientError

from workspace_agent.core.config import StoreSettings


def _from_dynamo(value: Any) -> Any:
    """Convert DynamoDB's Decimal numbers back into plain ints and floats."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {key: _from_dynamo(inner) for key, inner in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(inner) for inner in value]
    return value


class DynamoDBStore:
    """Document operations keyed by (pk, sk), mirroring ``SQLiteStore``."""

    def __init__(self, settings: StoreSettings) -> None:
        if not settings.dynamodb_table_name:
            raise ValueError("DYNAMODB_TABLE_NAME is required for the dynamodb backend")
        self._settings = settings
        self._resource = None
        self._table = None

    def open(self) -> "DynamoDBStore":
        self._resource = boto3.resource(
            "dynamodb", region_name=self._settings.region_name
        )
        table = self._resource.Table(self._settings.dynamodb_table_name)
        # DescribeTable; fails fast when the table or credentials are wrong.
        table.load()
        self._table = table
        return self

    def put_item(self, item: Dict[str, Any]) -> None:
        """Put an item in the DynamoDB table."""
        self._table.put_item(Item=item)

    def put_item_if_absent(self, item: Dict[str, Any]) -> bool:
        """Insert ``item`` unless its key exists. Returns whether it was written."""
        try:
            self._table.put_item(
                Item=item, ConditionExpression="attribute_not_exists(pk)"
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return False
            raise
        return True

    def get_item(
        self, *, partition_key: str, sort_key: str
    ) -> Optional[Dict[str, Any]]:
        """Retrieve an item using its key."""
        response = self._table.get_item(
            Key={"pk": partition_key, "sk": sort_key}, ConsistentRead=True
        )
        item = response.get("Item")
        return _from_dynamo(item) if item is not None else None

    def delete_item(self, *, partition_key: str, sort_key: str) -> None:
        self._table.delete_item(Key={"pk": partition_key, "sk": sort_key})

    def ping(self) -> None:
        self._table.reload()

    def close(self) -> None:
        if self._resource is not None:
            self._resource.meta.client.close()
        self._resource = None
        self._table = None


__all__ = ["DynamoDBStore"]
