from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from boto3.dynamodb.conditions import Attr, ConditionBase, ConditionExpressionBuilder
from boto3.dynamodb.types import TypeSerializer

from ...observability.logging import get_logger
from .client import dynamodb_client, dynamodb_resource, table_resource
from .errors import DdbConflict, DdbInternal, DdbNotFound
from .pagination import decode_next_token, encode_next_token
from .retry import TRANSACTION_POLICY, ddb_call

log = get_logger("dynamodb")

GSI1 = "GSI1"

# DynamoDB limits.
MAX_TRANSACT_ITEMS = 100
MAX_BATCH_GET = 100

IF_NOT_EXISTS = "attribute_not_exists(pk)"
IF_EXISTS = "attribute_exists(pk)"

_serializer = TypeSerializer()


def _serialize(item: dict[str, Any]) -> dict[str, Any]:
    # Client-level calls (transactions) want AttributeValue shape: {"S": "..."}.
    return {k: _serializer.serialize(v) for k, v in item.items()}


def _key_of(item: dict[str, Any]) -> dict[str, Any]:
    return {"pk": item["pk"], "sk": item["sk"]}


def _apply_condition(body: dict[str, Any], condition: ConditionBase) -> None:
    # Builder placeholders are #n/:v; build_update and tx_increment use other prefixes.
    built = ConditionExpressionBuilder().build_expression(condition)
    body["ConditionExpression"] = built.condition_expression
    body.setdefault("ExpressionAttributeNames", {}).update(built.attribute_name_placeholders)
    if built.attribute_value_placeholders:
        body.setdefault("ExpressionAttributeValues", {}).update(_serialize(built.attribute_value_placeholders))


def transaction_chunks(ops: list[dict[str, Any] | None]) -> list[list[dict[str, Any]]]:
    """Split ops into TransactWriteItems-sized pieces, cut from the end.

    Each piece commits atomically, in order. The trailing piece is always full
    (or the whole write), so callers list child rows first and finish with the
    op that defines the parent (its delete plus counter updates): children can
    be left half-deleted by a failure, but the parent never disappears first.
    """
    live = [op for op in ops if op]
    head = len(live) % MAX_TRANSACT_ITEMS
    chunks = [live[:head]] if head else []
    chunks.extend(live[i : i + MAX_TRANSACT_ITEMS] for i in range(head, len(live), MAX_TRANSACT_ITEMS))
    return chunks


@dataclass(slots=True)
class Page:
    items: list[dict[str, Any]]
    next_token: str | None


def build_update(
    fields: dict[str, Any], remove: Iterable[str] = ()
) -> tuple[str, dict[str, str], dict[str, Any]]:
    """Build `SET a = :a, ... REMOVE b` with placeholder names for every attribute."""
    names: dict[str, str] = {}
    values: dict[str, Any] = {}
    sets: list[str] = []
    for i, (name, value) in enumerate(fields.items()):
        names[f"#f{i}"] = name
        values[f":s{i}"] = value
        sets.append(f"#f{i} = :s{i}")

    removes: list[str] = []
    for j, name in enumerate(remove):
        names[f"#r{j}"] = name
        removes.append(f"#r{j}")

    parts: list[str] = []
    if sets:
        parts.append("SET " + ", ".join(sets))
    if removes:
        parts.append("REMOVE " + ", ".join(removes))
    return " ".join(parts), names, values


class DynamoTable:
    """Thin wrapper over one single-table-design DynamoDB table (pk/sk + GSI1)."""

    def __init__(self, *, table_name: str):
        self.table_name = str(table_name)
        self._table = table_resource(self.table_name)
        self._client = dynamodb_client()

    # --- items ---

    def get_item(self, *, key: dict[str, Any]) -> dict[str, Any] | None:
        def _op():
            return self._table.get_item(Key=key, ConsistentRead=True).get("Item")

        return ddb_call("GetItem", _op, table_name=self.table_name, key=key)

    def get_required(self, *, key: dict[str, Any], message: str = "Item not found") -> dict[str, Any]:
        item = self.get_item(key=key)
        if not item:
            raise DdbNotFound(message=message, operation="GetItem", table_name=self.table_name, key=key)
        return item

    def batch_get(self, *, keys: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Fetch many items by key; missing keys are simply absent from the result."""
        unique: list[dict[str, Any]] = []
        seen: set[tuple[str, str]] = set()
        for k in keys:
            ident = (str(k["pk"]), str(k["sk"]))
            if ident not in seen:
                seen.add(ident)
                unique.append(k)

        out: list[dict[str, Any]] = []
        resource = dynamodb_resource()
        for start in range(0, len(unique), MAX_BATCH_GET):
            pending: dict[str, Any] = {self.table_name: {"Keys": unique[start : start + MAX_BATCH_GET]}}
            while pending:
                resp = ddb_call(
                    "BatchGetItem",
                    lambda: resource.batch_get_item(RequestItems=pending),
                    table_name=self.table_name,
                )
                out.extend((resp.get("Responses") or {}).get(self.table_name) or [])
                pending = resp.get("UnprocessedKeys") or {}
        return out

    def put_item(self, *, item: dict[str, Any], if_not_exists: bool = False) -> dict[str, Any]:
        def _op():
            kwargs: dict[str, Any] = {"Item": item}
            if if_not_exists:
                kwargs["ConditionExpression"] = IF_NOT_EXISTS
            return self._table.put_item(**kwargs)

        ddb_call("PutItem", _op, table_name=self.table_name, key=_key_of(item))
        return item

    def delete_item(self, *, key: dict[str, Any], must_exist: bool = False) -> dict[str, Any] | None:
        """Delete and return the old item (None if nothing was there)."""

        def _op():
            kwargs: dict[str, Any] = {"Key": key, "ReturnValues": "ALL_OLD"}
            if must_exist:
                kwargs["ConditionExpression"] = IF_EXISTS
            return self._table.delete_item(**kwargs).get("Attributes")

        try:
            return ddb_call("DeleteItem", _op, table_name=self.table_name, key=key)
        except DdbConflict as e:
            raise DdbNotFound(message="Item not found", operation="DeleteItem", table_name=self.table_name, key=key) from e

    def update_fields(
        self,
        *,
        key: dict[str, Any],
        fields: dict[str, Any],
        remove: Iterable[str] = (),
        must_exist: bool = True,
    ) -> dict[str, Any]:
        """Partial update: SET the given attributes, REMOVE others, return the new item."""
        expr, names, values = build_update(fields, remove)

        def _op():
            kwargs: dict[str, Any] = {
                "Key": key,
                "UpdateExpression": expr,
                "ExpressionAttributeNames": names,
                "ReturnValues": "ALL_NEW",
            }
            if values:
                kwargs["ExpressionAttributeValues"] = values
            if must_exist:
                kwargs["ConditionExpression"] = IF_EXISTS
            return self._table.update_item(**kwargs).get("Attributes") or {}

        try:
            return ddb_call("UpdateItem", _op, table_name=self.table_name, key=key)
        except DdbConflict as e:
            raise DdbNotFound(message="Item not found", operation="UpdateItem", table_name=self.table_name, key=key) from e

    # --- queries ---

    def query_page(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        limit: int = 50,
        scan_index_forward: bool = True,
        next_token: str | None = None,
    ) -> Page:
        lim = max(1, min(500, int(limit or 50)))
        lek = decode_next_token(next_token) if next_token else None

        def _op():
            kwargs: dict[str, Any] = {
                "KeyConditionExpression": key_condition_expression,
                "ScanIndexForward": bool(scan_index_forward),
                "Limit": lim,
            }
            if index_name:
                kwargs["IndexName"] = index_name
            if lek:
                kwargs["ExclusiveStartKey"] = lek
            return self._table.query(**kwargs)

        resp = ddb_call("Query", _op, table_name=self.table_name)
        return Page(
            items=resp.get("Items") or [],
            next_token=encode_next_token(resp.get("LastEvaluatedKey")),
        )

    def query_all(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        scan_index_forward: bool = True,
        max_items: int = 5000,
    ) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        token: str | None = None
        while True:
            page = self.query_page(
                key_condition_expression=key_condition_expression,
                index_name=index_name,
                limit=500,
                scan_index_forward=scan_index_forward,
                next_token=token,
            )
            out.extend(page.items)
            token = page.next_token
            if not token or len(out) >= max_items:
                return out[:max_items]

    # --- transactions ---

    def transact_write(self, *, ops: list[dict[str, Any]]) -> None:
        """Run transactional writes built with the tx_* helpers.

        More than MAX_TRANSACT_ITEMS operations cannot commit atomically; see
        `transaction_chunks` for the order in which the pieces are written.
        """
        chunks = transaction_chunks(ops)
        if len(chunks) > 1:
            log.info("ddb_transaction_chunked", table=self.table_name, ops=sum(map(len, chunks)), chunks=len(chunks))
        for chunk in chunks:
            ddb_call(
                "TransactWriteItems",
                lambda: self._client.transact_write_items(TransactItems=chunk),
                table_name=self.table_name,
                retry_policy=TRANSACTION_POLICY,
            )

    def tx_put(
        self, *, item: dict[str, Any], if_not_exists: bool = False, condition: ConditionBase | None = None
    ) -> dict[str, Any]:
        put: dict[str, Any] = {"TableName": self.table_name, "Item": _serialize(item)}
        if condition is not None:
            _apply_condition(put, condition)
        elif if_not_exists:
            put["ConditionExpression"] = IF_NOT_EXISTS
        return {"Put": put}

    def tx_delete(
        self, *, key: dict[str, Any], must_exist: bool = False, condition: ConditionBase | None = None
    ) -> dict[str, Any]:
        delete: dict[str, Any] = {"TableName": self.table_name, "Key": _serialize(key)}
        if condition is not None:
            _apply_condition(delete, Attr("pk").exists() & condition if must_exist else condition)
        elif must_exist:
            delete["ConditionExpression"] = IF_EXISTS
        return {"Delete": delete}

    def tx_update_fields(
        self, *, key: dict[str, Any], fields: dict[str, Any], condition: ConditionBase | None = None
    ) -> dict[str, Any]:
        """Update op on an existing item; `condition` adds to the existence check."""
        expr, names, values = build_update(fields)
        update: dict[str, Any] = {
            "TableName": self.table_name,
            "Key": _serialize(key),
            "UpdateExpression": expr,
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": _serialize(values),
            "ConditionExpression": IF_EXISTS,
        }
        if condition is not None:
            _apply_condition(update, Attr("pk").exists() & condition)
        return {"Update": update}

    def tx_increment(self, *, key: dict[str, Any], counters: dict[str, int]) -> dict[str, Any]:
        """Atomically add deltas to numeric attributes of an existing item."""
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        adds: list[str] = []
        for i, (name, delta) in enumerate(counters.items()):
            names[f"#c{i}"] = name
            values[f":d{i}"] = int(delta)
            adds.append(f"#c{i} :d{i}")
        return {
            "Update": {
                "TableName": self.table_name,
                "Key": _serialize(key),
                "UpdateExpression": "ADD " + ", ".join(adds),
                "ExpressionAttributeNames": names,
                "ExpressionAttributeValues": _serialize(values),
                "ConditionExpression": IF_EXISTS,
            }
        }


def get_main_table() -> DynamoTable:
    from ...settings import settings

    if not settings.ddb_table_name:
        raise DdbInternal(message="DDB_TABLE_NAME is not set", operation="Config")
    return DynamoTable(table_name=settings.ddb_table_name)
