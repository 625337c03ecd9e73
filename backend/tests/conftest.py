from __future__ import annotations

import copy
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

# Ensure `backend/` is on sys.path so `import proposalhub.*` works in tests.
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

from boto3.dynamodb.conditions import Attr  # noqa: E402
from boto3.dynamodb.types import TypeDeserializer  # noqa: E402

from proposalhub.db.dynamodb.errors import DdbConflict, DdbNotFound, DdbValidation  # noqa: E402
from proposalhub.db.dynamodb.table import GSI1, IF_EXISTS, IF_NOT_EXISTS, Page, transaction_chunks  # noqa: E402
from proposalhub.services.records import plain  # noqa: E402

_deserializer = TypeDeserializer()


def _ident(key: dict[str, Any]) -> tuple[str, str]:
    return str(key["pk"]), str(key["sk"])


def _deserialize(values: dict[str, Any]) -> dict[str, Any]:
    return {k: plain(_deserializer.deserialize(v)) for k, v in values.items()}


def _matches(cond: Any, item: dict[str, Any]) -> bool:
    expr = cond.get_expression()
    op = expr["operator"]
    values = expr["values"]
    if op == "AND":
        return _matches(values[0], item) and _matches(values[1], item)
    if op == "OR":
        return _matches(values[0], item) or _matches(values[1], item)
    if op == "NOT":
        return not _matches(values[0], item)
    name = values[0].name
    if op == "attribute_exists":
        return name in item
    if op == "attribute_not_exists":
        return name not in item
    if name not in item:
        return False
    v = item[name]
    if op == "=":
        return v == values[1]
    if op == "<>":
        return v != values[1]
    if op == "begins_with":
        return str(v).startswith(values[1])
    if op == "BETWEEN":
        return values[1] <= v <= values[2]
    raise AssertionError(f"unsupported condition operator: {op}")


class InMemoryTable:
    """Dict-backed stand-in for DynamoTable with the same method surface and error behavior."""

    table_name = "test-table"

    def __init__(self):
        self.items: dict[tuple[str, str], dict[str, Any]] = {}
        self.transactions: list[list[dict[str, Any]]] = []

    # --- items ---

    def get_item(self, *, key: dict[str, Any]) -> dict[str, Any] | None:
        item = self.items.get(_ident(key))
        return copy.deepcopy(item) if item is not None else None

    def get_required(self, *, key: dict[str, Any], message: str = "Item not found") -> dict[str, Any]:
        item = self.get_item(key=key)
        if not item:
            raise DdbNotFound(message=message, operation="GetItem", table_name=self.table_name, key=key)
        return item

    def batch_get(self, *, keys: list[dict[str, Any]]) -> list[dict[str, Any]]:
        seen: set[tuple[str, str]] = set()
        out = []
        for k in keys:
            ident = _ident(k)
            if ident in seen or ident not in self.items:
                continue
            seen.add(ident)
            out.append(copy.deepcopy(self.items[ident]))
        return out

    def put_item(self, *, item: dict[str, Any], if_not_exists: bool = False) -> dict[str, Any]:
        ident = _ident(item)
        if if_not_exists and ident in self.items:
            raise DdbConflict(message="Conditional check failed", operation="PutItem", table_name=self.table_name)
        self.items[ident] = copy.deepcopy(item)
        return item

    def delete_item(self, *, key: dict[str, Any], must_exist: bool = False) -> dict[str, Any] | None:
        ident = _ident(key)
        if must_exist and ident not in self.items:
            raise DdbNotFound(message="Item not found", operation="DeleteItem", table_name=self.table_name, key=key)
        return self.items.pop(ident, None)

    def update_fields(
        self,
        *,
        key: dict[str, Any],
        fields: dict[str, Any],
        remove=(),
        must_exist: bool = True,
    ) -> dict[str, Any]:
        ident = _ident(key)
        if must_exist and ident not in self.items:
            raise DdbNotFound(message="Item not found", operation="UpdateItem", table_name=self.table_name, key=key)
        item = self.items.setdefault(ident, {"pk": key["pk"], "sk": key["sk"]})
        item.update(copy.deepcopy(fields))
        for name in remove:
            item.pop(name, None)
        return copy.deepcopy(item)

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
        if index_name not in (None, GSI1):
            raise AssertionError(f"unknown index {index_name}")
        sort_attr = "gsi1sk" if index_name == GSI1 else "sk"
        hits = [
            it
            for it in self.items.values()
            if sort_attr in it and _matches(key_condition_expression, it)
        ]
        hits.sort(key=lambda it: str(it[sort_attr]), reverse=not scan_index_forward)
        start = int(next_token or 0)
        end = start + max(1, int(limit or 50))
        return Page(
            items=[copy.deepcopy(it) for it in hits[start:end]],
            next_token=str(end) if end < len(hits) else None,
        )

    def query_all(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        scan_index_forward: bool = True,
        max_items: int = 5000,
    ) -> list[dict[str, Any]]:
        page = self.query_page(
            key_condition_expression=key_condition_expression,
            index_name=index_name,
            limit=max_items,
            scan_index_forward=scan_index_forward,
        )
        return page.items

    # --- transactions ---

    def transact_write(self, *, ops: list[dict[str, Any]]) -> None:
        # Same splitting as DynamoTable: each chunk commits or fails on its own.
        for chunk in transaction_chunks(ops):
            self._commit(chunk)

    def _commit(self, ops: list[dict[str, Any]]) -> None:
        self.transactions.append(ops)

        staged = copy.deepcopy(self.items)
        touched: set[tuple[str, str]] = set()
        reasons: list[str] = []
        for op in ops:
            (kind, body), = op.items()
            raw_key = body["Item"] if kind == "Put" else body["Key"]
            ident = _ident(_deserialize({"pk": raw_key["pk"], "sk": raw_key["sk"]}))
            if ident in touched:
                raise DdbValidation(message="Transaction touches the same item twice", operation="TransactWriteItems")
            touched.add(ident)

            cond = body.get("ConditionExpression")
            exists = ident in staged
            if "_condition" in body:
                failed = not _matches(body["_condition"], staged.get(ident) or {})
            else:
                failed = (cond == IF_NOT_EXISTS and exists) or (cond == IF_EXISTS and not exists)
            if failed:
                reasons.append("ConditionalCheckFailed")
                continue
            reasons.append("None")

            if kind == "Put":
                staged[ident] = _deserialize(body["Item"])
            elif kind == "Delete":
                staged.pop(ident, None)
            else:
                staged[ident] = self._apply_update(staged.get(ident) or {}, body)

        if any(r != "None" for r in reasons):
            raise DdbConflict(
                message="Transaction cancelled",
                operation="TransactWriteItems",
                table_name=self.table_name,
                reasons=reasons,
            )
        self.items = staged

    @staticmethod
    def _apply_update(item: dict[str, Any], body: dict[str, Any]) -> dict[str, Any]:
        names = body["ExpressionAttributeNames"]
        values = _deserialize(body.get("ExpressionAttributeValues") or {})
        action, _, clauses = body["UpdateExpression"].partition(" ")
        out = dict(item)
        for clause in clauses.split(", "):
            if action == "SET":
                name, value = clause.split(" = ")
                out[names[name]] = values[value]
            elif action == "ADD":
                name, value = clause.split(" ")
                out[names[name]] = int(out.get(names[name]) or 0) + int(values[value])
            else:
                raise AssertionError(f"unsupported update action: {action}")
        return out

    # The tx_* builders keep the condition object next to the rendered expression
    # so _commit can evaluate it against the staged item.

    def tx_put(self, *, item: dict[str, Any], if_not_exists: bool = False, condition: Any = None) -> dict[str, Any]:
        from proposalhub.db.dynamodb.table import _serialize

        put: dict[str, Any] = {"TableName": self.table_name, "Item": _serialize(item)}
        if condition is not None:
            put["_condition"] = condition
        elif if_not_exists:
            put["ConditionExpression"] = IF_NOT_EXISTS
        return {"Put": put}

    def tx_delete(self, *, key: dict[str, Any], must_exist: bool = False, condition: Any = None) -> dict[str, Any]:
        from proposalhub.db.dynamodb.table import _serialize

        delete: dict[str, Any] = {"TableName": self.table_name, "Key": _serialize(key)}
        if condition is not None:
            delete["_condition"] = Attr("pk").exists() & condition if must_exist else condition
        elif must_exist:
            delete["ConditionExpression"] = IF_EXISTS
        return {"Delete": delete}

    def tx_update_fields(self, *, key: dict[str, Any], fields: dict[str, Any], condition: Any = None) -> dict[str, Any]:
        from proposalhub.db.dynamodb.table import DynamoTable

        op = DynamoTable.tx_update_fields(self, key=key, fields=fields, condition=condition)  # type: ignore[arg-type]
        if condition is not None:
            op["Update"]["_condition"] = Attr("pk").exists() & condition
        return op

    def tx_increment(self, *, key: dict[str, Any], counters: dict[str, int]) -> dict[str, Any]:
        from proposalhub.db.dynamodb.table import DynamoTable

        return DynamoTable.tx_increment(self, key=key, counters=counters)  # type: ignore[arg-type]

    # --- helpers for assertions ---

    def entities(self, entity_type: str) -> list[dict[str, Any]]:
        return [it for it in self.items.values() if it.get("entityType") == entity_type]


class FakeS3:
    def __init__(self):
        self.objects: dict[str, dict[str, Any]] = {}

    def put_object(self, *, Bucket, Key, Body, ContentType=None):
        self.objects[Key] = {"bucket": Bucket, "body": Body, "content_type": ContentType}
        return {}

    def generate_presigned_url(self, *, ClientMethod, Params, ExpiresIn):
        return f"https://{Params['Bucket']}.s3.test/{Params['Key']}?expires={ExpiresIn}"

    def head_object(self, *, Bucket, Key):
        obj = self.objects[Key]
        return {"ContentLength": len(obj["body"]), "ContentType": obj["content_type"]}

    def get_object(self, *, Bucket, Key):
        import io

        return {"Body": io.BytesIO(self.objects[Key]["body"])}

    def delete_object(self, *, Bucket, Key):
        self.objects.pop(Key, None)
        return {}


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    from proposalhub.settings import settings

    monkeypatch.setattr(settings, "environment", "test")
    monkeypatch.setattr(settings, "ddb_table_name", "test-table")
    monkeypatch.setattr(settings, "assets_bucket_name", "test-assets")
    monkeypatch.setattr(settings, "session_secret", "unit-test-session-secret")
    monkeypatch.setattr(settings, "token_enc_key", "unit-test-token-key")
    monkeypatch.setattr(settings, "openai_api_key", None)
    monkeypatch.setattr(settings, "perplexity_api_key", None)
    monkeypatch.setattr(settings, "linkedin_access_token", None)
    monkeypatch.setattr(settings, "google_cse_api_key", None)
    monkeypatch.setattr(settings, "google_cse_id", None)
    return settings


@pytest.fixture(autouse=True)
def table(monkeypatch):
    import proposalhub.main  # noqa: F401  (imports every module that reads the table)

    t = InMemoryTable()
    for name, mod in list(sys.modules.items()):
        if name.startswith("proposalhub") and callable(getattr(mod, "get_main_table", None)):
            monkeypatch.setattr(mod, "get_main_table", lambda: t)
    return t


@pytest.fixture(autouse=True)
def s3(monkeypatch):
    from proposalhub.integrations import logos
    from proposalhub.services import s3_assets

    fake = FakeS3()
    monkeypatch.setattr(s3_assets, "_s3_client", lambda: fake)
    s3_assets._GET_URL_CACHE.clear()
    logos.clear_cache()
    return fake


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from proposalhub.main import create_app

    return TestClient(create_app())


@pytest.fixture
def signup(client):
    """Create a tenant through the API; returns its token, auth headers, user and organization."""

    def _signup(email: str = "olivia@acme.test", organization_name: str = "Acme Holdings", name: str = "Olivia Owner"):
        r = client.post(
            "/api/auth/signup",
            json={"email": email, "organizationName": organization_name, "name": name},
        )
        assert r.status_code == 201, r.text
        body = r.json()
        return SimpleNamespace(
            token=body["token"],
            headers={"Authorization": f"Bearer {body['token']}"},
            user=body["user"],
            organization=body["organization"],
        )

    return _signup
