try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import sqlite3
from decimal import Decimal

import pytest
from botocore.exceptions import ClientError

from workspace_agent.clients.dynamodb import DynamoDBStore
from workspace_agent.clients.sqlite_store import SQLiteStore
from workspace_agent.clients.store_connection import StoreConnection
from workspace_agent.core.config import StoreSettings
from workspace_agent.core.errors import (
    InputValidationError,
    ReauthenticationRequiredError,
    StoreUnavailableError,
)
from workspace_agent.services.credential_store import CredentialStore
from workspace_agent.services.session_store import SessionStore
from workspace_agent.services.token_cipher import TokenCipherService
from workspace_agent.utils.retry import RetryConfig

NOW = 1_700_000_000_000


def _connection() -> StoreConnection:
    return StoreConnection(
        lambda: SQLiteStore(":memory:").open(),
        retry_config=RetryConfig(attempts=1, backoff_seconds=0),
    )


async def _upsert(store: CredentialStore, **overrides):
    values = dict(
        email="Ada@Example.com",
        name="Ada Lovelace",
        picture=None,
        access_token="access-1",
        refresh_token="refresh-1",
        scope="openid email",
        token_type="Bearer",
        expires_at=NOW + 3_600_000,
    )
    values.update(overrides)
    return await store.upsert_by_email(**values)


@pytest.mark.asyncio
async def test_upsert_by_email_reuses_user_id_and_keeps_refresh_token() -> None:
    store = CredentialStore(_connection(), TokenCipherService(secret="secret"))

    first = await _upsert(store)
    second = await _upsert(
        store, email="ada@example.com", access_token="access-2", refresh_token=None
    )

    assert first.user_id == second.user_id
    assert len(first.user_id) == 32
    assert second.email == "ada@example.com"
    stored = await store.get(first.user_id)
    assert stored.access_token == "access-2"
    assert stored.refresh_token == "refresh-1"
    assert stored.created_at == first.created_at


@pytest.mark.asyncio
async def test_tokens_are_encrypted_at_rest() -> None:
    connection = _connection()
    store = CredentialStore(connection, TokenCipherService(secret="secret"))
    record = await _upsert(store)

    raw = (await connection.acquire()).get_item(
        partition_key=f"user#{record.user_id}", sort_key="oauth#google"
    )

    assert "access_token" not in raw
    assert raw["access_token_encrypted"] != "access-1"
    assert raw["refresh_token_encrypted"] != "refresh-1"
    assert raw["expires_at"] == NOW + 3_600_000


@pytest.mark.asyncio
async def test_record_unreadable_with_other_secret_requires_reauthentication() -> None:
    connection = _connection()
    record = await _upsert(CredentialStore(connection, TokenCipherService(secret="one")))

    with pytest.raises(ReauthenticationRequiredError):
        await CredentialStore(connection, TokenCipherService(secret="two")).get(record.user_id)


@pytest.mark.asyncio
async def test_upsert_rejects_invalid_email() -> None:
    store = CredentialStore(_connection(), TokenCipherService(secret="secret"))

    with pytest.raises(InputValidationError):
        await _upsert(store, email="not-an-email")


@pytest.mark.asyncio
async def test_backend_errors_become_store_unavailable() -> None:
    def opener() -> SQLiteStore:
        store = SQLiteStore(":memory:").open()
        store.close()
        return store

    store = CredentialStore(
        StoreConnection(opener, retry_config=RetryConfig(attempts=1)),
        TokenCipherService(secret="secret"),
    )

    with pytest.raises(StoreUnavailableError):
        await store.get("0" * 32)


@pytest.mark.asyncio
async def test_expired_session_is_deleted_on_read() -> None:
    sessions = SessionStore(_connection(), ttl_seconds=60)
    session = sessions.new_session(now=NOW)
    session.user_id = "a" * 32
    await sessions.save(session)

    loaded = await sessions.get(session.session_id, now=NOW + 1000)
    assert loaded is not None and loaded.user_id == "a" * 32

    assert await sessions.get(session.session_id, now=NOW + 60_000) is None
    assert await sessions.get(session.session_id, now=NOW) is None


@pytest.mark.asyncio
async def test_state_nonce_can_be_consumed_once() -> None:
    sessions = SessionStore(_connection())

    assert await sessions.consume_state_nonce("nonce", now=NOW, ttl_seconds=600) is True
    assert await sessions.consume_state_nonce("nonce", now=NOW + 1, ttl_seconds=600) is False
    assert await sessions.consume_state_nonce("other", now=NOW, ttl_seconds=600) is True


def test_sqlite_put_if_absent_does_not_overwrite() -> None:
    store = SQLiteStore(":memory:").open()

    assert store.put_item_if_absent({"pk": "a", "sk": "b", "value": 1}) is True
    assert store.put_item_if_absent({"pk": "a", "sk": "b", "value": 2}) is False
    assert store.get_item(partition_key="a", sort_key="b")["value"] == 1

    with pytest.raises(ValueError):
        store.put_item({"pk": "a"})
    store.close()
    with pytest.raises(sqlite3.ProgrammingError):
        store.ping()


class FakeTable:
    def __init__(self) -> None:
        self.items: dict[tuple[str, str], dict] = {}

    def put_item(self, Item, ConditionExpression=None):
        key = (Item["pk"], Item["sk"])
        if ConditionExpression and key in self.items:
            raise ClientError(
                {"Error": {"Code": "ConditionalCheckFailedException", "Message": "exists"}},
                "PutItem",
            )
        self.items[key] = Item

    def get_item(self, Key, ConsistentRead=False):
        item = self.items.get((Key["pk"], Key["sk"]))
        return {"Item": item} if item is not None else {}


def _dynamodb_store() -> tuple[DynamoDBStore, FakeTable]:
    store = DynamoDBStore(StoreSettings(STORE_BACKEND="dynamodb", DYNAMODB_TABLE_NAME="sessions"))
    table = FakeTable()
    store._table = table
    return store, table


def test_dynamodb_put_if_absent_and_decimal_conversion() -> None:
    store, table = _dynamodb_store()

    assert store.put_item_if_absent({"pk": "a", "sk": "b", "expires_at": Decimal("1700")}) is True
    assert store.put_item_if_absent({"pk": "a", "sk": "b"}) is False

    table.items[("c", "d")] = {"pk": "c", "sk": "d", "ratio": Decimal("0.5"), "n": [Decimal("2")]}
    assert store.get_item(partition_key="a", sort_key="b")["expires_at"] == 1700
    assert store.get_item(partition_key="c", sort_key="d") == {
        "pk": "c",
        "sk": "d",
        "ratio": 0.5,
        "n": [2],
    }
    assert store.get_item(partition_key="x", sort_key="y") is None


def test_dynamodb_store_requires_table_name() -> None:
    with pytest.raises(ValueError):
        DynamoDBStore(StoreSettings(STORE_BACKEND="dynamodb"))
