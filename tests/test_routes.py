try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from workspace_agent.clients.google_auth import OAuthStateEncoder, TokenGrant
from workspace_agent.clients.sqlite_store import SQLiteStore
from workspace_agent.clients.store_connection import StoreConnection
from workspace_agent.core.config import OAuthSettings, ProviderSettings
from workspace_agent.core.errors import (
    CredentialNotFoundError,
    PermissionDeniedError,
    StoreUnavailableError,
    TransientProviderError,
)
from workspace_agent.main import app
from workspace_agent.schemas import FetchResult
from workspace_agent.services.credential_manager import CredentialManager
from workspace_agent.services.credential_store import CredentialStore
from workspace_agent.services.demo_data import demo_messages
from workspace_agent.services.oauth_handshake import OAuthHandshakeService
from workspace_agent.services.resilience import ResilientCaller
from workspace_agent.services.session_store import SessionStore
from workspace_agent.services.token_cipher import TokenCipherService
from workspace_agent.services.workspace_data import WorkspaceDataService
from workspace_agent.utils.retry import RetryConfig

SESSION_COOKIE = "workspace_agent_sid"


class DummyOAuthClient:
    scopes = ["openid", "email", "profile"]

    def __init__(self) -> None:
        self.codes: list[str] = []

    def build_authorization_url(self, state: str) -> str:
        return f"https://oauth.example.com/auth?state={state}"

    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        self.codes.append(code)
        return TokenGrant(access_token="access-token", refresh_token="refresh-token", expires_in=3600)

    async def fetch_userinfo(self, access_token: str) -> dict:
        return {"id": "42", "email": "ada@example.com", "name": "Ada", "picture": "https://pic"}


class StubDataService:
    """Serves demo mail for anonymous users and a configured outcome otherwise."""

    def __init__(self) -> None:
        self.error: Exception | None = None
        self.calls: list[tuple] = []

    async def fetch_mail(self, user_id, *, max_results=None, demo=False, store_error=None):
        self.calls.append(("mail", user_id, demo))
        if self.error is not None:
            raise self.error
        if user_id is None:
            return FetchResult(
                items=demo_messages(), is_fallback=True, fallback_reason="not_authenticated"
            )
        if demo:
            return FetchResult(items=demo_messages(), is_fallback=True, fallback_reason="demo_mode")
        return FetchResult(items=[])

    async def fetch_files(self, user_id, *, page_size=None, demo=False, store_error=None):
        self.calls.append(("files", user_id, demo))
        if self.error is not None:
            raise self.error
        return FetchResult(items=[])

    async def fetch_events(
        self, user_id, max_results=20, time_min=None, *, demo=False, store_error=None
    ):
        self.calls.append(("events", user_id, max_results, time_min, demo))
        return FetchResult(items=[])


pytestmark = pytest.mark.anyio("asyncio")


@pytest.fixture()
def overrides():
    from workspace_agent import dependencies

    connection = StoreConnection(
        lambda: SQLiteStore(":memory:").open(),
        retry_config=RetryConfig(attempts=1, backoff_seconds=0),
    )
    credentials = CredentialStore(connection, TokenCipherService(secret="secret"))
    sessions = SessionStore(connection)
    oauth_client = DummyOAuthClient()
    handshake = OAuthHandshakeService(
        oauth_client,
        OAuthStateEncoder("state-secret"),
        credentials,
        sessions,
        OAuthSettings(),
    )
    data_service = StubDataService()

    app.dependency_overrides.clear()
    app.dependency_overrides.update(
        {
            dependencies.get_store_connection: lambda: connection,
            dependencies.get_credential_store: lambda: credentials,
            dependencies.get_session_store: lambda: sessions,
            dependencies.get_handshake_service: lambda: handshake,
            dependencies.get_workspace_data_service: lambda: data_service,
        }
    )

    yield {
        "connection": connection,
        "credentials": credentials,
        "sessions": sessions,
        "oauth_client": oauth_client,
        "data_service": data_service,
    }

    app.dependency_overrides.clear()


@pytest.fixture()
async def client(overrides):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as test_client:
        yield test_client


def _cookie_header(**cookies: str) -> dict[str, str]:
    return {"Cookie": "; ".join(f"{name}={value}" for name, value in cookies.items())}


async def _sign_in(client: httpx.AsyncClient) -> str:
    start = await client.get("/auth/signin")
    state = start.json()["state"]
    callback = await client.get(
        "/auth/callback",
        params={"code": "auth-code", "state": state},
        headers=_cookie_header(**{SESSION_COOKIE: start.cookies[SESSION_COOKIE]}),
    )
    assert callback.status_code == 302
    return callback.cookies[SESSION_COOKIE]


async def test_signin_returns_consent_url_and_stores_state(overrides, client):
    response = await client.get("/auth/signin")

    assert response.status_code == 200
    body = response.json()
    query = parse_qs(urlparse(body["authorization_url"]).query)
    assert query["state"] == [body["state"]]
    assert response.cookies["oauth_state"] == body["state"]

    session = await overrides["sessions"].get(response.cookies[SESSION_COOKIE])
    assert session is not None
    assert session.oauth_state == body["state"]
    assert session.user_id is None


async def test_signin_redirects_browsers(overrides, client):
    response = await client.get("/auth/signin", params={"redirect": "true"})

    assert response.status_code == 307
    assert response.headers["location"].startswith("https://oauth.example.com/auth?state=")


async def test_callback_establishes_a_new_session(overrides, client):
    start = await client.get("/auth/signin", params={"return_to": "/tabs/personal/index.html?tab=files"})
    pre_login_id = start.cookies[SESSION_COOKIE]

    response = await client.get(
        "/auth/callback",
        params={"code": "auth-code", "state": start.json()["state"]},
        headers=_cookie_header(**{SESSION_COOKIE: pre_login_id}),
    )

    assert response.status_code == 302
    assert response.headers["location"] == "/tabs/personal/index.html?tab=files"
    session_id = response.cookies[SESSION_COOKIE]
    assert session_id != pre_login_id
    assert await overrides["sessions"].get(pre_login_id) is None

    session = await overrides["sessions"].get(session_id)
    record = await overrides["credentials"].get(session.user_id)
    assert record.email == "ada@example.com"
    assert overrides["oauth_client"].codes == ["auth-code"]


async def test_callback_without_session_uses_signed_state(overrides, client):
    start = await client.get("/auth/signin")
    client.cookies.clear()

    response = await client.get(
        "/auth/callback", params={"code": "auth-code", "state": start.json()["state"]}
    )

    assert response.status_code == 302
    assert response.headers["location"] == "/tabs/personal/index.html"


@pytest.mark.parametrize(
    "params",
    [
        {"code": "auth-code", "state": "forged"},
        {"state": "only-state"},
        {"error": "access_denied"},
    ],
)
async def test_bad_callbacks_are_rejected(overrides, client, params):
    response = await client.get("/auth/callback", params=params)

    assert response.status_code == 400
    assert response.json()["ok"] is False
    assert overrides["oauth_client"].codes == []


async def test_replayed_callback_is_rejected(overrides, client):
    start = await client.get("/auth/signin")
    params = {"code": "auth-code", "state": start.json()["state"]}

    first = await client.get("/auth/callback", params=params)
    second = await client.get("/auth/callback", params=params)

    assert first.status_code == 302
    assert second.status_code == 400
    assert second.json() == {"ok": False, "error": "State parameter already used"}


async def test_auth_status_reflects_session(overrides, client):
    anonymous = await client.get("/api/auth/status")
    assert anonymous.json() == {"authenticated": False, "user": None}

    session_id = await _sign_in(client)
    response = await client.get(
        "/api/auth/status", headers=_cookie_header(**{SESSION_COOKIE: session_id})
    )

    assert response.json() == {
        "authenticated": True,
        "user": {"email": "ada@example.com", "name": "Ada", "picture": "https://pic"},
    }


async def test_signout_destroys_session(overrides, client):
    session_id = await _sign_in(client)

    response = await client.get(
        "/auth/signout", headers=_cookie_header(**{SESSION_COOKIE: session_id})
    )

    assert response.status_code == 302
    assert await overrides["sessions"].get(session_id) is None
    status = await client.get(
        "/api/auth/status", headers=_cookie_header(**{SESSION_COOKIE: session_id})
    )
    assert status.json()["authenticated"] is False



@pytest.mark.parametrize(
    "headers", [{}, _cookie_header(**{SESSION_COOKIE: "unknown-session-id"})]
)
async def test_signout_without_a_live_session_still_redirects(overrides, client, headers):
    response = await client.get("/auth/signout", headers=headers)

    assert response.status_code == 302
    assert response.headers["location"] == "/tabs/personal/index.html"
    cleared = " ".join(response.headers.get_list("set-cookie"))
    assert f"{SESSION_COOKIE}=" in cleared
    assert "oauth_state=" in cleared

async def test_anonymous_messages_are_demo_data(overrides, client):
    response = await client.get("/api/messages")

    assert response.status_code == 200
    body = response.json()
    assert body["is_fallback"] is True
    assert body["fallback_reason"] == "not_authenticated"
    assert body["count"] == len(body["messages"]) == 10
    assert overrides["data_service"].calls == [("mail", None, False)]


async def test_signed_in_mock_flag_is_forwarded(overrides, client):
    session_id = await _sign_in(client)

    response = await client.get(
        "/api/messages",
        params={"mock": "true"},
        headers=_cookie_header(**{SESSION_COOKIE: session_id}),
    )

    body = response.json()
    assert body["fallback_reason"] == "demo_mode"
    user_id = (await overrides["sessions"].get(session_id)).user_id
    assert overrides["data_service"].calls == [("mail", user_id, True)]


async def test_events_accept_window_parameters(overrides, client):
    response = await client.get(
        "/api/events", params={"max_results": 5, "time_min": "2024-01-01T00:00:00Z"}
    )

    assert response.status_code == 200
    call = overrides["data_service"].calls[0]
    assert call[0] == "events"
    assert call[2] == 5
    assert call[3].year == 2024


@pytest.mark.parametrize(
    "error, status",
    [
        (PermissionDeniedError("Gmail API is not enabled", api="Gmail", reason="api_not_enabled"), 403),
        (CredentialNotFoundError("No stored credentials"), 401),
        (TransientProviderError("Gmail is temporarily unavailable", api="Gmail"), 503),
    ],
)
async def test_errors_map_to_status_codes(overrides, client, error, status):
    overrides["data_service"].error = error

    response = await client.get("/api/files")

    assert response.status_code == status
    body = response.json()
    assert body["ok"] is False
    assert body["error"] == error.message
    if status == 403:
        assert body["reason"] == "api_not_enabled"


async def test_health_endpoints(overrides, client):
    assert (await client.get("/api/health")).json() == {"status": "ok"}

    before = await client.get("/api/health/db")
    assert before.status_code == 503

    await overrides["connection"].acquire()
    after = await client.get("/api/health/db")
    assert after.status_code == 200
    assert after.json() == {"status": "ok", "database": "connected"}


def _live_data_service(overrides, *, demo_fallback: bool) -> WorkspaceDataService:
    settings = ProviderSettings(DEMO_FALLBACK_ENABLED=demo_fallback)
    manager = CredentialManager(overrides["credentials"], overrides["oauth_client"], OAuthSettings())
    return WorkspaceDataService(ResilientCaller(manager, settings), settings)


def _break_session_store(overrides, monkeypatch) -> None:
    async def unavailable(session_id, *, now=None):
        raise StoreUnavailableError("Document store is unavailable")

    monkeypatch.setattr(overrides["sessions"], "get", unavailable)


async def test_session_store_outage_serves_demo_data(overrides, client, monkeypatch):
    from workspace_agent import dependencies

    session_id = await _sign_in(client)
    service = _live_data_service(overrides, demo_fallback=True)
    app.dependency_overrides[dependencies.get_workspace_data_service] = lambda: service
    _break_session_store(overrides, monkeypatch)

    response = await client.get(
        "/api/messages", headers=_cookie_header(**{SESSION_COOKIE: session_id})
    )

    assert response.status_code == 200
    body = response.json()
    assert body["is_fallback"] is True
    assert body["fallback_reason"] == "database_unavailable"
    assert body["count"] == 10


async def test_session_store_outage_without_fallback_is_unavailable(
    overrides, client, monkeypatch
):
    from workspace_agent import dependencies

    session_id = await _sign_in(client)
    service = _live_data_service(overrides, demo_fallback=False)
    app.dependency_overrides[dependencies.get_workspace_data_service] = lambda: service
    _break_session_store(overrides, monkeypatch)

    response = await client.get(
        "/api/files", headers=_cookie_header(**{SESSION_COOKIE: session_id})
    )

    assert response.status_code == 503
    assert response.json() == {"ok": False, "error": "Document store is unavailable"}
