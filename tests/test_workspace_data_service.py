try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
import json
from datetime import datetime, timezone

import httplib2
import pytest
from google.oauth2.credentials import Credentials
from googleapiclient.errors import HttpError

from workspace_agent.core.config import ProviderSettings
from workspace_agent.core.errors import (
    NotAuthenticatedError,
    PermissionDeniedError,
    ProviderAuthError,
    StoreUnavailableError,
    TokenRefreshUnavailableError,
    TransientProviderError,
)
from workspace_agent.schemas.google import NormalizedEvent, NormalizedFile, NormalizedMessage
from workspace_agent.services.resilience import ResilientCaller
from workspace_agent.services.workspace_data import WorkspaceDataService

USER_ID = "0123456789abcdef0123456789abcdef"


def http_error(status: int, *, reason: str = "", message: str = "boom") -> HttpError:
    error: dict = {"code": status, "message": message}
    if reason:
        error["errors"] = [{"reason": reason, "message": message}]
    return HttpError(httplib2.Response({"status": status}), json.dumps({"error": error}).encode())


class FakeCredentialManager:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.calls: list[tuple[str, bool]] = []
        self.error = error

    async def get_client_for_user(self, user_id: str, *, force_refresh: bool = False) -> Credentials:
        self.calls.append((user_id, force_refresh))
        if self.error is not None:
            raise self.error
        return Credentials(token=f"token-{len(self.calls)}")


class FakeGmailClient:
    def __init__(self, *, list_errors=(), message_ids=("m1", "m2"), slow=(), broken=()) -> None:
        self.list_errors = list(list_errors)
        self.message_ids = list(message_ids)
        self.slow = set(slow)
        self.broken = set(broken)
        self.list_tokens: list[str] = []

    async def list_message_ids(self, credentials: Credentials, *, max_results: int = 10) -> list[str]:
        self.list_tokens.append(credentials.token)
        if self.list_errors:
            error = self.list_errors.pop(0) if len(self.list_errors) > 1 else self.list_errors[0]
            if error is not None:
                raise error
        return self.message_ids[:max_results]

    async def get_message(self, credentials: Credentials, message_id: str) -> NormalizedMessage:
        if message_id in self.slow:
            await asyncio.sleep(5)
        if message_id in self.broken:
            raise http_error(500)
        return NormalizedMessage(id=message_id, subject=f"Subject {message_id}")


class FakeDriveClient:
    async def list_recent_files(self, credentials: Credentials, *, page_size: int = 10):
        return [NormalizedFile(id="f1", name="Roadmap")][:page_size]


class FakeCalendarClient:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    async def list_events(self, credentials: Credentials, *, max_results: int = 20, time_min=None):
        self.calls.append({"max_results": max_results, "time_min": time_min})
        return [NormalizedEvent(id="e1", summary="Standup")]


def _service(
    gmail: FakeGmailClient | None = None,
    *,
    manager: FakeCredentialManager | None = None,
    demo_fallback: bool = True,
    calendar: FakeCalendarClient | None = None,
) -> WorkspaceDataService:
    settings = ProviderSettings(
        PROVIDER_MAX_RETRIES=3,
        PROVIDER_BACKOFF_SECONDS=0,
        PROVIDER_ITEM_TIMEOUT_SECONDS=0.05,
        DEMO_FALLBACK_ENABLED=demo_fallback,
    )
    return WorkspaceDataService(
        ResilientCaller(manager or FakeCredentialManager(), settings),
        settings,
        gmail_client=gmail or FakeGmailClient(),
        drive_client=FakeDriveClient(),
        calendar_client=calendar or FakeCalendarClient(),
    )


@pytest.mark.asyncio
async def test_unauthenticated_mail_request_gets_demo_messages() -> None:
    manager = FakeCredentialManager()

    result = await _service(manager=manager).fetch_mail(None)

    assert result.is_fallback is True
    assert result.fallback_reason == "not_authenticated"
    assert len(result.items) == 10
    assert manager.calls == []


@pytest.mark.asyncio
async def test_unauthenticated_request_without_fallback_is_rejected() -> None:
    with pytest.raises(NotAuthenticatedError):
        await _service(demo_fallback=False).fetch_files(None)


@pytest.mark.asyncio
async def test_demo_mode_skips_provider() -> None:
    manager = FakeCredentialManager()

    result = await _service(manager=manager).fetch_events(USER_ID, demo=True)

    assert result.fallback_reason == "demo_mode"
    assert len(result.items) == 5
    assert manager.calls == []


@pytest.mark.asyncio
async def test_mail_returns_details_in_list_order() -> None:
    result = await _service(FakeGmailClient(message_ids=["a", "b", "c"])).fetch_mail(USER_ID)

    assert result.is_fallback is False
    assert [message.id for message in result.items] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_slow_and_failing_details_are_dropped() -> None:
    gmail = FakeGmailClient(
        message_ids=["m1", "m2", "m3", "m4", "m5"], slow={"m2", "m4"}, broken=set()
    )

    result = await _service(gmail).fetch_mail(USER_ID)

    assert [message.id for message in result.items] == ["m1", "m3", "m5"]
    assert result.is_fallback is False

    gmail = FakeGmailClient(message_ids=["m1", "m2", "m3"], broken={"m1"})
    result = await _service(gmail).fetch_mail(USER_ID)
    assert [message.id for message in result.items] == ["m2", "m3"]


@pytest.mark.asyncio
async def test_rate_limited_list_falls_back_after_retry_budget() -> None:
    gmail = FakeGmailClient(list_errors=[http_error(429)])

    result = await _service(gmail).fetch_mail(USER_ID)

    assert len(gmail.list_tokens) == 4
    assert result.is_fallback is True
    assert result.fallback_reason == "api_error"
    assert "temporarily unavailable" in result.fallback_detail


@pytest.mark.asyncio
async def test_rate_limited_list_without_fallback_raises_transient_error() -> None:
    gmail = FakeGmailClient(list_errors=[http_error(429)])

    with pytest.raises(TransientProviderError):
        await _service(gmail, demo_fallback=False).fetch_mail(USER_ID)

    assert len(gmail.list_tokens) == 4


@pytest.mark.asyncio
async def test_transient_error_then_success_returns_live_data() -> None:
    gmail = FakeGmailClient(list_errors=[http_error(503), None])

    result = await _service(gmail).fetch_mail(USER_ID)

    assert result.is_fallback is False
    assert len(gmail.list_tokens) == 2


@pytest.mark.asyncio
async def test_permission_problem_is_not_retried() -> None:
    gmail = FakeGmailClient(list_errors=[http_error(403, reason="accessNotConfigured")])

    with pytest.raises(PermissionDeniedError) as excinfo:
        await _service(gmail, demo_fallback=False).fetch_mail(USER_ID)

    assert excinfo.value.reason == "api_not_enabled"
    assert len(gmail.list_tokens) == 1


@pytest.mark.asyncio
async def test_rejected_token_triggers_one_forced_refresh() -> None:
    manager = FakeCredentialManager()
    gmail = FakeGmailClient(list_errors=[http_error(401), None])

    result = await _service(gmail, manager=manager).fetch_mail(USER_ID)

    assert result.is_fallback is False
    assert manager.calls == [(USER_ID, False), (USER_ID, True)]
    assert gmail.list_tokens == ["token-1", "token-2"]


@pytest.mark.asyncio
async def test_token_rejected_twice_is_fatal_even_with_fallback() -> None:
    manager = FakeCredentialManager()
    gmail = FakeGmailClient(list_errors=[http_error(401)])

    with pytest.raises(ProviderAuthError):
        await _service(gmail, manager=manager).fetch_mail(USER_ID)

    assert manager.calls == [(USER_ID, False), (USER_ID, True)]


@pytest.mark.asyncio
async def test_store_outage_falls_back_with_database_reason() -> None:
    manager = FakeCredentialManager(error=StoreUnavailableError("store down"))

    result = await _service(manager=manager).fetch_files(USER_ID)

    assert result.fallback_reason == "database_unavailable"
    assert result.fallback_detail == "store down"
    assert len(result.items) == 10



@pytest.mark.asyncio
async def test_session_store_outage_falls_back_without_provider_call() -> None:
    manager = FakeCredentialManager()

    result = await _service(manager=manager).fetch_mail(
        None, store_error=StoreUnavailableError("session table down")
    )

    assert result.fallback_reason == "database_unavailable"
    assert result.fallback_detail == "session table down"
    assert len(result.items) == 10
    assert manager.calls == []


@pytest.mark.asyncio
async def test_session_store_outage_without_fallback_raises() -> None:
    with pytest.raises(StoreUnavailableError):
        await _service(demo_fallback=False).fetch_events(
            None, store_error=StoreUnavailableError("session table down")
        )


@pytest.mark.asyncio
async def test_token_endpoint_outage_falls_back_with_api_reason() -> None:
    manager = FakeCredentialManager(
        error=TokenRefreshUnavailableError("Token endpoint unavailable after 3 attempts")
    )

    result = await _service(manager=manager).fetch_mail(USER_ID)

    assert result.is_fallback is True
    assert result.fallback_reason == "api_error"
    assert "Token endpoint" in result.fallback_detail


@pytest.mark.asyncio
async def test_token_endpoint_outage_without_fallback_raises() -> None:
    manager = FakeCredentialManager(error=TokenRefreshUnavailableError("down"))

    with pytest.raises(TokenRefreshUnavailableError):
        await _service(manager=manager, demo_fallback=False).fetch_files(USER_ID)

@pytest.mark.asyncio
async def test_events_forward_window_arguments() -> None:
    calendar = FakeCalendarClient()
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)

    result = await _service(calendar=calendar).fetch_events(USER_ID, max_results=5, time_min=start)

    assert [event.id for event in result.items] == ["e1"]
    assert calendar.calls == [{"max_results": 5, "time_min": start}]
