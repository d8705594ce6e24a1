"""
FastAPI routes for Google sign-in and the workspace data endpoints.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from workspace_agent.clients.store_connection import StoreConnection
from workspace_agent.core.config import AppSettings
from workspace_agent.core.errors import (
    FatalAuthError,
    HandshakeError,
    InputValidationError,
    PermissionDeniedError,
    ProfileResolutionError,
    ProviderError,
    ReauthenticationRequiredError,
    SessionPersistenceError,
    StoreUnavailableError,
    TokenExchangeFailedError,
    TokenRefreshUnavailableError,
    TransientProviderError,
    WorkspaceAgentError,
)
from workspace_agent.dependencies import (
    get_app_settings,
    get_credential_store,
    get_handshake_service,
    get_session_store,
    get_store_connection,
    get_workspace_data_service,
)
from workspace_agent.schemas import AuthStatus, AuthUser, FetchResult
from workspace_agent.services.credential_store import CredentialStore
from workspace_agent.services.oauth_handshake import OAuthHandshakeService
from workspace_agent.services.session_store import SessionRecord, SessionStore
from workspace_agent.services.workspace_data import WorkspaceDataService

logger = logging.getLogger(__name__)

OAUTH_STATE_COOKIE = "oauth_state"

router = APIRouter()
auth_router = APIRouter()

# Most specific first.
_ERROR_STATUSES = (
    (InputValidationError, HTTPStatus.BAD_REQUEST),
    (FatalAuthError, HTTPStatus.UNAUTHORIZED),
    (PermissionDeniedError, HTTPStatus.FORBIDDEN),
    (TransientProviderError, HTTPStatus.SERVICE_UNAVAILABLE),
    (ProviderError, HTTPStatus.BAD_GATEWAY),
    (TokenRefreshUnavailableError, HTTPStatus.SERVICE_UNAVAILABLE),
    (StoreUnavailableError, HTTPStatus.SERVICE_UNAVAILABLE),
    (TokenExchangeFailedError, HTTPStatus.BAD_GATEWAY),
    (ProfileResolutionError, HTTPStatus.BAD_GATEWAY),
    (SessionPersistenceError, HTTPStatus.INTERNAL_SERVER_ERROR),
    (HandshakeError, HTTPStatus.BAD_REQUEST),
)


def status_for_error(exc: WorkspaceAgentError) -> HTTPStatus:
    for error_type, status in _ERROR_STATUSES:
        if isinstance(exc, error_type):
            return status
    return HTTPStatus.INTERNAL_SERVER_ERROR


async def workspace_error_handler(request: Request, exc: WorkspaceAgentError) -> JSONResponse:
    """Render every application error as ``{"ok": false, "error": message}``."""
    status = status_for_error(exc)
    log = logger.error if status >= HTTPStatus.INTERNAL_SERVER_ERROR else logger.warning
    log("%s %s failed with %s: %s", request.method, request.url.path, type(exc).__name__, exc.message)

    content: dict[str, Any] = {"ok": False, "error": exc.message}
    if isinstance(exc, PermissionDeniedError):
        content["reason"] = exc.reason
    return JSONResponse(status_code=status, content=content)


def _wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "").lower()


def _set_session_cookie(response: Response, session: SessionRecord, settings: AppSettings) -> None:
    response.set_cookie(
        key=settings.security.session_cookie_name,
        value=session.session_id,
        max_age=settings.security.session_ttl_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.security.session_cookie_secure,
    )


async def _load_session(
    request: Request, session_store: SessionStore, settings: AppSettings
) -> Optional[SessionRecord]:
    session_id = request.cookies.get(settings.security.session_cookie_name)
    if not session_id:
        return None
    return await session_store.get(session_id)


@dataclass(frozen=True)
class SessionUser:
    """Who a data request belongs to.

    ``store_error`` is set when the session could not be read; the data service
    then decides between demo data and a 503.
    """

    user_id: Optional[str] = None
    store_error: Optional[StoreUnavailableError] = None


async def get_session_user(
    request: Request,
    session_store: Annotated[SessionStore, Depends(get_session_store)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> SessionUser:
    try:
        session = await _load_session(request, session_store, settings)
    except StoreUnavailableError as exc:
        logger.warning("Could not load session, store unavailable: %s", exc.message)
        return SessionUser(store_error=exc)
    return SessionUser(user_id=session.user_id if session else None)


def _listing(key: str, result: FetchResult) -> dict:
    return {
        key: [item.model_dump() for item in result.items],
        "count": result.count,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "is_fallback": result.is_fallback,
        "fallback_reason": result.fallback_reason,
        "fallback_detail": result.fallback_detail,
    }


@auth_router.get("/signin")
async def sign_in(
    request: Request,
    handshake: Annotated[OAuthHandshakeService, Depends(get_handshake_service)],
    session_store: Annotated[SessionStore, Depends(get_session_store)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    return_to: Optional[str] = Query(
        default=None, description="Local path to return to after sign-in."
    ),
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the Google consent screen.",
    ),
) -> Response:
    """Start the OAuth flow and send the user to Google's consent screen."""
    start = handshake.start_handshake(return_to)

    session: Optional[SessionRecord] = None
    try:
        session = await _load_session(request, session_store, settings) or session_store.new_session()
        session.oauth_state = start.state
        session.oauth_state_timestamp = start.issued_at
        await session_store.save(session)
    except StoreUnavailableError as exc:
        # The signed state alone is enough to finish the handshake.
        logger.warning("Could not keep OAuth state in the session: %s", exc.message)
        session = None

    if redirect or _wants_html(request):
        response: Response = RedirectResponse(
            url=start.authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT
        )
    else:
        response = JSONResponse(
            content={"authorization_url": start.authorization_url, "state": start.state}
        )

    if session is not None:
        _set_session_cookie(response, session, settings)
    response.set_cookie(
        key=OAUTH_STATE_COOKIE,
        value=start.state,
        max_age=settings.oauth.state_ttl_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.security.session_cookie_secure,
    )
    return response


@auth_router.get("/callback")
async def oauth_callback(
    request: Request,
    handshake: Annotated[OAuthHandshakeService, Depends(get_handshake_service)],
    session_store: Annotated[SessionStore, Depends(get_session_store)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    code: Optional[str] = Query(default=None, description="Authorization code from Google."),
    state: Optional[str] = Query(default=None, description="OAuth state token."),
    error: Optional[str] = Query(default=None, description="Error reported by Google."),
) -> Response:
    """Complete the OAuth exchange, then establish the session and redirect."""
    if error:
        raise HandshakeError(f"Google authorization failed: {error}")

    previous = await _load_session(request, session_store, settings)
    session_state = (previous.oauth_state if previous else None) or request.cookies.get(
        OAUTH_STATE_COOKIE
    )
    result = await handshake.complete_handshake(code, state, session_state=session_state)

    # A fresh session id on sign-in; the pre-login id is never promoted.
    session = session_store.new_session()
    session.user_id = result.user_id
    try:
        await asyncio.wait_for(
            session_store.save(session),
            timeout=settings.security.session_save_timeout_seconds,
        )
    except (asyncio.TimeoutError, StoreUnavailableError) as exc:
        logger.error("Failed to save session for user %s: %s", result.user_id, exc)
        raise SessionPersistenceError(
            "Authentication succeeded but failed to create session"
        ) from exc

    if previous is not None:
        try:
            await session_store.destroy(previous.session_id)
        except StoreUnavailableError as exc:
            logger.warning("Could not remove pre-login session: %s", exc.message)

    logger.info("Session established for user %s", result.user_id)
    response = RedirectResponse(
        url=result.return_to or settings.post_signin_redirect, status_code=HTTPStatus.FOUND
    )
    _set_session_cookie(response, session, settings)
    response.delete_cookie(OAUTH_STATE_COOKIE)
    return response


@auth_router.get("/signout")
async def sign_out(
    request: Request,
    session_store: Annotated[SessionStore, Depends(get_session_store)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> Response:
    """Clear the session; stored credentials are kept for the next sign-in."""
    session_id = request.cookies.get(settings.security.session_cookie_name)
    if session_id:
        try:
            await session_store.destroy(session_id)
        except StoreUnavailableError as exc:
            logger.warning("Could not delete session during sign-out: %s", exc.message)

    response = RedirectResponse(url=settings.post_signout_redirect, status_code=HTTPStatus.FOUND)
    response.delete_cookie(settings.security.session_cookie_name)
    response.delete_cookie(OAUTH_STATE_COOKIE)
    return response


@router.get("/auth/status", response_model=AuthStatus)
async def auth_status(
    request: Request,
    session_store: Annotated[SessionStore, Depends(get_session_store)],
    credential_store: Annotated[CredentialStore, Depends(get_credential_store)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> AuthStatus:
    session = await _load_session(request, session_store, settings)
    if session is None or not session.user_id:
        return AuthStatus(authenticated=False)

    try:
        record = await credential_store.get(session.user_id)
    except ReauthenticationRequiredError:
        record = None
    if record is None:
        logger.info("Session %s... points at a missing credential; clearing", session.session_id[:8])
        await session_store.destroy(session.session_id)
        return AuthStatus(authenticated=False)

    return AuthStatus(
        authenticated=True,
        user=AuthUser(email=record.email, name=record.name, picture=record.picture),
    )


@router.get("/messages")
async def list_messages(
    user: Annotated[SessionUser, Depends(get_session_user)],
    data_service: Annotated[WorkspaceDataService, Depends(get_workspace_data_service)],
    mock: bool = Query(default=False, description="Force demo data."),
) -> dict:
    result = await data_service.fetch_mail(user.user_id, demo=mock, store_error=user.store_error)
    return _listing("messages", result)


@router.get("/files")
async def list_files(
    user: Annotated[SessionUser, Depends(get_session_user)],
    data_service: Annotated[WorkspaceDataService, Depends(get_workspace_data_service)],
    mock: bool = Query(default=False, description="Force demo data."),
) -> dict:
    result = await data_service.fetch_files(user.user_id, demo=mock, store_error=user.store_error)
    return _listing("files", result)


@router.get("/events")
async def list_events(
    user: Annotated[SessionUser, Depends(get_session_user)],
    data_service: Annotated[WorkspaceDataService, Depends(get_workspace_data_service)],
    max_results: int = Query(default=20, ge=1, le=250),
    time_min: Optional[datetime] = Query(
        default=None, description="Earliest event start; defaults to now."
    ),
    mock: bool = Query(default=False, description="Force demo data."),
) -> dict:
    result = await data_service.fetch_events(
        user.user_id,
        max_results=max_results,
        time_min=time_min,
        demo=mock,
        store_error=user.store_error,
    )
    return _listing("events", result)


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/health/db")
async def database_health(
    connection: Annotated[StoreConnection, Depends(get_store_connection)],
) -> JSONResponse:
    """Ping the document store without reconnecting."""
    if await connection.health_check():
        return JSONResponse(content={"status": "ok", "database": "connected"})
    return JSONResponse(
        status_code=HTTPStatus.SERVICE_UNAVAILABLE,
        content={"status": "degraded", "database": "disconnected"},
    )


__all__ = [
    "OAUTH_STATE_COOKIE",
    "SessionUser",
    "auth_router",
    "get_session_user",
    "router",
    "status_for_error",
    "workspace_error_handler",
]
