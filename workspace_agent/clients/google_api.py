"""Shared construction of Google API discovery clients."""

from __future__ import annotations

from typing import Any, Callable

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

ServiceFactory = Callable[[str, str, Credentials], Any]


def build_service(api_name: str, version: str, credentials: Credentials) -> Any:
    """Build a discovery client bound to one user's credentials.

    Blocking; call from a worker thread.
    """
    return build(api_name, version, credentials=credentials, cache_discovery=False)


__all__ = ["ServiceFactory", "build_service"]
