"""Middleware: optional bearer-token check shared by every API route."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from ortclassify.config import Settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def _configured_api_key(request: Request) -> str | None:
    settings: Settings = request.app.state.settings
    return settings.api_key


def _token_matches(credentials: HTTPAuthorizationCredentials | None, expected: str) -> bool:
    if credentials is None:
        return False
    return secrets.compare_digest(credentials.credentials.encode(), expected.encode())


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Reject the request unless it carries the configured API key.

    ORTCLASSIFY_API_KEY unset disables the check. Rejections are logged with
    the client address and path, never with the presented token.
    """
    expected = _configured_api_key(request)
    if expected is None:
        return

    if not _token_matches(credentials, expected):
        client = request.client.host if request.client else "unknown"
        reason = "missing" if credentials is None else "invalid"
        logger.warning("Rejected %s API key from %s for %s", reason, client, request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
