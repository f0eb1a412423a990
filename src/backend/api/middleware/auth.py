from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.middleware.exception_handlers import AuthenticationError
from api.services.auth_service import AuthService, TokenExpired
from core.constants import get_settings
from models.error_models import ErrorCode
from models.schemas.auth import UserInfo

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> UserInfo:
    """Authenticate incoming REST requests.

    Without a token, localhost requests resolve to the configured default
    user when ALLOW_LOCALHOST_NOAUTH is enabled.
    """
    settings = get_settings()

    if credentials is None:
        if settings.allow_localhost_noauth and _is_localhost(request):
            return UserInfo(id=settings.default_user_id, authenticated=False)
        raise AuthenticationError(
            message="Authentication required",
            code=ErrorCode.AUTH_REQUIRED,
        )

    auth = AuthService(settings)
    try:
        user_id = auth.user_id_from_token(credentials.credentials)
    except TokenExpired as exc:
        raise AuthenticationError(
            message="Token expired",
            code=ErrorCode.AUTH_EXPIRED_TOKEN,
        ) from exc
    except ValueError as exc:
        raise AuthenticationError(
            message="Invalid token",
            code=ErrorCode.AUTH_INVALID_TOKEN,
        ) from exc

    return UserInfo(id=user_id)


def _is_localhost(request: Request) -> bool:
    """Check if the request originates from localhost."""
    host = request.client.host if request.client else ""
    return host in {"127.0.0.1", "localhost", "::1"}
