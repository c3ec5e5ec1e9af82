"""
Identity layer.

Bearer tokens are validated by Supabase Auth; this module only reads the
result and attaches a RequestUser to request.state.user.
"""

from typing import Any, Protocol

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from supabase_auth.errors import AuthError

from bff.datastore.clients import RequestUser
from bff.exceptions import ForbiddenError, UnauthorizedError


class IdentityProvider(Protocol):
    async def get_user(self, jwt: str) -> RequestUser | None: ...


class SupabaseIdentityProvider:
    """Resolves bearer tokens through Supabase Auth."""

    def __init__(self, client: Any):
        self._client = client

    async def get_user(self, jwt: str) -> RequestUser | None:
        try:
            response = await self._client.auth.get_user(jwt)
        except AuthError as e:
            logger.debug(f"Token rejected by identity provider: {e}")
            return None

        user = response.user if response else None
        if user is None:
            return None

        app_metadata = user.app_metadata or {}
        return RequestUser(
            id=user.id,
            role=app_metadata.get("role") or user.role,
            jwt=jwt,
            email=user.email,
        )


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class AuthMiddleware(BaseHTTPMiddleware):
    """
    Attach the caller's identity before routing.

    Requests without a bearer token continue anonymously; requests with an
    invalid token are rejected with 401.
    """

    def __init__(self, app, provider: IdentityProvider | None = None):
        super().__init__(app)
        self._provider = provider

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.user = None
        token = bearer_token(request)
        provider = self._provider or getattr(request.app.state, "identity", None)

        if token and provider is not None:
            user = await provider.get_user(token)
            if user is None:
                return JSONResponse(
                    status_code=401,
                    content={
                        "statusCode": 401,
                        "error": "Unauthorized",
                        "message": "Invalid or expired token",
                    },
                    headers={"WWW-Authenticate": "Bearer"},
                )
            request.state.user = user

        return await call_next(request)


def current_user(request: Request) -> RequestUser:
    """Dependency: the authenticated user, or 401."""
    user = getattr(request.state, "user", None)
    if user is None:
        raise UnauthorizedError("Authentication required")
    return user


def optional_user(request: Request) -> RequestUser | None:
    return getattr(request.state, "user", None)


def require_admin(request: Request) -> RequestUser:
    user = current_user(request)
    if not user.is_admin:
        raise ForbiddenError("Administrator role required")
    return user
