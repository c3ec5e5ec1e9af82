"""
Auth service - sign-up, sign-in, refresh and logout against Supabase Auth.

Calls go through the CallExecutor under `auth.<operation>` labels. Sign-up
is not retried: a lost response may already have created the account.
Supabase Auth errors surface as DomainError with the upstream status, except
that bad credentials and dead tokens are reported as 401.
"""

from typing import Any, Awaitable, Callable

from loguru import logger
from supabase_auth.errors import AuthError
from supabase_auth.types import AuthResponse, Session, User

from bff.auth.models import (
    CONFIRMATION_MESSAGE,
    LoginResponse,
    MessageResponse,
    RegisterCreatorRequest,
)
from bff.datastore.types import DomainError
from bff.services.executor import CallExecutor

DEFAULT_ROLE = "user"
DEFAULT_USER_TYPE = "fan"

UNAUTHORIZED_CODES = frozenset(
    {
        "invalid_credentials",
        "bad_jwt",
        "invalid_jwt",
        "session_not_found",
        "refresh_token_not_found",
        "refresh_token_already_used",
    }
)


def user_role(user: User) -> str:
    app_metadata = user.app_metadata or {}
    user_metadata = user.user_metadata or {}
    roles = user_metadata.get("roles") or []
    return app_metadata.get("role") or (roles[0] if roles else None) or DEFAULT_ROLE


def user_type(user: User) -> str:
    return (user.user_metadata or {}).get("user_type") or DEFAULT_USER_TYPE


def to_login_response(session: Session) -> LoginResponse:
    user = session.user
    return LoginResponse(
        user_id=user.id,
        email=user.email,
        role=user_role(user),
        user_type=user_type(user),
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        expires_in=session.expires_in,
    )


def auth_failure(error: AuthError) -> DomainError:
    """Translate a Supabase Auth error into a DomainError."""
    code = error.code or getattr(error, "name", "AuthError")
    status = getattr(error, "status", None) or 503
    if error.code in UNAUTHORIZED_CODES:
        status = 401
    elif status >= 500:
        status = 503
    return DomainError(error.message, code=code, status=status)


class AuthService:
    """
    Usage:
        service = AuthService(auth_client, executor, metrics)
        session = await service.login("jo@example.com", "secret")
    """

    def __init__(self, client: Any, executor: CallExecutor, metrics: Any = None):
        self.client = client
        self.executor = executor
        self.metrics = metrics

    async def register(
        self, email: str, password: str
    ) -> LoginResponse | MessageResponse:
        response = await self._call(
            "signUp",
            lambda: self.client.sign_up({"email": email, "password": password}),
            max_retries=0,
        )
        return self._signed_up(response)

    async def register_creator(
        self, request: RegisterCreatorRequest
    ) -> LoginResponse | MessageResponse:
        credentials = {
            "email": request.email,
            "password": request.password,
            "options": {"data": request.to_metadata()},
        }
        response = await self._call(
            "signUpCreator", lambda: self.client.sign_up(credentials), max_retries=0
        )
        if self.metrics is not None:
            self.metrics.creator_registrations.inc()
        return self._signed_up(response)

    async def login(self, email: str, password: str) -> LoginResponse:
        response = await self._call(
            "signIn",
            lambda: self.client.sign_in_with_password(
                {"email": email, "password": password}
            ),
        )
        return self._session(response)

    async def refresh(self, refresh_token: str) -> LoginResponse:
        response = await self._call(
            "refresh", lambda: self.client.refresh_session(refresh_token)
        )
        return self._session(response)

    async def logout(self, jwt: str) -> None:
        await self._call("signOut", lambda: self.client.admin.sign_out(jwt))

    async def _call(
        self, operation: str, fn: Callable[[], Awaitable[Any]], **overrides: Any
    ) -> Any:
        label = f"auth.{operation}"
        try:
            return await self.executor.execute(fn, label=label, **overrides)
        except AuthError as e:
            error = auth_failure(e)
            logger.info(f"[AuthService] {label} rejected: {error.code} {error.message}")
            raise error from e

    @staticmethod
    def _signed_up(response: AuthResponse) -> LoginResponse | MessageResponse:
        if response.session is None:
            return MessageResponse(message=CONFIRMATION_MESSAGE)
        return to_login_response(response.session)

    @staticmethod
    def _session(response: AuthResponse) -> LoginResponse:
        if response.session is None:
            raise DomainError("No session was issued", code="NO_SESSION", status=401)
        return to_login_response(response.session)
