"""
Supabase client lifecycle and per-request client selection.

Three connection kinds serve queries:
- anonymous: anon key, RLS applies as the public role
- user: anon key plus the caller's JWT, RLS applies as that user
- admin: service-role key, bypasses RLS

The anonymous and admin clients are created once at startup and shared.
A user client is built lazily, at most once per request, and cached on the
request state.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from loguru import logger
from postgrest import AsyncPostgrestClient
from supabase import acreate_client
from supabase.lib.client_options import AsyncClientOptions
from supabase_auth import AsyncGoTrueClient

from bff.datastore.adapter import TableAdapter
from bff.datastore.types import DbResponse, FindManyOptions
from bff.services.errors import ServiceError
from bff.services.executor import CallExecutor
from bff.settings import Settings, global_settings

ADMIN_ROLES = frozenset({"admin", "service_role"})

_USER_CLIENT_ATTR = "_bff_user_client"
_RESOLVE_LOCK_ATTR = "_bff_client_lock"


class ClientKind(str, Enum):
    """Privilege level a query runs under."""

    ANONYMOUS = "anonymous"
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class RequestUser:
    """Authenticated principal attached to a request by the identity layer."""

    id: str
    role: str | None = None
    jwt: str | None = None
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


@dataclass
class ClientBinding:
    """Resolved connection for a request."""

    client: Any
    kind: ClientKind


UserClientFactory = Callable[[str], Awaitable[Any]]


class ClientSelector:
    """
    Picks the connection a request's queries run under.

    Decision order: admin role -> admin client; bearer JWT -> user client
    (built once per request); otherwise the anonymous client.
    """

    def __init__(
        self,
        anon_client: Any,
        admin_client: Any,
        user_client_factory: UserClientFactory,
    ):
        self._anon = anon_client
        self._admin = admin_client
        self._user_client_factory = user_client_factory

    @property
    def anon_client(self) -> Any:
        return self._anon

    @property
    def admin_client(self) -> Any:
        return self._admin

    async def resolve(self, state: Any) -> ClientBinding:
        user: RequestUser | None = getattr(state, "user", None)

        if user is not None and user.is_admin:
            return ClientBinding(self._admin, ClientKind.ADMIN)

        if user is not None and user.jwt:
            lock = getattr(state, _RESOLVE_LOCK_ATTR, None)
            if lock is None:
                lock = asyncio.Lock()
                setattr(state, _RESOLVE_LOCK_ATTR, lock)

            async with lock:
                client = getattr(state, _USER_CLIENT_ATTR, None)
                if client is None:
                    client = await self._user_client_factory(user.jwt)
                    setattr(state, _USER_CLIENT_ATTR, client)
                    logger.debug(f"Created user-scoped client for user {user.id}")
            return ClientBinding(client, ClientKind.USER)

        return ClientBinding(self._anon, ClientKind.ANONYMOUS)


async def release_request_client(state: Any) -> None:
    """Close the user client cached on a finished request, if one was built."""
    client = getattr(state, _USER_CLIENT_ATTR, None)
    if client is None:
        return
    setattr(state, _USER_CLIENT_ATTR, None)
    await client.aclose()


class LazyTable:
    """
    Table binding that defers client resolution until first use.

    Exposes the TableAdapter method set. The first call resolves the client
    and builds the adapter exactly once; a binding that is never called never
    constructs a client. Resolution failures surface at that first call.
    """

    def __init__(
        self,
        selector: ClientSelector | None,
        state: Any,
        table: str,
        executor: CallExecutor,
    ):
        self._selector = selector
        self._state = state
        self.table = table
        self._executor = executor
        self._adapter: TableAdapter | None = None
        self._kind: ClientKind | None = None
        self._lock = asyncio.Lock()

    @property
    def resolved(self) -> bool:
        return self._adapter is not None

    @property
    def kind(self) -> ClientKind | None:
        return self._kind

    async def adapter(self) -> TableAdapter:
        if self._adapter is not None:
            return self._adapter
        async with self._lock:
            if self._adapter is None:
                if self._selector is None:
                    raise ServiceError("Supabase clients are not configured", "supabase")
                binding = await self._selector.resolve(self._state)
                self._kind = binding.kind
                self._adapter = TableAdapter(binding.client, self.table, self._executor)
        return self._adapter

    async def find_by_id(self, *args: Any, **kwargs: Any) -> DbResponse:
        return await (await self.adapter()).find_by_id(*args, **kwargs)

    async def find_many(self, options: FindManyOptions | None = None) -> DbResponse:
        return await (await self.adapter()).find_many(options)

    async def insert_one(self, *args: Any, **kwargs: Any) -> DbResponse:
        return await (await self.adapter()).insert_one(*args, **kwargs)

    async def upsert_one(self, *args: Any, **kwargs: Any) -> DbResponse:
        return await (await self.adapter()).upsert_one(*args, **kwargs)

    async def update_by_id(self, *args: Any, **kwargs: Any) -> DbResponse:
        return await (await self.adapter()).update_by_id(*args, **kwargs)

    async def delete_by_id(self, *args: Any, **kwargs: Any) -> DbResponse:
        return await (await self.adapter()).delete_by_id(*args, **kwargs)

    async def rpc(self, name: str, args: dict[str, Any] | None = None) -> DbResponse:
        return await (await self.adapter()).rpc(name, args)

    async def exists(self, where: dict[str, Any]) -> bool:
        return await (await self.adapter()).exists(where)

    async def count(self, where: dict[str, Any] | None = None) -> int:
        return await (await self.adapter()).count(where)


def _client_options() -> AsyncClientOptions:
    return AsyncClientOptions(auto_refresh_token=False, persist_session=False)


def make_user_client_factory(settings: Settings) -> UserClientFactory:
    """
    Factory for clients that run PostgREST queries as the JWT's user.

    Only the PostgREST connection is built, so aclose() releases every
    connection the client opened.
    """
    rest_url = f"{settings.supabase_url.rstrip('/')}/rest/v1"

    async def create_user_client(jwt: str) -> AsyncPostgrestClient:
        return AsyncPostgrestClient(
            rest_url,
            headers={
                "apikey": settings.supabase_anon_key,
                "Authorization": f"Bearer {jwt}",
            },
        )

    return create_user_client


async def init_clients(settings: Settings = global_settings) -> ClientSelector:
    """Create the anonymous and admin clients and the request selector."""
    anon_client = await acreate_client(
        settings.supabase_url, settings.supabase_anon_key, options=_client_options()
    )
    admin_client = await acreate_client(
        settings.supabase_url,
        settings.supabase_service_role_key,
        options=_client_options(),
    )
    logger.info(f"Supabase clients initialized for {settings.supabase_url}")
    return ClientSelector(anon_client, admin_client, make_user_client_factory(settings))


def create_auth_client(settings: Settings = global_settings) -> AsyncGoTrueClient:
    """
    Dedicated Supabase Auth client for sign-up, sign-in and refresh.

    Kept apart from the shared query clients: signing in on a supabase client
    switches its PostgREST Authorization header to the new session.
    """
    return AsyncGoTrueClient(
        url=f"{settings.supabase_url.rstrip('/')}/auth/v1",
        headers={
            "apikey": settings.supabase_anon_key,
            "Authorization": f"Bearer {settings.supabase_anon_key}",
        },
        auto_refresh_token=False,
        persist_session=False,
    )


async def close_clients(selector: ClientSelector) -> None:
    """Close the process-wide clients, including their auth HTTP sessions."""
    for client in (selector.anon_client, selector.admin_client):
        await client.postgrest.aclose()
        await client.auth.close()
    logger.info("Supabase clients closed")
