"""FastAPI dependencies for application services."""

from typing import AsyncIterator, Callable

from fastapi import Request

from bff.datastore.clients import LazyTable, release_request_client
from bff.services.cache import TieredCache
from bff.services.executor import CallExecutor


def get_cache(request: Request) -> TieredCache:
    return request.app.state.cache


def get_executor(request: Request) -> CallExecutor:
    return request.app.state.executor


def table(name: str) -> Callable[[Request], AsyncIterator[LazyTable]]:
    """
    Dependency factory for a request-bound table.

    The client is resolved on first use, and a user client built for this
    request is closed once the response is sent.
    """

    async def dependency(request: Request) -> AsyncIterator[LazyTable]:
        binding = LazyTable(
            request.app.state.selector,
            request.state,
            name,
            request.app.state.executor,
        )
        try:
            yield binding
        finally:
            await release_request_client(request.state)

    dependency.__name__ = f"table_{name}"
    return dependency
