"""
Repository layer - table access with optional write hooks.
"""

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from bff.datastore.clients import LazyTable
from bff.datastore.types import DbResponse, FindManyOptions

Hook = Callable[[Any], Any | Awaitable[Any]]


@dataclass
class RepositoryHooks:
    """Write hooks. before_* hooks return the (possibly modified) payload."""

    before_insert: Hook | None = None
    after_insert: Hook | None = None
    before_update: Hook | None = None
    after_update: Hook | None = None


async def _run_hook(hook: Hook, data: Any) -> Any:
    result = hook(data)
    if inspect.isawaitable(result):
        result = await result
    return result


class BaseRepository:
    """Repository over one table binding."""

    def __init__(self, table: LazyTable):
        self.table = table
        self.hooks = RepositoryHooks()

    def register_hooks(self, **hooks: Hook) -> None:
        for name, hook in hooks.items():
            if not hasattr(self.hooks, name):
                raise ValueError(f"Unknown repository hook: {name}")
            setattr(self.hooks, name, hook)

    async def find_by_id(self, row_id: str | int, columns: str = "*") -> DbResponse:
        return await self.table.find_by_id(row_id, columns=columns)

    async def find_many(self, options: FindManyOptions | None = None) -> DbResponse:
        return await self.table.find_many(options)

    async def find_where(self, where: dict[str, Any]) -> DbResponse:
        return await self.table.find_many(FindManyOptions(where=where))

    async def find_paginated(
        self, options: FindManyOptions | None = None
    ) -> DbResponse:
        return await self.table.find_many(options or FindManyOptions())

    async def insert_one(
        self, payload: dict[str, Any], columns: str = "*"
    ) -> DbResponse:
        if self.hooks.before_insert:
            payload = await _run_hook(self.hooks.before_insert, payload)

        result = await self.table.insert_one(payload, columns=columns)

        if result.data is not None and self.hooks.after_insert:
            await _run_hook(self.hooks.after_insert, result.data)
        return result

    async def update_by_id(
        self, row_id: str | int, patch: dict[str, Any], columns: str = "*"
    ) -> DbResponse:
        if self.hooks.before_update:
            patch = await _run_hook(self.hooks.before_update, patch)

        result = await self.table.update_by_id(row_id, patch, columns=columns)

        if result.data is not None and self.hooks.after_update:
            await _run_hook(self.hooks.after_update, result.data)
        return result

    async def delete_by_id(self, row_id: str | int) -> DbResponse:
        return await self.table.delete_by_id(row_id)

    async def exists(self, where: dict[str, Any]) -> bool:
        return await self.table.exists(where)

    async def count(self, where: dict[str, Any] | None = None) -> int:
        return await self.table.count(where)
