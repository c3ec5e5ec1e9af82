"""
TableAdapter - CRUD vocabulary over the Supabase (PostgREST) query builder.

Every operation runs through the CallExecutor under the label
`<table>.<operation>`, returns a DbResponse envelope, and strips internal
audit columns from the rows it returns.
"""

from typing import Any

from loguru import logger
from postgrest.exceptions import APIError
from supabase import AsyncClient

from bff.datastore.types import ROW_NOT_FOUND, DbError, DbResponse, FindManyOptions
from bff.services.executor import CallExecutor

EXCLUDED_COLUMNS = ("created_at", "updated_at", "search_tsv")
DEFAULT_PAGE_SIZE = 100


def sanitize(data: Any) -> Any:
    """
    Remove internal columns from rows, recursing into nested relations.

    Returns new containers; the input is left untouched.
    """
    if isinstance(data, list):
        return [sanitize(item) for item in data]
    if isinstance(data, dict):
        return {
            key: sanitize(value)
            for key, value in data.items()
            if key not in EXCLUDED_COLUMNS
        }
    return data


def project(row: dict[str, Any] | None, columns: str) -> dict[str, Any] | None:
    """Keep only the listed top-level columns of a returned representation."""
    if row is None or columns.strip() == "*":
        return row
    wanted = [c.strip() for c in columns.split(",") if c.strip()]
    return {key: row[key] for key in wanted if key in row}


def _first(rows: Any) -> dict[str, Any] | None:
    if isinstance(rows, list):
        return rows[0] if rows else None
    return rows


def _apply_where(query: Any, where: dict[str, Any]) -> Any:
    # None means "no filter on this column", not IS NULL
    for column, value in where.items():
        if value is not None:
            query = query.eq(column, value)
    return query


class TableAdapter:
    """
    Adapter for a single table.

    Usage:
        profiles = TableAdapter(client, "profiles", executor)

        result = await profiles.find_by_id(user_id)
        if result.error:
            raise result.error
    """

    def __init__(self, client: AsyncClient, table: str, executor: CallExecutor):
        self._client = client
        self.table = table
        self._executor = executor

    async def find_by_id(
        self, row_id: str | int, id_column: str = "id", columns: str = "*"
    ) -> DbResponse[dict[str, Any]]:
        query = (
            self._client.table(self.table).select(columns).eq(id_column, row_id).limit(1)
        )
        response = await self._run("findById", query)
        if isinstance(response, DbResponse):
            return response
        return DbResponse(data=sanitize(_first(response.data)), status=200)

    async def find_many(
        self, options: FindManyOptions | None = None
    ) -> DbResponse[list[dict[str, Any]]]:
        q = options or FindManyOptions()
        query = self._client.table(self.table).select(q.columns)

        query = _apply_where(query, q.where)
        for column, pattern in q.ilike.items():
            query = query.ilike(column, pattern)
        for column, direction in q.order_by.items():
            query = query.order(column, desc=direction == "desc")
        if q.limit:
            query = query.limit(q.limit)
        if q.offset is not None:
            end = q.offset + (q.limit or DEFAULT_PAGE_SIZE) - 1
            query = query.range(q.offset, end)

        response = await self._run("findMany", query)
        if isinstance(response, DbResponse):
            return response
        return DbResponse(
            data=sanitize(response.data or []), count=response.count, status=200
        )

    async def insert_one(
        self, payload: dict[str, Any], columns: str = "*"
    ) -> DbResponse[dict[str, Any]]:
        query = self._client.table(self.table).insert(payload)
        response = await self._run("insertOne", query)
        if isinstance(response, DbResponse):
            return response
        return self._single_row(response.data, columns, status=201)

    async def upsert_one(
        self,
        payload: dict[str, Any],
        conflict_target: str | None = None,
        columns: str = "*",
    ) -> DbResponse[dict[str, Any]]:
        table = self._client.table(self.table)
        if conflict_target:
            query = table.upsert(payload, on_conflict=conflict_target)
        else:
            query = table.upsert(payload)
        response = await self._run("upsertOne", query)
        if isinstance(response, DbResponse):
            return response
        return self._single_row(response.data, columns, status=200)

    async def update_by_id(
        self,
        row_id: str | int,
        patch: dict[str, Any],
        id_column: str = "id",
        columns: str = "*",
    ) -> DbResponse[dict[str, Any]]:
        query = self._client.table(self.table).update(patch).eq(id_column, row_id)
        response = await self._run("updateById", query)
        if isinstance(response, DbResponse):
            return response
        return self._single_row(response.data, columns, status=200)

    async def delete_by_id(
        self, row_id: str | int, id_column: str = "id"
    ) -> DbResponse[None]:
        query = self._client.table(self.table).delete().eq(id_column, row_id)
        response = await self._run("deleteById", query)
        if isinstance(response, DbResponse):
            return response
        return DbResponse(data=None, status=204)

    async def rpc(self, name: str, args: dict[str, Any] | None = None) -> DbResponse[Any]:
        query = self._client.rpc(name, args or {})
        response = await self._run(f"rpc:{name}", query)
        if isinstance(response, DbResponse):
            return response
        return DbResponse(data=response.data, status=200)

    async def exists(self, where: dict[str, Any]) -> bool:
        result = await self.find_many(FindManyOptions(where=where, columns="id", limit=1))
        if result.error:
            raise result.error
        return bool(result.data)

    async def count(self, where: dict[str, Any] | None = None) -> int:
        query = self._client.table(self.table).select("id", count="exact", head=True)
        query = _apply_where(query, where or {})

        response = await self._run("count", query)
        if isinstance(response, DbResponse):
            raise response.error
        return response.count or 0

    async def _run(self, operation: str, query: Any) -> Any:
        """Execute a query builder; PostgREST errors become an error envelope."""
        label = f"{self.table}.{operation}"
        try:
            return await self._executor.execute(query.execute, label=label)
        except APIError as e:
            error = DbError.from_api_error(e)
            logger.debug(f"[TableAdapter] {label} failed: {error.code} {error.message}")
            return DbResponse(error=error, status=error.status)

    @staticmethod
    def _single_row(rows: Any, columns: str, status: int) -> DbResponse[dict[str, Any]]:
        row = _first(rows)
        if row is None:
            error = DbError(
                "No rows returned",
                code=ROW_NOT_FOUND,
                status=406,
                details="The result contains 0 rows",
            )
            return DbResponse(error=error, status=error.status)
        return DbResponse(data=sanitize(project(row, columns)), status=status)
