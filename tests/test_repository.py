"""Unit tests for the base repository and base service helpers."""

from __future__ import annotations

import pytest

from bff.datastore.repository import BaseRepository
from bff.datastore.types import DbError, DbResponse, FindManyOptions
from bff.exceptions import NotFoundError
from bff.services.base import BaseService


class FakeTable:
    """Table binding stub recording calls."""

    def __init__(self, row: dict | None = None, error: DbError | None = None) -> None:
        """Configure the returned envelope."""
        self.row = row
        self.error = error
        self.calls: list[tuple] = []

    def _result(self, data):
        if self.error is not None:
            return DbResponse(error=self.error, status=self.error.status)
        return DbResponse(data=data, status=200)

    async def find_by_id(self, row_id, columns="*"):
        self.calls.append(("find_by_id", row_id, columns))
        return self._result(self.row)

    async def find_many(self, options=None):
        self.calls.append(("find_many", options))
        return self._result([self.row] if self.row else [])

    async def insert_one(self, payload, columns="*"):
        self.calls.append(("insert_one", payload, columns))
        return self._result({"id": "new", **payload})

    async def update_by_id(self, row_id, patch, columns="*"):
        self.calls.append(("update_by_id", row_id, patch, columns))
        return self._result({"id": row_id, **patch})


@pytest.mark.asyncio
async def test_before_insert_hook_rewrites_payload() -> None:
    """before_* hooks may return a modified payload; after_* see the row."""
    table = FakeTable()
    repo = BaseRepository(table)
    seen = []

    async def after_insert(row):
        seen.append(row)

    repo.register_hooks(
        before_insert=lambda payload: {**payload, "slug": payload["name"].lower()},
        after_insert=after_insert,
    )

    result = await repo.insert_one({"name": "Alice"})

    assert table.calls[0] == ("insert_one", {"name": "Alice", "slug": "alice"}, "*")
    assert seen == [{"id": "new", "name": "Alice", "slug": "alice"}]
    assert result.data["slug"] == "alice"


@pytest.mark.asyncio
async def test_after_update_hook_skipped_on_error() -> None:
    table = FakeTable(error=DbError("denied", code="42501", status=403))
    repo = BaseRepository(table)
    seen = []
    repo.register_hooks(after_update=seen.append)

    result = await repo.update_by_id("u1", {"bio": "x"})

    assert result.error is not None
    assert seen == []


def test_unknown_hook_is_rejected() -> None:
    repo = BaseRepository(FakeTable())

    with pytest.raises(ValueError):
        repo.register_hooks(before_delete=lambda row: row)


@pytest.mark.asyncio
async def test_find_where_builds_equality_filter() -> None:
    table = FakeTable(row={"id": "1"})
    repo = BaseRepository(table)

    result = await repo.find_where({"user_type": "creator"})

    assert result.data == [{"id": "1"}]
    assert table.calls[0] == ("find_many", FindManyOptions(where={"user_type": "creator"}))


def test_unwrap_returns_data() -> None:
    service = BaseService()

    assert service.unwrap(DbResponse(data={"id": "1"})) == {"id": "1"}


def test_unwrap_raises_not_found_for_missing_data() -> None:
    service = BaseService()

    with pytest.raises(NotFoundError) as excinfo:
        service.unwrap(DbResponse(data=None), "Creator profile")

    assert excinfo.value.detail == "Creator profile not found"


def test_unwrap_raises_db_error() -> None:
    service = BaseService()
    error = DbError("denied", code="42501", status=403)

    with pytest.raises(DbError):
        service.unwrap(DbResponse(error=error))
    with pytest.raises(DbError):
        service.unwrap_or_none(DbResponse(error=error))


def test_unwrap_or_helpers() -> None:
    service = BaseService()

    assert service.unwrap_or_none(DbResponse(data=None)) is None
    assert service.unwrap_or_empty(DbResponse(data=None)) == []
    assert service.unwrap_or_empty(DbResponse(data=[1])) == [1]
