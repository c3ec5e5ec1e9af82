"""
Base service with envelope unwrapping helpers.
"""

from typing import Any

from bff.datastore.types import DbResponse
from bff.exceptions import NotFoundError


class BaseService:
    """Turns DbResponse envelopes into values or exceptions."""

    def unwrap(self, result: DbResponse, resource: str | None = None) -> Any:
        """Return data; raise the DbError, or NotFoundError when there is no data."""
        if result.error is not None:
            raise result.error
        if not result.data:
            raise NotFoundError(f"{resource} not found" if resource else "Resource not found")
        return result.data

    def unwrap_or_none(self, result: DbResponse) -> Any | None:
        if result.error is not None:
            raise result.error
        return result.data

    def unwrap_or_empty(self, result: DbResponse) -> list[Any]:
        if result.error is not None:
            raise result.error
        return result.data or []
