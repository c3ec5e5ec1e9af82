"""
Provider-agnostic data access types.

DbResponse is the envelope every adapter operation returns: on success
`data` is set and `error` is None; on failure `error` is set and `data`
is None. Both are None for a lookup that matched no row.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

from postgrest.exceptions import APIError

T = TypeVar("T")

# PostgREST / Postgres error codes with a well-defined HTTP meaning
POSTGREST_STATUS = {
    "PGRST116": 406,  # single row requested, zero or many returned
    "PGRST301": 401,  # JWT invalid or expired
    "PGRST302": 401,
    "42501": 403,  # insufficient privilege (RLS)
    "23505": 409,  # unique violation
    "23503": 409,  # foreign key violation
    "23502": 400,  # not null violation
    "22P02": 400,  # invalid text representation
}
ROW_NOT_FOUND = "PGRST116"


class DomainError(Exception):
    """Base domain-level error."""

    def __init__(
        self,
        message: str,
        code: str | int = "DOMAIN_ERROR",
        status: int = 400,
        details: Any = None,
    ):
        self.message = message
        self.code = code
        self.status = status
        self.details = details
        super().__init__(message)


class DbError(DomainError):
    """Database error in the uniform {message, code, status, details, hint} shape."""

    def __init__(
        self,
        message: str,
        code: str | int | None = None,
        status: int | None = None,
        details: Any = None,
        hint: str | None = None,
    ):
        super().__init__(message, code or "DB_ERROR", status or 500, details)
        self.hint = hint

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "message": self.message,
            "code": self.code,
            "status": self.status,
        }
        if self.details is not None:
            data["details"] = self.details
        if self.hint is not None:
            data["hint"] = self.hint
        return data

    @classmethod
    def from_api_error(cls, error: APIError) -> "DbError":
        """Normalize a PostgREST error."""
        code = error.code or "DB_ERROR"
        return cls(
            message=error.message or str(error),
            code=code,
            status=status_for_code(code),
            details=error.details,
            hint=error.hint,
        )


def status_for_code(code: str | int | None) -> int:
    """Map a PostgREST/Postgres error code onto an HTTP status."""
    if code is None:
        return 500
    code = str(code)
    if code in POSTGREST_STATUS:
        return POSTGREST_STATUS[code]
    if len(code) == 3 and code.isdigit():
        return int(code)
    return 400


@dataclass
class DbResponse(Generic[T]):
    """Result envelope of an adapter operation."""

    data: T | None = None
    error: DbError | None = None
    count: int | None = None
    status: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class FindManyOptions:
    """Filters for find_many. `where` is equality only, `ilike` is pattern match."""

    where: dict[str, Any] = field(default_factory=dict)
    ilike: dict[str, str] = field(default_factory=dict)
    order_by: dict[str, Literal["asc", "desc"]] = field(default_factory=dict)
    limit: int | None = None
    offset: int | None = None
    columns: str = "*"
