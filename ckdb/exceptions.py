"""Error types raised by the driver."""

from __future__ import annotations

from typing import Mapping, Optional, Sequence


class ClickHouseError(Exception):
    """Base class for every driver error."""


class ConfigurationError(ClickHouseError):
    """Bad DSN, missing engine options, handle without primary keys."""


class ValidationError(ClickHouseError):
    """A row failed validation; the whole batch call is aborted."""

    def __init__(self, errors: Mapping[str, Sequence[str]] | str):
        if isinstance(errors, str):
            self.errors: dict[str, list[str]] = {"": [errors]}
        else:
            self.errors = {k: list(v) for k, v in errors.items()}
        super().__init__("\n".join(self.first_errors().values()))

    def first_errors(self) -> dict[str, str]:
        return {k: v[0] for k, v in self.errors.items() if v}


class BatchShapeError(ValidationError):
    """Rows of one multi-row INSERT resolve to different column sets."""


class QueryError(ClickHouseError):
    """The server rejected a statement or the transport failed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class StateError(ClickHouseError):
    """Result accessed before the statement ran."""


class NotSupportedError(ClickHouseError):
    """Operation the ClickHouse dialect cannot express."""
