"""ClickHouse access layer: query builder, HTTP driver and batch writers."""

from .batch_insert import BatchInsert, BatchInsertCsv, BatchInsertJsonRows
from .command import Command
from .connection import Connection, ConnectionManager
from .exceptions import (
    BatchShapeError,
    ClickHouseError,
    ConfigurationError,
    NotSupportedError,
    QueryError,
    StateError,
    ValidationError,
)
from .expression import Expression, ParamType, TypedParam
from .query import BatchQueryResult, Query, QueryBuilder
from .record import Relation, RowContext, TableHandle
from .schema import ColumnSchema, Schema, TableSchema

__all__ = [
    "BatchInsert",
    "BatchInsertCsv",
    "BatchInsertJsonRows",
    "BatchQueryResult",
    "BatchShapeError",
    "ClickHouseError",
    "ColumnSchema",
    "Command",
    "ConfigurationError",
    "Connection",
    "ConnectionManager",
    "Expression",
    "NotSupportedError",
    "ParamType",
    "Query",
    "QueryBuilder",
    "QueryError",
    "Relation",
    "RowContext",
    "Schema",
    "StateError",
    "TableHandle",
    "TableSchema",
    "TypedParam",
    "ValidationError",
]
