"""Fluent, structured description of a SELECT statement.

A :class:`Query` only records clauses. Building happens in
:class:`~ckdb.query.builder.QueryBuilder` and execution in
:class:`~ckdb.command.Command`; the last command created is kept so the
ClickHouse envelope (``meta``, ``totals``, ``rows_before_limit_at_least``...)
can be read back after a fetch.
"""

from __future__ import annotations

import copy
import re
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
)

from ckdb.exceptions import ConfigurationError, StateError
from ckdb.expression import Expression
from ckdb.utils import to_int

if TYPE_CHECKING:
    from ckdb.command import Command
    from ckdb.connection import Connection
    from ckdb.record import TableHandle

    from .builder import QueryBuilder

_ORDER_RE = re.compile(r"\s+(asc|desc)$", re.IGNORECASE)


def split_columns(columns: str) -> List[str]:
    """Split ``"a, count(b, c) AS n"`` on commas outside parentheses."""
    out, depth, current = [], 0, []
    for ch in columns:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            out.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    tail = "".join(current).strip()
    if tail:
        out.append(tail)
    return [c for c in out if c]


def _normalize_columns(columns: Any) -> List[Tuple[Optional[str], Any]]:
    if columns is None:
        return []
    if isinstance(columns, (Expression, Query)):
        return [(None, columns)]
    if isinstance(columns, str):
        return [(None, c) for c in split_columns(columns)]
    if isinstance(columns, dict):
        return [(str(alias), column) for alias, column in columns.items()]
    return [(None, c) for c in columns]


class Query:
    def __init__(
        self,
        db: Optional["Connection"] = None,
        model: Optional["TableHandle"] = None,
    ):
        self.db = db if db is not None or model is None else model.db
        self.model = model

        self.select_columns: List[Tuple[Optional[str], Any]] = []
        self.select_option: Optional[str] = None
        self.is_distinct = False
        self.tables: List[Tuple[Optional[str], Any]] = []
        self.joins: List[Tuple[str, Any, Any]] = []
        self.where_condition: Any = None
        self.pre_where_condition: Any = None
        self.group_by_columns: List[Any] = []
        self.having_condition: Any = None
        self.order_by_columns: List[Tuple[Any, str]] = []
        self.limit_value: Optional[int] = None
        self.offset_value: Optional[int] = None
        self.limit_by_spec: Optional[Tuple[int, List[str]]] = None
        self.sample_size: Optional[float | int] = None
        self.with_totals_flag = False
        self.unions: List[Dict[str, Any]] = []
        self.params: Dict[str, Any] = {}
        self.index_by_column: Optional[str | Callable[[Dict[str, Any]], Any]] = None

        self.query_cache_duration: Optional[int | bool] = None
        self.share_duration: Optional[int] = None

        self._command: Optional["Command"] = None

    # Clauses
    def select(self, columns: Any, option: Optional[str] = None) -> "Query":
        self.select_columns = _normalize_columns(columns)
        self.select_option = option
        return self

    def add_select(self, columns: Any) -> "Query":
        self.select_columns = self.select_columns + _normalize_columns(columns)
        return self

    def distinct(self, value: bool = True) -> "Query":
        self.is_distinct = value
        return self

    def from_(self, tables: Any) -> "Query":
        if isinstance(tables, str):
            self.tables = [(None, t) for t in split_columns(tables)]
        elif isinstance(tables, (Query, Expression)):
            self.tables = [(None, tables)]
        elif isinstance(tables, dict):
            self.tables = [(str(alias), table) for alias, table in tables.items()]
        else:
            self.tables = [(None, t) for t in tables]
        return self

    def join(self, join_type: str, table: Any, on: Any = "", params: Optional[Dict[str, Any]] = None) -> "Query":
        self.joins.append((join_type, table, on))
        return self.add_params(params)

    def inner_join(self, table: Any, on: Any = "", params: Optional[Dict[str, Any]] = None) -> "Query":
        return self.join("INNER JOIN", table, on, params)

    def left_join(self, table: Any, on: Any = "", params: Optional[Dict[str, Any]] = None) -> "Query":
        return self.join("LEFT JOIN", table, on, params)

    def right_join(self, table: Any, on: Any = "", params: Optional[Dict[str, Any]] = None) -> "Query":
        return self.join("RIGHT JOIN", table, on, params)

    def where(self, condition: Any, params: Optional[Dict[str, Any]] = None) -> "Query":
        self.where_condition = condition
        return self.add_params(params)

    def and_where(self, condition: Any, params: Optional[Dict[str, Any]] = None) -> "Query":
        self.where_condition = _combine("and", self.where_condition, condition)
        return self.add_params(params)

    def or_where(self, condition: Any, params: Optional[Dict[str, Any]] = None) -> "Query":
        self.where_condition = _combine("or", self.where_condition, condition)
        return self.add_params(params)

    def pre_where(self, condition: Any, params: Optional[Dict[str, Any]] = None) -> "Query":
        self.pre_where_condition = condition
        return self.add_params(params)

    def and_pre_where(self, condition: Any, params: Optional[Dict[str, Any]] = None) -> "Query":
        self.pre_where_condition = _combine("and", self.pre_where_condition, condition)
        return self.add_params(params)

    def or_pre_where(self, condition: Any, params: Optional[Dict[str, Any]] = None) -> "Query":
        self.pre_where_condition = _combine("or", self.pre_where_condition, condition)
        return self.add_params(params)

    def group_by(self, columns: Any) -> "Query":
        self.group_by_columns = _normalize_list(columns)
        return self

    def add_group_by(self, columns: Any) -> "Query":
        self.group_by_columns = self.group_by_columns + _normalize_list(columns)
        return self

    def having(self, condition: Any, params: Optional[Dict[str, Any]] = None) -> "Query":
        self.having_condition = condition
        return self.add_params(params)

    def and_having(self, condition: Any, params: Optional[Dict[str, Any]] = None) -> "Query":
        self.having_condition = _combine("and", self.having_condition, condition)
        return self.add_params(params)

    def or_having(self, condition: Any, params: Optional[Dict[str, Any]] = None) -> "Query":
        self.having_condition = _combine("or", self.having_condition, condition)
        return self.add_params(params)

    def order_by(self, columns: Any) -> "Query":
        self.order_by_columns = _normalize_order(columns)
        return self

    def add_order_by(self, columns: Any) -> "Query":
        self.order_by_columns = self.order_by_columns + _normalize_order(columns)
        return self

    def limit(self, limit: Optional[int]) -> "Query":
        self.limit_value = limit
        return self

    def offset(self, offset: Optional[int]) -> "Query":
        self.offset_value = offset
        return self

    def union(self, query: "Query | str", all: bool = False) -> "Query":
        self.unions.append({"query": query, "all": all})
        return self

    def add_params(self, params: Optional[Dict[str, Any]]) -> "Query":
        if params:
            self.params.update(params)
        return self

    def index_by(self, column: str | Callable[[Dict[str, Any]], Any]) -> "Query":
        self.index_by_column = column
        return self

    # ClickHouse clauses
    def sample(self, n: float | int) -> "Query":
        """``SAMPLE n``: a fraction in (0, 1] or a positive row count."""
        if isinstance(n, bool) or not isinstance(n, (int, float)):
            raise ValueError(f"Invalid sample size: {n!r}")
        if isinstance(n, float) and not 0 < n <= 1:
            raise ValueError(f"Sample fraction must be in (0, 1], got {n}")
        if isinstance(n, int) and n <= 0:
            raise ValueError(f"Sample row count must be positive, got {n}")
        self.sample_size = n
        return self

    def limit_by(self, n: int, columns: Sequence[str]) -> "Query":
        self.limit_by_spec = (n, list(columns))
        return self

    def with_totals(self) -> "Query":
        self.with_totals_flag = True
        return self

    def has_with_totals(self) -> bool:
        return self.with_totals_flag

    # Cache / share
    def cache(self, duration: int | bool = True) -> "Query":
        self.query_cache_duration = duration
        return self

    def no_cache(self) -> "Query":
        self.query_cache_duration = False
        return self

    def share(self, duration: Optional[int] = None) -> "Query":
        self.share_duration = duration
        return self

    # Building
    def prepare(self, builder: "QueryBuilder") -> "Query":
        if not self.tables and self.model is not None:
            self.tables = [(None, self.model.table_name)]
        return self

    def _connection(self, db: Optional["Connection"]) -> "Connection":
        db = db or self.db
        if db is None:
            raise ConfigurationError("Query has no connection")
        return db

    def create_command(self, db: Optional["Connection"] = None) -> "Command":
        db = self._connection(db)
        sql, params = db.get_query_builder().build(self)
        command = db.create_command(sql, params)
        if self.query_cache_duration is False:
            command.no_cache()
        elif self.query_cache_duration is not None:
            command.cache(None if self.query_cache_duration is True else self.query_cache_duration)
        if self.share_duration is not None:
            command.share(self.share_duration)
        self._command = command
        return command

    # Fetching
    def all(self, db: Optional["Connection"] = None) -> List[Dict[str, Any]] | Dict[Any, Dict[str, Any]]:
        rows = self.create_command(db).query_all()
        return self.populate(rows)

    def populate(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]] | Dict[Any, Dict[str, Any]]:
        if self.index_by_column is None:
            return rows
        key = self.index_by_column
        if callable(key):
            return {key(row): row for row in rows}
        return {row[key]: row for row in rows}

    def one(self, db: Optional["Connection"] = None) -> Optional[Dict[str, Any]]:
        return self.create_command(db).query_one()

    def scalar(self, db: Optional["Connection"] = None) -> Any:
        return self.create_command(db).query_scalar()

    def column(self, db: Optional["Connection"] = None) -> List[Any]:
        return self.create_command(db).query_column()

    def count(self, q: str = "*", db: Optional["Connection"] = None) -> int:
        db = self._connection(db)
        if (
            self.is_distinct
            or self.group_by_columns
            or self.unions
            or self.limit_value is not None
            or self.offset_value
            or self.limit_by_spec
            or self.with_totals_flag
        ):
            counted = Query(db).select(Expression(f"count({q})")).from_({"c": self.clone()})
        else:
            counted = self.clone()
            counted.select_columns = [(None, Expression(f"count({q})"))]
            counted.order_by_columns = []
        value = counted.scalar(db)
        self._command = counted._command
        return to_int(value)

    def exists(self, db: Optional["Connection"] = None) -> bool:
        db = self._connection(db)
        sql, params = db.get_query_builder().build(self)
        builder = db.get_query_builder()
        command = db.create_command(builder.select_exists(sql), params)
        self._command = command
        return to_int(command.query_scalar()) > 0

    def batch(self, batch_size: int = 100, db: Optional["Connection"] = None) -> "BatchQueryResult":
        return BatchQueryResult(self, batch_size, self._connection(db), each=False)

    def each(self, batch_size: int = 100, db: Optional["Connection"] = None) -> "BatchQueryResult":
        return BatchQueryResult(self, batch_size, self._connection(db), each=True)

    # Executed-command accessors
    def _executed_command(self) -> "Command":
        if self._command is None:
            raise StateError("Query was not executed yet")
        return self._command

    def meta(self) -> List[Dict[str, str]]:
        return self._executed_command().meta()

    def data(self) -> List[Dict[str, Any]]:
        return self._executed_command().data()

    def extremes(self) -> Dict[str, Any]:
        return self._executed_command().extremes()

    def totals(self) -> Any:
        return self._executed_command().totals()

    def count_all(self) -> int:
        return self._executed_command().count_all()

    def rows(self) -> int:
        return self._executed_command().rows()

    def statistics(self) -> Dict[str, Any]:
        return self._executed_command().statistics()

    def download(self, path: Optional[str] = None, db: Optional["Connection"] = None) -> str:
        """Fetch the result as CSV; into memory, or into a file under ``path``."""
        return self.create_command(db).download(path)

    # Copying
    def clone(self) -> "Query":
        return copy.copy(self)

    def __copy__(self) -> "Query":
        new = self.__class__.__new__(self.__class__)
        new.__dict__.update(self.__dict__)
        for name in (
            "select_columns",
            "tables",
            "joins",
            "group_by_columns",
            "order_by_columns",
            "unions",
        ):
            setattr(new, name, list(getattr(self, name)))
        new.params = dict(self.params)
        new._command = None
        return new


def _combine(operator: str, existing: Any, condition: Any) -> Any:
    if existing is None:
        return condition
    return [operator, existing, condition]


def _normalize_list(columns: Any) -> List[Any]:
    if isinstance(columns, Expression):
        return [columns]
    if isinstance(columns, str):
        return split_columns(columns)
    return list(columns)


def _normalize_order(columns: Any) -> List[Tuple[Any, str]]:
    if isinstance(columns, Expression):
        return [(columns, "")]
    if isinstance(columns, dict):
        return [
            (column, "" if isinstance(column, Expression) else str(direction).upper())
            for column, direction in columns.items()
        ]
    if isinstance(columns, str):
        columns = split_columns(columns)
    out: List[Tuple[Any, str]] = []
    for column in columns:
        if isinstance(column, Expression):
            out.append((column, ""))
            continue
        match = _ORDER_RE.search(column)
        if match:
            out.append((column[: match.start()].strip(), match.group(1).upper()))
        else:
            out.append((column, "ASC"))
    return out


class BatchQueryResult:
    """Iterate a query page by page with ``LIMIT offset,size``.

    ClickHouse has no server-side cursors, so each page is a separate
    request. ``each=True`` yields rows, otherwise lists of rows.
    """

    def __init__(self, query: Query, batch_size: int, db: "Connection", each: bool = False):
        self.query = query
        self.batch_size = batch_size
        self.db = db
        self.each = each
        self._index = 0

    def reset(self) -> None:
        self._index = 0

    def _fetch_data(self) -> List[Dict[str, Any]] | Dict[Any, Dict[str, Any]]:
        command = self.query.create_command(self.db)
        offset = self._index * self.batch_size
        self._index += 1
        sql = command.raw_sql()
        if self.query.limit_value is not None or self.query.offset_value or self.query.unions:
            sql = f"SELECT * FROM ({sql})"
        command.set_sql(f"{sql} LIMIT {offset},{self.batch_size}", params={})
        return self.query.populate(command.query_all())

    def __iter__(self) -> Iterator[Any]:
        self.reset()
        while True:
            rows = self._fetch_data()
            if not rows:
                return
            if self.each:
                if isinstance(rows, dict):
                    yield from rows.items()
                else:
                    yield from rows
            else:
                yield rows
            if len(rows) < self.batch_size:
                return
