"""Statement execution over the ClickHouse HTTP interface.

A :class:`Command` owns one SQL text plus its bound parameters. Parameters
are rendered into the text as ClickHouse literals (``raw_sql``) right before
sending, since the HTTP endpoint takes plain SQL. SELECTs are sent with
``FORMAT JSON`` and the response envelope (``meta``, ``data``, ``totals``,
``extremes``, ``rows``, ``rows_before_limit_at_least``, ``statistics``) is
kept on the command for the accessors below.

Results can be cached (any :class:`~ckdb.cache.QueryCache`) and identical
in-flight requests can be coalesced (``share``); both are keyed by the same
digest of method, fetch mode, DSN and final SQL.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import re
import threading
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence

import requests

from ckdb.config import settings
from ckdb.constants import CacheKeys, FetchMethod, FetchMode, ShareStatus
from ckdb.exceptions import NotSupportedError, QueryError, StateError
from ckdb.expression import ParamType, TypedParam
from ckdb.logging import get_logger
from ckdb.metrics import (
    IN_FLIGHT_UPLOADS,
    QUERIES_TOTAL,
    QUERY_CACHE_HITS,
    QUERY_ERRORS,
    QUERY_LATENCY,
    SHARED_RESULTS,
)
from ckdb.transport import HttpResponse
from ckdb.utils import run_blocking

if TYPE_CHECKING:
    from ckdb.connection import Connection
    from ckdb.query import Query

logger = get_logger("command")

_KEY_TAG = "ckdb.Command"
_CACHE_HIT_SUFFIX = "; [Query result read from cache]"

_SELECT_RE = re.compile(r"^\s*SELECT", re.IGNORECASE | re.DOTALL)
_LIMIT_RE = re.compile(r"\bLIMIT\b", re.IGNORECASE)
_FORMAT_RE = re.compile(r"\bFORMAT\s")
_QUOTED = r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\"|`[^`]*`"
_QUOTED_RE = re.compile(_QUOTED, re.DOTALL)
# Quoted literals/identifiers are skipped; only bare tokens are substituted.
_PARAM_TOKEN_RE = re.compile(_QUOTED + r"|(:\w+)|(\?)", re.DOTALL)

_ENVELOPE_KEYS = (
    "meta",
    "data",
    "totals",
    "extremes",
    "rows",
    "rows_before_limit_at_least",
    "statistics",
)


def _remove_file(path: str) -> None:
    with contextlib.suppress(FileNotFoundError):
        os.remove(path)


class Command:
    def __init__(
        self,
        db: "Connection",
        sql: str = "",
        params: Optional[Mapping[str, Any] | Sequence[Any]] = None,
    ):
        self.db = db
        self.sql = sql
        self.params: Dict[Any, Any] = {}
        self.fetch_mode = 0
        self.format: Optional[str] = None
        self.options: Dict[str, Any] = {}
        self.query_cache_duration: Optional[int] = None
        self.share_duration: Optional[int] = None
        self._reset()
        self.bind_values(params)

    def _reset(self) -> None:
        self._executed = False
        self._meta: List[Dict[str, str]] = []
        self._data: List[Dict[str, Any]] = []
        self._totals: Any = {}
        self._extremes: Dict[str, Any] = {}
        self._rows = 0
        self._statistics: Dict[str, Any] = {}
        self._rows_before_limit_at_least = 0

    # Configuration
    def set_sql(self, sql: str, params: Optional[Mapping[str, Any] | Sequence[Any]] = None) -> "Command":
        self.sql = sql
        self._reset()
        if params is not None:
            self.params = {}
            self.bind_values(params)
        return self

    def bind_values(self, values: Optional[Mapping[str, Any] | Sequence[Any]]) -> "Command":
        """Bind named (``{":id": 1}``) or positional (``[1, 2]``) parameters.

        ``(value, ParamType.X)`` pairs force how the value is rendered.
        """
        if not values:
            return self
        if isinstance(values, Mapping):
            items = [
                (name if str(name).startswith(":") else f":{name}", value)
                for name, value in values.items()
            ]
        else:
            items = list(enumerate(values, start=1))
        for name, value in items:
            if isinstance(value, (list, tuple)) and len(value) == 2 and isinstance(value[1], ParamType):
                value = TypedParam(value[0], value[1])
            self.params[name] = value
        return self

    def set_format(self, fmt: Optional[str]) -> "Command":
        self.format = fmt
        return self

    def set_options(self, options: Dict[str, Any]) -> "Command":
        self.options = dict(options)
        return self

    def add_options(self, options: Dict[str, Any]) -> "Command":
        for key, value in options.items():
            if isinstance(value, dict) and isinstance(self.options.get(key), dict):
                value = {**self.options[key], **value}
            self.options[key] = value
        return self

    def cache(self, duration: Optional[int] = None) -> "Command":
        """Cache results for ``duration`` seconds (connection default when None, 0 = forever)."""
        self.query_cache_duration = self.db.query_cache_duration if duration is None else duration
        return self

    def no_cache(self) -> "Command":
        self.query_cache_duration = -1
        return self

    def share(self, duration: Optional[int] = None) -> "Command":
        self.share_duration = duration
        return self

    # SQL rendering
    def raw_sql(self) -> str:
        """SQL with every bound parameter replaced by its literal."""
        if not self.params:
            return self.sql
        builder = self.db.get_query_builder()
        positional = iter(
            [self.params[k] for k in sorted(k for k in self.params if isinstance(k, int))]
        )

        def _replace(match: re.Match) -> str:
            name, question = match.group(1), match.group(2)
            if name is not None and name in self.params:
                return builder.literal(self.params[name])
            if question is not None:
                try:
                    return builder.literal(next(positional))
                except StopIteration:
                    return question
            return match.group(0)

        return _PARAM_TOKEN_RE.sub(_replace, self.sql)

    def _log(self, sql: str) -> None:
        logger.info("clickhouse query", extra={"sql": sql, "category": "clickhouse"})

    # Transport
    def _post(
        self,
        body: str | bytes,
        query: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        QUERIES_TOTAL.inc()
        with QUERY_LATENCY.time():
            try:
                return self.db.transport.post(
                    self.db.get_query_string({**self.options, **(query or {})}),
                    body,
                    headers,
                )
            except requests.RequestException as exc:
                QUERY_ERRORS.inc()
                raise QueryError(str(exc)) from exc

    def parse_response(self, response: HttpResponse) -> Any:
        """Decode a response; an empty body means success (``True``)."""
        if response.status_code != 200:
            QUERY_ERRORS.inc()
            raise QueryError(response.body, status_code=response.status_code, body=response.body)
        content_type = response.header("Content-Type").split(";")[0].strip().lower()
        if content_type == "application/json":
            result: Any = json.loads(response.body) if response.body else ""
        else:
            result = response.body
        return True if result == "" else result

    # Execution
    def execute(self) -> int:
        """Run a statement that returns no rows; 1 on success."""
        raw_sql = self.raw_sql()
        self._log(raw_sql)
        result = self.parse_response(self._post(raw_sql))
        self._executed = True
        return 1 if result is True else 0

    def query(self) -> None:
        raise NotSupportedError("ClickHouse does not support cursors")

    def query_all(self, fetch_mode: Optional[int] = None) -> Any:
        return self.query_internal(FetchMethod.FETCH_ALL, fetch_mode)

    def query_one(self) -> Optional[Dict[str, Any]]:
        return self.query_internal(FetchMethod.FETCH)

    def query_column(self) -> List[Any]:
        return self.query_internal(FetchMethod.FETCH_COLUMN)

    def query_scalar(self) -> Any:
        return self.query_internal(FetchMethod.FETCH_SCALAR, 0)

    def query_internal(self, method: FetchMethod, fetch_mode: Optional[int] = None) -> Any:
        raw_sql = self.raw_sql()
        bare = _QUOTED_RE.sub("''", raw_sql)
        if method is FetchMethod.FETCH and _SELECT_RE.match(bare) and not _LIMIT_RE.search(bare):
            raw_sql += " LIMIT 1"
        if not _FORMAT_RE.search(bare):
            raw_sql += f" FORMAT {self.format or 'JSON'}"

        key_parts = [_KEY_TAG, method, fetch_mode, self.db.dsn, raw_sql]

        def fetch() -> Any:
            return self._fetch(raw_sql, key_parts)

        share = self.share_duration if self.share_duration is not None else self.db.share_duration
        if share and share > 0:
            shared = self.db.share(CacheKeys.digest(key_parts), fetch, share)
            if shared.status is not ShareStatus.ORIGIN:
                SHARED_RESULTS.labels(tier=shared.status.value).inc()
                self._log(raw_sql + shared.status.log_suffix)
            data = shared.result
        else:
            data = fetch()

        return self._prepare_result(data, method, fetch_mode)

    def _fetch(self, raw_sql: str, key_parts: List[Any]) -> Any:
        info = self.db.get_query_cache_info(self.query_cache_duration)
        cache_key = None
        if info is not None:
            cache, duration = info
            cache_key = CacheKeys.query_result(key_parts)
            cached = cache.get(cache_key)
            if cached:
                result = json.loads(cached)
                if isinstance(result, list) and result:
                    QUERY_CACHE_HITS.inc()
                    self._log(raw_sql + _CACHE_HIT_SUFFIX)
                    return result[0]

        self._log(raw_sql)
        try:
            data = self.parse_response(self._post(raw_sql))
        except QueryError as exc:
            raise QueryError(f"Query error: {exc}", status_code=exc.status_code, body=exc.body) from exc
        except ValueError as exc:
            raise QueryError(f"Query error: {exc}") from exc

        if info is not None and cache_key is not None and not cache.has(cache_key):
            if cache.set(cache_key, json.dumps([data]), duration):
                logger.debug("saved query result in cache", extra={"key": cache_key})
        return data

    def _prepare_result(self, data: Any, method: FetchMethod, fetch_mode: Optional[int]) -> Any:
        if isinstance(data, dict):
            self._load_envelope(data)
            rows = data.get("data") or []
        else:
            self._executed = True
            if isinstance(data, str):
                return data
            rows = []

        if method is FetchMethod.FETCH_COLUMN:
            return [next(iter(row.values())) for row in rows]
        if method is FetchMethod.FETCH_SCALAR:
            return next(iter(rows[0].values()), None) if rows else None
        if method is FetchMethod.FETCH:
            return rows[0] if rows else None

        if fetch_mode == FetchMode.ALL:
            return self.statement_data()
        if fetch_mode == FetchMode.TOTAL:
            return self.totals()
        return rows

    def _load_envelope(self, result: Dict[str, Any]) -> None:
        self._executed = True
        for key in _ENVELOPE_KEYS:
            if result.get(key) is not None:
                setattr(self, f"_{key}", result[key])

    # Envelope accessors
    def _ensure_executed(self) -> None:
        if not self._executed:
            raise StateError("Query was not executed yet")

    def meta(self) -> List[Dict[str, str]]:
        self._ensure_executed()
        return self._meta

    def data(self) -> List[Dict[str, Any]]:
        self._ensure_executed()
        return self._data

    def totals(self) -> Any:
        self._ensure_executed()
        return self._totals

    def extremes(self) -> Dict[str, Any]:
        self._ensure_executed()
        return self._extremes

    def rows(self) -> int:
        self._ensure_executed()
        return self._rows

    def count_all(self) -> int:
        """``rows_before_limit_at_least`` of the last response."""
        self._ensure_executed()
        return self._rows_before_limit_at_least

    def statistics(self) -> Dict[str, Any]:
        self._ensure_executed()
        return self._statistics

    def statement_data(self) -> Dict[str, Any]:
        return {
            "meta": self.meta(),
            "data": self.data(),
            "rows": self.rows(),
            "count_all": self.count_all(),
            "totals": self.totals(),
            "statistics": self.statistics(),
            "extremes": self.extremes(),
        }

    def schema_query(self) -> str:
        """CREATE TABLE text matching the columns of the last SELECT."""
        meta = self.meta()
        if not _SELECT_RE.match(self.sql):
            raise QueryError("Query was not SELECT type")
        columns = ",\n    ".join(f"`{item['name']}` {item['type']}" for item in meta)
        return f"CREATE TABLE x (\n    {columns}\n)"

    # Download
    def download(self, path: Optional[str] = None) -> str:
        """Fetch the result as CSV.

        Without ``path`` the CSV text is returned. With ``path`` the body is
        streamed into ``<path>/<digest>.download``, resumed from its current
        size when such a partial file exists, then renamed to
        ``<digest>.csv`` whose name is returned. A positive cache duration
        schedules removal of the file after that many seconds.
        """
        raw_sql = self.raw_sql() + " FORMAT CSV"
        self._log(raw_sql)

        if path is None:
            try:
                result = self.parse_response(self._post(raw_sql))
            except QueryError as exc:
                raise QueryError(f"Download error: {exc}", status_code=exc.status_code, body=exc.body) from exc
            return "" if result is True else result

        digest = CacheKeys.digest([_KEY_TAG, self.db.dsn, self.db.username, raw_sql])
        name = CacheKeys.DOWNLOAD_FILE.format(digest=digest)
        partial = os.path.join(path, f"{name}.download")
        target = os.path.join(path, f"{name}.csv")
        if os.path.exists(target):
            return target

        try:
            offset = os.path.getsize(partial) if os.path.exists(partial) else 0
            QUERIES_TOTAL.inc()
            response = self.db.transport.download(
                self.db.get_query_string(self.options), raw_sql, partial, offset
            )
            self.parse_response(response)
            if not os.path.exists(partial):
                raise QueryError(f"{raw_sql} download failed!")
            os.replace(partial, target)
        except (QueryError, OSError, requests.RequestException) as exc:
            _remove_file(partial)
            raise QueryError(f"Download error: {exc}") from exc

        if self.query_cache_duration and self.query_cache_duration > 0:
            timer = threading.Timer(self.query_cache_duration, _remove_file, (target,))
            timer.daemon = True
            timer.start()
        return target

    # Writes
    def insert(self, table: str, columns: Dict[str, Any] | "Query") -> "Command":
        params: Dict[str, Any] = {}
        sql = self.db.get_query_builder().insert(table, columns, params)
        return self.set_sql(sql, params)

    def batch_insert(self, table: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> "Command":
        params: Dict[str, Any] = {}
        sql = self.db.get_query_builder().batch_insert(table, columns, rows, params)
        return self.set_sql(sql, params)

    def update(self, table: str, columns: Dict[str, Any], condition: Any = "", params: Optional[Dict[str, Any]] = None) -> "Command":
        params = dict(params or {})
        sql = self.db.get_query_builder().update(table, columns, condition, params)
        return self.set_sql(sql, params)

    def delete(self, table: str, condition: Any = "", params: Optional[Dict[str, Any]] = None) -> "Command":
        params = dict(params or {})
        sql = self.db.get_query_builder().delete(table, condition, params)
        return self.set_sql(sql, params)

    def create_table(self, table: str, columns: Any, options: Optional[str] = None) -> "Command":
        return self.set_sql(self.db.get_query_builder().create_table(table, columns, options), {})

    def drop_table(self, table: str) -> "Command":
        return self.set_sql(self.db.get_query_builder().drop_table(table), {})

    def truncate_table(self, table: str) -> "Command":
        return self.set_sql(self.db.get_query_builder().truncate_table(table), {})

    def add_column(self, table: str, column: str, column_type: Any) -> "Command":
        return self.set_sql(self.db.get_query_builder().add_column(table, column, column_type), {})

    def drop_column(self, table: str, column: str) -> "Command":
        return self.set_sql(self.db.get_query_builder().drop_column(table, column), {})

    def insert_json_rows(self, table: str, rows: str | bytes) -> Any:
        """Send newline-delimited JSON objects with ``FORMAT JSONEachRow``."""
        sql = f"INSERT INTO {self.db.get_schema().quote_table_name(table)} FORMAT JSONEachRow"
        self._log(sql)
        response = self._post(rows, {"query": sql}, {"Content-Type": "application/x-ndjson"})
        return self.parse_response(response)

    def _file_insert_sql(self, table: str, columns: Optional[Sequence[str]], fmt: str) -> str:
        schema = self.db.get_schema()
        if columns is None:
            table_schema = schema.get_table_schema(table)
            columns = table_schema.column_names() if table_schema is not None else []
        column_list = ", ".join(schema.quote_column_name(c) for c in columns)
        return f"INSERT INTO {schema.quote_table_name(table)} ({column_list}) FORMAT {fmt}"

    def _upload_file(self, sql: str, file: str) -> Any:
        with open(file, "rb") as fp:
            data = fp.read()
        return self.parse_response(self._post(data, {"query": sql}))

    def insert_file(
        self,
        table: str,
        columns: Optional[Sequence[str]] = None,
        file: str = "",
        fmt: str = "CSV",
    ) -> Any:
        """Upload one file in ``fmt``; columns default to the whole table."""
        sql = self._file_insert_sql(table, columns, fmt)
        self._log(sql)
        return self._upload_file(sql, file)

    async def abatch_insert_files(
        self,
        table: str,
        columns: Optional[Sequence[str]] = None,
        files: Sequence[str] = (),
        fmt: str = "CSV",
        timeout: Optional[float] = None,
    ) -> List[Any]:
        """Upload ``files`` concurrently and wait for all of them.

        Raises QueryError when the group does not finish within ``timeout``
        (``batch_files_timeout`` from settings by default).
        """
        sql = self._file_insert_sql(table, columns, fmt)
        self._log(sql)

        async def _upload(file: str) -> Any:
            IN_FLIGHT_UPLOADS.inc()
            try:
                return await run_blocking(self._upload_file, sql, file)
            finally:
                IN_FLIGHT_UPLOADS.dec()

        wait = settings.batch_files_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(
                asyncio.gather(*(_upload(f) for f in files)),
                timeout=wait,
            )
        except asyncio.TimeoutError as exc:
            raise QueryError(f"Batch insert of {len(files)} files timed out after {wait}s") from exc

    def batch_insert_files(
        self,
        table: str,
        columns: Optional[Sequence[str]] = None,
        files: Sequence[str] = (),
        fmt: str = "CSV",
        timeout: Optional[float] = None,
    ) -> List[Any]:
        return asyncio.run(self.abatch_insert_files(table, columns, files, fmt, timeout))
