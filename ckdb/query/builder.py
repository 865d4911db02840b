"""SQL generation for the ClickHouse dialect.

Structured :class:`~ckdb.query.query.Query` descriptions become
``(sql, params)`` pairs here. Conditions are nested lists
(``["and", {"a": 1}, [">", "b", 2]]``), hash dicts, raw strings or
:class:`~ckdb.expression.Expression` objects. Parameters are named
(``:qp0``, ``:qp1``, ...) and rendered into the statement by the command,
since the HTTP interface takes plain SQL text.

ClickHouse has no UPDATE/DELETE statements, so writes are expressed as
mutations (``ALTER TABLE ... UPDATE/DELETE WHERE ...``).
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from ckdb.constants import ColumnType
from ckdb.exceptions import ConfigurationError
from ckdb.expression import Expression, TypedParam
from ckdb.schema.builder import ColumnSchemaBuilder
from ckdb.utils import float_to_string, to_int

from .query import Query

if TYPE_CHECKING:
    from ckdb.connection import Connection
    from ckdb.schema import ColumnSchema, Schema

Params = Dict[str, Any]

# Largest UInt64; stands in for "no limit" when only an offset is given.
_NO_LIMIT = 18446744073709551615

_ALIAS_RE = re.compile(r"^(.*?)(?:\s+as\s+|\s+)([\w\-_.]+)$", re.IGNORECASE)
_TABLE_ALIAS_RE = re.compile(r"^(.*?)(?:\s+as|)\s+([^ ]+)$", re.IGNORECASE)
_TYPE_WITH_REST_RE = re.compile(r"^(\w+)(\s+.*)?$", re.DOTALL)

_LIKE_ESCAPES = {"%": "\\%", "_": "\\_", "\\": "\\\\"}


class QueryBuilder:
    separator = " "

    type_map: Dict[str, str] = {
        ColumnType.PK.value: "UInt64",
        ColumnType.BIGPK.value: "UInt64",
        ColumnType.CHAR.value: "FixedString(1)",
        ColumnType.STRING.value: "String",
        ColumnType.TEXT.value: "String",
        ColumnType.TINYINT.value: "Int8",
        ColumnType.SMALLINT.value: "Int8",
        ColumnType.INTEGER.value: "Int32",
        ColumnType.BIGINT.value: "Int64",
        ColumnType.FLOAT.value: "Float32",
        ColumnType.DOUBLE.value: "Float64",
        ColumnType.DECIMAL.value: "Float32",
        ColumnType.DATETIME.value: "DateTime",
        ColumnType.TIMESTAMP.value: "DateTime",
        ColumnType.TIME.value: "DateTime",
        ColumnType.DATE.value: "Date",
        ColumnType.BINARY.value: "String",
        ColumnType.BOOLEAN.value: "Int8",
        ColumnType.MONEY.value: "Float32",
        ColumnType.JSON.value: "String",
    }

    def __init__(self, db: "Connection"):
        self.db = db

    @property
    def schema(self) -> "Schema":
        return self.db.get_schema()

    # SELECT
    def build(self, query: Query, params: Optional[Params] = None) -> Tuple[str, Params]:
        """Compile ``query`` into SQL and its parameter map."""
        query = query.prepare(self)
        params = {**(params or {}), **query.params}

        clauses = [
            self.build_select(query.select_columns, params, query.is_distinct, query.select_option),
            self.build_from(query.tables, params),
            self.build_sample(query.sample_size),
            self.build_join(query.joins, params),
            self.build_pre_where(query.pre_where_condition, params),
            self.build_where(query.where_condition, params),
            self.build_group_by(query.group_by_columns, params),
            self.build_with_totals(query.has_with_totals()),
            self.build_having(query.having_condition, params),
        ]
        sql = self.separator.join(c.strip() for c in clauses if c)

        order_by = self.build_order_by(query.order_by_columns, params)
        if order_by:
            sql += self.separator + order_by
        limit_by = self.build_limit_by(query.limit_by_spec)
        if limit_by:
            sql += self.separator + limit_by
        limit = self.build_limit(query.limit_value, query.offset_value)
        if limit:
            sql += self.separator + limit

        union = self.build_union(query.unions, params)
        if union:
            sql += self.separator + union

        return sql, params

    def build_select(
        self,
        columns: Sequence[Tuple[Optional[str], Any]],
        params: Params,
        distinct: bool = False,
        select_option: Optional[str] = None,
    ) -> str:
        select = "SELECT DISTINCT" if distinct else "SELECT"
        if select_option:
            select += " " + select_option
        if not columns:
            return select + " *"

        out = []
        for alias, column in columns:
            if isinstance(column, Expression):
                text = self.build_expression(column, params)
                out.append(f"{text} AS {self.schema.quote_column_name(alias)}" if alias else text)
            elif isinstance(column, Query):
                sub_sql = self._build_subquery(column, params)
                out.append(f"({sub_sql}) AS {self.schema.quote_column_name(alias or 'sub')}")
            elif alias and alias != column:
                if "(" not in column:
                    column = self.schema.quote_column_name(column)
                out.append(f"{column} AS {self.schema.quote_column_name(alias)}")
            elif "(" not in column:
                match = _ALIAS_RE.match(column)
                if match:
                    out.append(
                        f"{self.schema.quote_column_name(match.group(1))} AS "
                        f"{self.schema.quote_column_name(match.group(2))}"
                    )
                else:
                    out.append(self.schema.quote_column_name(column))
            else:
                out.append(column)
        return f"{select} {', '.join(out)}"

    def build_from(self, tables: Sequence[Tuple[Optional[str], Any]], params: Params) -> str:
        if not tables:
            return ""
        return "FROM " + ", ".join(self._quote_table_names(tables, params))

    def build_sample(self, sample: Optional[float | int]) -> str:
        if sample is None:
            return ""
        text = float_to_string(sample) if isinstance(sample, float) else str(sample)
        return " SAMPLE " + text

    def build_join(self, joins: Sequence[Tuple[str, Any, Any]], params: Params) -> str:
        if not joins:
            return ""
        parts = []
        for join_type, table, on in joins:
            if isinstance(table, dict):
                tables = list(table.items())
            else:
                tables = [(None, table)]
            sql = f"{join_type} {self._quote_table_names(tables, params)[0]}"
            condition = self.build_condition(on, params)
            if condition:
                sql += " ON " + condition
            parts.append(sql)
        return self.separator.join(parts)

    def build_pre_where(self, condition: Any, params: Params) -> str:
        where = self.build_condition(condition, params)
        return "" if where == "" else "PREWHERE " + where

    def build_where(self, condition: Any, params: Params) -> str:
        where = self.build_condition(condition, params)
        return "" if where == "" else "WHERE " + where

    def build_group_by(self, columns: Sequence[Any], params: Params) -> str:
        if not columns:
            return ""
        out = []
        for column in columns:
            if isinstance(column, Expression):
                out.append(self.build_expression(column, params))
            elif "(" not in column:
                out.append(self.schema.quote_column_name(column))
            else:
                out.append(column)
        return "GROUP BY " + ", ".join(out)

    def build_with_totals(self, with_totals: bool) -> str:
        return " WITH TOTALS " if with_totals else ""

    def build_having(self, condition: Any, params: Params) -> str:
        having = self.build_condition(condition, params)
        return "" if having == "" else "HAVING " + having

    def build_order_by(self, columns: Sequence[Tuple[Any, str]], params: Params) -> str:
        if not columns:
            return ""
        out = []
        for column, direction in columns:
            if isinstance(column, Expression):
                out.append(self.build_expression(column, params))
                continue
            if "(" not in column:
                column = self.schema.quote_column_name(column)
            out.append(column + (" DESC" if direction == "DESC" else ""))
        return "ORDER BY " + ", ".join(out)

    def build_limit_by(self, limit_by: Optional[Tuple[int, Sequence[str]]]) -> str:
        if not limit_by:
            return ""
        n, columns = limit_by
        return f"LIMIT {n} BY {','.join(columns)}"

    @staticmethod
    def has_limit(limit: Optional[int]) -> bool:
        return limit is not None and limit >= 0

    @staticmethod
    def has_offset(offset: Optional[int]) -> bool:
        return offset is not None and offset > 0

    def build_limit(self, limit: Optional[int], offset: Optional[int]) -> str:
        """``LIMIT offset,limit`` (no OFFSET keyword) or ``LIMIT limit``."""
        if self.has_offset(offset):
            return f"LIMIT {offset},{limit if self.has_limit(limit) else _NO_LIMIT}"
        if self.has_limit(limit):
            return f"LIMIT {limit}"
        return ""

    def build_union(self, unions: Sequence[Dict[str, Any]], params: Params) -> str:
        if not unions:
            return ""
        result = []
        for union in unions:
            sub = union["query"]
            if isinstance(sub, Query):
                sub = self._build_subquery(sub, params)
            result.append("UNION " + ("ALL " if union.get("all") else "") + sub)
        return self.separator.join(result).strip()

    def select_exists(self, raw_sql: str) -> str:
        return f"SELECT count(*) FROM ({raw_sql})"

    # Conditions
    def build_condition(self, condition: Any, params: Params) -> str:
        if isinstance(condition, Expression):
            return self.build_expression(condition, params)
        if not condition:
            return ""
        if isinstance(condition, str):
            return condition
        if isinstance(condition, dict):
            return self._build_hash_condition(condition, params)
        if isinstance(condition, (list, tuple)):
            operator = str(condition[0]).upper()
            operands = list(condition[1:])
            if operator in ("AND", "OR"):
                return self._build_conjunction(operator, operands, params)
            if operator == "NOT":
                return self._build_not(operands, params)
            if operator in ("BETWEEN", "NOT BETWEEN"):
                return self._build_between(operator, operands, params)
            if operator in ("IN", "NOT IN", "GLOBAL IN", "GLOBAL NOT IN"):
                return self._build_in(operator, operands, params)
            if operator in ("LIKE", "NOT LIKE", "OR LIKE", "OR NOT LIKE", "ILIKE", "NOT ILIKE"):
                return self._build_like(operator, operands, params)
            if operator in ("EXISTS", "NOT EXISTS"):
                return self._build_exists(operator, operands, params)
            return self._build_simple(operator, operands, params)
        raise TypeError(f"Unsupported condition type: {type(condition).__name__}")

    def _build_conjunction(self, operator: str, operands: List[Any], params: Params) -> str:
        parts = []
        for operand in operands:
            built = self.build_condition(operand, params)
            if built != "":
                parts.append(built)
        if not parts:
            return ""
        if len(parts) == 1:
            return parts[0]
        return "(" + f") {operator} (".join(parts) + ")"

    def _build_not(self, operands: List[Any], params: Params) -> str:
        if len(operands) != 1:
            raise ValueError("Operator 'NOT' requires exactly one operand.")
        operand = self.build_condition(operands[0], params)
        return "" if operand == "" else f"NOT ({operand})"

    def _build_between(self, operator: str, operands: List[Any], params: Params) -> str:
        if len(operands) != 3:
            raise ValueError(f"Operator '{operator}' requires three operands.")
        column, start, end = operands
        return (
            f"{self._quote_condition_column(column)} {operator} "
            f"{self._placeholder(start, params)} AND {self._placeholder(end, params)}"
        )

    def _build_in(self, operator: str, operands: List[Any], params: Params) -> str:
        if len(operands) != 2:
            raise ValueError(f"Operator '{operator}' requires two operands.")
        column, values = operands
        negated = "NOT" in operator

        if isinstance(values, Query):
            sub_sql = self._build_subquery(values, params)
            if isinstance(column, (list, tuple)):
                column = "(" + ", ".join(self._quote_condition_column(c) for c in column) + ")"
            else:
                column = self._quote_condition_column(column)
            return f"{column} {operator} ({sub_sql})"

        if values is None or isinstance(values, (str, int, float, Expression)):
            values = [values]
        values = list(values)
        if not values:
            return "" if negated else "0=1"

        if isinstance(column, (list, tuple)):
            return self._build_composite_in(operator, list(column), values, params)

        quoted = self._quote_condition_column(column)
        placeholders = []
        has_null = False
        for value in values:
            if value is None:
                has_null = True
                continue
            placeholders.append(self._placeholder(value, params))

        if not placeholders:
            return f"{quoted} IS NOT NULL" if negated else f"{quoted} IS NULL"

        if len(placeholders) == 1 and not operator.startswith("GLOBAL"):
            sql = f"{quoted}{'<>' if negated else '='}{placeholders[0]}"
        else:
            sql = f"{quoted} {operator} ({', '.join(placeholders)})"

        if has_null:
            if negated:
                return f"{sql} AND {quoted} IS NOT NULL"
            return f"({sql} OR {quoted} IS NULL)"
        return sql

    def _build_composite_in(
        self, operator: str, columns: List[str], values: List[Any], params: Params
    ) -> str:
        tuples = []
        for row in values:
            if isinstance(row, dict):
                row = [row.get(c) for c in columns]
            tuples.append("(" + ", ".join(self._placeholder(v, params) for v in row) + ")")
        quoted = ", ".join(self._quote_condition_column(c) for c in columns)
        return f"({quoted}) {operator} ({', '.join(tuples)})"

    def _build_like(self, operator: str, operands: List[Any], params: Params) -> str:
        if len(operands) not in (2, 3):
            raise ValueError(f"Operator '{operator}' requires two operands.")
        column, values = operands[0], operands[1]
        escape = operands[2] if len(operands) == 3 else _LIKE_ESCAPES

        conjunction = " OR " if operator.startswith("OR ") else " AND "
        operator = operator[3:] if operator.startswith("OR ") else operator

        if not isinstance(values, (list, tuple)):
            values = [values]
        if not values:
            return "" if "NOT" in operator else "0=1"

        quoted = self._quote_condition_column(column)
        parts = []
        for value in values:
            if isinstance(value, Expression):
                placeholder = self.build_expression(value, params)
            else:
                if escape:
                    value = "%" + "".join(escape.get(ch, ch) for ch in value) + "%"
                placeholder = self.bind_param(value, params)
            parts.append(f"{quoted} {operator} {placeholder}")
        return conjunction.join(parts)

    def _build_exists(self, operator: str, operands: List[Any], params: Params) -> str:
        sub = operands[0] if operands else None
        if not isinstance(sub, Query):
            raise ValueError(f"Operator '{operator}' requires a sub-query.")
        return f"{operator} ({self._build_subquery(sub, params)})"

    def _build_simple(self, operator: str, operands: List[Any], params: Params) -> str:
        if len(operands) != 2:
            raise ValueError(f"Operator '{operator}' requires two operands.")
        column, value = operands
        quoted = self._quote_condition_column(column)
        if value is None:
            return f"{quoted} {operator} NULL"
        return f"{quoted} {operator} {self._placeholder(value, params)}"

    def _build_hash_condition(self, condition: Dict[str, Any], params: Params) -> str:
        parts = []
        for column, value in condition.items():
            if isinstance(value, (list, tuple, Query)):
                parts.append(self._build_in("IN", [column, value], params))
                continue
            quoted = self._quote_condition_column(column)
            if value is None:
                parts.append(f"{quoted} IS NULL")
            else:
                parts.append(f"{quoted}={self._placeholder(value, params)}")
        if len(parts) == 1:
            return parts[0]
        return "(" + ") AND (".join(parts) + ")"

    # Parameters and values
    def bind_param(self, value: Any, params: Params) -> str:
        n = len(params)
        name = f":qp{n}"
        while name in params:
            n += 1
            name = f":qp{n}"
        params[name] = value
        return name

    def build_expression(self, expression: Expression, params: Params) -> str:
        for name, value in expression.params.items():
            params[name if name.startswith(":") else ":" + name] = value
        return expression.expression

    def _placeholder(self, value: Any, params: Params) -> str:
        if isinstance(value, Expression):
            return self.build_expression(value, params)
        if isinstance(value, Query):
            return f"({self._build_subquery(value, params)})"
        return self.bind_param(value, params)

    def _build_subquery(self, query: Query, params: Params) -> str:
        sql, sub_params = self.build(query, params)
        params.update(sub_params)
        return sql

    def literal(self, value: Any) -> str:
        """Render ``value`` as a ClickHouse literal."""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            return float_to_string(value)
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, Expression):
            return value.expression
        if isinstance(value, TypedParam):
            return self.literal(value.coerced())
        if isinstance(value, datetime):
            return self.schema.quote_value(value.strftime("%Y-%m-%d %H:%M:%S"))
        if isinstance(value, date):
            return self.schema.quote_value(value.isoformat())
        if isinstance(value, (bytes, bytearray)):
            return self.schema.quote_value(value.decode("utf-8", "replace"))
        if isinstance(value, (list, tuple, set)):
            return "[" + ", ".join(self.literal(v) for v in value) + "]"
        if isinstance(value, dict):
            return "{" + ", ".join(f"{self.literal(k)}: {self.literal(v)}" for k, v in value.items()) + "}"
        if isinstance(value, UUID):
            return self.schema.quote_value(str(value))
        return self.schema.quote_value(str(value))

    # Quoting helpers
    def _quote_condition_column(self, column: Any) -> str:
        if isinstance(column, Expression):
            return column.expression
        if "(" in column:
            return column
        return self.schema.quote_column_name(column)

    def _quote_table_names(
        self, tables: Iterable[Tuple[Optional[str], Any]], params: Params
    ) -> List[str]:
        out = []
        for alias, table in tables:
            if isinstance(table, Query):
                sub_sql = self._build_subquery(table, params)
                out.append(f"({sub_sql})" + (f" {self.schema.quote_table_name(alias)}" if alias else ""))
            elif isinstance(table, Expression):
                text = self.build_expression(table, params)
                out.append(text + (f" {self.schema.quote_table_name(alias)}" if alias else ""))
            elif alias:
                out.append(
                    f"{self.schema.quote_table_name(table)} {self.schema.quote_table_name(alias)}"
                )
            elif "(" not in table:
                match = _TABLE_ALIAS_RE.match(table)
                if match:
                    out.append(
                        f"{self.schema.quote_table_name(match.group(1))} "
                        f"{self.schema.quote_table_name(match.group(2))}"
                    )
                else:
                    out.append(self.schema.quote_table_name(table))
            else:
                out.append(table)
        return out

    def _column_schemas(self, table: str) -> Dict[str, "ColumnSchema"]:
        table_schema = self.schema.get_table_schema(table)
        return table_schema.columns if table_schema is not None else {}

    # Writes
    def insert(self, table: str, columns: Dict[str, Any] | Query, params: Params) -> str:
        """``INSERT INTO ... VALUES (...)`` for one row, or ``INSERT ... SELECT``."""
        quoted_table = self.schema.quote_table_name(table)
        if isinstance(columns, Query):
            names, select_sql = self._prepare_insert_select_subquery(columns, params)
            column_list = f" ({', '.join(names)})" if names else ""
            return f"INSERT INTO {quoted_table}{column_list} {select_sql}"

        column_schemas = self._column_schemas(table)
        names = []
        placeholders = []
        for name, value in columns.items():
            names.append(self.schema.quote_column_name(name))
            column = column_schemas.get(name)
            if column is not None and column.type == ColumnType.BIGINT:
                value = self._bigint_literal(column, value)
            elif column is not None:
                value = column.db_typecast(value)

            if isinstance(value, Expression):
                placeholders.append(self.build_expression(value, params))
            elif isinstance(value, Query):
                placeholders.append(f"({self._build_subquery(value, params)})")
            else:
                placeholders.append(self.bind_param(value, params))

        return (
            f"INSERT INTO {quoted_table} ({', '.join(names)}) "
            f"VALUES ({', '.join(placeholders)})"
        )

    def _prepare_insert_select_subquery(self, query: Query, params: Params) -> Tuple[List[str], str]:
        names = []
        for alias, column in query.select_columns:
            if alias:
                names.append(self.schema.quote_column_name(alias))
            elif isinstance(column, str) and column != "*" and "(" not in column:
                match = _ALIAS_RE.match(column)
                names.append(self.schema.quote_column_name(match.group(2) if match else column))
            else:
                # Computed or '*' columns: let the server map them by position.
                names = []
                break
        return names, self._build_subquery(query, params)

    def _bigint_literal(self, column: "ColumnSchema", value: Any) -> Any:
        # 64-bit integers go out as bare literals so they keep full precision.
        value = column.db_typecast(value)
        if value is None:
            return Expression("NULL")
        if isinstance(value, (Expression, TypedParam, Query)):
            return value
        return Expression(str(to_int(value)))

    def batch_insert(
        self,
        table: str,
        columns: Sequence[str],
        rows: Iterable[Sequence[Any]],
        params: Optional[Params] = None,
    ) -> str:
        """Multi-row INSERT with literals inlined; empty string for no rows."""
        params = params if params is not None else {}
        column_schemas = self._column_schemas(table)

        values = []
        for row in rows:
            rendered = []
            for i, value in enumerate(row):
                column = column_schemas.get(columns[i]) if i < len(columns) else None
                if column is not None:
                    value = column.db_typecast(value)
                    if column.type == ColumnType.BIGINT and not isinstance(value, Expression):
                        value = Expression(self.literal(value))
                rendered.append(self._batch_value(value, params))
            values.append("(" + ", ".join(rendered) + ")")
        if not values:
            return ""

        quoted_columns = ", ".join(self.schema.quote_column_name(c) for c in columns)
        return (
            f"INSERT INTO {self.schema.quote_table_name(table)} ({quoted_columns}) "
            f"VALUES {', '.join(values)}"
        )

    def _batch_value(self, value: Any, params: Params) -> str:
        if isinstance(value, str):
            return self.schema.quote_value(value)
        if value is False:
            return "0"
        if value is None:
            return "NULL"
        if isinstance(value, Expression):
            return self.build_expression(value, params)
        if isinstance(value, Query):
            return f"({self._build_subquery(value, params)})"
        return self.literal(value)

    def update(
        self,
        table: str,
        columns: Dict[str, Any],
        condition: Any,
        params: Params,
    ) -> str:
        """Mutation ``ALTER TABLE t UPDATE col=... WHERE ...``."""
        sets = self._prepare_update_sets(table, columns, params)
        where = self.build_condition(condition, params) or "1"
        return (
            f"ALTER TABLE {self.schema.quote_table_name(table)} "
            f"UPDATE {', '.join(sets)} WHERE {where}"
        )

    def _prepare_update_sets(self, table: str, columns: Dict[str, Any], params: Params) -> List[str]:
        column_schemas = self._column_schemas(table)
        sets = []
        for name, value in columns.items():
            column = column_schemas.get(name)
            if column is not None:
                value = column.db_typecast(value)
            sets.append(f"{self.schema.quote_column_name(name)}={self._placeholder(value, params)}")
        return sets

    def delete(self, table: str, condition: Any, params: Params) -> str:
        """Mutation ``ALTER TABLE t DELETE WHERE ...``."""
        where = self.build_condition(condition, params) or "1"
        return f"ALTER TABLE {self.schema.quote_table_name(table)} DELETE WHERE {where}"

    # DDL
    def create_table(
        self,
        table: str,
        columns: Dict[str, Any] | Sequence[str],
        options: Optional[str] = None,
    ) -> str:
        if options is None:
            raise ConfigurationError("Need set specific settings for engine table")
        if isinstance(columns, dict):
            cols = [
                f"\t{self.schema.quote_column_name(name)} {self.get_column_type(column_type)}"
                for name, column_type in columns.items()
            ]
        else:
            cols = [f"\t{definition}" for definition in columns]
        return (
            f"CREATE TABLE {self.schema.quote_table_name(table)} (\n"
            + ",\n".join(cols)
            + f"\n) {options}"
        )

    def drop_table(self, table: str) -> str:
        return f"DROP TABLE {self.schema.quote_table_name(table)}"

    def truncate_table(self, table: str) -> str:
        return f"TRUNCATE TABLE {self.schema.quote_table_name(table)}"

    def add_column(self, table: str, column: str, column_type: Any) -> str:
        return (
            f"ALTER TABLE {self.schema.quote_table_name(table)} ADD COLUMN "
            f"{self.schema.quote_column_name(column)} {self.get_column_type(column_type)}"
        )

    def drop_column(self, table: str, column: str) -> str:
        return (
            f"ALTER TABLE {self.schema.quote_table_name(table)} DROP COLUMN "
            f"{self.schema.quote_column_name(column)}"
        )

    def get_column_type(self, column_type: Any) -> str:
        """Map an abstract type to the ClickHouse one.

        ``"bigint"`` -> ``Int64``, ``"Uinteger DEFAULT 0"`` -> ``UInt32 DEFAULT 0``;
        strings that already name a ClickHouse type are returned unchanged.
        """
        if isinstance(column_type, ColumnSchemaBuilder):
            column_type = str(column_type)
        elif isinstance(column_type, ColumnType):
            column_type = column_type.value

        if column_type in self.type_map:
            return self.type_map[column_type]
        match = _TYPE_WITH_REST_RE.match(column_type)
        if match:
            base, rest = match.group(1), match.group(2) or ""
            if base in self.type_map:
                return self.type_map[base] + rest
            if base.startswith("U") and base[1:] in self.type_map:
                return "U" + self.type_map[base[1:]] + rest
        return column_type
