"""Table metadata and the ClickHouse quoting rules."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ckdb.constants import ColumnType
from ckdb.logging import get_logger

from .builder import ColumnSchemaBuilder
from .column import ColumnSchema, py_type_for

if TYPE_CHECKING:
    from ckdb.connection import Connection
    from ckdb.query.builder import QueryBuilder

logger = get_logger("schema")

_BASE_TYPE_MAP: Dict[str, ColumnType] = {
    "UInt8": ColumnType.SMALLINT,
    "UInt16": ColumnType.INTEGER,
    "UInt32": ColumnType.INTEGER,
    "UInt64": ColumnType.BIGINT,
    "Int8": ColumnType.SMALLINT,
    "Int16": ColumnType.INTEGER,
    "Int32": ColumnType.INTEGER,
    "Int64": ColumnType.BIGINT,
    "Float32": ColumnType.FLOAT,
    "Float64": ColumnType.FLOAT,
    "Decimal": ColumnType.DECIMAL,
    "Bool": ColumnType.BOOLEAN,
    "String": ColumnType.STRING,
    "FixedString": ColumnType.CHAR,
    "UUID": ColumnType.STRING,
    "Date": ColumnType.DATE,
    "Date32": ColumnType.DATE,
    "DateTime": ColumnType.DATETIME,
    "DateTime64": ColumnType.DATETIME,
    "Enum": ColumnType.STRING,
    "Enum8": ColumnType.STRING,
    "Enum16": ColumnType.STRING,
}

TYPE_MAP: Dict[str, ColumnType] = {
    **_BASE_TYPE_MAP,
    **{f"Nullable({name})": t for name, t in _BASE_TYPE_MAP.items()},
}

UNSIGNED_TYPES = frozenset({"UInt8", "UInt16", "UInt32", "UInt64"})

# Source-database type names and their ClickHouse equivalents, used when
# mirroring tables from other engines.
SCHEMA_MAP: Dict[str, Dict[str, str]] = {
    "mysql": {
        "UNSIGNED TINYINT": "UInt8",
        "TINYINT": "Int8",
        "UNSIGNED SMALLINT": "UInt16",
        "SMALLINT": "Int16",
        "UNSIGNED INT": "UInt32",
        "UNSIGNED MEDIUMINT": "UInt32",
        "INT": "Int32",
        "MEDIUMINT": "Int32",
        "UNSIGNED BIGINT": "UInt64",
        "BIGINT": "Int64",
        "VARCHAR": "String",
        "FLOAT": "Float32",
        "DOUBLE": "Float64",
        "DATE": "Date",
        "DATETIME": "DateTime",
        "TIMESTAMP": "DateTime",
        "BINARY": "String",
    }
}

_TYPE_PATTERN = re.compile(r"^([\w ]+)(?:\((.+)\))?$")
_WRAPPERS = ("Nullable(", "LowCardinality(")

_QUOTE_ESCAPES = {
    "\\": "\\\\",
    "'": "\\'",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\0": "\\0",
    "\x1a": "\\x1A",
}
_QUOTE_RE = re.compile("[" + re.escape("".join(_QUOTE_ESCAPES)) + "]")


@dataclass
class TableSchema:
    schema_name: str
    name: str
    columns: Dict[str, ColumnSchema] = field(default_factory=dict)
    primary_key: List[str] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.schema_name}.{self.name}"

    def column_names(self) -> List[str]:
        return list(self.columns)

    def get_column(self, name: str) -> Optional[ColumnSchema]:
        return self.columns.get(name)


def unwrap_type(db_type: str) -> str:
    """Strip ``Nullable(...)`` / ``LowCardinality(...)`` wrappers."""
    base = db_type
    changed = True
    while changed:
        changed = False
        for wrapper in _WRAPPERS:
            if base.startswith(wrapper) and base.endswith(")"):
                base = base[len(wrapper) : -1]
                changed = True
    return base


class Schema:
    def __init__(self, db: "Connection"):
        self.db = db
        self._tables: Dict[str, TableSchema] = {}
        self._builder: Optional["QueryBuilder"] = None

    # Metadata
    def get_table_schema(self, name: str, refresh: bool = False) -> Optional[TableSchema]:
        """Metadata for ``name`` (``table`` or ``database.table``), cached.

        Two threads racing on the first lookup both load it; the second
        write wins, which is harmless because metadata never changes.
        """
        if not refresh and name in self._tables:
            return self._tables[name]
        table = self.load_table_schema(name)
        if table is not None:
            self._tables[name] = table
        return table

    def load_table_schema(self, name: str) -> Optional[TableSchema]:
        database = self.db.database or "default"
        if "." in name.strip("."):
            database, name = name.split(".", 1)

        sql = (
            "SELECT * FROM system.columns "
            "WHERE `table`=:name and `database`=:database FORMAT JSON"
        )
        rows = self.db.create_command(
            sql, {":name": name, ":database": database}
        ).query_all()
        if not rows:
            return None

        table = TableSchema(schema_name=rows[0].get("database", database), name=name)
        for info in rows:
            column = self.load_column_schema(info)
            table.columns[column.name] = column
            if column.is_primary_key:
                table.primary_key.append(column.name)
        logger.debug(
            "loaded table schema",
            extra={"table": table.full_name, "columns": len(table.columns)},
        )
        return table

    def load_column_schema(self, info: Dict[str, Any]) -> ColumnSchema:
        db_type = info["type"]
        column_type = TYPE_MAP.get(db_type, ColumnType.STRING)

        base = unwrap_type(db_type)
        match = _TYPE_PATTERN.match(base)
        base_name = match.group(1) if match else base
        if db_type not in TYPE_MAP and base_name in TYPE_MAP:
            column_type = TYPE_MAP[base_name]

        default_value = None
        if not info.get("default_type"):
            default_value = info.get("default_expression")

        return ColumnSchema(
            name=info["name"],
            db_type=db_type,
            type=column_type,
            py_type=py_type_for(column_type),
            unsigned=base_name in UNSIGNED_TYPES,
            default_value=default_value,
            is_primary_key=bool(int(info.get("is_in_primary_key") or 0)),
            comment=info.get("comment") or "",
        )

    def find_table_names(self) -> List[str]:
        rows = self.db.create_command("SHOW TABLES").query_all()
        return [row["name"] for row in rows]

    def refresh(self) -> None:
        self._tables.clear()

    # Quoting
    def quote_value(self, value: str) -> str:
        if not isinstance(value, str):
            return value
        return "'" + _QUOTE_RE.sub(lambda m: _QUOTE_ESCAPES[m.group(0)], value) + "'"

    def quote_simple_table_name(self, name: str) -> str:
        return name if "`" in name else f"`{name}`"

    def quote_simple_column_name(self, name: str) -> str:
        return name if "`" in name or name == "*" else f"`{name}`"

    def quote_table_name(self, name: str) -> str:
        if "(" in name or "{{" in name:
            return name
        return ".".join(self.quote_simple_table_name(part) for part in name.split("."))

    def quote_column_name(self, name: str) -> str:
        """Quote a column unless it is already an expression or qualified."""
        if "(" in name or "[[" in name or "." in name or "{{" in name:
            return name
        return self.quote_simple_column_name(name)

    # Builders
    def get_query_builder(self) -> "QueryBuilder":
        if self._builder is None:
            from ckdb.query.builder import QueryBuilder

            self._builder = QueryBuilder(self.db)
        return self._builder

    def create_column_schema_builder(self, column_type: ColumnType | str) -> ColumnSchemaBuilder:
        return ColumnSchemaBuilder(column_type, quote_value=self.quote_value)

    def convert_source_type(self, db_type: str, source: str = "mysql") -> str:
        """ClickHouse name for a ``source`` engine type, e.g. ``varchar(255)`` -> ``String``.

        Unknown types are returned unchanged.
        """
        mapping = SCHEMA_MAP.get(source, {})
        name = " ".join(db_type.upper().split())
        if name in mapping:
            return mapping[name]
        base = name.split("(", 1)[0].strip()
        return mapping.get(base, db_type)

    # Writes
    def insert(self, table: str, columns: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Insert one row after casting every value to its column type.

        Returns the values written, or None when the server reported nothing.
        """
        columns = self.hard_typecast_value(table, columns)
        params: Dict[str, Any] = {}
        sql = self.get_query_builder().insert(table, columns, params)
        if not self.db.create_command(sql, params).execute():
            return None
        return columns

    def hard_typecast_value(self, table: str, columns: Dict[str, Any]) -> Dict[str, Any]:
        table_schema = self.get_table_schema(table)
        if table_schema is None:
            return dict(columns)
        out = {}
        for name, value in columns.items():
            column = table_schema.get_column(name)
            out[name] = column.py_typecast(value) if column is not None else value
        return out
