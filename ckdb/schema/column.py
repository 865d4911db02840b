"""Per-column metadata and value coercion."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from ckdb.constants import ColumnType
from ckdb.expression import Expression, ParamType, TypedParam
from ckdb.utils import float_to_string, to_bool, to_float, to_int

# Host primitive kinds a column value is normalised to.
PY_TYPES = {
    "str": str,
    "int": int,
    "bool": bool,
    "float": float,
}


@dataclass
class ColumnSchema:
    """One column of a ClickHouse table.

    Built once from ``system.columns`` and never mutated afterwards.
    """

    name: str
    db_type: str
    type: ColumnType = ColumnType.STRING
    py_type: str = "str"
    unsigned: bool = False
    default_value: Any = None
    is_primary_key: bool = False
    comment: str = ""

    def typecast(self, value: Any) -> Any:
        """Normalise ``value`` to the column's host type.

        The steps run in order and the first one that applies wins:

        1. ``""`` becomes ``None`` unless the column is textual;
        2. ``None``, values already of the host type, expressions and
           sub-queries pass through;
        3. lists against an ``Array(...)`` column pass through;
        4. ``[value, ParamType.X]`` pairs become a :class:`TypedParam`;
        5. anything else is cast to the host kind. Floats bound for string
           columns are written with ``.`` as separator regardless of locale.
        """
        if isinstance(value, str) and value == "" and self.type not in ColumnType.textual():
            return None

        if (
            value is None
            or type(value) is PY_TYPES.get(self.py_type)
            or isinstance(value, (Expression, TypedParam))
            or _is_query(value)
        ):
            return value

        if isinstance(value, (list, tuple)):
            if "Array(" in self.db_type:
                return value
            if len(value) == 2 and isinstance(value[1], ParamType):
                return TypedParam(value[0], value[1])

        if self.py_type == "str":
            if hasattr(value, "read"):
                return value
            if isinstance(value, float):
                return float_to_string(value)
            if isinstance(value, (list, tuple, dict)):
                return json.dumps(value, ensure_ascii=False)
            if isinstance(value, (bytes, bytearray)):
                return value.decode("utf-8", "replace")
            if isinstance(value, bool):
                return "1" if value else "0"
            return str(value)
        if self.py_type == "int":
            return to_int(value)
        if self.py_type == "bool":
            return to_bool(value)
        if self.py_type == "float":
            return to_float(value)
        return value

    def db_typecast(self, value: Any) -> Any:
        """Coerce a value on its way to the server."""
        return self.typecast(value)

    def py_typecast(self, value: Any) -> Any:
        """Coerce a value for use in application code."""
        return self.typecast(value)

    @property
    def is_nullable(self) -> bool:
        return self.db_type.startswith("Nullable(")

    @property
    def base_db_type(self) -> str:
        """Dialect type with any ``Nullable(...)`` wrapper removed."""
        if self.is_nullable:
            return self.db_type[len("Nullable(") : -1]
        return self.db_type


def _is_query(value: Any) -> bool:
    # Avoid an import cycle with ckdb.query.
    from ckdb.query.query import Query

    return isinstance(value, Query)


def py_type_for(column_type: ColumnType) -> str:
    """Host primitive kind for an abstract column type."""
    if column_type in (
        ColumnType.TINYINT,
        ColumnType.SMALLINT,
        ColumnType.INTEGER,
        ColumnType.BIGINT,
    ):
        return "int"
    if column_type == ColumnType.BOOLEAN:
        return "bool"
    if column_type in (ColumnType.FLOAT, ColumnType.DOUBLE):
        return "float"
    return "str"

