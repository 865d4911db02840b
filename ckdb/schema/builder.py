from __future__ import annotations

from typing import Any, Optional

from ckdb.constants import ColumnType
from ckdb.expression import Expression

CATEGORY_PK = "pk"
CATEGORY_STRING = "string"
CATEGORY_NUMERIC = "numeric"
CATEGORY_TIME = "time"
CATEGORY_OTHER = "other"

_CATEGORY_MAP = {
    ColumnType.PK: CATEGORY_PK,
    ColumnType.UPK: CATEGORY_PK,
    ColumnType.BIGPK: CATEGORY_PK,
    ColumnType.UBIGPK: CATEGORY_PK,
    ColumnType.CHAR: CATEGORY_STRING,
    ColumnType.STRING: CATEGORY_STRING,
    ColumnType.TEXT: CATEGORY_STRING,
    ColumnType.TINYINT: CATEGORY_NUMERIC,
    ColumnType.SMALLINT: CATEGORY_NUMERIC,
    ColumnType.INTEGER: CATEGORY_NUMERIC,
    ColumnType.BIGINT: CATEGORY_NUMERIC,
    ColumnType.FLOAT: CATEGORY_NUMERIC,
    ColumnType.DOUBLE: CATEGORY_NUMERIC,
    ColumnType.DECIMAL: CATEGORY_NUMERIC,
    ColumnType.MONEY: CATEGORY_NUMERIC,
    ColumnType.DATETIME: CATEGORY_TIME,
    ColumnType.TIMESTAMP: CATEGORY_TIME,
    ColumnType.TIME: CATEGORY_TIME,
    ColumnType.DATE: CATEGORY_TIME,
    ColumnType.BINARY: CATEGORY_OTHER,
    ColumnType.BOOLEAN: CATEGORY_NUMERIC,
    ColumnType.JSON: CATEGORY_OTHER,
}


class ColumnSchemaBuilder:
    """Fluent DDL column type, rendered through QueryBuilder.get_column_type.

    >>> str(ColumnSchemaBuilder(ColumnType.INTEGER).unsigned().default_value(0))
    'Uinteger DEFAULT 0'

    Numeric types carry the ``U`` unsigned prefix; other categories ignore it.
    """

    def __init__(self, column_type: ColumnType | str, quote_value=None):
        self.type = column_type.value if isinstance(column_type, ColumnType) else column_type
        self.is_unsigned = False
        self.default: Any = None
        self._has_default = False
        self._quote_value = quote_value or (lambda v: "'" + v.replace("'", "\\'") + "'")

    def unsigned(self) -> "ColumnSchemaBuilder":
        self.is_unsigned = True
        return self

    def default_value(self, value: Any) -> "ColumnSchemaBuilder":
        self.default = value
        self._has_default = True
        return self

    def default_expression(self, expression: str) -> "ColumnSchemaBuilder":
        return self.default_value(Expression(expression))

    @property
    def category(self) -> Optional[str]:
        try:
            return _CATEGORY_MAP.get(ColumnType(self.type))
        except ValueError:
            return None

    def _build_default(self) -> str:
        if not self._has_default:
            return ""
        value = self.default
        if value is None:
            return " DEFAULT NULL"
        if isinstance(value, Expression):
            return f" DEFAULT {value.expression}"
        if isinstance(value, bool):
            return f" DEFAULT {int(value)}"
        if isinstance(value, (int, float)):
            return f" DEFAULT {value}"
        return f" DEFAULT {self._quote_value(str(value))}"

    def __str__(self) -> str:
        unsigned = "U" if self.is_unsigned and self.category == CATEGORY_NUMERIC else ""
        return f"{unsigned}{self.type}{self._build_default()}"
