from enum import Enum


class ColumnType(str, Enum):
    """Host-neutral abstract column types."""

    PK = "pk"
    UPK = "upk"
    BIGPK = "bigpk"
    UBIGPK = "ubigpk"
    CHAR = "char"
    STRING = "string"
    TEXT = "text"
    TINYINT = "tinyint"
    SMALLINT = "smallint"
    INTEGER = "integer"
    BIGINT = "bigint"
    FLOAT = "float"
    DOUBLE = "double"
    DECIMAL = "decimal"
    DATETIME = "datetime"
    TIMESTAMP = "timestamp"
    TIME = "time"
    DATE = "date"
    BINARY = "binary"
    BOOLEAN = "boolean"
    MONEY = "money"
    JSON = "json"

    @classmethod
    def textual(cls) -> frozenset["ColumnType"]:
        """Types that keep an empty string as a value instead of NULL."""
        return frozenset({cls.TEXT, cls.STRING, cls.BINARY, cls.CHAR})
