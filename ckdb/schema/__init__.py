from .builder import ColumnSchemaBuilder
from .column import ColumnSchema
from .schema import SCHEMA_MAP, TYPE_MAP, UNSIGNED_TYPES, Schema, TableSchema

__all__ = [
    "ColumnSchema",
    "ColumnSchemaBuilder",
    "SCHEMA_MAP",
    "Schema",
    "TableSchema",
    "TYPE_MAP",
    "UNSIGNED_TYPES",
]
