"""Table handles: a table name bound to a connection, usable like a model.

A :class:`TableHandle` is built at runtime for any table; no class per table
is required. Validation comes from an optional pydantic ``row_model``;
relations are declared as data (:class:`Relation`) and traversed by the
batch helpers in :mod:`ckdb.helper`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Type

import pydantic
from pydantic import BaseModel

from ckdb.query import Query

if TYPE_CHECKING:
    from ckdb.connection import Connection
    from ckdb.schema import TableSchema


@dataclass
class Relation:
    """Child rows nested under ``name`` in a parent row.

    ``link`` maps child columns to the parent columns whose values are
    copied onto every child row before it is written.
    """

    name: str
    handle: "TableHandle"
    link: Dict[str, str] = field(default_factory=dict)


@dataclass
class RowContext:
    """One input row while a batch helper processes it."""

    data: Dict[str, Any]
    values: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def has_errors(self) -> bool:
        return any(self.errors.values())

    def add_error(self, attribute: str, message: str) -> None:
        self.errors.setdefault(attribute, []).append(message)

    def first_errors(self) -> Dict[str, str]:
        return {k: v[0] for k, v in self.errors.items() if v}


class TableHandle:
    def __init__(
        self,
        table: str,
        db: "Connection",
        primary_key: Optional[Sequence[str]] = None,
        relations: Sequence[Relation] = (),
        row_model: Optional[Type[BaseModel]] = None,
    ):
        self.table = table
        self.db = db
        self._primary_key = list(primary_key) if primary_key is not None else None
        self.relations = list(relations)
        self.row_model = row_model

    def __repr__(self) -> str:
        return f"TableHandle({self.table!r})"

    @property
    def table_name(self) -> str:
        return self.table

    def table_schema(self) -> Optional["TableSchema"]:
        return self.db.get_table_schema(self.table)

    def primary_key(self) -> List[str]:
        """Declared key columns, or the table's sorting key from metadata."""
        if self._primary_key is not None:
            return list(self._primary_key)
        table_schema = self.table_schema()
        return list(table_schema.primary_key) if table_schema is not None else []

    def get_relations(self) -> List[Relation]:
        return list(self.relations)

    def find(self) -> Query:
        return Query(self.db, model=self)

    # Row handling
    def load(self, data: Dict[str, Any]) -> RowContext:
        """Keep the row's table columns, cast to their host types."""
        ctx = RowContext(data=dict(data))
        relation_names = {r.name for r in self.relations}
        table_schema = self.table_schema()
        for name, value in data.items():
            if name in relation_names:
                continue
            if table_schema is None:
                ctx.values[name] = value
                continue
            column = table_schema.get_column(name)
            if column is not None:
                ctx.values[name] = column.py_typecast(value)
        return ctx

    def validate(self, ctx: RowContext, columns: Optional[Sequence[str]] = None) -> bool:
        """Run ``row_model`` over the row; only ``columns`` count when given."""
        if self.row_model is None:
            return True
        try:
            validated = self.row_model.model_validate(ctx.values)
        except pydantic.ValidationError as exc:
            for error in exc.errors():
                attribute = str(error["loc"][0]) if error["loc"] else ""
                if columns is not None and attribute not in columns:
                    continue
                ctx.add_error(attribute, error["msg"])
            return not ctx.has_errors
        dumped = validated.model_dump()
        for name in ctx.values:
            if name in dumped:
                ctx.values[name] = dumped[name]
        return True

    def to_dict(self, ctx: RowContext) -> Dict[str, Any]:
        return dict(ctx.values)

    # Writes
    def insert(self, values: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.db.get_schema().insert(self.table, values)

    def insert_by_query(self, query: Query) -> int:
        return self.db.create_command().insert(self.table, query).execute()

    def update_all(self, columns: Dict[str, Any], condition: Any = "", params: Optional[Dict[str, Any]] = None) -> int:
        return self.db.create_command().update(self.table, columns, condition, params).execute()

    def delete_all(self, condition: Any = "", params: Optional[Dict[str, Any]] = None) -> int:
        return self.db.create_command().delete(self.table, condition, params).execute()
