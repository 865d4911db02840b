"""Multi-row writes ClickHouse SQL cannot express directly.

* ``insert_several``: one multi-row ``INSERT``.
* ``update_several``: one ``ALTER TABLE ... UPDATE`` mutation where each
  column is set through ``multiIf(pk=?, value, ..., column)``, so every row
  gets its own value in a single statement.
* ``delete_several``: one ``ALTER TABLE ... DELETE`` mutation over the
  primary-key values of all rows.

Rows may carry child rows under a :class:`~ckdb.record.Relation` name; the
parent's linked values are copied onto the children, which are then written
with ``update_several`` (``delete_several`` for deletes) before the parent.
A child batch that writes nothing aborts the parent call.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from ckdb.exceptions import BatchShapeError, ConfigurationError, QueryError, ValidationError
from ckdb.expression import Expression
from ckdb.logging import get_logger
from ckdb.metrics import BATCH_ROWS
from ckdb.record import TableHandle

logger = get_logger("helper")

Row = Dict[str, Any]


def _as_rows(rows: Row | Sequence[Row]) -> List[Row]:
    if isinstance(rows, dict):
        return [rows]
    return list(rows)


def _process_relations(handle: TableHandle, item: Row, writer) -> bool:
    """Write the child rows of ``item``; False when a child batch wrote nothing."""
    for relation in handle.get_relations():
        children = item.pop(relation.name, None)
        if children is None:
            continue
        children = [dict(c) for c in _as_rows(children)]
        for child in children:
            for child_column, parent_column in relation.link.items():
                child[child_column] = item.get(parent_column)
        if not children or not writer(relation.handle, children):
            logger.warning(
                "child batch failed, aborting parent",
                extra={"table": handle.table, "relation": relation.name},
            )
            return False
    return True


def insert_several(handle: TableHandle, rows: Row | Sequence[Row]) -> int:
    """Insert ``rows`` with one statement; returns the number of rows.

    Columns are those of the first row, sorted by name. Every later row must
    resolve to the same column set, otherwise BatchShapeError is raised
    before anything is sent.
    """
    rows = _as_rows(rows)
    if not rows:
        return 0
    conn = handle.db
    schema = conn.get_schema()
    keys = handle.primary_key()

    names: List[str] = []
    params: Dict[str, Any] = {}
    tuples: List[str] = []
    for i, item in enumerate(rows):
        item = dict(item)
        if not _process_relations(handle, item, update_several):
            return 0
        ctx = handle.load(item)
        if not handle.validate(ctx):
            raise ValidationError(ctx.errors)
        for key in keys:
            if key in item:
                ctx.values.setdefault(key, item[key])

        values = dict(sorted(handle.to_dict(ctx).items()))
        if i == 0:
            names = list(values)
        elif list(values) != names:
            raise BatchShapeError(
                {"columns": [f"row {i} has columns {sorted(values)}, expected {names}"]}
            )

        placeholders = []
        for j, name in enumerate(names):
            value = values[name]
            if isinstance(value, Expression):
                placeholders.append(value.expression)
                for n, v in value.params.items():
                    params[n if n.startswith(":") else f":{n}"] = v
            else:
                placeholder = f":c{j}_{i}"
                placeholders.append(placeholder)
                params[placeholder] = value
        tuples.append("(" + ", ".join(placeholders) + ")")

    sql = (
        f"INSERT INTO {schema.quote_table_name(handle.table)} "
        f"({', '.join(schema.quote_column_name(n) for n in names)}) "
        f"VALUES {', '.join(tuples)}"
    )
    conn.create_command(sql, params).execute()
    BATCH_ROWS.inc(len(rows))
    logger.debug("insert_several", extra={"table": handle.table, "rows": len(rows)})
    return len(rows)


def update_several(handle: TableHandle, rows: Row | Sequence[Row]) -> int:
    """Update ``rows`` (matched by primary key) in one mutation.

    Bindings are positional: the ``multiIf`` values column by column, each
    column row by row, then the ``IN`` lists key by key.
    """
    rows = _as_rows(rows)
    keys = handle.primary_key()
    if not keys:
        raise ConfigurationError(
            f"The table {handle.table} must have one or more primary keys to call update_several"
        )
    if not rows:
        return 0
    conn = handle.db
    schema = conn.get_schema()
    columns = list(rows[0])

    branches: Dict[str, List[str]] = {}
    bindings: Dict[str, List[Any]] = {}
    where_in: Dict[str, List[Any]] = {key: [] for key in keys}
    match = " and ".join(f"{schema.quote_column_name(key)}=?" for key in keys)

    for item in rows:
        item = dict(item)
        if not _process_relations(handle, item, update_several):
            return 0
        missing = [key for key in keys if key not in item]
        if missing:
            raise ValidationError({key: [f"{key} is required"] for key in missing})
        ctx = handle.load(item)
        if not handle.validate(ctx, columns):
            raise ValidationError(ctx.errors)

        key_values = [ctx.values.get(key, item[key]) for key in keys]
        for name, value in item.items():
            if name in keys:
                where_in[name].append(ctx.values.get(name, value))
                continue
            if name not in ctx.values:
                continue
            value = ctx.values[name]
            branches.setdefault(name, []).append(match)
            bindings.setdefault(name, []).extend(key_values + [value])

    if not branches:
        logger.debug("update_several: nothing to update", extra={"table": handle.table})
        return 0

    sets = []
    for name, conditions in branches.items():
        quoted = schema.quote_column_name(name)
        pairs = ", ".join(f"{condition}, ?" for condition in conditions)
        sets.append(f"{quoted}=multiIf({pairs}, {quoted})")
    where = " AND ".join(
        f"{schema.quote_column_name(key)} IN ({', '.join('?' for _ in where_in[key])})"
        for key in keys
    )
    sql = (
        f"ALTER TABLE {schema.quote_table_name(handle.table)} "
        f"UPDATE {', '.join(sets)} WHERE {where}"
    )
    params = [v for name in branches for v in bindings[name]]
    params += [v for key in keys for v in where_in[key]]

    conn.create_command(sql, params).execute()
    BATCH_ROWS.inc(len(rows))
    logger.debug("update_several", extra={"table": handle.table, "rows": len(rows)})
    return len(rows)


def delete_several(handle: TableHandle, rows: Row | Sequence[Row]) -> int:
    """Delete ``rows`` by primary key in one mutation; 0 when no key was given."""
    rows = _as_rows(rows)
    keys = handle.primary_key()
    if not keys:
        raise ConfigurationError(
            f"The table {handle.table} must have one or more primary keys to call delete_several"
        )

    where_in: Dict[str, List[Any]] = {}
    for item in rows:
        item = dict(item)
        if not _process_relations(handle, item, delete_several):
            return 0
        for key in keys:
            if key in item:
                where_in.setdefault(key, []).append(item[key])

    if not where_in:
        return 0
    conditions = [["in", key, values] for key, values in where_in.items()]
    condition = conditions[0] if len(conditions) == 1 else ["and", *conditions]
    handle.delete_all(condition)
    BATCH_ROWS.inc(len(rows))
    logger.debug("delete_several", extra={"table": handle.table, "rows": len(rows)})
    return len(rows)


def create(handle: TableHandle, body: Row | Sequence[Row]) -> List[int]:
    return [insert_several(handle, body)]


def update(handle: TableHandle, body: Row | Sequence[Row]) -> List[int]:
    """``{"edit": {...}, "condition": ...}`` updates by condition; rows go through update_several."""
    if isinstance(body, dict) and body.get("condition"):
        return [handle.update_all(body.get("edit") or {}, body["condition"])]
    return [update_several(handle, body)]


def delete(handle: TableHandle, body: Row | Sequence[Row]) -> int:
    """Rows delete by primary key, a dict body is a condition."""
    if isinstance(body, dict):
        result = handle.delete_all(body)
    else:
        result = delete_several(handle, body)
    if not result:
        raise QueryError("Failed to delete the object for unknown reason.")
    return result
