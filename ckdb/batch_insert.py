"""Bulk-load sinks sharing one contract.

``add_columns(names)`` once, ``add_row(values)`` per row, then ``execute()``
returning the number of rows added; ``clear_data()`` starts over.

* :class:`BatchInsert`: one ``INSERT ... VALUES`` with literals rendered
  per column type.
* :class:`BatchInsertCsv`: rows staged in a CSV file, uploaded as one body.
* :class:`BatchInsertJsonRows`: ``JSONEachRow`` lines, one object per row.
"""

from __future__ import annotations

import csv
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from ckdb.config import settings
from ckdb.exceptions import NotSupportedError
from ckdb.expression import Expression
from ckdb.logging import get_logger
from ckdb.metrics import BATCH_ROWS
from ckdb.schema.schema import unwrap_type
from ckdb.utils import float_to_string, to_float, to_int

if TYPE_CHECKING:
    from ckdb.connection import Connection
    from ckdb.schema import ColumnSchema

logger = get_logger("batch_insert")


def _to_epoch(value: str) -> int:
    """Seconds since the epoch for a date/time string; naive values are UTC."""
    value = value.strip()
    if value.lstrip("-").isdigit():
        return int(value)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        logger.warning("unparseable date value", extra={"value": value})
        return 0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


class BaseBatchInsert:
    def __init__(self, table: str, db: "Connection"):
        self.table = table
        self.db = db
        self.columns: List[str] = []
        self.has_rows = 0

    def add_columns(self, columns: Sequence[str]) -> bool:
        if not columns:
            return False
        self.columns = list(columns)
        return True

    def add_row(self, row: Sequence[Any], check_fields: bool = True) -> bool:
        raise NotImplementedError

    def clear_data(self) -> None:
        self.has_rows = 0

    def execute(self) -> int:
        raise NotImplementedError


class BatchInsert(BaseBatchInsert):
    """Multi-row ``INSERT ... VALUES`` with per-column literal rendering.

    With ``check_fields`` every value goes through the column coercion:

    * Date/DateTime strings become epoch seconds;
    * strings against Int/Float/Decimal columns are cast, ``"true"`` and
      ``"false"`` becoming 1 and 0;
    * ``None`` becomes ``0`` for numeric and date columns, ``''`` for other
      known columns, ``NULL`` for Nullable or unknown ones;
    * lists against Int/Float arrays become bare ``[1,2]`` literals.
    """

    def __init__(self, table: str, db: "Connection"):
        super().__init__(table, db)
        self.schema = db.get_schema()
        table_schema = self.schema.get_table_schema(table)
        self.column_schemas: Dict[str, "ColumnSchema"] = (
            table_schema.columns if table_schema is not None else {}
        )
        self._values: List[str] = []

    def add_columns(self, columns: Sequence[str]) -> bool:
        if not columns:
            return False
        self.columns = [self.schema.quote_column_name(c) for c in columns]
        return True

    def add_row(self, row: Sequence[Any], check_fields: bool = True) -> bool:
        if not row:
            return False
        self.has_rows += 1
        if check_fields:
            rendered = [self._coerce(i, value) for i, value in enumerate(row)]
        else:
            builder = self.db.get_query_builder()
            rendered = [v if isinstance(v, str) else builder.literal(v) for v in row]
        self._values.append("(" + ", ".join(rendered) + ")")
        return True

    def _column(self, index: int) -> Optional["ColumnSchema"]:
        if index >= len(self.columns):
            return None
        return self.column_schemas.get(self.columns[index].strip("`"))

    def _coerce(self, index: int, value: Any) -> str:
        column = self._column(index)
        if column is None:
            if value is None:
                return "NULL"
            if isinstance(value, str):
                return self.schema.quote_value(value)
            return self.db.get_query_builder().literal(value)

        # Strings are matched against the server type before the generic cast.
        if not isinstance(value, str):
            value = column.db_typecast(value)

        if isinstance(value, str):
            return self._coerce_string(column, value)
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, float):
            return float_to_string(value)
        if isinstance(value, int):
            return str(value)
        if value is None:
            return self._null_for(column)
        if isinstance(value, Expression):
            return value.expression
        if isinstance(value, (list, tuple)):
            return self._coerce_array(column, list(value))
        return self.db.get_query_builder().literal(value)

    def _coerce_string(self, column: "ColumnSchema", value: str) -> str:
        base = unwrap_type(column.db_type)
        if base in ("DateTime", "Date"):
            return str(_to_epoch(value))
        if "Int" in base:
            lowered = value.lower()
            if lowered in ("true", "false"):
                return "1" if lowered == "true" else "0"
            return str(to_int(value))
        if "Float" in base or "Decimal" in base:
            lowered = value.lower()
            if lowered in ("true", "false"):
                return "1" if lowered == "true" else "0"
            return float_to_string(to_float(value))
        return self.schema.quote_value(value)

    def _null_for(self, column: "ColumnSchema") -> str:
        if column.is_nullable:
            return "NULL"
        base = unwrap_type(column.db_type)
        if "Int" in base or "Float" in base or "Decimal" in base or base in ("DateTime", "Date"):
            return "0"
        return self.schema.quote_value("")

    def _coerce_array(self, column: "ColumnSchema", values: List[Any]) -> str:
        if "Int" in column.db_type:
            return "[" + ",".join(str(to_int(v)) for v in values) + "]"
        if "Float" in column.db_type or "Decimal" in column.db_type:
            return "[" + ",".join(float_to_string(to_float(v)) for v in values) + "]"
        return json.dumps(values, ensure_ascii=False, default=str).replace('"', "'")

    def clear_data(self) -> None:
        super().clear_data()
        self._values = []

    def sql(self) -> str:
        columns = f" ({', '.join(self.columns)})" if self.columns else ""
        return (
            f"INSERT INTO {self.schema.quote_table_name(self.table)}{columns} "
            f"VALUES {', '.join(self._values)}"
        )

    def execute(self) -> int:
        if not self.has_rows:
            return 0
        self.db.create_command(self.sql()).execute()
        BATCH_ROWS.inc(self.has_rows)
        logger.debug("batch insert", extra={"table": self.table, "rows": self.has_rows})
        return self.has_rows


class BatchInsertCsv(BaseBatchInsert):
    """Rows staged in ``<cache_dir>/<name>.csv`` and uploaded on execute.

    Fields are enclosed in single quotes. The staging file is removed by
    ``close()``, on context exit, or when the object is collected.
    """

    def __init__(
        self,
        table: str,
        file_name: str,
        db: "Connection",
        cache_dir: Optional[str] = None,
    ):
        super().__init__(table, db)
        self.cache_dir = cache_dir if cache_dir is not None else settings.csv_cache_dir
        self.file_name = os.path.join(self.cache_dir, Path(file_name).stem + ".csv")
        self._fp = open(self.file_name, "w+", newline="", encoding="utf-8")
        self._writer = csv.writer(self._fp, quotechar="'")

    def add_row(self, row: Sequence[Any], check_fields: bool = True) -> bool:
        if not row:
            return False
        try:
            self._writer.writerow(row)
        except csv.Error as exc:
            raise ValueError(f"CSV write error data={' | '.join(map(str, row))}") from exc
        self.has_rows += 1
        return True

    def clear_data(self) -> None:
        super().clear_data()
        self._fp.seek(0)
        self._fp.truncate(0)

    def execute(self) -> int:
        if not self.has_rows:
            return 0
        self._fp.flush()
        self.db.create_command().insert_file(self.table, self.columns or None, self.file_name)
        BATCH_ROWS.inc(self.has_rows)
        logger.debug("csv batch insert", extra={"table": self.table, "rows": self.has_rows})
        return self.has_rows

    def close(self) -> None:
        if self._fp is not None:
            self._fp.close()
            self._fp = None
            if os.path.exists(self.file_name):
                os.remove(self.file_name)

    def __enter__(self) -> "BatchInsertCsv":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __del__(self):
        if getattr(self, "_fp", None) is not None:
            self.close()


class BatchInsertJsonRows(BaseBatchInsert):
    """``JSONEachRow`` sink; rows are dicts keyed by column name."""

    def __init__(self, table: str, db: "Connection"):
        super().__init__(table, db)
        self._lines: List[str] = []

    def add_columns(self, columns: Sequence[str]) -> bool:
        raise NotSupportedError("JSONEachRow rows carry their own column names")

    def add_row(self, row: Dict[str, Any], check_fields: bool = True) -> bool:
        if not row:
            return False
        self._lines.append(json.dumps(row, ensure_ascii=False, default=str))
        self.has_rows += 1
        return True

    def clear_data(self) -> None:
        super().clear_data()
        self._lines = []

    def execute(self) -> int:
        if not self.has_rows:
            return 0
        self.db.create_command().insert_json_rows(self.table, "\n".join(self._lines))
        BATCH_ROWS.inc(self.has_rows)
        return self.has_rows
