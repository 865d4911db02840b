"""Raw SQL fragments and explicitly typed parameter values."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from ckdb.utils import to_bool, to_int


@dataclass
class Expression:
    """SQL text inserted verbatim, with its own parameter bindings.

    >>> Expression("now() - INTERVAL :days DAY", {":days": 7})
    """

    expression: str
    params: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.expression


class ParamType(Enum):
    """Parameter type markers accepted as ``[value, ParamType.X]`` pairs."""

    NULL = "null"
    INT = "int"
    STR = "str"
    LOB = "lob"
    BOOL = "bool"


@dataclass(frozen=True)
class TypedParam:
    """A value whose rendering is forced by its marker, not its Python type."""

    value: Any
    type: ParamType

    def coerced(self) -> Any:
        if self.type is ParamType.NULL or self.value is None:
            return None
        if self.type is ParamType.INT:
            return to_int(self.value)
        if self.type is ParamType.BOOL:
            return to_bool(self.value)
        if isinstance(self.value, (bytes, bytearray)):
            return self.value.decode("utf-8", "replace")
        return str(self.value)
