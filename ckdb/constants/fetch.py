from enum import Enum


class FetchMethod(str, Enum):
    """How a query result is shaped before it is handed back."""

    FETCH = "fetch"
    FETCH_ALL = "fetchAll"
    FETCH_COLUMN = "fetchColumn"
    FETCH_SCALAR = "fetchScalar"


class FetchMode:
    """Extra result shapes layered on top of FETCH_ALL."""

    TOTAL = 7
    ALL = 8
