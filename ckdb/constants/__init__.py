"""Constants shared across the driver."""

from .cache_keys import CacheKeys
from .fetch import FetchMethod, FetchMode
from .share import ShareStatus
from .types import ColumnType

__all__ = [
    "CacheKeys",
    "ColumnType",
    "FetchMethod",
    "FetchMode",
    "ShareStatus",
]
