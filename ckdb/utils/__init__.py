from .concurrency import run_blocking
from .retry import retry
from .values import float_to_string, to_bool, to_float, to_int

__all__ = [
    "float_to_string",
    "retry",
    "run_blocking",
    "to_bool",
    "to_float",
    "to_int",
]
