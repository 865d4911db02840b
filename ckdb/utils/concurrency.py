import asyncio
from typing import Callable, TypeVar

T = TypeVar("T")


async def run_blocking(func: Callable[..., T], *args, **kwargs) -> T:
    """Run a blocking transport call in the default executor.

    Used by the fan-out upload path so several HTTP bodies can be in flight
    while the caller awaits them as one group.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
