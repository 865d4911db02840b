"""Single-flight coalescing of identical queries.

Two tiers:

* process tier: threads of one process asking for the same key wait on the
  first caller instead of sending their own request;
* channel tier (optional, Redis): the first process to take the lock runs
  the query and publishes the result under the key for ``ttl`` seconds;
  other processes poll for it.

A follower waits at most ``ttl`` seconds. After that it stops waiting and
runs the query itself.
"""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import redis

from ckdb.constants import CacheKeys, ShareStatus
from ckdb.logging import get_logger

logger = get_logger("share")


@dataclass
class ShareResult:
    result: Any
    status: ShareStatus


class _Call:
    def __init__(self):
        self.done = threading.Event()
        self.result: Any = None
        self.error: Optional[BaseException] = None


class ProcessShare:
    def __init__(
        self,
        channel: Optional[redis.Redis] = None,
        poll_interval: float = 0.05,
    ):
        self.channel = channel
        self.poll_interval = poll_interval
        self._lock = threading.Lock()
        self._calls: Dict[str, _Call] = {}

    def __call__(self, key: str, func: Callable[[], Any], ttl: int) -> ShareResult:
        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if leader:
                call = self._calls[key] = _Call()

        if not leader:
            if call.done.wait(timeout=ttl):
                if call.error is not None:
                    raise call.error
                return ShareResult(call.result, ShareStatus.PROCESS)
            logger.warning("share wait timed out", extra={"key": key, "ttl": ttl})
            return ShareResult(func(), ShareStatus.ORIGIN)

        try:
            shared = self._run_leader(key, func, ttl)
            call.result = shared.result
            return shared
        except BaseException as exc:
            call.error = exc
            raise
        finally:
            with self._lock:
                self._calls.pop(key, None)
            call.done.set()

    def _run_leader(self, key: str, func: Callable[[], Any], ttl: int) -> ShareResult:
        if self.channel is None:
            return ShareResult(func(), ShareStatus.ORIGIN)

        result_key = CacheKeys.share_result(key)
        lock_key = CacheKeys.share_lock(key)

        cached = self.channel.get(result_key)
        if cached is not None:
            return ShareResult(json.loads(cached), ShareStatus.CHANNEL)

        if self.channel.set(lock_key, "1", nx=True, ex=max(1, ttl)):
            try:
                result = func()
                self.channel.set(result_key, json.dumps(result), ex=max(1, ttl))
                return ShareResult(result, ShareStatus.ORIGIN)
            finally:
                self.channel.delete(lock_key)

        deadline = time.monotonic() + ttl
        while time.monotonic() < deadline:
            cached = self.channel.get(result_key)
            if cached is not None:
                return ShareResult(json.loads(cached), ShareStatus.CHANNEL)
            if not self.channel.exists(lock_key):
                # Holder finished without publishing (it failed).
                break
            time.sleep(self.poll_interval)
        return ShareResult(func(), ShareStatus.ORIGIN)
