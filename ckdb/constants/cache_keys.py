import hashlib
import json
from typing import Any, Iterable


class CacheKeys:
    """Centralised cache key patterns"""

    QUERY_RESULT = "ckdb:query:{digest}"
    SHARE_LOCK = "ckdb:share:{digest}:lock"
    SHARE_RESULT = "ckdb:share:{digest}:result"
    DOWNLOAD_FILE = "{digest}"

    @staticmethod
    def digest(parts: Iterable[Any]) -> str:
        """Stable hash of the non-empty key parts.

        Falsy parts are dropped so that a missing fetch mode and fetch mode 0
        produce the same key.
        """
        kept = [p.value if hasattr(p, "value") else p for p in parts if p]
        payload = json.dumps(kept, default=str, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    @classmethod
    def query_result(cls, parts: Iterable[Any]) -> str:
        return cls.QUERY_RESULT.format(digest=cls.digest(parts))

    @classmethod
    def share_lock(cls, digest: str) -> str:
        return cls.SHARE_LOCK.format(digest=digest)

    @classmethod
    def share_result(cls, digest: str) -> str:
        return cls.SHARE_RESULT.format(digest=digest)
