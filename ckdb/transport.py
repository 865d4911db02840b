"""HTTP transport for the ClickHouse query endpoint.

Every statement is a POST whose body is raw SQL; the target database and any
server settings travel in the query string. Two variants exist: a plain
session, and a pooled one that keeps ``size`` keep-alive connections per host
for applications running many commands in parallel threads.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict

from ckdb.logging import get_logger
from ckdb.utils import retry

logger = get_logger("transport")

_RETRYABLE = (requests.ConnectionError, requests.Timeout)
_CHUNK_SIZE = 64 * 1024


@dataclass
class HttpResponse:
    status_code: int
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    body: str = ""

    def header(self, name: str) -> str:
        return self.headers.get(name, "")


class HttpTransport:
    def __init__(
        self,
        base_uri: str,
        auth: Optional[Tuple[str, str]] = None,
        timeout: float = 5.0,
        retry: int = 0,
    ):
        self.base_uri = base_uri
        self.auth = auth
        self.timeout = timeout
        self.retry = retry
        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update({"Content-Type": "text/plain; charset=utf-8"})
        return session

    def _url(self, query_string: str) -> str:
        return f"{self.base_uri}{query_string}"

    def _on_retry(self, attempt: int, exc: BaseException, sleep_for: float) -> None:
        logger.warning(
            "clickhouse request failed, retrying",
            extra={"attempt": attempt, "error": str(exc), "sleep": sleep_for},
        )

    def _send(self, func):
        return retry(
            func,
            retries=self.retry + 1,
            retry_on=_RETRYABLE,
            on_retry=self._on_retry,
        )

    def post(
        self,
        query_string: str,
        data: str | bytes,
        headers: Optional[Mapping[str, str]] = None,
    ) -> HttpResponse:
        body = data.encode("utf-8") if isinstance(data, str) else data

        def _do() -> requests.Response:
            return self.session.post(
                self._url(query_string),
                data=body,
                headers=dict(headers or {}),
                auth=self.auth,
                timeout=self.timeout,
            )

        resp = self._send(_do)
        return HttpResponse(resp.status_code, CaseInsensitiveDict(resp.headers), resp.text)

    def download(
        self,
        query_string: str,
        data: str,
        destination: str,
        offset: int = 0,
    ) -> HttpResponse:
        """Stream a response body into ``destination``.

        A non-zero ``offset`` appends to the existing partial file and asks the
        server to resume from that byte.
        """
        headers = {"Range": f"bytes={offset}-"} if offset else {}

        def _do() -> requests.Response:
            return self.session.post(
                self._url(query_string),
                data=data.encode("utf-8"),
                headers=headers,
                auth=self.auth,
                timeout=self.timeout,
                stream=True,
            )

        resp = self._send(_do)
        with resp:
            if resp.status_code not in (200, 206):
                return HttpResponse(
                    resp.status_code, CaseInsensitiveDict(resp.headers), resp.text
                )
            # Servers that ignore Range send the whole body again.
            mode = "ab" if offset and resp.status_code == 206 else "wb"
            with open(destination, mode) as fp:
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    if chunk:
                        fp.write(chunk)
                fp.flush()
                os.fsync(fp.fileno())
        return HttpResponse(200, CaseInsensitiveDict(resp.headers), "")

    def close(self) -> None:
        self.session.close()


class PooledHttpTransport(HttpTransport):
    """Session with ``size`` keep-alive connections shared across threads."""

    def __init__(
        self,
        base_uri: str,
        auth: Optional[Tuple[str, str]] = None,
        timeout: float = 5.0,
        retry: int = 0,
        size: int = 10,
    ):
        self.size = size
        super().__init__(base_uri, auth=auth, timeout=timeout, retry=retry)

    def _create_session(self) -> requests.Session:
        session = super()._create_session()
        adapter = HTTPAdapter(pool_connections=self.size, pool_maxsize=self.size)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session
