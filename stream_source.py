from __future__ import annotations

import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Iterable
from urllib.parse import urlencode, urlsplit, urlunsplit

import requests

from app_errors import StreamUnavailableError, classify_exception

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 256 * 1024


class ObjectUrlStore:
    """
    Local ``file://`` URLs for downloaded audio payloads.

    A URL stays valid until ``revoke()`` deletes its file. Creation runs on
    worker threads while revocation runs on the UI thread, hence the lock.
    """

    def __init__(self, directory: str | None = None, prefix: str = "gotify-"):
        self.directory = directory
        self.prefix = prefix
        self._lock = threading.Lock()
        self._live: dict[str, str] = {}

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._live)

    def is_live(self, url: str | None) -> bool:
        with self._lock:
            return url in self._live

    def create(self, chunks: Iterable[bytes], suffix: str = ".bin") -> str:
        if self.directory:
            os.makedirs(self.directory, exist_ok=True)
        fd, path = tempfile.mkstemp(prefix=self.prefix, suffix=suffix, dir=self.directory)
        try:
            with os.fdopen(fd, "wb") as f:
                for chunk in chunks:
                    if not chunk:
                        continue
                    f.write(chunk)
        except BaseException:
            try:
                os.remove(path)
            except OSError:
                pass
            raise

        url = Path(path).as_uri()
        with self._lock:
            self._live[url] = path
        return url

    def revoke(self, url: str | None) -> bool:
        with self._lock:
            path = self._live.pop(url, None) if url else None
        if path is None:
            return False
        try:
            os.remove(path)
        except OSError as e:
            logger.debug("Failed to remove object url file %s: %s", path, e)
        return True

    def revoke_all(self) -> None:
        with self._lock:
            urls = list(self._live)
        for url in urls:
            self.revoke(url)


class StreamSourceResolver:
    """
    Turns a track into a URL the transport can open.

    Modes:
    - ``none``: the bare stream endpoint (server does not require auth)
    - ``query``: stream endpoint with the bearer token as a query parameter
    - ``fetch``: download with an ``Authorization`` header into an object URL

    Tracks carrying their own ``stream_url`` are returned untouched.
    """

    def __init__(
        self,
        api_base_url: str,
        token_provider: Callable[[], str | None],
        mode: str = "fetch",
        session: requests.Session | None = None,
        object_urls: ObjectUrlStore | None = None,
        token_param: str = "token",
        timeout: float = 20,
        retry_attempts: int = 3,
        retry_delay: float = 0.35,
    ):
        self.api_base_url = str(api_base_url or "").rstrip("/")
        self.token_provider = token_provider
        self.mode = mode
        self.session = session or requests.Session()
        self.object_urls = object_urls or ObjectUrlStore()
        self.token_param = token_param
        self.timeout = timeout
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_delay = retry_delay

    def stream_endpoint(self, track_id: str) -> str:
        return f"{self.api_base_url}/songs/{track_id}/stream"

    def resolve(self, track) -> str:
        direct = getattr(track, "stream_url", None)
        if direct:
            return direct

        url = self.stream_endpoint(track.id)
        if self.mode == "none":
            return url

        token = self._require_token()
        if self.mode == "query":
            return self._with_query_token(url, token)

        object_url = self._retry(lambda: self._fetch_object_url(url, token))
        logger.info("Stream resolved for %s into %s", track.id, object_url)
        return object_url

    def release(self, url: str | None) -> bool:
        return self.object_urls.revoke(url)

    def _require_token(self) -> str:
        token = self.token_provider() if self.token_provider else None
        if not token:
            raise StreamUnavailableError("No authentication token found", status=401)
        return token

    def _with_query_token(self, url: str, token: str) -> str:
        parts = urlsplit(url)
        query = urlencode({self.token_param: token})
        if parts.query:
            query = f"{parts.query}&{query}"
        return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))

    def _fetch_object_url(self, url: str, token: str) -> str:
        headers = {"Authorization": f"Bearer {token}"}
        try:
            with self.session.get(url, headers=headers, timeout=self.timeout, stream=True) as r:
                status = int(r.status_code)
                if status == 401:
                    raise StreamUnavailableError("Authentication failed", status=401)
                if not 200 <= status < 300:
                    raise StreamUnavailableError(f"Stream request failed: {status}", status=status)
                return self.object_urls.create(r.iter_content(chunk_size=_CHUNK_SIZE))
        except requests.RequestException as e:
            raise StreamUnavailableError(f"Stream request failed: {e}") from e

    def _retry(self, fn):
        for i in range(self.retry_attempts):
            try:
                return fn()
            except StreamUnavailableError as e:
                if i >= self.retry_attempts - 1 or not e.retryable:
                    logger.warning("Stream resolution error [%s]: %s", classify_exception(e), e)
                    raise
                delay = self.retry_delay * (i + 1)
                logger.info(
                    "Retrying stream fetch after transient error (%s). attempt=%s/%s",
                    e,
                    i + 1,
                    self.retry_attempts,
                )
                time.sleep(delay)
        raise StreamUnavailableError("Stream request failed")
