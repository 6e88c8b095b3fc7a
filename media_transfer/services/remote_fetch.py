from __future__ import annotations

from typing import Iterator

import httpx
import structlog

from media_transfer.core.config import Settings, get_settings
from media_transfer.services.error_codes import StagingError

logger = structlog.get_logger(__name__)


class RemoteContent:
    def __init__(self, response: httpx.Response, chunk_size: int) -> None:
        self._response = response
        self._chunk_size = chunk_size

    @property
    def content_length(self) -> int | None:
        raw = self._response.headers.get("Content-Length")
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    @property
    def content_type(self) -> str | None:
        return self._response.headers.get("Content-Type")

    def iter_bytes(self) -> Iterator[bytes]:
        return self._response.iter_bytes(chunk_size=self._chunk_size)

    def close(self) -> None:
        self._response.close()

    def __enter__(self) -> RemoteContent:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class RemoteFetcher:
    """Opens streaming GET connections to the source service's content URLs."""

    def __init__(
        self,
        *,
        client: httpx.Client | None = None,
        settings: Settings | None = None,
    ) -> None:
        cfg = settings or get_settings()
        self._chunk_size = cfg.fetch_chunk_size
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=cfg.fetch_timeout_seconds, follow_redirects=True)

    def open(self, url: str) -> RemoteContent:
        try:
            response = self._client.send(self._client.build_request("GET", url), stream=True)
        except httpx.HTTPError as exc:
            raise StagingError(f"unable to fetch {url}: {exc}") from exc
        if response.status_code >= 400:
            response.close()
            raise StagingError(f"unable to fetch {url}: HTTP {response.status_code}")
        return RemoteContent(response, self._chunk_size)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
