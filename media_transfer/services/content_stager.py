from __future__ import annotations

from typing import Callable, Iterator
from uuid import UUID

import structlog

from media_transfer.schemas.media import SourceItem
from media_transfer.services.error_codes import StagingError
from media_transfer.services.job_data_store import JobDataStore
from media_transfer.services.remote_fetch import RemoteFetcher

logger = structlog.get_logger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024


class StagedContent:
    """Byte payload of one item, readable once.

    ``length`` is the declared size when the source declared one, otherwise the
    number of bytes read so far.
    """

    def __init__(
        self,
        chunks: Iterator[bytes],
        *,
        declared_length: int | None,
        content_type: str,
        close: Callable[[], None] | None = None,
    ) -> None:
        self._chunks = chunks
        self._declared_length = declared_length
        self._read_bytes = 0
        self._close = close
        self.content_type = content_type

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._chunks:
            self._read_bytes += len(chunk)
            yield chunk

    @property
    def length(self) -> int:
        if self._declared_length is not None:
            return self._declared_length
        return self._read_bytes

    def close(self) -> None:
        if self._close:
            close, self._close = self._close, None
            close()


class ContentStager:
    def __init__(
        self,
        *,
        job_data_store: JobDataStore | None = None,
        fetcher: RemoteFetcher | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.job_data_store = job_data_store
        self.fetcher = fetcher
        self.chunk_size = chunk_size

    def resolve(self, job_id: UUID, item: SourceItem) -> StagedContent:
        if item.in_temp_store:
            return self._resolve_staged(job_id, item)
        return self._resolve_remote(item)

    def _resolve_staged(self, job_id: UUID, item: SourceItem) -> StagedContent:
        if self.job_data_store is None:
            raise StagingError(f"no job data store configured for staged item {item.old_id}")
        stored = self.job_data_store.get_stream(job_id, item.fetchable_url)
        return StagedContent(
            stored.iter_chunks(self.chunk_size),
            declared_length=stored.size_bytes,
            content_type=item.media_type,
            close=stored.close,
        )

    def _resolve_remote(self, item: SourceItem) -> StagedContent:
        if self.fetcher is None:
            raise StagingError(f"no remote fetcher configured for item {item.old_id}")
        content = self.fetcher.open(item.fetchable_url)
        return StagedContent(
            content.iter_bytes(),
            declared_length=content.content_length,
            content_type=item.media_type,
            close=content.close,
        )

    def release(self, job_id: UUID, item: SourceItem) -> None:
        """Delete the staged blob of a deferred item once its upload was accepted."""
        if not item.in_temp_store or self.job_data_store is None:
            return
        self.job_data_store.remove_data(job_id, item.fetchable_url)
        logger.info("staged_content_released", job_id=str(job_id), data_id=item.fetchable_url)
