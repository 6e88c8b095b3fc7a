"""
Batched upload of media items into destination containers.

Each item is staged, uploaded to obtain an upload token, and then all tokens
of a batch are submitted in one create call scoped to the item's new
container. Per-item outcomes are written to the job's idempotent executor:
successes are cached under the item key, rejections are recorded as errors and
never abort sibling items.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Iterator
from uuid import UUID

import httpx
import structlog

from media_transfer.core import metrics
from media_transfer.core.config import Settings, get_settings
from media_transfer.schemas.destination import (
    AuthData,
    NewMediaItem,
    NewMediaItemResult,
    SimpleMediaItem,
    describe_code,
)
from media_transfer.schemas.media import SourceItem
from media_transfer.services.content_stager import ContentStager
from media_transfer.services.destination_client import DestinationApi, DestinationClientPool
from media_transfer.services.error_codes import (
    DestinationApiError,
    ItemCreateError,
    StagingError,
    TransferError,
    UploadError,
    UploadErrorKind,
    is_container_unavailable,
)
from media_transfer.services.idempotent_executor import IdempotentExecutor
from media_transfer.services.rate_limiter import PacingLimiter

logger = structlog.get_logger(__name__)

ITEM_CREATE_FAILED = "Media item could not be created."


@dataclass
class UploadTask:
    item: SourceItem
    upload_token: str
    length: int

    @property
    def key(self) -> str:
        return self.item.idempotency_key


def _group_by_container(items: Iterable[SourceItem]) -> dict[str | None, list[SourceItem]]:
    groups: dict[str | None, list[SourceItem]] = {}
    seen: set[str] = set()
    for item in items:
        if item.idempotency_key in seen:
            continue
        seen.add(item.idempotency_key)
        groups.setdefault(item.container_id, []).append(item)
    return groups


def _chunks(items: list[SourceItem], size: int) -> Iterator[list[SourceItem]]:
    for idx in range(0, len(items), size):
        yield items[idx : idx + size]


class BatchUploader:
    def __init__(
        self,
        *,
        stager: ContentStager,
        client: DestinationApi | None = None,
        clients: DestinationClientPool | None = None,
        settings: Settings | None = None,
        rate_limit_factor: float | None = None,
        limiter: PacingLimiter | None = None,
    ) -> None:
        if client is None and clients is None:
            raise ValueError("either client or clients is required")
        cfg = settings or get_settings()
        self.stager = stager
        self.batch_size = cfg.batch_size
        self.description_max_length = cfg.item_description_max_length
        self.container_not_found_policy = cfg.container_not_found_policy
        self.limiter = limiter or PacingLimiter(
            base_interval_seconds=cfg.batch_pacing_seconds,
            factor=rate_limit_factor if rate_limit_factor is not None else cfg.rate_limit_factor,
        )
        self.clients = clients or DestinationClientPool.fixed(client)
        self._unavailable_containers: set[tuple[UUID, str | None]] = set()

    def forget(self, job_id: UUID) -> None:
        self._unavailable_containers = {entry for entry in self._unavailable_containers if entry[0] != job_id}

    def import_items(
        self,
        items: Iterable[SourceItem],
        executor: IdempotentExecutor,
        job_id: UUID,
        auth_data: AuthData | None = None,
        on_imported: Callable[[int], None] | None = None,
    ) -> int:
        """Import ``items`` and return the number of content bytes imported.

        ``on_imported`` receives the byte count of each batch once that batch is
        created, before any later batch runs.
        """
        client = self.clients.get(auth_data)
        pending = [item for item in items if not executor.is_key_cached(item.idempotency_key)]
        total_bytes = 0

        for container_key, group in _group_by_container(pending).items():
            container_id: str | None = None
            if container_key is not None:
                if not executor.is_key_cached(container_key):
                    self._fail_items(group, executor, f"container {container_key} has not been imported")
                    continue
                container_id = executor.get_cached_value(container_key)

            for batch in _chunks(group, self.batch_size):
                if (job_id, container_key) in self._unavailable_containers:
                    self._fail_items(batch, executor, f"container {container_key} is not available on the destination")
                    continue
                imported = self._import_batch(batch, container_key, container_id, executor, job_id, client)
                total_bytes += imported
                if imported and on_imported is not None:
                    on_imported(imported)

        return total_bytes

    def _fail_items(self, items: list[SourceItem], executor: IdempotentExecutor, reason: str) -> None:
        for item in items:
            executor.record_failure(item.idempotency_key, item.display_name, TransferError(reason))
            metrics.items_failed_total.labels(stage="container").inc()

    def _upload_item(self, item: SourceItem, job_id: UUID, client: DestinationApi) -> UploadTask:
        content = self.stager.resolve(job_id, item)
        try:
            receipt = client.upload_content(
                content,
                item.sha1,
                content_type=item.media_type,
                file_name=item.title,
            )
        finally:
            content.close()

        if item.sha1 and receipt.sha1 and receipt.sha1.lower() != item.sha1:
            raise UploadError(
                f"Hash mismatch: expected sha1 {item.sha1}, destination reported {receipt.sha1.lower()}",
                kind=UploadErrorKind.HASH_MISMATCH,
            )

        try:
            self.stager.release(job_id, item)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "staged_content_release_failed",
                job_id=str(job_id),
                key=item.idempotency_key,
                error=str(exc),
            )
        return UploadTask(item=item, upload_token=receipt.upload_token, length=content.length)

    def _new_media_item(self, task: UploadTask) -> NewMediaItem:
        description = task.item.description
        if description and len(description) > self.description_max_length:
            description = description[: self.description_max_length]
        return NewMediaItem(
            description=description,
            simple_media_item=SimpleMediaItem(upload_token=task.upload_token, file_name=task.item.title),
        )

    def _import_batch(
        self,
        batch: list[SourceItem],
        container_key: str | None,
        container_id: str | None,
        executor: IdempotentExecutor,
        job_id: UUID,
        client: DestinationApi,
    ) -> int:
        tasks: list[UploadTask] = []
        hash_mismatch: UploadError | None = None

        for item in batch:
            try:
                tasks.append(self._upload_item(item, job_id, client))
            except UploadError as exc:
                executor.record_failure(item.idempotency_key, item.display_name, exc)
                metrics.items_failed_total.labels(stage="upload").inc()
                if exc.is_hash_mismatch and hash_mismatch is None:
                    hash_mismatch = exc
            except (StagingError, OSError, httpx.HTTPError) as exc:
                executor.record_failure(item.idempotency_key, item.display_name, exc)
                metrics.items_failed_total.labels(stage="staging").inc()

        if not tasks:
            if hash_mismatch is not None:
                raise hash_mismatch
            return 0

        self.limiter.wait()
        metrics.batch_calls_total.inc()
        try:
            with metrics.batch_create_seconds.time():
                results = client.create_items_batch(container_id, [self._new_media_item(task) for task in tasks])
        except DestinationApiError as exc:
            metrics.batch_failures_total.labels(kind=exc.kind.value).inc()
            if not is_container_unavailable(exc):
                raise
            self._handle_unavailable_container(client, container_key, container_id, exc, job_id)
            return 0

        return self._apply_results(tasks, results, executor, job_id)

    def _handle_unavailable_container(
        self,
        client: DestinationApi,
        container_key: str | None,
        container_id: str | None,
        exc: DestinationApiError,
        job_id: UUID,
    ) -> None:
        diagnostics: dict[str, object] = {}
        if container_id is not None:
            try:
                remote = client.get_container(container_id)
                diagnostics = {"container_title": remote.title, "is_writeable": remote.is_writeable}
            except Exception as lookup_exc:  # noqa: BLE001
                diagnostics = {"lookup_error": str(lookup_exc)}
        logger.warning(
            "batch_container_unavailable",
            job_id=str(job_id),
            container_key=container_key,
            container_id=container_id,
            kind=exc.kind.value,
            error=str(exc),
            **diagnostics,
        )
        if self.container_not_found_policy == "skip_container" and container_key is not None:
            self._unavailable_containers.add((job_id, container_key))

    def _apply_results(
        self,
        tasks: list[UploadTask],
        results: list[NewMediaItemResult],
        executor: IdempotentExecutor,
        job_id: UUID,
    ) -> int:
        by_token = {task.upload_token: task for task in tasks}
        answered: set[str] = set()
        imported_bytes = 0

        for result in results:
            task = by_token.get(result.upload_token or "")
            if task is None:
                logger.warning("batch_result_unmatched", job_id=str(job_id), upload_token=result.upload_token)
                continue
            answered.add(task.upload_token)

            if result.status.ok and result.media_item is not None:
                media_id = result.media_item.id
                executor.execute_or_raise(task.key, task.item.display_name, lambda media_id=media_id: media_id)
                imported_bytes += task.length
                metrics.items_imported_total.inc()
                metrics.bytes_imported_total.inc(task.length)
                continue

            if result.status.ok:
                message = f"{ITEM_CREATE_FAILED} No media item returned"
            else:
                message = (
                    f"{ITEM_CREATE_FAILED} Code: {describe_code(result.status.code)} "
                    f"Message: {result.status.message or ''}".rstrip()
                )
            executor.record_failure(task.key, task.item.display_name, ItemCreateError(message, code=result.status.code))
            metrics.items_failed_total.labels(stage="create").inc()

        for token, task in by_token.items():
            if token in answered:
                continue
            executor.record_failure(
                task.key,
                task.item.display_name,
                ItemCreateError(f"{ITEM_CREATE_FAILED} No result returned for upload token"),
            )
            metrics.items_failed_total.labels(stage="create").inc()

        logger.info(
            "batch_imported",
            job_id=str(job_id),
            submitted=len(tasks),
            imported_bytes=imported_bytes,
        )
        return imported_bytes
