"""
Per-job composition of container and item imports.

Containers are resolved before any item is uploaded: every container supplied
with a resource is created through the job's executor under its old id, and
items are then imported against the new ids cached there.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from uuid import UUID

import structlog

from media_transfer.schemas.destination import AuthData
from media_transfer.schemas.media import MediaContainerResource, SourceContainer
from media_transfer.services.batch_uploader import BatchUploader
from media_transfer.services.container_importer import ContainerImporter
from media_transfer.services.error_codes import DestinationApiError, InvalidTokenError, PermissionDeniedError
from media_transfer.services.idempotent_executor import ErrorDetail, IdempotentExecutor

logger = structlog.get_logger(__name__)


@dataclass
class ImportLedger:
    job_id: UUID
    bytes_imported: int = 0
    calls: int = 0


@dataclass
class ImportResult:
    job_id: UUID
    bytes_imported: int
    total_bytes_imported: int
    errors: list[ErrorDetail] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def _distinct_containers(containers: list[SourceContainer]) -> list[SourceContainer]:
    seen: dict[str, SourceContainer] = {}
    for container in containers:
        seen.setdefault(container.old_id, container)
    return list(seen.values())


class ImportOrchestrator:
    def __init__(self, *, container_importer: ContainerImporter, uploader: BatchUploader) -> None:
        self.container_importer = container_importer
        self.uploader = uploader
        self._ledgers: dict[UUID, ImportLedger] = {}
        self._lock = threading.Lock()

    def ledger(self, job_id: UUID) -> ImportLedger:
        with self._lock:
            ledger = self._ledgers.get(job_id)
            if ledger is None:
                ledger = ImportLedger(job_id=job_id)
                self._ledgers[job_id] = ledger
            return ledger

    def forget(self, job_id: UUID) -> None:
        with self._lock:
            self._ledgers.pop(job_id, None)
        self.uploader.forget(job_id)
        self.container_importer.forget(job_id)

    def _credit(self, job_id: UUID, bytes_imported: int) -> None:
        ledger = self.ledger(job_id)
        with self._lock:
            ledger.bytes_imported += bytes_imported

    def import_containers(
        self,
        job_id: UUID,
        containers: list[SourceContainer],
        executor: IdempotentExecutor,
        auth_data: AuthData | None = None,
    ) -> None:
        for container in _distinct_containers(containers):
            try:
                executor.execute_or_raise(
                    container.old_id,
                    container.name or container.old_id,
                    lambda container=container: self.container_importer.import_container(job_id, container, auth_data),
                )
            except (InvalidTokenError, PermissionDeniedError):
                raise
            except DestinationApiError as exc:
                logger.warning(
                    "container_import_failed",
                    job_id=str(job_id),
                    old_id=container.old_id,
                    kind=exc.kind.value,
                    error=str(exc),
                )

    def import_resource(
        self,
        job_id: UUID,
        resource: MediaContainerResource,
        executor: IdempotentExecutor,
        auth_data: AuthData | None = None,
    ) -> ImportResult:
        self.import_containers(job_id, resource.containers, executor, auth_data)

        bytes_imported = 0
        if resource.items:
            bytes_imported = self.uploader.import_items(
                resource.items,
                executor,
                job_id,
                auth_data,
                on_imported=lambda n: self._credit(job_id, n),
            )

        ledger = self.ledger(job_id)
        with self._lock:
            ledger.calls += 1
            total = ledger.bytes_imported

        errors = executor.get_errors()
        logger.info(
            "resource_imported",
            job_id=str(job_id),
            containers=len(resource.containers),
            items=len(resource.items),
            bytes_imported=bytes_imported,
            error_count=len(errors),
        )
        return ImportResult(
            job_id=job_id,
            bytes_imported=bytes_imported,
            total_bytes_imported=total,
            errors=errors,
        )
