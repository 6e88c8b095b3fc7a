from __future__ import annotations

from uuid import UUID

import structlog

from media_transfer.core import metrics
from media_transfer.core.config import Settings, get_settings
from media_transfer.schemas.destination import AuthData, RemoteContainer
from media_transfer.schemas.media import SourceContainer
from media_transfer.services.destination_client import DestinationApi, DestinationClientPool
from media_transfer.services.error_codes import DestinationApiError
from media_transfer.services.idempotent_executor import InMemoryIdempotentExecutor
from media_transfer.services.job_store import JobStore
from media_transfer.services.locale_strings import get_string

logger = structlog.get_logger(__name__)


class ContainerImporter:
    """Creates destination albums for source containers.

    Callers run ``import_container`` through the job's idempotent executor keyed
    by the container's old id, so each container is created once per job. The
    job's locale is looked up once per job and kept in an executor of its own.
    """

    def __init__(
        self,
        *,
        job_store: JobStore | None = None,
        client: DestinationApi | None = None,
        clients: DestinationClientPool | None = None,
        settings: Settings | None = None,
    ) -> None:
        if client is None and clients is None:
            raise ValueError("either client or clients is required")
        cfg = settings or get_settings()
        self.job_store = job_store
        self.clients = clients or DestinationClientPool.fixed(client)
        self.title_max_length = cfg.container_title_max_length
        self.default_locale = cfg.default_locale
        self._job_metadata = InMemoryIdempotentExecutor()

    def _lookup_locale(self, job_id: UUID) -> str:
        job = self.job_store.find_job(job_id) if self.job_store else None
        if job and job.user_locale:
            return job.user_locale
        return self.default_locale

    def locale_for(self, job_id: UUID) -> str:
        return self._job_metadata.execute_or_raise(str(job_id), "job metadata", lambda: self._lookup_locale(job_id))

    def forget(self, job_id: UUID) -> None:
        self._job_metadata.discard(str(job_id))

    def container_title(self, job_id: UUID, container: SourceContainer) -> str:
        title = (container.name or "").strip()
        if not title:
            title = get_string(self.locale_for(job_id), "untitled_container")
        return title[: self.title_max_length]

    def import_container(
        self,
        job_id: UUID,
        container: SourceContainer,
        auth_data: AuthData | None = None,
    ) -> str:
        client = self.clients.get(auth_data)
        title = self.container_title(job_id, container)
        remote = client.create_container(RemoteContainer(title=title))
        if not remote.id:
            raise DestinationApiError(f"container {container.old_id} was created without an id")

        metrics.containers_created_total.inc()
        logger.info(
            "container_created",
            job_id=str(job_id),
            old_id=container.old_id,
            new_id=remote.id,
        )
        return remote.id
