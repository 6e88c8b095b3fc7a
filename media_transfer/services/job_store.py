from __future__ import annotations

from typing import Callable, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from media_transfer.db.models import TransferJob
from media_transfer.schemas.transfer import JobMetadata


class JobStore(Protocol):
    def find_job(self, job_id: UUID) -> JobMetadata | None: ...


class SqlJobStore:
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def find_job(self, job_id: UUID) -> JobMetadata | None:
        with self._session_factory() as db:
            job = db.get(TransferJob, job_id)
            if not job:
                return None
            return JobMetadata(job_id=job.id, user_locale=job.user_locale)
