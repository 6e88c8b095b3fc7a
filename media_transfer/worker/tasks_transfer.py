import threading
from uuid import UUID

import structlog
from celery.exceptions import Retry

from media_transfer.core.config import get_settings
from media_transfer.core.logging import bind_job_context, clear_job_context
from media_transfer.db.models import TransferJob, TransferState
from media_transfer.services.idempotent_executor import InMemoryIdempotentExecutor
from media_transfer.services.import_orchestrator import ImportOrchestrator
from media_transfer.services.job_store import SqlJobStore
from media_transfer.services.retry_policy import backoff_seconds, retry_after, should_retry
from media_transfer.services.transfer_service import build_orchestrator, process_transfer_job
from media_transfer.worker.celery_app import celery_app

logger = structlog.get_logger(__name__)

# One executor per job id for the life of this worker process, dropped once
# the job reaches a terminal state.
_executors: dict[UUID, InMemoryIdempotentExecutor] = {}
_executors_lock = threading.Lock()
_orchestrator: ImportOrchestrator | None = None


def _session_factory():
    from media_transfer.db.session import SessionLocal

    return SessionLocal


def _get_orchestrator() -> ImportOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator(get_settings(), job_store=SqlJobStore(_session_factory()))
    return _orchestrator


def executor_for(job_id: UUID) -> InMemoryIdempotentExecutor:
    with _executors_lock:
        executor = _executors.get(job_id)
        if executor is None:
            executor = InMemoryIdempotentExecutor(job_id=str(job_id))
            _executors[job_id] = executor
        return executor


def release_job(job_id: UUID) -> None:
    with _executors_lock:
        _executors.pop(job_id, None)
    if _orchestrator is not None:
        _orchestrator.forget(job_id)


def _parse_job_uuid(job_id: str) -> UUID | None:
    try:
        return UUID(str(job_id))
    except ValueError:
        return None


def _schedule_retry(db, job: TransferJob, reason: str) -> int:
    settings = get_settings()
    delay_seconds = backoff_seconds(
        job.attempt_count,
        settings.transfer_retry_base_seconds,
        settings.transfer_retry_max_seconds,
    )
    job.state = TransferState.RECEIVED
    job.retry_after = retry_after(
        job.attempt_count,
        settings.transfer_retry_base_seconds,
        settings.transfer_retry_max_seconds,
    )
    job.started_at = None
    job.finished_at = None
    db.add(job)
    db.commit()

    logger.info(
        "transfer_retry_scheduled",
        attempt_count=job.attempt_count,
        max_attempts=job.max_attempts,
        delay_seconds=delay_seconds,
        reason=reason,
    )
    return delay_seconds


def _move_to_dead_letter(db, job: TransferJob, reason: str) -> dict:
    job.state = TransferState.FAILED
    job.retry_after = None
    if not job.last_error_code:
        job.last_error_code = "DLQ_MAX_ATTEMPTS"
    if not job.last_error_message:
        job.last_error_message = reason
    db.add(job)
    db.commit()

    logger.error(
        "transfer_dead_lettered",
        attempt_count=job.attempt_count,
        max_attempts=job.max_attempts,
        reason=reason,
        last_error_code=job.last_error_code,
    )
    release_job(job.id)
    return {
        "ok": False,
        "job_id": str(job.id),
        "reason": reason,
        "dead_lettered": True,
        "attempt_count": job.attempt_count,
        "max_attempts": job.max_attempts,
    }


@celery_app.task(bind=True, max_retries=None)
def process_transfer_job_task(self, job_id: str):  # noqa: ANN201
    job_uuid = _parse_job_uuid(job_id)
    if job_uuid is None:
        return {"ok": False, "reason": "job_not_found"}

    bind_job_context(str(job_uuid), task_id=self.request.id)
    db = _session_factory()()
    try:
        result = process_transfer_job(
            db,
            job_uuid,
            orchestrator=_get_orchestrator(),
            executor=executor_for(job_uuid),
        )
        if result.get("ok"):
            release_job(job_uuid)
            return result

        reason = str(result.get("reason", "transfer_failed"))
        job = db.get(TransferJob, job_uuid)
        if not job:
            release_job(job_uuid)
            return result

        if result.get("retryable", True) and should_retry(job.attempt_count, job.max_attempts):
            delay_seconds = _schedule_retry(db, job, reason)
            raise self.retry(exc=RuntimeError(reason), countdown=delay_seconds)

        return _move_to_dead_letter(db, job, reason)

    except Retry:
        raise
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        reason = f"task_exception:{exc}"
        job = db.get(TransferJob, job_uuid)
        if job and should_retry(job.attempt_count, job.max_attempts):
            delay_seconds = _schedule_retry(db, job, reason)
            raise self.retry(exc=exc, countdown=delay_seconds)
        if job:
            return _move_to_dead_letter(db, job, reason)
        raise
    finally:
        db.close()
        clear_job_context()
