from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

import structlog
from pydantic import ValidationError
from sqlalchemy.orm import Session

from media_transfer.core.config import Settings, get_settings
from media_transfer.db.models import TERMINAL_STATES, TransferJob, TransferState
from media_transfer.schemas.destination import AuthData
from media_transfer.schemas.media import MediaContainerResource
from media_transfer.schemas.transfer import TransferJobStatusResponse
from media_transfer.services.batch_uploader import BatchUploader
from media_transfer.services.container_importer import ContainerImporter
from media_transfer.services.content_stager import ContentStager
from media_transfer.services.destination_client import DestinationClient, DestinationClientPool
from media_transfer.services.error_codes import TransferPipelineError, classify_exception_for_stage
from media_transfer.services.idempotent_executor import IdempotentExecutor
from media_transfer.services.import_orchestrator import ImportOrchestrator, ImportResult
from media_transfer.services.job_data_store import get_job_data_store
from media_transfer.services.job_store import JobStore
from media_transfer.services.remote_fetch import RemoteFetcher

logger = structlog.get_logger(__name__)

NON_RETRYABLE_STAGES = {"LOADED"}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def build_orchestrator(
    settings: Settings | None = None,
    *,
    job_store: JobStore | None = None,
    rate_limit_factor: float | None = None,
) -> ImportOrchestrator:
    cfg = settings or get_settings()

    def _client(auth_data: AuthData | None) -> DestinationClient:
        if auth_data is None and cfg.destination_access_token:
            auth_data = AuthData(access_token=cfg.destination_access_token)
        return DestinationClient(auth_data=auth_data, settings=cfg)

    clients = DestinationClientPool(_client)
    stager = ContentStager(
        job_data_store=get_job_data_store(cfg),
        fetcher=RemoteFetcher(settings=cfg),
        chunk_size=cfg.fetch_chunk_size,
    )
    return ImportOrchestrator(
        container_importer=ContainerImporter(job_store=job_store, clients=clients, settings=cfg),
        uploader=BatchUploader(stager=stager, clients=clients, settings=cfg, rate_limit_factor=rate_limit_factor),
    )


def _errors_payload(executor: IdempotentExecutor) -> list[dict]:
    return [detail.to_dict() for detail in executor.get_errors()]


def _record_result(db: Session, job: TransferJob, result: ImportResult) -> None:
    job.bytes_imported = (job.bytes_imported or 0) + result.bytes_imported
    job.errors_json = [detail.to_dict() for detail in result.errors]
    job.error_count = len(result.errors)
    job.state = TransferState.COMPLETED if result.success else TransferState.COMPLETED_WITH_ERRORS
    job.last_error_code = None
    job.last_error_message = None
    job.finished_at = _now()
    db.add(job)
    db.commit()


def _fail_job(
    db: Session,
    job: TransferJob,
    executor: IdempotentExecutor,
    error_code: str,
    error_stage: str,
    error_message: str,
    bytes_imported: int = 0,
) -> dict:
    job.bytes_imported = (job.bytes_imported or 0) + bytes_imported
    job.state = TransferState.FAILED
    job.last_error_code = error_code
    job.last_error_message = error_message
    job.errors_json = _errors_payload(executor)
    job.error_count = len(job.errors_json)
    job.finished_at = _now()
    db.add(job)
    db.commit()

    logger.warning(
        "transfer_job_failed",
        job_id=str(job.id),
        error_code=error_code,
        error_stage=error_stage,
        error=error_message,
        bytes_imported=bytes_imported,
    )
    return {
        "ok": False,
        "job_id": str(job.id),
        "reason": error_code,
        "error_code": error_code,
        "error_stage": error_stage,
        "error_message": error_message,
        "retryable": error_stage not in NON_RETRYABLE_STAGES,
    }


def process_transfer_job(
    db: Session,
    job_id: UUID,
    *,
    orchestrator: ImportOrchestrator,
    executor: IdempotentExecutor,
) -> dict:
    job = db.get(TransferJob, job_id)
    if not job:
        return {"ok": False, "reason": "job_not_found"}
    if job.state in TERMINAL_STATES and job.state != TransferState.FAILED:
        return {"ok": True, "job_id": str(job.id), "skipped": True, "state": job.state.value}

    ledger_before = orchestrator.ledger(job.id).bytes_imported
    job.started_at = _now()
    job.attempt_count += 1
    job.retry_after = None
    job.state = TransferState.RUNNING
    db.add(job)
    db.commit()

    try:
        try:
            resource = MediaContainerResource.model_validate(job.payload_json or {})
        except ValidationError as exc:
            raise TransferPipelineError(
                code=classify_exception_for_stage(exc, "LOADED"),
                stage="LOADED",
                message=str(exc),
            ) from exc

        try:
            result = orchestrator.import_resource(job.id, resource, executor)
        except Exception as exc:  # noqa: BLE001
            raise TransferPipelineError(
                code=classify_exception_for_stage(exc, "IMPORTED"),
                stage="IMPORTED",
                message=str(exc),
            ) from exc

        try:
            _record_result(db, job, result)
        except Exception as exc:  # noqa: BLE001
            db.rollback()
            raise TransferPipelineError(
                code=classify_exception_for_stage(exc, "RECORDED"),
                stage="RECORDED",
                message=str(exc),
            ) from exc

        return {
            "ok": True,
            "job_id": str(job.id),
            "state": job.state.value,
            "bytes_imported": result.bytes_imported,
            "error_count": len(result.errors),
        }

    except TransferPipelineError as exc:
        return _fail_job(
            db=db,
            job=job,
            executor=executor,
            error_code=exc.code,
            error_stage=exc.stage,
            error_message=exc.message,
            bytes_imported=orchestrator.ledger(job.id).bytes_imported - ledger_before,
        )


def build_job_status(job: TransferJob) -> TransferJobStatusResponse:
    return TransferJobStatusResponse(
        job_id=job.id,
        state=job.state,
        attempt_count=job.attempt_count,
        max_attempts=job.max_attempts,
        bytes_imported=job.bytes_imported,
        error_count=job.error_count,
        last_error_code=job.last_error_code,
        last_error_message=job.last_error_message,
        received_at=job.received_at,
        started_at=job.started_at,
        finished_at=job.finished_at,
        is_terminal=job.state in TERMINAL_STATES,
        success=job.state == TransferState.COMPLETED,
    )
