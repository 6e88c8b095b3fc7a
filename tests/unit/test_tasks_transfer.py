from unittest.mock import MagicMock
from uuid import uuid4

import pytest

sqlalchemy = pytest.importorskip("sqlalchemy")
pytest.importorskip("celery")

from sqlalchemy.orm import sessionmaker

from media_transfer.db.base import Base
from media_transfer.db.models import TransferJob, TransferState
from media_transfer.services.error_codes import PermissionDeniedError
from media_transfer.services.import_orchestrator import ImportLedger, ImportResult
from media_transfer.worker import tasks_transfer


@pytest.fixture()
def session_factory(monkeypatch):
    engine = sqlalchemy.create_engine("sqlite://")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    monkeypatch.setattr(tasks_transfer, "_session_factory", lambda: factory)
    yield factory
    engine.dispose()


def add_job(factory, **fields):
    with factory() as db:
        job = TransferJob(payload_json={"containers": [], "items": []}, **fields)
        db.add(job)
        db.commit()
        return job.id


def test_executor_is_reused_until_released():
    job_id = uuid4()
    first = tasks_transfer.executor_for(job_id)
    assert tasks_transfer.executor_for(job_id) is first

    tasks_transfer.release_job(job_id)
    assert tasks_transfer.executor_for(job_id) is not first
    tasks_transfer.release_job(job_id)


def test_task_completes_job_and_drops_executor(session_factory, monkeypatch):
    job_id = add_job(session_factory)
    orchestrator = MagicMock()
    orchestrator.import_resource.return_value = ImportResult(job_id=job_id, bytes_imported=0, total_bytes_imported=0)
    monkeypatch.setattr(tasks_transfer, "_get_orchestrator", lambda: orchestrator)
    executor = tasks_transfer.executor_for(job_id)

    result = tasks_transfer.process_transfer_job_task.apply(args=[str(job_id)]).get()

    assert result["ok"] is True
    assert orchestrator.import_resource.call_args.args[2] is executor
    assert tasks_transfer.executor_for(job_id) is not executor
    tasks_transfer.release_job(job_id)


def test_task_dead_letters_after_last_attempt(session_factory, monkeypatch):
    job_id = add_job(session_factory, max_attempts=1)
    orchestrator = MagicMock()
    orchestrator.ledger.return_value = ImportLedger(job_id=job_id)
    orchestrator.import_resource.side_effect = PermissionDeniedError("album is read-only")
    monkeypatch.setattr(tasks_transfer, "_get_orchestrator", lambda: orchestrator)

    result = tasks_transfer.process_transfer_job_task.apply(args=[str(job_id)]).get()

    assert result["dead_lettered"] is True
    with session_factory() as db:
        job = db.get(TransferJob, job_id)
        assert job.state == TransferState.FAILED
        assert job.last_error_code == "DESTINATION_PERMISSION_DENIED"


def test_task_ignores_malformed_job_id():
    result = tasks_transfer.process_transfer_job_task.apply(args=["not-a-uuid"]).get()
    assert result == {"ok": False, "reason": "job_not_found"}
