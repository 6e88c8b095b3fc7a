from celery import Celery
from celery.signals import worker_process_init
from prometheus_client import start_http_server

from media_transfer.core.config import get_settings
from media_transfer.core.logging import configure_logging

settings = get_settings()
configure_logging()

celery_app = Celery(
    "media_transfer",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["media_transfer.worker.tasks_transfer"],
)

celery_app.conf.update(
    task_acks_late=True,
    task_track_started=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    broker_connection_retry_on_startup=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "media_transfer.worker.tasks_transfer.process_transfer_job_task": {"queue": "transfer"},
    },
)


@worker_process_init.connect
def _start_metrics_server(**_kwargs) -> None:
    # expects one process per port: run with --pool=solo or --pool=threads
    if settings.metrics_port is not None:
        start_http_server(settings.metrics_port)
