from unittest.mock import MagicMock
from uuid import UUID

import pytest

pytest.importorskip("sqlalchemy")

from media_transfer.core.config import Settings
from media_transfer.schemas.destination import (
    CreatedMediaItem,
    ItemStatus,
    NewMediaItemResult,
    RemoteContainer,
    UploadReceipt,
)
from media_transfer.schemas.media import MediaContainerResource, SourceContainer, SourceItem
from media_transfer.services.batch_uploader import BatchUploader
from media_transfer.services.container_importer import ContainerImporter
from media_transfer.services.content_stager import ContentStager
from media_transfer.services.error_codes import (
    DestinationApiError,
    DestinationErrorKind,
    InvalidTokenError,
)
from media_transfer.services.idempotent_executor import InMemoryIdempotentExecutor
from media_transfer.services.import_orchestrator import ImportOrchestrator

JOB_ID = UUID("44444444-4444-4444-4444-444444444444")


def make_client():
    client = MagicMock()
    client.create_container.side_effect = lambda container: RemoteContainer(id=f"new-{container.title}", title=container.title)
    tokens = iter(range(1, 1000))
    client.upload_content.side_effect = lambda *args, **kwargs: UploadReceipt(upload_token=f"token-{next(tokens)}")
    client.create_items_batch.side_effect = lambda container_id, items: [
        NewMediaItemResult(
            upload_token=i.simple_media_item.upload_token,
            status=ItemStatus(code=0),
            media_item=CreatedMediaItem(id=f"media-{i.simple_media_item.upload_token}"),
        )
        for i in items
    ]
    return client


def make_orchestrator(client):
    settings = Settings(batch_pacing_seconds=0)
    fetcher = MagicMock()

    def _open(url):
        content = MagicMock()
        content.content_length = 10
        content.iter_bytes.return_value = iter([b"0123456789"])
        return content

    fetcher.open.side_effect = _open
    return ImportOrchestrator(
        container_importer=ContainerImporter(client=client, settings=settings),
        uploader=BatchUploader(stager=ContentStager(fetcher=fetcher), client=client, settings=settings),
    )


def make_item(photo_id, album):
    return SourceItem(title=photo_id, fetchable_url=f"https://src/{photo_id}", old_id=photo_id, container_id=album)


def make_resource():
    return MediaContainerResource(
        containers=[SourceContainer(old_id="a1", name="Trip"), SourceContainer(old_id="a1", name="Trip")],
        items=[make_item("p1", "a1"), make_item("p2", "a1")],
    )


def test_import_resource_creates_containers_then_items():
    client = make_client()
    orchestrator = make_orchestrator(client)
    executor = InMemoryIdempotentExecutor()

    result = orchestrator.import_resource(JOB_ID, make_resource(), executor)

    assert client.create_container.call_count == 1
    assert client.create_items_batch.call_args.args[0] == "new-Trip"
    assert result.bytes_imported == 20
    assert result.total_bytes_imported == 20
    assert result.success
    assert executor.get_cached_value("a1-p1") == "media-token-1"


def test_rerun_of_same_resource_is_idempotent():
    client = make_client()
    orchestrator = make_orchestrator(client)
    executor = InMemoryIdempotentExecutor()

    orchestrator.import_resource(JOB_ID, make_resource(), executor)
    second = orchestrator.import_resource(JOB_ID, make_resource(), executor)

    assert client.create_container.call_count == 1
    assert client.upload_content.call_count == 2
    assert second.bytes_imported == 0
    assert second.total_bytes_imported == 20
    assert orchestrator.ledger(JOB_ID).calls == 2


def test_container_failure_is_recorded_and_its_items_skipped():
    client = make_client()
    client.create_container.side_effect = DestinationApiError("bad title", kind=DestinationErrorKind.VALIDATION)
    orchestrator = make_orchestrator(client)
    executor = InMemoryIdempotentExecutor()

    result = orchestrator.import_resource(JOB_ID, make_resource(), executor)

    assert result.bytes_imported == 0
    assert not result.success
    assert sorted(e.id for e in result.errors) == ["a1", "a1-p1", "a1-p2"]
    client.upload_content.assert_not_called()


def test_invalid_token_aborts_the_import():
    client = make_client()
    client.create_container.side_effect = InvalidTokenError("expired")
    orchestrator = make_orchestrator(client)

    with pytest.raises(InvalidTokenError):
        orchestrator.import_resource(JOB_ID, make_resource(), InMemoryIdempotentExecutor())


def test_forget_drops_ledger():
    client = make_client()
    orchestrator = make_orchestrator(client)
    orchestrator.import_resource(JOB_ID, make_resource(), InMemoryIdempotentExecutor())

    orchestrator.forget(JOB_ID)

    assert orchestrator.ledger(JOB_ID).bytes_imported == 0


def test_bytes_of_created_batches_are_kept_when_a_later_batch_fails():
    client = make_client()
    created = []

    def create_batch(container_id, items):
        if created:
            raise DestinationApiError("backend unavailable", kind=DestinationErrorKind.UNKNOWN)
        created.append(container_id)
        return [
            NewMediaItemResult(
                upload_token=i.simple_media_item.upload_token,
                status=ItemStatus(code=0),
                media_item=CreatedMediaItem(id="media-1"),
            )
            for i in items
        ]

    client.create_items_batch.side_effect = create_batch
    orchestrator = make_orchestrator(client)
    executor = InMemoryIdempotentExecutor()
    resource = MediaContainerResource(
        containers=[SourceContainer(old_id="a1", name="Trip"), SourceContainer(old_id="a2", name="Home")],
        items=[make_item("p1", "a1"), make_item("p2", "a2")],
    )

    with pytest.raises(DestinationApiError):
        orchestrator.import_resource(JOB_ID, resource, executor)

    assert created == ["new-Trip"]
    assert executor.is_key_cached("a1-p1")
    assert not executor.is_key_cached("a2-p2")
    assert orchestrator.ledger(JOB_ID).bytes_imported == 10


def test_forget_drops_cached_job_locale():
    client = make_client()
    job_store = MagicMock()
    job_store.find_job.return_value = None
    settings = Settings(batch_pacing_seconds=0)
    orchestrator = ImportOrchestrator(
        container_importer=ContainerImporter(job_store=job_store, client=client, settings=settings),
        uploader=BatchUploader(stager=ContentStager(fetcher=MagicMock()), client=client, settings=settings),
    )
    untitled = MediaContainerResource(containers=[SourceContainer(old_id="a1", name="")], items=[])

    orchestrator.import_resource(JOB_ID, untitled, InMemoryIdempotentExecutor())
    orchestrator.forget(JOB_ID)
    orchestrator.import_resource(JOB_ID, untitled, InMemoryIdempotentExecutor())

    assert job_store.find_job.call_count == 2
