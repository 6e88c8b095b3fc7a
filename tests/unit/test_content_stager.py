import io
from unittest.mock import MagicMock
from uuid import UUID

import pytest

pytest.importorskip("sqlalchemy")

from media_transfer.schemas.media import SourceItem
from media_transfer.services.content_stager import ContentStager, StagedContent
from media_transfer.services.error_codes import StagingError
from media_transfer.services.job_data_store import StoredData

JOB_ID = UUID("55555555-5555-5555-5555-555555555555")


def staged_item(**overrides):
    fields = {"fetchable_url": "blob-1", "old_id": "p1", "in_temp_store": True, "media_type": "image/png"}
    fields.update(overrides)
    return SourceItem(**fields)


def test_staged_item_is_read_from_job_data_store():
    store = MagicMock()
    store.get_stream.return_value = StoredData(io.BytesIO(b"abcdef"), 6)
    stager = ContentStager(job_data_store=store, chunk_size=4)

    content = stager.resolve(JOB_ID, staged_item())

    assert list(content) == [b"abcd", b"ef"]
    assert content.length == 6
    assert content.content_type == "image/png"
    store.get_stream.assert_called_once_with(JOB_ID, "blob-1")


def test_remote_item_uses_fetcher_and_counts_bytes_without_length():
    fetcher = MagicMock()
    remote = MagicMock()
    remote.content_length = None
    remote.iter_bytes.return_value = iter([b"12", b"345"])
    fetcher.open.return_value = remote
    stager = ContentStager(fetcher=fetcher)

    content = stager.resolve(JOB_ID, staged_item(in_temp_store=False, fetchable_url="https://src/p1"))

    assert content.length == 0
    assert b"".join(content) == b"12345"
    assert content.length == 5
    content.close()
    content.close()
    remote.close.assert_called_once()
    fetcher.open.assert_called_once_with("https://src/p1")


def test_missing_collaborators_raise_staging_error():
    with pytest.raises(StagingError):
        ContentStager().resolve(JOB_ID, staged_item())
    with pytest.raises(StagingError):
        ContentStager().resolve(JOB_ID, staged_item(in_temp_store=False))


def test_release_removes_only_staged_blobs():
    store = MagicMock()
    stager = ContentStager(job_data_store=store)

    stager.release(JOB_ID, staged_item(in_temp_store=False))
    store.remove_data.assert_not_called()

    stager.release(JOB_ID, staged_item())
    store.remove_data.assert_called_once_with(JOB_ID, "blob-1")


def test_stored_data_close_releases_connection():
    release = MagicMock()
    stream = io.BytesIO(b"x")
    data = StoredData(stream, 1, release=release)

    data.close()

    assert stream.closed
    release.assert_called_once()


def test_staged_content_declared_length_wins():
    content = StagedContent(iter([b"abc"]), declared_length=10, content_type="image/jpeg")
    list(content)
    assert content.length == 10
