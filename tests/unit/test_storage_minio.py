import io
from unittest.mock import MagicMock
from uuid import UUID

import pytest

pytest.importorskip("minio")

from media_transfer.services.job_data_store import staging_key
from media_transfer.services.storage_minio import MinioJobDataStore

JOB_ID = UUID("12121212-1212-1212-1212-121212121212")


def test_get_stream_releases_connection_on_close():
    client = MagicMock()
    client.stat_object.return_value.size = 7
    response = MagicMock()
    client.get_object.return_value = response
    store = MinioJobDataStore(client, "staging")

    stored = store.get_stream(JOB_ID, "photo-1")
    stored.close()

    client.get_object.assert_called_once_with(bucket_name="staging", object_name=staging_key(JOB_ID, "photo-1"))
    assert stored.size_bytes == 7
    response.close.assert_called_once()
    response.release_conn.assert_called_once()


def test_put_data_creates_bucket_once_and_streams_unknown_length():
    client = MagicMock()
    client.bucket_exists.return_value = False
    client.put_object.return_value.object_name = staging_key(JOB_ID, "photo-1")
    client.stat_object.return_value.size = 3
    store = MinioJobDataStore(client, "staging")

    assert store.put_data(JOB_ID, "photo-1", io.BytesIO(b"abc")) == 3
    store.put_data(JOB_ID, "photo-2", io.BytesIO(b"abc"), length=3)

    client.make_bucket.assert_called_once_with("staging")
    first, second = client.put_object.call_args_list
    assert first.kwargs["length"] == -1
    assert first.kwargs["part_size"] == 10 * 1024 * 1024
    assert second.kwargs["part_size"] == 0


def test_remove_data_deletes_object():
    client = MagicMock()
    MinioJobDataStore(client, "staging").remove_data(JOB_ID, "photo-1")
    client.remove_object.assert_called_once_with(bucket_name="staging", object_name=staging_key(JOB_ID, "photo-1"))
