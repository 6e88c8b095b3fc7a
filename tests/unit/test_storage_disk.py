import io
from uuid import UUID

import pytest

from media_transfer.services.job_data_store import staging_key
from media_transfer.services.storage_disk import DiskJobDataStore

JOB_ID = UUID("66666666-6666-6666-6666-666666666666")


def test_put_get_remove_roundtrip(tmp_path):
    store = DiskJobDataStore(str(tmp_path))

    assert store.put_data(JOB_ID, "photo-1", io.BytesIO(b"hello")) == 5

    stored = store.get_stream(JOB_ID, "photo-1")
    try:
        assert b"".join(stored.iter_chunks(2)) == b"hello"
        assert stored.size_bytes == 5
    finally:
        stored.close()

    store.remove_data(JOB_ID, "photo-1")
    with pytest.raises(FileNotFoundError):
        store.get_stream(JOB_ID, "photo-1")


def test_remove_missing_blob_is_a_noop(tmp_path):
    DiskJobDataStore(str(tmp_path)).remove_data(JOB_ID, "never-stored")


def test_blobs_are_namespaced_by_job(tmp_path):
    store = DiskJobDataStore(str(tmp_path))
    store.put_data(JOB_ID, "photo-1", io.BytesIO(b"a"))

    assert (tmp_path / staging_key(JOB_ID, "photo-1")).exists()
    with pytest.raises(FileNotFoundError):
        store.get_stream(UUID("77777777-7777-7777-7777-777777777777"), "photo-1")


def test_staging_key_is_stable_and_path_safe():
    key = staging_key(JOB_ID, "https://example.com/a/../b?c=d")
    assert key == staging_key(JOB_ID, "https://example.com/a/../b?c=d")
    assert key.startswith(f"{JOB_ID}/")
    assert ".." not in key
