from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterator, Protocol
from uuid import UUID

from media_transfer.core.config import Settings, get_settings


@dataclass
class StoredData:
    stream: BinaryIO
    size_bytes: int
    release: Callable[[], None] | None = None

    def iter_chunks(self, chunk_size: int = 1024 * 1024) -> Iterator[bytes]:
        while True:
            chunk = self.stream.read(chunk_size)
            if not chunk:
                break
            yield chunk

    def close(self) -> None:
        try:
            self.stream.close()
        finally:
            if self.release:
                self.release()


class JobDataStore(Protocol):
    def put_data(self, job_id: UUID, data_id: str, stream: BinaryIO, length: int = -1) -> int: ...

    def get_stream(self, job_id: UUID, data_id: str) -> StoredData: ...

    def remove_data(self, job_id: UUID, data_id: str) -> None: ...


def staging_key(job_id: UUID, data_id: str) -> str:
    digest = hashlib.sha256(data_id.encode("utf-8")).hexdigest()
    return f"{job_id}/{digest[0:2]}/{digest}"


def get_job_data_store(settings: Settings | None = None) -> JobDataStore:
    cfg = settings or get_settings()
    backend = cfg.staging_backend.strip().lower()
    if backend == "minio":
        from media_transfer.services.storage_minio import MinioJobDataStore, get_minio_client

        client = get_minio_client(
            endpoint=cfg.minio_endpoint,
            access_key=cfg.minio_access_key,
            secret_key=cfg.minio_secret_key,
            secure=cfg.minio_secure,
        )
        return MinioJobDataStore(client, cfg.staging_bucket)
    if backend == "disk":
        from media_transfer.services.storage_disk import DiskJobDataStore

        return DiskJobDataStore(cfg.staging_disk_root)
    raise ValueError(f"unsupported staging backend: {cfg.staging_backend}")
