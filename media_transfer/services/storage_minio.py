from typing import BinaryIO
from uuid import UUID

from minio import Minio
from minio.error import S3Error

from media_transfer.services.job_data_store import StoredData, staging_key

_MISSING_CODES = {"NoSuchKey", "NoSuchObject"}
_PART_SIZE = 10 * 1024 * 1024


def get_minio_client(endpoint: str, access_key: str, secret_key: str, secure: bool) -> Minio:
    return Minio(endpoint=endpoint, access_key=access_key, secret_key=secret_key, secure=secure)


def ensure_bucket(client: Minio, bucket: str) -> None:
    if not client.bucket_exists(bucket):
        client.make_bucket(bucket)


class MinioJobDataStore:
    def __init__(self, client: Minio, bucket: str) -> None:
        self.client = client
        self.bucket = bucket
        self._bucket_ready = False

    def _ensure_bucket(self) -> None:
        if not self._bucket_ready:
            ensure_bucket(self.client, self.bucket)
            self._bucket_ready = True

    def put_data(self, job_id: UUID, data_id: str, stream: BinaryIO, length: int = -1) -> int:
        self._ensure_bucket()
        result = self.client.put_object(
            bucket_name=self.bucket,
            object_name=staging_key(job_id, data_id),
            data=stream,
            length=length,
            part_size=_PART_SIZE if length < 0 else 0,
            content_type="application/octet-stream",
        )
        stat = self.client.stat_object(bucket_name=self.bucket, object_name=result.object_name)
        return int(stat.size or 0)

    def get_stream(self, job_id: UUID, data_id: str) -> StoredData:
        object_name = staging_key(job_id, data_id)
        try:
            stat = self.client.stat_object(bucket_name=self.bucket, object_name=object_name)
            response = self.client.get_object(bucket_name=self.bucket, object_name=object_name)
        except S3Error as exc:
            if exc.code in _MISSING_CODES:
                raise FileNotFoundError(f"staged data not found: {data_id}") from exc
            raise
        return StoredData(stream=response, size_bytes=int(stat.size or 0), release=response.release_conn)

    def remove_data(self, job_id: UUID, data_id: str) -> None:
        try:
            self.client.remove_object(bucket_name=self.bucket, object_name=staging_key(job_id, data_id))
        except S3Error as exc:
            if exc.code in _MISSING_CODES:
                return
            raise
