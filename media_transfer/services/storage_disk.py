import os
import shutil
from pathlib import Path
from typing import BinaryIO
from uuid import UUID

from media_transfer.services.job_data_store import StoredData, staging_key


class DiskJobDataStore:
    def __init__(self, root_dir: str) -> None:
        self.root_dir = Path(root_dir)

    def _path(self, job_id: UUID, data_id: str) -> Path:
        return self.root_dir / staging_key(job_id, data_id)

    def put_data(self, job_id: UUID, data_id: str, stream: BinaryIO, length: int = -1) -> int:
        target_path = self._path(job_id, data_id)
        target_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target_path.with_suffix(".uploading")
        with open(tmp_path, "wb") as dst:
            shutil.copyfileobj(stream, dst, length=1024 * 1024)
        os.replace(tmp_path, target_path)
        return target_path.stat().st_size

    def get_stream(self, job_id: UUID, data_id: str) -> StoredData:
        target_path = self._path(job_id, data_id)
        if not target_path.exists():
            raise FileNotFoundError(f"staged data not found: {data_id}")
        fp = target_path.open("rb")
        return StoredData(stream=fp, size_bytes=target_path.stat().st_size)

    def remove_data(self, job_id: UUID, data_id: str) -> None:
        self._path(job_id, data_id).unlink(missing_ok=True)
