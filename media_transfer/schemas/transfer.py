from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from media_transfer.db.models import TransferState


class JobMetadata(BaseModel):
    job_id: UUID
    user_locale: str | None = None


class TransferJobStatusResponse(BaseModel):
    job_id: UUID
    state: TransferState
    attempt_count: int
    max_attempts: int
    bytes_imported: int
    error_count: int
    last_error_code: str | None = None
    last_error_message: str | None = None
    received_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    is_terminal: bool
    success: bool
