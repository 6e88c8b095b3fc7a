import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, BigInteger, DateTime, Enum, Index, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from media_transfer.db.base import Base


class TransferState(str, enum.Enum):
    RECEIVED = "RECEIVED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    COMPLETED_WITH_ERRORS = "COMPLETED_WITH_ERRORS"
    FAILED = "FAILED"


TERMINAL_STATES = frozenset(
    {TransferState.COMPLETED, TransferState.COMPLETED_WITH_ERRORS, TransferState.FAILED}
)


class TransferJob(Base):
    __tablename__ = "transfer_jobs"
    __table_args__ = (Index("ix_transfer_jobs_state_retry_after", "state", "retry_after"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    state: Mapped[TransferState] = mapped_column(
        Enum(TransferState, name="transfer_state"), nullable=False, default=TransferState.RECEIVED
    )
    user_locale: Mapped[str | None] = mapped_column(String(35))
    export_service: Mapped[str | None] = mapped_column(String(64))
    import_service: Mapped[str | None] = mapped_column(String(64))
    payload_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    retry_after: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    bytes_imported: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors_json: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    last_error_code: Mapped[str | None] = mapped_column(String(64))
    last_error_message: Mapped[str | None] = mapped_column(Text)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
