from __future__ import annotations

import enum

import httpx
from sqlalchemy.exc import SQLAlchemyError


class DestinationErrorKind(str, enum.Enum):
    CONTAINER_NOT_FOUND = "CONTAINER_NOT_FOUND"
    CONTAINER_INVALID = "CONTAINER_INVALID"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INVALID_TOKEN = "INVALID_TOKEN"
    RATE_LIMITED = "RATE_LIMITED"
    VALIDATION = "VALIDATION"
    TRANSPORT = "TRANSPORT"
    UNKNOWN = "UNKNOWN"


CONTAINER_UNAVAILABLE_KINDS = frozenset(
    {DestinationErrorKind.CONTAINER_NOT_FOUND, DestinationErrorKind.CONTAINER_INVALID}
)


class UploadErrorKind(str, enum.Enum):
    HASH_MISMATCH = "HASH_MISMATCH"
    REJECTED = "REJECTED"
    TRANSPORT = "TRANSPORT"


class TransferErrorCode:
    STAGING_FETCH_FAIL = "STAGING_FETCH_FAIL"
    STAGING_BLOB_MISSING = "STAGING_BLOB_MISSING"
    UPLOAD_HASH_MISMATCH = "UPLOAD_HASH_MISMATCH"
    UPLOAD_FAIL = "UPLOAD_FAIL"
    CONTAINER_CREATE_FAIL = "CONTAINER_CREATE_FAIL"
    BATCH_CREATE_FAIL = "BATCH_CREATE_FAIL"
    DESTINATION_PERMISSION_DENIED = "DESTINATION_PERMISSION_DENIED"
    DESTINATION_INVALID_TOKEN = "DESTINATION_INVALID_TOKEN"
    DESTINATION_RATE_LIMITED = "DESTINATION_RATE_LIMITED"
    JOB_PAYLOAD_INVALID = "JOB_PAYLOAD_INVALID"
    DB_WRITE_FAIL = "DB_WRITE_FAIL"
    PIPELINE_UNEXPECTED = "PIPELINE_UNEXPECTED"


class TransferError(RuntimeError):
    pass


class DestinationApiError(TransferError):
    def __init__(
        self,
        message: str,
        *,
        kind: DestinationErrorKind = DestinationErrorKind.UNKNOWN,
        status_code: int | None = None,
        status: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.status = status


class PermissionDeniedError(DestinationApiError):
    def __init__(self, message: str, **kwargs) -> None:
        kwargs.setdefault("kind", DestinationErrorKind.PERMISSION_DENIED)
        super().__init__(message, **kwargs)


class InvalidTokenError(DestinationApiError):
    def __init__(self, message: str, **kwargs) -> None:
        kwargs.setdefault("kind", DestinationErrorKind.INVALID_TOKEN)
        super().__init__(message, **kwargs)


class UploadError(TransferError):
    def __init__(self, message: str, *, kind: UploadErrorKind = UploadErrorKind.REJECTED) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def is_hash_mismatch(self) -> bool:
        return self.kind == UploadErrorKind.HASH_MISMATCH


class StagingError(TransferError):
    pass


class ItemCreateError(TransferError):
    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class TransferPipelineError(TransferError):
    def __init__(self, code: str, stage: str, message: str):
        super().__init__(message)
        self.code = code
        self.stage = stage
        self.message = message


def is_container_unavailable(exc: BaseException) -> bool:
    return isinstance(exc, DestinationApiError) and exc.kind in CONTAINER_UNAVAILABLE_KINDS


def _code_for_destination_error(exc: DestinationApiError, default: str) -> str:
    if exc.kind == DestinationErrorKind.PERMISSION_DENIED:
        return TransferErrorCode.DESTINATION_PERMISSION_DENIED
    if exc.kind == DestinationErrorKind.INVALID_TOKEN:
        return TransferErrorCode.DESTINATION_INVALID_TOKEN
    if exc.kind == DestinationErrorKind.RATE_LIMITED:
        return TransferErrorCode.DESTINATION_RATE_LIMITED
    return default


def classify_exception_for_stage(exc: Exception, stage: str) -> str:
    if stage == "LOADED":
        return TransferErrorCode.JOB_PAYLOAD_INVALID

    if stage == "STAGED":
        if isinstance(exc, FileNotFoundError):
            return TransferErrorCode.STAGING_BLOB_MISSING
        return TransferErrorCode.STAGING_FETCH_FAIL

    if stage == "UPLOADED":
        if isinstance(exc, UploadError) and exc.is_hash_mismatch:
            return TransferErrorCode.UPLOAD_HASH_MISMATCH
        return TransferErrorCode.UPLOAD_FAIL

    if stage == "CONTAINERS":
        if isinstance(exc, DestinationApiError):
            return _code_for_destination_error(exc, TransferErrorCode.CONTAINER_CREATE_FAIL)
        return TransferErrorCode.CONTAINER_CREATE_FAIL

    if stage == "IMPORTED":
        if isinstance(exc, UploadError):
            return classify_exception_for_stage(exc, "UPLOADED")
        if isinstance(exc, DestinationApiError):
            return _code_for_destination_error(exc, TransferErrorCode.BATCH_CREATE_FAIL)
        if isinstance(exc, httpx.TransportError):
            return TransferErrorCode.BATCH_CREATE_FAIL
        return TransferErrorCode.PIPELINE_UNEXPECTED

    if stage == "RECORDED" or isinstance(exc, SQLAlchemyError):
        return TransferErrorCode.DB_WRITE_FAIL

    return TransferErrorCode.PIPELINE_UNEXPECTED
