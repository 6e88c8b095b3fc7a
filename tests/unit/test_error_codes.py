import httpx
import pytest

sqlalchemy = pytest.importorskip("sqlalchemy")
IntegrityError = sqlalchemy.exc.IntegrityError

from media_transfer.services.error_codes import (
    DestinationApiError,
    DestinationErrorKind,
    InvalidTokenError,
    PermissionDeniedError,
    TransferErrorCode,
    UploadError,
    UploadErrorKind,
    classify_exception_for_stage,
    is_container_unavailable,
)


def test_classify_staging_stage_errors():
    assert classify_exception_for_stage(FileNotFoundError("missing"), "STAGED") == TransferErrorCode.STAGING_BLOB_MISSING
    assert classify_exception_for_stage(RuntimeError("boom"), "STAGED") == TransferErrorCode.STAGING_FETCH_FAIL


def test_classify_imported_stage_errors():
    mismatch = UploadError("Hash mismatch", kind=UploadErrorKind.HASH_MISMATCH)
    assert classify_exception_for_stage(mismatch, "IMPORTED") == TransferErrorCode.UPLOAD_HASH_MISMATCH
    assert classify_exception_for_stage(UploadError("nope"), "IMPORTED") == TransferErrorCode.UPLOAD_FAIL
    assert classify_exception_for_stage(InvalidTokenError("expired"), "IMPORTED") == TransferErrorCode.DESTINATION_INVALID_TOKEN
    assert (
        classify_exception_for_stage(PermissionDeniedError("denied"), "IMPORTED")
        == TransferErrorCode.DESTINATION_PERMISSION_DENIED
    )
    limited = DestinationApiError("slow down", kind=DestinationErrorKind.RATE_LIMITED)
    assert classify_exception_for_stage(limited, "IMPORTED") == TransferErrorCode.DESTINATION_RATE_LIMITED
    assert classify_exception_for_stage(DestinationApiError("x"), "IMPORTED") == TransferErrorCode.BATCH_CREATE_FAIL
    assert classify_exception_for_stage(httpx.ConnectError("down"), "IMPORTED") == TransferErrorCode.BATCH_CREATE_FAIL
    assert classify_exception_for_stage(KeyError("x"), "IMPORTED") == TransferErrorCode.PIPELINE_UNEXPECTED


def test_classify_container_and_recorded_stages():
    assert classify_exception_for_stage(DestinationApiError("x"), "CONTAINERS") == TransferErrorCode.CONTAINER_CREATE_FAIL
    assert classify_exception_for_stage(IntegrityError("stmt", {}, Exception("db")), "RECORDED") == TransferErrorCode.DB_WRITE_FAIL
    assert classify_exception_for_stage(ValueError("bad"), "LOADED") == TransferErrorCode.JOB_PAYLOAD_INVALID


def test_classify_unknown_stage_defaults_pipeline_unexpected():
    assert classify_exception_for_stage(RuntimeError("x"), "UNKNOWN") == TransferErrorCode.PIPELINE_UNEXPECTED


def test_container_unavailable_kinds():
    assert is_container_unavailable(DestinationApiError("x", kind=DestinationErrorKind.CONTAINER_NOT_FOUND))
    assert is_container_unavailable(DestinationApiError("x", kind=DestinationErrorKind.CONTAINER_INVALID))
    assert not is_container_unavailable(DestinationApiError("x", kind=DestinationErrorKind.VALIDATION))
    assert not is_container_unavailable(RuntimeError("x"))


def test_auth_errors_carry_their_kind():
    assert InvalidTokenError("x").kind == DestinationErrorKind.INVALID_TOKEN
    assert PermissionDeniedError("x", status_code=403).status_code == 403
