from __future__ import annotations

import base64
import hashlib
import threading
from typing import Any, Callable, Iterable, Protocol

import httpx
import structlog

from media_transfer.core.config import Settings, get_settings
from media_transfer.schemas.destination import (
    AuthData,
    BatchCreateRequest,
    BatchCreateResponse,
    NewMediaItem,
    NewMediaItemResult,
    RemoteContainer,
    UploadReceipt,
)
from media_transfer.services.error_codes import (
    DestinationApiError,
    DestinationErrorKind,
    InvalidTokenError,
    PermissionDeniedError,
    UploadError,
    UploadErrorKind,
)

logger = structlog.get_logger(__name__)

CONTAINER_ID_FIELD = "albumId"


class DestinationApi(Protocol):
    def create_container(self, container: RemoteContainer) -> RemoteContainer: ...

    def upload_content(
        self,
        chunks: Iterable[bytes],
        expected_sha1: str | None,
        *,
        content_type: str = "application/octet-stream",
        file_name: str | None = None,
    ) -> UploadReceipt: ...

    def create_items_batch(self, container_id: str | None, items: list[NewMediaItem]) -> list[NewMediaItemResult]: ...

    def get_container(self, container_id: str) -> RemoteContainer: ...


def _error_payload(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return payload["error"]
    return {}


def _violated_fields(error: dict[str, Any]) -> set[str]:
    fields: set[str] = set()
    for detail in error.get("details") or []:
        if not isinstance(detail, dict):
            continue
        for violation in detail.get("fieldViolations") or []:
            field = violation.get("field") if isinstance(violation, dict) else None
            if field:
                fields.add(field)
    return fields


def classify_response(response: httpx.Response, *, container_scoped: bool = False) -> DestinationErrorKind:
    error = _error_payload(response)
    status = error.get("status")
    code = response.status_code

    if code == 401 or status == "UNAUTHENTICATED":
        return DestinationErrorKind.INVALID_TOKEN
    if code == 403 or status == "PERMISSION_DENIED":
        return DestinationErrorKind.PERMISSION_DENIED
    if code == 429 or status == "RESOURCE_EXHAUSTED":
        return DestinationErrorKind.RATE_LIMITED
    if code == 404 or status == "NOT_FOUND":
        return DestinationErrorKind.CONTAINER_NOT_FOUND if container_scoped else DestinationErrorKind.UNKNOWN
    if code == 400 or status in {"INVALID_ARGUMENT", "FAILED_PRECONDITION"}:
        if container_scoped and CONTAINER_ID_FIELD in _violated_fields(error):
            return DestinationErrorKind.CONTAINER_INVALID
        return DestinationErrorKind.VALIDATION
    if code >= 500:
        return DestinationErrorKind.TRANSPORT
    return DestinationErrorKind.UNKNOWN


def _destination_error(response: httpx.Response, *, container_scoped: bool = False) -> DestinationApiError:
    error = _error_payload(response)
    detail = error.get("message") or response.text
    msg = f"destination request failed ({response.status_code})"
    if detail:
        msg = f"{msg}: {detail}"
    kind = classify_response(response, container_scoped=container_scoped)
    kwargs = {"kind": kind, "status_code": response.status_code, "status": error.get("status")}
    if kind == DestinationErrorKind.INVALID_TOKEN:
        return InvalidTokenError(msg, **kwargs)
    if kind == DestinationErrorKind.PERMISSION_DENIED:
        return PermissionDeniedError(msg, **kwargs)
    return DestinationApiError(msg, **kwargs)


class DestinationClient:
    """HTTP client for the destination media library."""

    def __init__(
        self,
        *,
        auth_data: AuthData | None = None,
        settings: Settings | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        cfg = settings or get_settings()
        self._upload_url = cfg.destination_upload_url
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=cfg.destination_base_url.rstrip("/"),
            timeout=cfg.destination_timeout_seconds,
        )
        self._headers: dict[str, str] = {}
        if auth_data:
            self._headers["Authorization"] = auth_data.authorization_header()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _request_json(
        self,
        method: str,
        path: str,
        *,
        json_body: dict | None = None,
        container_scoped: bool = False,
    ) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, json=json_body, headers=self._headers)
        except httpx.TransportError as exc:
            raise DestinationApiError(
                f"destination request failed: {exc}", kind=DestinationErrorKind.TRANSPORT
            ) from exc
        if response.status_code >= 400:
            raise _destination_error(response, container_scoped=container_scoped)
        if not response.content:
            return {}
        return response.json()

    def create_container(self, container: RemoteContainer) -> RemoteContainer:
        body = self._request_json(
            "POST",
            "/albums",
            json_body={"album": container.model_dump(by_alias=True, exclude_none=True)},
        )
        return RemoteContainer.model_validate(body)

    def get_container(self, container_id: str) -> RemoteContainer:
        body = self._request_json("GET", f"/albums/{container_id}", container_scoped=True)
        return RemoteContainer.model_validate(body)

    def upload_content(
        self,
        chunks: Iterable[bytes],
        expected_sha1: str | None,
        *,
        content_type: str = "application/octet-stream",
        file_name: str | None = None,
    ) -> UploadReceipt:
        hasher = hashlib.sha1(usedforsecurity=False)
        size = 0

        def _body():
            nonlocal size
            for chunk in chunks:
                hasher.update(chunk)
                size += len(chunk)
                yield chunk

        headers = dict(self._headers)
        headers.update(
            {
                "Content-Type": "application/octet-stream",
                "X-Goog-Upload-Protocol": "raw",
                "X-Goog-Upload-Content-Type": content_type,
            }
        )
        if expected_sha1:
            digest = base64.b64encode(bytes.fromhex(expected_sha1)).decode("ascii")
            headers["X-Goog-Hash"] = f"sha1={digest}"

        try:
            response = self._client.post(self._upload_url, content=_body(), headers=headers)
        except httpx.TransportError as exc:
            raise UploadError(f"upload failed: {exc}", kind=UploadErrorKind.TRANSPORT) from exc

        uploaded_sha1 = hasher.hexdigest()
        if expected_sha1 and uploaded_sha1 != expected_sha1.lower():
            raise UploadError(
                f"Hash mismatch: expected sha1 {expected_sha1.lower()}, uploaded {uploaded_sha1}",
                kind=UploadErrorKind.HASH_MISMATCH,
            )
        if response.status_code >= 400:
            error = _destination_error(response)
            if error.kind in {DestinationErrorKind.INVALID_TOKEN, DestinationErrorKind.PERMISSION_DENIED}:
                raise error
            raise UploadError(str(error), kind=UploadErrorKind.REJECTED) from error

        token = response.text.strip()
        if not token:
            raise UploadError("upload returned an empty upload token", kind=UploadErrorKind.REJECTED)
        return UploadReceipt(upload_token=token, sha1=uploaded_sha1, size_bytes=size)

    def create_items_batch(self, container_id: str | None, items: list[NewMediaItem]) -> list[NewMediaItemResult]:
        request = BatchCreateRequest(album_id=container_id, new_media_items=items)
        body = self._request_json(
            "POST",
            "/mediaItems:batchCreate",
            json_body=request.model_dump(by_alias=True, exclude_none=True),
            container_scoped=container_id is not None,
        )
        return BatchCreateResponse.model_validate(body).new_media_item_results


class DestinationClientPool:
    """Hands out one destination client per access token."""

    def __init__(self, factory: Callable[[AuthData | None], DestinationApi]) -> None:
        self._factory = factory
        self._clients: dict[str | None, DestinationApi] = {}
        self._lock = threading.Lock()

    @classmethod
    def fixed(cls, client: DestinationApi) -> DestinationClientPool:
        return cls(lambda _auth_data: client)

    def get(self, auth_data: AuthData | None) -> DestinationApi:
        cache_key = auth_data.access_token if auth_data else None
        with self._lock:
            client = self._clients.get(cache_key)
            if client is None:
                client = self._factory(auth_data)
                self._clients[cache_key] = client
            return client

    def close(self) -> None:
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            close = getattr(client, "close", None)
            if close:
                close()
