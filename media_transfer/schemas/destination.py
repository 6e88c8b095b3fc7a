import enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RpcCode(enum.IntEnum):
    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


def describe_code(code: int) -> str:
    try:
        return f"{RpcCode(code).name} ({code})"
    except ValueError:
        return f"UNRECOGNIZED ({code})"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RemoteContainer(_WireModel):
    id: str | None = None
    title: str | None = None
    product_url: str | None = None
    is_writeable: bool | None = None
    media_items_count: int | None = None


class SimpleMediaItem(_WireModel):
    upload_token: str
    file_name: str | None = None


class NewMediaItem(_WireModel):
    description: str | None = None
    simple_media_item: SimpleMediaItem


class BatchCreateRequest(_WireModel):
    album_id: str | None = None
    new_media_items: list[NewMediaItem] = Field(default_factory=list)


class ItemStatus(_WireModel):
    code: int = RpcCode.OK
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.code == RpcCode.OK


class CreatedMediaItem(_WireModel):
    id: str
    description: str | None = None
    product_url: str | None = None
    mime_type: str | None = None
    filename: str | None = None


class NewMediaItemResult(_WireModel):
    upload_token: str | None = None
    status: ItemStatus = Field(default_factory=ItemStatus)
    media_item: CreatedMediaItem | None = None


class BatchCreateResponse(_WireModel):
    new_media_item_results: list[NewMediaItemResult] = Field(default_factory=list)


class UploadReceipt(BaseModel):
    upload_token: str
    sha1: str | None = None
    size_bytes: int = 0


class AuthData(BaseModel):
    access_token: str
    token_type: str = "Bearer"

    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"
