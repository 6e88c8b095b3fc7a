from pydantic import BaseModel, ConfigDict, Field, field_validator


class SourceContainer(BaseModel):
    model_config = ConfigDict(frozen=True)

    old_id: str
    name: str | None = None
    description: str | None = None


class SourceItem(BaseModel):
    """One media object exported from the source service.

    ``fetchable_url`` is the remote URI of the content, or the data id of the
    staged blob when ``in_temp_store`` is set.
    """

    model_config = ConfigDict(frozen=True)

    title: str | None = None
    fetchable_url: str
    description: str | None = None
    media_type: str = "application/octet-stream"
    old_id: str
    container_id: str | None = None
    in_temp_store: bool = False
    sha1: str | None = Field(default=None, pattern=r"^[0-9a-fA-F]{40}$")

    @field_validator("sha1")
    @classmethod
    def _normalize_sha1(cls, value: str | None) -> str | None:
        return value.lower() if value else value

    @property
    def idempotency_key(self) -> str:
        return f"{self.container_id or ''}-{self.old_id}"

    @property
    def display_name(self) -> str:
        return self.title or self.old_id


class MediaContainerResource(BaseModel):
    containers: list[SourceContainer] = Field(default_factory=list)
    items: list[SourceItem] = Field(default_factory=list)
