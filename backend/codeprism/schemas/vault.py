import enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Visibility(str, enum.Enum):
    public = "public"
    protected = "protected"


class VaultFileRecord(BaseModel):
    """Metadata document stored at ``vault/{name}``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    size: int = 0
    type: str = ""
    updated_at: str | None = Field(default=None, alias="updatedAt")
    visibility: Visibility = Visibility.public
    access_code: str | None = Field(default=None, alias="accessCode")
    content: str | None = None
    source: str | None = None

    @field_validator("visibility", mode="before")
    @classmethod
    def _fail_closed(cls, value):
        # Unset means public; anything unrecognised is treated as protected.
        if value is None or value == "":
            return Visibility.public
        if value in (Visibility.public, Visibility.public.value):
            return Visibility.public
        return Visibility.protected

    @property
    def is_protected(self) -> bool:
        return self.visibility is Visibility.protected

    @property
    def has_inline_copy(self) -> bool:
        return bool(self.content)

    @property
    def storage_status(self) -> str:
        return "db" if self.has_inline_copy else "local"


class VaultFileEntry(BaseModel):
    """One row of the admin vault listing."""

    name: str
    size: int
    updatedAt: str | None = None
    type: str
    url: str
    shareUrl: str
    status: str
    visibility: Visibility
    hasAccessCode: bool


class VaultShareInfo(BaseModel):
    """Public metadata shown by the share gate before any bytes are released."""

    name: str
    visibility: Visibility
    type: str
    size: int
    status: str


class VaultUpdateRequest(BaseModel):
    fileName: str = Field(min_length=1)
    visibility: Visibility | None = None
    accessCode: str | None = None
    syncToDB: bool = False


class VaultVerifyRequest(BaseModel):
    filename: str | None = None
    accessCode: str | None = None
