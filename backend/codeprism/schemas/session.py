from pydantic import BaseModel, Field


class RemoteToggleRequest(BaseModel):
    enabled: bool


class SharedLinkCreate(BaseModel):
    userType: str = Field(min_length=1, max_length=50)
    accessType: str | None = Field(default=None, max_length=50)


class SessionGrant(BaseModel):
    """Lifetime to grant on approve/extend. Defaults to the configured TTL."""

    expiresInMinutes: int | None = Field(default=None, ge=1, le=24 * 60)


class SessionRead(BaseModel):
    id: str
    kind: str
    status: str | None = None
    createdAt: str | None = None
    expiresAt: str | None = None
    userType: str | None = None
    accessType: str | None = None
