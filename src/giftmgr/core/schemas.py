"""Input models for instance create/update."""

from pydantic import BaseModel, Field

# Instance names become part of the container name
_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"


class InstanceCreate(BaseModel):
    """Fields accepted when creating an instance."""

    name: str = Field(min_length=1, max_length=255, pattern=_NAME_PATTERN)
    api_key: str = Field(min_length=1)
    account_id: str = Field(min_length=1)
    tiktok_username: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)
    backend_api_url: str | None = None
    dash_password: str | None = None
    debug_mode: bool = False
    docker_image: str | None = Field(default=None, max_length=512)


class InstanceUpdate(BaseModel):
    """Partial update; unset fields are left untouched."""

    name: str | None = Field(default=None, min_length=1, max_length=255, pattern=_NAME_PATTERN)
    api_key: str | None = Field(default=None, min_length=1)
    account_id: str | None = Field(default=None, min_length=1)
    tiktok_username: str | None = Field(default=None, min_length=1)
    port: int | None = Field(default=None, ge=1, le=65535)
    backend_api_url: str | None = None
    dash_password: str | None = Field(default=None, min_length=1)
    debug_mode: bool | None = None
    docker_image: str | None = Field(default=None, max_length=512)
