"""Custom-domain mappings held by the domain registry."""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

DomainStatus = Literal["active", "pending", "suspended"]

DEFAULT_ALLOWED_MIME_TYPES = ["image/*", "video/*", "audio/*", "application/pdf"]
DEFAULT_MAX_FILE_SIZE = 50 * 1024 * 1024  # 50 MB


class DomainSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    public_access: bool = Field(default=True, alias="publicAccess")
    allowed_mime_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_MIME_TYPES), alias="allowedMimeTypes"
    )
    max_file_size: int = Field(default=DEFAULT_MAX_FILE_SIZE, alias="maxFileSize")

    def allows(self, mime_type: str, size: int) -> bool:
        """Whether a blob may be served publicly under this domain."""
        if size > self.max_file_size:
            return False
        mime_type = mime_type.split(";", 1)[0].strip().lower()
        return any(fnmatchcase(mime_type, pattern.lower()) for pattern in self.allowed_mime_types)


class DomainSettingsUpdate(BaseModel):
    """Partial settings; unset fields keep their stored value."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    public_access: bool | None = Field(default=None, alias="publicAccess")
    allowed_mime_types: list[str] | None = Field(default=None, alias="allowedMimeTypes")
    max_file_size: int | None = Field(default=None, alias="maxFileSize", ge=0)


class DomainMapping(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    domain: str = Field(max_length=253)
    owner_handle: str = Field(alias="ownerHandle")
    owner_id: str = Field(alias="ownerId")
    status: DomainStatus = "active"
    settings: DomainSettings = Field(default_factory=DomainSettings)
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")

    @property
    def is_public(self) -> bool:
        return self.status == "active" and self.settings.public_access


class RegisterDomainRequest(BaseModel):
    domain: str


class UpdateDomainRequest(BaseModel):
    status: Literal["active", "suspended"] | None = None
    settings: DomainSettingsUpdate | None = None
