"""
Attachment Store Models

Folders form a tree (parentId = None is root), items live in exactly one
folder or at root, and files belong to exactly one item.

DESIGN DECISION: Field names are snake_case in Python and camelCase on
disk/export (aliases), so JSON exports keep the shape other tools expect.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from luxeledger.utils.ids import new_id
from luxeledger.utils.timestamps import now_iso


class BlobLocator(BaseModel):
    """
    Where the bytes of a file live.

    - embedded: bytes are stored in the metadata database row
    - external: bytes are stored at `uri`, relative to the blob root
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal["embedded", "external"] = Field(
        ...,
        description="Blob backend that owns the bytes"
    )
    uri: Optional[str] = Field(
        default=None,
        description="Backend-relative path (external backend only)"
    )


class Thumbnail(BaseModel):
    """Small preview kept on the item for fast listing and JSON backups."""
    model_config = ConfigDict(populate_by_name=True)

    thumb_data_url: str = Field(
        ...,
        alias="thumbDataUrl",
        min_length=1,
        description="data: URL of a JPEG thumbnail"
    )
    name: str = Field(
        default="",
        description="Original file name"
    )


class Folder(BaseModel):
    """A folder node. parent_id None means the folder sits at root."""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(
        default="",
        max_length=200,
        description="Display name"
    )
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    created_at: str = Field(default_factory=now_iso, alias="createdAt")
    updated_at: str = Field(default_factory=now_iso, alias="updatedAt")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Item(BaseModel):
    """
    An inventory item.

    Extra fields are kept so callers can store domain-specific data
    (purchase price, serial number, ...) without a schema change.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(default_factory=new_id)
    title: str = Field(default="")
    folder_id: Optional[str] = Field(default=None, alias="folderId")
    tags: list[str] = Field(
        default_factory=list,
        description="Tag set (trimmed, de-duplicated, insertion ordered)"
    )
    notes: str = Field(default="")
    images: list[Thumbnail] = Field(
        default_factory=list,
        description="Ordered thumbnail previews"
    )
    created_at: str = Field(default_factory=now_iso, alias="createdAt")
    updated_at: str = Field(default_factory=now_iso, alias="updatedAt")

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: Any) -> list[str]:
        """Trim, drop empty entries and de-duplicate, keeping first occurrence."""
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        seen: list[str] = []
        for tag in v:
            text = str(tag if tag is not None else "").strip()
            if text and text not in seen:
                seen.append(text)
        return seen

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class FileRecord(BaseModel):
    """Metadata of one attachment. The bytes themselves are never on the model."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    item_id: str = Field(..., alias="itemId")
    name: str = Field(default="")
    mime: str = Field(default="application/octet-stream")
    size: int = Field(default=0, ge=0, description="Size in bytes")
    created_at: str = Field(default_factory=now_iso, alias="createdAt")
    locator: BlobLocator = Field(...)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_meta_dict(self) -> dict[str, Any]:
        """Export shape: metadata without the backend locator."""
        return self.model_dump(by_alias=True, exclude={"locator"})


class FolderPathEntry(BaseModel):
    """One breadcrumb step of a folder path."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    parent_id: Optional[str] = Field(default=None, alias="parentId")
