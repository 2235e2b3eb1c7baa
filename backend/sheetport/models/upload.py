"""
Upload-related Pydantic models.
"""
from datetime import datetime
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class UploadedFile(BaseModel):
    """A staged file that passed validation. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    file_id: str
    original_name: str
    storage_path: str
    size_bytes: int
    declared_mime_type: str
    created_at: datetime


class UploadResponse(BaseModel):
    """Upload endpoint response (camelCase on the wire)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    file_id: str
    original_name: str
    path: str
    size: int
    mime_type: str

    @classmethod
    def from_staged(cls, staged: UploadedFile) -> "UploadResponse":
        return cls(
            file_id=staged.file_id,
            original_name=staged.original_name,
            path=staged.storage_path,
            size=staged.size_bytes,
            mime_type=staged.declared_mime_type,
        )
